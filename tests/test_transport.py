# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the httpx transport, response results and error mapping."""

from datetime import UTC, datetime

import httpx
import pytest

from s3kit.errors import (
    AccessDeniedError,
    AuthorizationError,
    BucketNotFoundError,
    ConnectionFailedError,
    ErrorResponseError,
    MalformedXMLError,
    ObjectNotFoundError,
    RedirectionError,
    RequestTimeoutError,
)
from s3kit.models import Body, RequestDescriptor, SignedRequest
from s3kit.regions import BucketRegionCache
from s3kit.transport import HttpxTransport, ResponseHandler, ResponseResult


TIMESTAMP = datetime(2024, 1, 1, tzinfo=UTC)


def _signed(
    method: str = "GET",
    *,
    body: Body = None,
    content_length: int | None = None,
) -> SignedRequest:
    descriptor = RequestDescriptor.build(
        method,
        "http://localhost:9000",
        "/b/k",
        body=body,
        content_length=content_length,
    )
    return SignedRequest(descriptor=descriptor, timestamp=TIMESTAMP)


def _result(
    status: int, body: bytes = b"", headers: dict[str, str] | None = None
) -> ResponseResult:
    return ResponseResult(
        status_code=status,
        headers=headers,
        content=body,
        request=_signed(),
    )


def _error_body(code: str) -> bytes:
    return f"<Error><Code>{code}</Code><Message>m</Message></Error>".encode()


class TestResponseResult:
    """Tests for ResponseResult."""

    async def test_lazy_text(self) -> None:
        result = _result(200, "hëllo".encode())
        assert await result.text() == "hëllo"
        assert await result.aread() == "hëllo".encode()

    async def test_close_idempotent(self) -> None:
        """Closing twice is harmless."""
        result = _result(200)
        await result.aclose()
        await result.aclose()
        assert result.closed

    async def test_context_manager_closes(self) -> None:
        async with _result(200) as result:
            assert not result.closed
        assert result.closed

    def test_success_classification(self) -> None:
        assert _result(204).is_success
        assert not _result(404).is_success
        assert not ResponseResult.from_exception(
            ConnectionFailedError("x")
        ).is_success


class TestHttpxTransport:
    """Tests for HttpxTransport over httpx.MockTransport."""

    async def test_streams_response(self) -> None:
        """The body is streamed and read on demand."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"payload")

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HttpxTransport(http)
        result = await transport.execute(_signed())
        async with result:
            chunks = [chunk async for chunk in result.aiter_bytes()]
        assert b"".join(chunks) == b"payload"
        await http.aclose()

    async def test_stream_body_gets_content_length(self) -> None:
        """Streams of known length are sent with Content-Length."""
        seen: list[httpx.Request] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            await request.aread()
            seen.append(request)
            return httpx.Response(200)

        async def body():
            yield b"abc"
            yield b"de"

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        result = await HttpxTransport(http).execute(
            _signed("PUT", body=body(), content_length=5)
        )
        await result.aclose()
        assert seen[0].headers["content-length"] == "5"
        assert "transfer-encoding" not in seen[0].headers
        assert seen[0].content == b"abcde"
        await http.aclose()

    async def test_timeout_returned_not_raised(self) -> None:
        """Transport failures travel in the result."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        result = await HttpxTransport(http).execute(_signed())
        assert isinstance(result.exception, RequestTimeoutError)
        assert result.status_code == 0
        await http.aclose()

    async def test_connect_error_returned(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        result = await HttpxTransport(http).execute(_signed())
        assert isinstance(result.exception, ConnectionFailedError)
        await http.aclose()

    async def test_redirects_not_followed(self) -> None:
        """A redirect is returned as-is, never followed."""
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            return httpx.Response(
                307, headers={"Location": "http://elsewhere/b/k"}
            )

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        result = await HttpxTransport(http).execute(_signed())
        assert result.status_code == 307
        assert len(calls) == 1
        await result.aclose()
        await http.aclose()


class TestResponseHandler:
    """Tests for ResponseHandler error classification."""

    async def test_success_passes_through(self) -> None:
        result = _result(200, b"ok")
        assert await ResponseHandler().handle(result) is result
        assert not result.closed

    async def test_transport_exception_raised(self) -> None:
        result = ResponseResult.from_exception(RequestTimeoutError("slow"))
        with pytest.raises(RequestTimeoutError):
            await ResponseHandler().handle(result)

    @pytest.mark.parametrize("status", [301, 302, 307])
    async def test_redirect(self, status: int) -> None:
        result = _result(status, headers={"Location": "http://x"})
        with pytest.raises(RedirectionError):
            await ResponseHandler().handle(result)
        assert result.closed

    @pytest.mark.parametrize(
        ("status", "code", "exc_type"),
        [
            (404, "NoSuchKey", ObjectNotFoundError),
            (404, "NoSuchBucket", BucketNotFoundError),
            (403, "AccessDenied", AccessDeniedError),
            (403, "SignatureDoesNotMatch", AuthorizationError),
            (403, "InvalidAccessKeyId", AuthorizationError),
            (400, "MalformedXML", MalformedXMLError),
            (409, "BucketAlreadyOwnedByYou", ErrorResponseError),
        ],
    )
    async def test_xml_error_mapping(
        self, status: int, code: str, exc_type: type[Exception]
    ) -> None:
        """Error codes map to typed exceptions."""
        result = _result(
            status, _error_body(code), {"x-amz-request-id": "req-1"}
        )
        with pytest.raises(exc_type) as exc_info:
            await ResponseHandler().handle(result, bucket="b", key="k")
        assert isinstance(exc_info.value, ErrorResponseError)
        assert exc_info.value.code == code
        assert exc_info.value.request_id == "req-1"
        assert exc_info.value.status_code == status
        assert result.closed

    @pytest.mark.parametrize(
        ("status", "bucket", "key", "code", "exc_type"),
        [
            (404, "b", "k", "NoSuchKey", ObjectNotFoundError),
            (404, "b", None, "NoSuchBucket", BucketNotFoundError),
            (404, None, None, "NotFound", ErrorResponseError),
            (403, "b", "k", "AccessDenied", AccessDeniedError),
            (400, "b", "k", "InvalidObjectName", ErrorResponseError),
            (405, "b", None, "MethodNotAllowed", ErrorResponseError),
            (501, "b", None, "NotImplemented", ErrorResponseError),
            (500, "b", None, "HTTP500", ErrorResponseError),
        ],
    )
    async def test_empty_body_synthesis(
        self,
        status: int,
        bucket: str | None,
        key: str | None,
        code: str,
        exc_type: type[Exception],
    ) -> None:
        """Empty error bodies (HEAD responses) get a synthesized code."""
        with pytest.raises(exc_type) as exc_info:
            await ResponseHandler().handle(
                _result(status), bucket=bucket, key=key
            )
        assert isinstance(exc_info.value, ErrorResponseError)
        assert exc_info.value.code == code

    async def test_non_xml_body(self) -> None:
        """A non-XML body is kept as raw text on a synthesized error."""
        with pytest.raises(ErrorResponseError) as exc_info:
            await ResponseHandler().handle(
                _result(502, b"Bad Gateway"), bucket="b"
            )
        assert exc_info.value.response.raw == "Bad Gateway"
        assert exc_info.value.code == "HTTP502"

    async def test_missing_bucket_evicts_region(self) -> None:
        """NoSuchBucket drops the bucket from the region cache."""
        cache = BucketRegionCache()
        cache.add("b", "eu-west-1")
        with pytest.raises(BucketNotFoundError):
            await ResponseHandler(cache).handle(_result(404), bucket="b")
        assert "b" not in cache
