# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""HTTP execution and response classification.

``Transport`` moves a ``SignedRequest`` over the wire and returns a
``ResponseResult`` whose body is read only on demand.  ``ResponseHandler``
turns non-2xx results into typed exceptions.  Transport failures are not
raised by ``execute``; they travel in ``ResponseResult.exception`` so the
retry policy can inspect them before the handler raises.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from types import TracebackType
from typing import Protocol

import httpx

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
    TransportError,
    XmlDecodeError,
)
from s3kit.models import ErrorResponse, SignedRequest
from s3kit.regions import BucketRegionCache
from s3kit.xmlcodec import merge_error_headers, parse_error


logger = logging.getLogger(__name__)

_REDIRECT_STATUSES = frozenset({301, 302, 307})

_AUTHORIZATION_CODES = frozenset({"SignatureDoesNotMatch", "InvalidAccessKeyId"})


# ---------------------------------------------------------------------------
# Response result
# ---------------------------------------------------------------------------


class ResponseResult:
    """Outcome of one request execution.

    The body stays unread until ``aread()``, ``text()`` or
    ``aiter_bytes()`` is called, and is decoded to text only when
    ``text()`` asks for it.  ``aclose()`` releases the underlying stream
    exactly once; later calls do nothing.

    Attributes:
        status_code: HTTP status, or 0 when no response was received.
        headers: Case-insensitive response headers.
        exception: Transport failure, if the request produced no response.
        request: The request that produced this result.
    """

    def __init__(
        self,
        *,
        status_code: int = 0,
        headers: Mapping[str, str] | httpx.Headers | None = None,
        content: bytes | None = None,
        response: httpx.Response | None = None,
        exception: TransportError | None = None,
        request: SignedRequest | None = None,
    ) -> None:
        self.status_code = status_code
        self.headers = httpx.Headers(headers or {})
        self.exception = exception
        self.request = request
        self._response = response
        self._content = content
        self._text: str | None = None
        self._closed = False

    @classmethod
    def from_httpx(
        cls, response: httpx.Response, request: SignedRequest | None = None
    ) -> ResponseResult:
        return cls(
            status_code=response.status_code,
            headers=response.headers,
            response=response,
            request=request,
        )

    @classmethod
    def from_exception(
        cls, exception: TransportError, request: SignedRequest | None = None
    ) -> ResponseResult:
        return cls(exception=exception, request=request)

    @property
    def is_success(self) -> bool:
        return self.exception is None and 200 <= self.status_code < 300

    @property
    def closed(self) -> bool:
        return self._closed

    async def aread(self) -> bytes:
        """Read (and cache) the whole body."""
        if self._content is None:
            if self._response is None:
                self._content = b""
            else:
                if self._closed:
                    raise RuntimeError("Response body was already released")
                self._content = await self._response.aread()
        return self._content

    async def text(self) -> str:
        """Body decoded as UTF-8."""
        if self._text is None:
            self._text = (await self.aread()).decode("utf-8", "replace")
        return self._text

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        """Stream the body without buffering it."""
        if self._content is not None or self._response is None:
            content = await self.aread()
            if content:
                yield content
            return
        async for chunk in self._response.aiter_bytes():
            yield chunk

    async def aclose(self) -> None:
        """Release the body stream; idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._response is not None:
            await self._response.aclose()

    async def __aenter__(self) -> ResponseResult:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------


class Transport(Protocol):
    """Executes signed requests."""

    async def execute(self, request: SignedRequest) -> ResponseResult: ...

    async def aclose(self) -> None: ...


class HttpxTransport:
    """Transport backed by ``httpx.AsyncClient``.

    Redirects are never followed: a redirect would carry a signature
    computed for another host.

    Args:
        client: Client to use.  When omitted, one is created (and closed by
            ``aclose()``).
        timeout: Timeout in seconds for a created client.
    """

    def __init__(
        self, client: httpx.AsyncClient | None = None, *, timeout: float = 60.0
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout, follow_redirects=False
        )

    async def execute(self, request: SignedRequest) -> ResponseResult:
        descriptor = request.descriptor
        headers = list(descriptor.headers)
        body = descriptor.body
        if (
            body is not None
            and not isinstance(body, bytes)
            and descriptor.content_length is not None
            and not descriptor.has_header("Content-Length")
        ):
            # Without it httpx falls back to chunked transfer encoding,
            # which S3 rejects for PUT.
            headers.append(("Content-Length", str(descriptor.content_length)))
        http_request = self._client.build_request(
            descriptor.method,
            descriptor.url,
            headers=headers,
            content=body,
        )
        try:
            response = await self._client.send(http_request, stream=True)
        except httpx.TimeoutException as e:
            logger.debug("%s %s timed out", descriptor.method, descriptor.url)
            return ResponseResult.from_exception(
                RequestTimeoutError(f"Request timed out: {e}"), request
            )
        except httpx.TransportError as e:
            logger.debug(
                "%s %s failed: %s", descriptor.method, descriptor.url, e
            )
            return ResponseResult.from_exception(
                ConnectionFailedError(f"Connection failed: {e}"), request
            )
        return ResponseResult.from_httpx(response, request)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# ---------------------------------------------------------------------------
# Response handler
# ---------------------------------------------------------------------------


class ResponseHandler:
    """Classify results and raise typed exceptions for failures.

    Args:
        region_cache: Cache evicted when a bucket turns out not to exist.
    """

    def __init__(self, region_cache: BucketRegionCache | None = None) -> None:
        self._region_cache = region_cache

    async def handle(
        self,
        result: ResponseResult,
        *,
        bucket: str | None = None,
        key: str | None = None,
    ) -> ResponseResult:
        """Return ``result`` if it succeeded, otherwise raise.

        On failure the body is read and the result is closed before the
        exception propagates.

        Args:
            result: Result to classify.
            bucket: Bucket the request addressed, used to synthesize errors
                for empty bodies.
            key: Object key the request addressed.

        Returns:
            The same result, on success.

        Raises:
            TransportError: If no response was received.
            RedirectionError: On 301, 302 or 307.
            ErrorResponseError: Or a subclass, on other failures.
        """
        if result.exception is not None:
            await result.aclose()
            raise result.exception
        if result.is_success:
            return result

        try:
            if result.status_code in _REDIRECT_STATUSES:
                raise RedirectionError(
                    result.status_code, result.headers.get("location")
                )
            body = await result.aread()
        finally:
            await result.aclose()

        if body.strip():
            try:
                error = parse_error(body, result.headers)
            except XmlDecodeError:
                logger.debug(
                    "Non-XML error body (HTTP %d): %r",
                    result.status_code,
                    body[:200],
                )
                error = self._synthesize(result, bucket, key)
                error.raw = body.decode("utf-8", "replace")
        else:
            error = self._synthesize(result, bucket, key)
        raise self._to_exception(error, result.status_code, bucket)

    def _synthesize(
        self, result: ResponseResult, bucket: str | None, key: str | None
    ) -> ErrorResponse:
        """Build an error for a response without an XML body."""
        error = ErrorResponse(bucket_name=bucket or "", key=key or "")
        if result.request is not None:
            error.resource = result.request.descriptor.path
        merge_error_headers(error, result.headers)
        status = result.status_code
        if status == 404:
            if key:
                error.code = "NoSuchKey"
                error.message = "Object does not exist"
            elif bucket:
                error.code = "NoSuchBucket"
                error.message = "Bucket does not exist"
            else:
                error.code = "NotFound"
                error.message = "Resource not found"
        elif status == 403:
            error.code = "AccessDenied"
            error.message = f"Access denied on the resource: {error.resource}"
        elif status == 400 and key:
            error.code = "InvalidObjectName"
            error.message = "Invalid object name"
        elif status == 405:
            error.code = "MethodNotAllowed"
            error.message = "Method not allowed"
        elif status == 501:
            error.code = "NotImplemented"
            error.message = "Not implemented"
        else:
            error.code = f"HTTP{status}"
            error.message = "Unsuccessful response without XML error"
        return error

    def _to_exception(
        self, error: ErrorResponse, status: int, bucket: str | None
    ) -> ErrorResponseError:
        code = error.code
        if status == 404 and code == "NoSuchBucket":
            evicted = error.bucket_name or bucket
            if self._region_cache is not None and evicted:
                self._region_cache.remove(evicted)
            return BucketNotFoundError(error, status)
        if status == 404 and code == "NoSuchKey":
            return ObjectNotFoundError(error, status)
        if status == 403 and code in _AUTHORIZATION_CODES:
            return AuthorizationError(error, status)
        if status == 403:
            return AccessDeniedError(error, status)
        if status == 400 and code == "MalformedXML":
            return MalformedXMLError(error, status)
        return ErrorResponseError(error, status)
