# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS request signing for S3-compatible endpoints.

Supports:

- SigV4 header signing (HMAC-SHA256)
- SigV4 presigned URLs (query-string authentication)
- aws-chunked streaming payload signatures
- Browser POST policy signatures
- Legacy SigV2 (HMAC-SHA1) for old S3-compatible servers

Every signing call takes the timestamp from the caller.  Nothing here reads
the wall clock, so identical inputs always produce identical signatures and
a retried request can be re-signed with the instant of its first attempt.
"""

from __future__ import annotations

import base64
import email.utils
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from s3kit.errors import ClientValidationError, InvalidExpiryError
from s3kit.hashing import DEFAULT_CRYPTO, EMPTY_SHA256, CryptoProvider
from s3kit.models import RequestDescriptor, SignedRequest
from s3kit.regions import DEFAULT_REGION


if TYPE_CHECKING:
    from s3kit.credentials import Credentials


logger = logging.getLogger(__name__)

ALGORITHM_V4 = "AWS4-HMAC-SHA256"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
STREAMING_PAYLOAD = "STREAMING-AWS4-HMAC-SHA256-PAYLOAD"

#: Longest lifetime S3 accepts for a SigV4 presigned URL (7 days).
MAX_PRESIGN_EXPIRY = 7 * 24 * 60 * 60

#: Default aws-chunked frame size.
DEFAULT_CHUNK_SIZE = 64 * 1024

# Headers never included in SignedHeaders.  Proxies and HTTP stacks rewrite
# these, which would invalidate the signature in transit.
IGNORED_HEADERS = frozenset(
    {"authorization", "content-length", "content-type", "user-agent"}
)

_AWS_UNRESERVED = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)

# Query parameters that are part of the SigV2 canonical resource
_V2_SUBRESOURCES = frozenset(
    {
        "acl",
        "cors",
        "delete",
        "lifecycle",
        "location",
        "logging",
        "notification",
        "partNumber",
        "policy",
        "requestPayment",
        "response-cache-control",
        "response-content-disposition",
        "response-content-encoding",
        "response-content-language",
        "response-content-type",
        "response-expires",
        "restore",
        "tagging",
        "torrent",
        "uploadId",
        "uploads",
        "versionId",
        "versioning",
        "versions",
        "website",
    }
)


# ---------------------------------------------------------------------------
# Time formatting
# ---------------------------------------------------------------------------


def _utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=UTC)
    return timestamp.astimezone(UTC)


def amz_date(timestamp: datetime) -> str:
    """``YYYYMMDDTHHMMSSZ`` form used by ``x-amz-date``."""
    return _utc(timestamp).strftime("%Y%m%dT%H%M%SZ")


def scope_date(timestamp: datetime) -> str:
    """``YYYYMMDD`` form used in the credential scope."""
    return _utc(timestamp).strftime("%Y%m%d")


def credential_scope(timestamp: datetime, region: str, service: str) -> str:
    return f"{scope_date(timestamp)}/{region}/{service}/aws4_request"


# ---------------------------------------------------------------------------
# URI encoding (AWS-specific RFC 3986 subset)
# ---------------------------------------------------------------------------


def uri_encode(value: str, *, encode_slash: bool = True) -> str:
    """URI-encode a value using AWS's rules.

    Unreserved characters (``A-Z a-z 0-9 - _ . ~``) pass through; every
    other byte of the UTF-8 encoding becomes ``%XX`` with upper-case hex.

    Args:
        value: String to encode.
        encode_slash: If False, ``/`` is preserved.

    Returns:
        URI-encoded string.
    """
    result: list[str] = []
    for ch in value:
        if ch in _AWS_UNRESERVED:
            result.append(ch)
        elif ch == "/" and not encode_slash:
            result.append("/")
        else:
            result.extend(f"%{b:02X}" for b in ch.encode("utf-8"))
    return "".join(result)


# ---------------------------------------------------------------------------
# Canonical request construction
# ---------------------------------------------------------------------------


def canonical_uri(path: str) -> str:
    """Build the canonical URI for a decoded S3 request path.

    S3 uses single encoding and keeps ``//``, ``.`` and ``..`` segments
    as-is, unlike other services which normalize and double-encode.
    """
    if not path:
        return "/"
    return uri_encode(path, encode_slash=False)


def canonical_query_string(query: Iterable[tuple[str, str]]) -> str:
    """Build the canonical query string.

    Names and values are encoded, then pairs are sorted by encoded name and
    then by encoded value.  ``X-Amz-Signature`` is never part of it.
    """
    encoded = sorted(
        (uri_encode(k), uri_encode(v))
        for k, v in query
        if k != "X-Amz-Signature"
    )
    return "&".join(f"{k}={v}" for k, v in encoded)


def signable_headers(
    headers: Iterable[tuple[str, str]],
) -> dict[str, str]:
    """Lower-cased headers that take part in the signature.

    Repeated headers are joined with commas, as HTTP allows.
    """
    result: dict[str, str] = {}
    for name, value in headers:
        lower = name.lower()
        if lower in IGNORED_HEADERS:
            continue
        trimmed = " ".join(value.split())
        if lower in result:
            result[lower] = f"{result[lower]},{trimmed}"
        else:
            result[lower] = trimmed
    return result


def canonical_headers_string(headers: dict[str, str]) -> str:
    """Canonical headers block: sorted ``name:value`` lines.

    Args:
        headers: Lower-cased signable headers.

    Returns:
        Each line ``name:value`` followed by a newline, values trimmed and
        with inner whitespace runs collapsed.
    """
    return "".join(
        f"{name}:{' '.join(headers[name].split())}\n"
        for name in sorted(headers)
    )


def build_canonical_request(
    method: str,
    path: str,
    query: Iterable[tuple[str, str]],
    headers: dict[str, str],
    payload_hash: str,
) -> tuple[str, str]:
    """Build the canonical request.

    Args:
        method: HTTP method.
        path: Decoded request path.
        query: Query parameter pairs.
        headers: Lower-cased signable headers.
        payload_hash: Value of ``x-amz-content-sha256``.

    Returns:
        Tuple of (canonical request, semicolon-joined signed header names).
    """
    signed_headers = ";".join(sorted(headers))
    canonical = "\n".join(
        [
            method.upper(),
            canonical_uri(path),
            canonical_query_string(query),
            canonical_headers_string(headers),
            signed_headers,
            payload_hash,
        ]
    )
    return canonical, signed_headers


# ---------------------------------------------------------------------------
# Signer
# ---------------------------------------------------------------------------


class Signer:
    """Signs request descriptors with a pluggable crypto provider.

    Args:
        crypto: Digest provider; the default uses ``hashlib``.
    """

    def __init__(self, crypto: CryptoProvider = DEFAULT_CRYPTO) -> None:
        self._crypto = crypto

    # -- primitives --------------------------------------------------------

    def _sha256_hex(self, data: bytes) -> str:
        h = self._crypto.sha256()
        h.update(data)
        return h.digest().hex()

    def _hmac(self, key: bytes, msg: str) -> bytes:
        return self._crypto.hmac_sha256(key, msg.encode("utf-8"))

    def signing_key(
        self, secret_key: str, date: str, region: str, service: str
    ) -> bytes:
        """Derive the SigV4 signing key.

        Args:
            secret_key: Secret access key.
            date: Date string (YYYYMMDD).
            region: Region name.
            service: Service name.

        Returns:
            Derived signing key bytes.
        """
        k_date = self._hmac(("AWS4" + secret_key).encode("utf-8"), date)
        k_region = self._hmac(k_date, region)
        k_service = self._hmac(k_region, service)
        return self._hmac(k_service, "aws4_request")

    def sign_string(self, signing_key: bytes, string_to_sign: str) -> str:
        """Hex HMAC-SHA256 signature of ``string_to_sign``."""
        return self._hmac(signing_key, string_to_sign).hex()

    def string_to_sign(
        self, timestamp: datetime, scope: str, canonical_request: str
    ) -> str:
        return "\n".join(
            [
                ALGORITHM_V4,
                amz_date(timestamp),
                scope,
                self._sha256_hex(canonical_request.encode("utf-8")),
            ]
        )

    def _payload_hash(
        self, descriptor: RequestDescriptor, unsigned_payload: bool
    ) -> str:
        if unsigned_payload:
            return UNSIGNED_PAYLOAD
        existing = descriptor.header("x-amz-content-sha256")
        if existing:
            return existing
        if descriptor.body is None:
            return EMPTY_SHA256
        if isinstance(descriptor.body, bytes):
            return self._sha256_hex(descriptor.body)
        return UNSIGNED_PAYLOAD

    # -- SigV4 headers -----------------------------------------------------

    def sign_v4(
        self,
        descriptor: RequestDescriptor,
        credentials: Credentials,
        region: str | None,
        timestamp: datetime,
        *,
        unsigned_payload: bool = False,
    ) -> SignedRequest:
        """Sign a request with SigV4 ``Authorization`` header.

        The payload hash is the SHA-256 of a buffered body, the empty-body
        hash when there is no body, or ``UNSIGNED-PAYLOAD`` for streams.  A
        caller that already knows a stream's digest may pass it in an
        ``x-amz-content-sha256`` header.

        Args:
            descriptor: Request to sign.
            credentials: Signing credentials.  Anonymous credentials leave
                the request unsigned.
            region: Signing region; falls back to ``descriptor.region``.
            timestamp: Signing instant.
            unsigned_payload: Force ``UNSIGNED-PAYLOAD``.

        Returns:
            The signed request.
        """
        region = region or descriptor.region or DEFAULT_REGION
        payload_hash = self._payload_hash(descriptor, unsigned_payload)
        injected = {
            "Host": descriptor.host_header,
            "x-amz-date": amz_date(timestamp),
            "x-amz-content-sha256": payload_hash,
        }
        if credentials.session_token:
            injected["x-amz-security-token"] = credentials.session_token
        prepared = descriptor.with_headers(injected)
        if credentials.is_anonymous:
            return SignedRequest(descriptor=prepared, timestamp=timestamp)

        headers = signable_headers(prepared.headers)
        canonical, signed_headers = build_canonical_request(
            prepared.method,
            prepared.path,
            prepared.query,
            headers,
            payload_hash,
        )
        scope = credential_scope(timestamp, region, descriptor.service)
        to_sign = self.string_to_sign(timestamp, scope, canonical)
        key = self.signing_key(
            credentials.secret_key,
            scope_date(timestamp),
            region,
            descriptor.service,
        )
        signature = self.sign_string(key, to_sign)
        logger.debug("Canonical request:\n%s", canonical)
        logger.debug("String to sign:\n%s", to_sign)

        authorization = (
            f"{ALGORITHM_V4} Credential={credentials.access_key}/{scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        return SignedRequest(
            descriptor=prepared.with_headers({"Authorization": authorization}),
            timestamp=timestamp,
            canonical_request=canonical,
            string_to_sign=to_sign,
            signature=signature,
        )

    # -- aws-chunked streaming ---------------------------------------------

    def sign_v4_streaming(
        self,
        descriptor: RequestDescriptor,
        credentials: Credentials,
        region: str | None,
        timestamp: datetime,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> SignedRequest:
        """Sign a streaming upload with per-chunk signatures.

        The returned request's body is the aws-chunked encoding of the
        original stream; each frame is signed with a signature chained from
        the seed (``Authorization``) signature.

        Raises:
            ClientValidationError: If the body length is unknown.
        """
        if descriptor.content_length is None:
            raise ClientValidationError(
                "aws-chunked signing requires a known content length"
            )
        if credentials.is_anonymous:
            return self.sign_v4(descriptor, credentials, region, timestamp)
        region = region or descriptor.region or DEFAULT_REGION
        decoded_length = descriptor.content_length
        prepared = replace(
            descriptor.with_headers(
                {
                    "Content-Encoding": "aws-chunked",
                    "x-amz-decoded-content-length": str(decoded_length),
                    "x-amz-content-sha256": STREAMING_PAYLOAD,
                }
            ),
            content_length=chunked_content_length(decoded_length, chunk_size),
        )
        seed = self.sign_v4(prepared, credentials, region, timestamp)
        body = descriptor.body
        source: AsyncIterable[bytes]
        if body is None:
            source = _empty_stream()
        elif isinstance(body, bytes):
            source = _bytes_stream(body)
        else:
            source = body
        chunked = ChunkedPayloadSigner(
            source,
            signer=self,
            signing_key=self.signing_key(
                credentials.secret_key,
                scope_date(timestamp),
                region,
                descriptor.service,
            ),
            seed_signature=seed.signature,
            timestamp=timestamp,
            scope=credential_scope(timestamp, region, descriptor.service),
            chunk_size=chunk_size,
        )
        return replace(seed, descriptor=replace(seed.descriptor, body=chunked))

    def chunk_string_to_sign(
        self,
        timestamp: datetime,
        scope: str,
        previous_signature: str,
        chunk: bytes,
    ) -> str:
        """String to sign for one aws-chunked frame."""
        return "\n".join(
            [
                "AWS4-HMAC-SHA256-PAYLOAD",
                amz_date(timestamp),
                scope,
                previous_signature,
                EMPTY_SHA256,
                self._sha256_hex(chunk),
            ]
        )

    # -- presigned URLs ----------------------------------------------------

    def presign_v4(
        self,
        descriptor: RequestDescriptor,
        credentials: Credentials,
        region: str | None,
        timestamp: datetime,
        expires: int | timedelta | datetime,
    ) -> SignedRequest:
        """Build a presigned URL.

        Args:
            descriptor: Request to presign (body is ignored).
            credentials: Signing credentials.
            region: Signing region; falls back to ``descriptor.region``.
            timestamp: Signing instant.
            expires: Lifetime in seconds, as a ``timedelta``, or an absolute
                expiry instant.

        Returns:
            The signed request; ``url`` carries the ``X-Amz-*`` parameters
            and the signature.

        Raises:
            InvalidExpiryError: If the lifetime is not positive, the expiry
                instant is not after ``timestamp``, or the lifetime exceeds
                seven days.
        """
        seconds = presign_expiry_seconds(expires, timestamp)
        region = region or descriptor.region or DEFAULT_REGION
        scope = credential_scope(timestamp, region, descriptor.service)
        prepared = descriptor.with_headers({"Host": descriptor.host_header})
        headers = signable_headers(prepared.headers)
        signed_headers = ";".join(sorted(headers))

        params = [
            ("X-Amz-Algorithm", ALGORITHM_V4),
            ("X-Amz-Credential", f"{credentials.access_key}/{scope}"),
            ("X-Amz-Date", amz_date(timestamp)),
            ("X-Amz-Expires", str(seconds)),
            ("X-Amz-SignedHeaders", signed_headers),
        ]
        if credentials.session_token:
            params.append(("X-Amz-Security-Token", credentials.session_token))
        prepared = prepared.with_query(params)

        canonical, _ = build_canonical_request(
            prepared.method,
            prepared.path,
            prepared.query,
            headers,
            UNSIGNED_PAYLOAD,
        )
        to_sign = self.string_to_sign(timestamp, scope, canonical)
        key = self.signing_key(
            credentials.secret_key,
            scope_date(timestamp),
            region,
            descriptor.service,
        )
        signature = self.sign_string(key, to_sign)
        logger.debug("Presign canonical request:\n%s", canonical)
        return SignedRequest(
            descriptor=replace(
                prepared.with_query([("X-Amz-Signature", signature)]),
                body=None,
                content_length=0,
            ),
            timestamp=timestamp,
            canonical_request=canonical,
            string_to_sign=to_sign,
            signature=signature,
        )

    # -- POST policy -------------------------------------------------------

    def presign_post_policy(
        self,
        policy_b64: str,
        credentials: Credentials,
        region: str,
        timestamp: datetime,
        service: str = "s3",
    ) -> str:
        """Sign a base64-encoded POST policy document.

        Returns:
            Hex signature for the ``x-amz-signature`` form field.
        """
        key = self.signing_key(
            credentials.secret_key, scope_date(timestamp), region, service
        )
        return self.sign_string(key, policy_b64)

    # -- SigV2 -------------------------------------------------------------

    def sign_v2(
        self,
        descriptor: RequestDescriptor,
        credentials: Credentials,
        timestamp: datetime,
        *,
        resource_prefix: str = "",
    ) -> SignedRequest:
        """Sign with legacy SigV2 (``Authorization: AWS key:signature``).

        Args:
            descriptor: Request to sign.
            credentials: Signing credentials.
            timestamp: Value for the ``Date`` header.
            resource_prefix: ``/bucket`` for virtual-host-style requests,
                whose path does not name the bucket.

        Returns:
            The signed request (base64 signature).
        """
        injected = {
            "Host": descriptor.host_header,
            "Date": email.utils.format_datetime(_utc(timestamp), usegmt=True),
        }
        if credentials.session_token:
            injected["x-amz-security-token"] = credentials.session_token
        prepared = descriptor.with_headers(injected)
        if credentials.is_anonymous:
            return SignedRequest(descriptor=prepared, timestamp=timestamp)

        amz_headers: dict[str, str] = {}
        for name, value in prepared.headers:
            lower = name.lower()
            if lower.startswith("x-amz-"):
                amz_headers[lower] = " ".join(value.split())
        amz_lines = "".join(
            f"{name}:{amz_headers[name]}\n" for name in sorted(amz_headers)
        )
        subresources = sorted(
            (k, v) for k, v in prepared.query if k in _V2_SUBRESOURCES
        )
        resource = resource_prefix + prepared.encoded_path
        if subresources:
            resource += "?" + "&".join(
                f"{k}={v}" if v else k for k, v in subresources
            )
        to_sign = "\n".join(
            [
                prepared.method,
                prepared.header("Content-MD5") or "",
                prepared.header("Content-Type") or "",
                injected["Date"],
                amz_lines + resource,
            ]
        )
        digest = self._crypto.hmac_sha1(
            credentials.secret_key.encode("utf-8"), to_sign.encode("utf-8")
        )
        signature = base64.b64encode(digest).decode("ascii")
        return SignedRequest(
            descriptor=prepared.with_headers(
                {"Authorization": f"AWS {credentials.access_key}:{signature}"}
            ),
            timestamp=timestamp,
            string_to_sign=to_sign,
            signature=signature,
        )


def presign_expiry_seconds(
    expires: int | timedelta | datetime, timestamp: datetime
) -> int:
    """Normalize and validate a presign lifetime.

    Raises:
        InvalidExpiryError: If the lifetime is out of range.
    """
    if isinstance(expires, datetime):
        delta = (_utc(expires) - _utc(timestamp)).total_seconds()
        if delta <= 0:
            raise InvalidExpiryError(
                f"Expiry {expires.isoformat()} is not after signing time "
                f"{timestamp.isoformat()}"
            )
        seconds = int(delta)
    elif isinstance(expires, timedelta):
        seconds = int(expires.total_seconds())
    else:
        seconds = int(expires)
    if seconds <= 0:
        raise InvalidExpiryError(f"Expiry must be positive, got {seconds}s")
    if seconds > MAX_PRESIGN_EXPIRY:
        raise InvalidExpiryError(
            f"Expiry {seconds}s exceeds maximum of {MAX_PRESIGN_EXPIRY}s"
        )
    return seconds


# ---------------------------------------------------------------------------
# aws-chunked framing
# ---------------------------------------------------------------------------


def _frame_length(size: int) -> int:
    # hex(size);chunk-signature=<64 hex>\r\n<data>\r\n
    return len(f"{size:x}") + len(";chunk-signature=") + 64 + 2 + size + 2


def chunked_content_length(decoded_length: int, chunk_size: int) -> int:
    """Encoded length of an aws-chunked body.

    Args:
        decoded_length: Length of the raw payload.
        chunk_size: Frame size used by ``ChunkedPayloadSigner``.

    Returns:
        Total bytes on the wire, including the terminal zero frame.
    """
    full, remainder = divmod(decoded_length, chunk_size)
    total = full * _frame_length(chunk_size)
    if remainder:
        total += _frame_length(remainder)
    return total + _frame_length(0)


class ChunkedPayloadSigner:
    """Encode an async byte stream as signed aws-chunked frames.

    Incoming chunks are regrouped into frames of exactly ``chunk_size``
    bytes (the last one shorter), so the wire length always matches
    ``chunked_content_length``.  Each frame's signature covers the previous
    one, starting from the seed signature, and a zero-length frame closes
    the stream.
    """

    def __init__(
        self,
        source: AsyncIterable[bytes],
        *,
        signer: Signer,
        signing_key: bytes,
        seed_signature: str,
        timestamp: datetime,
        scope: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialize the chunk signer.

        Args:
            source: Raw payload stream.
            signer: Signer providing the digest primitives.
            signing_key: Derived SigV4 signing key.
            seed_signature: Signature of the request headers.
            timestamp: Signing instant (same as the seed).
            scope: Credential scope (same as the seed).
            chunk_size: Frame payload size.
        """
        self._source = source
        self._signer = signer
        self._signing_key = signing_key
        self._previous = seed_signature
        self._timestamp = timestamp
        self._scope = scope
        self._chunk_size = chunk_size

    def _frame(self, data: bytes) -> bytes:
        to_sign = self._signer.chunk_string_to_sign(
            self._timestamp, self._scope, self._previous, data
        )
        signature = self._signer.sign_string(self._signing_key, to_sign)
        self._previous = signature
        header = f"{len(data):x};chunk-signature={signature}\r\n"
        return header.encode("ascii") + data + b"\r\n"

    async def __aiter__(self) -> AsyncIterator[bytes]:
        buffer = bytearray()
        async for chunk in self._source:
            buffer.extend(chunk)
            while len(buffer) >= self._chunk_size:
                frame = bytes(buffer[: self._chunk_size])
                del buffer[: self._chunk_size]
                yield self._frame(frame)
        if buffer:
            yield self._frame(bytes(buffer))
        yield self._frame(b"")


async def _empty_stream() -> AsyncIterator[bytes]:
    return
    yield  # pragma: no cover


async def _bytes_stream(data: bytes) -> AsyncIterator[bytes]:
    yield data


# ---------------------------------------------------------------------------
# POST policy
# ---------------------------------------------------------------------------


class PostPolicy:
    """Conditions for a browser-based POST upload.

    Example:
        policy = PostPolicy("photos", expiration)
        policy.set_key_starts_with("uploads/")
        policy.set_content_length_range(1, 10 * 1024 * 1024)
    """

    def __init__(self, bucket: str, expiration: datetime) -> None:
        self.bucket = bucket
        self.expiration = expiration
        self.key: str | None = None
        self._conditions: list[list[str | int]] = [
            ["eq", "$bucket", bucket]
        ]
        self.form_data: dict[str, str] = {"bucket": bucket}

    def set_key(self, key: str) -> None:
        if not key:
            raise ClientValidationError("Object key cannot be empty")
        self.key = key
        self._conditions.append(["eq", "$key", key])
        self.form_data["key"] = key

    def set_key_starts_with(self, prefix: str) -> None:
        if not prefix:
            raise ClientValidationError("Object key prefix cannot be empty")
        self.key = prefix
        self._conditions.append(["starts-with", "$key", prefix])
        self.form_data["key"] = prefix

    def set_content_type(self, content_type: str) -> None:
        self._conditions.append(["eq", "$Content-Type", content_type])
        self.form_data["Content-Type"] = content_type

    def set_content_length_range(self, low: int, high: int) -> None:
        if low < 0 or high < 0:
            raise ClientValidationError("Negative content length range")
        if low > high:
            raise ClientValidationError(
                "Content length range start is greater than end"
            )
        self._conditions.append(["content-length-range", low, high])

    def set_success_action_status(self, status: int | str) -> None:
        self._conditions.append(["eq", "$success_action_status", str(status)])
        self.form_data["success_action_status"] = str(status)

    def set_user_metadata(self, name: str, value: str) -> None:
        header = f"x-amz-meta-{name}"
        self._conditions.append(["eq", f"${header}", value])
        self.form_data[header] = value

    def sign(
        self,
        signer: Signer,
        credentials: Credentials,
        region: str,
        timestamp: datetime,
    ) -> dict[str, str]:
        """Add signing conditions, encode and sign the policy.

        Returns:
            Form fields to submit alongside the file.

        Raises:
            ClientValidationError: If no key condition was set.
            InvalidExpiryError: If the expiration is not after ``timestamp``.
        """
        if self.key is None:
            raise ClientValidationError("POST policy requires a key condition")
        if _utc(self.expiration) <= _utc(timestamp):
            raise InvalidExpiryError("POST policy expiration is in the past")
        scope = credential_scope(timestamp, region, "s3")
        credential = f"{credentials.access_key}/{scope}"
        conditions = [
            *self._conditions,
            ["eq", "$x-amz-algorithm", ALGORITHM_V4],
            ["eq", "$x-amz-credential", credential],
            ["eq", "$x-amz-date", amz_date(timestamp)],
        ]
        if credentials.session_token:
            conditions.append(
                ["eq", "$x-amz-security-token", credentials.session_token]
            )
        document = {
            "expiration": _utc(self.expiration).strftime(
                "%Y-%m-%dT%H:%M:%S.000Z"
            ),
            "conditions": conditions,
        }
        policy_b64 = base64.b64encode(
            json.dumps(document, separators=(",", ":")).encode("utf-8")
        ).decode("ascii")
        fields = dict(self.form_data)
        fields.update(
            {
                "policy": policy_b64,
                "x-amz-algorithm": ALGORITHM_V4,
                "x-amz-credential": credential,
                "x-amz-date": amz_date(timestamp),
                "x-amz-signature": signer.presign_post_policy(
                    policy_b64, credentials, region, timestamp
                ),
            }
        )
        if credentials.session_token:
            fields["x-amz-security-token"] = credentials.session_token
        return fields
