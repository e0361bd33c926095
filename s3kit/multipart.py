# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Multipart upload planning and orchestration.

Size rules (S3 limits):

- at most ``MAX_PARTS`` parts, numbered 1..10000;
- every part except the last at least ``MIN_PART_SIZE`` (5 MiB);
- no part larger than ``MAX_PART_SIZE`` (5 GiB);
- no object larger than ``MAX_OBJECT_SIZE`` (5 TiB).

All of them are checked before any request is sent.

``MultipartUploader`` drives one upload through its session states.  Part
uploads are independent and may run concurrently; ``complete()`` is only
called with parts whose results the caller has already observed.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from collections.abc import (
    AsyncIterable,
    AsyncIterator,
    Callable,
    Mapping,
    Sequence,
)
from typing import NamedTuple, Protocol

from s3kit.errors import (
    EntityTooLargeError,
    ErrorResponseError,
    InvalidPartError,
    InvalidPartSizeError,
    InvalidSessionStateError,
    S3KitError,
)
from s3kit.hashing import DEFAULT_CRYPTO, CryptoProvider, StreamHasher, md5_hex
from s3kit.models import (
    CompleteMultipartUploadResult,
    ErrorResponse,
    MultipartUploadSession,
    Part,
    UploadState,
    strip_etag,
)
from s3kit.transport import ResponseResult
from s3kit.validation import validate_bucket_name, validate_object_name
from s3kit.xmlcodec import (
    build_complete_multipart_upload,
    parse_complete_multipart_upload,
    parse_error,
    parse_initiate_multipart_upload,
    root_name,
)


logger = logging.getLogger(__name__)

MAX_PARTS = 10_000
MIN_PART_SIZE = 5 * 1024 * 1024
MAX_PART_SIZE = 5 * 1024 * 1024 * 1024
MAX_OBJECT_SIZE = 5 * 1024 * 1024 * 1024 * 1024

#: Part size for streams of unknown length when none is configured.
DEFAULT_STREAM_PART_SIZE = 64 * 1024 * 1024

BodyFactory = Callable[[], AsyncIterable[bytes]]

_MD5_ETAG_RE = re.compile(r"[0-9a-fA-F]{32}")


class RequestExecutor(Protocol):
    """Sends one signed, retried and classified request.

    Implemented by ``S3Client.request``.  Returns only successful results;
    failures raise typed exceptions.
    """

    async def request(
        self,
        method: str,
        *,
        bucket: str | None = None,
        key: str | None = None,
        query: Sequence[tuple[str, str]] = (),
        headers: Mapping[str, str] | None = None,
        body: bytes | BodyFactory | None = None,
        content_length: int | None = None,
        idempotent: bool | None = None,
    ) -> ResponseResult: ...


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


class PartPlan(NamedTuple):
    """Byte range of one planned part."""

    part_number: int
    offset: int
    size: int


def optimal_part_size(total_size: int) -> int:
    """Smallest part size that fits ``total_size`` in ``MAX_PARTS`` parts.

    The size is rounded up to a multiple of ``MIN_PART_SIZE``.

    Raises:
        EntityTooLargeError: If the object exceeds ``MAX_OBJECT_SIZE``.
    """
    if total_size > MAX_OBJECT_SIZE:
        raise EntityTooLargeError(
            f"Object size {total_size} exceeds maximum of {MAX_OBJECT_SIZE}"
        )
    size = math.ceil(max(total_size, 0) / MAX_PARTS)
    size = math.ceil(size / MIN_PART_SIZE) * MIN_PART_SIZE
    return max(size, MIN_PART_SIZE)


def validate_part_size(part_size: int) -> None:
    """Raise ``InvalidPartSizeError`` if a target part size is out of range."""
    if part_size < MIN_PART_SIZE:
        raise InvalidPartSizeError(
            f"Part size {part_size} is below minimum of {MIN_PART_SIZE}"
        )
    if part_size > MAX_PART_SIZE:
        raise InvalidPartSizeError(
            f"Part size {part_size} exceeds maximum of {MAX_PART_SIZE}"
        )


def plan_parts(total_size: int, part_size: int) -> list[PartPlan]:
    """Split an object of known size into parts.

    All parts but the last are exactly ``part_size`` bytes; for ``N``
    parts, ``(N-1)*part_size < total_size <= N*part_size``.  An empty
    object is one empty part.

    Args:
        total_size: Object size in bytes.
        part_size: Target part size.

    Returns:
        The planned parts in order.

    Raises:
        InvalidPartSizeError: If ``part_size`` is out of range or
            ``total_size`` is negative.
        EntityTooLargeError: If the object is too large overall or needs
            more than ``MAX_PARTS`` parts at this part size.
    """
    if total_size < 0:
        raise InvalidPartSizeError(f"Object size cannot be negative: {total_size}")
    validate_part_size(part_size)
    if total_size > MAX_OBJECT_SIZE:
        raise EntityTooLargeError(
            f"Object size {total_size} exceeds maximum of {MAX_OBJECT_SIZE}"
        )
    count = max(1, math.ceil(total_size / part_size))
    if count > MAX_PARTS:
        raise EntityTooLargeError(
            f"Object size {total_size} needs {count} parts of {part_size} "
            f"bytes; the maximum is {MAX_PARTS} parts"
        )
    return [
        PartPlan(
            part_number=i + 1,
            offset=i * part_size,
            size=min(part_size, total_size - i * part_size),
        )
        for i in range(count)
    ]


def validate_part_number(part_number: int) -> None:
    if not 1 <= part_number <= MAX_PARTS:
        raise InvalidPartError(
            f"Part number {part_number} outside 1..{MAX_PARTS}"
        )


def validate_parts(parts: Sequence[Part]) -> None:
    """Check a completion manifest.

    Part numbers must be strictly increasing (gaps are allowed).  Every
    part but the last must meet ``MIN_PART_SIZE`` when its size is known
    (non-zero).

    Raises:
        InvalidPartError: On an empty list, duplicate or unordered numbers,
            or numbers out of range.
        InvalidPartSizeError: On an undersized non-final part.
    """
    if not parts:
        raise InvalidPartError("Cannot complete an upload without parts")
    seen: set[int] = set()
    previous = 0
    for index, part in enumerate(parts):
        validate_part_number(part.part_number)
        if part.part_number in seen:
            raise InvalidPartError(f"Duplicate part number {part.part_number}")
        if part.part_number <= previous:
            raise InvalidPartError(
                f"Part numbers must be increasing: {part.part_number} "
                f"after {previous}"
            )
        is_last = index == len(parts) - 1
        if not is_last and 0 < part.size < MIN_PART_SIZE:
            raise InvalidPartSizeError(
                f"Part {part.part_number} is {part.size} bytes; all parts "
                f"but the last must be at least {MIN_PART_SIZE}"
            )
        seen.add(part.part_number)
        previous = part.part_number


async def iter_parts(
    source: AsyncIterable[bytes], part_size: int
) -> AsyncIterator[tuple[int, bytes, bool]]:
    """Regroup a byte stream into ``(part_number, data, is_last)`` parts.

    One full part is held back until more data (or the end of the stream)
    shows whether it is the last.  An empty stream yields one empty part.
    """
    buffer = bytearray()
    held: bytes | None = None
    number = 0
    async for chunk in source:
        buffer.extend(chunk)
        while len(buffer) >= part_size:
            if held is not None:
                number += 1
                yield number, held, False
            held = bytes(buffer[:part_size])
            del buffer[:part_size]
    if held is not None:
        number += 1
        yield number, held, not buffer
    if buffer or number == 0:
        number += 1
        yield number, bytes(buffer), True


# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------


def etag_is_md5(etag: str, headers: Mapping[str, str]) -> bool:
    """True if ``etag`` should equal the hex MD5 of the uploaded bytes.

    That holds for plain and SSE-S3 uploads.  KMS and customer-key
    encryption produce opaque ETags, and some compatible servers return
    ETags that are not hex digests at all.
    """
    if not _MD5_ETAG_RE.fullmatch(etag):
        return False
    if headers.get("x-amz-server-side-encryption-customer-algorithm"):
        return False
    sse = headers.get("x-amz-server-side-encryption", "")
    return not sse.startswith("aws:kms")


def verify_etag(
    etag: str,
    digest_hex: str,
    headers: Mapping[str, str],
    *,
    bucket: str,
    key: str,
    status_code: int,
) -> None:
    """Raise ``ErrorResponseError`` (``BadDigest``) on an MD5 mismatch.

    Args:
        etag: Quote-stripped ETag returned by the server.
        digest_hex: Hex MD5 of the bytes that were sent.
        headers: Response headers.
        bucket: Target bucket, for the error.
        key: Target key, for the error.
        status_code: Response status, for the error.
    """
    if not etag_is_md5(etag, headers) or etag.lower() == digest_hex:
        return
    raise ErrorResponseError(
        ErrorResponse(
            code="BadDigest",
            message=(
                f"ETag {etag} does not match MD5 {digest_hex} of the "
                "uploaded data"
            ),
            request_id=headers.get("x-amz-request-id", ""),
            bucket_name=bucket,
            key=key,
        ),
        status_code,
    )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class MultipartUploader:
    """Drives multipart uploads through a request executor.

    Args:
        executor: Sends requests (normally the owning ``S3Client``).
        max_concurrency: Parallel part uploads in ``upload_stream``.
        crypto: Digest provider for part checksums.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        *,
        max_concurrency: int = 4,
        crypto: CryptoProvider = DEFAULT_CRYPTO,
    ) -> None:
        self._executor = executor
        self._max_concurrency = max_concurrency
        self._crypto = crypto

    async def initiate(
        self,
        bucket: str,
        key: str,
        metadata: Mapping[str, str] | None = None,
        *,
        content_type: str | None = None,
    ) -> MultipartUploadSession:
        """Start an upload and return its session.

        Args:
            bucket: Target bucket.
            key: Target key.
            metadata: User metadata (``x-amz-meta-`` prefix added when
                missing) or raw ``x-amz-*`` headers.
            content_type: Object content type.

        Raises:
            InvalidBucketNameError: Before any request is sent.
            InvalidObjectNameError: Before any request is sent.
        """
        validate_bucket_name(bucket)
        validate_object_name(key)
        headers = metadata_headers(metadata)
        if content_type:
            headers["Content-Type"] = content_type
        result = await self._executor.request(
            "POST",
            bucket=bucket,
            key=key,
            query=[("uploads", "")],
            headers=headers,
            idempotent=False,
        )
        async with result:
            initiated = parse_initiate_multipart_upload(await result.aread())
        logger.debug(
            "Initiated upload %s for %s/%s", initiated.upload_id, bucket, key
        )
        return MultipartUploadSession(
            bucket=bucket, key=key, upload_id=initiated.upload_id
        )

    async def upload_part(
        self,
        session: MultipartUploadSession,
        part_number: int,
        data: bytes | BodyFactory,
        *,
        size: int | None = None,
        is_last: bool = False,
    ) -> Part:
        """Upload one part and record it on the session.

        Args:
            session: Session from ``initiate``.
            part_number: 1..10000.
            data: Part bytes, or a factory returning a fresh stream of them
                (called again for each retry attempt).
            size: Part size; required when ``data`` is a factory.
            is_last: Final part, exempt from the minimum size.

        Returns:
            The uploaded part with its quote-stripped ETag.

        Raises:
            InvalidPartError: Part number out of range.
            InvalidPartSizeError: Size out of range.
            InvalidSessionStateError: Session is completing or finished.
            ErrorResponseError: If the returned ETag contradicts the MD5 of
                the bytes sent (code ``BadDigest``).
        """
        if session.state not in (
            UploadState.INITIATED,
            UploadState.UPLOADING_PARTS,
        ):
            raise InvalidSessionStateError(
                f"Cannot upload parts to upload {session.upload_id} in "
                f"state {session.state.value}"
            )
        validate_part_number(part_number)
        if isinstance(data, bytes):
            size = len(data)
        elif size is None:
            raise InvalidPartSizeError("size is required for streamed parts")
        if size > MAX_PART_SIZE:
            raise InvalidPartSizeError(
                f"Part {part_number} is {size} bytes; maximum is "
                f"{MAX_PART_SIZE}"
            )
        if size < MIN_PART_SIZE and not is_last:
            raise InvalidPartSizeError(
                f"Part {part_number} is {size} bytes; only the last part "
                f"may be smaller than {MIN_PART_SIZE}"
            )

        hashers: list[StreamHasher] = []
        body = data if isinstance(data, bytes) else self._hashed(data, hashers)
        result = await self._executor.request(
            "PUT",
            bucket=session.bucket,
            key=session.key,
            query=[
                ("partNumber", str(part_number)),
                ("uploadId", session.upload_id),
            ],
            body=body,
            content_length=size,
        )
        async with result:
            etag = strip_etag(result.headers.get("etag"))
        if not etag:
            raise ErrorResponseError(
                ErrorResponse(
                    code="MissingETag",
                    message=f"No ETag returned for part {part_number}",
                    bucket_name=session.bucket,
                    key=session.key,
                ),
                result.status_code,
            )
        if isinstance(data, bytes):
            digest: str | None = md5_hex(data, self._crypto)
        else:
            # last stream handed out = the attempt that succeeded
            hasher = hashers[-1] if hashers else None
            digest = hasher.md5_hex if hasher and hasher.finished else None
        if digest is not None:
            verify_etag(
                etag,
                digest,
                result.headers,
                bucket=session.bucket,
                key=session.key,
                status_code=result.status_code,
            )
        part = Part(part_number=part_number, etag=etag, size=size)
        session.record_part(part)
        logger.debug(
            "Uploaded part %d (%d bytes) of %s", part_number, size, session.upload_id
        )
        return part

    def _hashed(
        self, factory: BodyFactory, hashers: list[StreamHasher]
    ) -> BodyFactory:
        """Wrap ``factory`` so each stream it returns is MD5-digested."""

        def hashed() -> AsyncIterable[bytes]:
            hasher = StreamHasher(
                factory(), sha256=False, md5=True, crypto=self._crypto
            )
            hashers.append(hasher)
            return hasher

        return hashed

    async def complete(
        self,
        session: MultipartUploadSession,
        parts: Sequence[Part] | None = None,
    ) -> CompleteMultipartUploadResult:
        """Assemble the object from ``parts``.

        Args:
            session: Session to complete.
            parts: Parts in increasing part-number order.  Defaults to the
                parts recorded on the session.

        Raises:
            InvalidPartError: If the part list is invalid (no request sent).
            ErrorResponseError: If the server rejects the completion,
                including errors reported inside a 200 response.
        """
        if parts is None:
            parts = session.parts
        validate_parts(parts)
        session.transition(UploadState.COMPLETING)
        try:
            result = await self._executor.request(
                "POST",
                bucket=session.bucket,
                key=session.key,
                query=[("uploadId", session.upload_id)],
                headers={"Content-Type": "application/xml"},
                body=build_complete_multipart_upload(parts),
                idempotent=False,
            )
            async with result:
                body = await result.aread()
                # S3 can report a failed completion inside a 200 response
                if root_name(body) == "Error":
                    raise ErrorResponseError(
                        parse_error(body, result.headers), result.status_code
                    )
                completed = parse_complete_multipart_upload(body)
        except BaseException:
            session.transition(UploadState.UPLOADING_PARTS)
            raise
        session.transition(UploadState.COMPLETED)
        logger.info(
            "Completed upload %s: %s/%s (%d parts)",
            session.upload_id,
            session.bucket,
            session.key,
            len(parts),
        )
        return completed

    async def abort(self, session: MultipartUploadSession) -> None:
        """Abort the upload, best-effort.

        Server and transport failures are logged and swallowed; the session
        is marked aborted either way.

        Raises:
            InvalidSessionStateError: If the upload already completed.
        """
        if session.state == UploadState.ABORTED:
            return
        if session.state == UploadState.COMPLETED:
            raise InvalidSessionStateError(
                f"Upload {session.upload_id} already completed"
            )
        try:
            result = await self._executor.request(
                "DELETE",
                bucket=session.bucket,
                key=session.key,
                query=[("uploadId", session.upload_id)],
            )
            await result.aclose()
        except S3KitError as e:
            logger.warning(
                "Failed to abort upload %s for %s/%s: %s",
                session.upload_id,
                session.bucket,
                session.key,
                e,
            )
        else:
            logger.info("Aborted upload %s", session.upload_id)
        if session.state == UploadState.COMPLETING:
            session.transition(UploadState.UPLOADING_PARTS)
        session.transition(UploadState.ABORTED)

    async def upload_stream(
        self,
        bucket: str,
        key: str,
        source: AsyncIterable[bytes],
        *,
        size: int | None = None,
        part_size: int | None = None,
        metadata: Mapping[str, str] | None = None,
        content_type: str | None = None,
    ) -> CompleteMultipartUploadResult:
        """Upload a byte stream as a multipart object.

        Parts are read one at a time and uploaded with at most
        ``max_concurrency`` in flight.  On any failure (or cancellation)
        in-flight parts are cancelled and the upload is aborted.

        Args:
            bucket: Target bucket.
            key: Target key.
            source: Object bytes.
            size: Total size if known; validated against the part limits
                before anything is sent.
            part_size: Target part size.  Defaults to
                ``optimal_part_size(size)`` or, for unknown sizes,
                ``DEFAULT_STREAM_PART_SIZE``.
            metadata: User metadata.
            content_type: Object content type.

        Raises:
            EntityTooLargeError: If the object cannot fit the part limits.
            InvalidPartSizeError: If ``part_size`` is out of range.
        """
        if size is not None:
            part_size = part_size or optimal_part_size(size)
            plan_parts(size, part_size)
        else:
            part_size = part_size or DEFAULT_STREAM_PART_SIZE
            validate_part_size(part_size)

        session = await self.initiate(
            bucket, key, metadata, content_type=content_type
        )
        pending: set[asyncio.Task[Part]] = set()
        try:
            async for number, data, is_last in iter_parts(source, part_size):
                if number > MAX_PARTS:
                    raise EntityTooLargeError(
                        f"Stream needs more than {MAX_PARTS} parts of "
                        f"{part_size} bytes"
                    )
                while len(pending) >= self._max_concurrency:
                    done, pending = await asyncio.wait(
                        pending, return_when=asyncio.FIRST_COMPLETED
                    )
                    _reap(done)
                pending.add(
                    asyncio.create_task(
                        self.upload_part(session, number, data, is_last=is_last)
                    )
                )
            if pending:
                done, pending = await asyncio.wait(pending)
                _reap(done)
            return await self.complete(session)
        except BaseException:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            await self.abort(session)
            raise


def _reap(done: set[asyncio.Task[Part]]) -> None:
    """Retrieve the outcome of every finished task, then raise the first error.

    Reading each exception keeps asyncio from reporting the rest as never
    retrieved.
    """
    first: BaseException | None = None
    for task in done:
        error = (
            asyncio.CancelledError() if task.cancelled() else task.exception()
        )
        if error is not None and first is None:
            first = error
    if first is not None:
        raise first


def metadata_headers(metadata: Mapping[str, str] | None) -> dict[str, str]:
    """Map user metadata to request headers.

    Keys already naming a standard or ``x-amz-`` header pass through;
    anything else gets the ``x-amz-meta-`` prefix.
    """
    headers: dict[str, str] = {}
    for name, value in (metadata or {}).items():
        lower = name.lower()
        if lower.startswith("x-amz-") or lower in _PASSTHROUGH_HEADERS:
            headers[name] = value
        else:
            headers[f"x-amz-meta-{name}"] = value
    return headers


_PASSTHROUGH_HEADERS = frozenset(
    {
        "cache-control",
        "content-disposition",
        "content-encoding",
        "content-language",
        "content-type",
        "expires",
    }
)
