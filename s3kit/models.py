# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Request, response and multipart data types.

Request descriptors and signed requests are frozen: a signature covers the
exact canonical form captured at signing time, so nothing may change a
request after it has been signed.  ``MultipartUploadSession`` is the one
mutable type; it tracks parts as the caller's uploads complete.
"""

from __future__ import annotations

import email.utils
import urllib.parse
from collections.abc import AsyncIterable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum

from s3kit.errors import (
    ClientValidationError,
    InvalidEndpointError,
    InvalidPartError,
    InvalidSessionStateError,
)


#: Service name used in the SigV4 credential scope for object storage.
S3_SERVICE = "s3"

#: Body of a request: nothing, a buffer, or an async stream of chunks.
Body = bytes | AsyncIterable[bytes] | None

_DEFAULT_PORTS = {"http": 80, "https": 443}


def strip_etag(etag: str | None) -> str:
    """Return an ETag without its surrounding double quotes.

    Servers return ETags quoted (``"abc"``) in headers and sometimes as
    ``&quot;abc&quot;`` in XML.  The raw hex form is the canonical one.
    """
    if not etag:
        return ""
    return etag.strip().replace('"', "")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequestDescriptor:
    """An unsigned HTTP request aimed at an S3-compatible endpoint.

    Attributes:
        method: HTTP method (upper case).
        scheme: ``http`` or ``https``.
        host: Host name without port.
        port: Explicit port, or None for the scheme default.
        path: Decoded request path starting with ``/``.  Encoding happens
            when the URL or canonical URI is built.
        query: Query parameters as ordered ``(name, value)`` pairs.
        headers: Header ``(name, value)`` pairs.  Lookup is
            case-insensitive; order carries no meaning.
        body: Request body.
        content_length: Body length in bytes, or None when unknown.
        region: Region used for the signing scope.
        service: Service used for the signing scope.
    """

    method: str
    scheme: str
    host: str
    port: int | None
    path: str = "/"
    query: tuple[tuple[str, str], ...] = ()
    headers: tuple[tuple[str, str], ...] = ()
    body: Body = None
    content_length: int | None = None
    region: str = "us-east-1"
    service: str = S3_SERVICE

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        if not self.path.startswith("/"):
            object.__setattr__(self, "path", "/" + self.path)
        if isinstance(self.body, bytes) and self.content_length is None:
            object.__setattr__(self, "content_length", len(self.body))
        if self.body is None and self.content_length is None:
            object.__setattr__(self, "content_length", 0)

    @classmethod
    def build(
        cls,
        method: str,
        endpoint: str,
        path: str = "/",
        *,
        query: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
        headers: Mapping[str, str] | None = None,
        body: Body = None,
        content_length: int | None = None,
        region: str = "us-east-1",
        service: str = S3_SERVICE,
    ) -> RequestDescriptor:
        """Build a descriptor from an endpoint URL and a decoded path.

        Args:
            method: HTTP method.
            endpoint: Base URL, e.g. ``https://s3.amazonaws.com``.
            path: Decoded path appended to the endpoint.
            query: Query parameters.
            headers: Request headers.
            body: Request body.
            content_length: Body length for streaming bodies.
            region: Signing region.
            service: Signing service.

        Returns:
            The request descriptor.

        Raises:
            InvalidEndpointError: If the endpoint is not an http(s) URL.
        """
        parts = urllib.parse.urlsplit(endpoint)
        if parts.scheme not in _DEFAULT_PORTS or not parts.hostname:
            raise InvalidEndpointError(f"Invalid endpoint URL: {endpoint!r}")
        base_path = parts.path.rstrip("/")
        if isinstance(query, Mapping):
            query_pairs = tuple((str(k), str(v)) for k, v in query.items())
        else:
            query_pairs = tuple(query or ())
        return cls(
            method=method,
            scheme=parts.scheme,
            host=parts.hostname,
            port=parts.port,
            path=base_path + ("/" + path.lstrip("/") if path else "/"),
            query=query_pairs,
            headers=tuple((headers or {}).items()),
            body=body,
            content_length=content_length,
            region=region,
            service=service,
        )

    # -- headers -----------------------------------------------------------

    def header(self, name: str, default: str | None = None) -> str | None:
        """Return the first value of a header, compared case-insensitively."""
        lower = name.lower()
        for key, value in self.headers:
            if key.lower() == lower:
                return value
        return default

    def has_header(self, name: str) -> bool:
        """True if the header is present (case-insensitive)."""
        return self.header(name) is not None

    def with_headers(self, headers: Mapping[str, str]) -> RequestDescriptor:
        """Return a copy with headers set, replacing same-named ones."""
        lowered = {name.lower() for name in headers}
        kept = tuple(
            (key, value)
            for key, value in self.headers
            if key.lower() not in lowered
        )
        return replace(self, headers=kept + tuple(headers.items()))

    def with_query(
        self, params: Iterable[tuple[str, str]]
    ) -> RequestDescriptor:
        """Return a copy with extra query parameters appended."""
        return replace(self, query=self.query + tuple(params))

    # -- URL ---------------------------------------------------------------

    @property
    def host_header(self) -> str:
        """Value of the ``Host`` header (port omitted when default)."""
        if self.port is None or self.port == _DEFAULT_PORTS.get(self.scheme):
            return self.host
        return f"{self.host}:{self.port}"

    @property
    def encoded_path(self) -> str:
        """Path with each segment percent-encoded, slashes preserved."""
        return urllib.parse.quote(self.path, safe="/~")

    @property
    def query_string(self) -> str:
        """Query string (without ``?``) with RFC 3986 encoding."""
        return urllib.parse.urlencode(
            self.query, quote_via=urllib.parse.quote, safe="~"
        )

    @property
    def url(self) -> str:
        """Full request URL."""
        url = f"{self.scheme}://{self.host_header}{self.encoded_path}"
        query = self.query_string
        return f"{url}?{query}" if query else url


@dataclass(frozen=True)
class SignedRequest:
    """A request with its authentication material attached.

    Attributes:
        descriptor: The request including injected ``Authorization`` and
            ``x-amz-*`` headers (or presigned query parameters).
        timestamp: Signing instant.
        canonical_request: Canonical request the signature covers.
        string_to_sign: String-to-sign derived from it.
        signature: Hex (SigV4) or base64 (SigV2) signature.
    """

    descriptor: RequestDescriptor
    timestamp: datetime
    canonical_request: str = ""
    string_to_sign: str = ""
    signature: str = ""

    @property
    def method(self) -> str:
        return self.descriptor.method

    @property
    def url(self) -> str:
        return self.descriptor.url

    @property
    def headers(self) -> tuple[tuple[str, str], ...]:
        return self.descriptor.headers

    @property
    def body(self) -> Body:
        return self.descriptor.body

    def header(self, name: str) -> str | None:
        return self.descriptor.header(name)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


@dataclass
class ErrorResponse:
    """Decoded S3 ``<Error>`` document plus diagnostic headers.

    ``host_id``, ``request_id`` and ``bucket_region`` are filled from the
    ``x-amz-id-2``, ``x-amz-request-id`` and ``x-amz-bucket-region``
    response headers when the body does not carry them.
    """

    code: str = ""
    message: str = ""
    request_id: str = ""
    host_id: str = ""
    resource: str = ""
    bucket_name: str = ""
    key: str = ""
    bucket_region: str = ""
    raw: str = ""


@dataclass(frozen=True)
class Bucket:
    """A bucket from ``ListAllMyBucketsResult``."""

    name: str
    creation_date: datetime | None = None


@dataclass(frozen=True)
class ListBucketsResult:
    """Result of ``ListBuckets``."""

    buckets: list[Bucket]
    owner_id: str = ""
    owner_display_name: str = ""
    continuation_token: str = ""

    @property
    def is_truncated(self) -> bool:
        return bool(self.continuation_token)


@dataclass(frozen=True)
class ObjectInfo:
    """An entry of an object listing.

    Common prefixes (when listing with a delimiter) appear as entries with
    ``is_dir`` set and only ``key`` populated.
    """

    key: str
    size: int = 0
    etag: str = ""
    last_modified: datetime | None = None
    storage_class: str = ""
    is_dir: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "etag", strip_etag(self.etag))


@dataclass(frozen=True)
class ListObjectsResult:
    """One page of ``ListObjects`` (v1) or ``ListObjectsV2``.

    Pagination: when ``is_truncated`` is set, continue from
    ``next_continuation_token`` (v2) or ``next_marker`` (v1; falls back to
    the last key when the server omits it).
    """

    bucket: str
    prefix: str
    objects: list[ObjectInfo]
    common_prefixes: list[str] = field(default_factory=list)
    is_truncated: bool = False
    next_marker: str = ""
    next_continuation_token: str = ""
    key_count: int = 0


@dataclass(frozen=True)
class Upload:
    """An in-progress multipart upload from a listing."""

    key: str
    upload_id: str
    initiated: datetime | None = None
    storage_class: str = ""


@dataclass(frozen=True)
class ListMultipartUploadsResult:
    """One page of ``ListMultipartUploads``."""

    bucket: str
    uploads: list[Upload]
    is_truncated: bool = False
    next_key_marker: str = ""
    next_upload_id_marker: str = ""


@dataclass(frozen=True)
class InitiateMultipartUploadResult:
    """Result of ``CreateMultipartUpload``."""

    bucket: str
    key: str
    upload_id: str


@dataclass(frozen=True)
class CompleteMultipartUploadResult:
    """Result of ``CompleteMultipartUpload``."""

    location: str
    bucket: str
    key: str
    etag: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "etag", strip_etag(self.etag))


@dataclass(frozen=True)
class ObjectStat:
    """Object metadata from a ``HEAD`` request."""

    bucket: str
    key: str
    size: int
    etag: str
    last_modified: datetime | None = None
    content_type: str = ""
    version_id: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ObjectWriteResult:
    """Outcome of a single or multipart object upload."""

    bucket: str
    key: str
    etag: str
    version_id: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "etag", strip_etag(self.etag))


@dataclass(frozen=True)
class CopyConditions:
    """Preconditions on the source object of a server-side copy.

    Each set field becomes one ``x-amz-copy-source-if-*`` header; the copy
    fails with ``PreconditionFailed`` when any of them does not hold.
    Naive datetimes are taken as UTC.
    """

    modified_since: datetime | None = None
    unmodified_since: datetime | None = None
    match_etag: str | None = None
    none_match_etag: str | None = None

    def __post_init__(self) -> None:
        for name in ("match_etag", "none_match_etag"):
            value = getattr(self, name)
            if value is not None and not value.strip():
                raise ClientValidationError(f"{name} cannot be empty")

    def headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.modified_since is not None:
            headers["x-amz-copy-source-if-modified-since"] = _http_date(
                self.modified_since
            )
        if self.unmodified_since is not None:
            headers["x-amz-copy-source-if-unmodified-since"] = _http_date(
                self.unmodified_since
            )
        if self.match_etag is not None:
            headers["x-amz-copy-source-if-match"] = self.match_etag
        if self.none_match_etag is not None:
            headers["x-amz-copy-source-if-none-match"] = self.none_match_etag
        return headers


def _http_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return email.utils.format_datetime(value.astimezone(UTC), usegmt=True)


@dataclass(frozen=True)
class CopyObjectResult:
    """Result of a server-side ``CopyObject``."""

    etag: str
    last_modified: datetime | None = None
    version_id: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "etag", strip_etag(self.etag))


@dataclass(frozen=True)
class DeleteError:
    """Per-key failure from a multi-object delete."""

    key: str
    code: str
    message: str = ""


# ---------------------------------------------------------------------------
# Multipart
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Part:
    """A completed part of a multipart upload.

    The ETag is stored without quotes; some servers return it quoted and
    some do not, and the completion manifest accepts either.
    """

    part_number: int
    etag: str
    size: int = 0
    last_modified: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "etag", strip_etag(self.etag))


@dataclass(frozen=True)
class ListPartsResult:
    """One page of ``ListParts``."""

    bucket: str
    key: str
    upload_id: str
    parts: list[Part]
    is_truncated: bool = False
    next_part_number_marker: int = 0
    max_parts: int = 0


class UploadState(Enum):
    """Lifecycle of a multipart upload session."""

    INITIATED = "initiated"
    UPLOADING_PARTS = "uploading_parts"
    COMPLETING = "completing"
    COMPLETED = "completed"
    ABORTED = "aborted"


_TRANSITIONS: dict[UploadState, frozenset[UploadState]] = {
    UploadState.INITIATED: frozenset(
        {UploadState.UPLOADING_PARTS, UploadState.COMPLETING, UploadState.ABORTED}
    ),
    UploadState.UPLOADING_PARTS: frozenset(
        {UploadState.COMPLETING, UploadState.ABORTED}
    ),
    # A failed completion returns to UPLOADING_PARTS so the caller can retry
    # or abort.
    UploadState.COMPLETING: frozenset(
        {UploadState.COMPLETED, UploadState.UPLOADING_PARTS}
    ),
    UploadState.COMPLETED: frozenset(),
    UploadState.ABORTED: frozenset(),
}


@dataclass
class MultipartUploadSession:
    """Client-side state of one multipart upload.

    Attributes:
        bucket: Target bucket.
        key: Target object key.
        upload_id: Server-issued upload id.
        state: Current lifecycle state.
    """

    bucket: str
    key: str
    upload_id: str
    state: UploadState = UploadState.INITIATED
    _parts: dict[int, Part] = field(default_factory=dict, repr=False)

    @property
    def parts(self) -> list[Part]:
        """Recorded parts ordered by part number."""
        return [self._parts[n] for n in sorted(self._parts)]

    def transition(self, new_state: UploadState) -> None:
        """Move to ``new_state``.

        Raises:
            InvalidSessionStateError: If the transition is not allowed.
        """
        if new_state == self.state:
            return
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidSessionStateError(
                f"Upload {self.upload_id}: cannot move from "
                f"{self.state.value} to {new_state.value}"
            )
        self.state = new_state

    def record_part(self, part: Part) -> None:
        """Record a part whose upload the caller has observed.

        Raises:
            InvalidPartError: If the part number was already recorded.
            InvalidSessionStateError: Unless the session is initiated or
                uploading parts.
        """
        if self.state not in (
            UploadState.INITIATED,
            UploadState.UPLOADING_PARTS,
        ):
            raise InvalidSessionStateError(
                f"Upload {self.upload_id} is {self.state.value}"
            )
        if part.part_number in self._parts:
            raise InvalidPartError(
                f"Part {part.part_number} already recorded for upload "
                f"{self.upload_id}"
            )
        self._parts[part.part_number] = part
        self.transition(UploadState.UPLOADING_PARTS)
