# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""``S3Client``: bucket, object, policy and presign operations.

Every operation follows the same path::

    arguments -> RequestDescriptor -> Signer -> RetryPolicy(Transport)
              -> ResponseHandler -> XML codec -> typed result

Usage:
    config = ClientConfig.from_yaml()
    async with S3Client(config) as client:
        await client.make_bucket("photos")
        await client.put_object("photos", "cat.jpg", data)
        url = await client.presigned_get_object("photos", "cat.jpg")
"""

from __future__ import annotations

import email.utils
import logging
import urllib.parse
from collections.abc import (
    AsyncIterable,
    AsyncIterator,
    Iterable,
    Mapping,
    Sequence,
)
from datetime import datetime, timedelta
from types import TracebackType

from s3kit.capabilities import Capabilities
from s3kit.config import ClientConfig
from s3kit.credentials import (
    AWSEnvironmentProvider,
    ChainedProvider,
    Credentials,
    CredentialsProvider,
    MinioEnvironmentProvider,
    StaticProvider,
)
from s3kit.errors import (
    AccessDeniedError,
    BucketNotFoundError,
    ClientValidationError,
    ErrorResponseError,
)
from s3kit.hashing import StreamHasher, iter_bytes, md5_base64
from s3kit.models import (
    Body,
    CopyConditions,
    CopyObjectResult,
    DeleteError,
    ListBucketsResult,
    ListMultipartUploadsResult,
    ListObjectsResult,
    ObjectStat,
    ObjectWriteResult,
    Part,
    RequestDescriptor,
    SignedRequest,
    strip_etag,
)
from s3kit.multipart import (
    DEFAULT_STREAM_PART_SIZE,
    BodyFactory,
    MultipartUploader,
    metadata_headers,
    optimal_part_size,
    validate_part_size,
    verify_etag,
)
from s3kit.regions import (
    DEFAULT_REGION,
    BucketRegionCache,
    normalize_location,
    region_from_endpoint,
    resolve_region,
)
from s3kit.retry import (
    IDEMPOTENT_METHODS,
    ExponentialBackoffPolicy,
    NoRetryPolicy,
    RetryPolicy,
)
from s3kit.signing import (
    PostPolicy,
    Signer,
    presign_expiry_seconds,
    uri_encode,
)
from s3kit.transport import (
    HttpxTransport,
    ResponseHandler,
    ResponseResult,
    Transport,
)
from s3kit.validation import (
    validate_bucket_name,
    validate_object_name,
    validate_object_prefix,
)
from s3kit.xmlcodec import (
    build_create_bucket_configuration,
    build_delete_objects,
    parse_copy_object,
    parse_delete_result,
    parse_error,
    parse_list_buckets,
    parse_list_multipart_uploads,
    parse_list_objects,
    parse_list_parts,
    parse_location_constraint,
    root_name,
)


logger = logging.getLogger(__name__)

#: Default lifetime of presigned URLs.
DEFAULT_PRESIGN_EXPIRY = timedelta(days=7)

#: Keys per multi-object delete request (S3 limit).
MAX_DELETE_KEYS = 1000

_AWS_GLOBAL_HOST = "s3.amazonaws.com"


def default_credentials_provider(config: ClientConfig) -> CredentialsProvider:
    """Static keys from config, else environment, else anonymous."""
    if config.access_key:
        return StaticProvider(
            config.access_key, config.secret_key, config.session_token
        )
    return ChainedProvider(
        [AWSEnvironmentProvider(), MinioEnvironmentProvider(), StaticProvider()]
    )


def default_retry_policy(config: ClientConfig) -> RetryPolicy:
    if config.max_attempts <= 1:
        return NoRetryPolicy()
    return ExponentialBackoffPolicy(
        max_attempts=config.max_attempts,
        base_delay=config.retry_base_delay,
        max_delay=config.retry_max_delay,
    )


class S3Client:
    """Asynchronous client for an S3-compatible service.

    Args:
        config: Client settings.
        credentials_provider: Source of credentials.  Defaults to the
            config's static keys, then the environment, then anonymous.
        transport: HTTP transport.  Defaults to ``HttpxTransport``.
        retry_policy: Retry strategy.  Defaults to no retry unless
            ``config.max_attempts`` is above 1.
        capabilities: User agent, crypto backend, trace sink and clock.
    """

    def __init__(
        self,
        config: ClientConfig,
        credentials_provider: CredentialsProvider | None = None,
        *,
        transport: Transport | None = None,
        retry_policy: RetryPolicy | None = None,
        capabilities: Capabilities | None = None,
    ) -> None:
        self.config = config
        self._credentials = credentials_provider or default_credentials_provider(
            config
        )
        self._transport = transport or HttpxTransport(timeout=config.timeout)
        self._retry = retry_policy or default_retry_policy(config)
        self._capabilities = capabilities or Capabilities()
        self._signer = Signer(self._capabilities.crypto)
        self._region_cache = BucketRegionCache()
        self._handler = ResponseHandler(self._region_cache)
        self.multipart = MultipartUploader(
            self,
            max_concurrency=config.max_concurrency,
            crypto=self._capabilities.crypto,
        )

        parts = urllib.parse.urlsplit(config.endpoint)
        self._scheme = parts.scheme
        self._host = parts.hostname or ""
        self._port = parts.port
        self._base_path = parts.path.rstrip("/")

    async def __aenter__(self) -> S3Client:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._transport.aclose()

    @property
    def region_cache(self) -> BucketRegionCache:
        return self._region_cache

    # -----------------------------------------------------------------------
    # Addressing and regions
    # -----------------------------------------------------------------------

    def _endpoint_host(self, region: str) -> str:
        # The global AWS endpoint only serves us-east-1 buckets directly
        if self._host == _AWS_GLOBAL_HOST and region != DEFAULT_REGION:
            return f"s3.{region}.amazonaws.com"
        return self._host

    def _target(
        self,
        bucket: str | None,
        key: str | None,
        region: str,
        *,
        path_style: bool = False,
    ) -> tuple[str, str]:
        """Return (endpoint URL, decoded path) for a bucket/key."""
        host = self._endpoint_host(region)
        virtual = (
            bool(bucket)
            and self.config.virtual_host_style
            and not path_style
            # TLS wildcard certificates do not cover dotted bucket names
            and not (self._scheme == "https" and "." in (bucket or ""))
        )
        if virtual:
            host = f"{bucket}.{host}"
        netloc = host if self._port is None else f"{host}:{self._port}"
        endpoint = f"{self._scheme}://{netloc}{self._base_path}"

        segments: list[str] = []
        if bucket and not virtual:
            segments.append(bucket)
        if key is not None:
            segments.append(key)
        return endpoint, "/" + "/".join(segments)

    async def _region_for(self, bucket: str | None) -> str:
        if self.config.region:
            return self.config.region
        from_host = region_from_endpoint(self._host)
        if from_host:
            return from_host
        if not bucket:
            return DEFAULT_REGION
        cached = self._region_cache.get(bucket)
        if cached:
            return cached
        try:
            return await self.get_bucket_location(bucket)
        except AccessDeniedError:
            logger.debug(
                "GetBucketLocation denied for %s, assuming %s",
                bucket,
                DEFAULT_REGION,
            )
            return DEFAULT_REGION

    # -----------------------------------------------------------------------
    # Request execution
    # -----------------------------------------------------------------------

    def _sign(
        self,
        descriptor: RequestDescriptor,
        credentials: Credentials,
        region: str,
        timestamp: datetime,
        bucket: str | None,
    ) -> SignedRequest:
        if self.config.signature_version == "v2":
            prefix = ""
            if bucket and not descriptor.path.startswith(f"/{bucket}"):
                prefix = f"/{bucket}"
            return self._signer.sign_v2(
                descriptor, credentials, timestamp, resource_prefix=prefix
            )
        streaming = descriptor.body is not None and not isinstance(
            descriptor.body, bytes
        )
        if (
            streaming
            and self.config.chunked_signing
            and descriptor.content_length is not None
        ):
            return self._signer.sign_v4_streaming(
                descriptor, credentials, region, timestamp
            )
        return self._signer.sign_v4(descriptor, credentials, region, timestamp)

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
        region: str | None = None,
        path_style: bool = False,
    ) -> ResponseResult:
        """Sign, send and classify one request.

        The signing timestamp is taken once and reused by every retry
        attempt; each attempt rebuilds the descriptor and, for streamed
        bodies, calls ``body`` again for a fresh stream.

        Args:
            method: HTTP method.
            bucket: Bucket addressed, if any.
            key: Object key addressed, if any.
            query: Query parameters.
            headers: Extra request headers.
            body: Bytes, or a factory returning a fresh async byte stream.
            content_length: Length of a streamed body.
            idempotent: Whether the retry policy may repeat the request.
                Defaults to True for GET, HEAD and PUT only.
            region: Signing region override.
            path_style: Force path-style addressing.

        Returns:
            A successful result; the caller must read or close it.

        Raises:
            ClientValidationError: On invalid names (before any I/O).
            TransportError: If no response was received.
            ErrorResponseError: On a server error response.
        """
        if bucket is not None:
            validate_bucket_name(bucket)
        if key is not None:
            validate_object_name(key)
        if region is None:
            region = await self._region_for(bucket)
        credentials = await self._credentials.retrieve()
        timestamp = self._capabilities.clock()
        endpoint, path = self._target(bucket, key, region, path_style=path_style)
        request_headers = {"User-Agent": self._capabilities.user_agent_header()}
        request_headers.update(headers or {})
        trace = self._capabilities.log_sink

        async def attempt() -> ResponseResult:
            payload: Body = body() if callable(body) else body
            descriptor = RequestDescriptor.build(
                method,
                endpoint,
                path,
                query=list(query),
                headers=request_headers,
                body=payload,
                content_length=content_length,
                region=region,
            )
            signed = self._sign(
                descriptor, credentials, region, timestamp, bucket
            )
            trace.debug("--> %s %s", signed.method, signed.url)
            result = await self._transport.execute(signed)
            if result.exception is not None:
                trace.debug("<-- %s failed: %s", signed.method, result.exception)
            else:
                trace.debug(
                    "<-- %d %s %s",
                    result.status_code,
                    signed.method,
                    signed.url,
                )
            return result

        if idempotent is None:
            idempotent = method in IDEMPOTENT_METHODS
        result = await self._retry.execute(attempt, idempotent=idempotent)
        return await self._handler.handle(result, bucket=bucket, key=key)

    async def _read(self, result: ResponseResult) -> bytes:
        async with result:
            return await result.aread()

    # -----------------------------------------------------------------------
    # Buckets
    # -----------------------------------------------------------------------

    async def list_buckets(self) -> ListBucketsResult:
        """List all buckets owned by the caller."""
        result = await self.request("GET")
        return parse_list_buckets(await self._read(result))

    async def make_bucket(
        self,
        bucket: str,
        region: str | None = None,
        *,
        object_lock: bool = False,
    ) -> None:
        """Create a bucket.

        Args:
            bucket: Bucket name.
            region: Location constraint.  Defaults to the configured region,
                the endpoint's region, or ``us-east-1``.
            object_lock: Enable object lock on the new bucket.
        """
        validate_bucket_name(bucket)
        region = region or resolve_region(
            configured=self.config.region, host=self._host
        )
        if self.config.region and region != self.config.region:
            raise ClientValidationError(
                f"Region {region} conflicts with client region "
                f"{self.config.region}"
            )
        headers = {}
        if object_lock:
            headers["x-amz-bucket-object-lock-enabled"] = "true"
        configuration = build_create_bucket_configuration(region)
        if configuration is not None:
            headers["Content-Type"] = "application/xml"
        result = await self.request(
            "PUT",
            bucket=bucket,
            headers=headers,
            body=configuration,
            region=region,
            idempotent=False,
            path_style=True,
        )
        await result.aclose()
        self._region_cache.add(bucket, region)
        logger.info("Created bucket %s in %s", bucket, region)

    async def bucket_exists(self, bucket: str) -> bool:
        """True if the bucket exists and is reachable."""
        try:
            result = await self.request("HEAD", bucket=bucket)
        except BucketNotFoundError:
            return False
        await result.aclose()
        return True

    async def remove_bucket(self, bucket: str) -> None:
        """Delete an empty bucket."""
        result = await self.request("DELETE", bucket=bucket)
        await result.aclose()
        self._region_cache.remove(bucket)

    async def get_bucket_location(self, bucket: str) -> str:
        """Look up (and cache) the bucket's region.

        The request is always path-style and signed for ``us-east-1``,
        since the bucket's region is what is being asked.
        """
        result = await self.request(
            "GET",
            bucket=bucket,
            query=[("location", "")],
            region=self.config.region or DEFAULT_REGION,
            path_style=True,
        )
        region = normalize_location(
            parse_location_constraint(await self._read(result))
        )
        self._region_cache.add(bucket, region)
        return region

    # -----------------------------------------------------------------------
    # Bucket policy
    # -----------------------------------------------------------------------

    async def get_bucket_policy(self, bucket: str) -> str:
        """Return the bucket policy JSON.

        Raises:
            ErrorResponseError: ``NoSuchBucketPolicy`` if none is set.
        """
        result = await self.request(
            "GET", bucket=bucket, query=[("policy", "")]
        )
        return (await self._read(result)).decode("utf-8")

    async def set_bucket_policy(self, bucket: str, policy: str) -> None:
        """Replace the bucket policy with ``policy`` (JSON)."""
        if not policy.strip():
            raise ClientValidationError("Bucket policy cannot be empty")
        result = await self.request(
            "PUT",
            bucket=bucket,
            query=[("policy", "")],
            headers={"Content-Type": "application/json"},
            body=policy.encode("utf-8"),
        )
        await result.aclose()

    async def delete_bucket_policy(self, bucket: str) -> None:
        result = await self.request(
            "DELETE", bucket=bucket, query=[("policy", "")]
        )
        await result.aclose()

    # -----------------------------------------------------------------------
    # Listing
    # -----------------------------------------------------------------------

    async def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        *,
        recursive: bool = False,
        start_after: str = "",
        max_keys: int = 1000,
        use_v1: bool | None = None,
    ) -> AsyncIterator[ListObjectsResult]:
        """Iterate over pages of an object listing.

        Args:
            bucket: Bucket to list.
            prefix: Only keys starting with this prefix.
            recursive: List all keys instead of grouping by ``/``.
            start_after: Start listing after this key.
            max_keys: Page size.
            use_v1: Force ListObjects v1 (marker) or v2.  Defaults to
                ``config.list_objects_v1``.

        Yields:
            One result per page, following markers or continuation tokens
            until the listing is no longer truncated.
        """
        validate_bucket_name(bucket)
        validate_object_prefix(prefix)
        v1 = self.config.list_objects_v1 if use_v1 is None else use_v1
        base: list[tuple[str, str]] = [
            ("encoding-type", "url"),
            ("max-keys", str(max_keys)),
            ("prefix", prefix),
        ]
        if not recursive:
            base.append(("delimiter", "/"))

        marker = start_after
        token = ""
        while True:
            query = list(base)
            if v1:
                if marker:
                    query.append(("marker", marker))
            else:
                query.append(("list-type", "2"))
                if token:
                    query.append(("continuation-token", token))
                elif start_after:
                    query.append(("start-after", start_after))
            result = await self.request("GET", bucket=bucket, query=query)
            page = parse_list_objects(await self._read(result))
            yield page
            if not page.is_truncated:
                return
            if v1:
                marker = page.next_marker or (
                    page.common_prefixes[-1] if page.common_prefixes else ""
                )
                if not marker:
                    return
            else:
                token = page.next_continuation_token
                if not token:
                    return

    async def list_incomplete_uploads(
        self, bucket: str, prefix: str = "", *, recursive: bool = False
    ) -> AsyncIterator[ListMultipartUploadsResult]:
        """Iterate over pages of in-progress multipart uploads."""
        validate_bucket_name(bucket)
        validate_object_prefix(prefix)
        key_marker = ""
        upload_id_marker = ""
        while True:
            query = [("uploads", ""), ("prefix", prefix)]
            if not recursive:
                query.append(("delimiter", "/"))
            if key_marker:
                query.append(("key-marker", key_marker))
            if upload_id_marker:
                query.append(("upload-id-marker", upload_id_marker))
            result = await self.request("GET", bucket=bucket, query=query)
            page = parse_list_multipart_uploads(await self._read(result))
            yield page
            if not page.is_truncated:
                return
            key_marker = page.next_key_marker
            upload_id_marker = page.next_upload_id_marker

    async def list_parts(
        self, bucket: str, key: str, upload_id: str
    ) -> list[Part]:
        """Return all uploaded parts of an upload, following pagination."""
        parts: list[Part] = []
        marker = 0
        while True:
            query = [("uploadId", upload_id)]
            if marker:
                query.append(("part-number-marker", str(marker)))
            result = await self.request(
                "GET", bucket=bucket, key=key, query=query
            )
            page = parse_list_parts(await self._read(result))
            parts.extend(page.parts)
            if not page.is_truncated or not page.next_part_number_marker:
                return parts
            marker = page.next_part_number_marker

    async def remove_incomplete_upload(self, bucket: str, key: str) -> int:
        """Abort every in-progress upload for exactly ``key``.

        Returns:
            Number of uploads aborted.
        """
        validate_object_name(key)
        upload_ids: list[str] = []
        async for page in self.list_incomplete_uploads(
            bucket, key, recursive=True
        ):
            upload_ids.extend(u.upload_id for u in page.uploads if u.key == key)
        for upload_id in upload_ids:
            result = await self.request(
                "DELETE",
                bucket=bucket,
                key=key,
                query=[("uploadId", upload_id)],
            )
            await result.aclose()
        return len(upload_ids)

    # -----------------------------------------------------------------------
    # Objects
    # -----------------------------------------------------------------------

    async def stat_object(
        self, bucket: str, key: str, *, version_id: str | None = None
    ) -> ObjectStat:
        """Fetch object metadata with ``HEAD``.

        Raises:
            ObjectNotFoundError: If the key does not exist.
        """
        query = [("versionId", version_id)] if version_id else []
        result = await self.request("HEAD", bucket=bucket, key=key, query=query)
        await result.aclose()
        headers = result.headers
        last_modified = None
        if headers.get("last-modified"):
            try:
                last_modified = email.utils.parsedate_to_datetime(
                    headers["last-modified"]
                )
            except (TypeError, ValueError):
                logger.debug(
                    "Unparseable Last-Modified: %r", headers["last-modified"]
                )
        metadata = {
            name[len("x-amz-meta-") :]: value
            for name, value in headers.items()
            if name.lower().startswith("x-amz-meta-")
        }
        return ObjectStat(
            bucket=bucket,
            key=key,
            size=int(headers.get("content-length", "0")),
            etag=strip_etag(headers.get("etag")),
            last_modified=last_modified,
            content_type=headers.get("content-type", ""),
            version_id=headers.get("x-amz-version-id", ""),
            metadata=metadata,
        )

    async def get_object(
        self,
        bucket: str,
        key: str,
        *,
        offset: int = 0,
        length: int | None = None,
        version_id: str | None = None,
    ) -> ResponseResult:
        """Open an object for streaming.

        The caller owns the returned result and must close it (or use it as
        an async context manager)::

            async with await client.get_object("b", "k") as obj:
                async for chunk in obj.aiter_bytes():
                    ...

        Args:
            bucket: Bucket name.
            key: Object key.
            offset: First byte to read.
            length: Number of bytes to read; None reads to the end.
            version_id: Specific object version.
        """
        if offset < 0 or (length is not None and length <= 0):
            raise ClientValidationError("Invalid byte range")
        headers = {}
        if length is not None:
            headers["Range"] = f"bytes={offset}-{offset + length - 1}"
        elif offset:
            headers["Range"] = f"bytes={offset}-"
        query = [("versionId", version_id)] if version_id else []
        return await self.request(
            "GET", bucket=bucket, key=key, query=query, headers=headers
        )

    async def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes | AsyncIterable[bytes],
        *,
        size: int | None = None,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
        part_size: int | None = None,
    ) -> ObjectWriteResult:
        """Upload an object.

        Objects no larger than the part size go up in a single ``PUT``;
        larger ones, and streams of unknown size, use a multipart upload.

        Args:
            bucket: Bucket name.
            key: Object key.
            data: Object bytes or an async byte stream.
            size: Size of a streamed object, if known.
            content_type: Defaults to ``application/octet-stream``.
            metadata: User metadata.
            part_size: Overrides ``config.part_size``.

        Raises:
            EntityTooLargeError: If the object cannot fit the part limits.
            InvalidPartSizeError: If the part size is out of range.
        """
        validate_bucket_name(bucket)
        validate_object_name(key)
        if isinstance(data, bytes):
            size = len(data)
        part_size = part_size or self.config.part_size
        if part_size is None:
            part_size = (
                optimal_part_size(size)
                if size is not None
                else DEFAULT_STREAM_PART_SIZE
            )
        validate_part_size(part_size)
        content_type = content_type or "application/octet-stream"

        if size is not None and size <= part_size:
            hasher = StreamHasher(
                iter_bytes(data) if isinstance(data, bytes) else data,
                sha256=False,
                md5=True,
                crypto=self._capabilities.crypto,
            )
            # Buffered so a retry can resend it
            payload = b"".join([chunk async for chunk in hasher])
            if len(payload) != size:
                raise ClientValidationError(
                    f"Stream yielded {len(payload)} bytes, expected {size}"
                )
            headers = metadata_headers(metadata)
            headers["Content-Type"] = content_type
            headers["Content-MD5"] = hasher.md5_base64
            result = await self.request(
                "PUT", bucket=bucket, key=key, headers=headers, body=payload
            )
            await result.aclose()
            written = ObjectWriteResult(
                bucket=bucket,
                key=key,
                etag=result.headers.get("etag", ""),
                version_id=result.headers.get("x-amz-version-id", ""),
            )
            verify_etag(
                written.etag,
                hasher.md5_hex,
                result.headers,
                bucket=bucket,
                key=key,
                status_code=result.status_code,
            )
            return written

        source = iter_bytes(data) if isinstance(data, bytes) else data
        completed = await self.multipart.upload_stream(
            bucket,
            key,
            source,
            size=size,
            part_size=part_size,
            metadata=metadata,
            content_type=content_type,
        )
        return ObjectWriteResult(bucket=bucket, key=key, etag=completed.etag)

    async def copy_object(
        self,
        src_bucket: str,
        src_key: str,
        dst_bucket: str,
        dst_key: str | None = None,
        conditions: CopyConditions | None = None,
        *,
        metadata: Mapping[str, str] | None = None,
    ) -> CopyObjectResult:
        """Copy an object server-side.

        Args:
            src_bucket: Source bucket.
            src_key: Source key.
            dst_bucket: Destination bucket.
            dst_key: Destination key; defaults to ``src_key``.
            conditions: Preconditions on the source object.
            metadata: Replacement user metadata.  When omitted the source
                object's metadata is copied.

        Raises:
            ErrorResponseError: On failure, including errors S3 reports
                inside a 200 response (``PreconditionFailed`` for unmet
                conditions).
        """
        validate_bucket_name(src_bucket)
        validate_object_name(src_key)
        dst_key = dst_key or src_key
        headers = {
            "x-amz-copy-source": (
                f"/{src_bucket}/{uri_encode(src_key, encode_slash=False)}"
            )
        }
        if conditions is not None:
            headers.update(conditions.headers())
        if metadata is not None:
            headers["x-amz-metadata-directive"] = "REPLACE"
            headers.update(metadata_headers(metadata))
        result = await self.request(
            "PUT", bucket=dst_bucket, key=dst_key, headers=headers
        )
        async with result:
            body = await result.aread()
            # S3 can fail a copy after sending the 200 status line
            if root_name(body) == "Error":
                raise ErrorResponseError(
                    parse_error(body, result.headers), result.status_code
                )
        copied = parse_copy_object(body)
        logger.debug(
            "Copied %s/%s to %s/%s", src_bucket, src_key, dst_bucket, dst_key
        )
        return CopyObjectResult(
            etag=copied.etag,
            last_modified=copied.last_modified,
            version_id=result.headers.get("x-amz-version-id", ""),
        )

    async def remove_object(
        self, bucket: str, key: str, *, version_id: str | None = None
    ) -> None:
        query = [("versionId", version_id)] if version_id else []
        result = await self.request(
            "DELETE", bucket=bucket, key=key, query=query
        )
        await result.aclose()

    async def remove_objects(
        self, bucket: str, keys: Iterable[str]
    ) -> list[DeleteError]:
        """Delete many objects, ``MAX_DELETE_KEYS`` per request.

        Returns:
            Per-key failures; empty when everything was deleted.
        """
        validate_bucket_name(bucket)
        pending = list(keys)
        for key in pending:
            validate_object_name(key)
        errors: list[DeleteError] = []
        for start in range(0, len(pending), MAX_DELETE_KEYS):
            body = build_delete_objects(pending[start : start + MAX_DELETE_KEYS])
            result = await self.request(
                "POST",
                bucket=bucket,
                query=[("delete", "")],
                headers={
                    "Content-Type": "application/xml",
                    "Content-MD5": md5_base64(body, self._capabilities.crypto),
                },
                body=body,
                idempotent=False,
            )
            errors.extend(parse_delete_result(await self._read(result)))
        for error in errors:
            logger.warning(
                "Failed to delete %s/%s: %s", bucket, error.key, error.code
            )
        return errors

    # -----------------------------------------------------------------------
    # Presigning
    # -----------------------------------------------------------------------

    async def _presign(
        self,
        method: str,
        bucket: str,
        key: str,
        expires: int | timedelta | datetime,
        query: Sequence[tuple[str, str]],
        request_date: datetime | None,
    ) -> str:
        validate_bucket_name(bucket)
        validate_object_name(key)
        timestamp = request_date or self._capabilities.clock()
        presign_expiry_seconds(expires, timestamp)
        region = await self._region_for(bucket)
        credentials = await self._credentials.retrieve()
        endpoint, path = self._target(bucket, key, region)
        descriptor = RequestDescriptor.build(
            method, endpoint, path, query=list(query), region=region
        )
        signed = self._signer.presign_v4(
            descriptor, credentials, region, timestamp, expires
        )
        return signed.url

    async def presigned_get_object(
        self,
        bucket: str,
        key: str,
        expires: int | timedelta | datetime = DEFAULT_PRESIGN_EXPIRY,
        *,
        response_headers: Mapping[str, str] | None = None,
        request_date: datetime | None = None,
    ) -> str:
        """Presigned URL for downloading an object.

        Args:
            bucket: Bucket name.
            key: Object key.
            expires: Lifetime (seconds or ``timedelta``, at most 7 days) or
                an absolute expiry instant.
            response_headers: ``response-*`` overrides, e.g.
                ``{"response-content-type": "image/png"}``.
            request_date: Signing instant; defaults to now.

        Raises:
            InvalidExpiryError: Before anything is signed.
        """
        return await self._presign(
            "GET",
            bucket,
            key,
            expires,
            list((response_headers or {}).items()),
            request_date,
        )

    async def presigned_put_object(
        self,
        bucket: str,
        key: str,
        expires: int | timedelta | datetime = DEFAULT_PRESIGN_EXPIRY,
        *,
        request_date: datetime | None = None,
    ) -> str:
        """Presigned URL for uploading an object with ``PUT``."""
        return await self._presign("PUT", bucket, key, expires, [], request_date)

    async def presigned_post_policy(
        self, policy: PostPolicy, *, request_date: datetime | None = None
    ) -> tuple[str, dict[str, str]]:
        """Sign a browser POST policy.

        Returns:
            Tuple of (upload URL, form fields).
        """
        validate_bucket_name(policy.bucket)
        timestamp = request_date or self._capabilities.clock()
        region = await self._region_for(policy.bucket)
        credentials = await self._credentials.retrieve()
        fields = policy.sign(self._signer, credentials, region, timestamp)
        endpoint, path = self._target(policy.bucket, None, region)
        return endpoint + path, fields

