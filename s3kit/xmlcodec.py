# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Encoding and decoding of the S3 XML dialect.

AWS qualifies response roots with ``http://s3.amazonaws.com/doc/2006-03-01/``
while compatible servers often send them un-namespaced, and error documents
are never namespaced.  All lookups therefore go by local element name.
Some servers also emit scalar fields as attributes rather than child
elements; ``_text`` accepts either.

Every decoder raises ``XmlDecodeError`` (keeping the raw body) when the
document is malformed or has the wrong root.
"""

import logging
import urllib.parse
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import NamedTuple

from s3kit.errors import XmlDecodeError
from s3kit.models import (
    Bucket,
    CompleteMultipartUploadResult,
    CopyObjectResult,
    DeleteError,
    ErrorResponse,
    InitiateMultipartUploadResult,
    ListBucketsResult,
    ListMultipartUploadsResult,
    ListObjectsResult,
    ListPartsResult,
    ObjectInfo,
    Part,
    Upload,
)


logger = logging.getLogger(__name__)

S3_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"
STS_NAMESPACE = "https://sts.amazonaws.com/doc/2011-06-15/"


# ---------------------------------------------------------------------------
# Element helpers
# ---------------------------------------------------------------------------


def _local(tag: str) -> str:
    """Local part of a possibly ``{namespace}``-qualified tag."""
    return tag.rsplit("}", 1)[-1]


def _children(elem: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in elem if _local(child.tag) == name]


def _child(elem: ET.Element, name: str) -> ET.Element | None:
    for child in elem:
        if _local(child.tag) == name:
            return child
    return None


def _text(elem: ET.Element, name: str, default: str = "") -> str:
    """Text of child ``name``, falling back to an attribute of that name."""
    child = _child(elem, name)
    if child is not None:
        return (child.text or "").strip()
    attr = elem.get(name)
    if attr is not None:
        return attr.strip()
    return default


def _int(elem: ET.Element, name: str, default: int = 0) -> int:
    value = _text(elem, name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _bool(elem: ET.Element, name: str) -> bool:
    return _text(elem, name).lower() == "true"


def _datetime(elem: ET.Element, name: str) -> datetime | None:
    value = _text(elem, name)
    return parse_timestamp(value) if value else None


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO 8601 timestamp as used in S3 listings."""
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None


def _root(body: str | bytes, expected: str) -> ET.Element:
    """Parse ``body`` and check its root element by local name.

    Raises:
        XmlDecodeError: On malformed XML or an unexpected root.
    """
    raw = body.decode("utf-8", "replace") if isinstance(body, bytes) else body
    if not raw.strip():
        raise XmlDecodeError(f"Empty body where <{expected}> was expected", raw)
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise XmlDecodeError(f"Malformed XML for <{expected}>: {e}", raw) from e
    if root.tag in (expected, f"{{{S3_NAMESPACE}}}{expected}"):
        return root
    if _local(root.tag) == expected:
        logger.debug("Accepting <%s> in foreign namespace: %s", expected, root.tag)
        return root
    raise XmlDecodeError(
        f"Expected <{expected}> root, got <{_local(root.tag)}>", raw
    )


def root_name(body: str | bytes) -> str | None:
    """Local name of the document root, or None if not parseable."""
    try:
        return _local(ET.fromstring(body).tag)
    except ET.ParseError:
        return None


def _key(value: str, encoding_type: str) -> str:
    return urllib.parse.unquote_plus(value) if encoding_type == "url" else value


# ---------------------------------------------------------------------------
# Decoders
# ---------------------------------------------------------------------------


def parse_error(
    body: str | bytes, headers: Mapping[str, str] | None = None
) -> ErrorResponse:
    """Decode an ``<Error>`` document and merge diagnostic headers.

    ``x-amz-id-2``, ``x-amz-request-id`` and ``x-amz-bucket-region`` are not
    part of the XML body on every server; header values fill whatever the
    body left empty.

    Args:
        body: Response body.
        headers: Response headers (case-insensitive mapping).

    Returns:
        The decoded error.

    Raises:
        XmlDecodeError: If the body is not an ``<Error>`` document.
    """
    root = _root(body, "Error")
    raw = body.decode("utf-8", "replace") if isinstance(body, bytes) else body
    error = ErrorResponse(
        code=_text(root, "Code"),
        message=_text(root, "Message"),
        request_id=_text(root, "RequestId"),
        host_id=_text(root, "HostId"),
        resource=_text(root, "Resource"),
        bucket_name=_text(root, "BucketName"),
        key=_text(root, "Key"),
        bucket_region=_text(root, "Region"),
        raw=raw,
    )
    if headers is not None:
        merge_error_headers(error, headers)
    return error


def merge_error_headers(
    error: ErrorResponse, headers: Mapping[str, str]
) -> None:
    """Fill empty diagnostic fields of ``error`` from response headers."""
    if not error.host_id:
        error.host_id = headers.get("x-amz-id-2", "") or ""
    if not error.request_id:
        error.request_id = headers.get("x-amz-request-id", "") or ""
    if not error.bucket_region:
        error.bucket_region = headers.get("x-amz-bucket-region", "") or ""


def parse_list_buckets(body: str | bytes) -> ListBucketsResult:
    """Decode ``ListAllMyBucketsResult``."""
    root = _root(body, "ListAllMyBucketsResult")
    buckets: list[Bucket] = []
    container = _child(root, "Buckets")
    if container is not None:
        for elem in _children(container, "Bucket"):
            buckets.append(
                Bucket(
                    name=_text(elem, "Name"),
                    creation_date=_datetime(elem, "CreationDate"),
                )
            )
    owner = _child(root, "Owner")
    return ListBucketsResult(
        buckets=buckets,
        owner_id=_text(owner, "ID") if owner is not None else "",
        owner_display_name=(
            _text(owner, "DisplayName") if owner is not None else ""
        ),
        continuation_token=_text(root, "ContinuationToken"),
    )


def parse_list_objects(body: str | bytes) -> ListObjectsResult:
    """Decode ``ListBucketResult`` (ListObjects v1 and v2).

    For v1 listings without a delimiter the server omits ``NextMarker``;
    the last key then serves as the marker for the next page.
    """
    root = _root(body, "ListBucketResult")
    encoding_type = _text(root, "EncodingType")
    objects: list[ObjectInfo] = []
    for elem in _children(root, "Contents"):
        objects.append(
            ObjectInfo(
                key=_key(_text(elem, "Key"), encoding_type),
                size=_int(elem, "Size"),
                etag=_text(elem, "ETag"),
                last_modified=_datetime(elem, "LastModified"),
                storage_class=_text(elem, "StorageClass"),
            )
        )
    prefixes = [
        _key(_text(elem, "Prefix"), encoding_type)
        for elem in _children(root, "CommonPrefixes")
    ]
    is_truncated = _bool(root, "IsTruncated")
    next_marker = _key(_text(root, "NextMarker"), encoding_type)
    if is_truncated and not next_marker and objects:
        next_marker = objects[-1].key
    return ListObjectsResult(
        bucket=_text(root, "Name"),
        prefix=_key(_text(root, "Prefix"), encoding_type),
        objects=objects,
        common_prefixes=prefixes,
        is_truncated=is_truncated,
        next_marker=next_marker,
        next_continuation_token=_text(root, "NextContinuationToken"),
        key_count=_int(root, "KeyCount", default=len(objects)),
    )


def parse_list_multipart_uploads(
    body: str | bytes,
) -> ListMultipartUploadsResult:
    """Decode ``ListMultipartUploadsResult``."""
    root = _root(body, "ListMultipartUploadsResult")
    encoding_type = _text(root, "EncodingType")
    uploads = [
        Upload(
            key=_key(_text(elem, "Key"), encoding_type),
            upload_id=_text(elem, "UploadId"),
            initiated=_datetime(elem, "Initiated"),
            storage_class=_text(elem, "StorageClass"),
        )
        for elem in _children(root, "Upload")
    ]
    return ListMultipartUploadsResult(
        bucket=_text(root, "Bucket"),
        uploads=uploads,
        is_truncated=_bool(root, "IsTruncated"),
        next_key_marker=_key(_text(root, "NextKeyMarker"), encoding_type),
        next_upload_id_marker=_text(root, "NextUploadIdMarker"),
    )


def parse_list_parts(body: str | bytes) -> ListPartsResult:
    """Decode ``ListPartsResult``."""
    root = _root(body, "ListPartsResult")
    parts = [
        Part(
            part_number=_int(elem, "PartNumber"),
            etag=_text(elem, "ETag"),
            size=_int(elem, "Size"),
            last_modified=_datetime(elem, "LastModified"),
        )
        for elem in _children(root, "Part")
    ]
    return ListPartsResult(
        bucket=_text(root, "Bucket"),
        key=_text(root, "Key"),
        upload_id=_text(root, "UploadId"),
        parts=parts,
        is_truncated=_bool(root, "IsTruncated"),
        next_part_number_marker=_int(root, "NextPartNumberMarker"),
        max_parts=_int(root, "MaxParts"),
    )


def parse_initiate_multipart_upload(
    body: str | bytes,
) -> InitiateMultipartUploadResult:
    """Decode ``InitiateMultipartUploadResult``.

    Raises:
        XmlDecodeError: If the document carries no upload id.
    """
    root = _root(body, "InitiateMultipartUploadResult")
    upload_id = _text(root, "UploadId")
    if not upload_id:
        raw = body.decode("utf-8", "replace") if isinstance(body, bytes) else body
        raise XmlDecodeError("UploadId missing from initiate response", raw)
    return InitiateMultipartUploadResult(
        bucket=_text(root, "Bucket"),
        key=_text(root, "Key"),
        upload_id=upload_id,
    )


def parse_complete_multipart_upload(
    body: str | bytes,
) -> CompleteMultipartUploadResult:
    """Decode ``CompleteMultipartUploadResult``."""
    root = _root(body, "CompleteMultipartUploadResult")
    return CompleteMultipartUploadResult(
        location=_text(root, "Location"),
        bucket=_text(root, "Bucket"),
        key=_text(root, "Key"),
        etag=_text(root, "ETag"),
    )


def parse_copy_object(body: str | bytes) -> CopyObjectResult:
    """Decode ``CopyObjectResult`` (ETag quote-stripped)."""
    root = _root(body, "CopyObjectResult")
    return CopyObjectResult(
        etag=_text(root, "ETag"),
        last_modified=_datetime(root, "LastModified"),
    )


def parse_location_constraint(body: str | bytes) -> str:
    """Decode ``LocationConstraint``; an empty element yields ``""``."""
    root = _root(body, "LocationConstraint")
    return (root.text or "").strip()


def parse_delete_result(body: str | bytes) -> list[DeleteError]:
    """Decode ``DeleteResult`` and return the per-key failures."""
    root = _root(body, "DeleteResult")
    return [
        DeleteError(
            key=_text(elem, "Key"),
            code=_text(elem, "Code"),
            message=_text(elem, "Message"),
        )
        for elem in _children(root, "Error")
    ]


class STSCredentials(NamedTuple):
    """Credentials decoded from an STS ``AssumeRole*`` response."""

    access_key: str
    secret_key: str
    session_token: str
    expiration: datetime | None


def parse_assume_role_response(body: str | bytes) -> STSCredentials:
    """Decode any STS ``AssumeRole*Response`` document.

    The root and result element names vary by action
    (``AssumeRoleResponse``, ``AssumeRoleWithWebIdentityResponse``, ...);
    only the nested ``Credentials`` element matters.

    Raises:
        XmlDecodeError: If no credentials are present.
    """
    raw = body.decode("utf-8", "replace") if isinstance(body, bytes) else body
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise XmlDecodeError(f"Malformed STS response: {e}", raw) from e
    creds = next(
        (el for el in root.iter() if _local(el.tag) == "Credentials"), None
    )
    if creds is None or not _text(creds, "AccessKeyId"):
        raise XmlDecodeError("Credentials missing from STS response", raw)
    return STSCredentials(
        access_key=_text(creds, "AccessKeyId"),
        secret_key=_text(creds, "SecretAccessKey"),
        session_token=_text(creds, "SessionToken"),
        expiration=_datetime(creds, "Expiration"),
    )


# ---------------------------------------------------------------------------
# Encoders
# ---------------------------------------------------------------------------


def _serialize(root: ET.Element) -> bytes:
    return ET.tostring(root, encoding="unicode").encode("utf-8")


def build_complete_multipart_upload(parts: Iterable[Part]) -> bytes:
    """Encode the ``CompleteMultipartUpload`` part manifest.

    Parts are written in the order given; ordering rules are enforced by
    the multipart orchestrator before this is called.
    """
    root = ET.Element("CompleteMultipartUpload", xmlns=S3_NAMESPACE)
    for part in parts:
        elem = ET.SubElement(root, "Part")
        ET.SubElement(elem, "PartNumber").text = str(part.part_number)
        ET.SubElement(elem, "ETag").text = f'"{part.etag}"'
    return _serialize(root)


def parse_complete_multipart_upload_request(body: str | bytes) -> list[Part]:
    """Decode a ``CompleteMultipartUpload`` manifest back into parts."""
    root = _root(body, "CompleteMultipartUpload")
    return [
        Part(part_number=_int(elem, "PartNumber"), etag=_text(elem, "ETag"))
        for elem in _children(root, "Part")
    ]


def build_create_bucket_configuration(region: str) -> bytes | None:
    """Encode ``CreateBucketConfiguration``; None for ``us-east-1``."""
    if not region or region == "us-east-1":
        return None
    root = ET.Element("CreateBucketConfiguration", xmlns=S3_NAMESPACE)
    ET.SubElement(root, "LocationConstraint").text = region
    return _serialize(root)


def build_delete_objects(keys: Iterable[str], *, quiet: bool = True) -> bytes:
    """Encode a multi-object ``Delete`` request."""
    root = ET.Element("Delete")
    ET.SubElement(root, "Quiet").text = "true" if quiet else "false"
    for key in keys:
        obj = ET.SubElement(root, "Object")
        ET.SubElement(obj, "Key").text = key
    return _serialize(root)
