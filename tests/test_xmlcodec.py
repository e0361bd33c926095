# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the S3 XML codec."""

from datetime import UTC, datetime

import httpx
import pytest

from s3kit.errors import XmlDecodeError
from s3kit.models import Part
from s3kit.xmlcodec import (
    build_complete_multipart_upload,
    build_create_bucket_configuration,
    build_delete_objects,
    parse_assume_role_response,
    parse_complete_multipart_upload,
    parse_complete_multipart_upload_request,
    parse_copy_object,
    parse_delete_result,
    parse_error,
    parse_initiate_multipart_upload,
    parse_list_buckets,
    parse_list_multipart_uploads,
    parse_list_objects,
    parse_list_parts,
    parse_location_constraint,
    root_name,
)


NS = 'xmlns="http://s3.amazonaws.com/doc/2006-03-01/"'


class TestParseError:
    """Tests for parse_error."""

    def test_fields(self) -> None:
        """All error fields are decoded."""
        body = (
            b"<Error><Code>NoSuchKey</Code><Message>gone</Message>"
            b"<Resource>/b/k</Resource><RequestId>r1</RequestId>"
            b"<HostId>h1</HostId><BucketName>b</BucketName><Key>k</Key>"
            b"</Error>"
        )
        error = parse_error(body)
        assert error.code == "NoSuchKey"
        assert error.message == "gone"
        assert error.resource == "/b/k"
        assert error.request_id == "r1"
        assert error.host_id == "h1"
        assert error.bucket_name == "b"
        assert error.key == "k"
        assert error.raw == body.decode()

    def test_headers_fill_missing_fields(self) -> None:
        """Diagnostic headers fill fields the body omitted."""
        headers = httpx.Headers(
            {
                "X-Amz-Request-Id": "req",
                "X-Amz-Id-2": "host",
                "X-Amz-Bucket-Region": "eu-west-1",
            }
        )
        error = parse_error(b"<Error><Code>AccessDenied</Code></Error>", headers)
        assert error.request_id == "req"
        assert error.host_id == "host"
        assert error.bucket_region == "eu-west-1"

    def test_body_wins_over_headers(self) -> None:
        """Headers never overwrite values present in the body."""
        error = parse_error(
            b"<Error><RequestId>body</RequestId></Error>",
            {"x-amz-request-id": "header"},
        )
        assert error.request_id == "body"

    def test_wrong_root(self) -> None:
        """A non-error document raises XmlDecodeError with the raw body."""
        with pytest.raises(XmlDecodeError) as exc_info:
            parse_error(b"<Other/>")
        assert exc_info.value.raw == "<Other/>"

    def test_malformed(self) -> None:
        """Malformed XML raises XmlDecodeError."""
        with pytest.raises(XmlDecodeError):
            parse_error(b"<Error><Code>")

    def test_empty(self) -> None:
        """An empty body raises XmlDecodeError."""
        with pytest.raises(XmlDecodeError):
            parse_error(b"   ")


class TestParseListings:
    """Tests for listing decoders."""

    def test_list_buckets(self) -> None:
        """Buckets and owner are decoded from a namespaced document."""
        body = (
            f"<ListAllMyBucketsResult {NS}>"
            "<Owner><ID>o1</ID><DisplayName>me</DisplayName></Owner>"
            "<Buckets>"
            "<Bucket><Name>a</Name>"
            "<CreationDate>2024-01-02T03:04:05.000Z</CreationDate></Bucket>"
            "<Bucket><Name>b</Name></Bucket>"
            "</Buckets></ListAllMyBucketsResult>"
        ).encode()
        result = parse_list_buckets(body)
        assert [b.name for b in result.buckets] == ["a", "b"]
        assert result.buckets[0].creation_date == datetime(
            2024, 1, 2, 3, 4, 5, tzinfo=UTC
        )
        assert result.buckets[1].creation_date is None
        assert result.owner_id == "o1"
        assert result.owner_display_name == "me"
        assert not result.is_truncated

    def test_list_objects_v2(self) -> None:
        """A v2 page exposes its continuation token and url-decoded keys."""
        body = (
            f"<ListBucketResult {NS}>"
            "<Name>b</Name><Prefix>dir%2F</Prefix><KeyCount>2</KeyCount>"
            "<EncodingType>url</EncodingType><IsTruncated>true</IsTruncated>"
            "<NextContinuationToken>tok</NextContinuationToken>"
            '<Contents><Key>dir%2Fa+b.txt</Key><Size>3</Size>'
            "<ETag>&quot;abc&quot;</ETag></Contents>"
            "<CommonPrefixes><Prefix>dir%2Fsub%2F</Prefix></CommonPrefixes>"
            "</ListBucketResult>"
        ).encode()
        result = parse_list_objects(body)
        assert result.prefix == "dir/"
        assert result.objects[0].key == "dir/a b.txt"
        assert result.objects[0].size == 3
        assert result.objects[0].etag == "abc"
        assert result.common_prefixes == ["dir/sub/"]
        assert result.is_truncated
        assert result.next_continuation_token == "tok"
        assert result.key_count == 2

    def test_list_objects_v1_marker_fallback(self) -> None:
        """Without NextMarker the last key continues a truncated page."""
        body = (
            b"<ListBucketResult><Name>b</Name><IsTruncated>true</IsTruncated>"
            b"<Contents><Key>a</Key></Contents>"
            b"<Contents><Key>c</Key></Contents></ListBucketResult>"
        )
        result = parse_list_objects(body)
        assert result.next_marker == "c"
        assert result.key_count == 2

    def test_list_multipart_uploads(self) -> None:
        body = (
            b"<ListMultipartUploadsResult><Bucket>b</Bucket>"
            b"<IsTruncated>true</IsTruncated>"
            b"<NextKeyMarker>k2</NextKeyMarker>"
            b"<NextUploadIdMarker>u2</NextUploadIdMarker>"
            b"<Upload><Key>k1</Key><UploadId>u1</UploadId>"
            b"<Initiated>2024-01-01T00:00:00Z</Initiated></Upload>"
            b"</ListMultipartUploadsResult>"
        )
        result = parse_list_multipart_uploads(body)
        assert result.uploads[0].key == "k1"
        assert result.uploads[0].upload_id == "u1"
        assert result.next_key_marker == "k2"
        assert result.next_upload_id_marker == "u2"

    def test_list_parts(self) -> None:
        body = (
            f"<ListPartsResult {NS}><Bucket>b</Bucket><Key>k</Key>"
            "<UploadId>u</UploadId><IsTruncated>false</IsTruncated>"
            "<Part><PartNumber>1</PartNumber><ETag>\"e1\"</ETag>"
            "<Size>5242880</Size></Part>"
            "<Part><PartNumber>2</PartNumber><ETag>e2</ETag>"
            "<Size>10</Size></Part>"
            "</ListPartsResult>"
        ).encode()
        result = parse_list_parts(body)
        assert [(p.part_number, p.etag, p.size) for p in result.parts] == [
            (1, "e1", 5242880),
            (2, "e2", 10),
        ]
        assert not result.is_truncated


class TestParseMultipart:
    """Tests for multipart response decoders."""

    def test_initiate(self) -> None:
        body = (
            f"<InitiateMultipartUploadResult {NS}><Bucket>b</Bucket>"
            "<Key>k</Key><UploadId>abc</UploadId>"
            "</InitiateMultipartUploadResult>"
        ).encode()
        result = parse_initiate_multipart_upload(body)
        assert (result.bucket, result.key, result.upload_id) == ("b", "k", "abc")

    def test_initiate_without_upload_id(self) -> None:
        """A response without an upload id is rejected."""
        with pytest.raises(XmlDecodeError):
            parse_initiate_multipart_upload(
                b"<InitiateMultipartUploadResult><Bucket>b</Bucket>"
                b"</InitiateMultipartUploadResult>"
            )

    def test_complete(self) -> None:
        body = (
            b"<CompleteMultipartUploadResult><Location>http://x/b/k</Location>"
            b"<Bucket>b</Bucket><Key>k</Key><ETag>\"abc-2\"</ETag>"
            b"</CompleteMultipartUploadResult>"
        )
        result = parse_complete_multipart_upload(body)
        assert result.etag == "abc-2"
        assert result.location == "http://x/b/k"

    def test_copy_object(self) -> None:
        body = (
            f"<CopyObjectResult {NS}>"
            "<LastModified>2013-05-24T00:00:00.000Z</LastModified>"
            "<ETag>&quot;abc&quot;</ETag></CopyObjectResult>"
        ).encode()
        result = parse_copy_object(body)
        assert result.etag == "abc"
        assert result.last_modified == datetime(2013, 5, 24, tzinfo=UTC)

    def test_copy_object_wrong_root(self) -> None:
        with pytest.raises(XmlDecodeError):
            parse_copy_object(b"<Error><Code>x</Code></Error>")

    def test_attribute_fields(self) -> None:
        """Scalar fields sent as attributes are accepted."""
        body = (
            b'<InitiateMultipartUploadResult Bucket="b" Key="k" UploadId="u"/>'
        )
        result = parse_initiate_multipart_upload(body)
        assert result.upload_id == "u"

    def test_root_name(self) -> None:
        """root_name reports the local root name or None."""
        assert root_name(f"<Error {NS}/>".encode()) == "Error"
        assert root_name(b"not xml") is None


class TestMisc:
    """Tests for the remaining decoders."""

    def test_location_constraint(self) -> None:
        body = f"<LocationConstraint {NS}>eu-west-1</LocationConstraint>"
        assert parse_location_constraint(body.encode()) == "eu-west-1"
        assert parse_location_constraint(b"<LocationConstraint/>") == ""

    def test_delete_result(self) -> None:
        body = (
            b"<DeleteResult><Deleted><Key>a</Key></Deleted>"
            b"<Error><Key>b</Key><Code>AccessDenied</Code>"
            b"<Message>no</Message></Error></DeleteResult>"
        )
        errors = parse_delete_result(body)
        assert len(errors) == 1
        assert (errors[0].key, errors[0].code) == ("b", "AccessDenied")

    def test_assume_role_response(self) -> None:
        """Credentials are found regardless of the action's root name."""
        body = (
            b'<AssumeRoleWithWebIdentityResponse xmlns="https://sts.'
            b'amazonaws.com/doc/2011-06-15/">'
            b"<AssumeRoleWithWebIdentityResult><Credentials>"
            b"<AccessKeyId>AK</AccessKeyId>"
            b"<SecretAccessKey>SK</SecretAccessKey>"
            b"<SessionToken>ST</SessionToken>"
            b"<Expiration>2030-01-01T00:00:00Z</Expiration>"
            b"</Credentials></AssumeRoleWithWebIdentityResult>"
            b"</AssumeRoleWithWebIdentityResponse>"
        )
        creds = parse_assume_role_response(body)
        assert creds.access_key == "AK"
        assert creds.secret_key == "SK"
        assert creds.session_token == "ST"
        assert creds.expiration == datetime(2030, 1, 1, tzinfo=UTC)

    def test_assume_role_without_credentials(self) -> None:
        with pytest.raises(XmlDecodeError):
            parse_assume_role_response(b"<AssumeRoleResponse/>")


class TestEncoders:
    """Tests for request body encoders."""

    def test_complete_manifest(self) -> None:
        """The manifest lists parts in order with quoted ETags."""
        body = build_complete_multipart_upload(
            [Part(1, '"aaa"'), Part(2, "bbb")]
        )
        text = body.decode()
        assert text.startswith("<CompleteMultipartUpload")
        assert "<PartNumber>1</PartNumber><ETag>\"aaa\"</ETag>" in text
        assert text.index("<PartNumber>1<") < text.index("<PartNumber>2<")

    def test_complete_manifest_decodes_back(self) -> None:
        """Decoding the manifest yields the same part list."""
        parts = [Part(1, "aaa"), Part(2, "bbb"), Part(3, "ccc")]
        decoded = parse_complete_multipart_upload_request(
            build_complete_multipart_upload(parts)
        )
        assert decoded == parts

    def test_create_bucket_configuration(self) -> None:
        """us-east-1 needs no configuration body."""
        assert build_create_bucket_configuration("us-east-1") is None
        body = build_create_bucket_configuration("eu-west-1")
        assert body is not None
        assert b"<LocationConstraint>eu-west-1</LocationConstraint>" in body

    def test_delete_objects(self) -> None:
        body = build_delete_objects(["a", "b&c"]).decode()
        assert "<Quiet>true</Quiet>" in body
        assert "<Key>a</Key>" in body
        assert "<Key>b&amp;c</Key>" in body
