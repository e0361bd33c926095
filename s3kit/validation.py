# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Bucket and object name validation.

Rules follow the S3 bucket naming documentation.  Every check runs before
a request is built, so invalid names never reach the network.
"""

import re

from s3kit.errors import InvalidBucketNameError, InvalidObjectNameError


_VALID_BUCKET_NAME = re.compile(r"^[a-z0-9][a-z0-9.\-]{1,61}[a-z0-9]$")
_IP_ADDRESS = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")

#: Maximum object key length in UTF-8 bytes.
MAX_OBJECT_NAME_BYTES = 1024


def validate_bucket_name(bucket_name: str) -> None:
    """Check a bucket name against S3 naming rules.

    Args:
        bucket_name: Name to check.

    Raises:
        InvalidBucketNameError: Describing the first rule violated.
    """
    if not bucket_name or not bucket_name.strip():
        raise InvalidBucketNameError(bucket_name, "cannot be empty")
    if len(bucket_name) < 3:
        raise InvalidBucketNameError(
            bucket_name, "cannot be shorter than 3 characters"
        )
    if len(bucket_name) > 63:
        raise InvalidBucketNameError(
            bucket_name, "cannot be longer than 63 characters"
        )
    if bucket_name[0] == "." or bucket_name[-1] == ".":
        raise InvalidBucketNameError(
            bucket_name, "cannot start or end with a '.'"
        )
    if any(ch.isupper() for ch in bucket_name):
        raise InvalidBucketNameError(
            bucket_name, "cannot contain upper case characters"
        )
    if ".." in bucket_name:
        raise InvalidBucketNameError(
            bucket_name, "cannot contain successive periods"
        )
    if ".-" in bucket_name or "-." in bucket_name:
        raise InvalidBucketNameError(
            bucket_name, "cannot have a '-' adjacent to a '.'"
        )
    if _IP_ADDRESS.match(bucket_name):
        raise InvalidBucketNameError(
            bucket_name, "cannot be formatted as an IP address"
        )
    if not _VALID_BUCKET_NAME.match(bucket_name):
        raise InvalidBucketNameError(
            bucket_name, "contains invalid characters"
        )


def validate_object_name(object_name: str) -> None:
    """Check an object key.

    Args:
        object_name: Key to check.

    Raises:
        InvalidObjectNameError: If the key is empty or too long.
    """
    if not object_name or not object_name.strip():
        raise InvalidObjectNameError(object_name, "cannot be empty")
    if len(object_name.encode("utf-8")) > MAX_OBJECT_NAME_BYTES:
        raise InvalidObjectNameError(
            object_name,
            f"cannot be longer than {MAX_OBJECT_NAME_BYTES} bytes",
        )


def validate_object_prefix(prefix: str) -> None:
    """Check a listing prefix (may be empty).

    Raises:
        InvalidObjectNameError: If the prefix is too long.
    """
    if len(prefix.encode("utf-8")) > MAX_OBJECT_NAME_BYTES:
        raise InvalidObjectNameError(
            prefix, f"prefix cannot be longer than {MAX_OBJECT_NAME_BYTES} bytes"
        )
