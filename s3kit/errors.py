# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Exception hierarchy for s3kit.

Four kinds of failure reach callers:

- ``ClientValidationError``: bad input detected before any network call.
  Never retried.
- ``TransportError``: the request did not produce an HTTP response
  (connection refused, timeout).  Eligible for retry under a policy.
- ``ErrorResponseError``: the server answered with a non-2xx status and
  (usually) an XML ``<Error>`` document.  Callers branch on ``code``.
- ``XmlDecodeError``: a success response whose body could not be parsed.
  Fatal for the call; the raw body is kept for diagnostics.
"""

from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from s3kit.models import ErrorResponse


class S3KitError(Exception):
    """Base exception for all s3kit errors."""


class ConfigError(S3KitError):
    """Raised when client configuration is missing or invalid."""


class CredentialsProviderError(S3KitError):
    """Raised when a credential provider cannot produce credentials."""


# ---------------------------------------------------------------------------
# Client validation
# ---------------------------------------------------------------------------


class ClientValidationError(S3KitError):
    """Input rejected locally before any request was sent."""


class InvalidBucketNameError(ClientValidationError):
    """Bucket name violates S3 naming rules."""

    def __init__(self, bucket_name: str, reason: str) -> None:
        self.bucket_name = bucket_name
        self.reason = reason
        super().__init__(f"Invalid bucket name {bucket_name!r}: {reason}")


class InvalidObjectNameError(ClientValidationError):
    """Object key violates S3 naming rules."""

    def __init__(self, object_name: str, reason: str) -> None:
        self.object_name = object_name
        self.reason = reason
        super().__init__(f"Invalid object name {object_name!r}: {reason}")


class InvalidPartError(ClientValidationError):
    """Part number or part list is not acceptable for a multipart upload."""


class InvalidPartSizeError(InvalidPartError):
    """Part size is outside the permitted bounds."""


class EntityTooLargeError(ClientValidationError):
    """Object is too large to upload with the requested part layout."""


class InvalidExpiryError(ClientValidationError):
    """Presigned URL expiry is non-positive, in the past or too long."""


class InvalidEndpointError(ClientValidationError):
    """Endpoint URL is malformed or unsupported."""


class InvalidSessionStateError(ClientValidationError):
    """Operation is not allowed in the multipart session's current state."""


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class TransportError(S3KitError):
    """The request failed below HTTP (no response was received)."""


class ConnectionFailedError(TransportError):
    """Connection could not be established or was dropped."""


class RequestTimeoutError(TransportError):
    """The request timed out."""


class RedirectionError(S3KitError):
    """Server answered with a redirect the client does not follow."""

    def __init__(self, status_code: int, location: str | None) -> None:
        self.status_code = status_code
        self.location = location
        super().__init__(
            f"Redirection ({status_code}) detected"
            + (f" to {location}" if location else "")
        )


# ---------------------------------------------------------------------------
# Protocol errors
# ---------------------------------------------------------------------------


class ErrorResponseError(S3KitError):
    """Server returned an S3 error response.

    Attributes:
        response: Decoded error document, merged with diagnostic headers.
        status_code: HTTP status of the response.
    """

    def __init__(self, response: ErrorResponse, status_code: int) -> None:
        self.response = response
        self.status_code = status_code
        message = response.message or response.code or "unknown error"
        super().__init__(
            f"{response.code or 'Error'} ({status_code}): {message}"
        )

    @property
    def code(self) -> str:
        """Server error code, e.g. ``NoSuchBucket``."""
        return self.response.code

    @property
    def request_id(self) -> str:
        """Server request id (``x-amz-request-id``)."""
        return self.response.request_id

    @property
    def host_id(self) -> str:
        """Extended request id (``x-amz-id-2``)."""
        return self.response.host_id


class BucketNotFoundError(ErrorResponseError):
    """The bucket does not exist."""


class ObjectNotFoundError(ErrorResponseError):
    """The object key does not exist."""


class AccessDeniedError(ErrorResponseError):
    """Access to the resource was denied."""


class AuthorizationError(ErrorResponseError):
    """Signature or access key was rejected by the server."""


class MalformedXMLError(ErrorResponseError):
    """Server could not parse the XML body we sent."""


class XmlDecodeError(S3KitError):
    """A response body could not be decoded as the expected XML document.

    Attributes:
        raw: The undecoded body text.
    """

    def __init__(self, message: str, raw: str) -> None:
        self.raw = raw
        super().__init__(message)
