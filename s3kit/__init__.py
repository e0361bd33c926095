# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Async client core for S3-compatible object storage.

Provides:
- SigV4 header signing, presigning and streaming (aws-chunked) signing
- Transport with retry policies and typed error classification
- Multipart upload planning and orchestration
- Credential providers (static, environment, STS with refresh)
- YAML configuration loading
"""

from s3kit.capabilities import Capabilities
from s3kit.client import S3Client
from s3kit.config import ClientConfig
from s3kit.credentials import (
    AssumeRoleProvider,
    AWSEnvironmentProvider,
    ChainedProvider,
    Credentials,
    CredentialsProvider,
    MinioEnvironmentProvider,
    StaticProvider,
    WebIdentityProvider,
)
from s3kit.errors import (
    AccessDeniedError,
    AuthorizationError,
    BucketNotFoundError,
    ClientValidationError,
    ConfigError,
    ConnectionFailedError,
    CredentialsProviderError,
    EntityTooLargeError,
    ErrorResponseError,
    InvalidExpiryError,
    InvalidPartError,
    InvalidPartSizeError,
    InvalidSessionStateError,
    ObjectNotFoundError,
    RedirectionError,
    RequestTimeoutError,
    S3KitError,
    TransportError,
    XmlDecodeError,
)
from s3kit.models import (
    CopyConditions,
    CopyObjectResult,
    ObjectStat,
    ObjectWriteResult,
    Part,
    RequestDescriptor,
    SignedRequest,
    UploadState,
)
from s3kit.retry import ExponentialBackoffPolicy, NoRetryPolicy
from s3kit.signing import PostPolicy, Signer
from s3kit.transport import HttpxTransport, ResponseResult


__all__ = [
    # client
    "S3Client",
    "ClientConfig",
    "Capabilities",
    # credentials
    "AssumeRoleProvider",
    "AWSEnvironmentProvider",
    "ChainedProvider",
    "Credentials",
    "CredentialsProvider",
    "MinioEnvironmentProvider",
    "StaticProvider",
    "WebIdentityProvider",
    # signing
    "PostPolicy",
    "Signer",
    # transport
    "ExponentialBackoffPolicy",
    "HttpxTransport",
    "NoRetryPolicy",
    "ResponseResult",
    # models
    "CopyConditions",
    "CopyObjectResult",
    "ObjectStat",
    "ObjectWriteResult",
    "Part",
    "RequestDescriptor",
    "SignedRequest",
    "UploadState",
    # errors
    "AccessDeniedError",
    "AuthorizationError",
    "BucketNotFoundError",
    "ClientValidationError",
    "ConfigError",
    "ConnectionFailedError",
    "CredentialsProviderError",
    "EntityTooLargeError",
    "ErrorResponseError",
    "InvalidExpiryError",
    "InvalidPartError",
    "InvalidPartSizeError",
    "InvalidSessionStateError",
    "ObjectNotFoundError",
    "RedirectionError",
    "RequestTimeoutError",
    "S3KitError",
    "TransportError",
    "XmlDecodeError",
]
