# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Credentials and credential providers.

A provider hands out an immutable ``Credentials`` snapshot.  Snapshots are
read concurrently by in-flight signings; providers backed by STS refresh
them behind a single-flight guard so concurrent callers share one refresh
round-trip.

Providers:

- ``StaticProvider``: fixed keys (or anonymous access).
- ``AWSEnvironmentProvider``: ``AWS_ACCESS_KEY_ID``/``AWS_SECRET_ACCESS_KEY``
  (with the older ``AWS_ACCESS_KEY``/``AWS_SECRET_KEY`` spellings).
- ``MinioEnvironmentProvider``: ``MINIO_ROOT_USER``/``MINIO_ROOT_PASSWORD``
  (or ``MINIO_ACCESS_KEY``/``MINIO_SECRET_KEY``).
- ``ChainedProvider``: first provider that succeeds.
- ``WebIdentityProvider``: STS ``AssumeRoleWithWebIdentity``.
- ``AssumeRoleProvider``: STS ``AssumeRole`` signed with long-term keys.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import urllib.parse
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

import httpx

from s3kit.errors import CredentialsProviderError, XmlDecodeError
from s3kit.logging import SecretFilter
from s3kit.models import RequestDescriptor
from s3kit.signing import Signer
from s3kit.xmlcodec import parse_assume_role_response


logger = logging.getLogger(__name__)

#: STS API version used for all AssumeRole* actions.
STS_VERSION = "2011-06-15"

#: Bounds applied to requested STS session durations.
MIN_DURATION_SECONDS = 15
MAX_DURATION_SECONDS = 7 * 24 * 60 * 60

#: Refresh credentials this long before they expire.
DEFAULT_REFRESH_MARGIN = timedelta(minutes=5)

_STS_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class Credentials:
    """An immutable credentials snapshot.

    Secret key and session token are registered with ``SecretFilter`` on
    construction and omitted from ``repr``.

    Attributes:
        access_key: Access key id.
        secret_key: Secret access key.
        session_token: STS session token, if temporary.
        expiration: Expiry instant of temporary credentials.
    """

    access_key: str = ""
    secret_key: str = field(default="", repr=False)
    session_token: str | None = field(default=None, repr=False)
    expiration: datetime | None = None

    def __post_init__(self) -> None:
        if bool(self.access_key) != bool(self.secret_key):
            raise CredentialsProviderError(
                "Access key and secret key must be set together"
            )
        SecretFilter.register_secret(self.secret_key)
        SecretFilter.register_secret(self.session_token)

    @property
    def is_anonymous(self) -> bool:
        """True when no keys are set; requests go out unsigned."""
        return not self.access_key and not self.secret_key

    def is_expired(
        self, now: datetime, skew: timedelta = timedelta(0)
    ) -> bool:
        """True if the snapshot expires within ``skew`` of ``now``."""
        if self.expiration is None:
            return False
        return self.expiration - skew <= now


class CredentialsProvider(Protocol):
    """Source of credentials for signing."""

    async def retrieve(self) -> Credentials: ...


# ---------------------------------------------------------------------------
# Static and environment providers
# ---------------------------------------------------------------------------


class StaticProvider:
    """Provider returning fixed credentials.

    With no arguments it yields anonymous credentials.
    """

    def __init__(
        self,
        access_key: str = "",
        secret_key: str = "",
        session_token: str | None = None,
    ) -> None:
        self._credentials = Credentials(
            access_key=access_key,
            secret_key=secret_key,
            session_token=session_token,
        )

    async def retrieve(self) -> Credentials:
        return self._credentials


def _first_env(*names: str) -> str:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return ""


class AWSEnvironmentProvider:
    """Read AWS credentials from the process environment."""

    async def retrieve(self) -> Credentials:
        access_key = _first_env("AWS_ACCESS_KEY_ID", "AWS_ACCESS_KEY")
        secret_key = _first_env("AWS_SECRET_ACCESS_KEY", "AWS_SECRET_KEY")
        if not access_key or not secret_key:
            raise CredentialsProviderError(
                "AWS_ACCESS_KEY_ID/AWS_SECRET_ACCESS_KEY not set"
            )
        return Credentials(
            access_key=access_key,
            secret_key=secret_key,
            session_token=_first_env("AWS_SESSION_TOKEN") or None,
        )


class MinioEnvironmentProvider:
    """Read MinIO root or legacy access credentials from the environment."""

    async def retrieve(self) -> Credentials:
        access_key = _first_env("MINIO_ROOT_USER", "MINIO_ACCESS_KEY")
        secret_key = _first_env("MINIO_ROOT_PASSWORD", "MINIO_SECRET_KEY")
        if not access_key or not secret_key:
            raise CredentialsProviderError(
                "MINIO_ROOT_USER/MINIO_ROOT_PASSWORD not set"
            )
        return Credentials(access_key=access_key, secret_key=secret_key)


class ChainedProvider:
    """Try providers in order; the first that succeeds wins.

    Args:
        providers: Providers to try.
    """

    def __init__(self, providers: Sequence[CredentialsProvider]) -> None:
        if not providers:
            raise CredentialsProviderError("ChainedProvider needs providers")
        self._providers = list(providers)

    async def retrieve(self) -> Credentials:
        failures: list[str] = []
        for provider in self._providers:
            try:
                return await provider.retrieve()
            except CredentialsProviderError as e:
                logger.debug(
                    "%s yielded no credentials: %s",
                    type(provider).__name__,
                    e,
                )
                failures.append(f"{type(provider).__name__}: {e}")
        raise CredentialsProviderError(
            "No provider yielded credentials (" + "; ".join(failures) + ")"
        )


# ---------------------------------------------------------------------------
# Refreshing providers
# ---------------------------------------------------------------------------


class RefreshingProvider:
    """Base for providers whose credentials expire.

    ``retrieve()`` returns the cached snapshot while it is fresh.  Once it
    is within ``refresh_margin`` of expiry, the first caller starts a
    refresh task; every concurrent caller awaits that same task.  The lock
    only guards task creation, never the network round-trip.

    Subclasses implement ``_fetch()``.

    Args:
        refresh_margin: How long before expiry to refresh.
        clock: Returns the current time (UTC).
    """

    def __init__(
        self,
        *,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._refresh_margin = refresh_margin
        self._clock = clock or (lambda: datetime.now(UTC))
        self._cached: Credentials | None = None
        self._lock = asyncio.Lock()
        self._refresh_task: asyncio.Task[Credentials] | None = None

    def _is_fresh(self, credentials: Credentials | None) -> bool:
        return credentials is not None and not credentials.is_expired(
            self._clock(), self._refresh_margin
        )

    async def retrieve(self) -> Credentials:
        cached = self._cached
        if self._is_fresh(cached):
            assert cached is not None
            return cached
        async with self._lock:
            cached = self._cached
            if self._is_fresh(cached):
                assert cached is not None
                return cached
            if self._refresh_task is None or self._refresh_task.done():
                self._refresh_task = asyncio.create_task(self._refresh())
            task = self._refresh_task
        # A cancelled caller must not cancel the shared refresh
        return await asyncio.shield(task)

    async def _refresh(self) -> Credentials:
        logger.debug("Refreshing credentials via %s", type(self).__name__)
        credentials = await self._fetch()
        self._cached = credentials
        logger.info(
            "Obtained credentials for %s (expires %s)",
            credentials.access_key,
            credentials.expiration.isoformat()
            if credentials.expiration
            else "never",
        )
        return credentials

    async def _fetch(self) -> Credentials:
        raise NotImplementedError


def clamp_duration(seconds: int) -> int:
    """Clamp a requested STS session duration to the accepted range."""
    return max(MIN_DURATION_SECONDS, min(seconds, MAX_DURATION_SECONDS))


class _STSProvider(RefreshingProvider):
    """Shared HTTP plumbing for STS ``AssumeRole*`` actions."""

    def __init__(
        self,
        sts_endpoint: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(refresh_margin=refresh_margin, clock=clock)
        self._sts_endpoint = sts_endpoint
        self._http_client = http_client

    async def _send(self, request: httpx.Request) -> httpx.Response:
        try:
            if self._http_client is not None:
                return await self._http_client.send(request)
            async with httpx.AsyncClient(
                timeout=_STS_TIMEOUT_SECONDS
            ) as client:
                return await client.send(request)
        except httpx.HTTPError as e:
            raise CredentialsProviderError(
                f"STS request to {self._sts_endpoint} failed: {e}"
            ) from e

    def _decode(self, response: httpx.Response) -> Credentials:
        if response.status_code != 200:
            raise CredentialsProviderError(
                f"STS returned HTTP {response.status_code}: "
                f"{response.text[:500]}"
            )
        try:
            sts = parse_assume_role_response(response.content)
        except XmlDecodeError as e:
            raise CredentialsProviderError(str(e)) from e
        return Credentials(
            access_key=sts.access_key,
            secret_key=sts.secret_key,
            session_token=sts.session_token or None,
            expiration=sts.expiration,
        )


class WebIdentityProvider(_STSProvider):
    """Exchange an OIDC token for credentials via
    ``AssumeRoleWithWebIdentity``.

    Args:
        sts_endpoint: STS endpoint URL (for MinIO, the server URL).
        token_source: Returns the identity token (sync or async).
        role_arn: Role to assume, if the server requires one.
        role_session_name: Session name recorded by STS.
        duration_seconds: Requested session length (clamped).
        policy: Optional inline session policy (JSON).
        http_client: Client to send the STS request with.
    """

    def __init__(
        self,
        sts_endpoint: str,
        token_source: Callable[[], str | Awaitable[str]],
        *,
        role_arn: str | None = None,
        role_session_name: str | None = None,
        duration_seconds: int = 3600,
        policy: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(
            sts_endpoint,
            http_client=http_client,
            refresh_margin=refresh_margin,
            clock=clock,
        )
        self._token_source = token_source
        self._role_arn = role_arn
        self._role_session_name = role_session_name
        self._duration = clamp_duration(duration_seconds)
        self._policy = policy

    async def _token(self) -> str:
        token = self._token_source()
        if inspect.isawaitable(token):
            token = await token
        if not token:
            raise CredentialsProviderError("Web identity token is empty")
        return token

    async def _fetch(self) -> Credentials:
        form = {
            "Action": "AssumeRoleWithWebIdentity",
            "Version": STS_VERSION,
            "WebIdentityToken": await self._token(),
            "DurationSeconds": str(self._duration),
        }
        if self._role_arn:
            form["RoleArn"] = self._role_arn
        if self._role_session_name:
            form["RoleSessionName"] = self._role_session_name
        if self._policy:
            form["Policy"] = self._policy
        request = httpx.Request("POST", self._sts_endpoint, data=form)
        return self._decode(await self._send(request))


class AssumeRoleProvider(_STSProvider):
    """Obtain temporary credentials via STS ``AssumeRole``.

    The STS request itself is SigV4-signed (service ``sts``) with the
    long-term keys.

    Args:
        sts_endpoint: STS endpoint URL.
        access_key: Long-term access key.
        secret_key: Long-term secret key.
        region: Signing region for STS.
        role_arn: Role to assume.
        role_session_name: Session name recorded by STS.
        duration_seconds: Requested session length (clamped).
        policy: Optional inline session policy (JSON).
        http_client: Client to send the STS request with.
    """

    def __init__(
        self,
        sts_endpoint: str,
        access_key: str,
        secret_key: str,
        *,
        region: str = "us-east-1",
        role_arn: str | None = None,
        role_session_name: str | None = None,
        duration_seconds: int = 3600,
        policy: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(
            sts_endpoint,
            http_client=http_client,
            refresh_margin=refresh_margin,
            clock=clock,
        )
        self._long_term = Credentials(
            access_key=access_key, secret_key=secret_key
        )
        self._region = region
        self._role_arn = role_arn
        self._role_session_name = role_session_name
        self._duration = clamp_duration(duration_seconds)
        self._policy = policy

    async def _fetch(self) -> Credentials:
        form = {
            "Action": "AssumeRole",
            "Version": STS_VERSION,
            "DurationSeconds": str(self._duration),
        }
        if self._role_arn:
            form["RoleArn"] = self._role_arn
        if self._role_session_name:
            form["RoleSessionName"] = self._role_session_name
        if self._policy:
            form["Policy"] = self._policy
        body = urllib.parse.urlencode(form).encode("utf-8")
        descriptor = RequestDescriptor.build(
            "POST",
            self._sts_endpoint,
            "/",
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
            },
            body=body,
            region=self._region,
            service="sts",
        )
        signed = Signer().sign_v4(
            descriptor, self._long_term, self._region, self._clock()
        )
        request = httpx.Request(
            "POST",
            signed.url,
            headers=list(signed.headers),
            content=body,
        )
        return self._decode(await self._send(request))
