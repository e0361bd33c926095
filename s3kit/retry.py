# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Retry policies wrapped around single request executions.

A policy receives a request *factory*, not a request: every attempt builds,
signs and sends a fresh request, so a streamed part upload restarts its
byte stream from the beginning instead of resuming mid-stream.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Protocol

from s3kit.transport import ResponseResult


logger = logging.getLogger(__name__)

#: Statuses that indicate a transient server-side condition.
RETRYABLE_STATUSES = frozenset({500, 502, 503, 504})

#: Error codes that mean the server is throttling the client.
THROTTLE_CODES = frozenset(
    {"SlowDown", "RequestLimitExceeded", "Throttling", "RequestTimeout"}
)

#: Methods whose requests may be repeated with an identical payload.
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "PUT"})

RequestFactory = Callable[[], Awaitable[ResponseResult]]


class RetryPolicy(Protocol):
    """Strategy deciding whether a failed attempt is repeated."""

    async def execute(
        self, request_factory: RequestFactory, *, idempotent: bool
    ) -> ResponseResult: ...


class NoRetryPolicy:
    """Run the request exactly once."""

    async def execute(
        self, request_factory: RequestFactory, *, idempotent: bool
    ) -> ResponseResult:
        return await request_factory()


class ExponentialBackoffPolicy:
    """Retry transient failures of idempotent requests with backoff.

    Retried: transport failures, HTTP 500/502/503/504, and 4xx/5xx
    responses whose error code signals throttling (``SlowDown``).  The
    delay before attempt ``n`` is ``base_delay * 2**(n-1)`` capped at
    ``max_delay``, scaled by a random factor in ``[1 - jitter, 1]``.

    Args:
        max_attempts: Total attempts including the first.
        base_delay: First delay in seconds.
        max_delay: Upper bound on any delay.
        jitter: Fraction of the delay that is randomized (0 disables).
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.2,
        max_delay: float = 20.0,
        jitter: float = 0.5,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0.0 <= jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._sleep = sleep

    def delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter:
            delay *= 1.0 - random.uniform(0.0, self.jitter)
        return delay

    async def _is_retryable(self, result: ResponseResult) -> bool:
        if result.exception is not None:
            return True
        if result.is_success:
            return False
        if result.status_code in RETRYABLE_STATUSES:
            return True
        if result.status_code in (400, 403, 429, 503):
            # Throttling is only recognizable from the error body
            body = await result.text()
            return any(f"<Code>{code}</Code>" in body for code in THROTTLE_CODES)
        return False

    async def execute(
        self, request_factory: RequestFactory, *, idempotent: bool
    ) -> ResponseResult:
        attempt = 1
        while True:
            result = await request_factory()
            if (
                not idempotent
                or attempt >= self.max_attempts
                or not await self._is_retryable(result)
            ):
                return result
            reason = (
                str(result.exception)
                if result.exception is not None
                else f"HTTP {result.status_code}"
            )
            await result.aclose()
            delay = self.delay(attempt)
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.2fs",
                attempt,
                self.max_attempts,
                reason,
                delay,
            )
            await self._sleep(delay)
            attempt += 1
