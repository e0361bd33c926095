# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Host capabilities injected into the client.

Environment-specific behaviour (how the user agent reads, which crypto
backend computes digests, where request traces go, what time it is) is
passed in as one ``Capabilities`` value instead of being selected by
subclassing the client.
"""

import logging
import platform
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from importlib import metadata

from s3kit.hashing import DEFAULT_CRYPTO, CryptoProvider


def _package_version() -> str:
    try:
        return metadata.version("s3kit")
    except metadata.PackageNotFoundError:
        return "0.0.0"


def default_user_agent() -> str:
    """``s3kit/<version> (<os>; <arch>) Python/<version>``."""
    return (
        f"s3kit/{_package_version()} "
        f"({platform.system()}; {platform.machine()}) "
        f"Python/{platform.python_version()}"
    )


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Capabilities:
    """Capability set for an ``S3Client``.

    Attributes:
        user_agent: Returns the ``User-Agent`` header value.
        app_info: ``name/version`` appended to the user agent.
        crypto: Digest provider for signing and checksums.
        log_sink: Logger receiving request/response traces.
        clock: Returns the current UTC time; read once per request.
    """

    user_agent: Callable[[], str] = default_user_agent
    app_info: str = ""
    crypto: CryptoProvider = DEFAULT_CRYPTO
    log_sink: logging.Logger = field(
        default_factory=lambda: logging.getLogger("s3kit.trace")
    )
    clock: Callable[[], datetime] = utc_now

    def user_agent_header(self) -> str:
        base = self.user_agent()
        return f"{base} {self.app_info}" if self.app_info else base
