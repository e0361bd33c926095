# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Client configuration.

``ClientConfig`` can be built directly or loaded from YAML.  The default
file location follows the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/s3kit/s3kit.yaml``
    (typically ``~/.config/s3kit/s3kit.yaml``)

``!env`` tags resolve values from environment variables, so keys need not
be written to the file::

    endpoint: https://s3.eu-west-2.amazonaws.com
    credentials:
      access_key: !env AWS_ACCESS_KEY_ID
      secret_key: !env AWS_SECRET_ACCESS_KEY
    upload:
      part_size: 16777216
      max_concurrency: 4
    retry:
      max_attempts: 3
"""

import logging
import os
import urllib.parse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, overload

import yaml
from platformdirs import user_config_path

from s3kit.dotenv_loader import APP_NAME, load_dotenv_once
from s3kit.errors import ConfigError
from s3kit.logging import SecretFilter
from s3kit.multipart import MAX_PART_SIZE, MIN_PART_SIZE


logger = logging.getLogger(__name__)

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off", ""})

_SIGNATURE_VERSIONS = frozenset({"v2", "v4"})


def get_config_path() -> Path:
    """Return the default config file path.

    Returns:
        ``$XDG_CONFIG_HOME/s3kit/s3kit.yaml``.
    """
    return user_config_path(APP_NAME) / "s3kit.yaml"


@dataclass(frozen=True)
class ClientConfig:
    """Settings for one ``S3Client``.

    Attributes:
        endpoint: Base URL of the S3-compatible service.
        region: Signing region.  None means resolve from the endpoint host
            or the bucket location.
        access_key: Static access key (empty for providers or anonymous).
        secret_key: Static secret key.
        session_token: Static session token.
        virtual_host_style: Address buckets as ``bucket.host`` instead of
            ``host/bucket``.
        part_size: Multipart part size in bytes.  None picks the smallest
            size that fits the object in 10000 parts.
        max_concurrency: Parallel part uploads per ``put_object``.
        chunked_signing: Sign streaming uploads with aws-chunked
            per-chunk signatures instead of ``UNSIGNED-PAYLOAD``.
        signature_version: ``v4`` or legacy ``v2``.
        list_objects_v1: Use ListObjects v1 (marker) instead of v2.
        timeout: Per-request timeout in seconds.
        max_attempts: Attempts per idempotent request (1 = no retry).
        retry_base_delay: First backoff delay in seconds.
        retry_max_delay: Backoff cap in seconds.
    """

    endpoint: str
    region: str | None = None
    access_key: str = ""
    secret_key: str = field(default="", repr=False)
    session_token: str | None = field(default=None, repr=False)
    virtual_host_style: bool = False
    part_size: int | None = None
    max_concurrency: int = 4
    chunked_signing: bool = False
    signature_version: str = "v4"
    list_objects_v1: bool = False
    timeout: float = 60.0
    max_attempts: int = 1
    retry_base_delay: float = 0.2
    retry_max_delay: float = 20.0

    def __post_init__(self) -> None:
        parts = urllib.parse.urlsplit(self.endpoint)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ConfigError(
                f"endpoint must be an http(s) URL, got {self.endpoint!r}"
            )
        if parts.query or parts.fragment:
            raise ConfigError("endpoint must not carry a query or fragment")
        if self.part_size is not None and not (
            MIN_PART_SIZE <= self.part_size <= MAX_PART_SIZE
        ):
            raise ConfigError(
                f"part_size must be between {MIN_PART_SIZE} and "
                f"{MAX_PART_SIZE} bytes, got {self.part_size}"
            )
        if self.max_concurrency < 1:
            raise ConfigError("max_concurrency must be at least 1")
        if self.signature_version not in _SIGNATURE_VERSIONS:
            raise ConfigError(
                f"signature_version must be one of "
                f"{sorted(_SIGNATURE_VERSIONS)}, "
                f"got {self.signature_version!r}"
            )
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if self.retry_base_delay < 0 or self.retry_max_delay < 0:
            raise ConfigError("retry delays must not be negative")
        if bool(self.access_key) != bool(self.secret_key):
            raise ConfigError(
                "access_key and secret_key must be configured together"
            )
        SecretFilter.register_secret(self.secret_key)
        SecretFilter.register_secret(self.session_token)

    @property
    def secure(self) -> bool:
        return self.endpoint.startswith("https://")

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "ClientConfig":
        """Load configuration from a YAML file.

        Values tagged ``!env VAR_NAME`` are resolved from the environment
        at load time.  ``.env`` files are loaded first if present.

        Args:
            config_path: Path to the YAML file.  Defaults to
                ``~/.config/s3kit/s3kit.yaml`` (XDG).

        Returns:
            ClientConfig instance.

        Raises:
            ConfigError: If the file is missing, malformed or a required
                value is absent.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            with open(config_path) as f:
                raw = yaml.load(f, Loader=_make_loader())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls._from_raw(raw)
        logger.info(
            "Client config loaded: endpoint=%s, region=%s",
            config.endpoint,
            config.region or "auto",
        )
        return config

    @classmethod
    def _from_raw(cls, raw: dict) -> "ClientConfig":
        """Build config from parsed (but unresolved) YAML."""
        credentials = _section(raw, "credentials")
        addressing = _section(raw, "addressing")
        upload = _section(raw, "upload")
        retry = _section(raw, "retry")

        try:
            return cls(
                endpoint=_resolve(raw.get("endpoint"), str, required="endpoint"),
                region=_resolve(raw.get("region"), str) or None,
                access_key=_resolve(
                    credentials.get("access_key"), str, default=""
                ),
                secret_key=_resolve(
                    credentials.get("secret_key"), str, default=""
                ),
                session_token=_resolve(credentials.get("session_token"), str)
                or None,
                virtual_host_style=_resolve(
                    addressing.get("virtual_host_style"), bool, default=False
                ),
                list_objects_v1=_resolve(
                    addressing.get("list_objects_v1"), bool, default=False
                ),
                part_size=_resolve(upload.get("part_size"), int),
                max_concurrency=_resolve(
                    upload.get("max_concurrency"), int, default=4
                ),
                chunked_signing=_resolve(
                    upload.get("chunked_signing"), bool, default=False
                ),
                signature_version=_resolve(
                    raw.get("signature_version"), str, default="v4"
                ),
                timeout=_resolve(raw.get("timeout"), float, default=60.0),
                max_attempts=_resolve(
                    retry.get("max_attempts"), int, default=1
                ),
                retry_base_delay=_resolve(
                    retry.get("base_delay"), float, default=0.2
                ),
                retry_max_delay=_resolve(
                    retry.get("max_delay"), float, default=20.0
                ),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid config value: {e}") from e


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


_MISSING = object()


@overload
def _resolve[T](value: object, coerce: type[T], *, default: T) -> T: ...


@overload
def _resolve[T](value: object, coerce: type[T], *, required: str) -> T: ...


@overload
def _resolve[T](value: object, coerce: type[T]) -> T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None or a literal).
        coerce: Target type.
        default: Default when the value is absent.
        required: Field name; when set, absence raises ``ConfigError``.

    Returns:
        The resolved value, or None when optional and absent.
    """
    if isinstance(value, _EnvVar):
        resolved: object = os.environ.get(value.var_name)
    else:
        resolved = value

    if resolved is None:
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    if isinstance(resolved, coerce):
        return resolved
    return coerce(resolved)
