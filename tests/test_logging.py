# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for s3kit/logging.py."""

import logging

from s3kit.config import ClientConfig
from s3kit.credentials import Credentials
from s3kit.logging import SecretFilter, configure_logging


def _record(msg: str, *args: object) -> logging.LogRecord:
    return logging.LogRecord(
        name="s3kit.test",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=msg,
        args=args,
        exc_info=None,
    )


class TestSecretFilter:
    """Tests for SecretFilter."""

    def setup_method(self) -> None:
        SecretFilter.clear_secrets()

    def test_never_suppresses(self) -> None:
        """Records are modified, never dropped."""
        assert SecretFilter().filter(_record("plain")) is True

    def test_redacts_message_and_args(self) -> None:
        """Secrets are redacted in the message and in string args."""
        SecretFilter.register_secret("s3cr3t")
        record = _record("key=s3cr3t %s %d", "also s3cr3t", 7)
        SecretFilter().filter(record)
        assert record.msg == "key=[REDACTED] %s %d"
        assert record.args == ("also [REDACTED]", 7)

    def test_longest_secret_first(self) -> None:
        """A secret containing another is masked as a whole."""
        SecretFilter.register_secret("abc")
        SecretFilter.register_secret("abcdef")
        record = _record("abcdef abc")
        SecretFilter().filter(record)
        assert record.msg == "[REDACTED] [REDACTED]"

    def test_empty_ignored(self) -> None:
        """Empty strings and None never become patterns."""
        SecretFilter.register_secret("")
        SecretFilter.register_secret(None)
        record = _record("nothing to hide")
        SecretFilter().filter(record)
        assert record.msg == "nothing to hide"

    def test_credentials_register_secrets(self) -> None:
        """Constructing credentials registers the secret and token."""
        Credentials("AK", "very-secret", "session-tok")
        record = _record("very-secret session-tok AK")
        SecretFilter().filter(record)
        assert record.msg == "[REDACTED] [REDACTED] AK"

    def test_config_registers_secret(self) -> None:
        """Static keys in the client config are redacted too."""
        ClientConfig(
            endpoint="http://localhost:9000",
            access_key="AK",
            secret_key="config-secret",
        )
        record = _record("config-secret")
        SecretFilter().filter(record)
        assert record.msg == "[REDACTED]"


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_installs_single_filtered_handler(self) -> None:
        """Existing root handlers are replaced by one filtered handler."""
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            root.addHandler(logging.NullHandler())
            configure_logging(level=logging.DEBUG)
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert any(
                isinstance(f, SecretFilter) for f in root.handlers[0].filters
            )
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])

    def test_filter_optional(self) -> None:
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            configure_logging(add_secret_filter=False)
            assert root.handlers[0].filters == []
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])
