# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Digest primitives for request signing and payload checksums.

Signatures depend on exact digests, so every provider here must produce
output bit-identical to the standard algorithms.  Two providers exist:

- ``HashlibCryptoProvider`` (default): stdlib ``hashlib``/``hmac``.
- ``CryptographyCryptoProvider``: OpenSSL primitives via ``cryptography``,
  for deployments that must route all crypto through one audited backend.

``StreamHasher`` computes digests incrementally while the same chunks are
handed to the transport, so a large body is read once and never buffered
whole.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from collections.abc import AsyncIterable, AsyncIterator
from typing import Protocol

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac


#: Hex SHA-256 of the empty string.
EMPTY_SHA256 = hashlib.sha256(b"").hexdigest()


class Digest(Protocol):
    """Incremental hash object."""

    def update(self, data: bytes) -> None: ...

    def digest(self) -> bytes: ...


class CryptoProvider(Protocol):
    """Source of the digests the signer and hasher need."""

    name: str

    def sha256(self) -> Digest: ...

    def md5(self) -> Digest: ...

    def hmac_sha256(self, key: bytes, msg: bytes) -> bytes: ...

    def hmac_sha1(self, key: bytes, msg: bytes) -> bytes: ...


class HashlibCryptoProvider:
    """Crypto provider backed by the standard library."""

    name = "hashlib"

    def sha256(self) -> Digest:
        return hashlib.sha256()

    def md5(self) -> Digest:
        # Content-MD5 is an integrity checksum, not a security boundary
        return hashlib.md5(usedforsecurity=False)

    def hmac_sha256(self, key: bytes, msg: bytes) -> bytes:
        return hmac.new(key, msg, hashlib.sha256).digest()

    def hmac_sha1(self, key: bytes, msg: bytes) -> bytes:
        return hmac.new(key, msg, hashlib.sha1).digest()


class _CryptographyDigest:
    """Adapts ``cryptography``'s finalize-once Hash to the Digest protocol."""

    __slots__ = ("_hash", "_result")

    def __init__(self, algorithm: hashes.HashAlgorithm) -> None:
        self._hash = hashes.Hash(algorithm)
        self._result: bytes | None = None

    def update(self, data: bytes) -> None:
        if self._result is not None:
            raise RuntimeError("digest already finalized")
        self._hash.update(data)

    def digest(self) -> bytes:
        if self._result is None:
            self._result = self._hash.finalize()
        return self._result


class CryptographyCryptoProvider:
    """Crypto provider backed by ``cryptography`` (OpenSSL)."""

    name = "cryptography"

    def sha256(self) -> Digest:
        return _CryptographyDigest(hashes.SHA256())

    def md5(self) -> Digest:
        return _CryptographyDigest(hashes.MD5())

    def hmac_sha256(self, key: bytes, msg: bytes) -> bytes:
        h = crypto_hmac.HMAC(key, hashes.SHA256())
        h.update(msg)
        return h.finalize()

    def hmac_sha1(self, key: bytes, msg: bytes) -> bytes:
        h = crypto_hmac.HMAC(key, hashes.SHA1())
        h.update(msg)
        return h.finalize()


DEFAULT_CRYPTO: CryptoProvider = HashlibCryptoProvider()


# ---------------------------------------------------------------------------
# One-shot helpers
# ---------------------------------------------------------------------------


def sha256_hex(data: bytes, crypto: CryptoProvider = DEFAULT_CRYPTO) -> str:
    """Hex SHA-256 of ``data``."""
    h = crypto.sha256()
    h.update(data)
    return h.digest().hex()


def md5_hex(data: bytes, crypto: CryptoProvider = DEFAULT_CRYPTO) -> str:
    """Hex MD5 of ``data`` (the form S3 uses for single-part ETags)."""
    h = crypto.md5()
    h.update(data)
    return h.digest().hex()


def md5_base64(data: bytes, crypto: CryptoProvider = DEFAULT_CRYPTO) -> str:
    """Base64 MD5 of ``data`` (the ``Content-MD5`` header form)."""
    h = crypto.md5()
    h.update(data)
    return base64.b64encode(h.digest()).decode("ascii")


def hmac_sha256(
    key: bytes, msg: str | bytes, crypto: CryptoProvider = DEFAULT_CRYPTO
) -> bytes:
    """HMAC-SHA256 of ``msg`` (str is UTF-8 encoded)."""
    if isinstance(msg, str):
        msg = msg.encode("utf-8")
    return crypto.hmac_sha256(key, msg)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class StreamHasher:
    """Pass-through async iterator that digests the bytes it yields.

    Example:
        hasher = StreamHasher(source, md5=True)
        async for chunk in hasher:
            await sink.write(chunk)
        print(hasher.sha256_hex, hasher.md5_base64)

    Digests are available only after the source is exhausted; reading
    them earlier raises ``RuntimeError`` rather than returning a hash of a
    partial body.
    """

    def __init__(
        self,
        source: AsyncIterable[bytes],
        *,
        sha256: bool = True,
        md5: bool = False,
        crypto: CryptoProvider = DEFAULT_CRYPTO,
    ) -> None:
        self._source = source
        self._sha256 = crypto.sha256() if sha256 else None
        self._md5 = crypto.md5() if md5 else None
        self._consumed = False
        self._done = False
        self.bytes_read = 0

    def update(self, chunk: bytes) -> None:
        """Feed a chunk to all enabled digests."""
        self.bytes_read += len(chunk)
        if self._sha256 is not None:
            self._sha256.update(chunk)
        if self._md5 is not None:
            self._md5.update(chunk)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise RuntimeError("StreamHasher source can only be read once")
        self._consumed = True
        async for chunk in self._source:
            if not chunk:
                continue
            self.update(chunk)
            yield chunk
        self._done = True

    @property
    def finished(self) -> bool:
        """True once the source has been read to the end."""
        return self._done

    def _finished(self, what: str) -> None:
        if not self._done:
            raise RuntimeError(f"{what} requested before stream was consumed")

    @property
    def sha256_hex(self) -> str:
        self._finished("SHA-256")
        if self._sha256 is None:
            raise RuntimeError("SHA-256 was not enabled")
        return self._sha256.digest().hex()

    @property
    def md5_base64(self) -> str:
        self._finished("MD5")
        if self._md5 is None:
            raise RuntimeError("MD5 was not enabled")
        return base64.b64encode(self._md5.digest()).decode("ascii")

    @property
    def md5_hex(self) -> str:
        self._finished("MD5")
        if self._md5 is None:
            raise RuntimeError("MD5 was not enabled")
        return self._md5.digest().hex()


async def iter_bytes(
    data: bytes, chunk_size: int = 64 * 1024
) -> AsyncIterator[bytes]:
    """Yield ``data`` in chunks as an async stream."""
    for start in range(0, len(data), chunk_size):
        yield data[start : start + chunk_size]
