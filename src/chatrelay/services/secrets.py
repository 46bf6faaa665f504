"""Encryption of the API key stored in the settings file."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

__all__ = ["SecretVault"]

LOGGER = logging.getLogger(__name__)


class SecretVault:
    """Fernet-backed vault whose key lives in a file next to the settings.

    Sealed values carry a ``fernet:`` prefix. The key file is created on first
    use with owner-only permissions.
    """

    strategy = "fernet"

    def __init__(self, *, key_path: Path) -> None:
        self.key_path = key_path
        self._cipher: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.strategy}:{token}"

    def decrypt(self, token: str | None) -> str:
        """Return the plaintext sealed in ``token``.

        Raises:
            ValueError: The token names another backend or fails verification.
        """
        if not token:
            return ""
        backend, sep, body = token.partition(":")
        if not sep:
            backend, body = self.strategy, token
        if backend != self.strategy:
            raise ValueError(f"Secret was encrypted with unsupported backend '{backend}'")
        try:
            plaintext = self._fernet().decrypt(body.encode("ascii"))
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc
        return plaintext.decode("utf-8")

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._read_or_create_key())
        return self._cipher

    def _read_or_create_key(self) -> bytes:
        if self.key_path.exists():
            return self.key_path.read_bytes().strip()
        self.key_path.parent.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        staging = self.key_path.with_name(self.key_path.name + ".new")
        fd = os.open(staging, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as handle:
            handle.write(key)
        os.replace(staging, self.key_path)
        LOGGER.info("Created settings encryption key at %s", self.key_path)
        return key
