"""Fernet-based field encryption for sensitive wellness data at rest.

Free text (notes, journal content) and binary payloads (profile image,
journal images) are encrypted before writing to SQLite. Dates, ratings and
vocabulary tokens stay in the clear so they can be sorted and filtered.
"""

from __future__ import annotations

import base64
import json
import logging
import os
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


class FieldEncryptor:
    """Encrypts and decrypts JSON values and raw bytes with Fernet.

    Usage::

        encryptor = FieldEncryptor(key="...")
        token = encryptor.encrypt("slept badly")
        encryptor.decrypt(token)  # "slept badly"
    """

    def __init__(self, key: str) -> None:
        """Initialize with a Fernet key.

        Args:
            key: A valid Fernet key string. Generate with
                 :meth:`generate_key`.

        Raises:
            EncryptionError: If the key is empty or invalid.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    def encrypt(self, data: Any) -> str | None:
        """Encrypt a JSON-serializable value to a Fernet token string.

        ``None`` stays ``None`` so absent optional fields remain absent.

        Raises:
            EncryptionError: If serialization or encryption fails.
        """
        if data is None:
            return None
        try:
            plaintext = json.dumps(data, separators=(",", ":")).encode("utf-8")
            return self._fernet.encrypt(plaintext).decode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc

    def decrypt(self, token: str | None) -> Any:
        """Decrypt a Fernet token string back to a Python value.

        Raises:
            EncryptionError: If the token is invalid or decryption fails.
        """
        if token is None:
            return None
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
            return json.loads(plaintext)
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Decryption failed: {exc}") from exc

    def encrypt_bytes(self, data: bytes | None) -> str | None:
        if data is None:
            return None
        return self.encrypt(base64.b64encode(data).decode("ascii"))

    def decrypt_bytes(self, token: str | None) -> bytes | None:
        encoded = self.decrypt(token)
        if encoded is None:
            return None
        return base64.b64decode(encoded)

    def encrypt_blobs(self, blobs: list[bytes] | None) -> str | None:
        """Encrypt an ordered list of binary blobs as one token."""
        if blobs is None:
            return None
        return self.encrypt([base64.b64encode(b).decode("ascii") for b in blobs])

    def decrypt_blobs(self, token: str | None) -> list[bytes] | None:
        encoded = self.decrypt(token)
        if encoded is None:
            return None
        return [base64.b64decode(item) for item in encoded]

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key.

        Returns:
            A URL-safe base64-encoded 32-byte key as a string.
        """
        return Fernet.generate_key().decode("utf-8")


def load_or_create_key(key_path: str) -> str:
    """Read the device key from ``key_path``, generating it on first use.

    The file is created with owner-only permissions.
    """
    path = Path(key_path).expanduser()
    if path.exists():
        key = path.read_text(encoding="utf-8").strip()
        if not key:
            raise EncryptionError(f"Key file {path} is empty")
        return key

    path.parent.mkdir(parents=True, exist_ok=True)
    key = FieldEncryptor.generate_key()
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(key)
    logger.info("Generated new store encryption key at %s", path)
    return key
