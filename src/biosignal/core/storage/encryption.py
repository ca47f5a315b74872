"""Fernet field encryption for raw samples and intake profiles at rest.

Raw wearable values and the intake profile are encrypted before they reach
SQLite. Derived rows (baselines, alerts, records, scores) stay in the clear
so they can be indexed and queried.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


class FieldEncryptor:
    """Encrypts JSON-serializable values with a primary key, decrypts with any known key.

    Retired keys passed as ``previous_keys`` remain valid for decryption so a
    key can be rotated without rewriting stored rows first.

    Usage::

        encryptor = FieldEncryptor(key="...", previous_keys=["old-key"])
        token = encryptor.encrypt({"hrv": 42.0})
        encryptor.decrypt(token)  # {"hrv": 42.0}
    """

    def __init__(self, key: str, previous_keys: Sequence[str] = ()) -> None:
        """Initialize with a primary Fernet key and optional retired keys.

        Raises:
            EncryptionError: If any key is empty or invalid.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        try:
            fernets = [Fernet(k.encode()) for k in (key, *previous_keys)]
        except ValueError as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc
        self._primary = fernets[0]
        self._fernet = MultiFernet(fernets)
        if previous_keys:
            logger.info("Field encryptor configured with %d retired key(s)", len(previous_keys))

    def encrypt(self, data: Any) -> str:
        """Serialize to compact JSON and encrypt with the primary key.

        Returns an empty string for ``None``.
        """
        if data is None:
            return ""
        try:
            plaintext = json.dumps(data, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Value is not JSON-serializable: {exc}") from exc
        return self._primary.encrypt(plaintext).decode("utf-8")

    def decrypt(self, token: str) -> Any:
        """Decrypt a token produced by this or a retired key.

        Returns ``None`` for an empty token.
        """
        if not token:
            return None
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or unknown key") from exc
        return json.loads(plaintext)

    def rotate(self, token: str) -> str:
        """Re-encrypt a token under the primary key."""
        if not token:
            return ""
        try:
            return self._fernet.rotate(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise EncryptionError("Rotation failed: invalid token or unknown key") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new URL-safe base64 Fernet key."""
        return Fernet.generate_key().decode("utf-8")
