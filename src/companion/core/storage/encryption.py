"""Fernet-based payload encryption for wellness data at rest.

Sample payloads and key-value records are serialized to JSON and sealed
before they reach SQLite. Stream names, timestamps and record versions
stay in the clear so range queries and compare-and-set work on the index.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when a payload cannot be sealed or opened."""


class PayloadCipher:
    """Seals and opens JSON-serializable payloads with a Fernet key.

    Usage::

        cipher = PayloadCipher(key=PayloadCipher.generate_key())
        token = cipher.seal({"value": 7, "unit": "score"})
        cipher.open(token)  # {"value": 7, "unit": "score"}
    """

    def __init__(self, key: str) -> None:
        """Initialize with a Fernet key.

        Raises:
            EncryptionError: If the key is empty or not a valid Fernet key.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        try:
            self._fernet = Fernet(key.encode("utf-8"))
        except ValueError as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    def seal(self, payload: Any) -> str:
        """Serialize ``payload`` to compact JSON and encrypt it.

        ``datetime`` and other non-JSON values are rejected; callers convert
        them to ISO strings first.
        """
        try:
            plaintext = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Payload is not JSON-serializable: {exc}") from exc
        return self._fernet.encrypt(plaintext).decode("utf-8")

    def open(self, token: str) -> Any:
        """Decrypt a token produced by :meth:`seal`."""
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        return json.loads(plaintext)

    @staticmethod
    def generate_key() -> str:
        """Generate a new URL-safe base64 Fernet key."""
        return Fernet.generate_key().decode("utf-8")
