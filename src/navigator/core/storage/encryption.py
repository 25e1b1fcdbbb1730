"""Fernet encryption of stored documents.

A document's whole field map is sealed into one Fernet token before it is
written to SQLite; only its path and timestamps stay in the clear so the
store can address and order rows without the key. The sealed envelope also
carries the document path, so a token copied onto another row (another
user's profile, say) is refused on read instead of being served as that
row's data.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when a document cannot be sealed or opened."""


class DocumentEncryptor:
    """Seals and opens document field maps with a Fernet key.

    Usage::

        encryptor = DocumentEncryptor(key="...")
        token = encryptor.encrypt_document("users/u1/healthLogs/a1", {"heartRate": 72})
        encryptor.decrypt_document("users/u1/healthLogs/a1", token)  # {"heartRate": 72}
    """

    def __init__(self, key: str) -> None:
        """Initialize with a Fernet key (``ENCRYPTION_KEY``).

        Raises:
            EncryptionError: If the key is empty or invalid.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        try:
            self._fernet = Fernet(key.encode())
        except ValueError as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    def encrypt_document(self, path: str, data: Mapping[str, Any]) -> str:
        """Seal the fields of the document at ``path``.

        Raises:
            EncryptionError: If ``data`` is not a mapping or not JSON-serializable.
        """
        if not isinstance(data, Mapping):
            raise EncryptionError(
                f"Document {path} must be a mapping, not {type(data).__name__}"
            )
        envelope = {"path": path, "fields": dict(data)}
        try:
            plaintext = json.dumps(envelope, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Encryption failed for {path}: {exc}") from exc
        return self._fernet.encrypt(plaintext).decode("utf-8")

    def decrypt_document(self, path: str, token: str) -> dict[str, Any]:
        """Open the token stored for ``path``; an empty token is an empty document.

        Raises:
            EncryptionError: On a wrong key, a corrupt token, or a token
                sealed for a different path.
        """
        if not token:
            return {}
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        try:
            envelope = json.loads(plaintext)
        except json.JSONDecodeError as exc:
            raise EncryptionError(f"Decryption failed: {exc}") from exc

        if not isinstance(envelope, dict) or not isinstance(envelope.get("fields"), dict):
            raise EncryptionError(f"Decryption failed: {path} holds no document")
        if envelope.get("path") != path:
            logger.error("Refusing document sealed for %r at %r", envelope.get("path"), path)
            raise EncryptionError(f"Decryption failed: token does not belong to {path}")
        return envelope["fields"]

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")
