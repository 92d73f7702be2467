"""Symmetric encryption for the stored upstream API key."""

from __future__ import annotations

import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


def _fernet_for(secret: str) -> Fernet:
    # Fernet wants a urlsafe-base64 32-byte key; SHA-256 of the secret gives one.
    key_bytes = hashlib.sha256(secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(key_bytes))


class SecretBox:
    def __init__(self, secret: str):
        self._fernet = _fernet_for(secret)

    def encrypt(self, value: str) -> str:
        if not value:
            return ""
        return self._fernet.encrypt(value.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str) -> str:
        """Return the plain text, or raise ``ValueError`` when the secret changed."""
        if not token:
            return ""
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            logger.error("[crypto] Decryption failed: invalid token (secret may have changed)")
            raise ValueError("Failed to decrypt value: invalid token") from exc
