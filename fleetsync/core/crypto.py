"""Encryption helpers for stored provider credentials.

Credentials are stored as ``base64(salt || nonce || ciphertext)`` where the
ciphertext is AES-256-GCM over the JSON-encoded credential mapping.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger("fleetsync.crypto")

_SALT_BYTES = 16
_NONCE_BYTES = 12
_KDF_ITERATIONS = 100_000
_DEFAULT_KEY = "fleetsync-development-key-change-me"


class CredentialCipher:
    """Encrypt and decrypt provider credential blobs."""

    def __init__(self, master_key: str | None = None) -> None:
        self._master_key = master_key or os.getenv("FLEETSYNC_ENCRYPTION_KEY", _DEFAULT_KEY)
        if len(self._master_key) < 32:
            logger.warning("Encryption key is shorter than 32 characters")

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=_KDF_ITERATIONS,
        )
        return kdf.derive(self._master_key.encode("utf-8"))

    def encrypt(self, credentials: dict[str, Any]) -> str:
        salt = os.urandom(_SALT_BYTES)
        nonce = os.urandom(_NONCE_BYTES)
        plaintext = json.dumps(credentials, ensure_ascii=True).encode("utf-8")
        ciphertext = AESGCM(self._derive_key(salt)).encrypt(nonce, plaintext, None)
        return base64.b64encode(salt + nonce + ciphertext).decode("ascii")

    def decrypt(self, token: str) -> dict[str, Any]:
        """Return the credential mapping, raising ``ValueError`` when unreadable."""
        try:
            raw = base64.b64decode(token.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise ValueError("Credential blob is not valid base64") from exc
        if len(raw) <= _SALT_BYTES + _NONCE_BYTES:
            raise ValueError("Credential blob is truncated")

        salt = raw[:_SALT_BYTES]
        nonce = raw[_SALT_BYTES : _SALT_BYTES + _NONCE_BYTES]
        ciphertext = raw[_SALT_BYTES + _NONCE_BYTES :]
        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            raise ValueError("Credential blob failed authentication") from exc

        data = json.loads(plaintext.decode("utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Credential blob is not a JSON object")
        return data


__all__ = ["CredentialCipher"]
