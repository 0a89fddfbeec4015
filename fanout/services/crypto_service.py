"""Symmetric encryption for credentials stored at rest."""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any

from cryptography.fernet import Fernet, InvalidToken


def derive_key(secret_key: str) -> bytes:
    """Derive a Fernet key from the application secret using SHA-256."""
    digest = hashlib.sha256(secret_key.encode()).digest()
    return base64.urlsafe_b64encode(digest)


class CredentialCipher:
    """Fernet cipher bound to the application secret.

    ``decrypt`` is the ``ciphertext -> plaintext JSON`` callable handed to the
    posting dispatcher; it raises ValueError for anything it cannot open.
    """

    def __init__(self, secret_key: str) -> None:
        self._fernet = Fernet(derive_key(secret_key))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as exc:
            raise ValueError("Failed to decrypt credential data") from exc

    def encrypt_json(self, credentials: dict[str, Any]) -> str:
        return self.encrypt(json.dumps(credentials))

    def decrypt_json(self, ciphertext: str) -> dict[str, Any]:
        """Decrypt and parse a credential bag. Raises ValueError on any failure."""
        data = json.loads(self.decrypt(ciphertext))
        if not isinstance(data, dict):
            msg = "Credential data is not a JSON object"
            raise ValueError(msg)
        return data
