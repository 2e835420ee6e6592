"""Symmetric encryption for partner access tokens kept in the token store."""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken


class TokenCipherService:
    """Encrypt and decrypt access tokens using a Fernet key derived from a secret.

    Ciphertexts carry a ``fernet:`` prefix so rows written before encryption
    was enabled can still be recognised and read as plaintext.
    """

    PREFIX = "fernet:"

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def is_encrypted(self, value: str) -> bool:
        return value.startswith(self.PREFIX)

    def encrypt(self, plaintext: str) -> str:
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return self.PREFIX + token.decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored value; values without the prefix are returned as-is."""
        if not self.is_encrypted(ciphertext):
            return ciphertext
        try:
            plaintext = self._fernet.decrypt(ciphertext[len(self.PREFIX):].encode("utf-8"))
        except InvalidToken as exc:
            raise ValueError(
                "Failed to decrypt stored token; was the encryption secret rotated?"
            ) from exc
        return plaintext.decode("utf-8")


__all__ = ["TokenCipherService"]
