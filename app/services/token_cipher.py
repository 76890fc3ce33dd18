"""Symmetric encryption for provider tokens kept in the credential store."""

from __future__ import annotations

import base64
import hashlib
from typing import Iterable, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet


def _derive_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class TokenCipherService:
    """
    Encrypt and decrypt token strings with keys derived from configured secrets.

    The first secret encrypts; retired secrets listed in ``previous_secrets``
    are still accepted for decryption so stored rows survive a key rotation.
    """

    def __init__(self, *, secret: str, previous_secrets: Iterable[str] = ()) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        keys = [Fernet(_derive_key(secret))]
        keys.extend(Fernet(_derive_key(old)) for old in previous_secrets if old)
        self._fernet = MultiFernet(keys)

    def encrypt(self, plaintext: str) -> str:
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return token.decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"))
        except InvalidToken as exc:
            raise ValueError(
                "Failed to decrypt token; invalid ciphertext provided."
            ) from exc
        return plaintext.decode("utf-8")

    def encrypt_optional(self, plaintext: Optional[str]) -> Optional[str]:
        """Encrypt non-empty values; empty or missing values map to ``None``."""
        return self.encrypt(plaintext) if plaintext else None

    def decrypt_optional(self, ciphertext: Optional[str]) -> str:
        return self.decrypt(ciphertext) if ciphertext else ""

    def rotate(self, ciphertext: str) -> str:
        """Re-encrypt a value under the current primary key."""
        try:
            token = self._fernet.rotate(ciphertext.encode("utf-8"))
        except InvalidToken as exc:
            raise ValueError("Failed to rotate token; no configured key decrypts it.") from exc
        return token.decode("utf-8")


__all__ = ["TokenCipherService"]
