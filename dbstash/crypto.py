"""Symmetric encryption for stored connection passwords."""

from __future__ import annotations

import base64
import binascii
import functools
import logging

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

LOG = logging.getLogger(__name__)

EncryptionKey = str | bytes

# Changing either value makes existing credentials files unreadable.
KDF_SALT = b"dbstash.credentials.v1"
KDF_ITERATIONS = 200_000


class DecryptionError(RuntimeError):
    """Raised when a secret cannot be decrypted with the configured key."""


@functools.lru_cache(maxsize=8)
def derive_fernet_key(key: EncryptionKey) -> bytes:
    """Stretch an arbitrary passphrase into a urlsafe Fernet key with PBKDF2."""

    raw = key.encode("utf-8") if isinstance(key, str) else bytes(key)
    if not raw:
        raise ValueError("Encryption key must not be empty.")
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=KDF_SALT, iterations=KDF_ITERATIONS)
    return base64.urlsafe_b64encode(kdf.derive(raw))


def encrypt(plaintext: str, key: EncryptionKey) -> str:
    """Encrypt ``plaintext``; the token is text-safe for JSON storage."""

    return CredentialCipher(key).encrypt(plaintext)


def decrypt(secret: str, key: EncryptionKey) -> str:
    """Decrypt a token produced by :func:`encrypt`."""

    return CredentialCipher(key).decrypt(secret)


class CredentialCipher:
    """Fernet cipher bound to one process-wide key."""

    def __init__(self, key: EncryptionKey) -> None:
        self._fernet = Fernet(derive_fernet_key(key))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, secret: str) -> str:
        if not isinstance(secret, str) or not secret:
            raise DecryptionError("Encrypted secret is empty or not text.")
        try:
            plaintext = self._fernet.decrypt(secret.encode("ascii"))
        except (InvalidToken, UnicodeEncodeError, binascii.Error) as exc:
            LOG.warning("Failed to decrypt stored secret")
            raise DecryptionError("Secret could not be decrypted; wrong key or corrupt data.") from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Decrypted secret is not valid UTF-8.") from exc


__all__ = [
    "CredentialCipher",
    "DecryptionError",
    "EncryptionKey",
    "KDF_ITERATIONS",
    "KDF_SALT",
    "decrypt",
    "derive_fernet_key",
    "encrypt",
]
