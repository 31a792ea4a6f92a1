"""Tests for password encryption helpers."""

from __future__ import annotations

import base64
import hashlib
import json

import pytest

from dbstash.crypto import CredentialCipher, DecryptionError, decrypt, derive_fernet_key, encrypt


def test_encrypt_round_trips_with_same_key() -> None:
    token = encrypt("s3cret!", "test-encryption-key")

    assert token != "s3cret!"
    assert decrypt(token, "test-encryption-key") == "s3cret!"


def test_tokens_are_json_safe_text() -> None:
    token = CredentialCipher("k").encrypt("pässwörd")

    assert json.loads(json.dumps({"id": token}))["id"] == token
    assert CredentialCipher("k").decrypt(token) == "pässwörd"


def test_wrong_key_raises_decryption_error() -> None:
    token = encrypt("s3cret!", "right-key")

    with pytest.raises(DecryptionError):
        decrypt(token, "wrong-key")


@pytest.mark.parametrize("blob", ["not-a-token", "", "gAAAAA=="])
def test_corrupt_token_raises_decryption_error(blob: str) -> None:
    with pytest.raises(DecryptionError):
        CredentialCipher("key").decrypt(blob)


def test_key_derivation_accepts_str_and_bytes() -> None:
    assert derive_fernet_key("abc") == derive_fernet_key(b"abc")
    with pytest.raises(ValueError):
        derive_fernet_key("")


def test_key_derivation_stretches_passphrase() -> None:
    derived = derive_fernet_key("test-encryption-key")

    assert len(base64.urlsafe_b64decode(derived)) == 32
    assert derived != base64.urlsafe_b64encode(hashlib.sha256(b"test-encryption-key").digest())
    assert derived == derive_fernet_key("test-encryption-key")
    assert derive_fernet_key("other-key") != derived
