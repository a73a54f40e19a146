"""
Tests for password-based secret encryption.
"""

import base64

import pytest

from pigeon.utils.mnemonic_vault import (
    BLOB_SEPARATOR,
    DecryptionError,
    decrypt,
    encrypt
)


class TestMnemonicVault:
    """Test cases for encrypt/decrypt."""

    @pytest.fixture
    def secret(self):
        return "abandon ability able about above absent absorb abstract absurd abuse access accident"

    def test_encrypt_decrypt(self, secret):
        blob = encrypt(secret, "hunter2")

        assert decrypt(blob, "hunter2") == secret

    def test_blob_format(self, secret):
        blob = encrypt(secret, "hunter2")
        parts = blob.split(BLOB_SEPARATOR)

        assert len(parts) == 4
        salt, nonce, tag, _ = (base64.b64decode(part) for part in parts)
        assert len(salt) == 16
        assert len(nonce) == 12
        assert len(tag) == 16
        assert secret not in blob

    def test_fresh_salt_and_nonce_per_call(self, secret):
        first = encrypt(secret, "hunter2")
        second = encrypt(secret, "hunter2")

        assert first != second
        assert first.split(BLOB_SEPARATOR)[0] != second.split(BLOB_SEPARATOR)[0]

    def test_wrong_password(self, secret):
        blob = encrypt(secret, "hunter2")

        with pytest.raises(DecryptionError):
            decrypt(blob, "hunter3")

    def test_tampered_ciphertext(self, secret):
        salt, nonce, tag, ciphertext = encrypt(secret, "hunter2").split(BLOB_SEPARATOR)
        raw = bytearray(base64.b64decode(ciphertext))
        raw[0] ^= 0x01
        tampered = BLOB_SEPARATOR.join([salt, nonce, tag, base64.b64encode(bytes(raw)).decode("ascii")])

        with pytest.raises(DecryptionError):
            decrypt(tampered, "hunter2")

    def test_tampered_tag(self, secret):
        salt, nonce, tag, ciphertext = encrypt(secret, "hunter2").split(BLOB_SEPARATOR)
        raw = bytearray(base64.b64decode(tag))
        raw[-1] ^= 0xFF
        tampered = BLOB_SEPARATOR.join([salt, nonce, base64.b64encode(bytes(raw)).decode("ascii"), ciphertext])

        with pytest.raises(DecryptionError):
            decrypt(tampered, "hunter2")

    @pytest.mark.parametrize("blob", [
        "",
        "only:three:parts",
        "a:b:c:d:e",
        "!!!:@@@:###:$$$",
    ])
    def test_malformed_blob(self, blob):
        with pytest.raises(DecryptionError):
            decrypt(blob, "hunter2")

    def test_error_message_does_not_reveal_cause(self, secret):
        blob = encrypt(secret, "hunter2")

        with pytest.raises(DecryptionError) as wrong_password:
            decrypt(blob, "nope")
        with pytest.raises(DecryptionError) as malformed:
            decrypt("garbage", "hunter2")

        assert str(wrong_password.value) == str(malformed.value)

    def test_unicode_secret_and_password(self):
        blob = encrypt("clé secrète ✓", "pässwörd")

        assert decrypt(blob, "pässwörd") == "clé secrète ✓"
