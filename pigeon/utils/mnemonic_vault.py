"""
Password-based encryption of wallet secrets.

This module provides:
- Key derivation from a user password (PBKDF2-HMAC-SHA256, 100k rounds)
- AES-256-GCM encryption with a fresh salt and nonce per call
- A self-contained text blob: base64(salt):base64(nonce):base64(tag):base64(ciphertext)

The password is never stored anywhere, so the blob must carry everything
else needed to reverse it.
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

PBKDF2_ITERATIONS = 100_000
KEY_LENGTH = 32
SALT_LENGTH = 16
NONCE_LENGTH = 12
TAG_LENGTH = 16
BLOB_SEPARATOR = ":"


class DecryptionError(Exception):
    """Raised when a blob cannot be decrypted. Wrong password and tampering look the same."""

    def __init__(self):
        super().__init__("Could not decrypt wallet secret")


def _derive_key(password: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def encrypt(plaintext: str, password: str) -> str:
    """
    Encrypt a secret string under a password.

    Args:
        plaintext: Secret material (e.g. an encoded private key)
        password: User-chosen password

    Returns:
        Blob string encoding salt, nonce, auth tag and ciphertext
    """
    salt = os.urandom(SALT_LENGTH)
    nonce = os.urandom(NONCE_LENGTH)
    key = _derive_key(password, salt)

    # AESGCM appends the tag to the ciphertext; the blob stores it separately
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return BLOB_SEPARATOR.join(_b64(part) for part in (salt, nonce, tag, ciphertext))


def decrypt(blob: str, password: str) -> str:
    """
    Decrypt a blob produced by :func:`encrypt`.

    Raises:
        DecryptionError: If the blob is malformed, the password is wrong,
            or the data was tampered with
    """
    parts = blob.split(BLOB_SEPARATOR) if isinstance(blob, str) else []
    if len(parts) != 4:
        raise DecryptionError()

    try:
        salt, nonce, tag, ciphertext = (base64.b64decode(part, validate=True) for part in parts)
    except (binascii.Error, ValueError):
        raise DecryptionError()

    if len(salt) != SALT_LENGTH or len(nonce) != NONCE_LENGTH or len(tag) != TAG_LENGTH:
        raise DecryptionError()

    key = _derive_key(password, salt)
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag:
        raise DecryptionError()

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise DecryptionError()
