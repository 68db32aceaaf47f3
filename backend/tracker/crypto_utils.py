"""
OAuth token encryption.

Tokens are sealed with AES-256-GCM before they are stored. The stored form
is ``iv:ciphertext:tag``, each part hex-encoded.
"""

import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import get_settings

IV_BYTES = 12
TAG_BYTES = 16


class EncryptionError(Exception):
    """Raised when a token cannot be encrypted or decrypted."""


def _load_key(key: Optional[str]) -> bytes:
    key = key or get_settings().encryption_key
    if not key:
        raise EncryptionError("ENCRYPTION_KEY is not set in environment variables")
    try:
        raw = bytes.fromhex(key)
    except ValueError:
        raise EncryptionError("ENCRYPTION_KEY must be hex-encoded")
    if len(raw) != 32:
        raise EncryptionError("ENCRYPTION_KEY must be 32 bytes (64 hex characters)")
    return raw


def encrypt_token(token: str, key: Optional[str] = None) -> str:
    """
    Encrypt a token.

    Args:
        token: Plain-text token
        key: Hex key; defaults to ENCRYPTION_KEY from settings

    Returns:
        ``iv:ciphertext:tag`` in hex
    """
    iv = os.urandom(IV_BYTES)
    sealed = AESGCM(_load_key(key)).encrypt(iv, token.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return f"{iv.hex()}:{ciphertext.hex()}:{tag.hex()}"


def decrypt_token(envelope: str, key: Optional[str] = None) -> str:
    """
    Decrypt an ``iv:ciphertext:tag`` envelope produced by encrypt_token.

    The connections listing calls this to check that each stored token
    still opens under the current key.

    Raises:
        EncryptionError: malformed envelope, wrong key or tampered data
    """
    parts = envelope.split(":")
    if len(parts) != 3:
        raise EncryptionError("Invalid encrypted token format")

    try:
        iv, ciphertext, tag = (bytes.fromhex(part) for part in parts)
    except ValueError:
        raise EncryptionError("Invalid encrypted token format")
    if len(tag) != TAG_BYTES:
        raise EncryptionError("Invalid authentication tag")

    try:
        plain = AESGCM(_load_key(key)).decrypt(iv, ciphertext + tag, None)
    except (InvalidTag, ValueError):
        raise EncryptionError("Token authentication failed")
    return plain.decode("utf-8")
