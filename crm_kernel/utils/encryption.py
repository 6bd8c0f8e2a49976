"""
Module: crm_kernel.utils.encryption
Responsibility: AES-256-GCM encryption of integration secrets (webhook
    tokens, API keys, basic-auth credentials) stored in integration config.
Architecture position: Kernel > Utils.  Key material is passed in by the
    caller (crm_config resolves it from the environment); this module never
    reads configuration itself.

Stored format:
    base64( IV[16] || auth tag[16] || ciphertext )

Key formats accepted:
    - base64 of 32 bytes (44 characters ending in "=")
    - hex of 32 bytes (64 hex characters)
    - any other string, hashed with SHA-256 to 32 bytes

Failure modes:
    - EncryptionKeyMissingError when constructed without a key.
    - EncryptionError from decrypt() on tampered data, wrong key or
      malformed input.  safe_decrypt() never raises.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import os
import re
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from crm_kernel.exceptions import EncryptionError, EncryptionKeyMissingError
from crm_kernel.logging_config import get_logger

logger = get_logger("utils.encryption")

IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def derive_key(key: str) -> bytes:
    """Turn a configured key string into 32 bytes of key material."""
    if not key:
        raise EncryptionKeyMissingError()
    if len(key) == 44 and key.endswith("="):
        try:
            raw = base64.b64decode(key, validate=True)
        except binascii.Error:
            raise EncryptionError("Encryption key is not valid base64") from None
    elif _HEX_KEY.match(key):
        raw = bytes.fromhex(key)
    else:
        raw = hashlib.sha256(key.encode("utf-8")).digest()
    if len(raw) != KEY_LENGTH:
        raise EncryptionError(f"Encryption key must be {KEY_LENGTH} bytes, got {len(raw)}")
    return raw


def is_encrypted(value: str | None) -> bool:
    """
    Heuristic: does value look like our stored ciphertext?

    True iff it is at least 48 characters of valid base64 decoding to more
    than IV + tag bytes.
    """
    if not value or len(value) < 48:
        return False
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(decoded) >= IV_LENGTH + AUTH_TAG_LENGTH + 1


def plaintext_only(value: str) -> str | None:
    """
    Stand-in decryptor when no key is configured.

    Plain values pass through; anything that looks encrypted cannot be read
    and yields None.
    """
    if is_encrypted(value):
        logger.warning("decryption_key_unavailable")
        return None
    return value


class FieldEncryptor:
    """
    Encrypts and decrypts individual string fields with one key.

    Contract:
        Output of encrypt() is readable by any FieldEncryptor built from the
        same key string, and by other services using the same stored format.

    Guarantees:
        - A fresh random IV per encryption.
        - Authenticated: tampering is detected, never silently decoded.
    """

    def __init__(self, key: str | None):
        if not key:
            raise EncryptionKeyMissingError()
        self._aead = AESGCM(derive_key(key))

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ""
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return base64.b64encode(iv + tag + ciphertext).decode("ascii")

    def decrypt(self, encrypted: str) -> str:
        """
        Raises:
            EncryptionError: If the value cannot be authenticated or decoded.
        """
        if not encrypted:
            return ""
        try:
            combined = base64.b64decode(encrypted, validate=True)
        except (binascii.Error, ValueError):
            raise EncryptionError("Encrypted value is not valid base64") from None
        if len(combined) < IV_LENGTH + AUTH_TAG_LENGTH:
            raise EncryptionError("Encrypted value is too short")

        iv = combined[:IV_LENGTH]
        tag = combined[IV_LENGTH:IV_LENGTH + AUTH_TAG_LENGTH]
        ciphertext = combined[IV_LENGTH + AUTH_TAG_LENGTH:]
        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise EncryptionError("Decryption failed: authentication tag mismatch") from None
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise EncryptionError("Decrypted value is not UTF-8") from None

    def encrypt_object(self, obj: dict[str, Any]) -> str:
        return self.encrypt(json.dumps(obj))

    def decrypt_object(self, encrypted: str) -> dict[str, Any]:
        return json.loads(self.decrypt(encrypted))

    def safe_encrypt(self, value: str) -> str:
        """Encrypt unless the value already looks encrypted."""
        if not value:
            return ""
        if is_encrypted(value):
            return value
        return self.encrypt(value)

    def safe_decrypt(self, value: str) -> str | None:
        """
        Decrypt if encrypted, pass plain values through.

        Returns None when a value that looks encrypted fails to decrypt.
        """
        if not value:
            return ""
        if not is_encrypted(value):
            return value
        try:
            return self.decrypt(value)
        except EncryptionError:
            logger.warning("decryption_failed")
            return None

    def reencrypt(self, encrypted: str, previous: FieldEncryptor) -> str:
        """Re-encrypt a value written under a previous key with this key."""
        return self.encrypt(previous.decrypt(encrypted))
