"""
Encryption Utilities for Sensitive Customer Fields

Provides field-level encryption for sensitive scalar values such as the
customer tax identifier and identification document numbers.
Uses AES-256-GCM (authenticated encryption) from the `cryptography` package.

Ciphertext format:
    base64( nonce (12 bytes) || ciphertext || tag (16 bytes) )

Environment Variables:
    ENCRYPTION_KEY: 32-character key, or base64 encoding of 32 random bytes
                    Generate with: python -c "from utils.encryption import generate_key; print(generate_key())"

Usage:
    from utils.encryption import FieldCipher

    cipher = FieldCipher(key)

    # Encrypt for storage
    encrypted = cipher.encrypt("123-45-6789")

    # Decrypt for use
    plaintext = cipher.decrypt(encrypted)

    # Mask for display
    masked = mask_value("123-45-6789")  # Returns "*******6789"

Security Notes:
    - Never log plaintext tax ids or document numbers
    - Empty values are stored as empty strings (no ciphertext is produced)
    - Every encryption uses a fresh random nonce, so equal plaintexts never
      produce equal ciphertexts
    - Key rotation is not supported
"""

import base64
import binascii
import logging
import os
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

# Environment variable name for encryption key
ENCRYPTION_KEY_ENV = "ENCRYPTION_KEY"

KEY_SIZE = 32
NONCE_SIZE = 12


class EncryptionError(Exception):
    """Base exception for encryption errors"""
    code: str = "ENCRYPTION_ERROR"


class InvalidKeyError(EncryptionError):
    """Raised when the encryption key is missing or not 32 bytes"""
    code: str = "INVALID_ENCRYPTION_KEY"


class DecryptionError(EncryptionError):
    """Raised when decryption fails"""
    code: str = "DECRYPTION_FAILED"


class MalformedCiphertextError(DecryptionError):
    """Stored value is not valid base64"""
    code: str = "MALFORMED_CIPHERTEXT"


class CiphertextTooShortError(DecryptionError):
    """Stored value is shorter than a nonce"""
    code: str = "CIPHERTEXT_TOO_SHORT"


class CiphertextAuthenticationError(DecryptionError):
    """Ciphertext was tampered with or sealed under a different key"""
    code: str = "CIPHERTEXT_AUTHENTICATION_FAILED"


class FieldCipher:
    """
    Symmetric authenticated encryption for sensitive scalar fields.

    Holds nothing but the immutable key, so one instance can be shared by
    every concurrent request.
    """

    def __init__(self, key: Union[str, bytes]):
        key_bytes = key.encode("utf-8") if isinstance(key, str) else bytes(key)
        if len(key_bytes) != KEY_SIZE:
            raise InvalidKeyError(
                f"encryption key must be exactly {KEY_SIZE} bytes, got {len(key_bytes)}"
            )
        self._aead = AESGCM(key_bytes)

    @classmethod
    def from_base64(cls, encoded_key: str) -> "FieldCipher":
        """Build a cipher from a base64-encoded 32-byte key."""
        try:
            key_bytes = base64.b64decode(encoded_key, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidKeyError(f"encryption key is not valid base64: {e}") from e
        return cls(key_bytes)

    @classmethod
    def from_setting(cls, value: Optional[str]) -> "FieldCipher":
        """
        Build a cipher from the configured ENCRYPTION_KEY value.

        Accepts either 32 raw characters or the base64 encoding of 32 bytes.
        """
        if not value:
            raise InvalidKeyError(f"{ENCRYPTION_KEY_ENV} is not configured")
        if len(value.encode("utf-8")) == KEY_SIZE:
            return cls(value)
        return cls.from_base64(value)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a value for storage.

        Args:
            plaintext: Value to encrypt

        Returns:
            Base64 text of nonce + ciphertext, or "" for empty input
        """
        if not plaintext:
            return ""

        nonce = os.urandom(NONCE_SIZE)
        try:
            sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        except Exception as e:
            logger.error(f"Field encryption failed: {type(e).__name__}")
            raise EncryptionError(f"Failed to encrypt value: {e}") from e
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored value.

        Raises:
            MalformedCiphertextError: value is not base64
            CiphertextTooShortError: value is shorter than a nonce
            CiphertextAuthenticationError: tampered data or wrong key
        """
        if not ciphertext:
            return ""

        try:
            data = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedCiphertextError(f"failed to decode ciphertext: {e}") from e

        if len(data) < NONCE_SIZE:
            raise CiphertextTooShortError("ciphertext too short")

        nonce, sealed = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            logger.error("Field decryption failed - invalid tag or wrong key")
            raise CiphertextAuthenticationError(
                "Invalid ciphertext - data may be corrupted or key mismatch"
            ) from e
        return plaintext.decode("utf-8")


def generate_key() -> str:
    """
    Generate a new random encryption key.

    Returns:
        Base64-encoded 32-byte key, suitable for ENCRYPTION_KEY
    """
    return base64.b64encode(os.urandom(KEY_SIZE)).decode("ascii")


def mask_value(value: Optional[str], visible: int = 4) -> str:
    """
    Mask a sensitive value for display purposes.

    Args:
        value: The plaintext value
        visible: Number of trailing characters to keep

    Returns:
        Masked string (e.g., "*******6789")
    """
    if not value:
        return ""

    if len(value) <= visible:
        return "*" * len(value)

    return "*" * (len(value) - visible) + value[-visible:]
