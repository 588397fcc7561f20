"""
Utils Package

Provides utility modules for:
- encryption: Field-level encryption for sensitive data (tax ids, document numbers)
- validation_errors: Structured error bodies for HTTP responses
"""

from .encryption import (
    FieldCipher,
    generate_key,
    mask_value,
    EncryptionError,
    InvalidKeyError,
    DecryptionError,
    MalformedCiphertextError,
    CiphertextTooShortError,
    CiphertextAuthenticationError,
)

__all__ = [
    'FieldCipher',
    'generate_key',
    'mask_value',
    'EncryptionError',
    'InvalidKeyError',
    'DecryptionError',
    'MalformedCiphertextError',
    'CiphertextTooShortError',
    'CiphertextAuthenticationError',
]
