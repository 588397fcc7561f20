"""
Unit Tests for Field Encryption

Tests AES-256-GCM field encryption used for tax ids and document numbers:
- Round trip and empty values
- Nonce freshness
- Wrong key / tampered / malformed ciphertexts
- Key loading from configuration
- Masking helper

Run with: pytest tests/test_encryption.py -v
"""

import base64

import pytest

from utils.encryption import (
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

TEST_KEY = "0123456789abcdef0123456789abcdef"
OTHER_KEY = "fedcba9876543210fedcba9876543210"


class TestFieldCipher:
    """Test suite for FieldCipher."""

    @pytest.fixture
    def cipher(self):
        return FieldCipher(TEST_KEY)

    # ==================== ROUND TRIP ====================

    def test_encrypt_decrypt_roundtrip(self, cipher):
        encrypted = cipher.encrypt("123-45-6789")

        assert encrypted != "123-45-6789"
        assert cipher.decrypt(encrypted) == "123-45-6789"

    def test_roundtrip_unicode(self, cipher):
        value = "Zoë Ångström 日本"
        assert cipher.decrypt(cipher.encrypt(value)) == value

    def test_empty_values_pass_through(self, cipher):
        assert cipher.encrypt("") == ""
        assert cipher.decrypt("") == ""

    def test_nonce_is_fresh_per_encryption(self, cipher):
        first = cipher.encrypt("P1234567")
        second = cipher.encrypt("P1234567")

        assert first != second
        assert base64.b64decode(first)[:12] != base64.b64decode(second)[:12]

    def test_ciphertext_is_base64_of_nonce_and_sealed_data(self, cipher):
        raw = base64.b64decode(cipher.encrypt("abc"))
        # 12-byte nonce + 3 bytes of data + 16-byte tag
        assert len(raw) == 12 + 3 + 16

    # ==================== FAILURES ====================

    def test_wrong_key_fails_authentication(self, cipher):
        encrypted = cipher.encrypt("secret")

        with pytest.raises(CiphertextAuthenticationError):
            FieldCipher(OTHER_KEY).decrypt(encrypted)

    def test_tampered_ciphertext_fails_authentication(self, cipher):
        raw = bytearray(base64.b64decode(cipher.encrypt("secret")))
        raw[-1] ^= 0x01
        tampered = base64.b64encode(bytes(raw)).decode()

        with pytest.raises(CiphertextAuthenticationError):
            cipher.decrypt(tampered)

    def test_malformed_base64(self, cipher):
        with pytest.raises(MalformedCiphertextError):
            cipher.decrypt("not base64 !!")

    def test_too_short_ciphertext(self, cipher):
        short = base64.b64encode(b"12345").decode()
        with pytest.raises(CiphertextTooShortError):
            cipher.decrypt(short)

    def test_decryption_errors_share_a_base(self):
        assert issubclass(MalformedCiphertextError, DecryptionError)
        assert issubclass(CiphertextTooShortError, DecryptionError)
        assert issubclass(CiphertextAuthenticationError, DecryptionError)
        assert issubclass(DecryptionError, EncryptionError)

    # ==================== KEYS ====================

    @pytest.mark.parametrize("key", ["", "short", "x" * 31, "x" * 33])
    def test_key_must_be_32_bytes(self, key):
        with pytest.raises(InvalidKeyError):
            FieldCipher(key)

    def test_from_setting_accepts_raw_key(self):
        cipher = FieldCipher.from_setting(TEST_KEY)
        assert FieldCipher(TEST_KEY).decrypt(cipher.encrypt("v")) == "v"

    def test_from_setting_accepts_base64_key(self):
        encoded = base64.b64encode(TEST_KEY.encode()).decode()
        cipher = FieldCipher.from_setting(encoded)
        assert FieldCipher(TEST_KEY).decrypt(cipher.encrypt("v")) == "v"

    def test_from_setting_rejects_missing_key(self):
        with pytest.raises(InvalidKeyError):
            FieldCipher.from_setting("")

    def test_from_setting_rejects_wrong_length_base64(self):
        with pytest.raises(InvalidKeyError):
            FieldCipher.from_setting(base64.b64encode(b"too-short").decode())

    def test_generated_key_is_usable(self):
        cipher = FieldCipher.from_base64(generate_key())
        assert cipher.decrypt(cipher.encrypt("hello")) == "hello"


class TestMaskValue:
    """Test masking of sensitive values for display."""

    def test_keeps_last_four(self):
        assert mask_value("123456789") == "*****6789"

    def test_short_value_fully_masked(self):
        assert mask_value("1234") == "****"

    def test_empty(self):
        assert mask_value("") == ""
        assert mask_value(None) == ""
