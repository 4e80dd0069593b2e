from __future__ import annotations

import unittest
from unittest.mock import patch

from workforce.errors import AuthenticationFailure, CipherKeyMissing, DataIntegrityError, MalformedToken
from workforce.services import field_cipher
from workforce.services.field_cipher import (
    FieldCipher,
    NONCE_BYTES,
    TAG_BYTES,
    decode_key,
    parse_token,
)
from workforce.settings import Settings

TEST_KEY = bytes(range(32))


def _flip_first_ciphertext_bit(token: str) -> str:
    nonce_hex, tag_hex, ciphertext_hex = token.split(":")
    flipped = bytearray(bytes.fromhex(ciphertext_hex))
    flipped[0] ^= 0x01
    return ":".join((nonce_hex, tag_hex, flipped.hex()))


class FieldCipherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cipher = FieldCipher(TEST_KEY)

    def test_round_trip_returns_original_plaintext(self) -> None:
        token = self.cipher.encrypt("52000.50")
        self.assertEqual(self.cipher.decrypt(token), "52000.50")

    def test_round_trip_handles_empty_and_unicode_values(self) -> None:
        for value in ("", "İstanbul şube", "[0.12, -0.5]"):
            self.assertEqual(self.cipher.decrypt(self.cipher.encrypt(value)), value)

    def test_equal_plaintexts_produce_different_tokens(self) -> None:
        first = self.cipher.encrypt("5000.00")
        second = self.cipher.encrypt("5000.00")
        self.assertNotEqual(first, second)
        self.assertNotEqual(first.split(":")[0], second.split(":")[0])

    def test_token_layout_is_nonce_tag_ciphertext_hex(self) -> None:
        token = self.cipher.encrypt("abc")
        nonce_hex, tag_hex, ciphertext_hex = token.split(":")
        self.assertEqual(len(nonce_hex), NONCE_BYTES * 2)
        self.assertEqual(len(tag_hex), TAG_BYTES * 2)
        self.assertEqual(len(ciphertext_hex), 6)
        self.assertEqual(len(parse_token(token)[2]), 3)

    def test_flipped_ciphertext_bit_fails_authentication(self) -> None:
        token = _flip_first_ciphertext_bit(self.cipher.encrypt("5000.00"))
        with self.assertRaises(AuthenticationFailure) as ctx:
            self.cipher.decrypt(token)
        self.assertIsInstance(ctx.exception, DataIntegrityError)
        self.assertEqual(ctx.exception.code, "FIELD_AUTHENTICATION_FAILED")

    def test_token_from_another_key_fails_authentication(self) -> None:
        other = FieldCipher(bytes(reversed(TEST_KEY)))
        with self.assertRaises(AuthenticationFailure):
            self.cipher.decrypt(other.encrypt("5000.00"))

    def test_malformed_tokens_are_rejected(self) -> None:
        for token in ("", "plain-text", "aa:bb", "zz" * 12 + ":" + "00" * 16 + ":00", "00" * 11 + ":" + "00" * 16 + ":00"):
            with self.subTest(token=token):
                with self.assertRaises(MalformedToken):
                    parse_token(token)

    def test_decode_key_requires_64_hex_characters(self) -> None:
        self.assertEqual(decode_key("ab" * 32), bytes([0xAB]) * 32)
        with self.assertRaises(ValueError):
            decode_key("ab" * 16)
        with self.assertRaises(ValueError):
            decode_key("zz" * 32)

    def test_missing_key_outside_local_environment_fails_every_call(self) -> None:
        field_cipher.get_field_cipher.cache_clear()
        settings = Settings(app_env="production", field_encryption_key="")
        try:
            with patch("workforce.services.field_cipher.get_settings", return_value=settings), patch(
                "workforce.settings.get_settings", return_value=settings
            ):
                self.assertEqual(field_cipher.key_status(), "missing")
                with self.assertRaises(CipherKeyMissing) as ctx:
                    field_cipher.encrypt_field("5000.00")
                self.assertEqual(ctx.exception.status_code, 503)
        finally:
            field_cipher.get_field_cipher.cache_clear()

    def test_missing_key_in_development_uses_development_key(self) -> None:
        field_cipher.get_field_cipher.cache_clear()
        settings = Settings(app_env="development", field_encryption_key="")
        try:
            with patch("workforce.services.field_cipher.get_settings", return_value=settings), patch(
                "workforce.settings.get_settings", return_value=settings
            ):
                self.assertEqual(field_cipher.key_status(), "development")
                token = field_cipher.encrypt_field("1200.00")
                self.assertEqual(FieldCipher(bytes(32)).decrypt(token), "1200.00")
        finally:
            field_cipher.get_field_cipher.cache_clear()


if __name__ == "__main__":
    unittest.main()
