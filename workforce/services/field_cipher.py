"""Authenticated encryption for single sensitive scalar values.

Tokens have the form ``hex(nonce):hex(tag):hex(ciphertext)``. The nonce is
drawn fresh for every call, so equal plaintexts never produce equal tokens.
"""

from __future__ import annotations

import binascii
import logging
import secrets
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from workforce.errors import AuthenticationFailure, CipherKeyMissing, MalformedToken
from workforce.settings import get_settings, is_local_environment

logger = logging.getLogger("workforce.cipher")

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16
TOKEN_SEPARATOR = ":"
DEVELOPMENT_KEY_HEX = "00" * KEY_BYTES


class FieldCipher:
    def __init__(self, key: bytes):
        if len(key) != KEY_BYTES:
            raise ValueError(f"Field encryption key must be {KEY_BYTES} bytes, got {len(key)}.")
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = secrets.token_bytes(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return TOKEN_SEPARATOR.join((nonce.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, token: str) -> str:
        nonce, tag, ciphertext = parse_token(token)
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            logger.error("field_authentication_failed", extra={"token_prefix": token[: NONCE_BYTES * 2]})
            raise AuthenticationFailure() from exc
        return plaintext.decode("utf-8")


class _UnconfiguredCipher:
    """Stand-in used outside local environments when no key is configured."""

    def encrypt(self, plaintext: str) -> str:
        raise CipherKeyMissing()

    def decrypt(self, token: str) -> str:
        raise CipherKeyMissing()


def parse_token(token: str) -> tuple[bytes, bytes, bytes]:
    if not isinstance(token, str):
        raise MalformedToken()
    parts = token.split(TOKEN_SEPARATOR)
    if len(parts) != 3:
        raise MalformedToken()

    nonce_hex, tag_hex, ciphertext_hex = parts
    if len(nonce_hex) != NONCE_BYTES * 2 or len(tag_hex) != TAG_BYTES * 2:
        raise MalformedToken()
    try:
        return bytes.fromhex(nonce_hex), bytes.fromhex(tag_hex), bytes.fromhex(ciphertext_hex)
    except ValueError as exc:
        raise MalformedToken() from exc


def decode_key(raw_key: str) -> bytes:
    normalized = raw_key.strip()
    if len(normalized) != KEY_BYTES * 2:
        raise ValueError(f"field_encryption_key must be {KEY_BYTES * 2} hex characters.")
    try:
        return binascii.unhexlify(normalized)
    except binascii.Error as exc:
        raise ValueError("field_encryption_key must be hex encoded.") from exc


def key_status() -> str:
    """Report ``configured``, ``development`` or ``missing`` without touching the key material."""
    if (get_settings().field_encryption_key or "").strip():
        return "configured"
    if is_local_environment():
        return "development"
    return "missing"


@lru_cache
def get_field_cipher() -> FieldCipher | _UnconfiguredCipher:
    raw_key = (get_settings().field_encryption_key or "").strip()
    if raw_key:
        return FieldCipher(decode_key(raw_key))

    if is_local_environment():
        logger.warning("field_encryption_key_missing_using_development_key")
        return FieldCipher(decode_key(DEVELOPMENT_KEY_HEX))

    logger.warning("field_encryption_key_missing")
    return _UnconfiguredCipher()


def encrypt_field(plaintext: str) -> str:
    return get_field_cipher().encrypt(plaintext)


def decrypt_field(token: str) -> str:
    return get_field_cipher().decrypt(token)
