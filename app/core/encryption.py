"""
Field-level encryption for PII (phone number, date of birth, address).

AES-256-GCM with a fresh 96-bit nonce per value. Stored form is
``v1:`` + urlsafe base64 of ``nonce || ciphertext || tag``, so every ciphertext
is a fixed 28 bytes (before encoding) longer than its plaintext.
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from app.core.config import PII_KEY_MIN_LEN
from app.core.exceptions import ConfigurationError

CIPHERTEXT_PREFIX = "v1:"
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
_HKDF_INFO = b"holidayheroes-pii-v1"


class DecryptionError(Exception):
    """Raised when a stored ciphertext is malformed, truncated, or fails authentication."""

    def __init__(self, message: str = "Stored PII could not be decrypted") -> None:
        self.message = message
        super().__init__(message)


def _derive_key(secret: str) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=None,
        info=_HKDF_INFO,
    ).derive(secret.encode("utf-8"))


class PIICodec:
    """Encrypts and decrypts PII strings with a key fixed at construction."""

    def __init__(self, secret: str) -> None:
        if not secret or len(secret) < PII_KEY_MIN_LEN:
            raise ConfigurationError(
                f"PII encryption key must be at least {PII_KEY_MIN_LEN} characters"
            )
        self._aead = AESGCM(_derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        token = base64.urlsafe_b64encode(nonce + sealed).decode("ascii")
        return CIPHERTEXT_PREFIX + token

    def decrypt(self, ciphertext: str) -> str:
        if not ciphertext or not ciphertext.startswith(CIPHERTEXT_PREFIX):
            raise DecryptionError("Ciphertext has an unknown format")
        try:
            raw = base64.urlsafe_b64decode(ciphertext[len(CIPHERTEXT_PREFIX):].encode("ascii"))
        except (binascii.Error, ValueError, UnicodeEncodeError) as e:
            raise DecryptionError("Ciphertext is not valid base64") from e
        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Ciphertext is truncated")
        nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            plain = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise DecryptionError("Ciphertext failed authentication") from e
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted value is not valid UTF-8") from e

    def encrypt_optional(self, plaintext: str | None) -> str | None:
        """Empty or missing values are stored as NULL rather than encrypted."""
        if not plaintext:
            return None
        return self.encrypt(plaintext)

    def decrypt_optional(self, ciphertext: str | None) -> str | None:
        if not ciphertext:
            return None
        return self.decrypt(ciphertext)
