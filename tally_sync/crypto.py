"""
Encryption of Tally API credentials at rest.

Ciphertext is stored as ``ivHex:cipherHex`` (AES-256-CBC, PKCS7 padding,
fresh random IV per encryption).
"""
from __future__ import annotations
import os
from typing import Optional
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from loguru import logger
from .config import AppSettings, ConfigurationError

KEY_BYTES = 32
IV_BYTES = 16


class CredentialError(RuntimeError):
    """Raised when stored credential ciphertext cannot be decrypted."""
    pass


class CredentialCipher:
    """AES-256-CBC cipher bound to the deployment-wide key."""

    def __init__(self, key: bytes):
        if len(key) != KEY_BYTES:
            raise ConfigurationError(f"Encryption key must be {KEY_BYTES} bytes, got {len(key)}")
        self._key = key

    def __repr__(self) -> str:
        return "CredentialCipher(key=***)"

    @classmethod
    def from_hex(cls, key_hex: str) -> "CredentialCipher":
        try:
            key = bytes.fromhex(key_hex.strip())
        except ValueError as e:
            raise ConfigurationError("Encryption key is not valid hex") from e
        return cls(key)

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "CredentialCipher":
        """
        Build the cipher from process settings.

        Without a configured key, production refuses to start; other
        environments get an ephemeral key, so anything encrypted with it is
        unreadable after a restart.
        """
        if settings.encryption_key:
            return cls.from_hex(settings.encryption_key)
        if settings.is_production:
            raise ConfigurationError("TALLY_ENCRYPTION_KEY is required in production")
        logger.warning(
            "TALLY_ENCRYPTION_KEY not set; using an ephemeral key. "
            "Stored Tally credentials will not survive a restart."
        )
        return cls(os.urandom(KEY_BYTES))

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if not plaintext:
            return None
        iv = os.urandom(IV_BYTES)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        encrypted = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{encrypted.hex()}"

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        parts = token.split(":")
        if len(parts) != 2:
            raise CredentialError("Malformed credential ciphertext")
        try:
            iv = bytes.fromhex(parts[0])
            encrypted = bytes.fromhex(parts[1])
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(encrypted) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError as e:
            # Wrong key, truncated ciphertext and bad padding all land here
            raise CredentialError("Could not decrypt stored credential") from e
