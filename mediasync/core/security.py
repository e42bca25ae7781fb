"""
Credential Vault

Symmetric encryption for secrets stored in the database (OAuth tokens,
API keys). AES-256-CBC with a fresh random IV per call; the IV is returned
next to the ciphertext and both must be stored together.

The ciphertext carries an HMAC-SHA256 tag (encrypt-then-MAC) so that a wrong
IV, a wrong key or tampered data is detected instead of decrypting to garbage.
Decryption never raises: any failure is reported as "no value" (None) so a
corrupted or rotated-key secret reads as an unset credential.
"""

import logging
import os
from typing import TYPE_CHECKING, NamedTuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from mediasync.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from mediasync.config import Settings

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # AES-256
IV_LENGTH = 16
MAC_LENGTH = 32
MIN_SECRET_LENGTH = 32


class EncryptedSecret(NamedTuple):
    """Hex-encoded ciphertext and the IV needed to decrypt it."""
    ciphertext: str
    iv: str


class CredentialVault:
    """
    Encrypts and decrypts stored credentials with a key derived from one
    configured secret.
    """

    def __init__(self, secret: str | None):
        """
        Initialize the vault.

        Args:
            secret: Configured encryption secret (at least 32 characters)

        Raises:
            ConfigurationError: If the secret is missing or too short
        """
        if not secret:
            raise ConfigurationError(
                "Encryption key is required",
                setting="encryption_key",
            )
        if len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"Encryption key must be at least {MIN_SECRET_LENGTH} characters",
                setting="encryption_key",
            )

        raw = secret.encode("utf-8")
        self._key = raw[:KEY_LENGTH]
        self._mac_key = HKDF(
            algorithm=hashes.SHA256(),
            length=MAC_LENGTH,
            salt=b"mediasync_credentials_v1",
            info=b"mac",
        ).derive(raw)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "CredentialVault":
        return cls(settings.encryption_key)

    def encrypt(self, plaintext: str | None) -> EncryptedSecret | None:
        """
        Encrypt a secret value for storage.

        Args:
            plaintext: The secret value to encrypt

        Returns:
            EncryptedSecret, or None for empty input
        """
        if not plaintext:
            return None

        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        tag = self._sign(iv, ciphertext)
        return EncryptedSecret(ciphertext=(ciphertext + tag).hex(), iv=iv.hex())

    def decrypt(self, ciphertext: str | None, iv: str | None) -> str | None:
        """
        Decrypt a stored secret.

        Args:
            ciphertext: Hex ciphertext produced by encrypt()
            iv: Hex IV produced by the same encrypt() call

        Returns:
            Decrypted plaintext, or None if either field is missing or the
            value cannot be decrypted
        """
        if not ciphertext or not iv:
            return None

        try:
            iv_bytes = bytes.fromhex(iv)
            data = bytes.fromhex(ciphertext)
            if len(iv_bytes) != IV_LENGTH or len(data) <= MAC_LENGTH:
                raise ValueError("Malformed encrypted value")

            body, tag = data[:-MAC_LENGTH], data[-MAC_LENGTH:]
            self._verify(iv_bytes, body, tag)

            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv_bytes)).decryptor()
            padded = decryptor.update(body) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError as e:
            logger.warning(f"Decryption failed: {e}")
            return None

    def _mac(self, iv: bytes, ciphertext: bytes) -> hmac.HMAC:
        mac = hmac.HMAC(self._mac_key, hashes.SHA256())
        mac.update(iv + ciphertext)
        return mac

    def _sign(self, iv: bytes, ciphertext: bytes) -> bytes:
        return self._mac(iv, ciphertext).finalize()

    def _verify(self, iv: bytes, ciphertext: bytes, tag: bytes) -> None:
        try:
            self._mac(iv, ciphertext).verify(tag)
        except InvalidSignature as e:
            raise ValueError("Integrity check failed") from e
