"""
Key Manager - AES-256-GCM encryption for wallet secrets at rest.

Launch wallet and custodial wallet private keys are stored in the ledger
only in encrypted form. The key is derived from one server-wide passphrase
(KEY_ENCRYPTION_SECRET); there are no per-user keys.

Token format:
    base64(nonce) + "." + base64(ciphertext || tag)

Usage:
    key_manager = AESKeyManager(os.getenv("KEY_ENCRYPTION_SECRET"))

    token = key_manager.encrypt_secret(secret_b58)
    secret_b58 = key_manager.decrypt_secret(token)
"""

import base64
import binascii
import hashlib
import logging
import os
import secrets
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from solders.keypair import Keypair

logger = logging.getLogger(__name__)

# AES-256-GCM parameters
NONCE_SIZE = 12  # 96 bits (recommended for GCM)
TAG_SIZE = 16  # 128 bits authentication tag

TOKEN_SEPARATOR = "."


class KeyEncryptionError(Exception):
    """Raised when secret encryption/decryption fails."""
    pass


class AESKeyManager:
    """
    Encrypts and decrypts wallet secrets with AES-256-GCM.

    - A fresh random nonce is drawn for every encryption
    - The 256-bit key is SHA-256 of the passphrase
    - GCM verifies integrity; a wrong passphrase or tampered token fails loudly

    WARNING:
    - If the passphrase is lost, every stored wallet is unrecoverable
    """

    def __init__(self, encryption_secret: str):
        """
        Initialize the key manager with the server passphrase.

        Args:
            encryption_secret: Server-wide passphrase (from env var)

        Raises:
            ValueError: If the passphrase is missing or too weak
        """
        if not encryption_secret:
            raise ValueError(
                "KEY_ENCRYPTION_SECRET is required. "
                "Set it in your .env file or environment."
            )

        if len(encryption_secret) < 16:
            raise ValueError(
                "KEY_ENCRYPTION_SECRET must be at least 16 characters. "
                "Use a strong, random secret."
            )

        self._cipher = AESGCM(self._derive_key(encryption_secret))
        logger.info("AES Key Manager initialized")

    @staticmethod
    def _derive_key(passphrase: str) -> bytes:
        return hashlib.sha256(passphrase.encode("utf-8")).digest()

    def encrypt_secret(self, plaintext: str) -> str:
        """
        Encrypt a secret string for storage.

        Args:
            plaintext: Secret to protect (base58 private key)

        Returns:
            ``ivBase64.ciphertextBase64`` token

        Raises:
            KeyEncryptionError: If the secret is empty
        """
        if not plaintext:
            raise KeyEncryptionError("Cannot encrypt empty secret")

        nonce = secrets.token_bytes(NONCE_SIZE)
        ciphertext = self._cipher.encrypt(nonce, plaintext.encode("utf-8"), None)

        return (
            base64.b64encode(nonce).decode("ascii")
            + TOKEN_SEPARATOR
            + base64.b64encode(ciphertext).decode("ascii")
        )

    def decrypt_secret(self, token: str) -> str:
        """
        Decrypt a token produced by encrypt_secret().

        Raises:
            KeyEncryptionError: Malformed token, wrong passphrase or tampered data
        """
        if not token:
            raise KeyEncryptionError("Cannot decrypt empty data")

        iv_b64, sep, ct_b64 = token.partition(TOKEN_SEPARATOR)
        if not sep or not iv_b64 or not ct_b64:
            raise KeyEncryptionError("Invalid encrypted payload")

        try:
            nonce = base64.b64decode(iv_b64, validate=True)
            ciphertext = base64.b64decode(ct_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise KeyEncryptionError(f"Invalid encrypted payload: {e}") from e

        if len(ciphertext) < TAG_SIZE:
            raise KeyEncryptionError("Encrypted data too short")

        try:
            plaintext = self._cipher.decrypt(nonce, ciphertext, None)
        except (InvalidTag, ValueError) as e:
            logger.error("Secret decryption failed (wrong passphrase or corrupted data)")
            raise KeyEncryptionError(
                "Failed to decrypt secret. Possible causes: wrong secret, corrupted data."
            ) from e

        return plaintext.decode("utf-8")

    def generate_keypair(self) -> Tuple[str, str]:
        """
        Generate a new Solana keypair.

        Returns:
            Tuple of (public_key_base58, encrypted_secret_token)
        """
        kp = Keypair()
        address = str(kp.pubkey())
        logger.info(f"Generated new keypair: {address[:16]}...")
        return address, self.encrypt_secret(str(kp))

    def load_keypair(self, token: str) -> Keypair:
        """Decrypt a stored token back into a signing keypair."""
        return Keypair.from_base58_string(self.decrypt_secret(token))


def create_key_manager() -> AESKeyManager:
    """
    Factory function to create a KeyManager from environment.

    Raises:
        ValueError: If KEY_ENCRYPTION_SECRET not set
    """
    from dotenv import load_dotenv
    load_dotenv()

    secret = os.getenv("KEY_ENCRYPTION_SECRET")
    if not secret or secret == "your-encryption-secret-here":
        raise ValueError(
            "Set KEY_ENCRYPTION_SECRET in your .env file. "
            "Generate a strong random secret (32+ characters recommended)."
        )

    return AESKeyManager(secret)


def generate_encryption_secret() -> str:
    """Generate a cryptographically secure random secret for KEY_ENCRYPTION_SECRET."""
    return secrets.token_urlsafe(32)
