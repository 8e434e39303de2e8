# Vault - Encryption Service
#
# Master password -> encryption key (Argon2id)
# Whole-vault encryption (AES-256-GCM, nonce prefixed to ciphertext)

import os
from typing import Tuple

from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


class EncryptionService:
    """
    Handles key derivation and encryption for the credential vault.

    Flow:
    1. User enters master password
    2. Argon2id derives a 256-bit key from password + stored salt
    3. AES-256-GCM encrypts/decrypts the serialized vault
    4. Every write uses a fresh random nonce

    A wrong password is detected by the GCM tag failing on decrypt; there is
    no separate verification value.
    """

    # Argon2id parameters (memory-hard, tens of milliseconds per derivation)
    ARGON2_TIME_COST = 1
    ARGON2_MEMORY_COST = 64 * 1024  # KiB = 64 MiB
    ARGON2_PARALLELISM = 4
    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 16  # 128-bit salt
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)

    @staticmethod
    def derive_key(master_password: str, salt: bytes) -> bytes:
        """
        Derive encryption key from master password using Argon2id.

        Args:
            master_password: User's master password
            salt: Random salt (stored beside the vault)

        Returns:
            256-bit encryption key
        """
        return hash_secret_raw(
            secret=master_password.encode("utf-8"),
            salt=salt,
            time_cost=EncryptionService.ARGON2_TIME_COST,
            memory_cost=EncryptionService.ARGON2_MEMORY_COST,
            parallelism=EncryptionService.ARGON2_PARALLELISM,
            hash_len=EncryptionService.KEY_LENGTH,
            type=Type.ID,
        )

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(EncryptionService.SALT_LENGTH)

    @staticmethod
    def encrypt(plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
        """
        Encrypt plaintext using AES-256-GCM.

        Returns:
            Tuple of (nonce, ciphertext_with_tag)
        """
        nonce = os.urandom(EncryptionService.NONCE_LENGTH)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
        return nonce, ciphertext

    @staticmethod
    def decrypt(nonce: bytes, ciphertext: bytes, key: bytes) -> bytes:
        """
        Decrypt ciphertext using AES-256-GCM.

        Raises:
            cryptography.exceptions.InvalidTag: If authentication fails
        """
        return AESGCM(key).decrypt(nonce, ciphertext, None)

    @staticmethod
    def seal(plaintext: bytes, key: bytes) -> bytes:
        """Encrypt and return ``nonce || ciphertext_with_tag``."""
        nonce, ciphertext = EncryptionService.encrypt(plaintext, key)
        return nonce + ciphertext

    @staticmethod
    def open_sealed(blob: bytes, key: bytes) -> bytes:
        """
        Decrypt a ``nonce || ciphertext_with_tag`` blob.

        Raises:
            cryptography.exceptions.InvalidTag: Wrong key or corrupt data.
            ValueError: Blob too short to contain a nonce.
        """
        if len(blob) < EncryptionService.NONCE_LENGTH:
            raise ValueError("ciphertext too short")
        nonce = blob[:EncryptionService.NONCE_LENGTH]
        return EncryptionService.decrypt(nonce, blob[EncryptionService.NONCE_LENGTH:], key)
