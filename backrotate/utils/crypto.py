"""
Passphrase-based symmetric encryption for backup artifacts.
Uses Fernet with a key derived from the passphrase via PBKDF2-SHA256.
"""

import os
import base64
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


SALT_SIZE = 16
KDF_ITERATIONS = 480000  # OWASP recommended iterations for 2023+


class PassphraseCipher:
    """Encrypts and decrypts byte payloads with a passphrase-derived key."""

    def __init__(self, iterations: int = KDF_ITERATIONS):
        self.iterations = iterations
        self._fernet = None
        self._salt = None

    def initialize(self, passphrase: str, salt: bytes = None) -> bytes:
        """
        Derive the encryption key from a passphrase.

        Args:
            passphrase: Secret to derive the key from
            salt: Optional salt (if None, generates a new one)

        Returns:
            The salt used; it must be stored next to the ciphertext
        """
        if salt is None:
            salt = os.urandom(SALT_SIZE)

        self._salt = salt

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self.iterations,
        )
        key = base64.urlsafe_b64encode(kdf.derive(passphrase.encode()))

        self._fernet = Fernet(key)
        return salt

    def encrypt(self, data: bytes) -> bytes:
        """
        Encrypt a payload.

        Raises:
            RuntimeError: If the cipher has not been initialized
        """
        if not self._fernet:
            raise RuntimeError("PassphraseCipher not initialized. Call initialize() first.")
        return self._fernet.encrypt(data)

    def decrypt(self, token: bytes) -> bytes:
        """
        Decrypt a payload.

        Raises:
            RuntimeError: If the cipher has not been initialized
            cryptography.fernet.InvalidToken: If the passphrase is wrong or the data was altered
        """
        if not self._fernet:
            raise RuntimeError("PassphraseCipher not initialized. Call initialize() first.")
        return self._fernet.decrypt(token)

    @property
    def salt(self) -> bytes:
        return self._salt

    @property
    def is_initialized(self) -> bool:
        return self._fernet is not None
