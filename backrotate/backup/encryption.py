"""
Encryption of backup archives.

Backends:
- GpgEncryptor: symmetric encryption through the external ``gpg`` binary
- FernetEncryptor: in-process Fernet encryption (passphrase-derived key)

A backend error or non-zero exit fails the step. A clean exit is not enough
either: the encrypted sibling ``<archive>.<suffix>`` must exist and be
non-empty afterwards.
"""

import os
import logging
import subprocess
from typing import Optional

from cryptography.fernet import InvalidToken

from backrotate.utils.crypto import PassphraseCipher, SALT_SIZE
from .errors import PassphraseMissingError, EncryptionVerificationError


logger = logging.getLogger(__name__)

ENV_PREFIX = 'env:'


def read_passphrase(source: str) -> str:
    """
    Read the passphrase from its source.

    Args:
        source: Path to a file holding the passphrase, or ``env:NAME`` to read
            an environment variable

    Returns:
        The passphrase with a trailing newline removed

    Raises:
        PassphraseMissingError: If the source is missing, unreadable or empty
    """
    if not source:
        raise PassphraseMissingError("No passphrase source configured")

    if source.startswith(ENV_PREFIX):
        name = source[len(ENV_PREFIX):]
        passphrase = os.environ.get(name)
        if passphrase is None:
            raise PassphraseMissingError(f"Passphrase environment variable not set: {name}")
    else:
        try:
            with open(source, 'r') as f:
                passphrase = f.read()
        except FileNotFoundError as e:
            raise PassphraseMissingError(f"Passphrase file not found: {source}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise PassphraseMissingError(f"Passphrase file unreadable: {source}: {e}") from e

    passphrase = passphrase.rstrip('\r\n')
    if not passphrase:
        raise PassphraseMissingError(f"Passphrase source is empty: {source}")

    return passphrase


class Encryptor:
    """
    Base class for archive encryption backends.

    Subclasses implement ``_encrypt`` and set ``suffix``.
    """

    suffix = None

    def encrypted_path(self, plaintext_path: str) -> str:
        return f"{plaintext_path}.{self.suffix}"

    def encrypt(self, plaintext_path: str, passphrase: str) -> str:
        """
        Encrypt a plaintext artifact into its sibling file.

        The plaintext is left in place; deleting it is the caller's job once
        this method returns.

        Args:
            plaintext_path: Archive to encrypt
            passphrase: Symmetric passphrase

        Returns:
            Path of the encrypted artifact

        Raises:
            PassphraseMissingError: If the passphrase is empty
            EncryptionVerificationError: If the plaintext is missing, the backend
                fails, or the encrypted sibling is absent or empty afterwards
        """
        if not passphrase:
            raise PassphraseMissingError("Passphrase is empty")

        if not os.path.isfile(plaintext_path):
            raise EncryptionVerificationError(f"Plaintext artifact not found: {plaintext_path}")

        target = self.encrypted_path(plaintext_path)

        # A leftover sibling would satisfy the existence check below
        if os.path.exists(target):
            logger.warning(f"Removing stale encrypted artifact: {target}")
            try:
                os.remove(target)
            except OSError as e:
                raise EncryptionVerificationError(f"Cannot remove stale artifact {target}: {e}") from e

        try:
            self._encrypt(plaintext_path, target, passphrase)
        except (OSError, subprocess.SubprocessError) as e:
            self._discard(target)
            raise EncryptionVerificationError(f"{type(self).__name__} failed for {plaintext_path}: {e}") from e

        if not os.path.isfile(target) or os.path.getsize(target) == 0:
            self._discard(target)
            raise EncryptionVerificationError(f"Encrypted artifact missing after encryption: {target}")

        logger.info(f"Encrypted {os.path.basename(plaintext_path)} -> {os.path.basename(target)}")
        return target

    def _discard(self, target: str):
        """Remove a partial output so it cannot be mistaken for a result."""
        if os.path.exists(target):
            try:
                os.remove(target)
            except OSError as e:
                logger.error(f"Failed to remove partial artifact {target}: {e}")

    def _encrypt(self, plaintext_path: str, target: str, passphrase: str):
        raise NotImplementedError


class GpgEncryptor(Encryptor):
    """Symmetric encryption with the gpg command line tool."""

    suffix = 'gpg'

    def __init__(self, gpg_path: str = 'gpg', cipher_algo: str = 'AES256'):
        self.gpg_path = gpg_path
        self.cipher_algo = cipher_algo

    def build_command(self, plaintext_path: str, target: str) -> list:
        return [
            self.gpg_path,
            '--batch',
            '--yes',
            '--quiet',
            '--pinentry-mode', 'loopback',
            '--passphrase-fd', '0',
            '--symmetric',
            '--cipher-algo', self.cipher_algo,
            '--output', target,
            plaintext_path,
        ]

    def _encrypt(self, plaintext_path: str, target: str, passphrase: str):
        cmd = self.build_command(plaintext_path, target)
        logger.debug(f"Running {' '.join(cmd[:-3])} ...")

        result = subprocess.run(
            cmd,
            input=passphrase + '\n',
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            logger.warning(f"gpg exited with {result.returncode}: {result.stderr.strip() or 'no output'}")
            raise subprocess.CalledProcessError(result.returncode, cmd[0], stderr=result.stderr)


class FernetEncryptor(Encryptor):
    """
    In-process encryption with Fernet.

    File layout: MAGIC + 16-byte salt + Fernet token. The whole archive is
    held in memory while encrypting.
    """

    suffix = 'enc'
    MAGIC = b'BRF1'

    def __init__(self, iterations: Optional[int] = None):
        self.iterations = iterations

    def _cipher(self) -> PassphraseCipher:
        if self.iterations is None:
            return PassphraseCipher()
        return PassphraseCipher(iterations=self.iterations)

    def _encrypt(self, plaintext_path: str, target: str, passphrase: str):
        cipher = self._cipher()
        salt = cipher.initialize(passphrase)

        with open(plaintext_path, 'rb') as f:
            token = cipher.encrypt(f.read())

        with open(target, 'wb') as f:
            f.write(self.MAGIC)
            f.write(salt)
            f.write(token)

    def decrypt_file(self, encrypted_path: str, output_path: str, passphrase: str) -> str:
        """
        Restore a plaintext archive from an encrypted artifact.

        Raises:
            ValueError: If the file is not a Fernet artifact or the passphrase is wrong
        """
        with open(encrypted_path, 'rb') as f:
            blob = f.read()

        header_size = len(self.MAGIC) + SALT_SIZE
        if not blob.startswith(self.MAGIC) or len(blob) <= header_size:
            raise ValueError(f"Not a recognized encrypted artifact: {encrypted_path}")

        cipher = self._cipher()
        cipher.initialize(passphrase, salt=blob[len(self.MAGIC):header_size])
        try:
            data = cipher.decrypt(blob[header_size:])
        except InvalidToken as e:
            raise ValueError(f"Wrong passphrase or corrupted artifact: {encrypted_path}") from e

        with open(output_path, 'wb') as f:
            f.write(data)
        return output_path


def create_encryptor(name: str, **options) -> Encryptor:
    """
    Build an encryption backend.

    Args:
        name: 'gpg' or 'fernet'
        **options: Backend options (gpg_path, cipher_algo, iterations)

    Raises:
        ValueError: If name is invalid
    """
    if name == 'gpg':
        return GpgEncryptor(
            gpg_path=options.get('gpg_path') or 'gpg',
            cipher_algo=options.get('cipher_algo') or 'AES256',
        )
    elif name == 'fernet':
        return FernetEncryptor(iterations=options.get('iterations'))
    else:
        raise ValueError(f"Invalid encryption backend: {name}")
