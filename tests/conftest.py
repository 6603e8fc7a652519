"""
Shared pytest fixtures for backrotate tests.

This module provides fixtures for:
- Source trees, passphrase files and destination directories
- Backup job configurations
- A fast Fernet encryptor and a recording notifier
- Mock fixtures for external services (SSH)
"""

import os
import tarfile
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from backrotate.models import BackupJob
from backrotate.backup.encryption import FernetEncryptor
from backrotate.backup.notifications import Notifier


class RecordingNotifier(Notifier):
    """Notifier that keeps every message instead of sending it."""

    def __init__(self):
        self.sent = []

    def send(self, recipients, subject, body):
        self.sent.append({'recipients': list(recipients), 'subject': subject, 'body': body})


def _set_mtime(path, when: datetime):
    timestamp = when.timestamp()
    os.utime(path, (timestamp, timestamp))


@pytest.fixture
def set_mtime():
    """Set a file's access and modification time to a UTC datetime."""
    return _set_mtime


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - test_file1.txt
    - test_file2.log
    - nested/test_file3.txt
    - test_file.pyc (should be excluded in tests)
    """
    root = tmp_path / 'files'
    root.mkdir()
    (root / 'test_file1.txt').write_text('Test content 1')
    (root / 'test_file2.log').write_text('Test log content')

    nested_dir = root / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    (root / 'test_file.pyc').write_bytes(b'compiled python')

    return root


@pytest.fixture
def source_dirs(tmp_path):
    """Two source directories, dirA and dirB, with a few files each."""
    dir_a = tmp_path / 'src' / 'dirA'
    dir_b = tmp_path / 'src' / 'dirB'
    dir_a.mkdir(parents=True)
    dir_b.mkdir(parents=True)

    (dir_a / 'vault.db').write_bytes(b'vault data' * 50)
    (dir_a / 'config.json').write_text('{"k": 1}')
    (dir_b / 'attachments').mkdir()
    (dir_b / 'attachments' / 'doc.txt').write_text('attachment')

    return [dir_a, dir_b]


@pytest.fixture
def passphrase_file(tmp_path):
    path = tmp_path / 'passphrase.txt'
    path.write_text('secret\n')
    return path


@pytest.fixture
def destination(tmp_path):
    path = tmp_path / 'backups'
    path.mkdir()
    return path


@pytest.fixture
def work_dir(tmp_path):
    return tmp_path / 'work'


@pytest.fixture
def fernet_encryptor():
    """Fernet encryptor with a cheap key derivation for fast tests."""
    return FernetEncryptor(iterations=1000)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def backup_job(source_dirs, passphrase_file, destination, work_dir):
    """
    Job backing up dirA and dirB with a one day retention window.
    """
    return BackupJob(
        name='vault',
        source_paths=tuple(str(p) for p in source_dirs),
        passphrase_source=str(passphrase_file),
        destination_dir=str(destination),
        retention_days=1,
        encryption='fernet',
        work_dir=str(work_dir),
        recipients=('ops@example.com',),
    )


@pytest.fixture
def fixed_now():
    return datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SSH/SFTP testing.

    Yields the mocked SFTP client.
    """
    with patch('backrotate.backup.sources.SSHClient') as mock_ssh:
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp
        mock_ssh.return_value.connect.return_value = None

        yield mock_ssh


@pytest.fixture
def sample_archive(tmp_path):
    """
    Create a sample archive file for testing.
    """
    test_dir = tmp_path / 'test_data'
    test_dir.mkdir()
    (test_dir / 'file1.txt').write_text('Content 1')
    (test_dir / 'file2.txt').write_text('Content 2')

    archive_path = tmp_path / 'test_archive.tar.gz'
    with tarfile.open(archive_path, 'w:gz') as tar:
        tar.add(test_dir, arcname='test_data')

    return archive_path
