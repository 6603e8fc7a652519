"""
Backup pipeline for backrotate.

This module handles the core backup functionality including:
- Source collection (local and SSH)
- Archiving
- Encryption (gpg and Fernet)
- Publishing and retention
- Execution orchestration
"""

from .executor import BackupExecutor, execute_backup_job
from .sources import LocalSource, SSHSource
from .compression import create_archive
from .encryption import GpgEncryptor, FernetEncryptor, read_passphrase
from .storage import LocalStorage
from .retention import RetentionManager
from .gate import changed_within

__all__ = [
    'BackupExecutor',
    'execute_backup_job',
    'LocalSource',
    'SSHSource',
    'create_archive',
    'GpgEncryptor',
    'FernetEncryptor',
    'read_passphrase',
    'LocalStorage',
    'RetentionManager',
    'changed_within'
]
