"""
Collectors for the backup pipeline.

Supports:
- LocalSource: stage files and directories from the local filesystem
- SSHSource: stage files and directories from a remote host over SFTP

Both copy into a staging directory so the archive is built from a stable
snapshot instead of live data.
"""

import os
import stat
import shutil
import logging
from pathlib import Path
from typing import List, Dict, Any
from fnmatch import fnmatch

import paramiko
from paramiko import SSHClient, AutoAddPolicy, RejectPolicy

from .errors import SourceError


logger = logging.getLogger(__name__)


class LocalSource:
    """
    Collector for local filesystem paths.

    Copies each configured path into the staging directory, skipping anything
    that matches an exclude pattern.
    """

    def __init__(self, paths: List[str], exclude_patterns: List[str] = None):
        """
        Args:
            paths: Files or directories to back up, in archive order
            exclude_patterns: Glob patterns to skip (e.g. *.tmp, **/cache)
        """
        self.paths = list(paths)
        self.exclude_patterns = list(exclude_patterns or [])

    def _should_exclude(self, path: Path) -> bool:
        """
        Check a path against the exclude patterns.

        Patterns match the full path or the basename; a leading ``**/`` matches
        the basename at any depth.
        """
        if not self.exclude_patterns:
            return False

        path_str = str(path)
        path_name = path.name

        for pattern in self.exclude_patterns:
            if fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
                return True
            if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
                return True

        return False

    def _ignore(self, directory, names):
        return [name for name in names if self._should_exclude(Path(directory) / name)]

    def acquire(self, staging_dir: str) -> List[str]:
        """
        Copy source paths into the staging directory.

        Args:
            staging_dir: Directory to copy into

        Returns:
            Staged paths, in the same order as the configured paths

        Raises:
            SourceError: If a path is missing or cannot be copied
        """
        staged = []

        for path in self.paths:
            source_path = Path(path).expanduser().resolve()

            if not source_path.exists():
                raise SourceError(f"Path does not exist: {path}")

            dest_path = Path(staging_dir) / source_path.name
            if dest_path.exists():
                raise SourceError(f"Duplicate source name in staging area: {source_path.name}")

            try:
                if source_path.is_file():
                    if self._should_exclude(source_path):
                        logger.info(f"Excluded by pattern: {path}")
                        continue
                    shutil.copy2(source_path, dest_path)
                elif source_path.is_dir():
                    shutil.copytree(source_path, dest_path, symlinks=False, ignore=self._ignore)
                else:
                    raise SourceError(f"Unsupported path type: {path}")
            except PermissionError as e:
                raise SourceError(f"Permission denied accessing {path}: {e}") from e
            except (OSError, shutil.Error) as e:
                raise SourceError(f"Failed to copy {path}: {e}") from e

            logger.debug(f"Staged {source_path} -> {dest_path}")
            staged.append(str(dest_path))

        return staged

    def cleanup(self):
        """Local source holds no connections."""
        pass


class SSHSource:
    """
    Collector for remote paths over SSH/SFTP.

    Downloads each remote path into the staging directory.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Args:
            config: SSH settings with keys:
                - host: hostname or IP
                - port: SSH port (default 22)
                - username: login name
                - password: password (optional if using a key)
                - private_key: path to a private key file (optional)
                - strict_host_keys: reject hosts missing from known_hosts (default False)
                - paths: remote paths to back up
        """
        self.host = config.get('host') or config.get('hostname')
        self.port = int(config.get('port', 22))
        self.username = config.get('username')
        self.password = config.get('password')
        self.private_key_path = config.get('private_key')
        self.strict_host_keys = bool(config.get('strict_host_keys', False))
        self.paths = list(config.get('paths', []))

        self.ssh_client = None
        self.sftp_client = None

    def _connect(self):
        """
        Open the SSH and SFTP sessions.

        Raises:
            SourceError: If the connection or authentication fails
        """
        connect_kwargs = {
            'hostname': self.host,
            'port': self.port,
            'username': self.username,
            'timeout': 30
        }

        if self.password:
            connect_kwargs['password'] = self.password
        elif self.private_key_path:
            key_path = Path(self.private_key_path).expanduser()
            if not key_path.exists():
                raise SourceError(f"Private key not found: {self.private_key_path}")
            connect_kwargs['key_filename'] = str(key_path)
        else:
            raise SourceError("Either password or private_key must be provided")

        try:
            self.ssh_client = SSHClient()
            self.ssh_client.load_system_host_keys()
            policy = RejectPolicy() if self.strict_host_keys else AutoAddPolicy()
            self.ssh_client.set_missing_host_key_policy(policy)

            logger.info(f"Connecting to {self.username}@{self.host}:{self.port}")
            self.ssh_client.connect(**connect_kwargs)
            self.sftp_client = self.ssh_client.open_sftp()

        except paramiko.AuthenticationException as e:
            raise SourceError(f"SSH authentication failed for {self.host}: {e}") from e
        except paramiko.SSHException as e:
            raise SourceError(f"SSH connection failed to {self.host}: {e}") from e
        except OSError as e:
            raise SourceError(f"Failed to connect to {self.host}: {e}") from e

    def _download_file(self, remote_path: str, local_path: str):
        try:
            self.sftp_client.get(remote_path, local_path)
        except FileNotFoundError as e:
            raise SourceError(f"Remote file not found: {remote_path}") from e
        except PermissionError as e:
            raise SourceError(f"Permission denied accessing remote file: {remote_path}") from e
        except (OSError, paramiko.SSHException) as e:
            raise SourceError(f"Failed to download {remote_path}: {e}") from e

    def _download_directory(self, remote_path: str, local_path: str):
        """Recursively download a remote directory."""
        Path(local_path).mkdir(parents=True, exist_ok=True)

        try:
            entries = self.sftp_client.listdir_attr(remote_path)
        except FileNotFoundError as e:
            raise SourceError(f"Remote directory not found: {remote_path}") from e
        except PermissionError as e:
            raise SourceError(f"Permission denied accessing remote directory: {remote_path}") from e
        except (OSError, paramiko.SSHException) as e:
            raise SourceError(f"Failed to list {remote_path}: {e}") from e

        for entry in entries:
            remote_item = f"{remote_path.rstrip('/')}/{entry.filename}"
            local_item = os.path.join(local_path, entry.filename)

            if stat.S_ISDIR(entry.st_mode):
                self._download_directory(remote_item, local_item)
            else:
                self._download_file(remote_item, local_item)

    def acquire(self, staging_dir: str) -> List[str]:
        """
        Download remote paths into the staging directory.

        Args:
            staging_dir: Directory to download into

        Returns:
            Staged paths, in the same order as the configured paths

        Raises:
            SourceError: If connection or download fails
        """
        self._connect()
        staged = []

        for remote_path in self.paths:
            basename = os.path.basename(remote_path.rstrip('/'))
            local_path = os.path.join(staging_dir, basename)

            try:
                remote_stat = self.sftp_client.stat(remote_path)
            except FileNotFoundError as e:
                raise SourceError(f"Remote path not found: {remote_path}") from e
            except (OSError, paramiko.SSHException) as e:
                raise SourceError(f"Failed to stat {remote_path}: {e}") from e

            if stat.S_ISDIR(remote_stat.st_mode):
                self._download_directory(remote_path, local_path)
            else:
                self._download_file(remote_path, local_path)

            logger.debug(f"Downloaded {self.host}:{remote_path} -> {local_path}")
            staged.append(local_path)

        return staged

    def cleanup(self):
        """Close SFTP and SSH sessions."""
        for client in (self.sftp_client, self.ssh_client):
            if client is None:
                continue
            try:
                client.close()
            except (OSError, paramiko.SSHException) as e:
                logger.warning(f"Error closing SSH session to {self.host}: {e}")

        self.sftp_client = None
        self.ssh_client = None


def create_source(source_type: str, config: Dict[str, Any]):
    """
    Build the collector for a job.

    Args:
        source_type: 'local' or 'ssh'
        config: Source settings (see BackupJob.source_settings)

    Returns:
        LocalSource or SSHSource instance

    Raises:
        ValueError: If source_type is invalid
    """
    if source_type == 'local':
        return LocalSource(config.get('paths', []), config.get('exclude_patterns', []))
    elif source_type == 'ssh':
        return SSHSource(config)
    else:
        raise ValueError(f"Invalid source type: {source_type}")
