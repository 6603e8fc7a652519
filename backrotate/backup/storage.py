"""
Publishing of encrypted artifacts to the destination directory.

Moves are verified by checking the destination afterwards rather than by
trusting the move call.
"""

import os
import shutil
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import List, Dict, Any

from .errors import BackupError, DestinationMissingError, PublishError


logger = logging.getLogger(__name__)


class StorageError(BackupError):
    """Raised when listing or deleting destination files fails."""
    stage = 'pruning'


class LocalStorage:
    """
    Handler for the durable backup destination.

    The destination directory must already exist; it is never created here so
    that a mistyped or unmounted path fails loudly.
    """

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)

    def ensure_exists(self):
        """
        Pre-flight check for the destination.

        Raises:
            DestinationMissingError: If the destination is not a directory
        """
        if not self.base_path.is_dir():
            raise DestinationMissingError(f"Destination directory does not exist: {self.base_path}")

    def publish(self, source_path: str) -> str:
        """
        Move an artifact into the destination.

        Args:
            source_path: Artifact in the work directory

        Returns:
            Full path of the published artifact

        Raises:
            PublishError: If the move fails or the artifact is not at the
                destination afterwards
        """
        if not os.path.isfile(source_path):
            raise PublishError(f"Artifact not found: {source_path}")

        dest_path = self.base_path / os.path.basename(source_path)

        try:
            shutil.move(source_path, str(dest_path))
        except (OSError, shutil.Error) as e:
            # A partial copy is only discarded while the source is intact
            if os.path.isfile(source_path) and dest_path.exists():
                try:
                    os.remove(dest_path)
                except OSError as cleanup_error:
                    logger.error(f"Failed to remove partial artifact {dest_path}: {cleanup_error}")
            raise PublishError(f"Failed to move {source_path} to {dest_path}: {e}") from e

        if not dest_path.is_file():
            raise PublishError(f"Artifact missing from destination after move: {dest_path}")

        logger.info(f"Published {dest_path}")
        return str(dest_path)

    def delete(self, path: str):
        """
        Delete a file from the destination.

        Args:
            path: Absolute path, or a name relative to the destination

        Raises:
            StorageError: If deletion fails
        """
        full_path = self.base_path / path

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to delete {full_path}: {e}") from e

        if full_path.exists():
            raise StorageError(f"File still present after deletion: {full_path}")

    def list_files(self, suffix: str) -> List[Dict[str, Any]]:
        """
        List artifacts in the destination with the given suffix.

        Only regular files directly inside the destination are considered.

        Args:
            suffix: File extension without the dot (e.g. 'gpg')

        Returns:
            List of dicts with 'path', 'name', 'size' and 'modified' (UTC) keys

        Raises:
            StorageError: If the directory cannot be listed
        """
        files = []
        try:
            for entry in sorted(self.base_path.iterdir()):
                if not entry.is_file() or not entry.name.endswith(f".{suffix}"):
                    continue
                st = entry.stat()
                files.append({
                    'path': str(entry),
                    'name': entry.name,
                    'size': st.st_size,
                    'modified': datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
                })
        except OSError as e:
            raise StorageError(f"Failed to list {self.base_path}: {e}") from e

        return files
