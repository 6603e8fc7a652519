"""
Retention policy enforcement for published backups.

The retention set is rebuilt from a directory listing on every run; there is
no manifest. Only files carrying the encrypted suffix and last modified
strictly before the cutoff are deleted.
"""

import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Dict, Any, Optional

from backrotate.models import RetentionEntry, RetentionSet
from .errors import RetentionTargetMissingError
from .storage import LocalStorage, StorageError


logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Prunes encrypted artifacts older than the retention window.
    """

    def __init__(self, destination: str, retention_days: int, suffix: str):
        """
        Args:
            destination: Directory holding published artifacts
            retention_days: Age in days beyond which artifacts are deleted
            suffix: Encrypted file extension without the dot
        """
        self.storage = LocalStorage(destination)
        self.retention_days = retention_days
        self.suffix = suffix

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return now - timedelta(days=self.retention_days)

    def collect(self, now: Optional[datetime] = None) -> RetentionSet:
        """
        Build the retention set for the destination.

        Raises:
            RetentionTargetMissingError: If the destination does not exist
            StorageError: If the destination cannot be listed
        """
        if not self.storage.base_path.is_dir():
            raise RetentionTargetMissingError(
                f"Retention target does not exist: {self.storage.base_path}"
            )

        entries = [
            RetentionEntry(path=f['path'], modified=f['modified'], size=f['size'])
            for f in self.storage.list_files(self.suffix)
        ]
        return RetentionSet(cutoff=self.cutoff(now), entries=entries)

    def prune(self, now: Optional[datetime] = None, dry_run: bool = False,
              exclude: Iterable[str] = ()) -> Dict[str, Any]:
        """
        Delete expired artifacts.

        Deletion failures of single files are logged and reported in the
        result; they do not stop the remaining deletions.

        Args:
            now: Reference time (defaults to current UTC time)
            dry_run: List expired artifacts without deleting them
            exclude: Paths that are never deleted, whatever their age

        Returns:
            Dict with 'cutoff', 'deleted', 'expired', 'kept' and 'errors' keys

        Raises:
            RetentionTargetMissingError: If the destination does not exist
        """
        retention_set = self.collect(now)
        protected = {os.path.abspath(p) for p in exclude}
        expired = [e for e in retention_set.expired() if os.path.abspath(e.path) not in protected]
        kept = [e for e in retention_set.entries if e not in expired]

        logger.info(
            f"Retention: {self.retention_days} days, cutoff "
            f"{retention_set.cutoff.strftime('%Y-%m-%d %H:%M:%S UTC')}, "
            f"{len(expired)} of {len(retention_set.entries)} artifacts expired"
        )

        result = {
            'cutoff': retention_set.cutoff,
            'expired': [e.path for e in expired],
            'deleted': [],
            'kept': [e.path for e in kept],
            'errors': []
        }

        for entry in expired:
            if dry_run:
                logger.info(f"Would delete: {entry.path}")
                continue
            try:
                self.storage.delete(entry.path)
                result['deleted'].append(entry.path)
                logger.info(f"Deleted expired artifact: {entry.path}")
            except StorageError as e:
                error_msg = f"Failed to delete {entry.path}: {e}"
                logger.error(error_msg)
                result['errors'].append(error_msg)

        return result


def prune_destination(destination: str, retention_days: int, suffix: str,
                      dry_run: bool = False) -> List[str]:
    """
    Prune a destination outside of a full backup run.

    Returns:
        Paths that were deleted (or would be, with dry_run)
    """
    manager = RetentionManager(destination, retention_days, suffix)
    result = manager.prune(dry_run=dry_run)
    return result['expired'] if dry_run else result['deleted']
