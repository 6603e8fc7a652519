"""
Archive creation for the backup pipeline.

Supports multiple formats:
- tar: uncompressed tar
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- zip: Standard zip compression

All source paths go into one archive; an archive is only reported as built
once the file is confirmed on disk.
"""

import os
import logging
import tarfile
import zipfile
from pathlib import Path
from typing import List, Optional
from datetime import datetime, timezone

from .errors import ArchiveCreationError


logger = logging.getLogger(__name__)

EXTENSIONS = {
    'tar': 'tar',
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
    'zip': 'zip',
}

_TAR_MODES = {
    'tar': 'w',
    'tar.gz': 'w:gz',
    'tar.bz2': 'w:bz2',
    'tar.xz': 'w:xz',
}


def create_archive(
    source_paths: List[str],
    output_path: str,
    compression_format: str = 'tar.gz'
) -> str:
    """
    Create one archive containing every source path.

    Args:
        source_paths: Files/directories to include, in order
        output_path: Archive path without extension
        compression_format: One of 'tar', 'tar.gz', 'tar.bz2', 'tar.xz', 'zip'

    Returns:
        Full path to the created archive file

    Raises:
        ArchiveCreationError: If no paths were given, a path is missing, or
            the archive is absent after the attempt
        ValueError: If compression_format is invalid
    """
    if not source_paths:
        raise ArchiveCreationError("No source paths provided")

    if compression_format not in EXTENSIONS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(EXTENSIONS.keys())}"
        )

    archive_path = f"{output_path}.{EXTENSIONS[compression_format]}"

    try:
        if compression_format == 'zip':
            _create_zip(source_paths, archive_path)
        else:
            _create_tar(source_paths, archive_path, _TAR_MODES[compression_format])
    except (OSError, tarfile.TarError, zipfile.BadZipFile, ArchiveCreationError) as e:
        _remove_partial(archive_path)
        if isinstance(e, ArchiveCreationError):
            raise
        raise ArchiveCreationError(f"Failed to create archive: {e}") from e

    if not os.path.isfile(archive_path):
        raise ArchiveCreationError(f"Archive not found after creation: {archive_path}")

    logger.info(f"Archive created: {archive_path} ({len(source_paths)} paths)")
    return archive_path


def _remove_partial(archive_path: str):
    if os.path.exists(archive_path):
        try:
            os.remove(archive_path)
        except OSError as e:
            logger.warning(f"Failed to remove partial archive {archive_path}: {e}")


def _create_zip(source_paths: List[str], archive_path: str):
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for source_path in source_paths:
            source = Path(source_path)

            if source.is_file():
                zipf.write(source, source.name)
            elif source.is_dir():
                # Directory entry first so empty directories survive
                zipf.write(source, source.name)
                for item in sorted(source.rglob('*')):
                    zipf.write(item, str(item.relative_to(source.parent)))
            else:
                raise ArchiveCreationError(f"Path does not exist: {source_path}")


def _create_tar(source_paths: List[str], archive_path: str, mode: str):
    """
    Write a tar archive, adding each path in turn to the same file.

    Entries are stored under the path's basename to keep the archive shallow.
    """
    with tarfile.open(archive_path, mode) as tar:
        for source_path in source_paths:
            source = Path(source_path)

            if not source.exists():
                raise ArchiveCreationError(f"Path does not exist: {source_path}")

            tar.add(source, arcname=source.name, recursive=True)


def list_archive_members(archive_path: str) -> List[str]:
    """
    List entry names in an archive.

    Raises:
        ArchiveCreationError: If the archive cannot be read
    """
    try:
        if archive_path.endswith('.zip'):
            with zipfile.ZipFile(archive_path) as zipf:
                return [name.rstrip('/') for name in zipf.namelist()]
        with tarfile.open(archive_path, 'r:*') as tar:
            return tar.getnames()
    except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
        raise ArchiveCreationError(f"Failed to read archive {archive_path}: {e}") from e


def generate_archive_filename(job_name: str, compression_format: str, now: Optional[datetime] = None) -> str:
    """
    Generate a standardized archive filename.

    Format: {job_name}-{YYYYMMDD_HHMMSS}.{ext}, timestamp in UTC. Names only
    have second resolution, so two runs in the same second collide.

    Args:
        job_name: Name of the backup job
        compression_format: Compression format
        now: Timestamp to use (defaults to current UTC time)

    Returns:
        Filename (without path)
    """
    now = now or datetime.now(timezone.utc)
    timestamp = now.strftime('%Y%m%d_%H%M%S')

    extension = EXTENSIONS.get(compression_format, 'tar.gz')

    # Sanitize job name (replace spaces and special chars with underscores)
    safe_job_name = "".join(
        c if c.isalnum() or c in ('-', '_') else '_'
        for c in job_name
    )

    return f"{safe_job_name}-{timestamp}.{extension}"


def strip_archive_extension(filename: str) -> str:
    """Strip a (possibly multi-part) archive extension from a filename."""
    for extension in sorted(EXTENSIONS.values(), key=len, reverse=True):
        suffix = f".{extension}"
        if filename.endswith(suffix):
            return filename[:-len(suffix)]
    return os.path.splitext(filename)[0]


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        ArchiveCreationError: If the file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError as e:
        raise ArchiveCreationError(f"Archive not found: {archive_path}") from e
    except OSError as e:
        raise ArchiveCreationError(f"Failed to get archive size: {e}") from e
