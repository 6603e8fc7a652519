import os
import json
import tempfile


class Config:
    """Base configuration"""

    # Staging
    WORK_DIR = os.environ.get('BACKROTATE_WORK_DIR') or os.path.join(tempfile.gettempdir(), 'backrotate')

    # Logging
    LOG_FILE = os.environ.get('BACKROTATE_LOG_FILE')

    # Backup defaults
    RETENTION_DAYS = int(os.environ.get('BACKROTATE_RETENTION_DAYS', 14))
    COMPRESSION_FORMAT = os.environ.get('BACKROTATE_COMPRESSION_FORMAT') or 'tar.gz'
    ENCRYPTION = os.environ.get('BACKROTATE_ENCRYPTION') or 'gpg'
    GPG_PATH = os.environ.get('BACKROTATE_GPG_PATH') or 'gpg'
    GATE_LOOKBACK_HOURS = 24

    # Notifications
    SMTP_HOST = os.environ.get('SMTP_HOST') or 'localhost'
    SMTP_PORT = int(os.environ.get('SMTP_PORT', 25))
    SMTP_SENDER = os.environ.get('SMTP_SENDER') or 'backrotate@localhost'
    SMTP_USERNAME = os.environ.get('SMTP_USERNAME')
    SMTP_PASSWORD = os.environ.get('SMTP_PASSWORD')
    SMTP_STARTTLS = os.environ.get('SMTP_STARTTLS', 'false').lower() == 'true'


def load_job_file(path: str) -> dict:
    """
    Load a JSON job file.

    Keys mirror the ``run`` command options (``sources``, ``destination``,
    ``passphrase_file``, ``retention_days``, ``recipients``, ...). An ``ssh``
    object switches the job to a remote source.

    Args:
        path: Path to the JSON file

    Returns:
        Parsed job settings

    Raises:
        ValueError: If the file cannot be read or is not a JSON object
    """
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to load job file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Job file must contain a JSON object: {path}")

    return data
