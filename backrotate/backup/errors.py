"""
Error taxonomy for the backup pipeline.

Each stage raises its own error type so the executor can report which stage
failed without inspecting message text.
"""


class BackupError(Exception):
    """Base class for pipeline errors."""

    stage = 'unknown'

    def __init__(self, message: str, stage: str = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class DestinationMissingError(BackupError):
    """Raised during pre-flight when the destination directory does not exist."""
    stage = 'preflight'


class PassphraseMissingError(BackupError):
    """Raised when the passphrase source is missing, unreadable or empty."""
    stage = 'preflight'


class SourceError(BackupError):
    """Raised when source acquisition fails."""
    stage = 'collecting'


class ArchiveCreationError(BackupError):
    """Raised when archive creation fails."""
    stage = 'archiving'


class EncryptionVerificationError(BackupError):
    """Raised when the encrypted artifact is absent after encryption."""
    stage = 'encrypting'


class PlaintextDeletionError(BackupError):
    """Raised when the plaintext archive survives its deletion."""
    stage = 'deleting_plaintext'


class PublishError(BackupError):
    """Raised when the destination does not contain the artifact after a move."""
    stage = 'publishing'


class RetentionTargetMissingError(BackupError):
    """Raised when the retention target directory does not exist."""
    stage = 'pruning'


class NotificationError(Exception):
    """Raised when a notification cannot be delivered."""
    pass
