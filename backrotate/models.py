"""
Core data model: job configuration, artifacts, retention sets and run results.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List, Tuple, Dict, Any


COMPRESSION_FORMATS = ('tar', 'tar.gz', 'tar.bz2', 'tar.xz', 'zip')
ENCRYPTION_BACKENDS = ('gpg', 'fernet')
SOURCE_TYPES = ('local', 'ssh')


class PipelineState(enum.Enum):
    IDLE = 'idle'
    COLLECTING = 'collecting'
    ARCHIVING = 'archiving'
    ENCRYPTING = 'encrypting'
    DELETING_PLAINTEXT = 'deleting_plaintext'
    PUBLISHING = 'publishing'
    PRUNING = 'pruning'
    DONE = 'done'
    FAILED = 'failed'
    SKIPPED = 'skipped'

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.DONE, PipelineState.FAILED, PipelineState.SKIPPED)


class ArtifactState(enum.Enum):
    UNBUILT = 'unbuilt'
    BUILT = 'built'
    ENCRYPTED = 'encrypted'
    PUBLISHED = 'published'
    FAILED = 'failed'


# Allowed artifact lifecycle transitions
_ARTIFACT_TRANSITIONS = {
    ArtifactState.UNBUILT: (ArtifactState.BUILT, ArtifactState.FAILED),
    ArtifactState.BUILT: (ArtifactState.ENCRYPTED, ArtifactState.FAILED),
    ArtifactState.ENCRYPTED: (ArtifactState.PUBLISHED, ArtifactState.FAILED),
    ArtifactState.PUBLISHED: (),
    ArtifactState.FAILED: (),
}


@dataclass(frozen=True)
class ChangeGate:
    """Reference file and lookback window used to skip idle runs."""
    reference_path: str
    lookback: timedelta = timedelta(hours=24)


@dataclass(frozen=True)
class BackupJob:
    """
    Backup job configuration.

    Immutable once constructed; one instance is built per invocation and passed
    explicitly to every pipeline component.
    """
    name: str
    source_paths: Tuple[str, ...]
    passphrase_source: str
    destination_dir: str
    retention_days: int = 14
    source_type: str = 'local'
    source_config: Dict[str, Any] = field(default_factory=dict)
    exclude_patterns: Tuple[str, ...] = ()
    compression_format: str = 'tar.gz'
    encryption: str = 'gpg'
    work_dir: Optional[str] = None
    recipients: Tuple[str, ...] = ()
    change_gate: Optional[ChangeGate] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Job name must not be empty")
        if self.retention_days < 0:
            raise ValueError(f"Retention days must be >= 0, got {self.retention_days}")
        if self.source_type not in SOURCE_TYPES:
            raise ValueError(f"Invalid source type: {self.source_type}")
        if self.compression_format not in COMPRESSION_FORMATS:
            raise ValueError(
                f"Invalid compression format: {self.compression_format}. "
                f"Valid options: {list(COMPRESSION_FORMATS)}"
            )
        if self.encryption not in ENCRYPTION_BACKENDS:
            raise ValueError(
                f"Invalid encryption backend: {self.encryption}. "
                f"Valid options: {list(ENCRYPTION_BACKENDS)}"
            )
        # Lists from the CLI or a job file become tuples
        object.__setattr__(self, 'source_paths', tuple(self.source_paths))
        object.__setattr__(self, 'exclude_patterns', tuple(self.exclude_patterns))
        object.__setattr__(self, 'recipients', tuple(self.recipients))

    @property
    def source_settings(self) -> Dict[str, Any]:
        """Config dict handed to create_source()."""
        if self.source_type == 'ssh':
            settings = dict(self.source_config)
            settings.setdefault('paths', list(self.source_paths))
            return settings
        return {
            'paths': list(self.source_paths),
            'exclude_patterns': list(self.exclude_patterns),
        }


@dataclass
class Artifact:
    """
    A file produced by one pipeline stage and consumed by the next.

    The name is derived from a UTC timestamp with second resolution, so two
    runs of the same job within one second produce the same name.
    """
    name: str
    created_at: datetime
    path: Optional[str] = None
    state: ArtifactState = ArtifactState.UNBUILT

    def advance(self, state: ArtifactState, path: Optional[str] = None):
        """
        Move the artifact to a new lifecycle state.

        Raises:
            ValueError: If the transition is not allowed
        """
        if state not in _ARTIFACT_TRANSITIONS[self.state]:
            raise ValueError(f"Illegal artifact transition: {self.state.value} -> {state.value}")
        self.state = state
        if path is not None:
            self.path = path


@dataclass(frozen=True)
class RetentionEntry:
    path: str
    modified: datetime
    size: int = 0


@dataclass
class RetentionSet:
    """Encrypted artifacts found at the destination, with the eviction cutoff."""
    cutoff: datetime
    entries: List[RetentionEntry] = field(default_factory=list)

    def expired(self) -> List[RetentionEntry]:
        """Entries modified strictly before the cutoff."""
        return [e for e in self.entries if e.modified < self.cutoff]

    def retained(self) -> List[RetentionEntry]:
        return [e for e in self.entries if e.modified >= self.cutoff]


@dataclass(frozen=True)
class NotificationEvent:
    success: bool
    subject: str
    body: str
    stage: Optional[str] = None


@dataclass
class BackupRun:
    """Outcome of one pipeline execution."""
    job_name: str
    state: PipelineState = PipelineState.IDLE
    failed_stage: Optional[str] = None
    error: Optional[BaseException] = None
    artifact: Optional[Artifact] = None
    published_path: Optional[str] = None
    pruned: List[str] = field(default_factory=list)
    events: List[NotificationEvent] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.DONE

    @property
    def exit_code(self) -> int:
        return 1 if self.state == PipelineState.FAILED else 0
