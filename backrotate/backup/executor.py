"""
Backup executor - runs the backup pipeline for one job.

Workflow:
1. Change gate (optional): skip the run when nothing changed recently
2. Pre-flight: destination exists, passphrase readable
3. Collect source paths into a staging directory
4. Create the archive
5. Encrypt the archive
6. Delete the plaintext archive
7. Publish the encrypted artifact to the destination
8. Prune expired artifacts at the destination

Any failure stops the run in the FAILED state and sends one failure
notification. Nothing is retried and a published artifact is never rolled
back.
"""

import os
import shutil
import logging
import tempfile
from datetime import datetime, timezone
from typing import Optional, Callable

from backrotate.models import (
    Artifact, ArtifactState, BackupJob, BackupRun, NotificationEvent, PipelineState
)
from .errors import BackupError, PlaintextDeletionError
from .gate import changed_within
from .sources import create_source
from .compression import create_archive, generate_archive_filename, strip_archive_extension, get_archive_size
from .encryption import Encryptor, create_encryptor, read_passphrase
from .storage import LocalStorage
from .retention import RetentionManager
from .notifications import Notifier


logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Drives a BackupJob through the pipeline states.
    """

    def __init__(
        self,
        job: BackupJob,
        encryptor: Optional[Encryptor] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
        gpg_path: Optional[str] = None,
    ):
        """
        Args:
            job: Job configuration
            encryptor: Encryption backend (defaults to the job's backend)
            notifier: Delivery channel for outcome notifications
            clock: Returns the current UTC time; injectable for tests
            gpg_path: gpg binary used when the job encrypts with gpg
        """
        self.job = job
        self.encryptor = encryptor or create_encryptor(job.encryption, gpg_path=gpg_path)
        self.notifier = notifier
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.storage = LocalStorage(job.destination_dir)
        self.retention = RetentionManager(job.destination_dir, job.retention_days, self.encryptor.suffix)
        self.work_dir = job.work_dir or os.path.join(tempfile.gettempdir(), 'backrotate')

        self.run = BackupRun(job_name=job.name)
        self.staging_dir = None

    def execute(self) -> BackupRun:
        """
        Execute the backup job.

        Returns:
            BackupRun describing the outcome; exceptions are recorded on it
            rather than raised
        """
        self._log(f"Starting backup job: {self.job.name}")

        if self.job.change_gate and not self._gate_open():
            self.run.state = PipelineState.SKIPPED
            return self.run

        try:
            self._execute_workflow()
            self._transition(PipelineState.DONE)
            self._log(f"Backup completed successfully: {self.run.published_path}")
            self._notify(
                success=True,
                subject=f"[backrotate] {self.job.name}: backup succeeded",
                message=f"Backup published to {self.run.published_path}"
            )

        except BackupError as e:
            self._fail(e)

        except Exception as e:
            logger.exception(f"Unexpected error during {self.run.state.value}")
            self._fail(e)

        finally:
            self._cleanup()

        return self.run

    def _gate_open(self) -> bool:
        gate = self.job.change_gate
        if changed_within(gate.reference_path, gate.lookback, now=self.clock()):
            self._log(f"Change detected in {gate.reference_path} within {gate.lookback}")
            return True
        self._log(f"No change in {gate.reference_path} within {gate.lookback}, skipping backup")
        return False

    def _execute_workflow(self):
        """Run the pipeline stages in order."""
        # Pre-flight, before anything is written
        self.storage.ensure_exists()
        passphrase = read_passphrase(self.job.passphrase_source)
        self._log(f"Pre-flight checks passed (destination: {self.job.destination_dir})")

        self._transition(PipelineState.COLLECTING)
        os.makedirs(self.work_dir, exist_ok=True)
        self.staging_dir = tempfile.mkdtemp(prefix='backrotate_staging_', dir=self.work_dir)
        staged_paths = self._collect()
        self._log(f"Collected {len(staged_paths)} items")

        self._transition(PipelineState.ARCHIVING)
        now = self.clock()
        filename = generate_archive_filename(self.job.name, self.job.compression_format, now)
        artifact = Artifact(name=strip_archive_extension(filename), created_at=now)
        self.run.artifact = artifact
        archive_path = create_archive(
            staged_paths,
            os.path.join(self.work_dir, artifact.name),
            self.job.compression_format
        )
        artifact.advance(ArtifactState.BUILT, archive_path)
        size = get_archive_size(archive_path)
        self._log(f"Archive created: {os.path.basename(archive_path)} ({size / 1024 / 1024:.2f} MB)")

        self._transition(PipelineState.ENCRYPTING)
        encrypted_path = self.encryptor.encrypt(archive_path, passphrase)
        artifact.advance(ArtifactState.ENCRYPTED, encrypted_path)
        self._log(f"Encrypted artifact: {os.path.basename(encrypted_path)}")

        self._transition(PipelineState.DELETING_PLAINTEXT)
        self._delete_plaintext(archive_path)

        self._transition(PipelineState.PUBLISHING)
        published_path = self.storage.publish(encrypted_path)
        artifact.advance(ArtifactState.PUBLISHED, published_path)
        self.run.published_path = published_path
        self._log(f"Published: {published_path}")

        self._transition(PipelineState.PRUNING)
        # The artifact just published is never a pruning candidate
        result = self.retention.prune(now=self.clock(), exclude=[published_path])
        self.run.pruned = result['deleted']
        for path in result['deleted']:
            self._log(f"Deleted expired artifact: {path}")
        for error in result['errors']:
            self._log(error, level=logging.WARNING)
        self._log(f"Pruned {len(result['deleted'])} expired artifacts")

    def _collect(self):
        source = create_source(self.job.source_type, self.job.source_settings)
        try:
            return source.acquire(self.staging_dir)
        finally:
            source.cleanup()

    def _delete_plaintext(self, archive_path: str):
        try:
            os.remove(archive_path)
        except OSError as e:
            raise PlaintextDeletionError(f"Failed to delete plaintext archive {archive_path}: {e}") from e

        if os.path.exists(archive_path):
            raise PlaintextDeletionError(f"Plaintext archive still present: {archive_path}")

        self._log("Plaintext archive deleted")

    def _transition(self, state: PipelineState):
        self.run.state = state
        logger.debug(f"{self.job.name}: -> {state.value}")

    def _fail(self, error: BaseException):
        if self.run.state == PipelineState.IDLE:
            stage = getattr(error, 'stage', 'preflight')
        else:
            stage = self.run.state.value

        self.run.state = PipelineState.FAILED
        self.run.failed_stage = stage
        self.run.error = error

        artifact = self.run.artifact
        if artifact and artifact.state not in (ArtifactState.PUBLISHED, ArtifactState.FAILED):
            if artifact.state == ArtifactState.BUILT and artifact.path and os.path.exists(artifact.path):
                self._log(f"Plaintext archive left in place: {artifact.path}", level=logging.WARNING)
            artifact.advance(ArtifactState.FAILED)

        self._log(f"Backup failed during {stage}: {type(error).__name__}: {error}", level=logging.ERROR)
        self._notify(
            success=False,
            subject=f"[backrotate] {self.job.name}: backup FAILED during {stage}",
            message=f"Stage: {stage}\nError: {type(error).__name__}: {error}",
            stage=stage
        )

    def _notify(self, success: bool, subject: str, message: str, stage: Optional[str] = None):
        """Record and deliver the outcome; delivery problems are only logged."""
        if not self.job.recipients:
            logger.debug("No notification recipients configured")
            return

        body = f"{message}\n\nRun log:\n" + '\n'.join(self.run.logs)
        event = NotificationEvent(success=success, subject=subject, body=body, stage=stage)
        self.run.events.append(event)

        if self.notifier is None:
            logger.warning("Recipients configured but no notifier available")
            return

        try:
            self.notifier.send(list(self.job.recipients), subject, body)
        except Exception as e:
            self._log(f"Notification failed: {e}", level=logging.ERROR)

    def _cleanup(self):
        """Remove the staging directory."""
        if self.staging_dir and os.path.exists(self.staging_dir):
            try:
                shutil.rmtree(self.staging_dir)
                self._log("Cleaned up staging directory")
            except OSError as e:
                self._log(f"Warning: Failed to cleanup staging directory: {e}", level=logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a timestamped entry to the run log and forward it to logging.

        Args:
            message: Log message
            level: logging level for the forwarded record
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.run.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def execute_backup_job(job: BackupJob, notifier: Optional[Notifier] = None, **options) -> BackupRun:
    """
    Execute a backup job.

    Args:
        job: Job configuration
        notifier: Delivery channel for outcome notifications
        **options: Extra BackupExecutor arguments (encryptor, clock, gpg_path)

    Returns:
        BackupRun with execution results
    """
    executor = BackupExecutor(job, notifier=notifier, **options)
    return executor.execute()
