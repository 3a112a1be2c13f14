"""Job runner for transcoding attempts.

Composes probe, encoder and publisher into one attempt and drives the
record through the state machine. An attempt never lets an exception
escape: every fault becomes a ``TranscodingResult``.

Automatic retries keep the record in PROCESSING between attempts; only the
last attempt (or the final-failure hook) writes FAILED, so a job that
exhausts its attempts is failed exactly once with the last diagnostic.
"""

import logging
import os
import shutil
import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Optional

from app.core.logging import correlation_scope, log_error, log_info, log_warning
from app.core.metrics import (
    TRANSCODE_ATTEMPT_DURATION_SECONDS,
    TRANSCODE_ATTEMPTS_TOTAL,
    TRANSCODE_JOBS_IN_PROGRESS,
)
from app.modules.transcoding.errors import (
    AttemptsExhausted,
    AttemptTimeout,
    ConfigurationError,
    EncoderExecutionFailed,
    EncoderUnavailable,
    PublishFailed,
    VideoNotFoundError,
)
from app.modules.transcoding.ffmpeg import Encoder
from app.modules.transcoding.ladder import Variant
from app.modules.transcoding.models import VideoStatus
from app.modules.transcoding.probe import Prober, VideoMetadata
from app.modules.transcoding.publisher import ArtifactPublisher, PublishResult
from app.modules.transcoding.repository import VideoRepository
from app.modules.transcoding.state import (
    VideoRecord,
    complete,
    fail,
    start_processing,
)

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_CODE = "unexpected_error"

_ENCODER_ERRORS = {
    EncoderUnavailable.error_code: EncoderUnavailable,
    EncoderExecutionFailed.error_code: EncoderExecutionFailed,
}


@dataclass(frozen=True)
class AttemptPolicy:
    """Automatic attempt policy.

    Attributes:
        max_attempts: Attempts before the job is failed for good
        backoff_seconds: Fixed delay between attempts
        timeout_seconds: Wall-clock ceiling of a single attempt
    """
    max_attempts: int = 3
    backoff_seconds: float = 60
    timeout_seconds: float = 3600

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ConfigurationError("backoff_seconds cannot be negative")
        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be positive")


@dataclass
class TranscodingResult:
    """Outcome of one attempt."""
    success: bool
    retryable: bool = False
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    record_id: Optional[int] = None
    job_id: Optional[str] = None
    status: Optional[VideoStatus] = None
    attempt: int = 1
    skipped: bool = False
    manifest_url: Optional[str] = None


class JobRunner:
    """Runs transcoding attempts against the video repository."""

    def __init__(
        self,
        repository: VideoRepository,
        prober: Prober,
        encoder: Encoder,
        publisher: ArtifactPublisher,
        ladder: Sequence[Variant],
        work_root: str,
        policy: Optional[AttemptPolicy] = None,
        source_path_for: Optional[Callable[[VideoRecord], str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize runner.

        Args:
            repository: Persistence port
            prober: Metadata prober
            encoder: HLS encoder
            publisher: Active publishing strategy
            ladder: Quality ladder, built once at startup
            work_root: Parent of the per-job work directories
            policy: Attempt policy
            source_path_for: Maps a record to its local source file path
            clock: Monotonic clock used for the attempt deadline
        """
        if not ladder:
            raise ConfigurationError("Quality ladder is empty")
        self.repository = repository
        self.prober = prober
        self.encoder = encoder
        self.publisher = publisher
        self.ladder = list(ladder)
        self.work_root = work_root
        self.policy = policy or AttemptPolicy()
        self.source_path_for = source_path_for or (lambda record: record.original_path)
        self.clock = clock

    def work_dir_for(self, record: VideoRecord) -> str:
        return os.path.join(self.work_root, record.uuid)

    def run_attempt(self, record_id: int, attempt: int = 1) -> TranscodingResult:
        """Run a single attempt for a record.

        Args:
            record_id: Internal id of the video record
            attempt: 1-based attempt number

        Returns:
            TranscodingResult; ``retryable`` is set when another automatic
            attempt should follow
        """
        record = self.repository.get_by_id(record_id)
        if record is None:
            log_warning(logger, "Video record not found", record_id=record_id)
            return TranscodingResult(
                success=False,
                error_code=VideoNotFoundError.error_code,
                error_message=f"Video {record_id} not found",
                record_id=record_id,
                attempt=attempt,
            )

        if record.status.is_terminal:
            # Duplicate delivery of a job that already finished
            log_info(
                logger,
                "Skipping attempt for finished video",
                job_id=record.uuid,
                status=record.status.value,
            )
            TRANSCODE_ATTEMPTS_TOTAL.labels(outcome="skipped").inc()
            return TranscodingResult(
                success=record.is_completed,
                error_message=record.error_message,
                record_id=record.id,
                job_id=record.uuid,
                status=record.status,
                attempt=attempt,
                skipped=True,
                manifest_url=record.manifest_url,
            )

        with correlation_scope(record.uuid):
            return self._run(record, attempt)

    def _run(self, record: VideoRecord, attempt: int) -> TranscodingResult:
        started = self.clock()
        deadline = started + self.policy.timeout_seconds

        record = self.repository.update(start_processing(record))
        log_info(
            logger,
            "Transcoding attempt started",
            job_id=record.uuid,
            attempt=attempt,
            max_attempts=self.policy.max_attempts,
        )

        work_dir = self.work_dir_for(record)
        TRANSCODE_JOBS_IN_PROGRESS.inc()
        try:
            publish, metadata = self._execute(record, work_dir, deadline)
            record = self.repository.update(complete(record, publish, metadata))
        except (EncoderUnavailable, EncoderExecutionFailed, AttemptTimeout) as e:
            # Partial encoder output is useless; the diagnostic is in the message
            shutil.rmtree(work_dir, ignore_errors=True)
            return self._handle_failure(record, attempt, e.error_code, e.message)
        except PublishFailed as e:
            return self._handle_failure(record, attempt, e.error_code, e.message)
        except Exception as e:
            log_error(
                logger,
                "Unexpected error during transcoding attempt",
                e,
                job_id=record.uuid,
                attempt=attempt,
            )
            return self._handle_failure(
                record, attempt, UNEXPECTED_ERROR_CODE, f"Unexpected error during transcoding: {e}"
            )
        finally:
            TRANSCODE_JOBS_IN_PROGRESS.dec()
            TRANSCODE_ATTEMPT_DURATION_SECONDS.observe(self.clock() - started)

        TRANSCODE_ATTEMPTS_TOTAL.labels(outcome="completed").inc()
        log_info(
            logger,
            "Transcoding completed",
            job_id=record.uuid,
            attempt=attempt,
            manifest_url=record.manifest_url,
        )
        return TranscodingResult(
            success=True,
            record_id=record.id,
            job_id=record.uuid,
            status=record.status,
            attempt=attempt,
            manifest_url=record.manifest_url,
        )

    def _execute(
        self,
        record: VideoRecord,
        work_dir: str,
        deadline: float,
    ) -> tuple[PublishResult, VideoMetadata]:
        if os.path.exists(work_dir):
            log_warning(
                logger,
                "Removing work directory left by a previous attempt",
                job_id=record.uuid,
                work_dir=work_dir,
            )
            shutil.rmtree(work_dir)
        os.makedirs(work_dir)

        source_path = self.source_path_for(record)
        metadata = self.prober.probe(source_path)

        remaining = deadline - self.clock()
        if remaining <= 0:
            raise AttemptTimeout(self.timeout_message())

        try:
            outcome = self.encoder.encode(source_path, work_dir, self.ladder, timeout=remaining)
        except subprocess.TimeoutExpired:
            raise AttemptTimeout(self.timeout_message()) from None

        if not outcome.success:
            error_class = _ENCODER_ERRORS.get(outcome.error_code, EncoderExecutionFailed)
            raise error_class(outcome.error_message or "FFmpeg failed")

        publish = self.publisher.publish(record.uuid, work_dir)
        if not publish.success:
            raise PublishFailed(publish.error_message or "Publishing failed")
        # The ceiling covers the whole attempt, publishing included
        if self.clock() >= deadline:
            raise AttemptTimeout(self.timeout_message())
        return publish, metadata

    def timeout_message(self) -> str:
        """Diagnostic persisted when an attempt exceeds its ceiling."""
        return f"Transcoding timed out after {self.policy.timeout_seconds:g} seconds"

    def _handle_failure(
        self,
        record: VideoRecord,
        attempt: int,
        error_code: str,
        message: str,
    ) -> TranscodingResult:
        if attempt < self.policy.max_attempts:
            TRANSCODE_ATTEMPTS_TOTAL.labels(outcome="retry").inc()
            log_warning(
                logger,
                "Transcoding attempt failed, will retry",
                job_id=record.uuid,
                attempt=attempt,
                error_code=error_code,
                error_message=message,
                backoff_seconds=self.policy.backoff_seconds,
            )
            return TranscodingResult(
                success=False,
                retryable=True,
                error_code=error_code,
                error_message=message,
                record_id=record.id,
                job_id=record.uuid,
                status=record.status,
                attempt=attempt,
            )

        record = self.repository.update(fail(record, message))
        TRANSCODE_ATTEMPTS_TOTAL.labels(outcome="failed").inc()
        log_error(
            logger,
            "Transcoding failed",
            job_id=record.uuid,
            attempt=attempt,
            error_code=error_code,
            error_message=record.error_message,
        )
        return TranscodingResult(
            success=False,
            error_code=error_code,
            error_message=record.error_message,
            record_id=record.id,
            job_id=record.uuid,
            status=record.status,
            attempt=attempt,
        )

    def run(self, record_id: int, sleep: Callable[[float], None] = time.sleep) -> TranscodingResult:
        """Run attempts in-process until success or exhaustion.

        Args:
            record_id: Internal id of the video record
            sleep: Called with the backoff between attempts

        Returns:
            Result of the last attempt
        """
        result = None
        for attempt in range(1, self.policy.max_attempts + 1):
            result = self.run_attempt(record_id, attempt)
            if not result.retryable:
                break
            sleep(self.policy.backoff_seconds)
        return result

    def mark_exhausted(self, record_id: int, message: str) -> Optional[VideoRecord]:
        """Final-failure hook: make sure the record ends FAILED.

        Already finished records are left untouched, so a job that failed
        on its last attempt is not failed a second time.

        Args:
            record_id: Internal id of the video record
            message: Diagnostic to persist

        Returns:
            The record as stored afterwards, or None if it does not exist
        """
        record = self.repository.get_by_id(record_id)
        if record is None:
            log_warning(logger, "Video record not found", record_id=record_id)
            return None
        if record.status.is_terminal:
            return record

        with correlation_scope(record.uuid):
            if record.status == VideoStatus.PENDING:
                record = start_processing(record)
            record = self.repository.update(fail(record, message))
            log_error(
                logger,
                "Transcoding attempts exhausted",
                job_id=record.uuid,
                error_code=AttemptsExhausted.error_code,
                error_message=record.error_message,
            )
        return record
