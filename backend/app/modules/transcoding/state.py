"""Video record value object and its status state machine.

Records are immutable; every status change goes through one of the
transition functions below, which return a new record and raise
``InvalidTransitionError`` for anything the state machine does not allow::

    PENDING -> PROCESSING -> COMPLETED
                          -> FAILED -> (manual retry) -> PENDING

PROCESSING -> PROCESSING is accepted by ``start_processing`` so that an
automatic retry, or a redelivery after a worker crash, can re-enter the
attempt without passing through a terminal state.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from app.modules.transcoding.errors import InvalidTransitionError, RetryNotAllowedError
from app.modules.transcoding.models import VideoStatus

if TYPE_CHECKING:
    from app.modules.transcoding.probe import VideoMetadata
    from app.modules.transcoding.publisher import PublishResult


DEFAULT_FAILURE_MESSAGE = "Transcoding failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VideoRecord:
    """A transcoding unit of work and its outcome."""

    uuid: str
    original_filename: str
    original_path: str
    file_size: int
    mime_type: str
    original_disk: str = "local"
    id: Optional[int] = None
    title: Optional[str] = None
    duration: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    status: VideoStatus = VideoStatus.PENDING
    manifest_path: Optional[str] = None
    manifest_url: Optional[str] = None
    remote_bucket: Optional[str] = None
    remote_key: Optional[str] = None
    error_message: Optional[str] = None
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None
    metadata: dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == VideoStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == VideoStatus.FAILED


def _require(record: VideoRecord, allowed: tuple[VideoStatus, ...], target: VideoStatus) -> None:
    if record.status not in allowed:
        raise InvalidTransitionError(
            f"Cannot move video {record.uuid} from {record.status.value} to {target.value}"
        )


def start_processing(record: VideoRecord, at: Optional[datetime] = None) -> VideoRecord:
    """Begin an attempt.

    Args:
        record: A PENDING record, or a PROCESSING one being re-entered
        at: Attempt start time, defaults to now

    Returns:
        PROCESSING record with a fresh ``processing_started_at``
    """
    _require(record, (VideoStatus.PENDING, VideoStatus.PROCESSING), VideoStatus.PROCESSING)
    return replace(
        record,
        status=VideoStatus.PROCESSING,
        processing_started_at=at or utcnow(),
        processing_completed_at=None,
    )


def complete(
    record: VideoRecord,
    result: "PublishResult",
    metadata: Optional["VideoMetadata"] = None,
    at: Optional[datetime] = None,
) -> VideoRecord:
    """Finish an attempt successfully.

    Probed fields are only written when the probe returned them, so an
    empty probe leaves ``duration``, ``width`` and ``height`` untouched.
    """
    _require(record, (VideoStatus.PROCESSING,), VideoStatus.COMPLETED)
    if not result.manifest_path or not result.manifest_url:
        raise InvalidTransitionError(
            f"Cannot complete video {record.uuid} without a published manifest"
        )

    changes = {}
    if metadata is not None:
        for name in ("duration", "width", "height"):
            value = getattr(metadata, name)
            if value is not None:
                changes[name] = value

    return replace(
        record,
        status=VideoStatus.COMPLETED,
        manifest_path=result.manifest_path,
        manifest_url=result.manifest_url,
        remote_bucket=result.bucket,
        remote_key=result.key,
        error_message=None,
        processing_completed_at=at or utcnow(),
        **changes,
    )


def fail(record: VideoRecord, message: Optional[str], at: Optional[datetime] = None) -> VideoRecord:
    """Finish an attempt with a diagnostic message."""
    _require(record, (VideoStatus.PROCESSING,), VideoStatus.FAILED)
    return replace(
        record,
        status=VideoStatus.FAILED,
        error_message=(message or "").strip() or DEFAULT_FAILURE_MESSAGE,
        manifest_path=None,
        manifest_url=None,
        remote_bucket=None,
        remote_key=None,
        processing_completed_at=at or utcnow(),
    )


def reset_for_retry(record: VideoRecord) -> VideoRecord:
    """Move a FAILED record back to PENDING for a manual retry.

    Raises:
        RetryNotAllowedError: If the record is not FAILED
    """
    if record.status != VideoStatus.FAILED:
        raise RetryNotAllowedError()
    return replace(
        record,
        status=VideoStatus.PENDING,
        error_message=None,
        processing_started_at=None,
        processing_completed_at=None,
    )
