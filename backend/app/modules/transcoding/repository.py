"""Repository for video record persistence.

``VideoRepository`` is the port the job runner and the service depend on.
``SQLAlchemyVideoRepository`` implements it with one short-lived session per
call, so a worker never holds a connection open while FFmpeg runs. ORM rows
never leave this module; callers only see ``VideoRecord`` values.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from app.modules.transcoding.errors import VideoNotFoundError
from app.modules.transcoding.models import Video, VideoStatus
from app.modules.transcoding.state import VideoRecord

# Fields copied verbatim between records and rows
_COPIED_FIELDS = (
    "uuid",
    "title",
    "original_filename",
    "original_disk",
    "original_path",
    "file_size",
    "mime_type",
    "duration",
    "width",
    "height",
    "manifest_path",
    "manifest_url",
    "remote_bucket",
    "remote_key",
    "error_message",
    "processing_started_at",
    "processing_completed_at",
)


class VideoRepository(ABC):
    """Persistence port for video records."""

    @abstractmethod
    def create(self, record: VideoRecord) -> VideoRecord:
        """Persist a new record and return it with its assigned id."""

    @abstractmethod
    def get_by_id(self, record_id: int) -> Optional[VideoRecord]:
        """Get a record by internal id."""

    @abstractmethod
    def get_by_uuid(self, uuid: str) -> Optional[VideoRecord]:
        """Get a record by its external job id."""

    @abstractmethod
    def update(self, record: VideoRecord) -> VideoRecord:
        """Overwrite the stored record with the given value."""

    @abstractmethod
    def delete(self, record_id: int) -> bool:
        """Delete a record. Returns False if it did not exist."""

    @abstractmethod
    def list(self, offset: int = 0, limit: int = 15) -> list[VideoRecord]:
        """List records, newest first."""

    @abstractmethod
    def count(self) -> int:
        """Count all records."""


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_record(row: Video) -> VideoRecord:
    """Convert an ORM row into a record."""
    values = {name: getattr(row, name) for name in _COPIED_FIELDS}
    values["processing_started_at"] = _as_utc(row.processing_started_at)
    values["processing_completed_at"] = _as_utc(row.processing_completed_at)
    return VideoRecord(
        id=row.id,
        status=VideoStatus(row.status),
        metadata=dict(row.metadata_ or {}),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
        **values,
    )


def _apply(row: Video, record: VideoRecord) -> None:
    for name in _COPIED_FIELDS:
        setattr(row, name, getattr(record, name))
    row.status = record.status.value
    row.metadata_ = dict(record.metadata)


class SQLAlchemyVideoRepository(VideoRepository):
    """Repository for Video operations."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create(self, record: VideoRecord) -> VideoRecord:
        """Create a new video row.

        Args:
            record: Record without an id

        Returns:
            Stored record with id and timestamps
        """
        with self.session_factory() as session:
            row = Video()
            _apply(row, record)
            session.add(row)
            session.commit()
            session.refresh(row)
            return to_record(row)

    def get_by_id(self, record_id: int) -> Optional[VideoRecord]:
        with self.session_factory() as session:
            row = session.get(Video, record_id)
            return to_record(row) if row else None

    def get_by_uuid(self, uuid: str) -> Optional[VideoRecord]:
        with self.session_factory() as session:
            row = self._get_row_by_uuid(session, uuid)
            return to_record(row) if row else None

    def update(self, record: VideoRecord) -> VideoRecord:
        """Write every field of the record to its row.

        Raises:
            VideoNotFoundError: If the row no longer exists
        """
        with self.session_factory() as session:
            row = session.get(Video, record.id) if record.id is not None else None
            if row is None:
                raise VideoNotFoundError(f"Video {record.uuid} not found")
            _apply(row, record)
            session.commit()
            session.refresh(row)
            return to_record(row)

    def delete(self, record_id: int) -> bool:
        with self.session_factory() as session:
            row = session.get(Video, record_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def list(self, offset: int = 0, limit: int = 15) -> list[VideoRecord]:
        with self.session_factory() as session:
            result = session.execute(
                select(Video)
                .order_by(Video.created_at.desc(), Video.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return [to_record(row) for row in result.scalars().all()]

    def count(self) -> int:
        with self.session_factory() as session:
            return session.execute(select(func.count(Video.id))).scalar_one()

    @staticmethod
    def _get_row_by_uuid(session: Session, uuid: str) -> Optional[Video]:
        result = session.execute(select(Video).where(Video.uuid == uuid))
        return result.scalar_one_or_none()
