"""Database models for transcoding service.

Implements the Video model that tracks one uploaded source file and the
outcome of converting it into HLS playlists.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class VideoStatus(str, Enum):
    """Status of a transcoding job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (VideoStatus.COMPLETED, VideoStatus.FAILED)


class Video(Base):
    """Video model for uploaded sources and their HLS output.

    ``uuid`` is the externally addressable job id used in URLs and storage
    keys; ``id`` is the internal row id carried in queue messages.
    """

    __tablename__ = "videos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, index=True, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Source file
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_disk: Mapped[str] = mapped_column(String(20), nullable=False, default="local")
    original_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)  # bytes
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # Probed metadata
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # seconds
    width: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Status tracking
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True, default=VideoStatus.PENDING.value
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Output
    manifest_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    manifest_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    remote_bucket: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    remote_key: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    # Caller-supplied metadata; "metadata" is reserved on declarative classes
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    # Timestamps
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Video {self.uuid} - {self.status}>"
