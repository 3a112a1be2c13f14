"""Pydantic schemas for the video API."""

from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from app.modules.transcoding.models import VideoStatus
from app.modules.transcoding.state import VideoRecord

T = TypeVar("T")

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_file_size(size: int) -> str:
    """Format a byte count, e.g. ``1536`` -> ``"1.5 KB"``."""
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {_SIZE_UNITS[unit]}"


def format_duration(seconds: Optional[int]) -> Optional[str]:
    """Format seconds as ``MM:SS``, or ``HH:MM:SS`` from one hour up."""
    if seconds is None:
        return None
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class VideoResponse(BaseModel):
    """Schema for a video resource."""
    id: str = Field(..., description="Job uuid")
    title: Optional[str] = None
    original_filename: str
    file_size: int
    file_size_formatted: str
    mime_type: str
    duration: Optional[int] = None
    duration_formatted: Optional[str] = None
    resolution: Optional[str] = None
    status: VideoStatus
    hls_url: Optional[str] = None
    error_message: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: VideoRecord) -> "VideoResponse":
        return cls(
            id=record.uuid,
            title=record.title,
            original_filename=record.original_filename,
            file_size=record.file_size,
            file_size_formatted=format_file_size(record.file_size),
            mime_type=record.mime_type,
            duration=record.duration,
            duration_formatted=format_duration(record.duration),
            resolution=(
                f"{record.width}x{record.height}" if record.width and record.height else None
            ),
            status=record.status,
            hls_url=record.manifest_url,
            # Diagnostics are only exposed for failed videos
            error_message=record.error_message if record.is_failed else None,
            metadata=record.metadata,
            processing_started_at=record.processing_started_at,
            processing_completed_at=record.processing_completed_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class ApiResponse(BaseModel, Generic[T]):
    """Response envelope used by every endpoint."""
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


class PaginationMeta(BaseModel):
    current_page: int
    last_page: int
    per_page: int
    total: int


class VideoListResponse(BaseModel):
    """Paginated video listing."""
    success: bool = True
    data: list[VideoResponse]
    meta: PaginationMeta


class HealthResponse(BaseModel):
    status: str
    version: str
    ffmpeg_available: bool
    output_disk: str
