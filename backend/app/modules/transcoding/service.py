"""Service layer for video intake, lookup, deletion and manual retry."""

import logging
import math
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import PurePath
from typing import BinaryIO, Optional

from app.core.logging import log_info
from app.core.storage import LocalStorage
from app.modules.transcoding.errors import (
    InvalidUploadError,
    StorageWriteError,
    VideoNotFoundError,
)
from app.modules.transcoding.publisher import ArtifactPublisher
from app.modules.transcoding.repository import VideoRepository
from app.modules.transcoding.state import VideoRecord, reset_for_retry

logger = logging.getLogger(__name__)

ORIGINALS_PREFIX = "videos/originals"
MAX_PER_PAGE = 100


@dataclass
class VideoPage:
    """One page of the video listing."""
    items: list[VideoRecord]
    total: int
    page: int
    per_page: int

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))


def _file_size(fileobj: BinaryIO) -> int:
    fileobj.seek(0, 2)
    size = fileobj.tell()
    fileobj.seek(0)
    return size


class VideoService:
    """Service for managing uploaded videos.

    Records only change status through ``reset_for_retry`` here; every other
    transition belongs to the job runner.
    """

    def __init__(
        self,
        repository: VideoRepository,
        source_storage: LocalStorage,
        publisher: ArtifactPublisher,
        dispatch: Callable[[int], None],
        allowed_mime_types: Sequence[str],
        max_upload_size: int,
    ):
        """Initialize service.

        Args:
            repository: Persistence port
            source_storage: Local storage for uploaded originals
            publisher: Active publishing strategy, used to remove artifacts
            dispatch: Queues a record id for transcoding
            allowed_mime_types: Accepted upload content types
            max_upload_size: Upload size limit in bytes
        """
        self.repository = repository
        self.source_storage = source_storage
        self.publisher = publisher
        self.dispatch = dispatch
        self.allowed_mime_types = set(allowed_mime_types)
        self.max_upload_size = max_upload_size

    def validate_upload(self, filename: Optional[str], mime_type: Optional[str], size: int) -> None:
        """Validate an upload.

        Raises:
            InvalidUploadError: On a missing name, a disallowed type, an
                empty file or a file over the size limit
        """
        if not filename:
            raise InvalidUploadError("The video file must have a file name")
        if mime_type not in self.allowed_mime_types:
            raise InvalidUploadError(
                "The video must be a file of type: "
                + ", ".join(sorted(self.allowed_mime_types))
            )
        if size <= 0:
            raise InvalidUploadError("The video file is empty")
        if size > self.max_upload_size:
            raise InvalidUploadError(
                f"The video may not be greater than {self.max_upload_size // 1024} kilobytes"
            )

    def upload(
        self,
        fileobj: BinaryIO,
        filename: Optional[str],
        mime_type: Optional[str],
        title: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> VideoRecord:
        """Store an upload, create a PENDING record and queue it.

        Args:
            fileobj: Seekable file object with the video bytes
            filename: Client file name
            mime_type: Client-declared content type
            title: Optional title
            metadata: Optional caller metadata

        Returns:
            Created record
        """
        size = _file_size(fileobj)
        self.validate_upload(filename, mime_type, size)

        metadata = metadata or {}
        if not all(isinstance(k, str) and isinstance(v, str) for k, v in metadata.items()):
            raise InvalidUploadError("Metadata must map strings to strings")

        job_id = str(uuid.uuid4())
        extension = PurePath(filename).suffix.lstrip(".").lower()
        stored_name = f"{job_id}.{extension}" if extension else job_id
        storage_path = f"{ORIGINALS_PREFIX}/{stored_name}"

        result = self.source_storage.upload_fileobj(fileobj, storage_path, mime_type)
        if not result.success:
            raise StorageWriteError(f"Failed to store upload: {result.error_message}")

        record = self.repository.create(
            VideoRecord(
                uuid=job_id,
                title=title,
                original_filename=PurePath(filename).name,
                original_disk="local",
                original_path=storage_path,
                file_size=result.file_size or size,
                mime_type=mime_type,
                metadata=dict(metadata),
            )
        )
        self.dispatch(record.id)
        log_info(logger, "Video uploaded and queued", job_id=record.uuid, record_id=record.id)
        return record

    def get_by_uuid(self, job_id: str) -> VideoRecord:
        """Get a record or raise VideoNotFoundError."""
        record = self.repository.get_by_uuid(job_id)
        if record is None:
            raise VideoNotFoundError("Video not found")
        return record

    def list_videos(self, page: int = 1, per_page: int = 15) -> VideoPage:
        """List videos, newest first."""
        page = max(1, page)
        per_page = min(max(1, per_page), MAX_PER_PAGE)
        items = self.repository.list(offset=(page - 1) * per_page, limit=per_page)
        return VideoPage(items=items, total=self.repository.count(), page=page, per_page=per_page)

    def delete(self, job_id: str) -> None:
        """Delete the published artifacts, the source file and the record."""
        record = self.get_by_uuid(job_id)
        # Artifacts go first so a failed unpublish leaves a retryable record
        self.publisher.unpublish(record.uuid)
        if record.original_disk == "local":
            self.source_storage.delete(record.original_path)
        self.repository.delete(record.id)
        log_info(logger, "Video deleted", job_id=record.uuid)

    def retry(self, job_id: str) -> VideoRecord:
        """Re-queue a FAILED video.

        Raises:
            VideoNotFoundError: If no such video exists
            RetryNotAllowedError: If the video is not FAILED
        """
        record = self.get_by_uuid(job_id)
        record = self.repository.update(reset_for_retry(record))
        self.dispatch(record.id)
        log_info(logger, "Transcoding re-queued", job_id=record.uuid)
        return record

    def resolve_artifact(self, job_id: str, filename: str):
        """Resolve a published HLS file for a COMPLETED video.

        Returns:
            Local path, or None if the video is not completed or the file
            does not exist
        """
        record = self.repository.get_by_uuid(job_id)
        if record is None or not record.is_completed:
            return None
        return self.publisher.resolve(record.uuid, filename)
