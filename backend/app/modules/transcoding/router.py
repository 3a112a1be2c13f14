"""Video API router.

Implements REST endpoints for upload, status, listing, deletion, manual
retry and HLS playback of transcoded videos.
"""

import json
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import FileResponse, JSONResponse

from app.core.storage import content_type_for
from app.modules.transcoding.errors import (
    InvalidUploadError,
    RetryNotAllowedError,
    VideoNotFoundError,
)
from app.modules.transcoding.factory import get_video_service
from app.modules.transcoding.schemas import (
    ApiResponse,
    PaginationMeta,
    VideoListResponse,
    VideoResponse,
)
from app.modules.transcoding.service import VideoService

router = APIRouter(prefix="/videos", tags=["videos"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def _not_found() -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, "Video not found")


def _parse_metadata(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise InvalidUploadError("Metadata must be a JSON object") from None
    if not isinstance(value, dict):
        raise InvalidUploadError("Metadata must be a JSON object")
    return value


@router.post("", status_code=status.HTTP_201_CREATED, response_model=ApiResponse[VideoResponse])
def upload_video(
    video: UploadFile = File(...),
    title: Optional[str] = Form(None, max_length=255),
    metadata: Optional[str] = Form(None),
    service: VideoService = Depends(get_video_service),
):
    """Upload a video and queue it for transcoding."""
    try:
        record = service.upload(
            video.file,
            filename=video.filename,
            mime_type=video.content_type,
            title=title,
            metadata=_parse_metadata(metadata),
        )
    except InvalidUploadError as e:
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, e.message)

    return ApiResponse[VideoResponse](
        message="Video uploaded successfully. Transcoding has been queued.",
        data=VideoResponse.from_record(record),
    )


@router.get("", response_model=VideoListResponse)
def list_videos(
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=100),
    service: VideoService = Depends(get_video_service),
):
    """List videos, newest first."""
    result = service.list_videos(page=page, per_page=per_page)
    return VideoListResponse(
        data=[VideoResponse.from_record(r) for r in result.items],
        meta=PaginationMeta(
            current_page=result.page,
            last_page=result.last_page,
            per_page=result.per_page,
            total=result.total,
        ),
    )


@router.get("/{video_id}", response_model=ApiResponse[VideoResponse])
def get_video(video_id: str, service: VideoService = Depends(get_video_service)):
    """Get video status and details."""
    try:
        record = service.get_by_uuid(video_id)
    except VideoNotFoundError:
        return _not_found()
    return ApiResponse[VideoResponse](data=VideoResponse.from_record(record))


@router.delete("/{video_id}", response_model=ApiResponse)
def delete_video(video_id: str, service: VideoService = Depends(get_video_service)):
    """Delete a video, its source file and its HLS output."""
    try:
        service.delete(video_id)
    except VideoNotFoundError:
        return _not_found()
    return ApiResponse(message="Video deleted successfully")


@router.post("/{video_id}/retry", response_model=ApiResponse[VideoResponse])
def retry_video(video_id: str, service: VideoService = Depends(get_video_service)):
    """Re-queue transcoding for a failed video."""
    try:
        record = service.retry(video_id)
    except VideoNotFoundError:
        return _not_found()
    except RetryNotAllowedError as e:
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, e.message)
    return ApiResponse[VideoResponse](
        message="Transcoding job has been re-queued",
        data=VideoResponse.from_record(record),
    )


@router.get("/{video_id}/hls/{filename}")
def get_hls_file(
    video_id: str,
    filename: str,
    service: VideoService = Depends(get_video_service),
):
    """Serve a playlist or segment of a completed video."""
    path = service.resolve_artifact(video_id, filename)
    if path is None:
        return _error(status.HTTP_404_NOT_FOUND, "File not found")
    return FileResponse(path, media_type=content_type_for(filename))
