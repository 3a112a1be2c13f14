"""Composition root for the transcoding module.

The only place in this module that reads ``settings``; every component
receives explicit values from here.
"""

from collections.abc import Callable
from functools import lru_cache
from typing import Optional

from app.core.config import Settings, settings as app_settings
from app.core.database import get_session_factory
from app.core.storage import LocalStorage, S3Storage, StorageConfig
from app.modules.transcoding.errors import ConfigurationError
from app.modules.transcoding.ffmpeg import FFmpegEncoder
from app.modules.transcoding.ladder import Variant, build_ladder
from app.modules.transcoding.probe import FFprobeProber
from app.modules.transcoding.publisher import (
    ArtifactPublisher,
    LocalArtifactPublisher,
    RemoteArtifactPublisher,
)
from app.modules.transcoding.repository import SQLAlchemyVideoRepository, VideoRepository
from app.modules.transcoding.runner import AttemptPolicy, JobRunner
from app.modules.transcoding.service import VideoService

OUTPUT_DISKS = ("local", "s3")


def build_ladder_from_settings(settings: Settings) -> list[Variant]:
    return build_ladder(settings.ENABLED_QUALITIES, settings.QUALITY_PRESETS)


def build_policy(settings: Settings) -> AttemptPolicy:
    return AttemptPolicy(
        max_attempts=settings.TRANSCODE_MAX_ATTEMPTS,
        backoff_seconds=settings.TRANSCODE_BACKOFF_SECONDS,
        timeout_seconds=settings.TRANSCODE_TIMEOUT_SECONDS,
    )


def build_storage_config(settings: Settings, backend: str) -> StorageConfig:
    return StorageConfig(
        backend=backend,
        bucket=settings.STORAGE_BUCKET,
        region=settings.STORAGE_REGION,
        access_key=settings.STORAGE_ACCESS_KEY,
        secret_key=settings.STORAGE_SECRET_KEY,
        endpoint_url=settings.STORAGE_ENDPOINT_URL,
        use_ssl=settings.STORAGE_USE_SSL,
        local_path=settings.LOCAL_STORAGE_PATH,
        cdn_domain=settings.CDN_DOMAIN,
        cdn_enabled=settings.CDN_ENABLED,
    )


def build_local_storage(settings: Settings) -> LocalStorage:
    return LocalStorage(build_storage_config(settings, "local"))


def build_prober(settings: Settings) -> FFprobeProber:
    return FFprobeProber(settings.FFPROBE_PATH, timeout=settings.PROBE_TIMEOUT_SECONDS)


def build_encoder(settings: Settings) -> FFmpegEncoder:
    return FFmpegEncoder(
        ffmpeg_path=settings.FFMPEG_PATH,
        segment_duration=settings.HLS_SEGMENT_DURATION,
        keyframe_interval=settings.HLS_KEYFRAME_INTERVAL,
        preset=settings.FFMPEG_PRESET,
    )


def build_publisher(settings: Settings) -> ArtifactPublisher:
    """Select the publishing strategy for this deployment.

    Raises:
        ConfigurationError: If TRANSCODER_OUTPUT_DISK is not recognised
    """
    disk = settings.TRANSCODER_OUTPUT_DISK.lower()
    if disk == "local":
        return LocalArtifactPublisher(
            build_local_storage(settings),
            service_base_url=settings.SERVICE_BASE_URL,
            api_prefix=settings.API_V1_PREFIX,
        )
    if disk == "s3":
        if not settings.STORAGE_BUCKET:
            raise ConfigurationError("STORAGE_BUCKET is required when TRANSCODER_OUTPUT_DISK=s3")
        return RemoteArtifactPublisher(S3Storage(build_storage_config(settings, "s3")))
    raise ConfigurationError(
        f"Unknown TRANSCODER_OUTPUT_DISK {settings.TRANSCODER_OUTPUT_DISK!r}; "
        f"expected one of {', '.join(OUTPUT_DISKS)}"
    )


def build_repository() -> VideoRepository:
    return SQLAlchemyVideoRepository(get_session_factory())


def build_job_runner(
    settings: Settings = app_settings,
    repository: Optional[VideoRepository] = None,
) -> JobRunner:
    """Build a job runner wired from settings."""
    source_storage = build_local_storage(settings)
    return JobRunner(
        repository=repository or build_repository(),
        prober=build_prober(settings),
        encoder=build_encoder(settings),
        publisher=build_publisher(settings),
        ladder=build_ladder_from_settings(settings),
        work_root=settings.TRANSCODER_WORK_DIR,
        policy=build_policy(settings),
        source_path_for=lambda record: str(source_storage.path_for(record.original_path)),
    )


@lru_cache
def get_job_runner() -> JobRunner:
    """Process-wide runner for worker tasks."""
    return build_job_runner()


def build_video_service(
    settings: Settings = app_settings,
    repository: Optional[VideoRepository] = None,
    dispatch: Optional[Callable[[int], None]] = None,
) -> VideoService:
    """Build the video service wired from settings."""
    if dispatch is None:
        # tasks imports this module for get_job_runner
        from app.modules.transcoding.tasks import dispatch_transcode
        dispatch = dispatch_transcode
    return VideoService(
        repository=repository or build_repository(),
        source_storage=build_local_storage(settings),
        publisher=build_publisher(settings),
        dispatch=dispatch,
        allowed_mime_types=settings.ALLOWED_MIME_TYPES,
        max_upload_size=settings.MAX_UPLOAD_SIZE_KB * 1024,
    )


@lru_cache
def get_video_service() -> VideoService:
    """Process-wide service for API requests."""
    return build_video_service()
