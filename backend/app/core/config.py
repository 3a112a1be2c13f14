"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional

from pydantic_settings import BaseSettings


DEFAULT_QUALITY_PRESETS: dict[str, dict[str, str]] = {
    "1080p": {
        "resolution": "1920x1080",
        "video_bitrate": "5000k",
        "max_bitrate": "5500k",
        "audio_bitrate": "192k",
    },
    "720p": {
        "resolution": "1280x720",
        "video_bitrate": "2800k",
        "max_bitrate": "3000k",
        "audio_bitrate": "128k",
    },
    "480p": {
        "resolution": "854x480",
        "video_bitrate": "1400k",
        "max_bitrate": "1500k",
        "audio_bitrate": "128k",
    },
    "360p": {
        "resolution": "640x360",
        "video_bitrate": "800k",
        "max_bitrate": "900k",
        "audio_bitrate": "96k",
    },
    "240p": {
        "resolution": "426x240",
        "video_bitrate": "400k",
        "max_bitrate": "450k",
        "audio_bitrate": "64k",
    },
    "144p": {
        "resolution": "256x144",
        "video_bitrate": "200k",
        "max_bitrate": "250k",
        "audio_bitrate": "64k",
    },
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "HLS Transcoder API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False

    # Public base URL used when rewriting manifests into absolute URLs
    SERVICE_BASE_URL: str = "http://localhost:8000"

    # Database
    DATABASE_URL: str = "sqlite:///./transcoder.db"

    # Redis / Celery
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    # CORS
    CORS_ORIGINS: list[str] = []

    # FFmpeg binaries
    FFMPEG_PATH: str = "/usr/bin/ffmpeg"
    FFPROBE_PATH: str = "/usr/bin/ffprobe"
    FFMPEG_PRESET: str = "fast"
    PROBE_TIMEOUT_SECONDS: float = 60.0

    # HLS output
    HLS_SEGMENT_DURATION: int = 10  # seconds
    HLS_KEYFRAME_INTERVAL: int = 48  # frames

    # Quality ladder (order of ENABLED_QUALITIES is the stream index order)
    QUALITY_PRESETS: dict[str, dict[str, str]] = DEFAULT_QUALITY_PRESETS
    ENABLED_QUALITIES: list[str] = ["720p", "480p", "360p"]

    # Publishing: "local" serves rewritten manifests through the API,
    # "s3" uploads untouched output to object storage
    TRANSCODER_OUTPUT_DISK: str = "local"
    TRANSCODER_WORK_DIR: str = "./storage/tmp/hls"

    # Local Storage
    LOCAL_STORAGE_PATH: str = "./storage"

    # S3/MinIO/Compatible Storage (when TRANSCODER_OUTPUT_DISK=s3)
    STORAGE_BUCKET: str = ""
    STORAGE_REGION: str = ""
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO
    STORAGE_USE_SSL: bool = True

    # CDN Configuration (optional, remote output only)
    CDN_DOMAIN: Optional[str] = None
    CDN_ENABLED: bool = False

    # Attempt policy
    TRANSCODE_MAX_ATTEMPTS: int = 3
    TRANSCODE_BACKOFF_SECONDS: int = 60
    TRANSCODE_TIMEOUT_SECONDS: int = 3600

    # Uploads
    MAX_UPLOAD_SIZE_KB: int = 2097152  # 2GB
    ALLOWED_MIME_TYPES: list[str] = [
        "video/mp4",
        "video/mpeg",
        "video/quicktime",
        "video/x-msvideo",
        "video/x-matroska",
        "video/webm",
    ]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def celery_broker_url(self) -> str:
        return self.CELERY_BROKER_URL or self.REDIS_URL

    @property
    def celery_result_backend(self) -> str:
        return self.CELERY_RESULT_BACKEND or self.REDIS_URL


settings = Settings()
