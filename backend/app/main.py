"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.database import init_db
from app.core.logging import setup_logging
from app.core.metrics import get_content_type, get_metrics, set_app_info
from app.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
)
from app.modules.transcoding.factory import build_encoder
from app.modules.transcoding.router import router as videos_router
from app.modules.transcoding.schemas import HealthResponse


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables before serving requests."""
    init_db()
    yield


app = FastAPI(
    lifespan=lifespan,
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## HLS Transcoder API

Upload videos and receive adaptive-bitrate HLS playlists.

* **Upload** - Multipart upload; transcoding is queued immediately
* **Status** - Poll a video until it is `completed` or `failed`
* **Playback** - Completed videos expose `hls_url`, a master playlist
* **Retry** - Failed videos can be re-queued
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "videos",
            "description": "Video upload, status, retry and HLS playback",
        },
    ],
)

# Set up logging with correlation IDs
setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

# Set application info for metrics
set_app_info(
    version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get(f"{settings.API_V1_PREFIX}/health", tags=["health"], response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Health check endpoint.

    Reports whether the configured FFmpeg binary can be executed.
    """
    ffmpeg_available = build_encoder(settings).is_available()
    return HealthResponse(
        status="healthy" if ffmpeg_available else "degraded",
        version=settings.VERSION,
        ffmpeg_available=ffmpeg_available,
        output_disk=settings.TRANSCODER_OUTPUT_DISK,
    )


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=get_metrics(), media_type=get_content_type())


# Include routers
app.include_router(videos_router, prefix=settings.API_V1_PREFIX)
