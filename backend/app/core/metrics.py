"""Prometheus metrics for the API and the transcoding workers."""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., with gunicorn)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "hls_transcoder_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Transcoding Metrics
# ============================================
TRANSCODE_ATTEMPTS_TOTAL = Counter(
    "transcode_attempts_total",
    "Transcoding attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

TRANSCODE_ATTEMPT_DURATION_SECONDS = Histogram(
    "transcode_attempt_duration_seconds",
    "Wall-clock duration of a transcoding attempt",
    buckets=[5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1200.0, 1800.0, 3600.0],
    registry=REGISTRY,
)

TRANSCODE_JOBS_IN_PROGRESS = Gauge(
    "transcode_jobs_in_progress",
    "Number of transcoding attempts currently running in this process",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics.

    Args:
        version: Application version
        environment: Deployment environment
    """
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
