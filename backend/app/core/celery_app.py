"""Celery application configuration."""

from celery import Celery
from celery.signals import worker_process_init

from app.core.config import settings
from app.core.logging import setup_logging

celery_app = Celery(
    "hls_transcoder",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Backstops past the runner's own ceiling. The soft limit lets the task
    # persist FAILED before the hard limit kills the worker process.
    task_soft_time_limit=settings.TRANSCODE_TIMEOUT_SECONDS + 30,
    task_time_limit=settings.TRANSCODE_TIMEOUT_SECONDS + 60,
    # One in-flight attempt per worker process and redelivery on worker loss
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_routes={
        "app.modules.transcoding.tasks.*": {"queue": "transcoding"},
    },
)

celery_app.autodiscover_tasks(["app.modules.transcoding"])


@worker_process_init.connect
def init_worker_logging(**kwargs) -> None:
    """Configure structured logging in each worker process."""
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
