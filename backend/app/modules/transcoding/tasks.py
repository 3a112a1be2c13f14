"""Celery tasks for transcoding service.

Binds the job runner to the ``transcoding`` queue. Celery owns the
backoff between attempts; the runner owns the per-attempt timeout and the
state machine.
"""

import logging
from typing import Any

from celery import Task
from celery.exceptions import SoftTimeLimitExceeded

from app.core.celery_app import celery_app
from app.core.logging import log_error, log_warning
from app.modules.transcoding.errors import AttemptTimeout
from app.modules.transcoding.factory import get_job_runner
from app.modules.transcoding.runner import TranscodingResult

logger = logging.getLogger(__name__)


class TranscodeTask(Task):
    """Base task for transcoding operations."""
    abstract = True

    def on_failure(self, exc: Exception, task_id: str, args: tuple, kwargs: dict, einfo: Any) -> None:
        """Persist FAILED when an exception escapes the task."""
        record_id = args[0] if args else kwargs.get("record_id")
        if record_id is None:
            return
        message = str(exc) or exc.__class__.__name__
        log_error(logger, "Transcode task failed", exc, record_id=record_id, task_id=task_id)
        get_job_runner().mark_exhausted(record_id, message)


@celery_app.task(bind=True, base=TranscodeTask)
def transcode_video_task(self: TranscodeTask, record_id: int) -> dict:
    """Run one transcoding attempt for a video record.

    Args:
        record_id: Internal id of the video record

    Returns:
        dict: Attempt result
    """
    runner = get_job_runner()
    attempt = self.request.retries + 1
    try:
        result = runner.run_attempt(record_id, attempt)
    except SoftTimeLimitExceeded:
        record = runner.mark_exhausted(record_id, runner.timeout_message())
        log_warning(logger, "Transcode task hit its time limit", record_id=record_id, attempt=attempt)
        result = TranscodingResult(
            success=False,
            error_code=AttemptTimeout.error_code,
            error_message=record.error_message if record else runner.timeout_message(),
            record_id=record_id,
            job_id=record.uuid if record else None,
            status=record.status if record else None,
            attempt=attempt,
        )

    if result.retryable:
        raise self.retry(
            countdown=runner.policy.backoff_seconds,
            max_retries=runner.policy.max_attempts - 1,
        )

    return {
        "record_id": record_id,
        "job_id": result.job_id,
        "success": result.success,
        "status": result.status.value if result.status else None,
        "attempt": attempt,
        "skipped": result.skipped,
        "error_code": result.error_code,
        "error_message": result.error_message,
        "manifest_url": result.manifest_url,
    }


def dispatch_transcode(record_id: int) -> None:
    """Queue a record for transcoding."""
    transcode_video_task.delay(record_id)
