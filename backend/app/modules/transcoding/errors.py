"""Exception taxonomy for the transcoding pipeline.

Each class carries an ``error_code`` that is used in ``TranscodingResult``
and in log records, so a failure can be classified without parsing messages.
"""


class TranscodingError(Exception):
    """Base class for transcoding errors."""

    error_code = "transcoding_error"

    def __init__(self, message: str = ""):
        self.message = message
        super().__init__(message)


class ConfigurationError(TranscodingError):
    """Invalid or empty quality ladder or other startup configuration."""

    error_code = "configuration_error"


class ProbeIncomplete(TranscodingError):
    """Metadata probing failed. Never fatal to an attempt."""

    error_code = "probe_incomplete"


class EncoderUnavailable(TranscodingError):
    """The FFmpeg binary is missing or not executable."""

    error_code = "encoder_unavailable"


class EncoderExecutionFailed(TranscodingError):
    """FFmpeg exited with an error or produced no master playlist."""

    error_code = "encoder_execution_failed"


class PublishFailed(TranscodingError):
    """Copy, upload or rewrite of the produced artifacts failed."""

    error_code = "publish_failed"


class AttemptTimeout(TranscodingError):
    """An attempt ran past its wall-clock ceiling."""

    error_code = "attempt_timeout"


class AttemptsExhausted(TranscodingError):
    """All automatic attempts failed."""

    error_code = "attempts_exhausted"


class InvalidTransitionError(TranscodingError):
    """A status transition not allowed by the state machine."""

    error_code = "invalid_transition"


class RetryNotAllowedError(InvalidTransitionError):
    """Manual retry requested for a record that is not FAILED."""

    error_code = "retry_not_allowed"

    def __init__(self, message: str = "Only failed videos can be retried"):
        super().__init__(message)


class VideoNotFoundError(TranscodingError):
    """No video record matches the given id or uuid."""

    error_code = "video_not_found"


class InvalidUploadError(TranscodingError):
    """Uploaded file rejected by type or size validation."""

    error_code = "invalid_upload"


class StorageWriteError(TranscodingError):
    """A source upload could not be written to storage."""

    error_code = "storage_write_failed"
