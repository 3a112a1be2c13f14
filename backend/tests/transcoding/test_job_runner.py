"""Tests for the transcoding job runner.

Covers the end-to-end attempt flow: success, encoder failures with
automatic retries, attempt timeouts, publish failures and duplicate
deliveries.
"""

import logging
import os

import pytest

from app.core.metrics import REGISTRY
from app.modules.transcoding.errors import (
    AttemptTimeout,
    ConfigurationError,
    EncoderExecutionFailed,
    EncoderUnavailable,
    PublishFailed,
    VideoNotFoundError,
)
from app.modules.transcoding.ffmpeg import FFmpegEncoder
from app.modules.transcoding.models import VideoStatus
from app.modules.transcoding.probe import VideoMetadata
from app.modules.transcoding.publisher import PublishResult
from app.modules.transcoding.runner import UNEXPECTED_ERROR_CODE, AttemptPolicy, JobRunner
from app.modules.transcoding.state import complete, fail, start_processing

from fakes import (
    API_PREFIX,
    SERVICE_BASE_URL,
    FailingEncoder,
    FailingPublisher,
    FakeClock,
    FakeEncoder,
    FakeProber,
    TimeoutEncoder,
)


def attempts_total(outcome: str) -> float:
    return REGISTRY.get_sample_value("transcode_attempts_total", {"outcome": outcome}) or 0.0


class TestSuccessfulAttempt:
    """A valid source SHALL end COMPLETED with a playable manifest."""

    def test_completes_with_rewritten_manifest(self, make_runner, pending_record, local_storage) -> None:
        runner = make_runner()

        result = runner.run_attempt(pending_record.id)

        assert result.success
        assert result.status == VideoStatus.COMPLETED
        record = runner.repository.get_by_id(pending_record.id)
        assert record.status == VideoStatus.COMPLETED
        assert record.duration == 10
        assert (record.width, record.height) == (1920, 1080)
        assert record.error_message is None
        assert record.manifest_url == (
            f"{SERVICE_BASE_URL}{API_PREFIX}/videos/{record.uuid}/hls/master.m3u8"
        )
        assert record.manifest_url.endswith("/hls/master.m3u8")
        assert result.manifest_url == record.manifest_url

        master = local_storage.path_for(record.manifest_path).read_text()
        assert master.count("#EXT-X-STREAM-INF") == 2
        assert f"{SERVICE_BASE_URL}{API_PREFIX}/videos/{record.uuid}/hls/stream_1.m3u8" in master

    def test_persists_processing_before_completed(self, make_runner, pending_record, repository) -> None:
        make_runner().run_attempt(pending_record.id)

        assert repository.statuses() == [VideoStatus.PROCESSING, VideoStatus.COMPLETED]
        assert repository.updates[0].processing_started_at is not None
        assert repository.updates[-1].processing_completed_at is not None

    def test_encoder_gets_source_ladder_and_remaining_time(
        self, make_runner, pending_record, ladder, work_root
    ) -> None:
        encoder = FakeEncoder()
        prober = FakeProber()
        runner = make_runner(encoder=encoder, prober=prober, clock=FakeClock(100.0, 160.0, 200.0))

        runner.run_attempt(pending_record.id)

        assert prober.calls == [pending_record.original_path]
        assert encoder.calls[0]["source_path"] == pending_record.original_path
        assert encoder.calls[0]["work_dir"] == os.path.join(work_root, pending_record.uuid)
        assert encoder.calls[0]["timeout"] == pytest.approx(3600 - 60)

    def test_work_dir_removed_after_publish(self, make_runner, pending_record, work_root) -> None:
        make_runner().run_attempt(pending_record.id)

        assert not os.path.exists(os.path.join(work_root, pending_record.uuid))

    def test_stale_work_dir_is_wiped(
        self, make_runner, pending_record, work_root, local_storage, caplog
    ) -> None:
        stale = os.path.join(work_root, pending_record.uuid)
        os.makedirs(stale)
        with open(os.path.join(stale, "segment_9_000.ts"), "wb") as f:
            f.write(b"left over")

        with caplog.at_level(logging.WARNING):
            make_runner().run_attempt(pending_record.id)

        assert not local_storage.exists(f"hls/{pending_record.uuid}/segment_9_000.ts")
        wiped = [
            r for r in caplog.records
            if r.getMessage() == "Removing work directory left by a previous attempt"
        ]
        assert [r.work_dir for r in wiped] == [stale]

    def test_empty_probe_still_completes(self, make_runner, pending_record) -> None:
        runner = make_runner(prober=FakeProber(VideoMetadata.empty()))

        result = runner.run_attempt(pending_record.id)

        assert result.success
        record = runner.repository.get_by_id(pending_record.id)
        assert record.duration is None
        assert record.width is None

    def test_source_path_mapping(self, repository, ladder, local_publisher, work_root, pending_record) -> None:
        prober = FakeProber()
        runner = JobRunner(
            repository=repository,
            prober=prober,
            encoder=FakeEncoder(),
            publisher=local_publisher,
            ladder=ladder,
            work_root=work_root,
            source_path_for=lambda record: f"/data/{record.original_path}",
        )

        runner.run_attempt(pending_record.id)

        assert prober.calls == [f"/data/{pending_record.original_path}"]

    def test_success_metric(self, make_runner, pending_record) -> None:
        before = attempts_total("completed")

        make_runner().run_attempt(pending_record.id)

        assert attempts_total("completed") == before + 1


class TestMissingEncoder:
    """A missing FFmpeg binary SHALL fail the job after every attempt is used."""

    def test_exhausts_attempts_then_fails(self, make_runner, pending_record, tmp_path) -> None:
        runner = make_runner(encoder=FFmpegEncoder(str(tmp_path / "missing-ffmpeg")))
        sleeps = []

        result = runner.run(pending_record.id, sleep=sleeps.append)

        assert not result.success
        assert not result.retryable
        assert result.attempt == 3
        assert result.error_code == EncoderUnavailable.error_code
        assert sleeps == [60, 60]

        record = runner.repository.get_by_id(pending_record.id)
        assert record.status == VideoStatus.FAILED
        assert record.error_message
        assert "missing-ffmpeg" in record.error_message
        assert record.manifest_path is None
        assert record.manifest_url is None


class TestAttemptTimeout:
    """An attempt running past its deadline SHALL fail with a timeout message."""

    def test_encoder_timeout(self, make_runner, pending_record, work_root) -> None:
        encoder = TimeoutEncoder()
        runner = make_runner(encoder=encoder, policy=AttemptPolicy(max_attempts=1, timeout_seconds=1800))

        result = runner.run_attempt(pending_record.id, attempt=1)

        assert result.error_code == AttemptTimeout.error_code
        record = runner.repository.get_by_id(pending_record.id)
        assert record.status == VideoStatus.FAILED
        assert record.error_message.startswith("Transcoding timed out")
        assert record.error_message == "Transcoding timed out after 1800 seconds"
        assert not os.path.exists(os.path.join(work_root, pending_record.uuid))

    def test_deadline_passed_before_encoding(self, make_runner, pending_record) -> None:
        encoder = FakeEncoder()
        runner = make_runner(
            encoder=encoder,
            policy=AttemptPolicy(max_attempts=1, timeout_seconds=60),
            clock=FakeClock(0.0, 61.0),
        )

        result = runner.run_attempt(pending_record.id)

        assert result.error_code == AttemptTimeout.error_code
        assert encoder.calls == []
        assert runner.repository.get_by_id(pending_record.id).status == VideoStatus.FAILED

    def test_timeout_is_retryable_before_last_attempt(self, make_runner, pending_record) -> None:
        runner = make_runner(encoder=TimeoutEncoder())

        result = runner.run_attempt(pending_record.id, attempt=1)

        assert result.retryable
        assert runner.repository.get_by_id(pending_record.id).status == VideoStatus.PROCESSING

    def test_slow_publish_past_deadline_fails(self, make_runner, pending_record, repository) -> None:
        runner = make_runner(
            policy=AttemptPolicy(max_attempts=1, timeout_seconds=3600),
            clock=FakeClock(0.0, 1.0, 5000.0),
        )

        result = runner.run_attempt(pending_record.id)

        assert not result.success
        assert result.error_code == AttemptTimeout.error_code
        record = repository.get_by_id(pending_record.id)
        assert record.status == VideoStatus.FAILED
        assert record.error_message == "Transcoding timed out after 3600 seconds"
        assert record.manifest_url is None

    def test_slow_publish_is_retryable_before_last_attempt(self, make_runner, pending_record) -> None:
        runner = make_runner(clock=FakeClock(0.0, 1.0, 3600.0))

        result = runner.run_attempt(pending_record.id, attempt=1)

        assert result.retryable
        assert result.error_code == AttemptTimeout.error_code
        assert runner.repository.get_by_id(pending_record.id).status == VideoStatus.PROCESSING


class TestRetryDiagnostics:
    """Repeated failures SHALL persist FAILED once, with the last diagnostic."""

    def test_failed_written_once_with_last_message(self, make_runner, pending_record, repository) -> None:
        encoder = FailingEncoder(messages=("first failure", "second failure", "third failure"))
        runner = make_runner(encoder=encoder)

        for attempt in (1, 2):
            result = runner.run_attempt(pending_record.id, attempt=attempt)
            assert result.retryable
            assert result.error_message == ("first failure", "second failure")[attempt - 1]
            assert repository.get_by_id(pending_record.id).status == VideoStatus.PROCESSING

        result = runner.run_attempt(pending_record.id, attempt=3)

        assert not result.retryable
        assert result.error_code == EncoderExecutionFailed.error_code
        assert repository.statuses().count(VideoStatus.FAILED) == 1
        assert repository.statuses() == [
            VideoStatus.PROCESSING,
            VideoStatus.PROCESSING,
            VideoStatus.PROCESSING,
            VideoStatus.FAILED,
        ]
        assert repository.get_by_id(pending_record.id).error_message == "third failure"

    def test_run_stops_sleeping_after_success(self, make_runner, pending_record) -> None:
        sleeps = []
        runner = make_runner()

        result = runner.run(pending_record.id, sleep=sleeps.append)

        assert result.success
        assert sleeps == []

    def test_partial_output_removed_after_encoder_failure(self, make_runner, pending_record, work_root) -> None:
        make_runner(encoder=FailingEncoder()).run_attempt(pending_record.id)

        assert not os.path.exists(os.path.join(work_root, pending_record.uuid))

    def test_unknown_encoder_error_code_is_execution_failure(self, make_runner, pending_record) -> None:
        runner = make_runner(
            encoder=FailingEncoder(error_code=None), policy=AttemptPolicy(max_attempts=1)
        )

        result = runner.run_attempt(pending_record.id)

        assert result.error_code == EncoderExecutionFailed.error_code


class TestPublishFailure:
    """Publish failures SHALL fail the attempt and keep the work directory."""

    def test_publish_failure_keeps_work_dir(self, make_runner, pending_record, work_root) -> None:
        publisher = FailingPublisher()
        runner = make_runner(publisher=publisher, policy=AttemptPolicy(max_attempts=1))

        result = runner.run_attempt(pending_record.id)

        assert result.error_code == PublishFailed.error_code
        record = runner.repository.get_by_id(pending_record.id)
        assert record.status == VideoStatus.FAILED
        assert record.error_message == "No space left on device"
        assert os.path.isfile(os.path.join(work_root, pending_record.uuid, "master.m3u8"))


class TestUnexpectedErrors:
    """Unexpected exceptions SHALL become failed results, never escape."""

    def test_prober_exception(self, make_runner, pending_record) -> None:
        class ExplodingProber:
            def probe(self, source_path):
                raise RuntimeError("disk unplugged")

        runner = make_runner(prober=ExplodingProber(), policy=AttemptPolicy(max_attempts=1))

        result = runner.run_attempt(pending_record.id)

        assert not result.success
        assert result.error_code == UNEXPECTED_ERROR_CODE
        record = runner.repository.get_by_id(pending_record.id)
        assert record.status == VideoStatus.FAILED
        assert record.error_message == "Unexpected error during transcoding: disk unplugged"


class TestDuplicateDelivery:
    """Attempts for finished records SHALL be skipped without side effects."""

    @pytest.mark.parametrize("finish", ["completed", "failed"])
    def test_finished_record_is_skipped(self, make_runner, repository, pending_record, finish) -> None:
        processing = start_processing(pending_record)
        if finish == "completed":
            finished = complete(
                processing,
                PublishResult(success=True, manifest_path="hls/x/master.m3u8", manifest_url="http://x/master.m3u8"),
            )
        else:
            finished = fail(processing, "earlier failure")
        repository.update(finished)
        repository.updates.clear()
        encoder = FakeEncoder()
        before = attempts_total("skipped")

        result = make_runner(encoder=encoder).run_attempt(pending_record.id)

        assert result.skipped
        assert result.success == (finish == "completed")
        assert encoder.calls == []
        assert repository.updates == []
        assert attempts_total("skipped") == before + 1

    def test_missing_record(self, make_runner) -> None:
        result = make_runner().run_attempt(999)

        assert not result.success
        assert not result.retryable
        assert result.error_code == VideoNotFoundError.error_code


class TestMarkExhausted:
    """The final-failure hook SHALL leave every record in a terminal state."""

    def test_pending_record_is_failed(self, make_runner, pending_record, repository) -> None:
        record = make_runner().mark_exhausted(pending_record.id, "worker lost")

        assert record.status == VideoStatus.FAILED
        assert record.error_message == "worker lost"
        assert repository.statuses() == [VideoStatus.FAILED]

    def test_processing_record_is_failed(self, make_runner, pending_record, repository) -> None:
        repository.update(start_processing(pending_record))

        record = make_runner().mark_exhausted(pending_record.id, "")

        assert record.status == VideoStatus.FAILED
        assert record.error_message == "Transcoding failed"

    def test_failed_record_is_not_failed_twice(self, make_runner, pending_record, repository) -> None:
        repository.update(fail(start_processing(pending_record), "last attempt message"))
        repository.updates.clear()

        record = make_runner().mark_exhausted(pending_record.id, "hook message")

        assert record.error_message == "last attempt message"
        assert repository.updates == []

    def test_completed_record_untouched(self, make_runner, pending_record, repository) -> None:
        make_runner().run_attempt(pending_record.id)
        repository.updates.clear()

        record = make_runner().mark_exhausted(pending_record.id, "late failure")

        assert record.status == VideoStatus.COMPLETED
        assert repository.updates == []

    def test_missing_record(self, make_runner) -> None:
        assert make_runner().mark_exhausted(404, "gone") is None


class TestAttemptPolicy:
    """Tests for policy validation."""

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"backoff_seconds": -1}, {"timeout_seconds": 0}],
    )
    def test_invalid_policy(self, kwargs) -> None:
        with pytest.raises(ConfigurationError):
            AttemptPolicy(**kwargs)

    def test_empty_ladder_rejected(self, repository, local_publisher, work_root) -> None:
        with pytest.raises(ConfigurationError):
            JobRunner(repository, FakeProber(), FakeEncoder(), local_publisher, [], work_root)
