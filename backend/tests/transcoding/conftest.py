"""Shared fixtures for transcoding tests."""

import pytest

from app.core.config import DEFAULT_QUALITY_PRESETS
from app.core.storage import LocalStorage, StorageConfig
from app.modules.transcoding.ladder import build_ladder
from app.modules.transcoding.publisher import LocalArtifactPublisher
from app.modules.transcoding.runner import AttemptPolicy, JobRunner

from fakes import (
    API_PREFIX,
    SERVICE_BASE_URL,
    FakeEncoder,
    FakeProber,
    InMemoryVideoRepository,
    new_record,
)


@pytest.fixture
def repository():
    return InMemoryVideoRepository()


@pytest.fixture
def ladder():
    return build_ladder(["720p", "480p"], DEFAULT_QUALITY_PRESETS)


@pytest.fixture
def local_storage(tmp_path):
    return LocalStorage(StorageConfig(backend="local", local_path=str(tmp_path / "storage")))


@pytest.fixture
def local_publisher(local_storage):
    return LocalArtifactPublisher(local_storage, SERVICE_BASE_URL, API_PREFIX)


@pytest.fixture
def work_root(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return str(path)


@pytest.fixture
def pending_record(repository):
    return repository.create(new_record())


@pytest.fixture
def make_runner(repository, ladder, local_publisher, work_root):
    """Build a JobRunner with fakes, overriding any collaborator."""

    def _make(
        encoder=None,
        prober=None,
        publisher=None,
        policy=None,
        clock=None,
    ):
        kwargs = {}
        if clock is not None:
            kwargs["clock"] = clock
        return JobRunner(
            repository=repository,
            prober=prober or FakeProber(),
            encoder=encoder or FakeEncoder(),
            publisher=publisher or local_publisher,
            ladder=ladder,
            work_root=work_root,
            policy=policy or AttemptPolicy(max_attempts=3, backoff_seconds=60, timeout_seconds=3600),
            **kwargs,
        )

    return _make
