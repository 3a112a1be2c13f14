"""Artifact publishing strategies.

Moves encoder output from the per-attempt work directory into durable
storage under ``hls/{job_id}/``. Exactly one strategy is active per
deployment:

- ``LocalArtifactPublisher`` rewrites playlists to absolute API URLs and
  copies the files into local storage, from where the API serves them.
- ``RemoteArtifactPublisher`` uploads the files untouched to S3 with a
  public-read ACL; the relative references resolve against the bucket URL.

On success the work directory is removed. On failure it is left in place
for inspection.
"""

import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from app.core.logging import log_error, log_info
from app.core.storage import LocalStorage, S3Storage, content_type_for
from app.modules.transcoding.errors import PublishFailed
from app.modules.transcoding.playlist import MASTER_PLAYLIST, hls_base_url, rewrite_playlists

logger = logging.getLogger(__name__)


def artifact_prefix(job_id: str) -> str:
    return f"hls/{job_id}"


def artifact_key(job_id: str, filename: str) -> str:
    return f"{artifact_prefix(job_id)}/{filename}"


def is_safe_filename(filename: str) -> bool:
    """Reject anything that could escape a job's artifact directory."""
    if not filename or filename in (".", ".."):
        return False
    return "/" not in filename and "\\" not in filename and "\x00" not in filename


@dataclass
class PublishResult:
    """Result of publishing a work directory."""
    success: bool
    manifest_path: Optional[str] = None
    manifest_url: Optional[str] = None
    bucket: Optional[str] = None
    key: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def failure(cls, message: str) -> "PublishResult":
        return cls(success=False, error_message=message, error_code=PublishFailed.error_code)


def _list_artifacts(work_dir: str) -> list[str]:
    names = sorted(
        name for name in os.listdir(work_dir)
        if os.path.isfile(os.path.join(work_dir, name))
    )
    if MASTER_PLAYLIST not in names:
        raise PublishFailed(f"{MASTER_PLAYLIST} missing from {work_dir}")
    return names


class ArtifactPublisher(ABC):
    """Abstract base class for publishing strategies."""

    @abstractmethod
    def publish(self, job_id: str, work_dir: str) -> PublishResult:
        """Publish every file of a work directory for a job."""

    @abstractmethod
    def unpublish(self, job_id: str) -> None:
        """Remove a job's published artifacts."""

    @abstractmethod
    def resolve(self, job_id: str, filename: str) -> Optional[Path]:
        """Resolve a published file to a local path for serving."""


class LocalArtifactPublisher(ArtifactPublisher):
    """Publish to local storage with playlists rewritten to API URLs."""

    def __init__(self, storage: LocalStorage, service_base_url: str, api_prefix: str = "/api/v1"):
        self.storage = storage
        self.service_base_url = service_base_url
        self.api_prefix = api_prefix

    def publish(self, job_id: str, work_dir: str) -> PublishResult:
        """Rewrite, copy and clean up.

        Rewriting happens on the ephemeral copy only, before anything is
        published, so durable playlists are never rewritten a second time.
        """
        try:
            names = _list_artifacts(work_dir)
            rewrite_playlists(work_dir, hls_base_url(self.service_base_url, self.api_prefix, job_id))

            # Drop leftovers of an earlier attempt for the same job
            self.storage.delete_prefix(artifact_prefix(job_id))
            for name in names:
                result = self.storage.upload(
                    os.path.join(work_dir, name),
                    artifact_key(job_id, name),
                    content_type_for(name),
                )
                if not result.success:
                    raise PublishFailed(f"Failed to store {name}: {result.error_message}")
        except (OSError, PublishFailed) as e:
            log_error(logger, "Publishing HLS artifacts failed", e, job_id=job_id, work_dir=work_dir)
            return PublishResult.failure(f"Failed to publish HLS output: {e}")

        shutil.rmtree(work_dir, ignore_errors=True)
        log_info(logger, "Published HLS artifacts", job_id=job_id, file_count=len(names))

        return PublishResult(
            success=True,
            manifest_path=artifact_key(job_id, MASTER_PLAYLIST),
            manifest_url=f"{hls_base_url(self.service_base_url, self.api_prefix, job_id)}/{MASTER_PLAYLIST}",
        )

    def unpublish(self, job_id: str) -> None:
        self.storage.delete_prefix(artifact_prefix(job_id))

    def resolve(self, job_id: str, filename: str) -> Optional[Path]:
        if not is_safe_filename(filename) or not is_safe_filename(job_id):
            return None
        path = self.storage.path_for(artifact_key(job_id, filename))
        return path if path.is_file() else None


class RemoteArtifactPublisher(ArtifactPublisher):
    """Publish untouched output to S3-compatible object storage."""

    def __init__(self, storage: S3Storage):
        self.storage = storage

    def publish(self, job_id: str, work_dir: str) -> PublishResult:
        try:
            names = _list_artifacts(work_dir)
            for name in names:
                result = self.storage.upload(
                    os.path.join(work_dir, name),
                    artifact_key(job_id, name),
                    content_type_for(name),
                    public=True,
                )
                if not result.success:
                    raise PublishFailed(f"Failed to upload {name}: {result.error_message}")
        except (OSError, BotoCoreError, ClientError, PublishFailed) as e:
            log_error(logger, "Uploading HLS artifacts failed", e, job_id=job_id, work_dir=work_dir)
            return PublishResult.failure(f"Failed to publish HLS output: {e}")

        shutil.rmtree(work_dir, ignore_errors=True)
        key = artifact_key(job_id, MASTER_PLAYLIST)
        log_info(
            logger,
            "Uploaded HLS artifacts",
            job_id=job_id,
            bucket=self.storage.config.bucket,
            file_count=len(names),
        )

        return PublishResult(
            success=True,
            manifest_path=key,
            manifest_url=self.storage.get_url(key),
            bucket=self.storage.config.bucket,
            key=key,
        )

    def unpublish(self, job_id: str) -> None:
        self.storage.delete_prefix(artifact_prefix(job_id) + "/")

    def resolve(self, job_id: str, filename: str) -> Optional[Path]:
        # Served directly from the bucket
        return None
