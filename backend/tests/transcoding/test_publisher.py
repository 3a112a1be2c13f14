"""Tests for artifact publishing strategies."""

import os

import pytest
from botocore.exceptions import ClientError

from app.core.storage import LocalStorage, S3Storage, StorageConfig, StorageResult
from app.modules.transcoding.errors import PublishFailed
from app.modules.transcoding.publisher import (
    LocalArtifactPublisher,
    RemoteArtifactPublisher,
    is_safe_filename,
)

from fakes import API_PREFIX, SERVICE_BASE_URL, write_hls_output

JOB_ID = "0b6c8a9e-3c1f-4f7e-9a51-2d8c1e0f4a11"
HLS_BASE = f"{SERVICE_BASE_URL}{API_PREFIX}/videos/{JOB_ID}/hls"


class StubPaginator:
    def __init__(self, objects):
        self.objects = objects

    def paginate(self, Bucket, Prefix):
        yield {"Contents": [{"Key": k} for k in sorted(self.objects) if k.startswith(Prefix)]}


class StubS3Client:
    """Minimal boto3 S3 client double keeping objects in memory."""

    def __init__(self, fail_on=None):
        self.objects = {}
        self.put_calls = []
        self.deleted_batches = []
        self.fail_on = fail_on

    def put_object(self, **kwargs):
        if self.fail_on and kwargs["Key"].endswith(self.fail_on):
            raise ClientError(
                {"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, "PutObject"
            )
        body = kwargs["Body"].read()
        self.objects[kwargs["Key"]] = body
        self.put_calls.append({**kwargs, "Body": body})
        return {"ETag": '"abc123"'}

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return StubPaginator(self.objects)

    def delete_objects(self, Bucket, Delete):
        keys = [obj["Key"] for obj in Delete["Objects"]]
        self.deleted_batches.append(keys)
        for key in keys:
            self.objects.pop(key, None)
        return {}


class FailingLocalStorage(LocalStorage):
    def upload(self, file_path, key, content_type="application/octet-stream"):
        return StorageResult(success=False, key=key, error_message="No space left on device")


@pytest.fixture
def work_dir(tmp_path, ladder):
    path = tmp_path / "work" / JOB_ID
    write_hls_output(str(path), ladder)
    return path


class TestLocalArtifactPublisher:
    """Tests for publishing to local storage with rewritten playlists."""

    def test_publish_copies_every_file(self, local_publisher, local_storage, work_dir) -> None:
        expected = sorted(os.listdir(work_dir))

        result = local_publisher.publish(JOB_ID, str(work_dir))

        assert result.success
        assert result.manifest_path == f"hls/{JOB_ID}/master.m3u8"
        assert result.manifest_url == f"{HLS_BASE}/master.m3u8"
        assert result.bucket is None
        assert local_storage.list_files(f"hls/{JOB_ID}") == [f"hls/{JOB_ID}/{n}" for n in expected]

    def test_published_playlists_use_absolute_urls(self, local_publisher, local_storage, work_dir) -> None:
        local_publisher.publish(JOB_ID, str(work_dir))

        master = local_storage.path_for(f"hls/{JOB_ID}/master.m3u8").read_text()
        variant = local_storage.path_for(f"hls/{JOB_ID}/stream_1.m3u8").read_text()
        assert f"{HLS_BASE}/stream_0.m3u8\n" in master
        assert f"{HLS_BASE}/stream_1.m3u8\n" in master
        assert f"{HLS_BASE}/segment_1_000.ts\n" in variant
        assert local_storage.path_for(f"hls/{JOB_ID}/segment_1_000.ts").read_bytes() == b"ts-1-0"

    def test_work_dir_removed_on_success(self, local_publisher, work_dir) -> None:
        local_publisher.publish(JOB_ID, str(work_dir))

        assert not work_dir.exists()

    def test_republish_replaces_stale_files(self, local_publisher, local_storage, work_dir, ladder) -> None:
        stale = local_storage.path_for(f"hls/{JOB_ID}/segment_9_000.ts")
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b"old")

        local_publisher.publish(JOB_ID, str(work_dir))

        assert not stale.exists()

    def test_missing_master_fails_and_keeps_work_dir(self, local_publisher, work_dir) -> None:
        (work_dir / "master.m3u8").unlink()

        result = local_publisher.publish(JOB_ID, str(work_dir))

        assert not result.success
        assert result.error_code == PublishFailed.error_code
        assert "master.m3u8" in result.error_message
        assert work_dir.exists()

    def test_storage_failure_keeps_work_dir(self, tmp_path, work_dir) -> None:
        storage = FailingLocalStorage(StorageConfig(backend="local", local_path=str(tmp_path / "s")))
        publisher = LocalArtifactPublisher(storage, SERVICE_BASE_URL, API_PREFIX)

        result = publisher.publish(JOB_ID, str(work_dir))

        assert not result.success
        assert result.error_message.startswith("Failed to publish HLS output:")
        assert "No space left on device" in result.error_message
        assert (work_dir / "segment_0_000.ts").exists()

    def test_resolve_published_file(self, local_publisher, work_dir) -> None:
        local_publisher.publish(JOB_ID, str(work_dir))

        path = local_publisher.resolve(JOB_ID, "segment_0_001.ts")

        assert path is not None
        assert path.read_bytes() == b"ts-0-1"
        assert local_publisher.resolve(JOB_ID, "segment_7_000.ts") is None

    @pytest.mark.parametrize(
        "filename", ["", ".", "..", "../master.m3u8", "..\\master.m3u8", "a/b.ts", "x\x00.ts"]
    )
    def test_resolve_rejects_unsafe_names(self, local_publisher, work_dir, filename) -> None:
        local_publisher.publish(JOB_ID, str(work_dir))

        assert not is_safe_filename(filename)
        assert local_publisher.resolve(JOB_ID, filename) is None

    def test_resolve_rejects_unsafe_job_id(self, local_publisher) -> None:
        assert local_publisher.resolve("..", "master.m3u8") is None

    def test_unpublish_removes_artifacts(self, local_publisher, local_storage, work_dir) -> None:
        local_publisher.publish(JOB_ID, str(work_dir))

        local_publisher.unpublish(JOB_ID)

        assert local_storage.list_files(f"hls/{JOB_ID}") == []
        assert local_publisher.resolve(JOB_ID, "master.m3u8") is None


class TestRemoteArtifactPublisher:
    """Tests for publishing untouched output to S3."""

    def _publisher(self, client, **config):
        values = {"backend": "s3", "bucket": "media", "region": "eu-west-1"}
        values.update(config)
        return RemoteArtifactPublisher(S3Storage(StorageConfig(**values), client=client))

    def test_uploads_every_file_public_with_content_type(self, work_dir) -> None:
        client = StubS3Client()
        names = sorted(os.listdir(work_dir))

        result = self._publisher(client).publish(JOB_ID, str(work_dir))

        assert result.success
        assert [c["Key"] for c in client.put_calls] == [f"hls/{JOB_ID}/{n}" for n in names]
        for call in client.put_calls:
            assert call["Bucket"] == "media"
            assert call["ACL"] == "public-read"
            if call["Key"].endswith(".m3u8"):
                assert call["ContentType"] == "application/vnd.apple.mpegurl"
            else:
                assert call["ContentType"] == "video/mp2t"

    def test_playlists_uploaded_untouched(self, work_dir) -> None:
        client = StubS3Client()
        original = (work_dir / "master.m3u8").read_bytes()

        self._publisher(client).publish(JOB_ID, str(work_dir))

        assert client.objects[f"hls/{JOB_ID}/master.m3u8"] == original
        assert b"stream_0.m3u8\n" in original
        assert b"http" not in original

    def test_result_points_at_bucket(self, work_dir) -> None:
        result = self._publisher(StubS3Client()).publish(JOB_ID, str(work_dir))

        assert result.bucket == "media"
        assert result.key == f"hls/{JOB_ID}/master.m3u8"
        assert result.manifest_path == result.key
        assert result.manifest_url == (
            f"https://media.s3.eu-west-1.amazonaws.com/hls/{JOB_ID}/master.m3u8"
        )
        assert not work_dir.exists()

    def test_cdn_url_when_enabled(self, work_dir) -> None:
        publisher = self._publisher(StubS3Client(), cdn_domain="cdn.media.test", cdn_enabled=True)

        result = publisher.publish(JOB_ID, str(work_dir))

        assert result.manifest_url == f"https://cdn.media.test/hls/{JOB_ID}/master.m3u8"

    def test_endpoint_url_for_minio(self, work_dir) -> None:
        publisher = self._publisher(StubS3Client(), endpoint_url="http://minio:9000/")

        result = publisher.publish(JOB_ID, str(work_dir))

        assert result.manifest_url == f"http://minio:9000/media/hls/{JOB_ID}/master.m3u8"

    def test_upload_error_fails_and_keeps_work_dir(self, work_dir) -> None:
        client = StubS3Client(fail_on="stream_1.m3u8")

        result = self._publisher(client).publish(JOB_ID, str(work_dir))

        assert not result.success
        assert result.error_code == PublishFailed.error_code
        assert "AccessDenied" in result.error_message
        assert work_dir.exists()

    def test_unpublish_deletes_prefix(self, work_dir) -> None:
        client = StubS3Client()
        client.objects["hls/other/master.m3u8"] = b""
        publisher = self._publisher(client)
        publisher.publish(JOB_ID, str(work_dir))

        publisher.unpublish(JOB_ID)

        assert list(client.objects) == ["hls/other/master.m3u8"]
        assert publisher.resolve(JOB_ID, "master.m3u8") is None
