"""Storage backends for source uploads and published HLS artifacts.

Supports: local filesystem, S3, MinIO, and other S3-compatible storage.
Operations report failures through ``StorageResult`` instead of raising so
callers can decide whether a failure is fatal.
"""

import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
}


def content_type_for(filename: str) -> str:
    """Get the HTTP content type for an HLS artifact file name."""
    return CONTENT_TYPES.get(Path(filename).suffix.lower(), "application/octet-stream")


@dataclass
class StorageResult:
    """Result of a storage operation."""
    success: bool
    key: str
    url: str = ""
    file_size: int = 0
    etag: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"
    cdn_domain: Optional[str] = None
    cdn_enabled: bool = False


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a file to storage."""

    @abstractmethod
    def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a file object to storage."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a single file from storage."""

    @abstractmethod
    def delete_prefix(self, prefix: str) -> int:
        """Delete every file under a prefix. Returns the number removed."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if a file exists in storage."""

    @abstractmethod
    def get_url(self, key: str) -> str:
        """Get the public URL for a file."""

    @abstractmethod
    def list_files(self, prefix: str = "") -> list[str]:
        """List files with given prefix."""


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        """Get full path for a key."""
        return self.base_path / key

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Copy a file into local storage."""
        try:
            dest_path = self.path_for(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(file_path, dest_path)

            return StorageResult(
                success=True,
                key=key,
                url=self.get_url(key),
                file_size=dest_path.stat().st_size,
            )
        except OSError as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Write a file object into local storage."""
        try:
            dest_path = self.path_for(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with open(dest_path, "wb") as f:
                shutil.copyfileobj(fileobj, f)

            return StorageResult(
                success=True,
                key=key,
                url=self.get_url(key),
                file_size=dest_path.stat().st_size,
            )
        except OSError as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def delete(self, key: str) -> bool:
        """Delete a file from local storage."""
        file_path = self.path_for(key)
        try:
            if file_path.is_file():
                file_path.unlink()
                return True
            return False
        except OSError as e:
            logger.warning("Failed to delete %s: %s", file_path, e)
            return False

    def delete_prefix(self, prefix: str) -> int:
        """Delete a directory tree under local storage."""
        target = self.path_for(prefix)
        if not target.exists():
            return 0
        removed = sum(1 for p in target.rglob("*") if p.is_file())
        shutil.rmtree(target)
        return removed

    def exists(self, key: str) -> bool:
        """Check if a file exists in local storage."""
        return self.path_for(key).is_file()

    def get_url(self, key: str) -> str:
        """Get a file URL for a key."""
        return f"file://{self.path_for(key).absolute()}"

    def list_files(self, prefix: str = "") -> list[str]:
        """List files with given prefix."""
        search_path = self.path_for(prefix) if prefix else self.base_path
        if not search_path.exists():
            return []

        files = []
        for path in sorted(search_path.rglob("*")):
            if path.is_file():
                files.append(path.relative_to(self.base_path).as_posix())
        return files


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend.

    Objects uploaded with ``public=True`` get a ``public-read`` ACL and are
    addressed by a stable public URL rather than a presigned one, because
    players fetch segments long after any presigned URL would expire.
    """

    def __init__(self, config: StorageConfig, client: Any = None):
        self.config = config
        self._client = client

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
            }

            if self.config.access_key and self.config.secret_key:
                client_kwargs["aws_access_key_id"] = self.config.access_key
                client_kwargs["aws_secret_access_key"] = self.config.secret_key

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )
                if not self.config.use_ssl:
                    client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)

        return self._client

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
        public: bool = False,
    ) -> StorageResult:
        """Upload a file to S3/MinIO."""
        try:
            with open(file_path, "rb") as f:
                return self.upload_fileobj(f, key, content_type, public=public)
        except OSError as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
        public: bool = False,
    ) -> StorageResult:
        """Upload a file object to S3/MinIO."""
        try:
            client = self._get_client()

            fileobj.seek(0, 2)
            file_size = fileobj.tell()
            fileobj.seek(0)

            put_kwargs = {
                "Bucket": self.config.bucket,
                "Key": key,
                "Body": fileobj,
                "ContentType": content_type,
            }
            if public:
                put_kwargs["ACL"] = "public-read"

            response = client.put_object(**put_kwargs)
            etag = response.get("ETag", "").strip('"')

            return StorageResult(
                success=True,
                key=key,
                url=self.get_url(key),
                file_size=file_size,
                etag=etag,
            )
        except (BotoCoreError, ClientError, OSError) as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def delete(self, key: str) -> bool:
        """Delete a file from S3/MinIO."""
        try:
            self._get_client().delete_object(Bucket=self.config.bucket, Key=key)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.warning("Failed to delete s3://%s/%s: %s", self.config.bucket, key, e)
            return False

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under a key prefix."""
        keys = self.list_files(prefix)
        client = self._get_client()
        # delete_objects accepts at most 1000 keys per call
        for start in range(0, len(keys), 1000):
            batch = keys[start:start + 1000]
            client.delete_objects(
                Bucket=self.config.bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
        return len(keys)

    def exists(self, key: str) -> bool:
        """Check if a file exists in S3/MinIO."""
        try:
            self._get_client().head_object(Bucket=self.config.bucket, Key=key)
            return True
        except ClientError:
            return False

    def get_url(self, key: str) -> str:
        """Get the public URL for an object."""
        if self.config.cdn_enabled and self.config.cdn_domain:
            return f"https://{self.config.cdn_domain}/{key}"
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{key}"
        region = self.config.region or "us-east-1"
        return f"https://{self.config.bucket}.s3.{region}.amazonaws.com/{key}"

    def list_files(self, prefix: str = "") -> list[str]:
        """List object keys with given prefix."""
        paginator = self._get_client().get_paginator("list_objects_v2")
        files = []
        for page in paginator.paginate(Bucket=self.config.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                files.append(obj["Key"])
        return files
