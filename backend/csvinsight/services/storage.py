"""
Blob storage for raw and cleaned CSV files
"""
import logging
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from csvinsight.config import Settings
from csvinsight.errors import StorageError

logger = logging.getLogger(__name__)


def raw_csv_path(analysis_id: str, original_file_name: str) -> str:
    return f"raw/{analysis_id}/{original_file_name}"


def cleaned_csv_path(analysis_id: str) -> str:
    return f"cleaned/{analysis_id}/cleaned_data.csv"


class BlobStore(ABC):
    """Key/value store for file contents addressed by slash-separated paths"""

    @abstractmethod
    def save(self, path: str, data: bytes, content_type: str = "text/csv") -> None:
        pass

    @abstractmethod
    def load(self, path: str) -> bytes:
        pass


class LocalBlobStore(BlobStore):
    """Stores blobs as files below a root directory"""

    def __init__(self, root: str):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise StorageError(f"Invalid storage path: {path}")
        return self.root.joinpath(*relative.parts)

    def save(self, path: str, data: bytes, content_type: str = "text/csv") -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            logger.error("Failed to write blob %s: %s", path, exc)
            raise StorageError(f"Failed to write {path} to storage: {exc}") from exc

    def load(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as exc:
            logger.error("Failed to read blob %s: %s", path, exc)
            raise StorageError(f"Failed to read {path} from storage: {exc}") from exc


class S3BlobStore(BlobStore):
    """Stores blobs as objects in an S3 bucket"""

    def __init__(self, bucket: str, client=None):
        if not bucket:
            raise StorageError("S3 storage selected but no bucket is configured")
        if client is None:
            client = boto3.client("s3")
        self.bucket = bucket
        self.client = client

    def save(self, path: str, data: bytes, content_type: str = "text/csv") -> None:
        try:
            self.client.put_object(Bucket=self.bucket, Key=path, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            logger.error("Failed to write s3://%s/%s: %s", self.bucket, path, exc)
            raise StorageError(f"Failed to write {path} to storage: {exc}") from exc

    def load(self, path: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=path)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            logger.error("Failed to read s3://%s/%s: %s", self.bucket, path, exc)
            raise StorageError(f"Failed to read {path} from storage: {exc}") from exc


def build_blob_store(settings: Settings) -> BlobStore:
    if settings.storage_backend == "s3":
        return S3BlobStore(bucket=settings.s3_bucket)
    if settings.storage_backend == "local":
        return LocalBlobStore(settings.storage_root)
    raise StorageError(f"Unknown storage backend: {settings.storage_backend}")
