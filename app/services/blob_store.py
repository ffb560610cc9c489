"""Audio blob storage backends (S3-compatible object storage or local disk)."""

import logging
import os
import uuid
from pathlib import Path
from typing import Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config import get_settings
from app.errors import GatewayUnavailableError

logger = logging.getLogger("allo_ingest")


def build_key(scope_id: str, filename: str) -> str:
    """Storage key for a new blob: ``{scope_id}/{uuid}-{filename}``."""
    safe_name = Path(filename or "audio.bin").name
    return f"{scope_id}/{uuid.uuid4()}-{safe_name}"


class BlobStore(Protocol):
    def upload(self, scope_id: str, filename: str, data: bytes, mime_type: str) -> str: ...

    def delete(self, key: str) -> None: ...

    def download(self, key: str) -> bytes: ...


class S3BlobStore:
    """Stores audio in an S3 bucket (AWS or MinIO via ``endpoint_url``)."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str = "us-east-1",
        client=None,
    ) -> None:
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    def upload(self, scope_id: str, filename: str, data: bytes, mime_type: str) -> str:
        key = build_key(scope_id, filename)
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=mime_type)
        except (BotoCoreError, ClientError) as e:
            logger.error("Audio upload to s3://%s/%s failed: %s", self.bucket, key, e)
            raise GatewayUnavailableError(f"Failed to store audio '{filename}': {e}") from e
        return key

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404", "NotFound"):
                return
            raise GatewayUnavailableError(f"Failed to delete audio '{key}': {e}") from e
        except BotoCoreError as e:
            raise GatewayUnavailableError(f"Failed to delete audio '{key}': {e}") from e

    def download(self, key: str) -> bytes:
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=key)
            return obj["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise GatewayUnavailableError(f"Failed to read audio '{key}': {e}") from e


class LocalBlobStore:
    """Stores audio on local disk under ``root``; keys are relative paths."""

    def __init__(self, root: str) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise GatewayUnavailableError(f"Invalid storage key '{key}'")
        return path

    def upload(self, scope_id: str, filename: str, data: bytes, mime_type: str) -> str:
        key = build_key(scope_id, filename)
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise GatewayUnavailableError(f"Failed to store audio '{filename}': {e}") from e
        return key

    def delete(self, key: str) -> None:
        path = self._path(key)
        if not path.exists():
            return
        try:
            os.remove(path)
        except OSError as e:
            raise GatewayUnavailableError(f"Failed to delete audio '{key}': {e}") from e

    def download(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except OSError as e:
            raise GatewayUnavailableError(f"Failed to read audio '{key}': {e}") from e


_blob_store: BlobStore | None = None


def get_blob_store() -> BlobStore:
    """Get singleton blob store for the configured backend."""
    global _blob_store
    if _blob_store is None:
        settings = get_settings()
        if settings.BLOB_BACKEND == "local":
            _blob_store = LocalBlobStore(settings.UPLOAD_DIR)
        else:
            _blob_store = S3BlobStore(
                bucket=settings.S3_AUDIO_BUCKET,
                endpoint_url=settings.S3_ENDPOINT_URL,
                access_key=settings.S3_ACCESS_KEY,
                secret_key=settings.S3_SECRET_KEY,
                region=settings.S3_REGION,
            )
    return _blob_store
