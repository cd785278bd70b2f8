"""Blob storage for audio, transcripts and structured summaries."""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Protocol

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from health_diary.services.errors import StorageError

logger = logging.getLogger("health_diary.blob_store")

CONTENT_TYPE_EXTENSIONS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/mp3": "mp3",
    "audio/mpeg": "mp3",
    "audio/mp4": "mp4",
    "audio/x-m4a": "m4a",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
}


def timestamp_slug(now: datetime) -> str:
    """Filesystem- and key-safe timestamp, e.g. 2026-10-19T16-02-11-123456."""
    return now.isoformat().replace(":", "-").replace(".", "-")


def audio_logical_path(content_type: str, now: datetime) -> str:
    ext = CONTENT_TYPE_EXTENSIONS.get(content_type, "bin")
    return f"audio-files/{timestamp_slug(now)}-{uuid.uuid4()}.{ext}"


def user_key(owner_id: str, logical_path: str) -> str:
    return f"users/{owner_id}/{logical_path.lstrip('/')}"


class BlobStore(Protocol):
    """Hierarchical byte storage addressed by ref (the object key)."""

    def put(self, owner_id: str, logical_path: str, data: bytes, content_type: str) -> str: ...

    def get(self, ref: str) -> bytes: ...

    def delete(self, ref: str) -> None: ...

    def signed_url(self, ref: str, ttl_seconds: int = 3600) -> str: ...

    def ensure_bucket(self) -> None: ...


class S3BlobStore:
    """S3-backed blob store. Refs are object keys inside one bucket."""

    def __init__(
        self,
        bucket_name: str,
        region: str | None = None,
        endpoint_url: str | None = None,
        timeout_seconds: int = 60,
        client=None,
    ) -> None:
        if not bucket_name:
            raise ValueError("S3 bucket name is not provided.")
        self.bucket_name = bucket_name
        self.region = region
        if client is None:
            config = Config(
                signature_version="s3v4",
                connect_timeout=timeout_seconds,
                read_timeout=timeout_seconds,
                retries={"max_attempts": 3},
            )
            client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url, config=config)
        self.s3_client = client

    def put(self, owner_id: str, logical_path: str, data: bytes, content_type: str) -> str:
        key = user_key(owner_id, logical_path)
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
                ServerSideEncryption="AES256",
                Metadata={"user-id": str(owner_id), "upload-timestamp": datetime.utcnow().isoformat()},
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload {key}: {e}") from e
        logger.info("Uploaded %s (%d bytes) to bucket %s", key, len(data), self.bucket_name)
        return key

    def get(self, ref: str) -> bytes:
        try:
            obj = self.s3_client.get_object(Bucket=self.bucket_name, Key=ref)
            return obj["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to retrieve {ref}: {e}") from e

    def delete(self, ref: str) -> None:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=ref)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete {ref}: {e}") from e

    def signed_url(self, ref: str, ttl_seconds: int = 3600) -> str:
        try:
            return self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": ref},
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to generate download URL for {ref}: {e}") from e

    def ensure_bucket(self) -> None:
        """Create the bucket with default encryption if it does not exist yet."""
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code")
            if error_code not in ("404", "NoSuchBucket", "NotFound"):
                raise StorageError(f"Failed to access bucket {self.bucket_name}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to access bucket {self.bucket_name}: {e}") from e

        logger.info("Creating S3 bucket %s", self.bucket_name)
        create_kwargs = {"Bucket": self.bucket_name}
        # us-east-1 rejects an explicit location constraint
        if self.region and self.region != "us-east-1":
            create_kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self.s3_client.create_bucket(**create_kwargs)
            self.s3_client.put_bucket_encryption(
                Bucket=self.bucket_name,
                ServerSideEncryptionConfiguration={
                    "Rules": [{"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}}]
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to create bucket {self.bucket_name}: {e}") from e


class LocalBlobStore:
    """Filesystem-backed blob store for development and tests. Refs are paths relative to the root."""

    def __init__(self, root_dir: str | Path) -> None:
        self.root = Path(root_dir).resolve()

    def _path(self, ref: str) -> Path:
        path = (self.root / ref).resolve()
        if not path.is_relative_to(self.root):
            raise StorageError(f"Ref escapes storage root: {ref}")
        return path

    def put(self, owner_id: str, logical_path: str, data: bytes, content_type: str) -> str:
        key = user_key(owner_id, logical_path)
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        return key

    def get(self, ref: str) -> bytes:
        try:
            return self._path(ref).read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read {ref}: {e}") from e

    def delete(self, ref: str) -> None:
        try:
            self._path(ref).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete {ref}: {e}") from e

    def signed_url(self, ref: str, ttl_seconds: int = 3600) -> str:
        return self._path(ref).as_uri()

    def ensure_bucket(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create storage root {self.root}: {e}") from e
