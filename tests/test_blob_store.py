"""Tests for the local and S3 blob stores."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from health_diary.services.blob_store import LocalBlobStore, S3BlobStore, audio_logical_path, timestamp_slug
from health_diary.services.errors import StorageError


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestPaths:
    """Object key layout."""

    def test_timestamp_slug(self):
        assert timestamp_slug(datetime(2026, 3, 2, 8, 30, 15, 250)) == "2026-03-02T08-30-15-000250"

    def test_audio_path_uses_content_type(self):
        path = audio_logical_path("audio/x-m4a", datetime(2026, 3, 2, 8, 30))
        assert path.startswith("audio-files/2026-03-02T08-30-00-")
        assert path.endswith(".m4a")


class TestLocalBlobStore:
    """Filesystem blob store."""

    def test_put_get_delete(self, blobs: LocalBlobStore):
        ref = blobs.put("u1", "raw-transcripts/a.md", b"hello", "text/markdown")
        assert ref == "users/u1/raw-transcripts/a.md"
        assert blobs.get(ref) == b"hello"

        blobs.delete(ref)
        with pytest.raises(StorageError):
            blobs.get(ref)
        # Deleting twice is fine
        blobs.delete(ref)

    def test_rejects_refs_outside_root(self, blobs: LocalBlobStore):
        with pytest.raises(StorageError):
            blobs.get("../../etc/passwd")

    def test_signed_url_is_file_uri(self, blobs: LocalBlobStore):
        ref = blobs.put("u1", "audio-files/a.mp3", b"\x00", "audio/mpeg")
        assert blobs.signed_url(ref).startswith("file://")


class TestS3BlobStore:
    """S3 blob store with a mocked boto3 client."""

    def test_put_encrypts_and_returns_key(self):
        client = MagicMock()
        store = S3BlobStore("diary-bucket", client=client)

        ref = store.put("u1", "audio-files/a.mp3", b"\x00\x01", "audio/mpeg")

        assert ref == "users/u1/audio-files/a.mp3"
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "diary-bucket"
        assert kwargs["Key"] == ref
        assert kwargs["ContentType"] == "audio/mpeg"
        assert kwargs["ServerSideEncryption"] == "AES256"
        assert kwargs["Metadata"]["user-id"] == "u1"

    def test_get_wraps_client_errors(self):
        client = MagicMock()
        client.get_object.side_effect = client_error("NoSuchKey", "GetObject")
        store = S3BlobStore("diary-bucket", client=client)

        with pytest.raises(StorageError):
            store.get("users/u1/missing.md")

    def test_signed_url(self):
        client = MagicMock()
        client.generate_presigned_url.return_value = "https://signed.example/a.mp3"
        store = S3BlobStore("diary-bucket", client=client)

        assert store.signed_url("users/u1/a.mp3", ttl_seconds=600) == "https://signed.example/a.mp3"
        client.generate_presigned_url.assert_called_once_with(
            "get_object", Params={"Bucket": "diary-bucket", "Key": "users/u1/a.mp3"}, ExpiresIn=600
        )

    def test_ensure_bucket_exists(self):
        client = MagicMock()
        store = S3BlobStore("diary-bucket", region="eu-west-2", client=client)

        store.ensure_bucket()
        client.create_bucket.assert_not_called()

    def test_ensure_bucket_creates_missing(self):
        client = MagicMock()
        client.head_bucket.side_effect = client_error("404", "HeadBucket")
        store = S3BlobStore("diary-bucket", region="eu-west-2", client=client)

        store.ensure_bucket()

        client.create_bucket.assert_called_once_with(
            Bucket="diary-bucket", CreateBucketConfiguration={"LocationConstraint": "eu-west-2"}
        )
        client.put_bucket_encryption.assert_called_once()

    def test_ensure_bucket_us_east_1_has_no_constraint(self):
        client = MagicMock()
        client.head_bucket.side_effect = client_error("NoSuchBucket", "HeadBucket")
        store = S3BlobStore("diary-bucket", region="us-east-1", client=client)

        store.ensure_bucket()
        client.create_bucket.assert_called_once_with(Bucket="diary-bucket")

    def test_ensure_bucket_access_denied(self):
        client = MagicMock()
        client.head_bucket.side_effect = client_error("403", "HeadBucket")
        store = S3BlobStore("diary-bucket", client=client)

        with pytest.raises(StorageError):
            store.ensure_bucket()
        client.create_bucket.assert_not_called()

    def test_requires_bucket_name(self):
        with pytest.raises(ValueError):
            S3BlobStore("", client=MagicMock())
