"""
Tests for artifact storage.
"""

import pytest
from unittest.mock import AsyncMock, Mock, patch

from shared.errors import ConfigError, StorageFailure, UploadFailed
from shared.storage import ArtifactStore, _is_not_found


class StorageApiError(Exception):
    """Shape of errors raised by the Supabase storage client."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


@pytest.fixture(autouse=True)
def mock_sleep():
    with patch("shared.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


@pytest.fixture
def bucket():
    bucket = Mock()
    bucket.get_public_url = Mock(side_effect=lambda key: f"https://test.supabase.co/storage/v1/object/public/pipeline-artifacts/{key}")
    return bucket


@pytest.fixture
def store(settings, bucket):
    """Artifact store wired to a mocked Supabase client."""
    client = Mock()
    client.storage.from_ = Mock(return_value=bucket)
    return ArtifactStore(settings, client=client)


def test_storage_client_initialization_failure(settings):
    """Test that ConfigError is raised on initialization failure."""
    with patch("shared.storage.create_client", side_effect=Exception("Connection failed")):
        with pytest.raises(ConfigError, match="Failed to initialize storage client"):
            ArtifactStore(settings)


def test_is_not_found():
    """Test detection of missing-object errors."""
    assert _is_not_found(StorageApiError("Object not found", status=404))
    assert _is_not_found(StorageApiError("{'statusCode': '404'}"))
    assert not _is_not_found(StorageApiError("Internal error", status=500))


@pytest.mark.asyncio
async def test_upload_sends_metadata(store, bucket, tmp_path):
    """Test uploading a file with custom metadata."""
    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"video-bytes")

    url = await store.upload(clip, "videos/scripts/s/scenes/0_a.mp4", {"generationId": "gen-1", "sceneIndex": 0})

    assert url.endswith("videos/scripts/s/scenes/0_a.mp4")
    kwargs = bucket.upload.call_args.kwargs
    assert kwargs["path"] == "videos/scripts/s/scenes/0_a.mp4"
    assert kwargs["file"] == b"video-bytes"
    assert kwargs["file_options"]["content-type"] == "video/mp4"
    assert kwargs["file_options"]["upsert"] == "false"
    assert kwargs["file_options"]["metadata"] == {"generationId": "gen-1", "sceneIndex": "0"}


@pytest.mark.asyncio
async def test_upload_failure_is_not_retried(store, bucket, tmp_path):
    """Test that upload errors surface as UploadFailed after one attempt."""
    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"video-bytes")
    bucket.upload = Mock(side_effect=StorageApiError("The resource already exists", status=409))

    with pytest.raises(UploadFailed):
        await store.upload(clip, "videos/x.mp4", {})
    assert bucket.upload.call_count == 1


@pytest.mark.asyncio
async def test_upload_missing_file(store, tmp_path):
    """Test that a missing local file is an upload failure."""
    with pytest.raises(UploadFailed):
        await store.upload(tmp_path / "missing.mp4", "videos/x.mp4", {})


@pytest.mark.asyncio
async def test_delete(store, bucket):
    """Test deleting an object."""
    bucket.remove = Mock(return_value=[{"name": "x.mp4"}])

    assert await store.delete("videos/x.mp4") is True
    bucket.remove.assert_called_once_with(["videos/x.mp4"])


@pytest.mark.asyncio
async def test_delete_missing_object(store, bucket):
    """Test that deleting a missing object is not an error."""
    bucket.remove = Mock(side_effect=StorageApiError("Object not found", status=404))

    assert await store.delete("videos/x.mp4") is False


@pytest.mark.asyncio
async def test_delete_retries_then_raises(store, bucket):
    """Test that persistent delete failures raise StorageFailure after retries."""
    bucket.remove = Mock(side_effect=StorageApiError("Service unavailable", status=503))

    with pytest.raises(StorageFailure):
        await store.delete("videos/x.mp4")
    assert bucket.remove.call_count == 3


@pytest.mark.asyncio
async def test_get_metadata(store, bucket):
    """Test reading custom metadata."""
    bucket.info = Mock(return_value={"name": "x.mp4", "metadata": {"generationId": "gen-1"}})

    assert await store.get_metadata("videos/x.mp4") == {"generationId": "gen-1"}


@pytest.mark.asyncio
async def test_get_metadata_user_metadata_key(store, bucket):
    """Test the alternate user_metadata field."""
    bucket.info = Mock(return_value={"user_metadata": {"generationId": "gen-2"}})

    assert await store.get_metadata("videos/x.mp4") == {"generationId": "gen-2"}


@pytest.mark.asyncio
async def test_get_metadata_missing_object(store, bucket):
    """Test that a missing object has empty metadata."""
    bucket.info = Mock(side_effect=StorageApiError("Object not found", status=404))

    assert await store.get_metadata("videos/x.mp4") == {}


@pytest.mark.asyncio
async def test_list(store, bucket):
    """Test listing objects newest first."""
    bucket.list = Mock(return_value=[
        {"name": "0_new.mp4", "created_at": "2026-01-02T00:00:00Z", "metadata": {"size": 10}},
        {"name": "0_old.mp4", "created_at": "2026-01-01T00:00:00Z", "metadata": {"size": 20}},
        {"name": None},
    ])

    objects = await store.list("videos/scripts/s/scenes/")

    assert [o.key for o in objects] == ["videos/scripts/s/scenes/0_new.mp4", "videos/scripts/s/scenes/0_old.mp4"]
    assert objects[0].size == 10
    args = bucket.list.call_args.args
    assert args[0] == "videos/scripts/s/scenes"
    assert args[1]["sortBy"] == {"column": "created_at", "order": "desc"}


@pytest.mark.asyncio
async def test_list_failure(store, bucket):
    """Test that listing errors raise StorageFailure."""
    bucket.list = Mock(side_effect=StorageApiError("Internal error", status=500))

    with pytest.raises(StorageFailure):
        await store.list("videos")
