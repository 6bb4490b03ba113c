"""
Tests for HTTP downloads.
"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from shared.downloads import download_to_file
from shared.errors import RetryableError, ValidationError

URL = "https://replicate.delivery/gen-1.mp4"


@pytest.fixture(autouse=True)
def mock_sleep():
    with patch("shared.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


@pytest.fixture
def mock_transport():
    """Route httpx.AsyncClient through a mock transport."""
    real_client = httpx.AsyncClient

    def _install(handler):
        transport = httpx.MockTransport(handler)
        return patch(
            "shared.downloads.httpx.AsyncClient",
            side_effect=lambda **kwargs: real_client(transport=transport, **kwargs)
        )
    return _install


@pytest.mark.asyncio
async def test_download_writes_file(tmp_path, mock_transport):
    """Test streaming a response body to disk."""
    destination = tmp_path / "clip.mp4"
    with mock_transport(lambda request: httpx.Response(200, content=b"video-bytes")):
        result = await download_to_file(URL, destination)

    assert result == destination
    assert destination.read_bytes() == b"video-bytes"


@pytest.mark.asyncio
async def test_empty_url_rejected(tmp_path):
    with pytest.raises(ValidationError):
        await download_to_file("", tmp_path / "clip.mp4")


@pytest.mark.asyncio
async def test_client_error_not_retried(tmp_path, mock_transport):
    """Test that a 4xx response fails immediately."""
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404)

    with mock_transport(handler):
        with pytest.raises(ValidationError):
            await download_to_file(URL, tmp_path / "clip.mp4")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_server_error_retried(tmp_path, mock_transport):
    """Test that 5xx responses are retried until success."""
    responses = [httpx.Response(503), httpx.Response(200, content=b"video-bytes")]

    with mock_transport(lambda request: responses.pop(0)):
        result = await download_to_file(URL, tmp_path / "clip.mp4")

    assert result.read_bytes() == b"video-bytes"
    assert responses == []


@pytest.mark.asyncio
async def test_empty_body_is_retryable(tmp_path, mock_transport):
    """Test that an empty download raises after retries."""
    with mock_transport(lambda request: httpx.Response(200, content=b"")):
        with pytest.raises(RetryableError):
            await download_to_file(URL, tmp_path / "clip.mp4")
