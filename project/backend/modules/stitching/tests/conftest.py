"""
Pytest fixtures for stitching tests.
"""
from unittest.mock import patch

import httpx
import pytest

from modules.stitching.stitcher import VideoStitcher


@pytest.fixture
def cloudinary_upload():
    """Patched Cloudinary uploader returning a public id per clip file name."""
    def _upload(file, **options):
        clip_name = file.rsplit("/", 1)[-1].split(".")[0]
        return {"public_id": f"scenes/{clip_name}", "resource_type": "video"}

    with patch("modules.stitching.stitcher.cloudinary.uploader.upload", side_effect=_upload) as mock_upload:
        yield mock_upload


@pytest.fixture
def make_stitcher(settings, cloudinary_upload):
    """Factory for stitchers whose downloads go through an httpx mock transport."""
    def _make_stitcher(handler=None):
        transport = httpx.MockTransport(handler or (lambda request: httpx.Response(200, content=b"stitched-video-bytes")))
        return VideoStitcher(settings, http_client=httpx.AsyncClient(transport=transport))
    return _make_stitcher
