"""
Pytest fixtures shared by all test packages.

Settings and model factories, plus in-memory stand-ins for storage,
persistence, generation and compression.
"""
import shutil
from pathlib import Path
from typing import Dict, List
from unittest.mock import AsyncMock, Mock

import pytest

from modules.generation_client.client import GenerationResult
from modules.scene_pipeline.controller import ScenePipelineController
from shared.config import Settings
from shared.errors import NotFound, UploadFailed
from shared.models.script import Keyframe, Scene, SceneVideo, Script
from shared.storage import StoredObject


@pytest.fixture
def settings(tmp_path, monkeypatch):
    """Settings with test credentials and fast timings."""
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    return Settings(
        _env_file=None,
        supabase_url="https://test.supabase.co",
        supabase_service_key="test_service_key",
        openai_api_key="sk-test123456789012345678901234567890",
        replicate_api_token="r8_test123456789012345678901234567890",
        cloudinary_cloud_name="demo",
        cloudinary_api_key="123456",
        cloudinary_api_secret="secret",
        generation_timeout_seconds=600,
        retry_base_delay=2.0,
    )


@pytest.fixture
def make_scene():
    """Factory for scenes with optional completed keyframes."""
    def _make_scene(index: int, keyframes_done: bool = True, content: str = None):
        start = Keyframe(prompt=f"start of scene {index}")
        end = Keyframe(prompt=f"end of scene {index}")
        if keyframes_done:
            start.image_url = f"https://img.example.com/{index}/start.jpg"
            start.status = "completed"
            end.image_url = f"https://img.example.com/{index}/end.jpg"
            end.status = "completed"
        return Scene(
            index=index,
            content=content or f"Scene {index} narrative",
            visual_description=f"Scene {index} visuals",
            start_keyframe=start,
            end_keyframe=end,
        )
    return _make_scene


@pytest.fixture
def make_script(make_scene):
    """Factory for scripts with N scenes."""
    def _make_script(scene_count: int = 3, keyframes_done: bool = True, **kwargs):
        return Script(
            id=kwargs.pop("id", "script-1"),
            draft_id=kwargs.pop("draft_id", "draft-1"),
            user_id=kwargs.pop("user_id", "user-1"),
            title=kwargs.pop("title", "The Lighthouse"),
            script_overview=kwargs.pop("script_overview", "A keeper fights a storm."),
            scenes=[make_scene(i, keyframes_done) for i in range(scene_count)],
            **kwargs,
        )
    return _make_script


@pytest.fixture
def completed_video():
    """Factory for completed scene videos."""
    def _completed_video(index: int, url: str = None, generation_id: str = None):
        return SceneVideo(
            scene_index=index,
            video_url=url or f"https://cdn.example.com/clip{index}.mp4",
            metadata={"generationId": generation_id or f"gen-{index}"},
            status="completed",
            storage_key=f"videos/scripts/script-1/scenes/{index}_abc.mp4",
        )
    return _completed_video


class InMemoryStore:
    """ArtifactStore replacement keeping objects in a dict."""

    def __init__(self):
        self.objects: Dict[str, Dict[str, str]] = {}
        self.order: List[str] = []
        self.upload_failures = 0
        self.upload_attempts: List[str] = []
        self.drop_metadata = False
        self.deleted: List[str] = []

    async def upload(self, local_path, destination_key, metadata, content_type=None):
        self.upload_attempts.append(destination_key)
        if self.upload_failures > 0:
            self.upload_failures -= 1
            raise UploadFailed(f"Failed to upload {destination_key}: connection reset")
        if destination_key in self.objects:
            raise UploadFailed(f"Failed to upload {destination_key}: already exists")
        assert Path(local_path).stat().st_size > 0
        self.put(destination_key, {} if self.drop_metadata else dict(metadata))
        return self.public_url(destination_key)

    def put(self, key, metadata):
        self.objects[key] = metadata
        self.order.append(key)

    async def delete(self, destination_key):
        self.deleted.append(destination_key)
        if destination_key not in self.objects:
            return False
        del self.objects[destination_key]
        self.order.remove(destination_key)
        return True

    async def get_metadata(self, destination_key):
        return dict(self.objects.get(destination_key, {}))

    async def list(self, prefix):
        prefix = prefix.rstrip("/") + "/"
        keys = [k for k in reversed(self.order) if k.startswith(prefix)]
        return [StoredObject(key=k, name=k[len(prefix):]) for k in keys]

    def public_url(self, destination_key):
        return f"https://storage.example.com/{destination_key}"


class InMemoryRepository:
    """ScriptRepository replacement recording every save."""

    def __init__(self):
        self.documents = {}
        self.saves = 0

    async def save(self, script):
        self.saves += 1
        self.documents[script.id] = script.model_dump(mode="json")

    async def get(self, script_id):
        if script_id not in self.documents:
            raise NotFound(f"Script {script_id} not found", script_id=script_id)
        return Script.model_validate(self.documents[script_id])

    async def find_by_draft(self, draft_id, user_id):
        matches = [
            d for d in self.documents.values()
            if d["draft_id"] == draft_id and d["user_id"] == user_id
        ]
        if not matches:
            return None
        return Script.model_validate(max(matches, key=lambda d: d["updated_at"]))

    async def delete(self, script_id):
        self.documents.pop(script_id, None)


class CopyingTransformer:
    """MediaTransformer replacement that copies input to output."""

    def __init__(self):
        self.compress = AsyncMock(side_effect=self._compress)

    async def _compress(self, local_path, max_width=None, target_size_bytes=None, output_path=None):
        shutil.copyfile(local_path, output_path)
        return Path(output_path)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def transformer():
    return CopyingTransformer()


@pytest.fixture
def generation_client():
    """Generation client returning numbered results per call."""
    client = Mock()
    counter = {"video": 0, "keyframe": 0}

    async def _video(prompt, start_image_url, end_image_url):
        counter["video"] += 1
        generation_id = f"gen-{counter['video']}"
        return GenerationResult(
            url=f"https://replicate.delivery/{generation_id}.mp4",
            generation_id=generation_id,
            metadata={"model": "luma/ray", "generationId": generation_id},
        )

    async def _keyframe(prompt, reference_images=None, style_reference=None):
        counter["keyframe"] += 1
        return GenerationResult(
            url=f"https://replicate.delivery/frame-{counter['keyframe']}.jpg",
            generation_id=f"frame-{counter['keyframe']}",
        )

    client.generate_video = AsyncMock(side_effect=_video)
    client.generate_keyframe = AsyncMock(side_effect=_keyframe)
    return client


@pytest.fixture
def downloader():
    async def _download(url, destination):
        Path(destination).write_bytes(b"\x00\x00\x00\x18ftypmp42" + url.encode())
        return Path(destination)
    return AsyncMock(side_effect=_download)


@pytest.fixture
def make_controller(settings, repository, generation_client, transformer, store, downloader):
    """Factory for controllers wired to the in-memory fakes."""
    def _make_controller(script):
        return ScenePipelineController(
            script,
            settings,
            repository,
            generation_client,
            transformer,
            store,
            downloader=downloader,
        )
    return _make_controller
