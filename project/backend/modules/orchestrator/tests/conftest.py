"""
Pytest fixtures for orchestrator tests.
"""
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from modules.orchestrator.orchestrator import ProjectOrchestrator
from modules.orchestrator.scene_writer import WrittenScene, WrittenScript
from shared.models.draft import Draft, ReferenceText


@pytest.fixture(autouse=True)
def no_retry_sleep():
    with patch("shared.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture
def draft():
    return Draft(
        id="draft-1",
        user_id="user-1",
        title="The Lighthouse",
        content="A lighthouse keeper keeps the lamp burning through a storm.",
        reference_text_ids=["ref-1"],
    )


@pytest.fixture
def reference_texts():
    return [
        ReferenceText(id="ref-1", title="Logbook", content="Storm of 1899 lasted three days."),
        ReferenceText(id="ref-2", title="Unrelated", content="Recipe for bread."),
    ]


@pytest.fixture
def written_script():
    return WrittenScript(
        script_overview="A keeper fights a storm to save a ship.",
        scenes=[
            WrittenScene(
                content=f"Beat {i}",
                visual_description=f"Visual {i}",
                start_keyframe_prompt=f"Start {i}",
                end_keyframe_prompt=f"End {i}",
            )
            for i in range(3)
        ],
    )


@pytest.fixture
def scene_writer(written_script):
    writer = Mock()
    writer.write_scenes = AsyncMock(return_value=written_script)
    return writer


@pytest.fixture
def stitcher():
    """Stitcher that composes a fixed URL and downloads a small file."""
    fake = Mock()
    fake.stitch = AsyncMock(return_value="https://res.cloudinary.com/demo/video/upload/final.mp4")

    async def _download(url, destination):
        Path(destination).write_bytes(b"stitched")
        return Path(destination)

    fake.download = AsyncMock(side_effect=_download)
    return fake


@pytest.fixture
def make_orchestrator(settings, repository, store, scene_writer, stitcher, make_controller):
    """Factory for orchestrators wired to in-memory collaborators."""
    def _make_orchestrator(with_stitcher: bool = True):
        return ProjectOrchestrator(
            settings,
            repository,
            store,
            scene_writer,
            make_controller,
            stitcher if with_stitcher else None,
        )
    return _make_orchestrator
