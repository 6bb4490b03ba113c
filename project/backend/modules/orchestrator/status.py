"""
Project-level status derived from a persisted script.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from shared.models.script import Script, ScriptStatus


class ProjectStatus(BaseModel):
    """Aggregate status of a script; `scene_index` is set only while editing keyframes."""

    model_config = ConfigDict(frozen=True)

    status: ScriptStatus
    scene_index: Optional[int] = None

    @property
    def is_editing_keyframes(self) -> bool:
        return self.status is ScriptStatus.EDITING_KEYFRAMES


def first_incomplete_scene(script: Script) -> int:
    """Index of the first scene with an incomplete keyframe, or 0 when all are complete."""
    for scene in script.scenes:
        if not scene.keyframes_complete:
            return scene.index
    return 0


def derive_status(script: Script) -> ProjectStatus:
    """Replay the persisted status into a project status."""
    if script.status is ScriptStatus.EDITING_KEYFRAMES:
        return ProjectStatus(status=script.status, scene_index=first_incomplete_scene(script))
    return ProjectStatus(status=script.status)
