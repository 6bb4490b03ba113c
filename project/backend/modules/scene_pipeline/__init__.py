"""
Scene pipeline module.

Per-scene state machine and the controller that drives scenes from keyframes
to a verified, stored clip.
"""

from modules.scene_pipeline.controller import ScenePipelineController
from modules.scene_pipeline.state import (
    Effect,
    EventType,
    FailureReason,
    ScenePhase,
    SceneEvent,
    SceneState,
    transition,
)

__all__ = [
    "ScenePipelineController",
    "Effect",
    "EventType",
    "FailureReason",
    "ScenePhase",
    "SceneEvent",
    "SceneState",
    "transition",
]
