"""
Project orchestrator module.

Script lifecycle from draft to stitched final video.
"""

from modules.orchestrator.orchestrator import ProjectOrchestrator, build_stitch_prompt
from modules.orchestrator.scene_writer import SceneWriter, WrittenScene, WrittenScript
from modules.orchestrator.status import ProjectStatus, derive_status

__all__ = [
    "ProjectOrchestrator",
    "build_stitch_prompt",
    "SceneWriter",
    "WrittenScene",
    "WrittenScript",
    "ProjectStatus",
    "derive_status",
]
