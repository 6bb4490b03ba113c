"""
Data models for the scene video pipeline.

This module exports all Pydantic models used across pipeline modules.
"""

from .draft import Draft, ReferenceText
from .script import (
    GENERATION_ID_KEY,
    GenerationStatus,
    Keyframe,
    ReferenceImage,
    Scene,
    SceneVideo,
    Script,
    ScriptStatus,
)

__all__ = [
    # Draft models
    "Draft",
    "ReferenceText",
    # Script models
    "GENERATION_ID_KEY",
    "GenerationStatus",
    "Keyframe",
    "ReferenceImage",
    "Scene",
    "SceneVideo",
    "Script",
    "ScriptStatus",
]
