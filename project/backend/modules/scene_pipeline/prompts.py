"""
Prompt templates for keyframe and video generation.

The video template pins composition, lighting and subject count so clips stay
visually coherent when concatenated.
"""

from typing import Literal

from shared.models.script import Scene

KeyframePosition = Literal["start", "end"]

VIDEO_REQUIREMENTS = (
    "Maintain exact character appearance",
    "Static composition with minimal motion",
    "Simple, uncluttered background",
    "Maximum 1-2 characters",
    "Essential elements only",
    "No camera movement",
    "Consistent lighting",
)

KEYFRAME_REQUIREMENTS = (
    "Maximum 1-2 characters in frame",
    "Consistent lighting with adjacent frames",
    "Centered, balanced composition",
    "Simple, uncluttered background",
    "Photorealistic, sharp detail",
)

_POSITION_WORDING = {
    "start": "Opening frame: capture the moment the action begins",
    "end": "Closing frame: capture the result once the action completes",
}


def build_keyframe_prompt(scene: Scene, position: KeyframePosition) -> str:
    """Wrap a keyframe prompt with scene context and technical requirements."""
    keyframe = scene.start_keyframe if position == "start" else scene.end_keyframe
    lines = [
        keyframe.prompt.strip(),
        "",
        f"Script Context: {scene.content.strip()}",
    ]
    if scene.visual_description.strip():
        lines.append(f"Visual Context: {scene.visual_description.strip()}")
    lines.append(_POSITION_WORDING[position])
    lines.append("")
    lines.append("Technical Requirements:")
    lines.extend(f"- {requirement}" for requirement in KEYFRAME_REQUIREMENTS)
    return "\n".join(lines)


def build_video_prompt(scene: Scene) -> str:
    """Prompt for generating a clip between the scene's two keyframes."""
    lines = [
        f"Scene: {scene.content.strip()}",
        "Style: Clear, photorealistic, minimal artifacts",
        "Transition: Simple, static-focused with minimal movement",
        f"Start: {scene.start_keyframe.prompt.strip()}",
        f"End: {scene.end_keyframe.prompt.strip()}",
        "",
        "Requirements:",
    ]
    lines.extend(f"- {requirement}" for requirement in VIDEO_REQUIREMENTS)
    return "\n".join(lines)
