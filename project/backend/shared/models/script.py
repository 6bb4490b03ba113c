"""
Script data models.

Defines Script, Scene, Keyframe, SceneVideo and ReferenceImage models for the
scene video pipeline.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from shared.errors import ValidationError

GenerationStatus = Literal["not_started", "generating", "completed", "failed"]

# Metadata key carrying the provider-assigned generation identifier
GENERATION_ID_KEY = "generationId"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScriptStatus(str, Enum):
    """Persisted lifecycle status of a script."""

    DRAFT = "draft"
    GENERATING_SCRIPT = "generating_script"
    EDITING_KEYFRAMES = "editing_keyframes"
    GENERATING_VIDEO = "generating_video"
    COMPLETED = "completed"
    FAILED = "failed"


class ReferenceImage(BaseModel):
    """Weighted reference image used to steer image or video generation."""

    url: str
    prompt: Optional[str] = Field(default=None, description="Prompt hint for the image")
    weight: float = Field(default=0.5, ge=0.0, le=1.0)
    kind: Literal["character", "reference"] = "reference"

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v:
            raise ValueError("url must not be empty")
        return v


class Keyframe(BaseModel):
    """Start or end still image of a scene."""

    prompt: str = ""
    selected_images: List[ReferenceImage] = Field(default_factory=list)
    image_url: Optional[str] = None
    status: GenerationStatus = "not_started"

    @property
    def is_complete(self) -> bool:
        return self.status == "completed" and bool(self.image_url)


class Scene(BaseModel):
    """One narrative beat of a script, rendered as one video clip."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    index: int = Field(ge=0, frozen=True, description="Stable position; defines stitch order")
    content: str
    visual_description: str = ""
    start_keyframe: Keyframe = Field(default_factory=Keyframe)
    end_keyframe: Keyframe = Field(default_factory=Keyframe)

    @property
    def keyframes_complete(self) -> bool:
        return self.start_keyframe.is_complete and self.end_keyframe.is_complete


class SceneVideo(BaseModel):
    """Generated clip for a scene."""

    scene_index: int = Field(ge=0)
    video_url: str = ""
    duration: float = Field(default=5.0, description="Clip duration in seconds")
    metadata: Dict[str, str] = Field(default_factory=dict)
    status: GenerationStatus = "not_started"
    storage_key: Optional[str] = None
    error: Optional[str] = None

    @property
    def generation_id(self) -> Optional[str]:
        return self.metadata.get(GENERATION_ID_KEY) or None


class Script(BaseModel):
    """A project: ordered scenes plus their generated clips."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    draft_id: str
    user_id: str
    title: str = ""
    script_overview: str = ""
    scenes: List[Scene] = Field(default_factory=list)
    status: ScriptStatus = ScriptStatus.DRAFT
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    selected_character_id: Optional[str] = None
    selected_character_images: List[ReferenceImage] = Field(default_factory=list)
    selected_reference_images: List[ReferenceImage] = Field(default_factory=list)
    selected_reference_text_ids: List[str] = Field(default_factory=list)
    scene_videos: List[Optional[SceneVideo]] = Field(
        default_factory=list,
        description="Indexed by scene index; None marks an absent slot"
    )
    final_video_url: Optional[str] = None
    error: Optional[str] = None

    def scene(self, index: int) -> Scene:
        """
        Return the scene at `index`.

        Raises:
            ValidationError: If the index is out of range
        """
        if index < 0 or index >= len(self.scenes):
            raise ValidationError(
                f"Scene index {index} out of range for {len(self.scenes)} scenes",
                script_id=self.id
            )
        return self.scenes[index]

    def touch(self) -> None:
        self.updated_at = utc_now()
