"""
Scene state machine.

Pure transition function over (state, event) pairs. Each transition yields the
next state plus the ordered side effects the controller must run. No I/O
happens here.
"""

from enum import Enum
from typing import Dict, NamedTuple, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from shared.errors import InvalidTransition


class ScenePhase(str, Enum):
    PENDING = "pending"
    KEYFRAMES_GENERATING = "keyframes_generating"
    KEYFRAMES_READY = "keyframes_ready"
    VIDEO_GENERATING = "video_generating"
    VIDEO_DOWNLOADING = "video_downloading"
    VIDEO_COMPRESSING = "video_compressing"
    VIDEO_UPLOADING = "video_uploading"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureReason(str, Enum):
    INVALID_INPUT = "invalid_input"
    REMOTE_REJECTED = "remote_rejected"
    REMOTE_TIMEOUT = "remote_timeout"
    REMOTE_TRANSIENT = "remote_transient"
    DOWNLOAD_FAILED = "download_failed"
    MISSING_GENERATION_ID = "missing_generation_id"
    TRANSFORM_FAILED = "transform_failed"
    UPLOAD_FAILED = "upload_failed"
    VERIFICATION_FAILED = "verification_failed"
    UNEXPECTED = "unexpected"


class EventType(str, Enum):
    START_KEYFRAMES = "start_keyframes"
    REGENERATE_KEYFRAMES = "regenerate_keyframes"
    KEYFRAMES_GENERATED = "keyframes_generated"
    START_VIDEO = "start_video"
    REGENERATE_VIDEO = "regenerate_video"
    VIDEO_GENERATED = "video_generated"
    VIDEO_DOWNLOADED = "video_downloaded"
    VIDEO_COMPRESSED = "video_compressed"
    VIDEO_UPLOADED = "video_uploaded"
    UPLOAD_VERIFIED = "upload_verified"
    RESUMED_COMPLETED = "resumed_completed"
    VIDEO_DELETED = "video_deleted"
    FAIL = "fail"


class Effect(str, Enum):
    PERSIST = "persist"
    GENERATE_KEYFRAMES = "generate_keyframes"
    RECORD_PROGRESS = "record_progress"
    GENERATE_VIDEO = "generate_video"
    DOWNLOAD = "download"
    COMPRESS = "compress"
    UPLOAD = "upload"
    VERIFY = "verify"
    RECORD_VIDEO = "record_video"
    RECORD_FAILURE = "record_failure"
    CLEANUP = "cleanup"


class SceneEvent(BaseModel):
    """Something that happened to a scene."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    reason: Optional[FailureReason] = None
    detail: Optional[str] = None

    @classmethod
    def of(cls, event_type: EventType) -> "SceneEvent":
        return cls(type=event_type)

    @classmethod
    def fail(cls, reason: FailureReason, detail: Optional[str] = None) -> "SceneEvent":
        return cls(type=EventType.FAIL, reason=reason, detail=detail)


class SceneState(BaseModel):
    """Pipeline position of one scene."""

    model_config = ConfigDict(frozen=True)

    scene_index: int
    phase: ScenePhase = ScenePhase.PENDING
    failure_reason: Optional[FailureReason] = None
    failure_detail: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in (ScenePhase.COMPLETED, ScenePhase.FAILED)

    @property
    def is_running(self) -> bool:
        return self.phase in _RUNNING_PHASES


class Transition(NamedTuple):
    state: SceneState
    effects: Tuple[Effect, ...]


_RUNNING_PHASES = frozenset({
    ScenePhase.KEYFRAMES_GENERATING,
    ScenePhase.VIDEO_GENERATING,
    ScenePhase.VIDEO_DOWNLOADING,
    ScenePhase.VIDEO_COMPRESSING,
    ScenePhase.VIDEO_UPLOADING,
})

_VIDEO_PHASES = _RUNNING_PHASES - {ScenePhase.KEYFRAMES_GENERATING}

_KEYFRAME_RUN = (Effect.PERSIST, Effect.GENERATE_KEYFRAMES)
_VIDEO_RUN = (Effect.RECORD_PROGRESS, Effect.PERSIST, Effect.GENERATE_VIDEO)

_TABLE: Dict[Tuple[ScenePhase, EventType], Tuple[ScenePhase, Tuple[Effect, ...]]] = {
    (ScenePhase.PENDING, EventType.START_KEYFRAMES): (ScenePhase.KEYFRAMES_GENERATING, _KEYFRAME_RUN),
    (ScenePhase.KEYFRAMES_GENERATING, EventType.KEYFRAMES_GENERATED): (ScenePhase.KEYFRAMES_READY, (Effect.PERSIST,)),
    (ScenePhase.KEYFRAMES_READY, EventType.START_VIDEO): (ScenePhase.VIDEO_GENERATING, _VIDEO_RUN),
    (ScenePhase.VIDEO_GENERATING, EventType.VIDEO_GENERATED): (ScenePhase.VIDEO_DOWNLOADING, (Effect.DOWNLOAD,)),
    (ScenePhase.VIDEO_DOWNLOADING, EventType.VIDEO_DOWNLOADED): (ScenePhase.VIDEO_COMPRESSING, (Effect.COMPRESS,)),
    (ScenePhase.VIDEO_COMPRESSING, EventType.VIDEO_COMPRESSED): (ScenePhase.VIDEO_UPLOADING, (Effect.UPLOAD,)),
    (ScenePhase.VIDEO_UPLOADING, EventType.VIDEO_UPLOADED): (ScenePhase.VIDEO_UPLOADING, (Effect.VERIFY,)),
    (ScenePhase.VIDEO_UPLOADING, EventType.UPLOAD_VERIFIED): (
        ScenePhase.COMPLETED,
        (Effect.RECORD_VIDEO, Effect.PERSIST, Effect.CLEANUP),
    ),
}

for _phase in (ScenePhase.PENDING, ScenePhase.KEYFRAMES_READY, ScenePhase.COMPLETED, ScenePhase.FAILED):
    _TABLE[(_phase, EventType.REGENERATE_KEYFRAMES)] = (ScenePhase.KEYFRAMES_GENERATING, _KEYFRAME_RUN)
    _TABLE[(_phase, EventType.RESUMED_COMPLETED)] = (ScenePhase.COMPLETED, ())

for _phase in (ScenePhase.KEYFRAMES_READY, ScenePhase.COMPLETED, ScenePhase.FAILED):
    _TABLE[(_phase, EventType.REGENERATE_VIDEO)] = (ScenePhase.VIDEO_GENERATING, _VIDEO_RUN)

for _phase in (ScenePhase.COMPLETED, ScenePhase.FAILED):
    _TABLE[(_phase, EventType.VIDEO_DELETED)] = (ScenePhase.KEYFRAMES_READY, (Effect.PERSIST,))


def transition(state: SceneState, event: SceneEvent) -> Transition:
    """
    Compute the next state and the effects to run.

    Args:
        state: Current scene state
        event: Event to apply

    Returns:
        Transition(new_state, effects)

    Raises:
        InvalidTransition: If the event is not allowed in the current phase
    """
    if event.type is EventType.FAIL:
        if state.is_terminal:
            raise InvalidTransition(state.phase.value, event.type.value)
        failed = state.model_copy(update={
            "phase": ScenePhase.FAILED,
            "failure_reason": event.reason,
            "failure_detail": event.detail,
        })
        if state.phase in _VIDEO_PHASES:
            return Transition(failed, (Effect.RECORD_FAILURE, Effect.PERSIST, Effect.CLEANUP))
        return Transition(failed, (Effect.PERSIST,))

    key = (state.phase, event.type)
    if key not in _TABLE:
        raise InvalidTransition(state.phase.value, event.type.value)

    phase, effects = _TABLE[key]
    new_state = state.model_copy(update={
        "phase": phase,
        "failure_reason": None,
        "failure_detail": None,
    })
    return Transition(new_state, effects)
