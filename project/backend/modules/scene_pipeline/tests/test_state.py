"""
Unit tests for the scene state machine.
"""
import pytest

from modules.scene_pipeline.state import (
    Effect,
    EventType,
    FailureReason,
    ScenePhase,
    SceneEvent,
    SceneState,
    transition,
)
from shared.errors import InvalidTransition


def _state(phase):
    return SceneState(scene_index=0, phase=phase)


def _run(state, *event_types):
    effects = []
    for event_type in event_types:
        state, step_effects = transition(state, SceneEvent.of(event_type))
        effects.extend(step_effects)
    return state, effects


class TestHappyPath:
    """Keyframes through verified upload."""

    def test_keyframes_then_video_reaches_completed(self):
        state, effects = _run(
            _state(ScenePhase.PENDING),
            EventType.START_KEYFRAMES,
            EventType.KEYFRAMES_GENERATED,
            EventType.START_VIDEO,
            EventType.VIDEO_GENERATED,
            EventType.VIDEO_DOWNLOADED,
            EventType.VIDEO_COMPRESSED,
            EventType.VIDEO_UPLOADED,
            EventType.UPLOAD_VERIFIED,
        )

        assert state.phase is ScenePhase.COMPLETED
        assert effects.index(Effect.UPLOAD) < effects.index(Effect.VERIFY) < effects.index(Effect.RECORD_VIDEO)
        assert effects[-1] is Effect.CLEANUP

    def test_video_is_recorded_only_after_verification(self):
        state, effects = _run(
            _state(ScenePhase.VIDEO_UPLOADING),
            EventType.VIDEO_UPLOADED,
        )
        assert state.phase is ScenePhase.VIDEO_UPLOADING
        assert effects == [Effect.VERIFY]

    def test_start_video_records_progress_before_generating(self):
        new_state, effects = transition(_state(ScenePhase.KEYFRAMES_READY), SceneEvent.of(EventType.START_VIDEO))
        assert new_state.phase is ScenePhase.VIDEO_GENERATING
        assert effects == (Effect.RECORD_PROGRESS, Effect.PERSIST, Effect.GENERATE_VIDEO)

    def test_transition_does_not_mutate_input(self):
        state = _state(ScenePhase.KEYFRAMES_READY)
        transition(state, SceneEvent.of(EventType.START_VIDEO))
        assert state.phase is ScenePhase.KEYFRAMES_READY


class TestFailures:
    """FAIL events."""

    @pytest.mark.parametrize("phase", [
        ScenePhase.VIDEO_GENERATING,
        ScenePhase.VIDEO_DOWNLOADING,
        ScenePhase.VIDEO_COMPRESSING,
        ScenePhase.VIDEO_UPLOADING,
    ])
    def test_video_phase_failure_records_and_cleans_up(self, phase):
        new_state, effects = transition(
            _state(phase),
            SceneEvent.fail(FailureReason.UPLOAD_FAILED, "boom")
        )
        assert new_state.phase is ScenePhase.FAILED
        assert new_state.failure_reason is FailureReason.UPLOAD_FAILED
        assert new_state.failure_detail == "boom"
        assert effects == (Effect.RECORD_FAILURE, Effect.PERSIST, Effect.CLEANUP)

    def test_keyframe_failure_only_persists(self):
        new_state, effects = transition(
            _state(ScenePhase.KEYFRAMES_GENERATING),
            SceneEvent.fail(FailureReason.REMOTE_REJECTED)
        )
        assert new_state.phase is ScenePhase.FAILED
        assert effects == (Effect.PERSIST,)

    @pytest.mark.parametrize("phase", [ScenePhase.COMPLETED, ScenePhase.FAILED])
    def test_terminal_states_cannot_fail(self, phase):
        with pytest.raises(InvalidTransition):
            transition(_state(phase), SceneEvent.fail(FailureReason.REMOTE_TIMEOUT))

    def test_success_clears_previous_failure(self):
        failed = SceneState(
            scene_index=0,
            phase=ScenePhase.FAILED,
            failure_reason=FailureReason.REMOTE_TIMEOUT,
            failure_detail="timed out",
        )
        new_state, _ = transition(failed, SceneEvent.of(EventType.REGENERATE_VIDEO))
        assert new_state.phase is ScenePhase.VIDEO_GENERATING
        assert new_state.failure_reason is None
        assert new_state.failure_detail is None


class TestRegenerationAndResume:
    """Re-entry from terminal phases."""

    @pytest.mark.parametrize("phase", [ScenePhase.KEYFRAMES_READY, ScenePhase.COMPLETED, ScenePhase.FAILED])
    def test_regenerate_video_allowed(self, phase):
        new_state, _ = transition(_state(phase), SceneEvent.of(EventType.REGENERATE_VIDEO))
        assert new_state.phase is ScenePhase.VIDEO_GENERATING

    def test_regenerate_video_rejected_while_running(self):
        with pytest.raises(InvalidTransition):
            transition(_state(ScenePhase.VIDEO_COMPRESSING), SceneEvent.of(EventType.REGENERATE_VIDEO))

    def test_resume_marks_completed_without_effects(self):
        new_state, effects = transition(_state(ScenePhase.KEYFRAMES_READY), SceneEvent.of(EventType.RESUMED_COMPLETED))
        assert new_state.phase is ScenePhase.COMPLETED
        assert effects == ()

    def test_delete_returns_to_keyframes_ready(self):
        new_state, effects = transition(_state(ScenePhase.COMPLETED), SceneEvent.of(EventType.VIDEO_DELETED))
        assert new_state.phase is ScenePhase.KEYFRAMES_READY
        assert effects == (Effect.PERSIST,)


class TestIllegalTransitions:
    """Events outside the table are rejected."""

    @pytest.mark.parametrize("phase,event_type", [
        (ScenePhase.PENDING, EventType.START_VIDEO),
        (ScenePhase.KEYFRAMES_READY, EventType.VIDEO_UPLOADED),
        (ScenePhase.VIDEO_GENERATING, EventType.UPLOAD_VERIFIED),
        (ScenePhase.COMPLETED, EventType.VIDEO_GENERATED),
    ])
    def test_raises_invalid_transition(self, phase, event_type):
        with pytest.raises(InvalidTransition) as exc_info:
            transition(_state(phase), SceneEvent.of(event_type))
        assert exc_info.value.phase == phase.value
        assert exc_info.value.event == event_type.value
