"""
Scene pipeline controller.

Drives each scene of a script through keyframe generation, video generation,
download, compression, upload and verification. State changes go through the
pure transition function in `state.py`; this module executes the resulting
effects and persists the script after every step.
"""

import asyncio
import shutil
import tempfile
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from modules.generation_client.client import GenerationClient, GenerationResult
from modules.media_transform.compressor import MediaTransformer
from modules.scene_pipeline.prompts import build_keyframe_prompt, build_video_prompt
from modules.scene_pipeline.state import (
    Effect,
    EventType,
    FailureReason,
    ScenePhase,
    SceneEvent,
    SceneState,
    transition,
)
from modules.scene_pipeline.videos import progress, with_video
from shared.config import Settings
from shared.database import ScriptRepository
from shared.downloads import download_to_file
from shared.errors import (
    GenerationError,
    MissingGenerationId,
    PipelineError,
    RemoteRejected,
    RemoteTimeout,
    RemoteTransientError,
    RetryableError,
    StorageFailure,
    TransformFailed,
    UploadFailed,
    ValidationError,
)
from shared.logging import get_logger, set_script_id
from shared.models.script import GENERATION_ID_KEY, ReferenceImage, SceneVideo, Script
from shared.retry import call_with_retry
from shared.storage import ArtifactStore

logger = get_logger("scene_pipeline.controller")

MAX_SELECTED_IMAGES = 4

Downloader = Callable[[str, Path], Awaitable[Path]]


def scene_prefix(script_id: str) -> str:
    return f"videos/scripts/{script_id}/scenes"


def final_video_key(script_id: str) -> str:
    return f"videos/scripts/{script_id}/final.mp4"


def _failure_reason(error: Exception) -> FailureReason:
    if isinstance(error, ValidationError):
        return FailureReason.INVALID_INPUT
    if isinstance(error, RemoteTimeout):
        return FailureReason.REMOTE_TIMEOUT
    if isinstance(error, RemoteTransientError):
        return FailureReason.REMOTE_TRANSIENT
    return FailureReason.REMOTE_REJECTED


@dataclass
class _SceneRun:
    """Scratch state for one pass through the pipeline."""

    index: int
    work_dir: Optional[Path] = None
    result: Optional[GenerationResult] = None
    generation_id: Optional[str] = None
    download_path: Optional[Path] = None
    compressed_path: Optional[Path] = None
    storage_key: Optional[str] = None
    video_url: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    attempted_keys: List[str] = field(default_factory=list)
    superseded_key: Optional[str] = None


class ScenePipelineController:
    """Per-script scene state machine runner."""

    def __init__(
        self,
        script: Script,
        settings: Settings,
        repository: ScriptRepository,
        generation_client: GenerationClient,
        transformer: MediaTransformer,
        store: ArtifactStore,
        downloader: Optional[Downloader] = None
    ):
        self.script = script
        self.settings = settings
        self.repository = repository
        self.generation_client = generation_client
        self.transformer = transformer
        self.store = store
        self.downloader = downloader or self._download
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._states: Dict[int, SceneState] = {
            scene.index: self._initial_state(scene.index) for scene in script.scenes
        }
        self._handlers = {
            Effect.PERSIST: self._persist,
            Effect.GENERATE_KEYFRAMES: self._generate_keyframes,
            Effect.RECORD_PROGRESS: self._record_progress,
            Effect.GENERATE_VIDEO: self._generate_video,
            Effect.DOWNLOAD: self._download_video,
            Effect.COMPRESS: self._compress_video,
            Effect.UPLOAD: self._upload_video,
            Effect.VERIFY: self._verify_upload,
            Effect.RECORD_VIDEO: self._record_video,
            Effect.RECORD_FAILURE: self._record_failure,
            Effect.CLEANUP: self._cleanup,
        }

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _initial_state(self, index: int) -> SceneState:
        """Derive a scene's phase from the persisted script document."""
        scene = self.script.scene(index)
        video = self._video_at(index)
        if video is not None and video.status == "completed" and video.generation_id:
            return SceneState(scene_index=index, phase=ScenePhase.COMPLETED)
        if video is not None and video.status == "failed":
            return SceneState(scene_index=index, phase=ScenePhase.FAILED, failure_detail=video.error)
        if scene.keyframes_complete:
            return SceneState(scene_index=index, phase=ScenePhase.KEYFRAMES_READY)
        return SceneState(scene_index=index)

    def state(self, index: int) -> SceneState:
        self.script.scene(index)
        return self._states[index]

    @property
    def progress(self) -> float:
        """Fraction of scenes with a completed video."""
        return progress(self.script.scene_videos, len(self.script.scenes))

    def _video_at(self, index: int) -> Optional[SceneVideo]:
        videos = self.script.scene_videos
        return videos[index] if index < len(videos) else None

    def _store_video(self, index: int, video: Optional[SceneVideo]) -> None:
        """Single mutation point for the scene-video collection."""
        self.script.scene_videos = with_video(self.script.scene_videos, index, video)

    def _fire(self, index: int, event: SceneEvent):
        current = self._states[index]
        new_state, effects = transition(current, event)
        self._states[index] = new_state
        logger.info(
            f"Scene {index}: {current.phase.value} -> {new_state.phase.value}",
            extra={
                "script_id": self.script.id,
                "scene_index": index,
                "event": event.type.value,
                "reason": event.reason.value if event.reason else None,
            }
        )
        return effects

    async def _drive(self, index: int, event: SceneEvent) -> SceneState:
        run = _SceneRun(index=index)
        effects = deque(self._fire(index, event))
        try:
            while effects:
                effect = effects.popleft()
                next_event = await self._handlers[effect](run)
                if next_event is not None:
                    effects.extend(self._fire(index, next_event))
        except Exception as e:
            if self._states[index].is_running:
                await self._fail_unexpectedly(run, e)
            raise
        finally:
            if run.work_dir is not None:
                await self._cleanup(run)
        return self._states[index]

    async def _fail_unexpectedly(self, run: _SceneRun, error: Exception) -> None:
        """Move a running scene to failed and record it without masking `error`."""
        logger.error(
            f"Unexpected error in scene {run.index}: {str(error)}",
            extra={"script_id": self.script.id, "scene_index": run.index, "error_type": type(error).__name__}
        )
        effects = self._fire(run.index, SceneEvent.fail(FailureReason.UNEXPECTED, str(error)))

        scene = self.script.scene(run.index)
        for keyframe in (scene.start_keyframe, scene.end_keyframe):
            if keyframe.status == "generating":
                keyframe.status = "failed"

        for effect in effects:
            if effect not in (Effect.RECORD_FAILURE, Effect.PERSIST):
                continue
            try:
                await self._handlers[effect](run)
            except Exception as e:
                logger.warning(
                    f"Could not record failure of scene {run.index}: {str(e)}",
                    extra={"script_id": self.script.id, "scene_index": run.index, "effect": effect.value}
                )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def generate_keyframes(
        self,
        index: int,
        reference_images: Optional[List[ReferenceImage]] = None
    ) -> SceneState:
        """
        Generate the start and end keyframes of a scene.

        Selected reference images are attached to both keyframes.

        Raises:
            ValidationError: Index out of range, empty prompt, too many images
        """
        set_script_id(self.script.id)
        async with self._locks[index]:
            scene = self.script.scene(index)
            if not scene.start_keyframe.prompt.strip() or not scene.end_keyframe.prompt.strip():
                raise ValidationError(
                    f"Scene {index} needs both keyframe prompts before generation",
                    script_id=self.script.id
                )
            if reference_images is not None:
                if len(reference_images) > MAX_SELECTED_IMAGES:
                    raise ValidationError(f"At most {MAX_SELECTED_IMAGES} reference images are allowed")
                scene.start_keyframe.selected_images = list(reference_images)
                scene.end_keyframe.selected_images = list(reference_images)

            scene.start_keyframe.status = "generating"
            scene.end_keyframe.status = "generating"

            if self._states[index].phase is ScenePhase.PENDING:
                event = SceneEvent.of(EventType.START_KEYFRAMES)
            else:
                event = SceneEvent.of(EventType.REGENERATE_KEYFRAMES)
            return await self._drive(index, event)

    async def regenerate_keyframes(
        self,
        index: int,
        start_prompt: Optional[str] = None,
        end_prompt: Optional[str] = None,
        reference_images: Optional[List[ReferenceImage]] = None
    ) -> SceneState:
        """Redo a scene's keyframes, optionally with new prompts."""
        scene = self.script.scene(index)
        if start_prompt is not None:
            scene.start_keyframe.prompt = start_prompt
        if end_prompt is not None:
            scene.end_keyframe.prompt = end_prompt
        return await self.generate_keyframes(index, reference_images)

    async def generate_video(self, index: int) -> SceneState:
        """
        Generate, compress and store the clip for one scene.

        Running this on a completed or failed scene regenerates it; the new
        result replaces the previous one at the same index.

        Returns:
            Terminal SceneState (completed or failed)

        Raises:
            ValidationError: Keyframes are not both completed
        """
        set_script_id(self.script.id)
        async with self._locks[index]:
            scene = self.script.scene(index)
            if not scene.keyframes_complete:
                raise ValidationError(
                    f"Scene {index} keyframes must be completed before video generation",
                    script_id=self.script.id
                )
            if self._states[index].phase is ScenePhase.PENDING:
                self._states[index] = SceneState(scene_index=index, phase=ScenePhase.KEYFRAMES_READY)

            if self._states[index].phase is ScenePhase.KEYFRAMES_READY:
                event = SceneEvent.of(EventType.START_VIDEO)
            else:
                event = SceneEvent.of(EventType.REGENERATE_VIDEO)
            return await self._drive(index, event)

    regenerate_video = generate_video

    async def generate_all_videos(self) -> Dict[int, SceneState]:
        """
        Generate clips for every scene that is not completed yet, concurrently.

        Raises:
            ValidationError: If any scene lacks completed keyframes
        """
        pending = [s.index for s in self.script.scenes if self._states[s.index].phase is not ScenePhase.COMPLETED]
        for index in pending:
            if not self.script.scene(index).keyframes_complete:
                raise ValidationError(
                    f"Scene {index} keyframes must be completed before video generation",
                    script_id=self.script.id
                )
        results = await asyncio.gather(
            *(self.generate_video(index) for index in pending),
            return_exceptions=True
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise errors[0]
        return dict(self._states)

    async def load_existing_videos(self) -> int:
        """
        Rebuild completed scenes from previously uploaded clips.

        Returns:
            Number of scenes restored without regeneration
        """
        set_script_id(self.script.id)
        objects = await self.store.list(scene_prefix(self.script.id))
        restored = 0

        for scene in self.script.scenes:
            async with self._locks[scene.index]:
                if self._states[scene.index].is_running:
                    continue
                current = self._video_at(scene.index)
                if current is not None and current.status == "completed" and current.generation_id:
                    continue
                candidates = [o for o in objects if o.name.startswith(f"{scene.index}_")]
                for candidate in candidates:
                    try:
                        metadata = await self.store.get_metadata(candidate.key)
                    except StorageFailure as e:
                        logger.warning(
                            f"Could not read metadata for {candidate.key}: {str(e)}",
                            extra={"script_id": self.script.id, "scene_index": scene.index}
                        )
                        continue
                    if not metadata.get(GENERATION_ID_KEY):
                        logger.warning(
                            f"Stored clip {candidate.key} has no generation id, skipping",
                            extra={"script_id": self.script.id, "scene_index": scene.index}
                        )
                        continue
                    self._store_video(scene.index, SceneVideo(
                        scene_index=scene.index,
                        video_url=self.store.public_url(candidate.key),
                        duration=self.settings.scene_duration_seconds,
                        metadata=metadata,
                        status="completed",
                        storage_key=candidate.key,
                    ))
                    self._fire(scene.index, SceneEvent.of(EventType.RESUMED_COMPLETED))
                    restored += 1
                    break

        if restored:
            await self.repository.save(self.script)
        logger.info(
            f"Restored {restored} scene video(s) from storage",
            extra={"script_id": self.script.id, "restored": restored}
        )
        return restored

    async def delete_video(self, index: int) -> None:
        """Clear a scene's video slot and remove its stored clip (best-effort)."""
        async with self._locks[index]:
            self.script.scene(index)
            video = self._video_at(index)
            self._store_video(index, None)
            if self._states[index].phase in (ScenePhase.COMPLETED, ScenePhase.FAILED):
                self._fire(index, SceneEvent.of(EventType.VIDEO_DELETED))
            await self.repository.save(self.script)
            if video is not None and video.storage_key:
                await self._delete_quietly(video.storage_key)

    async def delete_all_artifacts(self) -> int:
        """
        Remove every stored clip and the final video of this script.

        Failures are logged, never raised.

        Returns:
            Number of objects removed
        """
        keys = set()
        try:
            keys.update(o.key for o in await self.store.list(scene_prefix(self.script.id)))
        except StorageFailure as e:
            logger.warning(
                f"Could not list artifacts for cleanup: {str(e)}",
                extra={"script_id": self.script.id}
            )
        keys.update(v.storage_key for v in self.script.scene_videos if v is not None and v.storage_key)
        keys.add(final_video_key(self.script.id))

        removed = 0
        for key in sorted(keys):
            if await self._delete_quietly(key):
                removed += 1
        return removed

    # ------------------------------------------------------------------
    # Effect handlers
    # ------------------------------------------------------------------

    async def _persist(self, run: _SceneRun) -> None:
        await self.repository.save(self.script)

    async def _generate_keyframes(self, run: _SceneRun) -> SceneEvent:
        scene = self.script.scene(run.index)
        references = list(scene.start_keyframe.selected_images)
        style_reference = None
        if run.index > 0:
            previous_end = self.script.scene(run.index - 1).end_keyframe
            if previous_end.image_url:
                style_reference = ReferenceImage(url=previous_end.image_url, weight=0.5)

        async def _keyframe(position):
            return await call_with_retry(
                self.generation_client.generate_keyframe,
                build_keyframe_prompt(scene, position),
                references,
                style_reference,
                max_attempts=self.settings.generation_max_attempts,
                base_delay=self.settings.retry_base_delay,
                retryable_exceptions=(RemoteTransientError,)
            )

        start, end = await asyncio.gather(_keyframe("start"), _keyframe("end"), return_exceptions=True)
        errors = [r for r in (start, end) if isinstance(r, BaseException)]
        if errors:
            scene.start_keyframe.status = "failed"
            scene.end_keyframe.status = "failed"
            error = errors[0]
            if not isinstance(error, PipelineError):
                raise error
            logger.error(
                f"Keyframe generation failed for scene {run.index}: {error}",
                extra={"script_id": self.script.id, "scene_index": run.index}
            )
            return SceneEvent.fail(_failure_reason(error), str(error))

        scene.start_keyframe.image_url = start.url
        scene.start_keyframe.status = "completed"
        scene.end_keyframe.image_url = end.url
        scene.end_keyframe.status = "completed"
        return SceneEvent.of(EventType.KEYFRAMES_GENERATED)

    async def _record_progress(self, run: _SceneRun) -> None:
        previous = self._video_at(run.index)
        if previous is not None:
            run.superseded_key = previous.storage_key
        self._store_video(run.index, SceneVideo(scene_index=run.index, status="generating"))

    async def _generate_video(self, run: _SceneRun) -> SceneEvent:
        scene = self.script.scene(run.index)
        try:
            run.result = await call_with_retry(
                self.generation_client.generate_video,
                build_video_prompt(scene),
                scene.start_keyframe.image_url,
                scene.end_keyframe.image_url,
                max_attempts=self.settings.generation_max_attempts,
                base_delay=self.settings.retry_base_delay,
                retryable_exceptions=(RemoteTransientError,)
            )
        except (ValidationError, GenerationError, RemoteTransientError) as e:
            logger.error(
                f"Video generation failed for scene {run.index}: {e}",
                extra={"script_id": self.script.id, "scene_index": run.index}
            )
            return SceneEvent.fail(_failure_reason(e), str(e))
        return SceneEvent.of(EventType.VIDEO_GENERATED)

    async def _download(self, url: str, destination: Path) -> Path:
        return await download_to_file(url, destination, timeout=self.settings.download_timeout_seconds)

    async def _download_video(self, run: _SceneRun) -> SceneEvent:
        run.work_dir = Path(tempfile.mkdtemp(prefix=f"scene_{run.index}_"))
        try:
            run.download_path = await self.downloader(run.result.url, run.work_dir / "original.mp4")
        except (ValidationError, RetryableError) as e:
            return SceneEvent.fail(FailureReason.DOWNLOAD_FAILED, str(e))

        try:
            run.generation_id = run.result.require_generation_id()
        except MissingGenerationId as e:
            logger.error(
                f"Generated video for scene {run.index} has no generation id",
                extra={"script_id": self.script.id, "scene_index": run.index, "url": run.result.url}
            )
            return SceneEvent.fail(FailureReason.MISSING_GENERATION_ID, str(e))
        return SceneEvent.of(EventType.VIDEO_DOWNLOADED)

    async def _compress_video(self, run: _SceneRun) -> SceneEvent:
        try:
            run.compressed_path = await self.transformer.compress(
                run.download_path,
                max_width=self.settings.compression_max_width,
                target_size_bytes=self.settings.compression_target_bytes,
                output_path=run.work_dir / "compressed.mp4"
            )
        except TransformFailed as e:
            return SceneEvent.fail(FailureReason.TRANSFORM_FAILED, str(e))
        return SceneEvent.of(EventType.VIDEO_COMPRESSED)

    def _upload_metadata(self, run: _SceneRun, file_size: int) -> Dict[str, str]:
        scene = self.script.scene(run.index)
        now = datetime.now(timezone.utc)
        return {
            "sceneId": scene.id,
            "sceneIndex": str(run.index),
            "userId": self.script.user_id,
            "scriptId": self.script.id,
            "timestamp": str(int(now.timestamp())),
            "model": self.settings.video_model,
            "fileSize": str(file_size),
            GENERATION_ID_KEY: run.generation_id,
            "generatedAt": now.isoformat(),
            "contentType": "video/mp4",
        }

    async def _upload_video(self, run: _SceneRun) -> SceneEvent:
        file_size = run.compressed_path.stat().st_size
        metadata = self._upload_metadata(run, file_size)

        async def _attempt():
            key = f"{scene_prefix(self.script.id)}/{run.index}_{uuid4()}.mp4"
            run.attempted_keys.append(key)
            url = await self.store.upload(run.compressed_path, key, metadata, content_type="video/mp4")
            return key, url

        try:
            run.storage_key, run.video_url = await call_with_retry(
                _attempt,
                max_attempts=self.settings.upload_max_attempts,
                base_delay=self.settings.retry_base_delay,
                retryable_exceptions=(UploadFailed,)
            )
        except UploadFailed as e:
            logger.error(
                f"Upload failed for scene {run.index} after {len(run.attempted_keys)} attempts",
                extra={"script_id": self.script.id, "scene_index": run.index, "error": str(e)}
            )
            return SceneEvent.fail(FailureReason.UPLOAD_FAILED, str(e))

        run.metadata = metadata
        return SceneEvent.of(EventType.VIDEO_UPLOADED)

    async def _verify_upload(self, run: _SceneRun) -> SceneEvent:
        try:
            stored = await self.store.get_metadata(run.storage_key)
        except StorageFailure as e:
            return SceneEvent.fail(FailureReason.VERIFICATION_FAILED, str(e))
        if stored.get(GENERATION_ID_KEY) != run.generation_id:
            return SceneEvent.fail(
                FailureReason.VERIFICATION_FAILED,
                f"Stored clip {run.storage_key} is missing its generation id"
            )
        return SceneEvent.of(EventType.UPLOAD_VERIFIED)

    async def _record_video(self, run: _SceneRun) -> None:
        self._store_video(run.index, SceneVideo(
            scene_index=run.index,
            video_url=run.video_url,
            duration=self.settings.scene_duration_seconds,
            metadata=run.metadata,
            status="completed",
            storage_key=run.storage_key,
        ))
        if run.superseded_key and run.superseded_key != run.storage_key:
            await self._delete_quietly(run.superseded_key)

    async def _record_failure(self, run: _SceneRun) -> None:
        state = self._states[run.index]
        reason = state.failure_reason.value if state.failure_reason else "unknown"
        self._store_video(run.index, SceneVideo(
            scene_index=run.index,
            status="failed",
            error=f"{reason}: {state.failure_detail}" if state.failure_detail else reason,
        ))

    async def _cleanup(self, run: _SceneRun) -> None:
        if run.work_dir is None:
            return
        work_dir, run.work_dir = run.work_dir, None
        try:
            shutil.rmtree(work_dir)
        except OSError as e:
            logger.warning(
                f"Failed to remove temp files for scene {run.index}: {str(e)}",
                extra={"script_id": self.script.id, "scene_index": run.index, "path": str(work_dir)}
            )

    async def _delete_quietly(self, key: str) -> bool:
        try:
            return await self.store.delete(key)
        except StorageFailure as e:
            logger.warning(
                f"Failed to delete artifact {key}: {str(e)}",
                extra={"script_id": self.script.id, "path": key}
            )
            return False
