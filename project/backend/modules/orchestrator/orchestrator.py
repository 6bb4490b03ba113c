"""
Project orchestrator.

Owns a script's lifecycle: scene writing, keyframe editing, video generation
and the final stitch. Every mutation persists the full script document.
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from modules.generation_client.client import GenerationClient
from modules.media_transform.compressor import MediaTransformer
from modules.orchestrator.scene_writer import SceneWriter
from modules.orchestrator.status import ProjectStatus, derive_status
from modules.scene_pipeline.controller import ScenePipelineController, final_video_key
from modules.scene_pipeline.state import SceneState
from modules.scene_pipeline.videos import all_complete, ordered_completed
from modules.stitching.stitcher import VideoStitcher
from shared.config import Settings
from shared.database import DatabaseClient, ScriptRepository
from shared.errors import ConfigError, PipelineError, StitchingError, StorageFailure, ValidationError
from shared.logging import get_logger, set_script_id
from shared.models.draft import Draft, ReferenceText
from shared.models.script import Keyframe, ReferenceImage, Scene, SceneVideo, Script, ScriptStatus
from shared.storage import ArtifactStore

logger = get_logger("orchestrator")

ControllerFactory = Callable[[Script], ScenePipelineController]


def build_stitch_prompt(script: Script, videos: List[SceneVideo]) -> str:
    """Descriptive prompt sent along with the clips to stitch."""
    flow = " → ".join(scene.content for scene in sorted(script.scenes, key=lambda s: s.index))
    return "\n".join([
        "Complete story sequence with smooth transitions.",
        f"Title: {script.title or 'Untitled Story'}",
        f"Story Overview: {script.script_overview or 'A sequence of story scenes'}",
        "Style: Cinematic, high quality, detailed, photorealistic",
        "Transitions: Create smooth, natural transitions between scenes while maintaining "
        "visual consistency and character appearance.",
        f"Scene Count: {len(videos)} scenes",
        f"Scene Flow: {flow}",
    ])


class ProjectOrchestrator:
    """Coordinates scripts across scene writing, the scene pipeline and stitching."""

    def __init__(
        self,
        settings: Settings,
        repository: ScriptRepository,
        store: ArtifactStore,
        scene_writer: SceneWriter,
        controller_factory: ControllerFactory,
        stitcher: Optional[VideoStitcher] = None
    ):
        self.settings = settings
        self.repository = repository
        self.store = store
        self.scene_writer = scene_writer
        self.controller_factory = controller_factory
        self.stitcher = stitcher
        self._controllers: Dict[str, ScenePipelineController] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProjectOrchestrator":
        """Wire an orchestrator to the real Supabase, Replicate, OpenAI and Cloudinary clients."""
        repository = ScriptRepository(DatabaseClient(settings), table_name=settings.scripts_table)
        store = ArtifactStore(settings)
        generation_client = GenerationClient(settings)
        transformer = MediaTransformer(settings)

        def _controller(script: Script) -> ScenePipelineController:
            return ScenePipelineController(
                script,
                settings,
                repository,
                generation_client,
                transformer,
                store
            )

        stitcher = VideoStitcher(settings) if settings.stitching_configured else None
        return cls(settings, repository, store, SceneWriter(settings), _controller, stitcher)

    def controller(self, script: Script) -> ScenePipelineController:
        """Controller bound to this script object; reused so per-scene locks are shared."""
        controller = self._controllers.get(script.id)
        if controller is None or controller.script is not script:
            controller = self.controller_factory(script)
            self._controllers[script.id] = controller
        return controller

    async def _save(self, script: Script) -> None:
        await self.repository.save(script)

    # ------------------------------------------------------------------
    # Script lifecycle
    # ------------------------------------------------------------------

    async def start_script(
        self,
        draft: Draft,
        character_id: Optional[str] = None,
        character_images: Optional[List[ReferenceImage]] = None,
        reference_images: Optional[List[ReferenceImage]] = None,
        reference_text_ids: Optional[List[str]] = None
    ) -> Script:
        """Create and persist a new script for a draft."""
        script = Script(
            draft_id=draft.id,
            user_id=draft.user_id,
            title=draft.title,
            status=ScriptStatus.DRAFT,
            selected_character_id=character_id,
            selected_character_images=character_images or [],
            selected_reference_images=reference_images or [],
            selected_reference_text_ids=(
                reference_text_ids if reference_text_ids is not None else list(draft.reference_text_ids)
            ),
        )
        await self._save(script)
        set_script_id(script.id)
        logger.info("Created script", extra={"script_id": script.id, "draft_id": draft.id})
        return script

    async def load_script(self, draft_id: str, user_id: str) -> Optional[Script]:
        """Most recent script for a draft, or None."""
        script = await self.repository.find_by_draft(draft_id, user_id)
        if script is not None:
            set_script_id(script.id)
            logger.info(
                "Loaded script",
                extra={"script_id": script.id, "status": script.status.value}
            )
        return script

    def status(self, script: Script) -> ProjectStatus:
        return derive_status(script)

    async def generate_scenes(
        self,
        script: Script,
        draft: Draft,
        reference_texts: Optional[List[ReferenceText]] = None,
        character_description: Optional[str] = None
    ) -> Script:
        """
        Write the script's scenes from a draft.

        Replaces any existing scenes and clears generated videos.

        Raises:
            ValidationError: If the draft does not belong to the script
            PipelineError: Scene writing failure; the script is marked failed
        """
        set_script_id(script.id)
        if draft.id != script.draft_id:
            raise ValidationError(f"Draft {draft.id} does not belong to script {script.id}", script_id=script.id)

        script.status = ScriptStatus.GENERATING_SCRIPT
        script.error = None
        await self._save(script)

        selected = set(script.selected_reference_text_ids)
        texts = [t.content for t in reference_texts or [] if not selected or t.id in selected]

        try:
            written = await self.scene_writer.write_scenes(
                draft.content,
                reference_texts=texts,
                character_description=character_description,
                script_id=script.id
            )
        except PipelineError as e:
            script.status = ScriptStatus.FAILED
            script.error = str(e)
            await self._save(script)
            logger.error(
                f"Scene generation failed: {str(e)}",
                extra={"script_id": script.id}
            )
            raise

        script.script_overview = written.script_overview
        script.scenes = [
            Scene(
                index=index,
                content=scene.content,
                visual_description=scene.visual_description,
                start_keyframe=Keyframe(prompt=scene.start_keyframe_prompt),
                end_keyframe=Keyframe(prompt=scene.end_keyframe_prompt),
            )
            for index, scene in enumerate(written.scenes)
        ]
        script.scene_videos = []
        script.final_video_url = None
        script.status = ScriptStatus.EDITING_KEYFRAMES
        self._controllers.pop(script.id, None)
        await self._save(script)

        logger.info(
            f"Generated {len(script.scenes)} scenes",
            extra={"script_id": script.id, "scene_count": len(script.scenes)}
        )
        return script

    async def delete_script(self, script: Script) -> None:
        """Delete a script document and, best-effort, its stored artifacts."""
        set_script_id(script.id)
        removed = await self.controller(script).delete_all_artifacts()
        await self.repository.delete(script.id)
        self._controllers.pop(script.id, None)
        logger.info(
            "Deleted script",
            extra={"script_id": script.id, "artifacts_removed": removed}
        )

    # ------------------------------------------------------------------
    # Keyframes
    # ------------------------------------------------------------------

    async def generate_keyframes(
        self,
        script: Script,
        scene_index: int,
        reference_images: Optional[List[ReferenceImage]] = None
    ) -> SceneState:
        return await self.controller(script).generate_keyframes(scene_index, reference_images)

    async def regenerate_keyframes(
        self,
        script: Script,
        scene_index: int,
        start_prompt: Optional[str] = None,
        end_prompt: Optional[str] = None,
        reference_images: Optional[List[ReferenceImage]] = None
    ) -> SceneState:
        return await self.controller(script).regenerate_keyframes(
            scene_index,
            start_prompt=start_prompt,
            end_prompt=end_prompt,
            reference_images=reference_images
        )

    async def prepare_for_video_generation(self, script: Script) -> Script:
        """
        Move the script into video generation.

        Raises:
            ValidationError: If the script has no scenes or a keyframe is incomplete
        """
        if not script.scenes:
            raise ValidationError("Script has no scenes", script_id=script.id)
        incomplete = [s.index for s in script.scenes if not s.keyframes_complete]
        if incomplete:
            raise ValidationError(
                f"Keyframes incomplete for scenes {incomplete}",
                script_id=script.id
            )
        script.status = ScriptStatus.GENERATING_VIDEO
        await self._save(script)
        return script

    # ------------------------------------------------------------------
    # Videos
    # ------------------------------------------------------------------

    async def generate_videos(self, script: Script) -> Dict[int, SceneState]:
        """
        Generate every missing scene clip, reusing clips already in storage.

        Returns:
            Final state per scene index
        """
        set_script_id(script.id)
        if script.status is not ScriptStatus.GENERATING_VIDEO:
            await self.prepare_for_video_generation(script)

        controller = self.controller(script)
        await controller.load_existing_videos()
        states = await controller.generate_all_videos()

        logger.info(
            "Scene video generation finished",
            extra={
                "script_id": script.id,
                "progress": controller.progress,
                "complete": self.are_all_scenes_complete(script),
            }
        )
        return states

    async def regenerate_video(self, script: Script, scene_index: int) -> SceneState:
        return await self.controller(script).regenerate_video(scene_index)

    async def delete_video(self, script: Script, scene_index: int) -> None:
        await self.controller(script).delete_video(scene_index)

    def are_all_scenes_complete(self, script: Script) -> bool:
        """True iff every scene index has a completed video."""
        return all_complete(script.scene_videos, len(script.scenes))

    async def generate_complete_video(self, script: Script) -> Path:
        """
        Stitch all scene clips into the final video.

        The composed video is downloaded locally, stored under the script's
        final-video key and recorded on the script.

        Returns:
            Local path of the stitched video

        Raises:
            ConfigError: If stitching is not configured
            ValidationError: If any scene lacks a completed clip
            StitchingError: If remote composition or its download fails
        """
        set_script_id(script.id)
        if self.stitcher is None:
            raise ConfigError("Stitching is not configured", script_id=script.id)
        if not self.are_all_scenes_complete(script):
            raise ValidationError("No videos available to stitch together", script_id=script.id)

        videos = ordered_completed(script.scene_videos)
        prompt = build_stitch_prompt(script, videos)

        try:
            composed_url = await self.stitcher.stitch([v.video_url for v in videos], prompt)
            destination = Path(tempfile.mkdtemp(prefix=f"final_{script.id}_")) / "final.mp4"
            local_path = await self.stitcher.download(composed_url, destination)
        except StitchingError as e:
            script.error = str(e)
            await self._save(script)
            logger.error(f"Video stitching failed: {str(e)}", extra={"script_id": script.id})
            raise

        key = final_video_key(script.id)
        try:
            await self.store.delete(key)
        except StorageFailure as e:
            logger.warning(
                f"Could not remove previous final video: {str(e)}",
                extra={"script_id": script.id, "path": key}
            )
        metadata = {
            "scriptId": script.id,
            "userId": script.user_id,
            "sceneCount": str(len(videos)),
            "stitchedUrl": composed_url,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "contentType": "video/mp4",
        }
        script.final_video_url = await self.store.upload(local_path, key, metadata, content_type="video/mp4")
        script.status = ScriptStatus.COMPLETED
        script.error = None
        await self._save(script)

        logger.info(
            "Final video generated",
            extra={"script_id": script.id, "url": script.final_video_url, "path": str(local_path)}
        )
        return local_path
