"""
Cloudinary video stitching.

Uploads each clip to Cloudinary by remote URL, then builds a delivery URL whose
transformation splices the clips in order with a fade between them. Remote
errors are surfaced as StitchingError; nothing here retries.
"""

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import cloudinary
import cloudinary.uploader
import httpx
from cloudinary.exceptions import Error as CloudinaryError

from modules.stitching.config import OUTPUT_FORMAT, RESOURCE_TYPE, TRANSITION_NAME
from shared.config import Settings
from shared.errors import ConfigError, StitchingError, ValidationError
from shared.logging import get_logger

logger = get_logger("stitching")


def _overlay_id(public_id: str) -> str:
    # Overlay references use ':' as the folder separator
    return public_id.replace("/", ":")


def build_splice_transformation(
    public_ids: List[str],
    clip_duration: int = 5,
    transition_duration: int = 1
) -> List[Dict[str, Any]]:
    """
    Chained transformation concatenating `public_ids` in order with fades.

    The first clip is the base layer; every following clip is spliced on as a
    video overlay trimmed to `clip_duration`.
    """
    if not public_ids:
        raise ValidationError("At least one clip is required to build a splice transformation")

    transformation: List[Dict[str, Any]] = [{"duration": clip_duration}]
    for public_id in public_ids[1:]:
        transformation.extend([
            {
                "flags": f"splice:transition_(name_{TRANSITION_NAME};du_{transition_duration})",
                "overlay": f"video:{_overlay_id(public_id)}",
            },
            {"duration": clip_duration},
            {"flags": "layer_apply"},
        ])
    return transformation


class VideoStitcher:
    """Composes scene clips into a single video through Cloudinary."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize stitcher.

        Args:
            settings: Pipeline settings (Cloudinary credentials and durations)
            http_client: Optional shared httpx client for downloads

        Raises:
            ConfigError: If Cloudinary credentials are missing
        """
        if not settings.stitching_configured:
            raise ConfigError("Cloudinary credentials are required for stitching")
        self.settings = settings
        self.cloud_name = settings.cloudinary_cloud_name
        self.http_client = http_client
        self._credentials = {
            "cloud_name": settings.cloudinary_cloud_name,
            "api_key": settings.cloudinary_api_key,
            "api_secret": settings.cloudinary_api_secret,
        }

    async def _execute_sync(self, func: Callable[[], Any]) -> Any:
        """Run a blocking Cloudinary SDK call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func)

    async def _upload_clip(self, clip_url: str) -> str:
        """Upload one clip by remote URL and return its Cloudinary public id."""
        try:
            result = await self._execute_sync(
                lambda: cloudinary.uploader.upload(
                    clip_url,
                    resource_type=RESOURCE_TYPE,
                    upload_preset=self.settings.cloudinary_upload_preset or None,
                    timeout=self.settings.stitch_timeout_seconds,
                    **self._credentials
                )
            )
        except CloudinaryError as e:
            raise StitchingError(f"Cloudinary upload failed: {str(e)}") from e

        public_id = (result or {}).get("public_id")
        if not public_id:
            raise StitchingError("No public ID in Cloudinary upload response")
        return public_id

    def build_url(self, public_ids: List[str]) -> str:
        """Delivery URL of the spliced video, based on the first clip."""
        transformation = build_splice_transformation(
            public_ids,
            clip_duration=self.settings.stitch_clip_duration,
            transition_duration=self.settings.stitch_transition_duration
        )
        return cloudinary.CloudinaryVideo(public_ids[0]).build_url(
            transformation=transformation,
            format=OUTPUT_FORMAT,
            secure=True,
            cloud_name=self.cloud_name
        )

    async def stitch(self, ordered_clip_urls: List[str], descriptive_prompt: str = "") -> str:
        """
        Stitch clips into one video.

        Args:
            ordered_clip_urls: Clip URLs, already sorted by scene index
            descriptive_prompt: Human-readable description, used for logging

        Returns:
            Delivery URL of the composed video

        Raises:
            ValidationError: If no clips are given
            StitchingError: On any remote failure
        """
        if not ordered_clip_urls:
            raise ValidationError("No videos available to stitch together")

        logger.info(
            f"Stitching {len(ordered_clip_urls)} clips",
            extra={"clip_count": len(ordered_clip_urls), "prompt": descriptive_prompt}
        )

        public_ids = []
        for index, clip_url in enumerate(ordered_clip_urls):
            public_id = await self._upload_clip(clip_url)
            logger.info(
                f"Uploaded clip {index + 1}/{len(ordered_clip_urls)} to Cloudinary",
                extra={"clip_url": clip_url, "public_id": public_id}
            )
            public_ids.append(public_id)

        composed_url = self.build_url(public_ids)
        logger.info("Generated stitched video URL", extra={"url": composed_url})
        return composed_url

    async def download(self, composed_url: str, destination: Path) -> Path:
        """
        Download the composed video to a local file.

        Cloudinary renders the transformation on first request, so the
        timeout is the stitching timeout rather than the clip download one.

        Raises:
            StitchingError: If the download fails or yields an empty file
        """
        destination = Path(destination)
        client = self.http_client or httpx.AsyncClient(timeout=self.settings.stitch_timeout_seconds)
        try:
            async with client.stream("GET", composed_url) as response:
                response.raise_for_status()
                with open(destination, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise StitchingError(f"Failed to download stitched video: {str(e)}") from e
        finally:
            if self.http_client is None:
                await client.aclose()

        if destination.stat().st_size == 0:
            raise StitchingError("Stitched video download is empty")

        logger.info(
            "Downloaded stitched video",
            extra={"url": composed_url, "path": str(destination), "size": destination.stat().st_size}
        )
        return destination
