"""
Video compression.

Re-encodes a local clip so it fits a maximum width and approaches a target
file size. Sources already under the target are copied unchanged.
"""
import asyncio
import shutil
from pathlib import Path
from typing import Optional

from modules.media_transform.config import (
    AUDIO_BITRATE,
    FFMPEG_PRESET,
    MAX_VIDEO_BITRATE,
    MIN_VIDEO_BITRATE,
    OUTPUT_AUDIO_CODEC,
    OUTPUT_VIDEO_CODEC,
)
from modules.media_transform.utils import probe_video, run_ffmpeg_command
from shared.config import Settings
from shared.errors import TransformFailed
from shared.logging import get_logger

logger = get_logger("media_transform.compressor")


def calculate_video_bitrate(duration: float, target_size_bytes: int, has_audio: bool) -> int:
    """
    Video bitrate (bits per second) that lands the output near the target size.

    Reserves room for a 128 kbps audio track when present and clamps the result
    to a minimum quality floor and a maximum useful ceiling.
    """
    if duration <= 0:
        return MIN_VIDEO_BITRATE
    audio_bytes = int(duration * AUDIO_BITRATE / 8) if has_audio else 0
    available_bytes = max(0, target_size_bytes - audio_bytes)
    bitrate = int(available_bytes * 8 / duration)
    return min(MAX_VIDEO_BITRATE, max(MIN_VIDEO_BITRATE, bitrate))


class MediaTransformer:
    """Local clip compression backed by FFmpeg."""

    def __init__(self, settings: Settings):
        self.max_width = settings.compression_max_width
        self.target_size_bytes = settings.compression_target_bytes
        self.timeout = settings.ffmpeg_timeout_seconds

    async def compress(
        self,
        local_path: Path,
        max_width: Optional[int] = None,
        target_size_bytes: Optional[int] = None,
        output_path: Optional[Path] = None
    ) -> Path:
        """
        Compress a clip.

        Args:
            local_path: Source video
            max_width: Output width bound in pixels (default from settings)
            target_size_bytes: Target output size (default from settings)
            output_path: Destination (default: "<stem>_compressed.mp4" next to source)

        Returns:
            Path of the compressed (or copied) file

        Raises:
            TransformFailed: Missing or corrupt input, codec error, timeout
        """
        local_path = Path(local_path)
        max_width = max_width or self.max_width
        target_size_bytes = target_size_bytes or self.target_size_bytes
        output_path = Path(output_path or local_path.with_name(f"{local_path.stem}_compressed.mp4"))

        if not local_path.is_file():
            raise TransformFailed(f"Input video not found: {local_path}")

        original_size = local_path.stat().st_size
        if original_size == 0:
            raise TransformFailed(f"Input video is empty: {local_path}")

        if original_size <= target_size_bytes:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, shutil.copyfile, local_path, output_path)
            logger.info(
                "Video already under target size, copied without re-encoding",
                extra={"size": original_size, "target_size": target_size_bytes}
            )
            return output_path

        probe = await probe_video(local_path)
        bitrate = calculate_video_bitrate(probe.duration, target_size_bytes, probe.has_audio)

        cmd = [
            "ffmpeg", "-y",
            "-i", str(local_path),
            "-vf", f"scale='min({max_width},iw)':-2",
            "-c:v", OUTPUT_VIDEO_CODEC,
            "-preset", FFMPEG_PRESET,
            "-b:v", str(bitrate),
            "-maxrate", str(bitrate),
            "-bufsize", str(bitrate * 2),
        ]
        if probe.has_audio:
            cmd += ["-c:a", OUTPUT_AUDIO_CODEC, "-b:a", str(AUDIO_BITRATE)]
        else:
            cmd += ["-an"]
        cmd += ["-movflags", "+faststart", str(output_path)]

        await run_ffmpeg_command(cmd, timeout=self.timeout)

        if not output_path.is_file() or output_path.stat().st_size == 0:
            raise TransformFailed(f"FFmpeg produced no output for {local_path.name}")

        compressed_size = output_path.stat().st_size
        logger.info(
            "Video compressed",
            extra={
                "original_size": original_size,
                "compressed_size": compressed_size,
                "reduction_pct": round((1 - compressed_size / original_size) * 100, 1),
                "video_bitrate": bitrate,
                "source_width": probe.width,
                "max_width": max_width,
            }
        )
        return output_path
