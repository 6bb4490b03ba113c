"""
Utility functions for media transform module.

FFmpeg command execution and ffprobe inspection.
"""
import asyncio
import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from shared.errors import TransformFailed
from shared.logging import get_logger

logger = get_logger("media_transform.utils")


class VideoProbe(BaseModel):
    """Properties of a local video file."""

    duration: float
    width: Optional[int] = None
    height: Optional[int] = None
    has_audio: bool = False


async def _run(cmd: List[str], timeout: int) -> bytes:
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except FileNotFoundError as e:
        raise TransformFailed(f"{cmd[0]} is not installed") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        process.kill()
        await process.wait()
        raise TransformFailed(f"{cmd[0]} timed out after {timeout}s") from e

    if process.returncode != 0:
        error_msg = stderr.decode(errors="replace") if stderr else "Unknown error"
        logger.error(
            f"{cmd[0]} failed: {error_msg[-500:]}",
            extra={"command": cmd, "returncode": process.returncode}
        )
        raise TransformFailed(f"{cmd[0]} failed: {error_msg[-500:]}")
    return stdout


async def run_ffmpeg_command(cmd: List[str], timeout: int = 300) -> None:
    """
    Run an FFmpeg command.

    Codec errors are properties of the input, so failures are not retried.

    Args:
        cmd: FFmpeg command as list of strings
        timeout: Timeout in seconds (default: 300)

    Raises:
        TransformFailed: If the command fails or times out
    """
    logger.info(f"Running FFmpeg command: {' '.join(cmd)}", extra={"command": cmd})
    await _run(cmd, timeout)


async def probe_video(video_path: Path, timeout: int = 30) -> VideoProbe:
    """
    Read duration, dimensions and audio presence with ffprobe.

    Raises:
        TransformFailed: If the file cannot be parsed as a video
    """
    stdout = await _run(
        [
            "ffprobe",
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(video_path)
        ],
        timeout
    )
    try:
        data = json.loads(stdout or b"{}")
        streams = data.get("streams", [])
        video = next(s for s in streams if s.get("codec_type") == "video")
        duration = float(data.get("format", {}).get("duration") or video.get("duration"))
    except (ValueError, TypeError, StopIteration) as e:
        raise TransformFailed(f"Unreadable video {video_path.name}: {e}") from e

    return VideoProbe(
        duration=duration,
        width=video.get("width"),
        height=video.get("height"),
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
    )
