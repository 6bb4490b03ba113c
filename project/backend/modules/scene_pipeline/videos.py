"""
Scene video collection helpers.

The scene-video list is indexed by scene index. Helpers here never mutate
their input; `with_video` returns a new list so readers always see a
consistent snapshot.
"""

from typing import List, Optional, Sequence

from shared.models.script import SceneVideo

SceneVideos = List[Optional[SceneVideo]]


def with_video(videos: Sequence[Optional[SceneVideo]], index: int, video: Optional[SceneVideo]) -> SceneVideos:
    """Copy of `videos` with slot `index` replaced, grown with empty slots as needed."""
    updated = list(videos)
    if len(updated) <= index:
        updated.extend([None] * (index + 1 - len(updated)))
    updated[index] = video
    return updated


def all_complete(videos: Sequence[Optional[SceneVideo]], scene_count: int) -> bool:
    """True iff there is exactly one completed video per scene."""
    if scene_count == 0 or len(videos) != scene_count:
        return False
    return all(video is not None and video.status == "completed" for video in videos)


def completed_count(videos: Sequence[Optional[SceneVideo]]) -> int:
    return sum(1 for video in videos if video is not None and video.status == "completed")


def progress(videos: Sequence[Optional[SceneVideo]], scene_count: int) -> float:
    """Fraction of scenes with a completed video."""
    if scene_count == 0:
        return 0.0
    return min(1.0, completed_count(videos) / scene_count)


def ordered_completed(videos: Sequence[Optional[SceneVideo]]) -> List[SceneVideo]:
    """Completed videos sorted by scene index, independent of slot order."""
    completed = [v for v in videos if v is not None and v.status == "completed"]
    return sorted(completed, key=lambda v: v.scene_index)
