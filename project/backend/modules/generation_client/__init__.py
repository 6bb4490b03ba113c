"""
Remote generation client.

Keyframe and image-pair-to-video generation with polling to completion.
"""

from modules.generation_client.client import (
    GenerationClient,
    GenerationResult,
    classify_error,
    extract_generation_id,
)

__all__ = ["GenerationClient", "GenerationResult", "classify_error", "extract_generation_id"]
