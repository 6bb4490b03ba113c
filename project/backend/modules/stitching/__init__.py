"""
Stitching module.

Remote composition of ordered scene clips into one video.
"""

from modules.stitching.stitcher import VideoStitcher, build_splice_transformation

__all__ = ["VideoStitcher", "build_splice_transformation"]
