"""
Media transform module.

Local video compression to a maximum width and target file size.
"""

from modules.media_transform.compressor import MediaTransformer, calculate_video_bitrate

__all__ = ["MediaTransformer", "calculate_video_bitrate"]
