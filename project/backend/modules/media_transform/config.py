"""
Media transform configuration.

FFmpeg encoder settings and bitrate bounds for clip compression.
"""

# FFmpeg settings
FFMPEG_PRESET = "medium"
OUTPUT_VIDEO_CODEC = "libx264"
OUTPUT_AUDIO_CODEC = "aac"

# Bitrate bounds (bits per second)
AUDIO_BITRATE = 128_000
MIN_VIDEO_BITRATE = 800_000
MAX_VIDEO_BITRATE = 2_500_000
