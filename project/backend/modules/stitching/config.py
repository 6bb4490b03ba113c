"""
Stitching configuration.

Cloudinary transformation constants.
"""

TRANSITION_NAME = "fade"
OUTPUT_FORMAT = "mp4"
RESOURCE_TYPE = "video"
