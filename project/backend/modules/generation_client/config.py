"""
Generation client configuration.

Limits, provider statuses and error markers for the remote generation client.
"""

# Input limits
MAX_REFERENCE_IMAGES = 4

# Luma accepts reference weights in a narrower band than the [0, 1] we store
PROVIDER_WEIGHT_MIN = 0.3
PROVIDER_WEIGHT_MAX = 0.7

# Replicate prediction statuses
TERMINAL_STATUSES = ("succeeded", "failed", "canceled")

# Polling
POLL_BACKOFF_EXPONENT_CAP = 6  # 2**6 = 64s before the max-interval cap applies
POLL_JITTER_SECONDS = 0.5

# Substrings marking a failure as transient (retryable)
TRANSIENT_ERROR_MARKERS = (
    "rate limit",
    "429",
    "timeout",
    "timed out",
    "try again later",
    "internal error",
    "code 13",
    "unavailable",
    "502",
    "503",
    "504",
    "connection",
    "network",
)
