"""
Error types.

Exception hierarchy shared by all pipeline modules.
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for the scene video pipeline."""

    def __init__(self, message: str, script_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.script_id = script_id


class ConfigError(PipelineError):
    """Configuration is missing or invalid."""


class ValidationError(PipelineError):
    """Input failed validation. Never retried."""


class InvalidTransition(PipelineError):
    """A scene event is not allowed in the scene's current phase."""

    def __init__(self, phase: str, event: str):
        super().__init__(f"Event '{event}' is not allowed in phase '{phase}'")
        self.phase = phase
        self.event = event


class RetryableError(PipelineError):
    """Transient failure; safe to retry with backoff."""


class GenerationError(PipelineError):
    """Remote generation failed permanently for this attempt."""


class RemoteTransientError(RetryableError):
    """Network error, rate limit or 5xx from a remote generation service."""


class RemoteRejected(GenerationError):
    """Remote service rejected the request (policy, bad prompt, failed job)."""


class RemoteTimeout(GenerationError):
    """Remote job did not reach a terminal state within the wait bound."""


class MissingGenerationId(GenerationError):
    """A generation result carries no provider-assigned identifier."""


class SceneWritingError(GenerationError):
    """The text model did not return a usable scene breakdown."""


class StorageFailure(RetryableError):
    """Object storage operation failed."""


class UploadFailed(StorageFailure):
    """Upload of an artifact failed."""


class NotFound(PipelineError):
    """Requested object or document does not exist. Not retried."""


class TransformFailed(PipelineError):
    """Local media transform failed (corrupt input, codec error)."""


class StitchingError(PipelineError):
    """Remote composition of clips failed."""
