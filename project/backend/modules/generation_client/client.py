"""
Remote generation client.

Submits keyframe (image) and image-pair-to-video jobs to Replicate-hosted Luma
models and polls each prediction until it reaches a terminal state.
"""

import asyncio
import random
from time import monotonic
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import httpx
import replicate
from pydantic import BaseModel, Field
from replicate.exceptions import ModelError, ReplicateError

from modules.generation_client.config import (
    MAX_REFERENCE_IMAGES,
    POLL_BACKOFF_EXPONENT_CAP,
    POLL_JITTER_SECONDS,
    PROVIDER_WEIGHT_MAX,
    PROVIDER_WEIGHT_MIN,
    TERMINAL_STATUSES,
    TRANSIENT_ERROR_MARKERS,
)
from shared.config import Settings
from shared.errors import (
    MissingGenerationId,
    PipelineError,
    RemoteRejected,
    RemoteTimeout,
    RemoteTransientError,
    ValidationError,
)
from shared.logging import get_logger
from shared.models.script import ReferenceImage

logger = get_logger("generation_client")


class GenerationResult(BaseModel):
    """Terminal result of a remote generation job."""

    url: str
    generation_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    def require_generation_id(self) -> str:
        """
        Provenance identifier of this result.

        Raises:
            MissingGenerationId: If the provider assigned none
        """
        if not self.generation_id:
            raise MissingGenerationId(f"Generation result {self.url} carries no identifier")
        return self.generation_id


def extract_generation_id(url: str) -> Optional[str]:
    """
    Recover a Luma generation id from a result URL.

    API URLs end with the id; CDN file names are prefixed with it
    (``<id>_<suffix>.mp4``).
    """
    if not url:
        return None
    parsed = urlparse(url)
    last_component = parsed.path.rstrip("/").rsplit("/", 1)[-1]
    if not last_component:
        return None
    if parsed.netloc == "api.lumalabs.ai":
        return last_component
    if "_" in last_component:
        prefix = last_component.split("_", 1)[0]
        return prefix or None
    return None


def classify_error(error: Exception) -> PipelineError:
    """Map a provider or transport exception onto the pipeline taxonomy."""
    if isinstance(error, PipelineError):
        return error
    if isinstance(error, httpx.TransportError):
        return RemoteTransientError(f"Network error: {str(error)}")
    if isinstance(error, ReplicateError):
        status = getattr(error, "status", None)
        if status is not None and (status == 429 or status >= 500):
            return RemoteTransientError(f"Replicate error {status}: {str(error)}")
        if status is not None and 400 <= status < 500:
            return RemoteRejected(f"Replicate rejected request ({status}): {str(error)}")

    error_str = str(error).lower()
    if isinstance(error, ModelError):
        logs = getattr(getattr(error, "prediction", None), "logs", "") or ""
        error_str = f"{error_str} {str(logs).lower()}"
    if any(marker in error_str for marker in TRANSIENT_ERROR_MARKERS):
        return RemoteTransientError(f"Transient generation error: {str(error)}")
    return RemoteRejected(f"Generation rejected: {str(error)}")


def _provider_weight(weight: float) -> float:
    return max(PROVIDER_WEIGHT_MIN, min(PROVIDER_WEIGHT_MAX, weight))


def _output_url(output: Any) -> str:
    if isinstance(output, list):
        if not output:
            raise RemoteRejected("Prediction succeeded without output")
        output = output[0]
    if isinstance(output, str):
        return output
    url = getattr(output, "url", None)
    if isinstance(url, str) and url:
        return url
    raise RemoteRejected(f"Unexpected output format: {type(output)}")


class GenerationClient:
    """Keyframe and video generation behind one request/response contract."""

    def __init__(self, settings: Settings, client: Optional[replicate.Client] = None):
        self.settings = settings
        self.client = client or replicate.Client(api_token=settings.replicate_api_token)
        self.keyframe_model = settings.keyframe_model
        self.video_model = settings.video_model
        self.timeout = settings.generation_timeout_seconds
        self.max_poll_interval = settings.generation_poll_max_interval

    async def _execute_sync(self, func: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func)

    def _validate_references(self, reference_images: List[ReferenceImage]) -> None:
        if len(reference_images) > MAX_REFERENCE_IMAGES:
            raise ValidationError(
                f"At most {MAX_REFERENCE_IMAGES} reference images are allowed, "
                f"got {len(reference_images)}"
            )
        for image in reference_images:
            if not 0.0 <= image.weight <= 1.0:
                raise ValidationError(f"Reference weight {image.weight} outside [0, 1]")
            if not image.url:
                raise ValidationError("Reference image URL must not be empty")

    def _keyframe_input(
        self,
        prompt: str,
        reference_images: List[ReferenceImage],
        style_reference: Optional[ReferenceImage]
    ) -> Dict[str, Any]:
        input_data: Dict[str, Any] = {
            "prompt": prompt,
            "aspect_ratio": self.settings.aspect_ratio,
        }
        characters = [r for r in reference_images if r.kind == "character"]
        images = [r for r in reference_images if r.kind == "reference"]

        if images:
            input_data["image_reference_url"] = images[0].url
            input_data["image_reference_weight"] = _provider_weight(images[0].weight)
        if characters:
            input_data["character_reference_url"] = characters[0].url
        if style_reference is not None:
            input_data["style_reference_url"] = style_reference.url
            input_data["style_reference_weight"] = _provider_weight(style_reference.weight)

        dropped = max(0, len(images) - 1) + max(0, len(characters) - 1)
        if dropped:
            logger.debug(
                f"Model accepts one reference per kind, ignoring {dropped} extra reference(s)",
                extra={"model": self.keyframe_model, "dropped": dropped}
            )
        return input_data

    async def generate_keyframe(
        self,
        prompt: str,
        reference_images: Optional[List[ReferenceImage]] = None,
        style_reference: Optional[ReferenceImage] = None
    ) -> GenerationResult:
        """
        Generate a keyframe image.

        Args:
            prompt: Image prompt (non-empty)
            reference_images: Up to four weighted reference images
            style_reference: Optional image whose style the result should follow

        Returns:
            GenerationResult with the image URL

        Raises:
            ValidationError: Invalid input (never retried)
            RemoteRejected: Provider refused or failed the job
            RemoteTimeout: Job did not finish within the wait bound
            RemoteTransientError: Retryable provider or network failure
        """
        if not prompt or not prompt.strip():
            raise ValidationError("Keyframe prompt must not be empty")
        reference_images = list(reference_images or [])
        self._validate_references(reference_images)

        input_data = self._keyframe_input(prompt, reference_images, style_reference)
        return await self._run(self.keyframe_model, input_data)

    async def generate_video(
        self,
        prompt: str,
        start_image_url: str,
        end_image_url: str
    ) -> GenerationResult:
        """
        Generate a clip that moves from the start image to the end image.

        Raises:
            ValidationError: Empty prompt or missing keyframe URL
            RemoteRejected, RemoteTimeout, RemoteTransientError: see generate_keyframe
        """
        if not prompt or not prompt.strip():
            raise ValidationError("Video prompt must not be empty")
        if not start_image_url or not end_image_url:
            raise ValidationError("Both start and end keyframe URLs are required")

        input_data = {
            "prompt": prompt,
            "start_image_url": start_image_url,
            "end_image_url": end_image_url,
            "loop": False,
            "aspect_ratio": self.settings.aspect_ratio,
        }
        return await self._run(self.video_model, input_data)

    async def _run(self, model: str, input_data: Dict[str, Any]) -> GenerationResult:
        logger.info(
            f"Submitting generation to {model}",
            extra={"model": model, "input_params": list(input_data.keys())}
        )
        try:
            prediction = await self._execute_sync(
                lambda: self.client.predictions.create(model=model, input=input_data)
            )
        except Exception as e:
            raise classify_error(e) from e

        start_time = monotonic()
        prediction = await self._wait(prediction, model)
        elapsed = monotonic() - start_time

        if prediction.status == "succeeded":
            url = _output_url(prediction.output)
            generation_id = getattr(prediction, "id", None) or extract_generation_id(url)
            metadata = {"model": model}
            if generation_id:
                metadata["generationId"] = generation_id
            logger.info(
                f"Generation completed on {model}",
                extra={"model": model, "generation_id": generation_id, "elapsed": round(elapsed, 1)}
            )
            return GenerationResult(url=url, generation_id=generation_id, metadata=metadata)

        if prediction.status == "canceled":
            raise RemoteRejected(f"Generation {prediction.id} was canceled")

        error = classify_error(Exception(str(prediction.error or "unknown error")))
        logger.error(
            f"Generation failed on {model}: {prediction.error}",
            extra={"model": model, "prediction_id": prediction.id, "error": str(prediction.error)}
        )
        raise error

    async def _wait(self, prediction, model: str):
        """Poll until terminal, backing off exponentially between polls."""
        start_time = monotonic()
        attempt = 0

        while prediction.status not in TERMINAL_STATUSES:
            elapsed = monotonic() - start_time
            if elapsed >= self.timeout:
                await self._cancel(prediction)
                raise RemoteTimeout(
                    f"Generation {prediction.id} on {model} did not finish within {self.timeout:.0f}s"
                )

            delay = min(2 ** min(attempt, POLL_BACKOFF_EXPONENT_CAP), self.max_poll_interval)
            delay = min(delay, max(self.timeout - elapsed, 0.0))
            await asyncio.sleep(delay + random.uniform(0, POLL_JITTER_SECONDS))
            attempt += 1

            try:
                await self._execute_sync(prediction.reload)
            except Exception as e:
                raise classify_error(e) from e

            logger.debug(
                f"Prediction {prediction.id} status: {prediction.status}",
                extra={"model": model, "attempt": attempt}
            )

        return prediction

    async def _cancel(self, prediction) -> None:
        try:
            await self._execute_sync(prediction.cancel)
        except Exception as e:
            logger.warning(
                f"Failed to cancel prediction {prediction.id}: {str(e)}",
                extra={"prediction_id": prediction.id}
            )
