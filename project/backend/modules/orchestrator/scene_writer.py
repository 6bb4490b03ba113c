"""
Scene writing via OpenAI.

Breaks a story draft into a fixed number of short, visualizable scenes with
start and end keyframe prompts.
"""

import json
import re
from typing import List, Optional

from openai import APIError, APITimeoutError, AsyncOpenAI, RateLimitError
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from shared.config import Settings
from shared.errors import PipelineError, RemoteTransientError, SceneWritingError, ValidationError
from shared.logging import get_logger
from shared.retry import retry_with_backoff

logger = get_logger("orchestrator.scene_writer")


class WrittenScene(BaseModel):
    """One scene as returned by the model."""

    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(min_length=1)
    visual_description: str = Field(default="", alias="visualDescription")
    start_keyframe_prompt: str = Field(min_length=1, alias="startKeyframePrompt")
    end_keyframe_prompt: str = Field(min_length=1, alias="endKeyframePrompt")


class WrittenScript(BaseModel):
    """Scene writer output."""

    model_config = ConfigDict(populate_by_name=True)

    script_overview: str = Field(default="", alias="scriptOverview")
    scenes: List[WrittenScene]


def build_system_prompt(scene_count: int, scene_duration: float, character_description: Optional[str] = None) -> str:
    """Screenwriter instructions, optionally followed by a character description."""
    duration = f"{scene_duration:g}"
    total = f"{scene_count * scene_duration:g}"
    prompt = f"""You are a professional screenwriter and storyboard artist. Your task is to break down a story into exactly {scene_count} distinct scenes that can be visualized. Each scene should be exactly {duration} seconds long and have a clear visual description and specific prompts for generating start and end keyframe images. The total video will be exactly {total} seconds long.

Rules:
1. Generate EXACTLY {scene_count} scenes - no more, no less
2. Each scene must be precisely {duration} seconds long - write scenes that can be realistically shown in this timeframe
3. Keep actions simple and focused - one clear motion or transformation per scene
4. Each scene should be a logical progression of the story
5. Visual descriptions must explicitly describe dynamic actions, movements, and poses that can be completed in {duration} seconds
6. Start and end keyframes must show clear cause-and-effect progression within the {duration}-second timeframe
7. Start keyframes should capture the initiating action or moment
8. End keyframes should show the culmination or result of the scene's action
9. Maintain consistency in character appearance while varying poses and expressions
10. Total story is exactly {total} seconds ({scene_count} scenes x {duration} seconds each)
11. Focus on dramatic, visually impactful moments that show clear motion or action
12. Avoid complex dialogue or multiple simultaneous actions
13. Write scene descriptions that are concise and action-focused
14. Provide a concise but powerful overview of the entire script that captures its essence and themes

Output format:
Return a JSON object with:
{{
  "scriptOverview": "A concise but powerful overview of the entire script that captures its essence, themes, and visual style",
  "scenes": [
    {{
      "content": "Scene description and action (must be achievable in {duration} seconds)",
      "visualDescription": "Detailed visual description emphasizing dynamic elements and movements within the timeframe",
      "startKeyframePrompt": "Prompt capturing the initiating action or moment, with specific character poses and expressions",
      "endKeyframePrompt": "Prompt showing the scene's culmination, with clear progression from the start keyframe"
    }}
  ]
}}"""
    if character_description:
        prompt += f"\n\nCharacter Description:\n{character_description}"
    return prompt


def build_user_prompt(content: str, reference_texts: Optional[List[str]] = None) -> str:
    """Draft content followed by any reference material."""
    prompt = content
    if reference_texts:
        prompt += "\n\nReference Material:\n" + "\n\n".join(reference_texts)
    return prompt


def extract_json(content: str) -> str:
    """Strip markdown code fences around a JSON payload."""
    if "```json" in content:
        start_idx = content.find("```json") + 7
        end_idx = content.find("```", start_idx)
        if end_idx != -1:
            return content[start_idx:end_idx].strip()
    elif "```" in content:
        start_idx = content.find("```") + 3
        end_idx = content.find("```", start_idx)
        if end_idx != -1:
            return content[start_idx:end_idx].strip()
    return content.strip()


def _strip_trailing_commas(json_str: str) -> str:
    return re.sub(r",(\s*[}\]])", r"\1", json_str)


def parse_written_script(content: str, scene_count: int) -> WrittenScript:
    """
    Parse and validate the model's JSON reply.

    Raises:
        SceneWritingError: Unparseable JSON, missing fields or wrong scene count
    """
    payload = extract_json(content)
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        try:
            data = json.loads(_strip_trailing_commas(payload))
        except json.JSONDecodeError as e:
            raise SceneWritingError(f"Invalid JSON from scene writer: {str(e)}") from e

    try:
        written = WrittenScript.model_validate(data)
    except PydanticValidationError as e:
        raise SceneWritingError(f"Scene writer output is missing fields: {str(e)}") from e

    if len(written.scenes) != scene_count:
        raise SceneWritingError(
            f"Scene writer returned {len(written.scenes)} scenes, expected {scene_count}"
        )
    return written


class SceneWriter:
    """OpenAI chat-completion scene writer."""

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.settings = settings
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)

    @retry_with_backoff(max_attempts=3, base_delay=2, retryable_exceptions=(RemoteTransientError,))
    async def write_scenes(
        self,
        content: str,
        reference_texts: Optional[List[str]] = None,
        character_description: Optional[str] = None,
        script_id: Optional[str] = None
    ) -> WrittenScript:
        """
        Write scenes for a story.

        Args:
            content: Draft story text
            reference_texts: Optional reference material appended to the prompt
            character_description: Optional description appended to the system prompt
            script_id: Script ID for logging

        Returns:
            WrittenScript with exactly `scene_count` scenes

        Raises:
            ValidationError: If the story content is empty
            SceneWritingError: If the model fails or returns unusable output
            RemoteTransientError: Rate limit, timeout or 5xx (retried)
        """
        if not content or not content.strip():
            raise ValidationError("Draft content is empty", script_id=script_id)

        system_prompt = build_system_prompt(
            self.settings.scene_count,
            self.settings.scene_duration_seconds,
            character_description
        )
        user_prompt = build_user_prompt(content, reference_texts)

        logger.info(
            "Calling scene writer",
            extra={
                "script_id": script_id,
                "model": self.settings.scene_writer_model,
                "reference_count": len(reference_texts or []),
                "user_prompt_length": len(user_prompt),
            }
        )

        try:
            response = await self.client.chat.completions.create(
                model=self.settings.scene_writer_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt}
                ],
                temperature=self.settings.scene_writer_temperature,
                max_tokens=self.settings.scene_writer_max_tokens
            )
            reply = response.choices[0].message.content
            if not reply:
                raise SceneWritingError("Empty response from scene writer", script_id=script_id)

            written = parse_written_script(reply, self.settings.scene_count)
        except PipelineError:
            raise
        except RateLimitError as e:
            logger.warning(f"Rate limit error: {str(e)}", extra={"script_id": script_id})
            raise RemoteTransientError(f"Rate limit error: {str(e)}", script_id=script_id) from e
        except APITimeoutError as e:
            logger.warning(f"API timeout: {str(e)}", extra={"script_id": script_id})
            raise RemoteTransientError(f"API timeout: {str(e)}", script_id=script_id) from e
        except APIError as e:
            logger.error(f"OpenAI API error: {str(e)}", extra={"script_id": script_id})
            status_code = getattr(e, "status_code", None)
            if status_code and status_code >= 500:
                raise RemoteTransientError(f"Retryable API error: {str(e)}", script_id=script_id) from e
            raise SceneWritingError(f"OpenAI API error: {str(e)}", script_id=script_id) from e

        logger.info(
            f"Scene writer produced {len(written.scenes)} scenes",
            extra={
                "script_id": script_id,
                "input_tokens": getattr(response.usage, "prompt_tokens", None),
                "output_tokens": getattr(response.usage, "completion_tokens", None),
            }
        )
        return written
