"""
Configuration management.

Centralized environment variable management and validation.
"""

from typing import Literal
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from shared.errors import ConfigError


class Settings(BaseSettings):
    """Pipeline settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Supabase configuration
    supabase_url: str
    supabase_service_key: str
    storage_bucket: str = "pipeline-artifacts"
    scripts_table: str = "ai_scripts"

    # API keys
    openai_api_key: str
    replicate_api_token: str

    # Remote generation
    keyframe_model: str = "luma/photon"
    video_model: str = "luma/ray"
    aspect_ratio: str = "9:16"
    generation_timeout_seconds: float = 600.0
    generation_poll_max_interval: float = 30.0
    generation_max_attempts: int = 3
    retry_base_delay: float = 2.0

    # Upload
    upload_max_attempts: int = 3
    download_timeout_seconds: float = 120.0

    # Compression
    compression_max_width: int = 1080
    compression_target_bytes: int = 5 * 1024 * 1024
    ffmpeg_timeout_seconds: int = 300

    # Scene writer
    scene_writer_model: str = "gpt-4"
    scene_writer_temperature: float = 0.7
    scene_writer_max_tokens: int = 2000
    scene_count: int = 3
    scene_duration_seconds: float = 5.0

    # Stitching (Cloudinary)
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_upload_preset: str = ""
    stitch_transition_duration: int = 1
    stitch_clip_duration: int = 5
    stitch_timeout_seconds: float = 300.0

    # Environment
    environment: Literal["development", "staging", "production"] = "development"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate Supabase URL format."""
        if not v:
            raise ConfigError("SUPABASE_URL is required")
        if not v.startswith(("http://", "https://")):
            raise ConfigError("SUPABASE_URL must be a valid HTTP/HTTPS URL")
        return v

    @field_validator("supabase_service_key")
    @classmethod
    def validate_supabase_service_key(cls, v: str) -> str:
        """Validate Supabase service key format."""
        if not v:
            raise ConfigError("SUPABASE_SERVICE_KEY is required")
        return v

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_api_key(cls, v: str) -> str:
        """Validate OpenAI API key format."""
        if not v:
            raise ConfigError("OPENAI_API_KEY is required")
        if not v.startswith("sk-"):
            raise ConfigError("OPENAI_API_KEY must start with 'sk-'")
        return v

    @field_validator("replicate_api_token")
    @classmethod
    def validate_replicate_api_token(cls, v: str) -> str:
        """Validate Replicate API token format."""
        if not v:
            raise ConfigError("REPLICATE_API_TOKEN is required")
        if not v.startswith("r8_"):
            raise ConfigError("REPLICATE_API_TOKEN must start with 'r8_'")
        return v

    @field_validator("generation_timeout_seconds")
    @classmethod
    def validate_generation_timeout(cls, v: float) -> float:
        """Generation must be bounded."""
        if v <= 0:
            raise ConfigError("GENERATION_TIMEOUT_SECONDS must be positive")
        return v

    @field_validator("generation_max_attempts", "upload_max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        """At least one attempt is required."""
        if v < 1:
            raise ConfigError("Attempt counts must be at least 1")
        return v

    @property
    def stitching_configured(self) -> bool:
        """True when Cloudinary credentials are present."""
        return bool(
            self.cloudinary_cloud_name
            and self.cloudinary_api_key
            and self.cloudinary_api_secret
        )


def load_settings(**overrides) -> Settings:
    """
    Build a Settings instance from the environment.

    Args:
        **overrides: Explicit field values (take precedence over environment)

    Returns:
        Settings instance

    Raises:
        ConfigError: If configuration is missing or invalid
    """
    try:
        return Settings(**overrides)
    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(f"Failed to load configuration: {str(e)}") from e
