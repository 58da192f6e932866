"""Central configuration for the hidden layer scanner service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import ResolutionTier
from .prompts import DEFAULT_EXCLUSIONS

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class CameraSettings(BaseModel):
    """Capture surface configuration."""
    camera_id: int = Field(0, description="OpenCV device index for the scanner camera")
    resolution_width: int = Field(1920, description="Requested capture width (pixels)")
    resolution_height: int = Field(1080, description="Requested capture height (pixels)")
    jpeg_quality: int = Field(95, description="JPEG quality for still captures sent to the model (0-100)")
    preview_jpeg_quality: int = Field(80, description="JPEG quality for MJPEG preview frames (0-100)")
    preview_fps: float = Field(15.0, description="Preview frame rate limit")
    preview_queue_size: int = Field(2, description="Max buffered preview JPEG frames per subscriber")

    @field_validator("jpeg_quality", "preview_jpeg_quality")
    @classmethod
    def _clamp_quality(cls, value: int) -> int:
        return max(1, min(100, int(value)))


class GenerationSettings(BaseModel):
    """Remote model call configuration."""
    visualization_count: int = Field(4, description="Parallel image requests issued per scan")
    temperature: float = Field(0.6, description="Sampling temperature for the entity description")
    aspect_ratio: str = Field("1:1", description="Aspect ratio requested for generated images")
    describe_timeout_seconds: float = Field(45.0, description="Backstop for the description call")
    image_timeout_seconds: float = Field(90.0, description="Backstop for each image generation call")
    default_exclusions: str = Field(DEFAULT_EXCLUSIONS, description="Exclusion text used when none is configured")
    default_resolution: ResolutionTier = Field(ResolutionTier.LOW, description="Resolution tier used by default")

    @field_validator("visualization_count")
    @classmethod
    def _positive_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError("visualization_count must be at least 1")
        return value


class Settings(BaseSettings):
    """Environment-driven settings for scanner subsystems."""

    # Remote model provider
    gemini_api_key: str = Field(..., description="API key for the Gemini generateContent endpoint")
    gemini_api_base: str = Field(
        "https://generativelanguage.googleapis.com/v1beta",
        description="Base URL of the Gemini REST API",
    )
    describe_model: str = Field("gemini-2.5-flash", description="Multimodal model used to describe the scene")
    image_model: str = Field("gemini-3-pro-image-preview", description="Model used to render the entity")
    http_timeout_seconds: float = Field(120.0, description="Transport-level timeout for provider requests")

    # Scanner HTTP Server
    scanner_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    scanner_port: int = Field(5000, description="Port for FastAPI server")
    ui_event_queue_size: int = Field(8, description="Max buffered UI events per subscriber")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    camera: CameraSettings = Field(default_factory=CameraSettings, description="Camera capture settings")
    generation: GenerationSettings = Field(default_factory=GenerationSettings, description="Remote generation settings")

    @field_validator("gemini_api_base")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
