"""Studio configuration using pydantic-settings"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.secrets import get_api_key

ProviderName = Literal["polo", "t8star", "mock"]


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Backend endpoints
    polo_base_url: str = "https://work.poloapi.com"
    t8_base_url: str = "https://ai.t8star.cn"
    t8_media_base_url: Optional[str] = None

    # API keys (keychain is consulted when these are empty)
    polo_text_api_key: str = ""
    polo_image_api_key: str = ""
    polo_video_api_key: str = ""
    t8_text_api_key: str = ""
    t8_image_api_key: str = ""
    t8_video_api_key: str = ""
    t8_audio_api_key: str = ""

    # Which backend serves each role
    text_provider: ProviderName = "t8star"
    image_provider: ProviderName = "t8star"
    video_provider: ProviderName = "t8star"
    audio_provider: ProviderName = "t8star"

    # Concurrency ceilings per artifact type
    image_concurrency: int = Field(default=10, ge=1)
    video_concurrency: int = Field(default=3, ge=1)
    asset_concurrency: int = Field(default=10, ge=1)
    narration_concurrency: int = Field(default=3, ge=1)

    # Long-running video jobs
    video_max_attempts: int = Field(default=5, ge=1)
    video_base_delay: float = 2.0  # seconds
    video_poll_interval: float = 5.0  # seconds
    video_max_polls: int = 60

    # Synchronous content calls
    content_max_retries: int = 3
    content_initial_delay: float = 2.0  # seconds
    content_timeout: float = 1200.0  # seconds
    request_timeout: float = 300.0  # seconds

    # Pipeline
    chunk_size: int = Field(default=5000, ge=100)
    language: str = "English"
    aspect_ratio: Literal["16:9", "9:16"] = "16:9"
    autosave_delay: float = 1.0  # seconds

    state_dir: Path = Path.home() / ".storyboard-studio"

    def api_key(self, name: str) -> str:
        """Return the configured key, falling back to the keychain"""
        value = getattr(self, name.lower(), "") or ""
        if value:
            return value
        return get_api_key(name.upper(), fallback_to_env=False) or ""


def get_settings(**overrides) -> Settings:
    return Settings(**overrides)
