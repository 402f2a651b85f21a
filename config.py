# config.py
"""Configuration settings for the BookForge generation system.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

import os

import structlog
from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger()


class BookForgeSettings(BaseSettings):
    """Full configuration for BookForge."""

    # API Configuration
    OPENAI_API_BASE: str = "https://api.openai.com/v1"
    CHAT_COMPLETIONS_PATH: str = "/chat/completions"
    RESPONSES_PATH: str = "/responses"
    IMAGES_PATH: str = "/images/generations"
    OPENAI_API_KEY: str | None = None

    # Models
    DEFAULT_MODEL: str = "gpt-4o-mini"
    IMAGE_MODEL: str = "gpt-image-1"
    IMAGE_SIZE: str = "1024x1536"

    # Temperature Settings
    TEMPERATURE_DEFAULT: float = 0.7
    TEMPERATURE_TITLES: float = 0.8
    TEMPERATURE_CONCEPT: float = 0.8
    TEMPERATURE_OUTLINE: float = 0.7
    TEMPERATURE_CHAPTER: float = 0.7

    # Output sizes
    MAX_TOKENS_PER_REQUEST: int = 2000
    DETAILED_CHAPTER_MAX_TOKENS: int = 3000
    # Set for deterministic runs on models that accept a seed
    GENERATION_SEED: int | None = None

    # LLM Call Settings
    LLM_RETRY_ATTEMPTS: int = 3
    LLM_RETRY_DELAY_SECONDS: float = 1.0
    HTTPX_TIMEOUT: float = 600.0
    DEFAULT_RETRY_AFTER_SECONDS: int = 60

    # Pipeline behaviour
    CHAPTER_DELAY_SECONDS: float = 0.8
    STREAM_CHAPTERS: bool = True
    USE_JSON_OUTLINE: bool = True
    USE_JSON_CONCEPT: bool = True
    AUTO_TITLE_SUGGESTIONS: bool = True
    TITLE_SUGGESTION_COUNT: int = 6
    CONTEXT_PREVIEW_CHARS: int = 200
    FIRST_CHAPTER_CONTEXT: str = "This is the first chapter"

    # A key that fails the probe is still stored so the user can proceed
    ALLOW_UNVERIFIED_CREDENTIAL: bool = True

    # Output and File Paths
    BASE_OUTPUT_DIR: str = "bookforge_output"
    PROJECT_FILE: str = "last_project.json"
    SETTINGS_FILE: str = "settings.json"
    CREDENTIAL_FILE: str = "credential.txt"

    # Logging & UI
    LOG_LEVEL_STR: str = Field("INFO", alias="BOOKFORGE_LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = "bookforge_run.log"
    ENABLE_RICH_PROGRESS: bool = True

    @field_validator("LLM_RETRY_ATTEMPTS", "CONTEXT_PREVIEW_CHARS")
    @classmethod
    def _must_be_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("OPENAI_API_KEY")
    @classmethod
    def _blank_key_is_missing(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            logger.warning("OPENAI_API_KEY is set but empty. Treating as missing.")
            return None
        return value

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", populate_by_name=True, extra="ignore"
    )


settings = BookForgeSettings()


PROJECT_FILE_PATH = os.path.join(settings.BASE_OUTPUT_DIR, settings.PROJECT_FILE)
SETTINGS_FILE_PATH = os.path.join(settings.BASE_OUTPUT_DIR, settings.SETTINGS_FILE)
CREDENTIAL_FILE_PATH = os.path.join(settings.BASE_OUTPUT_DIR, settings.CREDENTIAL_FILE)
