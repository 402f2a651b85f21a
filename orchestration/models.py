# orchestration/models.py
"""Shared dataclasses for orchestration services."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from config import settings

from models import PipelineStage


class CredentialStatus(str, Enum):
    MISSING = "missing"
    VERIFIED = "verified"
    SAVED_UNVERIFIED = "saved_unverified"


@dataclass
class GenerationParams:
    """User choices that shape every prompt of a run."""

    role: str = "a professional author"
    model: str = settings.DEFAULT_MODEL
    genre: str = "General"
    length: str = "medium"
    keywords: list[str] = field(default_factory=list)
    audience: str = "General Audience"
    language: str = "en"
    author_name: str = ""
    detailed: bool = False
    include_images: bool = False
    chapter_count: int | None = None
    title: str = ""
    subtitle: str = ""
    temperature: float | None = None
    auto_generate: bool = True

    def chapter_max_tokens(self) -> int:
        if self.detailed:
            return settings.DETAILED_CHAPTER_MAX_TOKENS
        return settings.MAX_TOKENS_PER_REQUEST

    def temperature_for(self, stage_default: float) -> float:
        return self.temperature if self.temperature is not None else stage_default

    def prompt_context(self) -> dict[str, Any]:
        return asdict(self)


__all__ = ["CredentialStatus", "GenerationParams", "PipelineStage"]
