# models/book_models.py
"""Durable project state and the structured pieces parsed from LLM output."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PipelineStage(str, Enum):
    """Stages of the book pipeline, in the only order they may advance."""

    EMPTY = "empty"
    CONCEPT_READY = "concept_ready"
    OUTLINE_READY = "outline_ready"
    CHAPTERS_IN_PROGRESS = "chapters_in_progress"
    CHAPTERS_COMPLETE = "chapters_complete"

    @property
    def rank(self) -> int:
        return _STAGE_ORDER.index(self)

    def at_least(self, other: PipelineStage) -> bool:
        return self.rank >= other.rank


_STAGE_ORDER = list(PipelineStage)


class OutlineChapter(BaseModel):
    """One entry of a structured outline."""

    model_config = ConfigDict(extra="ignore")

    number: int | None = None
    title: str
    description: str = ""

    @field_validator("title", "description", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value

    @field_validator("number", mode="before")
    @classmethod
    def _lenient_number(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return int(value) if value.isdigit() else None
        return value


class TitleSuggestion(BaseModel):
    """A title/subtitle/blurb option offered before the concept stage."""

    model_config = ConfigDict(extra="ignore")

    title: str = ""
    subtitle: str = ""
    description: str = ""
    genre: str = ""
    audience: str = ""
    persona: str = ""
    keywords: list[str] | str = ""

    @field_validator(
        "title", "subtitle", "description", "genre", "audience", "persona",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    def keyword_list(self) -> list[str]:
        if isinstance(self.keywords, list):
            return [str(k).strip() for k in self.keywords if str(k).strip()]
        return [k.strip() for k in str(self.keywords).split(",") if k.strip()]


class ChapterRecord(BaseModel):
    """A generated chapter. ``content`` may be partial while streaming."""

    title: str
    content: str = ""
    generated_at: datetime = Field(default_factory=utc_now)
    word_count: int = 0
    modified_at: datetime | None = None


class BookMetadata(BaseModel):
    title: str = ""
    subtitle: str = ""
    short_description: str = ""
    author_name: str = ""
    suggestions: list[TitleSuggestion] = Field(default_factory=list)
    cover_image: str | None = None
    concept_generated_at: datetime | None = None
    outline_generated_at: datetime | None = None


class PipelineState(BaseModel):
    """The whole project. Mutated only by ``GenerationPipeline``.

    ``cursor`` is the index of the next chapter to generate and never exceeds
    the number of stored chapters. ``is_generating`` is a cooperative
    in-flight flag and is never persisted.
    """

    concept: str = ""
    concept_data: dict[str, Any] | None = None
    outline_text: str = ""
    outline_data: dict[str, Any] | None = None
    outline_chapters: list[OutlineChapter] | None = None
    chapters: list[ChapterRecord] = Field(default_factory=list)
    cursor: int = 0
    stage: PipelineStage = PipelineStage.EMPTY
    metadata: BookMetadata = Field(default_factory=BookMetadata)
    is_generating: bool = Field(default=False, exclude=True)

    @model_validator(mode="after")
    def _cursor_within_chapters(self) -> PipelineState:
        if self.cursor < 0 or self.cursor > len(self.chapters):
            raise ValueError(
                f"cursor {self.cursor} is outside 0..{len(self.chapters)}"
            )
        return self

    def has_outline(self) -> bool:
        return bool(self.outline_text.strip()) or bool(self.outline_chapters)

    def reset(self) -> None:
        """Clear every field in place."""
        fresh = PipelineState()
        for name in type(self).model_fields:
            setattr(self, name, getattr(fresh, name))


__all__ = [
    "PipelineStage",
    "OutlineChapter",
    "TitleSuggestion",
    "ChapterRecord",
    "BookMetadata",
    "PipelineState",
    "utc_now",
]
