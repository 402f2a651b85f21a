"""Central package for BookForge data models."""

from .book_models import (
    BookMetadata,
    ChapterRecord,
    OutlineChapter,
    PipelineStage,
    PipelineState,
    TitleSuggestion,
    utc_now,
)
from .preferences import UserPreferences

__all__ = [
    "BookMetadata",
    "ChapterRecord",
    "OutlineChapter",
    "PipelineStage",
    "PipelineState",
    "TitleSuggestion",
    "UserPreferences",
    "utc_now",
]
