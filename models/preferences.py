# models/preferences.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from config import settings


class UserPreferences(BaseModel):
    """User-facing settings persisted between sessions."""

    model_config = ConfigDict(extra="ignore")

    auto_save: bool = True
    default_model: str = settings.DEFAULT_MODEL
    default_genre: str = ""
    default_length: str = "medium"
    theme: str = "light"
    auto_generate: bool = True
    detailed_chapters: bool = False
    include_images: bool = False
