# utils/__init__.py
"""General utility functions for BookForge."""

from __future__ import annotations

import re

from .logging import setup_logging

_TITLE_LINE = re.compile(r"(?:Title|Book):\s*(.+)", re.IGNORECASE)

UNTITLED_BOOK = "Untitled Book"
GENERATED_BOOK = "AI Generated Book"


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    return len((text or "").split())


def extract_book_title(explicit_title: str | None, concept: str | None) -> str:
    """Pick a display title for the book.

    Prefers ``explicit_title``; otherwise the first ``Title:`` or ``Book:``
    line of the concept text.
    """
    if explicit_title and explicit_title.strip():
        return explicit_title.strip()
    if not concept:
        return UNTITLED_BOOK
    for line in concept.splitlines():
        match = _TITLE_LINE.search(line)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return GENERATED_BOOK


__all__ = [
    "setup_logging",
    "count_words",
    "extract_book_title",
    "UNTITLED_BOOK",
    "GENERATED_BOOK",
]
