"""Decoding of structured LLM output and free-text outline parsing."""

from __future__ import annotations

import json
import re
from typing import Any

import structlog
from pydantic import ValidationError

from models import OutlineChapter, TitleSuggestion

logger = structlog.get_logger(__name__)

CHAPTER_TITLE_PATTERN = re.compile(
    r"^(?:Chapter\s*(?:\d+\s*:?|:)\s*)?(.+?)(?:\s+-\s+.+)?$", re.IGNORECASE
)
_LIST_MARKER = re.compile(r"^(?:[*\-+]\s+|\d+[.)]\s+)")


class ParseError(Exception):
    """Raised when structured output cannot be decoded."""


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = re.sub(r"^```[A-Za-z0-9_-]*\s*", "", stripped)
        stripped = re.sub(r"\s*```$", "", stripped)
    return stripped


def extract_outermost_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` span in ``text``, if any.

    Braces inside JSON string literals are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : idx + 1]
        start = text.find("{", start + 1)
    return None


def parse_json_value(text: str) -> Any:
    """Decode ``text`` strictly, then by outermost-object extraction.

    Raises ``ParseError`` when neither step yields JSON.
    """
    candidate = _strip_code_fence(text or "")
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass
    extracted = extract_outermost_object(candidate)
    if extracted is not None:
        try:
            return json.loads(extracted)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Embedded object is not valid JSON: {exc}") from exc
    raise ParseError("No JSON object found in text")


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Like ``parse_json_value`` but returns ``None`` unless the result is an object."""
    try:
        value = parse_json_value(text)
    except ParseError as exc:
        logger.debug("Structured output could not be decoded.", error=str(exc))
        return None
    return value if isinstance(value, dict) else None


def parse_title_suggestions(text: str) -> list[TitleSuggestion]:
    """Decode title options, falling back to one synthetic suggestion."""
    try:
        value = parse_json_value(text)
    except ParseError:
        value = None

    raw_options: list[Any] = []
    if isinstance(value, dict):
        options = value.get("options")
        if isinstance(options, list):
            raw_options = options
        elif value.get("title"):
            raw_options = [value]
    elif isinstance(value, list):
        raw_options = value

    suggestions: list[TitleSuggestion] = []
    for item in raw_options:
        if not isinstance(item, dict):
            continue
        try:
            suggestions.append(TitleSuggestion.model_validate(item))
        except ValidationError as exc:
            logger.debug("Skipping invalid title option.", error=str(exc))
    if suggestions:
        return suggestions

    logger.warning("Title options were not valid JSON; using raw text.")
    return [TitleSuggestion(title="Untitled", subtitle="", description=(text or "").strip())]


def parse_outline_chapters(data: dict[str, Any] | None) -> list[OutlineChapter] | None:
    """Validate the ``chapters`` list of a structured outline."""
    if not isinstance(data, dict):
        return None
    raw = data.get("chapters")
    if not isinstance(raw, list):
        return None
    chapters: list[OutlineChapter] = []
    for position, item in enumerate(raw, start=1):
        if isinstance(item, str):
            item = {"title": item}
        if not isinstance(item, dict):
            continue
        try:
            chapter = OutlineChapter.model_validate(item)
        except ValidationError:
            continue
        if not chapter.title:
            continue
        if chapter.number is None:
            chapter.number = position
        chapters.append(chapter)
    return chapters or None


def extract_chapter_titles(outline_text: str) -> list[str]:
    """Pull chapter titles out of a free-text table of contents.

    Blank lines and markdown headings are skipped. A leading
    ``Chapter N:`` label and a trailing `` - description`` are removed.
    """
    titles: list[str] = []
    for raw_line in (outline_text or "").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        line = _LIST_MARKER.sub("", line).replace("**", "").strip()
        match = CHAPTER_TITLE_PATTERN.match(line)
        if not match:
            continue
        title = match.group(1).strip().strip('"').strip()
        if title:
            titles.append(title)
    return titles


def render_outline_text(chapters: list[OutlineChapter]) -> str:
    lines = []
    for position, chapter in enumerate(chapters, start=1):
        number = chapter.number if chapter.number is not None else position
        line = f"Chapter {number}: {chapter.title}"
        if chapter.description:
            line += f" - {chapter.description}"
        lines.append(line)
    return "\n".join(lines)


_CONCEPT_SECTIONS: tuple[tuple[str, str], ...] = (
    ("logline", "Logline"),
    ("premise", "Premise"),
)
_CONCEPT_LISTS: tuple[tuple[str, str], ...] = (
    ("themes", "Themes"),
    ("usps", "Unique Selling Points"),
    ("hooks", "Reader Hooks"),
)


def _as_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return []


def stringify_concept(data: dict[str, Any]) -> str:
    """Render a structured concept as readable labelled text.

    The result always starts with a ``Title:`` line so the book title can
    be recovered from the text alone.
    """
    header = [f"Title: {data.get('title') or 'Untitled'}"]
    if data.get("subtitle"):
        header.append(f"Subtitle: {data['subtitle']}")
    header.append(f"Genre: {data.get('genre') or ''}")
    header.append(f"Audience: {data.get('audience') or ''}")
    if data.get("persona"):
        header.append(f"Persona: {data['persona']}")
    keywords = data.get("keywords")
    if isinstance(keywords, list):
        header.append(f"Keywords: {', '.join(_as_list(keywords))}")
    elif isinstance(keywords, str) and keywords.strip():
        header.append(f"Keywords: {keywords.strip()}")

    blocks = ["\n".join(header)]
    for key, label in _CONCEPT_SECTIONS:
        if data.get(key):
            blocks.append(f"{label}:\n{str(data[key]).strip()}")
    for key, label in _CONCEPT_LISTS:
        items = _as_list(data.get(key))
        if items:
            blocks.append(f"{label}:\n" + "\n".join(f"- {item}" for item in items))
    return "\n\n".join(blocks)


__all__ = [
    "ParseError",
    "CHAPTER_TITLE_PATTERN",
    "extract_outermost_object",
    "parse_json_value",
    "parse_json_object",
    "parse_title_suggestions",
    "parse_outline_chapters",
    "extract_chapter_titles",
    "render_outline_text",
    "stringify_concept",
]
