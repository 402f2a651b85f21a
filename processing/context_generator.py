from __future__ import annotations

from collections.abc import Sequence

from config import settings

from models import ChapterRecord


def build_context(
    chapters: Sequence[ChapterRecord],
    up_to_index: int,
    preview_chars: int | None = None,
) -> str:
    """Summarize every chapter before ``up_to_index`` for the next prompt.

    Each prior chapter contributes ``"{title}: {preview}..."``, where the
    preview is the first ``preview_chars`` characters of its content.
    """
    limit = preview_chars if preview_chars is not None else settings.CONTEXT_PREVIEW_CHARS
    prior = list(chapters[: max(up_to_index, 0)])
    if not prior:
        return settings.FIRST_CHAPTER_CONTEXT
    return "\n\n".join(
        f"{chapter.title}: {chapter.content[:limit]}..." for chapter in prior
    )
