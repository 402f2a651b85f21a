# orchestration/generation_pipeline.py
"""Stage-by-stage book generation: titles, concept, outline, chapters."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from config import settings
from prompt_renderer import render_prompt

import utils
from core.endpoints import EndpointChoice, endpoint_choice, supports_streaming
from core.errors import (
    BookForgeError,
    CredentialMissingError,
    InvalidCredentialError,
    MalformedUpstreamResponseError,
    NoChaptersFoundError,
    StageOutOfOrderError,
)
from core.llm_interface import LLMService
from core.requests import GenerationRequest
from models import ChapterRecord, PipelineStage, PipelineState, TitleSuggestion, utc_now
from orchestration.models import GenerationParams
from parsing import (
    extract_chapter_titles,
    parse_json_object,
    parse_outline_chapters,
    parse_title_suggestions,
    render_outline_text,
    stringify_concept,
)
from processing.context_generator import build_context
from storage.file_manager import PersistenceGateway
from ui.rich_display import NullReporter, Reporter

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DESCRIPTION_FROM_CONCEPT_CHARS = 280


class GenerationPipeline:
    """Drives a ``PipelineState`` through its stages.

    Every stage commits to the state only after its request succeeded and
    persists the state once per commit.
    """

    def __init__(
        self,
        dispatcher: LLMService,
        gateway: PersistenceGateway,
        reporter: Reporter | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.gateway = gateway
        self.reporter: Reporter = reporter or NullReporter()

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def _with_retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        return await self.dispatcher.generate_with_retry(
            fn, progress=self.reporter.set_progress_text
        )

    async def _complete(self, request: GenerationRequest) -> str:
        return await self._with_retry(lambda: self.dispatcher.send(request))

    def _request(
        self,
        template_dir: str,
        params: GenerationParams,
        context: dict[str, Any],
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
        stream: bool = False,
    ) -> GenerationRequest:
        return GenerationRequest(
            system=render_prompt(f"{template_dir}/system.j2", context),
            prompt=render_prompt(f"{template_dir}/user.j2", context),
            model=params.model,
            temperature=params.temperature_for(temperature),
            max_tokens=max_tokens,
            seed=settings.GENERATION_SEED,
            json_mode=json_mode,
            stream=stream,
        )

    async def _commit(self, state: PipelineState, snapshot: PipelineState) -> None:
        """Persist ``state``; on failure put back every field from ``snapshot``."""
        try:
            await self.gateway.save_project(state)
        except (Exception, asyncio.CancelledError):
            _restore(state, snapshot)
            logger.error("Saving the project failed; changes rolled back.")
            raise

    def extract_book_title(self, state: PipelineState) -> str:
        return utils.extract_book_title(state.metadata.title, state.concept)

    # --- Title suggestions ------------------------------------------------

    def _suggestion_description(
        self, state: PipelineState, params: GenerationParams
    ) -> str:
        if state.metadata.short_description.strip():
            return state.metadata.short_description.strip()
        concept = state.concept.strip()
        if concept:
            return concept[:DESCRIPTION_FROM_CONCEPT_CHARS]
        if params.keywords:
            return (
                f"A {params.genre} book focusing on {', '.join(params.keywords[:5])} "
                f"for {params.audience} readers."
            )
        return f"A {params.genre} book for {params.audience} readers."

    async def _fetch_title_suggestions(
        self,
        state: PipelineState,
        params: GenerationParams,
        description: str | None = None,
        count: int | None = None,
    ) -> list[TitleSuggestion]:
        context = params.prompt_context()
        context.update(
            description=description or self._suggestion_description(state, params),
            count=count or settings.TITLE_SUGGESTION_COUNT,
        )
        request = self._request(
            "titles",
            params,
            context,
            temperature=settings.TEMPERATURE_TITLES,
            max_tokens=settings.MAX_TOKENS_PER_REQUEST,
            json_mode=endpoint_choice(params.model) is EndpointChoice.RESPONSES,
        )
        self.reporter.set_progress_text("Generating title and description suggestions...")
        text = await self._complete(request)
        return parse_title_suggestions(text)

    async def generate_title_suggestions(
        self,
        state: PipelineState,
        params: GenerationParams,
        description: str | None = None,
        count: int | None = None,
    ) -> list[TitleSuggestion]:
        """Ask for title/subtitle/blurb options and store them in metadata."""
        if state.is_generating:
            logger.info("Generation already in progress; title request ignored.")
            return []
        state.is_generating = True
        try:
            suggestions = await self._fetch_title_suggestions(
                state, params, description, count
            )
            snapshot = state.model_copy(deep=True)
            state.metadata.suggestions = suggestions
            await self._commit(state, snapshot)
        finally:
            state.is_generating = False

        logger.info("Title suggestions generated.", count=len(suggestions))
        return suggestions

    async def _ensure_title(
        self, state: PipelineState, params: GenerationParams
    ) -> list[TitleSuggestion]:
        if not settings.AUTO_TITLE_SUGGESTIONS or params.title:
            return []
        if state.metadata.title and state.metadata.short_description:
            return []
        try:
            return await self._fetch_title_suggestions(state, params)
        except (CredentialMissingError, InvalidCredentialError):
            raise
        except BookForgeError as exc:
            logger.warning(
                "Title suggestions failed; continuing without them.",
                error=exc.message,
            )
            return []

    # --- Concept ----------------------------------------------------------

    async def generate_concept(
        self, state: PipelineState, params: GenerationParams
    ) -> str | None:
        """Generate (or regenerate) the book concept.

        Returns ``None`` without doing anything while another stage runs.
        """
        if state.is_generating:
            logger.info("Generation already in progress; concept request ignored.")
            return None
        state.is_generating = True
        try:
            suggestions = await self._ensure_title(state, params)
            first = next(
                (s for s in suggestions if s.title and s.title != "Untitled"), None
            )
            title = params.title or state.metadata.title or (first.title if first else "")
            subtitle = (
                params.subtitle
                or state.metadata.subtitle
                or (first.subtitle if first else "")
            )

            json_mode = settings.USE_JSON_CONCEPT
            context = params.prompt_context()
            context.update(title=title, subtitle=subtitle, json_mode=json_mode)
            request = self._request(
                "concept",
                params,
                context,
                temperature=settings.TEMPERATURE_CONCEPT,
                max_tokens=settings.MAX_TOKENS_PER_REQUEST,
                json_mode=json_mode,
            )
            self.reporter.set_progress_text("Generating book concept...")
            text = await self._complete(request)

            data = parse_json_object(text) if json_mode else None
            concept = stringify_concept(data) if data else text.strip()
            if not concept:
                raise MalformedUpstreamResponseError("The service returned an empty concept")

            snapshot = state.model_copy(deep=True)
            state.concept = concept
            state.concept_data = data
            meta = state.metadata
            meta.concept_generated_at = utc_now()
            if suggestions:
                meta.suggestions = suggestions
            if first is not None and not meta.short_description:
                meta.short_description = first.description
            meta.title = meta.title or title or (str(data.get("title") or "") if data else "")
            meta.subtitle = meta.subtitle or subtitle or (
                str(data.get("subtitle") or "") if data else ""
            )
            meta.author_name = meta.author_name or params.author_name
            if not state.stage.at_least(PipelineStage.CONCEPT_READY):
                state.stage = PipelineStage.CONCEPT_READY
            await self._commit(state, snapshot)
        finally:
            state.is_generating = False

        logger.info("Concept generated.", structured=data is not None, title=meta.title)
        self.reporter.stage_complete(
            PipelineStage.CONCEPT_READY, "Book concept generated successfully!"
        )
        return concept

    # --- Outline ----------------------------------------------------------

    async def generate_outline(
        self, state: PipelineState, params: GenerationParams
    ) -> str | None:
        """Generate the table of contents from the concept."""
        if state.is_generating:
            logger.info("Generation already in progress; outline request ignored.")
            return None
        if not state.concept.strip():
            raise StageOutOfOrderError("Generate a concept before the outline.")
        if state.chapters:
            raise StageOutOfOrderError(
                "The outline is locked once chapters exist. Reset the project to regenerate it."
            )
        state.is_generating = True
        try:
            json_mode = settings.USE_JSON_OUTLINE
            context = params.prompt_context()
            context.update(concept=state.concept, json_mode=json_mode)
            request = self._request(
                "outline",
                params,
                context,
                temperature=settings.TEMPERATURE_OUTLINE,
                max_tokens=settings.MAX_TOKENS_PER_REQUEST,
                json_mode=json_mode,
            )
            self.reporter.set_progress_text("Generating table of contents...")
            text = await self._complete(request)

            data = parse_json_object(text) if json_mode else None
            chapters = parse_outline_chapters(data)
            outline_text = render_outline_text(chapters) if chapters else text.strip()
            if not outline_text:
                raise MalformedUpstreamResponseError("The service returned an empty outline")

            snapshot = state.model_copy(deep=True)
            state.outline_text = outline_text
            state.outline_data = data if chapters else None
            state.outline_chapters = chapters
            state.cursor = 0
            state.metadata.outline_generated_at = utc_now()
            if chapters and not state.metadata.title and data.get("title"):
                state.metadata.title = str(data["title"]).strip()
            state.stage = PipelineStage.OUTLINE_READY
            await self._commit(state, snapshot)
        finally:
            state.is_generating = False

        logger.info(
            "Outline generated.",
            structured=chapters is not None,
            chapters=len(chapters) if chapters else None,
        )
        self.reporter.stage_complete(
            PipelineStage.OUTLINE_READY, "Table of contents generated successfully!"
        )
        return outline_text

    def resolve_chapter_titles(self, state: PipelineState) -> list[str]:
        """Chapter titles from the structured outline, else from its text."""
        if state.outline_chapters:
            titles = [c.title for c in state.outline_chapters if c.title]
        else:
            titles = extract_chapter_titles(state.outline_text)
        if not titles:
            raise NoChaptersFoundError()
        return titles

    # --- Chapters ---------------------------------------------------------

    async def generate_chapters(
        self,
        state: PipelineState,
        params: GenerationParams,
        auto_generate: bool | None = None,
    ) -> int:
        """Generate chapters from ``state.cursor`` onward.

        Auto mode continues to the last chapter; manual mode produces one.
        Returns how many chapters this call produced.
        """
        if state.is_generating:
            logger.info("Generation already in progress; chapter request ignored.")
            return 0
        if not state.has_outline():
            raise StageOutOfOrderError("Generate an outline before writing chapters.")
        titles = self.resolve_chapter_titles(state)
        auto = params.auto_generate if auto_generate is None else auto_generate
        total = len(titles)
        if state.cursor >= total:
            logger.info("All chapters already generated.", total=total)
            return 0

        produced = 0
        state.is_generating = True
        try:
            for index in range(state.cursor, total):
                await self._generate_chapter(state, params, titles, index)
                produced += 1
                if not auto:
                    break
                if index + 1 < total:
                    await self._sleep(settings.CHAPTER_DELAY_SECONDS)
        finally:
            state.is_generating = False

        if state.stage is PipelineStage.CHAPTERS_COMPLETE:
            self.reporter.stage_complete(
                PipelineStage.CHAPTERS_COMPLETE,
                f"Successfully generated all {total} chapters!",
            )
        return produced

    async def _generate_chapter(
        self,
        state: PipelineState,
        params: GenerationParams,
        titles: list[str],
        index: int,
    ) -> None:
        title = titles[index]
        total = len(titles)
        context = params.prompt_context()
        context.update(
            book_title=self.extract_book_title(state),
            chapter_title=title,
            concept=state.concept,
            previous_chapters=build_context(state.chapters, index),
        )
        streaming = settings.STREAM_CHAPTERS and supports_streaming(params.model)
        request = self._request(
            "chapter",
            params,
            context,
            temperature=settings.TEMPERATURE_CHAPTER,
            max_tokens=params.chapter_max_tokens(),
            stream=streaming,
        )

        snapshot = state.model_copy(deep=True)
        placeholder = ChapterRecord(title=title)
        if index < len(state.chapters):
            state.chapters[index] = placeholder
        else:
            state.chapters.append(placeholder)

        def on_delta(delta: str, aggregate: str, done: bool) -> None:
            placeholder.content = aggregate
            if done:
                placeholder.word_count = utils.count_words(aggregate)
            self.reporter.on_token(delta, aggregate, done)

        self.reporter.set_progress_text(
            f"Generating chapter {index + 1}/{total}: {title}"
        )
        logger.info(
            "Generating chapter.",
            chapter=index + 1,
            total=total,
            title=title,
            streaming=streaming,
        )
        try:
            if streaming:
                content = await self._with_retry(
                    lambda: self.dispatcher.send_streaming(request, on_delta=on_delta)
                )
            else:
                content = await self._complete(request)
            if not content.strip():
                raise MalformedUpstreamResponseError(
                    f"The service returned an empty chapter for '{title}'"
                )
        except (Exception, asyncio.CancelledError):
            _restore(state, snapshot)
            logger.error("Chapter generation failed.", chapter=index + 1, title=title)
            raise

        state.chapters[index] = ChapterRecord(
            title=title,
            content=content,
            generated_at=utc_now(),
            word_count=utils.count_words(content),
        )
        state.cursor = index + 1
        state.stage = (
            PipelineStage.CHAPTERS_COMPLETE
            if state.cursor >= total
            else PipelineStage.CHAPTERS_IN_PROGRESS
        )
        await self._commit(state, snapshot)
        self.reporter.stage_complete(
            state.stage, f"Chapter {index + 1}/{total} generated: {title}"
        )

    async def edit_chapter(self, state: PipelineState, index: int, content: str) -> None:
        """Replace a chapter's text by hand."""
        if not 0 <= index < len(state.chapters):
            raise IndexError(f"No chapter at position {index + 1}")
        snapshot = state.model_copy(deep=True)
        chapter = state.chapters[index]
        chapter.content = content
        chapter.modified_at = utc_now()
        chapter.word_count = utils.count_words(content)
        await self._commit(state, snapshot)

    # --- Cover ------------------------------------------------------------

    async def generate_cover_image(
        self,
        state: PipelineState,
        params: GenerationParams,
        prompt: str | None = None,
        size: str | None = None,
    ) -> str:
        """Generate a cover image and store it as a data URL in metadata."""
        if not prompt:
            prompt = render_prompt(
                "cover/user.j2",
                {
                    "book_title": self.extract_book_title(state),
                    "author_name": (state.metadata.author_name or params.author_name).strip(),
                    "genre": params.genre,
                },
            )
        self.reporter.set_progress_text("Generating cover image...")
        data_url = await self._with_retry(
            lambda: self.dispatcher.generate_image(prompt, size=size or settings.IMAGE_SIZE)
        )
        snapshot = state.model_copy(deep=True)
        state.metadata.cover_image = data_url
        await self._commit(state, snapshot)
        logger.info("Cover image generated.", size=size or settings.IMAGE_SIZE)
        return data_url

    # --- Reset ------------------------------------------------------------

    async def reset(self, state: PipelineState) -> None:
        """Clear the project and persist the empty state."""
        snapshot = state.model_copy(deep=True)
        state.reset()
        await self._commit(state, snapshot)
        logger.info("Project reset.")


def _restore(state: PipelineState, snapshot: PipelineState) -> None:
    for name in type(state).model_fields:
        if name != "is_generating":
            setattr(state, name, getattr(snapshot, name))
