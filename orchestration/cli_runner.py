# orchestration/cli_runner.py
"""Command-line runner for the generation pipeline."""

from __future__ import annotations

import argparse
import asyncio
from typing import Any

import structlog
from rich.console import Console
from utils.logging import setup_logging

from core.errors import BookForgeError, CredentialMissingError
from core.llm_interface import LLMService
from models import PipelineState, UserPreferences
from orchestration.credential_service import configure_credential, restore_credential
from orchestration.generation_pipeline import GenerationPipeline
from orchestration.models import CredentialStatus, GenerationParams
from storage.file_manager import FileManager
from ui.rich_display import RichDisplayManager

logger = structlog.get_logger(__name__)

console = Console()


def build_params(args: argparse.Namespace, prefs: UserPreferences) -> GenerationParams:
    """Command-line options layered over stored preferences."""
    keywords = [k.strip() for k in (args.keywords or "").split(",") if k.strip()]
    params = GenerationParams(
        model=args.model or prefs.default_model,
        genre=args.genre or prefs.default_genre or "General",
        length=args.length or prefs.default_length,
        keywords=keywords,
        language=args.language or "en",
        author_name=args.author or "",
        detailed=args.detailed or prefs.detailed_chapters,
        include_images=args.images or prefs.include_images,
        chapter_count=args.chapter_count,
        title=args.title or "",
        subtitle=args.subtitle or "",
        temperature=args.temperature,
        auto_generate=prefs.auto_generate,
    )
    if args.role:
        params.role = args.role
    if args.audience:
        params.audience = args.audience
    return params


def _print_status(state: PipelineState, pipeline: GenerationPipeline) -> None:
    console.print(f"[bold]Book:[/bold] {pipeline.extract_book_title(state)}")
    console.print(f"[bold]Stage:[/bold] {state.stage.value}")
    if state.has_outline():
        try:
            total: Any = len(pipeline.resolve_chapter_titles(state))
        except BookForgeError:
            total = "?"
        console.print(f"[bold]Chapters:[/bold] {state.cursor}/{total}")
        for position, chapter in enumerate(state.chapters, start=1):
            console.print(f"  {position:>2}. {chapter.title} ({chapter.word_count:,} words)")
    if state.metadata.cover_image:
        console.print("[bold]Cover:[/bold] generated")


async def _run_generation(
    args: argparse.Namespace,
    pipeline: GenerationPipeline,
    state: PipelineState,
    params: GenerationParams,
) -> None:
    if args.command == "titles":
        suggestions = await pipeline.generate_title_suggestions(
            state, params, description=args.description
        )
        for position, option in enumerate(suggestions, start=1):
            console.print(f"[bold]{position}. {option.title}[/bold] {option.subtitle}")
            if option.description:
                console.print(f"   {option.description}")
    elif args.command == "concept":
        concept = await pipeline.generate_concept(state, params)
        if concept:
            console.print(concept)
    elif args.command == "outline":
        outline = await pipeline.generate_outline(state, params)
        if outline:
            console.print(outline)
    elif args.command == "chapters":
        produced = await pipeline.generate_chapters(
            state, params, auto_generate=args.auto
        )
        console.print(f"Generated {produced} chapter(s). Progress: {state.cursor} done.")
    elif args.command == "cover":
        await pipeline.generate_cover_image(
            state, params, prompt=args.prompt, size=args.size
        )
        console.print("Cover image generated and stored with the project.")


async def _run(args: argparse.Namespace) -> int:
    gateway = FileManager()
    dispatcher = LLMService()
    try:
        state = await gateway.load_last_project() or PipelineState()
        prefs = await gateway.load_settings()

        if args.command == "set-key":
            status = await configure_credential(dispatcher, gateway, args.key)
            if status is CredentialStatus.VERIFIED:
                console.print("[green]API key verified and saved.[/green]")
            else:
                console.print(
                    "[yellow]API key saved, but it could not be verified.[/yellow]"
                )
            return 0

        if args.command == "prefs":
            updates = {
                key: value
                for key, value in {
                    "default_model": args.model,
                    "default_genre": args.genre,
                    "default_length": args.length,
                    "auto_generate": args.auto,
                    "detailed_chapters": args.detailed or None,
                    "include_images": args.images or None,
                }.items()
                if value is not None
            }
            merged = await gateway.save_settings(updates)
            for key, value in merged.model_dump().items():
                console.print(f"{key}: {value}")
            return 0

        params = build_params(args, prefs)
        display = RichDisplayManager(console=console)
        pipeline = GenerationPipeline(dispatcher, gateway, display)

        if args.command == "status":
            _print_status(state, pipeline)
            return 0
        if args.command == "reset":
            await pipeline.reset(state)
            console.print("Project reset.")
            return 0

        status = await restore_credential(dispatcher, gateway)
        if status is CredentialStatus.MISSING:
            raise CredentialMissingError(
                "API key not set. Run 'set-key' or set OPENAI_API_KEY."
            )
        display.set_book_title(pipeline.extract_book_title(state))
        with display:
            await _run_generation(args, pipeline, state, params)
        return 0
    except BookForgeError as exc:
        logger.error("Command failed.", command=args.command, error=exc.message)
        console.print(f"[red]{exc.message}[/red]")
        return 1
    finally:
        await dispatcher.aclose()


def run(args: argparse.Namespace) -> int:
    """Run one CLI command and return the process exit code."""
    setup_logging()
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("BookForge shutting down due to KeyboardInterrupt.")
        return 130
