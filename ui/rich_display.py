from __future__ import annotations

import time
from typing import Protocol

from config import settings
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from models import PipelineStage

TAIL_CHARS = 600


class Reporter(Protocol):
    """Receives progress notices from the generation pipeline."""

    def set_progress_text(self, text: str) -> None: ...

    def on_token(self, delta: str, aggregate: str, done: bool) -> None: ...

    def stage_complete(self, stage: PipelineStage, message: str) -> None: ...


class NullReporter:
    """Reporter that ignores everything."""

    def set_progress_text(self, text: str) -> None:
        pass

    def on_token(self, delta: str, aggregate: str, done: bool) -> None:
        pass

    def stage_complete(self, stage: PipelineStage, message: str) -> None:
        pass


class RichDisplayManager:
    """Handles Rich-based display updates."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self.live: Live | None = None
        self.group: Group | None = None
        self.status_text_book_title: Text = Text("Book: N/A")
        self.status_text_current_step: Text = Text("Current Step: Initializing...")
        self.status_text_words_streamed: Text = Text("Words Streamed: 0")
        self.status_text_elapsed_time: Text = Text("Elapsed Time: 00:00:00")
        self.stream_tail: Text = Text("")
        self.run_start_time: float = 0.0

        if settings.ENABLE_RICH_PROGRESS:
            self.group = Group(
                self.status_text_book_title,
                self.status_text_current_step,
                self.status_text_words_streamed,
                self.status_text_elapsed_time,
                self.stream_tail,
            )
            self.live = Live(
                Panel(
                    self.group,
                    title="BookForge Progress",
                    border_style="blue",
                    expand=True,
                ),
                console=self.console,
                refresh_per_second=4,
                transient=False,
                redirect_stdout=False,
                redirect_stderr=False,
            )

    def start(self) -> None:
        self.run_start_time = time.time()
        if self.live:
            self.live.start()

    def stop(self) -> None:
        if self.live and self.live.is_started:
            self.live.stop()

    def __enter__(self) -> RichDisplayManager:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def set_book_title(self, title: str) -> None:
        self.status_text_book_title.plain = f"Book: {title or 'N/A'}"

    def set_progress_text(self, text: str) -> None:
        self.status_text_current_step.plain = f"Current Step: {text}"
        self._refresh_elapsed()
        if not self.live:
            self.console.print(text, style="dim")

    def on_token(self, delta: str, aggregate: str, done: bool) -> None:
        self.status_text_words_streamed.plain = (
            f"Words Streamed: {len(aggregate.split()):,}"
        )
        self.stream_tail.plain = aggregate[-TAIL_CHARS:]
        self._refresh_elapsed()
        if done:
            self.stream_tail.plain = ""

    def stage_complete(self, stage: PipelineStage, message: str) -> None:
        self.status_text_current_step.plain = f"Current Step: {message}"
        self.console.print(f"[green]✓[/green] {message}")

    def _refresh_elapsed(self) -> None:
        if not self.run_start_time:
            return
        elapsed_seconds = time.time() - self.run_start_time
        self.status_text_elapsed_time.plain = (
            f"Elapsed Time: {time.strftime('%H:%M:%S', time.gmtime(elapsed_seconds))}"
        )
