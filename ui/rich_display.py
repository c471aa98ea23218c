# ui/rich_display.py
from __future__ import annotations

import asyncio
import time

from rich.console import Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text


class RichDisplayManager:
    """Handles Rich-based progress display for a generation run."""

    def __init__(self) -> None:
        self.status_text_book_title: Text = Text("Book: N/A")
        self.status_text_phase: Text = Text("Phase: Initializing...")
        self.status_text_current_chapter: Text = Text("Current Chapter: N/A")
        self.status_text_tokens: Text = Text("Tokens (this run): 0")
        self.status_text_elapsed_time: Text = Text("Elapsed Time: 0s")
        self.run_start_time: float = 0.0
        self._stop_event: asyncio.Event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.group = Group(
            self.status_text_book_title,
            self.status_text_phase,
            self.status_text_current_chapter,
            self.status_text_tokens,
            self.status_text_elapsed_time,
        )
        self.live = Live(
            Panel(
                self.group,
                title="tomewright progress",
                border_style="blue",
                expand=True,
            ),
            refresh_per_second=4,
            transient=False,
            redirect_stdout=False,
            redirect_stderr=False,
        )

    def start(self) -> None:
        self.run_start_time = time.time()
        self.live.start()
        self._stop_event.clear()
        self._task = asyncio.create_task(self._auto_refresh())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        if self.live.is_started:
            self.live.stop()

    async def _auto_refresh(self) -> None:
        while not self._stop_event.is_set():
            self.update()
            await asyncio.sleep(1)

    def update(
        self,
        title: str | None = None,
        phase: str | None = None,
        chapter_num: int | None = None,
        total_tokens: int | None = None,
    ) -> None:
        if title is not None:
            self.status_text_book_title.plain = f"Book: {title}"
        if phase is not None:
            self.status_text_phase.plain = f"Phase: {phase}"
        if chapter_num is not None:
            self.status_text_current_chapter.plain = f"Current Chapter: {chapter_num}"
        if total_tokens is not None:
            self.status_text_tokens.plain = f"Tokens (this run): {total_tokens:,}"
        elapsed_seconds = time.time() - self.run_start_time if self.run_start_time else 0
        self.status_text_elapsed_time.plain = (
            f"Elapsed Time: {time.strftime('%H:%M:%S', time.gmtime(elapsed_seconds))}"
        )
