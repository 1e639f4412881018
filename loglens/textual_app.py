"""Textual-powered live log viewer."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional, Sequence

from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import Footer, Header, RichLog, Static

from .config import LogLensConfig
from .engine import TailEngine
from .events import Event, FileAdded, FileRemoved, LineEvent
from .filters import LineFilter
from .ui import TerminalUI, render_file_table


class LogLensTextualApp(App):
    """Tracked files on the left, a scrolling log of new lines on the right."""

    CSS = """
    #body-row {
        height: 1fr;
    }
    #files-panel {
        min-width: 30;
        width: 40;
    }
    #log-panel {
        height: 1fr;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("c", "clear_log", "Clear"),
        ("p", "toggle_pause", "Pause"),
    ]

    def __init__(self, config: LogLensConfig, files: Sequence[Path]) -> None:
        super().__init__()
        self.config = config
        self.files = list(files)
        options = config.tail_options()
        options.follow = True
        self.engine = TailEngine(options)
        self.ui = TerminalUI(LineFilter.from_config(config), show_file=len(self.files) > 1)
        self.paused = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Horizontal(id="body-row"):
            yield Static(id="files-panel")
            yield RichLog(id="log-panel", wrap=True, max_lines=5000)
        yield Footer()

    async def on_mount(self) -> None:  # pragma: no cover - UI runtime
        self.files_widget: Static = self.query_one("#files-panel")
        self.log_widget: RichLog = self.query_one("#log-panel")
        self.files_widget.update(render_file_table([]))
        self._loop = asyncio.get_running_loop()
        self.engine.subscribe(self._on_engine_event)
        # Start off the UI thread; events are handed to the loop without blocking.
        self.run_worker(self._start_engine, thread=True)

    def on_unmount(self) -> None:  # pragma: no cover - UI runtime
        self.engine.stop()

    def action_clear_log(self) -> None:
        self.log_widget.clear()

    def action_toggle_pause(self) -> None:
        self.paused = not self.paused
        self.sub_title = "paused" if self.paused else ""

    def _start_engine(self) -> None:
        self.engine.start(self.files)

    def _on_engine_event(self, event: Event) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._show_event, event)
        except RuntimeError:
            # Loop shut down between the check and the call.
            return

    def _show_event(self, event: Event) -> None:
        if isinstance(event, (FileAdded, FileRemoved)):
            self.files_widget.update(render_file_table(self.engine.list_tracked_files()))
        if self.paused and isinstance(event, LineEvent):
            return
        text = self.ui.render(event)
        if text is not None:
            self.log_widget.write(text)
