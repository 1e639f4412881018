"""Rich renderables for terminal output."""
from __future__ import annotations

from typing import Iterable, Optional

from rich.console import RenderableType
from rich.table import Table
from rich.text import Text

from .events import ErrorEvent, Event, FileAdded, FileRemoved, LineEvent
from .filters import LineFilter


class TerminalUI:
    """Turns engine events into rich text for the console."""

    def __init__(self, line_filter: Optional[LineFilter] = None, show_file: bool = False) -> None:
        self.line_filter = line_filter or LineFilter()
        self.show_file = show_file

    def render(self, event: Event) -> Optional[Text]:
        """Return the text to print for ``event`` or None when it is filtered out."""

        if isinstance(event, LineEvent):
            return self.render_line(event)
        if isinstance(event, FileAdded):
            return Text(f"File added: {event.path}", style="green")
        if isinstance(event, FileRemoved):
            return Text(f"File removed: {event.path}", style="yellow")
        if isinstance(event, ErrorEvent):
            return Text(f"Error: {event.message}", style="bold red")
        return None

    def render_line(self, event: LineEvent) -> Optional[Text]:
        if not self.line_filter.should_include(event.text):
            return None
        text = Text()
        if self.show_file:
            text.append(f"[{event.path.name}] ", style="cyan")
        text.append_text(self.line_filter.apply_highlighting(event.text))
        return text


def render_file_table(paths: Iterable, title: str = "Tracked files") -> RenderableType:
    table = Table(title=title, expand=True)
    table.add_column("File", justify="left", style="bold")
    table.add_column("Directory", style="dim")
    rows = 0
    for path in paths:
        table.add_row(path.name, str(path.parent))
        rows += 1
    if not rows:
        table.add_row("-", "waiting for files")
    return table

