"""State containers for the dashboard runtime."""
from __future__ import annotations

import threading
from collections import deque
from dataclasses import asdict, dataclass
from typing import Deque, Dict, List, Optional

from .events import LineEvent


@dataclass
class LogEntry:
    """A line as stored in the dashboard history and sent to clients."""

    file: str
    path: str
    line: str
    sequence: int
    timestamp: str

    @classmethod
    def from_event(cls, event: LineEvent) -> "LogEntry":
        return cls(
            file=event.path.name,
            path=str(event.path),
            line=event.text,
            sequence=event.sequence,
            timestamp=event.timestamp.isoformat(),
        )

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


class LogHistory:
    """Bounded ring buffer of the most recent lines across all files."""

    def __init__(self, history_size: int = 1000) -> None:
        self.history_size = history_size
        self._entries: Deque[LogEntry] = deque(maxlen=history_size)
        self._guard = threading.Lock()

    def record(self, event: LineEvent) -> LogEntry:
        entry = LogEntry.from_event(event)
        with self._guard:
            self._entries.append(entry)
        return entry

    def recent(self, limit: Optional[int] = None) -> List[LogEntry]:
        """Return up to ``limit`` newest entries, oldest first."""

        with self._guard:
            entries = list(self._entries)
        if limit is None:
            return entries
        if limit <= 0:
            return []
        return entries[-limit:]

    def clear(self) -> None:
        with self._guard:
            self._entries.clear()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
