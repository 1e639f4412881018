"""Engine events and the synchronous dispatcher that fans them out."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LineEvent:
    """One complete line read from a tracked file."""

    path: Path
    text: str
    sequence: int
    timestamp: datetime = field(default_factory=_now)
    kind: str = field(default="line", init=False)


@dataclass(frozen=True)
class FileAdded:
    path: Path
    timestamp: datetime = field(default_factory=_now)
    kind: str = field(default="file_added", init=False)


@dataclass(frozen=True)
class FileRemoved:
    path: Path
    timestamp: datetime = field(default_factory=_now)
    kind: str = field(default="file_removed", init=False)


@dataclass(frozen=True)
class ErrorEvent:
    """A per-file (or engine-wide when ``path`` is None) failure."""

    path: Optional[Path]
    error_kind: str
    message: str
    timestamp: datetime = field(default_factory=_now)
    kind: str = field(default="error", init=False)


Event = Union[LineEvent, FileAdded, FileRemoved, ErrorEvent]
Consumer = Callable[[Event], None]


class EventDispatcher:
    """Deliver every event to each registered consumer, in order."""

    def __init__(self) -> None:
        self._consumers: List[Consumer] = []
        self._guard = threading.Lock()

    def subscribe(self, consumer: Consumer) -> Callable[[], None]:
        """Register ``consumer`` and return a callable that removes it."""

        with self._guard:
            self._consumers.append(consumer)
        return lambda: self.unsubscribe(consumer)

    def unsubscribe(self, consumer: Consumer) -> None:
        with self._guard:
            if consumer in self._consumers:
                self._consumers.remove(consumer)

    def dispatch(self, event: Event) -> None:
        with self._guard:
            consumers = list(self._consumers)
        for consumer in consumers:
            try:
                consumer(event)
            except Exception:
                logger.exception("Event consumer %r failed on %s event", consumer, event.kind)

    def __len__(self) -> int:
        with self._guard:
            return len(self._consumers)
