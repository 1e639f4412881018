"""Per-file cursor state owned by the engine."""
from __future__ import annotations

import codecs
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

ENCODING = "utf-8"


def new_decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder(ENCODING)(errors="replace")


@dataclass(eq=False)
class TrackedFile:
    """Cursor and carry-over for one registered file.

    ``last_known_size`` is the file size as of the most recent successful
    read. ``decoder`` holds any bytes of a multi-byte character that were cut
    off at the end of the previous read. ``discard_head`` is set when the
    line in progress began before the cursor, so everything up to the next
    newline belongs to a line that is never emitted. ``lock`` serializes
    every read and cursor update for this file.
    """

    path: Path
    last_known_size: int = 0
    carry_over: str = ""
    discard_head: bool = False
    decoder: codecs.IncrementalDecoder = field(default_factory=new_decoder, repr=False)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class CursorStore:
    """Mapping of absolute path to :class:`TrackedFile`.

    The internal guard only protects map membership and is never held while
    a file is being read.
    """

    def __init__(self) -> None:
        self._entries: Dict[Path, TrackedFile] = {}
        self._guard = threading.Lock()

    def register(self, path: Path, size: int = 0, carry_over: str = "") -> TrackedFile:
        tracked = TrackedFile(path=path, last_known_size=size, carry_over=carry_over)
        with self._guard:
            self._entries[path] = tracked
        return tracked

    def insert(self, tracked: TrackedFile) -> bool:
        """Add ``tracked`` unless its path is already registered."""

        with self._guard:
            if tracked.path in self._entries:
                return False
            self._entries[tracked.path] = tracked
        return True

    def get(self, path: Path) -> Optional[TrackedFile]:
        with self._guard:
            return self._entries.get(path)

    def discard(self, path: Path) -> Optional[TrackedFile]:
        with self._guard:
            return self._entries.pop(path, None)

    def paths(self) -> List[Path]:
        with self._guard:
            return sorted(self._entries)

    def size_of(self, path: Path) -> Optional[int]:
        """Return the stored cursor for ``path`` or ``None`` when untracked."""

        tracked = self.get(path)
        return tracked.last_known_size if tracked is not None else None

    def commit(
        self,
        tracked: TrackedFile,
        size: int,
        carry_over: str,
        decoder_state: Optional[tuple] = None,
        discard_head: bool = False,
    ) -> None:
        """Record a completed read. Callers must hold ``tracked.lock``."""

        tracked.last_known_size = size
        tracked.carry_over = carry_over
        tracked.discard_head = discard_head
        if decoder_state is not None:
            tracked.decoder.setstate(decoder_state)

    def clear(self) -> List[TrackedFile]:
        with self._guard:
            entries = list(self._entries.values())
            self._entries.clear()
        return entries

    def __contains__(self, path: object) -> bool:
        with self._guard:
            return path in self._entries

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
