"""Classify a tracked file by comparing its current size to the stored cursor."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class ChangeKind(str, Enum):
    UNCHANGED = "unchanged"
    GROWN = "grown"
    TRUNCATED = "truncated"


@dataclass(frozen=True)
class Classification:
    """Outcome of a size comparison plus the byte range that must be read."""

    path: Path
    kind: ChangeKind
    start: int = 0
    end: int = 0

    @property
    def needs_read(self) -> bool:
        return self.kind is not ChangeKind.UNCHANGED


def classify(path: Path, stored_size: int, current_size: int) -> Classification:
    """Return the range to read for ``path``.

    A file that shrank is treated as rotated in place: everything it now
    holds is new, starting from byte 0.
    """

    if current_size == stored_size:
        return Classification(path, ChangeKind.UNCHANGED, stored_size, stored_size)
    if current_size > stored_size:
        return Classification(path, ChangeKind.GROWN, stored_size, current_size)
    return Classification(path, ChangeKind.TRUNCATED, 0, current_size)
