"""Split text chunks into complete lines, threading the unterminated tail."""
from __future__ import annotations

from typing import List, Tuple

LINE_TERMINATOR = "\n"


def split_lines(carry_over: str, chunk: str) -> Tuple[List[str], str]:
    """Return ``(lines, new_carry_over)`` for ``carry_over + chunk``.

    Every fragment followed by a newline is a complete line; the final
    fragment (possibly empty) is returned as the new carry-over. A ``\\r``
    right before the newline is stripped. Whitespace-only lines are dropped.
    """

    data = carry_over + chunk
    if LINE_TERMINATOR not in data:
        return [], data
    parts = data.split(LINE_TERMINATOR)
    remainder = parts.pop()
    lines = [part.rstrip("\r") for part in parts if part.strip()]
    return lines, remainder
