"""Byte-range readers for tracked log files."""
from __future__ import annotations

import glob
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Sequence

from .cursors import CursorStore, TrackedFile, new_decoder
from .errors import FileVanishedError, NotFoundError, ReadError
from .splitter import split_lines

logger = logging.getLogger(__name__)

DEFAULT_AVG_LINE_BYTES = 120
DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass
class InitialWindow:
    """Result of reading the tail of a file at registration time."""

    lines: List[str]
    carry_over: str
    size: int
    decoder_state: Optional[tuple] = None
    discard_head: bool = False


def read_window(
    path: Path,
    num_lines: int,
    avg_line_bytes: int = DEFAULT_AVG_LINE_BYTES,
) -> InitialWindow:
    """Read a bounded suffix of ``path`` and return its last complete lines.

    Only about ``num_lines * avg_line_bytes`` bytes are read. When the window
    does not begin at byte 0 the first fragment is discarded, since it is
    part of a line that started before the window. An unterminated final
    fragment is returned as ``carry_over`` rather than as a line. With
    ``num_lines`` of zero the window is still read so that the line in
    progress is carried over, but no lines are returned. When the window
    holds no newline at all, ``discard_head`` marks the line in progress as
    already started.
    """

    try:
        size = path.stat().st_size
    except FileNotFoundError as exc:
        raise NotFoundError(path, f"File not found: {path}", underlying=exc) from exc
    except OSError as exc:
        raise ReadError(path, f"Cannot stat {path}", underlying=exc) from exc

    if size == 0:
        return InitialWindow(lines=[], carry_over="", size=size)

    start = size - min(max(num_lines, 1) * avg_line_bytes, size)
    # Begin one byte early: if that byte is a newline the window starts on a
    # line boundary and the first line is kept whole.
    offset = max(start - 1, 0)
    try:
        with path.open("rb") as handle:
            handle.seek(offset)
            data = _read_exactly(handle, size - offset)
    except FileNotFoundError as exc:
        raise NotFoundError(path, f"File not found: {path}", underlying=exc) from exc
    except OSError as exc:
        raise ReadError(path, f"Cannot read {path}", underlying=exc) from exc

    decoder = new_decoder()
    text = decoder.decode(data)
    if offset > 0:
        newline = text.find("\n")
        if newline == -1:
            logger.debug("Window for %s holds no line boundary", path)
            return InitialWindow(
                lines=[],
                carry_over="",
                size=offset + len(data),
                decoder_state=decoder.getstate(),
                discard_head=True,
            )
        text = text[newline + 1 :]

    lines, carry_over = split_lines("", text)
    return InitialWindow(
        lines=lines[-num_lines:] if num_lines > 0 else [],
        carry_over=carry_over,
        size=offset + len(data),
        decoder_state=decoder.getstate(),
    )


def read_last_lines(
    path: Path,
    num_lines: int,
    avg_line_bytes: int = DEFAULT_AVG_LINE_BYTES,
) -> List[str]:
    """Return at most ``num_lines`` complete lines from the end of ``path``."""

    return read_window(path, num_lines, avg_line_bytes).lines


class DeltaReader:
    """Reads ``[start, end)`` of a tracked file and advances its cursor."""

    def __init__(self, store: CursorStore, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.store = store
        self.chunk_size = chunk_size

    def read_range(
        self,
        tracked: TrackedFile,
        start: int,
        end: int,
        restart: bool = False,
    ) -> List[str]:
        """Return the complete lines found in ``[start, end)``.

        The caller must hold ``tracked.lock``. With ``restart`` (after a
        truncation) the previous carry-over is discarded. While the file's
        ``discard_head`` is set, text up to the first newline is dropped.
        The cursor, carry-over and decoder state are committed only once the
        range has been read; on failure the file keeps its previous state.
        """

        decoder = new_decoder()
        carry_over = ""
        discard_head = False
        if not restart:
            decoder.setstate(tracked.decoder.getstate())
            carry_over = tracked.carry_over
            discard_head = tracked.discard_head
        lines: List[str] = []
        position = start
        try:
            with tracked.path.open("rb") as handle:
                handle.seek(start)
                while position < end:
                    chunk = handle.read(min(self.chunk_size, end - position))
                    if not chunk:
                        # Shrank while reading; the next check sees the truncation.
                        break
                    position += len(chunk)
                    text = decoder.decode(chunk)
                    if discard_head:
                        newline = text.find("\n")
                        if newline == -1:
                            continue
                        text = text[newline + 1 :]
                        discard_head = False
                    new_lines, carry_over = split_lines(carry_over, text)
                    lines.extend(new_lines)
        except FileNotFoundError as exc:
            raise FileVanishedError(
                tracked.path, f"File removed: {tracked.path}", underlying=exc
            ) from exc
        except OSError as exc:
            raise ReadError(tracked.path, f"Cannot read {tracked.path}", underlying=exc) from exc

        self.store.commit(tracked, position, carry_over, decoder.getstate(), discard_head)
        logger.debug("Read %s bytes [%s, %s) from %s", position - start, start, position, tracked.path)
        return lines


def _read_exactly(handle: BinaryIO, count: int) -> bytes:
    parts: List[bytes] = []
    remaining = count
    while remaining > 0:
        chunk = handle.read(min(DEFAULT_CHUNK_SIZE, remaining))
        if not chunk:
            break
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


def expand_patterns(patterns: Iterable[str]) -> List[Path]:
    """Resolve file arguments, expanding globs and keeping literal paths.

    Literal paths are returned even when missing so that registration can
    report them.
    """

    resolved: List[Path] = []
    for pattern in patterns:
        if any(char in pattern for char in "*?["):
            matches = sorted(glob.glob(pattern, recursive=True))
            resolved.extend(Path(match).resolve() for match in matches if Path(match).is_file())
        else:
            resolved.append(Path(pattern).resolve())

    unique: List[Path] = []
    for path in resolved:
        if path not in unique:
            unique.append(path)
    return unique


def discover_logs(
    patterns: Iterable[str],
    auto_dirs: Sequence[str] | None = None,
    extensions: Sequence[str] | None = None,
) -> List[Path]:
    """Expand every glob pattern plus auto-discovered directories."""

    discovered: List[Path] = []
    for pattern in patterns:
        discovered.extend(path for path in expand_patterns([pattern]) if path.exists())

    if auto_dirs:
        for directory in auto_dirs:
            base = Path(directory)
            if not base.exists():
                continue
            if extensions:
                for ext in extensions:
                    discovered.extend(base.rglob(f"*{ext}"))
            else:
                discovered.extend(p for p in base.rglob("*") if p.is_file())

    unique = sorted({path.resolve() for path in discovered if path.exists()})
    return unique
