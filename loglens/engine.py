"""The incremental tail engine.

``TailEngine`` owns the cursor store, one change driver and the event
dispatcher. Every notice for a file runs stat, classification, the delta
read and event delivery under that file's lock, so a file's reads and
cursor updates never overlap while different files proceed independently.
"""
from __future__ import annotations

import itertools
import logging
import os
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, DefaultDict, Iterable, Iterator, List, Optional

from .cursors import CursorStore, TrackedFile
from .drivers import (
    DEFAULT_DEBOUNCE,
    DEFAULT_POLL_INTERVAL,
    ChangeDriver,
    ChangeNotice,
    Notifier,
    Poller,
)
from .errors import (
    DriverStartupError,
    EngineStateError,
    FileError,
    FileVanishedError,
    ReadError,
)
from .events import (
    Consumer,
    ErrorEvent,
    EventDispatcher,
    FileAdded,
    FileRemoved,
    LineEvent,
)
from .log_reader import DEFAULT_AVG_LINE_BYTES, DEFAULT_CHUNK_SIZE, DeltaReader, read_window
from .rotation import ChangeKind, classify

logger = logging.getLogger(__name__)

DRIVERS = ("poll", "notify")


@dataclass
class TailOptions:
    """Runtime knobs for :class:`TailEngine`."""

    initial_lines: int = 10
    follow: bool = False
    driver: str = "poll"
    poll_interval: float = DEFAULT_POLL_INTERVAL
    debounce: float = DEFAULT_DEBOUNCE
    avg_line_bytes: int = DEFAULT_AVG_LINE_BYTES
    chunk_size: int = DEFAULT_CHUNK_SIZE


class TailEngine:
    """Track a set of files and emit one event per newly appended line."""

    def __init__(
        self,
        options: Optional[TailOptions] = None,
        *,
        driver_factory: Optional[Callable[["TailEngine"], ChangeDriver]] = None,
    ) -> None:
        self.options = options or TailOptions()
        if self.options.driver not in DRIVERS:
            raise ValueError(f"Unknown driver {self.options.driver!r}, expected one of {DRIVERS}")
        self.store = CursorStore()
        self.reader = DeltaReader(self.store, chunk_size=self.options.chunk_size)
        self.dispatcher = EventDispatcher()
        self.driver: Optional[ChangeDriver] = None
        self._driver_factory = driver_factory or _default_driver
        self._sequences: DefaultDict[Path, Iterator[int]] = defaultdict(lambda: itertools.count(1))
        self._running = False

    # -- lifecycle -------------------------------------------------------

    def start(
        self,
        files: Iterable[os.PathLike | str],
        initial_lines: Optional[int] = None,
        follow: Optional[bool] = None,
    ) -> List[Path]:
        """Register ``files`` and, when following, start the change driver.

        Returns the paths that were registered. Files that do not exist are
        reported through an ``error`` event and skipped.
        """

        if self._running:
            raise EngineStateError("Engine already started")
        if initial_lines is not None:
            self.options.initial_lines = initial_lines
        if follow is not None:
            self.options.follow = follow

        if self.options.follow:
            driver = self._driver_factory(self)
            try:
                driver.start()
            except DriverStartupError:
                driver.stop()
                raise
            self.driver = driver
        self._running = True

        registered = []
        for path in files:
            added = self.add_file(path)
            if added is not None:
                registered.append(added)
        logger.info("Tracking %d file(s) (follow=%s)", len(registered), self.options.follow)
        return registered

    def stop(self, flush: bool = False) -> None:
        """Stop the driver and release all per-file state.

        With ``flush`` every non-empty carry-over is emitted as a final line.
        Calling ``stop`` on a stopped engine does nothing.
        """

        if not self._running:
            return
        self._running = False
        driver, self.driver = self.driver, None
        if driver is not None:
            driver.stop()
        for tracked in self.store.clear():
            # Wait for any in-flight read on this file to finish.
            with tracked.lock:
                if flush and tracked.carry_over.strip():
                    self._emit_lines(tracked.path, [tracked.carry_over.rstrip("\r")])
                tracked.carry_over = ""
        self._sequences.clear()
        logger.info("Engine stopped")

    @property
    def running(self) -> bool:
        return self._running

    def __enter__(self) -> "TailEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # -- consumers -------------------------------------------------------

    def subscribe(self, consumer: Consumer) -> Callable[[], None]:
        return self.dispatcher.subscribe(consumer)

    def unsubscribe(self, consumer: Consumer) -> None:
        self.dispatcher.unsubscribe(consumer)

    def list_tracked_files(self) -> List[Path]:
        return self.store.paths()

    # -- registration ----------------------------------------------------

    def add_file(self, path: os.PathLike | str) -> Optional[Path]:
        """Register ``path`` at runtime, emitting its initial window.

        Returns the absolute path, or ``None`` when the file could not be
        registered.
        """

        if not self._running:
            raise EngineStateError("Engine is not running")
        absolute = Path(path).resolve()
        if absolute in self.store:
            return absolute
        try:
            self._register(absolute, self.options.initial_lines)
        except FileError as exc:
            logger.info("%s", exc)
            self._emit_error(exc)
            return None
        if self.driver is not None:
            try:
                self.driver.watch(absolute)
            except OSError as exc:
                logger.error("Cannot watch %s: %s", absolute, exc)
                self.remove_file(absolute)
                self.dispatcher.dispatch(
                    ErrorEvent(
                        path=absolute,
                        error_kind="watch_error",
                        message=f"Cannot watch {absolute}: {exc}",
                    )
                )
                return None
        return absolute

    def remove_file(self, path: os.PathLike | str) -> bool:
        """Stop tracking ``path``. Returns False when it was not tracked."""

        absolute = Path(path).resolve()
        if self.driver is not None:
            self.driver.unwatch(absolute)
        tracked = self.store.get(absolute)
        if tracked is None:
            return False
        with tracked.lock:
            if self.store.discard(absolute) is not tracked:
                return False
            self.dispatcher.dispatch(FileRemoved(path=absolute))
        return True

    def _register(
        self, path: Path, initial_lines: int, from_start: bool = False
    ) -> Optional[TrackedFile]:
        window = None if from_start else read_window(path, initial_lines, self.options.avg_line_bytes)
        tracked = TrackedFile(path=path)
        with tracked.lock:
            if not self.store.insert(tracked):
                return None
            if not self._running:
                # stop() cleared the store while this file was being read.
                if self.store.get(path) is tracked:
                    self.store.discard(path)
                return None
            self.dispatcher.dispatch(FileAdded(path=path))
            if window is None:
                self._check(tracked)
            else:
                self.store.commit(
                    tracked,
                    window.size,
                    window.carry_over,
                    window.decoder_state,
                    window.discard_head,
                )
                self._emit_lines(path, window.lines)
        logger.debug("Registered %s at byte %d", path, tracked.last_known_size)
        return tracked

    # -- change processing -----------------------------------------------

    def handle_notice(self, notice: ChangeNotice) -> None:
        """Re-examine the file named by ``notice``.

        This is the single consumer shared by both drivers.
        """

        if not self._running:
            return
        tracked = self.store.get(notice.path)
        if tracked is None:
            self._handle_untracked(notice.path)
            return
        with tracked.lock:
            if self.store.get(notice.path) is not tracked:
                return
            self._check(tracked)

    def poll(self) -> None:
        """Synchronously re-examine every tracked file once."""

        for path in self.list_tracked_files():
            self.handle_notice(ChangeNotice(path=path))

    def _handle_untracked(self, path: Path) -> None:
        # A watched file that vanished earlier and has been created again.
        if self.driver is None or not self.driver.is_watched(path) or not path.exists():
            return
        logger.info("File re-appeared: %s", path)
        self._register(path, 0, from_start=True)

    def _check(self, tracked: TrackedFile) -> None:
        """Classify and read one file. Callers hold ``tracked.lock``."""

        path = tracked.path
        try:
            current_size = os.stat(path).st_size
        except FileNotFoundError:
            self._vanished(tracked)
            return
        except OSError as exc:
            self._emit_error(ReadError(path, f"Cannot stat {path}", underlying=exc))
            return

        classification = classify(path, tracked.last_known_size, current_size)
        if not classification.needs_read:
            return
        if classification.kind is ChangeKind.TRUNCATED:
            logger.info(
                "File truncated: %s (%d -> %d bytes)", path, tracked.last_known_size, current_size
            )

        try:
            lines = self.reader.read_range(
                tracked,
                classification.start,
                classification.end,
                restart=classification.kind is ChangeKind.TRUNCATED,
            )
        except FileVanishedError:
            self._vanished(tracked)
            return
        except ReadError as exc:
            logger.warning("%s", exc)
            self._emit_error(exc)
            return
        self._emit_lines(path, lines)

    def _vanished(self, tracked: TrackedFile) -> None:
        if self.store.discard(tracked.path) is not tracked:
            return
        logger.info("File removed: %s", tracked.path)
        self.dispatcher.dispatch(FileRemoved(path=tracked.path))

    # -- emission --------------------------------------------------------

    def _emit_lines(self, path: Path, lines: List[str]) -> None:
        counter = self._sequences[path]
        for text in lines:
            self.dispatcher.dispatch(LineEvent(path=path, text=text, sequence=next(counter)))

    def _emit_error(self, exc: FileError) -> None:
        self.dispatcher.dispatch(ErrorEvent(path=exc.path, error_kind=exc.kind, message=str(exc)))


def _default_driver(engine: TailEngine) -> ChangeDriver:
    options = engine.options
    if options.driver == "notify":
        return Notifier(engine.handle_notice, debounce=options.debounce)
    return Poller(engine.handle_notice, engine.store.size_of, interval=options.poll_interval)


__all__ = ["TailEngine", "TailOptions", "DRIVERS"]
