"""Change drivers decide when a tracked file should be re-examined.

Two interchangeable strategies are provided. :class:`Poller` stats every
watched file on a fixed interval and compares the size against the stored
cursor. :class:`Notifier` subscribes to OS change notifications through
watchdog and optionally waits for a write burst to settle. Both only emit
:class:`ChangeNotice` objects; reading and splitting happen in the engine.
"""
from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import DriverStartupError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_DEBOUNCE = 0.5


class NoticeReason(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class ChangeNotice:
    """Request to re-examine ``path``. ``reason`` is a hint only."""

    path: Path
    reason: NoticeReason = NoticeReason.MODIFIED


NoticeCallback = Callable[[ChangeNotice], None]


class ChangeDriver(ABC):
    """Strategy interface shared by the poller and the notifier."""

    def __init__(self, on_notice: NoticeCallback) -> None:
        self.on_notice = on_notice
        self._watched: Set[Path] = set()
        self._watch_guard = threading.Lock()

    @abstractmethod
    def start(self) -> None:
        """Begin issuing notices. Raises :class:`DriverStartupError`."""

    @abstractmethod
    def stop(self) -> None:
        """Stop issuing notices. Safe to call more than once."""

    def watch(self, path: Path) -> None:
        with self._watch_guard:
            self._watched.add(path)

    def unwatch(self, path: Path) -> None:
        with self._watch_guard:
            self._watched.discard(path)

    def watched_paths(self) -> List[Path]:
        with self._watch_guard:
            return sorted(self._watched)

    def is_watched(self, path: Path) -> bool:
        with self._watch_guard:
            return path in self._watched

    def _notify(self, path: Path, reason: NoticeReason) -> None:
        self.on_notice(ChangeNotice(path=path, reason=reason))


class Poller(ChangeDriver):
    """Stat every watched file each ``interval`` seconds.

    Missed intervals simply coalesce into one larger delta on the next tick.
    """

    def __init__(
        self,
        on_notice: NoticeCallback,
        size_lookup: Callable[[Path], Optional[int]],
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        super().__init__(on_notice)
        self.size_lookup = size_lookup
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        try:
            self._thread = threading.Thread(target=self._run, name="loglens-poller", daemon=True)
            self._thread.start()
        except RuntimeError as exc:
            self._thread = None
            raise DriverStartupError("Cannot start poller thread", underlying=exc) from exc
        logger.debug("Poller started (interval %.3fs)", self.interval)

    def stop(self) -> None:
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread and thread is not threading.current_thread():
            thread.join(timeout=5)
            if thread.is_alive():
                logger.warning("Poller thread did not finish within 5s")
        logger.debug("Poller stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> None:
        """Check every watched file once."""

        for path in self.watched_paths():
            if self._stop.is_set():
                return
            cursor = self.size_lookup(path)
            try:
                size = os.stat(path).st_size
            except FileNotFoundError:
                if cursor is not None:
                    self._notify(path, NoticeReason.REMOVED)
                continue
            except OSError:
                # Let the engine stat again and report the failure.
                self._notify(path, NoticeReason.MODIFIED)
                continue
            if cursor is None:
                self._notify(path, NoticeReason.CREATED)
            elif size != cursor:
                self._notify(path, NoticeReason.MODIFIED)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.tick()
            except Exception:
                logger.exception("Poll tick failed")


class _NotifierHandler(FileSystemEventHandler):
    def __init__(self, notifier: "Notifier") -> None:
        super().__init__()
        self.notifier = notifier

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.notifier.handle_fs_event(_event_path(event.src_path), NoticeReason.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.notifier.handle_fs_event(_event_path(event.src_path), NoticeReason.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.notifier.handle_fs_event(_event_path(event.src_path), NoticeReason.REMOVED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.notifier.handle_fs_event(_event_path(event.src_path), NoticeReason.REMOVED)
        self.notifier.handle_fs_event(_event_path(event.dest_path), NoticeReason.CREATED)


def _event_path(raw) -> Path:
    return Path(os.fsdecode(raw)).resolve()


class Notifier(ChangeDriver):
    """Watch parent directories with watchdog and emit notices for watched files.

    With a positive ``debounce`` a created or modified file is only reported
    once no further event arrived for that many seconds. Removals are
    reported immediately.
    """

    def __init__(
        self,
        on_notice: NoticeCallback,
        debounce: float = DEFAULT_DEBOUNCE,
        observer_factory: Callable[[], Observer] = Observer,
    ) -> None:
        super().__init__(on_notice)
        self.debounce = debounce
        self.observer_factory = observer_factory
        self._observer: Optional[Observer] = None
        self._handler = _NotifierHandler(self)
        self._directories: Dict[Path, object] = {}
        self._timers: Dict[Path, threading.Timer] = {}
        self._timer_guard = threading.Lock()

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = self.observer_factory()
        try:
            for directory in sorted({path.parent for path in self.watched_paths()}):
                self._directories[directory] = observer.schedule(
                    self._handler, str(directory), recursive=False
                )
            observer.start()
        except (OSError, RuntimeError) as exc:
            self._directories.clear()
            raise DriverStartupError("Cannot subscribe to file system notifications", underlying=exc) from exc
        self._observer = observer
        logger.debug("Notifier started (debounce %.3fs)", self.debounce)

    def stop(self) -> None:
        with self._timer_guard:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        observer = self._observer
        self._observer = None
        self._directories.clear()
        if observer is not None:
            observer.stop()
            if observer is not threading.current_thread():
                observer.join(timeout=5)
            logger.debug("Notifier stopped")

    @property
    def running(self) -> bool:
        return self._observer is not None

    def watch(self, path: Path) -> None:
        super().watch(path)
        directory = path.parent
        if self._observer is not None and directory not in self._directories:
            self._directories[directory] = self._observer.schedule(
                self._handler, str(directory), recursive=False
            )

    def unwatch(self, path: Path) -> None:
        super().unwatch(path)
        self._cancel_timer(path)
        directory = path.parent
        if any(other.parent == directory for other in self.watched_paths()):
            return
        watch = self._directories.pop(directory, None)
        if watch is not None and self._observer is not None:
            self._observer.unschedule(watch)

    def handle_fs_event(self, path: Path, reason: NoticeReason) -> None:
        """Turn a raw file system event into a (possibly debounced) notice."""

        if not self.is_watched(path):
            return
        if reason is NoticeReason.REMOVED or self.debounce <= 0:
            self._cancel_timer(path)
            self._notify(path, reason)
            return
        timer = threading.Timer(self.debounce, self._fire, args=(path, reason))
        timer.daemon = True
        with self._timer_guard:
            previous = self._timers.get(path)
            self._timers[path] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _fire(self, path: Path, reason: NoticeReason) -> None:
        with self._timer_guard:
            timer = self._timers.get(path)
            if timer is None or timer is not threading.current_thread():
                return
            del self._timers[path]
        self._notify(path, reason)

    def _cancel_timer(self, path: Path) -> None:
        with self._timer_guard:
            timer = self._timers.pop(path, None)
        if timer is not None:
            timer.cancel()
