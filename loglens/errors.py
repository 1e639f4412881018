"""Exception types raised by the tail engine and its collaborators."""
from __future__ import annotations

from pathlib import Path
from typing import Optional


class LogLensError(Exception):
    """Base exception for loglens.

    All other exceptions inherit from this one.
    """

    def __init__(self, message: str, *, underlying: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.underlying = underlying

    def __str__(self) -> str:
        if self.underlying:
            return f"{self.args[0]} (caused by {self.underlying})"
        return self.args[0]


class FileError(LogLensError):
    """An error scoped to a single tracked file."""

    kind = "file_error"

    def __init__(
        self,
        path: Path,
        message: str,
        *,
        underlying: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, underlying=underlying)
        self.path = path


class NotFoundError(FileError):
    """Raised when a file is missing at registration time."""

    kind = "not_found"


class FileVanishedError(FileError):
    """Raised when a tracked file disappears between stat and read."""

    kind = "file_vanished"


class ReadError(FileError):
    """Raised for permission or I/O failures while reading a byte range."""

    kind = "read_error"


class DriverStartupError(LogLensError):
    """Raised when a change driver cannot set up its subscriptions."""


class EngineStateError(LogLensError):
    """Raised when the engine lifecycle is used out of order."""


class ConfigError(LogLensError):
    """Raised when configuration values are invalid."""
