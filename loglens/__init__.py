"""Incremental log tailing with terminal, full-screen and web dashboard front ends."""

from .engine import TailEngine, TailOptions
from .events import ErrorEvent, FileAdded, FileRemoved, LineEvent


def run_cli(*args, **kwargs):
    from .cli import main as _main

    return _main(*args, **kwargs)


def run_dashboard(*args, **kwargs):
    from .server import start_server as _start

    return _start(*args, **kwargs)


__all__ = [
    "TailEngine",
    "TailOptions",
    "LineEvent",
    "FileAdded",
    "FileRemoved",
    "ErrorEvent",
    "run_cli",
    "run_dashboard",
]
