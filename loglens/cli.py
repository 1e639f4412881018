"""Entry point for the loglens command line."""
from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, List, Sequence

from rich.console import Console

from .config import LogLensConfig, load_config
from .engine import DRIVERS, TailEngine
from .errors import ConfigError, DriverStartupError
from .events import Event, FileAdded, LineEvent
from .filters import LineFilter
from .log_reader import discover_logs, expand_patterns
from .ui import TerminalUI

logger = logging.getLogger(__name__)


class EventPrinter:
    """Engine consumer that writes lines to stdout and notices to stderr."""

    def __init__(
        self,
        ui: TerminalUI,
        out: Console,
        err: Console,
        show_added: bool = False,
    ) -> None:
        self.ui = ui
        self.out = out
        self.err = err
        self.show_added = show_added

    def __call__(self, event: Event) -> None:
        if isinstance(event, FileAdded) and not self.show_added:
            return
        text = self.ui.render(event)
        if text is None:
            return
        if isinstance(event, LineEvent):
            self.out.print(text)
        else:
            self.err.print(text)


def main(argv: Iterable[str] | None = None) -> int:
    """Run the requested command and return the process exit status."""

    args = _parse_args(argv)
    _setup_logging(args.verbose, args.log_file)
    err = Console(stderr=True, highlight=False, markup=False)

    try:
        config = load_config(Path(args.config) if args.config else None, _overrides(args))
    except ConfigError as exc:
        err.print(f"Error: {exc}", style="bold red")
        return 1

    files = expand_patterns(args.files)
    for path in discover_logs(config.log_patterns, config.auto_dirs, config.log_extensions):
        if path not in files:
            files.append(path)
    if not files:
        err.print("Error: no files matched", style="bold red")
        return 1

    if args.command == "tail":
        return _run_tail(config, files, err)
    if args.command == "watch":
        return _run_watch(config, files, err)
    if args.command == "dashboard":
        return _run_dashboard(config, files, err)
    return _run_tui(config, files, err)


def _parse_args(argv: Iterable[str] | None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("files", nargs="*", help="Log files or glob patterns")
    common.add_argument("--config", help="Optional path to a YAML config file")
    common.add_argument("--include", nargs="+", help="Only show lines matching these patterns")
    common.add_argument("--exclude", nargs="+", help="Exclude lines matching these patterns")
    common.add_argument("--highlight", nargs="+", help="Highlight text matching these patterns")
    common.add_argument(
        "-i",
        "--ignore-case",
        action="store_true",
        default=None,
        help="Case insensitive pattern matching",
    )
    common.add_argument(
        "--regex",
        action="store_true",
        default=None,
        help="Treat patterns as regular expressions",
    )
    common.add_argument("--driver", choices=DRIVERS, help="Change detection strategy")
    common.add_argument("--poll-interval", type=float, help="Polling interval in seconds")
    common.add_argument("--debounce", type=float, help="Seconds a file must be quiet before reading")
    common.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    common.add_argument("--log-file", help="Also write diagnostic logging to this file")

    parser = argparse.ArgumentParser(
        prog="loglens",
        description="Log file monitoring with real-time tailing, pattern matching and a web dashboard",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    tail = subparsers.add_parser("tail", parents=[common], help="Tail one or more log files")
    tail.add_argument("-n", "--lines", type=int, help="Number of lines to display (default: 10)")
    tail.add_argument(
        "-f",
        "--follow",
        action="store_true",
        default=None,
        help="Follow log file updates",
    )

    subparsers.add_parser("watch", parents=[common], help="Watch log files for changes")

    dashboard = subparsers.add_parser(
        "dashboard", parents=[common], help="Start a web dashboard with live log updates"
    )
    dashboard.add_argument("-p", "--port", type=int, help="Port to run the dashboard on")
    dashboard.add_argument("-H", "--host", help="Host to bind to")
    dashboard.add_argument("-n", "--lines", type=int, help="Lines per file to preload")

    subparsers.add_parser("tui", parents=[common], help="Full-screen live log viewer")
    return parser.parse_args(argv)


def _overrides(args: argparse.Namespace) -> dict:
    overrides = {
        "initial_lines": getattr(args, "lines", None),
        "follow": getattr(args, "follow", None),
        "driver": args.driver or ("notify" if args.command == "watch" else None),
        "poll_interval": args.poll_interval,
        "debounce": args.debounce,
        "host": getattr(args, "host", None),
        "port": getattr(args, "port", None),
        "include": args.include,
        "exclude": args.exclude,
        "highlight": args.highlight,
        "ignore_case": args.ignore_case,
        "regex": args.regex,
    }
    return {k: v for k, v in overrides.items() if v is not None}


def _setup_logging(verbose: bool, log_file: str | None) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def _missing(files: Sequence[Path], err: Console) -> bool:
    missing = [path for path in files if not path.exists()]
    for path in missing:
        err.print(f"Error: File not found: {path}", style="bold red")
    return bool(missing)


def _follow_until_interrupted(engine: TailEngine, err: Console) -> None:
    try:
        while engine.running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        err.print("\nStopping...", style="dim")
    finally:
        engine.stop()


def _printer(config: LogLensConfig, files: Sequence[Path], err: Console, show_added: bool) -> EventPrinter:
    ui = TerminalUI(LineFilter.from_config(config), show_file=len(files) > 1)
    return EventPrinter(ui, Console(highlight=False, soft_wrap=True), err, show_added=show_added)


def _run_tail(config: LogLensConfig, files: Sequence[Path], err: Console) -> int:
    if _missing(files, err):
        return 1
    engine = TailEngine(config.tail_options())
    engine.subscribe(_printer(config, files, err, show_added=False))
    try:
        registered = engine.start(files)
    except DriverStartupError as exc:
        err.print(f"Error: {exc}", style="bold red")
        return 1
    if not registered:
        engine.stop()
        return 1
    if not config.follow:
        engine.stop()
        return 0
    err.print(f"Following {len(registered)} file(s)... (Ctrl+C to stop)", style="dim")
    _follow_until_interrupted(engine, err)
    return 0


def _run_watch(config: LogLensConfig, files: Sequence[Path], err: Console) -> int:
    options = config.tail_options()
    options.follow = True
    options.initial_lines = 0
    engine = TailEngine(options)
    engine.subscribe(_printer(config, files, err, show_added=True))
    try:
        registered = engine.start(files)
    except DriverStartupError as exc:
        err.print(f"Error: {exc}", style="bold red")
        return 1
    if not registered:
        engine.stop()
        return 1
    err.print(f"Watching {len(registered)} file(s)... (Ctrl+C to stop)", style="dim")
    _follow_until_interrupted(engine, err)
    return 0


def _run_dashboard(config: LogLensConfig, files: Sequence[Path], err: Console) -> int:
    if _missing(files, err):
        return 1
    from .server import start_server

    err.print(f"Open your browser to: http://{config.host}:{config.port}", style="cyan")
    err.print(f"Monitoring {len(files)} file(s):", style="dim")
    for path in files:
        err.print(f"  - {path}", style="dim")
    err.print("Press Ctrl+C to stop", style="dim")
    start_server(config, files)
    return 0


def _run_tui(config: LogLensConfig, files: Sequence[Path], err: Console) -> int:
    if _missing(files, err):
        return 1
    from .textual_app import LogLensTextualApp

    LogLensTextualApp(config, files).run()
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
