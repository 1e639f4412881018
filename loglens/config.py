"""Configuration helpers for the loglens CLI."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import yaml

from .engine import DRIVERS, TailOptions
from .errors import ConfigError


@dataclass
class LogLensConfig:
    """Runtime knobs shared by every command."""

    log_patterns: Sequence[str] = field(default_factory=tuple)
    auto_dirs: Sequence[str] = field(default_factory=tuple)
    log_extensions: Sequence[str] = (".log",)
    initial_lines: int = 10
    follow: bool = False
    driver: str = "poll"
    poll_interval: float = 0.1
    debounce: float = 0.5
    avg_line_bytes: int = 120
    history_size: int = 1000
    host: str = "localhost"
    port: int = 3000
    include: Sequence[str] = field(default_factory=tuple)
    exclude: Sequence[str] = field(default_factory=tuple)
    highlight: Sequence[str] = field(default_factory=tuple)
    ignore_case: bool = False
    regex: bool = False

    def tail_options(self) -> TailOptions:
        """Return the engine options described by this config."""

        return TailOptions(
            initial_lines=self.initial_lines,
            follow=self.follow,
            driver=self.driver,
            poll_interval=self.poll_interval,
            debounce=self.debounce,
            avg_line_bytes=self.avg_line_bytes,
        )


def load_config(path: Path | None, overrides: dict | None = None) -> LogLensConfig:
    """Load configuration from YAML if present, then apply ``overrides``."""

    config_data: dict = {}
    if path is not None:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            config_data = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}", underlying=exc) from exc
        if not isinstance(config_data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
    if overrides:
        config_data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        config = LogLensConfig(
            log_patterns=_as_tuple(config_data.get("log_patterns")),
            auto_dirs=_as_tuple(config_data.get("auto_dirs")),
            log_extensions=_as_tuple(config_data.get("log_extensions", (".log",))),
            initial_lines=int(config_data.get("initial_lines", 10)),
            follow=bool(config_data.get("follow", False)),
            driver=str(config_data.get("driver", "poll")),
            poll_interval=float(config_data.get("poll_interval", 0.1)),
            debounce=float(config_data.get("debounce", 0.5)),
            avg_line_bytes=int(config_data.get("avg_line_bytes", 120)),
            history_size=int(config_data.get("history_size", 1000)),
            host=str(config_data.get("host", "localhost")),
            port=int(config_data.get("port", 3000)),
            include=_as_tuple(config_data.get("include")),
            exclude=_as_tuple(config_data.get("exclude")),
            highlight=_as_tuple(config_data.get("highlight")),
            ignore_case=bool(config_data.get("ignore_case", False)),
            regex=bool(config_data.get("regex", False)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError("Invalid configuration value", underlying=exc) from exc

    if config.driver not in DRIVERS:
        raise ConfigError(f"Unknown driver {config.driver!r}; expected one of {', '.join(DRIVERS)}")
    if config.initial_lines < 0:
        raise ConfigError("initial_lines must not be negative")
    if config.poll_interval <= 0:
        raise ConfigError("poll_interval must be positive")
    if config.debounce < 0:
        raise ConfigError("debounce must not be negative")
    if config.avg_line_bytes <= 0:
        raise ConfigError("avg_line_bytes must be positive")
    if config.history_size <= 0:
        raise ConfigError("history_size must be positive")
    return config


def _as_tuple(value) -> tuple:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value)
