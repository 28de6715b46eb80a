"""Command-line options shared between the CLI callback and the commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass
class CliOptions:
    """Global options given before the command name."""

    config_path: Path | None = None
    # Replaces calendar.timezone of whatever config gets loaded
    timezone: str | None = None


_options = CliOptions()


def get_config_path() -> Path | None:
    """Config file given with ``--config``."""
    return _options.config_path


def set_config_path(path: Path | None) -> None:
    _options.config_path = path


def get_timezone() -> str | None:
    """Plant timezone given with ``--timezone``."""
    return _options.timezone


def set_timezone(name: str | None) -> None:
    _options.timezone = name


def reset() -> None:
    """Forget all global options (used between CLI invocations in tests)."""
    set_config_path(None)
    set_timezone(None)
