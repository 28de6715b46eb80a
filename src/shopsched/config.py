"""Configuration file loading.

One YAML file (``shopsched.yaml``) holds the plant settings. Its
``scheduler`` section maps onto ``SchedulingConfig``:

    scheduler:
      variant: enhanced
      horizon_days: 90
      calendar:
        working_hours_start: "07:00"
        break_times:
          - {start: "12:00", end: "12:30"}
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from . import context
from .scheduler.config import SchedulingConfig

CONFIG_FILE_NAME = "shopsched.yaml"


class ShopschedConfig(BaseModel):
    """Contents of a configuration file."""

    scheduler: SchedulingConfig = SchedulingConfig()


def load_config(config_path: Path | str) -> ShopschedConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Parsed configuration (defaults for missing sections)

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not a mapping or fails validation
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open() as f:
        data: Any = yaml.safe_load(f)

    if data is None:
        return ShopschedConfig()
    if not isinstance(data, dict):
        raise ValueError(f"Invalid config file {config_path}: expected a mapping")

    try:
        return ShopschedConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid config file {config_path}: {e}") from e


def discover_config(input_path: Path | None = None, config_path: Path | None = None) -> ShopschedConfig:
    """Find and load the configuration.

    Search order:
    1. Explicit config_path argument
    2. Global context (set via CLI --config)
    3. Input file directory / shopsched.yaml
    4. Current directory / shopsched.yaml

    Returns default configuration if no file is found. A timezone given
    with ``--timezone`` replaces the calendar timezone of the result.
    """
    config = _find_config(input_path, config_path)
    timezone = context.get_timezone()
    if timezone is None:
        return config
    calendar = config.scheduler.calendar.model_copy(update={"timezone": timezone})
    scheduler = config.scheduler.model_copy(update={"calendar": calendar})
    return config.model_copy(update={"scheduler": scheduler})


def _find_config(input_path: Path | None, config_path: Path | None) -> ShopschedConfig:
    # 1. Explicit argument
    if config_path is not None:
        return load_config(config_path)

    # 2. Global context
    ctx_config = context.get_config_path()
    if ctx_config is not None:
        return load_config(ctx_config)

    # 3. Input file directory
    if input_path is not None:
        dir_config = Path(input_path).parent / CONFIG_FILE_NAME
        if dir_config.exists():
            return load_config(dir_config)

    # 4. Current directory
    cwd_config = Path(CONFIG_FILE_NAME)
    if cwd_config.exists():
        return load_config(cwd_config)

    return ShopschedConfig()
