"""Loading plant data (machines and process instances) from YAML files."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml

from .exceptions import InvalidInputError
from .models import Machine, ProcessInstance
from .scheduler.validator import parse_machines, parse_process_instances


@dataclass
class PlantData:
    """Machines and process instances read from one plant file."""

    machines: list[Machine]
    process_instances: list[ProcessInstance]


def _records(data: dict[str, Any], key: str, path: Path) -> list[dict[str, Any]]:
    raw = data.get(key) or []
    if not isinstance(raw, list):
        raise InvalidInputError(f"{path}: '{key}' must be a list")
    for index, item in enumerate(cast(list[Any], raw)):
        if not isinstance(item, dict):
            raise InvalidInputError(f"{path}: {key}[{index}] must be a mapping")
    return cast(list[dict[str, Any]], raw)


def load_plant(path: Path | str, timezone: str | None = None) -> PlantData:
    """Load machines and process instances.

    The file holds two lists, ``machines`` and ``process_instances``
    (``processInstances`` is accepted too). Timestamps are converted to
    plant-local time using ``timezone``.

    Raises:
        FileNotFoundError: If the file doesn't exist
        InvalidInputError: If the file or any record is malformed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Plant file not found: {path}")

    with path.open() as f:
        data: Any = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise InvalidInputError(f"{path}: expected a mapping with 'machines' and 'process_instances'")
    data = cast(dict[str, Any], data)

    instance_key = "process_instances" if "process_instances" in data else "processInstances"
    return PlantData(
        machines=parse_machines(_records(data, "machines", path), timezone),
        process_instances=parse_process_instances(_records(data, instance_key, path), timezone),
    )
