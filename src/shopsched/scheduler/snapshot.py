"""Schedule snapshot files.

A snapshot stores committed schedule entries as YAML so a later run can
schedule around them (``existing_entries``) or the manager can mutate them.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, cast

import yaml

from shopsched.timeutil import isoformat, to_datetime

from .core import EntryStatus, ScheduleEntry

SNAPSHOT_FILE_VERSION = 1


@dataclass
class ScheduleSnapshot:
    """Entries loaded from a snapshot file."""

    version: int
    entries: list[ScheduleEntry]
    generated_at: datetime | None = None


def entry_to_dict(entry: ScheduleEntry) -> dict[str, Any]:
    """Plain-data form of an entry; optional fields are left out when unset."""
    data: dict[str, Any] = {
        "id": entry.id,
        "machine_id": entry.machine_id,
        "process_instance_id": entry.process_instance_id,
        "start_time": isoformat(entry.start_time),
        "end_time": isoformat(entry.end_time),
        "status": entry.status.value,
    }
    if entry.order_id:
        data["order_id"] = entry.order_id
    if entry.actual_start_time is not None:
        data["actual_start_time"] = isoformat(entry.actual_start_time)
    if entry.actual_end_time is not None:
        data["actual_end_time"] = isoformat(entry.actual_end_time)
    if entry.work_minutes is not None:
        data["work_minutes"] = entry.work_minutes
    if entry.dependencies:
        data["dependencies"] = list(entry.dependencies)
    if entry.notes:
        data["notes"] = entry.notes
    data["version"] = entry.version
    return data


def write_schedule_file(path: Path, entries: list[ScheduleEntry], generated_at: datetime | None = None) -> None:
    """Write entries to a snapshot file.

    Args:
        path: Path to write
        entries: Entries to store (kept in the given order)
        generated_at: Optional timestamp recorded in the file
    """
    output: dict[str, Any] = {"version": SNAPSHOT_FILE_VERSION}
    if generated_at is not None:
        output["generated_at"] = isoformat(generated_at)
    output["entries"] = [entry_to_dict(e) for e in entries]

    with path.open("w") as f:
        yaml.safe_dump(output, f, default_flow_style=False, sort_keys=False)


def _parse_time(entry_id: str, field_name: str, value: Any, tz_name: str | None) -> datetime:
    try:
        return to_datetime(value, tz_name)
    except ValueError as e:
        raise ValueError(f"Invalid {field_name} in entry '{entry_id}': {e}") from e


def entry_from_dict(data: dict[str, Any], tz_name: str | None = None) -> ScheduleEntry:
    """Build an entry from its plain-data form.

    Raises:
        ValueError: If required fields are missing or malformed
    """
    entry_id = data.get("id")
    if not entry_id:
        raise ValueError("Schedule entry missing 'id'")
    entry_id = str(entry_id)
    for required in ("machine_id", "process_instance_id", "start_time", "end_time"):
        if data.get(required) in (None, ""):
            raise ValueError(f"Schedule entry '{entry_id}' missing '{required}'")

    start = _parse_time(entry_id, "start_time", data["start_time"], tz_name)
    end = _parse_time(entry_id, "end_time", data["end_time"], tz_name)
    if end <= start:
        raise ValueError(f"Schedule entry '{entry_id}' must end after it starts")

    try:
        status = EntryStatus(data.get("status", EntryStatus.SCHEDULED.value))
    except ValueError as e:
        raise ValueError(f"Invalid status in entry '{entry_id}': {e}") from e

    actual_start = data.get("actual_start_time")
    actual_end = data.get("actual_end_time")
    work_minutes = data.get("work_minutes")
    return ScheduleEntry(
        id=entry_id,
        machine_id=str(data["machine_id"]),
        process_instance_id=str(data["process_instance_id"]),
        start_time=start,
        end_time=end,
        order_id=str(data.get("order_id") or ""),
        status=status,
        actual_start_time=_parse_time(entry_id, "actual_start_time", actual_start, tz_name) if actual_start else None,
        actual_end_time=_parse_time(entry_id, "actual_end_time", actual_end, tz_name) if actual_end else None,
        work_minutes=float(work_minutes) if work_minutes is not None else None,
        dependencies=tuple(str(d) for d in data.get("dependencies") or ()),
        notes=data.get("notes"),
        version=int(data.get("version", 1)),
    )


def read_schedule_file(path: Path, tz_name: str | None = None) -> ScheduleSnapshot:
    """Load a snapshot file.

    Args:
        path: Path to the snapshot file
        tz_name: Plant timezone for timestamps carrying an offset

    Raises:
        ValueError: If the file format is invalid or the version is unsupported
    """
    with path.open() as f:
        raw_data: Any = yaml.safe_load(f)

    if not isinstance(raw_data, dict):
        raise ValueError(f"Invalid schedule file format: expected dict, got {type(raw_data)}")

    data = cast(dict[str, Any], raw_data)

    version = data.get("version")
    if version is None:
        raise ValueError("Schedule file missing 'version' field")
    if not isinstance(version, int):
        raise ValueError(f"Schedule file version must be int, got {type(version)}")
    if version != SNAPSHOT_FILE_VERSION:
        raise ValueError(f"Unsupported schedule file version {version}, expected {SNAPSHOT_FILE_VERSION}")

    raw_entries = data.get("entries") or []
    if not isinstance(raw_entries, list):
        raise ValueError("Schedule file 'entries' field must be a list")

    entries: list[ScheduleEntry] = []
    for index, item in enumerate(cast(list[Any], raw_entries)):
        if not isinstance(item, dict):
            raise ValueError(f"Schedule entry at index {index} must be a dict")
        entries.append(entry_from_dict(cast(dict[str, Any], item), tz_name))

    generated = data.get("generated_at")
    return ScheduleSnapshot(
        version=version,
        entries=entries,
        generated_at=_parse_time("<file>", "generated_at", generated, tz_name) if generated else None,
    )
