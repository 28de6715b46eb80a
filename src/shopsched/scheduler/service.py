"""High-level scheduling operations for collaborators.

Thin functions over ``Scheduler``, ``ScheduleManager``, ``ConflictDetector``
and ``ScheduleValidator`` so callers do not need to wire the pieces.
"""

from collections.abc import Sequence
from datetime import datetime

from shopsched.models import Machine, ProcessInstance

from .config import SchedulingConfig
from .conflicts import ConflictDetector
from .core import Conflict, RescheduleResult, ScheduleEntry, ScheduleResult, ValidationResult
from .engine import Scheduler
from .manager import ScheduleManager
from .validator import ScheduleValidator


def schedule_process_instances(
    instances: Sequence[ProcessInstance],
    machines: Sequence[Machine],
    config: SchedulingConfig | None = None,
    *,
    start_time: datetime | None = None,
    existing_entries: Sequence[ScheduleEntry] = (),
) -> ScheduleResult:
    """Place process instances on machines (see ``Scheduler.schedule``)."""
    return Scheduler(config).schedule(
        instances, machines, start_time=start_time, existing_entries=existing_entries
    )


def reschedule_entry(  # noqa: PLR0913 - mirrors ScheduleManager.reschedule_entry
    entries: Sequence[ScheduleEntry],
    machines: Sequence[Machine],
    entry_id: str,
    new_start: datetime,
    new_machine_id: str | None = None,
    config: SchedulingConfig | None = None,
) -> tuple[RescheduleResult, list[ScheduleEntry]]:
    """Reschedule one entry within a set of entries.

    Returns:
        The reschedule outcome and the resulting entries (unchanged on rejection)
    """
    manager = ScheduleManager(entries, machines, config)
    result = manager.reschedule_entry(entry_id, new_start, new_machine_id)
    return result, manager.get_entries()


def delete_entry(
    entries: Sequence[ScheduleEntry], entry_id: str, config: SchedulingConfig | None = None
) -> list[ScheduleEntry]:
    """Entries with one entry removed.

    Raises:
        EntryNotFoundError: If the id is unknown
    """
    manager = ScheduleManager(entries, config=config)
    manager.delete_entry(entry_id)
    return manager.get_entries()


def detect_conflicts(
    entries: Sequence[ScheduleEntry],
    machines: Sequence[Machine] = (),
    config: SchedulingConfig | None = None,
) -> list[Conflict]:
    """All conflicts among the entries; maintenance clashes too when machines are given."""
    config = config or SchedulingConfig()
    detector = ConflictDetector(config.conflict_buffer_minutes)
    conflicts = detector.detect_conflicts(entries)
    if machines:
        conflicts.extend(detector.maintenance_conflicts(entries, {m.id: m for m in machines}))
    return sorted(conflicts, key=Conflict.sort_key)


def validate_schedule(
    entries: Sequence[ScheduleEntry],
    machines: Sequence[Machine] | None = None,
    config: SchedulingConfig | None = None,
) -> ValidationResult:
    """Pre-commit validation: hard errors plus out-of-hours warnings."""
    return ScheduleValidator(config).validate_schedule(entries, machines)
