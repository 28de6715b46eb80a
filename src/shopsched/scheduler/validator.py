"""Input validation and pre-commit schedule validation."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from datetime import timedelta
from typing import Any

from pydantic import ValidationError

from shopsched.exceptions import InvalidInputError
from shopsched.logger import get_logger
from shopsched.models import Machine, ProcessInstance

from .calendar import WorkingCalendar
from .config import SchedulingConfig
from .conflicts import ConflictDetector
from .core import ScheduleEntry, ValidationResult

logger = get_logger()

# End instants are exclusive; check the last moment of work instead
_ONE_TICK = timedelta(microseconds=1)


def _format_validation_error(kind: str, index: int, error: ValidationError) -> str:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in error.errors()
    )
    return f"Invalid {kind} at index {index}: {details}"


def parse_process_instances(raw: Iterable[Mapping[str, Any]], timezone: str | None = None) -> list[ProcessInstance]:
    """Build process instances from plain mappings.

    Raises:
        InvalidInputError: If any record is malformed
    """
    instances: list[ProcessInstance] = []
    for index, record in enumerate(raw):
        try:
            instances.append(ProcessInstance.model_validate(record, context={"timezone": timezone}))
        except ValidationError as e:
            raise InvalidInputError(_format_validation_error("process instance", index, e)) from e
    return instances


def parse_machines(raw: Iterable[Mapping[str, Any]], timezone: str | None = None) -> list[Machine]:
    """Build machines from plain mappings.

    Raises:
        InvalidInputError: If any record is malformed
    """
    machines: list[Machine] = []
    for index, record in enumerate(raw):
        try:
            machines.append(Machine.model_validate(record, context={"timezone": timezone}))
        except ValidationError as e:
            raise InvalidInputError(_format_validation_error("machine", index, e)) from e
    return machines


class ScheduleValidator:
    """Checks scheduling inputs before a run and schedules before a commit."""

    def __init__(self, config: SchedulingConfig | None = None):
        self.config = config or SchedulingConfig()

    def validate_inputs(
        self,
        instances: Sequence[ProcessInstance],
        machines: Sequence[Machine],
        existing_entries: Sequence[ScheduleEntry] = (),
    ) -> None:
        """Reject inputs that no placement could make sense of.

        Raises:
            InvalidInputError: On duplicate ids or malformed existing entries
        """
        problems: list[str] = []
        for kind, ids in (
            ("process instance", [i.id for i in instances]),
            ("machine", [m.id for m in machines]),
            ("schedule entry", [e.id for e in existing_entries]),
        ):
            duplicates = sorted(item for item, count in Counter(ids).items() if count > 1)
            if duplicates:
                problems.append(f"Duplicate {kind} ids: {', '.join(duplicates)}")
        for entry in existing_entries:
            if entry.end_time <= entry.start_time:
                problems.append(f"Schedule entry '{entry.id}' ends before it starts")
        if problems:
            raise InvalidInputError("; ".join(problems))

    def validate_schedule(
        self,
        entries: Sequence[ScheduleEntry],
        machines: Sequence[Machine] | None = None,
    ) -> ValidationResult:
        """Validate entries before they are committed.

        Errors: bad time ranges, unknown machines, double bookings, dependency
        violations and maintenance clashes. Warnings: work placed outside
        working hours or on non-working days.
        """
        errors: list[str] = []
        warnings: list[str] = []
        machine_map = {m.id: m for m in machines} if machines is not None else None
        default_calendar = WorkingCalendar.plant_default(self.config.calendar)

        for entry in entries:
            if not entry.machine_id:
                errors.append(f"Entry '{entry.id}' has no machine")
            elif machine_map is not None and entry.machine_id not in machine_map:
                errors.append(f"Entry '{entry.id}' references unknown machine '{entry.machine_id}'")
            if entry.end_time <= entry.start_time:
                errors.append(f"Entry '{entry.id}' ends at or before its start")
                continue
            if not entry.is_active:
                continue

            machine = machine_map.get(entry.machine_id) if machine_map is not None else None
            calendar = (
                WorkingCalendar.for_machine(machine, self.config.calendar) if machine is not None else default_calendar
            )
            warnings.extend(self._calendar_warnings(entry, calendar))

        detector = ConflictDetector(self.config.conflict_buffer_minutes)
        errors.extend(c.description for c in detector.detect_conflicts(e for e in entries if e.end_time > e.start_time))
        if machine_map is not None:
            errors.extend(c.description for c in detector.maintenance_conflicts(entries, machine_map))

        result = ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
        logger.checks(f"Validated {len(entries)} entries: {len(errors)} errors, {len(warnings)} warnings")
        return result

    def _calendar_warnings(self, entry: ScheduleEntry, calendar: WorkingCalendar) -> list[str]:
        warnings: list[str] = []
        for label, instant in (("starts", entry.start_time), ("ends", entry.end_time - _ONE_TICK)):
            if not calendar.is_working_day(instant.date()):
                warnings.append(f"Entry '{entry.id}' {label} on a non-working day ({instant:%A %Y-%m-%d})")
            elif not calendar.is_working_time(instant):
                warnings.append(f"Entry '{entry.id}' {label} outside working hours ({instant:%H:%M})")
        return warnings
