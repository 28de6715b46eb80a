"""Schedule manager: single-entry mutations over committed schedule entries."""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from shopsched.exceptions import (
    EntryNotFoundError,
    InvalidInputError,
    NoCapacityFoundError,
    ScheduleConflictError,
    StaleEntryError,
)
from shopsched.logger import get_logger
from shopsched.models import Machine
from shopsched.timeutil import to_datetime

from .availability import AvailabilityCalculator
from .config import SchedulingConfig
from .conflicts import ConflictDetector
from .core import Conflict, ConflictType, EntryStatus, RescheduleResult, ScheduleEntry, Severity

logger = get_logger()

# Fields a patch may not touch; they are managed by the store
_PROTECTED_FIELDS = frozenset({"id", "version"})


class ScheduleManager:
    """In-memory entry store with conflict-checked, atomic mutations.

    Every mutation runs under one lock, re-validates against the current
    entries and either commits completely or not at all. Each commit bumps
    the entry's ``version``; callers holding an older version can pass
    ``expected_version`` to get ``StaleEntryError`` instead of overwriting a
    concurrent change.
    """

    def __init__(
        self,
        entries: Iterable[ScheduleEntry] = (),
        machines: Sequence[Machine] = (),
        config: SchedulingConfig | None = None,
    ):
        self.config = config or SchedulingConfig()
        self.machines = {m.id: m for m in machines}
        self.availability = AvailabilityCalculator(self.config)
        self.detector = ConflictDetector(self.config.conflict_buffer_minutes)
        self._entries: dict[str, ScheduleEntry] = {}
        self._lock = threading.RLock()
        for entry in entries:
            if entry.id in self._entries:
                raise InvalidInputError(f"Duplicate schedule entry id '{entry.id}'")
            self._entries[entry.id] = entry

    def get_entries(
        self,
        machine_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ScheduleEntry]:
        """Snapshot of the entries, ordered by start time.

        Args:
            machine_id: Only entries on this machine
            start: Only entries ending after this instant
            end: Only entries starting before this instant

        Returns:
            Matching entries sorted by (start time, id)
        """
        tz_name = self.config.calendar.timezone
        start = to_datetime(start, tz_name) if start is not None else None
        end = to_datetime(end, tz_name) if end is not None else None
        with self._lock:
            entries = [
                e
                for e in self._entries.values()
                if (machine_id is None or e.machine_id == machine_id)
                and (start is None or e.end_time > start)
                and (end is None or e.start_time < end)
            ]
        return sorted(entries, key=lambda e: (e.start_time, e.id))

    def machine_availability(
        self, machine_id: str, start: datetime, end: datetime, min_minutes: float = 1.0
    ) -> list[tuple[datetime, datetime]]:
        """Free working intervals of a machine inside [start, end).

        Active entries on the machine count as busy; cancelled and completed
        ones do not.

        Raises:
            InvalidInputError: If the machine is unknown
        """
        machine = self.machines.get(machine_id)
        if machine is None:
            raise InvalidInputError(f"Unknown machine '{machine_id}'")
        tz_name = self.config.calendar.timezone
        start, end = to_datetime(start, tz_name), to_datetime(end, tz_name)
        busy = [(e.start_time, e.end_time) for e in self.get_entries(machine_id, start, end) if e.is_active]
        return self.availability.available_slots(machine, min_minutes, start, end, busy)

    def get_entry(self, entry_id: str) -> ScheduleEntry:
        """Look up one entry.

        Raises:
            EntryNotFoundError: If the id is unknown
        """
        with self._lock:
            return self._get(entry_id)

    def create_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        """Add a new entry.

        Raises:
            InvalidInputError: If the id exists or the interval is empty
            ScheduleConflictError: If the entry would introduce conflicts
        """
        _check_interval(entry)
        with self._lock:
            if entry.id in self._entries:
                raise InvalidInputError(f"Schedule entry '{entry.id}' already exists")
            conflicts = self._conflicts_for(entry)
            if conflicts:
                raise ScheduleConflictError(f"Entry '{entry.id}' conflicts with the schedule", conflicts)
            self._entries[entry.id] = entry
        logger.changes(f"Created entry {entry.id} on {entry.machine_id} {entry.start_time} - {entry.end_time}")
        return entry

    def update_entry(
        self, entry_id: str, patch: Mapping[str, Any], expected_version: int | None = None
    ) -> ScheduleEntry:
        """Apply a partial update to one entry.

        Args:
            entry_id: Entry to update
            patch: Field values to replace (``id`` and ``version`` are not allowed)
            expected_version: If given, the update only applies to this version

        Raises:
            EntryNotFoundError: If the id is unknown
            StaleEntryError: If the entry changed since ``expected_version``
            InvalidInputError: If the patch names unknown or protected fields,
                carries an unknown status or bad timestamp, or yields an empty interval
            ScheduleConflictError: If the updated entry would conflict
        """
        known = {f.name for f in dataclasses.fields(ScheduleEntry)}
        bad = sorted((set(patch) - known) | (set(patch) & _PROTECTED_FIELDS))
        if bad:
            raise InvalidInputError(f"Cannot update fields: {', '.join(bad)}")

        with self._lock:
            current = self._get(entry_id)
            _check_version(current, expected_version)
            changes = _normalize_patch(patch, self.config.calendar.timezone)
            updated = dataclasses.replace(current, **changes, version=current.version + 1)
            _check_interval(updated)
            conflicts = self._conflicts_for(updated)
            if conflicts:
                raise ScheduleConflictError(f"Update of '{entry_id}' conflicts with the schedule", conflicts)
            self._entries[entry_id] = updated
        logger.changes(f"Updated entry {entry_id} ({', '.join(sorted(patch))})")
        return updated

    def delete_entry(self, entry_id: str, expected_version: int | None = None) -> ScheduleEntry:
        """Remove one entry and return it.

        Raises:
            EntryNotFoundError: If the id is unknown
            StaleEntryError: If the entry changed since ``expected_version``
        """
        with self._lock:
            current = self._get(entry_id)
            _check_version(current, expected_version)
            del self._entries[entry_id]
        logger.changes(f"Deleted entry {entry_id}")
        return current

    def reschedule_entry(
        self,
        entry_id: str,
        new_start: datetime,
        new_machine_id: str | None = None,
        expected_version: int | None = None,
    ) -> RescheduleResult:
        """Move an entry to a new start, optionally on another machine.

        The entry keeps its working minutes; the new end comes from the
        target machine's calendar. Any conflict rejects the move and leaves
        the store untouched.

        Raises:
            EntryNotFoundError: If the id is unknown
            StaleEntryError: If the entry changed since ``expected_version``
            InvalidInputError: If the target machine is unknown
        """
        new_start = to_datetime(new_start, self.config.calendar.timezone)
        with self._lock:
            current = self._get(entry_id)
            _check_version(current, expected_version)
            machine_id = new_machine_id or current.machine_id
            machine = self.machines.get(machine_id)
            if machine is None:
                raise InvalidInputError(f"Unknown machine '{machine_id}'")

            work_minutes = current.work_minutes
            if work_minutes is None:
                source = self.machines.get(current.machine_id, machine)
                work_minutes = self.availability.working_minutes_between(
                    source, current.start_time, current.end_time
                )
            if work_minutes <= 0:
                raise InvalidInputError(f"Entry '{entry_id}' has no working time to move")

            try:
                start, end = self.availability.next_available_slot(machine, new_start, work_minutes)
            except NoCapacityFoundError as e:
                conflict = Conflict(
                    type=ConflictType.CAPACITY_EXCEEDED,
                    severity=Severity.HIGH,
                    description=str(e),
                    affected_entries=(entry_id,),
                    process_instance_ids=(current.process_instance_id,),
                )
                return RescheduleResult(success=False, entry=current, conflicts=[conflict])

            if start != new_start:
                logger.checks(f"Requested start {new_start} for {entry_id} moved to next working time {start}")

            candidate = dataclasses.replace(
                current,
                machine_id=machine_id,
                start_time=start,
                end_time=end,
                work_minutes=work_minutes,
                version=current.version + 1,
            )
            conflicts = self._conflicts_for(candidate)
            if conflicts:
                logger.changes(f"Rejected reschedule of {entry_id}: {len(conflicts)} conflicts")
                return RescheduleResult(success=False, entry=current, conflicts=conflicts)
            self._entries[entry_id] = candidate

        logger.changes(f"Rescheduled {entry_id} to {machine_id} {start} - {end}")
        return RescheduleResult(success=True, entry=candidate)

    def detect_conflicts(self) -> list[Conflict]:
        """All conflicts in the current store, including maintenance clashes."""
        with self._lock:
            entries = list(self._entries.values())
        conflicts = self.detector.detect_conflicts(entries)
        conflicts.extend(self.detector.maintenance_conflicts(entries, self.machines))
        return sorted(conflicts, key=Conflict.sort_key)

    def _get(self, entry_id: str) -> ScheduleEntry:
        try:
            return self._entries[entry_id]
        except KeyError:
            raise EntryNotFoundError(f"Schedule entry '{entry_id}' not found") from None

    def _conflicts_for(self, candidate: ScheduleEntry) -> list[Conflict]:
        conflicts = self.detector.detect_conflicts_for(self._entries.values(), candidate)
        if self.machines:
            conflicts.extend(self.detector.maintenance_conflicts([candidate], self.machines))
        return conflicts


def _check_version(entry: ScheduleEntry, expected_version: int | None) -> None:
    if expected_version is not None and entry.version != expected_version:
        raise StaleEntryError(
            f"Schedule entry '{entry.id}' is at version {entry.version}, expected {expected_version}"
        )


def _check_interval(entry: ScheduleEntry) -> None:
    if entry.end_time <= entry.start_time:
        raise InvalidInputError(f"Schedule entry '{entry.id}' must end after it starts")


def _normalize_patch(patch: Mapping[str, Any], tz_name: str) -> dict[str, Any]:
    """Coerce patch values to the entry's field types."""
    changes = dict(patch)
    if "status" in changes:
        try:
            changes["status"] = EntryStatus(changes["status"])
        except ValueError as e:
            raise InvalidInputError(f"Invalid entry status '{changes['status']}'") from e
    for name in ("start_time", "end_time"):
        if name in changes:
            try:
                changes[name] = to_datetime(changes[name], tz_name)
            except ValueError as e:
                raise InvalidInputError(f"Invalid {name}: {e}") from e
    return changes
