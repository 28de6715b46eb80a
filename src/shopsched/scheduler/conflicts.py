"""Conflict detection over schedule entries."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta

from shopsched.models import Machine

from .calendar import MaintenanceSchedule
from .core import Conflict, ConflictType, EntryStatus, ScheduleEntry, Severity, SuggestedResolution


def _fmt(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


class ConflictDetector:
    """Finds double bookings, dependency violations and maintenance clashes.

    Conflicts are a derived view: every call recomputes them from the given
    entries and the result is sorted, so repeated calls on the same entries
    return the same list.
    """

    def __init__(self, buffer_minutes: int = 0):
        """Initialize detector.

        Args:
            buffer_minutes: Gap added after the earlier entry when suggesting
                a new start for the later one
        """
        self.buffer = timedelta(minutes=buffer_minutes)

    def detect_conflicts(self, entries: Iterable[ScheduleEntry]) -> list[Conflict]:
        """Detect all conflicts within a set of entries."""
        entry_list = list(entries)
        conflicts = self._double_bookings(entry_list) + self._dependency_violations(entry_list)
        return sorted(conflicts, key=Conflict.sort_key)

    def detect_conflicts_for(
        self, existing: Iterable[ScheduleEntry], candidate: ScheduleEntry
    ) -> list[Conflict]:
        """Detect conflicts a candidate entry would introduce.

        Entries in ``existing`` sharing the candidate's id are ignored, so the
        same call validates both new placements and moves of an existing entry.
        Overlap and dependency suggestions move the candidate; a dependent
        that the candidate would finish after is suggested to move instead.
        """
        others = [e for e in existing if e.id != candidate.id]
        conflicts: list[Conflict] = []

        if candidate.is_active:
            for entry in others:
                if entry.machine_id == candidate.machine_id and entry.is_active and entry.overlaps(candidate):
                    conflicts.append(self._overlap_conflict(entry, candidate, move=candidate))

        latest = _latest_ends(others)
        for dep_id in candidate.dependencies:
            if dep_id in latest and candidate.start_time < latest[dep_id][0]:
                conflicts.append(_dependency_conflict(candidate, dep_id, *latest[dep_id]))

        # Existing dependents the candidate would now finish after
        for entry in others:
            if (
                candidate.process_instance_id in entry.dependencies
                and entry.status != EntryStatus.CANCELLED
                and entry.start_time < candidate.end_time
            ):
                conflicts.append(
                    _dependency_conflict(entry, candidate.process_instance_id, candidate.end_time, candidate.id)
                )

        return sorted(conflicts, key=Conflict.sort_key)

    def maintenance_conflicts(
        self, entries: Iterable[ScheduleEntry], machines: Mapping[str, Machine]
    ) -> list[Conflict]:
        """Active entries that overlap a maintenance window of their machine."""
        conflicts: list[Conflict] = []
        for entry in entries:
            machine = machines.get(entry.machine_id)
            if machine is None or not entry.is_active:
                continue
            schedule = MaintenanceSchedule(machine.maintenance_windows)
            window = schedule.first_ending_after(entry.start_time)
            if window is None or window[0] >= entry.end_time:
                continue
            conflicts.append(
                Conflict(
                    type=ConflictType.MAINTENANCE_CONFLICT,
                    severity=Severity.HIGH,
                    description=(
                        f"Entry '{entry.id}' on machine '{machine.label}' overlaps maintenance "
                        f"{_fmt(window[0])} - {_fmt(window[1])}"
                    ),
                    affected_entries=(entry.id,),
                    process_instance_ids=(entry.process_instance_id,),
                    suggested_resolution=SuggestedResolution(
                        entry_id=entry.id,
                        new_start=window[1],
                        description=f"Start '{entry.id}' after maintenance ends at {_fmt(window[1])}",
                    ),
                )
            )
        return sorted(conflicts, key=Conflict.sort_key)

    def _double_bookings(self, entries: list[ScheduleEntry]) -> list[Conflict]:
        by_machine: dict[str, list[ScheduleEntry]] = defaultdict(list)
        for entry in entries:
            if entry.is_active:
                by_machine[entry.machine_id].append(entry)

        conflicts: list[Conflict] = []
        for machine_id in sorted(by_machine):
            ordered = sorted(by_machine[machine_id], key=lambda e: (e.start_time, e.end_time, e.id))
            # Sweep keeping entries that have not ended yet; an entry nested in a
            # long one overlaps more than its neighbour, so every open entry counts
            open_entries: list[ScheduleEntry] = []
            for entry in ordered:
                open_entries = [e for e in open_entries if e.end_time > entry.start_time]
                for earlier in open_entries:
                    conflicts.append(self._overlap_conflict(earlier, entry, move=entry))
                open_entries.append(entry)
        return conflicts

    def _overlap_conflict(self, first: ScheduleEntry, second: ScheduleEntry, *, move: ScheduleEntry) -> Conflict:
        other = first if move is second else second
        new_start = other.end_time + self.buffer
        return Conflict(
            type=ConflictType.MACHINE_DOUBLE_BOOKING,
            severity=Severity.HIGH,
            description=(
                f"Machine '{first.machine_id}' is double-booked: '{first.id}' "
                f"({_fmt(first.start_time)} - {_fmt(first.end_time)}) overlaps '{second.id}' "
                f"({_fmt(second.start_time)} - {_fmt(second.end_time)})"
            ),
            affected_entries=(first.id, second.id),
            process_instance_ids=(first.process_instance_id, second.process_instance_id),
            suggested_resolution=SuggestedResolution(
                entry_id=move.id,
                new_start=new_start,
                description=f"Move '{move.id}' to start at {_fmt(new_start)}",
            ),
        )

    def _dependency_violations(self, entries: list[ScheduleEntry]) -> list[Conflict]:
        latest = _latest_ends(entries)
        conflicts: list[Conflict] = []
        for entry in entries:
            if entry.status == EntryStatus.CANCELLED:
                continue
            for dep_id in entry.dependencies:
                if dep_id in latest and entry.start_time < latest[dep_id][0]:
                    conflicts.append(_dependency_conflict(entry, dep_id, *latest[dep_id]))
        return conflicts


def _latest_ends(entries: Iterable[ScheduleEntry]) -> dict[str, tuple[datetime, str]]:
    """Latest end (and the entry id holding it) per process instance."""
    latest: dict[str, tuple[datetime, str]] = {}
    for entry in entries:
        if entry.status == EntryStatus.CANCELLED:
            continue
        current = latest.get(entry.process_instance_id)
        if current is None or entry.end_time > current[0]:
            latest[entry.process_instance_id] = (entry.end_time, entry.id)
    return latest


def _dependency_conflict(entry: ScheduleEntry, dep_id: str, dep_end: datetime, dep_entry_id: str) -> Conflict:
    return Conflict(
        type=ConflictType.DEPENDENCY_VIOLATION,
        severity=Severity.HIGH,
        description=(
            f"Entry '{entry.id}' starts at {_fmt(entry.start_time)} before its dependency "
            f"'{dep_id}' completes at {_fmt(dep_end)}"
        ),
        affected_entries=(entry.id, dep_entry_id),
        process_instance_ids=(entry.process_instance_id, dep_id),
        suggested_resolution=SuggestedResolution(
            entry_id=entry.id,
            new_start=dep_end,
            description=f"Start '{entry.id}' at {_fmt(dep_end)} after '{dep_id}' completes",
        ),
    )


def detect_conflicts(entries: Iterable[ScheduleEntry], buffer_minutes: int = 0) -> list[Conflict]:
    """Detect all conflicts within a set of entries."""
    return ConflictDetector(buffer_minutes).detect_conflicts(entries)
