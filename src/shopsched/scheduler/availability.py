"""Availability calculation: finding working-time slots on a machine."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from shopsched.exceptions import InvalidInputError, NoCapacityFoundError
from shopsched.logger import debug_enabled, get_logger
from shopsched.models import Machine
from shopsched.timeutil import minutes_between

from .calendar import MaintenanceSchedule, WorkingCalendar
from .config import SchedulingConfig

logger = get_logger()

# Guards against zero-length progress when walking bands
_EPSILON_MINUTES = 1e-9


def _subtract_periods(
    start: datetime, end: datetime, periods: list[tuple[datetime, datetime]]
) -> list[tuple[datetime, datetime]]:
    """Parts of [start, end) not covered by the sorted, merged ``periods``."""
    free: list[tuple[datetime, datetime]] = []
    cursor = start
    for period_start, period_end in periods:
        if period_end <= cursor:
            continue
        if period_start >= end:
            break
        if period_start > cursor:
            free.append((cursor, period_start))
        cursor = max(cursor, period_end)
    if cursor < end:
        free.append((cursor, end))
    return free


class AvailabilityCalculator:
    """Answers "when can this machine do N minutes of work" questions.

    Calendars and maintenance schedules are derived per machine from the
    machine snapshot and the plant calendar config; nothing is cached across
    calls, so results depend only on the arguments.
    """

    def __init__(self, config: SchedulingConfig | None = None):
        self.config = config or SchedulingConfig()

    def calendar_for(self, machine: Machine) -> WorkingCalendar:
        """Working calendar of a machine."""
        return WorkingCalendar.for_machine(machine, self.config.calendar)

    def next_available_slot(
        self,
        machine: Machine,
        earliest_start: datetime,
        duration_minutes: float,
        *,
        horizon_end: datetime | None = None,
    ) -> tuple[datetime, datetime]:
        """Find the earliest slot providing ``duration_minutes`` of working time.

        The slot may span several bands and days; the minutes are accumulated
        only inside working bands. If the span would touch a maintenance
        window, the search restarts right after that window.

        Args:
            machine: Machine to search on
            earliest_start: Slot must not start before this instant
            duration_minutes: Working minutes needed
            horizon_end: No slot may start at or after this instant
                (default: ``horizon_days`` after the search start)

        Returns:
            (start, end) of the slot

        Raises:
            InvalidInputError: If the duration is not positive
            NoCapacityFoundError: If no slot exists before the horizon
        """
        if duration_minutes <= 0:
            raise InvalidInputError(f"Duration must be positive, got {duration_minutes}")

        cursor = earliest_start
        if machine.available_from is not None and machine.available_from > cursor:
            cursor = machine.available_from
        limit = horizon_end or cursor + timedelta(days=self.config.horizon_days)

        calendar = self.calendar_for(machine)
        maintenance = MaintenanceSchedule(machine.maintenance_windows)

        slot_start: datetime | None = None
        remaining = duration_minutes

        while True:
            band = calendar.band_at_or_after(cursor)
            if band is None:
                raise NoCapacityFoundError(f"Machine '{machine.label}' has no working time configured")
            band_start, band_end = band
            segment_start = max(cursor, band_start)

            if slot_start is None:
                if segment_start >= limit:
                    raise NoCapacityFoundError(
                        f"No {duration_minutes:g}-minute slot on machine '{machine.label}' "
                        f"before {limit.isoformat()}"
                    )
                window = maintenance.containing(segment_start)
                if window is not None:
                    cursor = window[1]
                    continue
                slot_start = segment_start
                remaining = duration_minutes

            available = minutes_between(segment_start, band_end)
            if available <= 0:
                raise InvalidInputError(
                    f"Machine '{machine.label}' has an empty or reversed working band "
                    f"{band_start.time()} - {band_end.time()}"
                )
            if remaining <= available + _EPSILON_MINUTES:
                segment_finish = segment_start + timedelta(minutes=remaining)
            else:
                segment_finish = band_end

            # Any window starting inside the span so far breaks the slot,
            # including windows in non-working gaps between bands
            window = maintenance.first_ending_after(slot_start)
            if window is not None and window[0] < segment_finish:
                if debug_enabled():
                    logger.debug(
                        f"    {machine.id}: maintenance {window[0]} - {window[1]} interrupts slot "
                        f"from {slot_start}, restarting after it"
                    )
                cursor = window[1]
                slot_start = None
                continue

            if remaining <= available + _EPSILON_MINUTES:
                return (slot_start, segment_finish)

            remaining -= available
            cursor = band_end

    def available_slots(
        self,
        machine: Machine,
        duration_minutes: float,
        start: datetime,
        end: datetime,
        busy: Iterable[tuple[datetime, datetime]] = (),
    ) -> list[tuple[datetime, datetime]]:
        """List the free working intervals inside [start, end) that fit a job.

        Each interval lies within a single working band, outside maintenance
        and outside the ``busy`` intervals (typically the machine's active
        entries), and is at least ``duration_minutes`` long.

        Args:
            machine: Machine to inspect
            duration_minutes: Minimum length of a returned interval
            start: Start of the range
            end: End of the range (exclusive)
            busy: Intervals already taken on the machine

        Returns:
            Sorted (start, end) intervals

        Raises:
            InvalidInputError: If the duration is not positive
        """
        if duration_minutes <= 0:
            raise InvalidInputError(f"Duration must be positive, got {duration_minutes}")
        if machine.available_from is not None and machine.available_from > start:
            start = machine.available_from
        if end <= start:
            return []

        maintenance = MaintenanceSchedule(machine.maintenance_windows)
        blocked = MaintenanceSchedule.merge_periods([*maintenance.periods, *busy])

        slots: list[tuple[datetime, datetime]] = []
        for band_start, band_end in self.calendar_for(machine).iter_bands(start, end):
            for free_start, free_end in _subtract_periods(band_start, band_end, blocked):
                if minutes_between(free_start, free_end) + _EPSILON_MINUTES >= duration_minutes:
                    slots.append((free_start, free_end))

        if debug_enabled():
            logger.debug(f"    {machine.id}: {len(slots)} free slot(s) of {duration_minutes:g}+ minutes")
        return slots

    def has_maintenance_conflict(self, machine: Machine, start: datetime, end: datetime) -> bool:
        """Whether [start, end) intersects any maintenance window of the machine."""
        return MaintenanceSchedule(machine.maintenance_windows).overlaps(start, end)

    def working_minutes_between(self, machine: Machine, start: datetime, end: datetime) -> float:
        """Working minutes of the machine's calendar inside [start, end)."""
        return self.calendar_for(machine).working_minutes_between(start, end)

    def available_minutes(self, machine: Machine, start: datetime, end: datetime) -> float:
        """Working minutes inside [start, end) that are not under maintenance."""
        calendar = self.calendar_for(machine)
        total = calendar.working_minutes_between(start, end)
        for window_start, window_end in MaintenanceSchedule(machine.maintenance_windows).periods:
            if window_end <= start or window_start >= end:
                continue
            total -= calendar.working_minutes_between(max(window_start, start), min(window_end, end))
        return max(total, 0.0)
