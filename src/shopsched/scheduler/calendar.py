"""Canonical working-time model.

``WorkingCalendar`` is the single source of truth for "is this instant
working time" and is shared by slot search, validation and utilization.
A machine's calendar is derived from its own settings with plant defaults
from ``CalendarConfig`` filling the gaps.
"""

from __future__ import annotations

import bisect
from collections.abc import Iterable, Iterator
from datetime import date, datetime, timedelta

from shopsched.models import MaintenanceWindow, Machine
from shopsched.timeutil import at_minute

from .config import CalendarConfig

WEEKEND_DAYS = (6, 7)
DAYS_PER_WEEK = 7

Band = tuple[int, int]  # (start, end) in minutes after midnight, end exclusive


def _subtract_breaks(start: int, end: int, breaks: Iterable[Band]) -> list[Band]:
    """Split a working band around break times."""
    bands: list[Band] = [(start, end)]
    for break_start, break_end in sorted(breaks):
        next_bands: list[Band] = []
        for band_start, band_end in bands:
            if break_end <= band_start or break_start >= band_end:
                next_bands.append((band_start, band_end))
                continue
            if band_start < break_start:
                next_bands.append((band_start, break_start))
            if break_end < band_end:
                next_bands.append((break_end, band_end))
        bands = next_bands
    return bands


class WorkingCalendar:
    """Recurring weekly working bands of one machine."""

    def __init__(self, working_days: Iterable[int], bands: list[Band]) -> None:
        """Initialize with ISO weekdays and the daily bands (breaks already removed).

        Args:
            working_days: ISO weekdays (1=Monday..7=Sunday) on which the bands apply
            bands: Sorted, non-overlapping daily bands in minutes after midnight
        """
        self.working_days = frozenset(working_days)
        self.bands = sorted(bands)

    @classmethod
    def plant_default(cls, config: CalendarConfig) -> WorkingCalendar:
        """Calendar of a machine without own settings."""
        breaks = [(b.start, b.end) for b in config.break_times]
        return cls(config.working_days, _subtract_breaks(config.working_hours_start, config.working_hours_end, breaks))

    @classmethod
    def for_machine(cls, machine: Machine, config: CalendarConfig) -> WorkingCalendar:
        """Build the calendar for a machine from its settings and plant defaults."""
        if machine.allow_after_hours:
            start, end = config.after_hours_start, config.after_hours_end
        elif machine.working_hours is not None:
            start, end = machine.working_hours.start, machine.working_hours.end
        else:
            start, end = config.working_hours_start, config.working_hours_end

        if machine.working_hours is not None and machine.working_hours.working_days is not None:
            days = set(machine.working_hours.working_days)
        else:
            days = set(config.working_days)
        if machine.allow_weekends:
            days.update(WEEKEND_DAYS)

        breaks = [(b.start, b.end) for b in config.break_times]
        return cls(days, _subtract_breaks(start, end, breaks))

    def is_working_day(self, day: date) -> bool:
        """Whether the calendar has any working band on this day."""
        return day.isoweekday() in self.working_days and bool(self.bands)

    def bands_on(self, day: date) -> list[tuple[datetime, datetime]]:
        """Working bands of a specific day as instants."""
        if not self.is_working_day(day):
            return []
        return [(at_minute(day, start), at_minute(day, end)) for start, end in self.bands]

    def is_working_time(self, instant: datetime) -> bool:
        """Whether the instant lies inside a working band (band end excluded)."""
        return any(start <= instant < end for start, end in self.bands_on(instant.date()))

    def band_at_or_after(self, instant: datetime) -> tuple[datetime, datetime] | None:
        """The band containing ``instant`` or the next one after it.

        Returns None if the calendar has no working time at all.
        """
        day = instant.date()
        # One full week plus today covers every weekday
        for offset in range(DAYS_PER_WEEK + 1):
            for start, end in self.bands_on(day + timedelta(days=offset)):
                if end > instant:
                    return (start, end)
        return None

    def iter_bands(self, start: datetime, end: datetime) -> Iterator[tuple[datetime, datetime]]:
        """Yield the parts of working bands that fall inside [start, end)."""
        day = start.date()
        while day <= end.date():
            for band_start, band_end in self.bands_on(day):
                clipped_start = max(band_start, start)
                clipped_end = min(band_end, end)
                if clipped_start < clipped_end:
                    yield (clipped_start, clipped_end)
            day += timedelta(days=1)

    def working_minutes_between(self, start: datetime, end: datetime) -> float:
        """Working minutes inside [start, end)."""
        if end <= start:
            return 0.0
        return sum((b_end - b_start).total_seconds() / 60.0 for b_start, b_end in self.iter_bands(start, end))


class MaintenanceSchedule:
    """Sorted, merged maintenance windows of one machine.

    Keeps the windows non-overlapping so lookups can use binary search.
    """

    def __init__(self, windows: Iterable[MaintenanceWindow]) -> None:
        self.periods: list[tuple[datetime, datetime]] = self.merge_periods(
            [(w.start, w.end) for w in windows]
        )

    @staticmethod
    def merge_periods(periods: list[tuple[datetime, datetime]]) -> list[tuple[datetime, datetime]]:
        """Merge overlapping or touching periods into a sorted list."""
        if not periods:
            return []

        sorted_periods = sorted(periods)
        merged: list[tuple[datetime, datetime]] = [sorted_periods[0]]
        for start, end in sorted_periods[1:]:
            last_start, last_end = merged[-1]
            if start <= last_end:
                merged[-1] = (last_start, max(last_end, end))
            else:
                merged.append((start, end))
        return merged

    def first_ending_after(self, instant: datetime) -> tuple[datetime, datetime] | None:
        """The first window whose end lies after ``instant`` (may contain it)."""
        idx = bisect.bisect_right(self.periods, instant, key=lambda p: p[1])
        if idx < len(self.periods):
            return self.periods[idx]
        return None

    def containing(self, instant: datetime) -> tuple[datetime, datetime] | None:
        """The window containing ``instant``, if any."""
        window = self.first_ending_after(instant)
        if window is not None and window[0] <= instant:
            return window
        return None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Whether any window intersects [start, end)."""
        window = self.first_ending_after(start)
        return window is not None and window[0] < end
