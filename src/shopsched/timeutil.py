"""Time normalization for everything that enters the engine.

All instants inside shopsched are naive ``datetime`` values in plant-local
wall-clock time. ``to_datetime`` is the one place where external forms are
converted; nothing else parses timestamps.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

MINUTES_PER_DAY = 24 * 60

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def _zone(tz_name: str | None) -> ZoneInfo | timezone:
    if not tz_name or tz_name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(tz_name)


def to_datetime(value: Any, tz_name: str | None = None) -> datetime:
    """Convert an external timestamp to a naive plant-local datetime.

    Accepted forms:
    - ``datetime`` (aware values are converted to ``tz_name`` first)
    - ``date`` (midnight of that day)
    - ISO-8601 strings, including a trailing ``Z``
    - epoch milliseconds as int or float
    - Firestore-style mappings ``{"seconds": s, "nanoseconds": ns}``
      (``_seconds``/``_nanoseconds`` are accepted too)

    Args:
        value: The value to convert
        tz_name: Plant timezone name (default UTC)

    Returns:
        Naive datetime in plant-local time

    Raises:
        ValueError: If the value cannot be interpreted as an instant
    """
    zone = _zone(tz_name)

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(zone).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, bool):
        raise ValueError(f"Cannot interpret {value!r} as a timestamp")
    if isinstance(value, (int, float)):
        return _from_epoch_seconds(value / 1000.0, zone)
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0))
        if seconds is None:
            raise ValueError(f"Timestamp mapping has no 'seconds' field: {value!r}")
        return _from_epoch_seconds(float(seconds) + float(nanos or 0) / 1e9, zone)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"Invalid ISO timestamp: {value!r}") from e
        return to_datetime(parsed, tz_name)
    raise ValueError(f"Cannot interpret {value!r} as a timestamp")


def _from_epoch_seconds(seconds: float, zone: ZoneInfo | timezone) -> datetime:
    aware = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return aware.astimezone(zone).replace(tzinfo=None)


def parse_clock(value: Any) -> int:
    """Parse a time of day to minutes after midnight.

    Accepts "HH:MM" strings (``"24:00"`` means end of day), hour numbers
    (``8`` or ``8.5``) and ``datetime.time`` values.
    """
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    if isinstance(value, bool):
        raise ValueError(f"Invalid time of day: {value!r}")
    if isinstance(value, (int, float)):
        minutes = round(float(value) * 60)
    elif isinstance(value, str):
        match = _CLOCK_RE.match(value.strip())
        if not match:
            raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)")
        hours, mins = int(match.group(1)), int(match.group(2))
        if mins >= 60:  # noqa: PLR2004
            raise ValueError(f"Invalid time of day: {value!r}")
        minutes = hours * 60 + mins
    else:
        raise ValueError(f"Invalid time of day: {value!r}")

    if minutes < 0 or minutes > MINUTES_PER_DAY:
        raise ValueError(f"Time of day out of range: {value!r}")
    return minutes


def format_clock(minutes: int) -> str:
    """Format minutes after midnight as "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def at_minute(day: date, minute_of_day: int) -> datetime:
    """Return the instant ``minute_of_day`` minutes after midnight of ``day``."""
    return datetime.combine(day, time()) + timedelta(minutes=minute_of_day)


def minutes_between(start: datetime, end: datetime) -> float:
    """Elapsed wall-clock minutes from start to end."""
    return (end - start).total_seconds() / 60.0


def isoformat(value: datetime | None) -> str | None:
    """Render an instant for output files (minute precision when possible)."""
    if value is None:
        return None
    if value.second == 0 and value.microsecond == 0:
        return value.isoformat(timespec="minutes")
    return value.isoformat()
