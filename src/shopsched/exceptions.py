"""Custom exceptions for shopsched."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .scheduler.core import Conflict


class ShopschedError(Exception):
    """Base exception for all shopsched errors."""

    pass


class InvalidInputError(ShopschedError):
    """Raised when scheduling input is malformed (bad time range, missing field, bad reference)."""

    pass


class CyclicDependencyError(InvalidInputError):
    """Raised when the process dependency graph contains a cycle."""

    def __init__(self, cycles: list[list[str]]):
        self.cycles = cycles
        rendered = "; ".join(" -> ".join([*cycle, cycle[0]]) for cycle in cycles)
        super().__init__(f"Circular dependency detected: {rendered}")


class NoCapacityFoundError(ShopschedError):
    """Raised when no slot can be found for a job within the search horizon."""

    pass


class SchedulingTimeoutError(ShopschedError):
    """Raised when a scheduling run exceeds its wall-clock budget."""

    pass


class EntryNotFoundError(ShopschedError):
    """Raised when a schedule entry id does not exist."""

    pass


class StaleEntryError(ShopschedError):
    """Raised when a mutation was based on an outdated entry version."""

    pass


class ScheduleConflictError(ShopschedError):
    """Raised when a mutation would introduce schedule conflicts."""

    def __init__(self, message: str, conflicts: list[Conflict]):
        self.conflicts = conflicts
        super().__init__(message)
