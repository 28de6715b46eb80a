"""Configuration classes for the scheduling system."""

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from shopsched.models import DEFAULT_WORKING_DAYS
from shopsched.timeutil import parse_clock


class SchedulerVariant(str, Enum):
    """Available slot-selection strategies."""

    SIMPLE = "simple"  # First conflict-free slot on the best-ranked machine
    ENHANCED = "enhanced"  # Weighted multi-objective scoring over all candidates


class ClockBand(BaseModel):
    """A daily band such as a lunch break, in minutes after midnight."""

    start: int
    end: int

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_clock(cls, value: object) -> int:
        return parse_clock(value)

    @model_validator(mode="after")
    def validate_band(self) -> "ClockBand":
        """Ensure start < end."""
        if self.start >= self.end:
            raise ValueError("band end must be after start")
        return self


class CalendarConfig(BaseModel):
    """Plant calendar defaults, used for machines without their own settings."""

    working_hours_start: int = 8 * 60
    working_hours_end: int = 17 * 60
    working_days: list[int] = Field(default_factory=lambda: list(DEFAULT_WORKING_DAYS))
    break_times: list[ClockBand] = Field(default_factory=list[ClockBand])
    # Band used for machines flagged allow_after_hours
    after_hours_start: int = 6 * 60
    after_hours_end: int = 22 * 60
    timezone: str = "UTC"

    @field_validator(
        "working_hours_start",
        "working_hours_end",
        "after_hours_start",
        "after_hours_end",
        mode="before",
    )
    @classmethod
    def _parse_clock(cls, value: object) -> int:
        return parse_clock(value)

    @model_validator(mode="after")
    def validate_bands(self) -> "CalendarConfig":
        """Ensure both daily bands run forward and weekdays are ISO weekdays."""
        if self.working_hours_start >= self.working_hours_end:
            raise ValueError("working_hours_end must be after working_hours_start")
        if self.after_hours_start >= self.after_hours_end:
            raise ValueError("after_hours_end must be after after_hours_start")
        invalid = sorted(day for day in self.working_days if not 1 <= day <= 7)
        if invalid:
            raise ValueError(f"working_days must be ISO weekdays 1-7, got {invalid}")
        return self


class PriorityWeights(BaseModel):
    """Weights and score tables for the priority engine."""

    customer_tier: float = 1.0
    due_date: float = 1.0
    critical_path: float = 1.0
    tier_scores: dict[str, float] = Field(
        default_factory=lambda: {"critical": 100.0, "urgent": 75.0, "high": 50.0, "normal": 25.0}
    )
    # Bonus per instance that transitively depends on this one
    dependent_bonus: float = 10.0
    max_critical_path_score: float = 100.0


class SlotScoringWeights(BaseModel):
    """Weights for the enhanced strategy's slot scoring (higher score wins)."""

    completion: float = 0.4  # Earlier finish
    utilization_balance: float = 0.2  # Less loaded machine
    setup_affinity: float = 0.2  # Machine just ran a similar process
    due_date_slack: float = 0.2  # Finishes before the due date


class SchedulingConfig(BaseModel):
    """Configuration for a scheduling run."""

    variant: SchedulerVariant = SchedulerVariant.SIMPLE

    # Availability search limit, counted from the run's start time
    horizon_days: int = Field(default=180, ge=1)
    # Wall-clock budget for one run; None disables the check
    time_budget_seconds: float | None = 30.0
    # Extra time added to each job's duration, in percent
    buffer_percentage: float = Field(default=0.0, ge=0)
    # Gap enforced between consecutive entries when suggesting resolutions
    conflict_buffer_minutes: int = Field(default=0, ge=0)

    calendar: CalendarConfig = CalendarConfig()
    priority: PriorityWeights = PriorityWeights()
    slot_scoring: SlotScoringWeights = SlotScoringWeights()
