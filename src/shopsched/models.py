"""Input data models: process instances and machines.

These are the immutable snapshot the engine consumes. They are built at the
loading boundary (see ``shopsched.loader``) and never mutated by a run.
Field names are snake_case; the camelCase names used by upstream services
(``machineType``, ``setupTimeMinutes``, ...) are accepted as aliases.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .timeutil import MINUTES_PER_DAY, format_clock, parse_clock, to_datetime

DEFAULT_WORKING_DAYS = (1, 2, 3, 4, 5)  # ISO weekdays, Monday-Friday

_MODEL_CONFIG = ConfigDict(
    frozen=True,
    populate_by_name=True,
    alias_generator=to_camel,
    extra="ignore",
)


def _tz_from(info: ValidationInfo) -> str | None:
    if isinstance(info.context, dict):
        return info.context.get("timezone")
    return None


class CustomerPriority(str, Enum):
    """Customer priority tier of the order a process instance belongs to."""

    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
    CRITICAL = "critical"


# Tier names used by older order records
_PRIORITY_ALIASES = {"low": "normal", "medium": "normal"}


class MaintenanceWindow(BaseModel):
    """A blackout interval during which a machine cannot work."""

    model_config = _MODEL_CONFIG

    start: datetime
    end: datetime

    @field_validator("start", "end", mode="before")
    @classmethod
    def _normalize_time(cls, value: Any, info: ValidationInfo) -> datetime:
        return to_datetime(value, _tz_from(info))

    @model_validator(mode="after")
    def validate_end_after_start(self) -> MaintenanceWindow:
        """Ensure the window is a well-formed interval."""
        if self.end <= self.start:
            raise ValueError("maintenance window end must be after start")
        return self


class WorkingHours(BaseModel):
    """Daily working band of a machine, in minutes after midnight."""

    model_config = _MODEL_CONFIG

    start: int = Field(default=8 * 60, validation_alias=AliasChoices("start", "startHour", "start_hour"))
    end: int = Field(default=17 * 60, validation_alias=AliasChoices("end", "endHour", "end_hour"))
    working_days: tuple[int, ...] | None = Field(
        default=None, validation_alias=AliasChoices("working_days", "workingDays")
    )

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_clock(cls, value: Any) -> int:
        return parse_clock(value)

    @field_validator("working_days")
    @classmethod
    def _check_days(cls, value: tuple[int, ...] | None) -> tuple[int, ...] | None:
        if value is None:
            return None
        for day in value:
            if day < 1 or day > 7:  # noqa: PLR2004
                raise ValueError(f"working day {day} is not an ISO weekday (1=Monday..7=Sunday)")
        return tuple(sorted(set(value)))

    @model_validator(mode="after")
    def validate_band(self) -> WorkingHours:
        """Working hours must describe a non-empty band within one day."""
        if not 0 <= self.start < self.end <= MINUTES_PER_DAY:
            raise ValueError(
                f"working hours {format_clock(self.start)}-{format_clock(self.end)} "
                "must satisfy start < end within one day"
            )
        return self


class Machine(BaseModel):
    """A physical machine that process instances are placed on."""

    model_config = _MODEL_CONFIG

    id: str = Field(min_length=1)
    name: str = ""
    type: str = Field(min_length=1)
    is_active: bool = True
    capabilities: frozenset[str] = frozenset()
    hourly_rate: float = Field(default=0.0, ge=0)
    current_workload: float = Field(default=0.0, ge=0)  # Hours already committed
    working_hours: WorkingHours | None = None  # None = calendar defaults
    maintenance_windows: tuple[MaintenanceWindow, ...] = ()
    available_from: datetime | None = None
    allow_weekends: bool = False
    allow_after_hours: bool = False

    @field_validator("available_from", mode="before")
    @classmethod
    def _normalize_available_from(cls, value: Any, info: ValidationInfo) -> datetime | None:
        if value is None:
            return None
        return to_datetime(value, _tz_from(info))

    @property
    def label(self) -> str:
        """Name for messages (falls back to the id)."""
        return self.name or self.id


class ProcessInstance(BaseModel):
    """One schedulable manufacturing operation (e.g. "Turning #1" of a lot)."""

    model_config = _MODEL_CONFIG

    id: str = Field(min_length=1)
    display_name: str = ""
    order_id: str = Field(default="", validation_alias=AliasChoices("order_id", "orderId", "offerId"))
    machine_type: str = Field(min_length=1)
    required_capabilities: frozenset[str] = Field(
        default=frozenset(),
        validation_alias=AliasChoices(
            "required_capabilities", "requiredCapabilities", "requiredMachineCapabilities"
        ),
    )
    setup_time_minutes: float = Field(default=0.0, ge=0)
    cycle_time_minutes: float = Field(default=0.0, ge=0)
    quantity: int = Field(default=1, ge=1)
    dependencies: tuple[str, ...] = ()
    due_date: datetime | None = None
    customer_priority: CustomerPriority = CustomerPriority.NORMAL
    base_process_name: str | None = None

    @field_validator("due_date", mode="before")
    @classmethod
    def _normalize_due_date(cls, value: Any, info: ValidationInfo) -> datetime | None:
        if value is None or value == "":
            return None
        return to_datetime(value, _tz_from(info))

    @field_validator("customer_priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: Any) -> Any:
        if value is None:
            return CustomerPriority.NORMAL
        if isinstance(value, str):
            lowered = value.strip().lower()
            return _PRIORITY_ALIASES.get(lowered, lowered)
        return value

    @model_validator(mode="after")
    def validate_duration(self) -> ProcessInstance:
        """A process instance must take some time."""
        if self.duration_minutes <= 0:
            raise ValueError(f"process instance '{self.id}' has zero duration")
        return self

    @property
    def duration_minutes(self) -> float:
        """Setup plus per-unit cycle time for the whole quantity."""
        return self.setup_time_minutes + self.cycle_time_minutes * self.quantity

    @property
    def label(self) -> str:
        """Name for messages (falls back to the id)."""
        return self.display_name or self.id
