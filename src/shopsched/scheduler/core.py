"""Core dataclasses for the scheduling system."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from shopsched.exceptions import ShopschedError


class EntryStatus(str, Enum):
    """Lifecycle status of a schedule entry."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DELAYED = "delayed"
    CANCELLED = "cancelled"


# Entries in these states occupy their machine
ACTIVE_STATUSES = frozenset({EntryStatus.SCHEDULED, EntryStatus.IN_PROGRESS})


class ConflictType(str, Enum):
    """Kinds of detected rule violations."""

    MACHINE_DOUBLE_BOOKING = "machine_double_booking"
    DEPENDENCY_VIOLATION = "dependency_violation"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    MAINTENANCE_CONFLICT = "maintenance_conflict"
    CYCLIC_DEPENDENCY = "cyclic_dependency"
    SCHEDULING_TIMEOUT = "scheduling_timeout"
    INVALID_INPUT = "invalid_input"


class Severity(str, Enum):
    """How serious a conflict is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class InstanceState(str, Enum):
    """Placement state of a process instance within one run."""

    PENDING = "pending"
    READY = "ready"
    PLACED = "placed"
    FAILED = "failed"


def _default_str_tuple() -> tuple[str, ...]:
    return ()


def _default_dict() -> dict[str, Any]:
    return {}


@dataclass(frozen=True)
class ScheduleEntry:
    """One process instance bound to one machine for one interval."""

    id: str
    machine_id: str
    process_instance_id: str
    start_time: datetime
    end_time: datetime
    order_id: str = ""
    status: EntryStatus = EntryStatus.SCHEDULED
    actual_start_time: datetime | None = None
    actual_end_time: datetime | None = None
    work_minutes: float | None = None  # Working minutes consumed (excludes nights, breaks)
    dependencies: tuple[str, ...] = field(default_factory=_default_str_tuple)
    notes: str | None = None
    version: int = 1

    @property
    def is_active(self) -> bool:
        """Whether the entry occupies its machine."""
        return self.status in ACTIVE_STATUSES

    def overlaps(self, other: "ScheduleEntry") -> bool:
        """Whether the two intervals intersect (touching ends do not count)."""
        return self.start_time < other.end_time and other.start_time < self.end_time


@dataclass(frozen=True)
class SuggestedResolution:
    """A proposed fix for a conflict: move one entry to a new start."""

    entry_id: str
    new_start: datetime
    description: str


@dataclass(frozen=True)
class Conflict:
    """A detected violation. Always derived, never authoritative."""

    type: ConflictType
    severity: Severity
    description: str
    affected_entries: tuple[str, ...] = field(default_factory=_default_str_tuple)
    process_instance_ids: tuple[str, ...] = field(default_factory=_default_str_tuple)
    suggested_resolution: SuggestedResolution | None = None

    def sort_key(self) -> tuple[str, tuple[str, ...], tuple[str, ...], str]:
        """Deterministic ordering for reports."""
        return (self.type.value, self.affected_entries, self.process_instance_ids, self.description)


@dataclass
class ScheduleMetrics:
    """Summary numbers for one scheduling run."""

    scheduled_count: int = 0
    failed_count: int = 0
    total_conflicts: int = 0
    average_utilization: float = 0.0  # Fraction 0..1
    machine_utilization: dict[str, float] = field(default_factory=_default_dict)
    scheduling_duration_ms: float = 0.0


@dataclass
class ScheduleResult:
    """Complete result of a scheduling run."""

    success: bool
    entries: list[ScheduleEntry]
    conflicts: list[Conflict]
    metrics: ScheduleMetrics
    instance_states: dict[str, InstanceState] = field(default_factory=_default_dict)
    error: "ShopschedError | None" = None
    algorithm_metadata: dict[str, Any] = field(default_factory=_default_dict)


@dataclass
class ValidationResult:
    """Result of pre-commit schedule validation."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PriorityResult:
    """Priority score of one process instance with its breakdown."""

    process_instance_id: str
    score: float
    tier_score: float
    due_date_score: float
    critical_path_score: float
    dependents: int
    on_critical_path: bool
    urgency_level: str


@dataclass(frozen=True)
class SlotCandidate:
    """A conflict-free placement option for one instance on one machine."""

    machine_id: str
    start: datetime
    end: datetime
    work_minutes: float
    rank: int  # Position of the machine in the matcher's ordering


@dataclass
class RescheduleResult:
    """Outcome of a reschedule request."""

    success: bool
    entry: ScheduleEntry | None = None
    conflicts: list[Conflict] = field(default_factory=list)


def _default_float_dict() -> dict[str, float]:
    return {}


@dataclass
class PlacementContext:
    """Run state a slot strategy may consult when choosing a placement."""

    instance_id: str
    due_date: datetime | None
    workloads: dict[str, float] = field(default_factory=_default_float_dict)  # Hours by machine id
    setup_affinity: dict[str, bool] = field(default_factory=dict)  # Machine ran a similar process last
