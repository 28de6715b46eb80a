"""Scheduler package - placing process instances on machines.

This package provides a deterministic heuristic scheduler with:
- A canonical working calendar and availability calculator
- Conflict detection (double bookings, dependency order, maintenance)
- Priority ranking and machine matching
- Pluggable slot strategies (simple first fit, enhanced weighted scoring)
- A schedule manager for conflict-checked single-entry mutations

Main entry points:
- Scheduler: Run a scheduling pass
- ScheduleManager: Mutate committed entries
- service functions: schedule_process_instances, reschedule_entry,
  delete_entry, detect_conflicts, validate_schedule
"""

# Availability
from .availability import AvailabilityCalculator
from .calendar import MaintenanceSchedule, WorkingCalendar

# Configuration
from .config import (
    CalendarConfig,
    ClockBand,
    PriorityWeights,
    SchedulerVariant,
    SchedulingConfig,
    SlotScoringWeights,
)

# Conflict detection
from .conflicts import ConflictDetector

# Core dataclasses
from .core import (
    Conflict,
    ConflictType,
    EntryStatus,
    InstanceState,
    PriorityResult,
    RescheduleResult,
    ScheduleEntry,
    ScheduleMetrics,
    ScheduleResult,
    Severity,
    SlotCandidate,
    SuggestedResolution,
    ValidationResult,
)

# Scheduling
from .engine import Scheduler
from .graph import CriticalPathResult, DependencyGraph, DependencyReport
from .manager import ScheduleManager
from .matcher import candidate_machines, capability_analysis
from .priority import PriorityEngine

# Protocols
from .protocols import SlotStrategy

# High-level service
from .service import (
    delete_entry,
    detect_conflicts,
    reschedule_entry,
    schedule_process_instances,
    validate_schedule,
)

# Snapshot files
from .snapshot import read_schedule_file, write_schedule_file
from .strategies import FirstFitStrategy, WeightedScoringStrategy, create_strategy

# Validation
from .validator import ScheduleValidator

__all__ = [
    # Core dataclasses
    "ScheduleEntry",
    "Conflict",
    "ConflictType",
    "Severity",
    "SuggestedResolution",
    "EntryStatus",
    "InstanceState",
    "ScheduleMetrics",
    "ScheduleResult",
    "ValidationResult",
    "PriorityResult",
    "SlotCandidate",
    "RescheduleResult",
    # Configuration
    "SchedulingConfig",
    "SchedulerVariant",
    "CalendarConfig",
    "ClockBand",
    "PriorityWeights",
    "SlotScoringWeights",
    # Protocols
    "SlotStrategy",
    # Components
    "AvailabilityCalculator",
    "WorkingCalendar",
    "MaintenanceSchedule",
    "ConflictDetector",
    "DependencyGraph",
    "DependencyReport",
    "CriticalPathResult",
    "PriorityEngine",
    "candidate_machines",
    "capability_analysis",
    "Scheduler",
    "FirstFitStrategy",
    "WeightedScoringStrategy",
    "create_strategy",
    "ScheduleManager",
    "ScheduleValidator",
    # Snapshot files
    "read_schedule_file",
    "write_schedule_file",
    # High-level service
    "schedule_process_instances",
    "reschedule_entry",
    "delete_entry",
    "detect_conflicts",
    "validate_schedule",
]
