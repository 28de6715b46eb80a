"""Tests for the scheduling engine across both variants."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from shopsched.exceptions import CyclicDependencyError, InvalidInputError, SchedulingTimeoutError
from shopsched.scheduler.config import SchedulerVariant, SchedulingConfig
from shopsched.scheduler.conflicts import detect_conflicts
from shopsched.scheduler.core import ConflictType, InstanceState, Severity
from shopsched.scheduler.engine import Scheduler
from tests.conftest import MONDAY_8AM, make_entry, make_instance, make_machine

SchedulerFactory = Callable[..., Scheduler]


def at(hour: int, minute: int = 0) -> datetime:
    return MONDAY_8AM.replace(hour=hour, minute=minute)


class TestBasicPlacement:
    """Tests for straightforward runs."""

    def test_three_jobs_on_one_machine(self, make_scheduler: SchedulerFactory):
        """Jobs are packed back to back from the start of the day."""
        instances = [make_instance(f"p{i}") for i in (1, 2, 3)]

        result = make_scheduler().schedule(instances, [make_machine()], start_time=MONDAY_8AM)

        assert result.success
        assert [(e.id, e.start_time, e.end_time) for e in result.entries] == [
            ("entry-p1", at(8), at(9)),
            ("entry-p2", at(9), at(10)),
            ("entry-p3", at(10), at(11)),
        ]
        assert result.conflicts == []
        assert result.metrics.scheduled_count == 3
        assert result.metrics.machine_utilization["m1"] == pytest.approx(180 / 540)
        assert all(state == InstanceState.PLACED for state in result.instance_states.values())

    def test_dependency_waits_for_predecessor(self, make_scheduler: SchedulerFactory):
        """A dependent never starts before its dependency ends, even on another machine."""
        machines = [make_machine("m1"), make_machine("m2", type="milling")]
        instances = [
            make_instance("B", machine_type="milling", dependencies=["A"]),
            make_instance("A", cycle_time_minutes=120),
        ]

        result = make_scheduler().schedule(instances, machines, start_time=at(9))

        by_instance = {e.process_instance_id: e for e in result.entries}
        assert (by_instance["A"].machine_id, by_instance["A"].start_time, by_instance["A"].end_time) == (
            "m1",
            at(9),
            at(11),
        )
        assert (by_instance["B"].machine_id, by_instance["B"].start_time) == ("m2", at(11))
        assert result.algorithm_metadata["tiers"] == 2

    def test_higher_priority_placed_first(self, make_scheduler: SchedulerFactory):
        """Within a tier the critical order gets the earlier slot."""
        instances = [make_instance("normal"), make_instance("rush", customer_priority="critical")]

        result = make_scheduler().schedule(instances, [make_machine()], start_time=MONDAY_8AM)

        starts = {e.process_instance_id: e.start_time for e in result.entries}
        assert starts == {"rush": at(8), "normal": at(9)}

    def test_buffer_percentage_extends_duration(self, make_scheduler: SchedulerFactory):
        """A 50% buffer turns 60 minutes into 90."""
        config = SchedulingConfig(buffer_percentage=50)

        result = make_scheduler(config).schedule([make_instance("p")], [make_machine()], start_time=MONDAY_8AM)

        assert result.entries[0].end_time == at(9, 30)
        assert result.entries[0].work_minutes == 90

    def test_maintenance_is_avoided(self, make_scheduler: SchedulerFactory):
        """Work is placed after a maintenance window."""
        machine = make_machine(maintenance_windows=[{"start": at(8), "end": at(9)}])

        result = make_scheduler().schedule([make_instance("p")], [machine], start_time=MONDAY_8AM)

        assert result.entries[0].start_time == at(9)

    def test_aware_start_time_is_converted(self, make_scheduler: SchedulerFactory):
        """A UTC-aware start is read as plant-local time."""
        start = datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc)

        result = make_scheduler().schedule([make_instance("p")], [make_machine()], start_time=start)

        assert result.success
        assert result.entries[0].start_time == at(8)
        assert result.entries[0].start_time.tzinfo is None

    def test_aware_start_time_uses_plant_timezone(self, make_scheduler: SchedulerFactory):
        """07:00Z is 08:00 in a Berlin plant in winter."""
        config = SchedulingConfig(calendar={"timezone": "Europe/Berlin"})
        start = datetime(2025, 1, 6, 7, 0, tzinfo=timezone.utc)

        result = make_scheduler(config).schedule([make_instance("p")], [make_machine()], start_time=start)

        assert result.entries[0].start_time == at(8)

    def test_load_is_balanced(self, make_scheduler: SchedulerFactory):
        """Two equal jobs on two equal machines run in parallel."""
        machines = [make_machine("m1"), make_machine("m2")]
        instances = [make_instance("p1"), make_instance("p2")]

        result = make_scheduler().schedule(instances, machines, start_time=MONDAY_8AM)

        placed = {e.process_instance_id: (e.machine_id, e.start_time) for e in result.entries}
        assert placed == {"p1": ("m1", at(8)), "p2": ("m2", at(8))}

    def test_runs_are_deterministic(self, make_scheduler: SchedulerFactory):
        """Same inputs, same entries."""
        machines = [make_machine("m1"), make_machine("m2", hourly_rate=10)]
        instances = [make_instance(f"p{i}", cycle_time_minutes=30 + 15 * i) for i in range(6)]
        scheduler = make_scheduler()

        first = scheduler.schedule(instances, machines, start_time=MONDAY_8AM)
        second = scheduler.schedule(instances, machines, start_time=MONDAY_8AM)

        assert first.entries == second.entries
        assert first.conflicts == second.conflicts

    def test_larger_run_is_consistent(self, make_scheduler: SchedulerFactory):
        """No double bookings, dependencies honoured, everything in working time."""
        machines = [make_machine("m1"), make_machine("m2"), make_machine("m3", type="milling")]
        instances = []
        for i in range(12):
            machine_type = "milling" if i % 3 == 2 else "turning"
            deps = [f"p{i - 1}"] if i % 4 == 1 else []
            minutes = 45 + 40 * (i % 5)
            instances.append(
                make_instance(f"p{i}", machine_type=machine_type, cycle_time_minutes=minutes, dependencies=deps)
            )
        scheduler = make_scheduler()

        result = scheduler.schedule(instances, machines, start_time=at(10))

        assert result.success
        assert len(result.entries) == 12
        assert detect_conflicts(result.entries) == []
        for entry in result.entries:
            calendar = scheduler.availability.calendar_for(next(m for m in machines if m.id == entry.machine_id))
            assert calendar.is_working_time(entry.start_time)
            assert calendar.is_working_time(entry.end_time - timedelta(microseconds=1))


class TestExistingEntries:
    """Tests for scheduling around committed work."""

    def test_existing_entry_blocks_machine(self, make_scheduler: SchedulerFactory):
        """New work starts after committed work on the same machine."""
        existing = [make_entry("entry-p1", at(8), at(10), process_instance_id="old")]

        result = make_scheduler().schedule(
            [make_instance("p1")], [make_machine()], start_time=MONDAY_8AM, existing_entries=existing
        )

        entry = result.entries[0]
        assert entry.start_time == at(10)
        assert entry.id == "entry-p1-2"

    def test_existing_entry_satisfies_dependency(self, make_scheduler: SchedulerFactory):
        """A dependency on committed work waits for its end."""
        machines = [make_machine("m1"), make_machine("m2")]
        existing = [make_entry("old-entry", at(8), at(12), machine_id="m2", process_instance_id="old")]

        result = make_scheduler().schedule(
            [make_instance("p", dependencies=["old"])], machines, start_time=MONDAY_8AM, existing_entries=existing
        )

        assert result.success
        assert result.entries[0].start_time == at(12)


class TestFailures:
    """Tests for per-instance and run-level failures."""

    def test_cycle_aborts_run(self, make_scheduler: SchedulerFactory):
        """A dependency cycle yields no entries and one critical conflict."""
        instances = [make_instance("A", dependencies=["B"]), make_instance("B", dependencies=["A"])]

        result = make_scheduler().schedule(instances, [make_machine()], start_time=MONDAY_8AM)

        assert not result.success
        assert result.entries == []
        assert [c.type for c in result.conflicts] == [ConflictType.CYCLIC_DEPENDENCY]
        assert result.conflicts[0].severity == Severity.CRITICAL
        assert set(result.conflicts[0].process_instance_ids) == {"A", "B"}
        assert isinstance(result.error, CyclicDependencyError)

    def test_duplicate_ids_are_invalid_input(self, make_scheduler: SchedulerFactory):
        """Duplicate instance ids abort the run."""
        result = make_scheduler().schedule(
            [make_instance("p"), make_instance("p")], [make_machine()], start_time=MONDAY_8AM
        )

        assert not result.success
        assert result.conflicts[0].type == ConflictType.INVALID_INPUT
        assert isinstance(result.error, InvalidInputError)

    def test_unknown_dependency_is_invalid_input(self, make_scheduler: SchedulerFactory):
        """References to unknown instances are rejected."""
        result = make_scheduler().schedule(
            [make_instance("p", dependencies=["ghost"])], [make_machine()], start_time=MONDAY_8AM
        )

        assert not result.success
        assert result.conflicts[0].type == ConflictType.INVALID_INPUT

    def test_missing_capability_fails_only_that_instance(self, make_scheduler: SchedulerFactory):
        """Other instances are still placed."""
        instances = [make_instance("special", required_capabilities=["5-axis"]), make_instance("plain")]

        result = make_scheduler().schedule(instances, [make_machine()], start_time=MONDAY_8AM)

        assert result.success
        assert result.instance_states["special"] == InstanceState.FAILED
        assert result.instance_states["plain"] == InstanceState.PLACED
        assert [e.process_instance_id for e in result.entries] == ["plain"]
        assert result.entries[0].start_time == at(8)
        capacity = [c for c in result.conflicts if c.type == ConflictType.CAPACITY_EXCEEDED]
        assert len(capacity) == 1
        assert capacity[0].process_instance_ids == ("special",)
        assert capacity[0].severity == Severity.HIGH
        assert result.metrics.failed_count == 1

    def test_dependent_of_failed_instance_fails(self, make_scheduler: SchedulerFactory):
        """Work downstream of a failed instance is not placed."""
        instances = [
            make_instance("special", required_capabilities=["5-axis"]),
            make_instance("after", dependencies=["special"]),
        ]

        result = make_scheduler().schedule(instances, [make_machine()], start_time=MONDAY_8AM)

        assert result.entries == []
        assert result.instance_states["after"] == InstanceState.FAILED
        violation = [c for c in result.conflicts if c.type == ConflictType.DEPENDENCY_VIOLATION]
        assert violation[0].process_instance_ids == ("after", "special")

    def test_time_budget_exhausted(self, make_scheduler: SchedulerFactory):
        """A zero budget times out before placing anything."""
        config = SchedulingConfig(time_budget_seconds=0)

        result = make_scheduler(config).schedule(
            [make_instance("p1"), make_instance("p2")], [make_machine()], start_time=MONDAY_8AM
        )

        assert not result.success
        assert isinstance(result.error, SchedulingTimeoutError)
        assert result.entries == []
        timeout = result.conflicts[0]
        assert timeout.type == ConflictType.SCHEDULING_TIMEOUT
        assert timeout.process_instance_ids == ("p1", "p2")

    def test_timeout_keeps_entries_placed_before_it(
        self, make_scheduler: SchedulerFactory, monkeypatch: pytest.MonkeyPatch
    ):
        """Running out of budget mid-run returns the placements made so far."""
        readings = iter([0.0, 0.0])
        clock = SimpleNamespace(perf_counter=lambda: next(readings, 100.0))
        monkeypatch.setattr("shopsched.scheduler.engine.time", clock)
        config = SchedulingConfig(time_budget_seconds=10)

        result = make_scheduler(config).schedule(
            [make_instance("p1"), make_instance("p2")], [make_machine()], start_time=MONDAY_8AM
        )

        assert not result.success
        assert isinstance(result.error, SchedulingTimeoutError)
        assert [(e.process_instance_id, e.start_time, e.end_time) for e in result.entries] == [("p1", at(8), at(9))]
        assert result.instance_states["p1"] == InstanceState.PLACED
        assert result.instance_states["p2"] == InstanceState.PENDING
        timeout = next(c for c in result.conflicts if c.type == ConflictType.SCHEDULING_TIMEOUT)
        assert timeout.process_instance_ids == ("p2",)


class TestVariantDifferences:
    """Tests where the strategies disagree."""

    @pytest.fixture
    def blocked_m1(self):
        """m1 is busy until noon, m2 is free."""
        machines = [make_machine("m1"), make_machine("m2")]
        existing = [make_entry("busy", at(8), at(12), machine_id="m1")]
        return machines, existing

    def test_simple_takes_best_ranked_machine(self, blocked_m1):
        """First fit waits on the first-ranked machine."""
        machines, existing = blocked_m1
        scheduler = Scheduler(SchedulingConfig(variant=SchedulerVariant.SIMPLE))

        result = scheduler.schedule([make_instance("p")], machines, start_time=MONDAY_8AM, existing_entries=existing)

        assert (result.entries[0].machine_id, result.entries[0].start_time) == ("m1", at(12))
        assert result.algorithm_metadata["strategy"] == "simple"

    def test_enhanced_prefers_earlier_completion(self, blocked_m1):
        """Weighted scoring uses the free machine."""
        machines, existing = blocked_m1
        scheduler = Scheduler(SchedulingConfig(variant=SchedulerVariant.ENHANCED))

        result = scheduler.schedule([make_instance("p")], machines, start_time=MONDAY_8AM, existing_entries=existing)

        assert (result.entries[0].machine_id, result.entries[0].start_time) == ("m2", at(8))
        assert result.algorithm_metadata["strategy"] == "enhanced"
