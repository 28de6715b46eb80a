"""Scheduler core: places process instances on machines."""

from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Iterator, Sequence
from datetime import datetime, timedelta, timezone
from datetime import time as clock_time

from shopsched.exceptions import (
    CyclicDependencyError,
    InvalidInputError,
    NoCapacityFoundError,
    SchedulingTimeoutError,
    ShopschedError,
)
from shopsched.logger import get_logger
from shopsched.models import Machine, ProcessInstance
from shopsched.timeutil import to_datetime

from .availability import AvailabilityCalculator
from .config import SchedulingConfig
from .conflicts import ConflictDetector
from .core import (
    Conflict,
    ConflictType,
    EntryStatus,
    InstanceState,
    PlacementContext,
    ScheduleEntry,
    ScheduleMetrics,
    ScheduleResult,
    Severity,
    SlotCandidate,
)
from .graph import DependencyGraph
from .matcher import candidate_machines, describe_no_match
from .priority import PriorityEngine
from .protocols import SlotStrategy
from .strategies import create_strategy
from .validator import ScheduleValidator

logger = get_logger()

_ONE_TICK = timedelta(microseconds=1)


def _similar_process(previous: ProcessInstance | None, current: ProcessInstance) -> bool:
    """Whether ``current`` can reuse the setup left by ``previous``."""
    if previous is None:
        return False
    if previous.base_process_name and current.base_process_name:
        return previous.base_process_name == current.base_process_name
    return (
        previous.machine_type == current.machine_type
        and previous.required_capabilities == current.required_capabilities
    )


class _RunState:
    """Mutable bookkeeping of one scheduling run. Never shared between runs."""

    def __init__(self, machines: Sequence[Machine], existing: Sequence[ScheduleEntry]):
        self.workloads: dict[str, float] = {m.id: m.current_workload for m in machines}
        self.by_machine: dict[str, list[ScheduleEntry]] = defaultdict(list)
        self.dependents_of: dict[str, list[ScheduleEntry]] = defaultdict(list)
        self.dependency_end: dict[str, datetime] = {}
        self.last_instance: dict[str, ProcessInstance] = {}
        self.entry_ids: set[str] = set()
        self.placed: list[ScheduleEntry] = []
        self.conflicts: list[Conflict] = []
        for entry in existing:
            self.entry_ids.add(entry.id)
            if entry.status == EntryStatus.CANCELLED:
                continue
            self._track_end(entry)
            for dep_id in entry.dependencies:
                self.dependents_of[dep_id].append(entry)
            if entry.is_active:
                self.by_machine[entry.machine_id].append(entry)

    def _track_end(self, entry: ScheduleEntry) -> None:
        current = self.dependency_end.get(entry.process_instance_id)
        if current is None or entry.end_time > current:
            self.dependency_end[entry.process_instance_id] = entry.end_time

    def new_entry_id(self, instance_id: str) -> str:
        entry_id = f"entry-{instance_id}"
        suffix = 2
        while entry_id in self.entry_ids:
            entry_id = f"entry-{instance_id}-{suffix}"
            suffix += 1
        return entry_id

    def commit(self, entry: ScheduleEntry, instance: ProcessInstance) -> None:
        self.entry_ids.add(entry.id)
        self.placed.append(entry)
        self.by_machine[entry.machine_id].append(entry)
        self._track_end(entry)
        self.workloads[entry.machine_id] = self.workloads.get(entry.machine_id, 0.0) + (entry.work_minutes or 0) / 60.0
        self.last_instance[entry.machine_id] = instance


class Scheduler:
    """Deterministic heuristic scheduler.

    One scheduler serves every variant; the slot strategy decides which of
    the conflict-free candidate slots is taken:

    1. Validate inputs and the dependency graph (cycles abort the run)
    2. Order instances by topological tier, then by priority within a tier
    3. For each instance, compute one earliest conflict-free slot per
       capable machine, starting no earlier than its dependencies' ends
    4. Let the strategy pick; no candidate means the instance failed
    5. Run a full conflict pass over the result
    """

    def __init__(self, config: SchedulingConfig | None = None, strategy: SlotStrategy | None = None):
        """Initialize scheduler.

        Args:
            config: Scheduling configuration
            strategy: Slot strategy (default: the one named by ``config.variant``)
        """
        self.config = config or SchedulingConfig()
        self.strategy = strategy or create_strategy(self.config.variant, self.config.slot_scoring)
        self.availability = AvailabilityCalculator(self.config)
        self.detector = ConflictDetector(self.config.conflict_buffer_minutes)
        self.validator = ScheduleValidator(self.config)

    def schedule(
        self,
        instances: Sequence[ProcessInstance],
        machines: Sequence[Machine],
        *,
        start_time: datetime | None = None,
        existing_entries: Sequence[ScheduleEntry] = (),
    ) -> ScheduleResult:
        """Place process instances on machines.

        Per-instance failures are reported as conflicts and leave the instance
        in ``FAILED`` state; the run continues. Run-level failures (invalid
        input, dependency cycle, time budget) return ``success=False`` with the
        exception in ``error``.

        Args:
            instances: Process instances to place (not modified)
            machines: Machine snapshot (not modified)
            start_time: Nothing is placed before this instant (default: now)
            existing_entries: Committed entries to schedule around; they also
                satisfy dependencies on their process instances

        Returns:
            ScheduleResult with entries, conflicts and metrics
        """
        started = time.perf_counter()
        if start_time is None:
            start_time = to_datetime(datetime.now(timezone.utc), self.config.calendar.timezone).replace(
                second=0, microsecond=0
            )
        else:
            start_time = to_datetime(start_time, self.config.calendar.timezone)
        instances = list(instances)
        machines = list(machines)
        existing = list(existing_entries)
        states = {inst.id: InstanceState.PENDING for inst in instances}

        logger.changes(
            f"Scheduling {len(instances)} process instances on {len(machines)} machines "
            f"from {start_time.isoformat()} ({self.strategy.name})"
        )

        try:
            self.validator.validate_inputs(instances, machines, existing)
            satisfied = {e.process_instance_id for e in existing if e.status != EntryStatus.CANCELLED}
            graph = DependencyGraph(instances, satisfied)
            graph.check()
            tiers = graph.topological_tiers()
        except InvalidInputError as e:
            logger.error(f"Scheduling aborted: {e}")
            return self._aborted(e, states, started)

        priorities = PriorityEngine(self.config.priority, start_time)
        scores = [priorities.score(inst, graph) for inst in instances]
        sort_keys = priorities.sort_key_map(instances, scores)
        order = [pid for tier in tiers for pid in sorted(tier, key=sort_keys.__getitem__)]

        by_id = {inst.id: inst for inst in instances}
        run = _RunState(machines, existing)
        horizon_end = start_time + timedelta(days=self.config.horizon_days)

        error: ShopschedError | None = None
        try:
            for pid in order:
                self._check_budget(started)
                self._place(by_id[pid], machines, run, states, start_time, horizon_end)
        except SchedulingTimeoutError as e:
            logger.error(f"Scheduling aborted: {e}")
            error = e
            unplaced = tuple(pid for pid in order if states[pid] in (InstanceState.PENDING, InstanceState.READY))
            run.conflicts.append(
                Conflict(
                    type=ConflictType.SCHEDULING_TIMEOUT,
                    severity=Severity.CRITICAL,
                    description=str(e),
                    process_instance_ids=unplaced,
                )
            )

        # Consistency check over everything the machines now hold
        final_conflicts = self.detector.detect_conflicts([*existing, *run.placed])
        if final_conflicts:
            logger.warning(f"Final conflict pass found {len(final_conflicts)} conflicts")
        conflicts = run.conflicts + final_conflicts

        metrics = self._metrics(machines, run, existing, started)
        metrics.total_conflicts = len(conflicts)
        metrics.failed_count = sum(1 for s in states.values() if s == InstanceState.FAILED)

        logger.changes(
            f"Placed {metrics.scheduled_count} of {len(instances)} instances, "
            f"{metrics.total_conflicts} conflicts, average utilization {metrics.average_utilization:.1%}"
        )
        return ScheduleResult(
            success=error is None,
            entries=list(run.placed),
            conflicts=conflicts,
            metrics=metrics,
            instance_states=states,
            error=error,
            algorithm_metadata={
                "strategy": self.strategy.name,
                "tiers": len(tiers),
                "start_time": start_time.isoformat(),
                "horizon_end": horizon_end.isoformat(),
            },
        )

    def _check_budget(self, started: float) -> None:
        budget = self.config.time_budget_seconds
        if budget is None:
            return
        elapsed = time.perf_counter() - started
        if elapsed >= budget:
            msg = f"Scheduling exceeded its time budget of {budget:g}s (elapsed {elapsed:.3f}s)"
            raise SchedulingTimeoutError(msg)

    def _place(  # noqa: PLR0913 - run state is threaded through explicitly
        self,
        instance: ProcessInstance,
        machines: Sequence[Machine],
        run: _RunState,
        states: dict[str, InstanceState],
        start_time: datetime,
        horizon_end: datetime,
    ) -> None:
        failed_deps = [d for d in instance.dependencies if states.get(d) == InstanceState.FAILED]
        if failed_deps:
            states[instance.id] = InstanceState.FAILED
            run.conflicts.append(
                Conflict(
                    type=ConflictType.DEPENDENCY_VIOLATION,
                    severity=Severity.HIGH,
                    description=(
                        f"'{instance.label}' cannot be scheduled because its dependencies failed: "
                        + ", ".join(failed_deps)
                    ),
                    process_instance_ids=(instance.id, *failed_deps),
                )
            )
            logger.changes(f"  {instance.id}: failed (dependency {', '.join(failed_deps)} failed)")
            return

        states[instance.id] = InstanceState.READY
        earliest = max([start_time, *(run.dependency_end[d] for d in instance.dependencies if d in run.dependency_end)])
        duration = instance.duration_minutes * (1 + self.config.buffer_percentage / 100.0)
        entry_id = run.new_entry_id(instance.id)

        ranked = candidate_machines(instance, machines, run.workloads)
        logger.checks(f"  {instance.id}: earliest {earliest.isoformat()}, candidates {[m.id for m in ranked]}")
        if not ranked:
            self._fail_capacity(instance, states, run, describe_no_match(instance, machines))
            return

        context = PlacementContext(
            instance_id=instance.id,
            due_date=instance.due_date,
            workloads={m.id: run.workloads.get(m.id, 0.0) for m in ranked},
            setup_affinity={m.id: _similar_process(run.last_instance.get(m.id), instance) for m in ranked},
        )
        candidates = self._candidate_slots(instance, ranked, entry_id, earliest, duration, run, horizon_end)
        choice = self.strategy.select(candidates, context)
        if choice is None:
            reason = NoCapacityFoundError(
                f"No conflict-free {duration:g}-minute slot for '{instance.label}' before "
                f"{horizon_end.isoformat()} on any of: {', '.join(m.id for m in ranked)}"
            )
            self._fail_capacity(instance, states, run, str(reason))
            return

        entry = ScheduleEntry(
            id=entry_id,
            machine_id=choice.machine_id,
            process_instance_id=instance.id,
            start_time=choice.start,
            end_time=choice.end,
            order_id=instance.order_id,
            work_minutes=choice.work_minutes,
            dependencies=instance.dependencies,
        )
        run.commit(entry, instance)
        states[instance.id] = InstanceState.PLACED
        logger.changes(
            f"  {instance.id}: placed on {entry.machine_id} "
            f"{entry.start_time.isoformat()} - {entry.end_time.isoformat()}"
        )

    def _candidate_slots(  # noqa: PLR0913 - generator over explicit run state
        self,
        instance: ProcessInstance,
        ranked: list[Machine],
        entry_id: str,
        earliest: datetime,
        duration: float,
        run: _RunState,
        horizon_end: datetime,
    ) -> Iterator[SlotCandidate]:
        """Earliest conflict-free slot per machine, computed lazily in rank order."""
        for rank, machine in enumerate(ranked):
            slot = self._first_free_slot(instance, machine, entry_id, earliest, duration, run, horizon_end)
            if slot is not None:
                yield SlotCandidate(machine_id=machine.id, start=slot[0], end=slot[1], work_minutes=duration, rank=rank)

    def _first_free_slot(  # noqa: PLR0913
        self,
        instance: ProcessInstance,
        machine: Machine,
        entry_id: str,
        earliest: datetime,
        duration: float,
        run: _RunState,
        horizon_end: datetime,
    ) -> tuple[datetime, datetime] | None:
        relevant = run.by_machine[machine.id] + run.dependents_of.get(instance.id, [])
        cursor = earliest
        while True:
            try:
                start, end = self.availability.next_available_slot(machine, cursor, duration, horizon_end=horizon_end)
            except NoCapacityFoundError as e:
                logger.checks(f"    {machine.id}: {e}")
                return None

            trial = ScheduleEntry(
                id=entry_id,
                machine_id=machine.id,
                process_instance_id=instance.id,
                start_time=start,
                end_time=end,
                dependencies=instance.dependencies,
            )
            found = self.detector.detect_conflicts_for(relevant, trial)
            if not found:
                return (start, end)

            moves = [
                c.suggested_resolution.new_start
                for c in found
                if c.suggested_resolution is not None and c.suggested_resolution.entry_id == entry_id
            ]
            if len(moves) < len(found):
                # Moving later cannot fix a clash with a committed dependent
                logger.checks(f"    {machine.id}: slot at {start.isoformat()} clashes with a dependent entry")
                return None
            logger.debug(
                f"    {machine.id}: slot at {start.isoformat()} conflicts, retrying from {max(moves).isoformat()}"
            )
            cursor = max(moves)

    def _fail_capacity(
        self, instance: ProcessInstance, states: dict[str, InstanceState], run: _RunState, description: str
    ) -> None:
        states[instance.id] = InstanceState.FAILED
        run.conflicts.append(
            Conflict(
                type=ConflictType.CAPACITY_EXCEEDED,
                severity=Severity.HIGH,
                description=description,
                process_instance_ids=(instance.id,),
            )
        )
        logger.changes(f"  {instance.id}: failed ({description})")

    def _metrics(
        self,
        machines: Sequence[Machine],
        run: _RunState,
        existing: Sequence[ScheduleEntry],
        started: float,
    ) -> ScheduleMetrics:
        """Utilization over the days each used machine has work placed."""
        machine_map = {m.id: m for m in machines}
        placed_by_machine: dict[str, list[ScheduleEntry]] = defaultdict(list)
        for entry in run.placed:
            placed_by_machine[entry.machine_id].append(entry)

        utilization: dict[str, float] = {}
        for machine_id in sorted(placed_by_machine):
            machine = machine_map[machine_id]
            placed = placed_by_machine[machine_id]
            window_start = datetime.combine(min(e.start_time for e in placed).date(), clock_time())
            last_day = max(e.end_time - _ONE_TICK for e in placed).date()
            window_end = datetime.combine(last_day, clock_time()) + timedelta(days=1)
            available = self.availability.available_minutes(machine, window_start, window_end)
            busy = sum(
                self.availability.working_minutes_between(
                    machine, max(e.start_time, window_start), min(e.end_time, window_end)
                )
                for e in [*placed, *existing]
                if e.machine_id == machine_id and e.is_active
            )
            utilization[machine_id] = min(1.0, busy / available) if available > 0 else 0.0

        return ScheduleMetrics(
            scheduled_count=len(run.placed),
            average_utilization=sum(utilization.values()) / len(utilization) if utilization else 0.0,
            machine_utilization=utilization,
            scheduling_duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    def _aborted(self, error: InvalidInputError, states: dict[str, InstanceState], started: float) -> ScheduleResult:
        if isinstance(error, CyclicDependencyError):
            conflict_type = ConflictType.CYCLIC_DEPENDENCY
            involved = tuple(dict.fromkeys(pid for cycle in error.cycles for pid in cycle))
        else:
            conflict_type = ConflictType.INVALID_INPUT
            involved = ()
        conflict = Conflict(
            type=conflict_type,
            severity=Severity.CRITICAL,
            description=str(error),
            process_instance_ids=involved,
        )
        return ScheduleResult(
            success=False,
            entries=[],
            conflicts=[conflict],
            metrics=ScheduleMetrics(
                total_conflicts=1,
                scheduling_duration_ms=(time.perf_counter() - started) * 1000.0,
            ),
            instance_states=states,
            error=error,
            algorithm_metadata={"strategy": self.strategy.name},
        )
