"""Dependency graph analysis for process instances.

Provides topological tiers (Kahn's algorithm), cycle discovery, transitive
dependent counts and a critical path analysis. Dependency ids that are not
part of the run but are listed in ``satisfied_ids`` (already committed work)
are treated as met; any other unknown id is invalid input.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from shopsched.exceptions import CyclicDependencyError, InvalidInputError
from shopsched.models import ProcessInstance


@dataclass
class DependencyReport:
    """Problems found in the dependency declarations."""

    self_dependencies: list[str] = field(default_factory=list)
    unknown_references: list[tuple[str, str]] = field(default_factory=list)  # (instance, missing dep)
    cycles: list[list[str]] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not (self.self_dependencies or self.unknown_references or self.cycles)

    def messages(self) -> list[str]:
        """Human-readable description of each problem."""
        messages = [f"Process instance '{pid}' depends on itself" for pid in self.self_dependencies]
        messages.extend(
            f"Process instance '{pid}' depends on unknown process instance '{dep}'"
            for pid, dep in self.unknown_references
        )
        messages.extend(
            "Circular dependency: " + " -> ".join([*cycle, cycle[0]]) for cycle in self.cycles
        )
        return messages


@dataclass
class CriticalPathResult:
    """Forward/backward pass over the graph using instance durations."""

    path: list[str]  # Longest chain, in execution order
    total_minutes: float
    earliest_start: dict[str, float]  # Minutes from project start
    latest_start: dict[str, float]
    slack: dict[str, float]

    def is_critical(self, instance_id: str) -> bool:
        return self.slack.get(instance_id, 1.0) < 1e-6  # noqa: PLR2004


class DependencyGraph:
    """Immutable view of the dependency relation between process instances."""

    def __init__(self, instances: Sequence[ProcessInstance], satisfied_ids: Iterable[str] = ()):
        self.instances = {inst.id: inst for inst in instances}
        self.order = [inst.id for inst in instances]
        self.satisfied_ids = frozenset(satisfied_ids) - self.instances.keys()

        # Edges restricted to instances in this run
        self.dependencies: dict[str, list[str]] = {
            inst.id: [d for d in dict.fromkeys(inst.dependencies) if d in self.instances] for inst in instances
        }
        self.dependents: dict[str, list[str]] = {pid: [] for pid in self.order}
        for pid in self.order:
            for dep_id in self.dependencies[pid]:
                self.dependents[dep_id].append(pid)

    def validate(self) -> DependencyReport:
        """Collect self-dependencies, unknown references and cycles."""
        report = DependencyReport()
        for pid in self.order:
            for dep_id in self.instances[pid].dependencies:
                if dep_id == pid:
                    report.self_dependencies.append(pid)
                elif dep_id not in self.instances and dep_id not in self.satisfied_ids:
                    report.unknown_references.append((pid, dep_id))
        report.cycles = [cycle for cycle in self.find_cycles() if len(cycle) > 1]
        return report

    def check(self) -> None:
        """Raise if the graph cannot be scheduled.

        Raises:
            CyclicDependencyError: If there is a cycle (a self-dependency counts)
            InvalidInputError: If a dependency references an unknown instance
        """
        report = self.validate()
        if report.self_dependencies or report.cycles:
            raise CyclicDependencyError([[pid] for pid in report.self_dependencies] + report.cycles)
        if report.unknown_references:
            raise InvalidInputError("; ".join(report.messages()))

    def find_cycles(self) -> list[list[str]]:
        """Find cycles by depth-first search, each reported once from its first member."""
        cycles: list[list[str]] = []
        seen: set[frozenset[str]] = set()
        state: dict[str, int] = {}  # 1 = on stack, 2 = done
        stack: list[str] = []

        def visit(pid: str) -> None:
            state[pid] = 1
            stack.append(pid)
            for dep_id in self.dependencies[pid]:
                if state.get(dep_id) == 1:
                    cycle = stack[stack.index(dep_id) :]
                    key = frozenset(cycle)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(cycle)
                elif dep_id not in state:
                    visit(dep_id)
            stack.pop()
            state[pid] = 2

        for pid in self.order:
            if pid not in state:
                visit(pid)
        return cycles

    def topological_tiers(self) -> list[list[str]]:
        """Group instances into tiers; each tier only depends on earlier tiers.

        Within a tier, ids keep input order.

        Raises:
            CyclicDependencyError: If a circular dependency is detected
        """
        in_degree = {pid: len(self.dependencies[pid]) for pid in self.order}
        tier = [pid for pid in self.order if in_degree[pid] == 0]
        tiers: list[list[str]] = []
        placed = 0

        while tier:
            tiers.append(tier)
            placed += len(tier)
            released: set[str] = set()
            for pid in tier:
                for dependent in self.dependents[pid]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        released.add(dependent)
            tier = [pid for pid in self.order if pid in released]

        if placed != len(self.order):
            raise CyclicDependencyError(self.find_cycles() or [[pid for pid in self.order if in_degree[pid] > 0]])
        return tiers

    def transitive_dependents(self, instance_id: str) -> set[str]:
        """All instances that directly or indirectly depend on ``instance_id``."""
        found: set[str] = set()
        pending = list(self.dependents.get(instance_id, []))
        while pending:
            pid = pending.pop()
            if pid in found or pid == instance_id:
                continue
            found.add(pid)
            pending.extend(self.dependents[pid])
        return found

    def critical_path(self) -> CriticalPathResult:
        """Forward and backward pass using each instance's duration.

        Raises:
            CyclicDependencyError: If a circular dependency is detected
        """
        topo = [pid for tier in self.topological_tiers() for pid in tier]
        duration = {pid: self.instances[pid].duration_minutes for pid in topo}

        earliest: dict[str, float] = {}
        for pid in topo:
            earliest[pid] = max((earliest[d] + duration[d] for d in self.dependencies[pid]), default=0.0)
        total = max((earliest[pid] + duration[pid] for pid in topo), default=0.0)

        latest: dict[str, float] = {}
        for pid in reversed(topo):
            latest_finish = min((latest[d] for d in self.dependents[pid]), default=total)
            latest[pid] = latest_finish - duration[pid]

        slack = {pid: latest[pid] - earliest[pid] for pid in topo}

        # Walk the zero-slack chain from the earliest critical root
        path: list[str] = []
        current = next(
            (pid for pid in topo if not self.dependencies[pid] and slack[pid] < 1e-6),  # noqa: PLR2004
            None,
        )
        while current is not None:
            path.append(current)
            finish = earliest[current] + duration[current]
            current = next(
                (
                    d
                    for d in self.dependents[current]
                    if slack[d] < 1e-6 and abs(earliest[d] - finish) < 1e-6  # noqa: PLR2004
                ),
                None,
            )

        return CriticalPathResult(
            path=path,
            total_minutes=total,
            earliest_start=earliest,
            latest_start=latest,
            slack=slack,
        )
