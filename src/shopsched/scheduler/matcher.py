"""Machine matching: which machines can run a process instance, best first."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from shopsched.models import Machine, ProcessInstance


@dataclass(frozen=True)
class MachineMatch:
    """Why a machine does or does not qualify for an instance."""

    machine_id: str
    matches: bool
    reasons: tuple[str, ...]


def is_capable(instance: ProcessInstance, machine: Machine) -> bool:
    """Active, same type and all required capabilities present."""
    return (
        machine.is_active
        and machine.type == instance.machine_type
        and instance.required_capabilities <= machine.capabilities
    )


def candidate_machines(
    instance: ProcessInstance,
    machines: Sequence[Machine],
    workloads: Mapping[str, float] | None = None,
) -> list[Machine]:
    """Machines able to run the instance, best first.

    Ordered by ascending workload (hours), then ascending hourly rate, then
    input order.

    Args:
        instance: Process instance to place
        machines: All machines
        workloads: Workload in hours by machine id for this run; machines
            not listed use their ``current_workload``
    """
    workloads = workloads or {}
    ranked = [
        (workloads.get(machine.id, machine.current_workload), machine.hourly_rate, index, machine)
        for index, machine in enumerate(machines)
        if is_capable(instance, machine)
    ]
    ranked.sort(key=lambda item: item[:3])
    return [item[3] for item in ranked]


def capability_analysis(instance: ProcessInstance, machines: Sequence[Machine]) -> list[MachineMatch]:
    """Explain for every machine whether it qualifies for the instance."""
    results: list[MachineMatch] = []
    for machine in machines:
        reasons: list[str] = []
        if not machine.is_active:
            reasons.append("inactive")
        if machine.type != instance.machine_type:
            reasons.append(f"type '{machine.type}' != '{instance.machine_type}'")
        missing = sorted(instance.required_capabilities - machine.capabilities)
        if missing:
            reasons.append("missing capabilities: " + ", ".join(missing))
        results.append(MachineMatch(machine_id=machine.id, matches=not reasons, reasons=tuple(reasons)))
    return results


def describe_no_match(instance: ProcessInstance, machines: Sequence[Machine]) -> str:
    """One-line explanation of why no machine can run the instance."""
    if not machines:
        return f"No machines available for '{instance.label}'"
    same_type = [m for m in capability_analysis(instance, machines) if not any(r.startswith("type") for r in m.reasons)]
    if not same_type:
        return f"No machine of type '{instance.machine_type}' for '{instance.label}'"
    details = "; ".join(f"{m.machine_id}: {', '.join(m.reasons)}" for m in same_type if not m.matches)
    return f"No capable machine for '{instance.label}' ({details})"
