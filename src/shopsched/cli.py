"""Command-line interface for shopsched."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import typer

from . import context
from .config import ShopschedConfig, discover_config
from .exceptions import ShopschedError
from .loader import PlantData, load_plant
from .logger import setup_logger
from .models import Machine
from .scheduler import (
    Conflict,
    DependencyGraph,
    InstanceState,
    PriorityEngine,
    ScheduleEntry,
    ScheduleManager,
    SchedulerVariant,
    ScheduleResult,
    read_schedule_file,
    schedule_process_instances,
    validate_schedule,
    write_schedule_file,
)
from .scheduler.service import detect_conflicts
from .timeutil import to_datetime

app = typer.Typer(
    name="shopsched",
    help="Schedule manufacturing process instances on machines",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            help="Verbosity level: 0=silent (default), 1=show changes, 2=show all checks, 3=debug",
            min=0,
            max=3,
        ),
    ] = 0,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to config file (default: shopsched.yaml next to the input or in the current directory)",
        ),
    ] = None,
    timezone: Annotated[
        str | None,
        typer.Option(
            "--timezone",
            "-z",
            help="Plant timezone (IANA name), overriding calendar.timezone from the config",
        ),
    ] = None,
) -> None:
    """Global options for shopsched commands."""
    setup_logger(verbose)
    if timezone is not None and timezone.upper() != "UTC":
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise typer.BadParameter(f"Unknown timezone '{timezone}'", param_hint="--timezone") from None
    context.set_config_path(config)
    context.set_timezone(timezone)


def _load_config(input_path: Path) -> ShopschedConfig:
    try:
        return discover_config(input_path)
    except (FileNotFoundError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


def _load_plant(path: Path, config: ShopschedConfig) -> PlantData:
    try:
        return load_plant(path, config.scheduler.calendar.timezone)
    except (FileNotFoundError, ShopschedError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


def _load_entries(path: Path, config: ShopschedConfig) -> list[ScheduleEntry]:
    try:
        return read_schedule_file(path, config.scheduler.calendar.timezone).entries
    except (FileNotFoundError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


def _parse_time_option(value: str | None, option_name: str, config: ShopschedConfig) -> datetime | None:
    """Parse an ISO timestamp given on the command line."""
    if value is None:
        return None

    try:
        return to_datetime(value, config.scheduler.calendar.timezone)
    except ValueError:
        typer.echo(
            f"Error: Invalid {option_name} '{value}'. Use ISO format, e.g. 2025-01-06T08:00.",
            err=True,
        )
        raise typer.Exit(1) from None


def _fmt(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


def _display_conflicts(conflicts: Sequence[Conflict]) -> None:
    typer.echo(f"Conflicts ({len(conflicts)}):")
    for conflict in conflicts:
        typer.echo(f"  [{conflict.severity.value}] {conflict.type.value}: {conflict.description}")
        if conflict.suggested_resolution is not None:
            typer.echo(f"      suggestion: {conflict.suggested_resolution.description}")


def _display_schedule_results(result: ScheduleResult, machines: Sequence[Machine]) -> None:
    labels = {m.id: m.label for m in machines}
    typer.echo("Schedule Results")
    typer.echo("=" * 80)
    typer.echo("")
    for entry in sorted(result.entries, key=lambda e: (e.machine_id, e.start_time)):
        typer.echo(
            f"{labels.get(entry.machine_id, entry.machine_id):<20} {_fmt(entry.start_time)} - "
            f"{_fmt(entry.end_time)}  {entry.process_instance_id}"
        )
    typer.echo("")
    failed = sorted(pid for pid, state in result.instance_states.items() if state == InstanceState.FAILED)
    if failed:
        typer.echo(f"Failed: {', '.join(failed)}")
    metrics = result.metrics
    typer.echo(
        f"Scheduled {metrics.scheduled_count}, failed {metrics.failed_count}, "
        f"average utilization {metrics.average_utilization:.1%}, "
        f"{metrics.scheduling_duration_ms:.0f} ms"
    )
    if result.conflicts:
        typer.echo("")
        _display_conflicts(result.conflicts)


@app.command()
def schedule(  # noqa: PLR0913 - CLI command needs multiple options
    plant: Annotated[Path, typer.Argument(help="Plant YAML file with machines and process instances")] = Path(
        "plant.yaml"
    ),
    start: Annotated[
        str | None,
        typer.Option("--start", "-s", help="Schedule no work before this instant (ISO). Defaults to now"),
    ] = None,
    variant: Annotated[
        str | None,
        typer.Option("--variant", help="Slot strategy: 'simple' or 'enhanced'. Overrides config"),
    ] = None,
    existing: Annotated[
        Path | None,
        typer.Option("--existing", "-e", help="Schedule file with already committed entries"),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the placed entries to a schedule file"),
    ] = None,
) -> None:
    """Place process instances on machines and display the result."""
    config = _load_config(plant)
    scheduler_config = config.scheduler
    if variant:
        try:
            scheduler_config = scheduler_config.model_copy(update={"variant": SchedulerVariant(variant)})
        except ValueError:
            typer.echo(
                f"Error: Invalid variant '{variant}'. Available: {', '.join(v.value for v in SchedulerVariant)}",
                err=True,
            )
            raise typer.Exit(1) from None

    start_time = _parse_time_option(start, "start", config)
    data = _load_plant(plant, config)
    existing_entries = _load_entries(existing, config) if existing else []

    result = schedule_process_instances(
        data.process_instances,
        data.machines,
        scheduler_config,
        start_time=start_time,
        existing_entries=existing_entries,
    )
    _display_schedule_results(result, data.machines)

    if output:
        write_schedule_file(output, [*existing_entries, *result.entries])
        typer.echo(f"Schedule written to {output}")

    if not result.success:
        typer.echo(f"Error: {result.error}", err=True)
        raise typer.Exit(1)


@app.command()
def conflicts(
    schedule_file: Annotated[Path, typer.Argument(help="Schedule file to check")],
    plant: Annotated[
        Path | None,
        typer.Option("--plant", "-p", help="Plant file, enables maintenance checks"),
    ] = None,
) -> None:
    """List conflicts in a schedule file. Exits with 1 if there are any."""
    config = _load_config(schedule_file)
    entries = _load_entries(schedule_file, config)
    machines = _load_plant(plant, config).machines if plant else []

    found = detect_conflicts(entries, machines, config.scheduler)
    if not found:
        typer.echo("No conflicts")
        return
    _display_conflicts(found)
    raise typer.Exit(1)


@app.command()
def validate(
    schedule_file: Annotated[Path, typer.Argument(help="Schedule file to validate")],
    plant: Annotated[
        Path | None,
        typer.Option("--plant", "-p", help="Plant file with the machines"),
    ] = None,
) -> None:
    """Validate a schedule file before committing it."""
    config = _load_config(schedule_file)
    entries = _load_entries(schedule_file, config)
    machines = _load_plant(plant, config).machines if plant else None

    result = validate_schedule(entries, machines, config.scheduler)
    for error in result.errors:
        typer.echo(f"ERROR: {error}")
    if result.warnings:
        typer.echo("\nWarnings:", err=True)
        for warning in result.warnings:
            typer.echo(f"  - {warning}", err=True)

    if not result.is_valid:
        raise typer.Exit(1)
    typer.echo(f"Schedule is valid ({len(entries)} entries)")


@app.command()
def reschedule(  # noqa: PLR0913 - CLI command needs multiple options
    schedule_file: Annotated[Path, typer.Argument(help="Schedule file holding the entry")],
    entry_id: Annotated[str, typer.Argument(help="Id of the entry to move")],
    new_start: Annotated[str, typer.Argument(help="Requested new start (ISO)")],
    plant: Annotated[Path, typer.Option("--plant", "-p", help="Plant file with the machines")],
    machine: Annotated[
        str | None,
        typer.Option("--machine", "-m", help="Move the entry to this machine"),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Where to write the result (default: update schedule file)"),
    ] = None,
) -> None:
    """Move one entry; rejected moves change nothing."""
    config = _load_config(schedule_file)
    start_time = _parse_time_option(new_start, "new start", config)
    assert start_time is not None
    entries = _load_entries(schedule_file, config)
    machines = _load_plant(plant, config).machines

    manager = ScheduleManager(entries, machines, config.scheduler)
    try:
        result = manager.reschedule_entry(entry_id, start_time, machine)
    except ShopschedError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    if not result.success:
        typer.echo(f"Reschedule of '{entry_id}' rejected", err=True)
        _display_conflicts(result.conflicts)
        raise typer.Exit(1)

    assert result.entry is not None
    target = output or schedule_file
    write_schedule_file(target, manager.get_entries())
    typer.echo(
        f"Rescheduled {entry_id} to {result.entry.machine_id} "
        f"{_fmt(result.entry.start_time)} - {_fmt(result.entry.end_time)}"
    )
    typer.echo(f"Schedule written to {target}")


@app.command()
def rank(
    plant: Annotated[Path, typer.Argument(help="Plant YAML file with machines and process instances")] = Path(
        "plant.yaml"
    ),
    start: Annotated[
        str | None,
        typer.Option("--start", "-s", help="Measure due dates from this instant (ISO). Defaults to now"),
    ] = None,
) -> None:
    """Show the priority ranking of the process instances."""
    config = _load_config(plant)
    start_time = _parse_time_option(start, "start", config)
    data = _load_plant(plant, config)

    graph = DependencyGraph(data.process_instances)
    report = graph.validate()
    if not report.is_valid:
        for message in report.messages():
            typer.echo(f"Error: {message}", err=True)
        raise typer.Exit(1)

    engine = PriorityEngine(config.scheduler.priority, start_time)
    typer.echo(f"{'#':>3}  {'id':<24} {'score':>7}  {'urgency':<8} {'dependents':>10}  critical")
    for position, item in enumerate(engine.rank(data.process_instances, graph), start=1):
        typer.echo(
            f"{position:>3}  {item.process_instance_id:<24} {item.score:>7.1f}  {item.urgency_level:<8} "
            f"{item.dependents:>10}  {'yes' if item.on_critical_path else ''}"
        )


def main() -> int:
    """Main entry point."""
    # Typer handles sys.exit() internally
    app()
    return 0


if __name__ == "__main__":
    main()
