"""Pytest configuration and fixtures for shopsched tests."""

from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import datetime
from typing import Any

import pytest

from shopsched.logger import reset_logger
from shopsched.models import Machine, ProcessInstance
from shopsched.scheduler.config import SchedulerVariant, SchedulingConfig
from shopsched.scheduler.core import ScheduleEntry
from shopsched.scheduler.engine import Scheduler

# Monday 2025-01-06 08:00, start of a default working day
MONDAY_8AM = datetime(2025, 1, 6, 8, 0)

SCHEDULER_VARIANTS = [SchedulerVariant.SIMPLE, SchedulerVariant.ENHANCED]
SCHEDULER_IDS = ["simple", "enhanced"]


def make_machine(machine_id: str = "m1", **kwargs: Any) -> Machine:
    """Machine with sensible defaults (turning, default calendar, no workload)."""
    data: dict[str, Any] = {"id": machine_id, "name": machine_id.upper(), "type": "turning"}
    data.update(kwargs)
    return Machine.model_validate(data)


def make_instance(instance_id: str, **kwargs: Any) -> ProcessInstance:
    """Process instance taking 60 minutes on a turning machine by default."""
    data: dict[str, Any] = {
        "id": instance_id,
        "machine_type": "turning",
        "setup_time_minutes": 0,
        "cycle_time_minutes": 60,
        "quantity": 1,
    }
    data.update(kwargs)
    return ProcessInstance.model_validate(data)


def make_entry(  # noqa: PLR0913 - test helper with many optional fields
    entry_id: str,
    start: datetime,
    end: datetime,
    *,
    machine_id: str = "m1",
    process_instance_id: str | None = None,
    **kwargs: Any,
) -> ScheduleEntry:
    """Schedule entry; the process instance id defaults to the entry id."""
    return ScheduleEntry(
        id=entry_id,
        machine_id=machine_id,
        process_instance_id=process_instance_id or entry_id,
        start_time=start,
        end_time=end,
        **kwargs,
    )


@pytest.fixture(autouse=True)
def _reset_logging() -> Generator[None, None, None]:
    """Keep logger configuration from leaking between tests."""
    yield
    reset_logger()


@pytest.fixture(params=SCHEDULER_VARIANTS, ids=SCHEDULER_IDS)
def scheduler_variant(request: pytest.FixtureRequest) -> SchedulerVariant:
    """Current scheduler variant being tested."""
    return request.param  # type: ignore[no-any-return]


@pytest.fixture
def make_scheduler(scheduler_variant: SchedulerVariant) -> Callable[..., Scheduler]:
    """Factory for creating a scheduler with the current variant."""

    def _make(config: SchedulingConfig | None = None) -> Scheduler:
        if config is None:
            effective_config = SchedulingConfig(variant=scheduler_variant)
        else:
            effective_config = config.model_copy(update={"variant": scheduler_variant})
        return Scheduler(effective_config)

    return _make
