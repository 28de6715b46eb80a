"""Tests for input parsing and schedule validation."""

from datetime import datetime

import pytest

from shopsched.exceptions import InvalidInputError
from shopsched.scheduler.config import CalendarConfig, SchedulingConfig
from shopsched.scheduler.core import EntryStatus
from shopsched.scheduler.validator import ScheduleValidator, parse_machines, parse_process_instances
from tests.conftest import make_entry, make_instance, make_machine


def at(hour: int, minute: int = 0, day: int = 6) -> datetime:
    return datetime(2025, 1, day, hour, minute)


class TestParsing:
    """Tests for building models from raw records."""

    def test_parse_process_instances(self):
        """camelCase records become instances."""
        instances = parse_process_instances(
            [{"id": "p1", "machineType": "turning", "cycleTimeMinutes": 15, "quantity": 4}]
        )
        assert instances[0].duration_minutes == 60

    def test_invalid_record_names_its_index(self):
        """Errors point at the offending record and field."""
        raw = [
            {"id": "p1", "machineType": "turning", "cycleTimeMinutes": 5},
            {"id": "p2", "cycleTimeMinutes": 5},
        ]
        with pytest.raises(InvalidInputError, match="Invalid process instance at index 1") as exc_info:
            parse_process_instances(raw)
        assert "machine" in str(exc_info.value).lower()

    def test_parse_machines_with_timezone(self):
        """Timestamps with offsets are converted to plant time."""
        machines = parse_machines(
            [{"id": "m1", "type": "turning", "availableFrom": "2025-01-06T07:00:00Z"}],
            timezone="Europe/Berlin",
        )
        assert machines[0].available_from == at(8)

    def test_invalid_machine(self):
        """A machine without a type is rejected."""
        with pytest.raises(InvalidInputError, match="Invalid machine at index 0"):
            parse_machines([{"id": "m1"}])


class TestValidateInputs:
    """Tests for pre-run input checks."""

    def test_duplicates_are_reported_together(self):
        """Every kind of duplicate id is listed in one error."""
        validator = ScheduleValidator()
        with pytest.raises(InvalidInputError) as exc_info:
            validator.validate_inputs(
                [make_instance("p"), make_instance("p")],
                [make_machine("m1"), make_machine("m1")],
            )
        message = str(exc_info.value)
        assert "Duplicate process instance ids: p" in message
        assert "Duplicate machine ids: m1" in message

    def test_backwards_existing_entry(self):
        """Committed entries must have a positive interval."""
        with pytest.raises(InvalidInputError, match="ends before it starts"):
            ScheduleValidator().validate_inputs([], [make_machine()], [make_entry("e", at(10), at(9))])


class TestValidateSchedule:
    """Tests for pre-commit schedule validation."""

    def test_clean_schedule(self):
        """Entries inside working hours with no overlap are valid."""
        entries = [make_entry("a", at(8), at(9)), make_entry("b", at(9), at(10))]
        result = ScheduleValidator().validate_schedule(entries, [make_machine()])
        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_hard_errors(self):
        """Overlaps, unknown machines and empty intervals are errors."""
        entries = [
            make_entry("a", at(8), at(10)),
            make_entry("b", at(9), at(11)),
            make_entry("c", at(8), at(9), machine_id="ghost"),
            make_entry("d", at(12), at(12)),
        ]
        result = ScheduleValidator().validate_schedule(entries, [make_machine()])
        assert not result.is_valid
        assert "Entry 'c' references unknown machine 'ghost'" in result.errors
        assert "Entry 'd' ends at or before its start" in result.errors
        assert any("'a'" in e and "'b'" in e for e in result.errors)

    def test_maintenance_is_an_error(self):
        """Work inside a maintenance window cannot be committed."""
        machine = make_machine(maintenance_windows=[{"start": at(9), "end": at(10)}])
        result = ScheduleValidator().validate_schedule([make_entry("a", at(8), at(10))], [machine])
        assert not result.is_valid

    def test_out_of_hours_warnings(self):
        """Weekend and evening work is allowed but flagged."""
        entries = [
            make_entry("evening", at(16), at(18)),
            make_entry("weekend", at(10, day=11), at(11, day=11)),
        ]
        result = ScheduleValidator().validate_schedule(entries)
        assert result.is_valid
        assert "Entry 'evening' ends outside working hours (17:59)" in result.warnings
        assert any(w.startswith("Entry 'weekend' starts on a non-working day (Saturday") for w in result.warnings)

    def test_inactive_entries_skip_calendar_checks(self):
        """Cancelled entries are not checked against the calendar."""
        entry = make_entry("late", at(20), at(21), status=EntryStatus.CANCELLED)
        assert ScheduleValidator().validate_schedule([entry]).warnings == []

    def test_machine_calendar_is_used(self):
        """A weekend machine produces no weekend warning."""
        config = SchedulingConfig(calendar=CalendarConfig(working_hours_end="18:00"))
        entries = [make_entry("sat", at(10, day=11), at(17, 30, day=11))]
        result = ScheduleValidator(config).validate_schedule(entries, [make_machine(allow_weekends=True)])
        assert result.warnings == []
