"""Tests for schedule snapshot files."""

from datetime import datetime
from pathlib import Path

import pytest
import yaml

from shopsched.scheduler.core import EntryStatus
from shopsched.scheduler.snapshot import (
    SNAPSHOT_FILE_VERSION,
    entry_from_dict,
    entry_to_dict,
    read_schedule_file,
    write_schedule_file,
)
from tests.conftest import make_entry


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 1, 6, hour, minute)


class TestWriteAndRead:
    """Tests for the file round trip."""

    def test_entries_survive_a_round_trip(self, tmp_path: Path):
        """Every field written is read back unchanged."""
        entries = [
            make_entry(
                "e1",
                at(8),
                at(9, 30),
                order_id="o-1",
                work_minutes=90,
                dependencies=("p0",),
                notes="first article",
                version=3,
            ),
            make_entry("e2", at(10), at(11), status=EntryStatus.IN_PROGRESS, actual_start_time=at(10, 5)),
        ]
        path = tmp_path / "schedule.yaml"

        write_schedule_file(path, entries, generated_at=at(7))
        snapshot = read_schedule_file(path)

        assert snapshot.version == SNAPSHOT_FILE_VERSION
        assert snapshot.generated_at == at(7)
        assert snapshot.entries == entries

    def test_written_file_is_plain_yaml(self, tmp_path: Path):
        """The file is readable by hand; unset optional fields are omitted."""
        path = tmp_path / "schedule.yaml"
        write_schedule_file(path, [make_entry("e1", at(8), at(9))])

        data = yaml.safe_load(path.read_text())

        assert data["version"] == 1
        assert data["entries"][0] == {
            "id": "e1",
            "machine_id": "m1",
            "process_instance_id": "e1",
            "start_time": "2025-01-06T08:00",
            "end_time": "2025-01-06T09:00",
            "status": "scheduled",
            "version": 1,
        }

    def test_offsets_converted_to_plant_time(self, tmp_path: Path):
        """Timestamps with a UTC offset are read in the plant timezone."""
        path = tmp_path / "schedule.yaml"
        path.write_text(
            "version: 1\n"
            "entries:\n"
            "  - id: e1\n"
            "    machine_id: m1\n"
            "    process_instance_id: p1\n"
            "    start_time: '2025-01-06T07:00:00+00:00'\n"
            "    end_time: '2025-01-06T08:00:00+00:00'\n"
        )
        snapshot = read_schedule_file(path, "Europe/Berlin")
        assert snapshot.entries[0].start_time == at(8)


class TestMalformedFiles:
    """Tests for rejected snapshot files."""

    @pytest.mark.parametrize(
        ("content", "message"),
        [
            ("- just\n- a list\n", "expected dict"),
            ("entries: []\n", "missing 'version'"),
            ("version: '1'\n", "must be int"),
            ("version: 99\n", "Unsupported schedule file version 99"),
            ("version: 1\nentries: abc\n", "must be a list"),
            ("version: 1\nentries:\n  - nope\n", "index 0 must be a dict"),
        ],
    )
    def test_invalid_structure(self, tmp_path: Path, content: str, message: str):
        """Structural problems raise ValueError with a clear message."""
        path = tmp_path / "schedule.yaml"
        path.write_text(content)
        with pytest.raises(ValueError, match=message):
            read_schedule_file(path)

    def test_invalid_entries(self):
        """Entry-level problems name the entry."""
        base = entry_to_dict(make_entry("e1", at(8), at(9)))
        with pytest.raises(ValueError, match="missing 'id'"):
            entry_from_dict({**base, "id": ""})
        with pytest.raises(ValueError, match="'e1' missing 'machine_id'"):
            entry_from_dict({**base, "machine_id": None})
        with pytest.raises(ValueError, match="must end after it starts"):
            entry_from_dict({**base, "end_time": "2025-01-06T07:00"})
        with pytest.raises(ValueError, match="Invalid status in entry 'e1'"):
            entry_from_dict({**base, "status": "paused"})
        with pytest.raises(ValueError, match="Invalid start_time in entry 'e1'"):
            entry_from_dict({**base, "start_time": "not a time"})
