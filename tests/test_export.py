"""Unit Tests for ScheduleExporter"""
import json
from datetime import date, datetime, timezone

import pytest
import yaml

from schedsync.export import ScheduleExporter
from schedsync.models import MonthKey, RecordKind

PARTITION = "user_schedule"
UTC = timezone.utc


@pytest.fixture
def exporter(gateway, seed):
    seed(date(2025, 9, 5), ["OR", "Clinic"], modified_at=datetime(2025, 9, 1, tzinfo=UTC))
    seed(date(2025, 9, 5), ["stale"], modified_at=datetime(2025, 8, 1, tzinfo=UTC))
    seed(date(2025, 9, 6), ["Call"])
    seed(date(2025, 10, 1), ["Off"])
    seed(date(2025, 9, 7), [""])
    seed(MonthKey(2025, 9), ["Vacation 22-26"])
    return ScheduleExporter(gateway)


class TestExportCSV:
    """Tests for CSV layouts."""

    @pytest.mark.asyncio
    async def test_schedule(self, exporter):
        text = await exporter.export_csv(RecordKind.SCHEDULE, PARTITION)
        assert text.splitlines() == [
            "Date,Line1,Line2,Line3",
            "2025-09-05,OR,Clinic,",
            "2025-09-06,Call,,",
            "2025-10-01,Off,,",
        ]

    @pytest.mark.asyncio
    async def test_notes(self, exporter):
        text = await exporter.export_csv(RecordKind.NOTES, PARTITION)
        assert text.splitlines() == ["Month,Year,Line1,Line2,Line3", "9,2025,Vacation 22-26,,"]

    @pytest.mark.asyncio
    async def test_date_range(self, exporter):
        records = await exporter.collect(
            RecordKind.SCHEDULE, PARTITION, date_from=date(2025, 9, 6), date_to=date(2025, 9, 30)
        )
        assert [r.key for r in records] == [date(2025, 9, 6)]


class TestExportFile:
    """Tests for writing exports to disk."""

    @pytest.mark.asyncio
    async def test_csv_per_kind(self, exporter, tmp_path):
        written = await exporter.export_to_file(tmp_path / "out" / "dump.csv", PARTITION)

        assert [p.name for p in written] == ["dump_schedule.csv", "dump_notes.csv"]
        assert all(p.exists() for p in written)

    @pytest.mark.asyncio
    async def test_csv_single_kind(self, exporter, tmp_path):
        output = tmp_path / "notes.csv"
        written = await exporter.export_to_file(output, PARTITION, kind=RecordKind.NOTES)
        assert written == [output]

    @pytest.mark.asyncio
    async def test_json(self, exporter, tmp_path):
        [path] = await exporter.export_to_file(tmp_path / "dump.json", PARTITION, fmt="json")

        data = json.loads(path.read_text())
        assert data["metadata"]["partition"] == PARTITION
        assert data["metadata"]["schedule_count"] == 3
        assert data["notes"][0]["key"] == "2025-09"

    @pytest.mark.asyncio
    async def test_yaml(self, exporter, tmp_path):
        [path] = await exporter.export_to_file(
            tmp_path / "dump.yaml", PARTITION, fmt="yaml", date_from=date(2025, 10, 1)
        )

        data = yaml.safe_load(path.read_text())
        assert [entry["key"] for entry in data["schedule"]] == ["2025-10-01"]
        assert data["notes"] == []
        assert data["metadata"]["filters"]["date_from"] == "2025-10-01"

    @pytest.mark.asyncio
    async def test_invalid_format(self, exporter, tmp_path):
        with pytest.raises(ValueError, match="Invalid export format"):
            await exporter.export_to_file(tmp_path / "dump.xml", PARTITION, fmt="xml")
