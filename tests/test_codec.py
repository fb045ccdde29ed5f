"""Unit Tests for RecordCodec

Tests: field validation, encoding layout, lenient decoding of legacy shapes
"""
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from schedsync.errors import RecordValidationError
from schedsync.models import FieldSpec, MonthKey, PeriodRecord, RecordKind
from schedsync.sync.codec import RecordCodec, decode, encode, normalize_fields

UTC = timezone.utc


class TestNormalizeFields:
    """Tests for field validation."""

    def test_pads_short_lists(self):
        assert normalize_fields(RecordKind.SCHEDULE, ["OR"]) == ("OR", "", "")

    def test_none_becomes_empty(self):
        assert normalize_fields(RecordKind.SCHEDULE, [None, "x", None]) == ("", "x", "")

    def test_too_many_fields(self):
        with pytest.raises(RecordValidationError, match="3 fields"):
            normalize_fields(RecordKind.SCHEDULE, ["a", "b", "c", "d"])

    def test_schedule_length_limit(self):
        normalize_fields(RecordKind.SCHEDULE, ["x" * 16])
        with pytest.raises(RecordValidationError, match="16 characters"):
            normalize_fields(RecordKind.SCHEDULE, ["x" * 17])

    def test_notes_length_limit(self):
        normalize_fields(RecordKind.NOTES, ["x" * 100])
        with pytest.raises(RecordValidationError):
            normalize_fields(RecordKind.NOTES, ["x" * 101])

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            normalize_fields(RecordKind.SCHEDULE, [42])

    def test_custom_field_spec(self):
        codec = RecordCodec({RecordKind.SCHEDULE: FieldSpec(field_count=2, max_length=4)})
        assert codec.normalize_fields(RecordKind.SCHEDULE, ["abcd"]) == ("abcd", "")
        with pytest.raises(RecordValidationError):
            codec.normalize_fields(RecordKind.SCHEDULE, ["a", "b", "c"])


class TestEncode:
    """Tests for the store field layout."""

    def test_schedule(self):
        record = PeriodRecord(RecordKind.SCHEDULE, date(2025, 9, 5), ("OR", "Clinic", ""))
        assert encode(record) == {
            "CD_date": datetime(2025, 9, 5, tzinfo=UTC),
            "CD_line1": "OR",
            "CD_line2": "Clinic",
            "CD_line3": "",
        }

    def test_notes(self):
        record = PeriodRecord(RecordKind.NOTES, MonthKey(2025, 9), ("Vacation", "", ""))
        fields = encode(record, entity_marker="MonthlyNotes")
        assert fields["CD_month"] == 9
        assert fields["CD_year"] == 2025
        assert fields["CD_entityName"] == "MonthlyNotes"

    def test_reference_timezone_midnight(self):
        codec = RecordCodec(tz=ZoneInfo("America/Chicago"))
        fields = codec.encode(PeriodRecord(RecordKind.SCHEDULE, date(2025, 9, 5), ("A", "", "")))
        assert fields["CD_date"].astimezone(UTC) == datetime(2025, 9, 5, 5, tzinfo=UTC)

    def test_missing_key(self):
        with pytest.raises(RecordValidationError):
            encode(PeriodRecord(RecordKind.SCHEDULE, None, ("A", "", "")))

    def test_wrong_key_type(self):
        with pytest.raises(RecordValidationError):
            encode(PeriodRecord(RecordKind.NOTES, date(2025, 9, 1), ("A", "", "")))


class TestDecode:
    """Tests for lenient decoding."""

    def test_schedule_roundtrip_identity(self):
        record = decode(
            "CD_DailySchedule",
            {"CD_date": datetime(2025, 9, 5, tzinfo=UTC), "CD_line1": "OR"},
            storage_id="abc",
            partition="p",
            change_tag="t1",
        )
        assert record.key == date(2025, 9, 5)
        assert record.fields == ("OR", "", "")
        assert record.storage_id == "abc"
        assert record.partition == "p"
        assert record.change_tag == "t1"

    def test_legacy_local_midnight_timestamp(self):
        record = decode("CD_DailySchedule", {"CD_date": datetime(2025, 9, 5, 5, tzinfo=UTC)})
        assert record.key == date(2025, 9, 5)

    def test_iso_string_date(self):
        record = decode("CD_DailySchedule", {"CD_date": "2025-09-04T23:00:00Z"})
        assert record.key == date(2025, 9, 5)

    def test_epoch_millis_date(self):
        millis = int(datetime(2025, 9, 5, 6, tzinfo=UTC).timestamp() * 1000)
        assert decode("CD_DailySchedule", {"CD_date": millis}).key == date(2025, 9, 5)

    def test_legacy_month_timestamp(self):
        record = decode("CD_MonthlyNotes", {"CD_month": datetime(2025, 8, 31, 22, tzinfo=UTC), "CD_line1": "n"})
        assert record.key == MonthKey(2025, 9)

    def test_month_without_year_has_no_key(self):
        assert decode("CD_MonthlyNotes", {"CD_month": 9}).key is None

    def test_unreadable_key(self):
        record = decode("CD_DailySchedule", {"CD_date": "not a date", "CD_line1": "x"})
        assert record is not None
        assert record.key is None
        assert record.fields == ("x", "", "")

    def test_non_string_lines_and_truncation(self):
        record = decode(
            "CD_DailySchedule",
            {"CD_date": datetime(2025, 9, 5, tzinfo=UTC), "CD_line1": 7, "CD_line2": "y" * 40},
        )
        assert record.fields == ("", "y" * 16, "")

    def test_unknown_record_type(self):
        assert decode("CD_Doctor", {"CD_name": "x"}) is None
