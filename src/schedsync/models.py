"""
Domain model for schedule sync.

Two record kinds share one shape:

    SCHEDULE  one entry per calendar day, keyed by a date
    NOTES     one entry per month, keyed by MonthKey(year, month)

Both are PeriodRecord instances: a logical key, a fixed number of short text
fields, and the storage identity assigned by the backing store.

Day keys are always computed in an explicit reference timezone (UTC unless
configured otherwise). The process's local timezone never takes part in key
computation: local-midnight truncation compared against UTC-stored timestamps
shifts every lookup by the local offset.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

UTC = timezone.utc


class RecordKind(Enum):
    """
    Record kinds stored in the backing store.

    The value is the store's record type name, kept compatible with the
    records already written by the calendar app.
    """
    SCHEDULE = "CD_DailySchedule"
    NOTES = "CD_MonthlyNotes"

    @property
    def record_type(self) -> str:
        return self.value

    @property
    def entity_name(self) -> str:
        """Generation marker written by the partition migrator."""
        return "DailySchedule" if self is RecordKind.SCHEDULE else "MonthlyNotes"

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_string(cls, value: str) -> "RecordKind":
        """
        Resolve a kind from its label ('schedule', 'notes') or record type.

        Raises:
            ValueError: If the value names no kind
        """
        lowered = value.strip().lower()
        for kind in cls:
            if lowered in (kind.label, kind.value.lower(), kind.entity_name.lower()):
                return kind
        raise ValueError(
            f"Invalid record kind '{value}'. Must be one of: schedule, notes"
        )

    @classmethod
    def from_record_type(cls, record_type: str) -> Optional["RecordKind"]:
        for kind in cls:
            if kind.value == record_type:
                return kind
        return None


@dataclass(frozen=True)
class FieldSpec:
    """Field count and per-field length limit for one record kind"""
    field_count: int
    max_length: int


DEFAULT_FIELD_SPECS: Dict[RecordKind, FieldSpec] = {
    RecordKind.SCHEDULE: FieldSpec(field_count=3, max_length=16),
    RecordKind.NOTES: FieldSpec(field_count=3, max_length=100),
}


class MonthKey(NamedTuple):
    """Logical key of a notes entry"""
    year: int
    month: int

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @classmethod
    def from_date(cls, value: date) -> "MonthKey":
        return cls(value.year, value.month)

    @classmethod
    def parse(cls, value: str) -> "MonthKey":
        """
        Parse 'YYYY-MM'.

        Raises:
            ValueError: If the string is not a valid year-month
        """
        try:
            year_str, month_str = value.strip().split("-", 1)
            key = cls(int(year_str), int(month_str))
        except (ValueError, AttributeError):
            raise ValueError(f"Invalid month key '{value}', expected YYYY-MM")
        if not 1 <= key.month <= 12:
            raise ValueError(f"Invalid month key '{value}', month out of range")
        return key


LogicalKey = Union[date, MonthKey]


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing 'Z'."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def canonical_day(value: Union[date, datetime, str], tz: tzinfo = UTC) -> date:
    """
    Resolve a value to its logical calendar day in the reference timezone.

    Timestamps snap to the nearest reference-zone midnight: a time of day at
    or after 12:00 belongs to the following day. Records written at device-local
    midnight from anywhere between UTC-11 and UTC+12 therefore resolve to the
    day the user picked, e.g. 2025-09-05T05:00:00Z (midnight in UTC-5) and
    2025-09-04T23:00:00Z (midnight in UTC+1) are both 2025-09-05.

    Naive datetimes are read as reference-zone wall time, never local time.

    Args:
        value: A date, a datetime, or an ISO-8601 date/timestamp string
        tz: Reference timezone (default: UTC)

    Returns:
        The canonical calendar day

    Raises:
        TypeError: If value is not a date, datetime or string
        ValueError: If a string cannot be parsed
    """
    if isinstance(value, str):
        text = value.strip()
        value = date.fromisoformat(text) if len(text) == 10 else parse_timestamp(text)

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=tz)
        local = value.astimezone(tz)
        day = local.date()
        if local.time() >= time(12, 0):
            day += timedelta(days=1)
        return day

    if isinstance(value, date):
        return value

    raise TypeError(f"Cannot derive a calendar day from {type(value).__name__}")


def day_start(day: date, tz: tzinfo = UTC) -> datetime:
    """Reference-zone midnight of a day, the timestamp stored for a day key."""
    return datetime(day.year, day.month, day.day, tzinfo=tz)


def day_window(day: date, tz: tzinfo = UTC) -> Tuple[datetime, datetime]:
    """
    Half-open [start, end) range of stored timestamps that resolve to day.

    Matches canonical_day exactly: 12 hours either side of midnight.
    """
    midnight = day_start(day, tz)
    return midnight - timedelta(hours=12), midnight + timedelta(hours=12)


def kind_for_key(key: Any) -> RecordKind:
    """
    Record kind implied by the type of a logical key.

    Raises:
        TypeError: If the key is neither a date nor a MonthKey
    """
    if isinstance(key, MonthKey):
        return RecordKind.NOTES
    if isinstance(key, date):
        return RecordKind.SCHEDULE
    raise TypeError(
        f"Logical key must be a date or MonthKey, got {type(key).__name__}"
    )


def normalize_key(key: Any, tz: tzinfo = UTC) -> LogicalKey:
    """Canonical form of a logical key (datetimes collapse to their day)."""
    if isinstance(key, MonthKey):
        return key
    if isinstance(key, (date, datetime)):
        return canonical_day(key, tz)
    raise TypeError(
        f"Logical key must be a date or MonthKey, got {type(key).__name__}"
    )


@dataclass(frozen=True)
class PeriodRecord:
    """
    One schedule or notes entry.

    Attributes:
        kind: Record kind
        key: Logical key (None when a remote record has no readable key)
        fields: Text fields, always exactly the kind's field count
        storage_id: Store-assigned identity, immutable once set
        partition: Partition the record lives in
        modified_at: Store-assigned modification timestamp
        change_tag: Store-assigned optimistic-concurrency tag
        created_at: Store-assigned creation timestamp
    """
    kind: RecordKind
    key: Optional[LogicalKey]
    fields: Tuple[str, ...]
    storage_id: Optional[str] = None
    partition: Optional[str] = None
    modified_at: Optional[datetime] = None
    change_tag: Optional[str] = None
    created_at: Optional[datetime] = None

    def is_empty(self) -> bool:
        return all(not value for value in self.fields)

    def is_persisted(self) -> bool:
        return self.storage_id is not None

    def with_fields(self, fields: Iterable[str]) -> "PeriodRecord":
        return replace(self, fields=tuple(fields))

    def same_version(self, other: "PeriodRecord") -> bool:
        """True when both describe the same stored revision."""
        if self.storage_id != other.storage_id:
            return False
        if self.change_tag and other.change_tag:
            return self.change_tag == other.change_tag
        return self.modified_at == other.modified_at and self.fields == other.fields

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "kind": self.kind.label,
            "key": str(self.key) if self.key is not None else None,
            "fields": list(self.fields),
            "storage_id": self.storage_id,
            "partition": self.partition,
            "modified_at": self.modified_at.isoformat() if self.modified_at else None,
            "change_tag": self.change_tag,
        }


def survivor_rank(record: PeriodRecord) -> Tuple[int, float, str]:
    """
    Sort key putting the record to keep first.

    Newest modified_at first, records without a timestamp last, ties broken
    by the lexicographically smaller storage id.
    """
    if record.modified_at is None:
        return (1, 0.0, record.storage_id or "")
    modified = record.modified_at
    if modified.tzinfo is None:
        modified = modified.replace(tzinfo=UTC)
    return (0, -modified.timestamp(), record.storage_id or "")


def pick_survivor(records: Iterable[PeriodRecord]) -> PeriodRecord:
    """
    The record a dedup pass keeps out of a group sharing one logical key.

    Raises:
        ValueError: If records is empty
    """
    ordered = sorted(records, key=survivor_rank)
    if not ordered:
        raise ValueError("Cannot pick a survivor from an empty group")
    return ordered[0]


def group_by_key(records: Iterable[PeriodRecord]) -> Dict[LogicalKey, List[PeriodRecord]]:
    """Group records by logical key, skipping records without one."""
    groups: Dict[LogicalKey, List[PeriodRecord]] = {}
    for record in records:
        if record.key is None:
            continue
        groups.setdefault(record.key, []).append(record)
    return groups
