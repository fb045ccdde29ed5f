"""
Record Codec

Stateless mapping between PeriodRecord and the backing store's untyped field
map. Field names follow the schema already in the store:

    CD_DailySchedule   CD_date (timestamp), CD_line1 .. CD_lineN
    CD_MonthlyNotes    CD_month (int), CD_year (int), CD_line1 .. CD_lineN
    both               CD_entityName (optional generation marker)

Encoding is strict (normalize_fields raises on bad input); decoding is
lenient and never raises, because the store may hold records written by
older app versions:

    - CD_date as datetime, ISO-8601 string or epoch milliseconds
    - CD_month as an int (with CD_year) or as a legacy timestamp
    - missing or non-string line fields decode to ""
    - over-long line fields are truncated

A record whose key cannot be read decodes with key=None.
"""

import logging
from datetime import date, datetime, tzinfo
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from ..errors import RecordValidationError
from ..models import (
    DEFAULT_FIELD_SPECS,
    UTC,
    FieldSpec,
    LogicalKey,
    MonthKey,
    PeriodRecord,
    RecordKind,
    canonical_day,
    day_start,
    parse_timestamp,
)
from ..store.base import StoredRecord

logger = logging.getLogger(__name__)

DATE_FIELD = "CD_date"
MONTH_FIELD = "CD_month"
YEAR_FIELD = "CD_year"
ENTITY_FIELD = "CD_entityName"


def line_field(index: int) -> str:
    """Store field name of the index-th text field (0-based)."""
    return f"CD_line{index + 1}"


class RecordCodec:
    """
    Encodes and decodes PeriodRecords for one field configuration and
    reference timezone.
    """

    def __init__(
        self,
        field_specs: Optional[Mapping[RecordKind, FieldSpec]] = None,
        tz: tzinfo = UTC,
    ):
        """
        Args:
            field_specs: Field count and length limit per kind (default: 3x16 / 3x100)
            tz: Reference timezone for day keys
        """
        self.field_specs: Dict[RecordKind, FieldSpec] = dict(DEFAULT_FIELD_SPECS)
        if field_specs:
            self.field_specs.update(field_specs)
        self.tz = tz

    def spec(self, kind: RecordKind) -> FieldSpec:
        return self.field_specs[kind]

    def empty_fields(self, kind: RecordKind) -> Tuple[str, ...]:
        return ("",) * self.spec(kind).field_count

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def normalize_fields(self, kind: RecordKind, fields: Iterable[Optional[str]]) -> Tuple[str, ...]:
        """
        Validate and normalize text fields for kind.

        Shorter sequences are padded with "", None becomes "".

        Raises:
            RecordValidationError: Too many fields, a non-string value, or a
                value longer than the kind's limit
        """
        spec = self.spec(kind)
        values = ["" if value is None else value for value in fields]

        if len(values) > spec.field_count:
            raise RecordValidationError(
                f"{kind.label} entries have {spec.field_count} fields, got {len(values)}"
            )
        for index, value in enumerate(values):
            if not isinstance(value, str):
                raise RecordValidationError(
                    f"Field {index + 1} must be a string, got {type(value).__name__}"
                )
            if len(value) > spec.max_length:
                raise RecordValidationError(
                    f"Field {index + 1} exceeds {spec.max_length} characters ({len(value)})"
                )

        values.extend([""] * (spec.field_count - len(values)))
        return tuple(values)

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode_key(self, kind: RecordKind, key: LogicalKey) -> Dict[str, Any]:
        """Key fields for a logical key."""
        if kind is RecordKind.SCHEDULE:
            if not isinstance(key, date):
                raise RecordValidationError(f"Schedule key must be a date, got {key!r}")
            return {DATE_FIELD: day_start(canonical_day(key, self.tz), self.tz)}
        if not isinstance(key, MonthKey):
            raise RecordValidationError(f"Notes key must be a MonthKey, got {key!r}")
        return {MONTH_FIELD: key.month, YEAR_FIELD: key.year}

    def encode(self, record: PeriodRecord, entity_marker: Optional[str] = None) -> Dict[str, Any]:
        """
        Field map for a record.

        Args:
            record: Record to encode (key must be set)
            entity_marker: Optional CD_entityName value

        Raises:
            RecordValidationError: If the key or fields are invalid
        """
        if record.key is None:
            raise RecordValidationError("Cannot encode a record without a logical key")

        values = self.encode_key(record.kind, record.key)
        for index, value in enumerate(self.normalize_fields(record.kind, record.fields)):
            values[line_field(index)] = value
        if entity_marker:
            values[ENTITY_FIELD] = entity_marker
        return values

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(
        self,
        record_type: str,
        fields: Mapping[str, Any],
        storage_id: Optional[str] = None,
        partition: Optional[str] = None,
        modified_at: Optional[datetime] = None,
        change_tag: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Optional[PeriodRecord]:
        """
        PeriodRecord for a raw field map.

        Returns:
            The decoded record (key None if unreadable), or None when the
            record type is not one of ours
        """
        kind = RecordKind.from_record_type(record_type)
        if kind is None:
            logger.warning(f"Skipping record {storage_id} of unknown type '{record_type}'")
            return None

        spec = self.spec(kind)
        lines = []
        for index in range(spec.field_count):
            value = fields.get(line_field(index))
            if not isinstance(value, str):
                value = ""
            elif len(value) > spec.max_length:
                logger.debug(f"Truncating {line_field(index)} of {storage_id} to {spec.max_length} chars")
                value = value[:spec.max_length]
            lines.append(value)

        key = self._decode_key(kind, fields)
        if key is None:
            logger.warning(f"Record {storage_id} ({record_type}) has no readable key")

        return PeriodRecord(
            kind=kind,
            key=key,
            fields=tuple(lines),
            storage_id=storage_id,
            partition=partition,
            modified_at=modified_at,
            change_tag=change_tag,
            created_at=created_at,
        )

    def decode_stored(self, stored: StoredRecord) -> Optional[PeriodRecord]:
        """decode() for a StoredRecord."""
        return self.decode(
            stored.record_type,
            stored.fields,
            storage_id=stored.storage_id,
            partition=stored.partition,
            modified_at=stored.modified_at,
            change_tag=stored.change_tag,
            created_at=stored.created_at,
        )

    def has_typed_key(self, kind: RecordKind, fields: Mapping[str, Any]) -> bool:
        """True if the key fields have the shape encode() writes (and stores can filter on)."""
        if kind is RecordKind.SCHEDULE:
            return isinstance(fields.get(DATE_FIELD), datetime)
        month, year = fields.get(MONTH_FIELD), fields.get(YEAR_FIELD)
        return all(isinstance(v, int) and not isinstance(v, bool) for v in (month, year))

    def _decode_key(self, kind: RecordKind, fields: Mapping[str, Any]) -> Optional[LogicalKey]:
        if kind is RecordKind.SCHEDULE:
            return self._decode_day(fields.get(DATE_FIELD))

        month = fields.get(MONTH_FIELD)
        year = fields.get(YEAR_FIELD)
        if isinstance(month, int) and not isinstance(month, bool):
            if isinstance(year, int) and not isinstance(year, bool) and 1 <= month <= 12:
                return MonthKey(year, month)
            return None
        # legacy: CD_month stored as a timestamp inside the month
        day = self._decode_day(month)
        return MonthKey.from_date(day) if day is not None else None

    def _decode_day(self, value: Any) -> Optional[date]:
        if value is None or isinstance(value, bool):
            return None
        try:
            if isinstance(value, (int, float)):
                value = datetime.fromtimestamp(value / 1000, tz=UTC)
            elif isinstance(value, str):
                value = parse_timestamp(value) if "T" in value else date.fromisoformat(value.strip())
            return canonical_day(value, self.tz)
        except (TypeError, ValueError, OverflowError, OSError):
            return None


_default_codec = RecordCodec()


def encode(record: PeriodRecord, entity_marker: Optional[str] = None) -> Dict[str, Any]:
    """encode() with default field specs and UTC."""
    return _default_codec.encode(record, entity_marker)


def decode(record_type: str, fields: Mapping[str, Any], **identity: Any) -> Optional[PeriodRecord]:
    """decode() with default field specs and UTC."""
    return _default_codec.decode(record_type, fields, **identity)


def normalize_fields(kind: RecordKind, fields: Iterable[Optional[str]]) -> Tuple[str, ...]:
    """normalize_fields() with default field specs."""
    return _default_codec.normalize_fields(kind, fields)
