"""
Schedule Export - CSV, JSON and YAML dumps of a partition

CSV layouts match what the calendar app exports:

    schedule:  Date,Line1,Line2,Line3
    notes:     Month,Year,Line1,Line2,Line3

Date range filters apply to schedule days and to the first day of each notes
month.
"""

import csv
import io
import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .models import MonthKey, PeriodRecord, RecordKind, group_by_key, pick_survivor
from .sync.gateway import RemoteGateway

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("csv", "json", "yaml")


def csv_header(kind: RecordKind, field_count: int) -> List[str]:
    lines = [f"Line{i + 1}" for i in range(field_count)]
    if kind is RecordKind.SCHEDULE:
        return ["Date"] + lines
    return ["Month", "Year"] + lines


def csv_row(record: PeriodRecord) -> List[Any]:
    if record.kind is RecordKind.SCHEDULE:
        return [record.key.isoformat()] + list(record.fields)
    return [record.key.month, record.key.year] + list(record.fields)


def _key_date(key: Any) -> date:
    return date(key.year, key.month, 1) if isinstance(key, MonthKey) else key


class ScheduleExporter:
    """
    Export schedule entries and notes from one partition.

    Duplicates are reported as their newest copy, matching what the app
    shows; empty records are left out.
    """

    def __init__(self, gateway: RemoteGateway):
        self.gateway = gateway

    async def collect(
        self,
        kind: RecordKind,
        partition: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[PeriodRecord]:
        """
        Records of kind in partition, one per key, sorted by key.

        Args:
            kind: Record kind
            partition: Partition to read
            date_from: Start date for filtering (inclusive)
            date_to: End date for filtering (inclusive)
        """
        records = await self.gateway.collect_all(kind, partition)
        selected = []
        for key, group in sorted(group_by_key(records).items()):
            if date_from and _key_date(key) < date_from:
                continue
            if date_to and _key_date(key) > date_to:
                continue
            record = pick_survivor(group)
            if not record.is_empty():
                selected.append(record)
        logger.debug(f"Collected {len(selected)} {kind.label} record(s) for export")
        return selected

    async def export_csv(
        self,
        kind: RecordKind,
        partition: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> str:
        """CSV text for one kind."""
        records = await self.collect(kind, partition, date_from, date_to)
        field_count = self.gateway.codec.spec(kind).field_count

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(csv_header(kind, field_count))
        for record in records:
            writer.writerow(csv_row(record))
        return buffer.getvalue()

    async def export_to_dict(
        self,
        partition: str,
        kinds: Optional[List[RecordKind]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Export every kind to a dictionary with metadata.

        Returns:
            {"metadata": {...}, "schedule": [...], "notes": [...]}
        """
        kinds = kinds or list(RecordKind)
        result: Dict[str, Any] = {
            "metadata": {
                "export_version": "1.0",
                "exported_at": datetime.now().isoformat(),
                "partition": partition,
                "filters": {
                    "date_from": date_from.isoformat() if date_from else None,
                    "date_to": date_to.isoformat() if date_to else None,
                },
            }
        }
        for kind in kinds:
            records = await self.collect(kind, partition, date_from, date_to)
            result[kind.label] = [
                {"key": str(r.key), "fields": list(r.fields), "storage_id": r.storage_id,
                 "modified_at": r.modified_at.isoformat() if r.modified_at else None}
                for r in records
            ]
            result["metadata"][f"{kind.label}_count"] = len(records)
        return result

    async def export_to_file(
        self,
        output: Path,
        partition: str,
        fmt: str = "csv",
        kind: Optional[RecordKind] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[Path]:
        """
        Write an export to disk.

        CSV writes one file per kind: output is used as-is for a single kind,
        otherwise '<stem>_<kind>.csv' files are created next to it.

        Returns:
            Paths written

        Raises:
            ValueError: If fmt is not csv, json or yaml
        """
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Invalid export format '{fmt}'. Must be one of: {', '.join(EXPORT_FORMATS)}")

        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        kinds = [kind] if kind else list(RecordKind)

        if fmt == "csv":
            written = []
            for k in kinds:
                path = output if len(kinds) == 1 else output.with_name(f"{output.stem}_{k.label}.csv")
                path.write_text(await self.export_csv(k, partition, date_from, date_to))
                written.append(path)
            logger.info(f"Exported {', '.join(k.label for k in kinds)} to {len(written)} CSV file(s)")
            return written

        data = await self.export_to_dict(partition, kinds, date_from, date_to)
        if fmt == "json":
            output.write_text(json.dumps(data, indent=2))
        else:
            output.write_text(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
        logger.info(f"Exported '{partition}' to {output}")
        return [output]
