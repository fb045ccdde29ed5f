"""
Deduplicator

Collapses store records sharing one logical key down to a single survivor:
newest modified_at first, records without a timestamp last, ties broken by
the lexicographically smaller storage id. Everything else in the group is
deleted.

A failing delete never aborts the pass. run() always returns a full
DedupeReport; dedupe() raises PartialBatchFailure (carrying the report) after
the pass when any delete failed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..errors import PartialBatchFailure, RecordNotFoundError, SyncError
from ..event_bus import EventBus
from ..events import DedupeCompletedEvent
from ..models import RecordKind, group_by_key, survivor_rank
from .gateway import RemoteGateway
from .operation_tracker import OperationTracker, OperationType

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Awaitable[Any]]


@dataclass
class DedupeReport:
    """Outcome of one dedupe pass over one kind"""
    kind: RecordKind
    partition: str
    scanned: int = 0
    duplicate_groups: int = 0
    removed: int = 0
    failed: int = 0
    skipped: int = 0
    kept: List[str] = field(default_factory=list)
    removed_ids: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.label,
            "partition": self.partition,
            "scanned": self.scanned,
            "duplicate_groups": self.duplicate_groups,
            "removed": self.removed,
            "failed": self.failed,
            "skipped": self.skipped,
            "kept": self.kept,
            "removed_ids": self.removed_ids,
            "errors": self.errors,
        }


class Deduplicator:
    """
    Maintenance job removing duplicate records.

    Usage:
        dedup = Deduplicator(gateway, refresh=engine.refresh_all)
        removed = await dedup.dedupe(RecordKind.SCHEDULE, "user_schedule")
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        refresh: Optional[RefreshCallback] = None,
        event_bus: Optional[EventBus] = None,
        tracker: Optional[OperationTracker] = None,
    ):
        """
        Args:
            gateway: Remote access gateway
            refresh: Awaited after a pass that removed records
            event_bus: Optional bus for DedupeCompletedEvent
            tracker: Optional tracker; duplicate keys are marked DEDUPE while
                their extra copies are deleted
        """
        self.gateway = gateway
        self.refresh = refresh
        self.event_bus = event_bus
        self.tracker = tracker

    async def run(self, kind: RecordKind, partition: str) -> DedupeReport:
        """
        Scan one kind in partition and delete duplicates.

        Raises:
            UnavailableError: If the account is not available
            TransientError: If listing the partition fails (nothing deleted)
        """
        await self.gateway.check_available()
        records = await self.gateway.collect_all(kind, partition)
        report = DedupeReport(kind=kind, partition=partition, scanned=len(records))

        keyless = [r for r in records if r.key is None]
        if keyless:
            report.skipped = len(keyless)
            logger.warning(f"Skipping {len(keyless)} {kind.label} record(s) without a readable key")

        groups = group_by_key(records)
        for key in sorted(groups):
            group = groups[key]
            if len(group) < 2:
                continue

            report.duplicate_groups += 1
            survivor, *extras = sorted(group, key=survivor_rank)
            report.kept.append(survivor.storage_id)
            logger.info(
                f"{kind.label} {key}: keeping {survivor.storage_id}, removing {len(extras)} duplicate(s)"
            )

            tracked = (kind, key)
            operation = None
            if self.tracker is not None:
                operation = self.tracker.begin(tracked, OperationType.DEDUPE)
            group_ok = True

            for extra in extras:
                try:
                    await self.gateway.delete(partition, extra.storage_id)
                except RecordNotFoundError:
                    logger.debug(f"Duplicate {extra.storage_id} already gone")
                except SyncError as e:
                    group_ok = False
                    report.failed += 1
                    report.errors[extra.storage_id] = str(e)
                    logger.warning(f"Failed to delete duplicate {extra.storage_id}: {e}")
                    continue
                report.removed += 1
                report.removed_ids.append(extra.storage_id)

            if self.tracker is not None:
                self.tracker.complete(tracked, success=group_ok, operation=operation)

        logger.info(
            f"Dedupe of {kind.label} in '{partition}': {report.scanned} scanned, "
            f"{report.duplicate_groups} duplicate group(s), {report.removed} removed, {report.failed} failed"
        )
        if self.event_bus is not None:
            self.event_bus.publish(DedupeCompletedEvent(
                kind=kind.label,
                partition=partition,
                duplicate_groups=report.duplicate_groups,
                removed=report.removed,
                failed=report.failed,
            ))

        if report.removed and self.refresh is not None:
            await self.refresh()
        return report

    async def dedupe(self, kind: RecordKind, partition: str) -> int:
        """
        Remove duplicates of one kind.

        Returns:
            Number of records removed

        Raises:
            PartialBatchFailure: If any delete failed (after the full pass)
        """
        report = await self.run(kind, partition)
        if report.failed:
            raise PartialBatchFailure(report.removed, report.failed, report)
        return report.removed

    async def dedupe_all(
        self,
        partition: str,
        kinds: Sequence[RecordKind] = (RecordKind.SCHEDULE, RecordKind.NOTES),
    ) -> Dict[RecordKind, DedupeReport]:
        """run() for every kind in turn."""
        return {kind: await self.run(kind, partition) for kind in kinds}
