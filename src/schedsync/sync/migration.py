"""
Partition Migrator

Copies every record from a source partition into a destination partition as
brand-new records (new storage ids, same keys and fields) and verifies the
result.

    NOT_STARTED -> DISCOVERING -> PREPARING_TARGET -> MIGRATING -> VERIFYING
                -> COMPLETED | FAILED

Records are written sequentially in fixed-size batches with a pause between
batches. The first failing save stops the job; records already written stay
in the destination, and resume() picks up at the first record not yet
written. Running migrate() again from scratch is safe: it writes a second
copy, which the Deduplicator collapses.

Job failures never raise out of migrate(); they are reported through
MigrationReport.status / .error and report.raise_for_status().
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..errors import MigrationStateError, NoDataFoundError, SyncError, VerificationMismatchError
from ..event_bus import EventBus
from ..events import MigrationProgressEvent
from ..models import PeriodRecord, RecordKind
from .gateway import RemoteGateway

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_BATCH_DELAY = 0.5


class MigrationStatus(Enum):
    """
    Migration job state.

    NOT_STARTED: no job run yet (or reset)
    DISCOVERING: listing every record in the source partition
    PREPARING_TARGET: creating the destination partition
    MIGRATING: writing batches into the destination
    VERIFYING: counting this run's records in the destination
    COMPLETED: every discovered record verified in the destination
    FAILED: stopped on an error, see report.error
    """
    NOT_STARTED = "not_started"
    DISCOVERING = "discovering"
    PREPARING_TARGET = "preparing_target"
    MIGRATING = "migrating"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_running(self) -> bool:
        return self not in (MigrationStatus.NOT_STARTED, MigrationStatus.COMPLETED, MigrationStatus.FAILED)


@dataclass
class MigrationReport:
    """Progress and outcome of a migration job"""
    source: str
    destination: str
    status: MigrationStatus = MigrationStatus.NOT_STARTED
    discovered: int = 0
    migrated: int = 0
    verified: int = 0
    skipped: int = 0
    per_kind: Dict[str, int] = field(default_factory=dict)
    step: str = ""
    error: Optional[SyncError] = None

    @property
    def succeeded(self) -> bool:
        return self.status is MigrationStatus.COMPLETED

    def raise_for_status(self) -> None:
        """Re-raise the error that failed the job, if any."""
        if self.status is MigrationStatus.FAILED and self.error is not None:
            raise self.error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "destination": self.destination,
            "status": self.status.value,
            "discovered": self.discovered,
            "migrated": self.migrated,
            "verified": self.verified,
            "skipped": self.skipped,
            "per_kind": dict(self.per_kind),
            "step": self.step,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class _Job:
    source: str
    destination: str
    records: Optional[List[PeriodRecord]] = None
    target_ready: bool = False
    next_index: int = 0
    created_ids: List[str] = field(default_factory=list)


class PartitionMigrator:
    """
    Batch job moving a dataset between partitions.

    Usage:
        migrator = PartitionMigrator(gateway, refresh=engine.refresh_all)
        report = await migrator.migrate("user_schedule", "shared_schedule")
        report.raise_for_status()
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        kinds: Sequence[RecordKind] = (RecordKind.SCHEDULE, RecordKind.NOTES),
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        refresh: Optional[Callable[[], Awaitable[Any]]] = None,
        event_bus: Optional[EventBus] = None,
        entity_marker: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            gateway: Remote access gateway
            kinds: Record kinds to migrate
            batch_size: Records per batch
            batch_delay: Seconds to pause between batches
            refresh: Awaited after a completed migration
            event_bus: Optional bus for MigrationProgressEvent
            entity_marker: Write CD_entityName on migrated records
            sleep: Coroutine used for the inter-batch pause
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.gateway = gateway
        self.kinds = tuple(kinds)
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.refresh = refresh
        self.event_bus = event_bus
        self.entity_marker = entity_marker
        self._sleep = sleep

        self._job: Optional[_Job] = None
        self._report: Optional[MigrationReport] = None

    @property
    def status(self) -> MigrationStatus:
        return self._report.status if self._report else MigrationStatus.NOT_STARTED

    @property
    def report(self) -> Optional[MigrationReport]:
        """Report of the current or last job."""
        return self._report

    async def migrate(self, source: str, destination: str) -> MigrationReport:
        """
        Run a migration job from scratch.

        Raises:
            ValueError: If source and destination are the same partition
            MigrationStateError: If a job is already running
        """
        if source == destination:
            raise ValueError("Source and destination partitions must differ")
        if self.status.is_running:
            raise MigrationStateError(f"Migration already {self.status.value}")

        self._job = _Job(source=source, destination=destination)
        self._report = MigrationReport(source=source, destination=destination)
        logger.info(f"Starting migration '{source}' -> '{destination}'")
        return await self._execute()

    async def resume(self) -> MigrationReport:
        """
        Continue a failed job without re-discovering.

        Raises:
            MigrationStateError: If there is no failed job past discovery
        """
        if self._job is None or self.status is not MigrationStatus.FAILED:
            raise MigrationStateError(f"Nothing to resume (status: {self.status.value})")
        if self._job.records is None:
            raise MigrationStateError("Job failed during discovery; start a new migration")

        self._report.error = None
        logger.info(
            f"Resuming migration '{self._job.source}' -> '{self._job.destination}' "
            f"at record {self._job.next_index + 1} of {len(self._job.records)}"
        )
        return await self._execute()

    def reset(self) -> None:
        """
        Forget the current job.

        Raises:
            MigrationStateError: If a job is running
        """
        if self.status.is_running:
            raise MigrationStateError(f"Cannot reset while {self.status.value}")
        self._job = None
        self._report = None

    # ------------------------------------------------------------------
    # Job steps
    # ------------------------------------------------------------------

    async def _execute(self) -> MigrationReport:
        job, report = self._job, self._report
        try:
            if job.records is None:
                await self._discover(job, report)
            if not job.target_ready:
                self._advance(MigrationStatus.PREPARING_TARGET, f"Preparing partition '{job.destination}'")
                handle = await self.gateway.ensure_partition(job.destination)
                logger.info(f"Destination '{handle.name}' {'created' if handle.created else 'already exists'}")
                job.target_ready = True
            if job.next_index < len(job.records):
                await self._copy(job, report)
            await self._verify(job, report)
        except SyncError as e:
            report.error = e
            self._advance(MigrationStatus.FAILED, f"Failed: {e}")
            logger.error(f"Migration '{job.source}' -> '{job.destination}' failed: {e}")
            return report
        except Exception:
            self._advance(MigrationStatus.FAILED, "Failed: unexpected error")
            raise

        self._advance(MigrationStatus.COMPLETED, f"Migrated {report.verified} records")
        logger.info(
            f"Migration '{job.source}' -> '{job.destination}' completed: "
            f"{report.discovered} discovered, {report.migrated} migrated, {report.verified} verified"
        )
        if self.refresh is not None:
            try:
                await self.refresh()
            except SyncError as e:
                logger.warning(f"Refresh after migration to '{job.destination}' failed: {e}")
        return report

    async def _discover(self, job: _Job, report: MigrationReport) -> None:
        self._advance(MigrationStatus.DISCOVERING, f"Discovering records in '{job.source}'")
        await self.gateway.check_available()

        records: List[PeriodRecord] = []
        for kind in self.kinds:
            found = await self.gateway.collect_all(kind, job.source)
            keyed = [r for r in found if r.key is not None]
            if len(keyed) < len(found):
                report.skipped += len(found) - len(keyed)
                logger.warning(f"Skipping {len(found) - len(keyed)} {kind.label} record(s) without a readable key")
            report.per_kind[kind.label] = len(keyed)
            records.extend(keyed)
            logger.info(f"Discovered {len(keyed)} {kind.label} record(s) in '{job.source}'")

        if not records:
            raise NoDataFoundError(job.source)
        job.records = records
        report.discovered = len(records)

    async def _copy(self, job: _Job, report: MigrationReport) -> None:
        total = len(job.records)
        batch_count = (total + self.batch_size - 1) // self.batch_size
        self._advance(MigrationStatus.MIGRATING, f"Migrating {total - job.next_index} records")

        first = True
        while job.next_index < total:
            if not first and self.batch_delay > 0:
                await self._sleep(self.batch_delay)
            first = False

            batch_number = job.next_index // self.batch_size
            batch_end = min((batch_number + 1) * self.batch_size, total)
            report.step = f"Migrating batch {batch_number + 1} of {batch_count}"
            logger.debug(report.step)

            # sequential saves; the first failure ends the job
            while job.next_index < batch_end:
                source_record = job.records[job.next_index]
                copy = PeriodRecord(
                    kind=source_record.kind,
                    key=source_record.key,
                    fields=source_record.fields,
                    partition=job.destination,
                )
                marker = source_record.kind.entity_name if self.entity_marker else None
                saved = await self.gateway.save(copy, entity_marker=marker)
                job.created_ids.append(saved.storage_id)
                job.next_index += 1
                report.migrated += 1

            self._publish_progress()

    async def _verify(self, job: _Job, report: MigrationReport) -> None:
        self._advance(MigrationStatus.VERIFYING, f"Verifying '{job.destination}'")
        present = set()
        for kind in self.kinds:
            for record in await self.gateway.collect_all(kind, job.destination):
                present.add(record.storage_id)

        report.verified = sum(1 for storage_id in job.created_ids if storage_id in present)
        if report.verified != report.discovered:
            raise VerificationMismatchError(report.discovered, report.verified)

    def _advance(self, status: MigrationStatus, step: str) -> None:
        self._report.status = status
        self._report.step = step
        logger.debug(f"Migration status: {status.value} ({step})")
        self._publish_progress()

    def _publish_progress(self) -> None:
        if self.event_bus is None:
            return
        report = self._report
        self.event_bus.publish(MigrationProgressEvent(
            source=report.source,
            destination=report.destination,
            status=report.status.value,
            discovered=report.discovered,
            migrated=report.migrated,
            verified=report.verified,
            step=report.step,
            error=str(report.error) if report.error else None,
        ))
