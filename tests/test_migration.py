"""Unit Tests for PartitionMigrator

Tests: full migration, fail-fast batches, resume, re-run plus dedupe,
verification, job state guards
"""
import asyncio
from datetime import date
from unittest.mock import AsyncMock

import pytest

from schedsync.errors import (
    MigrationStateError,
    NoDataFoundError,
    TransientError,
    VerificationMismatchError,
)
from schedsync.models import MonthKey, PeriodRecord, RecordKind
from schedsync.store import InMemoryRecordStore, QueryPage
from schedsync.sync.dedup import Deduplicator
from schedsync.sync.gateway import RemoteGateway
from schedsync.sync.migration import MigrationStatus, PartitionMigrator

SOURCE = "user_schedule"
DEST = "shared_schedule"


class LossyStore(InMemoryRecordStore):
    """Store that hides one record from listings of the destination."""

    async def query(self, record_type, partition, predicates=None, sort_by=None, cursor=None, limit=None):
        page = await super().query(record_type, partition, predicates, sort_by, cursor, limit)
        if partition == DEST and page.records and cursor is None:
            return QueryPage(records=page.records[1:], cursor=page.cursor)
        return page


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def dataset(seed):
    """Four schedule days and one month of notes in the source partition."""
    for day in range(1, 5):
        seed(date(2025, 9, day), [f"day {day}"])
    seed(MonthKey(2025, 9), ["Vacation 22-26"])


def _migrator(gateway, sleep, **kwargs):
    kwargs.setdefault("batch_size", 2)
    return PartitionMigrator(gateway, batch_delay=0.5, sleep=sleep, **kwargs)


class TestMigrate:
    """Tests for complete migration runs."""

    @pytest.mark.asyncio
    async def test_copies_everything(self, gateway, store, dataset, sleep):
        report = await _migrator(gateway, sleep).migrate(SOURCE, DEST)

        assert report.status is MigrationStatus.COMPLETED
        assert report.succeeded
        assert (report.discovered, report.migrated, report.verified) == (5, 5, 5)
        assert report.per_kind == {"schedule": 4, "notes": 1}
        assert store.count(DEST) == 5
        assert store.count(SOURCE) == 5

    @pytest.mark.asyncio
    async def test_new_identity_same_content(self, gateway, store, dataset, sleep):
        await _migrator(gateway, sleep).migrate(SOURCE, DEST)

        source_ids = {r.storage_id for r in store.records(SOURCE)}
        copies = await gateway.collect_all(RecordKind.SCHEDULE, DEST)
        assert not source_ids & {r.storage_id for r in copies}
        assert sorted(r.key for r in copies) == [date(2025, 9, d) for d in range(1, 5)]
        assert {r.fields[0] for r in copies} == {f"day {d}" for d in range(1, 5)}

    @pytest.mark.asyncio
    async def test_entity_marker(self, gateway, store, dataset, sleep):
        await _migrator(gateway, sleep).migrate(SOURCE, DEST)

        markers = {r.fields.get("CD_entityName") for r in store.records(DEST)}
        assert markers == {"DailySchedule", "MonthlyNotes"}

    @pytest.mark.asyncio
    async def test_without_entity_marker(self, gateway, store, dataset, sleep):
        await _migrator(gateway, sleep, entity_marker=False).migrate(SOURCE, DEST)

        assert all("CD_entityName" not in r.fields for r in store.records(DEST))

    @pytest.mark.asyncio
    async def test_pauses_between_batches(self, gateway, dataset, sleep):
        await _migrator(gateway, sleep).migrate(SOURCE, DEST)
        assert sleep.delays == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_creates_destination(self, gateway, store, dataset, sleep):
        assert DEST not in await gateway.list_partitions()
        await _migrator(gateway, sleep).migrate(SOURCE, DEST)
        assert DEST in await gateway.list_partitions()

    @pytest.mark.asyncio
    async def test_refresh_after_completion(self, gateway, dataset, sleep):
        refresh = AsyncMock()
        await _migrator(gateway, sleep, refresh=refresh).migrate(SOURCE, DEST)
        refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_report(self, gateway, store, dataset, sleep):
        refresh = AsyncMock(side_effect=TransientError("network down"))
        migrator = _migrator(gateway, sleep, refresh=refresh)

        report = await migrator.migrate(SOURCE, DEST)

        refresh.assert_awaited_once()
        assert report.status is MigrationStatus.COMPLETED
        assert report.error is None
        assert migrator.status is MigrationStatus.COMPLETED
        assert store.count(DEST) == 5

    @pytest.mark.asyncio
    async def test_progress_events(self, gateway, dataset, sleep, bus):
        statuses = []
        bus.subscribe("maintenance.migration_progress", lambda e: statuses.append(e.status))

        await _migrator(gateway, sleep, event_bus=bus).migrate(SOURCE, DEST)

        assert statuses[0] == "discovering"
        assert statuses[-1] == "completed"
        assert statuses.index("preparing_target") < statuses.index("migrating") < statuses.index("verifying")
        assert statuses.count("migrating") >= 3

    @pytest.mark.asyncio
    async def test_rerun_then_dedupe_converges(self, gateway, store, dataset, sleep):
        migrator = _migrator(gateway, sleep)
        await migrator.migrate(SOURCE, DEST)

        second = await migrator.migrate(SOURCE, DEST)

        assert second.succeeded
        assert second.verified == 5
        assert store.count(DEST) == 10

        await Deduplicator(gateway).dedupe_all(DEST)
        assert store.count(DEST) == store.count(SOURCE)


class TestFailures:
    """Tests for failing and resuming jobs."""

    @pytest.mark.asyncio
    async def test_fail_fast_keeps_written_batches(self, gateway, store, dataset, sleep):
        saves = []

        def third_save(stored):
            saves.append(stored.storage_id)
            return len(saves) == 3

        store.fail_when("save", third_save, TransientError("network down"), count=1)
        migrator = _migrator(gateway, sleep)

        report = await migrator.migrate(SOURCE, DEST)

        assert report.status is MigrationStatus.FAILED
        assert isinstance(report.error, TransientError)
        assert report.migrated == 2
        assert store.count(DEST) == 2
        with pytest.raises(TransientError):
            report.raise_for_status()

    @pytest.mark.asyncio
    async def test_resume_continues_where_it_stopped(self, gateway, store, dataset, sleep):
        store.fail_when("save", lambda stored: stored.partition == DEST, TransientError("down"), count=1)
        migrator = _migrator(gateway, sleep)
        failed = await migrator.migrate(SOURCE, DEST)
        assert failed.migrated == 0

        report = await migrator.resume()

        assert report.status is MigrationStatus.COMPLETED
        assert report.migrated == 5
        assert report.verified == 5
        assert report.error is None
        assert store.count(DEST) == 5

    @pytest.mark.asyncio
    async def test_resume_mid_job(self, gateway, store, dataset, sleep):
        saves = []

        def fourth_save(stored):
            saves.append(stored.storage_id)
            return len(saves) == 4

        store.fail_when("save", fourth_save, TransientError("down"), count=1)
        migrator = _migrator(gateway, sleep)
        assert (await migrator.migrate(SOURCE, DEST)).migrated == 3

        report = await migrator.resume()

        assert report.succeeded
        assert store.count(DEST) == 5

    @pytest.mark.asyncio
    async def test_empty_source(self, gateway, sleep):
        migrator = _migrator(gateway, sleep)

        report = await migrator.migrate(SOURCE, DEST)

        assert report.status is MigrationStatus.FAILED
        assert isinstance(report.error, NoDataFoundError)
        with pytest.raises(MigrationStateError):
            await migrator.resume()

    @pytest.mark.asyncio
    async def test_verification_mismatch(self, store_clock, sleep):
        store = LossyStore(clock=store_clock, partitions=[SOURCE])
        gateway = RemoteGateway(store)
        for day in range(1, 4):
            await gateway.save(PeriodRecord(RecordKind.SCHEDULE, date(2025, 9, day), ("x",), partition=SOURCE))

        report = await _migrator(gateway, sleep, kinds=[RecordKind.SCHEDULE]).migrate(SOURCE, DEST)

        assert report.status is MigrationStatus.FAILED
        assert isinstance(report.error, VerificationMismatchError)
        assert report.error.expected == 3
        assert report.error.found == 2

    @pytest.mark.asyncio
    async def test_resume_without_failure(self, gateway, sleep):
        with pytest.raises(MigrationStateError):
            await _migrator(gateway, sleep).resume()


class TestGuards:
    """Tests for job state checks."""

    @pytest.mark.asyncio
    async def test_same_partition(self, gateway, sleep):
        with pytest.raises(ValueError):
            await _migrator(gateway, sleep).migrate(SOURCE, SOURCE)

    def test_batch_size(self, gateway, sleep):
        with pytest.raises(ValueError):
            _migrator(gateway, sleep, batch_size=0)

    @pytest.mark.asyncio
    async def test_no_second_job_while_running(self, gateway, dataset):
        gate = asyncio.Event()
        paused = asyncio.Event()

        async def blocking_sleep(seconds):
            paused.set()
            await gate.wait()

        migrator = _migrator(gateway, blocking_sleep)
        job = asyncio.create_task(migrator.migrate(SOURCE, DEST))
        await paused.wait()

        assert migrator.status is MigrationStatus.MIGRATING
        with pytest.raises(MigrationStateError):
            await migrator.migrate(SOURCE, "other")
        with pytest.raises(MigrationStateError):
            migrator.reset()

        gate.set()
        assert (await job).succeeded

    @pytest.mark.asyncio
    async def test_reset(self, gateway, dataset, sleep):
        migrator = _migrator(gateway, sleep)
        await migrator.migrate(SOURCE, DEST)

        migrator.reset()

        assert migrator.status is MigrationStatus.NOT_STARTED
        assert migrator.report is None
