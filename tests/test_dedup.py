"""Unit Tests for Deduplicator

Tests: convergence to one record per key, survivor selection, partial failure
"""
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest

from schedsync.errors import PartialBatchFailure, RecordNotFoundError, TransientError
from schedsync.models import MonthKey, RecordKind
from schedsync.sync.dedup import Deduplicator
from schedsync.sync.operation_tracker import OperationTracker

PARTITION = "user_schedule"
UTC = timezone.utc


def _ts(day):
    return datetime(2025, 9, day, tzinfo=UTC)


class TestDeduplicator:
    """Tests for dedupe passes."""

    @pytest.mark.asyncio
    async def test_converges_to_one_per_key(self, gateway, seed, store):
        for day in range(1, 11):
            for _ in range(3):
                seed(date(2025, 9, day))
        seed(date(2025, 9, 20))

        removed = await Deduplicator(gateway).dedupe(RecordKind.SCHEDULE, PARTITION)

        assert removed == 20
        assert store.count(PARTITION) == 11
        records = await gateway.collect_all(RecordKind.SCHEDULE, PARTITION)
        assert len({r.key for r in records}) == 11

    @pytest.mark.asyncio
    async def test_second_pass_is_noop(self, gateway, seed):
        seed(date(2025, 9, 5))
        seed(date(2025, 9, 5))
        dedup = Deduplicator(gateway)

        assert await dedup.dedupe(RecordKind.SCHEDULE, PARTITION) == 1
        assert await dedup.dedupe(RecordKind.SCHEDULE, PARTITION) == 0

    @pytest.mark.asyncio
    async def test_newest_survives(self, gateway, seed, store):
        seed(date(2025, 9, 5), ["old"], modified_at=_ts(1), storage_id="a")
        seed(date(2025, 9, 5), ["new"], modified_at=_ts(3), storage_id="b")
        seed(date(2025, 9, 5), ["mid"], modified_at=_ts(2), storage_id="c")

        report = await Deduplicator(gateway).run(RecordKind.SCHEDULE, PARTITION)

        assert report.kept == ["b"]
        assert sorted(report.removed_ids) == ["a", "c"]
        assert [r.storage_id for r in store.records(PARTITION)] == ["b"]

    @pytest.mark.asyncio
    async def test_tie_broken_by_storage_id(self, gateway, seed, store):
        seed(date(2025, 9, 5), modified_at=_ts(1), storage_id="z")
        seed(date(2025, 9, 5), modified_at=_ts(1), storage_id="m")

        await Deduplicator(gateway).dedupe(RecordKind.SCHEDULE, PARTITION)

        assert [r.storage_id for r in store.records(PARTITION)] == ["m"]

    @pytest.mark.asyncio
    async def test_legacy_timestamps_group_with_canonical(self, gateway, seed, store):
        seed(date(2025, 9, 5), raw_fields={"CD_date": datetime(2025, 9, 5, 5, tzinfo=UTC)},
             modified_at=_ts(1))
        seed(date(2025, 9, 5), modified_at=_ts(2))

        assert await Deduplicator(gateway).dedupe(RecordKind.SCHEDULE, PARTITION) == 1

    @pytest.mark.asyncio
    async def test_kinds_are_independent(self, gateway, seed, store):
        seed(MonthKey(2025, 9), ["a"])
        seed(MonthKey(2025, 9), ["b"])
        seed(date(2025, 9, 1))

        reports = await Deduplicator(gateway).dedupe_all(PARTITION)

        assert reports[RecordKind.NOTES].removed == 1
        assert reports[RecordKind.SCHEDULE].removed == 0
        assert store.count(PARTITION) == 2

    @pytest.mark.asyncio
    async def test_keyless_records_untouched(self, gateway, seed, store):
        seed(date(2025, 9, 5), raw_fields={"CD_line1": "lost"})
        seed(date(2025, 9, 5), raw_fields={"CD_line1": "lost"})

        report = await Deduplicator(gateway).run(RecordKind.SCHEDULE, PARTITION)

        assert report.skipped == 2
        assert report.removed == 0
        assert store.count(PARTITION) == 2

    @pytest.mark.asyncio
    async def test_partial_failure_continues(self, gateway, seed, store):
        seed(date(2025, 9, 5), modified_at=_ts(2), storage_id="keep5")
        seed(date(2025, 9, 5), modified_at=_ts(1), storage_id="bad")
        seed(date(2025, 9, 6), modified_at=_ts(2), storage_id="keep6")
        seed(date(2025, 9, 6), modified_at=_ts(1), storage_id="good")
        store.fail_when("delete", lambda storage_id: storage_id == "bad", TransientError("busy"))

        with pytest.raises(PartialBatchFailure) as exc_info:
            await Deduplicator(gateway).dedupe(RecordKind.SCHEDULE, PARTITION)

        failure = exc_info.value
        assert failure.removed == 1
        assert failure.failed == 1
        assert "bad" in failure.report.errors
        remaining = {r.storage_id for r in store.records(PARTITION)}
        assert remaining == {"keep5", "bad", "keep6"}

    @pytest.mark.asyncio
    async def test_already_deleted_counts_as_removed(self, gateway, seed, store):
        seed(date(2025, 9, 5), modified_at=_ts(2))
        seed(date(2025, 9, 5), modified_at=_ts(1))
        store.fail_next("delete", RecordNotFoundError("gone"))

        assert await Deduplicator(gateway).dedupe(RecordKind.SCHEDULE, PARTITION) == 1

    @pytest.mark.asyncio
    async def test_refresh_and_event(self, gateway, seed, bus):
        seed(date(2025, 9, 5))
        seed(date(2025, 9, 5))
        refresh = AsyncMock()
        received = []
        bus.subscribe("maintenance.deduped", received.append)

        await Deduplicator(gateway, refresh=refresh, event_bus=bus).dedupe(RecordKind.SCHEDULE, PARTITION)

        refresh.assert_awaited_once()
        assert received[0].removed == 1
        assert received[0].duplicate_groups == 1

    @pytest.mark.asyncio
    async def test_no_refresh_when_nothing_removed(self, gateway, seed):
        seed(date(2025, 9, 5))
        refresh = AsyncMock()

        await Deduplicator(gateway, refresh=refresh).dedupe(RecordKind.SCHEDULE, PARTITION)

        refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tracker_protects_deduped_keys(self, gateway, seed, monotonic):
        tracker = OperationTracker(clock=monotonic)
        seed(date(2025, 9, 5))
        seed(date(2025, 9, 5))

        await Deduplicator(gateway, tracker=tracker).dedupe(RecordKind.SCHEDULE, PARTITION)

        assert tracker.is_protected((RecordKind.SCHEDULE, date(2025, 9, 5)))
