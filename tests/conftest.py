"""Pytest fixtures for schedsync tests"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import pytest

from schedsync.event_bus import EventBus
from schedsync.models import MonthKey, PeriodRecord, RecordKind
from schedsync.store import InMemoryRecordStore, StoredRecord
from schedsync.sync.codec import RecordCodec
from schedsync.sync.engine import ReconciliationEngine
from schedsync.sync.gateway import RemoteGateway
from schedsync.sync.operation_tracker import OperationTracker

PARTITION = "user_schedule"


class TickingClock:
    """Store clock: every reading is one second after the previous one."""

    def __init__(self, start: datetime = datetime(2025, 9, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class ManualClock:
    """Monotonic clock for the operation tracker, advanced by hand."""

    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def store_clock():
    return TickingClock()


@pytest.fixture
def monotonic():
    return ManualClock()


@pytest.fixture
def store(store_clock):
    """In-memory store with the default partition, page size 100."""
    return InMemoryRecordStore(page_size=100, clock=store_clock, partitions=[PARTITION])


@pytest.fixture
def codec():
    return RecordCodec()


@pytest.fixture
def gateway(store, codec):
    return RemoteGateway(store, codec)


@pytest.fixture
def tracker(monotonic):
    return OperationTracker(clock=monotonic)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def engine(gateway, tracker, bus):
    return ReconciliationEngine(gateway, PARTITION, tracker=tracker, event_bus=bus)


@pytest.fixture
def seed(store, codec):
    """Factory planting a record directly in the store.

    seed(date(2025, 9, 5), ["OR"], modified_at=..., storage_id=..., partition=...)
    seed(MonthKey(2025, 9), ["note"])
    """

    def _seed(
        key,
        lines: Sequence[str] = ("A",),
        modified_at: Optional[datetime] = None,
        storage_id: Optional[str] = None,
        partition: str = PARTITION,
        raw_fields: Optional[dict] = None,
    ) -> StoredRecord:
        kind = RecordKind.NOTES if isinstance(key, MonthKey) else RecordKind.SCHEDULE
        if raw_fields is None:
            record = PeriodRecord(kind=kind, key=key, fields=codec.normalize_fields(kind, lines))
            raw_fields = codec.encode(record)
        stored = StoredRecord(
            record_type=kind.record_type,
            storage_id=storage_id or uuid.uuid4().hex,
            partition=partition,
            fields=raw_fields,
            modified_at=modified_at,
        )
        return store.seed([stored])[0]

    return _seed

