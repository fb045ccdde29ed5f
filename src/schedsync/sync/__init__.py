"""
schedsync Sync Module - Reconciliation between local state and the backing store

Key Components:
    - OperationTracker: protects recently written keys from stale reads
    - RecordCodec: PeriodRecord <-> store field map
    - RemoteGateway: paginated, partition-scoped store access
    - ReconciliationEngine: upsert / delete / refresh with protected merge
    - Deduplicator: collapses records sharing a logical key
    - PartitionMigrator: copies a dataset between partitions and verifies it

Usage:
    from schedsync.sync import RemoteGateway, ReconciliationEngine

    engine = ReconciliationEngine(RemoteGateway(store), "user_schedule")
    await engine.refresh_all()
    await engine.upsert(date(2025, 9, 5), ["OR", "Clinic", ""])
"""

from .operation_tracker import OperationTracker, OperationType, OperationRecord
from .codec import RecordCodec
from .gateway import RemoteGateway
from .engine import ReconciliationEngine, RecordState, SaveStatus, MergeStats
from .dedup import Deduplicator, DedupeReport
from .migration import PartitionMigrator, MigrationReport, MigrationStatus

__all__ = [
    "OperationTracker",
    "OperationType",
    "OperationRecord",
    "RecordCodec",
    "RemoteGateway",
    "ReconciliationEngine",
    "RecordState",
    "SaveStatus",
    "MergeStats",
    "Deduplicator",
    "DedupeReport",
    "PartitionMigrator",
    "MigrationReport",
    "MigrationStatus",
]
