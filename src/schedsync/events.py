"""
Event type definitions for schedule sync event streaming.

Events published on the EventBus:
- RecordSavedEvent: a record was created or updated in the store
- RecordDeletedEvent: a record was removed locally and remotely
- RecordSyncFailedEvent: a save or delete failed
- RefreshCompletedEvent: a refresh merged remote state into local state
- DedupeCompletedEvent: a dedupe pass finished
- MigrationProgressEvent: the partition migrator changed step or batch

Keys are carried as strings ('2025-09-05', '2025-09') so events serialize
without custom encoders.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any


@dataclass
class RecordSavedEvent:
    """Event emitted when a save is acknowledged by the store."""
    kind: str
    key: str
    storage_id: str
    created: bool = False
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "record.saved"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "kind": self.kind,
            "key": self.key,
            "storage_id": self.storage_id,
            "created": self.created,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class RecordDeletedEvent:
    """Event emitted when a logical key was deleted."""
    kind: str
    key: str
    storage_ids: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "record.deleted"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "kind": self.kind,
            "key": self.key,
            "storage_ids": self.storage_ids,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class RecordSyncFailedEvent:
    """Event emitted when an upsert or delete failed remotely."""
    kind: str
    key: str
    operation: str  # save | delete
    error: str
    error_type: str
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "record.sync_failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "kind": self.kind,
            "key": self.key,
            "operation": self.operation,
            "error": self.error,
            "error_type": self.error_type,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class RefreshCompletedEvent:
    """Event emitted after remote state was merged into local state."""
    partition: str
    fetched: int
    inserted: int = 0
    updated: int = 0
    removed: int = 0
    kept_local: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "sync.refreshed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "partition": self.partition,
            "fetched": self.fetched,
            "inserted": self.inserted,
            "updated": self.updated,
            "removed": self.removed,
            "kept_local": self.kept_local,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class DedupeCompletedEvent:
    """Event emitted after a dedupe pass over one kind."""
    kind: str
    partition: str
    duplicate_groups: int
    removed: int
    failed: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "maintenance.deduped"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "kind": self.kind,
            "partition": self.partition,
            "duplicate_groups": self.duplicate_groups,
            "removed": self.removed,
            "failed": self.failed,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class MigrationProgressEvent:
    """Event emitted on every migration step change and finished batch."""
    source: str
    destination: str
    status: str
    discovered: int = 0
    migrated: int = 0
    verified: int = 0
    step: str = ""
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "maintenance.migration_progress"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "source": self.source,
            "destination": self.destination,
            "status": self.status,
            "discovered": self.discovered,
            "migrated": self.migrated,
            "verified": self.verified,
            "step": self.step,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


__all__ = [
    "RecordSavedEvent",
    "RecordDeletedEvent",
    "RecordSyncFailedEvent",
    "RefreshCompletedEvent",
    "DedupeCompletedEvent",
    "MigrationProgressEvent",
]
