"""
schedsync - sync reconciliation engine for a provider-schedule calendar

Keeps a locally editable set of daily schedule entries and monthly notes
consistent with a remote, eventually-consistent, multi-device record store.
"""

from .models import MonthKey, PeriodRecord, RecordKind, canonical_day
from .errors import SyncError
from .config import SyncConfig, load_config
from .event_bus import EventBus, get_event_bus
from .store import RecordStore, create_store
from .sync import (
    Deduplicator,
    PartitionMigrator,
    ReconciliationEngine,
    RecordCodec,
    RemoteGateway,
)

__version__ = "0.1.0"

__all__ = [
    "MonthKey",
    "PeriodRecord",
    "RecordKind",
    "canonical_day",
    "SyncError",
    "SyncConfig",
    "load_config",
    "EventBus",
    "get_event_bus",
    "RecordStore",
    "create_store",
    "Deduplicator",
    "PartitionMigrator",
    "ReconciliationEngine",
    "RecordCodec",
    "RemoteGateway",
    "__version__",
]
