"""
Backing store implementations.

    RecordStore           abstract capability used by the sync engine
    InMemoryRecordStore   dictionary-backed, for tests and dry runs
    SQLiteRecordStore     local persistent store
    HTTPRecordStore       remote record service over requests
"""

import logging

from .base import (
    DEFAULT_PAGE_SIZE,
    AccountStatus,
    PartitionHandle,
    Predicate,
    QueryPage,
    RecordStore,
    StoredRecord,
)
from .http import HTTPRecordStore
from .memory import InMemoryRecordStore
from .sqlite import SQLiteRecordStore

logger = logging.getLogger(__name__)


def create_store(config) -> RecordStore:
    """
    Build the backing store named by config.store.backend.

    Args:
        config: SyncConfig

    Returns:
        A RecordStore instance

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = config.store.backend
    if backend == "memory":
        store: RecordStore = InMemoryRecordStore(page_size=config.store.page_size)
    elif backend == "sqlite":
        store = SQLiteRecordStore(config.store_path, page_size=config.store.page_size)
    elif backend == "http":
        store = HTTPRecordStore(
            endpoint=config.store.endpoint,
            api_token=config.store.api_token,
            page_size=config.store.page_size,
            timeout=config.store.timeout,
        )
    else:
        raise ValueError(f"Unknown store backend: {backend}")

    logger.debug(f"Using {backend} record store")
    return store


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "AccountStatus",
    "PartitionHandle",
    "Predicate",
    "QueryPage",
    "RecordStore",
    "StoredRecord",
    "InMemoryRecordStore",
    "SQLiteRecordStore",
    "HTTPRecordStore",
    "create_store",
]
