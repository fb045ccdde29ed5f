"""
Backing store capability - abstract interface for record storage

The sync engine only ever reaches the backing store through this interface:
a partitioned, queryable, eventually-consistent record store with cursor
pagination and per-record change tags. Concrete backends (in-memory, SQLite,
HTTP) implement it; everything above speaks in StoredRecord objects and the
error types from schedsync.errors.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

DEFAULT_PAGE_SIZE = 100


class AccountStatus(Enum):
    """
    Account / connectivity signal gating every store operation.

    AVAILABLE: signed in and reachable
    UNAVAILABLE: no account or no connectivity
    RESTRICTED: account exists but access is restricted
    """
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    RESTRICTED = "restricted"


@dataclass
class StoredRecord:
    """A record as the backing store sees it: untyped fields plus identity"""
    record_type: str
    storage_id: str
    partition: str
    fields: Dict[str, Any] = field(default_factory=dict)
    change_tag: Optional[str] = None  # None on a record that was never saved
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "record_type": self.record_type,
            "storage_id": self.storage_id,
            "partition": self.partition,
            "fields": {
                name: value.isoformat() if isinstance(value, datetime) else value
                for name, value in self.fields.items()
            },
            "change_tag": self.change_tag,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "modified_at": self.modified_at.isoformat() if self.modified_at else None,
        }


@dataclass(frozen=True)
class Predicate:
    """
    Field filter for queries.

    op is one of 'eq', 'ge', 'lt'. Comparisons between a stored value and the
    predicate value that raise TypeError count as a non-match.
    """
    field_name: str
    op: str
    value: Any

    def matches(self, fields: Dict[str, Any]) -> bool:
        if self.field_name not in fields:
            return False
        stored = fields[self.field_name]
        try:
            if self.op == "eq":
                return stored == self.value
            if self.op == "ge":
                return stored >= self.value
            if self.op == "lt":
                return stored < self.value
        except TypeError:
            return False
        raise ValueError(f"Unknown predicate operator: {self.op}")


def matches_all(predicates: Optional[List[Predicate]], fields: Dict[str, Any]) -> bool:
    return all(p.matches(fields) for p in (predicates or []))


@dataclass
class QueryPage:
    """One bounded page of query results; cursor None means exhausted"""
    records: List[StoredRecord]
    cursor: Optional[str] = None


@dataclass(frozen=True)
class PartitionHandle:
    """Result of ensure_partition"""
    name: str
    created: bool = False


class RecordStore(ABC):
    """
    Abstract base class for backing stores

    All methods are coroutines. Implementations raise:
        UnavailableError: account not available / no connectivity
        RecordNotFoundError: record or partition missing
        ConflictError: update with a stale change tag
        TransientError / RateLimitedError: retryable failures
    """

    page_size: int = DEFAULT_PAGE_SIZE

    @abstractmethod
    async def account_status(self) -> AccountStatus:
        """Current account / connectivity status."""
        pass

    @abstractmethod
    async def query(
        self,
        record_type: str,
        partition: str,
        predicates: Optional[List[Predicate]] = None,
        sort_by: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> QueryPage:
        """
        Return one page of records matching the query.

        Args:
            record_type: Record type to list
            partition: Partition to search
            predicates: Field filters, all of which must match
            sort_by: Field to sort ascending by (storage id breaks ties)
            cursor: Continuation cursor from the previous page
            limit: Page size (capped at the store's own page size)

        Returns:
            QueryPage with records and the next cursor (None when exhausted)

        Raises:
            RecordNotFoundError: If the partition doesn't exist
        """
        pass

    @abstractmethod
    async def fetch(self, partition: str, storage_id: str) -> StoredRecord:
        """
        Fetch one record by storage id.

        Raises:
            RecordNotFoundError: If the record doesn't exist
        """
        pass

    @abstractmethod
    async def save(self, record: StoredRecord) -> StoredRecord:
        """
        Create or update a record.

        A record without a change tag is created (the storage id must not be
        taken). A record with a change tag updates the stored record, which must
        still carry that same tag.

        Returns:
            The stored record with fresh change tag and timestamps

        Raises:
            RecordNotFoundError: If updating a record that no longer exists
            ConflictError: If the change tag is stale or the id is taken
        """
        pass

    @abstractmethod
    async def delete(self, partition: str, storage_id: str) -> None:
        """
        Delete a record.

        Raises:
            RecordNotFoundError: If the record doesn't exist
        """
        pass

    @abstractmethod
    async def ensure_partition(self, name: str) -> PartitionHandle:
        """Create the partition if needed; idempotent."""
        pass

    @abstractmethod
    async def list_partitions(self) -> List[str]:
        """Names of all partitions."""
        pass

    async def close(self) -> None:
        """Release connections; default is a no-op."""
        return None
