"""
In-memory record store

A faithful simulation of the remote backing store: bounded query pages with
continuation cursors, change-tag enforcement on update, store-assigned
timestamps, per-partition isolation and an account status switch. Used by the
test suite and for offline dry runs.

Failures can be injected per operation:

    store = InMemoryRecordStore(page_size=100)
    store.fail_next("save", TransientError("network down"))
    store.fail_when("delete", lambda sid: sid == "abc", RateLimitedError())
"""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..errors import ConflictError, RecordNotFoundError, UnavailableError
from .base import (
    DEFAULT_PAGE_SIZE,
    AccountStatus,
    PartitionHandle,
    Predicate,
    QueryPage,
    RecordStore,
    StoredRecord,
    matches_all,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _InjectedFailure:
    operation: str
    error: Exception
    remaining: Optional[int]  # None = every matching call
    match: Optional[Callable[[Any], bool]] = None


class InMemoryRecordStore(RecordStore):
    """
    Dictionary-backed RecordStore.

    Partitions map storage ids to StoredRecord copies; callers never hold a
    reference into the store's own state.
    """

    def __init__(
        self,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Optional[Callable[[], datetime]] = None,
        status: AccountStatus = AccountStatus.AVAILABLE,
        partitions: Iterable[str] = (),
    ):
        """
        Args:
            page_size: Maximum records per query page
            clock: Source of store-assigned timestamps (default: UTC now)
            status: Initial account status
            partitions: Partitions that exist from the start
        """
        self.page_size = page_size
        self.status = status
        self._clock = clock or _utcnow
        self._partitions: Dict[str, Dict[str, StoredRecord]] = {name: {} for name in partitions}
        self._failures: List[_InjectedFailure] = []
        self.calls: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def fail_next(self, operation: str, error: Exception, count: int = 1) -> None:
        """Make the next `count` calls of an operation raise error."""
        self._failures.append(_InjectedFailure(operation, error, count))

    def fail_when(
        self,
        operation: str,
        match: Callable[[Any], bool],
        error: Exception,
        count: Optional[int] = None,
    ) -> None:
        """
        Raise error for calls whose subject satisfies match.

        The subject is the StoredRecord for save, the storage id for fetch and
        delete, the partition name for query and ensure_partition.
        """
        self._failures.append(_InjectedFailure(operation, error, count, match))

    def clear_failures(self) -> None:
        self._failures.clear()

    def seed(self, records: Iterable[StoredRecord]) -> List[StoredRecord]:
        """
        Insert records directly, bypassing change-tag checks.

        Missing change tags and timestamps are filled in, existing ones kept,
        so tests can plant duplicates with chosen modification times.
        """
        stored = []
        for record in records:
            now = self._clock()
            copy = replace(
                record,
                fields=dict(record.fields),
                change_tag=record.change_tag or uuid.uuid4().hex,
                created_at=record.created_at or now,
                modified_at=record.modified_at or now,
            )
            self._partitions.setdefault(copy.partition, {})[copy.storage_id] = copy
            stored.append(self._copy(copy))
        return stored

    def records(self, partition: str, record_type: Optional[str] = None) -> List[StoredRecord]:
        """Synchronous snapshot of a partition's records."""
        return [
            self._copy(r)
            for r in self._partitions.get(partition, {}).values()
            if record_type is None or r.record_type == record_type
        ]

    def count(self, partition: str, record_type: Optional[str] = None) -> int:
        return len(self.records(partition, record_type))

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------

    async def account_status(self) -> AccountStatus:
        return self.status

    async def query(
        self,
        record_type: str,
        partition: str,
        predicates: Optional[List[Predicate]] = None,
        sort_by: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> QueryPage:
        self._enter("query", partition)
        records = self._require_partition(partition)

        matching = [
            r for r in records.values()
            if r.record_type == record_type and matches_all(predicates, r.fields)
        ]
        matching.sort(key=lambda r: r.storage_id)
        if sort_by:
            try:
                matching.sort(key=lambda r: (sort_by not in r.fields, r.fields.get(sort_by)))
            except TypeError:
                logger.debug(f"Mixed value types in '{sort_by}', ordering by storage id only")

        offset = int(cursor) if cursor else 0
        size = min(limit or self.page_size, self.page_size)
        page = matching[offset:offset + size]
        next_offset = offset + len(page)
        next_cursor = str(next_offset) if next_offset < len(matching) else None

        return QueryPage(records=[self._copy(r) for r in page], cursor=next_cursor)

    async def fetch(self, partition: str, storage_id: str) -> StoredRecord:
        self._enter("fetch", storage_id)
        records = self._require_partition(partition)
        if storage_id not in records:
            raise RecordNotFoundError(storage_id, partition)
        return self._copy(records[storage_id])

    async def save(self, record: StoredRecord) -> StoredRecord:
        self._enter("save", record)
        records = self._require_partition(record.partition)
        existing = records.get(record.storage_id)
        now = self._clock()

        if record.change_tag is None:
            if existing is not None:
                raise ConflictError(record.storage_id, f"Record {record.storage_id} already exists")
            created_at = now
        else:
            if existing is None:
                raise RecordNotFoundError(record.storage_id, record.partition)
            if existing.change_tag != record.change_tag:
                raise ConflictError(record.storage_id)
            created_at = existing.created_at

        stored = replace(
            record,
            fields=dict(record.fields),
            change_tag=uuid.uuid4().hex,
            created_at=created_at,
            modified_at=now,
        )
        records[stored.storage_id] = stored
        return self._copy(stored)

    async def delete(self, partition: str, storage_id: str) -> None:
        self._enter("delete", storage_id)
        records = self._require_partition(partition)
        if storage_id not in records:
            raise RecordNotFoundError(storage_id, partition)
        del records[storage_id]

    async def ensure_partition(self, name: str) -> PartitionHandle:
        self._enter("ensure_partition", name)
        if name in self._partitions:
            return PartitionHandle(name=name, created=False)
        self._partitions[name] = {}
        logger.info(f"Created partition '{name}'")
        return PartitionHandle(name=name, created=True)

    async def list_partitions(self) -> List[str]:
        self._enter("list_partitions", None)
        return sorted(self._partitions)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _enter(self, operation: str, subject: Any) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        if self.status is not AccountStatus.AVAILABLE:
            raise UnavailableError(f"Account {self.status.value}", status=self.status.value)

        for failure in list(self._failures):
            if failure.operation != operation:
                continue
            if failure.match is not None and not failure.match(subject):
                continue
            if failure.remaining is not None:
                failure.remaining -= 1
                if failure.remaining <= 0:
                    self._failures.remove(failure)
            raise failure.error

    def _require_partition(self, partition: str) -> Dict[str, StoredRecord]:
        if partition not in self._partitions:
            raise RecordNotFoundError("*", partition)
        return self._partitions[partition]

    @staticmethod
    def _copy(record: StoredRecord) -> StoredRecord:
        return replace(record, fields=dict(record.fields))
