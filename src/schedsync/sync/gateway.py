"""
Remote Access Gateway

Wraps a RecordStore with PeriodRecord-level operations: cursor pagination,
partition scoping, logical-key queries and encode/decode through the codec.
Store errors propagate unchanged (schedsync.errors taxonomy).
"""

import logging
import uuid
from typing import AsyncIterator, List, Optional

from ..errors import TransientError, UnavailableError
from ..models import LogicalKey, MonthKey, PeriodRecord, RecordKind, day_window, kind_for_key, normalize_key
from ..store.base import AccountStatus, PartitionHandle, Predicate, RecordStore, StoredRecord
from .codec import DATE_FIELD, MONTH_FIELD, YEAR_FIELD, RecordCodec

logger = logging.getLogger(__name__)


def new_storage_id() -> str:
    return str(uuid.uuid4()).upper()


class RemoteGateway:
    """
    PeriodRecord access to one backing store.

    Usage:
        gateway = RemoteGateway(store, RecordCodec(tz=tz))
        async for record in gateway.query_all(RecordKind.SCHEDULE, "user_schedule"):
            ...
    """

    def __init__(self, store: RecordStore, codec: Optional[RecordCodec] = None):
        self.store = store
        self.codec = codec or RecordCodec()

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    async def account_status(self) -> AccountStatus:
        return await self.store.account_status()

    async def check_available(self) -> None:
        """
        Raises:
            UnavailableError: Unless the account status is AVAILABLE
        """
        status = await self.store.account_status()
        if status is not AccountStatus.AVAILABLE:
            raise UnavailableError(f"Backing store account is {status.value}", status=status.value)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _pages(
        self,
        kind: RecordKind,
        partition: str,
        predicates: Optional[List[Predicate]] = None,
        sort_by: Optional[str] = None,
    ) -> AsyncIterator[StoredRecord]:
        cursor: Optional[str] = None
        seen_cursors = set()
        pages = 0

        while True:
            page = await self.store.query(
                kind.record_type,
                partition,
                predicates=predicates,
                sort_by=sort_by,
                cursor=cursor,
            )
            pages += 1
            for stored in page.records:
                yield stored

            if not page.cursor:
                break
            if page.cursor in seen_cursors:
                raise TransientError(
                    f"Store returned cursor {page.cursor!r} twice while listing {kind.record_type}"
                )
            seen_cursors.add(page.cursor)
            cursor = page.cursor

        logger.debug(f"Listed {kind.record_type} in '{partition}' over {pages} page(s)")

    async def query_all(
        self,
        kind: RecordKind,
        partition: str,
        sort_by: Optional[str] = None,
    ) -> AsyncIterator[PeriodRecord]:
        """
        Every record of kind in partition, following continuation cursors
        until the store reports no more pages.

        Raises:
            TransientError: If the store repeats a cursor
        """
        async for stored in self._pages(kind, partition, sort_by=sort_by):
            record = self.codec.decode_stored(stored)
            if record is not None:
                yield record

    async def collect_all(self, kind: RecordKind, partition: str) -> List[PeriodRecord]:
        """query_all() materialized into a list."""
        return [record async for record in self.query_all(kind, partition)]

    async def query_by_key(self, kind: RecordKind, partition: str, key: LogicalKey) -> List[PeriodRecord]:
        """
        All records in partition whose logical key equals key.

        Day keys match stored timestamps within the half-open +/-12h window
        around the reference-zone midnight. Records whose key fields have a
        legacy shape (ISO or epoch CD_date, timestamp CD_month) cannot be
        matched by typed predicates; a second pass over the partition picks
        them up by their decoded key.

        Raises:
            TypeError: If key does not fit kind
        """
        key = normalize_key(key, self.codec.tz)
        if kind_for_key(key) is not kind:
            raise TypeError(f"{kind.label.title()} key expected, got {type(key).__name__} {key}")
        if isinstance(key, MonthKey):
            predicates = [Predicate(YEAR_FIELD, "eq", key.year), Predicate(MONTH_FIELD, "eq", key.month)]
        else:
            start, end = day_window(key, self.codec.tz)
            predicates = [Predicate(DATE_FIELD, "ge", start), Predicate(DATE_FIELD, "lt", end)]

        matches = []
        async for stored in self._pages(kind, partition, predicates=predicates):
            record = self.codec.decode_stored(stored)
            if record is not None and record.key == key:
                matches.append(record)

        seen = {record.storage_id for record in matches}
        async for stored in self._pages(kind, partition):
            if stored.storage_id in seen or self.codec.has_typed_key(kind, stored.fields):
                continue
            record = self.codec.decode_stored(stored)
            if record is not None and record.key == key:
                logger.debug(f"Matched legacy-shaped {kind.label} {stored.storage_id} for {key}")
                matches.append(record)
        return matches

    async def fetch(self, kind: RecordKind, partition: str, storage_id: str) -> PeriodRecord:
        """
        Raises:
            RecordNotFoundError: If the record doesn't exist
        """
        stored = await self.store.fetch(partition, storage_id)
        record = self.codec.decode_stored(stored)
        if record is None or record.kind is not kind:
            raise TransientError(
                f"Record {storage_id} has type {stored.record_type}, expected {kind.record_type}"
            )
        return record

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save(self, record: PeriodRecord, entity_marker: Optional[str] = None) -> PeriodRecord:
        """
        Create or update record.

        A record without a change tag is created (with a fresh storage id if
        it has none); otherwise the stored record with that storage id is
        updated, enforcing the change tag.

        Returns:
            The acknowledged record with store-assigned identity and timestamps
        """
        if record.partition is None:
            raise ValueError("Cannot save a record without a partition")

        creating = record.change_tag is None
        stored = StoredRecord(
            record_type=record.kind.record_type,
            storage_id=record.storage_id or new_storage_id(),
            partition=record.partition,
            fields=self.codec.encode(record, entity_marker),
            change_tag=record.change_tag,
        )
        acknowledged = await self.store.save(stored)
        logger.debug(
            f"{'Created' if creating else 'Updated'} {record.kind.label} {record.key} "
            f"as {acknowledged.storage_id} in '{record.partition}'"
        )

        saved = self.codec.decode_stored(acknowledged)
        if saved is None or saved.key is None:
            raise TransientError(f"Store acknowledged {acknowledged.storage_id} with unreadable content")
        return saved

    async def delete(self, partition: str, storage_id: str) -> None:
        """
        Raises:
            RecordNotFoundError: If the record doesn't exist
        """
        await self.store.delete(partition, storage_id)
        logger.debug(f"Deleted {storage_id} from '{partition}'")

    # ------------------------------------------------------------------
    # Partitions
    # ------------------------------------------------------------------

    async def ensure_partition(self, name: str) -> PartitionHandle:
        return await self.store.ensure_partition(name)

    async def list_partitions(self) -> List[str]:
        return await self.store.list_partitions()
