"""
Reconciliation Engine

Keeps the in-memory, user-editable dataset (local authoritative state)
consistent with the backing store.

Per-record state machine:

    CLEAN -> DIRTY (editing session) -> SAVING -> CLEAN | ERROR
    CLEAN -> DELETING -> CLEAN | ERROR

A background refresh never moves a record through DIRTY, SAVING or DELETING.
For those keys, and for keys the OperationTracker protects, the local value
wins over whatever the store returned.

Merge rule for each key in local and incoming state:

    protected or busy           keep local
    both present                take incoming if it is a different version
                                and not older than local
    incoming only               insert
    local only                  deleted by another device, remove

Everything runs on one event loop; local state is only touched between
awaits, after the store has answered.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Hashable, Iterable, List, Optional, Sequence, Set, Tuple

from ..errors import ConflictError, RecordNotFoundError
from ..event_bus import EventBus
from ..events import (
    RecordDeletedEvent,
    RecordSavedEvent,
    RecordSyncFailedEvent,
    RefreshCompletedEvent,
)
from ..models import (
    UTC,
    LogicalKey,
    MonthKey,
    PeriodRecord,
    RecordKind,
    group_by_key,
    kind_for_key,
    normalize_key,
    pick_survivor,
)
from .gateway import RemoteGateway
from .operation_tracker import OperationTracker, OperationType

logger = logging.getLogger(__name__)

TrackedKey = Tuple[RecordKind, LogicalKey]


class RecordState(Enum):
    """
    Local state of one logical key.

    CLEAN: matches the last acknowledged or fetched version
    DIRTY: open in an editing session
    SAVING: save in flight
    DELETING: delete in flight
    ERROR: last save or delete failed
    """
    CLEAN = "clean"
    DIRTY = "dirty"
    SAVING = "saving"
    DELETING = "deleting"
    ERROR = "error"


BUSY_STATES = frozenset({RecordState.DIRTY, RecordState.SAVING, RecordState.DELETING})


class SaveStatus(Enum):
    """Tri-state indicator for the UI"""
    SAVED = "saved"
    PENDING = "pending"
    ERROR = "error"


@dataclass
class MergeStats:
    """Outcome of one refresh"""
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    removed: int = 0
    kept_local: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _is_older(candidate: PeriodRecord, reference: PeriodRecord) -> bool:
    if candidate.modified_at is None or reference.modified_at is None:
        return False
    a, b = candidate.modified_at, reference.modified_at
    if a.tzinfo is None:
        a = a.replace(tzinfo=UTC)
    if b.tzinfo is None:
        b = b.replace(tzinfo=UTC)
    return a < b


class ReconciliationEngine:
    """
    Local authoritative state for one partition plus the operations the UI
    drives it with.

    Usage:
        engine = ReconciliationEngine(RemoteGateway(store), "user_schedule", event_bus=bus)
        await engine.refresh_all()
        await engine.upsert(date(2025, 9, 5), ["OR", "Clinic", ""])
        await engine.upsert(MonthKey(2025, 9), ["Vacation 22-26", "", ""])
        await engine.delete(date(2025, 9, 5))
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        partition: str,
        tracker: Optional[OperationTracker] = None,
        event_bus: Optional[EventBus] = None,
        kinds: Sequence[RecordKind] = (RecordKind.SCHEDULE, RecordKind.NOTES),
    ):
        """
        Args:
            gateway: Remote access gateway (its codec fixes the reference timezone)
            partition: Partition holding this dataset
            tracker: Operation tracker (default: 5s/8s windows)
            event_bus: Optional bus for state change events
            kinds: Record kinds kept in local state
        """
        self.gateway = gateway
        self.partition = partition
        self.tracker = tracker or OperationTracker()
        self.event_bus = event_bus
        self.kinds = tuple(kinds)

        self._entries: Dict[RecordKind, Dict[LogicalKey, PeriodRecord]] = {k: {} for k in self.kinds}
        self._states: Dict[TrackedKey, RecordState] = {}
        self._sessions: Set[Hashable] = set()
        self._refresh_task: Optional[asyncio.Future] = None
        self._pending = 0

        self.last_error: Optional[Exception] = None
        self.last_refresh: Optional[datetime] = None
        self.last_merge: Optional[MergeStats] = None

    @property
    def tz(self):
        return self.gateway.codec.tz

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def get(self, key: Any) -> Optional[PeriodRecord]:
        """Local record for a logical key, or None."""
        key = normalize_key(key, self.tz)
        return self._entries.get(kind_for_key(key), {}).get(key)

    def entries(self, kind: RecordKind) -> List[PeriodRecord]:
        """Local records of one kind, sorted by key."""
        return [record for _, record in sorted(self._entries.get(kind, {}).items())]

    def record_state(self, key: Any) -> RecordState:
        key = normalize_key(key, self.tz)
        return self._states.get((kind_for_key(key), key), RecordState.CLEAN)

    @property
    def save_status(self) -> SaveStatus:
        if self._pending:
            return SaveStatus.PENDING
        if self.last_error is not None:
            return SaveStatus.ERROR
        return SaveStatus.SAVED

    @property
    def is_editing(self) -> bool:
        return bool(self._sessions)

    # ------------------------------------------------------------------
    # Editing sessions
    # ------------------------------------------------------------------

    def start_editing_session(self, identifier: Hashable = "default") -> None:
        """
        Suspend refreshes until the session ends.

        When identifier is a logical key (date or MonthKey) that record is
        marked DIRTY for the duration of the session.
        """
        tracked = self._tracked_key(identifier)
        self._sessions.add(tracked or identifier)
        if tracked is not None and self._states.get(tracked) not in (RecordState.SAVING, RecordState.DELETING):
            self._states[tracked] = RecordState.DIRTY
        logger.debug(f"Editing session started: {identifier} ({len(self._sessions)} open)")

    def end_editing_session(self, identifier: Hashable = "default") -> None:
        tracked = self._tracked_key(identifier)
        self._sessions.discard(tracked or identifier)
        if tracked is not None and self._states.get(tracked) is RecordState.DIRTY:
            del self._states[tracked]
        logger.debug(f"Editing session ended: {identifier} ({len(self._sessions)} open)")

    def _tracked_key(self, identifier: Hashable) -> Optional[TrackedKey]:
        if isinstance(identifier, (date, MonthKey)):
            key = normalize_key(identifier, self.tz)
            return (kind_for_key(key), key)
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, key: Any, fields: Iterable[Optional[str]]) -> Optional[PeriodRecord]:
        """
        Save fields under a logical key, or delete the key when every field
        is empty.

        Local state changes only after the store acknowledged the write.

        Args:
            key: date (schedule) or MonthKey (notes)
            fields: Text fields; shorter sequences are padded with ""

        Returns:
            The acknowledged record, or None when the key was deleted or
            nothing needed to happen

        Raises:
            RecordValidationError: Bad field count or length (nothing sent)
            UnavailableError, TransientError, ConflictError: Store failures;
                local state is left as it was
        """
        key = normalize_key(key, self.tz)
        kind = self._kind(key)
        values = self.gateway.codec.normalize_fields(kind, fields)

        if all(not value for value in values):
            await self.delete(key)
            return None

        await self.gateway.check_available()

        tracked = (kind, key)
        local = self._entries[kind].get(key)
        operation = self.tracker.begin(tracked, OperationType.UPDATE if local else OperationType.SAVE)
        self._states[tracked] = RecordState.SAVING
        self._pending += 1
        try:
            saved, created = await self._write(kind, key, values, local)
        except Exception as e:
            self.tracker.complete(tracked, success=False, operation=operation)
            self._fail(tracked, "save", e)
            raise
        finally:
            self._pending -= 1

        self.tracker.complete(tracked, success=True, operation=operation)
        self._entries[kind][key] = saved
        self._settle(tracked)
        self.last_error = None
        logger.info(f"Saved {kind.label} {key} ({saved.storage_id})")
        self._publish(RecordSavedEvent(
            kind=kind.label, key=str(key), storage_id=saved.storage_id, created=created,
        ))
        return saved

    async def delete(self, key: Any) -> int:
        """
        Delete every record stored under a logical key.

        The local entry is removed before the store is asked. A failed remote
        delete is not rolled back locally; the next refresh restores the
        record because a failed delete leaves no protection behind.

        Returns:
            Number of store records removed (0 when there was nothing to delete)
        """
        key = normalize_key(key, self.tz)
        kind = self._kind(key)
        await self.gateway.check_available()

        tracked = (kind, key)
        local = self._entries[kind].pop(key, None)
        storage_ids = [local.storage_id] if local is not None and local.storage_id else []

        operation = self.tracker.begin(tracked, OperationType.DELETE)
        self._states[tracked] = RecordState.DELETING
        self._pending += 1
        try:
            for remote in await self.gateway.query_by_key(kind, self.partition, key):
                if remote.storage_id not in storage_ids:
                    storage_ids.append(remote.storage_id)
            for storage_id in storage_ids:
                try:
                    await self.gateway.delete(self.partition, storage_id)
                except RecordNotFoundError:
                    logger.debug(f"{storage_id} already gone")
        except Exception as e:
            self.tracker.complete(tracked, success=False, operation=operation)
            self._fail(tracked, "delete", e)
            raise
        finally:
            self._pending -= 1

        # nothing existed: no protection window needed
        self.tracker.complete(tracked, success=bool(storage_ids), operation=operation)
        self._settle(tracked)
        self.last_error = None
        if storage_ids:
            logger.info(f"Deleted {kind.label} {key} ({len(storage_ids)} record(s))")
            self._publish(RecordDeletedEvent(kind=kind.label, key=str(key), storage_ids=storage_ids))
        return len(storage_ids)

    async def _write(
        self,
        kind: RecordKind,
        key: LogicalKey,
        values: Tuple[str, ...],
        local: Optional[PeriodRecord],
    ) -> Tuple[PeriodRecord, bool]:
        current = await self._latest_remote(kind, key, local)
        if current is None:
            return await self._create(kind, key, values), True

        try:
            return await self.gateway.save(current.with_fields(values)), False
        except RecordNotFoundError:
            logger.info(f"{kind.label} {key} vanished before update, creating it")
            return await self._create(kind, key, values), True
        except ConflictError:
            logger.info(f"Change tag conflict on {kind.label} {key}, retrying with latest version")

        current = await self._latest_remote(kind, key, current)
        if current is not None:
            try:
                return await self.gateway.save(current.with_fields(values)), False
            except (ConflictError, RecordNotFoundError) as e:
                logger.warning(f"Retry of {kind.label} {key} failed ({e}), creating a new record")
        return await self._create(kind, key, values), True

    async def _create(self, kind: RecordKind, key: LogicalKey, values: Tuple[str, ...]) -> PeriodRecord:
        record = PeriodRecord(kind=kind, key=key, fields=values, partition=self.partition)
        return await self.gateway.save(record)

    async def _latest_remote(
        self,
        kind: RecordKind,
        key: LogicalKey,
        known: Optional[PeriodRecord],
    ) -> Optional[PeriodRecord]:
        """Current remote version: by storage id when known, else by key."""
        if known is not None and known.storage_id:
            try:
                return await self.gateway.fetch(kind, self.partition, known.storage_id)
            except RecordNotFoundError:
                logger.debug(f"{known.storage_id} not found, looking up {kind.label} {key} by key")

        matches = await self.gateway.query_by_key(kind, self.partition, key)
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(f"{len(matches)} records share {kind.label} {key}; updating the newest")
        return pick_survivor(matches)

    def _settle(self, tracked: TrackedKey) -> None:
        if tracked in self._sessions:
            self._states[tracked] = RecordState.DIRTY
        else:
            self._states.pop(tracked, None)

    def _fail(self, tracked: TrackedKey, operation: str, error: Exception) -> None:
        kind, key = tracked
        self._states[tracked] = RecordState.ERROR
        self.last_error = error
        logger.warning(f"Failed to {operation} {kind.label} {key}: {error}")
        self._publish(RecordSyncFailedEvent(
            kind=kind.label, key=str(key), operation=operation,
            error=str(error), error_type=type(error).__name__,
        ))

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_all(self) -> Optional[MergeStats]:
        """
        Fetch every kind from the store and merge into local state.

        Returns immediately (None) while an editing session is open.
        Overlapping calls share one in-flight refresh.

        Raises:
            UnavailableError: If the account is not available
            TransientError: On store failures; local state is unchanged
        """
        if self._sessions:
            logger.debug("Refresh skipped: editing session open")
            return None

        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.ensure_future(self._refresh())
            task.add_done_callback(self._refresh_finished)
            self._refresh_task = task
        else:
            logger.debug("Joining in-flight refresh")
        return await asyncio.shield(task)

    async def force_refresh(self) -> Optional[MergeStats]:
        """Drop all write protection, then refresh."""
        self.tracker.reset()
        return await self.refresh_all()

    def _refresh_finished(self, task: asyncio.Future) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _refresh(self) -> Optional[MergeStats]:
        await self.gateway.check_available()

        results = await asyncio.gather(
            *(self.gateway.collect_all(kind, self.partition) for kind in self.kinds)
        )

        if self._sessions:
            logger.debug("Editing session opened during refresh, discarding fetched state")
            return None

        stats = MergeStats(fetched=sum(len(records) for records in results))
        for kind, records in zip(self.kinds, results):
            self._merge(kind, records, stats)

        self.last_refresh = datetime.now(UTC)
        self.last_merge = stats
        logger.info(
            f"Refreshed '{self.partition}': {stats.fetched} fetched, {stats.inserted} new, "
            f"{stats.updated} updated, {stats.removed} removed, {stats.kept_local} kept local"
        )
        self._publish(RefreshCompletedEvent(
            partition=self.partition,
            fetched=stats.fetched,
            inserted=stats.inserted,
            updated=stats.updated,
            removed=stats.removed,
            kept_local=stats.kept_local,
        ))
        return stats

    def _merge(self, kind: RecordKind, records: List[PeriodRecord], stats: MergeStats) -> None:
        keyless = sum(1 for record in records if record.key is None)
        if keyless:
            logger.warning(f"Skipping {keyless} {kind.label} record(s) without a readable key")
            stats.skipped += keyless

        incoming: Dict[LogicalKey, PeriodRecord] = {}
        for key, group in group_by_key(records).items():
            survivor = pick_survivor(group)
            if len(group) > 1:
                logger.warning(
                    f"{len(group)} records share {kind.label} {key}; using newest {survivor.storage_id}"
                )
            incoming[key] = survivor

        local = self._entries[kind]
        for key in set(local) | set(incoming):
            tracked = (kind, key)
            if self.tracker.is_protected(tracked) or self._states.get(tracked) in BUSY_STATES:
                stats.kept_local += 1
                continue

            mine = local.get(key)
            theirs = incoming.get(key)
            if theirs is None:
                del local[key]
                stats.removed += 1
            elif mine is None:
                local[key] = theirs
                stats.inserted += 1
            elif not mine.same_version(theirs) and not _is_older(theirs, mine):
                local[key] = theirs
                stats.updated += 1
            else:
                continue
            # local now mirrors the store
            self._states.pop(tracked, None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _kind(self, key: LogicalKey) -> RecordKind:
        kind = kind_for_key(key)
        if kind not in self._entries:
            raise ValueError(f"Engine is not tracking {kind.label} records")
        return kind

    def _publish(self, event: Any) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)
