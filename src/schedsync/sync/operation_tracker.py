"""
Operation Tracker

Per-logical-key bookkeeping of in-flight and recently completed writes. The
reconciliation engine asks it one question before letting a remote read
overwrite local state: is this key protected right now?

A key is protected while any write on it is in flight and for a grace window
after a successful write, covering the store's read-after-write lag:

    save / update / dedupe   5 seconds
    delete                   8 seconds (kept in a separate recently-deleted set)

Expired entries are purged lazily on lookup. The tracker is touched only from
the engine's event loop and takes no locks.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_SAVE_WINDOW = 5.0
DEFAULT_DELETE_WINDOW = 8.0


class OperationType(Enum):
    """
    Write operations that protect a key.

    SAVE: create a new record
    UPDATE: update an existing record
    DELETE: delete all records of a key
    DEDUPE: delete duplicates of a key during a dedupe pass
    """
    SAVE = "save"
    UPDATE = "update"
    DELETE = "delete"
    DEDUPE = "dedupe"


@dataclass
class OperationRecord:
    """
    One tracked operation.

    Attributes:
        key: Tracked key (any hashable, the engine uses (kind, logical key))
        operation_type: What kind of write this is
        started_at: Clock value at begin()
        completed_at: Clock value at complete(), None while in flight
        outcome: True/False once completed
        expires_at: End of the grace window after a successful completion
    """
    key: Hashable
    operation_type: OperationType
    started_at: float
    completed_at: Optional[float] = None
    outcome: Optional[bool] = None
    expires_at: Optional[float] = None

    @property
    def in_flight(self) -> bool:
        return self.completed_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": str(self.key),
            "operation_type": self.operation_type.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "outcome": self.outcome,
            "expires_at": self.expires_at,
        }


class OperationTracker:
    """
    Tracks writes per key to shield them from stale remote reads.

    Usage:
        tracker = OperationTracker()
        tracker.begin(key, OperationType.UPDATE)
        ...
        tracker.complete(key, success=True)
        tracker.is_protected(key)  # True for the next 5 seconds
    """

    def __init__(
        self,
        save_window: float = DEFAULT_SAVE_WINDOW,
        delete_window: float = DEFAULT_DELETE_WINDOW,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            save_window: Seconds a saved/updated/deduped key stays protected
            delete_window: Seconds a deleted key stays protected
            clock: Monotonic clock in seconds (default: time.monotonic)
        """
        self.save_window = save_window
        self.delete_window = delete_window
        self._clock = clock or time.monotonic
        self._in_flight: Dict[Hashable, List[OperationRecord]] = {}
        self._recently_completed: Dict[Hashable, OperationRecord] = {}
        self._recently_deleted: Dict[Hashable, OperationRecord] = {}

    def begin(self, key: Hashable, operation_type: OperationType = OperationType.SAVE) -> OperationRecord:
        """
        Mark an operation on key as in flight.

        Overlapping operations on one key are tracked separately; the key
        stays in flight until every one of them completed.

        Returns:
            The OperationRecord now tracked, to hand back to complete()
        """
        record = OperationRecord(key=key, operation_type=operation_type, started_at=self._clock())
        self._in_flight.setdefault(key, []).append(record)
        logger.debug(f"Tracking {operation_type.value} for {key}")
        return record

    def complete(
        self,
        key: Hashable,
        success: bool,
        operation: Optional[OperationRecord] = None,
    ) -> Optional[OperationRecord]:
        """
        Finish an in-flight operation on key: the given one, or the oldest.

        On success the key enters the recently-completed (or recently-deleted)
        set until its window expires. On failure only its in-flight marker is
        cleared, so the next refresh may restore remote state once no other
        operation protects the key.

        Returns:
            The completed OperationRecord, or None if nothing was in flight
        """
        pending = self._in_flight.get(key)
        record = pending[0] if pending and operation is None else operation
        if not pending or not any(op is record for op in pending):
            logger.debug(f"complete() for untracked operation on {key}")
            return None

        pending[:] = [op for op in pending if op is not record]
        if not pending:
            del self._in_flight[key]

        now = self._clock()
        record.completed_at = now
        record.outcome = success
        if not success:
            return record

        if record.operation_type is OperationType.DELETE:
            record.expires_at = now + self.delete_window
            self._recently_deleted[key] = record
            self._recently_completed.pop(key, None)
        else:
            record.expires_at = now + self.save_window
            self._recently_completed[key] = record
            self._recently_deleted.pop(key, None)
        return record

    def is_protected(self, key: Hashable) -> bool:
        """True while key is in flight or inside a post-write window."""
        if key in self._in_flight:
            return True
        now = self._clock()
        for table in (self._recently_completed, self._recently_deleted):
            record = table.get(key)
            if record is None:
                continue
            if record.expires_at is not None and record.expires_at > now:
                return True
            del table[key]
        return False

    def is_in_flight(self, key: Hashable) -> bool:
        return key in self._in_flight

    def protected_keys(self) -> List[Hashable]:
        """All keys currently protected (purges expired entries)."""
        keys = set(self._in_flight) | set(self._recently_completed) | set(self._recently_deleted)
        return [key for key in keys if self.is_protected(key)]

    def reset(self) -> None:
        """Forget all tracking; used by force refresh."""
        self._in_flight.clear()
        self._recently_completed.clear()
        self._recently_deleted.clear()
        logger.debug("Operation tracker reset")

    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        """Current tracking state for diagnostics."""
        self.protected_keys()
        return {
            "in_flight": [r.to_dict() for ops in self._in_flight.values() for r in ops],
            "recently_completed": [r.to_dict() for r in self._recently_completed.values()],
            "recently_deleted": [r.to_dict() for r in self._recently_deleted.values()],
        }
