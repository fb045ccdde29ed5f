"""
Error taxonomy for schedule sync.

Every failure that crosses a component boundary is one of these types, so the
UI can drive its saved / pending / error indicator directly from them and the
ops CLI can print something meaningful.

    SyncError
    ├── UnavailableError          no connectivity or no usable account
    ├── ConflictError             stale change tag on update
    ├── RecordNotFoundError       target record missing remotely
    ├── TransientError            network hiccup, server busy
    │   └── RateLimitedError      store asked us to slow down
    ├── RecordValidationError     bad field count or length (also ValueError)
    ├── NoDataFoundError          migration source partition is empty
    ├── VerificationMismatchError migration destination count is wrong
    ├── PartialBatchFailure       dedupe pass finished with failed deletes
    └── MigrationStateError       resume() without a resumable job
"""

from typing import Any, Optional


class SyncError(Exception):
    """Base exception for all schedule sync errors"""
    pass


class UnavailableError(SyncError):
    """The backing store cannot be reached or the account is not usable"""

    def __init__(self, message: str = "Backing store unavailable", status: Optional[str] = None):
        super().__init__(message)
        self.status = status


class ConflictError(SyncError):
    """An update carried a change tag older than the store's current one"""

    def __init__(self, storage_id: str, message: Optional[str] = None):
        super().__init__(message or f"Record {storage_id} was modified by another writer")
        self.storage_id = storage_id


class RecordNotFoundError(SyncError):
    """The record (or its partition) does not exist in the store"""

    def __init__(self, storage_id: str, partition: Optional[str] = None):
        where = f" in partition '{partition}'" if partition else ""
        super().__init__(f"Record {storage_id} not found{where}")
        self.storage_id = storage_id
        self.partition = partition


class TransientError(SyncError):
    """A failure expected to go away on retry; the caller decides when"""
    pass


class RateLimitedError(TransientError):
    """The store throttled the request"""

    def __init__(self, message: str = "Rate limited by backing store", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class RecordValidationError(SyncError, ValueError):
    """Field content violates the record kind's constraints"""
    pass


class NoDataFoundError(SyncError):
    """A migration source partition holds no records"""

    def __init__(self, partition: str):
        super().__init__(f"No data found in partition '{partition}'")
        self.partition = partition


class VerificationMismatchError(SyncError):
    """Migration verification found a different record count than expected"""

    def __init__(self, expected: int, found: int):
        super().__init__(f"Verification failed: expected {expected} records, found {found}")
        self.expected = expected
        self.found = found


class PartialBatchFailure(SyncError):
    """A dedupe pass completed but some deletes failed"""

    def __init__(self, removed: int, failed: int, report: Any = None):
        super().__init__(f"Dedupe removed {removed} records, {failed} deletes failed")
        self.removed = removed
        self.failed = failed
        self.report = report


class MigrationStateError(SyncError):
    """The migrator is not in a state that allows the requested action"""
    pass
