"""
SQLite record store

Local persistent RecordStore used by the ops CLI when no remote service is
configured. Same semantics as the remote store (pages, cursors, change tags,
partitions), so dedupe and migration behave identically against it.

Pattern: persistent connection guarded by a lock, WAL mode, blocking calls
pushed to worker threads with asyncio.to_thread.
"""

import asyncio
import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import ConflictError, RecordNotFoundError, TransientError
from ..models import parse_timestamp
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

_TIMESTAMP_TAG = "$ts"


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_TIMESTAMP_TAG: value.isoformat()}
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict) and _TIMESTAMP_TAG in value:
        return parse_timestamp(value[_TIMESTAMP_TAG])
    return value


class SQLiteRecordStore(RecordStore):
    """
    RecordStore persisted in a single SQLite file.

    Usage:
        store = SQLiteRecordStore(Path("~/.schedsync/store.sqlite"))
        await store.ensure_partition("user_schedule")
    """

    def __init__(
        self,
        db_path: Path,
        page_size: int = DEFAULT_PAGE_SIZE,
        enable_wal: bool = True,
    ):
        """
        Args:
            db_path: Path to SQLite database file (parent dirs are created)
            page_size: Maximum records per query page
            enable_wal: Enable WAL mode (default: True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.page_size = page_size
        self._enable_wal = enable_wal

        # check_same_thread=False: calls arrive from asyncio worker threads,
        # serialized by _db_lock
        self._conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level=None,
            timeout=30.0,
        )
        self._db_lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables for partitions and records"""
        if self._enable_wal:
            self._conn.execute("PRAGMA journal_mode=WAL")

        with self._db_lock:
            self._conn.executescript("""
                CREATE TABLE IF NOT EXISTS partitions (
                    name TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS records (
                    partition TEXT NOT NULL,
                    storage_id TEXT NOT NULL,
                    record_type TEXT NOT NULL,
                    fields TEXT NOT NULL,  -- JSON
                    change_tag TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    modified_at TEXT NOT NULL,
                    PRIMARY KEY (partition, storage_id)
                );

                CREATE INDEX IF NOT EXISTS idx_records_type ON records(partition, record_type);
            """)

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------

    async def account_status(self) -> AccountStatus:
        return AccountStatus.AVAILABLE

    async def query(
        self,
        record_type: str,
        partition: str,
        predicates: Optional[List[Predicate]] = None,
        sort_by: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> QueryPage:
        return await asyncio.to_thread(
            self._query_sync, record_type, partition, predicates, sort_by, cursor, limit
        )

    async def fetch(self, partition: str, storage_id: str) -> StoredRecord:
        return await asyncio.to_thread(self._fetch_sync, partition, storage_id)

    async def save(self, record: StoredRecord) -> StoredRecord:
        return await asyncio.to_thread(self._save_sync, record)

    async def delete(self, partition: str, storage_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, partition, storage_id)

    async def ensure_partition(self, name: str) -> PartitionHandle:
        return await asyncio.to_thread(self._ensure_partition_sync, name)

    async def list_partitions(self) -> List[str]:
        return await asyncio.to_thread(self._list_partitions_sync)

    async def close(self) -> None:
        with self._db_lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _query_sync(
        self,
        record_type: str,
        partition: str,
        predicates: Optional[List[Predicate]],
        sort_by: Optional[str],
        cursor: Optional[str],
        limit: Optional[int],
    ) -> QueryPage:
        with self._db_lock:
            self._require_partition(partition)
            rows = self._execute(
                """
                SELECT partition, storage_id, record_type, fields, change_tag, created_at, modified_at
                FROM records
                WHERE partition = ? AND record_type = ?
                ORDER BY storage_id
                """,
                (partition, record_type),
            ).fetchall()

        matching = [r for r in map(self._row_to_record, rows) if matches_all(predicates, r.fields)]
        if sort_by:
            try:
                matching.sort(key=lambda r: (sort_by not in r.fields, r.fields.get(sort_by)))
            except TypeError:
                logger.debug(f"Mixed value types in '{sort_by}', ordering by storage id only")

        offset = int(cursor) if cursor else 0
        size = min(limit or self.page_size, self.page_size)
        page = matching[offset:offset + size]
        next_offset = offset + len(page)
        return QueryPage(
            records=page,
            cursor=str(next_offset) if next_offset < len(matching) else None,
        )

    def _fetch_sync(self, partition: str, storage_id: str) -> StoredRecord:
        with self._db_lock:
            row = self._select_one(partition, storage_id)
        if row is None:
            raise RecordNotFoundError(storage_id, partition)
        return self._row_to_record(row)

    def _save_sync(self, record: StoredRecord) -> StoredRecord:
        now = datetime.now(timezone.utc)
        new_tag = uuid.uuid4().hex
        fields_json = json.dumps({k: _encode_value(v) for k, v in record.fields.items()})

        with self._db_lock:
            self._require_partition(record.partition)
            existing = self._select_one(record.partition, record.storage_id)

            if record.change_tag is None:
                if existing is not None:
                    raise ConflictError(record.storage_id, f"Record {record.storage_id} already exists")
                created_at = now.isoformat()
                self._execute(
                    """
                    INSERT INTO records
                    (partition, storage_id, record_type, fields, change_tag, created_at, modified_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (record.partition, record.storage_id, record.record_type,
                     fields_json, new_tag, created_at, now.isoformat()),
                )
            else:
                if existing is None:
                    raise RecordNotFoundError(record.storage_id, record.partition)
                if existing[4] != record.change_tag:
                    raise ConflictError(record.storage_id)
                created_at = existing[5]
                self._execute(
                    """
                    UPDATE records SET fields = ?, change_tag = ?, modified_at = ?
                    WHERE partition = ? AND storage_id = ?
                    """,
                    (fields_json, new_tag, now.isoformat(), record.partition, record.storage_id),
                )

        return StoredRecord(
            record_type=record.record_type,
            storage_id=record.storage_id,
            partition=record.partition,
            fields=dict(record.fields),
            change_tag=new_tag,
            created_at=parse_timestamp(created_at),
            modified_at=now,
        )

    def _delete_sync(self, partition: str, storage_id: str) -> None:
        with self._db_lock:
            self._require_partition(partition)
            cursor = self._execute(
                "DELETE FROM records WHERE partition = ? AND storage_id = ?",
                (partition, storage_id),
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError(storage_id, partition)

    def _ensure_partition_sync(self, name: str) -> PartitionHandle:
        with self._db_lock:
            cursor = self._execute(
                "INSERT OR IGNORE INTO partitions (name, created_at) VALUES (?, ?)",
                (name, datetime.now(timezone.utc).isoformat()),
            )
        created = cursor.rowcount > 0
        if created:
            logger.info(f"Created partition '{name}' in {self.db_path}")
        return PartitionHandle(name=name, created=created)

    def _list_partitions_sync(self) -> List[str]:
        with self._db_lock:
            rows = self._execute("SELECT name FROM partitions ORDER BY name").fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Helpers (callers hold _db_lock)
    # ------------------------------------------------------------------

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.OperationalError as e:
            # locked / busy database
            raise TransientError(f"SQLite operation failed: {e}") from e

    def _require_partition(self, partition: str) -> None:
        row = self._execute("SELECT 1 FROM partitions WHERE name = ?", (partition,)).fetchone()
        if row is None:
            raise RecordNotFoundError("*", partition)

    def _select_one(self, partition: str, storage_id: str) -> Optional[tuple]:
        return self._execute(
            """
            SELECT partition, storage_id, record_type, fields, change_tag, created_at, modified_at
            FROM records WHERE partition = ? AND storage_id = ?
            """,
            (partition, storage_id),
        ).fetchone()

    @staticmethod
    def _row_to_record(row: tuple) -> StoredRecord:
        fields: Dict[str, Any] = {k: _decode_value(v) for k, v in json.loads(row[3]).items()}
        return StoredRecord(
            partition=row[0],
            storage_id=row[1],
            record_type=row[2],
            fields=fields,
            change_tag=row[4],
            created_at=parse_timestamp(row[5]),
            modified_at=parse_timestamp(row[6]),
        )
