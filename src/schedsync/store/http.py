"""
HTTP record store

RecordStore backed by a remote record service speaking a CloudKit-style JSON
protocol:

    GET    {endpoint}/account                              -> {"status": "available"}
    GET    {endpoint}/partitions                           -> {"partitions": ["..."]}
    PUT    {endpoint}/partitions/{name}                    -> 201 created / 200 existed
    POST   {endpoint}/partitions/{name}/records/query      -> {"records": [...], "continuationMarker": "..."}
    GET    {endpoint}/partitions/{name}/records/{id}       -> record
    POST   {endpoint}/partitions/{name}/records            -> created record
    PUT    {endpoint}/partitions/{name}/records/{id}       -> updated record (recordChangeTag enforced)
    DELETE {endpoint}/partitions/{name}/records/{id}

Record JSON:
    {"recordName": "...", "recordType": "CD_DailySchedule",
     "recordChangeTag": "...",
     "fields": {"CD_date": {"value": 1757030400000, "type": "TIMESTAMP"},
                "CD_line1": {"value": "OR", "type": "STRING"}},
     "created": {"timestamp": 1757030400000},
     "modified": {"timestamp": 1757030400000}}

requests is blocking; every call runs in a worker thread via asyncio.to_thread.
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from ..errors import (
    ConflictError,
    RateLimitedError,
    RecordNotFoundError,
    TransientError,
    UnavailableError,
)
from .base import (
    DEFAULT_PAGE_SIZE,
    AccountStatus,
    PartitionHandle,
    Predicate,
    QueryPage,
    RecordStore,
    StoredRecord,
)

logger = logging.getLogger(__name__)

_PREDICATE_COMPARATORS = {
    "eq": "EQUALS",
    "ge": "GREATER_THAN_OR_EQUALS",
    "lt": "LESS_THAN",
}


def _to_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _from_millis(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def encode_field(value: Any) -> Dict[str, Any]:
    """Wrap a Python value in the service's typed field envelope."""
    if isinstance(value, datetime):
        return {"value": _to_millis(value), "type": "TIMESTAMP"}
    if isinstance(value, bool):
        return {"value": int(value), "type": "INT64"}
    if isinstance(value, int):
        return {"value": value, "type": "INT64"}
    if value is None:
        return {"value": None, "type": "STRING"}
    return {"value": str(value), "type": "STRING"}


def decode_field(envelope: Any) -> Any:
    """Unwrap a typed field envelope; bare values pass through unchanged."""
    if not isinstance(envelope, dict) or "value" not in envelope:
        return envelope
    value = envelope["value"]
    if envelope.get("type") == "TIMESTAMP" and value is not None:
        try:
            return _from_millis(value)
        except (TypeError, ValueError):
            return value
    return value


class HTTPRecordStore(RecordStore):
    """
    RecordStore talking to a remote record service over HTTPS.

    Authentication uses a bearer token (default: SCHEDSYNC_API_TOKEN env var).
    HTTP and network failures are translated into schedsync.errors types:

        401 / 403           UnavailableError (account unavailable / restricted)
        404                 RecordNotFoundError
        409 / 412           ConflictError
        429                 RateLimitedError
        5xx, timeouts       TransientError
        connection refused  UnavailableError
    """

    def __init__(
        self,
        endpoint: str,
        api_token: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            endpoint: Base URL of the record service
            api_token: Bearer token (default: SCHEDSYNC_API_TOKEN env var)
            page_size: Requested results per query page
            timeout: Per-request timeout in seconds
            session: Optional preconfigured requests.Session
        """
        self.endpoint = endpoint.rstrip("/")
        self.page_size = page_size
        self.timeout = timeout
        self._session = session or requests.Session()

        token = api_token or os.getenv("SCHEDSYNC_API_TOKEN")
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"
        self._session.headers.setdefault("Content-Type", "application/json")

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------

    async def account_status(self) -> AccountStatus:
        try:
            data = await self._request("GET", "/account")
        except UnavailableError as e:
            if e.status == AccountStatus.RESTRICTED.value:
                return AccountStatus.RESTRICTED
            return AccountStatus.UNAVAILABLE
        try:
            return AccountStatus(data.get("status", "unavailable"))
        except ValueError:
            logger.warning(f"Unknown account status from service: {data.get('status')}")
            return AccountStatus.UNAVAILABLE

    async def query(
        self,
        record_type: str,
        partition: str,
        predicates: Optional[List[Predicate]] = None,
        sort_by: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> QueryPage:
        body: Dict[str, Any] = {
            "query": {
                "recordType": record_type,
                "filterBy": [
                    {
                        "fieldName": p.field_name,
                        "comparator": _PREDICATE_COMPARATORS[p.op],
                        "fieldValue": encode_field(p.value),
                    }
                    for p in (predicates or [])
                ],
                "sortBy": [{"fieldName": sort_by, "ascending": True}] if sort_by else [],
            },
            "resultsLimit": min(limit or self.page_size, self.page_size),
        }
        if cursor:
            body["continuationMarker"] = cursor

        data = await self._request(
            "POST", f"/partitions/{partition}/records/query", json=body, partition=partition
        )
        records = [self._parse_record(r, partition) for r in data.get("records", [])]
        return QueryPage(records=records, cursor=data.get("continuationMarker") or None)

    async def fetch(self, partition: str, storage_id: str) -> StoredRecord:
        data = await self._request(
            "GET", f"/partitions/{partition}/records/{storage_id}",
            partition=partition, storage_id=storage_id,
        )
        return self._parse_record(data, partition)

    async def save(self, record: StoredRecord) -> StoredRecord:
        payload = {
            "recordName": record.storage_id,
            "recordType": record.record_type,
            "fields": {name: encode_field(value) for name, value in record.fields.items()},
        }
        if record.change_tag is None:
            data = await self._request(
                "POST", f"/partitions/{record.partition}/records", json=payload,
                partition=record.partition, storage_id=record.storage_id,
            )
        else:
            payload["recordChangeTag"] = record.change_tag
            data = await self._request(
                "PUT", f"/partitions/{record.partition}/records/{record.storage_id}", json=payload,
                partition=record.partition, storage_id=record.storage_id,
            )
        return self._parse_record(data, record.partition)

    async def delete(self, partition: str, storage_id: str) -> None:
        await self._request(
            "DELETE", f"/partitions/{partition}/records/{storage_id}",
            partition=partition, storage_id=storage_id,
        )

    async def ensure_partition(self, name: str) -> PartitionHandle:
        data = await self._request("PUT", f"/partitions/{name}", partition=name)
        return PartitionHandle(name=name, created=bool(data.get("created", False)))

    async def list_partitions(self) -> List[str]:
        data = await self._request("GET", "/partitions")
        return list(data.get("partitions", []))

    async def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        partition: Optional[str] = None,
        storage_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await asyncio.to_thread(
            self._request_sync, method, path, json, partition, storage_id
        )

    def _request_sync(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]],
        partition: Optional[str],
        storage_id: Optional[str],
    ) -> Dict[str, Any]:
        url = f"{self.endpoint}{path}"
        try:
            response = self._session.request(method, url, json=json, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            raise UnavailableError(f"Cannot reach record service: {e}") from e
        except requests.exceptions.Timeout as e:
            raise TransientError(f"Request to {url} timed out") from e
        except requests.exceptions.RequestException as e:
            raise TransientError(f"Request to {url} failed: {e}") from e

        status = response.status_code
        logger.debug(f"{method} {url} -> {status}")

        if status == 401:
            raise UnavailableError("Not signed in to record service", status=AccountStatus.UNAVAILABLE.value)
        if status == 403:
            raise UnavailableError("Record service access restricted", status=AccountStatus.RESTRICTED.value)
        if status == 404:
            raise RecordNotFoundError(storage_id or "*", partition)
        if status in (409, 412):
            raise ConflictError(storage_id or "*")
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(retry_after=float(retry_after) if retry_after else None)
        if status >= 500:
            raise TransientError(f"Record service error {status} for {method} {path}")
        if status >= 400:
            raise TransientError(f"Unexpected response {status} for {method} {path}")

        if status == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransientError(f"Malformed response body from {url}") from e

    @staticmethod
    def _parse_record(data: Dict[str, Any], partition: str) -> StoredRecord:
        return StoredRecord(
            record_type=data.get("recordType", ""),
            storage_id=data.get("recordName", ""),
            partition=data.get("partition", partition),
            fields={name: decode_field(env) for name, env in (data.get("fields") or {}).items()},
            change_tag=data.get("recordChangeTag"),
            created_at=_from_millis((data.get("created") or {}).get("timestamp")),
            modified_at=_from_millis((data.get("modified") or {}).get("timestamp")),
        )
