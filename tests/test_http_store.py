"""Unit Tests for HTTPRecordStore

Tests: request shapes, field envelopes, HTTP status translation
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock, Mock

import pytest
import requests

from schedsync.errors import (
    ConflictError,
    RateLimitedError,
    RecordNotFoundError,
    TransientError,
    UnavailableError,
)
from schedsync.store import AccountStatus, Predicate, StoredRecord
from schedsync.store.http import HTTPRecordStore, decode_field, encode_field

UTC = timezone.utc
ENDPOINT = "https://records.example.test/v1"
SEPT_5_MS = 1757030400000


def _response(status_code=200, payload=None, headers=None):
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    return response


def _record_json(storage_id="ABC", tag="t1"):
    return {
        "recordName": storage_id,
        "recordType": "CD_DailySchedule",
        "recordChangeTag": tag,
        "fields": {
            "CD_date": {"value": SEPT_5_MS, "type": "TIMESTAMP"},
            "CD_line1": {"value": "OR", "type": "STRING"},
        },
        "created": {"timestamp": SEPT_5_MS},
        "modified": {"timestamp": SEPT_5_MS + 1000},
    }


@pytest.fixture
def session():
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def http_store(session):
    return HTTPRecordStore(ENDPOINT + "/", api_token="secret", page_size=50, session=session)


class TestFieldEnvelopes:
    """Tests for typed field encoding."""

    def test_encode(self):
        assert encode_field(datetime(2025, 9, 5, tzinfo=UTC)) == {"value": SEPT_5_MS, "type": "TIMESTAMP"}
        assert encode_field(9) == {"value": 9, "type": "INT64"}
        assert encode_field("OR") == {"value": "OR", "type": "STRING"}

    def test_decode(self):
        assert decode_field({"value": SEPT_5_MS, "type": "TIMESTAMP"}) == datetime(2025, 9, 5, tzinfo=UTC)
        assert decode_field({"value": 2025, "type": "INT64"}) == 2025
        assert decode_field("bare") == "bare"


class TestRequests:
    """Tests for the request shapes sent to the service."""

    def test_auth_header(self, http_store, session):
        assert session.headers["Authorization"] == "Bearer secret"

    def test_token_from_environment(self, session, monkeypatch):
        monkeypatch.setenv("SCHEDSYNC_API_TOKEN", "from-env")
        HTTPRecordStore(ENDPOINT, session=session)
        assert session.headers["Authorization"] == "Bearer from-env"

    @pytest.mark.asyncio
    async def test_query(self, http_store, session):
        session.request.return_value = _response(payload={
            "records": [_record_json()],
            "continuationMarker": "next-page",
        })

        page = await http_store.query(
            "CD_DailySchedule",
            "user_schedule",
            predicates=[Predicate("CD_date", "ge", datetime(2025, 9, 4, 12, tzinfo=UTC))],
            cursor="prev",
        )

        method, url = session.request.call_args.args
        body = session.request.call_args.kwargs["json"]
        assert method == "POST"
        assert url == f"{ENDPOINT}/partitions/user_schedule/records/query"
        assert body["query"]["recordType"] == "CD_DailySchedule"
        assert body["query"]["filterBy"][0]["comparator"] == "GREATER_THAN_OR_EQUALS"
        assert body["query"]["filterBy"][0]["fieldValue"]["type"] == "TIMESTAMP"
        assert body["resultsLimit"] == 50
        assert body["continuationMarker"] == "prev"

        assert page.cursor == "next-page"
        [record] = page.records
        assert record.storage_id == "ABC"
        assert record.partition == "user_schedule"
        assert record.fields["CD_date"] == datetime(2025, 9, 5, tzinfo=UTC)
        assert record.change_tag == "t1"
        assert record.modified_at == datetime(2025, 9, 5, 0, 0, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_last_page(self, http_store, session):
        session.request.return_value = _response(payload={"records": []})
        page = await http_store.query("CD_MonthlyNotes", "p")
        assert page.cursor is None

    @pytest.mark.asyncio
    async def test_create_and_update(self, http_store, session):
        session.request.return_value = _response(payload=_record_json())
        record = StoredRecord(
            record_type="CD_DailySchedule",
            storage_id="ABC",
            partition="p",
            fields={"CD_line1": "OR"},
        )

        await http_store.save(record)
        assert session.request.call_args.args == ("POST", f"{ENDPOINT}/partitions/p/records")

        record.change_tag = "t1"
        await http_store.save(record)
        assert session.request.call_args.args == ("PUT", f"{ENDPOINT}/partitions/p/records/ABC")
        assert session.request.call_args.kwargs["json"]["recordChangeTag"] == "t1"

    @pytest.mark.asyncio
    async def test_delete_no_content(self, http_store, session):
        session.request.return_value = _response(status_code=204)
        await http_store.delete("p", "ABC")
        assert session.request.call_args.args == ("DELETE", f"{ENDPOINT}/partitions/p/records/ABC")

    @pytest.mark.asyncio
    async def test_partitions(self, http_store, session):
        session.request.return_value = _response(payload={"created": True})
        handle = await http_store.ensure_partition("shared")
        assert handle.created

        session.request.return_value = _response(payload={"partitions": ["shared", "user_schedule"]})
        assert await http_store.list_partitions() == ["shared", "user_schedule"]


class TestStatusMapping:
    """Tests for HTTP status translation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code,error", [
        (401, UnavailableError),
        (403, UnavailableError),
        (404, RecordNotFoundError),
        (409, ConflictError),
        (412, ConflictError),
        (429, RateLimitedError),
        (500, TransientError),
        (503, TransientError),
        (418, TransientError),
    ])
    async def test_errors(self, http_store, session, status_code, error):
        session.request.return_value = _response(status_code=status_code)
        with pytest.raises(error):
            await http_store.fetch("p", "ABC")

    @pytest.mark.asyncio
    async def test_retry_after(self, http_store, session):
        session.request.return_value = _response(status_code=429, headers={"Retry-After": "3"})
        with pytest.raises(RateLimitedError) as exc_info:
            await http_store.delete("p", "ABC")
        assert exc_info.value.retry_after == 3.0

    @pytest.mark.asyncio
    async def test_connection_error(self, http_store, session):
        session.request.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(UnavailableError):
            await http_store.fetch("p", "ABC")

    @pytest.mark.asyncio
    async def test_timeout(self, http_store, session):
        session.request.side_effect = requests.exceptions.Timeout()
        with pytest.raises(TransientError):
            await http_store.fetch("p", "ABC")

    @pytest.mark.asyncio
    async def test_malformed_body(self, http_store, session):
        response = _response(payload={})
        response.json.side_effect = ValueError("not json")
        session.request.return_value = response
        with pytest.raises(TransientError):
            await http_store.fetch("p", "ABC")


class TestAccountStatus:
    """Tests for account status detection."""

    @pytest.mark.asyncio
    async def test_available(self, http_store, session):
        session.request.return_value = _response(payload={"status": "available"})
        assert await http_store.account_status() is AccountStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_restricted(self, http_store, session):
        session.request.return_value = _response(status_code=403)
        assert await http_store.account_status() is AccountStatus.RESTRICTED

    @pytest.mark.asyncio
    async def test_unreachable(self, http_store, session):
        session.request.side_effect = requests.exceptions.ConnectionError()
        assert await http_store.account_status() is AccountStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unknown_value(self, http_store, session):
        session.request.return_value = _response(payload={"status": "suspended"})
        assert await http_store.account_status() is AccountStatus.UNAVAILABLE
