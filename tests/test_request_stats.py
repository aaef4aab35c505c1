"""Tests for request-log aggregation, recording and the statistics endpoint."""

from __future__ import annotations

import itertools
import logging
from dataclasses import replace
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import geoip2.database
import geoip2.errors
import pytest
from fastapi.testclient import TestClient

from core.errors import QueryFailed
from request_stats.aggregation import RequestStatsService, aggregate_request_counts
from request_stats.geolocation import GeoLocator
from request_stats.request_log import CompletedCall, RequestLogRecorder, build_log_record, redact

ROWS = [
    {"reqDate": "2025-01-01", "endpointName": "A"},
    {"reqDate": "2025-01-01", "endpointName": "A"},
    {"reqDate": "2025-01-01", "endpointName": "B"},
]


def _log_row(i: int, *, req_date: str, endpoint: str) -> dict:
    return {
        "reqId": f"req-{req_date}-{i}",
        "reqTimestamp": 1_735_700_000_000 + i,
        "reqDate": req_date,
        "endpointName": endpoint,
    }


def _call(**overrides) -> CompletedCall:
    metadata = {
        "reqId": "0b7f5a2e-2b43-4c4e-9d0e-0f3c2a1b9c11",
        "reqTimestamp": 1_735_700_000_000,
        "reqDate": "2025-01-01",
        "reqReadableTimestampUTC": "2025-01-01T02:53:20Z",
        "reqReadableTimestampLocal": "2025-01-01 13:53:20 AEDT",
        "reqIp": "203.0.113.9",
        "reqGeoLocation": None,
        "reqPath": "/auth/login",
        "reqMethod": "POST",
        "reqHeaders": {"authorization": "[redacted]", "user-agent": "pytest"},
        "reqQueryParams": {},
        "reqBody": {"username": "admin", "password": "[redacted]"},
    }
    values = {
        "metadata": metadata,
        "endpoint_name": "/auth/login",
        "status_code": 200,
        "response_payload": {"status": 200, "data": {"accessToken": "abc", "refreshToken": "def"}},
        "elapsed_s": 0.01234,
    }
    values.update(overrides)
    return CompletedCall(**values)


def test_aggregate_empty_input() -> None:
    assert aggregate_request_counts([]) == {}


def test_aggregate_counts_per_date_and_endpoint() -> None:
    assert aggregate_request_counts(ROWS) == {"2025-01-01": {"A": 2, "B": 1}}


def test_aggregate_is_order_independent() -> None:
    results = {
        tuple(sorted(aggregate_request_counts(list(p))["2025-01-01"].items()))
        for p in itertools.permutations(ROWS)
    }
    assert results == {(("A", 2), ("B", 1))}


@pytest.mark.asyncio
async def test_daily_stats_reads_only_the_requested_day(store, settings) -> None:
    table = settings.request_log_table
    for i in range(3):
        store._put(table, _log_row(i, req_date="2025-01-01", endpoint="/earthquakes-data"))
    store._put(table, _log_row(9, req_date="2025-01-01", endpoint="/auth/login"))
    store._put(table, _log_row(5, req_date="2025-01-02", endpoint="/auth/login"))

    stats = await RequestStatsService.from_settings(store, settings).daily_request_stats("2025-01-01")

    assert stats == {"2025-01-01": {"/earthquakes-data": 3, "/auth/login": 1}}
    assert store.queries[-1].index_name == "ReqDateIndex"


@pytest.mark.asyncio
async def test_daily_stats_for_empty_day(store, settings) -> None:
    stats = await RequestStatsService.from_settings(store, settings).daily_request_stats("2030-01-01")

    assert stats == {}


@pytest.mark.asyncio
async def test_daily_stats_store_failure(store, settings) -> None:
    store.fail_queries = True

    with pytest.raises(QueryFailed):
        await RequestStatsService.from_settings(store, settings).daily_request_stats("2025-01-01")


def test_redact_hides_tokens_and_passwords() -> None:
    assert redact({"a": [{"password": "x"}], "refreshToken": "y", "keep": 1}) == {
        "a": [{"password": "[redacted]"}],
        "refreshToken": "[redacted]",
        "keep": 1,
    }


def test_build_log_record() -> None:
    record = build_log_record(_call())

    assert record.endpointName == "/auth/login"
    assert record.executionTimeInSecond == 0.012
    assert record.responseStatus == 200
    assert record.responseData["data"] == {"accessToken": "[redacted]", "refreshToken": "[redacted]"}


@pytest.mark.asyncio
async def test_recorder_stores_record(store, settings) -> None:
    recorder = RequestLogRecorder.from_settings(store, settings)

    await recorder.record(_call())

    rows = list(store.items[settings.request_log_table].values())
    assert len(rows) == 1
    assert rows[0]["reqDate"] == "2025-01-01"


@pytest.mark.asyncio
async def test_recorder_never_raises(store, settings, caplog) -> None:
    store.fail_puts = True
    recorder = RequestLogRecorder(store, table=settings.request_log_table, tz=ZoneInfo("UTC"))

    with caplog.at_level(logging.ERROR, logger="request_stats.request_log"):
        await recorder.record(_call())

    assert "request_log_failed" in caplog.text


def test_completed_requests_are_logged_by_route(client, store, settings, auth_headers) -> None:
    client.get("/earthquakes-data", params={"pageSize": 5, "sort": "occurrenceTimestamp", "sortOrder": "desc"}, headers=auth_headers)
    client.get("/earthquakes-data", params={"pageSize": 5, "sort": "occurrenceTimestamp", "sortOrder": "asc"}, headers=auth_headers)
    client.post("/auth/login", json={"username": "admin", "password": "nope"})

    rows = list(store.items[settings.request_log_table].values())
    assert sorted(r["endpointName"] for r in rows) == ["/auth/login", "/earthquakes-data", "/earthquakes-data"]

    login = next(r for r in rows if r["endpointName"] == "/auth/login")
    assert login["responseStatus"] == 401
    assert login["reqBody"] == {"username": "admin", "password": "[redacted]"}
    assert login["responseData"]["success"] is False

    listed = next(r for r in rows if r["endpointName"] == "/earthquakes-data")
    assert listed["reqHeaders"]["authorization"] == "[redacted]"
    assert listed["reqQueryParams"]["pageSize"] == "5"


def test_log_write_failure_does_not_affect_response(client, store, auth_headers) -> None:
    store.fail_puts = True

    response = client.get("/earthquakes-data", params={"pageSize": 5, "sort": "occurrenceTimestamp", "sortOrder": "desc"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_stats_endpoint(client, store, settings, auth_headers) -> None:
    store._put(settings.request_log_table, _log_row(1, req_date="2025-01-01", endpoint="A"))
    store._put(settings.request_log_table, _log_row(2, req_date="2025-01-01", endpoint="A"))
    store._put(settings.request_log_table, _log_row(3, req_date="2025-01-01", endpoint="B"))

    response = client.get(
        "/earthquakes-data/statistic/api-request-count",
        params={"reqDate": "2025-01-01"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "API request statistics retrieved successfully."
    assert body["data"] == {"2025-01-01": {"A": 2, "B": 1}}


@pytest.mark.parametrize("req_date", ["2025-1-1", "2025-02-30", "yesterday"])
def test_stats_endpoint_rejects_bad_dates(client, auth_headers, req_date: str) -> None:
    response = client.get(
        "/earthquakes-data/statistic/api-request-count",
        params={"reqDate": req_date},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


class FakeCityReader:
    """Stands in for geoip2.database.Reader with a fixed lookup table."""

    def __init__(self, path: str) -> None:
        self.path = path
        self.closed = False

    def city(self, ip: str):
        if ip == "203.0.113.9":
            return SimpleNamespace(
                country=SimpleNamespace(iso_code="AU"),
                subdivisions=SimpleNamespace(most_specific=SimpleNamespace(iso_code="VIC")),
                city=SimpleNamespace(name="Melbourne"),
                location=SimpleNamespace(latitude=-37.8, longitude=144.9),
            )
        if ip == "testclient":
            raise ValueError(f"'{ip}' does not appear to be an IPv4 or IPv6 address")
        raise geoip2.errors.AddressNotFoundError(f"The address {ip} is not in the database.")

    def close(self) -> None:
        self.closed = True


def test_geolocator_is_disabled_without_database(settings) -> None:
    assert GeoLocator.from_settings(settings) is None


def test_geolocator_lookup(settings, monkeypatch) -> None:
    monkeypatch.setattr(geoip2.database, "Reader", FakeCityReader)
    locator = GeoLocator.from_settings(replace(settings, geoip_db_path="/data/GeoLite2-City.mmdb"))

    assert locator.lookup("203.0.113.9") == {
        "country": "AU",
        "region": "VIC",
        "city": "Melbourne",
        "ll": [-37.8, 144.9],
    }
    assert locator.lookup("198.51.100.7") is None
    assert locator.lookup("testclient") is None
    assert locator.lookup("unknown") is None


def _logged_rows(store, settings) -> list[dict]:
    return list(store.items[settings.request_log_table].values())


def test_forwarded_for_is_ignored_by_default(client, store, settings) -> None:
    client.get("/health", headers={"X-Forwarded-For": "203.0.113.9"})

    (row,) = _logged_rows(store, settings)
    assert row["reqIp"] == "testclient"
    assert row["reqGeoLocation"] is None


def test_trusted_proxy_ip_is_geolocated(store, settings, monkeypatch) -> None:
    from main import create_app

    monkeypatch.setattr(geoip2.database, "Reader", FakeCityReader)
    app = create_app(
        replace(settings, geoip_db_path="/data/GeoLite2-City.mmdb", trust_forwarded_for=True),
        store=store,
    )

    with TestClient(app) as client:
        client.get("/health", headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
        client.get("/health")

    assert app.state.request_log_recorder.locator._reader.closed is True
    rows = {r["reqIp"]: r for r in _logged_rows(store, settings)}
    assert set(rows) == {"203.0.113.9", "testclient"}
    assert rows["203.0.113.9"]["reqGeoLocation"]["city"] == "Melbourne"
    assert rows["testclient"]["reqGeoLocation"] is None
