"""
Shared fixtures: settings, an in-memory range store and a wired app.
"""

from __future__ import annotations

import copy
from typing import Any

import pytest
from fastapi.testclient import TestClient

from auth.security import TokenService, hash_password
from core.config import Settings
from core.errors import StoreWriteFailed
from core.range_store import (
    BATCH_WRITE_LIMIT,
    FilterCondition,
    QueryPage,
    QuerySpec,
    TableSchema,
    decode_cursor,
    encode_cursor,
)
from earthquakes.schemas import events_table
from request_stats.schemas import request_log_table

ADMIN_PASSWORD = "s3cret-pass"
FEED_URL = "https://feed.test/summary/all_week.geojson"


def _lookup(item: dict[str, Any], path: tuple[str, ...]) -> Any:
    value: Any = item
    for part in path:
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _matches(condition: FilterCondition, item: dict[str, Any]) -> bool:
    value = _lookup(item, condition.path)
    if value is None:
        return False
    if condition.op == "contains":
        return str(condition.value).lower() in str(value).lower()
    if condition.op == ">=":
        return float(value) >= float(condition.value)
    return float(value) <= float(condition.value)


class InMemoryRangeStore:
    """
    Same call contract as core.range_store.RangeStore, kept in a dict.
    """

    def __init__(self, tables: list[TableSchema]) -> None:
        self._tables = {t.name: t for t in tables}
        self.items: dict[str, dict[str, dict[str, Any]]] = {t.name: {} for t in tables}
        self.batch_calls: list[int] = []
        self.queries: list[QuerySpec] = []
        self.fail_on_batch_call: int | None = None
        self.fail_puts = False
        self.fail_queries = False

    def _put(self, table: str, item: dict[str, Any]) -> None:
        schema = self._tables[table]
        for attr in (schema.id_attribute, schema.key.partition_key, schema.key.sort_key):
            if item.get(attr) is None:
                raise StoreWriteFailed(f"Item is missing key attribute '{attr}'.")
        self.items[table][str(item[schema.id_attribute])] = copy.deepcopy(item)

    async def put_item(self, table: str, item: dict[str, Any]) -> None:
        if self.fail_puts:
            raise StoreWriteFailed("store is read-only")
        self._put(table, item)

    async def batch_put_items(self, table: str, items: list[dict[str, Any]]) -> int:
        written = 0
        for start in range(0, len(items), BATCH_WRITE_LIMIT):
            if self.fail_on_batch_call == len(self.batch_calls):
                raise StoreWriteFailed("Failed to batch insert items. Reason: throttled")
            chunk = items[start : start + BATCH_WRITE_LIMIT]
            self.batch_calls.append(len(chunk))
            for item in chunk:
                self._put(table, item)
            written += len(chunk)
        return written

    async def query(self, spec: QuerySpec) -> QueryPage:
        self.queries.append(spec)
        if self.fail_queries:
            raise RuntimeError("connection reset by peer")

        key = self._tables[spec.table].key_for(spec.index_name)
        rows = [
            (int(item[key.sort_key]), item_id, item)
            for item_id, item in self.items[spec.table].items()
            if item.get(key.partition_key) == spec.partition_value and item.get(key.sort_key) is not None
        ]

        rng = spec.sort_range
        if rng is not None and rng.lower is not None:
            rows = [r for r in rows if r[0] >= rng.lower]
        if rng is not None and rng.upper is not None:
            rows = [r for r in rows if r[0] <= rng.upper]

        rows.sort(key=lambda r: (r[0], r[1]), reverse=not spec.scan_forward)

        if spec.cursor:
            last = decode_cursor(spec.cursor)
            if spec.scan_forward:
                rows = [r for r in rows if (r[0], r[1]) > last]
            else:
                rows = [r for r in rows if (r[0], r[1]) < last]

        page = rows[: spec.limit] if spec.limit is not None else rows
        items = [copy.deepcopy(r[2]) for r in page if all(_matches(c, r[2]) for c in spec.filters)]

        cursor = None
        if spec.limit is not None and page and len(page) >= spec.limit:
            cursor = encode_cursor(page[-1][0], page[-1][1])
        return QueryPage(items=items, cursor=cursor)


def make_feature(
    index: int,
    *,
    time_ms: int,
    mag: float | None = 2.5,
    place: str = "10 km NE of Somewhere, CA",
    event_type: str = "earthquake",
) -> dict[str, Any]:
    return {
        "type": "Feature",
        "id": f"us{index:06d}",
        "properties": {
            "mag": mag,
            "place": place,
            "time": time_ms,
            "updated": time_ms + 1000,
            "status": "reviewed",
            "sig": 100,
            "type": event_type,
        },
        "geometry": {"type": "Point", "coordinates": [-117.5, 35.7, 8.1]},
    }


@pytest.fixture(scope="session")
def admin_password_hash() -> str:
    return hash_password(ADMIN_PASSWORD)


@pytest.fixture
def settings(admin_password_hash: str) -> Settings:
    return Settings(
        jwt_secret="test-secret",
        admin_username="admin",
        admin_password_hash=admin_password_hash,
        feed_url=FEED_URL,
        events_table="events-test",
        request_log_table="request-log-test",
        local_timezone="Australia/Melbourne",
        request_logging_enabled=True,
    )


@pytest.fixture
def store(settings: Settings) -> InMemoryRangeStore:
    return InMemoryRangeStore(
        [events_table(settings.events_table), request_log_table(settings.request_log_table)]
    )


@pytest.fixture
def token_service(settings: Settings) -> TokenService:
    return TokenService.from_settings(settings)


@pytest.fixture
def app(settings: Settings, store: InMemoryRangeStore):
    from main import create_app

    return create_app(settings, store=store)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def auth_headers(token_service: TokenService) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_service.issue_access_token('admin')}"}
