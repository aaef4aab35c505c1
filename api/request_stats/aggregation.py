"""
API request statistics: per-day, per-endpoint call counts.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from core.config import Settings
from core.errors import QueryFailed, ServiceError
from core.range_store import QuerySpec, RangeStore

from .schemas import REQ_DATE_INDEX

logger = logging.getLogger(__name__)


def aggregate_request_counts(rows: Iterable[Mapping[str, Any]]) -> dict[str, dict[str, int]]:
    """
    Count rows per (reqDate, endpointName) in one pass.

    Counting is commutative, so row order never changes the result.
    """
    stats: dict[str, dict[str, int]] = {}
    for row in rows:
        req_date = row.get("reqDate")
        endpoint = row.get("endpointName")
        if not req_date or not endpoint:
            continue
        per_endpoint = stats.setdefault(str(req_date), {})
        per_endpoint[str(endpoint)] = per_endpoint.get(str(endpoint), 0) + 1
    return stats


class RequestStatsService:
    def __init__(self, store: RangeStore, *, table: str) -> None:
        self._store = store
        self._table = table

    @classmethod
    def from_settings(cls, store: RangeStore, settings: Settings) -> RequestStatsService:
        return cls(store, table=settings.request_log_table)

    async def daily_request_stats(self, req_date: str) -> dict[str, dict[str, int]]:
        rows: list[dict[str, Any]] = []
        cursor: str | None = None

        try:
            while True:
                page = await self._store.query(
                    QuerySpec(
                        table=self._table,
                        partition_value=req_date,
                        index_name=REQ_DATE_INDEX,
                        cursor=cursor,
                    )
                )
                rows.extend(page.items)
                cursor = page.cursor
                if cursor is None:
                    break
        except ServiceError:
            raise
        except Exception as exc:
            raise QueryFailed(f"Failed to fetch API request statistics. Reason: {exc}") from exc

        if not rows:
            logger.info("request_stats_empty req_date=%s", req_date)
            return {}

        stats = aggregate_request_counts(rows)
        logger.info("request_stats req_date=%s rows=%s endpoints=%s", req_date, len(rows), len(stats.get(req_date, {})))
        return stats
