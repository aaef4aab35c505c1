"""
Earthquake ingestion pipeline.

Flow:
1) Fetch the USGS feed (one GET)
2) Keep the first `limit` features; the feed is newest-first, so these are
   the most recent events. No sort is applied here.
3) Add the storage key attributes (eventType, occurrenceTimestamp)
4) Batch-write the records (sequential chunks, no retries)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from core import usgs
from core.config import Settings
from core.errors import FetchFailed, ServiceError, StoreWriteFailed
from core.range_store import RangeStore

DEFAULT_INGEST_LIMIT = 100

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestSummary:
    fetched: int
    stored: int


def to_event_record(feature: dict[str, Any]) -> dict[str, Any]:
    """
    Flatten one feed feature into a storable record.

    Derived key attributes win over feature fields of the same name.
    """
    if not isinstance(feature, dict):
        raise FetchFailed(f"Feed feature is not an object: {type(feature).__name__}")
    properties = feature.get("properties") or {}
    if not isinstance(properties, dict):
        raise FetchFailed(f"Feed feature has malformed properties: {feature.get('id')!r}")

    event_type = properties.get("type")
    occurred_ms = properties.get("time")
    if not feature.get("id") or not event_type or occurred_ms is None:
        raise FetchFailed(f"Feed feature is missing id, type or time: {feature.get('id')!r}")

    try:
        occurrence_timestamp = int(occurred_ms)
    except (TypeError, ValueError):
        raise FetchFailed(
            f"Feed feature has a non-numeric time: {feature.get('id')!r} time={occurred_ms!r}"
        ) from None

    return {
        **feature,
        "eventType": str(event_type),
        "occurrenceTimestamp": occurrence_timestamp,
    }


def select_recent(features: list[dict[str, Any]], limit: int = DEFAULT_INGEST_LIMIT) -> list[dict[str, Any]]:
    return [to_event_record(f) for f in features[: max(0, limit)]]


class IngestionPipeline:
    def __init__(
        self,
        store: RangeStore,
        *,
        table: str,
        limit: int = DEFAULT_INGEST_LIMIT,
        timeout_s: float = 30.0,
    ) -> None:
        self._store = store
        self._table = table
        self._limit = limit
        self._timeout_s = timeout_s

    @classmethod
    def from_settings(cls, store: RangeStore, settings: Settings) -> IngestionPipeline:
        return cls(
            store,
            table=settings.events_table,
            limit=settings.ingest_limit,
            timeout_s=settings.feed_timeout_s,
        )

    async def run(self, feed_url: str) -> IngestSummary:
        logger.info("ingest_fetch url=%s", feed_url)
        features = await usgs.fetch_features(feed_url, timeout_s=self._timeout_s)

        records = select_recent(features, self._limit)
        logger.info("ingest_selected fetched=%s selected=%s", len(features), len(records))

        # TODO: retry a failed chunk instead of aborting the remaining ones.
        try:
            stored = await self._store.batch_put_items(self._table, records)
        except ServiceError:
            raise
        except Exception as exc:
            raise StoreWriteFailed(f"Failed to store earthquake data. Reason: {exc}") from exc
        logger.info("ingest_complete table=%s stored=%s", self._table, stored)
        return IngestSummary(fetched=len(features), stored=stored)
