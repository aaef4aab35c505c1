"""
Earthquake query engine.

Translates list parameters into a single range-store query:
- partition: eventType = "earthquake" (always)
- sort-key range: occurrenceTimestamp within the requested calendar days
- direction: sortOrder asc/desc -> forward/backward scan
- filters: magnitude bounds and place substring, applied after the page
  has been read, so a page can be short while more data remains.
  Only `cursor` says whether the scan is exhausted.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone

from core.config import Settings
from core.errors import QueryFailed, ServiceError, ValidationFailed
from core.range_store import FilterCondition, QuerySpec, RangeStore, SortKeyRange

from .schemas import (
    EARTHQUAKE_EVENT_TYPE,
    MAGNITUDE_PATH,
    PLACE_PATH,
    EventPage,
    EventRecord,
    ListEventsParams,
)

logger = logging.getLogger(__name__)


def _day_start_ms(day: date) -> int:
    return int(datetime.combine(day, time.min, tzinfo=timezone.utc).timestamp() * 1000)


def occurrence_range(start: date | None, end: date | None) -> SortKeyRange | None:
    """
    Inclusive UTC calendar days -> inclusive epoch-millisecond bounds.
    """
    if start is None and end is None:
        return None
    lower = _day_start_ms(start) if start is not None else None
    upper = _day_start_ms(end + timedelta(days=1)) - 1 if end is not None else None
    return SortKeyRange(lower=lower, upper=upper)


def build_filters(params: ListEventsParams) -> tuple[FilterCondition, ...]:
    filters: list[FilterCondition] = []
    if params.min_magnitude is not None:
        filters.append(FilterCondition(MAGNITUDE_PATH, ">=", params.min_magnitude))
    if params.max_magnitude is not None:
        filters.append(FilterCondition(MAGNITUDE_PATH, "<=", params.max_magnitude))
    if params.location:
        filters.append(FilterCondition(PLACE_PATH, "contains", params.location.strip()))
    return tuple(filters)


class QueryEngine:
    def __init__(self, store: RangeStore, *, table: str) -> None:
        self._store = store
        self._table = table

    @classmethod
    def from_settings(cls, store: RangeStore, settings: Settings) -> QueryEngine:
        return cls(store, table=settings.events_table)

    def build_query_spec(self, params: ListEventsParams) -> QuerySpec:
        # Ordering is only possible along the sort key.
        if params.sort != "occurrenceTimestamp":
            raise ValidationFailed(
                "Sorting by magnitude is not supported; use sort=occurrenceTimestamp.",
                data=[{"param": "sort", "value": params.sort}],
            )

        return QuerySpec(
            table=self._table,
            partition_value=EARTHQUAKE_EVENT_TYPE,
            sort_range=occurrence_range(params.occur_start_date, params.occur_end_date),
            filters=build_filters(params),
            limit=params.page_size,
            scan_forward=params.sort_order == "asc",
            cursor=params.cursor,
        )

    async def list_events(self, params: ListEventsParams) -> EventPage:
        spec = self.build_query_spec(params)

        try:
            page = await self._store.query(spec)
        except ServiceError:
            raise
        except Exception as exc:
            raise QueryFailed(f"Failed to query earthquake data. Reason: {exc}") from exc

        items = [EventRecord.model_validate(item) for item in page.items]
        logger.info(
            "list_events page_size=%s order=%s filters=%s returned=%s has_more=%s",
            params.page_size,
            params.sort_order,
            len(spec.filters),
            len(items),
            page.cursor is not None,
        )
        return EventPage(items=items, size=len(items), cursor=page.cursor)
