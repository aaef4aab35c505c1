"""
Earthquake data API endpoints.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from auth import dependencies as auth_dependencies
from core.errors import ValidationFailed
from core.responses import envelope

from .ingestion import IngestionPipeline
from .query import QueryEngine
from .schemas import ListEventsParams

router = APIRouter(prefix="/earthquakes-data", dependencies=[Depends(auth_dependencies.require_auth)])


def get_pipeline(request: Request) -> IngestionPipeline:
    return request.app.state.ingestion_pipeline


def get_query_engine(request: Request) -> QueryEngine:
    return request.app.state.query_engine


@router.get("/fetch-store")
async def fetch_and_store(
    request: Request,
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> dict:
    """
    Fetch the feed and store the most recent earthquakes.
    """
    summary = await pipeline.run(request.app.state.settings.feed_url)
    return envelope(
        request,
        200,
        f"Successfully fetched and stored the most recent {summary.stored} earthquakes.",
        asdict(summary),
    )


@router.get("")
async def list_earthquakes(
    request: Request,
    page_size: int = Query(..., alias="pageSize", ge=1, le=100),
    sort: Literal["occurrenceTimestamp", "magnitude"] = Query(...),
    sort_order: Literal["asc", "desc"] = Query(..., alias="sortOrder"),
    occur_start_date: str | None = Query(None, alias="occurStartDate"),
    occur_end_date: str | None = Query(None, alias="occurEndDate"),
    location: str | None = Query(None, max_length=200),
    min_magnitude: float | None = Query(None, alias="minMagnitude", ge=0),
    max_magnitude: float | None = Query(None, alias="maxMagnitude", ge=0),
    cursor: str | None = Query(None, max_length=2048),
    engine: QueryEngine = Depends(get_query_engine),
) -> dict:
    """
    Cursor-paginated, filtered earthquake listing.

    Pass the returned `cursor` back unchanged to get the next page; a page
    with fewer than `pageSize` items is not the end unless `cursor` is null.
    """
    try:
        params = ListEventsParams(
            pageSize=page_size,
            sort=sort,
            sortOrder=sort_order,
            occurStartDate=occur_start_date,
            occurEndDate=occur_end_date,
            location=location,
            minMagnitude=min_magnitude,
            maxMagnitude=max_magnitude,
            cursor=cursor,
        )
    except ValidationError as exc:
        errors = jsonable_encoder(exc.errors(), exclude={"input", "ctx", "url"})
        raise ValidationFailed("Invalid query parameters.", data=errors) from exc

    page = await engine.list_events(params)
    message = (
        "Earthquake data retrieved successfully."
        if page.items
        else "No earthquakes found for the given parameters."
    )
    return envelope(request, 200, message, page.model_dump())
