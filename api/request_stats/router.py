"""
API request statistics endpoints.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Request

from auth import dependencies as auth_dependencies
from core.errors import ValidationFailed
from core.responses import envelope

from .aggregation import RequestStatsService

router = APIRouter(
    prefix="/earthquakes-data/statistic",
    dependencies=[Depends(auth_dependencies.require_auth)],
)


def get_stats_service(request: Request) -> RequestStatsService:
    return request.app.state.request_stats


@router.get("/api-request-count")
async def api_request_count(
    request: Request,
    req_date: str = Query(..., alias="reqDate", pattern=r"^\d{4}-\d{2}-\d{2}$"),
    stats: RequestStatsService = Depends(get_stats_service),
) -> dict:
    try:
        date.fromisoformat(req_date)
    except ValueError as exc:
        raise ValidationFailed("reqDate must be a valid date.") from exc

    result = await stats.daily_request_stats(req_date)
    message = (
        "API request statistics retrieved successfully."
        if result
        else "No statistics found for the given date."
    )
    return envelope(request, 200, message, result)
