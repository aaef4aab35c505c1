"""
Request-log record model and table layout.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from core.range_store import KeySchema, TableSchema

REQ_DATE_INDEX = "ReqDateIndex"


def request_log_table(name: str) -> TableSchema:
    return TableSchema(
        name=name,
        id_attribute="reqId",
        key=KeySchema(partition_key="endpointName", sort_key="reqTimestamp"),
        indexes={REQ_DATE_INDEX: KeySchema(partition_key="reqDate", sort_key="reqTimestamp")},
    )


class RequestLogRecord(BaseModel):
    reqId: str
    reqTimestamp: int
    reqDate: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    reqReadableTimestampUTC: str
    reqReadableTimestampLocal: str
    endpointName: str
    reqIp: str
    reqGeoLocation: dict[str, Any] | None = None
    reqPath: str
    reqMethod: str
    reqHeaders: dict[str, str] = Field(default_factory=dict)
    reqQueryParams: dict[str, Any] = Field(default_factory=dict)
    reqBody: Any = None
    executionTimeInSecond: float
    responseStatus: int
    responseData: Any = None
