"""
Request-log recording.

`main.py` calls `RequestLogRecorder.collect_metadata` before the handler runs
and hands a `CompletedCall` to `RequestLogRecorder.record` after the response is
produced (as a response background task). Recording never raises: a failed
write is logged and the client response is unaffected.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

from fastapi import Request

from core.config import Settings
from core.range_store import RangeStore

from .geolocation import GeoLocator
from .schemas import RequestLogRecord

REDACTED = "[redacted]"
SENSITIVE_HEADERS = {"authorization", "cookie", "proxy-authorization"}
SENSITIVE_FIELDS = {"password", "refreshToken", "refresh_token", "accessToken", "access_token"}

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletedCall:
    metadata: dict[str, Any]
    endpoint_name: str
    status_code: int
    response_payload: Any
    elapsed_s: float


def redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: (REDACTED if k in SENSITIVE_FIELDS else redact(v)) for k, v in value.items()}
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def _client_ip(request: Request, *, trust_forwarded: bool = False) -> str:
    if trust_forwarded:
        forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
        if forwarded:
            return forwarded
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def _parse_body(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return redact(json.loads(raw))
    except ValueError:
        # Non-JSON bodies are summarised, not stored.
        return {"bytes": len(raw)}


def endpoint_name(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or request.url.path


async def collect_request_metadata(
    request: Request,
    *,
    tz: ZoneInfo,
    locator: GeoLocator | None = None,
    trust_forwarded: bool = False,
    now_ms: int | None = None,
) -> dict[str, Any]:
    req_timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    utc_dt = datetime.fromtimestamp(req_timestamp / 1000, tz=timezone.utc)
    local_dt = utc_dt.astimezone(tz)

    headers = {
        k: (REDACTED if k.lower() in SENSITIVE_HEADERS else v)
        for k, v in request.headers.items()
    }
    req_ip = _client_ip(request, trust_forwarded=trust_forwarded)

    return {
        "reqId": str(uuid.uuid4()),
        "reqTimestamp": req_timestamp,
        "reqDate": local_dt.strftime("%Y-%m-%d"),
        "reqReadableTimestampUTC": utc_dt.isoformat().replace("+00:00", "Z"),
        "reqReadableTimestampLocal": local_dt.strftime("%Y-%m-%d %H:%M:%S %Z"),
        "reqIp": req_ip,
        "reqGeoLocation": locator.lookup(req_ip) if locator is not None else None,
        "reqPath": request.url.path,
        "reqMethod": request.method,
        "reqHeaders": headers,
        "reqQueryParams": dict(request.query_params),
        "reqBody": _parse_body(await request.body()),
    }


def build_log_record(call: CompletedCall) -> RequestLogRecord:
    return RequestLogRecord(
        **call.metadata,
        endpointName=call.endpoint_name,
        executionTimeInSecond=round(call.elapsed_s, 3),
        responseStatus=call.status_code,
        responseData=redact(call.response_payload),
    )


class RequestLogRecorder:
    def __init__(
        self,
        store: RangeStore,
        *,
        table: str,
        tz: ZoneInfo,
        locator: GeoLocator | None = None,
        trust_forwarded: bool = False,
    ) -> None:
        self._store = store
        self._table = table
        self.tz = tz
        self.locator = locator
        self._trust_forwarded = trust_forwarded

    @classmethod
    def from_settings(
        cls,
        store: RangeStore,
        settings: Settings,
        locator: GeoLocator | None = None,
    ) -> RequestLogRecorder:
        return cls(
            store,
            table=settings.request_log_table,
            tz=ZoneInfo(settings.local_timezone),
            locator=locator,
            trust_forwarded=settings.trust_forwarded_for,
        )

    async def collect_metadata(self, request: Request) -> dict[str, Any]:
        return await collect_request_metadata(
            request,
            tz=self.tz,
            locator=self.locator,
            trust_forwarded=self._trust_forwarded,
        )

    async def record(self, call: CompletedCall) -> None:
        """
        Store one request-log row. This should never raise to the caller.
        """
        try:
            record = build_log_record(call)
            await self._store.put_item(self._table, record.model_dump())
            logger.info(
                "request_logged endpoint=%s status=%s duration_s=%.3f",
                record.endpointName,
                record.responseStatus,
                record.executionTimeInSecond,
            )
        except Exception:
            logger.exception(
                "request_log_failed endpoint=%s status=%s; response was not affected",
                call.endpoint_name,
                call.status_code,
            )
