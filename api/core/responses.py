"""
Standard response envelope: {status, success, message, data}.

Both helpers remember the payload on `request.state` so the request-log
completion hook can record what was sent without touching the send path.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def _payload(status: int, message: str, data: Any) -> dict[str, Any]:
    return {
        "status": status,
        "success": 200 <= status < 300,
        "message": message,
        "data": jsonable_encoder(data),
    }


def envelope(request: Request, status: int, message: str, data: Any = None) -> dict[str, Any]:
    body = _payload(status, message, data)
    request.state.response_payload = body
    return body


def error_response(request: Request, status: int, message: str, data: Any = None) -> JSONResponse:
    body = _payload(status, message, data)
    request.state.response_payload = body
    return JSONResponse(status_code=status, content=body)
