"""
Auth API endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from core.responses import envelope

from . import schemas
from .service import AuthService

router = APIRouter(prefix="/auth")


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


@router.post("/login")
async def login(
    request: Request,
    payload: schemas.LoginRequest,
    auth: AuthService = Depends(get_auth_service),
) -> dict:
    tokens = auth.issue_tokens(payload.username, payload.password)
    return envelope(request, 200, "Login successful.", tokens.model_dump(by_alias=True))


@router.post("/refresh-token")
async def refresh_token(
    request: Request,
    payload: schemas.RefreshRequest,
    auth: AuthService = Depends(get_auth_service),
) -> dict:
    token = auth.refresh_access_token(payload.refresh_token)
    return envelope(request, 200, "Access Token refreshed successfully.", token.model_dump(by_alias=True))
