"""
Auth dependencies for protected FastAPI routes.
"""

from __future__ import annotations

from fastapi import Depends, Header, Request

from core.errors import Forbidden, TokenInvalid, Unauthenticated

from .security import TokenClaims, TokenService


def _extract_bearer_token(authorization: str | None) -> str:
    raw = (authorization or "").strip()
    if not raw:
        raise Unauthenticated("Access denied. No token provided.")

    parts = raw.split(" ", 1)
    if len(parts) != 2:
        raise Unauthenticated("Authorization must be: Bearer <token>.")

    scheme, token = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer" or not token:
        raise Unauthenticated("Authorization must be: Bearer <token>.")
    return token


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


async def get_bearer_token(authorization: str | None = Header(default=None)) -> str:
    return _extract_bearer_token(authorization)


async def require_auth(
    request: Request,
    token: str = Depends(get_bearer_token),
    tokens: TokenService = Depends(get_token_service),
) -> TokenClaims:
    try:
        claims = tokens.verify(token)
    except TokenInvalid as exc:
        raise Forbidden("Invalid or expired token.") from exc

    request.state.subject = claims.subject
    return claims
