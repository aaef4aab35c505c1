"""
Auth security helpers: password hashing and the bearer token service.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

import bcrypt
import jwt

from core.config import Settings
from core.errors import TokenInvalid


def now_epoch_s() -> int:
    return int(time.time())


def hash_password(plain_password: str) -> str:
    password = (plain_password or "").encode("utf-8")
    if not password:
        raise ValueError("Password is empty.")
    return bcrypt.hashpw(password, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    password = (plain_password or "").encode("utf-8")
    hashed = (password_hash or "").encode("utf-8")
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password, hashed)
    except ValueError:
        return False


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    issued_at: int
    expires_at: int


class TokenService:
    """
    Issues and verifies signed, expiring bearer tokens.

    Access and refresh tokens share the secret and algorithm; they differ
    only in lifetime. Nothing is persisted, so a refresh token stays usable
    until it expires.
    """

    def __init__(
        self,
        *,
        secret: str,
        algorithm: str = "HS256",
        access_ttl_s: int = 15 * 60,
        refresh_ttl_s: int = 30 * 24 * 3600,
        clock: Callable[[], int] = now_epoch_s,
    ) -> None:
        if not secret:
            raise ValueError("Token secret is empty.")
        if access_ttl_s >= refresh_ttl_s:
            raise ValueError("Access token lifetime must be shorter than refresh token lifetime.")
        self._secret = secret
        self._algorithm = algorithm
        self._access_ttl_s = access_ttl_s
        self._refresh_ttl_s = refresh_ttl_s
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenService:
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            access_ttl_s=settings.access_token_expire_minutes * 60,
            refresh_ttl_s=settings.refresh_token_expire_days * 24 * 3600,
        )

    def _issue(self, subject: str, ttl_s: int) -> str:
        subject = (subject or "").strip()
        if not subject:
            raise ValueError("Token subject is empty.")
        issued_at = self._clock()
        payload = {"sub": subject, "iat": issued_at, "exp": issued_at + ttl_s}
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def issue_access_token(self, subject: str) -> str:
        return self._issue(subject, self._access_ttl_s)

    def issue_refresh_token(self, subject: str) -> str:
        return self._issue(subject, self._refresh_ttl_s)

    def verify(self, token: str) -> TokenClaims:
        raw = (token or "").strip()
        if not raw:
            raise TokenInvalid("Token is empty.")

        try:
            payload = jwt.decode(
                raw,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["sub", "iat", "exp"], "verify_iat": False},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenInvalid("Token is expired.") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenInvalid("Invalid token.") from exc

        # PyJWT checks `exp` against wall time; the injected clock must agree too.
        expires_at = int(payload["exp"])
        if self._clock() >= expires_at:
            raise TokenInvalid("Token is expired.")

        return TokenClaims(
            subject=str(payload["sub"]),
            issued_at=int(payload["iat"]),
            expires_at=expires_at,
        )

    def refresh(self, refresh_token: str) -> str:
        claims = self.verify(refresh_token)
        return self.issue_access_token(claims.subject)
