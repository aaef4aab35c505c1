"""
Auth business logic.

There is a single flat role: the one account configured through settings.
"""

from __future__ import annotations

import hmac
import logging

from core.config import Settings
from core.errors import InvalidCredentials, TokenInvalid

from . import schemas, security

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self, settings: Settings, tokens: security.TokenService) -> None:
        self._username = settings.admin_username
        self._password_hash = settings.admin_password_hash
        self._tokens = tokens

    def _credentials_match(self, username: str, password: str) -> bool:
        # Always run the bcrypt check so timing does not reveal a wrong username.
        username_ok = hmac.compare_digest(
            (username or "").strip().encode("utf-8"),
            self._username.encode("utf-8"),
        )
        password_ok = security.verify_password(password, self._password_hash)
        return username_ok and password_ok

    def issue_tokens(self, username: str, password: str) -> schemas.TokenPairResponse:
        if not self._credentials_match(username, password):
            logger.info("login_rejected")
            raise InvalidCredentials("Invalid username or password.")

        subject = username.strip()
        logger.info("login_ok subject=%s", subject)
        return schemas.TokenPairResponse(
            access_token=self._tokens.issue_access_token(subject),
            refresh_token=self._tokens.issue_refresh_token(subject),
        )

    def refresh_access_token(self, refresh_token: str) -> schemas.AccessTokenResponse:
        try:
            access_token = self._tokens.refresh(refresh_token)
        except TokenInvalid as exc:
            raise TokenInvalid("Invalid or expired refresh token.") from exc
        return schemas.AccessTokenResponse(access_token=access_token)
