"""
Runtime settings.

Everything is read from environment variables once, in `load_settings()`,
and the resulting `Settings` value is passed explicitly to the services
that need it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_FEED_URL = "https://earthquake.usgs.gov/earthquakes/feed/v1.0/summary/all_week.geojson"
DEFAULT_JWT_SECRET = "dev-change-this-secret"


def _env_str(name: str, default: str) -> str:
    return os.environ.get(name, "").strip() or default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 30
    admin_username: str = "admin"
    # bcrypt hash; empty means "no account can log in".
    admin_password_hash: str = ""
    feed_url: str = DEFAULT_FEED_URL
    feed_timeout_s: float = 30.0
    ingest_limit: int = 100
    events_table: str = "earthquake-data"
    request_log_table: str = "earthquake-api-request-log"
    local_timezone: str = "Australia/Melbourne"
    request_logging_enabled: bool = True
    # Only honour X-Forwarded-For behind a proxy that overwrites it.
    trust_forwarded_for: bool = False
    geoip_db_path: str = ""
    log_level: str = "INFO"


def load_settings() -> Settings:
    # Imported lazily so that `core.config` stays free of auth imports.
    from auth import security

    password_hash = os.environ.get("ADMIN_PASSWORD_HASH", "").strip()
    if not password_hash:
        # Local default keeps development simple.
        # In production, set ADMIN_PASSWORD_HASH to a bcrypt hash.
        password_hash = security.hash_password(_env_str("ADMIN_PASSWORD", "password"))

    return Settings(
        database_url=os.environ.get("DATABASE_URL", "").strip(),
        jwt_secret=_env_str("JWT_SECRET", DEFAULT_JWT_SECRET),
        jwt_algorithm=_env_str("JWT_ALG", "HS256"),
        access_token_expire_minutes=_env_int("ACCESS_TOKEN_EXPIRE_MIN", 15),
        refresh_token_expire_days=_env_int("REFRESH_TOKEN_EXPIRE_DAYS", 30),
        admin_username=_env_str("ADMIN_USERNAME", "admin"),
        admin_password_hash=password_hash,
        feed_url=_env_str("EARTHQUAKE_FEED_URL", DEFAULT_FEED_URL),
        feed_timeout_s=_env_float("FEED_TIMEOUT_S", 30.0),
        ingest_limit=_env_int("INGEST_LIMIT", 100),
        events_table=_env_str("EVENTS_TABLE", "earthquake-data"),
        request_log_table=_env_str("REQUEST_LOG_TABLE", "earthquake-api-request-log"),
        local_timezone=_env_str("LOCAL_TIMEZONE", "Australia/Melbourne"),
        request_logging_enabled=_env_bool("REQUEST_LOGGING_ENABLED", True),
        trust_forwarded_for=_env_bool("TRUST_FORWARDED_FOR", False),
        geoip_db_path=os.environ.get("GEOIP_DB_PATH", "").strip(),
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
    )
