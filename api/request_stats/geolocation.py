"""
Client IP geolocation backed by a MaxMind City database (geoip2).

Optional: with no `GEOIP_DB_PATH` configured, no locator is built and
`reqGeoLocation` stays null.
"""

from __future__ import annotations

import logging
from typing import Any

import geoip2.database
import geoip2.errors

from core.config import Settings

logger = logging.getLogger(__name__)


class GeoLocator:
    def __init__(self, reader: Any) -> None:
        self._reader = reader

    @classmethod
    def from_settings(cls, settings: Settings) -> GeoLocator | None:
        if not settings.geoip_db_path:
            return None
        logger.info("geoip_open path=%s", settings.geoip_db_path)
        return cls(geoip2.database.Reader(settings.geoip_db_path))

    def lookup(self, ip: str) -> dict[str, Any] | None:
        """
        Return `{country, region, city, ll}` for `ip`, or None when the
        address is unknown, private or not an IP at all.
        """
        if not ip or ip == "unknown":
            return None
        try:
            resp = self._reader.city(ip)
        except geoip2.errors.AddressNotFoundError:
            return None
        except ValueError:
            # Not an IP address (e.g. a test client host name).
            return None

        lat, lon = resp.location.latitude, resp.location.longitude
        return {
            "country": resp.country.iso_code,
            "region": resp.subdivisions.most_specific.iso_code,
            "city": resp.city.name,
            "ll": [lat, lon] if lat is not None and lon is not None else None,
        }

    def close(self) -> None:
        self._reader.close()
