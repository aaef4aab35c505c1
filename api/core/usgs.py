"""
USGS GeoJSON feed client.

Used endpoint:
- GET <summary feed url>  -> {"type": "FeatureCollection", "features": [...]}

The summary feeds list features newest-first.
"""

from __future__ import annotations

from typing import Any

import httpx

from .errors import FetchFailed


async def fetch_features(feed_url: str, *, timeout_s: float = 30.0) -> list[dict[str, Any]]:
    """
    Fetch the feed and return its `features` list as-is.
    """
    feed_url = (feed_url or "").strip()
    if not feed_url:
        raise FetchFailed("Feed URL is empty.")

    try:
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            resp = await client.get(feed_url)
    except httpx.HTTPError as exc:
        raise FetchFailed(f"Failed to fetch earthquake feed. Reason: {exc}") from exc

    if resp.status_code != 200:
        # Avoid dumping huge bodies; include a small snippet.
        body = resp.text[:300]
        raise FetchFailed(f"Earthquake feed request failed: {resp.status_code} {body}")

    try:
        data: dict[str, Any] = resp.json()
    except ValueError as exc:
        raise FetchFailed("Earthquake feed returned invalid JSON.") from exc

    features = data.get("features") if isinstance(data, dict) else None
    if not isinstance(features, list):
        raise FetchFailed("Earthquake feed returned no features list.")
    return features
