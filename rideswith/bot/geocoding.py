"""
Geocoding via OpenStreetMap Nominatim (free, no API key needed).
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests as http_requests

logger = logging.getLogger(__name__)

NOMINATIM_BASE_URL = "https://nominatim.openstreetmap.org"
USER_AGENT = "RidesWithTelegramBot/1.0 (contact@rideswith.com)"
REQUEST_TIMEOUT = 10


@dataclass
class GeocodingResult:
    latitude: float
    longitude: float
    display_name: str
    city: Optional[str]


def _city(address: dict | None) -> Optional[str]:
    address = address or {}
    return (
        address.get("city")
        or address.get("town")
        or address.get("village")
        or address.get("municipality")
        or None
    )


def _get(path: str, params: dict):
    resp = http_requests.get(
        f"{NOMINATIM_BASE_URL}{path}",
        params=params,
        headers={"User-Agent": USER_AGENT},
        timeout=REQUEST_TIMEOUT,
    )
    if not resp.ok:
        logger.error("Nominatim API error: %s", resp.status_code)
        return None
    return resp.json()


def geocode_location(query: str) -> Optional[GeocodingResult]:
    """Search for a place by name; ``None`` if nothing matches or the call fails."""
    try:
        results = _get(
            "/search",
            {"q": query, "format": "json", "limit": 1, "addressdetails": 1},
        )
    except Exception as e:
        logger.error("Geocoding error for %r: %s", query, e)
        return None
    if not results:
        return None

    result = results[0]
    return GeocodingResult(
        latitude=float(result["lat"]),
        longitude=float(result["lon"]),
        display_name=result.get("display_name", ""),
        city=_city(result.get("address")),
    )


def reverse_geocode(latitude: float, longitude: float) -> Optional[GeocodingResult]:
    """Resolve coordinates to a place name."""
    try:
        result = _get(
            "/reverse",
            {"lat": latitude, "lon": longitude, "format": "json", "addressdetails": 1},
        )
    except Exception as e:
        logger.error("Reverse geocoding error for %s,%s: %s", latitude, longitude, e)
        return None
    if not result:
        return None

    return GeocodingResult(
        latitude=latitude,
        longitude=longitude,
        display_name=result.get("display_name", ""),
        city=_city(result.get("address")),
    )
