"""
RidesWith REST client used by the bot.

The public ``/rides`` endpoint only filters by location, so date, pace and
community filters are applied here on the returned list.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import requests as http_requests

from rideswith import config
from rideswith.dates import parse_datetime

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15


@dataclass
class SearchParams:
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius: Optional[float] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    pace_min: Optional[float] = None
    pace_max: Optional[float] = None
    chapter_id: Optional[str] = None
    brand_slug: Optional[str] = None
    limit: Optional[int] = None


def _matches_pace_min(ride: dict, pace_min: float) -> bool:
    if ride.get("paceMin") is not None:
        return ride["paceMin"] >= pace_min
    if ride.get("paceMax") is not None:
        return ride["paceMax"] >= pace_min
    return True


def _matches_pace_max(ride: dict, pace_max: float) -> bool:
    if ride.get("paceMax") is not None:
        return ride["paceMax"] <= pace_max
    if ride.get("paceMin") is not None:
        return ride["paceMin"] <= pace_max
    return True


def filter_rides(rides: list[dict], params: SearchParams) -> list[dict]:
    """Apply the client-side filters of *params* to an API ride list."""
    if params.date_from:
        start = parse_datetime(params.date_from)
        rides = [r for r in rides if parse_datetime(r["date"]) >= start]

    if params.date_to:
        end_of_day = parse_datetime(params.date_to).replace(
            hour=0, minute=0, second=0, microsecond=0
        ) + timedelta(days=1) - timedelta(microseconds=1000)
        rides = [r for r in rides if parse_datetime(r["date"]) <= end_of_day]

    if params.pace_min is not None:
        rides = [r for r in rides if _matches_pace_min(r, params.pace_min)]

    if params.pace_max is not None:
        rides = [r for r in rides if _matches_pace_max(r, params.pace_max)]

    if params.brand_slug:
        wanted = params.brand_slug.lower()
        rides = [
            r for r in rides
            if ((r.get("brand") or {}).get("slug") or "").lower() == wanted
        ]

    if params.limit:
        rides = rides[: params.limit]
    return rides


def search_rides(params: SearchParams | None = None) -> list[dict]:
    """Fetch upcoming rides and filter them; ``[]`` on any error."""
    params = params or SearchParams()
    query = {
        key: value
        for key, value in (("lat", params.lat), ("lng", params.lng), ("radius", params.radius))
        if value is not None
    }
    try:
        resp = http_requests.get(
            f"{config.RIDESWITH_API_URL}/rides",
            params=query,
            headers={"Content-Type": "application/json"},
            timeout=REQUEST_TIMEOUT,
        )
        if not resp.ok:
            logger.error("RidesWith API error: %s", resp.status_code)
            return []
        rides = resp.json()
        return filter_rides(rides, params)
    except Exception as e:
        logger.error("RidesWith API error: %s", e)
        return []


def get_ride(ride_id: str) -> Optional[dict]:
    try:
        resp = http_requests.get(
            f"{config.RIDESWITH_API_URL}/rides/{ride_id}",
            headers={"Content-Type": "application/json"},
            timeout=REQUEST_TIMEOUT,
        )
        if not resp.ok:
            return None
        return resp.json()
    except Exception as e:
        logger.error("RidesWith API error: %s", e)
        return None


def get_ride_url(ride_id: str) -> str:
    return f"{config.RIDESWITH_BASE_URL}/rides/{ride_id}"
