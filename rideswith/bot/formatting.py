"""
Formatting helpers for Telegram HTML messages.
"""

import math
from datetime import date, datetime, timedelta
from typing import Optional

from rideswith.config import RIDESWITH_BASE_URL
from rideswith.dates import parse_datetime, utc_now
from rideswith.geo import haversine_km

SEPARATOR = "━━━━━━━━━━━━━━━"

NO_RIDES_TEXT = (
    "🚴 No rides found matching your search.\n\n"
    "Try broadening your search or check back later for new rides!"
)


def escape_html(text) -> str:
    return str(text or "").replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def format_date(value, now: Optional[datetime] = None) -> str:
    """``Sat, Oct 24 · 9:00 AM`` plus a relative hint for the coming week."""
    dt = parse_datetime(value)
    now = now or utc_now()
    diff_days = math.ceil((dt - now).total_seconds() / 86400)

    hour = dt.strftime("%I").lstrip("0") or "12"
    text = f"{dt.strftime('%a, %b')} {dt.day} · {hour}:{dt.strftime('%M %p')}"

    if diff_days == 0:
        relative = "Today"
    elif diff_days == 1:
        relative = "Tomorrow"
    elif 1 < diff_days <= 7:
        relative = f"in {diff_days} days"
    else:
        relative = ""
    return f"{text} ({relative})" if relative else text


def _number(value) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def format_pace(pace_min, pace_max) -> str:
    if pace_min and pace_max:
        return f"{_number(pace_min)}-{_number(pace_max)} km/h"
    if pace_min:
        return f"{_number(pace_min)}+ km/h"
    if pace_max:
        return f"Up to {_number(pace_max)} km/h"
    return ""


def format_distance(distance) -> str:
    if distance is None:
        return ""
    return f"{_number(distance)} km"


def calculate_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    return haversine_km(lat1, lng1, lat2, lng2)


def format_ride(
    ride: dict,
    user_lat: Optional[float] = None,
    user_lng: Optional[float] = None,
    include_link: bool = False,
    now: Optional[datetime] = None,
) -> str:
    lines = [
        f"📍 <b>{escape_html(ride.get('title'))}</b>",
        f"⏰ {format_date(ride['date'], now)}",
    ]

    location_line = f"📍 {escape_html(ride.get('locationName'))}"
    if user_lat is not None and user_lng is not None:
        dist = calculate_distance(user_lat, user_lng, ride["latitude"], ride["longitude"])
        location_line += f" · {round(dist)} km away"
    lines.append(location_line)

    pace = format_pace(ride.get("paceMin"), ride.get("paceMax"))
    dist = format_distance(ride.get("distance"))
    if pace or dist:
        parts = []
        if pace:
            parts.append(f"🏃 {pace}")
        if dist:
            parts.append(dist)
        lines.append(" · ".join(parts))

    if ride.get("brand"):
        lines.append(f"🏢 {escape_html(ride['brand'].get('name'))}")

    attendees = ride.get("attendeeCount") or 0
    attendee_line = f"👥 {attendees} going"
    if ride.get("maxAttendees"):
        spots_left = ride["maxAttendees"] - attendees
        attendee_line += f" · {spots_left} spots left" if spots_left > 0 else " · FULL"
    lines.append(attendee_line)

    if include_link:
        lines.append(f'🔗 <a href="{RIDESWITH_BASE_URL}/rides/{ride["id"]}">View ride</a>')

    return "\n".join(lines)


def format_ride_list(
    rides: list[dict],
    location_name: Optional[str] = None,
    user_lat: Optional[float] = None,
    user_lng: Optional[float] = None,
    now: Optional[datetime] = None,
) -> str:
    if not rides:
        return NO_RIDES_TEXT

    plural = "" if len(rides) == 1 else "s"
    header = f"🚴 Found {len(rides)} ride{plural}"
    if location_name:
        header += f" near {escape_html(location_name)}"
    header += ":"

    blocks = [
        f"{SEPARATOR}\n{format_ride(ride, user_lat, user_lng, include_link=True, now=now)}"
        for ride in rides
    ]
    return f"{header}\n" + "\n".join(blocks) + f"\n{SEPARATOR}"


def get_date_range(relative: str, today: Optional[date] = None) -> dict:
    """ISO ``{"from", "to"}`` dates for a relative range name.

    Weeks run Monday to Sunday; on a Sunday "this_weekend" means the
    following Saturday and Sunday.
    """
    today = today or utc_now().date()
    weekday = today.weekday()  # Monday == 0

    if relative == "today":
        start = end = today
    elif relative == "tomorrow":
        start = end = today + timedelta(days=1)
    elif relative == "this_weekend":
        days_until_saturday = 6 if weekday == 6 else 5 - weekday
        start = today + timedelta(days=days_until_saturday)
        end = start + timedelta(days=1)
    elif relative == "this_week":
        start = today
        end = today + timedelta(days=6 - weekday)
    elif relative == "next_week":
        start = today + timedelta(days=7 - weekday)
        end = start + timedelta(days=6)
    else:
        raise ValueError(f"Unknown date range: {relative}")
    return {"from": start.isoformat(), "to": end.isoformat()}
