"""
Serializers — turn database rows (snake_case dicts) into the camelCase JSON
shapes returned by the API.
"""

import json


def _bool(value) -> bool:
    return bool(value)


def _json_field(value):
    if not value:
        return None
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return None


def display_name(name: str | None, email: str | None) -> str:
    """Name, else the e-mail local part, else "Anonymous"."""
    if name:
        return name
    if email:
        return email.split("@")[0]
    return "Anonymous"


def user_summary(row: dict, prefix: str = "user_", include_email: bool = False) -> dict:
    data = {
        "id": row.get(f"{prefix}id") if f"{prefix}id" in row else row.get("user_id"),
        "name": row.get(f"{prefix}name"),
        "image": row.get(f"{prefix}image"),
        "slug": row.get(f"{prefix}slug"),
    }
    if include_email:
        data["email"] = row.get(f"{prefix}email")
    return data


# ─── Rides ───────────────────────────────────────────────────────────────────

def _organizer(row: dict) -> dict:
    return {
        "id": row["organizer_id"],
        "name": row.get("organizer_name"),
        "slug": row.get("organizer_slug"),
    }


def _brand(row: dict) -> dict | None:
    if not row.get("brand_id"):
        return None
    return {
        "name": row.get("brand_name"),
        "slug": row.get("brand_slug"),
        "logo": row.get("brand_logo"),
        "logoIcon": row.get("brand_logo_icon"),
        "primaryColor": row.get("brand_primary_color"),
    }


def serialize_ride(row: dict) -> dict:
    """Shape used by the public rides list (and the bot)."""
    return {
        "id": row["id"],
        "title": row["title"],
        "description": row.get("description"),
        "date": row["date"],
        "endTime": row.get("end_time"),
        "locationName": row["location_name"],
        "locationAddress": row["location_address"],
        "latitude": row["latitude"],
        "longitude": row["longitude"],
        "distance": row.get("distance"),
        "elevation": row.get("elevation"),
        "pace": row["pace"].lower(),
        "paceMin": row.get("pace_min"),
        "paceMax": row.get("pace_max"),
        "terrain": row.get("terrain"),
        "maxAttendees": row.get("max_attendees"),
        "isFree": _bool(row.get("is_free")),
        "price": row.get("price"),
        "routeUrl": row.get("route_url"),
        "organizer": _organizer(row),
        "brand": _brand(row),
        "attendeeCount": row.get("attendee_count", 0),
    }


def serialize_ride_detail(row: dict) -> dict:
    data = serialize_ride(row)
    data.update({
        "timezone": row.get("timezone"),
        "currency": row.get("currency"),
        "status": row.get("status"),
        "chapterId": row.get("chapter_id"),
        "recurrencePattern": row.get("recurrence_pattern"),
        "recurrenceSeriesId": row.get("recurrence_series_id"),
        "recurrenceEndDate": row.get("recurrence_end_date"),
        "isRecurringTemplate": _bool(row.get("is_recurring_template")),
        "isLive": _bool(row.get("is_live")),
        "liveLocationUrl": row.get("live_location_url"),
        "liveStartedAt": row.get("live_started_at"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    })
    return data


def serialize_latest_ride(row: dict, distance_from_user: float | None = None) -> dict:
    data = {
        "id": row["id"],
        "title": row["title"],
        "date": row["date"],
        "locationName": row["location_name"],
        "latitude": row["latitude"],
        "longitude": row["longitude"],
        "distance": row.get("distance"),
        "pace": row["pace"].lower(),
        "organizer": _organizer(row),
        "attendeeCount": row.get("attendee_count", 0),
        "brand": None,
    }
    if row.get("brand_id"):
        data["brand"] = {
            "name": row.get("brand_name"),
            "logo": row.get("brand_logo"),
            "backdrop": row.get("brand_backdrop"),
            "primaryColor": row.get("brand_primary_color"),
        }
    if distance_from_user is not None:
        data["distanceFromUser"] = distance_from_user
    return data


def serialize_past_ride(row: dict) -> dict:
    data = serialize_ride_detail(row)
    data["organizer"] = {"id": row["organizer_id"], "name": row.get("organizer_name")}
    data["_count"] = {"rsvps": row.get("rsvp_count", 0)}
    return data


# ─── RSVPs & comments ────────────────────────────────────────────────────────

def serialize_rsvp(row: dict, include_email: bool = False) -> dict:
    user = user_summary(row, include_email=include_email)
    user["id"] = row["user_id"]
    return {
        "id": row["id"],
        "rideId": row["ride_id"],
        "userId": row["user_id"],
        "status": row["status"],
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
        "user": user,
    }


def serialize_comment(row: dict) -> dict:
    return {
        "id": row["id"],
        "content": row["content"],
        "createdAt": row.get("created_at"),
        "user": {
            "id": row["user_id"],
            "name": display_name(row.get("user_name"), row.get("user_email")),
            "image": row.get("user_image"),
            "slug": row.get("user_slug"),
        },
    }


# ─── Communities & chapters ──────────────────────────────────────────────────

def serialize_brand(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "slug": row["slug"],
        "type": row.get("type"),
        "discipline": row.get("discipline"),
        "domain": row.get("domain"),
        "description": row.get("description"),
        "logo": row.get("logo"),
        "logoDark": row.get("logo_dark"),
        "logoIcon": row.get("logo_icon"),
        "primaryColor": row.get("primary_color"),
        "secondaryColor": row.get("secondary_color"),
        "backdrop": row.get("backdrop"),
        "slogan": row.get("slogan"),
        "fonts": _json_field(row.get("fonts")),
        "instagram": row.get("instagram"),
        "twitter": row.get("twitter"),
        "facebook": row.get("facebook"),
        "strava": row.get("strava"),
        "youtube": row.get("youtube"),
        "sponsorsEnabled": _bool(row.get("sponsors_enabled")),
        "sponsorLabel": row.get("sponsor_label"),
        "createdById": row.get("created_by_id"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }


def serialize_chapter(row: dict) -> dict:
    return {
        "id": row["id"],
        "brandId": row["brand_id"],
        "name": row["name"],
        "slug": row["slug"],
        "city": row["city"],
        "memberCount": row.get("member_count", 0),
        "rideCount": row.get("ride_count", 0),
        "customLogo": row.get("custom_logo"),
        "customColors": _json_field(row.get("custom_colors")),
        "sponsorLabel": row.get("sponsor_label"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }


def serialize_chapter_summary(row: dict) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "slug": row["slug"],
        "city": row["city"],
        "memberCount": row.get("member_count", 0),
        "rideCount": row.get("ride_count", 0),
    }


def serialize_member(row: dict) -> dict:
    return {
        "id": row["id"],
        "chapterId": row["chapter_id"],
        "userId": row["user_id"],
        "role": row["role"],
        "joinedAt": row.get("joined_at"),
        "user": {
            "id": row["user_id"],
            "name": row.get("user_name"),
            "image": row.get("user_image"),
            "slug": row.get("user_slug"),
        },
    }


def serialize_follow(row: dict) -> dict:
    data = {
        "id": row["id"],
        "userId": row["user_id"],
        "brandId": row.get("brand_id"),
        "chapterId": row.get("chapter_id"),
        "createdAt": row.get("created_at"),
        "brand": None,
        "chapter": None,
    }
    if row.get("brand_id"):
        data["brand"] = {
            "id": row["brand_id"],
            "name": row.get("brand_name"),
            "slug": row.get("brand_slug"),
            "logo": row.get("brand_logo"),
        }
    if row.get("chapter_id"):
        data["chapter"] = {
            "id": row["chapter_id"],
            "name": row.get("chapter_name"),
            "slug": row.get("chapter_slug"),
            "city": row.get("chapter_city"),
            "brand": {
                "id": row.get("chapter_brand_id"),
                "name": row.get("chapter_brand_name"),
                "slug": row.get("chapter_brand_slug"),
                "logo": row.get("chapter_brand_logo"),
            },
        }
    return data


def serialize_sponsor(row: dict) -> dict:
    return {
        "id": row["id"],
        "brandId": row.get("brand_id"),
        "chapterId": row.get("chapter_id"),
        "name": row["name"],
        "domain": row.get("domain"),
        "description": row.get("description"),
        "website": row["website"],
        "logo": row.get("logo"),
        "backdrop": row.get("backdrop"),
        "primaryColor": row.get("primary_color"),
        "displaySize": row.get("display_size"),
        "isActive": _bool(row.get("is_active")),
        "displayOrder": row.get("display_order", 0),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }


def serialize_profile(row: dict) -> dict:
    """The signed-in user's own editable profile."""
    return {
        "id": row["id"],
        "name": row.get("name"),
        "email": row.get("email"),
        "image": row.get("image"),
        "slug": row.get("slug"),
        "bio": row.get("bio"),
        "location": row.get("location"),
        "instagram": row.get("instagram"),
        "strava": row.get("strava"),
    }
