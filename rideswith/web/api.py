"""
JSON API — rides, RSVPs, comments, communities, chapters, sponsors, follows,
profiles and the platform admin endpoints.

Every handler catches unexpected errors, logs them with the route label and
answers with a generic 500 so internals never leak to the client.
"""

import logging
from datetime import timedelta

from flask import Blueprint, jsonify, request

from rideswith import config
from rideswith import database as db
from rideswith.brand_dev import clean_domain, fetch_brand_assets, is_valid_domain
from rideswith.dates import (
    normalize_iso,
    now_iso,
    parse_datetime,
    parse_end_date,
    to_iso,
    utc_now,
)
from rideswith.geo import haversine_km
from rideswith.images import is_allowed_image_url
from rideswith.rate_limiter import rsvp_limiter
from rideswith.recurrence import PATTERNS, occurrence_dates
from rideswith.roles import (
    ADMIN,
    ASSIGNABLE_ROLES,
    MODERATOR,
    OWNER,
    can_manage_sponsors,
    is_admin,
    is_owner,
    is_platform_admin,
    normalize_role,
)
from rideswith.slugs import (
    base36,
    generate_brand_slug,
    is_reserved_slug,
    is_reserved_username,
    slugify,
    username_error,
)
from rideswith.web import serializers as ser
from rideswith.web.auth import api_login_required, current_user, platform_admin_required

logger = logging.getLogger(__name__)

VALID_PACES = ("CASUAL", "MODERATE", "FAST", "RACE")
VALID_RSVP_STATUSES = ("GOING", "MAYBE", "NOT_GOING")
COMMUNITY_TYPES = ("BRAND", "CLUB", "TEAM", "GROUP")
# TEAM can be chosen at creation only.
EDITABLE_COMMUNITY_TYPES = ("BRAND", "CLUB", "GROUP")
SOCIAL_FIELDS = ("instagram", "twitter", "facebook", "strava", "youtube")
SPONSOR_LABELS = ("sponsors", "partners", "ads")
DEFAULT_SPONSOR_LABEL = "sponsors"
SPONSOR_DISPLAY_SIZES = ("SMALL", "MEDIUM", "LARGE")
SPONSORS_DISABLED_MESSAGE = (
    "Sponsors are not enabled for this community. Contact the platform administrator."
)
PROFILE_FIELDS = ("name", "bio", "location", "instagram", "strava")
MIN_USER_SEARCH_LENGTH = 2

MAX_COMMENT_LENGTH = 2000
NEAR_ME_RADIUS_KM = 50


def _error(message: str, status: int):
    return jsonify({"error": message}), status


def _body() -> dict:
    """The JSON request body; malformed JSON raises and ends up as a 500."""
    data = request.get_json(force=True)
    if not isinstance(data, dict):
        raise ValueError("JSON body must be an object")
    return data


def _float_or_none(value):
    return float(value) if value else None


def _int_or_none(value):
    return int(value) if value else None


def _ms_timestamp() -> int:
    return int(utc_now().timestamp() * 1000)


def _validate_ride_body(body: dict):
    """Shared title/date/location validation. Returns an error response or None."""
    title = body.get("title")
    if not title or not isinstance(title, str) or not title.strip():
        return _error("Title is required", 400)
    if not body.get("date"):
        return _error("Date is required", 400)
    if (
        not body.get("locationName")
        or not body.get("locationAddress")
        or body.get("latitude") is None
        or body.get("longitude") is None
    ):
        return _error("Location is required", 400)
    return None


def _ride_fields(body: dict) -> dict:
    """Column values shared by create and update."""
    return {
        "title": body["title"].strip(),
        "description": body.get("description") or None,
        "date": normalize_iso(body["date"]),
        "end_time": normalize_iso(body["endTime"]) if body.get("endTime") else None,
        "location_name": body["locationName"],
        "location_address": body["locationAddress"],
        "latitude": float(body["latitude"]),
        "longitude": float(body["longitude"]),
        "distance": _float_or_none(body.get("distance")),
        "elevation": _float_or_none(body.get("elevation")),
        "pace_min": float(body["paceMin"]) if body.get("paceMin") is not None else None,
        "pace_max": float(body["paceMax"]) if body.get("paceMax") is not None else None,
        "terrain": body.get("terrain") or None,
        "max_attendees": _int_or_none(body.get("maxAttendees")),
        "route_url": body.get("routeUrl") or None,
        "is_free": 0 if body.get("isFree") is False else 1,
        "price": _float_or_none(body.get("price")),
    }


def _find_or_create_organizer(user: dict) -> dict:
    organizer = db.get_managed_organizer(user["id"])
    if organizer:
        return organizer
    name = user.get("name") or (user.get("email") or "").split("@")[0] or "My Rides"
    slug = f"{slugify(name)}-{base36(_ms_timestamp())}"
    logger.info("Creating personal organizer %s for user %s", slug, user["id"])
    return db.create_organizer(name, slug, user["id"])


def _chapter_role(chapter_id: str, user_id: str) -> str | None:
    member = db.get_chapter_member(chapter_id, user_id)
    return member["role"] if member else None


def _chapter_payload(chapter: dict, now: str) -> dict:
    data = ser.serialize_chapter(chapter)
    data["members"] = [ser.serialize_member(m) for m in db.get_chapter_members(chapter["id"])]
    upcoming = chapter.get("upcoming_rides")
    if upcoming is None:
        upcoming = len(db.get_chapter_rides(chapter["id"], now, upcoming=True, limit=1000))
    data["_count"] = {"rides": upcoming}
    return data


def _find_chapter(brand_slug: str, chapter_slug: str) -> tuple[dict, dict] | None:
    """The (community, chapter) pair addressed by two URL slugs."""
    brand = db.get_brand_by_slug(brand_slug)
    if not brand:
        return None
    chapter = db.get_chapter_by_slug(brand["id"], chapter_slug)
    return (brand, chapter) if chapter else None


def _can_edit_chapter_sponsors(user: dict, brand: dict, chapter: dict) -> bool:
    """Community creators and chapter owners or admins."""
    if brand["created_by_id"] == user["id"]:
        return True
    return is_admin(_chapter_role(chapter["id"], user["id"]))


def _validate_sponsor_body(body: dict):
    name = body.get("name")
    if not name or not isinstance(name, str) or not name.strip():
        return _error("Sponsor name is required", 400)
    if not body.get("website") or not isinstance(body["website"], str):
        return _error("Website URL is required", 400)
    return None


def _new_sponsor_fields(body: dict) -> dict:
    """Column values for a new sponsor; logo and colour fall back to Brand.dev."""
    domain = body.get("domain") or None
    assets = fetch_brand_assets(domain) if domain else None
    display_size = body.get("displaySize")
    return {
        "name": body["name"].strip(),
        "domain": domain,
        "description": body.get("description") or None,
        "website": body["website"],
        "logo": body.get("logo") or (assets.logo if assets else None),
        "backdrop": body.get("backdrop") or None,
        "primary_color": body.get("primaryColor") or (assets.primary_color if assets else None),
        "display_size": display_size if display_size in SPONSOR_DISPLAY_SIZES else "SMALL",
        "is_active": 0 if body.get("isActive") is False else 1,
    }


def _display_order(body: dict, next_order: int) -> int:
    value = body.get("displayOrder")
    return next_order if value is None else int(value)


def create_api_blueprint() -> Blueprint:
    """Build the ``/api`` blueprint."""
    api = Blueprint("api", __name__, url_prefix="/api")

    # ─── Health ───────────────────────────────────────────────────────────

    @api.route("/health")
    def health():
        try:
            db.ping()
            status = "connected"
        except Exception as e:
            logger.warning("Health check database ping failed: %s", e)
            status = "disconnected"
        return jsonify({
            "status": "healthy",
            "timestamp": now_iso(),
            "database": status,
            "environment": config.APP_ENV,
        })

    # ─── Rides ────────────────────────────────────────────────────────────

    @api.route("/rides", methods=["GET"])
    def list_rides():
        try:
            pace = (request.args.get("pace") or "").upper() or None
            if pace and pace not in VALID_PACES:
                pace = None
            rides = db.get_upcoming_rides(now_iso(), pace=pace, limit=50)

            lat, lng, radius = (request.args.get(k) for k in ("lat", "lng", "radius"))
            if lat and lng and radius:
                center_lat, center_lng, radius_km = float(lat), float(lng), float(radius)
                rides = [
                    r for r in rides
                    if haversine_km(center_lat, center_lng, r["latitude"], r["longitude"]) <= radius_km
                ]
            return jsonify([ser.serialize_ride(r) for r in rides])
        except Exception:
            logger.exception("GET /api/rides error")
            return _error("Failed to fetch rides", 500)

    @api.route("/rides", methods=["POST"])
    @api_login_required
    def create_ride():
        try:
            user = current_user()
            body = _body()

            invalid = _validate_ride_body(body)
            if invalid:
                return invalid
            pace = body.get("pace")
            if pace not in VALID_PACES:
                return _error("Valid pace is required", 400)

            pattern = body.get("recurrencePattern")
            if pattern:
                if pattern not in PATTERNS:
                    return _error("Invalid recurrence pattern", 400)
                if not body.get("recurrenceEndDate"):
                    return _error("Recurrence end date is required", 400)

            chapter_id = body.get("chapterId") or None
            if chapter_id:
                if not db.get_chapter(chapter_id):
                    return _error("Chapter not found", 404)
                if not is_admin(_chapter_role(chapter_id, user["id"])):
                    return _error("You do not have permission to post rides for this chapter", 403)

            organizer = _find_or_create_organizer(user)

            fields = _ride_fields(body)
            fields.update({
                "pace": pace,
                "timezone": body.get("timezone") or "UTC",
                "currency": body.get("currency") or "EUR",
                "status": "PUBLISHED",
                "organizer_id": organizer["id"],
                "chapter_id": chapter_id,
            })

            if pattern:
                start = parse_datetime(fields["date"])
                end = parse_end_date(body["recurrenceEndDate"])
                duration = None
                if fields["end_time"]:
                    duration = parse_datetime(fields["end_time"]) - start
                series_id = db.new_id()
                ride_ids = []
                for index, when in enumerate(occurrence_dates(start, pattern, end)):
                    occurrence = dict(fields)
                    occurrence.update({
                        "date": to_iso(when),
                        "end_time": to_iso(when + duration) if duration is not None else None,
                        "recurrence_pattern": pattern,
                        "recurrence_series_id": series_id,
                        "recurrence_end_date": to_iso(end),
                        "is_recurring_template": 1 if index == 0 else 0,
                    })
                    ride_ids.append(db.create_ride(**occurrence))
                logger.info("Created ride series %s with %d rides", series_id, len(ride_ids))
            else:
                ride_ids = [db.create_ride(**fields)]

            db.adjust_organizer_ride_count(organizer["id"], len(ride_ids))
            if chapter_id:
                db.adjust_chapter_counts(chapter_id, rides=len(ride_ids))
            for ride_id in ride_ids:
                db.upsert_rsvp(ride_id, user["id"], "GOING")

            return jsonify(ser.serialize_ride_detail(db.get_ride(ride_ids[0]))), 201
        except Exception:
            logger.exception("POST /api/rides error")
            return _error("Failed to create ride", 500)

    @api.route("/rides/latest")
    def latest_rides():
        try:
            ride_filter = request.args.get("filter") or "all"
            limit = int(request.args.get("limit") or 6)
            lat, lng = request.args.get("lat"), request.args.get("lng")
            now = utc_now()

            if ride_filter == "week":
                start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
                end_of_week = start_of_today + timedelta(days=8) - timedelta(seconds=1)
                rides = db.get_latest_rides(
                    to_iso(start_of_today), to_iso(end_of_week), order_by_date=True, limit=limit
                )
            else:
                take = 100 if ride_filter == "near" and lat and lng else limit
                rides = db.get_latest_rides(
                    to_iso(now), club_only=ride_filter == "club", limit=take
                )

            if ride_filter == "near" and lat and lng:
                user_lat, user_lng = float(lat), float(lng)
                nearby = []
                for ride in rides:
                    distance = haversine_km(user_lat, user_lng, ride["latitude"], ride["longitude"])
                    if distance <= NEAR_ME_RADIUS_KM:
                        nearby.append((distance, ride))
                nearby.sort(key=lambda pair: pair[0])
                return jsonify([
                    ser.serialize_latest_ride(ride, distance_from_user=distance)
                    for distance, ride in nearby[:limit]
                ])

            return jsonify([ser.serialize_latest_ride(r) for r in rides])
        except Exception:
            logger.exception("GET /api/rides/latest error")
            return _error("Failed to fetch latest rides", 500)

    @api.route("/rides/past")
    def past_rides():
        try:
            rides = db.get_past_rides(now_iso(), limit=100)
            return jsonify([ser.serialize_past_ride(r) for r in rides])
        except Exception:
            logger.exception("GET /api/rides/past error")
            return _error("Failed to fetch past rides", 500)

    @api.route("/rides/series/<series_id>/count")
    def series_count(series_id):
        try:
            total = db.count_series_rides(series_id)
            date = request.args.get("date")
            following = db.count_series_rides(series_id, normalize_iso(date)) if date else total
            return jsonify({"total": total, "following": following})
        except Exception:
            logger.exception("GET /api/rides/series/[seriesId]/count error")
            return _error("Failed to count series rides", 500)

    @api.route("/rides/<ride_id>", methods=["GET"])
    def get_ride(ride_id):
        try:
            ride = db.get_ride(ride_id)
            if not ride:
                return _error("Ride not found", 404)
            return jsonify(ser.serialize_ride_detail(ride))
        except Exception:
            logger.exception("GET /api/rides/[id] error")
            return _error("Failed to fetch ride", 500)

    @api.route("/rides/<ride_id>", methods=["PUT"])
    @api_login_required
    def update_ride(ride_id):
        try:
            user = current_user()
            body = _body()
            ride = db.get_ride(ride_id)
            if not ride:
                return _error("Ride not found", 404)
            if not db.is_organizer_admin(ride["organizer_id"], user["id"]):
                return _error("You do not have permission to edit this ride", 403)

            invalid = _validate_ride_body(body)
            if invalid:
                return invalid

            fields = _ride_fields(body)
            is_live = body.get("isLive") is True
            if is_live and not ride["is_live"]:
                live_started_at = now_iso()
            elif body.get("isLive") is False:
                live_started_at = None
            else:
                live_started_at = ride["live_started_at"]
            fields.update({
                "timezone": body.get("timezone") or ride["timezone"],
                "is_live": int(is_live),
                "live_location_url": body.get("liveLocationUrl") or None,
                "live_started_at": live_started_at,
            })
            db.update_ride(ride_id, fields)
            return jsonify(ser.serialize_ride_detail(db.get_ride(ride_id)))
        except Exception:
            logger.exception("PUT /api/rides/[id] error")
            return _error("Failed to update ride", 500)

    @api.route("/rides/<ride_id>", methods=["DELETE"])
    @api_login_required
    def delete_ride(ride_id):
        try:
            user = current_user()
            scope = request.args.get("scope") or "this"
            ride = db.get_ride(ride_id)
            if not ride:
                return _error("Ride not found", 404)
            if not db.is_organizer_admin(ride["organizer_id"], user["id"]):
                return _error("You do not have permission to delete this ride", 403)

            series_id = ride["recurrence_series_id"]
            if series_id and scope == "all":
                deleted = db.delete_series_rides(series_id)
            elif series_id and scope == "following":
                deleted = db.delete_series_rides(series_id, from_date=ride["date"])
            else:
                deleted = db.delete_ride(ride_id)

            db.adjust_organizer_ride_count(ride["organizer_id"], -deleted)
            if ride["chapter_id"]:
                db.adjust_chapter_counts(ride["chapter_id"], rides=-deleted)
            logger.info("Deleted %d ride(s) starting at %s (scope=%s)", deleted, ride_id, scope)
            return jsonify({"success": True, "deletedCount": deleted})
        except Exception:
            logger.exception("DELETE /api/rides/[id] error")
            return _error("Failed to delete ride", 500)

    # ─── Comments ─────────────────────────────────────────────────────────

    @api.route("/rides/<ride_id>/comments", methods=["GET"])
    def list_comments(ride_id):
        try:
            comments = db.get_comments_for_ride(ride_id)
            return jsonify([ser.serialize_comment(c) for c in comments])
        except Exception:
            logger.exception("GET /api/rides/[id]/comments error")
            return _error("Failed to fetch comments", 500)

    @api.route("/rides/<ride_id>/comments", methods=["POST"])
    @api_login_required
    def create_comment(ride_id):
        try:
            user = current_user()
            body = _body()
            content = body.get("content")
            if not content or not isinstance(content, str) or not content.strip():
                return _error("Comment content is required", 400)
            if len(content) > MAX_COMMENT_LENGTH:
                return _error("Comment is too long (max 2000 characters)", 400)
            if not db.get_ride(ride_id):
                return _error("Ride not found", 404)

            comment = db.create_comment(ride_id, user["id"], content.strip())
            return jsonify(ser.serialize_comment(comment)), 201
        except Exception:
            logger.exception("POST /api/rides/[id]/comments error")
            return _error("Failed to create comment", 500)

    @api.route("/rides/<ride_id>/comments", methods=["DELETE"])
    @api_login_required
    def delete_comment(ride_id):
        try:
            user = current_user()
            comment_id = request.args.get("commentId")
            if not comment_id:
                return _error("Comment ID is required", 400)
            comment = db.get_comment(comment_id)
            if not comment or comment["ride_id"] != ride_id:
                return _error("Comment not found", 404)

            if comment["user_id"] != user["id"]:
                ride = db.get_ride(ride_id)
                if not ride or not db.is_organizer_admin(ride["organizer_id"], user["id"]):
                    return _error("Forbidden", 403)

            db.delete_comment(comment_id)
            return jsonify({"success": True})
        except Exception:
            logger.exception("DELETE /api/rides/[id]/comments error")
            return _error("Failed to delete comment", 500)

    # ─── RSVPs ────────────────────────────────────────────────────────────

    @api.route("/rsvps", methods=["GET"])
    @api_login_required
    def list_rsvps():
        try:
            user = current_user()
            ride_id = request.args.get("rideId")
            if not ride_id:
                return _error("rideId is required", 400)
            ride = db.get_ride(ride_id)
            if not ride:
                return _error("Ride not found", 404)

            include_email = db.is_organizer_admin(ride["organizer_id"], user["id"])
            rsvps = db.get_rsvps_for_ride(ride_id)
            return jsonify([ser.serialize_rsvp(r, include_email=include_email) for r in rsvps])
        except Exception:
            logger.exception("GET /api/rsvps error")
            return _error("Failed to fetch RSVPs", 500)

    @api.route("/rsvps", methods=["POST"])
    @api_login_required
    def upsert_rsvp():
        try:
            user = current_user()
            if not rsvp_limiter.check(user["id"]).success:
                return _error("Too many requests", 429)

            body = _body()
            ride_id = body.get("rideId")
            status = body.get("status")
            if not ride_id:
                return _error("rideId is required", 400)
            if status not in VALID_RSVP_STATUSES:
                return _error("Invalid status", 400)

            ride = db.get_ride(ride_id)
            if not ride:
                return _error("Ride not found", 404)
            if ride["status"] != "PUBLISHED":
                return _error("Cannot RSVP to unpublished ride", 400)

            if status == "GOING" and ride["max_attendees"]:
                existing = db.get_rsvp(ride_id, user["id"])
                already_going = existing is not None and existing["status"] == "GOING"
                if not already_going and ride["attendee_count"] >= ride["max_attendees"]:
                    return _error("Ride is at capacity", 400)

            rsvp = db.upsert_rsvp(ride_id, user["id"], status)

            if status in ("GOING", "MAYBE") and ride["chapter_id"]:
                settings = db.get_notification_settings(user["id"])
                if settings is None or settings["auto_follow_on_rsvp"]:
                    try:
                        db.follow(user["id"], chapter_id=ride["chapter_id"])
                    except Exception as e:
                        logger.warning("Auto-follow of chapter %s failed: %s", ride["chapter_id"], e)

            return jsonify(ser.serialize_rsvp(rsvp))
        except Exception:
            logger.exception("POST /api/rsvps error")
            return _error("Failed to update RSVP", 500)

    @api.route("/rsvps", methods=["DELETE"])
    @api_login_required
    def delete_rsvp():
        try:
            user = current_user()
            ride_id = request.args.get("rideId")
            if not ride_id:
                return _error("rideId is required", 400)
            if not db.delete_rsvp(ride_id, user["id"]):
                raise LookupError(f"No RSVP for ride {ride_id}")
            return jsonify({"success": True})
        except Exception:
            logger.exception("DELETE /api/rsvps error")
            return _error("Failed to remove RSVP", 500)

    # ─── Communities ──────────────────────────────────────────────────────

    @api.route("/communities", methods=["GET"])
    def list_communities():
        try:
            chapters_by_brand: dict[str, list] = {}
            for chapter in db.get_chapters():
                chapters_by_brand.setdefault(chapter["brand_id"], []).append(chapter)

            result = []
            for brand in db.get_all_brands():
                data = ser.serialize_brand(brand)
                chapters = sorted(chapters_by_brand.get(brand["id"], []), key=lambda c: c["name"])
                data["chapters"] = [ser.serialize_chapter_summary(c) for c in chapters]
                data["_count"] = {"chapters": len(chapters)}
                result.append(data)
            return jsonify(result)
        except Exception:
            logger.exception("GET /api/communities error")
            return _error("Failed to fetch brands", 500)

    @api.route("/communities", methods=["POST"])
    @api_login_required
    def create_community():
        try:
            user = current_user()
            body = _body()
            name = body.get("name")
            if not name or not isinstance(name, str) or len(name.strip()) < 2:
                return _error("Brand name must be at least 2 characters", 400)

            slug = generate_brand_slug(name.strip())
            if is_reserved_slug(slug):
                slug = f"{slug}-community"
            if db.get_brand_by_slug(slug):
                slug = f"{slug}-{base36(_ms_timestamp())}"

            domain = body.get("domain")
            assets = None
            if domain and is_valid_domain(domain):
                assets = fetch_brand_assets(clean_domain(domain))

            community_type = body.get("type")
            if community_type not in COMMUNITY_TYPES:
                community_type = "BRAND"

            fields = {
                "name": name.strip(),
                "slug": slug,
                "type": community_type,
                "discipline": body.get("discipline") or None,
                "domain": domain.strip() if domain else None,
                "created_by_id": user["id"],
            }
            if assets:
                fields.update({
                    "description": assets.description,
                    "logo": assets.logo,
                    "logo_dark": assets.logo_dark,
                    "logo_icon": assets.logo_icon,
                    "primary_color": assets.primary_color,
                    "secondary_color": assets.secondary_color,
                    "backdrop": assets.backdrop,
                    "slogan": assets.slogan,
                })
                if assets.fonts:
                    fields["fonts"] = assets.fonts

            brand = db.create_brand(**fields)
            logger.info("Community %s created by %s", brand["slug"], user["id"])
            return jsonify(ser.serialize_brand(brand)), 201
        except Exception:
            logger.exception("POST /api/communities error")
            return _error("Failed to create brand", 500)

    @api.route("/communities/<slug>", methods=["GET"])
    def get_community(slug):
        try:
            brand = db.get_brand_by_slug(slug)
            if not brand:
                return _error("Brand not found", 404)

            data = ser.serialize_brand(brand)
            creator = db.get_user(brand["created_by_id"]) if brand["created_by_id"] else None
            data["createdBy"] = (
                {"id": creator["id"], "name": creator["name"], "image": creator["image"]}
                if creator else None
            )
            now = now_iso()
            data["chapters"] = [
                _chapter_payload(c, now) for c in db.get_chapters(brand_id=brand["id"], now=now)
            ]
            return jsonify(data)
        except Exception:
            logger.exception("GET /api/communities/[slug] error")
            return _error("Failed to fetch brand", 500)

    @api.route("/communities/<slug>", methods=["PUT"])
    @api_login_required
    def update_community(slug):
        try:
            user = current_user()
            body = _body()
            brand = db.get_brand_by_slug(slug)
            if not brand:
                return _error("Brand not found", 404)
            if brand["created_by_id"] != user["id"]:
                return _error("You don't have permission to edit this brand", 403)

            if body.get("refreshBranding") and brand["domain"]:
                assets = fetch_brand_assets(brand["domain"])
                if assets:
                    fields = {
                        "logo": assets.logo or brand["logo"],
                        "logo_dark": assets.logo_dark or brand["logo_dark"],
                        "logo_icon": assets.logo_icon or brand["logo_icon"],
                        "primary_color": assets.primary_color or brand["primary_color"],
                        "secondary_color": assets.secondary_color or brand["secondary_color"],
                        "backdrop": assets.backdrop or brand["backdrop"],
                        "slogan": assets.slogan or brand["slogan"],
                        "description": assets.description or brand["description"],
                    }
                    if assets.fonts:
                        fields["fonts"] = assets.fonts
                    updated = db.update_brand(brand["id"], fields)
                    logger.info("Refreshed branding for %s", slug)
                    return jsonify(ser.serialize_brand(updated))

            fields = {}
            if body.get("name"):
                fields["name"] = body["name"]
            if "description" in body:
                fields["description"] = body["description"]
            if body.get("domain"):
                if not is_valid_domain(body["domain"]):
                    return _error("Invalid domain format", 400)
                fields["domain"] = clean_domain(body["domain"])
            if body.get("type") in EDITABLE_COMMUNITY_TYPES:
                fields["type"] = body["type"]

            for key, column in (("logo", "logo"), ("backdrop", "backdrop")):
                if key in body:
                    value = body[key] or None
                    if value and not is_allowed_image_url(value):
                        return _error("Image host not allowed", 400)
                    fields[column] = value
            if "primaryColor" in body:
                fields["primary_color"] = body["primaryColor"] or None
            if body.get("sponsorLabel") in SPONSOR_LABELS:
                fields["sponsor_label"] = body["sponsorLabel"]

            for key in SOCIAL_FIELDS:
                if key in body:
                    fields[key] = body[key] or None

            updated = db.update_brand(brand["id"], fields)
            return jsonify(ser.serialize_brand(updated))
        except Exception:
            logger.exception("PUT /api/communities/[slug] error")
            return _error("Failed to update brand", 500)

    @api.route("/communities/<slug>", methods=["DELETE"])
    @api_login_required
    def delete_community(slug):
        try:
            user = current_user()
            brand = db.get_brand_by_slug(slug)
            if not brand:
                return _error("Brand not found", 404)
            if brand["created_by_id"] != user["id"]:
                return _error("You don't have permission to delete this brand", 403)
            db.delete_brand(brand["id"])
            logger.info("Community %s deleted by %s", slug, user["id"])
            return jsonify({"success": True})
        except Exception:
            logger.exception("DELETE /api/communities/[slug] error")
            return _error("Failed to delete brand", 500)

    # ─── Sponsors ─────────────────────────────────────────────────────────

    @api.route("/communities/<slug>/sponsors", methods=["GET"])
    def list_community_sponsors(slug):
        try:
            brand = db.get_brand_by_slug(slug)
            if not brand:
                return _error("Community not found", 404)
            sponsors = db.get_sponsors(
                brand_id=brand["id"], active_only=request.args.get("all") != "true"
            )
            return jsonify({
                "sponsors": [ser.serialize_sponsor(s) for s in sponsors],
                "sponsorLabel": brand["sponsor_label"] or DEFAULT_SPONSOR_LABEL,
            })
        except Exception:
            logger.exception("GET /api/communities/[slug]/sponsors error")
            return _error("Failed to fetch sponsors", 500)

    @api.route("/communities/<slug>/sponsors", methods=["POST"])
    @api_login_required
    def create_community_sponsor(slug):
        try:
            user = current_user()
            body = _body()
            brand = db.get_brand_by_slug(slug)
            if not brand:
                return _error("Community not found", 404)
            if not can_manage_sponsors(user, brand["sponsors_enabled"]):
                return _error(SPONSORS_DISABLED_MESSAGE, 403)
            if brand["created_by_id"] != user["id"] and not is_platform_admin(user):
                return _error("You don't have permission to add sponsors", 403)

            invalid = _validate_sponsor_body(body)
            if invalid:
                return invalid
            sponsor = db.create_sponsor(
                brand_id=brand["id"],
                display_order=_display_order(body, db.next_sponsor_order(brand_id=brand["id"])),
                **_new_sponsor_fields(body),
            )
            logger.info("Sponsor %s added to community %s", sponsor["name"], slug)
            return jsonify(ser.serialize_sponsor(sponsor)), 201
        except Exception:
            logger.exception("POST /api/communities/[slug]/sponsors error")
            return _error("Failed to create sponsor", 500)

    @api.route("/communities/<slug>/<chapter_slug>/sponsors", methods=["GET"])
    def list_chapter_sponsors(slug, chapter_slug):
        try:
            found = _find_chapter(slug, chapter_slug)
            if not found:
                return _error("Chapter not found", 404)
            brand, chapter = found
            label = chapter["sponsor_label"] or brand["sponsor_label"] or DEFAULT_SPONSOR_LABEL
            enabled = bool(brand["sponsors_enabled"])

            # Chapters do not inherit community sponsors.
            if not enabled and not is_platform_admin(current_user()):
                return jsonify({"sponsors": [], "sponsorLabel": label, "sponsorsEnabled": False})
            sponsors = db.get_sponsors(
                chapter_id=chapter["id"], active_only=request.args.get("all") != "true"
            )
            return jsonify({
                "sponsors": [ser.serialize_sponsor(s) for s in sponsors],
                "sponsorLabel": label,
                "sponsorsEnabled": enabled,
            })
        except Exception:
            logger.exception("GET /api/communities/[slug]/[chapter]/sponsors error")
            return _error("Failed to fetch sponsors", 500)

    @api.route("/communities/<slug>/<chapter_slug>/sponsors", methods=["POST"])
    @api_login_required
    def create_chapter_sponsor(slug, chapter_slug):
        try:
            user = current_user()
            body = _body()
            found = _find_chapter(slug, chapter_slug)
            if not found:
                return _error("Chapter not found", 404)
            brand, chapter = found
            if not can_manage_sponsors(user, brand["sponsors_enabled"]):
                return _error(SPONSORS_DISABLED_MESSAGE, 403)
            if not (_can_edit_chapter_sponsors(user, brand, chapter) or is_platform_admin(user)):
                return _error("You don't have permission to add sponsors", 403)

            invalid = _validate_sponsor_body(body)
            if invalid:
                return invalid
            sponsor = db.create_sponsor(
                chapter_id=chapter["id"],
                display_order=_display_order(body, db.next_sponsor_order(chapter_id=chapter["id"])),
                **_new_sponsor_fields(body),
            )
            logger.info("Sponsor %s added to chapter %s/%s", sponsor["name"], slug, chapter_slug)
            return jsonify(ser.serialize_sponsor(sponsor)), 201
        except Exception:
            logger.exception("POST /api/communities/[slug]/[chapter]/sponsors error")
            return _error("Failed to create sponsor", 500)

    @api.route("/communities/<slug>/<chapter_slug>/sponsors/<sponsor_id>", methods=["GET"])
    def get_chapter_sponsor(slug, chapter_slug, sponsor_id):
        try:
            found = _find_chapter(slug, chapter_slug)
            if not found:
                return _error("Chapter not found", 404)
            sponsor = db.get_sponsor(sponsor_id)
            if not sponsor or sponsor["chapter_id"] != found[1]["id"]:
                return _error("Sponsor not found", 404)
            return jsonify(ser.serialize_sponsor(sponsor))
        except Exception:
            logger.exception("GET /api/communities/[slug]/[chapter]/sponsors/[id] error")
            return _error("Failed to fetch sponsor", 500)

    @api.route("/communities/<slug>/<chapter_slug>/sponsors/<sponsor_id>", methods=["PUT"])
    @api_login_required
    def update_chapter_sponsor(slug, chapter_slug, sponsor_id):
        try:
            user = current_user()
            body = _body()
            found = _find_chapter(slug, chapter_slug)
            if not found:
                return _error("Chapter not found", 404)
            brand, chapter = found
            if not _can_edit_chapter_sponsors(user, brand, chapter):
                return _error("You don't have permission to edit sponsors", 403)
            sponsor = db.get_sponsor(sponsor_id)
            if not sponsor or sponsor["chapter_id"] != chapter["id"]:
                return _error("Sponsor not found", 404)

            if body.get("refreshBranding") and sponsor["domain"]:
                assets = fetch_brand_assets(sponsor["domain"])
                if assets:
                    updated = db.update_sponsor(sponsor_id, {
                        "logo": assets.logo or sponsor["logo"],
                        "primary_color": assets.primary_color or sponsor["primary_color"],
                    })
                    return jsonify(ser.serialize_sponsor(updated))

            fields = {}
            if "name" in body:
                fields["name"] = body["name"]
            if "website" in body:
                fields["website"] = body["website"]
            for key, column in (("domain", "domain"), ("description", "description"),
                                ("logo", "logo"), ("primaryColor", "primary_color")):
                if key in body:
                    fields[column] = body[key] or None
            if "isActive" in body:
                fields["is_active"] = int(bool(body["isActive"]))
            if "displayOrder" in body:
                fields["display_order"] = int(body["displayOrder"])

            updated = db.update_sponsor(sponsor_id, fields)
            return jsonify(ser.serialize_sponsor(updated))
        except Exception:
            logger.exception("PUT /api/communities/[slug]/[chapter]/sponsors/[id] error")
            return _error("Failed to update sponsor", 500)

    @api.route("/communities/<slug>/<chapter_slug>/sponsors/<sponsor_id>", methods=["DELETE"])
    @api_login_required
    def delete_chapter_sponsor(slug, chapter_slug, sponsor_id):
        try:
            user = current_user()
            found = _find_chapter(slug, chapter_slug)
            if not found:
                return _error("Chapter not found", 404)
            brand, chapter = found
            if not _can_edit_chapter_sponsors(user, brand, chapter):
                return _error("You don't have permission to delete sponsors", 403)
            sponsor = db.get_sponsor(sponsor_id)
            if not sponsor or sponsor["chapter_id"] != chapter["id"]:
                return _error("Sponsor not found", 404)
            db.delete_sponsor(sponsor_id)
            logger.info("Sponsor %s removed from chapter %s/%s", sponsor_id, slug, chapter_slug)
            return jsonify({"success": True})
        except Exception:
            logger.exception("DELETE /api/communities/[slug]/[chapter]/sponsors/[id] error")
            return _error("Failed to delete sponsor", 500)

    # ─── Chapters ─────────────────────────────────────────────────────────

    @api.route("/chapters", methods=["GET"])
    def list_chapters():
        try:
            now = now_iso()
            result = []
            for chapter in db.get_chapters(brand_slug=request.args.get("brand"), now=now):
                data = _chapter_payload(chapter, now)
                data["brand"] = {
                    "id": chapter["brand_id"],
                    "name": chapter["brand_name"],
                    "slug": chapter["brand_slug"],
                    "logo": chapter["brand_logo"],
                    "primaryColor": chapter["brand_primary_color"],
                }
                result.append(data)
            return jsonify(result)
        except Exception:
            logger.exception("GET /api/chapters error")
            return _error("Failed to fetch chapters", 500)

    @api.route("/chapters", methods=["POST"])
    @api_login_required
    def create_chapter():
        try:
            user = current_user()
            body = _body()
            brand_id = body.get("brandId")
            name = body.get("name")
            city = body.get("city")
            if not brand_id:
                return _error("Brand ID is required", 400)
            if not name or not isinstance(name, str) or len(name.strip()) < 2:
                return _error("Chapter name must be at least 2 characters", 400)
            if not city or not isinstance(city, str) or len(city.strip()) < 2:
                return _error("City must be at least 2 characters", 400)

            if not db.get_brand(brand_id):
                return _error("Brand not found", 404)

            slug = slugify(city.strip())
            if db.get_chapter_by_slug(brand_id, slug):
                return _error("A chapter already exists for this city", 400)

            chapter = db.create_chapter(brand_id, name.strip(), slug, city.strip(), user["id"])
            logger.info("Chapter %s created for brand %s", chapter["id"], brand_id)
            data = ser.serialize_chapter(chapter)
            data["members"] = [ser.serialize_member(m) for m in db.get_chapter_members(chapter["id"])]
            return jsonify(data), 201
        except Exception:
            logger.exception("POST /api/chapters error")
            return _error("Failed to create chapter", 500)

    @api.route("/chapters/<chapter_id>", methods=["GET"])
    def get_chapter(chapter_id):
        try:
            chapter = db.get_chapter(chapter_id)
            if not chapter:
                return _error("Chapter not found", 404)

            now = now_iso()
            data = ser.serialize_chapter(chapter)
            data["brand"] = ser.serialize_brand(db.get_brand(chapter["brand_id"]))
            data["members"] = [ser.serialize_member(m) for m in db.get_chapter_members(chapter_id)]
            data["rides"] = [
                ser.serialize_ride(r) for r in db.get_chapter_rides(chapter_id, now, upcoming=True, limit=10)
            ]
            if request.args.get("includePastRides") == "true":
                data["pastRides"] = [
                    ser.serialize_ride(r)
                    for r in db.get_chapter_rides(chapter_id, now, upcoming=False, limit=20)
                ]
            else:
                data["pastRides"] = []
            return jsonify(data)
        except Exception:
            logger.exception("GET /api/chapters/[id] error")
            return _error("Failed to fetch chapter", 500)

    @api.route("/chapters/<chapter_id>", methods=["PUT"])
    @api_login_required
    def update_chapter(chapter_id):
        try:
            user = current_user()
            body = _body()
            if not is_admin(_chapter_role(chapter_id, user["id"])):
                return _error("Only owners and admins can update chapter settings", 403)

            fields = {}
            if body.get("name"):
                fields["name"] = body["name"]
            if body.get("city"):
                fields["city"] = body["city"]
            if "customLogo" in body:
                value = body["customLogo"] or None
                if value and not is_allowed_image_url(value):
                    return _error("Image host not allowed", 400)
                fields["custom_logo"] = value
            if "customColors" in body:
                fields["custom_colors"] = body["customColors"] or None
            if "sponsorLabel" in body:
                # Anything but a known label means "inherit from the community".
                label = body["sponsorLabel"]
                fields["sponsor_label"] = label if label in SPONSOR_LABELS else None

            chapter = db.update_chapter(chapter_id, fields)
            return jsonify(ser.serialize_chapter(chapter))
        except Exception:
            logger.exception("PUT /api/chapters/[id] error")
            return _error("Failed to update chapter", 500)

    @api.route("/chapters/<chapter_id>", methods=["POST"])
    @api_login_required
    def add_chapter_member(chapter_id):
        try:
            user = current_user()
            body = _body()
            target_id = body.get("userId")
            role = body.get("role") or MODERATOR
            if not target_id:
                return _error("User ID is required", 400)

            caller_role = _chapter_role(chapter_id, user["id"])
            if not is_admin(caller_role):
                return _error("Only owners and admins can add members", 403)
            if db.get_chapter_member(chapter_id, target_id):
                return _error("User is already a member of this chapter", 400)
            if role not in ASSIGNABLE_ROLES:
                return _error("Invalid role", 400)
            if normalize_role(caller_role) == ADMIN and role in (OWNER, ADMIN):
                return _error("Admins can only add moderators", 403)

            member = db.add_chapter_member(chapter_id, target_id, role)
            logger.info("User %s added %s to chapter %s as %s", user["id"], target_id, chapter_id, role)
            return jsonify(ser.serialize_member(member)), 201
        except Exception:
            logger.exception("POST /api/chapters/[id]/members error")
            return _error("Failed to add member", 500)

    @api.route("/chapters/<chapter_id>", methods=["DELETE"])
    @api_login_required
    def remove_chapter_member(chapter_id):
        try:
            user = current_user()
            target_id = request.args.get("userId")
            if not target_id:
                return _error("User ID is required", 400)

            caller_role = _chapter_role(chapter_id, user["id"])
            is_self = target_id == user["id"]
            if not is_self and not is_admin(caller_role):
                return _error("Only owners and admins can remove members", 403)

            target = db.get_chapter_member(chapter_id, target_id)
            if not target:
                return _error("Member not found", 404)
            if is_owner(target["role"]) and db.count_chapter_owners(chapter_id) <= 1:
                return _error("Cannot remove the last owner. Transfer ownership first.", 400)
            if normalize_role(caller_role) == ADMIN and is_admin(target["role"]):
                return _error("Admins can only remove moderators", 403)

            db.remove_chapter_member(chapter_id, target_id)
            logger.info("User %s removed %s from chapter %s", user["id"], target_id, chapter_id)
            return jsonify({"success": True})
        except Exception:
            logger.exception("DELETE /api/chapters/[id]/members error")
            return _error("Failed to remove member", 500)

    @api.route("/chapters/<chapter_id>", methods=["PATCH"])
    @api_login_required
    def update_chapter_member(chapter_id):
        try:
            user = current_user()
            body = _body()
            target_id = body.get("userId")
            role = body.get("role")
            if not target_id or not role:
                return _error("User ID and role are required", 400)
            if role not in ASSIGNABLE_ROLES:
                return _error("Invalid role", 400)

            caller_role = _chapter_role(chapter_id, user["id"])
            if not is_admin(caller_role):
                return _error("Only owners and admins can update roles", 403)

            target = db.get_chapter_member(chapter_id, target_id)
            if not target:
                return _error("Member not found", 404)
            if normalize_role(caller_role) == ADMIN and role in (OWNER, ADMIN):
                return _error("Only owners can promote to admin or owner", 403)
            if is_owner(target["role"]) and role != OWNER and db.count_chapter_owners(chapter_id) <= 1:
                return _error("Cannot demote the last owner", 400)

            member = db.update_chapter_member_role(chapter_id, target_id, role)
            return jsonify(ser.serialize_member(member))
        except Exception:
            logger.exception("PATCH /api/chapters/[id]/members error")
            return _error("Failed to update member role", 500)

    # ─── Follows ──────────────────────────────────────────────────────────

    @api.route("/follows", methods=["GET"])
    @api_login_required
    def list_follows():
        try:
            follows = db.get_follows(current_user()["id"])
            return jsonify({"follows": [ser.serialize_follow(f) for f in follows]})
        except Exception:
            logger.exception("GET /api/follows error")
            return _error("Failed to fetch follows", 500)

    @api.route("/follows", methods=["POST"])
    @api_login_required
    def create_follow():
        try:
            user = current_user()
            body = _body()
            brand_id = body.get("brandId") or None
            chapter_id = body.get("chapterId") or None
            if not brand_id and not chapter_id:
                return _error("brandId or chapterId is required", 400)
            if brand_id and chapter_id:
                return _error("Can only follow one entity at a time", 400)
            if brand_id and not db.get_brand(brand_id):
                return _error("Brand not found", 404)
            if chapter_id and not db.get_chapter(chapter_id):
                return _error("Chapter not found", 404)

            follow = db.follow(user["id"], brand_id=brand_id, chapter_id=chapter_id)
            return jsonify(ser.serialize_follow(follow))
        except Exception:
            logger.exception("POST /api/follows error")
            return _error("Failed to follow", 500)

    @api.route("/follows", methods=["DELETE"])
    @api_login_required
    def delete_follow():
        try:
            follow_id = request.args.get("id")
            brand_id = request.args.get("brandId")
            chapter_id = request.args.get("chapterId")
            if not (follow_id or brand_id or chapter_id):
                return _error("brandId, chapterId, or id is required", 400)
            db.unfollow(current_user()["id"], follow_id=follow_id, brand_id=brand_id,
                        chapter_id=chapter_id)
            return jsonify({"success": True})
        except Exception:
            logger.exception("DELETE /api/follows error")
            return _error("Failed to unfollow", 500)

    # ─── Notification settings ────────────────────────────────────────────

    @api.route("/notifications/settings", methods=["GET"])
    @api_login_required
    def get_notification_settings():
        try:
            user_id = current_user()["id"]
            settings = db.get_notification_settings(user_id)
            if settings is None:
                settings = db.set_notification_settings(user_id, True)
            return jsonify({
                "userId": user_id,
                "autoFollowOnRsvp": bool(settings["auto_follow_on_rsvp"]),
            })
        except Exception:
            logger.exception("GET /api/notifications/settings error")
            return _error("Failed to fetch notification settings", 500)

    @api.route("/notifications/settings", methods=["PUT"])
    @api_login_required
    def update_notification_settings():
        try:
            user_id = current_user()["id"]
            body = _body()
            current = db.get_notification_settings(user_id)
            value = body.get("autoFollowOnRsvp")
            if value is None:
                value = bool(current["auto_follow_on_rsvp"]) if current else True
            settings = db.set_notification_settings(user_id, bool(value))
            return jsonify({
                "userId": user_id,
                "autoFollowOnRsvp": bool(settings["auto_follow_on_rsvp"]),
            })
        except Exception:
            logger.exception("PUT /api/notifications/settings error")
            return _error("Failed to update notification settings", 500)

    # ─── Profile and user search ──────────────────────────────────────────

    @api.route("/profile", methods=["GET"])
    @api_login_required
    def get_profile():
        try:
            user = db.get_user(current_user()["id"])
            if not user:
                return _error("User not found", 404)
            return jsonify(ser.serialize_profile(user))
        except Exception:
            logger.exception("GET /api/profile error")
            return _error("Failed to fetch profile", 500)

    @api.route("/profile", methods=["PUT"])
    @api_login_required
    def update_profile():
        try:
            user = current_user()
            body = _body()

            fields = {}
            slug = body.get("slug")
            if slug:
                slug = slug.strip()
                problem = username_error(slug)
                if problem:
                    return _error(problem, 400)
                if is_reserved_username(slug):
                    return _error("This username is reserved", 400)
                if db.is_user_slug_taken(slug, exclude_user_id=user["id"]):
                    return _error("This username is already taken", 400)
                fields["slug"] = slug
            elif "slug" in body:
                fields["slug"] = None

            for key in PROFILE_FIELDS:
                if key in body:
                    value = body[key]
                    fields[key] = (value.strip() or None) if isinstance(value, str) else None

            updated = db.update_user_profile(user["id"], fields)
            logger.info("Profile updated for %s", user["id"])
            return jsonify(ser.serialize_profile(updated))
        except Exception:
            logger.exception("PUT /api/profile error")
            return _error("Failed to update profile", 500)

    @api.route("/profile/check-slug", methods=["GET"])
    @api_login_required
    def check_profile_slug():
        try:
            slug = (request.args.get("slug") or "").strip()
            if not slug or username_error(slug):
                return jsonify({"available": False, "valid": False})
            if is_reserved_username(slug):
                return jsonify({"available": False, "valid": True})
            taken = db.is_user_slug_taken(slug, exclude_user_id=current_user()["id"])
            return jsonify({"available": not taken, "valid": True})
        except Exception:
            logger.exception("GET /api/profile/check-slug error")
            return _error("Failed to check slug", 500)

    @api.route("/users/search", methods=["GET"])
    @api_login_required
    def search_users():
        try:
            query = (request.args.get("q") or "").strip()
            if len(query) < MIN_USER_SEARCH_LENGTH:
                return jsonify({"users": []})
            return jsonify({"users": db.search_users(query, limit=10)})
        except Exception:
            logger.exception("GET /api/users/search error")
            return _error("Failed to search users", 500)

    # ─── Platform admin ───────────────────────────────────────────────────

    @api.route("/admin/communities", methods=["GET"])
    @platform_admin_required
    def admin_communities():
        try:
            communities = [
                {
                    "id": c["id"],
                    "name": c["name"],
                    "slug": c["slug"],
                    "type": c["type"],
                    "logo": c["logo"],
                    "sponsorsEnabled": bool(c["sponsors_enabled"]),
                    "createdAt": c["created_at"],
                    "createdBy": {"name": c["creator_name"], "email": c["creator_email"]},
                    "_count": {"chapters": c["chapter_count"]},
                }
                for c in db.get_admin_communities()
            ]
            return jsonify({"communities": communities})
        except Exception:
            logger.exception("GET /api/admin/communities error")
            return _error("Failed to fetch communities", 500)

    @api.route("/admin/communities/<brand_id>", methods=["PATCH"])
    @platform_admin_required
    def admin_update_community(brand_id):
        try:
            body = _body()
            if not db.get_brand(brand_id):
                return _error("Community not found", 404)

            fields = {}
            if isinstance(body.get("sponsorsEnabled"), bool):
                fields["sponsors_enabled"] = int(body["sponsorsEnabled"])
            if not fields:
                return _error("No valid fields to update", 400)

            brand = db.update_brand(brand_id, fields)
            logger.info("Platform admin set sponsorsEnabled=%s on %s", body["sponsorsEnabled"], brand_id)
            return jsonify({
                "id": brand["id"],
                "name": brand["name"],
                "slug": brand["slug"],
                "sponsorsEnabled": bool(brand["sponsors_enabled"]),
            })
        except Exception:
            logger.exception("PATCH /api/admin/communities/[id] error")
            return _error("Failed to update community", 500)

    @api.route("/admin/analytics", methods=["GET"])
    @platform_admin_required
    def admin_analytics():
        try:
            return jsonify(build_analytics())
        except Exception:
            logger.exception("GET /api/admin/analytics error")
            return _error("Failed to fetch analytics", 500)

    return api


def build_analytics() -> dict:
    """Platform-wide counters shared by the admin API and the admin page."""
    now = utc_now()
    now_str = to_iso(now)

    recent_users = [
        {
            "id": u["id"],
            "name": u["name"],
            "email": u["email"],
            "image": u["image"],
            "createdAt": u["created_at"],
            "_count": {"rsvps": u["rsvp_count"], "chapters": u["chapter_count"]},
        }
        for u in db.get_recent_users(50)
    ]

    top = [
        {
            "id": c["id"],
            "name": c["name"],
            "slug": c["slug"],
            "logo": c["logo"],
            "chapterCount": c["chapter_count"],
            "rideCount": c["ride_count"],
        }
        for c in db.get_top_communities(10)
    ]
    top.sort(key=lambda c: c["rideCount"], reverse=True)

    return {
        "overview": {
            "totalUsers": db.count_users(),
            "newUsers7d": db.count_users(since=to_iso(now - timedelta(days=7))),
            "newUsers30d": db.count_users(since=to_iso(now - timedelta(days=30))),
            "totalCommunities": db.count_brands(),
            "totalChapters": db.count_chapters(),
            "totalRides": db.count_rides(),
            "upcomingRides": db.count_rides(after=now_str),
            "pastRides": db.count_rides(before=now_str),
            "totalRsvps": db.count_rsvps(),
        },
        "recentUsers": recent_users,
        "topCommunities": top,
        "ridesByMonth": [
            {"month": r["month"], "count": int(r["count"])}
            for r in db.get_rides_by_month(to_iso(now - timedelta(days=183)))
        ],
    }
