"""
Seed Data — Populates the database with demo communities, chapters, users and
rides, and promotes the configured platform admins.

Usage: python -m rideswith.main --seed
"""

import logging
from datetime import timedelta

from rideswith import database as db
from rideswith import config
from rideswith.dates import to_iso, utc_now
from rideswith.roles import PLATFORM_ADMIN

logger = logging.getLogger(__name__)

# ─── Demo Users ──────────────────────────────────────────────────────────────

DEMO_USERS = [
    {"email": "lena@example.com", "name": "Lena Vogel", "slug": "lena"},
    {"email": "marco@example.com", "name": "Marco Rossi", "slug": "marco"},
    {"email": "sam@example.com", "name": "Sam Okafor", "slug": "sam"},
]

# ─── Demo Communities ────────────────────────────────────────────────────────

DEMO_BRANDS = [
    {
        "name": "Straede",
        "slug": "straede",
        "type": "BRAND",
        "discipline": "road",
        "domain": "straede.com",
        "description": "Road cycling apparel and weekly group rides.",
        "primary_color": "#111827",
        "secondary_color": "#f59e0b",
        "slogan": "Ride together.",
        "instagram": "straede",
        "owner": "lena@example.com",
        "chapters": [
            {"name": "Berlin", "slug": "berlin", "city": "Berlin"},
            {"name": "Munich", "slug": "munich", "city": "Munich"},
        ],
    },
    {
        "name": "Gravel Collective",
        "slug": "gravel-collective",
        "type": "CLUB",
        "discipline": "gravel",
        "description": "Dirt roads, good coffee, no one left behind.",
        "primary_color": "#4d7c0f",
        "owner": "marco@example.com",
        "chapters": [
            {"name": "Hamburg", "slug": "hamburg", "city": "Hamburg"},
        ],
    },
]

# (chapter slug, title, days from now, hour, location, lat, lng, pace, min, max, km, terrain)
DEMO_RIDES = [
    ("berlin", "Saturday Morning Loop", 2, 9, "Brandenburger Tor", 52.5163, 13.3777,
     "MODERATE", 26, 30, 80, "road"),
    ("berlin", "Tempelhof Coffee Spin", 4, 8, "Tempelhofer Feld", 52.4730, 13.4039,
     "CASUAL", 20, 24, 40, "road"),
    ("munich", "Isar Valley Hammer", 3, 7, "Marienplatz", 48.1374, 11.5755,
     "FAST", 32, 36, 100, "road"),
    ("hamburg", "Harburg Hills Gravel", 5, 10, "Harburg Station", 53.4560, 9.9916,
     "MODERATE", None, None, 65, "gravel"),
]


def _seed_users() -> dict:
    users = {}
    for entry in DEMO_USERS:
        user = db.get_user_by_email(entry["email"])
        if user is None:
            user = db.create_user(entry["email"], name=entry["name"], slug=entry["slug"])
            logger.info("  Added user: %s", entry["email"])
        users[entry["email"]] = user
    return users


def _seed_communities(users: dict) -> dict:
    chapters = {}
    for entry in DEMO_BRANDS:
        fields = {k: v for k, v in entry.items() if k not in ("owner", "chapters")}
        owner = users[entry["owner"]]
        brand = db.create_brand(created_by_id=owner["id"], **fields)
        logger.info("  Added community: %s", brand["name"])

        for chapter_entry in entry["chapters"]:
            chapter = db.create_chapter(
                brand["id"], chapter_entry["name"], chapter_entry["slug"],
                chapter_entry["city"], owner["id"],
            )
            chapters[chapter_entry["slug"]] = (chapter, owner)
            logger.info("    Added chapter: %s", chapter["name"])
    return chapters


def _seed_rides(chapters: dict, users: dict) -> int:
    now = utc_now().replace(minute=0, second=0, microsecond=0)
    riders = list(users.values())
    count = 0
    for (chapter_slug, title, days, hour, location, lat, lng,
         pace, pace_min, pace_max, distance, terrain) in DEMO_RIDES:
        chapter, owner = chapters[chapter_slug]
        organizer = db.get_managed_organizer(owner["id"])
        if organizer is None:
            organizer = db.create_organizer(owner["name"], owner["slug"], owner["id"])

        ride_id = db.create_ride(
            title=title,
            date=to_iso((now + timedelta(days=days)).replace(hour=hour)),
            timezone="Europe/Berlin",
            location_name=location,
            location_address=f"{location}, {chapter['city']}",
            latitude=lat,
            longitude=lng,
            distance=distance,
            pace=pace,
            pace_min=pace_min,
            pace_max=pace_max,
            terrain=terrain,
            max_attendees=20,
            organizer_id=organizer["id"],
            chapter_id=chapter["id"],
        )
        db.adjust_organizer_ride_count(organizer["id"], 1)
        db.adjust_chapter_counts(chapter["id"], rides=1)

        for rider in riders[: count % len(riders) + 1]:
            db.upsert_rsvp(ride_id, rider["id"], "GOING")
        count += 1
        logger.info("    Added ride: %s", title)
    return count


def promote_platform_admins() -> int:
    """Give every configured admin email the platform admin role."""
    for email in config.PLATFORM_ADMIN_EMAILS:
        db.upsert_user_by_email(email, role=PLATFORM_ADMIN)
        logger.info("Set %s as %s", email, PLATFORM_ADMIN)
    return len(config.PLATFORM_ADMIN_EMAILS)


def seed_database() -> bool:
    """Populate the database with demo data. Returns False if it already has data."""
    db.init_db()
    promote_platform_admins()

    existing = db.count_brands()
    if existing:
        logger.info("Database already has %s communities. Skipping seed.", existing)
        return False

    logger.info("Seeding demo data...")
    users = _seed_users()
    chapters = _seed_communities(users)
    rides = _seed_rides(chapters, users)
    logger.info(
        "Seed data inserted successfully! (%s users, %s chapters, %s rides)",
        len(users), len(chapters), rides,
    )
    return True
