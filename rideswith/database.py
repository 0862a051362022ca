"""
Database module — SQLite storage for users, communities, chapters, rides,
RSVPs, comments, follows, sponsors and Telegram bot users.
"""

import logging
import secrets
import sqlite3
import json
from contextlib import contextmanager
from typing import Optional

from rideswith import config
from rideswith.dates import now_iso

logger = logging.getLogger(__name__)


@contextmanager
def get_connection():
    """Yield a SQLite connection and always close it safely."""
    # The web app and the Telegram bot can run in the same process. We create
    # a fresh connection per operation, with a generous busy_timeout to reduce
    # "database is locked" errors under concurrent writes.
    conn = sqlite3.connect(str(config.DB_PATH), timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=30000")
    conn.execute("PRAGMA foreign_keys=ON")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def new_id() -> str:
    """Return a new opaque 24-hex-char primary key."""
    return secrets.token_hex(12)


_NOW_DEFAULT = "(strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))"


def init_db():
    """Create all tables if they don't exist."""
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.executescript(f"""
            -- Website users (magic-link sign in)
            CREATE TABLE IF NOT EXISTS users (
                id          TEXT PRIMARY KEY,
                email       TEXT NOT NULL UNIQUE,
                name        TEXT,
                image       TEXT,
                slug        TEXT UNIQUE,
                bio         TEXT,
                location    TEXT,
                instagram   TEXT,
                strava      TEXT,
                role        TEXT NOT NULL DEFAULT 'USER' CHECK(role IN ('USER', 'PLATFORM_ADMIN')),
                created_at  TEXT DEFAULT {_NOW_DEFAULT},
                updated_at  TEXT DEFAULT {_NOW_DEFAULT}
            );

            CREATE TABLE IF NOT EXISTS notification_settings (
                user_id             TEXT PRIMARY KEY,
                auto_follow_on_rsvp INTEGER NOT NULL DEFAULT 1,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            -- Communities ("brands")
            CREATE TABLE IF NOT EXISTS brands (
                id               TEXT PRIMARY KEY,
                name             TEXT NOT NULL,
                slug             TEXT NOT NULL UNIQUE,
                type             TEXT NOT NULL DEFAULT 'BRAND' CHECK(type IN ('BRAND', 'CLUB', 'TEAM', 'GROUP')),
                discipline       TEXT,
                domain           TEXT,
                description      TEXT,
                logo             TEXT,
                logo_dark        TEXT,
                logo_icon        TEXT,
                primary_color    TEXT,
                secondary_color  TEXT,
                backdrop         TEXT,
                slogan           TEXT,
                fonts            TEXT,
                instagram        TEXT,
                twitter          TEXT,
                facebook         TEXT,
                strava           TEXT,
                youtube          TEXT,
                sponsors_enabled INTEGER NOT NULL DEFAULT 0,
                sponsor_label    TEXT,
                created_by_id    TEXT,
                created_at       TEXT DEFAULT {_NOW_DEFAULT},
                updated_at       TEXT DEFAULT {_NOW_DEFAULT},
                FOREIGN KEY (created_by_id) REFERENCES users(id) ON DELETE SET NULL
            );

            -- City chapters of a community
            CREATE TABLE IF NOT EXISTS chapters (
                id            TEXT PRIMARY KEY,
                brand_id      TEXT NOT NULL,
                name          TEXT NOT NULL,
                slug          TEXT NOT NULL,
                city          TEXT NOT NULL,
                member_count  INTEGER NOT NULL DEFAULT 0,
                ride_count    INTEGER NOT NULL DEFAULT 0,
                custom_logo   TEXT,
                custom_colors TEXT,
                sponsor_label TEXT,
                created_at    TEXT DEFAULT {_NOW_DEFAULT},
                updated_at    TEXT DEFAULT {_NOW_DEFAULT},
                UNIQUE (brand_id, slug),
                FOREIGN KEY (brand_id) REFERENCES brands(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS chapter_members (
                id          TEXT PRIMARY KEY,
                chapter_id  TEXT NOT NULL,
                user_id     TEXT NOT NULL,
                role        TEXT NOT NULL DEFAULT 'MODERATOR'
                            CHECK(role IN ('OWNER', 'ADMIN', 'MODERATOR', 'LEAD', 'AMBASSADOR')),
                joined_at   TEXT DEFAULT {_NOW_DEFAULT},
                UNIQUE (chapter_id, user_id),
                FOREIGN KEY (chapter_id) REFERENCES chapters(id) ON DELETE CASCADE,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            -- Organizers own rides; every ride creator gets a personal one
            CREATE TABLE IF NOT EXISTS organizers (
                id          TEXT PRIMARY KEY,
                name        TEXT NOT NULL,
                slug        TEXT NOT NULL UNIQUE,
                ride_count  INTEGER NOT NULL DEFAULT 0,
                created_at  TEXT DEFAULT {_NOW_DEFAULT}
            );

            CREATE TABLE IF NOT EXISTS organizer_members (
                organizer_id TEXT NOT NULL,
                user_id      TEXT NOT NULL,
                role         TEXT NOT NULL DEFAULT 'MEMBER' CHECK(role IN ('OWNER', 'ADMIN', 'MEMBER')),
                UNIQUE (organizer_id, user_id),
                FOREIGN KEY (organizer_id) REFERENCES organizers(id) ON DELETE CASCADE,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS rides (
                id                    TEXT PRIMARY KEY,
                title                 TEXT NOT NULL,
                description           TEXT,
                date                  TEXT NOT NULL,
                end_time              TEXT,
                timezone              TEXT NOT NULL DEFAULT 'UTC',
                location_name         TEXT NOT NULL,
                location_address      TEXT NOT NULL,
                latitude              REAL NOT NULL,
                longitude             REAL NOT NULL,
                distance              REAL,
                elevation             REAL,
                pace                  TEXT NOT NULL DEFAULT 'MODERATE'
                                      CHECK(pace IN ('CASUAL', 'MODERATE', 'FAST', 'RACE')),
                pace_min              REAL,
                pace_max              REAL,
                terrain               TEXT,
                max_attendees         INTEGER,
                is_free               INTEGER NOT NULL DEFAULT 1,
                price                 REAL,
                currency              TEXT NOT NULL DEFAULT 'EUR',
                route_url             TEXT,
                status                TEXT NOT NULL DEFAULT 'PUBLISHED'
                                      CHECK(status IN ('DRAFT', 'PUBLISHED', 'CANCELLED')),
                organizer_id          TEXT NOT NULL,
                chapter_id            TEXT,
                recurrence_pattern    TEXT,
                recurrence_series_id  TEXT,
                recurrence_end_date   TEXT,
                is_recurring_template INTEGER NOT NULL DEFAULT 0,
                is_live               INTEGER NOT NULL DEFAULT 0,
                live_location_url     TEXT,
                live_started_at       TEXT,
                created_at            TEXT DEFAULT {_NOW_DEFAULT},
                updated_at            TEXT DEFAULT {_NOW_DEFAULT},
                FOREIGN KEY (organizer_id) REFERENCES organizers(id) ON DELETE CASCADE,
                FOREIGN KEY (chapter_id) REFERENCES chapters(id) ON DELETE SET NULL
            );

            CREATE TABLE IF NOT EXISTS rsvps (
                id          TEXT PRIMARY KEY,
                ride_id     TEXT NOT NULL,
                user_id     TEXT NOT NULL,
                status      TEXT NOT NULL CHECK(status IN ('GOING', 'MAYBE', 'NOT_GOING')),
                created_at  TEXT DEFAULT {_NOW_DEFAULT},
                updated_at  TEXT DEFAULT {_NOW_DEFAULT},
                UNIQUE (ride_id, user_id),
                FOREIGN KEY (ride_id) REFERENCES rides(id) ON DELETE CASCADE,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS ride_comments (
                id          TEXT PRIMARY KEY,
                ride_id     TEXT NOT NULL,
                user_id     TEXT NOT NULL,
                content     TEXT NOT NULL,
                created_at  TEXT DEFAULT {_NOW_DEFAULT},
                FOREIGN KEY (ride_id) REFERENCES rides(id) ON DELETE CASCADE,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            -- A follow targets exactly one community or one chapter
            CREATE TABLE IF NOT EXISTS follows (
                id          TEXT PRIMARY KEY,
                user_id     TEXT NOT NULL,
                brand_id    TEXT,
                chapter_id  TEXT,
                created_at  TEXT DEFAULT {_NOW_DEFAULT},
                CHECK ((brand_id IS NULL) != (chapter_id IS NULL)),
                UNIQUE (user_id, brand_id),
                UNIQUE (user_id, chapter_id),
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                FOREIGN KEY (brand_id) REFERENCES brands(id) ON DELETE CASCADE,
                FOREIGN KEY (chapter_id) REFERENCES chapters(id) ON DELETE CASCADE
            );

            -- Sponsors belong to exactly one community or one chapter
            CREATE TABLE IF NOT EXISTS sponsors (
                id            TEXT PRIMARY KEY,
                brand_id      TEXT,
                chapter_id    TEXT,
                name          TEXT NOT NULL,
                domain        TEXT,
                description   TEXT,
                website       TEXT NOT NULL,
                logo          TEXT,
                backdrop      TEXT,
                primary_color TEXT,
                display_size  TEXT NOT NULL DEFAULT 'SMALL' CHECK(display_size IN ('SMALL', 'MEDIUM', 'LARGE')),
                is_active     INTEGER NOT NULL DEFAULT 1,
                display_order INTEGER NOT NULL DEFAULT 0,
                created_at    TEXT DEFAULT {_NOW_DEFAULT},
                updated_at    TEXT DEFAULT {_NOW_DEFAULT},
                CHECK ((brand_id IS NULL) != (chapter_id IS NULL)),
                FOREIGN KEY (brand_id) REFERENCES brands(id) ON DELETE CASCADE,
                FOREIGN KEY (chapter_id) REFERENCES chapters(id) ON DELETE CASCADE
            );

            -- Telegram bot users and their search preferences
            CREATE TABLE IF NOT EXISTS telegram_users (
                telegram_id       INTEGER PRIMARY KEY,
                username          TEXT,
                first_name        TEXT,
                default_latitude  REAL,
                default_longitude REAL,
                default_city      TEXT,
                default_radius    INTEGER NOT NULL DEFAULT 50,
                unit_preference   TEXT NOT NULL DEFAULT 'km' CHECK(unit_preference IN ('km', 'mi')),
                created_at        TEXT DEFAULT {_NOW_DEFAULT},
                updated_at        TEXT DEFAULT {_NOW_DEFAULT}
            );

            -- Create indexes
            CREATE INDEX IF NOT EXISTS idx_rides_date ON rides(status, date);
            CREATE INDEX IF NOT EXISTS idx_rides_series ON rides(recurrence_series_id);
            CREATE INDEX IF NOT EXISTS idx_rides_chapter ON rides(chapter_id);
            CREATE INDEX IF NOT EXISTS idx_rsvps_ride ON rsvps(ride_id, status);
            CREATE INDEX IF NOT EXISTS idx_comments_ride ON ride_comments(ride_id);
            CREATE INDEX IF NOT EXISTS idx_chapters_brand ON chapters(brand_id);
            CREATE INDEX IF NOT EXISTS idx_follows_user ON follows(user_id);
            CREATE INDEX IF NOT EXISTS idx_sponsors_brand ON sponsors(brand_id, display_order);
            CREATE INDEX IF NOT EXISTS idx_sponsors_chapter ON sponsors(chapter_id, display_order);
        """)

        # Lightweight migrations for existing databases (SQLite can only ADD COLUMN).
        def _ensure_column(table: str, column: str, ddl_suffix: str) -> None:
            cols = conn.execute(f"PRAGMA table_info({table})").fetchall()
            if any(r["name"] == column for r in cols):
                return
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl_suffix}")

        _ensure_column("rides", "pace_min", "REAL")
        _ensure_column("rides", "pace_max", "REAL")
        _ensure_column("brands", "sponsors_enabled", "INTEGER NOT NULL DEFAULT 0")
        _ensure_column("brands", "sponsor_label", "TEXT")
        _ensure_column("chapters", "sponsor_label", "TEXT")
        for column in ("bio", "location", "instagram", "strava"):
            _ensure_column("users", column, "TEXT")
        _ensure_column("telegram_users", "unit_preference", "TEXT NOT NULL DEFAULT 'km'")


def ping() -> bool:
    """Run a trivial query; raises if the database is unreachable."""
    with get_connection() as conn:
        conn.execute("SELECT 1").fetchone()
    return True


def _update_row(conn, table: str, key_col: str, key, fields: dict, allowed: set[str],
                touch: bool = True) -> int:
    """UPDATE whitelisted *fields* of one row. Returns the affected row count."""
    cols = [c for c in fields if c in allowed]
    if not cols:
        return 0
    assignments = ", ".join(f"{c}=?" for c in cols)
    params = [fields[c] for c in cols]
    if touch:
        assignments += ", updated_at=?"
        params.append(now_iso())
    params.append(key)
    cur = conn.execute(f"UPDATE {table} SET {assignments} WHERE {key_col}=?", params)
    return cur.rowcount


# ─── Users ───────────────────────────────────────────────────────────────────

def create_user(email: str, name: str | None = None, role: str = "USER",
                slug: str | None = None, image: str | None = None) -> dict:
    """Create a user and return it."""
    user_id = new_id()
    with get_connection() as conn:
        conn.execute(
            "INSERT INTO users (id, email, name, role, slug, image) VALUES (?, ?, ?, ?, ?, ?)",
            (user_id, email.strip().lower(), name, role, slug, image),
        )
    return get_user(user_id)


def get_user(user_id: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM users WHERE id=?", (user_id,)).fetchone()
        return dict(row) if row else None


def get_user_by_email(email: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE email=?", (email.strip().lower(),)
        ).fetchone()
        return dict(row) if row else None


def upsert_user_by_email(email: str, role: str | None = None) -> dict:
    """Return the user for *email*, creating it on first sign in.

    When *role* is given it is applied to an existing user as well, so that a
    newly configured platform admin is promoted on their next sign in.
    """
    user = get_user_by_email(email)
    if user is None:
        return create_user(email, role=role or "USER")
    if role and user["role"] != role:
        with get_connection() as conn:
            _update_row(conn, "users", "id", user["id"], {"role": role}, {"role"})
        user = get_user(user["id"])
    return user


def count_users(since: str | None = None) -> int:
    with get_connection() as conn:
        if since:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM users WHERE created_at >= ?", (since,)
            ).fetchone()
        else:
            row = conn.execute("SELECT COUNT(*) AS count FROM users").fetchone()
        return int(row["count"]) if row else 0


def get_recent_users(limit: int = 50) -> list[dict]:
    """Newest users with their RSVP and chapter-membership counts."""
    with get_connection() as conn:
        rows = conn.execute(
            """SELECT u.*,
                      (SELECT COUNT(*) FROM rsvps r WHERE r.user_id = u.id) AS rsvp_count,
                      (SELECT COUNT(*) FROM chapter_members m WHERE m.user_id = u.id) AS chapter_count
               FROM users u
               ORDER BY u.created_at DESC, u.rowid DESC
               LIMIT ?""",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]


def get_users_with_slug(limit: int = 1000) -> list[dict]:
    with get_connection() as conn:
        rows = conn.execute(
            "SELECT slug, updated_at FROM users WHERE slug IS NOT NULL AND slug != '' LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]


def get_user_by_slug(slug: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM users WHERE slug=?", (slug,)).fetchone()
        return dict(row) if row else None


def get_user_rides(user_id: str, now: str, limit: int = 20) -> list[dict]:
    """Upcoming published rides the user is GOING to, soonest first."""
    with get_connection() as conn:
        rows = conn.execute(
            _RIDE_SELECT
            + """ WHERE r.status = 'PUBLISHED' AND r.date >= ?
                  AND EXISTS (SELECT 1 FROM rsvps v
                              WHERE v.ride_id = r.id AND v.user_id = ? AND v.status = 'GOING')
                  ORDER BY r.date ASC LIMIT ?""",
            (now, user_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]


def get_notification_settings(user_id: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute(
            "SELECT * FROM notification_settings WHERE user_id=?", (user_id,)
        ).fetchone()
        return dict(row) if row else None


def set_notification_settings(user_id: str, auto_follow_on_rsvp: bool) -> dict:
    with get_connection() as conn:
        conn.execute(
            """INSERT INTO notification_settings (user_id, auto_follow_on_rsvp) VALUES (?, ?)
               ON CONFLICT(user_id) DO UPDATE SET auto_follow_on_rsvp=excluded.auto_follow_on_rsvp""",
            (user_id, int(bool(auto_follow_on_rsvp))),
        )
    return get_notification_settings(user_id)


_PROFILE_COLUMNS = {"name", "slug", "bio", "location", "instagram", "strava"}


def update_user_profile(user_id: str, fields: dict) -> Optional[dict]:
    with get_connection() as conn:
        _update_row(conn, "users", "id", user_id, fields, _PROFILE_COLUMNS)
    return get_user(user_id)


def is_user_slug_taken(slug: str, exclude_user_id: str | None = None) -> bool:
    """True when another user already owns *slug*."""
    with get_connection() as conn:
        row = conn.execute(
            "SELECT 1 FROM users WHERE slug = ? AND id != ?", (slug, exclude_user_id or "")
        ).fetchone()
        return row is not None


def search_users(query: str, limit: int = 10) -> list[dict]:
    """Users whose name or email contains *query*, case-insensitively, by name."""
    escaped = query.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"
    with get_connection() as conn:
        rows = conn.execute(
            """SELECT id, name, email, image, slug FROM users
               WHERE LOWER(COALESCE(name, '')) LIKE ? ESCAPE '\\' OR LOWER(email) LIKE ? ESCAPE '\\'
               ORDER BY name IS NULL, name ASC
               LIMIT ?""",
            (pattern, pattern, limit),
        ).fetchall()
        return [dict(r) for r in rows]


# ─── Organizers ──────────────────────────────────────────────────────────────

def get_managed_organizer(user_id: str) -> Optional[dict]:
    """First organizer where *user_id* is an OWNER or ADMIN."""
    with get_connection() as conn:
        row = conn.execute(
            """SELECT o.* FROM organizers o
               JOIN organizer_members m ON m.organizer_id = o.id
               WHERE m.user_id = ? AND m.role IN ('OWNER', 'ADMIN')
               ORDER BY o.created_at ASC
               LIMIT 1""",
            (user_id,),
        ).fetchone()
        return dict(row) if row else None


def create_organizer(name: str, slug: str, owner_id: str) -> dict:
    organizer_id = new_id()
    with get_connection() as conn:
        conn.execute(
            "INSERT INTO organizers (id, name, slug) VALUES (?, ?, ?)",
            (organizer_id, name, slug),
        )
        conn.execute(
            "INSERT INTO organizer_members (organizer_id, user_id, role) VALUES (?, ?, 'OWNER')",
            (organizer_id, owner_id),
        )
    return get_organizer(organizer_id)


def get_organizer(organizer_id: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM organizers WHERE id=?", (organizer_id,)).fetchone()
        return dict(row) if row else None


def is_organizer_admin(organizer_id: str, user_id: str) -> bool:
    """True when *user_id* is an OWNER or ADMIN of the organizer."""
    with get_connection() as conn:
        row = conn.execute(
            """SELECT 1 FROM organizer_members
               WHERE organizer_id = ? AND user_id = ? AND role IN ('OWNER', 'ADMIN')""",
            (organizer_id, user_id),
        ).fetchone()
        return row is not None


def adjust_organizer_ride_count(organizer_id: str, delta: int):
    with get_connection() as conn:
        conn.execute(
            "UPDATE organizers SET ride_count = ride_count + ? WHERE id=?",
            (delta, organizer_id),
        )


# ─── Rides ───────────────────────────────────────────────────────────────────

_RIDE_COLUMNS = {
    "title", "description", "date", "end_time", "timezone", "location_name",
    "location_address", "latitude", "longitude", "distance", "elevation", "pace",
    "pace_min", "pace_max", "terrain", "max_attendees", "is_free", "price",
    "currency", "route_url", "status", "organizer_id", "chapter_id",
    "recurrence_pattern", "recurrence_series_id", "recurrence_end_date",
    "is_recurring_template", "is_live", "live_location_url", "live_started_at",
}

_RIDE_SELECT = """
    SELECT r.*,
           o.name AS organizer_name, o.slug AS organizer_slug,
           c.name AS chapter_name, c.slug AS chapter_slug,
           b.id AS brand_id, b.name AS brand_name, b.slug AS brand_slug,
           b.logo AS brand_logo, b.logo_icon AS brand_logo_icon,
           b.backdrop AS brand_backdrop, b.primary_color AS brand_primary_color,
           (SELECT COUNT(*) FROM rsvps v
             WHERE v.ride_id = r.id AND v.status = 'GOING') AS attendee_count,
           (SELECT COUNT(*) FROM rsvps v WHERE v.ride_id = r.id) AS rsvp_count
    FROM rides r
    JOIN organizers o ON o.id = r.organizer_id
    LEFT JOIN chapters c ON c.id = r.chapter_id
    LEFT JOIN brands b ON b.id = c.brand_id
"""


def create_ride(**fields) -> str:
    """Insert a ride from snake_case column values. Returns the new ride ID."""
    ride_id = new_id()
    cols = [c for c in fields if c in _RIDE_COLUMNS]
    placeholders = ", ".join("?" for _ in range(len(cols) + 1))
    with get_connection() as conn:
        conn.execute(
            f"INSERT INTO rides (id, {', '.join(cols)}) VALUES ({placeholders})",
            [ride_id] + [fields[c] for c in cols],
        )
    return ride_id


def get_ride(ride_id: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute(_RIDE_SELECT + " WHERE r.id = ?", (ride_id,)).fetchone()
        return dict(row) if row else None


def update_ride(ride_id: str, fields: dict) -> int:
    with get_connection() as conn:
        return _update_row(conn, "rides", "id", ride_id, fields, _RIDE_COLUMNS)


def get_upcoming_rides(now: str, pace: str | None = None, limit: int = 50) -> list[dict]:
    """Published rides dated at or after *now*, soonest first."""
    query = _RIDE_SELECT + " WHERE r.status = 'PUBLISHED' AND r.date >= ?"
    params: list[object] = [now]
    if pace:
        query += " AND r.pace = ?"
        params.append(pace)
    query += " ORDER BY r.date ASC LIMIT ?"
    params.append(limit)
    with get_connection() as conn:
        return [dict(r) for r in conn.execute(query, params).fetchall()]


def get_latest_rides(
    date_from: str,
    date_to: str | None = None,
    club_only: bool = False,
    order_by_date: bool = False,
    limit: int = 6,
) -> list[dict]:
    """Published rides for the "latest" feed.

    Recurring series contribute only their template ride.
    """
    query = _RIDE_SELECT + """
        WHERE r.status = 'PUBLISHED' AND r.date >= ?
          AND (r.recurrence_series_id IS NULL OR r.is_recurring_template = 1)"""
    params: list[object] = [date_from]
    if date_to:
        query += " AND r.date <= ?"
        params.append(date_to)
    if club_only:
        query += " AND r.chapter_id IS NOT NULL"
    if order_by_date:
        query += " ORDER BY r.date ASC"
    else:
        query += " ORDER BY r.created_at DESC, r.rowid DESC"
    query += " LIMIT ?"
    params.append(limit)
    with get_connection() as conn:
        return [dict(r) for r in conn.execute(query, params).fetchall()]


def get_past_rides(now: str, limit: int = 100) -> list[dict]:
    with get_connection() as conn:
        rows = conn.execute(
            _RIDE_SELECT + " WHERE r.date < ? ORDER BY r.date DESC LIMIT ?",
            (now, limit),
        ).fetchall()
        return [dict(r) for r in rows]


def get_chapter_rides(chapter_id: str, now: str, upcoming: bool = True, limit: int = 10) -> list[dict]:
    """Published rides of a chapter: upcoming (date asc) or past (date desc)."""
    if upcoming:
        clause, order = "r.date >= ?", "r.date ASC"
    else:
        clause, order = "r.date < ?", "r.date DESC"
    with get_connection() as conn:
        rows = conn.execute(
            _RIDE_SELECT
            + f" WHERE r.chapter_id = ? AND r.status = 'PUBLISHED' AND {clause}"
            + f" ORDER BY {order} LIMIT ?",
            (chapter_id, now, limit),
        ).fetchall()
        return [dict(r) for r in rows]


def get_sitemap_rides(now: str, until: str, limit: int = 1000) -> list[dict]:
    with get_connection() as conn:
        rows = conn.execute(
            """SELECT id, updated_at FROM rides
               WHERE status = 'PUBLISHED' AND date >= ? AND date <= ?
               ORDER BY date ASC LIMIT ?""",
            (now, until, limit),
        ).fetchall()
        return [dict(r) for r in rows]


def delete_ride(ride_id: str) -> int:
    with get_connection() as conn:
        return conn.execute("DELETE FROM rides WHERE id=?", (ride_id,)).rowcount


def delete_series_rides(series_id: str, from_date: str | None = None) -> int:
    """Delete a recurrence series, or only the rides dated at/after *from_date*."""
    with get_connection() as conn:
        if from_date:
            cur = conn.execute(
                "DELETE FROM rides WHERE recurrence_series_id=? AND date >= ?",
                (series_id, from_date),
            )
        else:
            cur = conn.execute(
                "DELETE FROM rides WHERE recurrence_series_id=?", (series_id,)
            )
        return cur.rowcount


def count_series_rides(series_id: str, from_date: str | None = None) -> int:
    with get_connection() as conn:
        if from_date:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM rides WHERE recurrence_series_id=? AND date >= ?",
                (series_id, from_date),
            ).fetchone()
        else:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM rides WHERE recurrence_series_id=?",
                (series_id,),
            ).fetchone()
        return int(row["count"]) if row else 0


def count_rides(before: str | None = None, after: str | None = None) -> int:
    """Count rides, optionally dated before *before* or at/after *after*."""
    query = "SELECT COUNT(*) AS count FROM rides WHERE 1=1"
    params: list[object] = []
    if before:
        query += " AND date < ?"
        params.append(before)
    if after:
        query += " AND date >= ?"
        params.append(after)
    with get_connection() as conn:
        row = conn.execute(query, params).fetchone()
        return int(row["count"]) if row else 0


def get_rides_by_month(since: str) -> list[dict]:
    """Rides created since *since*, grouped by ``YYYY-MM``."""
    with get_connection() as conn:
        rows = conn.execute(
            """SELECT substr(created_at, 1, 7) AS month, COUNT(*) AS count
               FROM rides WHERE created_at >= ?
               GROUP BY month ORDER BY month ASC""",
            (since,),
        ).fetchall()
        return [dict(r) for r in rows]


# ─── RSVPs ───────────────────────────────────────────────────────────────────

_RSVP_SELECT = """
    SELECT v.*, u.name AS user_name, u.email AS user_email,
           u.image AS user_image, u.slug AS user_slug
    FROM rsvps v JOIN users u ON u.id = v.user_id
"""


def get_rsvp(ride_id: str, user_id: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute(
            _RSVP_SELECT + " WHERE v.ride_id = ? AND v.user_id = ?", (ride_id, user_id)
        ).fetchone()
        return dict(row) if row else None


def upsert_rsvp(ride_id: str, user_id: str, status: str) -> dict:
    now = now_iso()
    with get_connection() as conn:
        conn.execute(
            """INSERT INTO rsvps (id, ride_id, user_id, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(ride_id, user_id)
               DO UPDATE SET status=excluded.status, updated_at=excluded.updated_at""",
            (new_id(), ride_id, user_id, status, now, now),
        )
    return get_rsvp(ride_id, user_id)


def delete_rsvp(ride_id: str, user_id: str) -> int:
    with get_connection() as conn:
        return conn.execute(
            "DELETE FROM rsvps WHERE ride_id=? AND user_id=?", (ride_id, user_id)
        ).rowcount


def get_rsvps_for_ride(ride_id: str) -> list[dict]:
    with get_connection() as conn:
        rows = conn.execute(
            _RSVP_SELECT + " WHERE v.ride_id = ? ORDER BY v.created_at ASC, v.rowid ASC",
            (ride_id,),
        ).fetchall()
        return [dict(r) for r in rows]


def count_rsvps() -> int:
    with get_connection() as conn:
        row = conn.execute("SELECT COUNT(*) AS count FROM rsvps").fetchone()
        return int(row["count"]) if row else 0


# ─── Ride comments ───────────────────────────────────────────────────────────

_COMMENT_SELECT = """
    SELECT c.*, u.name AS user_name, u.email AS user_email,
           u.image AS user_image, u.slug AS user_slug
    FROM ride_comments c JOIN users u ON u.id = c.user_id
"""


def create_comment(ride_id: str, user_id: str, content: str) -> dict:
    comment_id = new_id()
    with get_connection() as conn:
        conn.execute(
            "INSERT INTO ride_comments (id, ride_id, user_id, content) VALUES (?, ?, ?, ?)",
            (comment_id, ride_id, user_id, content),
        )
    return get_comment(comment_id)


def get_comment(comment_id: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute(_COMMENT_SELECT + " WHERE c.id = ?", (comment_id,)).fetchone()
        return dict(row) if row else None


def get_comments_for_ride(ride_id: str) -> list[dict]:
    with get_connection() as conn:
        rows = conn.execute(
            _COMMENT_SELECT + " WHERE c.ride_id = ? ORDER BY c.created_at DESC, c.rowid DESC",
            (ride_id,),
        ).fetchall()
        return [dict(r) for r in rows]


def delete_comment(comment_id: str):
    with get_connection() as conn:
        conn.execute("DELETE FROM ride_comments WHERE id=?", (comment_id,))


# ─── Communities (brands) ────────────────────────────────────────────────────

_BRAND_COLUMNS = {
    "name", "slug", "type", "discipline", "domain", "description", "logo",
    "logo_dark", "logo_icon", "primary_color", "secondary_color", "backdrop",
    "slogan", "fonts", "instagram", "twitter", "facebook", "strava", "youtube",
    "sponsors_enabled", "sponsor_label", "created_by_id",
}


def create_brand(**fields) -> dict:
    brand_id = new_id()
    if isinstance(fields.get("fonts"), dict):
        fields["fonts"] = json.dumps(fields["fonts"])
    cols = [c for c in fields if c in _BRAND_COLUMNS]
    placeholders = ", ".join("?" for _ in range(len(cols) + 1))
    with get_connection() as conn:
        conn.execute(
            f"INSERT INTO brands (id, {', '.join(cols)}) VALUES ({placeholders})",
            [brand_id] + [fields[c] for c in cols],
        )
    return get_brand(brand_id)


def get_brand(brand_id: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM brands WHERE id=?", (brand_id,)).fetchone()
        return dict(row) if row else None


def get_brand_by_slug(slug: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM brands WHERE slug=?", (slug,)).fetchone()
        return dict(row) if row else None


def update_brand(brand_id: str, fields: dict) -> Optional[dict]:
    if isinstance(fields.get("fonts"), dict):
        fields = {**fields, "fonts": json.dumps(fields["fonts"])}
    with get_connection() as conn:
        _update_row(conn, "brands", "id", brand_id, fields, _BRAND_COLUMNS)
    return get_brand(brand_id)


def delete_brand(brand_id: str):
    with get_connection() as conn:
        conn.execute("DELETE FROM brands WHERE id=?", (brand_id,))


def get_all_brands() -> list[dict]:
    with get_connection() as conn:
        rows = conn.execute("SELECT * FROM brands ORDER BY name ASC").fetchall()
        return [dict(r) for r in rows]


def count_brands() -> int:
    with get_connection() as conn:
        row = conn.execute("SELECT COUNT(*) AS count FROM brands").fetchone()
        return int(row["count"]) if row else 0


def get_admin_communities() -> list[dict]:
    """All communities, newest first, with creator and chapter count."""
    with get_connection() as conn:
        rows = conn.execute(
            """SELECT b.id, b.name, b.slug, b.type, b.logo, b.sponsors_enabled, b.created_at,
                      u.name AS creator_name, u.email AS creator_email,
                      (SELECT COUNT(*) FROM chapters c WHERE c.brand_id = b.id) AS chapter_count
               FROM brands b LEFT JOIN users u ON u.id = b.created_by_id
               ORDER BY b.created_at DESC, b.rowid DESC"""
        ).fetchall()
        return [dict(r) for r in rows]


def get_top_communities(limit: int = 10) -> list[dict]:
    """Communities with the most chapters, with their summed chapter ride counts."""
    with get_connection() as conn:
        rows = conn.execute(
            """SELECT b.id, b.name, b.slug, b.logo,
                      COUNT(c.id) AS chapter_count,
                      COALESCE(SUM(c.ride_count), 0) AS ride_count
               FROM brands b LEFT JOIN chapters c ON c.brand_id = b.id
               GROUP BY b.id
               ORDER BY chapter_count DESC
               LIMIT ?""",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]


# ─── Chapters ────────────────────────────────────────────────────────────────

_CHAPTER_COLUMNS = {"name", "city", "slug", "custom_logo", "custom_colors", "sponsor_label"}


def create_chapter(brand_id: str, name: str, slug: str, city: str, creator_id: str,
                   creator_role: str = "LEAD") -> dict:
    """Create a chapter with its creator as the first member."""
    chapter_id = new_id()
    with get_connection() as conn:
        conn.execute(
            """INSERT INTO chapters (id, brand_id, name, slug, city, member_count)
               VALUES (?, ?, ?, ?, ?, 1)""",
            (chapter_id, brand_id, name, slug, city),
        )
        conn.execute(
            "INSERT INTO chapter_members (id, chapter_id, user_id, role) VALUES (?, ?, ?, ?)",
            (new_id(), chapter_id, creator_id, creator_role),
        )
    return get_chapter(chapter_id)


def get_chapter(chapter_id: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM chapters WHERE id=?", (chapter_id,)).fetchone()
        return dict(row) if row else None


def get_chapter_by_slug(brand_id: str, slug: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute(
            "SELECT * FROM chapters WHERE brand_id=? AND slug=?", (brand_id, slug)
        ).fetchone()
        return dict(row) if row else None


def get_chapters(brand_id: str | None = None, brand_slug: str | None = None,
                 now: str | None = None) -> list[dict]:
    """Chapters with a brand summary and their upcoming published ride count."""
    query = """
        SELECT c.*, b.name AS brand_name, b.slug AS brand_slug, b.logo AS brand_logo,
               b.primary_color AS brand_primary_color,
               (SELECT COUNT(*) FROM rides r
                 WHERE r.chapter_id = c.id AND r.status = 'PUBLISHED' AND r.date >= ?) AS upcoming_rides
        FROM chapters c JOIN brands b ON b.id = c.brand_id
        WHERE 1=1"""
    params: list[object] = [now or now_iso()]
    if brand_id:
        query += " AND c.brand_id = ?"
        params.append(brand_id)
    if brand_slug:
        query += " AND b.slug = ?"
        params.append(brand_slug)
    query += " ORDER BY b.name ASC, c.name ASC"
    with get_connection() as conn:
        return [dict(r) for r in conn.execute(query, params).fetchall()]


def update_chapter(chapter_id: str, fields: dict) -> Optional[dict]:
    if isinstance(fields.get("custom_colors"), (dict, list)):
        fields = {**fields, "custom_colors": json.dumps(fields["custom_colors"])}
    with get_connection() as conn:
        _update_row(conn, "chapters", "id", chapter_id, fields, _CHAPTER_COLUMNS)
    return get_chapter(chapter_id)


def adjust_chapter_counts(chapter_id: str, rides: int = 0, members: int = 0):
    with get_connection() as conn:
        conn.execute(
            """UPDATE chapters
               SET ride_count = ride_count + ?, member_count = member_count + ?
               WHERE id=?""",
            (rides, members, chapter_id),
        )


def count_chapters() -> int:
    with get_connection() as conn:
        row = conn.execute("SELECT COUNT(*) AS count FROM chapters").fetchone()
        return int(row["count"]) if row else 0


# ─── Chapter members ─────────────────────────────────────────────────────────

_MEMBER_SELECT = """
    SELECT m.*, u.name AS user_name, u.image AS user_image, u.slug AS user_slug
    FROM chapter_members m JOIN users u ON u.id = m.user_id
"""

# Owners first, then admins, then everyone else.
_ROLE_ORDER = """CASE m.role WHEN 'OWNER' THEN 0 WHEN 'LEAD' THEN 0
                             WHEN 'ADMIN' THEN 1 ELSE 2 END"""


def get_chapter_member(chapter_id: str, user_id: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute(
            _MEMBER_SELECT + " WHERE m.chapter_id = ? AND m.user_id = ?",
            (chapter_id, user_id),
        ).fetchone()
        return dict(row) if row else None


def get_chapter_members(chapter_id: str) -> list[dict]:
    with get_connection() as conn:
        rows = conn.execute(
            _MEMBER_SELECT + f" WHERE m.chapter_id = ? ORDER BY {_ROLE_ORDER}, m.joined_at ASC",
            (chapter_id,),
        ).fetchall()
        return [dict(r) for r in rows]


def add_chapter_member(chapter_id: str, user_id: str, role: str) -> dict:
    with get_connection() as conn:
        conn.execute(
            "INSERT INTO chapter_members (id, chapter_id, user_id, role) VALUES (?, ?, ?, ?)",
            (new_id(), chapter_id, user_id, role),
        )
        conn.execute(
            "UPDATE chapters SET member_count = member_count + 1 WHERE id=?", (chapter_id,)
        )
    return get_chapter_member(chapter_id, user_id)


def remove_chapter_member(chapter_id: str, user_id: str):
    with get_connection() as conn:
        cur = conn.execute(
            "DELETE FROM chapter_members WHERE chapter_id=? AND user_id=?", (chapter_id, user_id)
        )
        if cur.rowcount:
            conn.execute(
                "UPDATE chapters SET member_count = member_count - 1 WHERE id=?", (chapter_id,)
            )


def update_chapter_member_role(chapter_id: str, user_id: str, role: str) -> Optional[dict]:
    with get_connection() as conn:
        conn.execute(
            "UPDATE chapter_members SET role=? WHERE chapter_id=? AND user_id=?",
            (role, chapter_id, user_id),
        )
    return get_chapter_member(chapter_id, user_id)


def count_chapter_owners(chapter_id: str) -> int:
    """Owners of a chapter; legacy LEAD members count as owners."""
    with get_connection() as conn:
        row = conn.execute(
            """SELECT COUNT(*) AS count FROM chapter_members
               WHERE chapter_id = ? AND role IN ('OWNER', 'LEAD')""",
            (chapter_id,),
        ).fetchone()
        return int(row["count"]) if row else 0


# ─── Follows ─────────────────────────────────────────────────────────────────

_FOLLOW_SELECT = """
    SELECT f.*,
           b.name AS brand_name, b.slug AS brand_slug, b.logo AS brand_logo,
           c.name AS chapter_name, c.slug AS chapter_slug, c.city AS chapter_city,
           cb.id AS chapter_brand_id, cb.name AS chapter_brand_name,
           cb.slug AS chapter_brand_slug, cb.logo AS chapter_brand_logo
    FROM follows f
    LEFT JOIN brands b ON b.id = f.brand_id
    LEFT JOIN chapters c ON c.id = f.chapter_id
    LEFT JOIN brands cb ON cb.id = c.brand_id
"""


def get_follows(user_id: str) -> list[dict]:
    with get_connection() as conn:
        rows = conn.execute(
            _FOLLOW_SELECT + " WHERE f.user_id = ? ORDER BY f.created_at DESC, f.rowid DESC",
            (user_id,),
        ).fetchall()
        return [dict(r) for r in rows]


def follow(user_id: str, brand_id: str | None = None, chapter_id: str | None = None) -> dict:
    """Follow exactly one community or chapter; following twice is a no-op."""
    if (brand_id is None) == (chapter_id is None):
        raise ValueError("follow needs exactly one of brand_id or chapter_id")
    with get_connection() as conn:
        conn.execute(
            "INSERT OR IGNORE INTO follows (id, user_id, brand_id, chapter_id) VALUES (?, ?, ?, ?)",
            (new_id(), user_id, brand_id, chapter_id),
        )
        if brand_id:
            row = conn.execute(
                _FOLLOW_SELECT + " WHERE f.user_id = ? AND f.brand_id = ?", (user_id, brand_id)
            ).fetchone()
        else:
            row = conn.execute(
                _FOLLOW_SELECT + " WHERE f.user_id = ? AND f.chapter_id = ?", (user_id, chapter_id)
            ).fetchone()
        return dict(row)


def unfollow(user_id: str, follow_id: str | None = None, brand_id: str | None = None,
             chapter_id: str | None = None) -> int:
    """Delete the caller's follow by ID, community or chapter (first given wins)."""
    with get_connection() as conn:
        if follow_id:
            cur = conn.execute(
                "DELETE FROM follows WHERE id=? AND user_id=?", (follow_id, user_id)
            )
        elif brand_id:
            cur = conn.execute(
                "DELETE FROM follows WHERE user_id=? AND brand_id=?", (user_id, brand_id)
            )
        elif chapter_id:
            cur = conn.execute(
                "DELETE FROM follows WHERE user_id=? AND chapter_id=?", (user_id, chapter_id)
            )
        else:
            return 0
        return cur.rowcount


# ─── Sponsors ────────────────────────────────────────────────────────────────

_SPONSOR_COLUMNS = {
    "brand_id", "chapter_id", "name", "domain", "description", "website", "logo",
    "backdrop", "primary_color", "display_size", "is_active", "display_order",
}


def _sponsor_owner(brand_id: str | None, chapter_id: str | None) -> tuple[str, str]:
    if (brand_id is None) == (chapter_id is None):
        raise ValueError("sponsor needs exactly one of brand_id or chapter_id")
    return ("brand_id", brand_id) if brand_id else ("chapter_id", chapter_id)


def create_sponsor(**fields) -> dict:
    _sponsor_owner(fields.get("brand_id"), fields.get("chapter_id"))
    sponsor_id = new_id()
    cols = [c for c in fields if c in _SPONSOR_COLUMNS]
    placeholders = ", ".join("?" for _ in range(len(cols) + 1))
    with get_connection() as conn:
        conn.execute(
            f"INSERT INTO sponsors (id, {', '.join(cols)}) VALUES ({placeholders})",
            [sponsor_id] + [fields[c] for c in cols],
        )
    return get_sponsor(sponsor_id)


def get_sponsor(sponsor_id: str) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM sponsors WHERE id=?", (sponsor_id,)).fetchone()
        return dict(row) if row else None


def get_sponsors(brand_id: str | None = None, chapter_id: str | None = None,
                 active_only: bool = True) -> list[dict]:
    """Sponsors of one community or one chapter in display order."""
    column, key = _sponsor_owner(brand_id, chapter_id)
    query = f"SELECT * FROM sponsors WHERE {column} = ?"
    if active_only:
        query += " AND is_active = 1"
    query += " ORDER BY display_order ASC, created_at ASC"
    with get_connection() as conn:
        return [dict(r) for r in conn.execute(query, (key,)).fetchall()]


def next_sponsor_order(brand_id: str | None = None, chapter_id: str | None = None) -> int:
    column, key = _sponsor_owner(brand_id, chapter_id)
    with get_connection() as conn:
        row = conn.execute(
            f"SELECT MAX(display_order) AS last FROM sponsors WHERE {column} = ?", (key,)
        ).fetchone()
        return 0 if row is None or row["last"] is None else int(row["last"]) + 1


def update_sponsor(sponsor_id: str, fields: dict) -> Optional[dict]:
    allowed = _SPONSOR_COLUMNS - {"brand_id", "chapter_id"}
    with get_connection() as conn:
        _update_row(conn, "sponsors", "id", sponsor_id, fields, allowed)
    return get_sponsor(sponsor_id)


def delete_sponsor(sponsor_id: str):
    with get_connection() as conn:
        conn.execute("DELETE FROM sponsors WHERE id=?", (sponsor_id,))


# ─── Telegram bot users ──────────────────────────────────────────────────────

_TELEGRAM_USER_COLUMNS = {
    "username", "first_name", "default_latitude", "default_longitude",
    "default_city", "default_radius", "unit_preference",
}


def get_telegram_user(telegram_id: int) -> Optional[dict]:
    with get_connection() as conn:
        row = conn.execute(
            "SELECT * FROM telegram_users WHERE telegram_id=?", (telegram_id,)
        ).fetchone()
        return dict(row) if row else None


def upsert_telegram_user(telegram_id: int, **fields) -> dict:
    """Create the bot user on first contact, or update the given fields."""
    cols = [c for c in fields if c in _TELEGRAM_USER_COLUMNS]
    with get_connection() as conn:
        conn.execute(
            "INSERT OR IGNORE INTO telegram_users (telegram_id) VALUES (?)", (telegram_id,)
        )
        _update_row(conn, "telegram_users", "telegram_id", telegram_id,
                    {c: fields[c] for c in cols}, _TELEGRAM_USER_COLUMNS)
    return get_telegram_user(telegram_id)
