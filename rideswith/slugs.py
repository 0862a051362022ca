"""
Slugs — URL slug generation and the reserved vanity-URL list.
"""

import re

# Community slugs live at the site root, so they must not shadow app routes.
RESERVED_SLUGS = frozenset({
    # Existing app routes
    "about", "admin", "api", "auth", "communities", "create", "discover",
    "organizers", "privacy", "profile", "rides", "settings", "terms", "u",
    # Common reserved words
    "app", "help", "support", "contact", "blog", "news", "login", "signup",
    "register", "account", "dashboard", "home", "index", "static", "assets",
    "public", "images", "css", "js", "fonts", "_next",
    # Future routes
    "events", "clubs", "teams", "groups", "brands", "chapters", "members",
    "users", "search", "explore", "notifications", "messages", "inbox", "feed",
})

# Profile usernames live under /u/, so only a few top-level names are blocked.
RESERVED_USERNAMES = frozenset({
    "admin", "api", "auth", "settings", "profile", "discover", "create",
    "organizers", "rides",
})

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_USERNAME_CHARS = re.compile(r"^[a-z0-9-]+$")
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30


def is_reserved_slug(slug: str) -> bool:
    return slug.lower() in RESERVED_SLUGS


def slugify(text: str) -> str:
    """Lowercase, collapse non-alphanumeric runs into '-', trim dashes."""
    return _NON_ALNUM.sub("-", text.lower()).strip("-")


def generate_brand_slug(name: str) -> str:
    return slugify(name)[:30]


def base36(number: int) -> str:
    """Encode a non-negative integer in base 36 (lowercase)."""
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def username_error(slug: str) -> str | None:
    """Why *slug* cannot be a username, or ``None`` when its format is fine."""
    if not _USERNAME_CHARS.match(slug):
        return "Username can only contain lowercase letters, numbers, and hyphens"
    if not USERNAME_MIN_LENGTH <= len(slug) <= USERNAME_MAX_LENGTH:
        return f"Username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters"
    return None


def is_reserved_username(slug: str) -> bool:
    return slug in RESERVED_USERNAMES
