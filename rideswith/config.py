"""
Configuration module for RidesWith.
Loads settings from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

# ─── Paths ───────────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent
# For persistence on a PaaS mount a disk and point `DATA_DIR` at it.
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data"))).resolve()
DB_PATH = Path(os.getenv("DB_PATH", str(DATA_DIR / "rideswith.db"))).resolve()
LOCALES_DIR = BASE_DIR / "locales"

# Ensure data directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
DB_PATH.parent.mkdir(parents=True, exist_ok=True)

# ─── Environment ─────────────────────────────────────────────────────────────
APP_ENV = os.getenv("APP_ENV", "development")
IS_PRODUCTION = APP_ENV == "production"

# ─── Web App ─────────────────────────────────────────────────────────────────
WEB_HOST = os.getenv("WEB_HOST", "0.0.0.0")
WEB_PORT = int(os.getenv("WEB_PORT") or os.getenv("PORT") or "5000")
APP_URL = (
    os.getenv("NEXT_PUBLIC_APP_URL") or os.getenv("APP_URL") or "https://rideswith.com"
).rstrip("/")
#
# Security note:
# - Do not embed default secrets in code.
# - SECRET_KEY signs sessions, CSRF tokens and magic links.
SECRET_KEY = os.getenv("SECRET_KEY", "")

# Comma-separated e-mails that are granted the PLATFORM_ADMIN role on sign in.
PLATFORM_ADMIN_EMAILS = {
    e.strip().lower()
    for e in os.getenv("PLATFORM_ADMIN_EMAILS", "").split(",")
    if e.strip()
}

# ─── Mail (magic-link sign in) ───────────────────────────────────────────────
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "RidesWith <onboarding@resend.dev>")
MAGIC_LINK_MAX_AGE = int(os.getenv("MAGIC_LINK_MAX_AGE", "86400"))

# ─── Brand assets ────────────────────────────────────────────────────────────
BRAND_DEV_API_KEY = os.getenv("BRAND_DEV_API_KEY", "")
BRAND_DEV_API_URL = "https://api.brand.dev/v1"

# ─── Rate Limiting ───────────────────────────────────────────────────────────
RSVP_RATE_LIMIT = int(os.getenv("RSVP_RATE_LIMIT", "30"))
RSVP_RATE_INTERVAL_MS = int(os.getenv("RSVP_RATE_INTERVAL_MS", "60000"))
BOT_RATE_LIMIT = int(os.getenv("BOT_RATE_LIMIT", "20"))
BOT_RATE_INTERVAL_MS = int(os.getenv("BOT_RATE_INTERVAL_MS", "60000"))

# ─── Telegram Bot ────────────────────────────────────────────────────────────
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_BOT_USERNAME = os.getenv("TELEGRAM_BOT_USERNAME", "RidesWithBot")
WEBHOOK_URL = os.getenv("WEBHOOK_URL", "").rstrip("/")
BOT_PORT = int(os.getenv("BOT_PORT") or os.getenv("PORT") or "3000")

# RidesWith REST API consumed by the bot (may point at a remote deployment).
RIDESWITH_API_URL = os.getenv("RIDESWITH_API_URL", "https://rideswith.com/api").rstrip("/")
RIDESWITH_BASE_URL = os.getenv("RIDESWITH_BASE_URL", "https://rideswith.com").rstrip("/")

# ─── Groq / LLM query parsing ────────────────────────────────────────────────
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "")
GROQ_BASE_URL = os.getenv("GROQ_BASE_URL", "https://api.groq.com/openai/v1")
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
QUERY_PARSER_TEMPERATURE = 0.1
QUERY_PARSER_MAX_TOKENS = 500

QUERY_PARSER_SYSTEM_PROMPT = """You are a query parser for RidesWith.com, a cycling group ride discovery platform.

Parse user queries about cycling rides and return structured JSON. Be flexible with natural language.

IMPORTANT: Speed/pace is always in km/h. Distance is always in km.
- "fast" pace means 30+ km/h
- "moderate" pace means 22-28 km/h
- "casual/easy" pace means under 22 km/h
- "short" ride means under 30 km
- "medium" ride means 30-60 km
- "long" ride means 60-100 km
- "epic" ride means 100+ km

CRITICAL: Only include dateRange if the user EXPLICITLY mentions a time frame (today, tomorrow, this weekend, next week, etc).
- Do NOT add dateRange for queries like "rides near Berlin" - they want ALL upcoming rides
- Only add dateRange for queries like "rides this weekend" or "rides tomorrow"

Examples:
- "rides near Berlin" → location only, NO dateRange
- "fast rides this weekend" → location + pace + dateRange
- "any gravel rides?" → discipline only, NO dateRange
- "rides tomorrow" → dateRange only
- "Straede rides" → community filter only"""


def validate_bot_config() -> None:
    """Raise if any setting the bot cannot run without is missing."""
    required = {
        "telegramToken": TELEGRAM_BOT_TOKEN,
        "groqApiKey": GROQ_API_KEY,
        "databasePath": str(DB_PATH) if DB_PATH else "",
    }
    for key, value in required.items():
        if not value:
            raise RuntimeError(f"Missing required config: {key}")
