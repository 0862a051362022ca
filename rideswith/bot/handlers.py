"""
Telegram Bot Handlers — command, location and free-text handlers for the
ride discovery bot.

Features:
- /start — Welcome message, account setup and the main keyboard
- /help — Usage help
- /settings — Saved location, radius and units ("radius 25", "units mi")
- Location messages — Saved as the default search location
- /nearby — Rides around the saved location
- /rides and free text — Natural-language search parsed by the LLM
"""

import asyncio
import logging
import re
from typing import Optional

from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    LinkPreviewOptions,
    ReplyKeyboardMarkup,
    Update,
)
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from rideswith import database as db
from rideswith.bot.formatting import format_ride_list, get_date_range
from rideswith.bot.geocoding import geocode_location, reverse_geocode
from rideswith.bot.query_parser import ParsedQuery, parse_ride_query
from rideswith.bot.rideswith_api import SearchParams, get_ride_url, search_rides
from rideswith.config import RIDESWITH_BASE_URL
from rideswith.dates import utc_now
from rideswith.rate_limiter import rate_limit_guard

logger = logging.getLogger(__name__)

# Button labels, also used for routing in the text dispatcher
BUTTON_SHARE_LOCATION = "📍 Share Location"
BUTTON_UPDATE_LOCATION = "📍 Update Location"
BUTTON_NEARBY = "🚴 Nearby Rides"
BUTTON_SEARCH = "🔍 Search"
BUTTON_BACK = "🔙 Back"

DEFAULT_RADIUS_KM = 50
SEARCH_LIMIT = 5
MIN_RADIUS_KM = 5
MAX_RADIUS_KM = 500

RADIUS_PATTERN = re.compile(r"^radius\s+(\d+)$")
UNITS_PATTERN = re.compile(r"^units\s+(km|mi)$")

NO_PREVIEW = LinkPreviewOptions(is_disabled=True)

UNKNOWN_ACCOUNT_TEXT = "Sorry, I could not identify your Telegram account."

WELCOME_TEXT = """🚴 <b>Welcome to RidesWith!</b>

I help you discover group cycling rides near you.

<b>How to search:</b>
• Just type naturally: "rides near Berlin this weekend"
• Or use commands like /nearby for quick searches

<b>Commands:</b>
/rides [query] - Search for rides
/nearby - Rides near your saved location
/settings - Update your preferences
/help - Show this help message

<b>To get started:</b>
Share your location using the 📎 attachment button, and I'll remember it for future searches!

Or just tell me what you're looking for, like:
• "group rides in Munich"
• "gravel rides this weekend"
• "fast rides near me\""""

HELP_TEXT = """🚴 <b>RidesWith Bot Help</b>

<b>Search for rides:</b>
Just type naturally what you're looking for:
• "rides near Berlin"
• "gravel rides this weekend"
• "fast group rides in Munich"
• "any rides tomorrow?"

<b>Commands:</b>
/start - Welcome message &amp; setup
/rides [query] - Search for rides
/nearby - Rides near your saved location
/settings - View/update your preferences
/help - Show this message

<b>Tips:</b>
• Share your location once, and I'll remember it
• You can filter by pace: "casual", "moderate", "fast"
• You can filter by type: "road", "gravel", "mtb"
• You can filter by time: "today", "tomorrow", "this weekend", "next week"

<b>Examples:</b>
• "rides in the next 3 days"
• "Straede rides near Berlin"
• "easy group rides within 50km"

Need more help? Visit <a href="https://rideswith.com">rideswith.com</a>"""

SETTINGS_TEXT = """⚙️ <b>Your Settings</b>

<b>Location:</b> {location}
<b>Search Radius:</b> {radius} km
<b>Units:</b> {units}

<b>To update your location:</b>
Share your location using the 📎 attachment button

<b>To change radius:</b>
Reply with: radius 25 (or any number in km)

<b>To change units:</b>
Reply with: units km (or: units mi)"""

SEARCH_HINT_TEXT = (
    "🔍 <b>Search for rides</b>\n\nJust type what you're looking for:\n"
    '• "rides near Berlin"\n• "gravel rides this weekend"\n• "fast rides tomorrow"'
)

EMPTY_QUERY_TEXT = (
    "🔍 <b>Search for rides</b>\n\nTry something like:\n"
    '• "rides near Berlin"\n• "gravel rides this weekend"\n• "fast rides tomorrow"'
)

NO_LOCATION_TEXT = (
    "📍 I don't have your location yet!\n\n"
    "Please share your location using the button below or the 📎 attachment menu."
)

NEARBY_ERROR_TEXT = "Sorry, something went wrong while searching for rides. Please try again later."

SEARCH_ERROR_TEXT = (
    "Sorry, something went wrong while searching. Please try again.\n\n"
    "You can also browse rides at rideswith.com/discover"
)


def _discover_url() -> str:
    return f"{RIDESWITH_BASE_URL}/discover"


def _main_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [[KeyboardButton(BUTTON_NEARBY), KeyboardButton(BUTTON_SEARCH)]],
        resize_keyboard=True,
    )


def _start_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [
            [KeyboardButton(BUTTON_SHARE_LOCATION, request_location=True)],
            [KeyboardButton(BUTTON_NEARBY), KeyboardButton(BUTTON_SEARCH)],
        ],
        resize_keyboard=True,
        one_time_keyboard=False,
    )


def _share_location_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [[KeyboardButton(BUTTON_SHARE_LOCATION, request_location=True)]],
        resize_keyboard=True,
        one_time_keyboard=True,
    )


def _settings_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [
            [KeyboardButton(BUTTON_UPDATE_LOCATION, request_location=True)],
            [KeyboardButton(BUTTON_BACK)],
        ],
        resize_keyboard=True,
        one_time_keyboard=True,
    )


def _short_title(title: str) -> str:
    return title[:22] + "..." if len(title) > 25 else title


def _nearby_keyboard(rides: list[dict]) -> InlineKeyboardMarkup:
    rows = [
        [InlineKeyboardButton(f"View: {ride['title'][:20]}...", url=get_ride_url(ride["id"]))]
        for ride in rides[:SEARCH_LIMIT]
    ]
    if rides:
        rows.append([InlineKeyboardButton("🌐 Browse all rides on RidesWith", url=_discover_url())])
    return InlineKeyboardMarkup(rows)


def _search_keyboard(rides: list[dict]) -> InlineKeyboardMarkup:
    rows = [
        [InlineKeyboardButton(f"View: {_short_title(ride['title'])}", url=get_ride_url(ride["id"]))]
        for ride in rides[:SEARCH_LIMIT]
    ]
    if rides:
        rows.append([InlineKeyboardButton("🌐 Browse all rides", url=_discover_url())])
    else:
        rows.append([InlineKeyboardButton("🌐 Browse rides on RidesWith", url=_discover_url())])
    return InlineKeyboardMarkup(rows)


async def _delete_message_quietly(context: ContextTypes.DEFAULT_TYPE, message) -> None:
    """Remove a loading message; it may already be gone."""
    if message is None:
        return
    try:
        await context.bot.delete_message(chat_id=message.chat_id, message_id=message.message_id)
    except TelegramError as e:
        logger.debug("Could not delete loading message %s: %s", message.message_id, e)


def _has_location(user: Optional[dict]) -> bool:
    return bool(user and user.get("default_latitude") and user.get("default_longitude"))


# ─── Commands ────────────────────────────────────────────────────────────────


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /start: register the user and show the welcome message."""
    user = update.effective_user
    if user is None:
        await update.message.reply_text(UNKNOWN_ACCOUNT_TEXT)
        return

    try:
        await asyncio.to_thread(
            db.upsert_telegram_user, user.id,
            username=user.username, first_name=user.first_name,
        )
    except Exception as e:
        logger.warning("Could not save telegram user %s, continuing without persistence: %s", user.id, e)

    await update.message.reply_text(
        WELCOME_TEXT, parse_mode=ParseMode.HTML, reply_markup=_start_keyboard(),
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /help."""
    await update.message.reply_text(
        HELP_TEXT, parse_mode=ParseMode.HTML, link_preview_options=NO_PREVIEW,
    )


async def settings_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /settings: show the saved preferences."""
    tg_user = update.effective_user
    if tg_user is None:
        await update.message.reply_text(UNKNOWN_ACCOUNT_TEXT)
        return

    user = await asyncio.to_thread(db.get_telegram_user, tg_user.id)
    if not user:
        await update.message.reply_text("Please use /start first to set up your account.")
        return

    location = f"📍 {user['default_city']}" if user.get("default_city") else "📍 Not set"
    units = "Kilometers" if user.get("unit_preference") == "km" else "Miles"
    await update.message.reply_text(
        SETTINGS_TEXT.format(location=location, radius=user["default_radius"], units=units),
        parse_mode=ParseMode.HTML,
        reply_markup=_settings_keyboard(),
    )


async def handle_settings_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> bool:
    """Apply "radius N" / "units km|mi" replies. Returns True if the text was one."""
    tg_user = update.effective_user
    text = (update.message.text or "").lower().strip() if update.message else ""
    if not text or tg_user is None:
        return False

    match = RADIUS_PATTERN.match(text)
    if match:
        radius = int(match.group(1))
        if radius < MIN_RADIUS_KM or radius > MAX_RADIUS_KM:
            await update.message.reply_text(
                f"Please specify a radius between {MIN_RADIUS_KM} and {MAX_RADIUS_KM} km."
            )
            return True
        await asyncio.to_thread(db.upsert_telegram_user, tg_user.id, default_radius=radius)
        await update.message.reply_text(f"✅ Search radius updated to {radius} km")
        return True

    match = UNITS_PATTERN.match(text)
    if match:
        unit = match.group(1)
        await asyncio.to_thread(db.upsert_telegram_user, tg_user.id, unit_preference=unit)
        await update.message.reply_text(
            f"✅ Units updated to {'kilometers' if unit == 'km' else 'miles'}"
        )
        return True

    return False


async def location_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Save a shared location as the user's default search area."""
    tg_user = update.effective_user
    location = update.message.location if update.message else None
    if tg_user is None or location is None:
        await update.effective_message.reply_text("Sorry, I could not process your location.")
        return

    geocoded = await asyncio.to_thread(reverse_geocode, location.latitude, location.longitude)
    city = (geocoded.city if geocoded else None) or "your location"

    await asyncio.to_thread(
        db.upsert_telegram_user,
        tg_user.id,
        username=tg_user.username,
        first_name=tg_user.first_name,
        default_latitude=location.latitude,
        default_longitude=location.longitude,
        default_city=city,
    )
    logger.info("Saved location for telegram user %s (%s)", tg_user.id, city)

    await update.message.reply_text(
        f"📍 Location saved! I'll use {city} for your searches.\n\nTry /nearby to see rides near you.",
        reply_markup=_main_keyboard(),
    )


# ─── Nearby ──────────────────────────────────────────────────────────────────


async def _handle_nearby(update: Update, context: ContextTypes.DEFAULT_TYPE):
    tg_user = update.effective_user
    if tg_user is None:
        await update.message.reply_text(UNKNOWN_ACCOUNT_TEXT)
        return

    user = await asyncio.to_thread(db.get_telegram_user, tg_user.id)
    if not _has_location(user):
        await update.message.reply_text(NO_LOCATION_TEXT, reply_markup=_share_location_keyboard())
        return

    loading = await update.message.reply_text("🔍 Searching for rides near you...")
    try:
        lat, lng = user["default_latitude"], user["default_longitude"]
        rides = await asyncio.to_thread(
            search_rides,
            SearchParams(lat=lat, lng=lng, radius=user["default_radius"], limit=SEARCH_LIMIT),
        )
        await _delete_message_quietly(context, loading)

        await update.message.reply_text(
            format_ride_list(rides, user.get("default_city") or None, lat, lng),
            parse_mode=ParseMode.HTML,
            reply_markup=_nearby_keyboard(rides),
            link_preview_options=NO_PREVIEW,
        )
    except Exception:
        logger.exception("Nearby search error for telegram user %s", tg_user.id)
        await _delete_message_quietly(context, loading)
        await update.message.reply_text(NEARBY_ERROR_TEXT)


@rate_limit_guard
async def nearby_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /nearby: rides around the saved location."""
    await _handle_nearby(update, context)


# ─── Search ──────────────────────────────────────────────────────────────────


def build_search_params(parsed: ParsedQuery, today=None) -> SearchParams:
    """Translate parsed filters into API search params (location is resolved later)."""
    params = SearchParams(limit=SEARCH_LIMIT)

    if parsed.date_range:
        if parsed.date_range.relative:
            date_range = get_date_range(parsed.date_range.relative, today)
            params.date_from = date_range["from"]
            params.date_to = date_range["to"]
        else:
            params.date_from = parsed.date_range.date_from
            params.date_to = parsed.date_range.date_to

    if parsed.pace:
        if parsed.pace.min:
            params.pace_min = parsed.pace.min
        if parsed.pace.max:
            params.pace_max = parsed.pace.max

    if parsed.community:
        params.brand_slug = parsed.community

    if parsed.radius:
        params.radius = parsed.radius

    return params


def _extract_query(text: str) -> str:
    text = (text or "").strip()
    if text.startswith("/rides"):
        return re.sub(r"^/rides(@\w+)?\s*", "", text).strip()
    return text


async def _handle_rides(update: Update, context: ContextTypes.DEFAULT_TYPE):
    tg_user = update.effective_user
    if tg_user is None:
        await update.message.reply_text(UNKNOWN_ACCOUNT_TEXT)
        return

    query = _extract_query(update.message.text)
    if not query:
        await update.message.reply_text(EMPTY_QUERY_TEXT, parse_mode=ParseMode.HTML)
        return

    user = None
    try:
        user = await asyncio.to_thread(db.get_telegram_user, tg_user.id)
    except Exception as e:
        logger.warning("Database not available, continuing without user preferences: %s", e)

    loading = await update.message.reply_text("🔍 Searching...")
    try:
        today = utc_now().date()
        parsed = await asyncio.to_thread(parse_ride_query, query, today.isoformat())
        params = build_search_params(parsed, today)

        location_name = None
        if parsed.location and parsed.location.name:
            geocoded = await asyncio.to_thread(geocode_location, parsed.location.name)
            if geocoded is None:
                await _delete_message_quietly(context, loading)
                await update.message.reply_text(
                    f'📍 I couldn\'t find "{parsed.location.name}". '
                    'Try being more specific (e.g., "Berlin, Germany").'
                )
                return
            params.lat, params.lng = geocoded.latitude, geocoded.longitude
            location_name = geocoded.city or parsed.location.name
        elif parsed.location and parsed.location.use_user_location and _has_location(user):
            params.lat, params.lng = user["default_latitude"], user["default_longitude"]
            location_name = user.get("default_city") or None

        if params.lat is not None and not params.radius:
            params.radius = parsed.radius or (user or {}).get("default_radius") or DEFAULT_RADIUS_KM

        logger.info("Ride search for telegram user %s: %s", tg_user.id, params)
        rides = await asyncio.to_thread(search_rides, params)
        await _delete_message_quietly(context, loading)

        await update.message.reply_text(
            format_ride_list(rides, location_name, params.lat, params.lng),
            parse_mode=ParseMode.HTML,
            reply_markup=_search_keyboard(rides),
            link_preview_options=NO_PREVIEW,
        )
    except Exception:
        logger.exception("Rides search error for telegram user %s", tg_user.id)
        await _delete_message_quietly(context, loading)
        await update.message.reply_text(SEARCH_ERROR_TEXT)


@rate_limit_guard
async def rides_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /rides [query]."""
    await _handle_rides(update, context)


# ─── Free text ───────────────────────────────────────────────────────────────


@rate_limit_guard
async def message_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Route keyboard buttons and settings replies; anything else is a search."""
    text = (update.message.text or "").strip() if update.message else ""
    if not text:
        return

    if text == BUTTON_NEARBY:
        await _handle_nearby(update, context)
        return

    if text == BUTTON_SEARCH:
        await update.message.reply_text(SEARCH_HINT_TEXT, parse_mode=ParseMode.HTML)
        return

    if text == BUTTON_BACK:
        await update.message.reply_text("What would you like to do?", reply_markup=_main_keyboard())
        return

    if await handle_settings_update(update, context):
        return

    await _handle_rides(update, context)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
    """Log errors and tell the user something went wrong."""
    logger.error("Update %s caused error: %s", update, context.error)

    if isinstance(update, Update) and update.effective_message:
        await update.effective_message.reply_text(
            "Sorry, something went wrong. Please try again.",
            reply_markup=_main_keyboard(),
        )
