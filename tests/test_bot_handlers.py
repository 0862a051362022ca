"""
Tests for the Telegram bot handlers and the webhook server.

Handlers are driven with mocked ``Update`` objects; the database is the real
per-test SQLite file, and outbound services (LLM, geocoding, RidesWith API)
are patched.
"""

import asyncio
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from telegram.constants import ParseMode

from rideswith.bot import handlers
from rideswith.bot.geocoding import GeocodingResult
from rideswith.bot.query_parser import DateRange, LocationQuery, NumberRange, ParsedQuery
from rideswith.bot.webhook import create_webhook_app

TG_ID = 4242


def _update(text=None, user_id=TG_ID):
    update = MagicMock()
    update.effective_user.id = user_id
    update.effective_user.username = "lena"
    update.effective_user.first_name = "Lena"
    update.message.text = text
    update.message.reply_text = AsyncMock()
    return update


def _context():
    context = MagicMock()
    context.bot.delete_message = AsyncMock()
    return context


def _run(handler, update, context=None):
    return asyncio.run(handler(update, context or _context()))


def _last_reply(update):
    return update.message.reply_text.await_args


def _ride(ride_id="r1", title="Saturday Loop"):
    return {
        "id": ride_id,
        "title": title,
        "date": "2099-06-06T09:00:00Z",
        "locationName": "Brandenburger Tor",
        "latitude": 52.5163,
        "longitude": 13.3777,
        "attendeeCount": 1,
    }


@pytest.fixture
def located_user(db):
    return db.upsert_telegram_user(
        TG_ID, default_latitude=52.52, default_longitude=13.40,
        default_city="Berlin", default_radius=30,
    )


class TestStartAndHelp:
    def test_start_registers_user(self, db):
        update = _update("/start")
        _run(handlers.start_command, update)
        assert db.get_telegram_user(TG_ID)["first_name"] == "Lena"
        reply = _last_reply(update)
        assert reply.args[0] == handlers.WELCOME_TEXT
        assert reply.kwargs["parse_mode"] == ParseMode.HTML

    def test_start_survives_db_error(self):
        update = _update("/start")
        with patch.object(handlers.db, "upsert_telegram_user", side_effect=RuntimeError("locked")):
            _run(handlers.start_command, update)
        assert _last_reply(update).args[0] == handlers.WELCOME_TEXT

    def test_help(self):
        update = _update("/help")
        _run(handlers.help_command, update)
        assert _last_reply(update).args[0] == handlers.HELP_TEXT


class TestSettings:
    def test_requires_start(self):
        update = _update("/settings")
        _run(handlers.settings_command, update)
        assert "/start" in _last_reply(update).args[0]

    def test_shows_preferences(self, located_user):
        update = _update("/settings")
        _run(handlers.settings_command, update)
        text = _last_reply(update).args[0]
        assert "📍 Berlin" in text
        assert "30 km" in text
        assert "Kilometers" in text

    def test_radius_update(self, db):
        update = _update("Radius 25")
        assert asyncio.run(handlers.handle_settings_update(update, _context())) is True
        assert db.get_telegram_user(TG_ID)["default_radius"] == 25
        assert _last_reply(update).args[0] == "✅ Search radius updated to 25 km"

    def test_radius_out_of_range(self, db):
        update = _update("radius 1000")
        assert asyncio.run(handlers.handle_settings_update(update, _context())) is True
        assert "between 5 and 500" in _last_reply(update).args[0]
        assert db.get_telegram_user(TG_ID) is None

    def test_units_update(self, db):
        update = _update("units mi")
        asyncio.run(handlers.handle_settings_update(update, _context()))
        assert db.get_telegram_user(TG_ID)["unit_preference"] == "mi"
        assert _last_reply(update).args[0] == "✅ Units updated to miles"

    def test_other_text_is_not_settings(self):
        assert asyncio.run(handlers.handle_settings_update(_update("rides in Berlin"), _context())) is False


class TestLocation:
    def test_saves_location(self, db):
        update = _update()
        update.message.location.latitude = 48.137
        update.message.location.longitude = 11.575
        geocoded = GeocodingResult(48.137, 11.575, "München", "München")
        with patch.object(handlers, "reverse_geocode", return_value=geocoded):
            _run(handlers.location_handler, update)
        saved = db.get_telegram_user(TG_ID)
        assert saved["default_city"] == "München"
        assert saved["default_latitude"] == 48.137
        assert "I'll use München" in _last_reply(update).args[0]

    def test_falls_back_to_generic_name(self, db):
        update = _update()
        update.message.location.latitude = 1.0
        update.message.location.longitude = 2.0
        with patch.object(handlers, "reverse_geocode", return_value=None):
            _run(handlers.location_handler, update)
        assert db.get_telegram_user(TG_ID)["default_city"] == "your location"


class TestNearby:
    def test_without_location(self):
        update = _update("/nearby")
        _run(handlers.nearby_command, update)
        assert _last_reply(update).args[0] == handlers.NO_LOCATION_TEXT

    def test_lists_rides(self, located_user):
        update = _update("/nearby")
        context = _context()
        with patch.object(handlers, "search_rides", return_value=[_ride()]) as search:
            _run(handlers.nearby_command, update, context)
        params = search.call_args.args[0]
        assert (params.lat, params.lng, params.radius, params.limit) == (52.52, 13.40, 30, 5)

        context.bot.delete_message.assert_awaited_once()
        reply = _last_reply(update)
        assert reply.args[0].startswith("🚴 Found 1 ride near Berlin:")
        keyboard = reply.kwargs["reply_markup"].inline_keyboard
        assert keyboard[0][0].text == "View: Saturday Loop..."
        assert keyboard[-1][0].text == "🌐 Browse all rides on RidesWith"

    def test_search_failure(self, located_user):
        update = _update("/nearby")
        with patch.object(handlers, "search_rides", side_effect=RuntimeError("down")):
            _run(handlers.nearby_command, update)
        assert _last_reply(update).args[0] == handlers.NEARBY_ERROR_TEXT


class TestBuildSearchParams:
    def test_relative_dates_pace_and_community(self):
        parsed = ParsedQuery(
            intent="search",
            date_range=DateRange(relative="this_weekend"),
            pace=NumberRange(min=28),
            community="straede",
            radius=20,
        )
        params = handlers.build_search_params(parsed, date(2026, 10, 19))
        assert (params.date_from, params.date_to) == ("2026-10-24", "2026-10-25")
        assert params.pace_min == 28
        assert params.pace_max is None
        assert params.brand_slug == "straede"
        assert params.radius == 20
        assert params.limit == handlers.SEARCH_LIMIT

    def test_explicit_dates(self):
        parsed = ParsedQuery(date_range=DateRange(date_from="2026-11-01", date_to="2026-11-03"))
        params = handlers.build_search_params(parsed)
        assert (params.date_from, params.date_to) == ("2026-11-01", "2026-11-03")

    def test_extract_query(self):
        assert handlers._extract_query("/rides gravel Berlin") == "gravel Berlin"
        assert handlers._extract_query("/rides@RidesWithBot tomorrow") == "tomorrow"
        assert handlers._extract_query("  fast rides ") == "fast rides"


class TestRidesSearch:
    def test_empty_query(self):
        update = _update("/rides")
        _run(handlers.rides_command, update)
        assert _last_reply(update).args[0] == handlers.EMPTY_QUERY_TEXT

    def test_named_location(self):
        update = _update("/rides gravel near Hamburg")
        parsed = ParsedQuery(intent="search", location=LocationQuery(name="Hamburg"))
        geocoded = GeocodingResult(53.55, 9.99, "Hamburg, Deutschland", "Hamburg")
        with patch.object(handlers, "parse_ride_query", return_value=parsed), \
                patch.object(handlers, "geocode_location", return_value=geocoded), \
                patch.object(handlers, "search_rides", return_value=[]) as search:
            _run(handlers.rides_command, update)
        params = search.call_args.args[0]
        assert (params.lat, params.lng, params.radius) == (53.55, 9.99, handlers.DEFAULT_RADIUS_KM)

        reply = _last_reply(update)
        assert reply.args[0].startswith("🚴 No rides found")
        assert reply.kwargs["reply_markup"].inline_keyboard[0][0].text == "🌐 Browse rides on RidesWith"

    def test_unknown_location(self):
        update = _update("rides near Atlantis")
        parsed = ParsedQuery(intent="search", location=LocationQuery(name="Atlantis"))
        with patch.object(handlers, "parse_ride_query", return_value=parsed), \
                patch.object(handlers, "geocode_location", return_value=None), \
                patch.object(handlers, "search_rides") as search:
            _run(handlers.message_handler, update)
        search.assert_not_called()
        assert 'I couldn\'t find "Atlantis"' in _last_reply(update).args[0]

    def test_near_me_uses_saved_location(self, located_user):
        update = _update("rides near me")
        parsed = ParsedQuery(intent="search", location=LocationQuery(use_user_location=True))
        rides = [_ride(title="A very long ride title that keeps going")]
        with patch.object(handlers, "parse_ride_query", return_value=parsed), \
                patch.object(handlers, "search_rides", return_value=rides) as search:
            _run(handlers.message_handler, update)
        params = search.call_args.args[0]
        assert (params.lat, params.lng, params.radius) == (52.52, 13.40, 30)

        keyboard = _last_reply(update).kwargs["reply_markup"].inline_keyboard
        assert keyboard[0][0].text == "View: A very long ride title..."
        assert keyboard[-1][0].text == "🌐 Browse all rides"

    def test_search_error(self):
        update = _update("rides tomorrow")
        with patch.object(handlers, "parse_ride_query", side_effect=RuntimeError("boom")):
            _run(handlers.message_handler, update)
        assert _last_reply(update).args[0] == handlers.SEARCH_ERROR_TEXT


class TestMessageRouting:
    def test_search_button(self):
        update = _update(handlers.BUTTON_SEARCH)
        _run(handlers.message_handler, update)
        assert _last_reply(update).args[0] == handlers.SEARCH_HINT_TEXT

    def test_back_button(self):
        update = _update(handlers.BUTTON_BACK)
        _run(handlers.message_handler, update)
        assert _last_reply(update).args[0] == "What would you like to do?"

    def test_nearby_button(self):
        update = _update(handlers.BUTTON_NEARBY)
        _run(handlers.message_handler, update)
        assert _last_reply(update).args[0] == handlers.NO_LOCATION_TEXT

    def test_settings_reply_skips_search(self):
        update = _update("units km")
        with patch.object(handlers, "parse_ride_query") as parse:
            _run(handlers.message_handler, update)
        parse.assert_not_called()


class TestWebhook:
    @pytest.fixture
    def webhook_client(self):
        application = MagicMock()
        app = create_webhook_app(application, MagicMock())
        return app.test_client(), application

    def test_health(self, webhook_client):
        client, _ = webhook_client
        assert client.get("/health").get_json() == {"status": "ok", "bot": "running"}

    def test_enqueues_update(self, webhook_client):
        client, application = webhook_client
        with patch("rideswith.bot.webhook.Update.de_json", return_value="update") as de_json, \
                patch("rideswith.bot.webhook.asyncio.run_coroutine_threadsafe") as submit:
            resp = client.post("/webhook", json={"update_id": 1})
        assert resp.status_code == 200
        de_json.assert_called_once_with({"update_id": 1}, application.bot)
        application.update_queue.put.assert_called_once_with("update")
        submit.return_value.result.assert_called_once()

    def test_bad_body(self, webhook_client):
        client, _ = webhook_client
        resp = client.post("/webhook", data="[]", content_type="application/json")
        assert resp.status_code == 500

    def test_unknown_routes(self, webhook_client):
        client, _ = webhook_client
        assert client.get("/webhook").status_code == 404
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert resp.get_data(as_text=True) == "Not Found"


class TestBotApplication:
    def test_requires_token(self, monkeypatch):
        from rideswith import config
        from rideswith.bot.telegram_bot import create_bot_application
        monkeypatch.setattr(config, "TELEGRAM_BOT_TOKEN", "")
        with pytest.raises(ValueError):
            create_bot_application()

    def test_registers_handlers(self, monkeypatch):
        from rideswith import config
        from rideswith.bot.telegram_bot import create_bot_application
        monkeypatch.setattr(config, "TELEGRAM_BOT_TOKEN", "123:fake")
        application = create_bot_application()
        commands = {
            command
            for handler in application.handlers[0]
            for command in getattr(handler, "commands", ())
        }
        assert commands == {"start", "help", "settings", "nearby", "rides"}
        assert len(application.handlers[0]) == 7
        assert application.error_handlers

    def test_validate_config(self, monkeypatch):
        from rideswith import config
        monkeypatch.setattr(config, "GROQ_API_KEY", "")
        monkeypatch.setattr(config, "TELEGRAM_BOT_TOKEN", "123:fake")
        with pytest.raises(RuntimeError, match="groqApiKey"):
            config.validate_bot_config()

    def test_production_requires_webhook_url(self, monkeypatch):
        from rideswith import config
        from rideswith.bot.telegram_bot import run_bot
        monkeypatch.setattr(config, "TELEGRAM_BOT_TOKEN", "123:fake")
        monkeypatch.setattr(config, "GROQ_API_KEY", "key")
        monkeypatch.setattr(config, "IS_PRODUCTION", True)
        monkeypatch.setattr(config, "WEBHOOK_URL", "")
        with pytest.raises(RuntimeError, match="WEBHOOK_URL"):
            run_bot()
