"""
Shared fixtures — a temporary SQLite DB per test, the Flask app and client.
"""

import pytest


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Point config at a throwaway database so tests never touch real files."""
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "fake-token")
    monkeypatch.setenv("GROQ_API_KEY", "fake-groq-key")

    from rideswith import config
    monkeypatch.setattr(config, "DB_PATH", tmp_path / "test.db")
    monkeypatch.setattr(config, "SECRET_KEY", "test-secret")
    monkeypatch.setattr(config, "RESEND_API_KEY", "")
    monkeypatch.setattr(config, "BRAND_DEV_API_KEY", "")
    monkeypatch.setattr(config, "PLATFORM_ADMIN_EMAILS", {"admin@example.com"})

    from rideswith import database
    database.init_db()

    from rideswith.rate_limiter import bot_limiter, rsvp_limiter
    rsvp_limiter.reset()
    bot_limiter.reset()
    yield


@pytest.fixture
def db():
    from rideswith import database
    return database


@pytest.fixture
def app():
    from rideswith.web.app import create_web_app
    app = create_web_app()
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    """Return a helper that signs *user* into the test client session."""
    def _login(user):
        with client.session_transaction() as sess:
            sess["user_id"] = user["id"]
        return user
    return _login


@pytest.fixture
def user(db):
    return db.create_user("rider@example.com", name="Rider One", slug="rider")


@pytest.fixture
def other_user(db):
    return db.create_user("other@example.com", name="Other Rider")


def ride_body(**overrides) -> dict:
    body = {
        "title": "Saturday Loop",
        "date": "2099-06-06T09:00:00Z",
        "locationName": "Brandenburger Tor",
        "locationAddress": "Pariser Platz, Berlin",
        "latitude": 52.5163,
        "longitude": 13.3777,
        "pace": "MODERATE",
        "distance": 80,
    }
    body.update(overrides)
    return body
