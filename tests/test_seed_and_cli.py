"""
Tests for the demo seed and the command-line entry point.
"""

from unittest.mock import patch

from rideswith import main as cli
from rideswith.seed_data import promote_platform_admins, seed_database


class TestSeed:
    def test_seeds_once(self, db):
        assert seed_database() is True
        assert db.count_brands() == 2
        assert db.get_brand_by_slug("straede") is not None

        rides = db.get_upcoming_rides("2000-01-01T00:00:00Z")
        assert rides
        assert all(r["chapter_id"] for r in rides)
        assert all(r["location_address"] for r in rides)

        # A second run leaves the data alone.
        assert seed_database() is False
        assert db.count_brands() == 2

    def test_promotes_admin_emails(self, db):
        assert promote_platform_admins() == 1
        assert db.get_user_by_email("admin@example.com")["role"] == "PLATFORM_ADMIN"


class TestCli:
    def test_seed_flag(self, db):
        cli.main(["--seed"])
        assert db.count_brands() == 2

    def test_bot_without_token_does_not_start(self, monkeypatch):
        from rideswith import config
        monkeypatch.setattr(config, "TELEGRAM_BOT_TOKEN", "")
        with patch("rideswith.bot.telegram_bot.run_bot") as run_bot:
            cli.main(["--bot"])
        run_bot.assert_not_called()

    def test_web_flag(self):
        with patch("rideswith.web.app.run_web") as run_web:
            cli.main(["--web"])
        run_web.assert_called_once()
