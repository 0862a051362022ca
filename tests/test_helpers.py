"""
Tests for the small helper modules — roles, slugs, images, recurrence, QR
codes and the Brand.dev client.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from rideswith import brand_dev
from rideswith.images import is_allowed_image_url, safe_image
from rideswith.qr import ride_qr_png, ride_url
from rideswith.recurrence import add_months, occurrence_dates
from rideswith.roles import (
    can_manage_sponsors,
    is_admin,
    is_owner,
    normalize_role,
    role_display_name,
)
from rideswith.slugs import base36, generate_brand_slug, is_reserved_slug, slugify


class TestRoles:
    def test_lead_counts_as_owner(self):
        assert is_owner("LEAD")
        assert is_admin("LEAD")
        assert normalize_role("LEAD") == "OWNER"

    def test_ambassador_maps_to_moderator(self):
        assert normalize_role("AMBASSADOR") == "MODERATOR"
        assert not is_admin("AMBASSADOR")

    def test_display_names(self):
        assert role_display_name("ADMIN") == "Admin"
        assert role_display_name(None) == "Member"

    def test_sponsors(self):
        assert can_manage_sponsors({"role": "PLATFORM_ADMIN"}, False)
        assert not can_manage_sponsors({"role": "USER"}, False)
        assert can_manage_sponsors({"role": "USER"}, True)


class TestSlugs:
    def test_slugify(self):
        assert slugify("  Straede Berlin!! ") == "straede-berlin"

    def test_brand_slug_truncated(self):
        assert len(generate_brand_slug("x" * 50)) == 30

    def test_reserved(self):
        assert is_reserved_slug("Admin")
        assert not is_reserved_slug("straede")

    def test_base36(self):
        assert base36(0) == "0"
        assert base36(35) == "z"
        assert base36(36) == "10"


class TestImages:
    @pytest.mark.parametrize("url", [
        "https://images.unsplash.com/photo.jpg",
        "https://cdn.brandfetch.io/logo.png",
        "https://foo.brandfetch.io/logo.png",
    ])
    def test_allowed(self, url):
        assert is_allowed_image_url(url)

    @pytest.mark.parametrize("url", [
        None,
        "http://images.unsplash.com/photo.jpg",
        "https://evil.com/x.png",
        "https://a.b.brandfetch.io/logo.png",
    ])
    def test_rejected(self, url):
        assert not is_allowed_image_url(url)

    def test_safe_image_filter(self):
        assert safe_image("https://evil.com/x.png") == ""


class TestRecurrence:
    def test_weekly_inclusive_end(self):
        start = datetime(2099, 1, 1, 9, tzinfo=timezone.utc)
        end = datetime(2099, 1, 15, 9, tzinfo=timezone.utc)
        dates = occurrence_dates(start, "WEEKLY", end)
        assert [d.day for d in dates] == [1, 8, 15]

    def test_biweekly(self):
        start = datetime(2099, 1, 1, tzinfo=timezone.utc)
        end = datetime(2099, 2, 1, tzinfo=timezone.utc)
        assert [d.day for d in occurrence_dates(start, "BIWEEKLY", end)] == [1, 15, 29]

    def test_monthly_clamps_to_month_end(self):
        assert add_months(datetime(2099, 1, 31), 1) == datetime(2099, 2, 28)
        start = datetime(2099, 1, 31, tzinfo=timezone.utc)
        end = datetime(2099, 4, 30, tzinfo=timezone.utc)
        dates = occurrence_dates(start, "MONTHLY", end)
        assert [(d.month, d.day) for d in dates] == [(1, 31), (2, 28), (3, 31), (4, 30)]

    def test_start_always_included(self):
        start = datetime(2099, 1, 1, tzinfo=timezone.utc)
        end = datetime(2098, 1, 1, tzinfo=timezone.utc)
        assert occurrence_dates(start, "WEEKLY", end) == [start]

    def test_limit(self):
        start = datetime(2099, 1, 1, tzinfo=timezone.utc)
        end = datetime(2110, 1, 1, tzinfo=timezone.utc)
        assert len(occurrence_dates(start, "WEEKLY", end)) == 52

    def test_unknown_pattern(self):
        now = datetime(2099, 1, 1, tzinfo=timezone.utc)
        with pytest.raises(ValueError):
            occurrence_dates(now, "DAILY", now)


class TestQr:
    def test_ride_url(self, monkeypatch):
        from rideswith import config
        monkeypatch.setattr(config, "APP_URL", "https://rideswith.test")
        assert ride_url("abc") == "https://rideswith.test/rides/abc"

    def test_png_bytes(self):
        png = ride_qr_png("abc")
        assert png.startswith(b"\x89PNG")


class TestBrandDev:
    def setup_method(self):
        brand_dev.clear_cache()

    def test_domain_helpers(self):
        assert brand_dev.clean_domain("https://www.Straede.com/") == "straede.com"
        assert brand_dev.is_valid_domain("straede.com")
        assert not brand_dev.is_valid_domain("not a domain")

    def test_no_key_returns_none(self):
        assert brand_dev.fetch_brand_assets("straede.com") is None

    def test_fetch_maps_fields_and_caches(self, monkeypatch):
        from rideswith import config
        monkeypatch.setattr(config, "BRAND_DEV_API_KEY", "key")
        resp = MagicMock(status_code=200)
        resp.json.return_value = {
            "name": "Straede",
            "logo": {"url": "https://cdn.brandfetch.io/l.png", "icon": "https://cdn.brandfetch.io/i.png"},
            "colors": {"primary": "#111", "secondary": "#222"},
            "fonts": {"title": "Inter"},
        }
        with patch("rideswith.brand_dev.http_requests.get", return_value=resp) as get:
            assets = brand_dev.fetch_brand_assets("straede.com")
            brand_dev.fetch_brand_assets("straede.com")
        assert assets.logo == "https://cdn.brandfetch.io/l.png"
        assert assets.primary_color == "#111"
        assert get.call_count == 1

    def test_not_found(self, monkeypatch):
        from rideswith import config
        monkeypatch.setattr(config, "BRAND_DEV_API_KEY", "key")
        with patch("rideswith.brand_dev.http_requests.get", return_value=MagicMock(status_code=404)):
            assert brand_dev.fetch_brand_assets("unknown.com") is None

    def test_stale_entries_swept_on_insert(self, monkeypatch):
        from rideswith import config
        monkeypatch.setattr(config, "BRAND_DEV_API_KEY", "key")
        brand_dev._cache["old.com"] = (0.0, None)
        monkeypatch.setattr(brand_dev.time, "monotonic", lambda: brand_dev._CACHE_TTL_SECONDS + 5.0)
        with patch("rideswith.brand_dev.http_requests.get", return_value=MagicMock(status_code=404)):
            brand_dev.fetch_brand_assets("new.com")
        assert "old.com" not in brand_dev._cache
        assert "new.com" in brand_dev._cache
