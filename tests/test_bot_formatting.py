"""
Tests for the bot's Telegram HTML formatting — bot/formatting.py
"""

from datetime import date, datetime, timezone

import pytest

from rideswith.bot.formatting import (
    NO_RIDES_TEXT,
    SEPARATOR,
    escape_html,
    format_date,
    format_distance,
    format_pace,
    format_ride,
    format_ride_list,
    get_date_range,
)

NOW = datetime(2026, 10, 22, 12, 0, tzinfo=timezone.utc)  # a Thursday


def _ride(**overrides):
    ride = {
        "id": "r1",
        "title": "Coffee <Ride>",
        "date": "2026-10-24T09:00:00Z",
        "locationName": "Brandenburger Tor",
        "latitude": 52.5163,
        "longitude": 13.3777,
        "paceMin": 25.0,
        "paceMax": 30,
        "distance": 80.0,
        "attendeeCount": 3,
        "maxAttendees": 10,
        "brand": None,
    }
    ride.update(overrides)
    return ride


class TestFormatDate:
    def test_relative_days(self):
        assert format_date("2026-10-24T09:00:00Z", NOW) == "Sat, Oct 24 · 9:00 AM (in 2 days)"

    def test_today_and_tomorrow(self):
        assert format_date("2026-10-22T12:00:00Z", NOW).endswith("(Today)")
        assert format_date("2026-10-23T08:00:00Z", NOW).endswith("(Tomorrow)")

    def test_far_future_has_no_hint(self):
        assert format_date("2026-11-20T18:30:00Z", NOW) == "Fri, Nov 20 · 6:30 PM"

    def test_past_has_no_hint(self):
        assert "(" not in format_date("2026-10-10T09:00:00Z", NOW)

    def test_noon_and_midnight(self):
        assert "12:00 PM" in format_date("2026-12-01T12:00:00Z", NOW)
        assert "12:15 AM" in format_date("2026-12-01T00:15:00Z", NOW)


class TestSmallFormatters:
    def test_escape_html(self):
        assert escape_html("a < b & c > d") == "a &lt; b &amp; c &gt; d"
        assert escape_html(None) == ""

    def test_format_pace(self):
        assert format_pace(25.0, 30) == "25-30 km/h"
        assert format_pace(25, None) == "25+ km/h"
        assert format_pace(None, 22.5) == "Up to 22.5 km/h"
        assert format_pace(None, None) == ""

    def test_format_distance(self):
        assert format_distance(80.0) == "80 km"
        assert format_distance(None) == ""


class TestFormatRide:
    def test_full_ride(self):
        text = format_ride(_ride(), user_lat=52.52, user_lng=13.40, include_link=True, now=NOW)
        lines = text.split("\n")
        assert lines[0] == "📍 <b>Coffee &lt;Ride&gt;</b>"
        assert lines[2] == "📍 Brandenburger Tor · 2 km away"
        assert lines[3] == "🏃 25-30 km/h · 80 km"
        assert lines[4] == "👥 3 going · 7 spots left"
        assert lines[5].endswith('/rides/r1">View ride</a>')

    def test_full_and_brand(self):
        text = format_ride(
            _ride(attendeeCount=10, brand={"name": "Straede"}, paceMin=None, paceMax=None, distance=None),
            now=NOW,
        )
        assert "🏢 Straede" in text
        assert "👥 10 going · FULL" in text
        assert "🏃" not in text
        assert "km away" not in text

    def test_no_capacity(self):
        text = format_ride(_ride(maxAttendees=None, attendeeCount=0), now=NOW)
        assert text.endswith("👥 0 going")


class TestFormatRideList:
    def test_empty(self):
        assert format_ride_list([]) == NO_RIDES_TEXT

    def test_header_and_separators(self):
        text = format_ride_list([_ride()], "Berlin", now=NOW)
        assert text.startswith("🚴 Found 1 ride near Berlin:\n" + SEPARATOR)
        assert text.endswith(SEPARATOR)
        assert "View ride" in text

    def test_plural(self):
        text = format_ride_list([_ride(), _ride(id="r2")], now=NOW)
        assert text.startswith("🚴 Found 2 rides:")


class TestGetDateRange:
    MONDAY = date(2026, 10, 19)
    SUNDAY = date(2026, 10, 25)

    def test_today_and_tomorrow(self):
        assert get_date_range("today", self.MONDAY) == {"from": "2026-10-19", "to": "2026-10-19"}
        assert get_date_range("tomorrow", self.MONDAY) == {"from": "2026-10-20", "to": "2026-10-20"}

    def test_this_weekend(self):
        assert get_date_range("this_weekend", self.MONDAY) == {"from": "2026-10-24", "to": "2026-10-25"}
        # On a Sunday the weekend means the next one.
        assert get_date_range("this_weekend", self.SUNDAY) == {"from": "2026-10-31", "to": "2026-11-01"}

    def test_weeks(self):
        assert get_date_range("this_week", self.MONDAY) == {"from": "2026-10-19", "to": "2026-10-25"}
        assert get_date_range("next_week", self.MONDAY) == {"from": "2026-10-26", "to": "2026-11-01"}
        assert get_date_range("next_week", self.SUNDAY) == {"from": "2026-10-26", "to": "2026-11-01"}

    def test_unknown(self):
        with pytest.raises(ValueError):
            get_date_range("someday", self.MONDAY)
