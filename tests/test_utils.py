from datetime import date, datetime, timezone

import pytest

from calendar_copilot.config import DEFAULT_TIMEZONE
from calendar_copilot.utils import (
    day_bounds,
    dedupe_preserving_order,
    events_for_day,
    format_date_us,
    format_hhmm_12h,
    intervals_overlap,
    is_plausible_email,
    is_valid_hhmm,
    js_weekday,
    local_datetime,
    parse_iso_date,
    resolve_timezone,
    shift_days_local,
    zone_for,
)
from tests.conftest import MONDAY, make_event


class TestTimeOfDay:

    @pytest.mark.parametrize("value", ["09:00", "9:30", "23:59", "00:00"])
    def test_valid_hhmm(self, value):
        assert is_valid_hhmm(value)

    @pytest.mark.parametrize("value", ["24:00", "12:60", "noon", "", None, 900])
    def test_invalid_hhmm(self, value):
        assert not is_valid_hhmm(value)

    def test_12_hour_formatting(self):
        assert format_hhmm_12h("13:05") == "1:05 PM"
        assert format_hhmm_12h("00:30") == "12:30 AM"
        assert format_hhmm_12h("12:00") == "12:00 PM"


class TestTimezones:

    def test_unknown_zone_falls_back_to_default(self):
        assert zone_for("Not/AZone").key == DEFAULT_TIMEZONE

    def test_resolve_prefers_request_then_preferences(self):
        assert resolve_timezone("Asia/Tokyo", {"timezone": "Europe/Paris"}) == "Asia/Tokyo"
        assert resolve_timezone("Bad/Zone", {"timezone": "Europe/Paris"}) == "Europe/Paris"
        assert resolve_timezone(None, None) == DEFAULT_TIMEZONE

    def test_local_datetime_is_utc_instant(self):
        start = local_datetime(MONDAY, "09:00", "America/New_York")
        assert start == datetime(2025, 1, 6, 14, 0, tzinfo=timezone.utc)

    def test_day_bounds_cover_local_day(self):
        start, end = day_bounds(MONDAY, "Asia/Tokyo")
        assert start == datetime(2025, 1, 5, 15, 0, tzinfo=timezone.utc)
        assert end == datetime(2025, 1, 6, 15, 0, tzinfo=timezone.utc)

    def test_shift_keeps_wall_clock_across_dst(self):
        # 10:00 EST on the day before the spring-forward change
        before = datetime(2025, 3, 8, 15, 0, tzinfo=timezone.utc)
        moved = shift_days_local(before, 1, "America/New_York")
        assert moved == datetime(2025, 3, 9, 14, 0, tzinfo=timezone.utc)

    def test_us_date_format(self):
        assert format_date_us(datetime(2025, 1, 7, 3, 0, tzinfo=timezone.utc),
                              "America/New_York") == "1/6/2025"


class TestIntervals:

    def test_sunday_is_zero(self):
        assert js_weekday(date(2025, 1, 5)) == 0
        assert js_weekday(MONDAY) == 1
        assert js_weekday(date(2025, 1, 11)) == 6

    def test_back_to_back_does_not_overlap(self):
        a = make_event("a", "10:00", "11:00")
        b = make_event("b", "11:00", "12:00")
        assert not intervals_overlap(a.start, a.end, b.start, b.end)

    def test_partial_overlap(self):
        a = make_event("a", "10:00", "11:30")
        b = make_event("b", "11:00", "12:00")
        assert intervals_overlap(a.start, a.end, b.start, b.end)

    def test_events_for_day_selects_intersecting_events(self):
        inside = make_event("inside", "10:00", "11:00")
        next_day = make_event("next", "10:00", "11:00", day=date(2025, 1, 7))
        selected = events_for_day([inside, next_day], MONDAY, "UTC")
        assert [e.id for e in selected] == ["inside"]


class TestParsing:

    def test_iso_date(self):
        assert parse_iso_date("2025-01-06") == MONDAY
        assert parse_iso_date("2025-01-06T10:00") == MONDAY
        assert parse_iso_date("next tuesday") is None
        assert parse_iso_date(None) is None

    def test_plausible_email(self):
        assert is_plausible_email("ann@example.com")
        assert not is_plausible_email("ann@example")
        assert not is_plausible_email("ann example.com")
        assert not is_plausible_email("a" * 250 + "@example.com")


def test_dedupe_preserving_order():
    assert dedupe_preserving_order(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]
    assert dedupe_preserving_order([]) == []
