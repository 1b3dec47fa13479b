"""Tests for goalgrid.core.time_keys: timezone-local day and week keys."""

from datetime import UTC, date, datetime, timedelta

import pytest

from goalgrid.core.time_keys import (
    day_key,
    day_keys_for_week,
    days_between,
    local_noon,
    next_week_key,
    next_week_start,
    parse_day_key,
    parse_week_key,
    shift_day_key,
    shift_week_key,
    week_day_keys,
    week_end,
    week_key,
    week_key_for_day,
    week_start,
    week_start_for_key,
)

CHICAGO = "America/Chicago"


class TestDayKey:
    def test_late_evening_local_is_previous_utc_day(self):
        # 03:00 UTC on the 16th is 22:00 on the 15th in Chicago
        instant = datetime(2026, 10, 16, 3, 0, tzinfo=UTC)
        assert day_key(instant, CHICAGO) == "2026-10-15"
        assert day_key(instant, "UTC") == "2026-10-16"

    def test_same_instant_differs_by_zone(self):
        instant = datetime(2026, 10, 16, 3, 0, tzinfo=UTC)
        assert day_key(instant, "Asia/Tokyo") == "2026-10-16"

    def test_naive_datetime_is_treated_as_utc(self):
        assert day_key(datetime(2026, 10, 16, 3, 0), CHICAGO) == "2026-10-15"

    def test_unknown_timezone_raises(self):
        with pytest.raises(ValueError):
            day_key(datetime(2026, 10, 16, tzinfo=UTC), "Mars/Olympus_Mons")


class TestWeekKey:
    def test_mid_week(self):
        assert week_key(datetime(2026, 10, 15, 18, 0, tzinfo=UTC), CHICAGO) == "2026-W42"

    def test_sunday_night_local_stays_in_week(self):
        # Monday 03:00 UTC is still Sunday evening in Chicago
        instant = datetime(2026, 10, 19, 3, 0, tzinfo=UTC)
        assert week_key(instant, CHICAGO) == "2026-W42"
        assert week_key(instant, "UTC") == "2026-W43"

    def test_iso_year_boundary(self):
        # 2027-01-01 is a Friday, so it belongs to the last ISO week of 2026
        assert week_key(datetime(2027, 1, 1, 12, 0, tzinfo=UTC), "UTC") == "2026-W53"
        assert week_key(datetime(2026, 1, 1, 12, 0, tzinfo=UTC), "UTC") == "2026-W01"

    def test_week_key_for_day(self):
        assert week_key_for_day("2027-01-01") == "2026-W53"
        assert week_key_for_day("2026-10-12") == "2026-W42"


class TestWeekBounds:
    def test_week_start_is_local_monday_midnight(self):
        start = week_start(datetime(2026, 10, 15, 18, 0, tzinfo=UTC), CHICAGO)
        assert start.date() == date(2026, 10, 12)
        assert (start.hour, start.minute) == (0, 0)
        assert start.utcoffset() == timedelta(hours=-5)

    def test_week_end_is_six_days_later(self):
        instant = datetime(2026, 10, 15, 18, 0, tzinfo=UTC)
        end = week_end(instant, CHICAGO)
        assert end.date() == date(2026, 10, 18)
        assert end - week_start(instant, CHICAGO) == timedelta(days=6)

    def test_week_end_across_dst_change(self):
        # DST ends 2026-11-01 at 02:00; Sunday midnight is still CDT
        end = week_end(datetime(2026, 11, 1, 12, 0, tzinfo=UTC), CHICAGO)
        assert end.date() == date(2026, 11, 1)
        assert end.utcoffset() == timedelta(hours=-5)

    def test_next_week(self):
        instant = datetime(2026, 10, 15, 18, 0, tzinfo=UTC)
        assert next_week_key(instant, CHICAGO) == "2026-W43"
        assert next_week_start(instant, CHICAGO).date() == date(2026, 10, 19)

    def test_week_start_for_key(self):
        start = week_start_for_key("2026-W45", CHICAGO)
        assert start.date() == date(2026, 11, 2)
        assert start.utcoffset() == timedelta(hours=-6)

    def test_week_day_keys_follow_local_date(self):
        # Monday 03:00 UTC is still Sunday evening in Chicago
        keys = week_day_keys(datetime(2026, 10, 19, 3, 0, tzinfo=UTC), CHICAGO)
        assert keys[0] == "2026-10-12"
        assert keys[-1] == "2026-10-18"


class TestDayKeyHelpers:
    def test_parse_rejects_bad_keys(self):
        with pytest.raises(ValueError):
            parse_day_key("2026-13-01")
        with pytest.raises(ValueError):
            parse_day_key("2026-1-5")

    def test_shift_across_month(self):
        assert shift_day_key("2026-03-01", -1) == "2026-02-28"
        assert shift_day_key("2026-12-31", 1) == "2027-01-01"

    def test_days_between(self):
        assert days_between("2026-10-01", "2026-10-15") == 14

    def test_day_keys_for_week(self):
        assert day_keys_for_week("2026-W42") == [
            "2026-10-12", "2026-10-13", "2026-10-14", "2026-10-15",
            "2026-10-16", "2026-10-17", "2026-10-18",
        ]

    def test_shift_week_key_over_year_end(self):
        assert shift_week_key("2026-W53", 1) == "2027-W01"
        assert shift_week_key("2026-W01", -1) == "2025-W52"

    def test_parse_week_key_rejects_missing_week(self):
        with pytest.raises(ValueError):
            parse_week_key("2025-W53")
        with pytest.raises(ValueError):
            parse_week_key("2025-10-01")

    def test_local_noon(self):
        noon = local_noon("2026-10-10", CHICAGO)
        assert noon.hour == 12
        assert noon.astimezone(UTC).hour == 17
