"""
Unit tests for timezone helpers.

Tests instant parsing, local-day decomposition and wall-clock conversion,
including the UTC/local date shift for evening events on the US west coast.
"""

import pytest
from datetime import date, datetime, time, timezone

from backend.src.services.exceptions import MalformedDateError, UnknownTimeZoneError
from backend.src.utils.timezone import (
    UTC,
    format_in_timezone,
    local_date,
    local_datetime,
    parse_instant,
    resolve_timezone,
    same_local_day,
    start_of_local_day,
    to_iso,
    to_local,
)


VANCOUVER = "America/Vancouver"


class TestResolveTimezone:
    """Tests for IANA zone resolution."""

    def test_utc_is_special_cased(self):
        assert resolve_timezone("UTC") is UTC
        assert resolve_timezone("utc") is UTC

    def test_known_zone(self):
        tz = resolve_timezone(VANCOUVER)
        assert datetime(2026, 1, 15, 12, tzinfo=tz).utcoffset().total_seconds() == -8 * 3600

    @pytest.mark.parametrize("name", ["Mars/Olympus_Mons", "", None, "Not A Zone"])
    def test_unknown_zone_raises(self, name):
        with pytest.raises(UnknownTimeZoneError):
            resolve_timezone(name)


class TestParseInstant:
    """Tests for parse_instant input conventions."""

    def test_offset_string_is_absolute(self):
        assert parse_instant("2026-03-12T03:00:00Z", VANCOUVER) == datetime(
            2026, 3, 12, 3, tzinfo=timezone.utc
        )
        assert parse_instant("2026-03-11T20:00:00-07:00") == datetime(
            2026, 3, 12, 3, tzinfo=timezone.utc
        )

    def test_date_only_is_local_midnight(self):
        # 2026-03-11 is after the DST switch: Vancouver is UTC-7
        assert parse_instant("2026-03-11", VANCOUVER) == datetime(
            2026, 3, 11, 7, tzinfo=timezone.utc
        )

    def test_date_object_is_local_midnight(self):
        assert parse_instant(date(2026, 1, 15), VANCOUVER) == datetime(
            2026, 1, 15, 8, tzinfo=timezone.utc
        )

    def test_string_without_offset_is_local_wall_time(self):
        assert parse_instant("2026-03-11T19:00:00", VANCOUVER) == datetime(
            2026, 3, 12, 2, tzinfo=timezone.utc
        )

    def test_naive_datetime_is_utc(self):
        assert parse_instant(datetime(2026, 3, 12, 3), VANCOUVER) == datetime(
            2026, 3, 12, 3, tzinfo=timezone.utc
        )

    @pytest.mark.parametrize("value", ["not-a-date", "", "   ", "2026-02-30", "2026-13-01T00:00:00Z", None, 42])
    def test_malformed_input_raises(self, value):
        with pytest.raises(MalformedDateError):
            parse_instant(value)

    def test_unknown_zone_is_not_defaulted(self):
        with pytest.raises(UnknownTimeZoneError):
            parse_instant("2026-03-11", "Nowhere/Special")


class TestLocalDay:
    """Tests for local calendar day decomposition."""

    def test_evening_in_vancouver_is_previous_utc_day(self):
        assert local_date("2026-03-12T03:00:00Z", VANCOUVER) == date(2026, 3, 11)
        assert local_date("2026-03-12T03:00:00Z", "UTC") == date(2026, 3, 12)

    def test_date_input_returned_unchanged(self):
        assert local_date(date(2026, 3, 11), "Asia/Tokyo") == date(2026, 3, 11)
        assert local_date("2026-03-11", "Asia/Tokyo") == date(2026, 3, 11)

    def test_date_input_still_validates_zone(self):
        with pytest.raises(UnknownTimeZoneError):
            local_date(date(2026, 3, 11), "Bad/Zone")

    def test_same_local_day_is_timezone_sensitive(self):
        first = "2026-03-12T03:00:00Z"
        second = "2026-03-11T20:00:00Z"

        assert same_local_day(first, second, VANCOUVER) is True
        assert same_local_day(first, second, "UTC") is False

    def test_same_local_day_is_reflexive_and_symmetric(self):
        first = "2026-03-12T03:00:00Z"
        second = "2026-03-11T20:00:00Z"

        assert same_local_day(first, first, VANCOUVER) is True
        assert same_local_day(first, second, VANCOUVER) == same_local_day(second, first, VANCOUVER)

    def test_start_of_local_day(self):
        assert start_of_local_day("2026-03-12T03:00:00Z", VANCOUVER) == datetime(
            2026, 3, 11, 7, tzinfo=timezone.utc
        )


class TestWallClock:
    """Tests for wall-clock conversion across DST."""

    def test_local_datetime_uses_offset_of_that_date(self):
        # PST before 2026-03-08, PDT after
        assert local_datetime(date(2026, 3, 4), time(19, 0), VANCOUVER) == datetime(
            2026, 3, 5, 3, tzinfo=timezone.utc
        )
        assert local_datetime(date(2026, 3, 11), time(19, 0), VANCOUVER) == datetime(
            2026, 3, 12, 2, tzinfo=timezone.utc
        )

    def test_to_local(self):
        local = to_local("2026-03-12T03:00:00Z", VANCOUVER)
        assert (local.day, local.hour) == (11, 20)

    def test_format_in_timezone(self):
        assert format_in_timezone("2026-03-12T03:00:00Z", VANCOUVER, "%Y-%m-%d %H:%M") == "2026-03-11 20:00"
        assert format_in_timezone("2026-03-12T03:00:00Z", VANCOUVER) == "2026-03-11"

    def test_to_iso_uses_z_suffix(self):
        assert to_iso(datetime(2026, 3, 12, 2, tzinfo=timezone.utc)) == "2026-03-12T02:00:00Z"
        assert to_iso(datetime(2026, 3, 11, 19, tzinfo=resolve_timezone(VANCOUVER))) == "2026-03-12T02:00:00Z"
