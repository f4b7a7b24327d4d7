"""
Unit tests for RecurrenceService.

Tests cover:
- Occurrence generation across DST transitions
- count / until / start_after bounds
- Monthly set-position and ordinal weekday patterns
- Local-day membership checks
- RRULE strings and human-readable descriptions
"""

import pytest
from datetime import date, datetime, time, timedelta, timezone

from backend.src.config.settings import AppSettings
from backend.src.services.exceptions import (
    InvalidRecurrenceRuleError,
    MalformedDateError,
    UnknownTimeZoneError,
)
from backend.src.services.recurrence_service import RecurrenceService, ordinal_suffix
from backend.src.utils.timezone import local_date


VANCOUVER = "America/Vancouver"

# Wednesday 2026-03-04 19:00 PST
ANCHOR = "2026-03-05T03:00:00Z"

WEEKLY_WEDNESDAY = {"frequency": "WEEKLY", "byweekday": ["WE"]}


@pytest.fixture
def service(test_settings):
    return RecurrenceService(test_settings)


# ============================================================================
# Generation
# ============================================================================

class TestGenerate:
    """Tests for RecurrenceService.generate."""

    def test_wall_clock_time_survives_spring_forward(self, service):
        result = service.generate_iso(ANCHOR, WEEKLY_WEDNESDAY, VANCOUVER, count=3)

        assert result == [
            "2026-03-05T03:00:00Z",
            "2026-03-12T02:00:00Z",
            "2026-03-19T02:00:00Z",
        ]

    def test_wall_clock_time_survives_fall_back(self, service):
        # Wednesday 2026-10-28 19:00 PDT; DST ends 2026-11-01
        result = service.generate_iso("2026-10-29T02:00:00Z", WEEKLY_WEDNESDAY, VANCOUVER, count=2)

        assert result == ["2026-10-29T02:00:00Z", "2026-11-05T03:00:00Z"]

    def test_results_are_aware_utc_and_ascending(self, service):
        result = list(service.generate(ANCHOR, {"frequency": "DAILY"}, VANCOUVER, count=20))

        assert all(instant.tzinfo is not None for instant in result)
        assert all(a < b for a, b in zip(result, result[1:]))

    def test_rule_count_caps_requested_count(self, service):
        result = list(service.generate(ANCHOR, {"frequency": "DAILY", "count": 3}, VANCOUVER, count=10))

        assert len(result) == 3

    def test_date_only_until_is_inclusive(self, service):
        rule = dict(WEEKLY_WEDNESDAY, until="2026-03-18")

        result = service.generate_iso(ANCHOR, rule, VANCOUVER)

        assert result == [
            "2026-03-05T03:00:00Z",
            "2026-03-12T02:00:00Z",
            "2026-03-19T02:00:00Z",
        ]

    def test_until_instant_is_inclusive(self, service):
        # Exactly 2026-03-18 19:00 PDT
        rule = dict(WEEKLY_WEDNESDAY, until="2026-03-19T02:00:00Z")

        assert len(list(service.generate(ANCHOR, rule, VANCOUVER))) == 3

    def test_start_after_is_strict(self, service):
        result = service.generate_iso(
            ANCHOR, WEEKLY_WEDNESDAY, VANCOUVER, count=2, start_after="2026-03-12T02:00:00Z"
        )

        assert result == ["2026-03-19T02:00:00Z", "2026-03-26T02:00:00Z"]

    def test_unbounded_rule_is_capped_by_settings(self):
        settings = AppSettings(_env_file=None, EVSERIES_MAX_OCCURRENCE_COUNT=5)
        service = RecurrenceService(settings)

        assert len(list(service.generate(ANCHOR, {"frequency": "DAILY"}, VANCOUVER))) == 5

    def test_interval(self, service):
        rule = {"frequency": "WEEKLY", "interval": 2, "byweekday": ["WE"]}

        result = [d.date() for d in service.generate(ANCHOR, rule, "UTC", count=3)]

        # Anchor is Thursday 2026-03-05 in UTC; its week's Wednesday is already past
        assert result == [date(2026, 3, 18), date(2026, 4, 1), date(2026, 4, 15)]

    def test_invalid_inputs(self, service):
        with pytest.raises(InvalidRecurrenceRuleError):
            list(service.generate(ANCHOR, {"frequency": "HOURLY"}, VANCOUVER))
        with pytest.raises(UnknownTimeZoneError):
            list(service.generate(ANCHOR, WEEKLY_WEDNESDAY, "Moon/Base"))
        with pytest.raises(MalformedDateError):
            list(service.generate("last tuesday", WEEKLY_WEDNESDAY, VANCOUVER))


class TestMonthlyPatterns:
    """Tests for monthly ordinal and set-position patterns."""

    def test_second_wednesday_by_set_position(self, service):
        rule = {"frequency": "MONTHLY", "byweekday": ["WE"], "bysetpos": [2]}

        result = service.generate_iso("2026-03-12T02:00:00Z", rule, VANCOUVER, count=3)

        assert result == [
            "2026-03-12T02:00:00Z",
            "2026-04-09T02:00:00Z",
            "2026-05-14T02:00:00Z",
        ]

    def test_second_wednesday_by_ordinal_weekday(self, service):
        by_ordinal = {"frequency": "MONTHLY", "byweekday": ["2WE"]}
        by_setpos = {"frequency": "MONTHLY", "byweekday": ["WE"], "bysetpos": [2]}

        assert service.generate_iso("2026-03-12T02:00:00Z", by_ordinal, VANCOUVER, count=6) == \
            service.generate_iso("2026-03-12T02:00:00Z", by_setpos, VANCOUVER, count=6)

    def test_last_friday(self, service):
        rule = {"frequency": "MONTHLY", "byweekday": ["-1FR"]}

        result = [d.date() for d in service.generate("2026-01-01T10:00:00Z", rule, "UTC", count=2)]

        assert result == [date(2026, 1, 30), date(2026, 2, 27)]


# ============================================================================
# Membership
# ============================================================================

class TestIsValidOccurrence:
    """Tests for local-day membership."""

    def test_instant_is_reduced_to_local_day(self, service):
        # 2026-03-12T03:00Z is Wednesday evening in Vancouver, Thursday in UTC
        assert service.is_valid_occurrence("2026-03-12T03:00:00Z", ANCHOR, WEEKLY_WEDNESDAY, VANCOUVER) is True
        assert service.is_valid_occurrence("2026-03-12T03:00:00Z", ANCHOR, WEEKLY_WEDNESDAY, "UTC") is False

    def test_date_only_inputs(self, service):
        assert service.is_valid_occurrence("2026-03-11", ANCHOR, WEEKLY_WEDNESDAY, VANCOUVER) is True
        assert service.is_valid_occurrence(date(2026, 3, 12), ANCHOR, WEEKLY_WEDNESDAY, VANCOUVER) is False

    def test_dates_before_anchor_are_invalid(self, service):
        assert service.is_valid_occurrence(date(2026, 2, 25), ANCHOR, WEEKLY_WEDNESDAY, VANCOUVER) is False

    def test_every_generated_instant_is_valid(self, service):
        rule = {"frequency": "MONTHLY", "byweekday": ["WE"], "bysetpos": [2]}

        for instant in service.generate("2026-03-12T02:00:00Z", rule, VANCOUVER, count=12):
            assert service.is_valid_occurrence(instant, "2026-03-12T02:00:00Z", rule, VANCOUVER)

    @pytest.mark.parametrize("rule", [
        {"frequency": "MONTHLY", "byweekday": ["WE"], "bysetpos": [2]},
        {"frequency": "MONTHLY", "byweekday": ["-1FR"]},
        {"frequency": "WEEKLY", "interval": 2, "byweekday": ["MO", "WE"]},
        {"frequency": "DAILY", "interval": 3},
    ])
    def test_only_generated_days_are_valid(self, service, rule):
        anchor = "2026-03-12T02:00:00Z"
        generated = {
            local_date(instant, VANCOUVER)
            for instant in service.generate(anchor, rule, VANCOUVER, count=12)
        }

        day = local_date(anchor, VANCOUVER)
        while day <= max(generated):
            assert service.is_valid_occurrence(day, anchor, rule, VANCOUVER) is (day in generated), day
            day += timedelta(days=1)

    def test_template_time_is_used_against_until(self, service):
        rule = dict(WEEKLY_WEDNESDAY, until="2026-03-18T20:00:00-07:00")

        assert service.is_valid_occurrence(date(2026, 3, 18), ANCHOR, rule, VANCOUVER) is True
        assert service.is_valid_occurrence(
            date(2026, 3, 18), ANCHOR, rule, VANCOUVER, template_time=time(21, 0)
        ) is False

    def test_rule_count_limits_membership(self, service):
        rule = dict(WEEKLY_WEDNESDAY, count=2)

        assert service.is_valid_occurrence(date(2026, 3, 11), ANCHOR, rule, VANCOUVER) is True
        assert service.is_valid_occurrence(date(2026, 3, 18), ANCHOR, rule, VANCOUVER) is False


class TestWallTime:
    """Tests for wall-clock helpers."""

    def test_resolve_wall_time(self, service):
        assert service.resolve_wall_time("2026-03-12T02:00:00Z", VANCOUVER) == time(19, 0)
        assert service.resolve_wall_time(time(7, 30), VANCOUVER) == time(7, 30)
        assert service.resolve_wall_time(None, VANCOUVER) is None

    def test_occurrence_start_uses_offset_of_the_day(self, service):
        assert service.occurrence_start(date(2026, 11, 4), time(19, 0), VANCOUVER) == datetime(
            2026, 11, 5, 3, tzinfo=timezone.utc
        )


# ============================================================================
# Formatting
# ============================================================================

class TestBuildRruleString:
    """Tests for RFC 5545 RRULE strings."""

    @pytest.mark.parametrize("rule,expected", [
        ({"frequency": "WEEKLY", "interval": 2, "count": 5, "byweekday": ["MO", "WE"]},
         "FREQ=WEEKLY;INTERVAL=2;COUNT=5;BYDAY=MO,WE"),
        ({"frequency": "MONTHLY", "byweekday": ["2WE"]}, "FREQ=MONTHLY;BYDAY=2WE"),
        ({"frequency": "MONTHLY", "byweekday": ["-1FR"]}, "FREQ=MONTHLY;BYDAY=-1FR"),
        ({"frequency": "DAILY", "until": "2026-03-31T23:59:59Z"}, "FREQ=DAILY;UNTIL=20260331T235959Z"),
        ({"frequency": "YEARLY", "bymonth": [3], "bymonthday": [15]}, "FREQ=YEARLY;BYMONTH=3;BYMONTHDAY=15"),
    ])
    def test_build_rrule_string(self, service, rule, expected):
        assert service.build_rrule_string(rule) == expected


class TestDescribe:
    """Tests for human-readable descriptions."""

    @pytest.mark.parametrize("rule,expected", [
        (WEEKLY_WEDNESDAY, "Weekly on Wednesday"),
        ({"frequency": "WEEKLY", "byweekday": ["MO", "WE", "FR"]}, "Weekly on Monday, Wednesday, Friday"),
        ({"frequency": "MONTHLY", "interval": 2, "byweekday": ["2WE"], "count": 6},
         "Every 2 months on the 2nd Wednesday, 6 times"),
        ({"frequency": "MONTHLY", "byweekday": ["WE"], "bysetpos": [-1]}, "Monthly on the last Wednesday"),
        ({"frequency": "MONTHLY", "bymonthday": [1, 15]}, "Monthly on the 1st, 15th day"),
        ({"frequency": "YEARLY", "bymonth": [3], "until": "2027-12-31"}, "Yearly in March, until Dec 31, 2027"),
        ({"frequency": "DAILY", "interval": 3}, "Every 3 days"),
    ])
    def test_describe(self, service, rule, expected):
        assert service.describe(rule, VANCOUVER) == expected

    @pytest.mark.parametrize("n,suffix", [(1, "st"), (2, "nd"), (3, "rd"), (4, "th"), (11, "th"), (12, "th"), (13, "th"), (21, "st"), (112, "th")])
    def test_ordinal_suffix(self, n, suffix):
        assert ordinal_suffix(n) == suffix
