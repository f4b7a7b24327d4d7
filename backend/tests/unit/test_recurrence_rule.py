"""
Unit tests for the RecurrenceRule value type.

Tests construction-time validation, field aliases, normalization of weekday
codes, date-only until handling and JSON serialization.
"""

import pytest
from datetime import datetime, timezone
from pydantic import ValidationError as PydanticValidationError

from backend.src.schemas.recurrence import Frequency, RecurrenceRule, parse_weekday_code
from backend.src.services.exceptions import InvalidRecurrenceRuleError, ValidationError


# ============================================================================
# Parsing
# ============================================================================

class TestRecurrenceRuleParse:
    """Tests for RecurrenceRule.parse."""

    def test_minimal_rule_defaults(self):
        rule = RecurrenceRule.parse({"frequency": "WEEKLY"})

        assert rule.frequency == Frequency.WEEKLY
        assert rule.interval == 1
        assert rule.count is None
        assert rule.until is None
        assert rule.byweekday is None
        assert rule.wkst == "MO"

    def test_aliases_and_case_are_accepted(self):
        rule = RecurrenceRule.parse({"freq": "weekly", "byday": "we"})

        assert rule.frequency == Frequency.WEEKLY
        assert rule.byweekday == ("WE",)

    def test_null_interval_defaults_to_one(self):
        assert RecurrenceRule.parse({"frequency": "DAILY", "interval": None}).interval == 1

    def test_weekday_ordinals_are_normalized(self):
        rule = RecurrenceRule.parse({"frequency": "MONTHLY", "byweekday": ["2we", "-1FR", "WE", "WE"]})

        assert rule.byweekday == ("+2WE", "-1FR", "WE")

    def test_bymonth_is_sorted_and_deduplicated(self):
        rule = RecurrenceRule.parse({"frequency": "YEARLY", "bymonth": [12, 3, 12]})

        assert rule.bymonth == (3, 12)

    def test_empty_list_means_no_constraint(self):
        rule = RecurrenceRule.parse({"frequency": "WEEKLY", "byweekday": []})

        assert rule.byweekday is None

    def test_existing_rule_is_returned_unchanged(self):
        rule = RecurrenceRule.parse({"frequency": "DAILY"})

        assert RecurrenceRule.parse(rule) is rule

    @pytest.mark.parametrize("data", [None, {}])
    def test_missing_rule(self, data):
        with pytest.raises(InvalidRecurrenceRuleError) as exc_info:
            RecurrenceRule.parse(data)

        assert "required" in str(exc_info.value)

    def test_non_mapping_rule(self):
        with pytest.raises(InvalidRecurrenceRuleError):
            RecurrenceRule.parse("FREQ=WEEKLY")

    def test_error_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            RecurrenceRule.parse({"frequency": "HOURLY"})


class TestRecurrenceRuleRanges:
    """Tests for out-of-range fields and the field reported."""

    @pytest.mark.parametrize("data,field", [
        ({"frequency": "HOURLY"}, "frequency"),
        ({"interval": 2}, "frequency"),
        ({"frequency": "DAILY", "interval": 0}, "interval"),
        ({"frequency": "DAILY", "count": 0}, "count"),
        ({"frequency": "MONTHLY", "bymonthday": [0]}, "bymonthday"),
        ({"frequency": "MONTHLY", "bymonthday": [32]}, "bymonthday"),
        ({"frequency": "YEARLY", "bymonth": [13]}, "bymonth"),
        ({"frequency": "WEEKLY", "byweekday": ["XX"]}, "byweekday"),
        ({"frequency": "MONTHLY", "byweekday": ["WE"], "bysetpos": [0]}, "bysetpos"),
        ({"frequency": "WEEKLY", "wkst": "XX"}, "wkst"),
    ])
    def test_out_of_range_field(self, data, field):
        with pytest.raises(InvalidRecurrenceRuleError) as exc_info:
            RecurrenceRule.parse(data)

        assert exc_info.value.field == field
        assert str(exc_info.value).startswith("Invalid recurrence rule:")

    def test_negative_month_days_are_allowed(self):
        assert RecurrenceRule.parse({"frequency": "MONTHLY", "bymonthday": [-1]}).bymonthday == (-1,)

    def test_bysetpos_requires_a_day_filter(self):
        with pytest.raises(InvalidRecurrenceRuleError) as exc_info:
            RecurrenceRule.parse({"frequency": "MONTHLY", "bysetpos": [2]})

        assert "bysetpos requires" in str(exc_info.value)

    @pytest.mark.parametrize("code", ["0WE", "54MO", "WED", ""])
    def test_parse_weekday_code_rejects(self, code):
        with pytest.raises(ValueError):
            parse_weekday_code(code)


# ============================================================================
# Until, immutability and serialization
# ============================================================================

class TestRecurrenceRuleUntil:
    """Tests for until handling."""

    def test_date_only_until_covers_whole_local_day(self):
        rule = RecurrenceRule.parse({"frequency": "DAILY", "until": "2026-12-31"})

        assert rule.until == datetime(2026, 12, 31, 23, 59, 59, 999999)
        assert rule.until.tzinfo is None

    def test_until_with_offset_stays_absolute(self):
        rule = RecurrenceRule.parse({"frequency": "DAILY", "until": "2026-03-31T23:59:59Z"})

        assert rule.until == datetime(2026, 3, 31, 23, 59, 59, tzinfo=timezone.utc)


class TestRecurrenceRuleImmutability:
    """Tests for frozen rules and to_dict."""

    def test_rule_is_frozen(self):
        rule = RecurrenceRule.parse({"frequency": "WEEKLY"})

        with pytest.raises(PydanticValidationError):
            rule.interval = 2

    def test_to_dict_only_includes_set_fields(self):
        rule = RecurrenceRule.parse({"frequency": "WEEKLY", "byweekday": ["MO", "WE"]})

        assert rule.to_dict() == {"frequency": "WEEKLY", "interval": 1, "byweekday": ["MO", "WE"]}

    def test_to_dict_reparses_to_equal_rule(self):
        rule = RecurrenceRule.parse({
            "frequency": "MONTHLY",
            "interval": 2,
            "until": "2027-06-30",
            "byweekday": ["WE"],
            "bysetpos": [2],
            "wkst": "SU",
        })

        assert RecurrenceRule.parse(rule.to_dict()) == rule
