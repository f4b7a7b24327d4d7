"""
Recurrence rule value type.

A closed structure with one required frequency and a fixed set of optional,
typed constraint fields. Rules are immutable and validated once, at
construction; the evaluator never re-validates them.

Design:
- Weekday codes follow RFC 5545 (MO..SU) with an optional ordinal prefix
  ("2WE" = second Wednesday, "-1FR" = last Friday)
- bymonthday accepts 1..31 and -31..-1 (counted from the end of the month)
- bysetpos selects positions within the period's candidate set and is only
  meaningful together with byweekday or bymonthday
"""

import enum
import re
from datetime import date, datetime, time
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from backend.src.services.exceptions import InvalidRecurrenceRuleError


class Frequency(str, enum.Enum):
    """Recurrence frequency."""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

WEEKDAY_NAMES = {
    "MO": "Monday",
    "TU": "Tuesday",
    "WE": "Wednesday",
    "TH": "Thursday",
    "FR": "Friday",
    "SA": "Saturday",
    "SU": "Sunday",
}

WEEKDAY_PATTERN = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")

DATE_ONLY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_weekday_code(code: str) -> Tuple[Optional[int], str]:
    """
    Split a weekday code into (ordinal, day).

    Args:
        code: Weekday code such as "WE" or "-1FR"

    Returns:
        Tuple of ordinal (None when absent) and two-letter day code

    Raises:
        ValueError: If the code is not a valid weekday code
    """
    match = WEEKDAY_PATTERN.match(code.strip().upper()) if isinstance(code, str) else None
    if not match:
        raise ValueError(
            f"Invalid weekday: {code}. Must be one of: {', '.join(WEEKDAY_CODES)}"
        )
    ordinal, day = match.groups()
    if ordinal is None:
        return None, day
    value = int(ordinal)
    if value == 0 or abs(value) > 53:
        raise ValueError(f"Invalid weekday ordinal in {code}")
    return value, day


class RecurrenceRule(BaseModel):
    """
    Immutable recurrence rule.

    Attributes:
        frequency: DAILY, WEEKLY, MONTHLY or YEARLY (alias: freq)
        interval: Step between periods (>= 1)
        count: Total number of occurrences, counted from the anchor
        until: Inclusive end instant
        byweekday: Weekday codes (alias: byday)
        bymonthday: Days of month (1..31 or -31..-1)
        bymonth: Months (1..12)
        bysetpos: Positions within the period's candidate set
        wkst: Week start day (default MO)
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    frequency: Frequency = Field(..., alias="freq")
    interval: int = Field(default=1, ge=1)
    count: Optional[int] = Field(default=None, ge=1)
    until: Optional[datetime] = None
    byweekday: Optional[Tuple[str, ...]] = Field(default=None, alias="byday")
    bymonthday: Optional[Tuple[int, ...]] = None
    bymonth: Optional[Tuple[int, ...]] = None
    bysetpos: Optional[Tuple[int, ...]] = None
    wkst: str = "MO"

    @field_validator("frequency", mode="before")
    @classmethod
    def normalize_frequency(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("interval", mode="before")
    @classmethod
    def default_interval(cls, v: Any) -> Any:
        return 1 if v is None else v

    @field_validator("until", mode="before")
    @classmethod
    def parse_until(cls, v: Any) -> Any:
        """
        A date-only until covers that whole day as local wall-clock time.

        Instants with an offset stay absolute; naive values are floating local
        times interpreted in the series timezone by the evaluator.
        """
        if isinstance(v, str) and DATE_ONLY_PATTERN.match(v.strip()):
            return datetime.combine(date.fromisoformat(v.strip()), time.max)
        if isinstance(v, date) and not isinstance(v, datetime):
            return datetime.combine(v, time.max)
        return v

    @field_validator("byweekday", "bymonthday", "bymonth", "bysetpos", mode="before")
    @classmethod
    def coerce_sequence(cls, v: Any) -> Any:
        """Accept a scalar or list; an empty list means 'no constraint'."""
        if v is None:
            return None
        if isinstance(v, (str, int)):
            v = [v]
        v = list(v)
        return tuple(v) if v else None

    @field_validator("byweekday")
    @classmethod
    def validate_byweekday(cls, v: Optional[Tuple[str, ...]]) -> Optional[Tuple[str, ...]]:
        if v is None:
            return v
        normalized = []
        for code in v:
            ordinal, day = parse_weekday_code(code)
            normalized.append(day if ordinal is None else f"{ordinal:+d}{day}")
        return tuple(dict.fromkeys(normalized))

    @field_validator("bymonthday")
    @classmethod
    def validate_bymonthday(cls, v: Optional[Tuple[int, ...]]) -> Optional[Tuple[int, ...]]:
        if v is None:
            return v
        for day in v:
            if day == 0 or not -31 <= day <= 31:
                raise ValueError("Month day must be between 1 and 31 (or -31 and -1)")
        return tuple(dict.fromkeys(v))

    @field_validator("bymonth")
    @classmethod
    def validate_bymonth(cls, v: Optional[Tuple[int, ...]]) -> Optional[Tuple[int, ...]]:
        if v is None:
            return v
        for month in v:
            if not 1 <= month <= 12:
                raise ValueError("Month must be between 1 and 12")
        return tuple(sorted(set(v)))

    @field_validator("bysetpos")
    @classmethod
    def validate_bysetpos(cls, v: Optional[Tuple[int, ...]]) -> Optional[Tuple[int, ...]]:
        if v is None:
            return v
        for pos in v:
            if pos == 0 or not -366 <= pos <= 366:
                raise ValueError("Set position must be between 1 and 366 (or -366 and -1)")
        return tuple(dict.fromkeys(v))

    @field_validator("wkst", mode="before")
    @classmethod
    def validate_wkst(cls, v: Any) -> str:
        if v is None:
            return "MO"
        code = str(v).strip().upper()
        if code not in WEEKDAY_CODES:
            raise ValueError(
                f"Invalid week start: {v}. Must be one of: {', '.join(WEEKDAY_CODES)}"
            )
        return code

    @model_validator(mode="after")
    def validate_combination(self) -> "RecurrenceRule":
        if self.bysetpos and not (self.byweekday or self.bymonthday):
            raise ValueError("bysetpos requires byweekday or bymonthday")
        return self

    @classmethod
    def parse(cls, data: Any) -> "RecurrenceRule":
        """
        Build a rule from a mapping, converting validation failures.

        Args:
            data: Rule mapping (or an existing RecurrenceRule)

        Returns:
            Validated RecurrenceRule

        Raises:
            InvalidRecurrenceRuleError: If the rule is missing, malformed or out of range
        """
        if isinstance(data, cls):
            return data
        if not data:
            raise InvalidRecurrenceRuleError("recurrence rule is required")
        if not isinstance(data, dict):
            raise InvalidRecurrenceRuleError("recurrence rule must be an object")
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or None
            if field == "freq":
                field = "frequency"
            elif field == "byday":
                field = "byweekday"
            message = first.get("msg", "invalid value")
            raise InvalidRecurrenceRuleError(
                f"{field}: {message}" if field else message,
                field=field,
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON storage (only fields that are set)."""
        data: Dict[str, Any] = {"frequency": self.frequency.value, "interval": self.interval}
        if self.count is not None:
            data["count"] = self.count
        if self.until is not None:
            data["until"] = self.until.isoformat()
        if self.byweekday:
            data["byweekday"] = list(self.byweekday)
        if self.bymonthday:
            data["bymonthday"] = list(self.bymonthday)
        if self.bymonth:
            data["bymonth"] = list(self.bymonth)
        if self.bysetpos:
            data["bysetpos"] = list(self.bysetpos)
        if self.wkst != "MO":
            data["wkst"] = self.wkst
        return data
