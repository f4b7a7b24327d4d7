"""
Recurrence pattern evaluator.

Expands recurrence rules into occurrence instants and answers whether a
date belongs to a rule. Stateless and safe to share between threads.

Design:
- Expansion runs python-dateutil's rrule over naive local wall-clock
  datetimes, so weekday, month-day and set-position filters see local
  calendar boundaries
- Each candidate is converted to UTC on its own, with the offset in force on
  that date (19:00 local stays 19:00 local across DST transitions)
- Membership is decided on the candidate's local calendar day, never on a
  UTC date or an exact timestamp
"""

from datetime import date, datetime, time, timedelta
from typing import Any, Iterator, List, Optional, Union

from dateutil import rrule as dateutil_rrule

from backend.src.config.settings import AppSettings, get_settings
from backend.src.schemas.recurrence import (
    Frequency,
    RecurrenceRule,
    WEEKDAY_NAMES,
    parse_weekday_code,
)
from backend.src.utils.timezone import (
    DateInput,
    UTC,
    format_in_timezone,
    local_date,
    local_datetime,
    parse_instant,
    resolve_timezone,
    to_iso,
    to_local,
)


FREQUENCY_MAP = {
    Frequency.DAILY: dateutil_rrule.DAILY,
    Frequency.WEEKLY: dateutil_rrule.WEEKLY,
    Frequency.MONTHLY: dateutil_rrule.MONTHLY,
    Frequency.YEARLY: dateutil_rrule.YEARLY,
}

WEEKDAY_MAP = {
    "MO": dateutil_rrule.MO,
    "TU": dateutil_rrule.TU,
    "WE": dateutil_rrule.WE,
    "TH": dateutil_rrule.TH,
    "FR": dateutil_rrule.FR,
    "SA": dateutil_rrule.SA,
    "SU": dateutil_rrule.SU,
}

FREQUENCY_UNITS = {
    Frequency.DAILY: ("Daily", "days"),
    Frequency.WEEKLY: ("Weekly", "weeks"),
    Frequency.MONTHLY: ("Monthly", "months"),
    Frequency.YEARLY: ("Yearly", "years"),
}

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

TimeInput = Union[time, datetime, str]


def ordinal_suffix(n: int) -> str:
    """Get the English ordinal suffix for a number (1st, 2nd, 3rd, 11th...)."""
    if n % 100 in (11, 12, 13):
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")


def _ordinal(n: int) -> str:
    if n == -1:
        return "last"
    if n < 0:
        return f"{abs(n)}{ordinal_suffix(abs(n))} from last"
    return f"{n}{ordinal_suffix(n)}"


class RecurrenceService:
    """
    Evaluator for recurrence rules.

    Usage:
        >>> service = RecurrenceService()
        >>> rule = RecurrenceRule.parse({"frequency": "WEEKLY", "byweekday": ["WE"]})
        >>> list(service.generate("2026-03-04T03:00:00Z", rule,
        ...                       time_zone="America/Vancouver", count=3))
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        """
        Initialize the evaluator.

        Args:
            settings: Application settings (defaults to cached settings)
        """
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    def generate(
        self,
        anchor: DateInput,
        rule: Any,
        time_zone: str = "UTC",
        count: Optional[int] = None,
        start_after: Optional[DateInput] = None,
    ) -> Iterator[datetime]:
        """
        Generate occurrence instants for a rule.

        The sequence starts at the anchor (inclusive) or strictly after
        start_after, ascends strictly, and stops at the smallest of count,
        the rule's own count and until. Without count the sequence is capped
        at settings.max_occurrence_count.

        Args:
            anchor: First instant the rule is evaluated against
            rule: RecurrenceRule or rule mapping
            time_zone: IANA zone the rule's wall-clock time lives in
            count: Maximum number of instants to yield
            start_after: Only yield instants strictly after this instant

        Returns:
            Lazy iterator of aware UTC datetimes

        Raises:
            InvalidRecurrenceRuleError: If the rule is invalid
            MalformedDateError: If anchor or start_after cannot be parsed
            UnknownTimeZoneError: If time_zone is unknown
        """
        rule = RecurrenceRule.parse(rule)
        local_anchor = to_local(anchor, time_zone).replace(tzinfo=None)
        expansion = self._build_rrule(rule, local_anchor, time_zone)
        threshold = parse_instant(start_after, time_zone) if start_after is not None else None
        limit = count if count is not None else self.settings.max_occurrence_count
        return self._iterate(expansion, time_zone, limit, threshold)

    def generate_iso(
        self,
        anchor: DateInput,
        rule: Any,
        time_zone: str = "UTC",
        count: Optional[int] = None,
        start_after: Optional[DateInput] = None,
    ) -> List[str]:
        """Generate occurrences as UTC ISO-8601 strings."""
        return [
            to_iso(instant)
            for instant in self.generate(anchor, rule, time_zone, count, start_after)
        ]

    def _iterate(
        self,
        expansion: dateutil_rrule.rrule,
        time_zone: str,
        limit: int,
        threshold: Optional[datetime],
    ) -> Iterator[datetime]:
        if limit <= 0:
            return
        tz = resolve_timezone(time_zone)

        if threshold is None:
            candidates = iter(expansion)
        else:
            # Start a day early in local time; the exact cut is made on UTC instants
            local_after = threshold.astimezone(tz).replace(tzinfo=None) - timedelta(days=1)
            candidates = expansion.xafter(local_after, inc=True)

        produced = 0
        for candidate in candidates:
            instant = candidate.replace(tzinfo=tz).astimezone(UTC)
            if threshold is not None and instant <= threshold:
                continue
            yield instant
            produced += 1
            if produced >= limit:
                return

    def _build_rrule(
        self,
        rule: RecurrenceRule,
        local_start: datetime,
        time_zone: str,
    ) -> dateutil_rrule.rrule:
        """Build a dateutil rrule over naive local wall-clock time."""
        until = None
        if rule.until is not None:
            if rule.until.tzinfo is None:
                until = rule.until
            else:
                until = to_local(rule.until, time_zone).replace(tzinfo=None)

        byweekday = None
        if rule.byweekday:
            byweekday = []
            for code in rule.byweekday:
                ordinal, day = parse_weekday_code(code)
                weekday = WEEKDAY_MAP[day]
                byweekday.append(weekday if ordinal is None else weekday(ordinal))

        return dateutil_rrule.rrule(
            FREQUENCY_MAP[rule.frequency],
            dtstart=local_start,
            interval=rule.interval,
            wkst=WEEKDAY_MAP[rule.wkst],
            count=rule.count,
            until=until,
            byweekday=byweekday,
            bymonthday=rule.bymonthday,
            bymonth=rule.bymonth,
            bysetpos=rule.bysetpos,
            cache=False,
        )

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def is_valid_occurrence(
        self,
        candidate: DateInput,
        anchor: DateInput,
        rule: Any,
        time_zone: str = "UTC",
        template_time: Optional[TimeInput] = None,
    ) -> bool:
        """
        Check whether a date is an occurrence of a rule.

        The candidate is reduced to its local calendar date in time_zone
        (2026-03-12T03:00:00Z is 2026-03-11 in America/Vancouver). When
        template_time is given the rule is evaluated at that local wall-clock
        time instead of the anchor's, which matters for until boundaries.

        Args:
            candidate: Date, instant or ISO string to check
            anchor: First instant the rule is evaluated against
            rule: RecurrenceRule or rule mapping
            time_zone: IANA zone of the series
            template_time: Local time-of-day (time), or an instant whose local
                time-of-day is used

        Returns:
            True if the candidate's local date carries an occurrence
        """
        rule = RecurrenceRule.parse(rule)
        day = local_date(candidate, time_zone)
        local_anchor = to_local(anchor, time_zone)

        if day < local_anchor.date():
            return False

        wall_time = self.resolve_wall_time(template_time, time_zone) or local_anchor.time()
        dtstart = datetime.combine(local_anchor.date(), wall_time.replace(tzinfo=None))
        expansion = self._build_rrule(rule, dtstart, time_zone)

        matches = expansion.between(
            datetime.combine(day, time.min),
            datetime.combine(day, time.max),
            inc=True,
        )
        return len(matches) > 0

    def resolve_wall_time(self, value: Optional[TimeInput], time_zone: str) -> Optional[time]:
        """
        Get a local time-of-day from a time or an instant.

        Args:
            value: time (already local), or an instant/ISO string
            time_zone: Zone the instant is observed in

        Returns:
            Naive local time, or None when value is None
        """
        if value is None:
            return None
        if isinstance(value, time):
            return value.replace(tzinfo=None)
        return to_local(value, time_zone).time().replace(microsecond=0)

    def occurrence_start(self, day: date, wall_time: time, time_zone: str) -> datetime:
        """
        Get the instant of an occurrence on a local date at a wall-clock time.

        Returns:
            Aware UTC datetime using the offset in force on that date
        """
        return local_datetime(day, wall_time, time_zone)

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    def build_rrule_string(self, rule: Any) -> str:
        """
        Build an RFC 5545 RRULE value for a rule.

        Args:
            rule: RecurrenceRule or rule mapping

        Returns:
            String such as "FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE"
        """
        rule = RecurrenceRule.parse(rule)
        parts = [f"FREQ={rule.frequency.value}"]

        if rule.interval > 1:
            parts.append(f"INTERVAL={rule.interval}")
        if rule.count:
            parts.append(f"COUNT={rule.count}")
        if rule.until is not None:
            if rule.until.tzinfo is None:
                parts.append(f"UNTIL={rule.until.strftime('%Y%m%dT%H%M%S')}")
            else:
                parts.append(f"UNTIL={rule.until.astimezone(UTC).strftime('%Y%m%dT%H%M%SZ')}")
        if rule.byweekday:
            parts.append("BYDAY=" + ",".join(code.lstrip("+") for code in rule.byweekday))
        if rule.bymonth:
            parts.append("BYMONTH=" + ",".join(str(m) for m in rule.bymonth))
        if rule.bymonthday:
            parts.append("BYMONTHDAY=" + ",".join(str(d) for d in rule.bymonthday))
        if rule.bysetpos:
            parts.append("BYSETPOS=" + ",".join(str(p) for p in rule.bysetpos))
        if rule.wkst != "MO":
            parts.append(f"WKST={rule.wkst}")

        return ";".join(parts)

    def describe(self, rule: Any, time_zone: str = "UTC") -> str:
        """
        Generate a human-readable description of a rule.

        Examples:
            "Weekly on Wednesday"
            "Every 2 months on the 2nd Wednesday, 6 times"
            "Yearly in March, until Dec 31, 2027"
        """
        rule = RecurrenceRule.parse(rule)
        single, plural = FREQUENCY_UNITS[rule.frequency]
        description = single if rule.interval == 1 else f"Every {rule.interval} {plural}"

        weekdays = []
        for code in rule.byweekday or ():
            ordinal, day = parse_weekday_code(code)
            name = WEEKDAY_NAMES[day]
            weekdays.append(name if ordinal is None else f"{_ordinal(ordinal)} {name}")

        if rule.bysetpos and weekdays:
            positions = " and ".join(_ordinal(p) for p in rule.bysetpos)
            description += f" on the {positions} {' or '.join(weekdays)}"
        elif weekdays:
            prefix = " on the " if any(" " in w for w in weekdays) else " on "
            description += prefix + ", ".join(weekdays)

        if rule.bymonthday:
            days = ", ".join(_ordinal(d) for d in rule.bymonthday)
            description += f" on the {days} day"

        if rule.bymonth:
            description += " in " + ", ".join(MONTH_NAMES[m - 1] for m in rule.bymonth)

        if rule.count:
            description += f", {rule.count} times"
        elif rule.until is not None:
            if rule.until.tzinfo is None:
                until_text = rule.until.strftime("%b %d, %Y")
            else:
                until_text = format_in_timezone(rule.until, time_zone, "%b %d, %Y")
            description += f", until {until_text}"

        return description
