"""
Occurrence service: the recurring-event occurrence engine.

Merges the occurrences computed from a series' recurrence rule with the
events persisted for it, materializes occurrences on demand and propagates
template edits to future occurrences.

An occurrence is virtual (computed, no event) until it is materialized
(an event exists for its local day); the transition is one-way.

Design:
- Collaborators (series service, event store, evaluator) are injected at
  construction; nothing is created lazily inside an operation
- Persisted events and computed candidates are matched on local calendar
  day in the series timezone, never on exact timestamps or UTC dates
- Materialization re-checks the local day before writing and relies on the
  (series_id, occurrence_date) constraint for races; a lost race returns
  the winner's event
- Every operation runs under a Deadline; each collaborator hop checks it
- Single-occurrence operations propagate errors; batch materialization
  isolates failures per item
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import Event, EventSeries
from backend.src.models.event import EventType, TEMPLATE_FIELDS
from backend.src.services.event_series_service import EventSeriesService
from backend.src.services.event_service import EventService
from backend.src.services.exceptions import (
    InvalidOccurrenceDateError,
    OperationTimeoutError,
    PermissionDeniedError,
    PersistenceConflictError,
    TemplateNotFoundError,
    ValidationError,
)
from backend.src.services.recurrence_service import RecurrenceService
from backend.src.utils.deadline import Deadline
from backend.src.utils.logging_config import get_logger
from backend.src.utils.timezone import (
    DateInput,
    UTC,
    local_date,
    parse_instant,
    start_of_local_day,
)


logger = get_logger("services")


ANCHOR_TEMPLATE = "template"
ANCHOR_SERIES_CREATED_AT = "series_created_at"

# Template properties that "update future occurrences" writes to events
PROPAGATED_FIELDS = (
    "description",
    "location",
    "location_online",
    "max_attendees",
    "require_approval",
    "approval_question",
    "allow_waitlist",
    "categories",
)

# Template-prefixed keys accepted until the deadline below, both camelCase
# (templateLocation) and snake_case (template_location)
DEPRECATED_ALIAS_REMOVAL_DATE = "2027-06-30"
DEPRECATED_ALIASES = {}
for _field in PROPAGATED_FIELDS:
    DEPRECATED_ALIASES[f"template_{_field}"] = _field
    DEPRECATED_ALIASES["template" + "".join(p.title() for p in _field.split("_"))] = _field
del _field


def normalize_occurrence_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map deprecated template-prefixed keys onto their canonical names.

    A canonical key wins over its alias when both are present.

    Args:
        changes: Raw property changes

    Returns:
        Changes keyed by canonical field names

    Raises:
        ValidationError: If a key is neither a propagated field nor an alias
    """
    normalized: Dict[str, Any] = {}
    aliases_used = []

    for key, value in changes.items():
        if key in PROPAGATED_FIELDS:
            normalized[key] = value
            continue
        canonical = DEPRECATED_ALIASES.get(key)
        if canonical is None:
            raise ValidationError(f"Unsupported occurrence field: {key}", field=key)
        aliases_used.append(key)
        normalized.setdefault(canonical, value)

    if aliases_used:
        logger.warning(
            f"Deprecated occurrence fields {sorted(aliases_used)} used; "
            f"support ends {DEPRECATED_ALIAS_REMOVAL_DATE}"
        )
    return normalized


@dataclass
class Occurrence:
    """
    One occurrence of a series.

    Attributes:
        date: Start instant (aware UTC)
        event: Persisted event for this local day, None while virtual
    """
    date: datetime
    event: Optional[Event] = None

    @property
    def materialized(self) -> bool:
        return self.event is not None


@dataclass
class UpcomingOccurrences:
    """
    Result of an upcoming-occurrences query.

    Attributes:
        anchor_source: "template" when the rule was anchored on the template
            event; "series_created_at" when no template could be resolved
        occurrences: Occurrences in ascending order
    """
    anchor_source: str
    occurrences: List[Occurrence] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.anchor_source != ANCHOR_TEMPLATE


class OccurrenceService:
    """
    Service for series occurrences.

    Usage:
        >>> service = OccurrenceService(series_service, event_service)
        >>> service.get_upcoming_occurrences("ser_01hgw...", count=5)
        >>> service.get_or_create_occurrence("ser_01hgw...", "2026-03-11", user_id="u1")
    """

    def __init__(
        self,
        series_service: EventSeriesService,
        event_service: EventService,
        recurrence_service: Optional[RecurrenceService] = None,
        settings: Optional[AppSettings] = None,
    ):
        """
        Initialize occurrence service.

        Args:
            series_service: Series lookup and template resolution
            event_service: Event store
            recurrence_service: Recurrence evaluator
            settings: Application settings (defaults to cached settings)
        """
        self.series_service = series_service
        self.event_service = event_service
        self.settings = settings or get_settings()
        self.recurrence_service = recurrence_service or RecurrenceService(self.settings)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _deadline(self, timeout: Optional[float], operation: str) -> Deadline:
        if timeout is None:
            timeout = self.settings.collaborator_timeout_seconds
        return Deadline(timeout, operation)

    def _load_series(
        self,
        series_slug: str,
        team_id: Optional[str],
        deadline: Deadline,
    ) -> EventSeries:
        return self.series_service.get_by_slug(series_slug, team_id=team_id, deadline=deadline)

    def _generation_anchor(self, series: EventSeries, template: Optional[Event]):
        """Get (anchor instant, anchor source) for rule expansion."""
        if template is not None:
            return template.start_date, ANCHOR_TEMPLATE
        logger.warning(
            f"No template event for series {series.guid}; "
            f"anchoring recurrence on series creation time"
        )
        return series.created_at, ANCHOR_SERIES_CREATED_AT

    def _is_valid_day(self, series: EventSeries, template: Event, day: date) -> bool:
        """Validate a local day against the rule at the template's wall-clock time."""
        wall_time = self.recurrence_service.resolve_wall_time(template.start_date, series.time_zone)
        return self.recurrence_service.is_valid_occurrence(
            day,
            template.start_date,
            series.rule,
            series.time_zone,
            template_time=wall_time,
        )

    def _synthesize_template(
        self,
        series: EventSeries,
        user_id: str,
        deadline: Deadline,
    ) -> Event:
        """
        Create a minimal template on the first occurrence after the series'
        creation and link it to the series.
        """
        first = next(
            self.recurrence_service.generate(
                series.created_at, series.rule, series.time_zone, count=1
            ),
            None,
        )
        if first is None:
            raise TemplateNotFoundError(series.guid)

        logger.warning(
            f"No template or events found for series {series.guid}; creating a default template"
        )
        data = {
            "name": series.name,
            "description": series.description,
            "type": EventType.IN_PERSON.value,
            "categories": [],
            "start_date": first,
            "time_zone": series.time_zone,
            "series_id": series.id,
            "user_id": user_id,
            "group_id": series.group_id,
            "team_id": series.team_id,
        }
        data.update(series.property_overrides())

        template = self.event_service.create(
            data, series_time_zone=series.time_zone, deadline=deadline
        )
        deadline.check("link template")
        self.series_service.link_template(series, template)
        return template

    def _resolve_template(
        self,
        series: EventSeries,
        user_id: str,
        deadline: Deadline,
    ) -> Event:
        template = self.series_service.resolve_template(series, deadline=deadline)
        if template is None:
            template = self._synthesize_template(series, user_id, deadline)
        return template

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find_occurrence(
        self,
        series_slug: str,
        date: DateInput,
        team_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Optional[Event]:
        """
        Find the materialized occurrence on a date.

        Args:
            series_slug: Series GUID
            date: Date-only string (local day) or instant
            team_id: Team ID for tenant isolation
            timeout: Seconds (defaults to settings.collaborator_timeout_seconds)

        Returns:
            Event on the same local day in the series timezone, or None
        """
        deadline = self._deadline(timeout, "find_occurrence")
        series = self._load_series(series_slug, team_id, deadline)
        day = local_date(date, series.time_zone)
        return self.event_service.find_by_series_and_day(series.id, day, deadline=deadline)

    def get_effective_event_for_date(
        self,
        series_slug: str,
        date: DateInput,
        team_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Event:
        """
        Get the event that describes a date: the materialized occurrence, or
        the template event when the date is a valid virtual occurrence.

        Raises:
            TemplateNotFoundError: If the series has no template
            InvalidOccurrenceDateError: If the date is not an occurrence
        """
        deadline = self._deadline(timeout, "get_effective_event_for_date")
        series = self._load_series(series_slug, team_id, deadline)
        day = local_date(date, series.time_zone)

        existing = self.event_service.find_by_series_and_day(series.id, day, deadline=deadline)
        if existing is not None:
            return existing

        template = self.series_service.resolve_template(series, deadline=deadline)
        if template is None:
            raise TemplateNotFoundError(series_slug)
        if not self._is_valid_day(series, template, day):
            raise InvalidOccurrenceDateError(series_slug, day.isoformat())
        return template

    # ------------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------------

    def get_or_create_occurrence(
        self,
        series_slug: str,
        date: DateInput,
        user_id: str,
        team_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Event:
        """
        Get the occurrence on a date, materializing it if needed.

        Args:
            series_slug: Series GUID
            date: Date-only string (local day) or instant
            user_id: Acting user (owner of a newly created event)
            team_id: Team ID for tenant isolation
            timeout: Seconds (defaults to settings.collaborator_timeout_seconds)

        Returns:
            The existing or newly created Event

        Raises:
            SeriesNotFoundError: If the series does not exist
            InvalidOccurrenceDateError: If the date is not an occurrence
            MalformedDateError: If the date cannot be parsed
            OperationTimeoutError: If the deadline elapses
        """
        deadline = self._deadline(timeout, "get_or_create_occurrence")
        series = self._load_series(series_slug, team_id, deadline)
        return self._materialize(series, date, user_id, deadline)

    def materialize_occurrence(
        self,
        series_slug: str,
        date: DateInput,
        user_id: str,
        team_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Event:
        """
        Materialize the occurrence on a date.

        Idempotent: a date that is already materialized returns its event.
        The date is reduced to its local day in the series timezone, so
        2026-03-12T03:00:00Z materializes 2026-03-11 in America/Vancouver.

        Raises:
            SeriesNotFoundError: If the series does not exist
            InvalidOccurrenceDateError: If the date is not an occurrence
            OperationTimeoutError: If the deadline elapses
        """
        deadline = self._deadline(timeout, "materialize_occurrence")
        series = self._load_series(series_slug, team_id, deadline)
        return self._materialize(series, date, user_id, deadline)

    def _materialize(
        self,
        series: EventSeries,
        date: DateInput,
        user_id: str,
        deadline: Deadline,
    ) -> Event:
        time_zone = series.time_zone
        day = local_date(date, time_zone)

        existing = self.event_service.find_by_series_and_day(series.id, day, deadline=deadline)
        if existing is not None:
            logger.debug(f"Occurrence {day} of series {series.guid} already materialized")
            return existing

        template = self._resolve_template(series, user_id, deadline)
        if template.series_id == series.id and template.occurrence_date == day:
            return template

        if not self._is_valid_day(series, template, day):
            raise InvalidOccurrenceDateError(series.guid, day.isoformat())

        wall_time = self.recurrence_service.resolve_wall_time(template.start_date, time_zone)
        start = self.recurrence_service.occurrence_start(day, wall_time, time_zone)
        duration = template.duration

        data = {name: getattr(template, name) for name in TEMPLATE_FIELDS}
        data["categories"] = list(template.categories or [])
        data.update(series.property_overrides())
        data.update(
            start_date=start,
            end_date=start + duration if duration is not None else None,
            time_zone=time_zone,
            series_id=series.id,
            user_id=user_id,
            group_id=series.group_id,
            team_id=series.team_id,
        )

        try:
            event = self.event_service.create(data, series_time_zone=time_zone, deadline=deadline)
        except PersistenceConflictError:
            existing = self.event_service.find_by_series_and_day(series.id, day, deadline=deadline)
            if existing is None:
                raise
            logger.info(
                f"Occurrence {day} of series {series.guid} was materialized concurrently; "
                f"returning {existing.guid}"
            )
            return existing

        logger.info(f"Materialized occurrence {event.guid} of series {series.guid} on {day}")
        return event

    # ------------------------------------------------------------------
    # Upcoming
    # ------------------------------------------------------------------

    def get_upcoming_occurrences(
        self,
        series_slug: str,
        count: int = 10,
        include_past: bool = False,
        team_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> UpcomingOccurrences:
        """
        Get upcoming occurrences, materialized and virtual.

        Args:
            series_slug: Series GUID
            count: Maximum results (capped by settings.max_upcoming_count and
                the rule's count)
            include_past: Start the window one year before the earlier of the
                anchor and today instead of today's local midnight
            team_id: Team ID for tenant isolation
            timeout: Seconds (defaults to settings.collaborator_timeout_seconds)

        Returns:
            UpcomingOccurrences; anchor_source tells whether the template or
            the series creation time anchored the rule

        Raises:
            SeriesNotFoundError: If the series does not exist
            ValidationError: If count is below 1
        """
        deadline = self._deadline(timeout, "get_upcoming_occurrences")
        series = self._load_series(series_slug, team_id, deadline)
        return self._upcoming(series, count, include_past, deadline)

    def _upcoming(
        self,
        series: EventSeries,
        count: int,
        include_past: bool,
        deadline: Deadline,
    ) -> UpcomingOccurrences:
        if count < 1:
            raise ValidationError("count must be at least 1", field="count")

        time_zone = series.time_zone
        rule = series.rule
        template = self.series_service.resolve_template(series, deadline=deadline)
        anchor, anchor_source = self._generation_anchor(series, template)

        limit = min(count, self.settings.max_upcoming_count)
        if rule.count:
            limit = min(limit, rule.count)

        window_start = start_of_local_day(datetime.now(UTC), time_zone)
        if include_past:
            window_start = min(parse_instant(anchor), window_start)
            window_start -= timedelta(days=self.settings.past_window_days)

        candidates = list(
            self.recurrence_service.generate(
                anchor,
                rule,
                time_zone,
                count=limit,
                start_after=window_start - timedelta(microseconds=1),
            )
        )

        events_by_day: Dict[date, Event] = {}
        for event in self.event_service.list_all_by_series(series.id, deadline=deadline):
            events_by_day.setdefault(local_date(event.start_date, time_zone), event)

        occurrences = [
            Occurrence(date=candidate, event=events_by_day.get(local_date(candidate, time_zone)))
            for candidate in candidates
        ]

        if template is not None and template.series_id == series.id:
            represented = any(o.event is not None and o.event.id == template.id for o in occurrences)
            if not represented and template.start_date >= window_start:
                occurrences.append(Occurrence(date=template.start_date, event=template))
                occurrences.sort(key=lambda o: o.date)

        return UpcomingOccurrences(anchor_source=anchor_source, occurrences=occurrences[:limit])

    # ------------------------------------------------------------------
    # Batch materialization
    # ------------------------------------------------------------------

    def materialize_next_occurrence(
        self,
        series_slug: str,
        user_id: str,
        team_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Optional[Event]:
        """
        Materialize the next virtual occurrence.

        A series without any events first gets a batch of
        settings.materialize_batch_size occurrences; the earliest is returned.

        Returns:
            The materialized Event, or None if the near-term occurrences are
            all materialized already

        Raises:
            SeriesNotFoundError: If the series does not exist
            OperationTimeoutError: If the deadline elapses
        """
        deadline = self._deadline(timeout, "materialize_next_occurrence")
        series = self._load_series(series_slug, team_id, deadline)

        if self.event_service.count_by_series(series.id, deadline=deadline) == 0:
            created = self._materialize_batch(
                series, user_id, self.settings.materialize_batch_size, deadline
            )
            return created[0] if created else None

        upcoming = self._upcoming(series, 5, False, deadline)
        for occurrence in upcoming.occurrences:
            if not occurrence.materialized:
                return self._materialize(series, occurrence.date, user_id, deadline)

        logger.info(f"Near-term occurrences of series {series.guid} are all materialized")
        return None

    def materialize_next_n_occurrences(
        self,
        series_slug: str,
        user_id: str,
        n: Optional[int] = None,
        team_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[Event]:
        """
        Materialize the next n virtual occurrences.

        Looks at 2n upcoming occurrences and materializes the first n virtual
        ones in waves of settings.materialize_wave_size. A failing date is
        logged and skipped. When the deadline elapses the batch stops; events
        created so far are kept and returned.

        Args:
            series_slug: Series GUID
            user_id: Acting user
            n: Number to materialize (defaults to settings.materialize_batch_size)
            team_id: Team ID for tenant isolation
            timeout: Seconds (defaults to settings.collaborator_timeout_seconds)

        Returns:
            Events materialized by this call, in date order

        Raises:
            SeriesNotFoundError: If the series does not exist
            ValidationError: If n is below 1
        """
        if n is None:
            n = self.settings.materialize_batch_size
        if n < 1:
            raise ValidationError("n must be at least 1", field="n")

        deadline = self._deadline(timeout, "materialize_next_n_occurrences")
        series = self._load_series(series_slug, team_id, deadline)
        return self._materialize_batch(series, user_id, n, deadline)

    def _materialize_batch(
        self,
        series: EventSeries,
        user_id: str,
        n: int,
        deadline: Deadline,
    ) -> List[Event]:
        upcoming = self._upcoming(series, 2 * n, False, deadline)
        pending = [o for o in upcoming.occurrences if not o.materialized][:n]

        created: List[Event] = []
        wave_size = self.settings.materialize_wave_size

        for offset in range(0, len(pending), wave_size):
            for occurrence in pending[offset:offset + wave_size]:
                try:
                    created.append(self._materialize(series, occurrence.date, user_id, deadline))
                except OperationTimeoutError:
                    logger.warning(
                        f"Deadline reached materializing series {series.guid}; "
                        f"kept {len(created)} of {len(pending)} occurrences"
                    )
                    return created
                except Exception as e:
                    self.event_service.db.rollback()
                    logger.error(
                        f"Failed to materialize {occurrence.date.isoformat()} "
                        f"for series {series.guid}: {e}",
                        exc_info=True,
                    )

        logger.info(f"Materialized {len(created)} of {len(pending)} occurrences for series {series.guid}")
        return created

    # ------------------------------------------------------------------
    # Propagation
    # ------------------------------------------------------------------

    def update_future_occurrences(
        self,
        series_slug: str,
        from_date: DateInput,
        changes: Dict[str, Any],
        user_id: str,
        team_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """
        Update the template, then copy its new values to future occurrences.

        Occurrences whose local day in the series timezone is on or after
        from_date's local day are updated; earlier ones are untouched. Every
        propagated property is copied from the reloaded template, not from the
        raw input, so all updated occurrences converge on the same values.

        Args:
            series_slug: Series GUID
            from_date: First local day to update (inclusive)
            changes: Property changes; deprecated template* keys are accepted
            user_id: Acting user (must own the series)
            team_id: Team ID for tenant isolation
            timeout: Seconds (defaults to settings.collaborator_timeout_seconds)

        Returns:
            Number of occurrences on or after from_date, the template included
            when its own day is in range

        Raises:
            SeriesNotFoundError: If the series does not exist
            TemplateNotFoundError: If the series has no template
            PermissionDeniedError: If the user does not own the series
            ValidationError: If changes contain unsupported fields
        """
        normalized = normalize_occurrence_changes(changes)

        deadline = self._deadline(timeout, "update_future_occurrences")
        series = self._load_series(series_slug, team_id, deadline)
        if series.user_id != user_id:
            raise PermissionDeniedError("You do not have permission to update this series")

        boundary = local_date(from_date, series.time_zone)
        template = self.series_service.resolve_template(series, deadline=deadline)
        if template is None:
            raise TemplateNotFoundError(series_slug)
        if not normalized:
            return 0

        self.event_service.update(template, normalized, deadline=deadline)
        template = self.event_service.get_by_guid(template.guid, deadline=deadline)
        values = {name: getattr(template, name) for name in PROPAGATED_FIELDS}

        updated = 0
        db = self.event_service.db
        try:
            for event in self.event_service.list_all_by_series(series.id, deadline=deadline):
                if local_date(event.start_date, series.time_zone) < boundary:
                    continue
                # The template already holds the new values
                if event.id != template.id:
                    event_values = dict(values)
                    event_values["categories"] = list(event_values["categories"] or [])
                    self.event_service.update(event, event_values, commit=False, deadline=deadline)
                updated += 1
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            f"Propagated {sorted(normalized)} to {updated} occurrences of series "
            f"{series.guid} from {boundary}"
        )
        return updated
