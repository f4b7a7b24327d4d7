"""
Event series service: lifecycle of recurring series.

Creates series together with their template event, promotes standalone
events to templates, updates and deletes series, and resolves the template
event used for materialization.

Design:
- Recurrence rules are parsed into RecurrenceRule before anything is written;
  invalid rules never reach the database
- The series row and its template event are written in one transaction, so
  the series -> template and template -> series links appear together
- Only the owning user may update or delete a series
- Deletion either deletes the series' events or detaches them into
  standalone events
"""

from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import Event, EventSeries
from backend.src.models.event_series import OVERRIDE_FIELDS
from backend.src.schemas.event_series import (
    EventSeriesCreate,
    EventSeriesUpdate,
)
from backend.src.schemas.recurrence import RecurrenceRule
from backend.src.services.event_service import EventService
from backend.src.services.exceptions import (
    PermissionDeniedError,
    SeriesNotFoundError,
    ValidationError,
)
from backend.src.services.guid import GuidService
from backend.src.services.recurrence_service import RecurrenceService
from backend.src.utils.deadline import Deadline
from backend.src.utils.logging_config import get_logger
from backend.src.utils.timezone import resolve_timezone


logger = get_logger("services")


# Fields of an update that are forwarded to the template event
TEMPLATE_FORWARDED_FIELDS = OVERRIDE_FIELDS + ("categories",)

SOURCE_FIELDS = ("source_type", "source_id", "source_url", "source_data")


class EventSeriesService:
    """
    Service for managing event series.

    Usage:
        >>> service = EventSeriesService(db_session)
        >>> series = service.create(EventSeriesCreate(...), user_id="u1", team_id="t1")
        >>> service.get_by_slug(series.guid, team_id="t1")
    """

    def __init__(
        self,
        db: Session,
        event_service: Optional[EventService] = None,
        recurrence_service: Optional[RecurrenceService] = None,
        settings: Optional[AppSettings] = None,
    ):
        """
        Initialize event series service.

        Args:
            db: SQLAlchemy database session
            event_service: Event store (defaults to one bound to db)
            recurrence_service: Recurrence evaluator
            settings: Application settings (defaults to cached settings)
        """
        self.db = db
        self.settings = settings or get_settings()
        self.event_service = event_service or EventService(db, self.settings)
        self.recurrence_service = recurrence_service or RecurrenceService(self.settings)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find_by_slug(
        self,
        slug: str,
        team_id: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> Optional[EventSeries]:
        """Find a series by GUID, or None if malformed or unknown."""
        if not GuidService.validate_guid(slug, "ser"):
            return None
        uuid_value = GuidService.parse_guid(slug, "ser")

        if deadline is not None:
            deadline.bound_session(self.db, "find series")
        query = self.db.query(EventSeries).filter(EventSeries.uuid == uuid_value)
        if team_id is not None:
            query = query.filter(EventSeries.team_id == team_id)
        return query.first()

    def get_by_slug(
        self,
        slug: str,
        team_id: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> EventSeries:
        """
        Get a series by GUID.

        Args:
            slug: Series GUID (ser_xxx format)
            team_id: Team ID for tenant isolation (if provided, filters by team)
            deadline: Optional caller deadline

        Returns:
            EventSeries instance

        Raises:
            SeriesNotFoundError: If series not found or belongs to a different team
        """
        series = self.find_by_slug(slug, team_id=team_id, deadline=deadline)
        if series is None:
            raise SeriesNotFoundError(slug)
        return series

    def list_by_user(
        self,
        user_id: str,
        team_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        source_type: Optional[str] = None,
    ) -> List[EventSeries]:
        """
        List the series owned by a user, newest first.

        Args:
            user_id: Owning user
            team_id: Team ID for tenant isolation
            page: 1-based page number
            limit: Page size
            source_type: Only series imported from this source

        Returns:
            List of EventSeries
        """
        query = self.db.query(EventSeries).filter(EventSeries.user_id == user_id)
        if team_id is not None:
            query = query.filter(EventSeries.team_id == team_id)
        if source_type is not None:
            query = query.filter(EventSeries.source_type == source_type)
        return self._paginate(query, page, limit)

    def list_by_group(
        self,
        group_id: str,
        team_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> List[EventSeries]:
        """List the series of a group, newest first."""
        query = self.db.query(EventSeries).filter(EventSeries.group_id == group_id)
        if team_id is not None:
            query = query.filter(EventSeries.team_id == team_id)
        return self._paginate(query, page, limit)

    def _paginate(self, query, page: int, limit: int) -> List[EventSeries]:
        page = max(page, 1)
        return (
            query.order_by(EventSeries.created_at.desc(), EventSeries.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Template resolution
    # ------------------------------------------------------------------

    def resolve_template(
        self,
        series: EventSeries,
        deadline: Optional[Deadline] = None,
    ) -> Optional[Event]:
        """
        Resolve the template event of a series.

        Order: the declared template, else the linked event with the latest
        start, else None.

        Args:
            series: Series to resolve
            deadline: Optional caller deadline

        Returns:
            Template Event, or None if the series has no events at all
        """
        if series.template_event_slug:
            template = self.event_service.find_by_guid(series.template_event_slug, deadline=deadline)
            if template is not None:
                return template
            logger.warning(
                f"Template event {series.template_event_slug} of series {series.guid} not found"
            )

        fallback = self.event_service.find_most_recent_by_series(series.id, deadline=deadline)
        if fallback is not None:
            logger.warning(
                f"Using most recent event {fallback.guid} as template for series {series.guid}"
            )
        return fallback

    def link_template(self, series: EventSeries, template: Event, commit: bool = True) -> EventSeries:
        """Point a series at a template event."""
        series.template_event_slug = template.guid
        if commit:
            self.db.commit()
            self.db.refresh(series)
        logger.info(f"Linked template {template.guid} to series {series.guid}")
        return series

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _parse_rule(self, data: Any, time_zone: str) -> RecurrenceRule:
        rule = RecurrenceRule.parse(data)
        resolve_timezone(time_zone)
        return rule

    def create(self, data: EventSeriesCreate, user_id: str, team_id: str) -> EventSeries:
        """
        Create a series and its template event.

        Args:
            data: Series creation payload
            user_id: Owning user
            team_id: Team ID for tenant isolation

        Returns:
            Created EventSeries with template_event_slug set

        Raises:
            InvalidRecurrenceRuleError: If the rule is invalid
            UnknownTimeZoneError: If the timezone is unknown
        """
        time_zone = data.time_zone or self.settings.default_timezone
        rule = self._parse_rule(data.recurrence_rule, time_zone)

        series = EventSeries(
            name=data.name,
            description=data.description,
            recurrence_rule=rule.to_dict(),
            recurrence_description=self.recurrence_service.describe(rule, time_zone),
            recurrence_rrule=self.recurrence_service.build_rrule_string(rule),
            time_zone=time_zone,
            user_id=user_id,
            group_id=data.group_id,
            team_id=team_id,
            **{field: getattr(data, field) for field in OVERRIDE_FIELDS + SOURCE_FIELDS},
        )

        try:
            self.db.add(series)
            self.db.flush()

            template_data = data.template_event.to_event_data()
            template_data.update(
                name=data.name,
                description=data.description,
                time_zone=time_zone,
                series_id=series.id,
                user_id=user_id,
                group_id=data.group_id,
                team_id=team_id,
                **{field: getattr(data, field) for field in SOURCE_FIELDS},
            )
            template = self.event_service.create(
                template_data, series_time_zone=time_zone, commit=False
            )
            self.link_template(series, template, commit=False)

            self.db.commit()
            self.db.refresh(series)
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Created event series: {series.guid} - {series.name} "
            f"({series.recurrence_description}, team_id={team_id})"
        )
        return series

    def create_from_event(
        self,
        event_slug: str,
        recurrence_rule: Dict[str, Any],
        user_id: str,
        team_id: str,
        time_zone: Optional[str] = None,
    ) -> EventSeries:
        """
        Create a series whose template is an existing standalone event.

        Args:
            event_slug: GUID of the event to promote
            recurrence_rule: Recurrence rule mapping
            user_id: Acting user (must own the event)
            team_id: Team ID for tenant isolation
            time_zone: Series timezone (defaults to the event's timezone)

        Returns:
            Created EventSeries

        Raises:
            NotFoundError: If the event does not exist
            ValidationError: If the event already belongs to a series
            PermissionDeniedError: If the user does not own the event
        """
        event = self.event_service.get_by_guid(event_slug, team_id=team_id)
        if event.series_id is not None:
            raise ValidationError(f"Event {event_slug} is already part of a series", field="event")
        if event.user_id != user_id:
            raise PermissionDeniedError("You do not have permission to use this event as a template")

        time_zone = time_zone or event.time_zone or self.settings.default_timezone
        rule = self._parse_rule(recurrence_rule, time_zone)

        series = EventSeries(
            name=event.name,
            description=event.description,
            recurrence_rule=rule.to_dict(),
            recurrence_description=self.recurrence_service.describe(rule, time_zone),
            recurrence_rrule=self.recurrence_service.build_rrule_string(rule),
            time_zone=time_zone,
            user_id=user_id,
            group_id=event.group_id,
            team_id=team_id,
            template_event_slug=event.guid,
            **{field: getattr(event, field) for field in SOURCE_FIELDS},
        )

        try:
            self.db.add(series)
            self.db.flush()
            self.event_service.update(
                event, {"series_id": series.id}, series_time_zone=time_zone, commit=False
            )
            self.db.commit()
            self.db.refresh(series)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Created event series {series.guid} from event {event_slug}")
        return series

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    def _ensure_owner(self, series: EventSeries, user_id: str, action: str) -> None:
        if series.user_id != user_id:
            raise PermissionDeniedError(f"You do not have permission to {action} this series")

    def update(
        self,
        slug: str,
        data: Union[EventSeriesUpdate, Dict[str, Any]],
        user_id: str,
        team_id: Optional[str] = None,
    ) -> EventSeries:
        """
        Update a series.

        Re-validates the rule and regenerates its description when the rule or
        timezone changes. Override fields are stored on the series and
        forwarded to the template event together with categories.

        Args:
            slug: Series GUID
            data: Fields to change (only provided fields are applied)
            user_id: Acting user (must own the series)
            team_id: Team ID for tenant isolation

        Returns:
            Updated EventSeries

        Raises:
            SeriesNotFoundError: If series not found
            PermissionDeniedError: If the user does not own the series
            InvalidRecurrenceRuleError: If the new rule is invalid
            UnknownTimeZoneError: If the new timezone is unknown
        """
        series = self.get_by_slug(slug, team_id=team_id)
        self._ensure_owner(series, user_id, "update")

        changes = data.model_dump(exclude_unset=True) if isinstance(data, EventSeriesUpdate) else dict(data)

        time_zone = changes.get("time_zone") or series.time_zone
        rule = self._parse_rule(changes.get("recurrence_rule") or series.recurrence_rule, time_zone)
        time_zone_changed = time_zone != series.time_zone

        try:
            if "recurrence_rule" in changes or time_zone_changed:
                series.recurrence_rule = rule.to_dict()
                series.time_zone = time_zone
                series.recurrence_description = self.recurrence_service.describe(rule, time_zone)
                series.recurrence_rrule = self.recurrence_service.build_rrule_string(rule)

            for field in ("name", "description", "group_id") + OVERRIDE_FIELDS:
                if field in changes:
                    setattr(series, field, changes[field])

            template_changes = {
                field: changes[field] for field in TEMPLATE_FORWARDED_FIELDS if field in changes
            }
            if template_changes:
                template = self.resolve_template(series)
                if template is not None:
                    self.event_service.update(template, template_changes, commit=False)

            if time_zone_changed:
                # occurrence_date is the local day in the series timezone
                for event in self.event_service.list_all_by_series(series.id):
                    self.event_service.update(
                        event, {"time_zone": time_zone}, series_time_zone=time_zone, commit=False
                    )

            self.db.commit()
            self.db.refresh(series)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Updated event series: {series.guid} ({sorted(changes)})")
        return series

    def delete(
        self,
        slug: str,
        user_id: str,
        delete_events: bool = False,
        team_id: Optional[str] = None,
    ) -> None:
        """
        Delete a series.

        Args:
            slug: Series GUID
            user_id: Acting user (must own the series)
            delete_events: True deletes every linked event; False detaches
                them into standalone events
            team_id: Team ID for tenant isolation

        Raises:
            SeriesNotFoundError: If series not found
            PermissionDeniedError: If the user does not own the series
        """
        series = self.get_by_slug(slug, team_id=team_id)
        self._ensure_owner(series, user_id, "delete")

        try:
            if delete_events:
                affected = self.event_service.delete_by_series(series.id, commit=False)
            else:
                affected = self.event_service.detach_series(series.id, commit=False)
            self.db.delete(series)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Deleted event series {slug} "
            f"({'deleted' if delete_events else 'detached'} {affected} events)"
        )

    def associate_event(
        self,
        series_slug: str,
        event_slug: str,
        user_id: str,
        team_id: Optional[str] = None,
    ) -> Event:
        """
        Attach a standalone event to a series as a one-off occurrence.

        Args:
            series_slug: Series GUID
            event_slug: Event GUID
            user_id: Acting user (must own both)
            team_id: Team ID for tenant isolation

        Returns:
            The updated Event

        Raises:
            SeriesNotFoundError / NotFoundError: If either does not exist
            ValidationError: If the event already belongs to a series
            PermissionDeniedError: If the user does not own both
            PersistenceConflictError: If the series already has an event that day
        """
        series = self.get_by_slug(series_slug, team_id=team_id)
        event = self.event_service.get_by_guid(event_slug, team_id=team_id)

        if event.series_id is not None:
            raise ValidationError(f"Event {event_slug} is already part of a series", field="event")
        if event.user_id != user_id or series.user_id != user_id:
            raise PermissionDeniedError("You do not have permission to perform this action")

        event = self.event_service.update(
            event, {"series_id": series.id}, series_time_zone=series.time_zone
        )
        logger.info(f"Associated event {event_slug} with series {series_slug}")
        return event
