"""
Event service: persistence of calendar events.

The event store behind series and occurrence operations. Provides lookup by
GUID, series listings with pagination, local-day lookup and create/update
with the (series, occurrence day) uniqueness constraint.

Design:
- Every method that reaches the database accepts an optional Deadline and
  checks it before the query (on PostgreSQL it also caps statement_timeout)
- occurrence_date is derived from start_date in the event's timezone on
  create and whenever start_date or time_zone change
- Uniqueness violations surface as PersistenceConflictError; the caller
  decides whether that is an error or "someone else won the race"
"""

from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import Event
from backend.src.services.exceptions import (
    ConflictError,
    NotFoundError,
    OperationTimeoutError,
    PersistenceConflictError,
)
from backend.src.services.guid import GuidService
from backend.src.utils.deadline import Deadline, is_statement_timeout
from backend.src.utils.logging_config import get_logger
from backend.src.utils.timezone import local_date


logger = get_logger("services")


# Columns callers may set through create() / update()
EDITABLE_FIELDS = frozenset({
    "name",
    "description",
    "type",
    "status",
    "visibility",
    "categories",
    "start_date",
    "end_date",
    "time_zone",
    "location",
    "location_online",
    "max_attendees",
    "require_approval",
    "approval_question",
    "allow_waitlist",
    "series_id",
    "user_id",
    "group_id",
    "team_id",
    "source_type",
    "source_id",
    "source_url",
    "source_data",
})


class EventService:
    """
    Service for persisting calendar events.

    Usage:
        >>> service = EventService(db_session)
        >>> event = service.create({"name": "Standup", "start_date": start, ...})
        >>> service.find_by_series_and_day(series.id, date(2026, 3, 11))
    """

    def __init__(self, db: Session, settings: Optional[AppSettings] = None):
        """
        Initialize event service.

        Args:
            db: SQLAlchemy database session
            settings: Application settings (defaults to cached settings)
        """
        self.db = db
        self.settings = settings or get_settings()

    @contextmanager
    def _bounded(self, deadline: Optional[Deadline], step: str) -> Iterator[None]:
        """Run one database hop under the caller's deadline."""
        if deadline is not None:
            deadline.bound_session(self.db, step)
        try:
            yield
        except OperationalError as e:
            if deadline is not None and is_statement_timeout(e):
                self.db.rollback()
                raise OperationTimeoutError(f"{deadline.operation} ({step})", deadline.timeout) from e
            raise

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find_by_guid(
        self,
        guid: Optional[str],
        team_id: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> Optional[Event]:
        """
        Find an event by GUID.

        Args:
            guid: Event GUID (evt_xxx format)
            team_id: Team ID for tenant isolation (if provided, filters by team)
            deadline: Optional caller deadline

        Returns:
            Event instance, or None if the GUID is malformed or unknown
        """
        if not GuidService.validate_guid(guid, "evt"):
            return None
        uuid_value = GuidService.parse_guid(guid, "evt")

        with self._bounded(deadline, "find event"):
            query = self.db.query(Event).filter(Event.uuid == uuid_value)
            if team_id is not None:
                query = query.filter(Event.team_id == team_id)
            return query.first()

    def get_by_guid(
        self,
        guid: str,
        team_id: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> Event:
        """
        Get an event by GUID.

        Raises:
            NotFoundError: If event not found or belongs to a different team
        """
        event = self.find_by_guid(guid, team_id=team_id, deadline=deadline)
        if event is None:
            raise NotFoundError("Event", guid)
        return event

    def list_by_series(
        self,
        series_id: int,
        page: int = 1,
        limit: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> List[Event]:
        """
        List one page of the events linked to a series, oldest first.

        Args:
            series_id: Internal series ID
            page: 1-based page number
            limit: Page size (defaults to settings.event_page_limit)
            deadline: Optional caller deadline

        Returns:
            Events ordered by start_date ascending
        """
        limit = limit or self.settings.event_page_limit
        with self._bounded(deadline, "list series events"):
            return (
                self.db.query(Event)
                .filter(Event.series_id == series_id)
                .order_by(Event.start_date.asc(), Event.id.asc())
                .offset((max(page, 1) - 1) * limit)
                .limit(limit)
                .all()
            )

    def list_all_by_series(
        self,
        series_id: int,
        deadline: Optional[Deadline] = None,
    ) -> List[Event]:
        """Load every event of a series, page by page."""
        limit = self.settings.event_page_limit
        events: List[Event] = []
        page = 1
        while True:
            batch = self.list_by_series(series_id, page=page, limit=limit, deadline=deadline)
            events.extend(batch)
            if len(batch) < limit:
                return events
            page += 1

    def count_by_series(self, series_id: int, deadline: Optional[Deadline] = None) -> int:
        with self._bounded(deadline, "count series events"):
            return self.db.query(Event).filter(Event.series_id == series_id).count()

    def find_most_recent_by_series(
        self,
        series_id: int,
        deadline: Optional[Deadline] = None,
    ) -> Optional[Event]:
        """Get the linked event with the latest start, or None."""
        with self._bounded(deadline, "find most recent series event"):
            return (
                self.db.query(Event)
                .filter(Event.series_id == series_id)
                .order_by(Event.start_date.desc(), Event.id.desc())
                .first()
            )

    def find_by_series_and_day(
        self,
        series_id: int,
        day: date,
        deadline: Optional[Deadline] = None,
    ) -> Optional[Event]:
        """
        Find the event of a series on a local calendar day.

        Args:
            series_id: Internal series ID
            day: Local calendar date in the series timezone
            deadline: Optional caller deadline

        Returns:
            The event occupying that day, or None
        """
        with self._bounded(deadline, "find occurrence"):
            return (
                self.db.query(Event)
                .filter(Event.series_id == series_id, Event.occurrence_date == day)
                .first()
            )

    # ------------------------------------------------------------------
    # Create / update / delete
    # ------------------------------------------------------------------

    def build(self, data: Dict[str, Any], series_time_zone: Optional[str] = None) -> Event:
        """
        Build an unsaved event from a property mapping.

        Args:
            data: Event properties (unknown keys are rejected)
            series_time_zone: Zone used to derive occurrence_date when the
                event belongs to a series (defaults to the event's own zone)

        Returns:
            Transient Event instance
        """
        unknown = set(data) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown event fields: {', '.join(sorted(unknown))}")
        event = Event(**data)
        if event.time_zone is None:
            event.time_zone = "UTC"
        event.occurrence_date = local_date(event.start_date, series_time_zone or event.time_zone)
        return event

    def create(
        self,
        data: Dict[str, Any],
        series_time_zone: Optional[str] = None,
        commit: bool = True,
        deadline: Optional[Deadline] = None,
    ) -> Event:
        """
        Create an event.

        Args:
            data: Event properties
            series_time_zone: Timezone of the parent series, if any
            commit: Commit immediately (False when the caller owns the transaction)
            deadline: Optional caller deadline

        Returns:
            Created Event instance

        Raises:
            PersistenceConflictError: If the series already has an event on
                that local day
        """
        event = self.build(data, series_time_zone)

        with self._bounded(deadline, "create event"):
            try:
                self.db.add(event)
                self.db.flush()
                if commit:
                    self.db.commit()
                    self.db.refresh(event)
            except IntegrityError as e:
                self.db.rollback()
                if event.series_id is not None:
                    logger.info(
                        f"Occurrence already exists for series_id={event.series_id} "
                        f"on {event.occurrence_date}"
                    )
                    raise PersistenceConflictError(event.series_id, event.occurrence_date) from e
                logger.error(f"Failed to create event '{event.name}': {e}")
                raise ConflictError(f"Event '{event.name}' conflicts with an existing event") from e

        logger.info(f"Created event: {event.guid} - {event.name} ({event.occurrence_date})")
        return event

    def update(
        self,
        event: Event,
        changes: Dict[str, Any],
        series_time_zone: Optional[str] = None,
        commit: bool = True,
        deadline: Optional[Deadline] = None,
    ) -> Event:
        """
        Apply property changes to an event.

        Args:
            event: Event to update
            changes: Property mapping (unknown keys are rejected)
            series_time_zone: Timezone used to re-derive occurrence_date
            commit: Commit immediately
            deadline: Optional caller deadline

        Returns:
            Updated Event instance

        Raises:
            PersistenceConflictError: If a moved start collides with another
                occurrence of the same series
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown event fields: {', '.join(sorted(unknown))}")

        for field, value in changes.items():
            setattr(event, field, value)

        if {"start_date", "time_zone", "series_id"} & set(changes):
            event.occurrence_date = local_date(
                event.start_date, series_time_zone or event.time_zone
            )

        with self._bounded(deadline, "update event"):
            try:
                self.db.flush()
                if commit:
                    self.db.commit()
                    self.db.refresh(event)
            except IntegrityError as e:
                self.db.rollback()
                raise PersistenceConflictError(event.series_id, event.occurrence_date) from e

        logger.debug(f"Updated event {event.guid}: {sorted(changes)}")
        return event

    def delete_by_series(self, series_id: int, commit: bool = True) -> int:
        """Delete every event of a series. Returns the number deleted."""
        deleted = (
            self.db.query(Event)
            .filter(Event.series_id == series_id)
            .delete(synchronize_session=False)
        )
        if commit:
            self.db.commit()
        logger.info(f"Deleted {deleted} events of series_id={series_id}")
        return deleted

    def detach_series(self, series_id: int, commit: bool = True) -> int:
        """Turn every event of a series into a standalone event. Returns the count."""
        detached = (
            self.db.query(Event)
            .filter(Event.series_id == series_id)
            .update({Event.series_id: None}, synchronize_session=False)
        )
        if commit:
            self.db.commit()
        logger.info(f"Detached {detached} events from series_id={series_id}")
        return detached
