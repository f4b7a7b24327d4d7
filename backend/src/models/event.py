"""
Event model for concrete calendar events.

Events are either standalone or linked to an EventSeries. A series-linked
event is a materialized occurrence; one of them is the series' template.

Design Rationale:
- start_date/end_date are absolute UTC instants; time_zone records the zone
  they were entered in
- occurrence_date is the local calendar day of start_date in the series
  timezone. It is the equality key between computed and persisted
  occurrences, and (series_id, occurrence_date) is unique so concurrent
  materializations of the same day cannot both succeed
- Deleting a series either deletes its events or detaches them (series_id
  set to NULL); the foreign key uses SET NULL so detached events survive
"""

import enum
from datetime import timedelta
from typing import Optional

from sqlalchemy import (
    Boolean, Column, Date, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin
from backend.src.models.types import JSONBType, UTCDateTime, utc_now


class EventType(enum.Enum):
    """How attendees join the event."""
    IN_PERSON = "in_person"
    ONLINE = "online"
    HYBRID = "hybrid"


class EventStatus(enum.Enum):
    """Publication status."""
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"


class EventVisibility(enum.Enum):
    """Who can see the event."""
    PUBLIC = "public"
    UNLISTED = "unlisted"
    PRIVATE = "private"


# Properties copied from a template event onto newly materialized occurrences
# and propagated by "update future occurrences"
TEMPLATE_FIELDS = (
    "name",
    "description",
    "type",
    "location",
    "location_online",
    "max_attendees",
    "require_approval",
    "approval_question",
    "allow_waitlist",
    "categories",
    "status",
    "visibility",
)


class Event(Base, GuidMixin):
    """
    Calendar event model.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid: UUIDv7 for external identification (inherited from GuidMixin)
        guid: GUID string property (evt_xxx), used as the event slug

        Core Fields:
            name: Event name
            description: Event description
            type: in_person, online or hybrid
            status: draft, published or cancelled
            visibility: public, unlisted or private
            categories: List of category names

        Time Fields:
            start_date: Start instant (UTC)
            end_date: End instant (UTC, optional)
            time_zone: IANA timezone the event was entered in
            occurrence_date: Local calendar day of start_date in the series timezone

        Location and Capacity:
            location: Physical location
            location_online: Online meeting URL
            max_attendees: Capacity (NULL = unlimited)
            require_approval: Whether attendance needs approval
            approval_question: Question shown when approval is required
            allow_waitlist: Whether a waitlist opens when full

        Series Fields:
            series_id: FK to EventSeries (NULL for standalone events)

        Ownership:
            user_id, group_id, team_id

        Source:
            source_type, source_id, source_url, source_data

    Constraints:
        - (series_id, occurrence_date) unique

    Indexes:
        - uuid (unique, for GUID lookups)
        - start_date (for upcoming queries)
        - series_id, start_date (for series listings)
    """

    __tablename__ = "events"

    GUID_PREFIX = "evt"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Series relationship
    series_id = Column(
        Integer,
        ForeignKey("event_series.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Core fields
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(20), default=EventType.IN_PERSON.value, nullable=False)
    status = Column(String(20), default=EventStatus.PUBLISHED.value, nullable=False)
    visibility = Column(String(20), default=EventVisibility.PUBLIC.value, nullable=False)
    categories = Column(JSONBType, nullable=True)

    # Time fields
    start_date = Column(UTCDateTime, nullable=False, index=True)
    end_date = Column(UTCDateTime, nullable=True)
    time_zone = Column(String(64), nullable=False, default="UTC")
    occurrence_date = Column(Date, nullable=True)

    # Location and capacity
    location = Column(String(500), nullable=True)
    location_online = Column(String(500), nullable=True)
    max_attendees = Column(Integer, nullable=True)
    require_approval = Column(Boolean, default=False, nullable=False)
    approval_question = Column(Text, nullable=True)
    allow_waitlist = Column(Boolean, default=False, nullable=False)

    # Ownership and tenancy
    user_id = Column(String(64), nullable=False, index=True)
    group_id = Column(String(64), nullable=True, index=True)
    team_id = Column(String(64), nullable=False, index=True)

    # External source
    source_type = Column(String(50), nullable=True)
    source_id = Column(String(255), nullable=True)
    source_url = Column(String(1024), nullable=True)
    source_data = Column(JSONBType, nullable=True)

    # Timestamps
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False)

    # Relationships
    series = relationship("EventSeries", back_populates="events")

    __table_args__ = (
        UniqueConstraint(
            "series_id",
            "occurrence_date",
            name="uq_events_series_occurrence_date",
        ),
        Index("idx_events_series_start", "series_id", "start_date"),
    )

    @property
    def duration(self) -> Optional[timedelta]:
        """Get end - start, or None for open-ended events."""
        if self.end_date is None or self.start_date is None:
            return None
        return self.end_date - self.start_date

    @property
    def series_guid(self) -> Optional[str]:
        """Get the GUID of the parent series, None for standalone events."""
        return self.series.guid if self.series is not None else None

    def __repr__(self) -> str:
        return (
            f"<Event("
            f"id={self.id}, "
            f"name='{self.name}', "
            f"start={self.start_date}, "
            f"series_id={self.series_id}"
            f")>"
        )

    def __str__(self) -> str:
        return f"{self.name} - {self.occurrence_date or self.start_date}"
