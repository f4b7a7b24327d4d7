"""
EventSeries model for recurring events.

An EventSeries couples a recurrence rule with a template event. Occurrences
are not stored on the series: they are computed from the rule and merged with
the events linked to the series (materialized occurrences).

Design Rationale:
- The template event is referenced by slug (GUID) rather than a foreign key,
  so the series and its template can point at each other without a
  circular constraint; the template is itself an event linked to the series
- recurrence_rule is stored as JSON and always read back through
  RecurrenceRule, which validates it
- created_at doubles as the recurrence anchor when no template can be found
- Series-level overrides are NULL when unset; a non-NULL value wins over the
  template's value on newly materialized occurrences
"""

from typing import Any, Dict

from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.orm import relationship

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin
from backend.src.models.types import JSONBType, UTCDateTime, utc_now
from backend.src.schemas.recurrence import RecurrenceRule


# Columns that may override template properties on materialized occurrences
OVERRIDE_FIELDS = (
    "location",
    "location_online",
    "max_attendees",
    "require_approval",
    "approval_question",
    "allow_waitlist",
)


class EventSeries(Base, GuidMixin):
    """
    Recurring event series model.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid: UUIDv7 for external identification (inherited from GuidMixin)
        guid: GUID string property (ser_xxx), used as the series slug
        name: Series name
        description: Series description
        recurrence_rule: Recurrence rule mapping (see RecurrenceRule)
        recurrence_description: Human-readable rule description
        recurrence_rrule: RFC 5545 RRULE text for the rule
        time_zone: IANA timezone the rule's wall-clock time lives in
        template_event_slug: GUID of the template event
        user_id: Owning user
        group_id: Optional owning group
        team_id: Tenant identifier
        location..allow_waitlist: Series-level overrides (NULL = no override)
        source_type/source_id/source_url/source_data: External import origin
        created_at: Creation timestamp (fallback recurrence anchor)
        updated_at: Last update timestamp

    Relationships:
        events: Events linked to this series (one-to-many)
    """

    __tablename__ = "event_series"

    GUID_PREFIX = "ser"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Core fields
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Recurrence
    recurrence_rule = Column(JSONBType, nullable=False)
    recurrence_description = Column(String(500), nullable=True)
    recurrence_rrule = Column(String(500), nullable=True)
    time_zone = Column(String(64), nullable=False, default="UTC")
    template_event_slug = Column(String(64), nullable=True)

    # Ownership and tenancy
    user_id = Column(String(64), nullable=False, index=True)
    group_id = Column(String(64), nullable=True, index=True)
    team_id = Column(String(64), nullable=False, index=True)

    # Series-level overrides
    location = Column(String(500), nullable=True)
    location_online = Column(String(500), nullable=True)
    max_attendees = Column(Integer, nullable=True)
    require_approval = Column(Boolean, nullable=True)
    approval_question = Column(Text, nullable=True)
    allow_waitlist = Column(Boolean, nullable=True)

    # External source
    source_type = Column(String(50), nullable=True, index=True)
    source_id = Column(String(255), nullable=True)
    source_url = Column(String(1024), nullable=True)
    source_data = Column(JSONBType, nullable=True)

    # Timestamps
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False)

    # Relationships
    events = relationship(
        "Event",
        back_populates="series",
        lazy="dynamic",
    )

    @property
    def rule(self) -> RecurrenceRule:
        """Get the validated recurrence rule."""
        return RecurrenceRule.parse(self.recurrence_rule)

    def property_overrides(self) -> Dict[str, Any]:
        """Get the series-level overrides that are set."""
        return {
            field: getattr(self, field)
            for field in OVERRIDE_FIELDS
            if getattr(self, field) is not None
        }

    def __repr__(self) -> str:
        return (
            f"<EventSeries("
            f"id={self.id}, "
            f"name='{self.name}', "
            f"time_zone={self.time_zone}"
            f")>"
        )

    def __str__(self) -> str:
        return f"{self.name} ({self.recurrence_description or 'recurring'})"
