"""
Pydantic schemas for event API request/response validation.

Provides data validation and serialization for:
- Template event properties supplied when a series is created
- Event API responses (series occurrences and templates)

Design:
- Instants are accepted with an offset; naive values are treated as UTC
- Responses always serialize instants as UTC with a Z suffix
- GUIDs are exposed via guid property, never internal IDs
"""

import enum
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator

from backend.src.utils.timezone import parse_instant, to_iso


# ============================================================================
# Enums
# ============================================================================


class EventType(str, enum.Enum):
    """How attendees join the event."""
    IN_PERSON = "in_person"
    ONLINE = "online"
    HYBRID = "hybrid"


class EventStatus(str, enum.Enum):
    """Publication status."""
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"


class EventVisibility(str, enum.Enum):
    """Who can see the event."""
    PUBLIC = "public"
    UNLISTED = "unlisted"
    PRIVATE = "private"


# ============================================================================
# Request Schemas
# ============================================================================


class TemplateEventCreate(BaseModel):
    """
    Schema for the template event of a new series.

    Required:
        start_date: First occurrence start; also the recurrence anchor

    Optional:
        end_date: End of the first occurrence (duration is preserved on
            every materialized occurrence)
        type, location, location_online, max_attendees, require_approval,
        approval_question, allow_waitlist, categories, status, visibility
    """

    start_date: datetime = Field(..., description="Start instant of the first occurrence")
    end_date: Optional[datetime] = Field(default=None)

    type: EventType = Field(default=EventType.IN_PERSON)
    location: Optional[str] = Field(default=None, max_length=500)
    location_online: Optional[str] = Field(default=None, max_length=500)
    max_attendees: Optional[int] = Field(default=None, ge=0)
    require_approval: bool = Field(default=False)
    approval_question: Optional[str] = Field(default=None)
    allow_waitlist: bool = Field(default=False)
    categories: List[str] = Field(default_factory=list)
    status: EventStatus = Field(default=EventStatus.PUBLISHED)
    visibility: EventVisibility = Field(default=EventVisibility.PUBLIC)

    @model_validator(mode="after")
    def validate_end_after_start(self) -> "TemplateEventCreate":
        """Ensure the template does not end before it starts."""
        if self.end_date is not None and parse_instant(self.end_date) < parse_instant(self.start_date):
            raise ValueError("end_date must not be before start_date")
        return self

    def to_event_data(self) -> Dict[str, Any]:
        """Get event store properties (enum values unwrapped)."""
        data = self.model_dump()
        for field in ("type", "status", "visibility"):
            data[field] = data[field].value
        return data

    model_config = {
        "json_schema_extra": {
            "example": {
                "start_date": "2026-03-11T19:00:00-07:00",
                "end_date": "2026-03-11T21:00:00-07:00",
                "type": "in_person",
                "location": "Community Hall",
                "max_attendees": 40,
                "categories": ["meetup"],
            }
        }
    }


# ============================================================================
# Response Schemas
# ============================================================================


class EventResponse(BaseModel):
    """
    Schema for event API responses.

    Used for materialized occurrences, templates and effective events.
    """

    guid: str = Field(..., description="Event GUID (evt_xxx)")
    name: str
    description: Optional[str]
    type: str
    status: str
    visibility: str
    categories: Optional[List[str]] = None

    # Time
    start_date: datetime
    end_date: Optional[datetime]
    time_zone: str
    occurrence_date: Optional[date]

    # Location and capacity
    location: Optional[str]
    location_online: Optional[str]
    max_attendees: Optional[int]
    require_approval: bool
    approval_question: Optional[str]
    allow_waitlist: bool

    # Series link
    series_guid: Optional[str] = Field(default=None, description="Series GUID if part of a series")

    # Ownership
    user_id: str
    group_id: Optional[str] = None

    # Timestamps
    created_at: datetime
    updated_at: datetime

    @field_validator("categories", mode="before")
    @classmethod
    def default_categories(cls, v: Any) -> Any:
        return v or []

    @field_serializer("start_date", "end_date", "created_at", "updated_at")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return to_iso(v) if v else None

    model_config = {
        "from_attributes": True,
        "json_schema_extra": {
            "example": {
                "guid": "evt_01hgw2bbg0000000000000001",
                "name": "Weekly Meetup",
                "type": "in_person",
                "status": "published",
                "visibility": "public",
                "categories": ["meetup"],
                "start_date": "2026-03-12T02:00:00Z",
                "end_date": "2026-03-12T04:00:00Z",
                "time_zone": "America/Vancouver",
                "occurrence_date": "2026-03-11",
                "location": "Community Hall",
                "require_approval": False,
                "allow_waitlist": False,
                "series_guid": "ser_01hgw2bbg0000000000000001",
                "user_id": "user-1",
                "created_at": "2026-01-10T10:00:00Z",
                "updated_at": "2026-01-10T10:00:00Z",
            }
        },
    }
