"""
Pydantic schemas for event series API request/response validation.

Provides data validation and serialization for:
- Series creation (with template event) and promotion of an existing event
- Series updates
- Series responses
- Occurrence listings and future-occurrence propagation

Design:
- recurrence_rule is passed through as a mapping; the series service parses
  it into a RecurrenceRule so rule errors surface as 400 responses
- Series-level overrides are optional; NULL means "use the template's value"
- GUIDs are exposed via guid property, never internal IDs
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from backend.src.schemas.event import EventResponse, TemplateEventCreate
from backend.src.utils.timezone import to_iso


# ============================================================================
# Request Schemas
# ============================================================================


class EventSeriesCreate(BaseModel):
    """
    Schema for creating a new event series.

    Required:
        name: Series name
        recurrence_rule: Recurrence rule mapping (frequency, interval, ...)
        template_event: Properties of the first occurrence

    Optional:
        description: Series description
        time_zone: IANA timezone (defaults to EVSERIES_DEFAULT_TIMEZONE)
        group_id: Owning group
        location..allow_waitlist: Series-level overrides
        source_type/source_id/source_url/source_data: External import origin
    """

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None)
    recurrence_rule: Dict[str, Any] = Field(..., description="Recurrence rule")
    time_zone: Optional[str] = Field(default=None, max_length=64)
    group_id: Optional[str] = Field(default=None, max_length=64)
    template_event: TemplateEventCreate

    # Series-level overrides
    location: Optional[str] = Field(default=None, max_length=500)
    location_online: Optional[str] = Field(default=None, max_length=500)
    max_attendees: Optional[int] = Field(default=None, ge=0)
    require_approval: Optional[bool] = Field(default=None)
    approval_question: Optional[str] = Field(default=None)
    allow_waitlist: Optional[bool] = Field(default=None)

    # External source
    source_type: Optional[str] = Field(default=None, max_length=50)
    source_id: Optional[str] = Field(default=None, max_length=255)
    source_url: Optional[str] = Field(default=None, max_length=1024)
    source_data: Optional[Dict[str, Any]] = Field(default=None)

    @field_validator("name")
    @classmethod
    def validate_name_not_whitespace(cls, v: str) -> str:
        """Ensure name is not just whitespace."""
        if not v.strip():
            raise ValueError("Name cannot be empty or whitespace")
        return v.strip()

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Weekly Meetup",
                "recurrence_rule": {"frequency": "WEEKLY", "byweekday": ["WE"]},
                "time_zone": "America/Vancouver",
                "template_event": {
                    "start_date": "2026-03-11T19:00:00-07:00",
                    "end_date": "2026-03-11T21:00:00-07:00",
                    "location": "Community Hall",
                },
            }
        }
    }


class EventSeriesFromEvent(BaseModel):
    """Schema for promoting an existing standalone event to a series template."""

    recurrence_rule: Dict[str, Any] = Field(..., description="Recurrence rule")
    time_zone: Optional[str] = Field(default=None, max_length=64)


class EventSeriesUpdate(BaseModel):
    """
    Schema for updating an event series.

    All fields optional; only provided fields are changed. Override fields are
    stored on the series and forwarded to the template event. categories is
    forwarded to the template event only.
    """

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None)
    recurrence_rule: Optional[Dict[str, Any]] = Field(default=None)
    time_zone: Optional[str] = Field(default=None, max_length=64)
    group_id: Optional[str] = Field(default=None, max_length=64)

    location: Optional[str] = Field(default=None, max_length=500)
    location_online: Optional[str] = Field(default=None, max_length=500)
    max_attendees: Optional[int] = Field(default=None, ge=0)
    require_approval: Optional[bool] = Field(default=None)
    approval_question: Optional[str] = Field(default=None)
    allow_waitlist: Optional[bool] = Field(default=None)
    categories: Optional[List[str]] = Field(default=None)

    @field_validator("name")
    @classmethod
    def validate_name_not_whitespace(cls, v: Optional[str]) -> Optional[str]:
        """Ensure name is not just whitespace."""
        if v is not None and not v.strip():
            raise ValueError("Name cannot be empty or whitespace")
        return v.strip() if v else v


class FutureOccurrencesUpdate(BaseModel):
    """
    Schema for propagating template changes to future occurrences.

    changes may use the deprecated template-prefixed keys
    (templateLocation, template_location, ...); they are normalized by the
    occurrence service.
    """

    from_date: str = Field(..., description="First local date to update (YYYY-MM-DD or instant)")
    changes: Dict[str, Any] = Field(..., description="Template property changes")

    model_config = {
        "json_schema_extra": {
            "example": {
                "from_date": "2026-04-01",
                "changes": {"location": "Library, Room 2"},
            }
        }
    }


# ============================================================================
# Response Schemas
# ============================================================================


class EventSeriesResponse(BaseModel):
    """Schema for event series API responses."""

    guid: str = Field(..., description="Series GUID (ser_xxx)")
    name: str
    description: Optional[str]

    recurrence_rule: Dict[str, Any]
    recurrence_description: Optional[str]
    recurrence_rrule: Optional[str] = Field(default=None, description="RFC 5545 RRULE text")
    time_zone: str
    template_event_slug: Optional[str] = Field(default=None, description="Template event GUID")

    user_id: str
    group_id: Optional[str]

    location: Optional[str]
    location_online: Optional[str]
    max_attendees: Optional[int]
    require_approval: Optional[bool]
    approval_question: Optional[str]
    allow_waitlist: Optional[bool]

    source_type: Optional[str]
    source_id: Optional[str]
    source_url: Optional[str]

    created_at: datetime
    updated_at: datetime

    @field_serializer("created_at", "updated_at")
    @classmethod
    def serialize_datetime_utc(cls, v: datetime) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return to_iso(v) if v else None

    model_config = {"from_attributes": True}


class EventSeriesListResponse(BaseModel):
    """Paginated list of series."""

    items: List[EventSeriesResponse]
    page: int
    limit: int


class OccurrenceResponse(BaseModel):
    """One occurrence: virtual (no event) or materialized (event attached)."""

    date: str = Field(..., description="Occurrence start (UTC ISO 8601)")
    materialized: bool
    event: Optional[EventResponse] = None


class UpcomingOccurrencesResponse(BaseModel):
    """
    Upcoming occurrences of a series.

    anchor_source is "template" normally and "series_created_at" when no
    template could be resolved and the series creation time anchored the rule.
    """

    anchor_source: str
    occurrences: List[OccurrenceResponse]


class RecurrencePreviewRequest(BaseModel):
    """
    Expand a rule without creating a series.

    start_date anchors the rule; dates are ISO instants or local dates.
    """

    recurrence_rule: Dict[str, Any]
    start_date: str
    time_zone: str = Field(default="UTC", max_length=64)
    count: int = Field(default=10, ge=1, le=100)
    start_after: Optional[str] = Field(default=None)


class RecurrencePreviewResponse(BaseModel):
    """Expanded rule: RRULE text, description and occurrence instants (UTC)."""

    rrule: str
    description: str
    occurrences: List[str]


class FutureOccurrencesUpdateResponse(BaseModel):
    """Result of propagating template changes."""

    updated: int = Field(..., description="Number of occurrences updated")
