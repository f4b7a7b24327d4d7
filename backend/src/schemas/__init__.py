"""
Pydantic schemas for API request/response validation.

This module exports all schema classes for use in API endpoints.
"""

from backend.src.schemas.recurrence import Frequency, RecurrenceRule
from backend.src.schemas.event import (
    EventType,
    EventStatus,
    EventVisibility,
    TemplateEventCreate,
    EventResponse,
)
from backend.src.schemas.event_series import (
    EventSeriesCreate,
    EventSeriesFromEvent,
    EventSeriesUpdate,
    FutureOccurrencesUpdate,
    EventSeriesResponse,
    EventSeriesListResponse,
    OccurrenceResponse,
    UpcomingOccurrencesResponse,
    FutureOccurrencesUpdateResponse,
    RecurrencePreviewRequest,
    RecurrencePreviewResponse,
)

__all__ = [
    # Recurrence
    "Frequency",
    "RecurrenceRule",
    # Events
    "EventType",
    "EventStatus",
    "EventVisibility",
    "TemplateEventCreate",
    "EventResponse",
    # Series
    "EventSeriesCreate",
    "EventSeriesFromEvent",
    "EventSeriesUpdate",
    "FutureOccurrencesUpdate",
    "EventSeriesResponse",
    "EventSeriesListResponse",
    "OccurrenceResponse",
    "UpcomingOccurrencesResponse",
    "FutureOccurrencesUpdateResponse",
    "RecurrencePreviewRequest",
    "RecurrencePreviewResponse",
]
