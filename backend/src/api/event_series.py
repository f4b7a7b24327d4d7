"""
Event series API endpoints.

Provides endpoints for:
- Creating series (with a template event, or from an existing event)
- Getting, listing, updating and deleting series
- Listing upcoming occurrences (virtual and materialized)
- Materializing occurrences (single date, next, next n)
- Propagating template changes to future occurrences

Design:
- Uses dependency injection for services
- Service errors map to HTTP status codes in one place (_to_http_error)
- All endpoints use GUID format (ser_xxx / evt_xxx) for identifiers
- Dates in paths are local dates (YYYY-MM-DD) in the series timezone, or
  full instants
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from backend.src.db.database import get_db
from backend.src.middleware.tenant import TenantContext, get_tenant_context
from backend.src.schemas.event import EventResponse
from backend.src.schemas.event_series import (
    EventSeriesCreate,
    EventSeriesFromEvent,
    EventSeriesListResponse,
    EventSeriesResponse,
    EventSeriesUpdate,
    FutureOccurrencesUpdate,
    FutureOccurrencesUpdateResponse,
    OccurrenceResponse,
    RecurrencePreviewRequest,
    RecurrencePreviewResponse,
    UpcomingOccurrencesResponse,
)
from backend.src.services.event_series_service import EventSeriesService
from backend.src.services.event_service import EventService
from backend.src.services.exceptions import (
    ConflictError,
    NotFoundError,
    OperationTimeoutError,
    PermissionDeniedError,
    ServiceError,
    ValidationError,
)
from backend.src.services.occurrence_service import OccurrenceService
from backend.src.services.recurrence_service import RecurrenceService
from backend.src.utils.logging_config import get_logger
from backend.src.utils.timezone import to_iso


logger = get_logger("api")

router = APIRouter(
    prefix="/series",
    tags=["Event Series"],
)


# ============================================================================
# Dependencies
# ============================================================================


def get_event_service(db: Session = Depends(get_db)) -> EventService:
    """Create EventService instance with database session."""
    return EventService(db=db)


def get_series_service(
    db: Session = Depends(get_db),
    event_service: EventService = Depends(get_event_service),
) -> EventSeriesService:
    """Create EventSeriesService sharing the request's event store."""
    return EventSeriesService(db=db, event_service=event_service)


def get_occurrence_service(
    series_service: EventSeriesService = Depends(get_series_service),
) -> OccurrenceService:
    """Create OccurrenceService wired to the request's collaborators."""
    return OccurrenceService(
        series_service=series_service,
        event_service=series_service.event_service,
    )


def get_recurrence_service() -> RecurrenceService:
    """Create RecurrenceService with cached settings."""
    return RecurrenceService()


# ============================================================================
# Helpers
# ============================================================================


def _to_http_error(error: ServiceError) -> HTTPException:
    """Map a service error onto an HTTP error."""
    if isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, PermissionDeniedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, ConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, OperationTimeoutError):
        code = status.HTTP_504_GATEWAY_TIMEOUT
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(error))


def _internal_error(action: str, error: Exception) -> HTTPException:
    logger.error(f"Error {action}: {str(error)}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed {action}",
    )


# ============================================================================
# Series Endpoints
# ============================================================================


@router.post(
    "",
    response_model=EventSeriesResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an event series",
    description="Create a recurring series together with its template event",
)
async def create_series(
    series_data: EventSeriesCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    series_service: EventSeriesService = Depends(get_series_service),
) -> EventSeriesResponse:
    """
    Create an event series.

    Request Body:
        name, recurrence_rule, template_event (required); description,
        time_zone, group_id, series-level overrides, source fields

    Returns:
        Created series

    Raises:
        400: Invalid recurrence rule or timezone

    Example:
        POST /api/series
        {
          "name": "Weekly Meetup",
          "recurrence_rule": {"frequency": "WEEKLY", "byweekday": ["WE"]},
          "time_zone": "America/Vancouver",
          "template_event": {"start_date": "2026-03-11T19:00:00-07:00"}
        }
    """
    try:
        series = series_service.create(series_data, user_id=ctx.user_id, team_id=ctx.team_id)
        return EventSeriesResponse.model_validate(series)
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error("creating event series", e)


@router.post(
    "/preview",
    response_model=RecurrencePreviewResponse,
    summary="Preview a recurrence rule",
    description="Expand a rule from a start date without creating a series",
)
async def preview_recurrence(
    preview: RecurrencePreviewRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    recurrence_service: RecurrenceService = Depends(get_recurrence_service),
) -> RecurrencePreviewResponse:
    """
    Preview the occurrences a rule would produce.

    Returns:
        RRULE text, description and up to count occurrence instants

    Raises:
        400: Invalid recurrence rule, timezone or date
    """
    try:
        occurrences = recurrence_service.generate_iso(
            preview.start_date,
            preview.recurrence_rule,
            preview.time_zone,
            count=preview.count,
            start_after=preview.start_after,
        )
        return RecurrencePreviewResponse(
            rrule=recurrence_service.build_rrule_string(preview.recurrence_rule),
            description=recurrence_service.describe(preview.recurrence_rule, preview.time_zone),
            occurrences=occurrences,
        )
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error("previewing recurrence rule", e)


@router.get(
    "",
    response_model=EventSeriesListResponse,
    summary="List event series",
    description="List the caller's series, or a group's series when group_id is given",
)
async def list_series(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    source_type: Optional[str] = Query(None, description="Only series imported from this source"),
    group_id: Optional[str] = Query(None, description="List a group's series instead"),
    ctx: TenantContext = Depends(get_tenant_context),
    series_service: EventSeriesService = Depends(get_series_service),
) -> EventSeriesListResponse:
    """List event series, newest first."""
    try:
        if group_id:
            items = series_service.list_by_group(group_id, team_id=ctx.team_id, page=page, limit=limit)
        else:
            items = series_service.list_by_user(
                ctx.user_id,
                team_id=ctx.team_id,
                page=page,
                limit=limit,
                source_type=source_type,
            )
        return EventSeriesListResponse(
            items=[EventSeriesResponse.model_validate(s) for s in items],
            page=page,
            limit=limit,
        )
    except Exception as e:
        raise _internal_error("listing event series", e)


@router.post(
    "/from-event/{event_slug}",
    response_model=EventSeriesResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a series from an event",
    description="Promote an existing standalone event to the template of a new series",
)
async def create_series_from_event(
    event_slug: str,
    request: EventSeriesFromEvent,
    ctx: TenantContext = Depends(get_tenant_context),
    series_service: EventSeriesService = Depends(get_series_service),
) -> EventSeriesResponse:
    """
    Create a series from an existing event.

    Path Parameters:
        event_slug: Event GUID (evt_xxx format)

    Raises:
        400: Event already in a series, or invalid rule
        403: Caller does not own the event
        404: Event not found
    """
    try:
        series = series_service.create_from_event(
            event_slug,
            request.recurrence_rule,
            user_id=ctx.user_id,
            team_id=ctx.team_id,
            time_zone=request.time_zone,
        )
        return EventSeriesResponse.model_validate(series)
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error(f"creating series from event {event_slug}", e)


@router.get(
    "/{slug}",
    response_model=EventSeriesResponse,
    summary="Get an event series",
)
async def get_series(
    slug: str,
    ctx: TenantContext = Depends(get_tenant_context),
    series_service: EventSeriesService = Depends(get_series_service),
) -> EventSeriesResponse:
    """Get an event series by GUID."""
    try:
        return EventSeriesResponse.model_validate(
            series_service.get_by_slug(slug, team_id=ctx.team_id)
        )
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error(f"getting event series {slug}", e)


@router.patch(
    "/{slug}",
    response_model=EventSeriesResponse,
    summary="Update an event series",
    description="Update series properties; template fields are forwarded to the template event",
)
async def update_series(
    slug: str,
    series_data: EventSeriesUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    series_service: EventSeriesService = Depends(get_series_service),
) -> EventSeriesResponse:
    """
    Update an event series.

    Raises:
        400: Invalid rule or timezone
        403: Caller does not own the series
        404: Series not found
    """
    try:
        series = series_service.update(slug, series_data, user_id=ctx.user_id, team_id=ctx.team_id)
        return EventSeriesResponse.model_validate(series)
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error(f"updating event series {slug}", e)


@router.delete(
    "/{slug}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an event series",
    description="Delete a series; its events are deleted or detached",
)
async def delete_series(
    slug: str,
    delete_events: bool = Query(False, description="Delete linked events instead of detaching them"),
    ctx: TenantContext = Depends(get_tenant_context),
    series_service: EventSeriesService = Depends(get_series_service),
) -> Response:
    """Delete an event series."""
    try:
        series_service.delete(
            slug, user_id=ctx.user_id, delete_events=delete_events, team_id=ctx.team_id
        )
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error(f"deleting event series {slug}", e)


@router.post(
    "/{slug}/events/{event_slug}",
    response_model=EventResponse,
    summary="Associate an event with a series",
    description="Attach a standalone event to a series as a one-off occurrence",
)
async def associate_event(
    slug: str,
    event_slug: str,
    ctx: TenantContext = Depends(get_tenant_context),
    series_service: EventSeriesService = Depends(get_series_service),
) -> EventResponse:
    """Associate a standalone event with a series."""
    try:
        event = series_service.associate_event(
            slug, event_slug, user_id=ctx.user_id, team_id=ctx.team_id
        )
        return EventResponse.model_validate(event)
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error(f"associating event {event_slug} with series {slug}", e)


# ============================================================================
# Occurrence Endpoints
# ============================================================================


@router.get(
    "/{slug}/occurrences",
    response_model=UpcomingOccurrencesResponse,
    summary="List upcoming occurrences",
    description="Upcoming occurrences, each virtual or materialized",
)
async def get_upcoming_occurrences(
    slug: str,
    count: int = Query(10, ge=1, le=100),
    include_past: bool = Query(False),
    ctx: TenantContext = Depends(get_tenant_context),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
) -> UpcomingOccurrencesResponse:
    """
    List upcoming occurrences.

    Query Parameters:
        count: Maximum number of occurrences
        include_past: Include occurrences before today

    Returns:
        anchor_source ("template" or "series_created_at") and occurrences
    """
    try:
        upcoming = occurrence_service.get_upcoming_occurrences(
            slug, count=count, include_past=include_past, team_id=ctx.team_id
        )
        return UpcomingOccurrencesResponse(
            anchor_source=upcoming.anchor_source,
            occurrences=[
                OccurrenceResponse(
                    date=to_iso(o.date),
                    materialized=o.materialized,
                    event=EventResponse.model_validate(o.event) if o.event is not None else None,
                )
                for o in upcoming.occurrences
            ],
        )
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error(f"listing occurrences of series {slug}", e)


@router.post(
    "/{slug}/occurrences/next",
    response_model=Optional[EventResponse],
    summary="Materialize the next occurrence",
    description="Returns null when the near-term occurrences are all materialized",
)
async def materialize_next_occurrence(
    slug: str,
    ctx: TenantContext = Depends(get_tenant_context),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
) -> Optional[EventResponse]:
    """Materialize the next virtual occurrence."""
    try:
        event = occurrence_service.materialize_next_occurrence(
            slug, user_id=ctx.user_id, team_id=ctx.team_id
        )
        return EventResponse.model_validate(event) if event is not None else None
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error(f"materializing next occurrence of series {slug}", e)


@router.post(
    "/{slug}/occurrences/next-n",
    response_model=List[EventResponse],
    summary="Materialize the next n occurrences",
    description="Failures of single dates are skipped; the created events are returned",
)
async def materialize_next_n_occurrences(
    slug: str,
    n: Optional[int] = Query(None, ge=1, le=50, description="Defaults to the configured batch size"),
    ctx: TenantContext = Depends(get_tenant_context),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
) -> List[EventResponse]:
    """Materialize the next n virtual occurrences."""
    try:
        events = occurrence_service.materialize_next_n_occurrences(
            slug, user_id=ctx.user_id, n=n, team_id=ctx.team_id
        )
        return [EventResponse.model_validate(e) for e in events]
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error(f"materializing occurrences of series {slug}", e)


@router.get(
    "/{slug}/occurrences/{date}",
    response_model=EventResponse,
    summary="Get a materialized occurrence",
)
async def get_occurrence(
    slug: str,
    date: str,
    ctx: TenantContext = Depends(get_tenant_context),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
) -> EventResponse:
    """
    Get the materialized occurrence on a date.

    Raises:
        404: Series not found or date not materialized
    """
    try:
        event = occurrence_service.find_occurrence(slug, date, team_id=ctx.team_id)
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error(f"getting occurrence {date} of series {slug}", e)

    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No materialized occurrence on {date}",
        )
    return EventResponse.model_validate(event)


@router.post(
    "/{slug}/occurrences/{date}",
    response_model=EventResponse,
    summary="Get or create an occurrence",
    description="Return the occurrence on a date, materializing it if needed",
)
async def get_or_create_occurrence(
    slug: str,
    date: str,
    ctx: TenantContext = Depends(get_tenant_context),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
) -> EventResponse:
    """
    Get or create the occurrence on a date.

    Path Parameters:
        date: Local date (YYYY-MM-DD) or instant

    Raises:
        400: Date is not an occurrence of the series, or malformed
        404: Series not found
        504: Deadline elapsed
    """
    try:
        event = occurrence_service.get_or_create_occurrence(
            slug, date, user_id=ctx.user_id, team_id=ctx.team_id
        )
        return EventResponse.model_validate(event)
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error(f"materializing occurrence {date} of series {slug}", e)


@router.get(
    "/{slug}/occurrences/{date}/effective",
    response_model=EventResponse,
    summary="Get the effective event for a date",
    description="The materialized occurrence, or the template event for a virtual occurrence",
)
async def get_effective_event(
    slug: str,
    date: str,
    ctx: TenantContext = Depends(get_tenant_context),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
) -> EventResponse:
    """Get the event describing a date."""
    try:
        event = occurrence_service.get_effective_event_for_date(slug, date, team_id=ctx.team_id)
        return EventResponse.model_validate(event)
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error(f"getting effective event {date} of series {slug}", e)


@router.patch(
    "/{slug}/future-occurrences",
    response_model=FutureOccurrencesUpdateResponse,
    summary="Update future occurrences",
    description="Update the template, then propagate it to occurrences on or after from_date",
)
async def update_future_occurrences(
    slug: str,
    request: FutureOccurrencesUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
) -> FutureOccurrencesUpdateResponse:
    """
    Propagate template changes to future occurrences.

    Example:
        PATCH /api/series/ser_xxx/future-occurrences
        {"from_date": "2026-04-01", "changes": {"location": "Library"}}
    """
    try:
        updated = occurrence_service.update_future_occurrences(
            slug,
            request.from_date,
            request.changes,
            user_id=ctx.user_id,
            team_id=ctx.team_id,
        )
        return FutureOccurrencesUpdateResponse(updated=updated)
    except ServiceError as e:
        raise _to_http_error(e)
    except Exception as e:
        raise _internal_error(f"updating future occurrences of series {slug}", e)
