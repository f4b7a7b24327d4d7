"""
Service layer for business logic.

Service classes are imported from their modules directly
(e.g. ``from backend.src.services.occurrence_service import OccurrenceService``);
this package only re-exports the exception hierarchy shared by all of them.
"""

from backend.src.services.exceptions import (
    ServiceError,
    NotFoundError,
    ConflictError,
    ValidationError,
    PermissionDeniedError,
    InvalidRecurrenceRuleError,
    InvalidOccurrenceDateError,
    MalformedDateError,
    UnknownTimeZoneError,
    SeriesNotFoundError,
    TemplateNotFoundError,
    PersistenceConflictError,
    OperationTimeoutError,
)

__all__ = [
    "ServiceError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "PermissionDeniedError",
    "InvalidRecurrenceRuleError",
    "InvalidOccurrenceDateError",
    "MalformedDateError",
    "UnknownTimeZoneError",
    "SeriesNotFoundError",
    "TemplateNotFoundError",
    "PersistenceConflictError",
    "OperationTimeoutError",
]
