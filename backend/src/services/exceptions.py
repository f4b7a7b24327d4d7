"""
Custom exceptions for service layer.

Provides specific exception types for business logic errors
that can be translated to appropriate HTTP responses.

Client errors (rule/date validation, missing series or template) derive from
ValidationError or NotFoundError and are surfaced verbatim. Persistence
conflicts and timeouts are raised by the event store and handled by the
occurrence orchestrator.
"""

from typing import Any, Optional


class ServiceError(Exception):
    """Base exception for service layer errors."""
    pass


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class ConflictError(ServiceError):
    """Raised when an operation conflicts with existing state."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ServiceError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class PermissionDeniedError(ServiceError):
    """Raised when a user tries to modify a series they do not own."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidRecurrenceRuleError(ValidationError):
    """Raised when a recurrence rule is malformed or has out-of-range fields."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(f"Invalid recurrence rule: {message}", field=field)


class InvalidOccurrenceDateError(ValidationError):
    """Raised when a requested date is not part of a series' recurrence pattern."""

    def __init__(self, series_slug: str, occurrence_date: Any):
        self.series_slug = series_slug
        self.occurrence_date = occurrence_date
        super().__init__(
            f"Invalid occurrence date: {occurrence_date} is not part of the "
            f"recurrence pattern of series {series_slug}",
            field="date",
        )


class MalformedDateError(ValidationError):
    """Raised when a date or instant string cannot be parsed."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Malformed date: {value!r}", field="date")


class UnknownTimeZoneError(ValidationError):
    """Raised when an IANA timezone identifier cannot be resolved."""

    def __init__(self, time_zone: Any):
        self.time_zone = time_zone
        super().__init__(f"Unknown time zone: {time_zone!r}", field="time_zone")


class SeriesNotFoundError(NotFoundError):
    """Raised when an event series slug does not resolve."""

    def __init__(self, series_slug: str):
        super().__init__("EventSeries", series_slug)


class TemplateNotFoundError(NotFoundError):
    """Raised when a series has no resolvable template event."""

    def __init__(self, series_slug: str):
        self.series_slug = series_slug
        super().__init__("Template event for series", series_slug)


class PersistenceConflictError(ConflictError):
    """
    Raised when an insert violates the (series, occurrence day) uniqueness.

    Materialization converts this into returning the record that won the
    race; other callers see it as a 409.
    """

    def __init__(self, series_id: int, occurrence_date: Any):
        self.series_id = series_id
        self.occurrence_date = occurrence_date
        super().__init__(
            f"An occurrence for series {series_id} on {occurrence_date} already exists"
        )


class OperationTimeoutError(ServiceError):
    """Raised when a collaborator call does not finish within the caller's deadline."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"Timeout: {operation} exceeded {timeout:.2f}s")
