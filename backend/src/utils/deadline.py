"""
Cooperative deadlines for collaborator calls.

A Deadline is created once per public operation and checked before every
call into the event store. Cancellation is cooperative: work that already
committed stays committed when the deadline elapses.
"""

import time
from typing import Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from backend.src.services.exceptions import OperationTimeoutError


# PostgreSQL SQLSTATE raised when statement_timeout cancels a query
QUERY_CANCELED = "57014"


def is_statement_timeout(error: Exception) -> bool:
    """Check whether a DBAPI error was caused by statement_timeout."""
    return getattr(getattr(error, "orig", None), "pgcode", None) == QUERY_CANCELED


class Deadline:
    """
    Wall-clock budget for one operation, measured on the monotonic clock.

    Usage:
        >>> deadline = Deadline(5.0, "materialize_occurrence")
        >>> deadline.check("load series")
        >>> deadline.remaining()
    """

    def __init__(self, timeout: Optional[float], operation: str):
        """
        Args:
            timeout: Budget in seconds (None = unbounded)
            operation: Operation name used in timeout errors
        """
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = timeout
        self.operation = operation
        self._started = time.monotonic()

    def elapsed(self) -> float:
        return time.monotonic() - self._started

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when unbounded."""
        if self.timeout is None:
            return None
        return max(0.0, self.timeout - self.elapsed())

    @property
    def expired(self) -> bool:
        return self.timeout is not None and self.elapsed() >= self.timeout

    def check(self, step: Optional[str] = None) -> None:
        """
        Raise if the budget is spent.

        Args:
            step: Collaborator hop about to start, for the error message

        Raises:
            OperationTimeoutError: If the deadline has elapsed
        """
        if self.expired:
            operation = f"{self.operation} ({step})" if step else self.operation
            raise OperationTimeoutError(operation, self.timeout)

    def bound_session(self, db: Session, step: Optional[str] = None) -> None:
        """
        Check the deadline and cap the next statements at the remaining budget.

        On PostgreSQL this sets a transaction-local statement_timeout so one
        slow query cannot outlive the deadline. Other dialects only get the
        check.
        """
        self.check(step)
        remaining = self.remaining()
        if remaining is None:
            return
        bind = db.get_bind()
        if bind is not None and bind.dialect.name == "postgresql":
            millis = max(1, int(remaining * 1000))
            db.execute(text(f"SET LOCAL statement_timeout = {millis}"))
