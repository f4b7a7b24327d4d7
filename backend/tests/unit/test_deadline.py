"""
Unit tests for cooperative deadlines.

Tests the monotonic budget, the timeout error raised by check(), the
PostgreSQL statement_timeout cap and the conversion of cancelled queries
into OperationTimeoutError by the event store.
"""

import pytest
from unittest.mock import Mock, patch

from sqlalchemy.exc import OperationalError

from backend.src.services.event_service import EventService
from backend.src.services.exceptions import OperationTimeoutError
from backend.src.utils.deadline import Deadline, is_statement_timeout


class _QueryCanceled(Exception):
    pgcode = "57014"


@pytest.fixture
def mock_clock():
    with patch("backend.src.utils.deadline.time") as mock_time:
        mock_time.monotonic.return_value = 100.0
        yield mock_time


class TestDeadline:
    """Tests for Deadline budget tracking."""

    def test_unbounded_deadline_never_expires(self, mock_clock):
        deadline = Deadline(None, "op")
        mock_clock.monotonic.return_value = 10_000.0

        assert deadline.remaining() is None
        assert deadline.expired is False
        deadline.check()

    def test_remaining_counts_down(self, mock_clock):
        deadline = Deadline(5.0, "op")
        mock_clock.monotonic.return_value = 101.5

        assert deadline.remaining() == pytest.approx(3.5)
        assert deadline.expired is False

    def test_check_raises_once_expired(self, mock_clock):
        deadline = Deadline(5.0, "materialize_occurrence")
        mock_clock.monotonic.return_value = 105.0

        with pytest.raises(OperationTimeoutError) as exc_info:
            deadline.check("create event")

        assert exc_info.value.operation == "materialize_occurrence (create event)"
        assert exc_info.value.timeout == 5.0
        assert deadline.remaining() == 0.0

    @pytest.mark.parametrize("timeout", [0, -1.0])
    def test_non_positive_timeout_rejected(self, timeout):
        with pytest.raises(ValueError):
            Deadline(timeout, "op")


class TestBoundSession:
    """Tests for Deadline.bound_session."""

    def _db(self, dialect):
        db = Mock()
        db.get_bind.return_value.dialect.name = dialect
        return db

    def test_postgresql_gets_statement_timeout(self, mock_clock):
        deadline = Deadline(5.0, "op")
        mock_clock.monotonic.return_value = 101.0
        db = self._db("postgresql")

        deadline.bound_session(db, "find series")

        db.execute.assert_called_once()
        assert str(db.execute.call_args[0][0]) == "SET LOCAL statement_timeout = 4000"

    def test_sqlite_only_checks(self, mock_clock):
        db = self._db("sqlite")

        Deadline(5.0, "op").bound_session(db)

        db.execute.assert_not_called()

    def test_expired_deadline_raises_before_query(self, mock_clock):
        deadline = Deadline(1.0, "op")
        mock_clock.monotonic.return_value = 102.0
        db = self._db("postgresql")

        with pytest.raises(OperationTimeoutError):
            deadline.bound_session(db, "find series")

        db.execute.assert_not_called()


class TestStatementTimeout:
    """Tests for cancelled-query detection."""

    def test_is_statement_timeout(self):
        canceled = OperationalError("SELECT 1", {}, _QueryCanceled("canceling statement"))
        other = OperationalError("SELECT 1", {}, Exception("connection reset"))

        assert is_statement_timeout(canceled) is True
        assert is_statement_timeout(other) is False

    def test_event_store_converts_cancelled_query(self, test_settings):
        db = Mock()
        db.get_bind.return_value.dialect.name = "sqlite"
        db.query.side_effect = OperationalError("SELECT 1", {}, _QueryCanceled("canceling statement"))
        service = EventService(db, test_settings)

        with pytest.raises(OperationTimeoutError) as exc_info:
            service.count_by_series(1, deadline=Deadline(5.0, "get_upcoming_occurrences"))

        assert "count series events" in exc_info.value.operation
        db.rollback.assert_called_once()

    def test_other_operational_errors_propagate(self, test_settings):
        db = Mock()
        db.get_bind.return_value.dialect.name = "sqlite"
        db.query.side_effect = OperationalError("SELECT 1", {}, Exception("disk I/O error"))
        service = EventService(db, test_settings)

        with pytest.raises(OperationalError):
            service.count_by_series(1, deadline=Deadline(5.0, "op"))
