"""
Pytest configuration and fixtures for backend tests.

Provides shared fixtures for:
- Test database sessions
- Application settings and wired services
- Sample data factories (series with template, standalone events)
- FastAPI test client
"""

import os
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ['EVSERIES_DB_URL'] = 'sqlite:///:memory:'

from backend.src.config.settings import AppSettings
from backend.src.models import Base, Event
from backend.src.schemas.event_series import EventSeriesCreate
from backend.src.services.event_series_service import EventSeriesService
from backend.src.services.event_service import EventService
from backend.src.services.occurrence_service import OccurrenceService
from backend.src.services.recurrence_service import RecurrenceService
from backend.src.utils.timezone import local_date, parse_instant


TEST_TEAM_ID = "team-1"
TEST_USER_ID = "user-1"

# Wednesday 2026-03-04 19:00 in Vancouver (PST, before the 2026-03-08 DST switch)
TEMPLATE_START = "2026-03-04T19:00:00-08:00"
TEMPLATE_END = "2026-03-04T21:00:00-08:00"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    from sqlalchemy import event

    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # Enable foreign key constraints for SQLite
    # This must be set for each connection
    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute('pragma foreign_keys=ON')

    event.listen(engine, 'connect', _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_db_session(test_db_engine):
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Settings and Service Fixtures
# ============================================================================

@pytest.fixture
def test_settings():
    """Default application settings, independent of the environment."""
    return AppSettings(_env_file=None)


@pytest.fixture
def recurrence_service(test_settings):
    return RecurrenceService(test_settings)


@pytest.fixture
def event_service(test_db_session, test_settings):
    return EventService(test_db_session, test_settings)


@pytest.fixture
def series_service(test_db_session, event_service, recurrence_service, test_settings):
    return EventSeriesService(
        test_db_session,
        event_service=event_service,
        recurrence_service=recurrence_service,
        settings=test_settings,
    )


@pytest.fixture
def occurrence_service(series_service, event_service, recurrence_service, test_settings):
    return OccurrenceService(
        series_service,
        event_service,
        recurrence_service=recurrence_service,
        settings=test_settings,
    )


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def sample_series_data():
    """Factory for creating sample series creation payloads."""
    def _create(
        name='Weekly Meetup',
        recurrence_rule=None,
        time_zone='America/Vancouver',
        start_date=TEMPLATE_START,
        end_date=TEMPLATE_END,
        **template_fields
    ):
        template = {
            'start_date': start_date,
            'end_date': end_date,
            'location': 'Community Hall',
            'max_attendees': 40,
            'categories': ['meetup'],
        }
        template.update(template_fields)
        return {
            'name': name,
            'description': 'Bring a laptop',
            'recurrence_rule': recurrence_rule or {'frequency': 'WEEKLY', 'byweekday': ['WE']},
            'time_zone': time_zone,
            'template_event': template,
        }
    return _create


@pytest.fixture
def sample_series(series_service, sample_series_data):
    """Factory for creating series (with template event) in the database."""
    def _create(user_id=TEST_USER_ID, team_id=TEST_TEAM_ID, **kwargs):
        data = EventSeriesCreate(**sample_series_data(**kwargs))
        return series_service.create(data, user_id=user_id, team_id=team_id)
    return _create


@pytest.fixture
def sample_event(test_db_session):
    """Factory for creating events directly in the database."""
    def _create(
        name='Standalone Event',
        start_date='2026-03-18T19:00:00-07:00',
        end_date=None,
        time_zone='America/Vancouver',
        series=None,
        user_id=TEST_USER_ID,
        team_id=TEST_TEAM_ID,
        **fields
    ):
        start = parse_instant(start_date)
        event = Event(
            name=name,
            start_date=start,
            end_date=parse_instant(end_date) if end_date else None,
            time_zone=time_zone,
            occurrence_date=local_date(start, series.time_zone if series else time_zone),
            series_id=series.id if series else None,
            user_id=user_id,
            team_id=team_id,
            **fields
        )
        test_db_session.add(event)
        test_db_session.commit()
        test_db_session.refresh(event)
        return event
    return _create


# ============================================================================
# FastAPI Test Client Fixture
# ============================================================================

@pytest.fixture
def auth_headers():
    """Identity headers forwarded by the gateway."""
    return {'X-Team-Id': TEST_TEAM_ID, 'X-User-Id': TEST_USER_ID}


@pytest.fixture
def test_client(test_db_session):
    """Create a test client for FastAPI application."""
    from fastapi.testclient import TestClient
    from backend.src.main import app
    from backend.src.db.database import get_db

    def get_test_db():
        try:
            yield test_db_session
        finally:
            pass

    app.dependency_overrides[get_db] = get_test_db

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
