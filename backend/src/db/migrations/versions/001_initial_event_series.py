"""Initial event series schema

Revision ID: 001_initial_event_series
Revises:
Create Date: 2026-10-18

Creates event_series and events tables with:
- GUID columns (UUIDv7) on both tables
- Foreign key events.series_id -> event_series.id (ON DELETE SET NULL)
- Unique (series_id, occurrence_date) so one series has at most one event
  per local calendar day
- Indexes for tenant, owner and series listings
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '001_initial_event_series'
down_revision = None
branch_labels = None
depends_on = None


def _uuid_column():
    return sa.Column(
        'uuid',
        postgresql.UUID(as_uuid=True).with_variant(sa.LargeBinary(16), 'sqlite'),
        nullable=False
    )


def _json_type():
    return postgresql.JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), 'sqlite')


def upgrade() -> None:
    """
    Create event_series and events tables.

    Tables:
    - event_series: Recurrence rule, timezone, template link and overrides
    - events: Concrete events; series-linked events are materialized occurrences
    """
    op.create_table(
        'event_series',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _uuid_column(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('recurrence_rule', _json_type(), nullable=False),
        sa.Column('recurrence_description', sa.String(length=500), nullable=True),
        sa.Column('recurrence_rrule', sa.String(length=500), nullable=True),
        sa.Column('time_zone', sa.String(length=64), nullable=False, server_default='UTC'),
        sa.Column('template_event_slug', sa.String(length=64), nullable=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('group_id', sa.String(length=64), nullable=True),
        sa.Column('team_id', sa.String(length=64), nullable=False),
        sa.Column('location', sa.String(length=500), nullable=True),
        sa.Column('location_online', sa.String(length=500), nullable=True),
        sa.Column('max_attendees', sa.Integer(), nullable=True),
        sa.Column('require_approval', sa.Boolean(), nullable=True),
        sa.Column('approval_question', sa.Text(), nullable=True),
        sa.Column('allow_waitlist', sa.Boolean(), nullable=True),
        sa.Column('source_type', sa.String(length=50), nullable=True),
        sa.Column('source_id', sa.String(length=255), nullable=True),
        sa.Column('source_url', sa.String(length=1024), nullable=True),
        sa.Column('source_data', _json_type(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_index('ix_event_series_uuid', 'event_series', ['uuid'], unique=True)
    op.create_index('ix_event_series_user_id', 'event_series', ['user_id'], unique=False)
    op.create_index('ix_event_series_group_id', 'event_series', ['group_id'], unique=False)
    op.create_index('ix_event_series_team_id', 'event_series', ['team_id'], unique=False)
    op.create_index('ix_event_series_source_type', 'event_series', ['source_type'], unique=False)

    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _uuid_column(),
        sa.Column('series_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=20), nullable=False, server_default='in_person'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='published'),
        sa.Column('visibility', sa.String(length=20), nullable=False, server_default='public'),
        sa.Column('categories', _json_type(), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('time_zone', sa.String(length=64), nullable=False, server_default='UTC'),
        sa.Column('occurrence_date', sa.Date(), nullable=True),
        sa.Column('location', sa.String(length=500), nullable=True),
        sa.Column('location_online', sa.String(length=500), nullable=True),
        sa.Column('max_attendees', sa.Integer(), nullable=True),
        sa.Column('require_approval', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approval_question', sa.Text(), nullable=True),
        sa.Column('allow_waitlist', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('group_id', sa.String(length=64), nullable=True),
        sa.Column('team_id', sa.String(length=64), nullable=False),
        sa.Column('source_type', sa.String(length=50), nullable=True),
        sa.Column('source_id', sa.String(length=255), nullable=True),
        sa.Column('source_url', sa.String(length=1024), nullable=True),
        sa.Column('source_data', _json_type(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['series_id'], ['event_series.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('series_id', 'occurrence_date', name='uq_events_series_occurrence_date')
    )

    op.create_index('ix_events_uuid', 'events', ['uuid'], unique=True)
    op.create_index('ix_events_series_id', 'events', ['series_id'], unique=False)
    op.create_index('ix_events_start_date', 'events', ['start_date'], unique=False)
    op.create_index('ix_events_user_id', 'events', ['user_id'], unique=False)
    op.create_index('ix_events_group_id', 'events', ['group_id'], unique=False)
    op.create_index('ix_events_team_id', 'events', ['team_id'], unique=False)
    op.create_index('idx_events_series_start', 'events', ['series_id', 'start_date'], unique=False)


def downgrade() -> None:
    """
    Drop events and event_series tables.

    Note: This drops every series and event.
    """
    op.drop_index('idx_events_series_start', table_name='events')
    op.drop_index('ix_events_team_id', table_name='events')
    op.drop_index('ix_events_group_id', table_name='events')
    op.drop_index('ix_events_user_id', table_name='events')
    op.drop_index('ix_events_start_date', table_name='events')
    op.drop_index('ix_events_series_id', table_name='events')
    op.drop_index('ix_events_uuid', table_name='events')
    op.drop_table('events')

    op.drop_index('ix_event_series_source_type', table_name='event_series')
    op.drop_index('ix_event_series_team_id', table_name='event_series')
    op.drop_index('ix_event_series_group_id', table_name='event_series')
    op.drop_index('ix_event_series_user_id', table_name='event_series')
    op.drop_index('ix_event_series_uuid', table_name='event_series')
    op.drop_table('event_series')
