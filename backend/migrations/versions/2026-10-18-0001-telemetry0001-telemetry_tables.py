"""telemetry tables: telemetry_events, orgs, discarded_events, settings

Revision ID: telemetry0001
Revises: None
Create Date: 2026-10-18
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'telemetry0001'
down_revision = None
branch_labels = None
depends_on = None

JSON_PAYLOAD = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')
ID_COLUMN_TYPE = sa.BigInteger().with_variant(sa.Integer(), 'sqlite')


def _id_column() -> sa.Column:
    return sa.Column('id', ID_COLUMN_TYPE, primary_key=True, autoincrement=True)


def _created_at_column() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(), server_default=sa.func.current_timestamp(), nullable=True)


def upgrade() -> None:
    op.create_table(
        'telemetry_events',
        _id_column(),
        sa.Column('event', sa.String(length=50), nullable=False),
        sa.Column('area', sa.String(length=20), nullable=True),
        sa.Column('event_name', sa.String(length=100), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=True),
        sa.Column('telemetry_schema_version', sa.Integer(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('server_id', sa.String(length=255), nullable=True),
        sa.Column('version', sa.String(length=100), nullable=True),
        sa.Column('session_id', sa.String(length=255), nullable=True),
        sa.Column('parent_session_id', sa.String(length=255), nullable=True),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('data', JSON_PAYLOAD, nullable=False),
        sa.Column('received_at', sa.DateTime(), nullable=True),
        sa.Column('org_id', sa.String(length=255), nullable=True),
        sa.Column('user_name', sa.String(length=255), nullable=True),
        sa.Column('tool_name', sa.String(length=255), nullable=True),
        sa.Column('company_name', sa.String(length=255), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        _created_at_column(),
    )
    op.create_index('idx_telemetry_events_event_created', 'telemetry_events', ['event', 'created_at'])
    op.create_index('idx_telemetry_events_user_created', 'telemetry_events', ['user_id', 'created_at'])
    op.create_index('idx_telemetry_events_org_created', 'telemetry_events', ['org_id', 'created_at'])
    op.create_index('idx_telemetry_events_tool_created', 'telemetry_events', ['tool_name', 'created_at'])
    op.create_index('idx_telemetry_events_session_timestamp', 'telemetry_events', ['session_id', 'timestamp'])
    op.create_index(
        'idx_telemetry_events_parent_session_timestamp', 'telemetry_events', ['parent_session_id', 'timestamp']
    )
    op.create_index('idx_telemetry_events_deleted_created', 'telemetry_events', ['deleted_at', 'created_at'])
    op.create_index(
        'idx_telemetry_events_server_user_event_timestamp',
        'telemetry_events',
        ['server_id', 'user_id', 'event', 'timestamp'],
    )
    op.create_index('idx_telemetry_events_timestamp', 'telemetry_events', ['timestamp'])
    if op.get_bind().dialect.name == 'postgresql':
        op.create_index(
            'idx_telemetry_events_data_gin', 'telemetry_events', ['data'], postgresql_using='gin'
        )

    op.create_table(
        'orgs',
        _id_column(),
        sa.Column('server_id', sa.String(length=255), nullable=False),
        sa.Column('company_name', sa.String(length=255), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        _created_at_column(),
        sa.UniqueConstraint('server_id'),
    )

    op.create_table(
        'discarded_events',
        _id_column(),
        sa.Column('raw_payload', JSON_PAYLOAD, nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        _created_at_column(),
    )
    op.create_index('idx_discarded_events_received', 'discarded_events', ['received_at'])

    op.create_table(
        'settings',
        _id_column(),
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        _created_at_column(),
        sa.UniqueConstraint('key'),
    )


def downgrade() -> None:
    op.drop_table('settings')
    op.drop_index('idx_discarded_events_received', table_name='discarded_events')
    op.drop_table('discarded_events')
    op.drop_table('orgs')
    op.drop_table('telemetry_events')
