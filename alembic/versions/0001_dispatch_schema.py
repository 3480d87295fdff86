"""dispatch schema

Revision ID: 0001_dispatch_schema
Revises:
Create Date: 2026-10-19

Tables of the dispatch engine: ``incidents`` with their append-only
``incident_events`` timeline, ``units`` and ``incident_assignments``, the
year-scoped ``id_counters`` behind folio numbers, plus ``audit_logs`` and
citizen ``devices``. Downgrade drops everything.
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_dispatch_schema'
down_revision = None
branch_labels = None
depends_on = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _table_exists(conn, name: str) -> bool:
    return name in inspect(conn).get_table_names()


def upgrade():
    conn = op.get_bind()

    if not _table_exists(conn, 'incidents'):
        op.create_table(
            'incidents',
            sa.Column('id', sa.String(32), primary_key=True),
            sa.Column('citizen_ref', sa.String(64), nullable=True),
            sa.Column('status', sa.String(16), nullable=False, server_default='NEW'),
            sa.Column('priority', sa.Integer(), nullable=False, server_default='3'),
            sa.Column('lat', sa.Float(), nullable=True),
            sa.Column('lng', sa.Float(), nullable=True),
            sa.Column('accuracy', sa.Float(), nullable=True),
            sa.Column('location_at', sa.DateTime(), nullable=True),
            sa.Column('init_battery', sa.Integer(), nullable=True),
            sa.Column('device_os', sa.String(32), nullable=True),
            sa.Column('device_version', sa.String(32), nullable=True),
            sa.Column('is_demo', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('is_simulated', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('cancel_reason', sa.Text(), nullable=True),
            sa.Column('started_at', sa.DateTime(), nullable=False),
            sa.Column('ended_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_incidents_started_at', 'incidents', ['started_at'])
        op.create_index('ix_incidents_status', 'incidents', ['status'])
        op.create_index('ix_incidents_citizen_ref', 'incidents', ['citizen_ref'])

    if not _table_exists(conn, 'incident_events'):
        op.create_table(
            'incident_events',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('incident_id', sa.String(32), sa.ForeignKey('incidents.id'), nullable=False),
            sa.Column('type', sa.String(16), nullable=False),
            sa.Column('at', sa.DateTime(), nullable=False),
            sa.Column('actor_ref', sa.String(64), nullable=True),
            sa.Column('notes', sa.Text(), nullable=True),
            sa.Column('payload', _JSON, nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_incident_events_incident_at', 'incident_events', ['incident_id', 'at', 'id'])
        op.create_index('ix_incident_events_type', 'incident_events', ['type'])

    if not _table_exists(conn, 'units'):
        op.create_table(
            'units',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(80), nullable=False),
            sa.Column('type', sa.String(16), nullable=False, server_default='patrol'),
            sa.Column('plate', sa.String(32), nullable=True),
            sa.Column('status', sa.String(16), nullable=False, server_default='available'),
            sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('lat', sa.Float(), nullable=True),
            sa.Column('lng', sa.Float(), nullable=True),
            sa.Column('last_seen', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_units_status', 'units', ['status'])

    if not _table_exists(conn, 'incident_assignments'):
        op.create_table(
            'incident_assignments',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('incident_id', sa.String(32), sa.ForeignKey('incidents.id'), nullable=False),
            sa.Column('unit_id', sa.Integer(), sa.ForeignKey('units.id'), nullable=False),
            sa.Column('note', sa.Text(), nullable=True),
            sa.Column('assigned_at', sa.DateTime(), nullable=False),
            sa.Column('accepted_at', sa.DateTime(), nullable=True),
            sa.Column('arrived_at', sa.DateTime(), nullable=True),
            sa.Column('cleared_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_incident_assignments_incident', 'incident_assignments', ['incident_id', 'cleared_at'])
        op.create_index('ix_incident_assignments_unit', 'incident_assignments', ['unit_id', 'cleared_at'])

    if not _table_exists(conn, 'id_counters'):
        op.create_table(
            'id_counters',
            sa.Column('name', sa.String(64), primary_key=True),
            sa.Column('year', sa.Integer(), primary_key=True, autoincrement=False),
            sa.Column('value', sa.Integer(), nullable=False, server_default='0'),
        )

    if not _table_exists(conn, 'audit_logs'):
        op.create_table(
            'audit_logs',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('actor_ref', sa.String(64), nullable=True),
            sa.Column('action', sa.String(64), nullable=False),
            sa.Column('entity', sa.String(32), nullable=False),
            sa.Column('entity_id', sa.String(64), nullable=True),
            sa.Column('meta', _JSON, nullable=True),
            sa.Column('at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_audit_logs_at', 'audit_logs', ['at'])

    if not _table_exists(conn, 'devices'):
        op.create_table(
            'devices',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('citizen_ref', sa.String(64), nullable=False),
            sa.Column('platform', sa.String(16), nullable=True),
            sa.Column('fcm_token', sa.String(255), nullable=False, unique=True),
            sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_devices_citizen_ref', 'devices', ['citizen_ref'])


def downgrade():
    for table in ('devices', 'audit_logs', 'id_counters', 'incident_assignments', 'units', 'incident_events', 'incidents'):
        op.drop_table(table)
