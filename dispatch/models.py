"""Database models of the dispatch engine.

Incidents, their append-only event timeline, response units, unit
assignments and the year-scoped folio counters. Rows are never physically
deleted: incidents end in a terminal status, units are deactivated and
assignments are closed by stamping ``cleared_at``.

All timestamps are stored as naive UTC (see :func:`dispatch.helpers.utcnow`).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.mutable import MutableDict

from .extensions import db
from .helpers import isoformat, utcnow


_JSON = MutableDict.as_mutable(db.JSON().with_variant(JSONB, "postgresql"))


class Incident(db.Model):
    """An emergency report.

    ``id`` is the human-readable folio (``INC-<year>-<seq>``). ``lat``/``lng``/
    ``accuracy`` cache the newest LOCATION event (``location_at`` is its
    timestamp); ``ended_at`` is set exactly when the status is terminal.
    Simulated incidents (``is_simulated``) run the SIMULATION/SIM_PAUSED
    sub-machine and never enter the citizen statuses.
    """

    __tablename__ = 'incidents'
    __table_args__ = (
        db.Index('ix_incidents_started_at', 'started_at'),
        db.Index('ix_incidents_status', 'status'),
    )
    id: str = db.Column(db.String(32), primary_key=True)
    citizen_ref: str = db.Column(db.String(64), nullable=True, index=True)
    status: str = db.Column(db.String(16), nullable=False, default='NEW')
    priority: int = db.Column(db.Integer, nullable=False, default=3)
    lat: float = db.Column(db.Float, nullable=True)
    lng: float = db.Column(db.Float, nullable=True)
    accuracy: float = db.Column(db.Float, nullable=True)
    location_at = db.Column(db.DateTime, nullable=True)
    init_battery: int = db.Column(db.Integer, nullable=True)
    device_os: str = db.Column(db.String(32), nullable=True)
    device_version: str = db.Column(db.String(32), nullable=True)
    is_demo: bool = db.Column(db.Boolean, nullable=False, default=False)
    is_simulated: bool = db.Column(db.Boolean, nullable=False, default=False)
    cancel_reason: str = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    ended_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def location_dict(self) -> Optional[Dict[str, Any]]:
        if self.lat is None or self.lng is None:
            return None
        return {
            'lat': self.lat,
            'lng': self.lng,
            'accuracy': self.accuracy,
            'at': isoformat(self.location_at),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'citizenRef': self.citizen_ref,
            'status': self.status,
            'priority': self.priority,
            'location': self.location_dict(),
            'isDemo': bool(self.is_demo),
            'isSimulated': bool(self.is_simulated),
            'cancelReason': self.cancel_reason,
            'startedAt': isoformat(self.started_at),
            'endedAt': isoformat(self.ended_at),
        }


class IncidentEvent(db.Model):
    """One immutable entry of an incident timeline.

    Ordered by ``at`` and then by ``id`` (insertion order). ``payload`` is
    type-specific: coordinates for LOCATION, the unit for ASSIGN, the
    from/to pair for STATUS.
    """

    __tablename__ = 'incident_events'
    __table_args__ = (
        db.Index('ix_incident_events_incident_at', 'incident_id', 'at', 'id'),
        db.Index('ix_incident_events_type', 'type'),
    )
    id: int = db.Column(db.Integer, primary_key=True)
    incident_id: str = db.Column(db.String(32), db.ForeignKey('incidents.id'), nullable=False)
    type: str = db.Column(db.String(16), nullable=False)
    at = db.Column(db.DateTime, nullable=False, default=utcnow)
    actor_ref: str = db.Column(db.String(64), nullable=True)
    notes: str = db.Column(db.Text, nullable=True)
    payload = db.Column(_JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'incidentId': self.incident_id,
            'type': self.type,
            'at': isoformat(self.at),
            'actorRef': self.actor_ref,
            'notes': self.notes,
            'payload': dict(self.payload or {}),
        }


class Unit(db.Model):
    """A response unit (patrol car, motorbike, ambulance).

    ``status`` is one of ``available``, ``en_route``, ``on_site``,
    ``out_of_service``. Units are deactivated, never deleted.
    """

    __tablename__ = 'units'
    __table_args__ = (
        db.Index('ix_units_status', 'status'),
    )
    id: int = db.Column(db.Integer, primary_key=True)
    name: str = db.Column(db.String(80), nullable=False)
    type: str = db.Column(db.String(16), nullable=False, default='patrol')
    plate: str = db.Column(db.String(32), nullable=True)
    status: str = db.Column(db.String(16), nullable=False, default='available')
    active: bool = db.Column(db.Boolean, nullable=False, default=True)
    lat: float = db.Column(db.Float, nullable=True)
    lng: float = db.Column(db.Float, nullable=True)
    last_seen = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'plate': self.plate,
            'status': self.status,
            'active': bool(self.active),
            'lat': self.lat,
            'lng': self.lng,
            'lastSeen': isoformat(self.last_seen),
        }


class IncidentAssignment(db.Model):
    """Binding of one unit to one incident.

    Active while ``cleared_at`` is NULL. ``accepted_at``/``arrived_at`` are
    stamped when the unit reports ``en_route``/``on_site``.
    """

    __tablename__ = 'incident_assignments'
    __table_args__ = (
        db.Index('ix_incident_assignments_incident', 'incident_id', 'cleared_at'),
        db.Index('ix_incident_assignments_unit', 'unit_id', 'cleared_at'),
    )
    id: int = db.Column(db.Integer, primary_key=True)
    incident_id: str = db.Column(db.String(32), db.ForeignKey('incidents.id'), nullable=False)
    unit_id: int = db.Column(db.Integer, db.ForeignKey('units.id'), nullable=False)
    note: str = db.Column(db.Text, nullable=True)
    assigned_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    accepted_at = db.Column(db.DateTime, nullable=True)
    arrived_at = db.Column(db.DateTime, nullable=True)
    cleared_at = db.Column(db.DateTime, nullable=True)

    unit = db.relationship('Unit', lazy='joined')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'incidentId': self.incident_id,
            'unitId': self.unit_id,
            'unitName': self.unit.name if self.unit else None,
            'unitType': self.unit.type if self.unit else None,
            'note': self.note,
            'assignedAt': isoformat(self.assigned_at),
            'acceptedAt': isoformat(self.accepted_at),
            'arrivedAt': isoformat(self.arrived_at),
            'clearedAt': isoformat(self.cleared_at),
        }


class IdCounter(db.Model):
    """Year-scoped monotonically increasing counter (folio sequences)."""

    __tablename__ = 'id_counters'
    name: str = db.Column(db.String(64), primary_key=True)
    year: int = db.Column(db.Integer, primary_key=True, autoincrement=False)
    value: int = db.Column(db.Integer, nullable=False, default=0)


class AuditLog(db.Model):
    """Best-effort audit trail of staff and citizen commands."""

    __tablename__ = 'audit_logs'
    __table_args__ = (
        db.Index('ix_audit_logs_at', 'at'),
    )
    id: int = db.Column(db.Integer, primary_key=True)
    actor_ref: str = db.Column(db.String(64), nullable=True)
    action: str = db.Column(db.String(64), nullable=False)
    entity: str = db.Column(db.String(32), nullable=False)
    entity_id: str = db.Column(db.String(64), nullable=True)
    meta = db.Column(_JSON, nullable=True)
    at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'actorRef': self.actor_ref,
            'action': self.action,
            'entity': self.entity,
            'entityId': self.entity_id,
            'meta': dict(self.meta or {}),
            'at': isoformat(self.at),
        }


class Device(db.Model):
    """Citizen device registered for push notifications (FCM token)."""

    __tablename__ = 'devices'
    id: int = db.Column(db.Integer, primary_key=True)
    citizen_ref: str = db.Column(db.String(64), nullable=False, index=True)
    platform: str = db.Column(db.String(16), nullable=True)
    fcm_token: str = db.Column(db.String(255), nullable=False, unique=True)
    active: bool = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
