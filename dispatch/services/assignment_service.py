"""Assignment manager: which unit is bound to which incident.

This module is the only access path to active assignments. Unit edits are
gated on :func:`get_active_incident_for_unit` and the close cascade is driven
by :func:`close_for_incident`, so the exclusivity and release rules live in
one place.

All functions run inside the caller's unit of work and never commit. Rows
are locked with ``SELECT ... FOR UPDATE`` in one order: incidents first, in
ascending id order, then units, in ascending id order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..helpers import utcnow
from ..models import Incident, IncidentAssignment, Unit

logger = logging.getLogger(__name__)

UNIT_STATUSES = ("available", "en_route", "on_site", "out_of_service")
UNIT_TYPES = ("patrol", "moto", "ambulance")


@dataclass
class AssignResult:
    assignment: IncidentAssignment
    created: bool
    unit_changed: bool


def lock_incident(incident_id: str) -> Incident:
    stmt = (
        select(Incident)
        .where(Incident.id == incident_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    incident = db.session.execute(stmt).scalar_one_or_none()
    if incident is None:
        raise NotFoundError(f"incident {incident_id} not found", details={"incidentId": incident_id})
    return incident


def lock_unit(unit_id: int) -> Unit:
    stmt = (
        select(Unit)
        .where(Unit.id == unit_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    unit = db.session.execute(stmt).scalar_one_or_none()
    if unit is None:
        raise NotFoundError(f"unit {unit_id} not found", details={"unitId": unit_id})
    return unit


def _active():
    return IncidentAssignment.query.filter(IncidentAssignment.cleared_at.is_(None))


def _latest_for_unit(unit_id: int) -> Optional[IncidentAssignment]:
    # Later assignment wins when more than one row is open.
    return (
        _active()
        .filter(IncidentAssignment.unit_id == unit_id)
        .order_by(IncidentAssignment.assigned_at.desc(), IncidentAssignment.id.desc())
        .first()
    )


def get_active_incident_for_unit(unit_id: int) -> Optional[str]:
    row = _latest_for_unit(unit_id)
    return row.incident_id if row else None


def get_active_incidents_for_unit(unit_id: int) -> List[str]:
    rows = _active().filter(IncidentAssignment.unit_id == unit_id).all()
    return sorted({row.incident_id for row in rows})


def lock_incidents_of_unit(unit_id: int) -> List[str]:
    """Lock the incidents ``unit_id`` is bound to, ahead of the unit row.

    Unit edits that touch assignment rows call this before :func:`lock_unit`
    so they take locks in the same order as the incident commands.
    """
    incident_ids = get_active_incidents_for_unit(unit_id)
    for incident_id in incident_ids:
        lock_incident(incident_id)
    return incident_ids


def get_active_units_for_incident(incident_id: str) -> List[int]:
    rows = (
        _active()
        .filter(IncidentAssignment.incident_id == incident_id)
        .order_by(IncidentAssignment.assigned_at.asc(), IncidentAssignment.id.asc())
        .all()
    )
    seen: List[int] = []
    for row in rows:
        if row.unit_id not in seen:
            seen.append(row.unit_id)
    return seen


def list_for_incident(incident_id: str) -> List[IncidentAssignment]:
    """Every assignment of the incident, open and cleared."""
    return (
        IncidentAssignment.query
        .filter(IncidentAssignment.incident_id == incident_id)
        .order_by(IncidentAssignment.assigned_at.asc(), IncidentAssignment.id.asc())
        .all()
    )


def assign(
    incident: Incident,
    unit_id: int,
    note: Optional[str] = None,
    actor_ref: Optional[str] = None,
    exclusive: bool = True,
) -> AssignResult:
    """Bind ``unit_id`` to ``incident`` (whose row the caller already holds locked).

    Assigning the same unit twice to the same open incident returns the
    existing row with ``created=False``. With ``exclusive`` a unit that is
    still bound to another incident is refused.
    """
    unit = lock_unit(unit_id)
    if not unit.active:
        raise ConflictError(f"unit {unit_id} is inactive", details={"unitId": unit_id})

    existing = (
        _active()
        .filter(IncidentAssignment.incident_id == incident.id, IncidentAssignment.unit_id == unit_id)
        .first()
    )
    if existing is not None:
        return AssignResult(existing, False, False)

    if exclusive:
        other = get_active_incident_for_unit(unit_id)
        if other is not None and other != incident.id:
            raise ConflictError(
                f"unit {unit_id} is already assigned to {other}",
                details={"unitId": unit_id, "incidentId": other},
            )

    assignment = IncidentAssignment(
        incident_id=incident.id,
        unit_id=unit.id,
        note=note,
        assigned_at=utcnow(),
    )
    db.session.add(assignment)

    unit_changed = unit.status != "en_route"
    unit.status = "en_route"
    db.session.flush()
    logger.info("unit %s assigned to %s by %s", unit_id, incident.id, actor_ref)
    return AssignResult(assignment, True, unit_changed)


def _clear(rows: Iterable[IncidentAssignment], at: datetime) -> None:
    for row in rows:
        row.cleared_at = at


def close_for_incident(incident_id: str, at: Optional[datetime] = None) -> List[int]:
    """Clear every open assignment of the incident; returns the unit ids."""
    rows = _active().filter(IncidentAssignment.incident_id == incident_id).all()
    _clear(rows, at or utcnow())
    db.session.flush()
    return sorted({row.unit_id for row in rows})


def close_for_unit(unit_id: int, at: Optional[datetime] = None) -> List[str]:
    """Force release: clear the unit's open assignments; incidents stay open."""
    rows = _active().filter(IncidentAssignment.unit_id == unit_id).all()
    _clear(rows, at or utcnow())
    db.session.flush()
    return sorted({row.incident_id for row in rows})


def release_units(unit_ids: Iterable[int]) -> List[Unit]:
    """Return released units to ``available``.

    A unit that still holds another open assignment keeps its status.
    Returns only the units whose status actually changed.
    """
    changed: List[Unit] = []
    for unit_id in sorted(set(unit_ids)):
        unit = lock_unit(unit_id)
        if get_active_incident_for_unit(unit_id) is not None:
            continue
        if unit.status != "available":
            unit.status = "available"
            changed.append(unit)
    db.session.flush()
    return changed


def _stamp(unit_id: int, field: str, at: Optional[datetime]) -> Optional[IncidentAssignment]:
    row = _latest_for_unit(unit_id)
    if row is not None and getattr(row, field) is None:
        setattr(row, field, at or utcnow())
    return row


def mark_accepted(unit_id: int, at: Optional[datetime] = None) -> Optional[IncidentAssignment]:
    return _stamp(unit_id, "accepted_at", at)


def mark_arrived(unit_id: int, at: Optional[datetime] = None) -> Optional[IncidentAssignment]:
    return _stamp(unit_id, "arrived_at", at)
