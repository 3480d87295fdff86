"""Unit commands: registration and operator edits.

Status edits are guarded by the assignment manager. A unit bound to an open
incident cannot become ``available`` or ``out_of_service`` unless the
operator forces it, which releases the unit from its incident while the
incident itself stays open. ``en_route``/``on_site`` require an active
assignment and stamp ``accepted_at``/``arrived_at`` on it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from . import assignment_service, event_log
from .assignment_service import UNIT_STATUSES, UNIT_TYPES
from .event_log import EventType
from .uow import unit_of_work
from .. import audit
from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..helpers import in_range, isoformat, parse_coord, utcnow
from ..models import IncidentAssignment, Unit
from ..realtime.hub import get_hub

logger = logging.getLogger(__name__)

_EDITABLE = ("name", "type", "plate", "active", "status", "lat", "lng")
_RELEASE_STATUSES = ("available", "out_of_service")
_ENGAGED_STATUSES = ("en_route", "on_site")


def _check_type(value: Any) -> str:
    unit_type = str(value or "").strip().lower()
    if unit_type not in UNIT_TYPES:
        raise ValidationError(f"unknown unit type: {value!r}", details={"allowed": list(UNIT_TYPES)})
    return unit_type


def create_unit(name: str, type: str, plate: Optional[str] = None, active: bool = True) -> Dict[str, int]:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    unit_type = _check_type(type)
    hub = get_hub()

    with unit_of_work() as uow:
        now = utcnow()
        unit = Unit(
            name=name,
            type=unit_type,
            plate=(plate or "").strip() or None,
            status="available",
            active=bool(active),
            last_seen=now,
            created_at=now,
            updated_at=now,
        )
        db.session.add(unit)
        db.session.flush()
        unit_id = unit.id
        uow.after_commit(hub.unit_patch, {"id": unit_id, "status": "available", "lastSeen": isoformat(now)})
        uow.after_commit(audit.log_action, None, "unit.create", "unit", unit_id, {"name": name, "type": unit_type})
    return {"id": unit_id}


def update_unit(
    unit_id: int,
    patch: Mapping[str, Any],
    force: bool = False,
    actor_ref: Optional[Any] = None,
) -> Dict[str, Any]:
    """Apply an operator edit and publish only the facets that changed."""
    unknown = set(patch) - set(_EDITABLE)
    if unknown:
        raise ValidationError("unknown fields", details={"fields": sorted(unknown)})
    if not patch:
        raise ValidationError("nothing to update")

    actor = str(actor_ref) if actor_ref is not None else None
    hub = get_hub()

    with unit_of_work() as uow:
        # Status edits may write assignment rows: incident locks come first.
        locked_incidents = assignment_service.lock_incidents_of_unit(unit_id) if "status" in patch else []
        unit = assignment_service.lock_unit(unit_id)
        now = utcnow()
        changed: Dict[str, Any] = {}

        if "name" in patch:
            name = str(patch["name"] or "").strip()
            if not name:
                raise ValidationError("name must not be empty")
            if name != unit.name:
                unit.name = changed["name"] = name
        if "type" in patch:
            unit_type = _check_type(patch["type"])
            if unit_type != unit.type:
                unit.type = changed["type"] = unit_type
        if "plate" in patch:
            plate = (str(patch["plate"]).strip() if patch["plate"] is not None else "") or None
            if plate != unit.plate:
                unit.plate = changed["plate"] = plate
        if "active" in patch and bool(patch["active"]) != bool(unit.active):
            unit.active = changed["active"] = bool(patch["active"])

        if "lat" in patch or "lng" in patch:
            lat = parse_coord(patch.get("lat", unit.lat))
            lng = parse_coord(patch.get("lng", unit.lng))
            if lat is None or lng is None or not in_range(lat, lng):
                raise ValidationError("invalid coordinates")
            unit.lat, unit.lng, unit.last_seen = lat, lng, now
            changed.update(lat=lat, lng=lng, lastSeen=isoformat(now))

        released_from: List[str] = []
        if "status" in patch:
            status = str(patch["status"] or "").strip().lower()
            if status not in UNIT_STATUSES:
                raise ValidationError(f"unknown unit status: {patch['status']!r}", details={"allowed": list(UNIT_STATUSES)})
            if not set(assignment_service.get_active_incidents_for_unit(unit.id)) <= set(locked_incidents):
                raise ConflictError(
                    f"assignments of unit {unit.id} changed during the edit, retry",
                    details={"unitId": unit.id},
                )
            active_incident = assignment_service.get_active_incident_for_unit(unit.id)

            if status in _RELEASE_STATUSES and active_incident is not None:
                if not force:
                    raise ConflictError(
                        f"unit {unit.id} is assigned to {active_incident}",
                        details={"unitId": unit.id, "incidentId": active_incident},
                    )
                released_from = assignment_service.close_for_unit(unit.id, at=now)
                for incident_id in released_from:
                    event_log.append(incident_id, EventType.NOTE, actor,
                                     notes=f"unit {unit.id} released ({status})",
                                     payload={"unit_id": unit.id, "released": True, "status": status}, at=now)
            elif status in _ENGAGED_STATUSES:
                if active_incident is None:
                    raise ConflictError(f"unit {unit.id} has no active assignment", details={"unitId": unit.id})
                if status == "en_route":
                    assignment_service.mark_accepted(unit.id, at=now)
                else:
                    assignment_service.mark_arrived(unit.id, at=now)

            if status != unit.status:
                unit.status = changed["status"] = status

        if changed:
            unit.updated_at = now
        db.session.flush()
        result = unit.to_dict()

        if changed:
            uow.after_commit(hub.unit_patch, {"id": unit.id, **changed})
        for incident_id in released_from:
            uow.after_commit(hub.incident_patch, incident_id,
                             {"assignment": {"unitId": unit.id, "clearedAt": isoformat(now)}})
        if changed or released_from:
            uow.after_commit(audit.log_action, actor, "unit.update", "unit", unit.id,
                             {"changed": sorted(changed), "force": bool(force), "released": released_from})

    if released_from:
        logger.info("unit %s force-released from %s", unit_id, released_from)
    return result


def list_units(status: Optional[str] = None, type: Optional[str] = None) -> List[Dict[str, Any]]:
    query = Unit.query
    if status:
        query = query.filter(Unit.status == str(status).strip().lower())
    if type:
        query = query.filter(Unit.type == str(type).strip().lower())
    return [u.to_dict() for u in query.order_by(Unit.name.asc(), Unit.id.asc()).all()]


def get_active_assignment(unit_id: int) -> Optional[Dict[str, Any]]:
    if db.session.get(Unit, unit_id) is None:
        raise NotFoundError(f"unit {unit_id} not found", details={"unitId": unit_id})
    incident_id = assignment_service.get_active_incident_for_unit(unit_id)
    if incident_id is None:
        return None
    row = (
        IncidentAssignment.query
        .filter(
            IncidentAssignment.unit_id == unit_id,
            IncidentAssignment.incident_id == incident_id,
            IncidentAssignment.cleared_at.is_(None),
        )
        .order_by(IncidentAssignment.assigned_at.desc(), IncidentAssignment.id.desc())
        .first()
    )
    return row.to_dict() if row else None
