"""Incident commands and queries.

Every command follows the same shape inside one unit of work: lock the
incident row, resolve the target status through :mod:`dispatch.lifecycle`,
mutate, append the timeline events, commit, and only then publish patches to
the hub (plus audit and push side effects). A rejected command raises and
leaves no trace: no status change, no event, no publish.

Ownership and role checks belong to the callers; the functions here only
record who acted. :func:`assert_owner` is provided for them.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import current_app

from . import assignment_service, event_log
from .event_log import EventType
from .sequence_service import next_folio
from .uow import UnitOfWork, unit_of_work
from .. import audit, notify
from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..helpers import isoformat, parse_ts, require_coords, utcnow
from ..lifecycle import (
    Command,
    IncidentStatus,
    is_terminal,
    next_status,
    simulation_command,
    status_command,
)
from ..models import Incident
from ..realtime.hub import get_hub

logger = logging.getLogger(__name__)

S = IncidentStatus

_SIM_EVENTS = {
    Command.PAUSE_SIMULATION: EventType.SIM_PAUSE,
    Command.RESUME_SIMULATION: EventType.SIM_RESUME,
    Command.CLOSE_SIMULATION: EventType.SIM_CLOSE,
}
_SIM_META = {S.SIMULATION: "RUNNING", S.SIM_PAUSED: "PAUSED", S.CLOSED: "CLOSED"}


# --- helpers ---------------------------------------------------------------

def _ensure_open(incident: Incident) -> None:
    if is_terminal(incident.status):
        raise ConflictError(
            f"incident {incident.id} is already {incident.status}",
            details={"status": incident.status},
        )


def _ref(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _accuracy(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        acc = float(value)
    except (TypeError, ValueError):
        raise ValidationError("accuracy must be a number") from None
    if acc < 0:
        raise ValidationError("accuracy must be >= 0")
    return acc


def _battery(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        level = int(value)
    except (TypeError, ValueError):
        raise ValidationError("battery must be an integer") from None
    if not 0 <= level <= 100:
        raise ValidationError("battery must be within 0..100")
    return level


def _location_payload(lat: float, lng: float, accuracy: Optional[float], at: datetime) -> Dict[str, Any]:
    return {"lat": lat, "lng": lng, "accuracy": accuracy, "at": isoformat(at)}


def _after_status_change(uow: UnitOfWork, incident: Incident, actor_ref: Optional[str], action: str, meta: Dict[str, Any]) -> None:
    uow.after_commit(audit.log_action, actor_ref, action, "incident", incident.id, meta)
    uow.after_commit(notify.notify_status_change, incident.id, incident.citizen_ref, meta.get("to"))


def _new_incident(
    *,
    status: IncidentStatus,
    citizen_ref: Optional[str],
    actor_ref: Optional[str],
    lat: Any,
    lng: Any,
    accuracy: Any,
    battery: Any,
    device: Optional[Dict[str, Any]],
    is_simulated: bool,
    is_demo: bool,
    new_event: EventType,
) -> Dict[str, str]:
    flat, flng = require_coords(lat, lng)
    acc = _accuracy(accuracy)
    level = _battery(battery)
    device = device or {}
    now = utcnow()
    hub = get_hub()

    with unit_of_work() as uow:
        folio = next_folio(current_app.config["DISPATCH_FOLIO_COUNTER"], now.year)
        incident = Incident(
            id=folio,
            citizen_ref=citizen_ref,
            status=status.value,
            priority=int(current_app.config.get("DISPATCH_DEFAULT_PRIORITY", 3)),
            lat=flat,
            lng=flng,
            accuracy=acc,
            location_at=now,
            init_battery=level,
            device_os=device.get("os"),
            device_version=device.get("version"),
            is_demo=is_demo,
            is_simulated=is_simulated,
            started_at=now,
            updated_at=now,
        )
        db.session.add(incident)
        db.session.flush()

        meta = {k: v for k, v in (("battery", level), ("device", device or None)) if v is not None}
        event_log.append(folio, new_event, actor_ref, payload=meta or None, at=now)
        event_log.append(folio, EventType.LOCATION, actor_ref, payload={"lat": flat, "lng": flng, "accuracy": acc}, at=now)

        uow.after_commit(hub.incident_new, {
            "id": folio,
            "lat": flat,
            "lng": flng,
            "accuracy": acc,
            "createdAt": isoformat(now),
            "status": status.value,
        })
        uow.after_commit(audit.log_action, actor_ref, "incident.create", "incident", folio, {"simulated": is_simulated})

    logger.info("incident %s created (%s)", folio, status.value)
    return {"id": folio, "status": status.value}


# --- citizen commands ------------------------------------------------------

def create_incident(
    citizen_ref: Any,
    lat: Any,
    lng: Any,
    accuracy: Any = None,
    battery: Any = None,
    device: Optional[Dict[str, Any]] = None,
    is_demo: bool = False,
) -> Dict[str, str]:
    """Open a new incident with a freshly issued folio. Location is required."""
    ref = _ref(citizen_ref)
    return _new_incident(
        status=S.NEW,
        citizen_ref=ref,
        actor_ref=ref,
        lat=lat,
        lng=lng,
        accuracy=accuracy,
        battery=battery,
        device=device,
        is_simulated=False,
        is_demo=is_demo,
        new_event=EventType.NEW,
    )


def push_location(
    incident_id: str,
    citizen_ref: Any,
    lat: Any,
    lng: Any,
    accuracy: Any = None,
    observed_at: Any = None,
) -> Dict[str, bool]:
    """Record a location ping.

    Every ping is logged. The cached location only moves forward in time: a
    ping observed before the cached one is kept in the timeline but does not
    replace the cache and is not published.
    """
    flat, flng = require_coords(lat, lng)
    acc = _accuracy(accuracy)
    at = parse_ts(observed_at) or utcnow()
    hub = get_hub()

    with unit_of_work() as uow:
        incident = assignment_service.lock_incident(incident_id)
        _ensure_open(incident)
        event_log.append(incident.id, EventType.LOCATION, _ref(citizen_ref),
                         payload={"lat": flat, "lng": flng, "accuracy": acc}, at=at)
        if incident.location_at is None or at >= incident.location_at:
            incident.lat, incident.lng, incident.accuracy = flat, flng, acc
            incident.location_at = at
            incident.updated_at = utcnow()
            uow.after_commit(hub.incident_patch, incident.id, {"location": _location_payload(flat, flng, acc, at)})
    return {"ok": True}


def cancel_incident(incident_id: str, citizen_ref: Any, reason: Optional[str] = None) -> Dict[str, str]:
    reason = (reason or "").strip() or None
    hub = get_hub()
    with unit_of_work() as uow:
        incident = assignment_service.lock_incident(incident_id)
        prev = incident.status
        target = next_status(prev, Command.CANCEL)
        now = utcnow()
        incident.status = target.value
        incident.ended_at = now
        incident.cancel_reason = reason
        incident.updated_at = now
        event_log.append(incident.id, EventType.CANCEL, _ref(citizen_ref), notes=reason,
                         payload={"from": prev, "to": target.value}, at=now)

        patch: Dict[str, Any] = {"status": target.value, "endedAt": isoformat(now)}
        if reason:
            patch["cancelReason"] = reason
        uow.after_commit(hub.incident_patch, incident.id, patch)
        uow.after_commit(audit.log_action, _ref(citizen_ref), "incident.cancel", "incident", incident.id,
                         {"from": prev, "to": target.value, "reason": reason})
    return {"status": target.value}


# --- staff commands --------------------------------------------------------

def acknowledge(incident_id: str, actor_ref: Any) -> Dict[str, str]:
    actor = _ref(actor_ref)
    hub = get_hub()
    with unit_of_work() as uow:
        incident = assignment_service.lock_incident(incident_id)
        prev = incident.status
        target = next_status(prev, Command.ACKNOWLEDGE)
        now = utcnow()
        incident.status = target.value
        incident.updated_at = now
        event_log.append(incident.id, EventType.ACK, actor, at=now)
        uow.after_commit(hub.incident_patch, incident.id, {"status": target.value})
        _after_status_change(uow, incident, actor, "incident.ack", {"from": prev, "to": target.value})
    return {"status": target.value}


def assign_unit(
    incident_id: str,
    unit_id: int,
    actor_ref: Any,
    note: Optional[str] = None,
    exclusive: Optional[bool] = None,
) -> Dict[str, str]:
    """Bind a unit to the incident.

    From NEW/ACK the incident becomes DISPATCHED; a DISPATCHED or IN_PROGRESS
    incident keeps its status when another unit joins. Re-assigning a unit
    that is already bound to this incident changes nothing.
    """
    actor = _ref(actor_ref)
    if exclusive is None:
        exclusive = bool(current_app.config.get("DISPATCH_STRICT_UNIT_EXCLUSIVITY", True))
    hub = get_hub()

    with unit_of_work() as uow:
        incident = assignment_service.lock_incident(incident_id)
        prev = incident.status
        target = next_status(prev, Command.ASSIGN)
        result = assignment_service.assign(incident, unit_id, note=note, actor_ref=actor, exclusive=exclusive)
        if not result.created:
            return {"status": prev}

        now = utcnow()
        assignment = result.assignment
        event_log.append(incident.id, EventType.ASSIGN, actor, notes=note,
                         payload={"unit_id": assignment.unit_id, "assignment_id": assignment.id}, at=now)
        incident.status = target.value
        incident.updated_at = now

        patch: Dict[str, Any] = {"assignment": assignment.to_dict()}
        if target.value != prev:
            patch["status"] = target.value
            _after_status_change(uow, incident, actor, "incident.status", {"from": prev, "to": target.value})
        uow.after_commit(hub.incident_patch, incident.id, patch)
        if result.unit_changed:
            uow.after_commit(hub.unit_patch, {"id": assignment.unit_id, "status": "en_route"})
        uow.after_commit(audit.log_action, actor, "incident.assign", "incident", incident.id,
                         {"unit_id": assignment.unit_id, "note": note})
    return {"status": target.value}


def set_status(incident_id: str, actor_ref: Any, status: str, reason: Optional[str] = None) -> Dict[str, str]:
    """Move the incident to DISPATCHED, IN_PROGRESS or CLOSED.

    Always appends a STATUS event, also when re-entering DISPATCHED. Closing
    additionally appends CLOSE, stamps ``ended_at``, clears every active
    assignment and returns the released units to ``available``; after the
    commit one incident patch and one unit patch per released unit go out.
    """
    command = status_command(status)
    actor = _ref(actor_ref)
    reason = (reason or "").strip() or None
    hub = get_hub()

    with unit_of_work() as uow:
        incident = assignment_service.lock_incident(incident_id)
        prev = incident.status
        target = next_status(prev, command)
        now = utcnow()
        incident.status = target.value
        incident.updated_at = now
        event_log.append(incident.id, EventType.STATUS, actor, notes=reason,
                         payload={"from": prev, "to": target.value}, at=now)

        released: List[Dict[str, Any]] = []
        if target is S.CLOSED:
            incident.ended_at = now
            event_log.append(incident.id, EventType.CLOSE, actor, notes=reason, at=now)
            unit_ids = assignment_service.close_for_incident(incident.id, at=now)
            for unit in assignment_service.release_units(unit_ids):
                released.append({"id": unit.id, "status": unit.status})

        patch: Dict[str, Any] = {}
        if target.value != prev:
            patch["status"] = target.value
            _after_status_change(uow, incident, actor, "incident.status", {"from": prev, "to": target.value})
        if target is S.CLOSED:
            patch["endedAt"] = isoformat(now)
        if reason or not patch:
            patch["event"] = {"type": EventType.STATUS.value, "status": target.value, "reason": reason, "at": isoformat(now)}
        uow.after_commit(hub.incident_patch, incident.id, patch)
        for unit_patch in released:
            uow.after_commit(hub.unit_patch, unit_patch)
        if target.value == prev:
            uow.after_commit(audit.log_action, actor, "incident.status", "incident", incident.id,
                             {"from": prev, "to": target.value})

    if released:
        logger.info("incident %s closed, released units %s", incident_id, [u["id"] for u in released])
    return {"status": target.value}


def add_note(incident_id: str, actor_ref: Any, text: str) -> Dict[str, Any]:
    """Append a free-text note; allowed in every status, terminal ones included."""
    text = (text or "").strip()
    if not text:
        raise ValidationError("note text is required")
    actor = _ref(actor_ref)
    hub = get_hub()
    with unit_of_work() as uow:
        incident = assignment_service.lock_incident(incident_id)
        now = utcnow()
        event_id = event_log.append(incident.id, EventType.NOTE, actor, notes=text, at=now)
        uow.after_commit(hub.incident_patch, incident.id, {"event": {
            "id": event_id,
            "type": EventType.NOTE.value,
            "notes": text,
            "actorRef": actor,
            "at": isoformat(now),
        }})
        uow.after_commit(audit.log_action, actor, "incident.note", "incident", incident.id, {"event_id": event_id})
    return {"eventId": event_id, "at": isoformat(now), "actorRef": actor}


# --- simulations -----------------------------------------------------------

def create_simulation(
    lat: Any,
    lng: Any,
    accuracy: Any = None,
    battery: Any = None,
    device: Optional[Dict[str, Any]] = None,
    actor_ref: Any = None,
) -> Dict[str, str]:
    """Open a synthetic incident for drills; it shares the folio sequence."""
    return _new_incident(
        status=S.SIMULATION,
        citizen_ref=None,
        actor_ref=_ref(actor_ref),
        lat=lat,
        lng=lng,
        accuracy=accuracy,
        battery=battery,
        device=device,
        is_simulated=True,
        is_demo=True,
        new_event=EventType.SIM_NEW,
    )


def set_simulation_status(incident_id: str, command: Any, actor_ref: Any = None) -> Dict[str, str]:
    """Pause, resume or close a simulation. Closing a closed one is a no-op."""
    if not isinstance(command, Command):
        command = simulation_command(command)
    actor = _ref(actor_ref)
    hub = get_hub()

    with unit_of_work() as uow:
        incident = assignment_service.lock_incident(incident_id)
        if not incident.is_simulated:
            raise ConflictError(f"incident {incident.id} is not a simulation")
        prev = incident.status
        target = next_status(prev, command)
        if target.value == prev:
            return {"status": prev}

        now = utcnow()
        incident.status = target.value
        incident.updated_at = now
        patch: Dict[str, Any] = {"status": target.value, "meta": {"simStatus": _SIM_META[target]}}
        if target is S.CLOSED:
            incident.ended_at = now
            patch["endedAt"] = isoformat(now)
        event_log.append(incident.id, _SIM_EVENTS[command], actor,
                         payload={"from": prev, "to": target.value, "sim_status": _SIM_META[target]}, at=now)
        uow.after_commit(hub.incident_patch, incident.id, patch)
        uow.after_commit(audit.log_action, actor, "simulation.status", "incident", incident.id,
                         {"from": prev, "to": target.value})
    return {"status": target.value}


# --- queries ---------------------------------------------------------------

def assert_owner(incident_id: str, citizen_ref: Any) -> Incident:
    incident = db.session.get(Incident, incident_id)
    if incident is None:
        raise NotFoundError(f"incident {incident_id} not found", details={"incidentId": incident_id})
    if incident.citizen_ref is None or incident.citizen_ref != str(citizen_ref):
        raise ForbiddenError("incident belongs to another citizen")
    return incident


def get_incident(incident_id: str) -> Dict[str, Any]:
    """Full current state for a client resynchronising after (re)connect."""
    incident = db.session.get(Incident, incident_id)
    if incident is None:
        raise NotFoundError(f"incident {incident_id} not found", details={"incidentId": incident_id})
    data = incident.to_dict()
    data["locationHistory"] = event_log.location_history(incident.id)
    data["assignments"] = [a.to_dict() for a in assignment_service.list_for_incident(incident.id)]
    data["activeUnits"] = assignment_service.get_active_units_for_incident(incident.id)
    data["events"] = [ev.to_dict() for ev in event_log.list_events(incident.id)]
    return data


def list_incidents(status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    """Operations board listing, newest first."""
    query = Incident.query
    if status:
        wanted = [s.strip().upper() for s in str(status).split(",") if s.strip()]
        query = query.filter(Incident.status.in_(wanted))
    limit = max(1, min(int(limit or 50), 500))
    rows = query.order_by(Incident.started_at.desc(), Incident.id.desc()).limit(limit).all()
    return [row.to_dict() for row in rows]
