"""Operations routes.

Thin wrappers: resolve the staff actor, validate the body, call the service
and serialise its result. Errors raised by services are turned into JSON by
the application-wide DispatchError handler.
"""

from __future__ import annotations

from flask import jsonify, request

from . import bp
from .. import audit
from ..helpers import require_role, require_staff
from ..schemas import (
    AssignSchema,
    NoteSchema,
    SimulationCreateSchema,
    SimulationStatusSchema,
    StatusChangeSchema,
    UnitCreateSchema,
    UnitUpdateSchema,
    parse_body,
)
from ..services import incident_service, unit_service


# --- incidents ---------------------------------------------------------------

@bp.get('/incidents')
def list_incidents():
    require_staff()
    return jsonify(items=incident_service.list_incidents(
        status=request.args.get('status'),
        limit=request.args.get('limit', 50, type=int),
    ))


@bp.get('/incidents/<incident_id>')
def get_incident(incident_id: str):
    require_staff()
    return jsonify(incident_service.get_incident(incident_id))


@bp.post('/incidents/<incident_id>/ack')
def acknowledge(incident_id: str):
    actor = require_staff()
    return jsonify(incident_service.acknowledge(incident_id, actor.actor_ref))


@bp.post('/incidents/<incident_id>/assign')
def assign_unit(incident_id: str):
    actor = require_staff()
    body = parse_body(AssignSchema)
    return jsonify(incident_service.assign_unit(
        incident_id, body.unit_id, actor.actor_ref, note=body.note, exclusive=body.exclusive,
    ))


@bp.post('/incidents/<incident_id>/status')
def set_status(incident_id: str):
    actor = require_staff()
    body = parse_body(StatusChangeSchema)
    return jsonify(incident_service.set_status(incident_id, actor.actor_ref, body.status, reason=body.reason))


@bp.post('/incidents/<incident_id>/notes')
def add_note(incident_id: str):
    actor = require_staff()
    body = parse_body(NoteSchema)
    return jsonify(incident_service.add_note(incident_id, actor.actor_ref, body.text)), 201


# --- units -------------------------------------------------------------------

@bp.get('/units')
def list_units():
    require_staff()
    return jsonify(items=unit_service.list_units(
        status=request.args.get('status'),
        type=request.args.get('type'),
    ))


@bp.post('/units')
def create_unit():
    require_role('supervisor', 'admin')
    body = parse_body(UnitCreateSchema)
    return jsonify(unit_service.create_unit(body.name, body.type, plate=body.plate, active=body.active)), 201


@bp.patch('/units/<int:unit_id>')
def update_unit(unit_id: int):
    actor = require_staff()
    body = parse_body(UnitUpdateSchema)
    return jsonify(unit_service.update_unit(unit_id, body.changes(), force=body.force, actor_ref=actor.actor_ref))


@bp.get('/units/<int:unit_id>/active-assignment')
def active_assignment(unit_id: int):
    require_staff()
    return jsonify(assignment=unit_service.get_active_assignment(unit_id))


# --- simulations -------------------------------------------------------------

@bp.post('/simulations')
def create_simulation():
    actor = require_role('supervisor', 'admin')
    body = parse_body(SimulationCreateSchema)
    result = incident_service.create_simulation(
        body.lat,
        body.lng,
        accuracy=body.accuracy,
        battery=body.battery,
        device=body.device.model_dump() if body.device else None,
        actor_ref=actor.actor_ref,
    )
    return jsonify(result), 201


@bp.post('/simulations/<incident_id>/status')
def simulation_status(incident_id: str):
    actor = require_role('supervisor', 'admin')
    body = parse_body(SimulationStatusSchema)
    return jsonify(incident_service.set_simulation_status(incident_id, body.status, actor_ref=actor.actor_ref))


# --- audit -------------------------------------------------------------------

@bp.get('/audit')
def audit_trail():
    require_role('supervisor', 'admin')
    rows = audit.recent(
        limit=request.args.get('limit', 100, type=int),
        entity=request.args.get('entity'),
        entity_id=request.args.get('entity_id'),
    )
    return jsonify(items=[row.to_dict() for row in rows])
