"""Citizen incident routes."""

from __future__ import annotations

from flask import jsonify

from . import bp
from ..helpers import CITIZEN_ROLE, require_role
from ..schemas import CancelSchema, IncidentCreateSchema, LocationPushSchema, parse_body
from ..services import incident_service


@bp.post('')
def create_incident():
    actor = require_role(CITIZEN_ROLE)
    body = parse_body(IncidentCreateSchema)
    result = incident_service.create_incident(
        actor.actor_ref,
        body.lat,
        body.lng,
        accuracy=body.accuracy,
        battery=body.battery,
        device=body.device.model_dump() if body.device else None,
    )
    return jsonify(result), 201


@bp.post('/<incident_id>/location')
def push_location(incident_id: str):
    actor = require_role(CITIZEN_ROLE)
    body = parse_body(LocationPushSchema)
    incident_service.assert_owner(incident_id, actor.actor_ref)
    result = incident_service.push_location(
        incident_id, actor.actor_ref, body.lat, body.lng, accuracy=body.accuracy, observed_at=body.ts,
    )
    return jsonify(result), 202


@bp.post('/<incident_id>/cancel')
def cancel_incident(incident_id: str):
    actor = require_role(CITIZEN_ROLE)
    body = parse_body(CancelSchema)
    incident_service.assert_owner(incident_id, actor.actor_ref)
    return jsonify(incident_service.cancel_incident(incident_id, actor.actor_ref, reason=body.reason))


@bp.get('/<incident_id>')
def get_incident(incident_id: str):
    actor = require_role(CITIZEN_ROLE)
    incident_service.assert_owner(incident_id, actor.actor_ref)
    return jsonify(incident_service.get_incident(incident_id))
