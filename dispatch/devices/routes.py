"""Device routes: register and deactivate FCM tokens."""

from __future__ import annotations

from flask import jsonify

from . import bp
from .. import notify
from ..helpers import CITIZEN_ROLE, require_role
from ..schemas import DeviceRegisterSchema, parse_body


@bp.post('')
def register_device():
    actor = require_role(CITIZEN_ROLE)
    body = parse_body(DeviceRegisterSchema)
    device_id = notify.register_device(actor.actor_ref, body.fcm_token, platform=body.platform)
    return jsonify(device_id=device_id), 201


@bp.delete('/<int:device_id>')
def remove_device(device_id: int):
    actor = require_role(CITIZEN_ROLE)
    notify.deactivate_device(actor.actor_ref, device_id)
    return ('', 204)
