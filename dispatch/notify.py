"""Push notifications to citizen devices via FCM.

Devices register their FCM token per citizen. After an incident changes
status the citizen's active devices get a push. Sending happens on the task
pool so the command never waits on FCM. Disabled unless ``PUSH_ENABLED``
and ``FCM_SERVER_KEY`` are both set.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import requests
from flask import current_app

from .errors import NotFoundError
from .extensions import db
from .helpers import utcnow
from .models import Device
from .services.uow import unit_of_work
from .tasks import submit_with_app

logger = logging.getLogger(__name__)

FCM_URL = "https://fcm.googleapis.com/fcm/send"

STATUS_MESSAGES = {
    "ACK": "Your report was received by a dispatcher.",
    "DISPATCHED": "A unit has been dispatched to your location.",
    "IN_PROGRESS": "Responders are attending your incident.",
    "CLOSED": "Your incident has been closed.",
    "CANCELED": "Your incident was canceled.",
}


def register_device(citizen_ref: Any, fcm_token: str, platform: Optional[str] = None) -> int:
    """Register (or re-activate and re-own) a device token. Returns the device id."""
    with unit_of_work():
        device = Device.query.filter_by(fcm_token=fcm_token).first()
        if device is None:
            device = Device(fcm_token=fcm_token, citizen_ref=str(citizen_ref))
            db.session.add(device)
        device.citizen_ref = str(citizen_ref)
        device.platform = platform
        device.active = True
        device.updated_at = utcnow()
        db.session.flush()
        device_id = device.id
    return device_id


def deactivate_device(citizen_ref: Any, device_id: int) -> None:
    with unit_of_work():
        device = db.session.get(Device, device_id)
        if device is None or device.citizen_ref != str(citizen_ref):
            raise NotFoundError("device not found")
        device.active = False


def device_tokens(citizen_ref: Any) -> List[str]:
    rows = Device.query.filter_by(citizen_ref=str(citizen_ref), active=True).all()
    return [row.fcm_token for row in rows]


def push_enabled() -> bool:
    return bool(current_app.config.get("PUSH_ENABLED") and current_app.config.get("FCM_SERVER_KEY"))


def send_push(title: str, body: str, tokens: List[str], data: Optional[Dict[str, str]] = None) -> Dict[str, int]:
    """Send one notification to a list of tokens.

    Returns ``{"sent": n}``; transport errors are logged and count as zero.
    """
    if not tokens or not push_enabled():
        return {"sent": 0}
    headers = {
        "Authorization": f"key={current_app.config['FCM_SERVER_KEY']}",
        "Content-Type": "application/json",
    }
    payload: Dict[str, Any] = {
        "registration_ids": tokens,
        "notification": {"title": title, "body": body},
    }
    if data:
        payload["data"] = data
    try:
        resp = requests.post(FCM_URL, headers=headers, data=json.dumps(payload), timeout=5)
    except requests.RequestException as exc:
        logger.debug("FCM push error: %s", exc)
        return {"sent": 0}
    if not resp.ok:
        logger.debug("FCM push failed: %s %s", resp.status_code, resp.text)
        return {"sent": 0}
    try:
        return {"sent": int(resp.json().get("success") or 0)}
    except ValueError:
        return {"sent": 0}


def notify_status_change(incident_id: str, citizen_ref: Optional[str], status: str) -> None:
    """Queue a push about the incident's new status to the owner's devices."""
    if not citizen_ref or not push_enabled():
        return
    tokens = device_tokens(citizen_ref)
    if not tokens:
        return
    body = STATUS_MESSAGES.get(status, f"Status: {status}")
    app = current_app._get_current_object()
    submit_with_app(app, send_push, incident_id, body, tokens, {"incidentId": incident_id, "status": status})
