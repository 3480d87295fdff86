"""Realtime endpoints: token issuance, diagnostics and the WebSocket feed."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict

from flask import current_app, jsonify, request
from simple_websocket import ConnectionClosed

from . import bp
from .hub import Hub, Subscriber, get_hub, incident_room
from .tokens import issue_realtime_token, verify_realtime_token
from ..extensions import db, sock
from ..helpers import CITIZEN_ROLE, current_actor, require_staff
from ..models import Incident

logger = logging.getLogger(__name__)

# RFC 6455 policy violation
_CLOSE_POLICY = 1008


@bp.get("/token")
def get_realtime_token():
    """Exchange the bearer token for a short-lived WebSocket token."""
    actor = current_actor()
    ttl = int(current_app.config.get("REALTIME_TOKEN_TTL_SEC", 600))
    tok = issue_realtime_token(actor.actor_ref, actor.role)
    scheme = "wss" if request.is_secure else "ws"
    return jsonify(token=tok, expires_in=ttl, ws_url=f"{scheme}://{request.host}/ws?token={tok}")


@bp.get("/stats")
def realtime_stats():
    require_staff()
    return jsonify(get_hub().get_stats())


def _may_watch(sub: Subscriber, incident_id: str) -> bool:
    if sub.is_staff:
        return True
    if sub.role != CITIZEN_ROLE:
        return False
    try:
        incident = db.session.get(Incident, incident_id)
        return incident is not None and incident.citizen_ref == sub.actor_ref
    finally:
        # The socket outlives this lookup; do not keep its transaction open.
        db.session.rollback()


def handle_client_message(hub: Hub, sub: Subscriber, raw: Any) -> Dict[str, Any]:
    """Apply one client message and build its acknowledgement.

    Messages: ``{"action": "subscribe:ops"}``,
    ``{"action": "subscribe:incident", "id": ...}`` and
    ``{"action": "unsubscribe", "room": ...}``.
    """
    try:
        msg = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except ValueError:
        return {"ack": None, "ok": False, "error": "bad_json"}
    if not isinstance(msg, dict):
        return {"ack": None, "ok": False, "error": "bad_request"}

    action = msg.get("action")
    if action == "subscribe:ops":
        result = hub.join_ops(sub)
    elif action == "subscribe:incident":
        incident_id = str(msg.get("id") or "").strip()
        if incident_id and not _may_watch(sub, incident_id):
            result = {"ok": False, "error": "forbidden"}
        else:
            result = hub.join_incident(sub, incident_id)
    elif action == "unsubscribe":
        room = str(msg.get("room") or "")
        if not room and msg.get("id"):
            room = incident_room(str(msg["id"]))
        result = hub.leave(sub, room) if room else {"ok": False, "error": "bad_request"}
    elif action == "ping":
        result = {"ok": True}
    else:
        result = {"ok": False, "error": "unknown_action"}
    return {"ack": action, **result}


@sock.route("/ws")
def ws_feed(ws):
    claims = verify_realtime_token(request.args.get("token", ""))
    if not claims:
        ws.close(reason=_CLOSE_POLICY, message="unauthorized")
        return

    hub = get_hub()
    sub = hub.connect(claims["a"], claims["r"])
    send_lock = threading.Lock()
    stop = threading.Event()

    def _send(text: str) -> None:
        with send_lock:
            ws.send(text)

    def _pump() -> None:
        while not stop.is_set():
            message = sub.next_message(timeout=1.0)
            if message is None:
                continue
            try:
                _send(message)
            except ConnectionClosed:
                break

    pump = threading.Thread(target=_pump, name=f"ws-{sub.connection_id[:8]}", daemon=True)
    pump.start()
    logger.info("ws connected %s (%s)", sub.actor_ref, sub.role)

    try:
        while True:
            raw = ws.receive()
            if raw is None:
                break
            _send(json.dumps(handle_client_message(hub, sub, raw), ensure_ascii=False))
    except ConnectionClosed:
        pass
    finally:
        stop.set()
        hub.disconnect(sub)
        logger.info("ws disconnected %s", sub.actor_ref)
