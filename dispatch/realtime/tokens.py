"""Actor token helpers.

Signed tokens (itsdangerous) carry the ``(actor_ref, role)`` pair that the
HTTP surface and the WebSocket handshake need. Credential issuance itself
happens elsewhere; the issuing side only has to share the app secret.

Two flavours exist: long-lived actor tokens for ``Authorization: Bearer``,
and short-lived realtime tokens handed out by ``GET /api/realtime/token`` so
the long-lived one never ends up in a WebSocket URL.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import current_app

from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired


_ACTOR_SALT = "dispatch-actor"
_REALTIME_SALT = "dispatch-realtime"


def _serializer(secret_key: str, salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=secret_key, salt=salt)


def issue_token(secret_key: str, payload: Dict[str, Any], *, salt: str = _ACTOR_SALT) -> str:
    return _serializer(secret_key, salt).dumps(payload)


def verify_token(secret_key: str, token: str, *, max_age: int, salt: str = _ACTOR_SALT) -> Optional[Dict[str, Any]]:
    """Check a token. Returns the payload or None."""
    try:
        data = _serializer(secret_key, salt).loads(token, max_age=max_age)
        return data if isinstance(data, dict) else None
    except (BadSignature, SignatureExpired):
        return None


def _claims(actor_ref: Any, role: str) -> Dict[str, Any]:
    return {"a": str(actor_ref), "r": str(role), "v": 1}


def _valid(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not data or not data.get("a") or not data.get("r"):
        return None
    return data


def issue_actor_token(actor_ref: Any, role: str) -> str:
    return issue_token(current_app.secret_key, _claims(actor_ref, role))


def verify_actor_token(token: str) -> Optional[Dict[str, Any]]:
    max_age = int(current_app.config["ACTOR_TOKEN_TTL"].total_seconds())
    return _valid(verify_token(current_app.secret_key, token, max_age=max_age))


def issue_realtime_token(actor_ref: Any, role: str) -> str:
    return issue_token(current_app.secret_key, _claims(actor_ref, role), salt=_REALTIME_SALT)


def verify_realtime_token(token: str) -> Optional[Dict[str, Any]]:
    """Accept a realtime token, or an actor token for non-browser clients."""
    ttl = int(current_app.config.get("REALTIME_TOKEN_TTL_SEC", 600))
    data = _valid(verify_token(current_app.secret_key, token, max_age=ttl, salt=_REALTIME_SALT))
    return data or verify_actor_token(token)
