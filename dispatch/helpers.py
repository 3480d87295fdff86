"""
Small helpers shared by models, services and blueprints.

Time handling (naive UTC everywhere), coordinate parsing and range checks,
and resolution of the calling actor from the bearer token for the HTTP
surface.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, NamedTuple, Optional

from flask import request

from .errors import ForbiddenError, ValidationError

STAFF_ROLES = frozenset({"operator", "supervisor", "admin"})
CITIZEN_ROLE = "citizen"


def utcnow() -> datetime:
    """Current time as naive UTC (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_ts(raw: Any) -> Optional[datetime]:
    """Parse a client timestamp.

    Accepts a datetime, an ISO-8601 string (``Z`` suffix allowed) or a unix
    timestamp in seconds or milliseconds. Returns None for empty input and
    raises ValidationError for anything unparseable.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return to_naive_utc(raw)
    if isinstance(raw, bool):
        raise ValidationError("invalid timestamp")
    if isinstance(raw, (int, float)):
        seconds = float(raw)
        # 12+ digit values are milliseconds
        if abs(seconds) >= 1e11:
            seconds = seconds / 1000.0
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError) as exc:
            raise ValidationError("invalid timestamp") from exc
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_naive_utc(datetime.fromisoformat(text))
        except ValueError as exc:
            raise ValidationError("invalid timestamp") from exc
    raise ValidationError("invalid timestamp")


def parse_coord(value: Any) -> Optional[float]:
    """
    Convert a coordinate value to float.

    Returns None for empty values or conversion errors.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        s = str(value).strip()
        if s == "":
            return None
        return float(s)
    except (TypeError, ValueError):
        return None


def in_range(lat: Optional[float], lng: Optional[float]) -> bool:
    """Check that coordinates fall inside the valid range."""
    if lat is not None and not (-90 <= lat <= 90):
        return False
    if lng is not None and not (-180 <= lng <= 180):
        return False
    return True


def require_coords(lat: Any, lng: Any) -> tuple[float, float]:
    """Return ``(lat, lng)`` as floats or raise ValidationError."""
    flat = parse_coord(lat)
    flng = parse_coord(lng)
    if flat is None or flng is None:
        raise ValidationError("lat and lng are required")
    if not in_range(flat, flng):
        raise ValidationError("coordinates out of range")
    return flat, flng


class Actor(NamedTuple):
    actor_ref: str
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def current_actor() -> Actor:
    """Resolve the caller from ``Authorization: Bearer <token>``.

    Credentials are issued elsewhere; here we only verify the signed token.
    """
    from .realtime.tokens import verify_actor_token

    header = (request.headers.get("Authorization") or "").strip()
    token = header[7:].strip() if header.lower().startswith("bearer ") else ""
    claims = verify_actor_token(token) if token else None
    if not claims:
        raise ForbiddenError("authentication required")
    return Actor(str(claims["a"]), str(claims["r"]))


def require_role(*roles: str) -> Actor:
    """Return the current actor or raise ForbiddenError if the role is not allowed."""
    actor = current_actor()
    if roles and actor.role not in roles:
        raise ForbiddenError("role not allowed")
    return actor


def require_staff() -> Actor:
    return require_role(*sorted(STAFF_ROLES))
