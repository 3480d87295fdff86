"""Append-only incident timeline.

Events are written once inside the same transaction as the state change they
describe and are never updated afterwards. Reads order by ``(at, id)``, so a
late-arriving location ping with an older timestamp still lands in its
chronological place. The current-state columns of ``Incident`` are a cache
of this log.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..extensions import db
from ..helpers import isoformat, utcnow
from ..models import IncidentEvent


class EventType(str, Enum):
    NEW = "NEW"
    LOCATION = "LOCATION"
    ACK = "ACK"
    ASSIGN = "ASSIGN"
    STATUS = "STATUS"
    NOTE = "NOTE"
    CLOSE = "CLOSE"
    CANCEL = "CANCEL"
    SIM_NEW = "SIM_NEW"
    SIM_PAUSE = "SIM_PAUSE"
    SIM_RESUME = "SIM_RESUME"
    SIM_CLOSE = "SIM_CLOSE"


def append(
    incident_id: str,
    event_type: EventType,
    actor_ref: Optional[Any] = None,
    notes: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    at: Optional[datetime] = None,
) -> int:
    """Append one event and return its id (flushed, not committed)."""
    ev = IncidentEvent(
        incident_id=incident_id,
        type=EventType(event_type).value,
        at=at or utcnow(),
        actor_ref=str(actor_ref) if actor_ref is not None else None,
        notes=notes,
        payload=dict(payload) if payload else None,
        created_at=utcnow(),
    )
    db.session.add(ev)
    db.session.flush()
    return ev.id


def list_events(incident_id: str, types: Optional[Iterable[EventType]] = None) -> List[IncidentEvent]:
    query = IncidentEvent.query.filter(IncidentEvent.incident_id == incident_id)
    if types is not None:
        query = query.filter(IncidentEvent.type.in_([EventType(t).value for t in types]))
    return query.order_by(IncidentEvent.at.asc(), IncidentEvent.id.asc()).all()


def last_event(incident_id: str, event_type: EventType) -> Optional[IncidentEvent]:
    return (
        IncidentEvent.query
        .filter(IncidentEvent.incident_id == incident_id, IncidentEvent.type == EventType(event_type).value)
        .order_by(IncidentEvent.at.desc(), IncidentEvent.id.desc())
        .first()
    )


def location_history(incident_id: str) -> List[Dict[str, Any]]:
    """LOCATION pings in chronological order."""
    out: List[Dict[str, Any]] = []
    for ev in list_events(incident_id, [EventType.LOCATION]):
        payload = ev.payload or {}
        out.append({
            "lat": payload.get("lat"),
            "lng": payload.get("lng"),
            "accuracy": payload.get("accuracy"),
            "at": isoformat(ev.at),
        })
    return out
