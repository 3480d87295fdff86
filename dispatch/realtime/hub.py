"""Room-based real-time fan-out.

The hub keeps ``room -> set of subscribers`` in memory. Rooms are the global
``ops`` feed (staff only) and one ``incident:<id>`` feed per incident. Every
subscriber owns a bounded queue that its connection drains on its own thread,
so publishing never blocks on a slow client: when a queue is full the message
is dropped for that subscriber only.

Delivery is best-effort and at-most-once. Nothing is persisted or replayed; a
client that reconnects re-reads current state over HTTP.

Services call the hub strictly after their transaction committed, and
:meth:`Hub.publish` never raises. With ``REDIS_URL`` configured the envelope
goes through Redis so that subscribers connected to other processes get it
too; each process feeds relayed envelopes to its local subscribers. Relay
publishes run on one background worker, so a slow Redis never holds up the
command that published. If Redis is unreachable the hub falls back to local
delivery.
"""

from __future__ import annotations

import asyncio
import json
import logging
import queue
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Set

from flask import Flask, current_app

from ..helpers import STAFF_ROLES
from .broker import DEFAULT_CHANNEL, RedisBroker

logger = logging.getLogger(__name__)

OPS_ROOM = "ops"
INCIDENT_ROOM_PREFIX = "incident:"

INCIDENT_NEW = "incidentNew"
INCIDENT_PATCH = "incidentPatch"
UNIT_PATCH = "unitPatch"

_EXTENSION_KEY = "dispatch_hub"


def incident_room(incident_id: str) -> str:
    return f"{INCIDENT_ROOM_PREFIX}{incident_id}"


class Subscriber:
    """One connection's membership and outbound queue."""

    def __init__(self, connection_id: str, actor_ref: str, role: str, maxsize: int = 256) -> None:
        self.connection_id = connection_id
        self.actor_ref = actor_ref
        self.role = role
        self.rooms: Set[str] = set()
        self.dropped = 0
        self._queue: "queue.Queue[str]" = queue.Queue(maxsize=maxsize)

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def deliver(self, message: str) -> bool:
        try:
            self._queue.put_nowait(message)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def next_message(self, timeout: Optional[float] = None) -> Optional[str]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Dict[str, Any]]:
        """Pop every queued envelope (decoded). Used by tests and diagnostics."""
        out: List[Dict[str, Any]] = []
        while True:
            try:
                out.append(json.loads(self._queue.get_nowait()))
            except queue.Empty:
                return out


class Hub:
    def __init__(
        self,
        relay: Optional[RedisBroker] = None,
        channel: str = DEFAULT_CHANNEL,
        queue_size: int = 256,
    ) -> None:
        self.relay = relay
        self.channel = channel
        self.queue_size = queue_size
        self._lock = threading.Lock()
        self._rooms: Dict[str, Set[Subscriber]] = {}
        self._subscribers: Dict[str, Subscriber] = {}
        self._published = 0
        self._relay_failures = 0
        self._relay_pool: Optional[ThreadPoolExecutor] = None

    # --- membership -------------------------------------------------------

    def connect(self, actor_ref: str, role: str, connection_id: Optional[str] = None) -> Subscriber:
        sub = Subscriber(connection_id or uuid.uuid4().hex, str(actor_ref), str(role), self.queue_size)
        with self._lock:
            self._subscribers[sub.connection_id] = sub
        return sub

    def _add(self, sub: Subscriber, room: str) -> None:
        with self._lock:
            self._rooms.setdefault(room, set()).add(sub)
            sub.rooms.add(room)

    def join_ops(self, sub: Subscriber) -> Dict[str, Any]:
        if not sub.is_staff:
            return {"ok": False, "error": "forbidden"}
        self._add(sub, OPS_ROOM)
        return {"ok": True, "room": OPS_ROOM}

    def join_incident(self, sub: Subscriber, incident_id: str) -> Dict[str, Any]:
        # Ownership is checked by the transport before it gets here.
        incident_id = str(incident_id or "").strip()
        if not incident_id:
            return {"ok": False, "error": "bad_request"}
        room = incident_room(incident_id)
        self._add(sub, room)
        return {"ok": True, "room": room}

    def join(self, sub: Subscriber, room: str) -> Dict[str, Any]:
        if room == OPS_ROOM:
            return self.join_ops(sub)
        if room.startswith(INCIDENT_ROOM_PREFIX):
            return self.join_incident(sub, room[len(INCIDENT_ROOM_PREFIX):])
        return {"ok": False, "error": "unknown_room"}

    def leave(self, sub: Subscriber, room: str) -> Dict[str, Any]:
        with self._lock:
            members = self._rooms.get(room)
            if members is not None:
                members.discard(sub)
                if not members:
                    del self._rooms[room]
            sub.rooms.discard(room)
        return {"ok": True, "room": room}

    def disconnect(self, sub: Subscriber) -> None:
        for room in list(sub.rooms):
            self.leave(sub, room)
        with self._lock:
            self._subscribers.pop(sub.connection_id, None)

    def members(self, room: str) -> List[Subscriber]:
        with self._lock:
            return list(self._rooms.get(room, ()))

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "subscribers": len(self._subscribers),
                "rooms": {room: len(members) for room, members in self._rooms.items()},
                "published": self._published,
                "dropped": sum(s.dropped for s in self._subscribers.values()),
                "relay": bool(self.relay is not None and self.relay.enabled),
                "relay_failures": self._relay_failures,
            }

    # --- publishing -------------------------------------------------------

    def publish(self, room: str, event: str, data: Dict[str, Any]) -> None:
        """Fan an event out to a room. Never raises, never waits on the relay."""
        envelope = {"event": event, "room": room, "data": data}
        try:
            with self._lock:
                self._published += 1
            if self.relay is not None and self.relay.enabled:
                self._relay_executor().submit(self._relay_publish, envelope)
                return
            self.deliver_local(envelope)
        except Exception:
            logger.warning("publish of %s to %s failed", event, room, exc_info=True)

    def _relay_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._relay_pool is None:
                # One worker keeps envelopes in publish order.
                self._relay_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="dispatch-relay-pub")
            return self._relay_pool

    def _relay_publish(self, envelope: Dict[str, Any]) -> None:
        try:
            if self.relay.publish_event(self.channel, envelope):
                return
        except Exception:
            logger.warning("relay publish of %s failed", envelope.get("event"), exc_info=True)
        with self._lock:
            self._relay_failures += 1
        self.deliver_local(envelope)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait until envelopes handed to the relay so far are out."""
        with self._lock:
            pool = self._relay_pool
        if pool is not None:
            pool.submit(lambda: None).result(timeout=timeout)

    def deliver_local(self, envelope: Dict[str, Any]) -> int:
        room = envelope.get("room")
        message = json.dumps(envelope, ensure_ascii=False, default=str)
        delivered = 0
        for sub in self.members(room):
            try:
                ok = sub.deliver(message)
            except Exception:
                logger.debug("delivery to %s failed", sub.connection_id, exc_info=True)
                continue
            if ok:
                delivered += 1
            else:
                logger.debug("queue full, dropped %s for %s", envelope.get("event"), sub.connection_id)
        return delivered

    async def on_relay_message(self, payload: Dict[str, Any]) -> None:
        if isinstance(payload.get("room"), str) and isinstance(payload.get("event"), str):
            self.deliver_local(payload)

    def incident_new(self, incident: Dict[str, Any]) -> None:
        """``incident``: ``{id, lat, lng, createdAt, status}`` (plus optional accuracy)."""
        self.publish(OPS_ROOM, INCIDENT_NEW, incident)
        patch: Dict[str, Any] = {"status": incident.get("status")}
        if incident.get("lat") is not None and incident.get("lng") is not None:
            patch["location"] = {
                "lat": incident["lat"],
                "lng": incident["lng"],
                "accuracy": incident.get("accuracy"),
            }
        self.publish(incident_room(incident["id"]), INCIDENT_PATCH, {"id": incident["id"], "patch": patch})

    def incident_patch(self, incident_id: str, patch: Dict[str, Any]) -> None:
        data = {"id": incident_id, "patch": patch}
        self.publish(OPS_ROOM, INCIDENT_PATCH, data)
        self.publish(incident_room(incident_id), INCIDENT_PATCH, data)

    def unit_patch(self, unit: Dict[str, Any]) -> None:
        """``unit``: ``{id, status?, lat?, lng?, lastSeen?}``; ops only."""
        self.publish(OPS_ROOM, UNIT_PATCH, unit)


def _start_relay_listener(hub: Hub) -> threading.Thread:
    def _run() -> None:
        try:
            asyncio.run(hub.relay.listener(hub.channel, hub.on_relay_message))
        except Exception:
            logger.exception("realtime relay listener stopped")

    thread = threading.Thread(target=_run, name="dispatch-relay", daemon=True)
    thread.start()
    return thread


def init_hub(app: Flask) -> Hub:
    """Create the app's hub; wire the Redis relay when REDIS_URL is set."""
    redis_url = (app.config.get("REDIS_URL") or "").strip()
    relay = RedisBroker(redis_url, socket_timeout=app.config.get("REDIS_SOCKET_TIMEOUT", 2.0)) if redis_url else None
    hub = Hub(
        relay=relay,
        channel=app.config.get("REALTIME_REDIS_CHANNEL") or DEFAULT_CHANNEL,
        queue_size=int(app.config.get("REALTIME_SUBSCRIBER_QUEUE_SIZE", 256)),
    )
    app.extensions[_EXTENSION_KEY] = hub
    if relay is not None and not app.config.get("TESTING"):
        _start_relay_listener(hub)
        app.logger.info("realtime relay on %s", hub.channel)
    return hub


def get_hub() -> Hub:
    return current_app.extensions[_EXTENSION_KEY]
