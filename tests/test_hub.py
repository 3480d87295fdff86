import json
import threading
import time

from dispatch.realtime.hub import OPS_ROOM, Hub, incident_room
from dispatch.realtime.routes import handle_client_message
from dispatch.services import incident_service


def test_only_staff_may_join_ops():
    hub = Hub()
    citizen = hub.connect("7", "citizen")
    operator = hub.connect("staff1", "operator")

    assert hub.join_ops(citizen) == {"ok": False, "error": "forbidden"}
    assert hub.join_ops(operator) == {"ok": True, "room": "ops"}
    assert hub.members(OPS_ROOM) == [operator]


def test_join_by_room_name():
    hub = Hub()
    sub = hub.connect("staff1", "supervisor")
    assert hub.join(sub, "incident:INC-2025-000001") == {"ok": True, "room": "incident:INC-2025-000001"}
    assert hub.join(sub, "ops")["ok"] is True
    assert hub.join(sub, "lobby") == {"ok": False, "error": "unknown_room"}
    assert hub.join_incident(sub, "  ") == {"ok": False, "error": "bad_request"}


def test_incident_patch_reaches_ops_and_incident_room_only():
    hub = Hub()
    ops = hub.connect("staff1", "operator")
    hub.join_ops(ops)
    watcher = hub.connect("7", "citizen")
    hub.join_incident(watcher, "INC-2025-000001")
    other = hub.connect("8", "citizen")
    hub.join_incident(other, "INC-2025-000002")

    hub.incident_patch("INC-2025-000001", {"status": "ACK"})

    expected = {"id": "INC-2025-000001", "patch": {"status": "ACK"}}
    assert [e["data"] for e in ops.drain()] == [expected]
    assert watcher.drain() == [{"event": "incidentPatch", "room": incident_room("INC-2025-000001"), "data": expected}]
    assert other.drain() == []


def test_unit_patch_goes_to_ops_only():
    hub = Hub()
    ops = hub.connect("staff1", "operator")
    hub.join_ops(ops)
    citizen = hub.connect("7", "citizen")
    hub.join_incident(citizen, "INC-2025-000001")

    hub.unit_patch({"id": 3, "status": "available"})

    assert ops.drain() == [{"event": "unitPatch", "room": "ops", "data": {"id": 3, "status": "available"}}]
    assert citizen.drain() == []


def test_full_queue_drops_for_that_subscriber_only():
    hub = Hub(queue_size=2)
    slow = hub.connect("staff1", "operator")
    fast = hub.connect("staff2", "operator")
    hub.join_ops(slow)
    hub.join_ops(fast)

    for n in range(3):
        hub.unit_patch({"id": n})
        if n < 2:
            fast.drain()

    assert [e["data"]["id"] for e in slow.drain()] == [0, 1]
    assert slow.dropped == 1
    assert [e["data"]["id"] for e in fast.drain()] == [2]
    assert hub.get_stats()["dropped"] == 1


def test_failing_subscriber_does_not_block_others():
    hub = Hub()
    broken = hub.connect("staff1", "operator")
    healthy = hub.connect("staff2", "operator")
    hub.join_ops(broken)
    hub.join_ops(healthy)

    def _explode(_message):
        raise RuntimeError("socket gone")

    broken.deliver = _explode

    hub.unit_patch({"id": 1})

    assert len(healthy.drain()) == 1


def test_disconnect_removes_memberships():
    hub = Hub()
    sub = hub.connect("staff1", "operator")
    hub.join_ops(sub)
    hub.join_incident(sub, "INC-2025-000001")

    hub.disconnect(sub)

    assert hub.members(OPS_ROOM) == []
    stats = hub.get_stats()
    assert stats["subscribers"] == 0 and stats["rooms"] == {}


def test_publish_falls_back_to_local_delivery_when_relay_fails():
    class DownRelay:
        enabled = True

        def publish_event(self, channel, payload):
            return False

    hub = Hub(relay=DownRelay())
    ops = hub.connect("staff1", "operator")
    hub.join_ops(ops)

    hub.unit_patch({"id": 1})
    hub.flush(timeout=1)

    assert len(ops.drain()) == 1
    assert hub.get_stats()["relay_failures"] == 1


def test_publish_through_relay_skips_local_delivery():
    sent = []

    class Relay:
        enabled = True

        def publish_event(self, channel, payload):
            sent.append((channel, payload))
            return True

    hub = Hub(relay=Relay(), channel="test:rt")
    ops = hub.connect("staff1", "operator")
    hub.join_ops(ops)

    hub.unit_patch({"id": 1})
    hub.flush(timeout=1)

    assert sent == [("test:rt", {"event": "unitPatch", "room": "ops", "data": {"id": 1}})]
    assert ops.drain() == []


def test_publish_never_raises():
    class BrokenRelay:
        enabled = True

        def publish_event(self, channel, payload):
            raise RuntimeError("boom")

    hub = Hub(relay=BrokenRelay())
    ops = hub.connect("staff1", "operator")
    hub.join_ops(ops)

    hub.incident_patch("INC-2025-000001", {"status": "ACK"})
    hub.flush(timeout=1)

    assert len(ops.drain()) == 1
    assert hub.get_stats()["relay_failures"] == 2


class _SlowRelay:
    enabled = True

    def __init__(self, delay):
        self.delay = delay
        self.sent = []

    def publish_event(self, channel, payload):
        time.sleep(self.delay)
        self.sent.append(payload["event"])
        return True


def test_slow_relay_does_not_hold_up_the_publisher():
    relay = _SlowRelay(0.3)
    hub = Hub(relay=relay)

    started = time.perf_counter()
    hub.incident_new({"id": "INC-2025-000001", "lat": 1.0, "lng": 2.0, "createdAt": "x", "status": "NEW"})
    hub.unit_patch({"id": 1})
    assert time.perf_counter() - started < 0.2

    hub.flush(timeout=5)
    assert relay.sent == ["incidentNew", "incidentPatch", "unitPatch"]
    assert hub.get_stats()["published"] == 3


def test_slow_relay_does_not_hold_up_a_command(db_session, hub):
    relay = _SlowRelay(0.5)
    hub.relay = relay

    started = time.perf_counter()
    incident_id = incident_service.create_incident(7, 14.61, -90.53)["id"]
    assert time.perf_counter() - started < 0.4

    hub.flush(timeout=5)
    assert relay.sent == ["incidentNew", "incidentPatch"]
    assert incident_id.startswith("INC-")


def test_published_counter_is_exact_under_threads():
    hub = Hub()

    def _burst():
        for _ in range(500):
            hub.publish("ops", "unitPatch", {"id": 1})

    threads = [threading.Thread(target=_burst) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert hub.get_stats()["published"] == 4000


def test_client_messages_subscribe_and_unsubscribe():
    hub = Hub()
    sub = hub.connect("staff1", "operator")

    assert handle_client_message(hub, sub, json.dumps({"action": "subscribe:ops"})) == {
        "ack": "subscribe:ops", "ok": True, "room": "ops",
    }
    reply = handle_client_message(hub, sub, {"action": "subscribe:incident", "id": "INC-2025-000001"})
    assert reply["ok"] is True and reply["room"] == "incident:INC-2025-000001"
    assert handle_client_message(hub, sub, {"action": "unsubscribe", "id": "INC-2025-000001"})["ok"] is True
    assert sub.rooms == {"ops"}
    assert handle_client_message(hub, sub, {"action": "ping"}) == {"ack": "ping", "ok": True}


def test_client_message_errors():
    hub = Hub()
    sub = hub.connect("staff1", "operator")
    assert handle_client_message(hub, sub, "{not json")["error"] == "bad_json"
    assert handle_client_message(hub, sub, "[1, 2]")["error"] == "bad_request"
    assert handle_client_message(hub, sub, {"action": "dance"}) == {
        "ack": "dance", "ok": False, "error": "unknown_action",
    }
    assert handle_client_message(hub, sub, {"action": "unsubscribe"})["error"] == "bad_request"


def test_citizen_may_only_watch_own_incident(db_session, hub):
    incident_id = incident_service.create_incident(7, 14.61, -90.53)["id"]
    owner = hub.connect("7", "citizen")
    stranger = hub.connect("8", "citizen")

    assert handle_client_message(hub, owner, {"action": "subscribe:incident", "id": incident_id})["ok"] is True
    assert handle_client_message(hub, stranger, {"action": "subscribe:incident", "id": incident_id}) == {
        "ack": "subscribe:incident", "ok": False, "error": "forbidden",
    }
    assert handle_client_message(hub, owner, {"action": "subscribe:ops"})["error"] == "forbidden"

    incident_service.acknowledge(incident_id, "staff1")

    assert [e["data"]["patch"] for e in owner.drain()] == [{"status": "ACK"}]
    assert stranger.drain() == []
