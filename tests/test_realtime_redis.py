import asyncio
import time

from redis.exceptions import ConnectionError as RedisConnectionError

from dispatch.realtime import broker as broker_module
from dispatch.realtime.broker import RedisBroker
from dispatch.realtime.hub import Hub


class _FakeBus:
    def __init__(self):
        self.subscribers = {}

    def add_subscriber(self, channel: str, q: asyncio.Queue) -> None:
        loop = asyncio.get_running_loop()
        self.subscribers.setdefault(channel, []).append((loop, q))

    def publish(self, channel: str, payload: str) -> None:
        # Publishers may run on the hub's relay worker thread.
        for loop, q in list(self.subscribers.get(channel, [])):
            loop.call_soon_threadsafe(q.put_nowait, {"type": "message", "data": payload})


class _FakeSyncRedis:
    _bus = _FakeBus()
    connect_kwargs = {}

    @classmethod
    def from_url(cls, _url: str, **kwargs):
        cls.connect_kwargs = kwargs
        return cls()

    def publish(self, channel: str, payload: str) -> None:
        self._bus.publish(channel, payload)


class _FakePubSub:
    def __init__(self, bus: _FakeBus):
        self._bus = bus
        self._queue = asyncio.Queue()

    async def subscribe(self, channel: str):
        self._bus.add_subscriber(channel, self._queue)

    async def listen(self):
        while True:
            yield await self._queue.get()

    async def unsubscribe(self, channel: str):
        return None

    async def close(self):
        return None


class _FakeAsyncRedisConn:
    def __init__(self, bus: _FakeBus):
        self._bus = bus

    def pubsub(self):
        return _FakePubSub(self._bus)

    async def close(self):
        return None


class _FakeAsyncRedisModule:
    @staticmethod
    def from_url(_url: str, **kwargs):
        return _FakeAsyncRedisConn(_FakeSyncRedis._bus)


def _patch_redis(monkeypatch):
    _FakeSyncRedis._bus = _FakeBus()
    monkeypatch.setattr(broker_module, "Redis", _FakeSyncRedis)
    monkeypatch.setattr(broker_module, "redis_async", _FakeAsyncRedisModule)


def test_redis_broker_publishes_to_two_listeners_under_50ms(monkeypatch):
    _patch_redis(monkeypatch)

    async def _run():
        broker = RedisBroker(redis_url="redis://fake")
        got = []
        done = asyncio.Event()

        async def _cb(payload):
            got.append(payload)
            if len(got) >= 2:
                done.set()

        task1 = asyncio.create_task(broker.listener("dispatch:realtime", _cb))
        task2 = asyncio.create_task(broker.listener("dispatch:realtime", _cb))

        await asyncio.sleep(0.01)
        t0 = time.perf_counter()
        ok = broker.publish_event("dispatch:realtime", {"event": "unitPatch", "room": "ops", "data": {"id": 3}})
        assert ok is True

        await asyncio.wait_for(done.wait(), timeout=0.5)
        elapsed_ms = (time.perf_counter() - t0) * 1000

        assert elapsed_ms < 50
        assert len(got) >= 2
        assert all(item.get("event") == "unitPatch" for item in got[:2])

        task1.cancel()
        task2.cancel()
        await asyncio.gather(task1, task2, return_exceptions=True)

    asyncio.run(_run())


def test_relayed_envelope_reaches_subscribers_of_another_hub(monkeypatch):
    _patch_redis(monkeypatch)

    async def _run():
        sender = Hub(relay=RedisBroker("redis://fake"), channel="dispatch:realtime")
        receiver = Hub(relay=RedisBroker("redis://fake"), channel="dispatch:realtime")
        ops = receiver.connect("staff1", "operator")
        receiver.join_ops(ops)

        task = asyncio.create_task(receiver.relay.listener(receiver.channel, receiver.on_relay_message))
        await asyncio.sleep(0.01)

        sender.incident_patch("INC-2025-000001", {"status": "ACK"})

        for _ in range(50):
            await asyncio.sleep(0.01)
            received = ops.drain()
            if received:
                break

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return received

    received = asyncio.run(_run())
    assert received == [{
        "event": "incidentPatch",
        "room": "ops",
        "data": {"id": "INC-2025-000001", "patch": {"status": "ACK"}},
    }]


def test_publish_reconnects_once_then_reports_failure(monkeypatch):
    calls = []

    class _DownRedis:
        @classmethod
        def from_url(cls, _url, **kwargs):
            return cls()

        def publish(self, channel, payload):
            calls.append(channel)
            raise RedisConnectionError("connection refused")

    monkeypatch.setattr(broker_module, "Redis", _DownRedis)

    assert RedisBroker("redis://fake").publish_event("dispatch:realtime", {"event": "x"}) is False
    assert calls == ["dispatch:realtime", "dispatch:realtime"]


def test_broker_without_url_is_disabled(monkeypatch):
    monkeypatch.delenv("REDIS_URL", raising=False)
    broker = RedisBroker("")
    assert broker.enabled is False
    assert broker.publish_event("dispatch:realtime", {"event": "x"}) is False


def test_publish_client_is_bounded_by_socket_timeouts(monkeypatch):
    _patch_redis(monkeypatch)

    assert RedisBroker("redis://fake", socket_timeout=0.5).publish_event("dispatch:realtime", {"event": "x"}) is True
    assert _FakeSyncRedis.connect_kwargs == {
        "decode_responses": True,
        "socket_timeout": 0.5,
        "socket_connect_timeout": 0.5,
    }
