"""Redis broker for cross-process fan-out.

When several engine processes serve the same store, a command committed in
one process must reach WebSocket subscribers connected to another. Each hub
then publishes its envelopes to one Redis Pub/Sub channel, and every process
runs a listener that feeds received envelopes into its local hub.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Optional

import redis.asyncio as redis_async
from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "dispatch:realtime"


def get_redis_url() -> str:
    """Return REDIS_URL from Flask config or environment."""
    from flask import current_app, has_app_context

    if has_app_context():
        url = (current_app.config.get("REDIS_URL") or "").strip()
        if url:
            return url
    return (os.getenv("REDIS_URL") or "").strip()


class RedisBroker:
    """Publisher/subscriber broker over Redis Pub/Sub."""

    def __init__(self, redis_url: Optional[str] = None, socket_timeout: Optional[float] = 2.0) -> None:
        self.redis_url = (redis_url or get_redis_url()).strip()
        self.socket_timeout = socket_timeout
        self._sync_client: Optional[Redis] = None

    @property
    def enabled(self) -> bool:
        return bool(self.redis_url)

    def _connect(self) -> Redis:
        return Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )

    def _get_sync_client(self) -> Optional[Redis]:
        if not self.redis_url:
            return None
        if self._sync_client is None:
            # One client per process, reused by every publish.
            self._sync_client = self._connect()
        return self._sync_client

    def publish_event(self, channel: str, payload: Dict[str, Any]) -> bool:
        """Publish a payload dict into channel. Returns False on failure."""
        client = self._get_sync_client()
        if client is None:
            return False

        body = json.dumps(payload, ensure_ascii=False, default=str)
        try:
            client.publish(channel, body)
            return True
        except RedisError:
            # Stale connection: reconnect once and retry.
            try:
                self._sync_client = self._connect()
                self._sync_client.publish(channel, body)
                return True
            except RedisError:
                logger.warning("redis publish to %s failed", channel, exc_info=True)
                return False

    async def listener(
        self,
        channel: str,
        on_message: Callable[[Dict[str, Any]], Awaitable[None]],
    ) -> None:
        """Listen on channel until cancelled and pass decoded payloads to callback."""
        if not self.redis_url:
            return

        # No read timeout here: the subscription idles between messages.
        redis_conn = redis_async.from_url(
            self.redis_url, decode_responses=True, socket_connect_timeout=self.socket_timeout
        )
        pubsub = redis_conn.pubsub()
        await pubsub.subscribe(channel)
        try:
            async for msg in pubsub.listen():
                if not msg or msg.get("type") != "message":
                    continue
                raw = msg.get("data")
                if not raw:
                    continue
                try:
                    payload = json.loads(raw)
                except ValueError:
                    logger.debug("dropping undecodable relay message")
                    continue
                if isinstance(payload, dict):
                    await on_message(payload)
        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.close()
                await redis_conn.close()
            except RedisError:
                logger.debug("redis listener cleanup failed", exc_info=True)
