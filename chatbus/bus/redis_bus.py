"""
Redis Event Bus

Cross-instance fan-out over Redis Pub/Sub.

Design decisions:
- Async Redis client (non-blocking)
- One pattern subscription per process (``PSUBSCRIBE chat:*``)
- Publish failures are raised as BusPublishError, never swallowed
- The listener runs as a background task and reconnects after a delay
  if the connection drops; messages published while disconnected are lost
  (no replay)

Redis delivers messages from one publishing connection in order, which
gives per-publisher, per-room ordering.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from redis.asyncio import Redis
from redis.exceptions import RedisError

from chatbus.bus.ports import EventBus, BusPublishError
from chatbus.protocol.envelope import Envelope

if TYPE_CHECKING:
    from redis.asyncio.client import PubSub

logger = logging.getLogger(__name__)


class RedisEventBus(EventBus):
    """
    Redis Pub/Sub adapter.

    Usage:
        bus = RedisEventBus(redis_url="redis://localhost:6379")
        await bus.subscribe_pattern("chat:*", broadcaster.deliver)
        await bus.publish("chat:room-1", envelope)
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        redis: Redis | None = None,
        reconnect_delay_seconds: float = 1.0,
    ):
        """
        Initialize the Redis bus.

        Args:
            redis_url: Redis connection URL (ignored if ``redis`` is given)
            redis: Existing async client to reuse
            reconnect_delay_seconds: Wait before re-subscribing after a failure
        """
        super().__init__()
        self._redis_url = redis_url
        self._redis: Redis | None = redis
        self._owns_client = redis is None
        self._reconnect_delay = reconnect_delay_seconds
        self._listener_task: asyncio.Task | None = None
        self._closed = False
        self._publish_count = 0
        self._error_count = 0

    @property
    def stats(self) -> dict:
        return {
            **super().stats,
            "published": self._publish_count,
            "publish_errors": self._error_count,
        }

    def _client(self) -> Redis:
        if self._redis is None:
            # Raw bytes: _dispatch decodes, so a non-UTF-8 payload is dropped there
            self._redis = Redis.from_url(self._redis_url)
        return self._redis

    async def publish(self, topic: str, envelope: Envelope) -> int:
        if self._closed:
            raise BusPublishError(topic, "bus closed")

        try:
            receivers: int = await self._client().publish(topic, envelope.to_json())
        except (RedisError, OSError) as e:
            self._error_count += 1
            logger.error(f"Failed to publish {envelope.type.value} to {topic}: {e}")
            raise BusPublishError(topic, str(e)) from e

        self._publish_count += 1
        logger.debug(f"Published {envelope.type.value} to {topic} (subscribers: {receivers})")
        return receivers

    async def _start_subscription(self, pattern: str) -> None:
        self._listener_task = asyncio.create_task(
            self._listen_loop(pattern),
            name="chatbus_bus_listener",
        )

    async def _listen_loop(self, pattern: str) -> None:
        """Subscribe and dispatch until closed, re-subscribing on failure."""
        while not self._closed:
            pubsub: PubSub = self._client().pubsub()
            try:
                await pubsub.psubscribe(pattern)
                logger.info(f"Listening on {pattern}")
                async for message in pubsub.listen():
                    if message.get("type") != "pmessage":
                        continue
                    await self._dispatch(message["channel"], message["data"])
            except asyncio.CancelledError:
                break
            except (RedisError, OSError) as e:
                logger.error(f"Bus listener lost connection: {e}; retrying in {self._reconnect_delay}s")
                await asyncio.sleep(self._reconnect_delay)
            except Exception as e:
                logger.exception(f"Bus listener failed: {e}; re-subscribing in {self._reconnect_delay}s")
                await asyncio.sleep(self._reconnect_delay)
            finally:
                try:
                    await pubsub.aclose()
                except (RedisError, OSError) as e:
                    logger.debug(f"Error closing pubsub: {e}")

    async def close(self) -> None:
        self._closed = True
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None
