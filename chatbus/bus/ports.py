"""
Event Bus Port Interface

Abstract contract for cross-instance fan-out over a shared publish/subscribe
bus. The adapter holds no domain state: it serializes envelopes on the way
out and parses them on the way in.

Topic scheme:
- chat:{roomId} -> room-scoped events
- chat:global   -> delivered to every session on every instance

Each process subscribes once to the wildcard pattern ``chat:*`` instead of
subscribing per room, so rooms can come and go without subscribe churn.
Every instance receives every event; the local broadcaster discards the
ones with no local members.
"""

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from pydantic import ValidationError

from chatbus.protocol.envelope import Envelope

logger = logging.getLogger(__name__)


TOPIC_PREFIX = "chat:"
GLOBAL_ROOM = "global"
GLOBAL_TOPIC = f"{TOPIC_PREFIX}{GLOBAL_ROOM}"
SUBSCRIPTION_PATTERN = f"{TOPIC_PREFIX}*"

# (room_id, envelope) -> None
EnvelopeHandler = Callable[[str, Envelope], Awaitable[object]]


def topic_for(room_id: str) -> str:
    """Bus topic for a room."""
    if not room_id:
        raise ValueError("room_id is required")
    return f"{TOPIC_PREFIX}{room_id}"


def room_from_topic(topic: str) -> str | None:
    """Extract the room id suffix from a topic, or None if it is not a chat topic."""
    if not topic.startswith(TOPIC_PREFIX):
        return None
    room_id = topic[len(TOPIC_PREFIX):]
    return room_id or None


# =============================================================================
# Errors
# =============================================================================

class BusError(Exception):
    """Base exception for bus errors."""
    pass


class BusPublishError(BusError):
    """The bus could not accept a published envelope (e.g. unreachable)."""
    def __init__(self, topic: str, reason: str):
        self.topic = topic
        self.reason = reason
        super().__init__(f"Failed to publish to {topic}: {reason}")


# =============================================================================
# Event Bus
# =============================================================================

class EventBus(ABC):
    """
    Publish/subscribe adapter shared by all server instances.

    Implementations must preserve publish order per publisher per topic.
    """

    def __init__(self):
        self._handler: EnvelopeHandler | None = None
        self._pattern: str | None = None
        self._received_count = 0
        self._dropped_count = 0

    @property
    def is_subscribed(self) -> bool:
        return self._handler is not None

    @property
    def stats(self) -> dict:
        return {
            "subscribed_pattern": self._pattern,
            "received": self._received_count,
            "dropped": self._dropped_count,
        }

    @abstractmethod
    async def publish(self, topic: str, envelope: Envelope) -> int:
        """
        Publish an envelope to a topic.

        Args:
            topic: Bus topic (``chat:{roomId}`` or ``chat:global``)
            envelope: Envelope to serialize and send

        Returns:
            Number of subscribers that received it, as reported by the bus

        Raises:
            BusPublishError: If the bus is unreachable or rejects the publish
        """
        ...

    async def subscribe_pattern(self, pattern: str, handler: EnvelopeHandler) -> None:
        """
        Subscribe this process to a topic pattern.

        Only one subscription per adapter is allowed.

        Raises:
            BusError: If already subscribed
        """
        if self._handler is not None:
            raise BusError(f"Already subscribed to {self._pattern}")
        self._handler = handler
        self._pattern = pattern
        await self._start_subscription(pattern)
        logger.info(f"Subscribed to bus pattern {pattern}")

    @abstractmethod
    async def _start_subscription(self, pattern: str) -> None:
        """Backend-specific subscription start."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Stop the subscriber and release connections."""
        ...

    async def _dispatch(self, topic: str, data: str | bytes) -> None:
        """
        Parse one raw bus message and hand it to the subscriber.

        Malformed payloads and handler failures are logged and dropped so a
        single bad message never stops the subscriber loop.
        """
        self._received_count += 1

        if isinstance(topic, bytes):
            topic = topic.decode("utf-8", errors="replace")
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")

        room_id = room_from_topic(topic)
        if room_id is None:
            self._dropped_count += 1
            logger.warning(f"Dropping message on unexpected topic {topic!r}")
            return

        try:
            envelope = Envelope.from_json(data)
        except ValidationError as e:
            self._dropped_count += 1
            logger.warning(f"Dropping malformed envelope on {topic}: {e.error_count()} error(s)")
            return

        if self._handler is None:
            return

        try:
            await self._handler(room_id, envelope)
        except Exception as e:
            logger.error(f"Bus handler failed for {envelope.type.value} on {topic}: {e}")
