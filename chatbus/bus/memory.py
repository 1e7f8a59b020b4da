"""
In-Memory Event Bus

Process-local implementation of the bus for development and testing.

Several ``InMemoryEventBus`` adapters can attach to one ``InMemoryBroker``
to simulate multiple server instances sharing a single bus. Envelopes are
serialized on publish and parsed on receipt, exactly like the Redis path,
so malformed-payload handling is exercised the same way.

Delivery is synchronous with respect to the publisher: ``publish`` returns
after every matching subscriber has handled the message, in publish order.
"""

import fnmatch
import logging

from chatbus.bus.ports import EventBus, BusPublishError
from chatbus.protocol.envelope import Envelope

logger = logging.getLogger(__name__)


class InMemoryBroker:
    """
    Shared in-process pub/sub hub.

    Pattern matching follows Redis glob semantics (``chat:*``).
    """

    def __init__(self):
        self._subscribers: list[tuple[str, "InMemoryEventBus"]] = []
        self._available = True
        self._published_count = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def published_count(self) -> int:
        return self._published_count

    def set_available(self, available: bool) -> None:
        """Simulate the bus going down or coming back."""
        self._available = available

    def attach(self, pattern: str, bus: "InMemoryEventBus") -> None:
        self._subscribers.append((pattern, bus))

    def detach(self, bus: "InMemoryEventBus") -> None:
        self._subscribers = [(p, b) for p, b in self._subscribers if b is not bus]

    async def publish_raw(self, topic: str, data: str) -> int:
        """Deliver raw data to every subscriber whose pattern matches."""
        if not self._available:
            raise BusPublishError(topic, "broker unavailable")

        self._published_count += 1
        receivers = 0
        for pattern, bus in list(self._subscribers):
            if fnmatch.fnmatchcase(topic, pattern):
                receivers += 1
                await bus._dispatch(topic, data)
        return receivers


class InMemoryEventBus(EventBus):
    """Bus adapter attached to an in-process broker."""

    def __init__(self, broker: InMemoryBroker | None = None):
        super().__init__()
        self._broker = broker or InMemoryBroker()

    @property
    def broker(self) -> InMemoryBroker:
        return self._broker

    async def publish(self, topic: str, envelope: Envelope) -> int:
        receivers = await self._broker.publish_raw(topic, envelope.to_json())
        logger.debug(f"Published {envelope.type.value} to {topic} (subscribers: {receivers})")
        return receivers

    async def _start_subscription(self, pattern: str) -> None:
        self._broker.attach(pattern, self)

    async def close(self) -> None:
        self._broker.detach(self)
