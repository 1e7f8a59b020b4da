# Event Bus
# Cross-instance fan-out of chat envelopes over a shared pub/sub bus
#
# This module provides:
# - Port interface (EventBus) and topic helpers
# - In-memory broker for development/testing
# - Redis Pub/Sub adapter for multi-instance deployments
# - Factory for configuration-based adapter selection

from chatbus.bus.ports import (
    EventBus,
    EnvelopeHandler,
    BusError,
    BusPublishError,
    TOPIC_PREFIX,
    GLOBAL_ROOM,
    GLOBAL_TOPIC,
    SUBSCRIPTION_PATTERN,
    topic_for,
    room_from_topic,
)
from chatbus.bus.memory import (
    InMemoryBroker,
    InMemoryEventBus,
)
from chatbus.bus.factory import (
    BusBackend,
    BusSettings,
    create_bus,
    create_bus_from_env,
    settings_from_env,
)

__all__ = [
    # Ports
    "EventBus",
    "EnvelopeHandler",
    "BusError",
    "BusPublishError",
    "TOPIC_PREFIX",
    "GLOBAL_ROOM",
    "GLOBAL_TOPIC",
    "SUBSCRIPTION_PATTERN",
    "topic_for",
    "room_from_topic",
    # In-memory
    "InMemoryBroker",
    "InMemoryEventBus",
    # Factory
    "BusBackend",
    "BusSettings",
    "create_bus",
    "create_bus_from_env",
    "settings_from_env",
]
