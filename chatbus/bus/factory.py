"""
Event Bus Factory

Environment-based configuration and factory for bus adapters.

Supported backends:
- memory: In-process broker (development/testing, single instance)
- redis: Redis Pub/Sub (multi-instance deployments)

Environment Variables:
- CHATBUS_BUS_BACKEND: "memory" or "redis" (default: "memory", or "redis"
  when CHATBUS_REDIS_URL is set)
- CHATBUS_REDIS_URL: Redis connection URL
- CHATBUS_BUS_RECONNECT_DELAY: Seconds to wait before re-subscribing
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum

from chatbus.bus.ports import EventBus
from chatbus.bus.memory import InMemoryBroker, InMemoryEventBus

logger = logging.getLogger(__name__)


class BusBackend(str, Enum):
    """Supported bus backends."""
    MEMORY = "memory"
    REDIS = "redis"


@dataclass
class BusSettings:
    """
    Configuration for the event bus.

    Attributes:
        backend: Bus backend type
        redis_url: Redis connection URL (redis backend)
        reconnect_delay_seconds: Listener back-off after a connection failure
    """
    backend: BusBackend = BusBackend.MEMORY
    redis_url: str | None = None
    reconnect_delay_seconds: float = 1.0


def settings_from_env() -> BusSettings:
    """Create BusSettings from environment variables."""
    redis_url = os.getenv("CHATBUS_REDIS_URL")
    default_backend = BusBackend.REDIS.value if redis_url else BusBackend.MEMORY.value
    backend = BusBackend(os.getenv("CHATBUS_BUS_BACKEND", default_backend).lower())

    return BusSettings(
        backend=backend,
        redis_url=redis_url,
        reconnect_delay_seconds=float(os.getenv("CHATBUS_BUS_RECONNECT_DELAY", "1.0")),
    )


def create_bus(
    settings: BusSettings,
    broker: InMemoryBroker | None = None,
) -> EventBus:
    """
    Create a bus adapter from settings.

    Args:
        settings: Bus configuration
        broker: Shared broker for the memory backend (a new one if None)

    Raises:
        ValueError: If the redis backend is selected without a URL
    """
    if settings.backend == BusBackend.REDIS:
        if not settings.redis_url:
            raise ValueError("redis_url required for the redis bus backend")

        from chatbus.bus.redis_bus import RedisEventBus

        logger.info(f"Using Redis bus at {settings.redis_url}")
        return RedisEventBus(
            redis_url=settings.redis_url,
            reconnect_delay_seconds=settings.reconnect_delay_seconds,
        )

    logger.info("Using in-memory bus")
    return InMemoryEventBus(broker=broker)


def create_bus_from_env() -> EventBus:
    """Convenience wrapper combining settings_from_env() and create_bus()."""
    return create_bus(settings_from_env())
