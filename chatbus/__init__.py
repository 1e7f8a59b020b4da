# chatbus - Horizontally scalable real-time chat
# Chat events are persisted, then fanned out to every instance over a shared event bus

__version__ = "0.1.0"

# Re-export commonly used components for convenience
from chatbus.protocol import (
    Envelope,
    EventType,
    InboundEvent,
)
from chatbus.bus import (
    EventBus,
    BusError,
    InMemoryBroker,
    InMemoryEventBus,
    create_bus,
    topic_for,
)
from chatbus.session import (
    Session,
    SessionRegistry,
)
from chatbus.orchestration import (
    AIReplyOrchestrator,
    ConversationOrchestrator,
    ValidationError,
    NotFoundError,
)

__all__ = [
    "__version__",
    # Protocol
    "Envelope",
    "EventType",
    "InboundEvent",
    # Event bus
    "EventBus",
    "BusError",
    "InMemoryBroker",
    "InMemoryEventBus",
    "create_bus",
    "topic_for",
    # Sessions
    "Session",
    "SessionRegistry",
    # Orchestration
    "AIReplyOrchestrator",
    "ConversationOrchestrator",
    "ValidationError",
    "NotFoundError",
]
