# Wire Protocol
# Fixed event envelope carried on the bus and over client connections

from chatbus.protocol.envelope import (
    Envelope,
    EventType,
    InboundEvent,
    InboundFrame,
    create_receive_message,
    create_message_edited,
    create_message_deleted,
    create_message_read,
    create_typing,
    create_video_call,
    create_receive_ai_message,
    create_error_message,
)

__all__ = [
    "Envelope",
    "EventType",
    "InboundEvent",
    "InboundFrame",
    "create_receive_message",
    "create_message_edited",
    "create_message_deleted",
    "create_message_read",
    "create_typing",
    "create_video_call",
    "create_receive_ai_message",
    "create_error_message",
]
