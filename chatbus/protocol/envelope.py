"""
Chat Event Envelope Model

Every event carried on the chat bus uses a fixed envelope structure:

    {"type": <event type>, "payload": <type-specific JSON>}

The routing key is not part of the envelope. It is the bus topic the
envelope was published on (``chat:{roomId}`` or ``chat:global``).

Why a fixed envelope?
- Subscribers can reject malformed traffic before touching the payload
- Transport event names mirror ``type`` so clients receive ``payload`` as-is
- Envelopes are immutable once built, so one instance can hand the same
  object to every local recipient
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """
    Outbound event types published on the bus.

    These are also the event names clients listen for.
    """
    # Message lifecycle
    RECEIVE_MESSAGE = "receive_message"
    MESSAGE_EDITED = "message_edited"
    MESSAGE_DELETED = "message_deleted"
    MESSAGE_READ = "message_read"

    # Presence (not persisted)
    TYPING = "typing"
    STOP_TYPING = "stop_typing"

    # Call signaling (not persisted)
    START_VIDEO_CALL = "start_video_call"
    END_VIDEO_CALL = "end_video_call"

    # AI replies
    RECEIVE_AI_MESSAGE = "receive_ai_message"
    ERROR_MESSAGE = "error_message"


class InboundEvent(str, Enum):
    """Event names accepted from clients."""
    REGISTER = "register"
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    SEND_MESSAGE = "send_message"
    EDIT_MESSAGE = "edit_message"
    DELETE_MESSAGE = "delete_message"
    MESSAGE_READ = "message_read"
    TYPING = "typing"
    STOP_TYPING = "stop_typing"
    START_VIDEO_CALL = "start_video_call"
    END_VIDEO_CALL = "end_video_call"
    AI_MESSAGE = "ai_message"


class Envelope(BaseModel):
    """
    Immutable unit of data carried on the bus.

    The payload shape depends on ``type``; see the builders below.
    """
    model_config = ConfigDict(frozen=True)

    type: EventType = Field(
        ...,
        description="Event type, also the client-facing event name"
    )
    payload: Any = Field(
        default=None,
        description="Type-specific JSON payload"
    )

    def to_json(self) -> str:
        """Serialize for the bus or a WebSocket frame."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> "Envelope":
        """
        Parse an envelope from JSON.

        Raises:
            pydantic.ValidationError: If the data is not JSON or lacks a valid type
        """
        return cls.model_validate_json(data)


class InboundFrame(BaseModel):
    """
    A frame received from a client connection.

    Same shape as an outbound envelope, but the type is free-form so that
    unknown events can be rejected with a proper error reply.
    """
    type: str
    payload: Any = None


# =============================================================================
# Envelope Builders
# =============================================================================

def create_receive_message(message: dict[str, Any]) -> Envelope:
    """Create a receive_message envelope for a populated message."""
    return Envelope(type=EventType.RECEIVE_MESSAGE, payload=message)


def create_message_edited(message: dict[str, Any]) -> Envelope:
    """Create a message_edited envelope for a populated message."""
    return Envelope(type=EventType.MESSAGE_EDITED, payload=message)


def create_message_deleted(message_id: str) -> Envelope:
    """Create a message_deleted envelope. Carries only the id."""
    return Envelope(type=EventType.MESSAGE_DELETED, payload={"messageId": message_id})


def create_message_read(message_id: str) -> Envelope:
    """Create a message_read envelope."""
    return Envelope(type=EventType.MESSAGE_READ, payload={"messageId": message_id})


def create_typing(user_id: str, stopped: bool = False) -> Envelope:
    """Create a typing or stop_typing envelope. The payload is the bare user id."""
    event_type = EventType.STOP_TYPING if stopped else EventType.TYPING
    return Envelope(type=event_type, payload=user_id)


def create_video_call(channel_id: str, ended: bool = False) -> Envelope:
    """Create a start_video_call or end_video_call envelope."""
    event_type = EventType.END_VIDEO_CALL if ended else EventType.START_VIDEO_CALL
    return Envelope(type=event_type, payload={"channelId": channel_id})


def create_receive_ai_message(message: dict[str, Any]) -> Envelope:
    """Create a receive_ai_message envelope for a populated AI reply."""
    return Envelope(type=EventType.RECEIVE_AI_MESSAGE, payload=message)


def create_error_message(message: str, code: str | None = None) -> Envelope:
    """
    Create an error_message envelope.

    Room-scoped AI failures carry only ``message``. Rejections sent back to
    a single caller also carry a machine-readable ``code``.
    """
    payload: dict[str, Any] = {"message": message}
    if code is not None:
        payload["code"] = code
    return Envelope(type=EventType.ERROR_MESSAGE, payload=payload)
