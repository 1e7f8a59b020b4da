"""
Conversation Orchestrator

Turns inbound domain events into canonical outbound envelopes.

Each event type is an independent, short-lived transaction:

    validate -> act (persist where required) -> publish exactly one envelope

| Event            | Action                             | Published            |
|------------------|------------------------------------|----------------------|
| send_message     | create message, populate           | receive_message      |
| edit_message     | set text, isEdited=true, populate  | message_edited       |
| delete_message   | hard delete                        | message_deleted      |
| message_read     | set isRead=true (idempotent)       | message_read         |
| typing           | none                               | typing               |
| stop_typing      | none                               | stop_typing          |
| start_video_call | none                               | start_video_call     |
| end_video_call   | none                               | end_video_call       |
| ai_message       | AI reply flow                      | receive_ai_message / error_message |

Envelopes go to topic ``chat:{channelId}`` and reach clients only through
the bus, including clients on this instance.

Precondition failures raise ValidationError or NotFoundError to the caller
and publish nothing. There is no optimistic locking: concurrent edits and
deletes resolve by the atomicity of each store call, and an update or
delete that finds the record already gone reports not found.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from chatbus.bus.ports import EventBus, topic_for
from chatbus.orchestration.errors import NotFoundError, ValidationError
from chatbus.protocol.envelope import (
    Envelope,
    InboundEvent,
    create_receive_message,
    create_message_edited,
    create_message_deleted,
    create_message_read,
    create_typing,
    create_video_call,
)
from chatbus.storage import (
    FileRef,
    StorageBundle,
    populate_message,
    populate_messages,
)

if TYPE_CHECKING:
    from chatbus.orchestration.ai_reply import AIReplyOrchestrator

logger = logging.getLogger(__name__)

# File types a message may reference
ALLOWED_FILE_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "application/pdf",
})

EventHandler = Callable[[dict[str, Any]], Awaitable[Envelope]]


def require(data: dict[str, Any], *fields: str) -> list[str]:
    """Return the values of required string fields, in order."""
    missing = [
        name for name in fields
        if not isinstance(data.get(name), str) or not data[name].strip()
    ]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    return [data[name] for name in fields]


def parse_file(value: Any) -> FileRef | None:
    """
    Parse a file reference ``{url, mimeType, filename}``.

    ``type`` and ``name`` are accepted as aliases for older clients.
    """
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError("file must be an object")

    url = value.get("url")
    mime_type = value.get("mimeType") or value.get("type")
    if not url or not mime_type:
        raise ValidationError("file requires url and mimeType")
    if mime_type not in ALLOWED_FILE_TYPES:
        raise ValidationError("Unsupported file type. Only images and PDFs are allowed.")

    return FileRef(
        url=url,
        mime_type=mime_type,
        filename=value.get("filename") or value.get("name"),
    )


class ConversationOrchestrator:
    """
    Dispatch table from inbound event name to validate/act/publish handler.

    Usage:
        orchestrator = ConversationOrchestrator(storage=bundle, bus=bus, ai=ai)
        envelope = await orchestrator.handle("send_message", {...})
    """

    def __init__(
        self,
        storage: StorageBundle,
        bus: EventBus,
        ai: "AIReplyOrchestrator | None" = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            storage: Message and user stores
            bus: Bus adapter used for every outbound envelope
            ai: AI reply flow; ai_message is rejected when None
        """
        self._storage = storage
        self._bus = bus
        self._ai = ai

        self._handlers: dict[str, EventHandler] = {
            InboundEvent.SEND_MESSAGE.value: self.send_message,
            InboundEvent.EDIT_MESSAGE.value: self.edit_message,
            InboundEvent.DELETE_MESSAGE.value: self.delete_message,
            InboundEvent.MESSAGE_READ.value: self.mark_read,
            InboundEvent.TYPING.value: self.typing,
            InboundEvent.STOP_TYPING.value: self.stop_typing,
            InboundEvent.START_VIDEO_CALL.value: self.start_video_call,
            InboundEvent.END_VIDEO_CALL.value: self.end_video_call,
            InboundEvent.AI_MESSAGE.value: self.ai_message,
        }

    @property
    def supported_events(self) -> list[str]:
        return list(self._handlers)

    async def handle(self, event: str, data: Any) -> Envelope:
        """
        Run the handler for an inbound event.

        Returns:
            The envelope that was published

        Raises:
            ValidationError: Unknown event, non-object payload, or missing field
            NotFoundError: Referenced message does not exist
            BusError: The envelope could not be published
        """
        handler = self._handlers.get(event)
        if handler is None:
            raise ValidationError(f"Unsupported event: {event}")
        if not isinstance(data, dict):
            raise ValidationError(f"Payload for {event} must be an object")
        return await handler(data)

    async def _publish(self, channel_id: str, envelope: Envelope) -> Envelope:
        await self._bus.publish(topic_for(channel_id), envelope)
        return envelope

    # =========================================================================
    # Persistent events
    # =========================================================================

    async def send_message(self, data: dict[str, Any]) -> Envelope:
        channel_id, sender_id = require(data, "channelId", "senderId")

        text = data.get("text")
        if text is not None and not isinstance(text, str):
            raise ValidationError("text must be a string")
        if text is not None and not text.strip():
            text = None
        file = parse_file(data.get("file"))
        if text is None and file is None:
            raise ValidationError("A message needs text or a file")

        parent_id = data.get("parentMessage") or None
        if parent_id is not None:
            if not isinstance(parent_id, str):
                raise ValidationError("parentMessage must be a message id")
            if await self._storage.messages.get(parent_id) is None:
                raise NotFoundError(f"Parent message {parent_id} not found")

        record = await self._storage.messages.create(
            channel_id=channel_id,
            sender_id=sender_id,
            text=text,
            file=file,
            parent_message_id=parent_id,
        )
        logger.debug(f"Message {record.id} created in {channel_id} by {sender_id}")

        message = await populate_message(record, self._storage)
        return await self._publish(channel_id, create_receive_message(message))

    async def edit_message(self, data: dict[str, Any]) -> Envelope:
        message_id, text = require(data, "messageId", "text")

        if await self._storage.messages.get(message_id) is None:
            raise NotFoundError(f"Message {message_id} not found")

        updated = await self._storage.messages.update(
            message_id,
            {"text": text, "is_edited": True},
        )
        if updated is None:
            # Deleted between the read and the write
            raise NotFoundError(f"Message {message_id} not found")

        message = await populate_message(updated, self._storage)
        return await self._publish(updated.channel_id, create_message_edited(message))

    async def delete_message(self, data: dict[str, Any]) -> Envelope:
        (message_id,) = require(data, "messageId")

        existing = await self._storage.messages.get(message_id)
        if existing is None:
            raise NotFoundError(f"Message {message_id} not found")

        if not await self._storage.messages.delete(message_id):
            raise NotFoundError(f"Message {message_id} not found")

        logger.debug(f"Message {message_id} deleted from {existing.channel_id}")
        return await self._publish(existing.channel_id, create_message_deleted(message_id))

    async def mark_read(self, data: dict[str, Any]) -> Envelope:
        (message_id,) = require(data, "messageId")

        existing = await self._storage.messages.get(message_id)
        if existing is None:
            raise NotFoundError(f"Message {message_id} not found")

        if not existing.is_read:
            if await self._storage.messages.update(message_id, {"is_read": True}) is None:
                raise NotFoundError(f"Message {message_id} not found")

        return await self._publish(existing.channel_id, create_message_read(message_id))

    # =========================================================================
    # Ephemeral events
    # =========================================================================

    async def typing(self, data: dict[str, Any]) -> Envelope:
        channel_id, user_id = require(data, "channelId", "userId")
        return await self._publish(channel_id, create_typing(user_id))

    async def stop_typing(self, data: dict[str, Any]) -> Envelope:
        channel_id, user_id = require(data, "channelId", "userId")
        return await self._publish(channel_id, create_typing(user_id, stopped=True))

    async def start_video_call(self, data: dict[str, Any]) -> Envelope:
        (channel_id,) = require(data, "channelId")
        return await self._publish(channel_id, create_video_call(channel_id))

    async def end_video_call(self, data: dict[str, Any]) -> Envelope:
        (channel_id,) = require(data, "channelId")
        return await self._publish(channel_id, create_video_call(channel_id, ended=True))

    # =========================================================================
    # AI replies
    # =========================================================================

    async def ai_message(self, data: dict[str, Any]) -> Envelope:
        if self._ai is None:
            raise ValidationError("AI replies are not enabled")
        return await self._ai.handle(data)

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_messages(self, channel_id: str) -> list[dict[str, Any]]:
        """Populated history of a channel in chronological order."""
        if not channel_id:
            raise ValidationError("channelId is required")
        records = await self._storage.messages.find({"channel_id": channel_id})
        return await populate_messages(records, self._storage)
