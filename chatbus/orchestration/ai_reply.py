"""
AI Reply Orchestrator

Handles ``ai_message``: a user asks the assistant to answer in a channel.

Flow:
1. Persist the user's message (already read, the assistant consumes it)
2. Load the channel's last HISTORY_LIMIT messages before it, oldest first
3. Map authors to roles: the AI identity is ``model``, everyone else ``user``
4. Append the user's text as the final turn and call the generation service
5. Persist the reply as the AI identity and publish ``receive_ai_message``

Any failure after validation becomes an ``error_message`` published to the
channel. Upstream status codes map to fixed user-facing texts; the failure
never propagates to the caller or tears down the connection.
"""

import asyncio
import logging
from typing import Any

from chatbus.bus.ports import BusError, EventBus, topic_for
from chatbus.llm.generation import ConversationTurn, GenerationError, GenerationService
from chatbus.orchestration.errors import ValidationError
from chatbus.protocol.envelope import (
    Envelope,
    create_error_message,
    create_receive_ai_message,
)
from chatbus.storage import (
    ConflictError,
    MessageRecord,
    SortOrder,
    StorageBundle,
    UserRecord,
    populate_message,
)

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 5

AI_USER_EMAIL = "ai-assistant@chatbus.local"
AI_USER_NAME = "AI Assistant"

# Sent to the model when the user's text is empty
PLACEHOLDER_TEXT = "Hello"

GENERIC_FAILURE_MESSAGE = "Failed to generate AI response. Please try again."

# (lowest status, highest status or None for unbounded, message), first match wins
UPSTREAM_ERROR_MESSAGES: tuple[tuple[int, int | None, str], ...] = (
    (400, 400, "The AI service rejected the request as invalid."),
    (401, 401, "The AI service rejected our credentials."),
    (403, 403, "The AI service rejected our credentials."),
    (404, 404, "The AI model could not be found."),
    (429, 429, "Rate limit exceeded. Please wait a moment and try again."),
    (500, None, "The AI service is having problems. Please try again later."),
)


def error_message_for_status(status_code: int | None) -> str:
    """User-facing text for an upstream failure status."""
    if status_code is not None:
        for low, high, message in UPSTREAM_ERROR_MESSAGES:
            if status_code >= low and (high is None or status_code <= high):
                return message
    return GENERIC_FAILURE_MESSAGE


class AIReplyOrchestrator:
    """
    Generates assistant replies in a channel.

    The AI identity is found or created on first use and cached. Creation
    is guarded by a lock; when another process wins the race the existing
    user is read back by email.
    """

    def __init__(
        self,
        storage: StorageBundle,
        bus: EventBus,
        generator: GenerationService,
        history_limit: int = HISTORY_LIMIT,
    ):
        self._storage = storage
        self._bus = bus
        self._generator = generator
        self._history_limit = history_limit

        self._ai_user: UserRecord | None = None
        self._identity_lock = asyncio.Lock()

    async def ensure_ai_user(self) -> UserRecord:
        """Find or create the AI identity."""
        if self._ai_user is not None:
            return self._ai_user

        async with self._identity_lock:
            if self._ai_user is not None:
                return self._ai_user

            user = await self._storage.users.find_by_email(AI_USER_EMAIL)
            if user is None:
                try:
                    user = await self._storage.users.create(
                        full_name=AI_USER_NAME,
                        email=AI_USER_EMAIL,
                    )
                    logger.info(f"Created AI identity {user.id}")
                except ConflictError:
                    user = await self._storage.users.find_by_email(AI_USER_EMAIL)
                    if user is None:
                        raise

            self._ai_user = user
            return user

    async def handle(self, data: dict[str, Any]) -> Envelope:
        """
        Run the AI reply flow.

        Returns:
            The published envelope: receive_ai_message on success,
            error_message otherwise

        Raises:
            ValidationError: channelId or senderId is missing
        """
        channel_id = data.get("channelId")
        sender_id = data.get("senderId")
        if not channel_id or not sender_id:
            raise ValidationError("channelId and senderId are required")

        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            text = PLACEHOLDER_TEXT

        try:
            envelope = await self._reply(channel_id, sender_id, text)
        except GenerationError as e:
            logger.warning(f"AI reply failed in {channel_id} (status={e.status_code}): {e}")
            envelope = create_error_message(error_message_for_status(e.status_code))
        except Exception as e:
            logger.error(f"AI reply failed in {channel_id}: {e}", exc_info=True)
            envelope = create_error_message(GENERIC_FAILURE_MESSAGE)

        try:
            await self._bus.publish(topic_for(channel_id), envelope)
        except BusError as e:
            logger.error(f"Could not publish {envelope.type.value} to {channel_id}: {e}")

        return envelope

    async def _reply(self, channel_id: str, sender_id: str, text: str) -> Envelope:
        user_message = await self._storage.messages.create(
            channel_id=channel_id,
            sender_id=sender_id,
            text=text,
            is_read=True,
        )

        ai_user = await self.ensure_ai_user()
        history = await self._history(channel_id, exclude_id=user_message.id)

        turns = [
            ConversationTurn(
                role="model" if record.sender_id == ai_user.id else "user",
                text=record.text,
            )
            for record in history
            if record.text
        ]
        turns.append(ConversationTurn(role="user", text=text))

        reply_text = await self._generator.generate(turns)

        reply = await self._storage.messages.create(
            channel_id=channel_id,
            sender_id=ai_user.id,
            text=reply_text,
        )
        logger.debug(f"AI reply {reply.id} in {channel_id} ({len(turns)} turns of context)")

        message = await populate_message(reply, self._storage)
        return create_receive_ai_message(message)

    async def _history(self, channel_id: str, exclude_id: str) -> list[MessageRecord]:
        """The channel's latest messages before ``exclude_id``, oldest first."""
        recent = await self._storage.messages.find(
            {"channel_id": channel_id},
            sort=SortOrder.NEWEST_FIRST,
            limit=self._history_limit + 1,
        )
        recent = [record for record in recent if record.id != exclude_id][: self._history_limit]
        recent.reverse()
        return recent
