"""
Chat Orchestration Module

Validates inbound domain events, persists where required, and publishes
exactly one canonical envelope per event to the room's bus topic.

Key components:
- ConversationOrchestrator: Dispatch table for chat, typing and call events
- AIReplyOrchestrator: Context gathering, generation and failure mapping for ai_message
- ValidationError / NotFoundError: Rejections returned to the caller only
"""

from chatbus.orchestration.errors import (
    OrchestrationError,
    ValidationError,
    NotFoundError,
)
from chatbus.orchestration.ai_reply import (
    AIReplyOrchestrator,
    AI_USER_EMAIL,
    HISTORY_LIMIT,
    PLACEHOLDER_TEXT,
    UPSTREAM_ERROR_MESSAGES,
    error_message_for_status,
)
from chatbus.orchestration.conversation import (
    ConversationOrchestrator,
    ALLOWED_FILE_TYPES,
)

__all__ = [
    # Errors
    "OrchestrationError",
    "ValidationError",
    "NotFoundError",
    # AI replies
    "AIReplyOrchestrator",
    "AI_USER_EMAIL",
    "HISTORY_LIMIT",
    "PLACEHOLDER_TEXT",
    "UPSTREAM_ERROR_MESSAGES",
    "error_message_for_status",
    # Conversation
    "ConversationOrchestrator",
    "ALLOWED_FILE_TYPES",
]
