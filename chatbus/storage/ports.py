"""
Storage Port Interfaces

Abstract contracts for the user and message records the chat flows read
and write. Every method is a coroutine. The orchestrators are handed a
StorageBundle and never see which adapter sits behind it.

The message contract is intentionally narrow: create, get by id,
find by filter, update by id, delete by id. Every individual operation is
atomic; there is no optimistic locking across operations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Records
# =============================================================================

@dataclass
class FileRef:
    """Reference to an uploaded file held in external object storage."""
    url: str
    mime_type: str
    filename: str | None = None


@dataclass
class MessageRecord:
    """
    Stored chat message.

    A message always has a channel and a sender, and carries text, a file
    reference, or both. ``parent_message_id`` is a single-level reply
    reference, never a chain.
    """
    id: str
    channel_id: str
    sender_id: str
    text: str | None = None
    file: FileRef | None = None
    parent_message_id: str | None = None
    is_edited: bool = False
    is_read: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class UserRecord:
    """Stored user profile (only the fields chat projections need)."""
    id: str
    full_name: str
    email: str
    profile_pic: str = ""
    created_at: datetime = field(default_factory=utcnow)


class SortOrder(str, Enum):
    """Ordering for message queries, by creation time."""
    OLDEST_FIRST = "asc"
    NEWEST_FIRST = "desc"


# Fields a message filter may match on (equality)
MESSAGE_FILTER_FIELDS = frozenset({
    "id", "channel_id", "sender_id", "parent_message_id", "is_edited", "is_read",
})

# Fields a message patch may set
MESSAGE_PATCH_FIELDS = frozenset({"text", "file", "is_edited", "is_read"})


def check_filter(filter: dict[str, Any] | None) -> dict[str, Any]:
    """Validate filter keys, returning an empty dict for None."""
    filter = filter or {}
    unknown = set(filter) - MESSAGE_FILTER_FIELDS
    if unknown:
        raise ValueError(f"Unsupported filter field(s): {sorted(unknown)}")
    return filter


def check_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Validate patch keys."""
    unknown = set(patch) - MESSAGE_PATCH_FIELDS
    if unknown:
        raise ValueError(f"Unsupported patch field(s): {sorted(unknown)}")
    return patch


# =============================================================================
# Message Store
# =============================================================================

class MessageStore(ABC):
    """
    Storage interface for chat messages.
    """

    @abstractmethod
    async def create(
        self,
        channel_id: str,
        sender_id: str,
        text: str | None = None,
        file: FileRef | None = None,
        parent_message_id: str | None = None,
        is_read: bool = False,
    ) -> MessageRecord:
        """
        Create a new message.

        The store assigns ``id`` and ``created_at``. ``is_edited`` starts false.

        Raises:
            StorageError: If creation fails
        """
        ...

    @abstractmethod
    async def get(self, message_id: str) -> MessageRecord | None:
        """
        Get a message by id.

        Returns:
            Message record or None if not found (including after delete)
        """
        ...

    @abstractmethod
    async def find(
        self,
        filter: dict[str, Any] | None = None,
        sort: SortOrder = SortOrder.OLDEST_FIRST,
        limit: int | None = None,
    ) -> list[MessageRecord]:
        """
        Find messages matching every field in ``filter`` (equality).

        Args:
            filter: Field -> value, keys from MESSAGE_FILTER_FIELDS
            sort: Creation-time ordering
            limit: Max results (None = unlimited)

        Raises:
            ValueError: On an unsupported filter field
        """
        ...

    @abstractmethod
    async def update(self, message_id: str, patch: dict[str, Any]) -> MessageRecord | None:
        """
        Apply a partial update.

        Args:
            message_id: Target message
            patch: Field -> new value, keys from MESSAGE_PATCH_FIELDS

        Returns:
            The updated record, or None if the message does not exist

        Raises:
            ValueError: On an unsupported patch field
        """
        ...

    @abstractmethod
    async def delete(self, message_id: str) -> bool:
        """
        Hard-delete a message.

        Returns:
            True if a message was removed, False if it did not exist
        """
        ...


# =============================================================================
# User Store
# =============================================================================

class UserStore(ABC):
    """
    Storage interface for the user directory.

    Only the reads needed for message projections and the AI identity's
    find-or-create are part of this contract.
    """

    @abstractmethod
    async def get(self, user_id: str) -> UserRecord | None:
        ...

    @abstractmethod
    async def get_many(self, user_ids: list[str]) -> dict[str, UserRecord]:
        """Batch lookup. Missing ids are absent from the result."""
        ...

    @abstractmethod
    async def find_by_email(self, email: str) -> UserRecord | None:
        ...

    @abstractmethod
    async def create(
        self,
        full_name: str,
        email: str,
        profile_pic: str = "",
        user_id: str | None = None,
    ) -> UserRecord:
        """
        Create a user.

        Raises:
            ConflictError: If the email or id is already taken
        """
        ...


# =============================================================================
# Storage Bundle
# =============================================================================

@dataclass
class StorageBundle:
    """The message and user stores one instance runs on."""
    messages: MessageStore
    users: UserStore

    async def close(self) -> None:
        """Release connections held by the adapters. Nothing to do in memory."""


# =============================================================================
# Exceptions
# =============================================================================

class StorageError(Exception):
    """Base exception for storage errors."""
    pass


class NotFoundError(StorageError):
    """Record not found."""
    pass


class ConflictError(StorageError):
    """Conflict during write (e.g., duplicate key)."""
    pass
