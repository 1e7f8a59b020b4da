"""
In-Memory Storage Adapters

Implementations for development and testing.
Uses asyncio locks for concurrent async safety.

These adapters store everything in memory and are lost on restart.
Use for:
- Local development
- Unit/integration testing
- Single-node deployments without persistence requirements
"""

import asyncio
import dataclasses
from typing import Any
from uuid import uuid4

from chatbus.storage.ports import (
    MessageStore,
    MessageRecord,
    FileRef,
    UserStore,
    UserRecord,
    SortOrder,
    ConflictError,
    check_filter,
    check_patch,
    utcnow,
)


def _new_id() -> str:
    return uuid4().hex


class InMemoryMessageStore(MessageStore):
    """
    In-memory message storage.

    Records are kept in insertion order, which is also creation order.
    Callers receive copies so that mutating a returned record never
    changes stored state.
    """

    def __init__(self):
        self._messages: dict[str, MessageRecord] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        channel_id: str,
        sender_id: str,
        text: str | None = None,
        file: FileRef | None = None,
        parent_message_id: str | None = None,
        is_read: bool = False,
    ) -> MessageRecord:
        record = MessageRecord(
            id=_new_id(),
            channel_id=channel_id,
            sender_id=sender_id,
            text=text,
            file=file,
            parent_message_id=parent_message_id,
            is_read=is_read,
            created_at=utcnow(),
        )
        async with self._lock:
            self._messages[record.id] = record
            return dataclasses.replace(record)

    async def get(self, message_id: str) -> MessageRecord | None:
        async with self._lock:
            record = self._messages.get(message_id)
            return dataclasses.replace(record) if record else None

    async def find(
        self,
        filter: dict[str, Any] | None = None,
        sort: SortOrder = SortOrder.OLDEST_FIRST,
        limit: int | None = None,
    ) -> list[MessageRecord]:
        filter = check_filter(filter)
        async with self._lock:
            matches = [
                record for record in self._messages.values()
                if all(getattr(record, key) == value for key, value in filter.items())
            ]
        # Stable sort keeps insertion order for equal timestamps
        matches.sort(key=lambda r: r.created_at)
        if sort == SortOrder.NEWEST_FIRST:
            matches.reverse()
        if limit is not None:
            matches = matches[:limit]
        return [dataclasses.replace(r) for r in matches]

    async def update(self, message_id: str, patch: dict[str, Any]) -> MessageRecord | None:
        check_patch(patch)
        async with self._lock:
            record = self._messages.get(message_id)
            if record is None:
                return None
            for key, value in patch.items():
                setattr(record, key, value)
            return dataclasses.replace(record)

    async def delete(self, message_id: str) -> bool:
        async with self._lock:
            return self._messages.pop(message_id, None) is not None


class InMemoryUserStore(UserStore):
    """In-memory user directory."""

    def __init__(self):
        self._users: dict[str, UserRecord] = {}
        self._by_email: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> UserRecord | None:
        async with self._lock:
            return self._users.get(user_id)

    async def get_many(self, user_ids: list[str]) -> dict[str, UserRecord]:
        async with self._lock:
            return {uid: self._users[uid] for uid in user_ids if uid in self._users}

    async def find_by_email(self, email: str) -> UserRecord | None:
        async with self._lock:
            user_id = self._by_email.get(email.lower())
            return self._users.get(user_id) if user_id else None

    async def create(
        self,
        full_name: str,
        email: str,
        profile_pic: str = "",
        user_id: str | None = None,
    ) -> UserRecord:
        async with self._lock:
            key = email.lower()
            if key in self._by_email:
                raise ConflictError(f"User with email {email} already exists")
            record = UserRecord(
                id=user_id or _new_id(),
                full_name=full_name,
                email=email,
                profile_pic=profile_pic,
            )
            if record.id in self._users:
                raise ConflictError(f"User {record.id} already exists")
            self._users[record.id] = record
            self._by_email[key] = record.id
            return record
