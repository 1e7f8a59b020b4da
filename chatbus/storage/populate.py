"""
Reference Resolution

Resolves the sender and parent-message references of stored messages into
the embedded summaries clients render:

    sender:        {"id", "fullName", "profilePic"}
    parentMessage: {"id", "text", "file", "sender": {...}, "createdAt"}

Only one level of parent is resolved. A reference whose target no longer
exists resolves to a summary with empty profile fields (sender) or None
(parent), never an error.
"""

from typing import Any

from chatbus.storage.ports import (
    FileRef,
    MessageRecord,
    StorageBundle,
    UserRecord,
)


def user_summary(user_id: str, user: UserRecord | None) -> dict[str, Any]:
    """Projection of a user embedded into messages."""
    if user is None:
        return {"id": user_id, "fullName": None, "profilePic": None}
    return {"id": user.id, "fullName": user.full_name, "profilePic": user.profile_pic}


def file_summary(file: FileRef | None) -> dict[str, Any] | None:
    if file is None:
        return None
    return {"url": file.url, "mimeType": file.mime_type, "filename": file.filename}


def _message_view(
    record: MessageRecord,
    users: dict[str, UserRecord],
    parent: MessageRecord | None,
) -> dict[str, Any]:
    parent_view = None
    if parent is not None:
        parent_view = {
            "id": parent.id,
            "text": parent.text,
            "file": file_summary(parent.file),
            "sender": user_summary(parent.sender_id, users.get(parent.sender_id)),
            "createdAt": parent.created_at.isoformat(),
        }

    return {
        "id": record.id,
        "channelId": record.channel_id,
        "sender": user_summary(record.sender_id, users.get(record.sender_id)),
        "text": record.text,
        "file": file_summary(record.file),
        "parentMessage": parent_view,
        "isEdited": record.is_edited,
        "isRead": record.is_read,
        "createdAt": record.created_at.isoformat(),
    }


async def populate_messages(
    records: list[MessageRecord],
    storage: StorageBundle,
) -> list[dict[str, Any]]:
    """
    Populate a batch of messages.

    Parents and users are fetched once per distinct id.
    """
    parents: dict[str, MessageRecord] = {}
    for parent_id in {r.parent_message_id for r in records if r.parent_message_id}:
        parent = await storage.messages.get(parent_id)
        if parent is not None:
            parents[parent_id] = parent

    user_ids = {r.sender_id for r in records} | {p.sender_id for p in parents.values()}
    users = await storage.users.get_many(sorted(user_ids))

    return [
        _message_view(
            record,
            users,
            parents.get(record.parent_message_id) if record.parent_message_id else None,
        )
        for record in records
    ]


async def populate_message(record: MessageRecord, storage: StorageBundle) -> dict[str, Any]:
    """Populate the sender and parent references of one message."""
    views = await populate_messages([record], storage)
    return views[0]
