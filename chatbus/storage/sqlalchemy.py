"""
SQLAlchemy Storage Adapters

Message and user stores over an async_sessionmaker, shared by the
sqlite, postgresql and mysql backends. Each store method runs in its
own transaction, which is what gives every individual operation its
atomicity.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
)

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
from chatbus.storage.models import (
    MessageModel,
    UserModel,
)


# =============================================================================
# Converters
# =============================================================================

def _aware(dt: datetime) -> datetime:
    """SQLite drops tzinfo; stored values are always UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def file_to_json(file: FileRef | None) -> dict[str, Any] | None:
    if file is None:
        return None
    return {"url": file.url, "mime_type": file.mime_type, "filename": file.filename}


def file_from_json(data: dict[str, Any] | None) -> FileRef | None:
    if not data:
        return None
    return FileRef(
        url=data["url"],
        mime_type=data["mime_type"],
        filename=data.get("filename"),
    )


def message_model_to_record(model: MessageModel) -> MessageRecord:
    """Row to record."""
    return MessageRecord(
        id=model.id,
        channel_id=model.channel_id,
        sender_id=model.sender_id,
        text=model.text,
        file=file_from_json(model.file),
        parent_message_id=model.parent_message_id,
        is_edited=model.is_edited,
        is_read=model.is_read,
        created_at=_aware(model.created_at),
    )


def user_model_to_record(model: UserModel) -> UserRecord:
    """Row to record."""
    return UserRecord(
        id=model.id,
        full_name=model.full_name,
        email=model.email,
        profile_pic=model.profile_pic,
        created_at=_aware(model.created_at),
    )


# =============================================================================
# SQLAlchemy Message Store
# =============================================================================

class SqlAlchemyMessageStore(MessageStore):
    """
    SQLAlchemy implementation of message storage.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self,
        channel_id: str,
        sender_id: str,
        text: str | None = None,
        file: FileRef | None = None,
        parent_message_id: str | None = None,
        is_read: bool = False,
    ) -> MessageRecord:
        model = MessageModel(
            id=uuid4().hex,
            channel_id=channel_id,
            sender_id=sender_id,
            text=text,
            file=file_to_json(file),
            parent_message_id=parent_message_id,
            is_edited=False,
            is_read=is_read,
            created_at=utcnow(),
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(model)
            return message_model_to_record(model)

    async def get(self, message_id: str) -> MessageRecord | None:
        async with self._session_factory() as session:
            model = await session.get(MessageModel, message_id)
            if model is None:
                return None
            return message_model_to_record(model)

    async def find(
        self,
        filter: dict[str, Any] | None = None,
        sort: SortOrder = SortOrder.OLDEST_FIRST,
        limit: int | None = None,
    ) -> list[MessageRecord]:
        filter = check_filter(filter)

        stmt = select(MessageModel)
        for key, value in filter.items():
            stmt = stmt.where(getattr(MessageModel, key) == value)

        if sort == SortOrder.NEWEST_FIRST:
            stmt = stmt.order_by(MessageModel.created_at.desc())
        else:
            stmt = stmt.order_by(MessageModel.created_at.asc())

        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [message_model_to_record(m) for m in result.scalars().all()]

    async def update(self, message_id: str, patch: dict[str, Any]) -> MessageRecord | None:
        check_patch(patch)
        async with self._session_factory() as session:
            async with session.begin():
                model = await session.get(MessageModel, message_id)
                if model is None:
                    return None

                for key, value in patch.items():
                    if key == "file":
                        value = file_to_json(value)
                    setattr(model, key, value)

            return message_model_to_record(model)

    async def delete(self, message_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(MessageModel).where(MessageModel.id == message_id)
                )
                return result.rowcount > 0


# =============================================================================
# SQLAlchemy User Store
# =============================================================================

class SqlAlchemyUserStore(UserStore):
    """
    SQLAlchemy implementation of the user directory.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, user_id: str) -> UserRecord | None:
        async with self._session_factory() as session:
            model = await session.get(UserModel, user_id)
            if model is None:
                return None
            return user_model_to_record(model)

    async def get_many(self, user_ids: list[str]) -> dict[str, UserRecord]:
        if not user_ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserModel).where(UserModel.id.in_(set(user_ids)))
            )
            return {m.id: user_model_to_record(m) for m in result.scalars().all()}

    async def find_by_email(self, email: str) -> UserRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserModel).where(func.lower(UserModel.email) == email.lower())
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return user_model_to_record(model)

    async def create(
        self,
        full_name: str,
        email: str,
        profile_pic: str = "",
        user_id: str | None = None,
    ) -> UserRecord:
        model = UserModel(
            id=user_id or uuid4().hex,
            full_name=full_name,
            email=email,
            profile_pic=profile_pic,
            created_at=utcnow(),
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(model)
        except IntegrityError as e:
            raise ConflictError(f"User {email} already exists") from e
        return user_model_to_record(model)
