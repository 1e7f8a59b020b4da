"""
SQLAlchemy Models for Chat Storage

Two tables back the SQL adapters: users, holding the profile fields a
message projection needs, and messages, holding room history with
single-level reply threading. The same models run on aiosqlite, asyncpg
and aiomysql engines; the file attachment column is JSONB on PostgreSQL
and serialized text everywhere else.

References between messages and users are plain id columns without
foreign keys: deleting a parent message or a user never cascades, and
projections resolve missing references to empty summaries.
"""

from datetime import datetime, timezone
import json

from sqlalchemy import (
    String,
    Text,
    Boolean,
    DateTime,
    Index,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Custom Types
# =============================================================================

class JSONType(TypeDecorator):
    """Attachment metadata stored as JSONB where available, JSON text otherwise."""
    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "postgresql":
            return value
        return json.dumps(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "postgresql":
            return value
        if isinstance(value, str):
            return json.loads(value)
        return value


# =============================================================================
# Base
# =============================================================================

class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# =============================================================================
# User Model
# =============================================================================

class UserModel(Base):
    """User directory entry."""
    __tablename__ = "chat_users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    profile_pic: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )


# =============================================================================
# Message Model
# =============================================================================

class MessageModel(Base):
    """
    Chat message.

    ``file`` holds {"url", "mime_type", "filename"} when the message carries
    an uploaded file reference.
    """
    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Routing
    channel_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Content
    text: Mapped[str | None] = mapped_column(Text, nullable=True)
    file: Mapped[dict | None] = mapped_column(JSONType(), nullable=True)

    # Threading (single level)
    parent_message_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Flags
    is_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )

    # Indexes
    __table_args__ = (
        Index("ix_messages_channel_created", "channel_id", "created_at"),
    )
