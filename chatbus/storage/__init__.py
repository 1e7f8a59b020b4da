# Storage Layer
# Pluggable persistence for chat messages and users
#
# This module provides:
# - Port interfaces (ABCs) defining storage contracts
# - In-memory implementations for development/testing
# - SQLAlchemy implementations for production persistence
# - Reference resolution (sender/parent summaries)
# - Factory for configuration-based adapter selection

from .ports import (
    MessageStore,
    MessageRecord,
    FileRef,
    UserStore,
    UserRecord,
    SortOrder,
    StorageBundle,
    StorageError,
    NotFoundError,
    ConflictError,
)
from .populate import (
    populate_message,
    populate_messages,
    user_summary,
)
from .factory import (
    StorageSettings,
    StorageBackend,
    create_storage,
    create_storage_from_env,
    create_memory_storage,
    create_sqlite_storage,
    create_postgres_storage,
    settings_from_env,
)

__all__ = [
    # Ports
    "MessageStore",
    "MessageRecord",
    "FileRef",
    "UserStore",
    "UserRecord",
    "SortOrder",
    "StorageBundle",
    "StorageError",
    "NotFoundError",
    "ConflictError",
    # Projections
    "populate_message",
    "populate_messages",
    "user_summary",
    # Factory
    "StorageSettings",
    "StorageBackend",
    "create_storage",
    "create_storage_from_env",
    "create_memory_storage",
    "create_sqlite_storage",
    "create_postgres_storage",
    "settings_from_env",
]
