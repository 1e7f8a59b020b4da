"""
Storage Factory

Builds the StorageBundle an instance runs on, from explicit settings or
from CHATBUS_* environment variables.

Backends:
- memory: process-local dicts, lost on restart (tests, single-node demos)
- sqlite: aiosqlite file or in-memory database
- postgresql: asyncpg (shared by every instance in a deployment)
- mysql: aiomysql

Database URLs may be given with or without the async driver; the driver
is filled in from the dialect (``postgresql://`` -> ``postgresql+asyncpg://``).

Usage:
    bundle = await create_storage_from_env()

    bundle = await create_storage(StorageSettings(database_url="sqlite:///chat.db"))
    orchestrator = ConversationOrchestrator(storage=bundle, bus=bus)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .memory import InMemoryMessageStore, InMemoryUserStore
from .models import Base
from .ports import StorageBundle
from .sqlalchemy import SqlAlchemyMessageStore, SqlAlchemyUserStore

logger = logging.getLogger(__name__)


class StorageBackend(str, Enum):
    """Supported storage backends."""
    MEMORY = "memory"
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"

    @classmethod
    def from_url(cls, url: str) -> "StorageBackend":
        """Infer the backend from a database URL's dialect."""
        dialect = make_url(url).get_backend_name()
        backend = _DIALECT_ALIASES.get(dialect)
        if backend is None:
            raise ValueError(f"Unsupported database dialect: {dialect}")
        return backend


_DIALECT_ALIASES = {
    "sqlite": StorageBackend.SQLITE,
    "postgresql": StorageBackend.POSTGRESQL,
    "postgres": StorageBackend.POSTGRESQL,
    "mysql": StorageBackend.MYSQL,
}

# Async driver used for each SQL backend
_ASYNC_DRIVERS = {
    StorageBackend.SQLITE: "sqlite+aiosqlite",
    StorageBackend.POSTGRESQL: "postgresql+asyncpg",
    StorageBackend.MYSQL: "mysql+aiomysql",
}


def async_database_url(backend: StorageBackend, url: str) -> str:
    """Rewrite a database URL to use the backend's async driver."""
    parsed = make_url(url).set(drivername=_ASYNC_DRIVERS[backend])
    return parsed.render_as_string(hide_password=False)


@dataclass
class StorageSettings:
    """
    Storage configuration.

    Attributes:
        backend: Which adapter family to build
        database_url: Connection URL for the SQL backends
        pool_size: Pooled connections (server databases only)
        pool_max_overflow: Extra connections beyond the pool (server databases only)
        echo_sql: Log every SQL statement
        create_tables: Create missing tables at startup
    """
    backend: StorageBackend = StorageBackend.MEMORY
    database_url: str | None = None
    pool_size: int = 5
    pool_max_overflow: int = 10
    echo_sql: bool = False
    create_tables: bool = True


@dataclass
class SqlStorageBundle(StorageBundle):
    """StorageBundle that owns an async engine and disposes it on close."""
    engine: AsyncEngine | None = None

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None


def settings_from_env() -> StorageSettings:
    """
    Read StorageSettings from the environment.

    Environment variables:
        CHATBUS_STORAGE_BACKEND: "memory", "sqlite", "postgresql", "mysql"
        CHATBUS_DATABASE_URL: Database URL; selects the backend when
            CHATBUS_STORAGE_BACKEND is unset
        CHATBUS_POOL_SIZE: Connection pool size
        CHATBUS_POOL_MAX_OVERFLOW: Connection pool overflow
        CHATBUS_ECHO_SQL: "true" to log SQL
        CHATBUS_CREATE_TABLES: "false" to skip table creation
    """
    database_url = os.getenv("CHATBUS_DATABASE_URL") or None
    backend_name = os.getenv("CHATBUS_STORAGE_BACKEND")

    if backend_name:
        backend = StorageBackend(backend_name.lower())
    elif database_url:
        backend = StorageBackend.from_url(database_url)
    else:
        backend = StorageBackend.MEMORY

    return StorageSettings(
        backend=backend,
        database_url=database_url,
        pool_size=int(os.getenv("CHATBUS_POOL_SIZE", "5")),
        pool_max_overflow=int(os.getenv("CHATBUS_POOL_MAX_OVERFLOW", "10")),
        echo_sql=os.getenv("CHATBUS_ECHO_SQL", "").lower() == "true",
        create_tables=os.getenv("CHATBUS_CREATE_TABLES", "true").lower() != "false",
    )


def _build_engine(settings: StorageSettings) -> AsyncEngine:
    url = async_database_url(settings.backend, settings.database_url)

    options: dict[str, Any] = {"echo": settings.echo_sql}
    # SQLite uses a single-connection pool that takes no sizing options
    if settings.backend != StorageBackend.SQLITE:
        options["pool_size"] = settings.pool_size
        options["max_overflow"] = settings.pool_max_overflow
        options["pool_pre_ping"] = True

    return create_async_engine(url, **options)


async def create_storage(settings: StorageSettings) -> StorageBundle:
    """
    Build a storage bundle.

    Raises:
        ValueError: If a SQL backend is selected without a database URL
    """
    if settings.backend == StorageBackend.MEMORY:
        logger.info("Using in-memory storage")
        return StorageBundle(messages=InMemoryMessageStore(), users=InMemoryUserStore())

    if not settings.database_url:
        raise ValueError(f"database_url is required for the {settings.backend.value} backend")

    engine = _build_engine(settings)
    if settings.create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    logger.info(f"Using {settings.backend.value} storage")
    return SqlStorageBundle(
        messages=SqlAlchemyMessageStore(sessions),
        users=SqlAlchemyUserStore(sessions),
        engine=engine,
    )


async def create_storage_from_env() -> StorageBundle:
    """create_storage() with settings read from the environment."""
    return await create_storage(settings_from_env())


async def create_memory_storage() -> StorageBundle:
    return await create_storage(StorageSettings())


async def create_sqlite_storage(path: str = ":memory:") -> StorageBundle:
    """SQLite storage at ``path`` (a file, or a private in-memory database)."""
    return await create_storage(StorageSettings(
        backend=StorageBackend.SQLITE,
        database_url=f"sqlite:///{path}",
    ))


async def create_postgres_storage(url: str, pool_size: int = 5) -> StorageBundle:
    return await create_storage(StorageSettings(
        backend=StorageBackend.POSTGRESQL,
        database_url=url,
        pool_size=pool_size,
    ))
