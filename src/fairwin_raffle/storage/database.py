"""Async engine and transaction scope for the raffle database.

Every engine operation runs inside ``transaction()``: one session, one
database transaction, committed on success and rolled back on error.
PostgreSQL is reached through asyncpg; SQLite through aiosqlite for local
runs and tests.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fairwin_raffle.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from fairwin_raffle.config import DatabaseSettings

logger = logging.getLogger(__name__)

# Seconds a SQLite writer waits for a competing writer's lock
SQLITE_BUSY_TIMEOUT_SECONDS = 15


def _normalize_async_database_url(database_url: str) -> str:
    if database_url.startswith("postgresql://"):
        logger.warning(
            "Database URL uses sync dialect 'postgresql://'; using async driver 'postgresql+asyncpg://'."
        )
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def create_async_db_engine(
    database_url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
) -> AsyncEngine:
    """Create the async engine for ``database_url``.

    Pool sizing applies to PostgreSQL only. SQLite connections get a busy
    timeout so concurrent writers queue instead of failing.
    """
    url = _normalize_async_database_url(database_url)
    options: dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        options["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
    else:
        options["pool_size"] = pool_size
        options["max_overflow"] = max_overflow
        options["pool_pre_ping"] = True
    return create_async_engine(url, **options)


def create_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def init_async_db(engine: AsyncEngine) -> None:
    """Create missing tables. Production schemas are managed by Alembic."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Raffle schema created")


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Run the block in a single database transaction.

    Example:
        ```python
        async with transaction(db.session_factory) as session:
            raffle = await RaffleRepository(session).get(raffle_id)
        ```
    """
    async with session_factory() as session:
        async with session.begin():
            yield session


class DatabaseManager:
    """Owns the async engine and its session factory.

    The engine is created lazily on first use and released by
    ``dispose_async()``.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        self.database_url = database_url
        self._engine_options = {"pool_size": pool_size, "max_overflow": max_overflow, "echo": echo}
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> DatabaseManager:
        return cls(settings.url, pool_size=settings.pool_size, echo=settings.echo)

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_db_engine(self.database_url, **self._engine_options)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = create_async_session_factory(self.engine)
        return self._session_factory

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Shorthand for ``transaction(self.session_factory)``."""
        async with transaction(self.session_factory) as session:
            yield session

    async def init_schema_async(self) -> None:
        await init_async_db(self.engine)

    async def dispose_async(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Raffle database connections closed")
