# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database connection management using SQLAlchemy async.

Two kinds of connections are provided:

- The application engine, created once at startup and shared by the API.
- Worker engines, one per Dramatiq worker thread. Async engines are bound
  to the event loop they were first used on, and every worker thread runs
  its own loop (see ``tasks.base.run_async``).

Example:
    from edustats.infrastructure.database.connection import (
        init_database,
        get_session,
    )

    await init_database(settings)

    async with get_session() as session:
        result = await session.execute(select(AssignmentStats))
"""

import threading
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from edustats.core.config import get_settings

if TYPE_CHECKING:
    from edustats.core.config.settings import Settings

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

_thread_local = threading.local()


class DatabaseError(Exception):
    """Base exception for database operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


def _create_engine(url: str, pool_size: int, max_overflow: int, echo: bool) -> AsyncEngine:
    # SQLite (tests, local tooling) does not accept pool sizing arguments
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
        echo=echo,
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the sessionmaker used for every EduStats session.

    Args:
        engine: Engine to bind sessions to.

    Returns:
        Sessionmaker with expire_on_commit and autoflush disabled.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(settings: "Settings") -> None:
    """Initialize the application connection pool.

    Args:
        settings: Application settings containing database configuration.

    Raises:
        DatabaseError: If connection pool creation fails.
    """
    global _engine, _sessionmaker

    try:
        _engine = _create_engine(
            settings.database.url,
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            echo=settings.debug and settings.log_level == "DEBUG",
        )
        _sessionmaker = create_sessionmaker(_engine)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to initialize database connection", e) from e


async def close_database() -> None:
    """Close the application connection pool."""
    global _engine, _sessionmaker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _sessionmaker = None


def get_engine() -> AsyncEngine:
    """Get the application async engine.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _engine is None:
        raise DatabaseError("Database not initialized. Call init_database() first.")
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Get the application sessionmaker.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _sessionmaker is None:
        raise DatabaseError("Database not initialized. Call init_database() first.")
    return _sessionmaker


@asynccontextmanager
async def _managed_session(
    sessionmaker: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with sessionmaker() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise DatabaseError("Database operation failed", e) from e
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Get an async session on the application engine.

    The session is committed on success and rolled back on exception.

    Raises:
        DatabaseError: If the database has not been initialized or
            if a database operation fails.
    """
    async with _managed_session(get_sessionmaker()) as session:
        yield session


async def check_database_connection() -> bool:
    """Check if the database is reachable.

    Returns:
        True if the database is reachable, False otherwise.
    """
    if _engine is None:
        return False

    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False


# =============================================================================
# WORKER CONNECTIONS
# =============================================================================


def get_worker_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Get the sessionmaker bound to the current worker thread.

    The engine is created on first use in the thread and reused by every
    task the thread runs afterwards.
    """
    sessionmaker = getattr(_thread_local, "sessionmaker", None)
    if sessionmaker is None:
        settings = get_settings()
        engine = _create_engine(
            settings.database.url,
            pool_size=settings.database.worker_pool_size,
            max_overflow=0,
            echo=False,
        )
        sessionmaker = create_sessionmaker(engine)
        _thread_local.engine = engine
        _thread_local.sessionmaker = sessionmaker
    return sessionmaker


@asynccontextmanager
async def get_worker_session() -> AsyncIterator[AsyncSession]:
    """Get a session for use inside a Dramatiq actor.

    Example:
        async def _process():
            async with get_worker_session() as session:
                await StatisticsReconciler(session).repair_statistics()
    """
    async with _managed_session(get_worker_sessionmaker()) as session:
        yield session


def _clear_thread_db_connections() -> None:
    """Forget the current thread's worker engine.

    Called by run_async() when a new event loop is created for a thread,
    so the engine is rebuilt on the new loop.
    """
    _thread_local.engine = None
    _thread_local.sessionmaker = None
