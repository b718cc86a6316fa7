# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure.

Provides SQLAlchemy async connections for the API process and for
Dramatiq worker threads, plus the ORM models and migrations.

Example:
    from edustats.infrastructure.database import get_session

    async with get_session() as session:
        stats = await session.get(AssignmentStats, assignment_id)
"""

from edustats.infrastructure.database.connection import (
    DatabaseError,
    _clear_thread_db_connections,
    check_database_connection,
    close_database,
    create_sessionmaker,
    get_engine,
    get_session,
    get_sessionmaker,
    get_worker_session,
    get_worker_sessionmaker,
    init_database,
)

__all__ = [
    "DatabaseError",
    "_clear_thread_db_connections",
    "check_database_connection",
    "close_database",
    "create_sessionmaker",
    "get_engine",
    "get_session",
    "get_sessionmaker",
    "get_worker_session",
    "get_worker_sessionmaker",
    "init_database",
]
