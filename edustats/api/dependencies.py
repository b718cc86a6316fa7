# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI dependency injection definitions.

Example:
    @router.get("/assignments/{assignment_id}")
    async def get_assignment(service: StatsService, assignment_id: str):
        ...
"""

import logging
from typing import Annotated, AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from edustats.core.config import get_settings
from edustats.domains.statistics import StatisticsReconciler, StatisticsService
from edustats.infrastructure.database import close_database, get_session, init_database

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """Initialize the database connection pool."""
    await init_database(get_settings())


async def close_db() -> None:
    """Close the database connection pool."""
    await close_database()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session, committed when the request succeeds.

    Yields:
        AsyncSession on the application engine.
    """
    async with get_session() as session:
        yield session


async def get_statistics_service(
    db: AsyncSession = Depends(get_db),
) -> StatisticsService:
    """Get a statistics service bound to the request session."""
    return StatisticsService(db, settings=get_settings().statistics)


async def get_reconciler(
    service: StatisticsService = Depends(get_statistics_service),
) -> StatisticsReconciler:
    """Get a reconciler sharing the request's statistics service."""
    return StatisticsReconciler(service.db, settings=service.settings, service=service)


# Type aliases for cleaner endpoint signatures
DB = Annotated[AsyncSession, Depends(get_db)]
StatsService = Annotated[StatisticsService, Depends(get_statistics_service)]
Reconciler = Annotated[StatisticsReconciler, Depends(get_reconciler)]
