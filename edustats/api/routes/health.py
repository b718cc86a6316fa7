# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Health check endpoints.

This module provides health and readiness endpoints for the API.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from edustats import __version__
from edustats.core.config import get_settings
from edustats.infrastructure.background import get_broker_manager, get_scheduler
from edustats.infrastructure.database import check_database_connection

logger = logging.getLogger(__name__)

router = APIRouter()

# Track server start time for uptime calculation
_server_start_time = time.time()


class ComponentHealth(BaseModel):
    """Individual component health status."""
    status: str = Field(description="Component status")
    latency_ms: float | None = Field(None, description="Response latency in ms")
    message: str | None = Field(None, description="Additional status message")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(description="Overall health status")
    timestamp: datetime = Field(description="Current server timestamp")
    version: str = Field(description="API version")
    environment: str = Field(description="Deployment environment")
    uptime_seconds: int = Field(description="Server uptime in seconds")
    components: dict[str, ComponentHealth] = Field(default_factory=dict)


class ReadinessResponse(BaseModel):
    """Readiness check response model."""
    ready: bool = Field(description="Whether the service is ready")
    checks: dict[str, Any] = Field(description="Individual check results")


async def check_database() -> ComponentHealth:
    """Check the statistics database connection."""
    start = time.time()
    if not await check_database_connection():
        logger.error("Database health check failed")
        return ComponentHealth(status="unhealthy", message="Database unreachable")
    latency = (time.time() - start) * 1000
    return ComponentHealth(status="healthy", latency_ms=round(latency, 2))


def check_broker() -> ComponentHealth:
    """Check the Dramatiq broker and its queues."""
    stats = get_broker_manager().get_queue_stats()
    if stats.get("status") == "healthy":
        return ComponentHealth(status="healthy")
    if stats.get("status") == "not_initialized":
        return ComponentHealth(status="degraded", message="Broker not initialized")
    return ComponentHealth(status="unhealthy", message=stats.get("error"))


def check_scheduler() -> ComponentHealth:
    """Report whether the periodic statistics jobs are scheduled."""
    scheduler = get_scheduler()
    if scheduler.is_running:
        return ComponentHealth(
            status="healthy",
            message=f"{len(scheduler.list_tasks())} scheduled tasks",
        )
    return ComponentHealth(status="degraded", message="Scheduler not running")


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check if the API is healthy with component details."""
    settings = get_settings()
    components = {
        "database": await check_database(),
        "broker": check_broker(),
        "scheduler": check_scheduler(),
    }

    statuses = [c.status for c in components.values()]
    if all(s == "healthy" for s in statuses):
        overall_status = "healthy"
    elif any(s == "unhealthy" for s in statuses):
        overall_status = "unhealthy"
    else:
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        environment=settings.environment,
        uptime_seconds=int(time.time() - _server_start_time),
        components=components,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check() -> ReadinessResponse:
    """Check if the API is ready to accept traffic."""
    db_health = await check_database()
    return ReadinessResponse(
        ready=db_health.status == "healthy",
        checks={"database": {"status": db_health.status, "latency_ms": db_health.latency_ms}},
    )
