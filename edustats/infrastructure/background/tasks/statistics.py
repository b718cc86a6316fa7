# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Statistics background tasks for EduStats.

Per-entity actors let the submission and assignment workflows defer
rollup work to the workers. Recalculation and aggregate actors raise on
failure, so Dramatiq retries them. process_submission_task reports failed
rollups in its result instead: a retry would count the answer again on the
rollup that succeeded, and the nightly repair rebuilds the one that failed.

Scheduler job actors:
    - refresh_statistics_job: hourly school, class and teacher refresh
    - snapshot_school_statistics_job: daily school snapshot at 00:05
    - repair_statistics_job: nightly audit and repair at 02:30
"""

import logging
from datetime import date
from typing import Any

import dramatiq

from edustats.domains.statistics import (
    SnapshotClosedError,
    StatisticsReconciler,
    StatisticsService,
    SubmissionEvent,
)
from edustats.infrastructure.background.broker import Priority, Queues, setup_dramatiq
from edustats.infrastructure.background.tasks.base import run_async
from edustats.infrastructure.database import get_worker_session

# Setup broker before defining actors
setup_dramatiq()

logger = logging.getLogger(__name__)


# =============================================================================
# Event-driven actors
# =============================================================================


@dramatiq.actor(
    queue_name=Queues.STATISTICS,
    max_retries=3,
    time_limit=30000,  # 30 seconds
    priority=Priority.HIGH,
)
def process_submission_task(event: dict[str, Any]) -> dict[str, Any]:
    """Apply a submission event to the assignment and student rollups.

    Args:
        event: SubmissionEvent fields.

    Returns:
        SubmissionResult fields.
    """

    async def _process() -> dict[str, Any]:
        async with get_worker_session() as session:
            result = await StatisticsService(session).process_submission(
                SubmissionEvent.model_validate(event)
            )
        return result.model_dump()

    result = run_async(_process())
    if result["errors"]:
        logger.warning("Submission applied with errors: %s", result["errors"])
    return result


@dramatiq.actor(
    queue_name=Queues.STATISTICS,
    max_retries=3,
    time_limit=60000,  # 1 minute
    priority=Priority.NORMAL,
)
def recalculate_assignment_statistics_task(assignment_id: str) -> dict[str, Any]:
    """Rebuild one assignment's rollup from the facts."""

    async def _process() -> dict[str, Any]:
        async with get_worker_session() as session:
            stats = await StatisticsReconciler(session).recalculate_assignment_statistics(
                assignment_id
            )
        return {"assignment_id": assignment_id, "recalculated": stats is not None}

    return run_async(_process())


@dramatiq.actor(
    queue_name=Queues.STATISTICS,
    max_retries=3,
    time_limit=60000,  # 1 minute
    priority=Priority.NORMAL,
)
def recalculate_student_statistics_task(student_id: str) -> dict[str, Any]:
    """Rebuild one student's rollup from the facts."""

    async def _process() -> dict[str, Any]:
        async with get_worker_session() as session:
            stats = await StatisticsReconciler(session).recalculate_student_statistics(
                student_id
            )
        return {"student_id": student_id, "recalculated": stats is not None}

    return run_async(_process())


@dramatiq.actor(
    queue_name=Queues.STATISTICS,
    max_retries=2,
    time_limit=60000,  # 1 minute
    priority=Priority.NORMAL,
)
def update_class_statistics_task(class_id: str) -> dict[str, Any]:
    """Recompute one class aggregate."""

    async def _process() -> dict[str, Any]:
        async with get_worker_session() as session:
            stats = await StatisticsService(session).update_class_statistics(class_id)
        return {"class_id": class_id, "updated": stats is not None}

    return run_async(_process())


@dramatiq.actor(
    queue_name=Queues.STATISTICS,
    max_retries=2,
    time_limit=60000,  # 1 minute
    priority=Priority.NORMAL,
)
def update_teacher_statistics_task(teacher_id: str) -> dict[str, Any]:
    """Recompute one teacher aggregate."""

    async def _process() -> dict[str, Any]:
        async with get_worker_session() as session:
            stats = await StatisticsService(session).update_teacher_statistics(teacher_id)
        return {"teacher_id": teacher_id, "updated": stats is not None}

    return run_async(_process())


# =============================================================================
# Scheduler job actors
# =============================================================================


@dramatiq.actor(
    queue_name=Queues.STATISTICS,
    max_retries=1,
    time_limit=600000,  # 10 minutes
    priority=Priority.MAINTENANCE,
)
def refresh_statistics_job() -> dict[str, Any]:
    """Scheduler job: refresh school, class and teacher aggregates.

    Also prunes school snapshots older than the retention window.
    """
    logger.info("Statistics refresh job triggered")

    async def _execute() -> dict[str, Any]:
        async with get_worker_session() as session:
            job = await StatisticsReconciler(session).refresh_aggregates()
        return job.to_dict()

    return run_async(_execute())


@dramatiq.actor(
    queue_name=Queues.STATISTICS,
    max_retries=3,
    time_limit=300000,  # 5 minutes
    priority=Priority.MAINTENANCE,
)
def snapshot_school_statistics_job(date_str: str | None = None) -> dict[str, Any]:
    """Scheduler job: take the school snapshot of a day.

    Args:
        date_str: Day to snapshot (YYYY-MM-DD). Defaults to today (UTC).
            Days that have already passed are skipped.
    """

    async def _execute() -> dict[str, Any]:
        day = date.fromisoformat(date_str) if date_str else None
        async with get_worker_session() as session:
            try:
                stats = await StatisticsService(session).update_school_statistics(day)
            except SnapshotClosedError as e:
                logger.warning("Skipping school snapshot: %s", e)
                return {"date": date_str, "skipped": True}
        return {"date": stats.date.isoformat(), "total_assignments": stats.total_assignments}

    return run_async(_execute())


@dramatiq.actor(
    queue_name=Queues.STATISTICS,
    max_retries=1,
    time_limit=1800000,  # 30 minutes
    priority=Priority.LOW,
)
def repair_statistics_job() -> dict[str, Any]:
    """Scheduler job: audit every leaf rollup and recalculate violators."""
    logger.info("Statistics repair job triggered")

    async def _execute() -> dict[str, Any]:
        async with get_worker_session() as session:
            result = await StatisticsReconciler(session).repair_statistics()
        return {
            "checked_assignments": result.audit.checked_assignments,
            "checked_students": result.audit.checked_students,
            "violations": len(result.audit.violations),
            "repaired": len(result.repaired),
            "failed": len(result.failed),
        }

    result = run_async(_execute())
    logger.info("Statistics repair job completed: %s", result)
    return result


def get_statistics_actors() -> list:
    """Get all statistics actors."""
    return [
        process_submission_task,
        recalculate_assignment_statistics_task,
        recalculate_student_statistics_task,
        update_class_statistics_task,
        update_teacher_statistics_task,
        refresh_statistics_job,
        snapshot_school_statistics_job,
        repair_statistics_job,
    ]
