# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Statistics API endpoints.

This module provides endpoints for dashboards and maintenance:
- GET /assignments/{assignment_id} - Assignment rollup
- GET /students/{student_id} - Student rollup
- GET /classes/{class_id} - Class aggregate
- GET /teachers/{teacher_id} - Teacher aggregate
- GET /school - School snapshot of a day (latest by default)
- GET /school/trend - School snapshots of the last N days
- POST /submissions - Apply a submission event
- POST /assignments/{assignment_id}/recalculate - Rebuild an assignment rollup
- POST /students/{student_id}/recalculate - Rebuild a student rollup
- POST /classes/{class_id}/refresh - Recompute a class aggregate
- POST /teachers/{teacher_id}/refresh - Recompute a teacher aggregate
- POST /school/refresh - Recompute a school snapshot
- GET /audit - Report invariant violations
- POST /repair - Recalculate violating rollups

Example:
    GET /api/v1/statistics/school/trend?days=7
"""

import logging
from datetime import date

from fastapi import APIRouter, HTTPException, Query, status

from edustats.api.dependencies import Reconciler, StatsService
from edustats.domains.statistics import (
    AssignmentStatistics,
    AuditReport,
    ClassStatistics,
    RepairResult,
    SchoolStatistics,
    SnapshotClosedError,
    StudentStatistics,
    SubmissionEvent,
    SubmissionResult,
    TeacherStatistics,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _not_found(kind: str, key: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"No {kind} statistics for {key}",
    )


# ============================================================================
# Rollup queries
# ============================================================================


@router.get(
    "/assignments/{assignment_id}",
    response_model=AssignmentStatistics,
    summary="Get assignment statistics",
)
async def get_assignment_statistics(
    assignment_id: str,
    service: StatsService,
) -> AssignmentStatistics:
    """Get the rollup of one assignment.

    Raises:
        HTTPException: If the assignment has no rollup.
    """
    stats = await service.get_assignment_statistics(assignment_id)
    if stats is None:
        raise _not_found("assignment", assignment_id)
    return stats


@router.get(
    "/students/{student_id}",
    response_model=StudentStatistics,
    summary="Get student statistics",
)
async def get_student_statistics(
    student_id: str,
    service: StatsService,
) -> StudentStatistics:
    """Get the rollup of one student.

    Raises:
        HTTPException: If the student has no rollup.
    """
    stats = await service.get_student_statistics(student_id)
    if stats is None:
        raise _not_found("student", student_id)
    return stats


@router.get(
    "/classes/{class_id}",
    response_model=ClassStatistics,
    summary="Get class statistics",
)
async def get_class_statistics(
    class_id: str,
    service: StatsService,
) -> ClassStatistics:
    """Get the last computed aggregate of one class.

    Raises:
        HTTPException: If the class has no aggregate yet.
    """
    stats = await service.get_class_statistics(class_id)
    if stats is None:
        raise _not_found("class", class_id)
    return stats


@router.get(
    "/teachers/{teacher_id}",
    response_model=TeacherStatistics,
    summary="Get teacher statistics",
)
async def get_teacher_statistics(
    teacher_id: str,
    service: StatsService,
) -> TeacherStatistics:
    """Get the last computed aggregate of one teacher.

    Raises:
        HTTPException: If the teacher has no aggregate yet.
    """
    stats = await service.get_teacher_statistics(teacher_id)
    if stats is None:
        raise _not_found("teacher", teacher_id)
    return stats


@router.get(
    "/school",
    response_model=SchoolStatistics,
    summary="Get school statistics",
    description="Snapshot of the given day, or the most recent snapshot when no day is given.",
)
async def get_school_statistics(
    service: StatsService,
    day: date | None = Query(None, alias="date", description="Snapshot day (YYYY-MM-DD)"),
) -> SchoolStatistics:
    stats = await service.get_school_statistics(day)
    if stats is None:
        raise _not_found("school", str(day) if day else "any day")
    return stats


@router.get(
    "/school/trend",
    response_model=list[SchoolStatistics],
    summary="Get school statistics trend",
    description="Snapshots of the last N days including today, oldest first. "
    "Days without a snapshot are omitted.",
)
async def get_school_statistics_trend(
    service: StatsService,
    days: int = Query(30, ge=1, le=365, description="Number of days"),
) -> list[SchoolStatistics]:
    return await service.get_school_statistics_trend(days)


# ============================================================================
# Updates
# ============================================================================


@router.post(
    "/submissions",
    response_model=SubmissionResult,
    summary="Apply a submission event",
    description="Updates the assignment and student rollups for a recorded answer. "
    "The answer itself must already be stored.",
)
async def process_submission(
    event: SubmissionEvent,
    service: StatsService,
) -> SubmissionResult:
    return await service.process_submission(event)


@router.post(
    "/assignments/{assignment_id}/recalculate",
    response_model=AssignmentStatistics,
    summary="Recalculate assignment statistics",
)
async def recalculate_assignment_statistics(
    assignment_id: str,
    reconciler: Reconciler,
) -> AssignmentStatistics:
    """Rebuild an assignment rollup from the recorded answers.

    Raises:
        HTTPException: If the assignment does not exist.
    """
    stats = await reconciler.recalculate_assignment_statistics(assignment_id)
    if stats is None:
        raise _not_found("assignment", assignment_id)
    return stats


@router.post(
    "/students/{student_id}/recalculate",
    response_model=StudentStatistics,
    summary="Recalculate student statistics",
)
async def recalculate_student_statistics(
    student_id: str,
    reconciler: Reconciler,
) -> StudentStatistics:
    """Rebuild a student rollup from the recorded answers.

    Raises:
        HTTPException: If the student does not exist.
    """
    stats = await reconciler.recalculate_student_statistics(student_id)
    if stats is None:
        raise _not_found("student", student_id)
    return stats


@router.post(
    "/classes/{class_id}/refresh",
    response_model=ClassStatistics,
    summary="Refresh class statistics",
)
async def refresh_class_statistics(
    class_id: str,
    service: StatsService,
) -> ClassStatistics:
    stats = await service.update_class_statistics(class_id)
    if stats is None:
        raise _not_found("class", class_id)
    return stats


@router.post(
    "/teachers/{teacher_id}/refresh",
    response_model=TeacherStatistics,
    summary="Refresh teacher statistics",
)
async def refresh_teacher_statistics(
    teacher_id: str,
    service: StatsService,
) -> TeacherStatistics:
    stats = await service.update_teacher_statistics(teacher_id)
    if stats is None:
        raise _not_found("teacher", teacher_id)
    return stats


@router.post(
    "/school/refresh",
    response_model=SchoolStatistics,
    summary="Refresh school statistics",
)
async def refresh_school_statistics(
    service: StatsService,
    day: date | None = Query(None, alias="date", description="Snapshot day, today by default"),
) -> SchoolStatistics:
    """Recompute today's snapshot. Snapshots of past days are closed.

    Raises:
        HTTPException: If the day has already passed.
    """
    try:
        return await service.update_school_statistics(day)
    except SnapshotClosedError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e


# ============================================================================
# Maintenance
# ============================================================================


@router.get(
    "/audit",
    response_model=AuditReport,
    summary="Audit statistics",
    description="Lists leaf rollups that break their partition or range invariants.",
)
async def audit_statistics(reconciler: Reconciler) -> AuditReport:
    return await reconciler.audit_statistics()


@router.post(
    "/repair",
    response_model=RepairResult,
    summary="Repair statistics",
    description="Audits leaf rollups and recalculates every violating one.",
)
async def repair_statistics(reconciler: Reconciler) -> RepairResult:
    result = await reconciler.repair_statistics()
    logger.info(
        "Repair requested: %d repaired, %d failed",
        len(result.repaired),
        len(result.failed),
    )
    return result
