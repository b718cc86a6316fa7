# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Statistics reconciliation.

Incremental updates can drift from the facts: failed transactions,
deleted questions, students moving between classes. This module rebuilds
leaf rollups from the fact store, audits every rollup against its
invariants and runs the bulk maintenance jobs:

- recalculate_assignment_statistics / recalculate_student_statistics:
  wholesale rebuild of one rollup and its ledger, under the same per-key
  lock as the incremental updaters. Idempotent.
- audit_statistics / repair_statistics: find and fix invariant violations.
- initialize_all_statistics: seed missing leaf rollups.
- rebuild_all_statistics: drop and recompute every rollup.
- refresh_aggregates: hourly refresh of the school, class and teacher tier.
"""

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from edustats.core.config import get_settings
from edustats.domains.statistics.calculations import (
    PartitionCounters,
    mean,
    percentage,
    progress_status,
    score_of,
)
from edustats.domains.statistics.locks import KeyedLock
from edustats.domains.statistics.schemas import (
    AssignmentStatistics,
    AuditReport,
    ClassStatistics,
    InvariantViolation,
    JobResult,
    RepairResult,
    StudentStatistics,
    TeacherStatistics,
)
from edustats.domains.statistics.service import (
    StatisticsService,
    StatisticsServiceError,
)
from edustats.infrastructure.database.models import (
    AssignmentStatsMember,
    ProgressStatus,
    StudentStatsMember,
)
from edustats.utils.datetime import Clock, utc_now

if TYPE_CHECKING:
    from edustats.core.config.settings import StatisticsSettings

logger = logging.getLogger(__name__)


class ReconciliationError(StatisticsServiceError):
    """A rollup could not be rebuilt from the facts."""

    def __init__(self, kind: str, key: str, original_error: Exception) -> None:
        super().__init__(f"Failed to recalculate {kind} statistics for {key}: {original_error}")
        self.kind = kind
        self.key = key
        self.original_error = original_error


def _check_partition(
    kind: str,
    key: str,
    total: int,
    counters: PartitionCounters,
    rates: dict[str, float],
    ledger: dict[ProgressStatus, int] | None,
) -> list[InvariantViolation]:
    reasons = []
    for name, value in (
        ("total", total),
        ("completed", counters.completed),
        ("in_progress", counters.in_progress),
        ("not_started", counters.not_started),
    ):
        if value < 0:
            reasons.append(f"{name} is negative ({value})")
    if counters.total != total:
        reasons.append(f"partition sums to {counters.total}, total is {total}")
    if counters.completed > total:
        reasons.append(f"completed ({counters.completed}) exceeds total ({total})")
    for name, value in rates.items():
        if not 0 <= value <= 100:
            reasons.append(f"{name} out of range ({value})")

    ledger_counters = PartitionCounters(
        completed=(ledger or {}).get(ProgressStatus.COMPLETED, 0),
        in_progress=(ledger or {}).get(ProgressStatus.IN_PROGRESS, 0),
        not_started=(ledger or {}).get(ProgressStatus.NOT_STARTED, 0),
    )
    if ledger_counters != counters:
        reasons.append(
            "ledger disagrees with counters "
            f"({ledger_counters.completed}/{ledger_counters.in_progress}/"
            f"{ledger_counters.not_started})"
        )

    return [InvariantViolation(kind=kind, key=key, reason=reason) for reason in reasons]


def _check_question_count(
    kind: str, key: str, current: int, stored: int
) -> list[InvariantViolation]:
    if current == stored:
        return []
    return [
        InvariantViolation(
            kind=kind,
            key=key,
            reason=f"question count changed from {stored} to {current}",
        )
    ]

class StatisticsReconciler:
    """Rebuilds, audits and repairs rollups.

    Shares the repository, resolvers and locks of a StatisticsService so
    rebuilds and incremental updates of the same key never interleave.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: "StatisticsSettings | None" = None,
        clock: Clock = utc_now,
        locks: KeyedLock | None = None,
        service: StatisticsService | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings().statistics
        self.clock = clock
        self.service = service or StatisticsService(
            db, settings=self.settings, clock=clock, locks=locks
        )
        self.locks = self.service.locks
        self.repository = self.service.repository
        self.scope = self.service.scope
        self.facts = self.service.facts

    # =========================================================================
    # Single rollup rebuild
    # =========================================================================

    async def recalculate_assignment_statistics(
        self, assignment_id: str
    ) -> AssignmentStatistics | None:
        """Rebuild an assignment's rollup and ledger from the facts.

        The partition covers the resolved audience plus every student with
        completed answers. Question count and answer counters are taken
        from the current state, not from the history of events.

        Returns:
            The rebuilt rollup, or None if the assignment does not exist.

        Raises:
            ReconciliationError: If the transaction failed.
        """
        async with self.locks.hold("assignment", assignment_id):
            try:
                scope = await self.scope.resolve_assignment_scope(assignment_id)
                if scope is None:
                    await self.db.rollback()
                    logger.info("Assignment %s not found, skipping recalculation", assignment_id)
                    return None

                stats = await self.service.lock_assignment_stats(assignment_id)
                if stats is None:
                    await self.db.rollback()
                    logger.info("Assignment %s removed during recalculation", assignment_id)
                    return None
                progress = await self.facts.progress_by_student(assignment_id)

                members = {
                    student_id: progress_status(
                        progress[student_id].answered if student_id in progress else 0,
                        scope.total_questions,
                    )
                    for student_id in scope.student_ids | set(progress)
                }
                counters = PartitionCounters.from_statuses(members.values())

                stats.total_questions = scope.total_questions
                stats.total_students = counters.total
                stats.completed_students = counters.completed
                stats.in_progress_students = counters.in_progress
                stats.not_started_students = counters.not_started
                stats.total_answers = sum(p.answered for p in progress.values())
                stats.total_correct_answers = sum(p.correct for p in progress.values())
                stats.completion_rate = percentage(counters.completed, counters.total)
                stats.accuracy_rate = percentage(stats.total_correct_answers, stats.total_answers)
                stats.average_score = mean(
                    score_of(p.correct, p.answered)
                    for p in progress.values()
                    if scope.total_questions > 0 and p.answered >= scope.total_questions
                )
                stats.last_updated = self.clock()
                await self.repository.replace_assignment_members(assignment_id, members)

                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise ReconciliationError("assignment", assignment_id, e) from e
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            "Recalculated assignment %s: %d/%d completed",
            assignment_id,
            stats.completed_students,
            stats.total_students,
        )
        return AssignmentStatistics.model_validate(stats)

    async def recalculate_student_statistics(self, student_id: str) -> StudentStatistics | None:
        """Rebuild a student's rollup and ledger from the facts.

        Returns:
            The rebuilt rollup, or None if the student does not exist.

        Raises:
            ReconciliationError: If the transaction failed.
        """
        async with self.locks.hold("student", student_id):
            try:
                scope = await self.scope.resolve_student_scope(student_id)
                if scope is None:
                    await self.db.rollback()
                    logger.info("Student %s not found, skipping recalculation", student_id)
                    return None

                stats = await self.service.lock_student_stats(student_id)
                if stats is None:
                    await self.db.rollback()
                    logger.info("Student %s removed during recalculation", student_id)
                    return None
                progress = await self.facts.progress_by_assignment(student_id)
                assignment_ids = scope.assignment_ids | set(progress)
                question_counts = await self.scope.question_counts(assignment_ids)

                members = {
                    assignment_id: progress_status(
                        progress[assignment_id].answered if assignment_id in progress else 0,
                        question_counts.get(assignment_id, 0),
                    )
                    for assignment_id in assignment_ids
                }
                counters = PartitionCounters.from_statuses(members.values())

                stats.total_assignments = counters.total
                stats.completed_assignments = counters.completed
                stats.in_progress_assignments = counters.in_progress
                stats.not_started_assignments = counters.not_started
                stats.total_questions = sum(question_counts.values())
                stats.total_answers = sum(p.answered for p in progress.values())
                stats.total_correct_answers = sum(p.correct for p in progress.values())
                stats.completion_rate = percentage(counters.completed, counters.total)
                stats.accuracy_rate = percentage(stats.total_correct_answers, stats.total_answers)
                stats.average_score = mean(
                    score_of(p.correct, p.answered)
                    for assignment_id, p in progress.items()
                    if question_counts.get(assignment_id, 0) > 0
                    and p.answered >= question_counts[assignment_id]
                )
                stats.last_updated = self.clock()
                await self.repository.replace_student_members(student_id, members)

                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise ReconciliationError("student", student_id, e) from e
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            "Recalculated student %s: %d/%d completed",
            student_id,
            stats.completed_assignments,
            stats.total_assignments,
        )
        return StudentStatistics.model_validate(stats)

    async def recalculate_class_statistics(self, class_id: str) -> ClassStatistics | None:
        """Recompute a class aggregate from the current student rollups."""
        return await self.service.update_class_statistics(class_id)

    async def recalculate_teacher_statistics(self, teacher_id: str) -> TeacherStatistics | None:
        """Recompute a teacher aggregate from the current assignment rollups."""
        return await self.service.update_teacher_statistics(teacher_id)

    # =========================================================================
    # Audit and repair
    # =========================================================================

    async def audit_statistics(self) -> AuditReport:
        """Check every leaf rollup against its invariants."""
        report = AuditReport()

        assignment_ledgers = await self.repository.ledger_counts(
            AssignmentStatsMember, AssignmentStatsMember.assignment_id
        )
        assignment_rollups = await self.repository.list_assignment_stats()
        question_counts = await self.scope.question_counts(
            {stats.assignment_id for stats in assignment_rollups}
        )
        for stats in assignment_rollups:
            report.checked_assignments += 1
            report.violations.extend(
                _check_question_count(
                    "assignment",
                    stats.assignment_id,
                    question_counts.get(stats.assignment_id, 0),
                    stats.total_questions,
                )
            )
            report.violations.extend(
                _check_partition(
                    "assignment",
                    stats.assignment_id,
                    stats.total_students,
                    PartitionCounters(
                        completed=stats.completed_students,
                        in_progress=stats.in_progress_students,
                        not_started=stats.not_started_students,
                    ),
                    {
                        "completion_rate": stats.completion_rate,
                        "accuracy_rate": stats.accuracy_rate,
                        "average_score": stats.average_score,
                    },
                    assignment_ledgers.get(stats.assignment_id),
                )
            )

        student_ledgers = await self.repository.ledger_counts(
            StudentStatsMember, StudentStatsMember.student_id
        )
        question_totals = await self.repository.student_ledger_question_totals()
        for stats in await self.repository.list_student_stats():
            report.checked_students += 1
            report.violations.extend(
                _check_question_count(
                    "student",
                    stats.student_id,
                    question_totals.get(stats.student_id, 0),
                    stats.total_questions,
                )
            )
            report.violations.extend(
                _check_partition(
                    "student",
                    stats.student_id,
                    stats.total_assignments,
                    PartitionCounters(
                        completed=stats.completed_assignments,
                        in_progress=stats.in_progress_assignments,
                        not_started=stats.not_started_assignments,
                    ),
                    {
                        "completion_rate": stats.completion_rate,
                        "accuracy_rate": stats.accuracy_rate,
                        "average_score": stats.average_score,
                    },
                    student_ledgers.get(stats.student_id),
                )
            )

        if report.violations:
            logger.warning(
                "Statistics audit found %d violations across %d assignments and %d students",
                len(report.violations),
                report.checked_assignments,
                report.checked_students,
            )
        return report

    async def repair_statistics(self) -> RepairResult:
        """Audit the leaf rollups and recalculate every violating one."""
        audit = await self.audit_statistics()
        result = RepairResult(audit=audit)

        targets = sorted({(v.kind, v.key) for v in audit.violations})
        for kind, key in targets:
            try:
                if kind == "assignment":
                    await self.recalculate_assignment_statistics(key)
                else:
                    await self.recalculate_student_statistics(key)
                result.repaired.append(f"{kind}:{key}")
            except ReconciliationError as e:
                logger.error("Repair failed: %s", e)
                result.failed.append(f"{kind}:{key}")

        if targets:
            logger.info(
                "Statistics repair finished: %d repaired, %d failed",
                len(result.repaired),
                len(result.failed),
            )
        return result

    # =========================================================================
    # Bulk jobs
    # =========================================================================

    async def _run_each(
        self, job: JobResult, kind: str, keys: list[Any], action: Any
    ) -> None:
        for key in keys:
            try:
                await action(key)
                job.record(kind, ok=True)
            except (StatisticsServiceError, SQLAlchemyError) as e:
                await self.db.rollback()
                logger.error("%s: %s %s failed: %s", job.job, kind, key, e)
                job.record(kind, ok=False)

    async def _seed_assignment(self, assignment_id: str) -> None:
        async with self.locks.hold("assignment", assignment_id):
            await self.service.lock_assignment_stats(assignment_id)
            await self.db.commit()

    async def _seed_student(self, student_id: str) -> None:
        async with self.locks.hold("student", student_id):
            await self.service.lock_student_stats(student_id)
            await self.db.commit()

    async def initialize_all_statistics(self) -> JobResult:
        """Create the leaf rollups missing for any assignment or student."""
        job = JobResult(job="initialize_statistics", started_at=self.clock())

        existing = await self.repository.assignment_ids_with_stats()
        missing = [a for a in await self.scope.all_assignment_ids() if a not in existing]
        await self._run_each(job, "assignments", missing, self._seed_assignment)

        existing = await self.repository.student_ids_with_stats()
        missing = [s for s in await self.scope.all_student_ids() if s not in existing]
        await self._run_each(job, "students", missing, self._seed_student)

        job.finished_at = self.clock()
        logger.info("Initialized statistics: %s", job.to_dict())
        return job

    async def rebuild_all_statistics(self) -> JobResult:
        """Delete every leaf rollup and recompute all tiers from the facts."""
        job = JobResult(job="rebuild_statistics", started_at=self.clock())

        await self.repository.delete_leaf_statistics()
        await self.db.commit()

        await self._run_each(
            job,
            "assignments",
            await self.scope.all_assignment_ids(),
            self.recalculate_assignment_statistics,
        )
        await self._run_each(
            job,
            "students",
            await self.scope.all_student_ids(),
            self.recalculate_student_statistics,
        )
        await self._run_each(
            job, "classes", await self.scope.all_class_ids(), self.service.update_class_statistics
        )
        await self._run_each(
            job,
            "teachers",
            await self.scope.all_teacher_ids(),
            self.service.update_teacher_statistics,
        )
        await self._run_each(
            job, "school", [self.clock().date()], self.service.update_school_statistics
        )

        job.finished_at = self.clock()
        logger.info("Rebuilt statistics: %s", job.to_dict())
        return job

    async def refresh_aggregates(self) -> JobResult:
        """Refresh today's school snapshot and every class and teacher aggregate.

        Also removes school snapshots older than the retention window.
        """
        job = JobResult(job="refresh_statistics", started_at=self.clock())
        today = self.clock().date()

        await self._run_each(job, "school", [today], self.service.update_school_statistics)
        await self._run_each(
            job, "classes", await self.scope.all_class_ids(), self.service.update_class_statistics
        )
        await self._run_each(
            job,
            "teachers",
            await self.scope.all_teacher_ids(),
            self.service.update_teacher_statistics,
        )

        cutoff = today - timedelta(days=self.settings.retention_days)
        job.details["deleted_snapshots"] = await self.repository.delete_school_stats_before(cutoff)
        await self.db.commit()

        job.finished_at = self.clock()
        logger.info("Refreshed statistics: %s", job.to_dict())
        return job
