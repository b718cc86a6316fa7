# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Statistics service.

Entry points invoked by the submission and assignment-creation workflows
and by dashboards:

- Leaf updaters: update_assignment_statistics, update_student_statistics.
  Each runs in its own transaction, serialized per rollup key. The
  student's bucket is derived from the fact store and compared with the
  rollup's member ledger, so replayed or concurrent events can never move
  a member twice.
- Increment helpers called when an assignment is created.
- Mid-tier and school aggregates (delegated to StatisticsAggregator).
- Read queries for the five rollups and the school trend.
"""

import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from edustats.core.config import get_settings
from edustats.domains.statistics.aggregator import StatisticsAggregator
from edustats.domains.statistics.audience import ScopeResolver
from edustats.domains.statistics.calculations import (
    PartitionCounters,
    apply_transition,
    mean,
    percentage,
    progress_status,
    score_of,
)
from edustats.domains.statistics.facts import FactStore
from edustats.domains.statistics.locks import KeyedLock, get_rollup_locks
from edustats.domains.statistics.repository import StatisticsRepository
from edustats.domains.statistics.schemas import (
    AssignmentStatistics,
    ClassStatistics,
    SchoolStatistics,
    StudentStatistics,
    SubmissionEvent,
    SubmissionResult,
    TeacherStatistics,
)
from edustats.infrastructure.database.models import (
    AssignmentStats,
    ClassStatsDetailed,
    ProgressStatus,
    SchoolStats,
    StudentStats,
    TeacherStats,
)
from edustats.utils.datetime import Clock, to_date, utc_now

if TYPE_CHECKING:
    from edustats.core.config.settings import StatisticsSettings

logger = logging.getLogger(__name__)


class StatisticsServiceError(Exception):
    """Base exception for statistics service errors."""

    pass


class StatisticsUpdateError(StatisticsServiceError):
    """A rollup update failed and its transaction was rolled back.

    The rollup is left at its previous value. Callers may retry the event;
    reconciliation repairs anything that is never retried.
    """

    def __init__(self, kind: str, key: str, original_error: Exception) -> None:
        super().__init__(f"Failed to update {kind} statistics for {key}: {original_error}")
        self.kind = kind
        self.key = key
        self.original_error = original_error


class SnapshotClosedError(StatisticsServiceError, ValueError):
    """A school snapshot of a past day was asked to change."""

    def __init__(self, day: date) -> None:
        super().__init__(f"School statistics for {day} are closed")
        self.day = day


class StatisticsService:
    """Maintains and serves statistics rollups.

    Attributes:
        db: Async database session. Each updater commits its own transaction.
        settings: Aggregation policy.
        clock: Returns the current UTC time.
        locks: Per-key lock registry shared by every service on this thread.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: "StatisticsSettings | None" = None,
        clock: Clock = utc_now,
        locks: KeyedLock | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings().statistics
        self.clock = clock
        self.locks = locks or get_rollup_locks()
        self.repository = StatisticsRepository(db, use_row_locks=self.settings.use_row_locks)
        self.scope = ScopeResolver(db)
        self.facts = FactStore(db)
        self.aggregator = StatisticsAggregator(
            db,
            settings=self.settings,
            clock=clock,
            repository=self.repository,
            scope=self.scope,
        )

    # =========================================================================
    # Leaf rollup initialization
    # =========================================================================

    async def lock_assignment_stats(self, assignment_id: str) -> AssignmentStats | None:
        """Fetch the assignment's rollup with a row lock, creating it if missing.

        Must be called inside the ("assignment", id) key lock.

        Returns:
            The locked row, or None if the assignment does not exist.
        """
        stats = await self.repository.get_assignment_stats(assignment_id, for_update=True)
        if stats is not None:
            return stats

        scope = await self.scope.resolve_assignment_scope(assignment_id)
        if scope is None:
            return None

        created = await self.repository.create_assignment_stats(
            assignment_id,
            scope.student_ids,
            scope.total_questions,
            now=self.clock(),
        )
        if created:
            logger.info(
                "Initialized statistics for assignment %s: %d students, %d questions",
                assignment_id,
                len(scope.student_ids),
                scope.total_questions,
            )
        return await self.repository.get_assignment_stats(assignment_id, for_update=True)

    async def lock_student_stats(self, student_id: str) -> StudentStats | None:
        """Fetch the student's rollup with a row lock, creating it if missing.

        Must be called inside the ("student", id) key lock.

        Returns:
            The locked row, or None if the student does not exist.
        """
        stats = await self.repository.get_student_stats(student_id, for_update=True)
        if stats is not None:
            return stats

        scope = await self.scope.resolve_student_scope(student_id)
        if scope is None:
            return None

        created = await self.repository.create_student_stats(
            student_id,
            scope.assignment_ids,
            scope.total_questions,
            now=self.clock(),
        )
        if created:
            logger.info(
                "Initialized statistics for student %s: %d assignments",
                student_id,
                len(scope.assignment_ids),
            )
        return await self.repository.get_student_stats(student_id, for_update=True)

    # =========================================================================
    # Leaf updaters
    # =========================================================================

    async def update_assignment_statistics(
        self,
        assignment_id: str,
        student_id: str,
        is_correct: bool,
        is_new_submission: bool,
    ) -> AssignmentStatistics | None:
        """Apply one submission to the assignment's rollup.

        The fact row for the submission must already be written.

        Args:
            assignment_id: Assignment answered.
            student_id: Student who answered.
            is_correct: Scorer verdict.
            is_new_submission: False for a resubmission of an existing answer,
                which leaves the answer counters untouched.

        Returns:
            The updated rollup, or None if the assignment no longer exists.

        Raises:
            StatisticsUpdateError: If the transaction failed.
        """
        async with self.locks.hold("assignment", assignment_id):
            try:
                stats = await self.lock_assignment_stats(assignment_id)
                if stats is None:
                    await self.db.rollback()
                    logger.info(
                        "Assignment %s not found, skipping statistics update", assignment_id
                    )
                    return None

                if is_new_submission:
                    stats.total_answers += 1
                    if is_correct:
                        stats.total_correct_answers += 1

                await self._sync_question_count(stats)
                await self._move_assignment_member(stats, student_id)
                await self._refresh_assignment_rates(stats)
                stats.last_updated = self.clock()

                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StatisticsUpdateError("assignment", assignment_id, e) from e
            except Exception:
                await self.db.rollback()
                raise

        return AssignmentStatistics.model_validate(stats)

    async def _sync_question_count(self, stats: AssignmentStats) -> None:
        """Re-bucket the ledger when questions were added or removed since the last update."""
        total_questions = await self.scope.count_questions(stats.assignment_id)
        if total_questions == stats.total_questions:
            return

        progress = await self.facts.progress_by_student(stats.assignment_id)
        members = {
            student_id: progress_status(
                progress[student_id].answered if student_id in progress else 0,
                total_questions,
            )
            for student_id in await self.repository.get_assignment_members(stats.assignment_id)
        }
        counters = PartitionCounters.from_statuses(members.values())

        stats.total_questions = total_questions
        stats.completed_students = counters.completed
        stats.in_progress_students = counters.in_progress
        stats.not_started_students = counters.not_started
        stats.total_students = counters.total
        await self.repository.replace_assignment_members(stats.assignment_id, members)
        logger.info(
            "Assignment %s question count changed to %d, re-bucketed %d students",
            stats.assignment_id,
            total_questions,
            counters.total,
        )

    async def _move_assignment_member(self, stats: AssignmentStats, student_id: str) -> None:
        completed = await self.facts.completed_question_count(student_id, stats.assignment_id)
        new_status = progress_status(completed, stats.total_questions)
        old_status = await self.repository.get_assignment_member_status(
            stats.assignment_id, student_id
        )

        if old_status is None:
            # Students outside the seeded scope join the partition once active
            if new_status is ProgressStatus.NOT_STARTED:
                return
            if not await self.scope.student_exists(student_id):
                logger.info("Student %s not found, skipping transition", student_id)
                return
        elif old_status is new_status:
            return

        counters = apply_transition(
            PartitionCounters(
                completed=stats.completed_students,
                in_progress=stats.in_progress_students,
                not_started=stats.not_started_students,
            ),
            old_status,
            new_status,
        )
        stats.completed_students = counters.completed
        stats.in_progress_students = counters.in_progress
        stats.not_started_students = counters.not_started
        stats.total_students = counters.total
        await self.repository.set_assignment_member_status(
            stats.assignment_id, student_id, new_status
        )
        logger.debug(
            "Assignment %s: student %s moved %s -> %s",
            stats.assignment_id,
            student_id,
            old_status.value if old_status else "none",
            new_status.value,
        )

    async def _refresh_assignment_rates(self, stats: AssignmentStats) -> None:
        stats.completion_rate = percentage(stats.completed_students, stats.total_students)
        stats.accuracy_rate = percentage(stats.total_correct_answers, stats.total_answers)

        progress = await self.facts.progress_by_student(stats.assignment_id)
        stats.average_score = mean(
            score_of(p.correct, p.answered)
            for p in progress.values()
            if stats.total_questions > 0 and p.answered >= stats.total_questions
        )

    async def update_student_statistics(
        self,
        student_id: str,
        assignment_id: str,
        is_correct: bool,
        is_new_submission: bool,
    ) -> StudentStatistics | None:
        """Apply one submission to the student's rollup.

        The fact row for the submission must already be written.

        Args:
            student_id: Student who answered.
            assignment_id: Assignment answered.
            is_correct: Scorer verdict.
            is_new_submission: False for a resubmission of an existing answer.

        Returns:
            The updated rollup, or None if the student or the assignment no
            longer exists.

        Raises:
            StatisticsUpdateError: If the transaction failed.
        """
        async with self.locks.hold("student", student_id):
            try:
                if not await self.scope.assignment_exists(assignment_id):
                    await self.db.rollback()
                    logger.info(
                        "Assignment %s not found, skipping student %s statistics update",
                        assignment_id,
                        student_id,
                    )
                    return None

                stats = await self.lock_student_stats(student_id)
                if stats is None:
                    await self.db.rollback()
                    logger.info("Student %s not found, skipping statistics update", student_id)
                    return None

                if is_new_submission:
                    stats.total_answers += 1
                    if is_correct:
                        stats.total_correct_answers += 1

                await self._move_student_member(stats, assignment_id)
                await self._refresh_student_rates(stats)
                now = self.clock()
                stats.last_activity_date = now
                stats.last_updated = now

                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StatisticsUpdateError("student", student_id, e) from e
            except Exception:
                await self.db.rollback()
                raise

        return StudentStatistics.model_validate(stats)

    async def _move_student_member(
        self,
        stats: StudentStats,
        assignment_id: str,
        add_if_missing: bool = False,
    ) -> None:
        total_questions = await self.scope.count_questions(assignment_id)
        completed = await self.facts.completed_question_count(stats.student_id, assignment_id)
        new_status = progress_status(completed, total_questions)
        old_status = await self.repository.get_student_member_status(
            stats.student_id, assignment_id
        )

        if old_status is None:
            if new_status is ProgressStatus.NOT_STARTED and not add_if_missing:
                return
            stats.total_questions += total_questions
        elif old_status is new_status:
            return

        counters = apply_transition(
            PartitionCounters(
                completed=stats.completed_assignments,
                in_progress=stats.in_progress_assignments,
                not_started=stats.not_started_assignments,
            ),
            old_status,
            new_status,
        )
        stats.completed_assignments = counters.completed
        stats.in_progress_assignments = counters.in_progress
        stats.not_started_assignments = counters.not_started
        stats.total_assignments = counters.total
        await self.repository.set_student_member_status(
            stats.student_id, assignment_id, new_status
        )
        logger.debug(
            "Student %s: assignment %s moved %s -> %s",
            stats.student_id,
            assignment_id,
            old_status.value if old_status else "none",
            new_status.value,
        )

    async def _refresh_student_rates(self, stats: StudentStats) -> None:
        stats.completion_rate = percentage(stats.completed_assignments, stats.total_assignments)
        stats.accuracy_rate = percentage(stats.total_correct_answers, stats.total_answers)

        progress = await self.facts.progress_by_assignment(stats.student_id)
        question_counts = await self.scope.question_counts(set(progress))
        # Each completed assignment weighs the same regardless of its size
        stats.average_score = mean(
            score_of(p.correct, p.answered)
            for assignment_id, p in progress.items()
            if question_counts.get(assignment_id, 0) > 0
            and p.answered >= question_counts[assignment_id]
        )

    async def process_submission(self, event: SubmissionEvent) -> SubmissionResult:
        """Apply a submission event to both leaf rollups.

        The two rollups are updated in separate transactions. A failure of
        one does not prevent the other; the result tells the caller what to
        retry.
        """
        result = SubmissionResult()

        try:
            updated = await self.update_assignment_statistics(
                event.assignment_id,
                event.student_id,
                event.is_correct,
                event.is_new_submission,
            )
            result.assignment_updated = updated is not None
        except StatisticsUpdateError as e:
            logger.error("Assignment statistics update failed: %s", e)
            result.errors.append(str(e))

        try:
            updated_student = await self.update_student_statistics(
                event.student_id,
                event.assignment_id,
                event.is_correct,
                event.is_new_submission,
            )
            result.student_updated = updated_student is not None
        except StatisticsUpdateError as e:
            logger.error("Student statistics update failed: %s", e)
            result.errors.append(str(e))

        return result

    # =========================================================================
    # Assignment creation helpers
    # =========================================================================

    async def increment_student_assignment_count(
        self,
        student_id: str,
        assignment_id: str,
    ) -> StudentStatistics | None:
        """Add a newly created assignment to a student's partition.

        Idempotent: an assignment already counted for the student is left
        alone. A missing rollup is initialized from the current scope.

        Returns:
            The updated rollup, or None if the student or assignment does not exist.
        """
        async with self.locks.hold("student", student_id):
            try:
                if not await self.scope.assignment_exists(assignment_id):
                    await self.db.rollback()
                    return None
                stats = await self.lock_student_stats(student_id)
                if stats is None:
                    await self.db.rollback()
                    return None

                await self._move_student_member(stats, assignment_id, add_if_missing=True)
                stats.completion_rate = percentage(
                    stats.completed_assignments, stats.total_assignments
                )
                stats.last_updated = self.clock()
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StatisticsUpdateError("student", student_id, e) from e
            except Exception:
                await self.db.rollback()
                raise

        return StudentStatistics.model_validate(stats)

    async def increment_class_assignment_count(
        self,
        class_id: str,
        assignment_id: str | None = None,
        is_active: bool = True,
    ) -> ClassStatistics | None:
        """Count a newly created assignment in a class's aggregate.

        When the class has no aggregate yet, it is computed first (without
        ``assignment_id``) and the increment applied afterwards.

        Returns:
            The updated aggregate, or None if the class does not exist.
        """
        exclude = {assignment_id} if assignment_id else set()
        async with self.locks.hold("class", class_id):
            try:
                stats = await self.repository.get_class_stats(class_id, for_update=True)
                if stats is None:
                    values = await self.aggregator.compute_class_statistics(
                        class_id, exclude_assignment_ids=exclude
                    )
                    if values is None:
                        await self.db.rollback()
                        return None
                    stats = await self.repository.upsert_class_stats(values)

                stats.total_assignments += 1
                if is_active:
                    stats.active_assignments += 1
                stats.last_updated = self.clock()
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StatisticsUpdateError("class", class_id, e) from e
            except Exception:
                await self.db.rollback()
                raise

        return ClassStatistics.model_validate(stats)

    async def increment_school_assignment_count(
        self,
        is_active: bool,
        is_scheduled: bool,
        assignment_id: str | None = None,
        day: date | datetime | None = None,
    ) -> SchoolStatistics:
        """Count a newly created assignment in the day's school snapshot.

        If the snapshot does not exist yet, the full daily computation runs
        first and the increment is applied on top of it. ``assignment_id``
        is left out of that computation so the new assignment is counted once
        whether or not it is already visible.

        Raises:
            SnapshotClosedError: If the day has already passed.
        """
        snapshot_date = self._open_snapshot_date(day)
        exclude = {assignment_id} if assignment_id else set()
        async with self.locks.hold("school", snapshot_date):
            try:
                stats = await self.repository.get_school_stats(snapshot_date, for_update=True)
                if stats is None:
                    values = await self.aggregator.compute_school_statistics(
                        snapshot_date, exclude_assignment_ids=exclude
                    )
                    stats = await self.repository.upsert_school_stats(values)

                stats.total_assignments += 1
                if is_active:
                    stats.active_assignments += 1
                if is_scheduled:
                    stats.scheduled_assignments += 1
                stats.last_updated = self.clock()
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StatisticsUpdateError("school", str(snapshot_date), e) from e
            except Exception:
                await self.db.rollback()
                raise

        return SchoolStatistics.model_validate(stats)

    # =========================================================================
    # Aggregates
    # =========================================================================

    async def update_class_statistics(self, class_id: str) -> ClassStatistics | None:
        """Recompute a class aggregate. See StatisticsAggregator.

        Raises:
            StatisticsUpdateError: If the transaction failed.
        """
        async with self.locks.hold("class", class_id):
            try:
                stats = await self.aggregator.update_class_statistics(class_id)
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StatisticsUpdateError("class", class_id, e) from e
        return ClassStatistics.model_validate(stats) if stats else None

    async def update_teacher_statistics(self, teacher_id: str) -> TeacherStatistics | None:
        """Recompute a teacher aggregate. See StatisticsAggregator.

        Raises:
            StatisticsUpdateError: If the transaction failed.
        """
        async with self.locks.hold("teacher", teacher_id):
            try:
                stats = await self.aggregator.update_teacher_statistics(teacher_id)
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StatisticsUpdateError("teacher", teacher_id, e) from e
        return TeacherStatistics.model_validate(stats) if stats else None

    async def update_school_statistics(
        self, day: date | datetime | None = None
    ) -> SchoolStatistics:
        """Recompute the school snapshot of a day (today by default).

        Raises:
            SnapshotClosedError: If the day has already passed.
            StatisticsUpdateError: If the transaction failed.
        """
        snapshot_date = self._open_snapshot_date(day)
        async with self.locks.hold("school", snapshot_date):
            try:
                stats = await self.aggregator.update_school_statistics(snapshot_date)
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StatisticsUpdateError("school", str(snapshot_date), e) from e
        return SchoolStatistics.model_validate(stats)

    def _open_snapshot_date(self, day: date | datetime | None) -> date:
        snapshot_date = to_date(day, self.clock)
        if snapshot_date < self.clock().date():
            raise SnapshotClosedError(snapshot_date)
        return snapshot_date

    # =========================================================================
    # Read queries
    # =========================================================================

    async def get_assignment_statistics(self, assignment_id: str) -> AssignmentStatistics | None:
        stats = await self.repository.get_assignment_stats(assignment_id)
        return AssignmentStatistics.model_validate(stats) if stats else None

    async def get_student_statistics(self, student_id: str) -> StudentStatistics | None:
        stats = await self.repository.get_student_stats(student_id)
        return StudentStatistics.model_validate(stats) if stats else None

    async def get_class_statistics(self, class_id: str) -> ClassStatistics | None:
        stats: ClassStatsDetailed | None = await self.repository.get_class_stats(class_id)
        return ClassStatistics.model_validate(stats) if stats else None

    async def get_teacher_statistics(self, teacher_id: str) -> TeacherStatistics | None:
        stats: TeacherStats | None = await self.repository.get_teacher_stats(teacher_id)
        return TeacherStatistics.model_validate(stats) if stats else None

    async def get_school_statistics(
        self, day: date | datetime | None = None
    ) -> SchoolStatistics | None:
        """Get the snapshot of a day, or the most recent snapshot if no day is given."""
        stats: SchoolStats | None
        if day is None:
            stats = await self.repository.get_latest_school_stats()
        else:
            stats = await self.repository.get_school_stats(to_date(day, self.clock))
        return SchoolStatistics.model_validate(stats) if stats else None

    async def get_school_statistics_trend(self, days: int | None = None) -> list[SchoolStatistics]:
        """Get the snapshots of the last ``days`` days (today included), oldest first.

        Days without a snapshot are absent from the result.
        """
        days = days or self.settings.trend_default_days
        if days < 1:
            raise ValueError("days must be at least 1")
        since = self.clock().date() - timedelta(days=days - 1)
        rows = await self.repository.list_school_stats_since(since)
        return [SchoolStatistics.model_validate(row) for row in rows]
