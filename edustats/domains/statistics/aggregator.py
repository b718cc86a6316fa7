# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Mid-tier and school aggregators.

Class and teacher aggregates are recomputed wholesale from the leaf
rollups (StudentStats, AssignmentStats), never from the fact store. The
school snapshot combines system-wide entity counts with AssignmentStats,
one row per calendar day.

Leaf rollups are read without locks: an aggregate may miss a leaf update
committed while it runs. Read-your-writes is not guaranteed.
"""

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession

from edustats.core.config import get_settings
from edustats.domains.statistics.audience import ScopeResolver
from edustats.domains.statistics.calculations import HelpPolicy, mean
from edustats.domains.statistics.repository import StatisticsRepository
from edustats.infrastructure.database.models import (
    ClassStatsDetailed,
    SchoolStats,
    TeacherStats,
)
from edustats.utils.datetime import Clock, days_ago, ensure_utc, hours_ago, to_date, utc_now

if TYPE_CHECKING:
    from edustats.core.config.settings import StatisticsSettings

logger = logging.getLogger(__name__)


class StatisticsAggregator:
    """Computes and stores class, teacher and school aggregates.

    ``compute_*`` methods return the row values without writing them, so
    the increment helpers can seed a missing row before bumping it.
    ``update_*`` methods upsert and commit.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: "StatisticsSettings | None" = None,
        clock: Clock = utc_now,
        repository: StatisticsRepository | None = None,
        scope: ScopeResolver | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings().statistics
        self.clock = clock
        self.repository = repository or StatisticsRepository(
            db, use_row_locks=self.settings.use_row_locks
        )
        self.scope = scope or ScopeResolver(db)
        self.help_policy = HelpPolicy(
            completion_threshold=self.settings.help_completion_threshold,
            accuracy_threshold=self.settings.help_accuracy_threshold,
        )

    def _timestamps(self) -> dict[str, datetime]:
        now = self.clock()
        return {"last_updated": now, "created_at": now, "updated_at": now}

    # =========================================================================
    # Class
    # =========================================================================

    async def compute_class_statistics(
        self,
        class_id: str,
        exclude_assignment_ids: set[str] | None = None,
    ) -> dict[str, Any] | None:
        """Aggregate the StudentStats of a class's current members.

        Args:
            class_id: Class to aggregate.
            exclude_assignment_ids: Linked assignments left out of the
                assignment counts.

        Returns:
            Row values, or None if the class does not exist.
        """
        if not await self.scope.class_exists(class_id):
            return None

        student_ids = await self.scope.class_student_ids(class_id)
        assignment_ids = await self.scope.class_assignment_ids(class_id)
        if exclude_assignment_ids:
            assignment_ids -= exclude_assignment_ids

        rollups = await self.repository.list_student_stats(student_ids)
        active_since = days_ago(self.settings.active_student_days, self.clock)
        activity = [
            ensure_utc(s.last_activity_date) for s in rollups if s.last_activity_date is not None
        ]

        return {
            "class_id": class_id,
            "total_students": len(student_ids),
            "total_assignments": len(assignment_ids),
            "active_assignments": await self.scope.count_active_assignments(assignment_ids),
            "average_completion": mean(s.completion_rate for s in rollups),
            "average_score": mean(s.average_score for s in rollups),
            "total_questions": sum(s.total_questions for s in rollups),
            "total_answers": sum(s.total_answers for s in rollups),
            "total_correct_answers": sum(s.total_correct_answers for s in rollups),
            "accuracy_rate": mean(s.accuracy_rate for s in rollups),
            "active_students": sum(1 for ts in activity if ts >= active_since),
            "students_needing_help": sum(
                1
                for s in rollups
                if self.help_policy.needs_help(s.completion_rate, s.accuracy_rate)
            ),
            "last_activity_date": max(activity, default=None),
            **self._timestamps(),
        }

    async def update_class_statistics(self, class_id: str) -> ClassStatsDetailed | None:
        """Recompute and store a class aggregate.

        Returns:
            The stored row, or None if the class does not exist.
        """
        values = await self.compute_class_statistics(class_id)
        if values is None:
            logger.info("Class %s not found, skipping statistics update", class_id)
            return None
        stats = await self.repository.upsert_class_stats(values)
        await self.db.commit()
        logger.debug(
            "Updated class %s statistics: %d students, %d needing help",
            class_id,
            stats.total_students,
            stats.students_needing_help,
        )
        return stats

    # =========================================================================
    # Teacher
    # =========================================================================

    async def compute_teacher_statistics(self, teacher_id: str) -> dict[str, Any] | None:
        """Aggregate the AssignmentStats of a teacher's assignments.

        Returns:
            Row values, or None if no teacher has this id.
        """
        teacher = await self.scope.get_teacher(teacher_id)
        if teacher is None:
            return None

        assignments = await self.scope.teacher_assignments(teacher_id)
        assignment_ids = {a.id for a in assignments}
        class_ids = await self.scope.teacher_class_ids(teacher_id)
        rollups = await self.repository.list_assignment_stats(assignment_ids)
        question_counts = await self.scope.question_counts(assignment_ids)
        last_activity = await self.scope.teacher_last_activity(teacher_id)

        return {
            "teacher_id": teacher_id,
            "total_assignments": len(assignments),
            "total_classes": len(class_ids),
            "total_students": await self.scope.count_students_in_classes(class_ids),
            "total_questions": sum(question_counts.values()),
            "average_class_completion": mean(s.completion_rate for s in rollups),
            "average_class_score": mean(s.average_score for s in rollups),
            "active_assignments": sum(1 for a in assignments if a.is_active),
            "scheduled_assignments": sum(1 for a in assignments if a.is_scheduled),
            "last_activity_date": ensure_utc(last_activity) if last_activity else None,
            **self._timestamps(),
        }

    async def update_teacher_statistics(self, teacher_id: str) -> TeacherStats | None:
        """Recompute and store a teacher aggregate.

        Returns:
            The stored row, or None if no teacher has this id.
        """
        values = await self.compute_teacher_statistics(teacher_id)
        if values is None:
            logger.info("Teacher %s not found, skipping statistics update", teacher_id)
            return None
        stats = await self.repository.upsert_teacher_stats(values)
        await self.db.commit()
        return stats

    # =========================================================================
    # School
    # =========================================================================

    async def compute_school_statistics(
        self,
        day: date,
        exclude_assignment_ids: set[str] | None = None,
    ) -> dict[str, Any]:
        """Compute the school snapshot values for ``day``.

        Entity counts and averages describe the current state; the daily
        activity counts cover the trailing window ending now.
        """
        counts = await self.scope.entity_counts(exclude_assignment_ids)
        rollups = await self.repository.list_assignment_stats(
            exclude_ids=exclude_assignment_ids
        )
        active_since = hours_ago(self.settings.daily_active_hours, self.clock)

        return {
            "date": day,
            "total_users": counts.total_users,
            "total_teachers": counts.total_teachers,
            "total_students": counts.total_students,
            "total_admins": counts.total_admins,
            "total_classes": counts.total_classes,
            "total_assignments": counts.total_assignments,
            "active_assignments": counts.active_assignments,
            "scheduled_assignments": counts.scheduled_assignments,
            "average_completion_rate": mean(s.completion_rate for s in rollups),
            "average_score": mean(s.average_score for s in rollups),
            "total_questions": sum(s.total_questions for s in rollups),
            "total_answers": sum(s.total_answers for s in rollups),
            "total_correct_answers": sum(s.total_correct_answers for s in rollups),
            "completed_students": sum(s.completed_students for s in rollups),
            "in_progress_students": sum(s.in_progress_students for s in rollups),
            "not_started_students": sum(s.not_started_students for s in rollups),
            "daily_active_students": await self.repository.count_students_active_since(
                active_since
            ),
            "daily_active_teachers": await self.scope.count_teachers_active_since(active_since),
            "students_needing_help": await self.repository.count_students_needing_help(
                self.help_policy.completion_threshold,
                self.help_policy.accuracy_threshold,
            ),
            **self._timestamps(),
        }

    async def update_school_statistics(self, day: date | datetime | None = None) -> SchoolStats:
        """Recompute and upsert the snapshot of ``day`` (today by default)."""
        snapshot_date = to_date(day, self.clock)
        values = await self.compute_school_statistics(snapshot_date)
        stats = await self.repository.upsert_school_stats(values)
        await self.db.commit()
        logger.info(
            "Updated school statistics for %s: %d assignments, %d daily active students",
            snapshot_date,
            stats.total_assignments,
            stats.daily_active_students,
        )
        return stats
