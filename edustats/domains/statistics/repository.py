# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Rollup repository.

Storage for the five rollup kinds and the two partition ledgers. Rows are
created with INSERT ... ON CONFLICT so concurrent initializers cannot
collide, and leaf rollups can be fetched with a row lock held until the
surrounding transaction ends.
"""

import logging
from datetime import date, datetime
from typing import Any, Iterable

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from edustats.infrastructure.database.models import (
    AssignmentStats,
    AssignmentStatsMember,
    ClassStatsDetailed,
    ProgressStatus,
    Question,
    SchoolStats,
    StudentStats,
    StudentStatsMember,
    TeacherStats,
)

logger = logging.getLogger(__name__)


class StatisticsRepository:
    """Data access for rollup tables.

    Attributes:
        db: Async database session.
        use_row_locks: Whether ``for_update`` reads issue SELECT ... FOR UPDATE.
    """

    def __init__(self, db: AsyncSession, use_row_locks: bool = True) -> None:
        self.db = db
        self.use_row_locks = use_row_locks

    def _insert(self, model: type) -> Any:
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise NotImplementedError(f"Upserts are not supported on {dialect}")

    async def _get(self, model: type, key_column: Any, key: Any, for_update: bool) -> Any:
        stmt = (
            select(model)
            .where(key_column == key)
            .execution_options(populate_existing=True)
        )
        if for_update and self.use_row_locks:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _upsert(self, model: type, key_name: str, values: dict[str, Any]) -> None:
        stmt = self._insert(model).values(**values)
        update_values = {k: v for k, v in values.items() if k not in (key_name, "created_at")}
        stmt = stmt.on_conflict_do_update(index_elements=[key_name], set_=update_values)
        await self.db.execute(stmt)

    async def _get_upserted(self, model: type, key_column: Any, key: Any) -> Any:
        """Read back a row written by _upsert.

        Raises:
            NoResultFound: If the row is missing.
        """
        result = await self.db.execute(
            select(model)
            .where(key_column == key)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    # =========================================================================
    # AssignmentStats
    # =========================================================================

    async def get_assignment_stats(
        self, assignment_id: str, for_update: bool = False
    ) -> AssignmentStats | None:
        return await self._get(
            AssignmentStats, AssignmentStats.assignment_id, assignment_id, for_update
        )

    async def create_assignment_stats(
        self,
        assignment_id: str,
        student_ids: Iterable[str],
        total_questions: int,
        now: datetime,
    ) -> bool:
        """Insert a freshly seeded AssignmentStats row and its ledger.

        Every student starts as not started. When another transaction created
        the row first, nothing is written.

        Returns:
            True if this call created the row.
        """
        members = sorted(set(student_ids))
        stmt = (
            self._insert(AssignmentStats)
            .values(
                assignment_id=assignment_id,
                total_students=len(members),
                total_questions=total_questions,
                not_started_students=len(members),
                last_updated=now,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["assignment_id"])
            .returning(AssignmentStats.assignment_id)
        )
        result = await self.db.execute(stmt)
        if result.scalar_one_or_none() is None:
            return False

        if members:
            await self.db.execute(
                self._insert(AssignmentStatsMember).values(
                    [
                        {
                            "assignment_id": assignment_id,
                            "student_id": student_id,
                            "status": ProgressStatus.NOT_STARTED.value,
                        }
                        for student_id in members
                    ]
                )
            )
        return True

    async def get_assignment_member_status(
        self, assignment_id: str, student_id: str
    ) -> ProgressStatus | None:
        result = await self.db.execute(
            select(AssignmentStatsMember.status).where(
                AssignmentStatsMember.assignment_id == assignment_id,
                AssignmentStatsMember.student_id == student_id,
            )
        )
        return result.scalar_one_or_none()

    async def set_assignment_member_status(
        self, assignment_id: str, student_id: str, status: ProgressStatus
    ) -> None:
        stmt = self._insert(AssignmentStatsMember).values(
            assignment_id=assignment_id, student_id=student_id, status=status.value
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["assignment_id", "student_id"],
            set_={"status": status.value},
        )
        await self.db.execute(stmt)

    async def get_assignment_members(self, assignment_id: str) -> dict[str, ProgressStatus]:
        result = await self.db.execute(
            select(AssignmentStatsMember.student_id, AssignmentStatsMember.status).where(
                AssignmentStatsMember.assignment_id == assignment_id
            )
        )
        return {row[0]: row[1] for row in result.all()}

    async def replace_assignment_members(
        self, assignment_id: str, members: dict[str, ProgressStatus]
    ) -> None:
        await self.db.execute(
            delete(AssignmentStatsMember).where(
                AssignmentStatsMember.assignment_id == assignment_id
            )
        )
        if members:
            await self.db.execute(
                self._insert(AssignmentStatsMember).values(
                    [
                        {"assignment_id": assignment_id, "student_id": sid, "status": st.value}
                        for sid, st in sorted(members.items())
                    ]
                )
            )

    async def list_assignment_stats(
        self,
        assignment_ids: Iterable[str] | None = None,
        exclude_ids: Iterable[str] | None = None,
    ) -> list[AssignmentStats]:
        """List AssignmentStats rows, optionally restricted to some assignments."""
        stmt = select(AssignmentStats).order_by(AssignmentStats.assignment_id)
        if assignment_ids is not None:
            ids = sorted(set(assignment_ids))
            if not ids:
                return []
            stmt = stmt.where(AssignmentStats.assignment_id.in_(ids))
        if exclude_ids:
            stmt = stmt.where(AssignmentStats.assignment_id.not_in(sorted(set(exclude_ids))))
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars())

    # =========================================================================
    # StudentStats
    # =========================================================================

    async def get_student_stats(
        self, student_id: str, for_update: bool = False
    ) -> StudentStats | None:
        return await self._get(StudentStats, StudentStats.student_id, student_id, for_update)

    async def create_student_stats(
        self,
        student_id: str,
        assignment_ids: Iterable[str],
        total_questions: int,
        now: datetime,
    ) -> bool:
        """Insert a freshly seeded StudentStats row and its ledger.

        Returns:
            True if this call created the row.
        """
        members = sorted(set(assignment_ids))
        stmt = (
            self._insert(StudentStats)
            .values(
                student_id=student_id,
                total_assignments=len(members),
                not_started_assignments=len(members),
                total_questions=total_questions,
                last_updated=now,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["student_id"])
            .returning(StudentStats.student_id)
        )
        result = await self.db.execute(stmt)
        if result.scalar_one_or_none() is None:
            return False

        if members:
            await self.db.execute(
                self._insert(StudentStatsMember).values(
                    [
                        {
                            "student_id": student_id,
                            "assignment_id": assignment_id,
                            "status": ProgressStatus.NOT_STARTED.value,
                        }
                        for assignment_id in members
                    ]
                )
            )
        return True

    async def get_student_member_status(
        self, student_id: str, assignment_id: str
    ) -> ProgressStatus | None:
        result = await self.db.execute(
            select(StudentStatsMember.status).where(
                StudentStatsMember.student_id == student_id,
                StudentStatsMember.assignment_id == assignment_id,
            )
        )
        return result.scalar_one_or_none()

    async def set_student_member_status(
        self, student_id: str, assignment_id: str, status: ProgressStatus
    ) -> None:
        stmt = self._insert(StudentStatsMember).values(
            student_id=student_id, assignment_id=assignment_id, status=status.value
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["student_id", "assignment_id"],
            set_={"status": status.value},
        )
        await self.db.execute(stmt)

    async def get_student_members(self, student_id: str) -> dict[str, ProgressStatus]:
        result = await self.db.execute(
            select(StudentStatsMember.assignment_id, StudentStatsMember.status).where(
                StudentStatsMember.student_id == student_id
            )
        )
        return {row[0]: row[1] for row in result.all()}

    async def replace_student_members(
        self, student_id: str, members: dict[str, ProgressStatus]
    ) -> None:
        await self.db.execute(
            delete(StudentStatsMember).where(StudentStatsMember.student_id == student_id)
        )
        if members:
            await self.db.execute(
                self._insert(StudentStatsMember).values(
                    [
                        {"student_id": student_id, "assignment_id": aid, "status": st.value}
                        for aid, st in sorted(members.items())
                    ]
                )
            )

    async def list_student_stats(
        self, student_ids: Iterable[str] | None = None
    ) -> list[StudentStats]:
        stmt = select(StudentStats).order_by(StudentStats.student_id)
        if student_ids is not None:
            ids = sorted(set(student_ids))
            if not ids:
                return []
            stmt = stmt.where(StudentStats.student_id.in_(ids))
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars())

    async def count_students_active_since(self, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count(StudentStats.student_id)).where(
                StudentStats.last_activity_date >= since
            )
        )
        return int(result.scalar_one())

    async def count_students_needing_help(
        self, completion_threshold: float, accuracy_threshold: float
    ) -> int:
        result = await self.db.execute(
            select(func.count(StudentStats.student_id)).where(
                or_(
                    StudentStats.completion_rate < completion_threshold,
                    StudentStats.accuracy_rate < accuracy_threshold,
                )
            )
        )
        return int(result.scalar_one())

    # =========================================================================
    # Leaf rollup maintenance
    # =========================================================================

    async def delete_leaf_statistics(self) -> None:
        """Delete every AssignmentStats and StudentStats row with their ledgers."""
        await self.db.execute(delete(AssignmentStatsMember))
        await self.db.execute(delete(StudentStatsMember))
        await self.db.execute(delete(AssignmentStats))
        await self.db.execute(delete(StudentStats))

    async def assignment_ids_with_stats(self) -> set[str]:
        result = await self.db.execute(select(AssignmentStats.assignment_id))
        return set(result.scalars())

    async def student_ids_with_stats(self) -> set[str]:
        result = await self.db.execute(select(StudentStats.student_id))
        return set(result.scalars())

    async def ledger_counts(
        self, member_model: type, key_column: Any
    ) -> dict[str, dict[ProgressStatus, int]]:
        """Bucket sizes per rollup according to a ledger table."""
        result = await self.db.execute(
            select(key_column, member_model.status, func.count()).group_by(
                key_column, member_model.status
            )
        )
        counts: dict[str, dict[ProgressStatus, int]] = {}
        for key, status, count in result.all():
            counts.setdefault(key, {})[ProgressStatus(status)] = int(count)
        return counts

    async def student_ledger_question_totals(self) -> dict[str, int]:
        """Current question count summed over each student's ledger assignments."""
        result = await self.db.execute(
            select(StudentStatsMember.student_id, func.count(Question.id))
            .join(Question, Question.assignment_id == StudentStatsMember.assignment_id)
            .group_by(StudentStatsMember.student_id)
        )
        return {row[0]: int(row[1]) for row in result.all()}

    # =========================================================================
    # Mid-tier and school rollups
    # =========================================================================

    async def get_class_stats(
        self, class_id: str, for_update: bool = False
    ) -> ClassStatsDetailed | None:
        return await self._get(
            ClassStatsDetailed, ClassStatsDetailed.class_id, class_id, for_update
        )

    async def upsert_class_stats(self, values: dict[str, Any]) -> ClassStatsDetailed:
        await self._upsert(ClassStatsDetailed, "class_id", values)
        return await self._get_upserted(
            ClassStatsDetailed, ClassStatsDetailed.class_id, values["class_id"]
        )

    async def get_teacher_stats(
        self, teacher_id: str, for_update: bool = False
    ) -> TeacherStats | None:
        return await self._get(TeacherStats, TeacherStats.teacher_id, teacher_id, for_update)

    async def upsert_teacher_stats(self, values: dict[str, Any]) -> TeacherStats:
        await self._upsert(TeacherStats, "teacher_id", values)
        return await self._get_upserted(TeacherStats, TeacherStats.teacher_id, values["teacher_id"])

    async def get_school_stats(
        self, day: date, for_update: bool = False
    ) -> SchoolStats | None:
        return await self._get(SchoolStats, SchoolStats.date, day, for_update)

    async def get_latest_school_stats(self) -> SchoolStats | None:
        result = await self.db.execute(
            select(SchoolStats)
            .order_by(SchoolStats.date.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert_school_stats(self, values: dict[str, Any]) -> SchoolStats:
        await self._upsert(SchoolStats, "date", values)
        return await self._get_upserted(SchoolStats, SchoolStats.date, values["date"])

    async def list_school_stats_since(self, since: date) -> list[SchoolStats]:
        result = await self.db.execute(
            select(SchoolStats)
            .where(SchoolStats.date >= since)
            .order_by(SchoolStats.date.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars())

    async def delete_school_stats_before(self, cutoff: date) -> int:
        result = await self.db.execute(delete(SchoolStats).where(SchoolStats.date < cutoff))
        deleted = result.rowcount or 0
        if deleted:
            logger.info("Deleted %d school snapshots older than %s", deleted, cutoff)
        return deleted
