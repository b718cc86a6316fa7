# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Read access to the submission fact store.

Only completed answers count towards progress. Each (student, assignment,
question) has at most one fact row, so row counts are question counts.
"""

from dataclasses import dataclass

from sqlalchemy import Integer, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from edustats.infrastructure.database.models import StudentAssignmentProgress


@dataclass(frozen=True)
class MemberProgress:
    """Completed and correct question counts of one student on one assignment."""

    answered: int
    correct: int


class FactStore:
    """Aggregating reads over student_assignment_progress."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def completed_question_count(self, student_id: str, assignment_id: str) -> int:
        """Number of questions of the assignment the student has completed."""
        result = await self.db.execute(
            select(func.count(StudentAssignmentProgress.id)).where(
                StudentAssignmentProgress.student_id == student_id,
                StudentAssignmentProgress.assignment_id == assignment_id,
                StudentAssignmentProgress.is_complete.is_(True),
            )
        )
        return int(result.scalar_one())

    async def progress_by_student(self, assignment_id: str) -> dict[str, MemberProgress]:
        """Completed progress on an assignment, per student with any."""
        result = await self.db.execute(
            select(
                StudentAssignmentProgress.student_id,
                func.count(StudentAssignmentProgress.id),
                func.sum(cast(StudentAssignmentProgress.is_correct, Integer)),
            )
            .where(
                StudentAssignmentProgress.assignment_id == assignment_id,
                StudentAssignmentProgress.is_complete.is_(True),
            )
            .group_by(StudentAssignmentProgress.student_id)
        )
        return {
            row[0]: MemberProgress(answered=int(row[1]), correct=int(row[2] or 0))
            for row in result.all()
        }

    async def progress_by_assignment(self, student_id: str) -> dict[str, MemberProgress]:
        """Completed progress of a student, per assignment with any."""
        result = await self.db.execute(
            select(
                StudentAssignmentProgress.assignment_id,
                func.count(StudentAssignmentProgress.id),
                func.sum(cast(StudentAssignmentProgress.is_correct, Integer)),
            )
            .where(
                StudentAssignmentProgress.student_id == student_id,
                StudentAssignmentProgress.is_complete.is_(True),
            )
            .group_by(StudentAssignmentProgress.assignment_id)
        )
        return {
            row[0]: MemberProgress(answered=int(row[1]), correct=int(row[2] or 0))
            for row in result.all()
        }
