# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Assignment audiences and organizational reads.

An assignment reaches students through class enrollment, through
individual assignment, or both. The audience is modeled explicitly and
resolved into a concrete set of student ids when a rollup is initialized.

All queries here are read-only over tables owned by other services.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

from sqlalchemy import distinct, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from edustats.infrastructure.database.models import (
    Assignment,
    Class,
    ClassAssignment,
    Question,
    User,
    UserAssignment,
    UserClass,
    UserRole,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassBased:
    """Assigned to every student enrolled in the given classes."""

    class_ids: frozenset[str]


@dataclass(frozen=True)
class Individual:
    """Assigned to the given students directly."""

    student_ids: frozenset[str]


@dataclass(frozen=True)
class Mixed:
    """Assigned to classes and to individual students."""

    class_ids: frozenset[str]
    student_ids: frozenset[str]


AssignmentAudience = Union[ClassBased, Individual, Mixed]


def make_audience(class_ids: set[str], student_ids: set[str]) -> AssignmentAudience:
    """Build the narrowest audience variant for the given links."""
    if class_ids and student_ids:
        return Mixed(frozenset(class_ids), frozenset(student_ids))
    if student_ids:
        return Individual(frozenset(student_ids))
    return ClassBased(frozenset(class_ids))


def audience_class_ids(audience: AssignmentAudience) -> frozenset[str]:
    if isinstance(audience, Individual):
        return frozenset()
    return audience.class_ids


def audience_student_ids(audience: AssignmentAudience) -> frozenset[str]:
    if isinstance(audience, ClassBased):
        return frozenset()
    return audience.student_ids


@dataclass
class AssignmentScope:
    """Resolved scope of an assignment."""

    assignment_id: str
    audience: AssignmentAudience
    student_ids: set[str]
    total_questions: int


@dataclass
class StudentScope:
    """Resolved scope of a student."""

    student_id: str
    assignment_ids: set[str]
    question_counts: dict[str, int] = field(default_factory=dict)

    @property
    def total_questions(self) -> int:
        return sum(self.question_counts.get(a, 0) for a in self.assignment_ids)


@dataclass
class EntityCounts:
    """System-wide entity counts for the school snapshot."""

    total_users: int = 0
    total_students: int = 0
    total_teachers: int = 0
    total_admins: int = 0
    total_classes: int = 0
    total_assignments: int = 0
    active_assignments: int = 0
    scheduled_assignments: int = 0


class ScopeResolver:
    """Read-only access to organizational structure.

    Attributes:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # =========================================================================
    # Assignment scope
    # =========================================================================

    async def assignment_exists(self, assignment_id: str) -> bool:
        result = await self.db.execute(
            select(Assignment.id).where(Assignment.id == assignment_id)
        )
        return result.scalar_one_or_none() is not None

    async def get_audience(self, assignment_id: str) -> AssignmentAudience | None:
        """Get an assignment's audience, or None if it does not exist."""
        if not await self.assignment_exists(assignment_id):
            return None

        class_rows = await self.db.execute(
            select(ClassAssignment.class_id).where(
                ClassAssignment.assignment_id == assignment_id
            )
        )
        student_rows = await self.db.execute(
            select(UserAssignment.user_id).where(
                UserAssignment.assignment_id == assignment_id
            )
        )
        return make_audience(set(class_rows.scalars()), set(student_rows.scalars()))

    async def resolve_students(self, audience: AssignmentAudience) -> set[str]:
        """Resolve an audience into the deduplicated set of student ids.

        Only users with the STUDENT role count; teachers enrolled in a
        class are not part of its audience.
        """
        class_ids = audience_class_ids(audience)
        direct_ids = audience_student_ids(audience)
        conditions = []
        if class_ids:
            enrolled = select(UserClass.user_id).where(UserClass.class_id.in_(sorted(class_ids)))
            conditions.append(User.id.in_(enrolled))
        if direct_ids:
            conditions.append(User.id.in_(sorted(direct_ids)))
        if not conditions:
            return set()

        result = await self.db.execute(
            select(User.id).where(User.role == UserRole.STUDENT, or_(*conditions))
        )
        return set(result.scalars())

    async def count_questions(self, assignment_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Question.id)).where(Question.assignment_id == assignment_id)
        )
        return int(result.scalar_one())

    async def question_counts(self, assignment_ids: set[str]) -> dict[str, int]:
        """Question count per assignment (assignments without questions map to 0)."""
        if not assignment_ids:
            return {}
        result = await self.db.execute(
            select(Question.assignment_id, func.count(Question.id))
            .where(Question.assignment_id.in_(sorted(assignment_ids)))
            .group_by(Question.assignment_id)
        )
        counts = {assignment_id: 0 for assignment_id in assignment_ids}
        counts.update({row[0]: int(row[1]) for row in result.all()})
        return counts

    async def resolve_assignment_scope(
        self,
        assignment_id: str,
    ) -> AssignmentScope | None:
        """Resolve an assignment's students and question count.

        Returns:
            The scope, or None if the assignment does not exist.
        """
        audience = await self.get_audience(assignment_id)
        if audience is None:
            return None
        scope = AssignmentScope(
            assignment_id=assignment_id,
            audience=audience,
            student_ids=await self.resolve_students(audience),
            total_questions=await self.count_questions(assignment_id),
        )
        logger.debug(
            "Resolved assignment %s audience %s: %d students",
            assignment_id,
            type(audience).__name__,
            len(scope.student_ids),
        )
        return scope

    # =========================================================================
    # Student scope
    # =========================================================================

    async def student_exists(self, student_id: str) -> bool:
        result = await self.db.execute(select(User.id).where(User.id == student_id))
        return result.scalar_one_or_none() is not None

    async def resolve_student_scope(self, student_id: str) -> StudentScope | None:
        """Resolve the assignments a student is in scope for.

        Includes scheduled and inactive assignments, so assignments that
        become visible later are already counted.

        Returns:
            The scope, or None if the student does not exist.
        """
        if not await self.student_exists(student_id):
            return None

        via_class = select(ClassAssignment.assignment_id).where(
            ClassAssignment.class_id.in_(
                select(UserClass.class_id).where(UserClass.user_id == student_id)
            )
        )
        direct = select(UserAssignment.assignment_id).where(
            UserAssignment.user_id == student_id
        )
        result = await self.db.execute(
            select(Assignment.id).where(
                or_(Assignment.id.in_(via_class), Assignment.id.in_(direct))
            )
        )
        assignment_ids = set(result.scalars())
        return StudentScope(
            student_id=student_id,
            assignment_ids=assignment_ids,
            question_counts=await self.question_counts(assignment_ids),
        )

    # =========================================================================
    # Class and teacher structure
    # =========================================================================

    async def class_exists(self, class_id: str) -> bool:
        result = await self.db.execute(select(Class.id).where(Class.id == class_id))
        return result.scalar_one_or_none() is not None

    async def class_student_ids(self, class_id: str) -> set[str]:
        result = await self.db.execute(
            select(User.id)
            .join(UserClass, UserClass.user_id == User.id)
            .where(UserClass.class_id == class_id, User.role == UserRole.STUDENT)
        )
        return set(result.scalars())

    async def class_assignment_ids(self, class_id: str) -> set[str]:
        result = await self.db.execute(
            select(ClassAssignment.assignment_id).where(ClassAssignment.class_id == class_id)
        )
        return set(result.scalars())

    async def count_active_assignments(self, assignment_ids: set[str]) -> int:
        if not assignment_ids:
            return 0
        result = await self.db.execute(
            select(func.count(Assignment.id)).where(
                Assignment.id.in_(sorted(assignment_ids)), Assignment.is_active.is_(True)
            )
        )
        return int(result.scalar_one())

    async def get_teacher(self, teacher_id: str) -> User | None:
        result = await self.db.execute(
            select(User).where(User.id == teacher_id, User.role == UserRole.TEACHER)
        )
        return result.scalar_one_or_none()

    async def teacher_assignments(self, teacher_id: str) -> list[Assignment]:
        result = await self.db.execute(
            select(Assignment).where(Assignment.teacher_id == teacher_id)
        )
        return list(result.scalars())

    async def teacher_class_ids(self, teacher_id: str) -> set[str]:
        """Classes the teacher is a member of."""
        result = await self.db.execute(
            select(UserClass.class_id).where(UserClass.user_id == teacher_id)
        )
        return set(result.scalars())

    async def count_students_in_classes(self, class_ids: set[str]) -> int:
        """Distinct students across the given classes."""
        if not class_ids:
            return 0
        result = await self.db.execute(
            select(func.count(distinct(User.id)))
            .join(UserClass, UserClass.user_id == User.id)
            .where(UserClass.class_id.in_(sorted(class_ids)), User.role == UserRole.STUDENT)
        )
        return int(result.scalar_one())

    async def all_class_ids(self) -> list[str]:
        result = await self.db.execute(select(Class.id).order_by(Class.id))
        return list(result.scalars())

    async def all_teacher_ids(self) -> list[str]:
        result = await self.db.execute(
            select(User.id).where(User.role == UserRole.TEACHER).order_by(User.id)
        )
        return list(result.scalars())

    async def all_student_ids(self) -> list[str]:
        result = await self.db.execute(
            select(User.id).where(User.role == UserRole.STUDENT).order_by(User.id)
        )
        return list(result.scalars())

    async def all_assignment_ids(self) -> list[str]:
        result = await self.db.execute(select(Assignment.id).order_by(Assignment.id))
        return list(result.scalars())

    # =========================================================================
    # System-wide counts
    # =========================================================================

    async def entity_counts(self, exclude_assignment_ids: set[str] | None = None) -> EntityCounts:
        """Count users by role, classes and assignments.

        Args:
            exclude_assignment_ids: Assignments left out of the assignment
                counts (used when seeding a snapshot before an increment).
        """
        role_rows = await self.db.execute(
            select(User.role, func.count(User.id)).group_by(User.role)
        )
        by_role = {UserRole(row[0]): int(row[1]) for row in role_rows.all()}

        classes = await self.db.execute(select(func.count(Class.id)))

        assignment_filter = []
        if exclude_assignment_ids:
            assignment_filter.append(Assignment.id.not_in(sorted(exclude_assignment_ids)))
        assignments = await self.db.execute(
            select(
                func.count(Assignment.id),
                func.count(Assignment.id).filter(Assignment.is_active.is_(True)),
                func.count(Assignment.id).filter(
                    Assignment.is_active.is_(False),
                    Assignment.scheduled_publish_at.is_not(None),
                ),
            ).where(*assignment_filter)
        )
        total, active, scheduled = assignments.one()

        return EntityCounts(
            total_users=sum(by_role.values()),
            total_students=by_role.get(UserRole.STUDENT, 0),
            total_teachers=by_role.get(UserRole.TEACHER, 0),
            total_admins=by_role.get(UserRole.ADMIN, 0),
            total_classes=int(classes.scalar_one()),
            total_assignments=int(total),
            active_assignments=int(active),
            scheduled_assignments=int(scheduled),
        )

    async def count_teachers_active_since(self, since: datetime) -> int:
        """Teachers who created or changed an assignment since ``since``."""
        result = await self.db.execute(
            select(func.count(distinct(Assignment.teacher_id))).where(
                Assignment.teacher_id.is_not(None),
                Assignment.updated_at >= since,
            )
        )
        return int(result.scalar_one())

    async def teacher_last_activity(self, teacher_id: str) -> datetime | None:
        """Latest create or update time of the teacher's assignments."""
        result = await self.db.execute(
            select(func.max(Assignment.updated_at)).where(Assignment.teacher_id == teacher_id)
        )
        return result.scalar_one_or_none()
