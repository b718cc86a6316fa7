# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Organizational and fact tables.

These tables are owned by the platform's user, class and assignment
services and by the submission workflow. EduStats only reads them:

- users, classes, user_classes: who exists and who belongs where.
- assignments, class_assignments, user_assignments, questions: what was
  assigned to whom.
- student_assignment_progress: one row per student answer (the fact store).
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from edustats.infrastructure.database.models.base import Base, TimestampMixin, new_id


class UserRole(str, enum.Enum):
    """Platform role of a user."""

    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


class User(Base, TimestampMixin):
    """A platform user (student, teacher or admin)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", native_enum=False, length=20),
        default=UserRole.STUDENT,
        nullable=False,
    )


class Class(Base, TimestampMixin):
    """A class (section) grouping students and teachers."""

    __tablename__ = "classes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class UserClass(Base):
    """Class membership. Teachers are members of the classes they teach."""

    __tablename__ = "user_classes"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    class_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True
    )


class Assignment(Base, TimestampMixin):
    """An assignment of questions created by a teacher."""

    __tablename__ = "assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    teacher_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    scheduled_publish_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True)
    )

    @property
    def is_scheduled(self) -> bool:
        """Whether the assignment is waiting for a scheduled publish."""
        return not self.is_active and self.scheduled_publish_at is not None


class ClassAssignment(Base):
    """Assignment given to every member of a class."""

    __tablename__ = "class_assignments"

    class_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True
    )
    assignment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assignments.id", ondelete="CASCADE"), primary_key=True
    )


class UserAssignment(Base):
    """Assignment given to an individual student."""

    __tablename__ = "user_assignments"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    assignment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assignments.id", ondelete="CASCADE"), primary_key=True
    )


class Question(Base, TimestampMixin):
    """A question belonging to an assignment."""

    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    assignment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("assignments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    text_content: Mapped[Optional[str]] = mapped_column(String(2000))


class StudentAssignmentProgress(Base, TimestampMixin):
    """A student's answer to one question of an assignment.

    There is at most one row per (student, assignment, question); a
    resubmission updates the row instead of adding one.
    """

    __tablename__ = "student_assignment_progress"
    __table_args__ = (
        UniqueConstraint("student_id", "assignment_id", "question_id"),
        Index("ix_progress_assignment_student", "assignment_id", "student_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    assignment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False
    )
    question_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    is_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
