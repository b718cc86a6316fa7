# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Rollup tables maintained by the statistics engine.

Leaf rollups (assignment_stats, student_stats) are updated per submission.
Each owns a member ledger recording which progress bucket every member sits
in; the ledger and the counters are only written while the rollup row is
locked, so counters always equal the ledger's bucket sizes.

Mid-tier rollups (class_stats_detailed, teacher_stats) and the daily
school_stats snapshot are full recomputations over the leaf rollups.

Rows are removed only by cascade when the owning entity is deleted.
"""

import enum
from datetime import date as date_type
from datetime import datetime
from typing import Optional

from sqlalchemy import Date, DateTime, Enum, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from edustats.infrastructure.database.models.base import Base, TimestampMixin
from edustats.utils.datetime import utc_now


class ProgressStatus(str, enum.Enum):
    """Bucket of a partition member."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def _status_column() -> Mapped[ProgressStatus]:
    return mapped_column(
        Enum(
            ProgressStatus,
            name="progress_status",
            native_enum=False,
            length=20,
            values_callable=lambda e: [m.value for m in e],
        ),
        default=ProgressStatus.NOT_STARTED,
        nullable=False,
    )


def _last_updated_column() -> Mapped[datetime]:
    return mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)


class AssignmentStats(Base, TimestampMixin):
    """Per-assignment rollup over its in-scope students."""

    __tablename__ = "assignment_stats"

    assignment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assignments.id", ondelete="CASCADE"), primary_key=True
    )
    total_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    in_progress_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    not_started_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completion_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    average_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_answers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_correct_answers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    accuracy_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    last_updated: Mapped[datetime] = _last_updated_column()


class AssignmentStatsMember(Base):
    """A student counted in an assignment's partition and its bucket."""

    __tablename__ = "assignment_stats_members"

    assignment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("assignment_stats.assignment_id", ondelete="CASCADE"),
        primary_key=True,
    )
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    status: Mapped[ProgressStatus] = _status_column()


class StudentStats(Base, TimestampMixin):
    """Per-student rollup over its in-scope assignments."""

    __tablename__ = "student_stats"

    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    total_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    in_progress_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    not_started_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_answers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_correct_answers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    accuracy_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    completion_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    last_activity_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), index=True
    )
    last_updated: Mapped[datetime] = _last_updated_column()


class StudentStatsMember(Base):
    """An assignment counted in a student's partition and its bucket."""

    __tablename__ = "student_stats_members"

    student_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("student_stats.student_id", ondelete="CASCADE"),
        primary_key=True,
    )
    assignment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assignments.id", ondelete="CASCADE"), primary_key=True
    )
    status: Mapped[ProgressStatus] = _status_column()


class ClassStatsDetailed(Base, TimestampMixin):
    """Per-class aggregate over the members' StudentStats."""

    __tablename__ = "class_stats_detailed"

    class_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True
    )
    total_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_completion: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    average_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_answers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_correct_answers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    accuracy_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    active_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    students_needing_help: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_activity_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_updated: Mapped[datetime] = _last_updated_column()


class TeacherStats(Base, TimestampMixin):
    """Per-teacher aggregate over the teacher's AssignmentStats."""

    __tablename__ = "teacher_stats"

    teacher_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    total_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_classes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_class_completion: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    average_class_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    active_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    scheduled_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_activity_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_updated: Mapped[datetime] = _last_updated_column()


class SchoolStats(Base, TimestampMixin):
    """School-wide snapshot, one row per calendar day."""

    __tablename__ = "school_stats"

    date: Mapped[date_type] = mapped_column(Date, primary_key=True)
    total_users: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_teachers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_admins: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_classes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    scheduled_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_completion_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    average_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_answers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_correct_answers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    in_progress_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    not_started_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_active_students: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_active_teachers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    students_needing_help: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_updated: Mapped[datetime] = _last_updated_column()
