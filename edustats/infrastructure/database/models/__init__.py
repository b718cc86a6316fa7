# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy models.

Importing this package registers every table on Base.metadata.
"""

from edustats.infrastructure.database.models.base import Base, TimestampMixin, new_id
from edustats.infrastructure.database.models.school import (
    Assignment,
    Class,
    ClassAssignment,
    Question,
    StudentAssignmentProgress,
    User,
    UserAssignment,
    UserClass,
    UserRole,
)
from edustats.infrastructure.database.models.statistics import (
    AssignmentStats,
    AssignmentStatsMember,
    ClassStatsDetailed,
    ProgressStatus,
    SchoolStats,
    StudentStats,
    StudentStatsMember,
    TeacherStats,
)

__all__ = [
    "Assignment",
    "AssignmentStats",
    "AssignmentStatsMember",
    "Base",
    "Class",
    "ClassAssignment",
    "ClassStatsDetailed",
    "ProgressStatus",
    "Question",
    "SchoolStats",
    "StudentAssignmentProgress",
    "StudentStats",
    "StudentStatsMember",
    "TeacherStats",
    "TimestampMixin",
    "User",
    "UserAssignment",
    "UserClass",
    "UserRole",
    "new_id",
]
