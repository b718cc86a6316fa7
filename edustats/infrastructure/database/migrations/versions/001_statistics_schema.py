# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Create statistics rollup tables.

Creates the five rollup tables and the two partition member ledgers.
The organizational tables they reference (users, classes, assignments)
are owned by the platform schema and must already exist.

Revision ID: 001_statistics_schema
Revises:
Create Date: 2025-01-20
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_statistics_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _int(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer, nullable=False, server_default="0")


def _rate(name: str) -> sa.Column:
    return sa.Column(name, sa.Float, nullable=False, server_default="0")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _entity_key(name: str, table: str) -> sa.Column:
    return sa.Column(
        name,
        sa.String(36),
        sa.ForeignKey(f"{table}.id", ondelete="CASCADE"),
        primary_key=True,
    )


def upgrade() -> None:
    """Create rollup and ledger tables."""

    op.create_table(
        "assignment_stats",
        _entity_key("assignment_id", "assignments"),
        _int("total_students"),
        _int("total_questions"),
        _int("completed_students"),
        _int("in_progress_students"),
        _int("not_started_students"),
        _rate("completion_rate"),
        _rate("average_score"),
        _int("total_answers"),
        _int("total_correct_answers"),
        _rate("accuracy_rate"),
        *_timestamps(),
    )

    op.create_table(
        "assignment_stats_members",
        sa.Column(
            "assignment_id",
            sa.String(36),
            sa.ForeignKey("assignment_stats.assignment_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        _entity_key("student_id", "users"),
        sa.Column("status", sa.String(20), nullable=False, server_default="not_started"),
    )

    op.create_table(
        "student_stats",
        _entity_key("student_id", "users"),
        _int("total_assignments"),
        _int("completed_assignments"),
        _int("in_progress_assignments"),
        _int("not_started_assignments"),
        _rate("average_score"),
        _int("total_questions"),
        _int("total_answers"),
        _int("total_correct_answers"),
        _rate("accuracy_rate"),
        _rate("completion_rate"),
        sa.Column("last_activity_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_student_stats_last_activity_date", "student_stats", ["last_activity_date"]
    )

    op.create_table(
        "student_stats_members",
        sa.Column(
            "student_id",
            sa.String(36),
            sa.ForeignKey("student_stats.student_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        _entity_key("assignment_id", "assignments"),
        sa.Column("status", sa.String(20), nullable=False, server_default="not_started"),
    )

    op.create_table(
        "class_stats_detailed",
        _entity_key("class_id", "classes"),
        _int("total_students"),
        _int("total_assignments"),
        _int("active_assignments"),
        _rate("average_completion"),
        _rate("average_score"),
        _int("total_questions"),
        _int("total_answers"),
        _int("total_correct_answers"),
        _rate("accuracy_rate"),
        _int("active_students"),
        _int("students_needing_help"),
        sa.Column("last_activity_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "teacher_stats",
        _entity_key("teacher_id", "users"),
        _int("total_assignments"),
        _int("total_classes"),
        _int("total_students"),
        _int("total_questions"),
        _rate("average_class_completion"),
        _rate("average_class_score"),
        _int("active_assignments"),
        _int("scheduled_assignments"),
        sa.Column("last_activity_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "school_stats",
        sa.Column("date", sa.Date, primary_key=True),
        _int("total_users"),
        _int("total_teachers"),
        _int("total_students"),
        _int("total_admins"),
        _int("total_classes"),
        _int("total_assignments"),
        _int("active_assignments"),
        _int("scheduled_assignments"),
        _rate("average_completion_rate"),
        _rate("average_score"),
        _int("total_questions"),
        _int("total_answers"),
        _int("total_correct_answers"),
        _int("completed_students"),
        _int("in_progress_students"),
        _int("not_started_students"),
        _int("daily_active_students"),
        _int("daily_active_teachers"),
        _int("students_needing_help"),
        *_timestamps(),
    )


def downgrade() -> None:
    """Drop rollup and ledger tables."""
    op.drop_table("school_stats")
    op.drop_table("teacher_stats")
    op.drop_table("class_stats_detailed")
    op.drop_table("student_stats_members")
    op.drop_index("ix_student_stats_last_activity_date", table_name="student_stats")
    op.drop_table("student_stats")
    op.drop_table("assignment_stats_members")
    op.drop_table("assignment_stats")
