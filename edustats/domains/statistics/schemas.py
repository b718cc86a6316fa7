# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Statistics schemas.

Read models returned by the query entry points (and served by the API),
the submission event consumed by the updaters, and the result types of
the reconciliation and refresh jobs.
"""

from datetime import date as date_type
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _ReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class AssignmentStatistics(_ReadModel):
    """Rollup of one assignment."""

    assignment_id: str = Field(description="Assignment ID")
    total_students: int = Field(description="Students in scope")
    total_questions: int = Field(description="Questions in the assignment")
    completed_students: int = Field(description="Students who completed every question")
    in_progress_students: int = Field(description="Students with partial progress")
    not_started_students: int = Field(description="Students without progress")
    completion_rate: float = Field(description="Completed students percentage")
    average_score: float = Field(description="Mean score of completed students")
    total_answers: int = Field(description="Answers submitted")
    total_correct_answers: int = Field(description="Correct answers submitted")
    accuracy_rate: float = Field(description="Correct answers percentage")
    last_updated: datetime = Field(description="Last rollup update")


class StudentStatistics(_ReadModel):
    """Rollup of one student."""

    student_id: str = Field(description="Student ID")
    total_assignments: int = Field(description="Assignments in scope")
    completed_assignments: int = Field(description="Assignments completed")
    in_progress_assignments: int = Field(description="Assignments with partial progress")
    not_started_assignments: int = Field(description="Assignments without progress")
    average_score: float = Field(description="Mean score over completed assignments")
    total_questions: int = Field(description="Questions across assignments in scope")
    total_answers: int = Field(description="Answers submitted")
    total_correct_answers: int = Field(description="Correct answers submitted")
    accuracy_rate: float = Field(description="Correct answers percentage")
    completion_rate: float = Field(description="Completed assignments percentage")
    last_activity_date: datetime | None = Field(description="Last submission time")
    last_updated: datetime = Field(description="Last rollup update")


class ClassStatistics(_ReadModel):
    """Aggregate of one class."""

    class_id: str = Field(description="Class ID")
    total_students: int = Field(description="Enrolled students")
    total_assignments: int = Field(description="Assignments linked to the class")
    active_assignments: int = Field(description="Linked assignments currently active")
    average_completion: float = Field(description="Mean student completion rate")
    average_score: float = Field(description="Mean student average score")
    total_questions: int = Field(description="Sum of student question totals")
    total_answers: int = Field(description="Sum of student answers")
    total_correct_answers: int = Field(description="Sum of student correct answers")
    accuracy_rate: float = Field(description="Mean student accuracy rate")
    active_students: int = Field(description="Students active in the trailing window")
    students_needing_help: int = Field(description="Students below help thresholds")
    last_activity_date: datetime | None = Field(description="Latest student activity")
    last_updated: datetime = Field(description="Last recomputation")


class TeacherStatistics(_ReadModel):
    """Aggregate of one teacher."""

    teacher_id: str = Field(description="Teacher ID")
    total_assignments: int = Field(description="Assignments owned by the teacher")
    total_classes: int = Field(description="Classes the teacher belongs to")
    total_students: int = Field(description="Distinct students across the classes")
    total_questions: int = Field(description="Questions across owned assignments")
    average_class_completion: float = Field(description="Mean assignment completion rate")
    average_class_score: float = Field(description="Mean assignment average score")
    active_assignments: int = Field(description="Active assignments")
    scheduled_assignments: int = Field(description="Assignments waiting to publish")
    last_activity_date: datetime | None = Field(description="Latest assignment change")
    last_updated: datetime = Field(description="Last recomputation")


class SchoolStatistics(_ReadModel):
    """School-wide snapshot of one day."""

    date: date_type = Field(description="Snapshot day")
    total_users: int = Field(description="All users")
    total_teachers: int = Field(description="Users with the teacher role")
    total_students: int = Field(description="Users with the student role")
    total_admins: int = Field(description="Users with the admin role")
    total_classes: int = Field(description="Classes")
    total_assignments: int = Field(description="Assignments")
    active_assignments: int = Field(description="Active assignments")
    scheduled_assignments: int = Field(description="Assignments waiting to publish")
    average_completion_rate: float = Field(description="Mean assignment completion rate")
    average_score: float = Field(description="Mean assignment average score")
    total_questions: int = Field(description="Questions across assignment rollups")
    total_answers: int = Field(description="Answers across assignment rollups")
    total_correct_answers: int = Field(description="Correct answers across assignment rollups")
    completed_students: int = Field(description="Completed student-assignment pairs")
    in_progress_students: int = Field(description="In-progress student-assignment pairs")
    not_started_students: int = Field(description="Not-started student-assignment pairs")
    daily_active_students: int = Field(description="Students active in the trailing day")
    daily_active_teachers: int = Field(description="Teachers active in the trailing day")
    students_needing_help: int = Field(description="Students below help thresholds")
    last_updated: datetime = Field(description="Last recomputation")


class SubmissionEvent(BaseModel):
    """A recorded answer, as emitted by the submission workflow."""

    student_id: str = Field(description="Student who answered")
    assignment_id: str = Field(description="Assignment answered")
    question_id: str | None = Field(default=None, description="Question answered")
    is_complete: bool = Field(default=True, description="Whether the answer is final")
    is_correct: bool = Field(default=False, description="Scorer verdict")
    is_new_submission: bool = Field(
        default=True,
        description="False when an existing answer was resubmitted",
    )


class SubmissionResult(BaseModel):
    """Outcome of applying one submission event to both leaf rollups."""

    assignment_updated: bool = False
    student_updated: bool = False
    errors: list[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors


class InvariantViolation(BaseModel):
    """A rollup row breaking one of its invariants."""

    kind: Literal["assignment", "student"] = Field(description="Rollup kind")
    key: str = Field(description="Owning entity ID")
    reason: str = Field(description="Which invariant is broken")


class AuditReport(BaseModel):
    """Result of auditing the leaf rollups."""

    checked_assignments: int = 0
    checked_students: int = 0
    violations: list[InvariantViolation] = Field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.violations


class RepairResult(BaseModel):
    """Result of repairing rollups found by an audit."""

    audit: AuditReport
    repaired: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class JobResult(BaseModel):
    """Counts reported by bulk jobs (refresh, rebuild, initialization)."""

    job: str
    processed: dict[str, int] = Field(default_factory=dict)
    failed: dict[str, int] = Field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    def record(self, kind: str, ok: bool) -> None:
        bucket = self.processed if ok else self.failed
        bucket[kind] = bucket.get(kind, 0) + 1

    @property
    def duration_ms(self) -> int:
        if not self.started_at or not self.finished_at:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job": self.job,
            "processed": dict(self.processed),
            "failed": dict(self.failed),
            "duration_ms": self.duration_ms,
            **self.details,
        }
