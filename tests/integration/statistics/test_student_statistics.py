# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for the student rollup updater and submission processing."""

from unittest.mock import AsyncMock

import pytest

from edustats.domains.statistics import (
    StatisticsService,
    StatisticsUpdateError,
    SubmissionEvent,
)
from edustats.infrastructure.database.models import ProgressStatus
from edustats.utils.datetime import ensure_utc


async def answer_and_update(service: StatisticsService, seed, student_id, assignment, question, correct):
    is_new = await seed.answer(student_id, assignment, question, correct=correct)
    return await service.update_student_statistics(student_id, assignment.id, correct, is_new)


class TestStudentRollup:
    """Tests for update_student_statistics."""

    @pytest.mark.asyncio
    async def test_average_score_weighs_assignments_equally(
        self, service: StatisticsService, seed
    ) -> None:
        """Test a 1/1 and a 1/4 assignment average to 62.5, not 40."""
        (student,) = await seed.students(1)
        short = await seed.assignment(questions=1, student_ids=[student])
        long = await seed.assignment(questions=4, student_ids=[student])

        await answer_and_update(service, seed, student, short, 0, True)
        await answer_and_update(service, seed, student, long, 0, True)
        for question in (1, 2, 3):
            stats = await answer_and_update(service, seed, student, long, question, False)

        assert stats is not None
        assert stats.total_assignments == 2
        assert stats.completed_assignments == 2
        assert stats.in_progress_assignments == 0
        assert stats.not_started_assignments == 0
        assert stats.total_questions == 5
        assert stats.total_answers == 5
        assert stats.total_correct_answers == 2
        assert stats.accuracy_rate == 40.0
        assert stats.completion_rate == 100.0
        assert stats.average_score == 62.5

    @pytest.mark.asyncio
    async def test_partial_progress(self, service: StatisticsService, seed) -> None:
        """Test only completed assignments contribute to the average score."""
        (student,) = await seed.students(1)
        done = await seed.assignment(questions=1, student_ids=[student])
        partial = await seed.assignment(questions=3, student_ids=[student])
        await seed.assignment(questions=2, student_ids=[student])

        await answer_and_update(service, seed, student, done, 0, True)
        stats = await answer_and_update(service, seed, student, partial, 0, False)

        assert stats is not None
        assert stats.total_assignments == 3
        assert stats.completed_assignments == 1
        assert stats.in_progress_assignments == 1
        assert stats.not_started_assignments == 1
        assert stats.average_score == 100.0
        assert stats.completion_rate == 33.33
        assert stats.accuracy_rate == 50.0

    @pytest.mark.asyncio
    async def test_ledger_tracks_assignment_status(
        self, service: StatisticsService, seed
    ) -> None:
        """Test the member ledger records each assignment's bucket."""
        (student,) = await seed.students(1)
        done = await seed.assignment(questions=1, student_ids=[student])
        untouched = await seed.assignment(questions=2, student_ids=[student])

        await answer_and_update(service, seed, student, done, 0, True)

        members = await service.repository.get_student_members(student)

        assert members == {
            done.id: ProgressStatus.COMPLETED,
            untouched.id: ProgressStatus.NOT_STARTED,
        }

    @pytest.mark.asyncio
    async def test_last_activity_follows_the_clock(
        self, service: StatisticsService, seed, clock
    ) -> None:
        """Test every update stamps the student's last activity."""
        (student,) = await seed.students(1)
        assignment = await seed.assignment(questions=2, student_ids=[student])

        await answer_and_update(service, seed, student, assignment, 0, True)
        clock.advance(hours=5)
        stats = await answer_and_update(service, seed, student, assignment, 1, True)

        assert stats is not None
        assert ensure_utc(stats.last_activity_date) == clock.now
        stored = await service.get_student_statistics(student)
        assert stored is not None
        assert ensure_utc(stored.last_activity_date) == clock.now

    @pytest.mark.asyncio
    async def test_class_assignment_is_in_scope(self, service: StatisticsService, seed) -> None:
        """Test assignments reach the student through class enrollment."""
        (student,) = await seed.students(1)
        class_id = await seed.classroom([student])
        assignment = await seed.assignment(questions=2, class_ids=[class_id])
        await seed.assignment(questions=1, class_ids=[class_id], is_active=False, scheduled=True)

        stats = await answer_and_update(service, seed, student, assignment, 0, True)

        assert stats is not None
        assert stats.total_assignments == 2
        assert stats.in_progress_assignments == 1
        assert stats.not_started_assignments == 1
        assert stats.total_questions == 3

    @pytest.mark.asyncio
    async def test_missing_assignment_is_skipped(self, service: StatisticsService, seed) -> None:
        """Test an event for a deleted assignment leaves the student untouched."""
        (student,) = await seed.students(1)

        result = await service.update_student_statistics(student, "missing", True, True)

        assert result is None
        assert await service.get_student_statistics(student) is None

    @pytest.mark.asyncio
    async def test_missing_student_is_skipped(self, service: StatisticsService, seed) -> None:
        """Test an event for a deleted student creates nothing."""
        assignment = await seed.assignment(questions=1)

        result = await service.update_student_statistics("missing", assignment.id, True, True)

        assert result is None


class TestIncrementStudentAssignmentCount:
    """Tests for increment_student_assignment_count."""

    @pytest.mark.asyncio
    async def test_new_assignment_is_counted_once(self, service: StatisticsService, seed) -> None:
        """Test adding a created assignment is idempotent."""
        (student,) = await seed.students(1)
        class_id = await seed.classroom([student])
        first = await seed.assignment(questions=2, class_ids=[class_id])
        await service.increment_student_assignment_count(student, first.id)

        second = await seed.assignment(questions=3, class_ids=[class_id])
        stats = await service.increment_student_assignment_count(student, second.id)
        again = await service.increment_student_assignment_count(student, second.id)

        assert stats is not None
        assert stats.total_assignments == 2
        assert stats.not_started_assignments == 2
        assert stats.total_questions == 5
        assert stats.completion_rate == 0.0
        assert again is not None
        assert again.total_assignments == 2
        assert again.total_questions == 5

    @pytest.mark.asyncio
    async def test_lowers_completion_rate(self, service: StatisticsService, seed) -> None:
        """Test a new assignment dilutes the completion rate."""
        (student,) = await seed.students(1)
        done = await seed.assignment(questions=1, student_ids=[student])
        await answer_and_update(service, seed, student, done, 0, True)

        extra = await seed.assignment(questions=1)
        stats = await service.increment_student_assignment_count(student, extra.id)

        assert stats is not None
        assert stats.total_assignments == 2
        assert stats.completed_assignments == 1
        assert stats.completion_rate == 50.0

    @pytest.mark.asyncio
    async def test_unknown_entities(self, service: StatisticsService, seed) -> None:
        """Test unknown students or assignments return None."""
        (student,) = await seed.students(1)
        assignment = await seed.assignment(questions=1)

        assert await service.increment_student_assignment_count(student, "missing") is None
        assert await service.increment_student_assignment_count("missing", assignment.id) is None


class TestProcessSubmission:
    """Tests for process_submission."""

    @pytest.mark.asyncio
    async def test_updates_both_rollups(self, service: StatisticsService, seed) -> None:
        """Test one event updates the assignment and the student rollup."""
        (student,) = await seed.students(1)
        assignment = await seed.assignment(questions=1, student_ids=[student])
        await seed.answer(student, assignment, 0, correct=True)

        result = await service.process_submission(
            SubmissionEvent(student_id=student, assignment_id=assignment.id, is_correct=True)
        )

        assert result.assignment_updated is True
        assert result.student_updated is True
        assert result.succeeded
        assignment_stats = await service.get_assignment_statistics(assignment.id)
        student_stats = await service.get_student_statistics(student)
        assert assignment_stats is not None and assignment_stats.completed_students == 1
        assert student_stats is not None and student_stats.completed_assignments == 1

    @pytest.mark.asyncio
    async def test_missing_assignment(self, service: StatisticsService, seed) -> None:
        """Test an event for a deleted assignment updates nothing without errors."""
        (student,) = await seed.students(1)

        result = await service.process_submission(
            SubmissionEvent(student_id=student, assignment_id="missing")
        )

        assert result.assignment_updated is False
        assert result.student_updated is False
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_failure_of_one_rollup_does_not_block_the_other(
        self, service: StatisticsService, seed, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test a failed assignment update is reported while the student is updated."""
        (student,) = await seed.students(1)
        assignment = await seed.assignment(questions=1, student_ids=[student])
        await seed.answer(student, assignment, 0, correct=True)
        monkeypatch.setattr(
            service,
            "update_assignment_statistics",
            AsyncMock(
                side_effect=StatisticsUpdateError(
                    "assignment", assignment.id, RuntimeError("deadlock detected")
                )
            ),
        )

        result = await service.process_submission(
            SubmissionEvent(student_id=student, assignment_id=assignment.id, is_correct=True)
        )

        assert result.assignment_updated is False
        assert result.student_updated is True
        assert len(result.errors) == 1
        assert "deadlock detected" in result.errors[0]
        assert not result.succeeded
