# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for concurrent updates of the same rollup.

Every concurrent caller uses its own session, as separate requests or
worker tasks would. Callers share the per-key lock registry.
"""

import asyncio

import pytest

from edustats.domains.statistics import KeyedLock, StatisticsService


class TestConcurrentAssignmentUpdates:
    """Tests for concurrent submissions on one assignment."""

    @pytest.mark.asyncio
    async def test_two_students_completing_together(
        self, service: StatisticsService, make_service, seed, locks: KeyedLock
    ) -> None:
        """Test two simultaneous completions both land in completed."""
        a, b = await seed.students(2)
        assignment = await seed.assignment(questions=2, student_ids=[a, b])
        for student in (a, b):
            await seed.answer(student, assignment, 0, correct=True)
            await service.update_assignment_statistics(assignment.id, student, True, True)

        await seed.answer(a, assignment, 1, correct=True)
        await seed.answer(b, assignment, 1, correct=False)
        await asyncio.gather(
            make_service().update_assignment_statistics(assignment.id, a, True, True),
            make_service().update_assignment_statistics(assignment.id, b, False, True),
        )

        stats = await service.get_assignment_statistics(assignment.id)
        assert stats is not None
        assert stats.completed_students == 2
        assert stats.in_progress_students == 0
        assert stats.not_started_students == 0
        assert stats.total_answers == 4
        assert stats.total_correct_answers == 3
        assert stats.average_score == 75.0
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_concurrent_first_submissions_initialize_once(
        self, service: StatisticsService, make_service, seed
    ) -> None:
        """Test concurrent first events create a single rollup."""
        students = await seed.students(3)
        assignment = await seed.assignment(questions=1, student_ids=students)
        for student in students:
            await seed.answer(student, assignment, 0, correct=True)

        await asyncio.gather(
            *[
                make_service().update_assignment_statistics(assignment.id, student, True, True)
                for student in students
            ]
        )

        stats = await service.get_assignment_statistics(assignment.id)
        assert stats is not None
        assert stats.total_students == 3
        assert stats.completed_students == 3
        assert stats.total_answers == 3

    @pytest.mark.asyncio
    async def test_duplicate_events_converge(
        self, service: StatisticsService, make_service, seed
    ) -> None:
        """Test replays racing each other move the student exactly once."""
        student, other = await seed.students(2)
        assignment = await seed.assignment(questions=3, student_ids=[student, other])
        for question in range(3):
            await seed.answer(student, assignment, question, correct=True)

        await asyncio.gather(
            *[
                make_service().update_assignment_statistics(
                    assignment.id, student, True, is_new_submission=False
                )
                for _ in range(5)
            ]
        )

        stats = await service.get_assignment_statistics(assignment.id)
        assert stats is not None
        assert stats.total_students == 2
        assert stats.completed_students == 1
        assert stats.not_started_students == 1
        assert stats.total_answers == 0


class TestConcurrentStudentUpdates:
    """Tests for concurrent submissions by one student."""

    @pytest.mark.asyncio
    async def test_parallel_assignments_of_one_student(
        self, service: StatisticsService, make_service, seed
    ) -> None:
        """Test completions on different assignments are all counted."""
        (student,) = await seed.students(1)
        assignments = [
            await seed.assignment(questions=1, student_ids=[student]) for _ in range(3)
        ]
        for assignment in assignments:
            await seed.answer(student, assignment, 0, correct=True)

        await asyncio.gather(
            *[
                make_service().update_student_statistics(student, assignment.id, True, True)
                for assignment in assignments
            ]
        )

        stats = await service.get_student_statistics(student)
        assert stats is not None
        assert stats.total_assignments == 3
        assert stats.completed_assignments == 3
        assert stats.total_answers == 3
        assert stats.completion_rate == 100.0
