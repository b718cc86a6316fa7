# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for the daily school snapshot and its trend."""

from datetime import timedelta

import pytest

from edustats.domains.statistics import (
    SnapshotClosedError,
    StatisticsReconciler,
    StatisticsService,
)
from edustats.infrastructure.database.models import UserRole


async def snapshot_days_ago(service: StatisticsService, clock, days: int):
    """Take a snapshot on an earlier day, while that day was still open."""
    with clock.at(clock.now - timedelta(days=days)):
        return await service.update_school_statistics()


class TestSchoolSnapshot:
    """Tests for update_school_statistics."""

    @pytest.mark.asyncio
    async def test_counts_entities(self, service: StatisticsService, seed, clock) -> None:
        """Test users by role, classes and assignments by state are counted."""
        students = await seed.students(2)
        teacher_id = await seed.teacher()
        await seed.user(UserRole.ADMIN)
        await seed.classroom([*students, teacher_id])
        await seed.assignment(questions=1, teacher_id=teacher_id)
        await seed.assignment(questions=1, teacher_id=teacher_id, is_active=False, scheduled=True)
        await seed.assignment(questions=1, teacher_id=teacher_id, is_active=False)

        stats = await service.update_school_statistics()

        assert stats.date == clock.now.date()
        assert stats.total_users == 4
        assert stats.total_students == 2
        assert stats.total_teachers == 1
        assert stats.total_admins == 1
        assert stats.total_classes == 1
        assert stats.total_assignments == 3
        assert stats.active_assignments == 1
        assert stats.scheduled_assignments == 1

    @pytest.mark.asyncio
    async def test_sums_assignment_rollups_and_activity(
        self, service: StatisticsService, seed, clock
    ) -> None:
        """Test rollup sums, daily activity and the help count."""
        x, y = await seed.students(2)
        teacher_id = await seed.teacher()
        idle_teacher = await seed.teacher()
        assignment = await seed.assignment(questions=1, student_ids=[x, y], teacher_id=teacher_id)
        await seed.assignment(
            questions=1, teacher_id=idle_teacher, updated_at=clock.now - timedelta(days=3)
        )

        await seed.answer(x, assignment, 0, correct=False)
        await service.update_assignment_statistics(assignment.id, x, False, True)
        await service.update_student_statistics(x, assignment.id, False, True)

        stats = await service.update_school_statistics()

        assert stats.total_answers == 1
        assert stats.total_correct_answers == 0
        assert stats.completed_students == 1
        assert stats.not_started_students == 1
        assert stats.average_completion_rate == 50.0
        assert stats.daily_active_students == 1
        assert stats.daily_active_teachers == 1
        assert stats.students_needing_help == 1

    @pytest.mark.asyncio
    async def test_recompute_is_an_upsert(self, service: StatisticsService, seed, clock) -> None:
        """Test refreshing a day overwrites its snapshot."""
        await seed.assignment(questions=1)
        await service.update_school_statistics()
        await seed.assignment(questions=1)

        stats = await service.update_school_statistics(clock.now)

        assert stats.total_assignments == 2
        trend = await service.get_school_statistics_trend(1)
        assert len(trend) == 1

    @pytest.mark.asyncio
    async def test_past_day_is_closed(self, service: StatisticsService, seed, clock) -> None:
        """Test a past snapshot is neither recomputed nor created."""
        await seed.assignment(questions=1)
        before = await snapshot_days_ago(service, clock, 1)
        await seed.assignment(questions=1)
        await seed.assignment(questions=1)
        yesterday = clock.now.date() - timedelta(days=1)

        with pytest.raises(SnapshotClosedError):
            await service.update_school_statistics(yesterday)
        with pytest.raises(SnapshotClosedError):
            await service.update_school_statistics(yesterday - timedelta(days=1))

        after = await service.get_school_statistics(yesterday)
        assert after is not None
        assert after.total_assignments == before.total_assignments == 1
        assert await service.get_school_statistics(yesterday - timedelta(days=1)) is None

class TestIncrementSchoolAssignmentCount:
    """Tests for increment_school_assignment_count."""

    @pytest.mark.asyncio
    async def test_new_assignment_counted_once_when_seeding(
        self, service: StatisticsService, seed
    ) -> None:
        """Test a visible new assignment is not counted twice by the seeding pass."""
        await seed.assignment(questions=1)
        created = await seed.assignment(questions=1)

        stats = await service.increment_school_assignment_count(
            is_active=True, is_scheduled=False, assignment_id=created.id
        )

        assert stats.total_assignments == 2
        assert stats.active_assignments == 2
        assert stats.scheduled_assignments == 0

    @pytest.mark.asyncio
    async def test_increments_existing_snapshot(self, service: StatisticsService, seed) -> None:
        """Test increments on top of an existing snapshot."""
        await seed.assignment(questions=1)
        await service.update_school_statistics()
        scheduled = await seed.assignment(questions=1, is_active=False, scheduled=True)

        stats = await service.increment_school_assignment_count(
            is_active=False, is_scheduled=True, assignment_id=scheduled.id
        )

        assert stats.total_assignments == 2
        assert stats.active_assignments == 1
        assert stats.scheduled_assignments == 1

    @pytest.mark.asyncio
    async def test_past_day_is_not_incremented(
        self, service: StatisticsService, seed, clock
    ) -> None:
        """Test increments never reach a closed snapshot."""
        await seed.assignment(questions=1)
        await snapshot_days_ago(service, clock, 1)
        created = await seed.assignment(questions=1)
        yesterday = clock.now.date() - timedelta(days=1)

        with pytest.raises(SnapshotClosedError):
            await service.increment_school_assignment_count(
                is_active=True, is_scheduled=False, assignment_id=created.id, day=yesterday
            )

        stats = await service.get_school_statistics(yesterday)
        assert stats is not None
        assert stats.total_assignments == 1
        assert stats.active_assignments == 1


class TestSchoolQueries:
    """Tests for the snapshot read and trend queries."""

    @pytest.mark.asyncio
    async def test_trend_returns_window_oldest_first(
        self, service: StatisticsService, clock
    ) -> None:
        """Test only snapshots within the window are returned, ascending."""
        today = clock.now.date()
        for offset in (40, 10, 1, 0):
            await snapshot_days_ago(service, clock, offset)

        trend = await service.get_school_statistics_trend(30)
        default_trend = await service.get_school_statistics_trend()
        today_only = await service.get_school_statistics_trend(1)

        assert [s.date for s in trend] == [
            today - timedelta(days=10),
            today - timedelta(days=1),
            today,
        ]
        assert [s.date for s in default_trend] == [s.date for s in trend]
        assert [s.date for s in today_only] == [today]

    @pytest.mark.asyncio
    async def test_trend_rejects_negative_window(self, service: StatisticsService) -> None:
        """Test a negative number of days raises ValueError."""
        with pytest.raises(ValueError):
            await service.get_school_statistics_trend(-1)

    @pytest.mark.asyncio
    async def test_get_latest_or_by_day(self, service: StatisticsService, clock) -> None:
        """Test the latest snapshot is returned when no day is given."""
        today = clock.now.date()
        await snapshot_days_ago(service, clock, 3)
        await snapshot_days_ago(service, clock, 1)

        latest = await service.get_school_statistics()
        older = await service.get_school_statistics(today - timedelta(days=3))
        missing = await service.get_school_statistics(today)

        assert latest is not None and latest.date == today - timedelta(days=1)
        assert older is not None and older.date == today - timedelta(days=3)
        assert missing is None

    @pytest.mark.asyncio
    async def test_no_snapshots(self, service: StatisticsService) -> None:
        """Test empty results before the first snapshot."""
        assert await service.get_school_statistics() is None
        assert await service.get_school_statistics_trend(7) == []


class TestRefreshAggregates:
    """Tests for the hourly aggregate refresh."""

    @pytest.mark.asyncio
    async def test_refresh_and_retention(
        self, service: StatisticsService, reconciler: StatisticsReconciler, seed, clock
    ) -> None:
        """Test the refresh writes today's tier and prunes old snapshots."""
        today = clock.now.date()
        await snapshot_days_ago(service, clock, 400)
        await snapshot_days_ago(service, clock, 100)
        teacher_id = await seed.teacher()
        students = await seed.students(2)
        class_id = await seed.classroom([teacher_id, *students])

        job = await reconciler.refresh_aggregates()

        assert job.processed == {"school": 1, "classes": 1, "teachers": 1}
        assert job.failed == {}
        assert job.details["deleted_snapshots"] == 1
        assert await service.get_school_statistics(today - timedelta(days=400)) is None
        assert await service.get_school_statistics(today - timedelta(days=100)) is not None
        assert await service.get_school_statistics(today) is not None
        assert await service.get_class_statistics(class_id) is not None
        assert await service.get_teacher_statistics(teacher_id) is not None
