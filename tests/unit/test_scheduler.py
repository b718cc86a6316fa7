# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the Dramatiq scheduler."""

from unittest.mock import MagicMock

import pytest

from edustats.infrastructure.background.scheduler import (
    DramatiqScheduler,
    parse_cron,
    register_statistics_jobs,
)


class TestParseCron:
    """Tests for parse_cron."""

    def test_valid_expression(self) -> None:
        """Test a five-field expression builds a UTC trigger."""
        trigger = parse_cron("5 0 * * *")

        assert str(trigger.timezone) == "UTC"
        fields = {f.name: str(f) for f in trigger.fields}
        assert fields["minute"] == "5"
        assert fields["hour"] == "0"

    @pytest.mark.parametrize("expression", ["* * * *", "0 * * * * *", ""])
    def test_invalid_expression(self, expression: str) -> None:
        """Test expressions without five fields are rejected."""
        with pytest.raises(ValueError):
            parse_cron(expression)


class TestDramatiqScheduler:
    """Tests for DramatiqScheduler."""

    def test_add_cron_task_before_start(self) -> None:
        """Test tasks can be registered before the scheduler runs."""
        scheduler = DramatiqScheduler()

        task = scheduler.add_cron_task(
            name="Daily School Snapshot",
            actor_name="snapshot_school_statistics_job",
            cron_expression="5 0 * * *",
        )

        assert scheduler.list_tasks() == [task]
        assert scheduler.is_running is False

    def test_add_cron_task_rejects_invalid_cron(self) -> None:
        """Test an invalid expression registers nothing."""
        scheduler = DramatiqScheduler()

        with pytest.raises(ValueError):
            scheduler.add_cron_task(name="Broken", actor_name="x", cron_expression="daily")

        assert scheduler.list_tasks() == []

    @pytest.mark.asyncio
    async def test_execute_task_sends_actor(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test a due task enqueues its actor with the configured arguments."""
        scheduler = DramatiqScheduler()
        actor = MagicMock()
        monkeypatch.setattr(scheduler, "_get_actor", lambda name: actor)
        task = scheduler.add_cron_task(
            name="Snapshot",
            actor_name="snapshot_school_statistics_job",
            cron_expression="5 0 * * *",
            kwargs={"date_str": "2026-03-10"},
        )

        await scheduler._execute_task(task.id)

        actor.send.assert_called_once_with(date_str="2026-03-10")
        assert task.run_count == 1
        assert task.last_run is not None
        assert task.error_count == 0

    @pytest.mark.asyncio
    async def test_execute_task_records_missing_actor(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test an unknown actor is counted as an error, not raised."""
        scheduler = DramatiqScheduler()
        monkeypatch.setattr(scheduler, "_get_actor", lambda name: None)
        task = scheduler.add_cron_task(
            name="Unknown", actor_name="no_such_actor", cron_expression="0 * * * *"
        )

        await scheduler._execute_task(task.id)

        assert task.run_count == 0
        assert task.error_count == 1

    @pytest.mark.asyncio
    async def test_disabled_task_is_skipped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test disabled tasks never send."""
        scheduler = DramatiqScheduler()
        actor = MagicMock()
        monkeypatch.setattr(scheduler, "_get_actor", lambda name: actor)
        task = scheduler.add_cron_task(
            name="Off", actor_name="repair_statistics_job", cron_expression="30 2 * * *",
            enabled=False,
        )

        await scheduler._execute_task(task.id)

        actor.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_start_schedules_registered_jobs(self) -> None:
        """Test tasks added while running become APScheduler jobs."""
        scheduler = DramatiqScheduler()
        await scheduler.start()
        try:
            task = scheduler.add_cron_task(
                name="Refresh", actor_name="refresh_statistics_job", cron_expression="0 * * * *"
            )

            assert scheduler.is_running is True
            assert scheduler._scheduler is not None
            assert scheduler._scheduler.get_job(task.id) is not None
        finally:
            await scheduler.stop()

        assert scheduler.is_running is False


class TestRegisterStatisticsJobs:
    """Tests for register_statistics_jobs."""

    def test_registers_the_periodic_jobs(self, fresh_settings: None) -> None:
        """Test the three statistics jobs are registered with existing actors."""
        scheduler = DramatiqScheduler()

        register_statistics_jobs(scheduler)

        names = sorted(task.actor_name for task in scheduler.list_tasks())
        assert names == [
            "refresh_statistics_job",
            "repair_statistics_job",
            "snapshot_school_statistics_job",
        ]
        for name in names:
            assert scheduler._get_actor(name) is not None
