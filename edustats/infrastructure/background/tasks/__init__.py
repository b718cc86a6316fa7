# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task actors for EduStats.

Usage:
    from edustats.infrastructure.background.tasks import (
        process_submission_task,
        get_all_actors,
    )

    process_submission_task.send(
        {"student_id": "...", "assignment_id": "...", "is_correct": True}
    )

Running Workers:
    dramatiq edustats.infrastructure.background.tasks --processes 2 --threads 4
"""

from edustats.infrastructure.background.tasks.statistics import (
    get_statistics_actors,
    process_submission_task,
    recalculate_assignment_statistics_task,
    recalculate_student_statistics_task,
    refresh_statistics_job,
    repair_statistics_job,
    snapshot_school_statistics_job,
    update_class_statistics_task,
    update_teacher_statistics_task,
)


def get_all_actors() -> list:
    """Get all registered actors for worker startup."""
    return get_statistics_actors()


__all__ = [
    "process_submission_task",
    "recalculate_assignment_statistics_task",
    "recalculate_student_statistics_task",
    "update_class_statistics_task",
    "update_teacher_statistics_task",
    "refresh_statistics_job",
    "snapshot_school_statistics_job",
    "repair_statistics_job",
    "get_statistics_actors",
    "get_all_actors",
]
