# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Statistics domain services.

This module maintains pre-computed statistics rollups:
- Leaf rollups per assignment and per student, updated on every submission
- Class and teacher aggregates recomputed from the leaf rollups
- A school-wide snapshot per calendar day
- Reconciliation of rollups against the submission facts

Integration with Background Tasks:
- Aggregates are refreshed hourly via refresh_statistics_job
- The school snapshot is taken daily via snapshot_school_statistics_job
- Invariant violations are repaired nightly via repair_statistics_job

Usage:
    from edustats.domains.statistics import StatisticsService, SubmissionEvent

    service = StatisticsService(db)
    await service.process_submission(
        SubmissionEvent(student_id=student_id, assignment_id=assignment_id, is_correct=True)
    )

    # Reconciliation
    from edustats.domains.statistics import StatisticsReconciler

    reconciler = StatisticsReconciler(db)
    await reconciler.repair_statistics()
"""

from edustats.domains.statistics.aggregator import StatisticsAggregator
from edustats.domains.statistics.audience import (
    AssignmentAudience,
    AssignmentScope,
    ClassBased,
    Individual,
    Mixed,
    ScopeResolver,
    StudentScope,
    make_audience,
)
from edustats.domains.statistics.calculations import (
    HelpPolicy,
    PartitionCounters,
    apply_transition,
    percentage,
    progress_status,
)
from edustats.domains.statistics.locks import KeyedLock, get_rollup_locks
from edustats.domains.statistics.reconciliation import (
    ReconciliationError,
    StatisticsReconciler,
)
from edustats.domains.statistics.repository import StatisticsRepository
from edustats.domains.statistics.schemas import (
    AssignmentStatistics,
    AuditReport,
    ClassStatistics,
    InvariantViolation,
    JobResult,
    RepairResult,
    SchoolStatistics,
    StudentStatistics,
    SubmissionEvent,
    SubmissionResult,
    TeacherStatistics,
)
from edustats.domains.statistics.service import (
    SnapshotClosedError,
    StatisticsService,
    StatisticsServiceError,
    StatisticsUpdateError,
)

__all__ = [
    # Service
    "StatisticsService",
    "StatisticsServiceError",
    "StatisticsUpdateError",
    "SnapshotClosedError",
    "SubmissionEvent",
    "SubmissionResult",
    # Aggregation
    "StatisticsAggregator",
    # Reconciliation
    "StatisticsReconciler",
    "ReconciliationError",
    "AuditReport",
    "InvariantViolation",
    "RepairResult",
    "JobResult",
    # Read models
    "AssignmentStatistics",
    "StudentStatistics",
    "ClassStatistics",
    "TeacherStatistics",
    "SchoolStatistics",
    # Building blocks
    "StatisticsRepository",
    "ScopeResolver",
    "AssignmentAudience",
    "AssignmentScope",
    "StudentScope",
    "ClassBased",
    "Individual",
    "Mixed",
    "make_audience",
    "HelpPolicy",
    "PartitionCounters",
    "apply_transition",
    "percentage",
    "progress_status",
    "KeyedLock",
    "get_rollup_locks",
]
