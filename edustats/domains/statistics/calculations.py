# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pure calculations shared by the incremental and reconciliation paths.

Nothing here touches the database. Every rollup update is expressed as
``(current counters, old status, new status) -> new counters`` so the
incremental updaters and the full recalculation derive numbers the same way.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from edustats.infrastructure.database.models import ProgressStatus

_TWO_PLACES = Decimal("0.01")


def round2(value: float) -> float:
    """Round half-up to 2 decimal places for storage."""
    return float(Decimal(str(value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def percentage(part: float, whole: float) -> float:
    """Return part / whole * 100 rounded to 2 places, clamped to [0, 100].

    A zero (or negative) denominator yields 0.
    """
    if whole <= 0:
        return 0.0
    value = part / whole * 100
    return round2(min(100.0, max(0.0, value)))


def mean(values: Iterable[float]) -> float:
    """Arithmetic mean rounded to 2 places; 0 for no values."""
    items = list(values)
    if not items:
        return 0.0
    return round2(sum(items) / len(items))


def progress_status(completed_questions: int, total_questions: int) -> ProgressStatus:
    """Bucket implied by a member's completed-question count.

    Reaching the question total completes the member. Any completed question
    short of that means in progress. An assignment without questions can
    never be completed.
    """
    if total_questions > 0 and completed_questions >= total_questions:
        return ProgressStatus.COMPLETED
    if completed_questions >= 1:
        return ProgressStatus.IN_PROGRESS
    return ProgressStatus.NOT_STARTED


@dataclass
class PartitionCounters:
    """Bucket sizes of a rollup partition."""

    completed: int = 0
    in_progress: int = 0
    not_started: int = 0

    @property
    def total(self) -> int:
        return self.completed + self.in_progress + self.not_started

    def get(self, status: ProgressStatus) -> int:
        if status is ProgressStatus.COMPLETED:
            return self.completed
        if status is ProgressStatus.IN_PROGRESS:
            return self.in_progress
        return self.not_started

    def _add(self, status: ProgressStatus, delta: int) -> None:
        if status is ProgressStatus.COMPLETED:
            self.completed += delta
        elif status is ProgressStatus.IN_PROGRESS:
            self.in_progress += delta
        else:
            self.not_started += delta

    @classmethod
    def from_statuses(cls, statuses: Iterable[ProgressStatus]) -> "PartitionCounters":
        counters = cls()
        for status in statuses:
            counters._add(status, 1)
        return counters


def apply_transition(
    counters: PartitionCounters,
    old_status: ProgressStatus | None,
    new_status: ProgressStatus,
) -> PartitionCounters:
    """Move one member between buckets.

    Args:
        counters: Current bucket sizes.
        old_status: The member's recorded bucket, or None when the member is
            not yet part of the partition (it is added to new_status).
        new_status: Bucket implied by the fact store.

    Returns:
        New counters. The input is not modified.
    """
    result = PartitionCounters(
        completed=counters.completed,
        in_progress=counters.in_progress,
        not_started=counters.not_started,
    )
    if old_status is new_status:
        return result
    if old_status is not None:
        result._add(old_status, -1)
    result._add(new_status, 1)
    return result


@dataclass(frozen=True)
class HelpPolicy:
    """Thresholds below which a student is flagged as needing help."""

    completion_threshold: float = 50.0
    accuracy_threshold: float = 60.0

    def needs_help(self, completion_rate: float, accuracy_rate: float) -> bool:
        return (
            completion_rate < self.completion_threshold
            or accuracy_rate < self.accuracy_threshold
        )


def score_of(correct: int, answered: int) -> float:
    """Unrounded per-member score: correct over answered questions, in percent."""
    if answered <= 0:
        return 0.0
    return min(100.0, max(0.0, correct / answered * 100))
