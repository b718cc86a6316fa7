# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for assignment audiences."""

from edustats.domains.statistics.audience import (
    ClassBased,
    Individual,
    Mixed,
    StudentScope,
    audience_class_ids,
    audience_student_ids,
    make_audience,
)


class TestMakeAudience:
    """Tests for make_audience."""

    def test_class_based(self) -> None:
        """Test class links alone make a class-based audience."""
        audience = make_audience({"c1", "c2"}, set())

        assert audience == ClassBased(frozenset({"c1", "c2"}))
        assert audience_class_ids(audience) == {"c1", "c2"}
        assert audience_student_ids(audience) == frozenset()

    def test_individual(self) -> None:
        """Test student links alone make an individual audience."""
        audience = make_audience(set(), {"s1"})

        assert isinstance(audience, Individual)
        assert audience_class_ids(audience) == frozenset()
        assert audience_student_ids(audience) == {"s1"}

    def test_mixed(self) -> None:
        """Test both kinds of links make a mixed audience."""
        audience = make_audience({"c1"}, {"s1", "s2"})

        assert isinstance(audience, Mixed)
        assert audience_class_ids(audience) == {"c1"}
        assert audience_student_ids(audience) == {"s1", "s2"}

    def test_no_links(self) -> None:
        """Test an unlinked assignment has an empty class-based audience."""
        audience = make_audience(set(), set())

        assert audience == ClassBased(frozenset())


class TestStudentScope:
    """Tests for StudentScope."""

    def test_total_questions(self) -> None:
        """Test question totals only cover in-scope assignments."""
        scope = StudentScope(
            student_id="s1",
            assignment_ids={"a1", "a2"},
            question_counts={"a1": 3, "a2": 4, "a3": 10},
        )

        assert scope.total_questions == 7

    def test_missing_counts(self) -> None:
        """Test assignments without a count contribute nothing."""
        scope = StudentScope(student_id="s1", assignment_ids={"a1"})

        assert scope.total_questions == 0
