"""Tests for run-scoped pseudonyms."""
import re
from datetime import datetime, timedelta

from opinionmap.shared.models import Student
from opinionmap.services.analytics_service import (
    Anonymizer,
    format_label,
    seeded_permutation,
)

T0 = datetime(2024, 3, 1, 9, 0, 0)


def roster(n, session_id="sess_1"):
    return [
        Student(f"stu_{i}", session_id, joined_at=T0 + timedelta(minutes=i))
        for i in range(n)
    ]


class TestSeededPermutation:
    """Tests for the seeded Fisher-Yates shuffle."""

    def test_is_permutation(self):
        order = seeded_permutation(25, seed=1234)
        assert sorted(order) == list(range(25))

    def test_deterministic(self):
        assert seeded_permutation(10, seed=99) == seeded_permutation(10, seed=99)

    def test_known_small_cases(self):
        # lcg(0) is odd, lcg(1) is even
        assert seeded_permutation(2, seed=0) == [0, 1]
        assert seeded_permutation(2, seed=1) == [1, 0]

    def test_empty_and_single(self):
        assert seeded_permutation(0, seed=5) == []
        assert seeded_permutation(1, seed=5) == [0]


class TestFormatLabel:
    """Tests for label formatting."""

    def test_two_digit_minimum(self):
        assert format_label(1, 5) == "P01"
        assert format_label(12, 30) == "P12"

    def test_widens_for_large_rosters(self):
        assert format_label(7, 120) == "P007"


class TestAnonymizer:
    """Tests for roster pseudonymization."""

    def test_bijection_onto_labels(self):
        students = roster(7)

        mapping = Anonymizer().pseudonymize("sess_1", students)

        assert len(mapping) == 7
        assert sorted(mapping.label_by_student.values()) == [f"P0{i}" for i in range(1, 8)]
        assert all(re.fullmatch(r"P\d{2}", label) for label in mapping.label_by_student.values())

    def test_same_roster_same_labels(self):
        first = Anonymizer().pseudonymize("sess_1", roster(6))
        second = Anonymizer().pseudonymize("sess_1", list(reversed(roster(6))))

        assert first.label_by_student == second.label_by_student

    def test_injected_seed(self):
        mapping = Anonymizer(seed_fn=lambda _: 1).pseudonymize("sess_1", roster(2))

        assert mapping.label_for("stu_0") == "P02"
        assert mapping.label_for("stu_1") == "P01"

    def test_reverse_lookup(self):
        mapping = Anonymizer().pseudonymize("sess_1", roster(3))

        for student_id, label in mapping.label_by_student.items():
            assert mapping.student_by_label[label] == student_id

    def test_empty_roster(self):
        assert len(Anonymizer().pseudonymize("sess_1", [])) == 0
