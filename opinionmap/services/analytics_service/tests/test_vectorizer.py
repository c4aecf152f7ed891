"""Tests for response vector construction."""
import pytest

from opinionmap.shared.errors import ValidationError
from opinionmap.shared.models import Question, ResponseValue, TraitScores
from opinionmap.services.analytics_service import build_vector, encode_response, vector_length

QUESTIONS = [Question("q1", "t", 1), Question("q2", "t", 2), Question("q3", "t", 3)]


class TestEncodeResponse:
    """Tests for answer encoding."""

    @pytest.mark.parametrize("value,expected", [
        ("YES", 1),
        ("NO", -1),
        ("UNKNOWN", 0),
        (ResponseValue.NO, -1),
        (None, 0),
    ])
    def test_encoding(self, value, expected):
        assert encode_response(value) == expected

    def test_invalid_value(self):
        with pytest.raises(ValidationError):
            encode_response("MAYBE")


class TestBuildVector:
    """Tests for fixed-length vectors."""

    def test_length_independent_of_answers(self):
        full = build_vector(QUESTIONS, {"q1": "YES", "q2": "NO", "q3": "UNKNOWN"})
        empty = build_vector(QUESTIONS, {})

        assert len(full) == len(empty) == vector_length(QUESTIONS) == 8

    def test_question_order_then_traits(self):
        traits = TraitScores(
            extraversion=1, agreeableness=2, conscientiousness=3,
            neuroticism=4, openness=5,
        )

        vector = build_vector(QUESTIONS, {"q3": "YES", "q1": "NO"}, traits)

        assert vector == [-1.0, 0.0, 1.0, 1.0, 2.0, 3.0, 4.0, 5.0]

    def test_missing_traits_are_zero(self):
        vector = build_vector(QUESTIONS, {"q1": "YES"}, None)
        assert vector[3:] == [0.0] * 5

    def test_traits_hidden(self):
        traits = TraitScores(
            extraversion=8, agreeableness=8, conscientiousness=8,
            neuroticism=8, openness=8,
        )

        vector = build_vector(QUESTIONS, {}, traits, include_traits=False)

        assert vector == [0.0] * 8

    def test_responses_to_unlisted_questions_ignored(self):
        vector = build_vector(QUESTIONS, {"q_elsewhere": "YES"})
        assert vector == [0.0] * 8
