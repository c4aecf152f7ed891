"""Personality inventory scoring.

Ten Likert items (0-4). Items 1-5 are scored as answered, items 6-10
are reverse-keyed and paired with the axis five positions earlier, so
each axis lands in 0-8.
"""
from typing import Any, Dict, Iterable, Mapping

from opinionmap.shared.errors import ValidationError
from opinionmap.shared.models import TRAIT_AXES, TraitScores

ITEM_COUNT = 10
LIKERT_MIN = 0
LIKERT_MAX = 4


def _invert(score: int) -> int:
    return LIKERT_MAX - score


def parse_answers(answers: Iterable[Mapping[str, Any]]) -> Dict[int, int]:
    """Turn [{"question_number": n, "score": s}, ...] into {n: s}.

    Raises:
        ValidationError: On a malformed, duplicate, out-of-range or
            missing item
    """
    parsed: Dict[int, int] = {}
    for answer in answers:
        if not isinstance(answer, Mapping):
            raise ValidationError("Each answer must be an object")
        number = answer.get("question_number")
        score = answer.get("score")
        if not isinstance(number, int) or isinstance(number, bool):
            raise ValidationError("question_number must be an integer")
        if not isinstance(score, int) or isinstance(score, bool):
            raise ValidationError("score must be an integer")
        if not 1 <= number <= ITEM_COUNT:
            raise ValidationError(f"question_number must be 1-{ITEM_COUNT}, got {number}")
        if not LIKERT_MIN <= score <= LIKERT_MAX:
            raise ValidationError(f"score must be {LIKERT_MIN}-{LIKERT_MAX}, got {score}")
        if number in parsed:
            raise ValidationError(f"Duplicate answer for question {number}")
        parsed[number] = score

    missing = [n for n in range(1, ITEM_COUNT + 1) if n not in parsed]
    if missing:
        raise ValidationError(f"Missing answers for questions {missing}")
    return parsed


def compute_trait_scores(answers: Mapping[int, int]) -> TraitScores:
    """Score a complete answer map into the five trait axes."""
    values = {}
    for index, axis in enumerate(TRAIT_AXES, start=1):
        values[axis] = answers[index] + _invert(answers[index + len(TRAIT_AXES)])
    return TraitScores(**values)
