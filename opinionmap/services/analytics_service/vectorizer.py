"""Response vector construction.

One vector per student: the encoded answer for every question in the
run's ordered question list, followed by the five trait axes. The
length never depends on how many questions a student answered, so the
embedding always receives a rectangular matrix.
"""
from typing import List, Mapping, Optional, Sequence, Union

from opinionmap.shared.errors import ValidationError
from opinionmap.shared.models import TRAIT_AXES, Question, ResponseValue, TraitScores

ValueLike = Union[ResponseValue, str]

ZERO_TRAITS = (0,) * len(TRAIT_AXES)


def encode_response(value: Optional[ValueLike]) -> int:
    """YES=+1, NO=-1, UNKNOWN or missing=0."""
    if value is None:
        return 0
    if not isinstance(value, ResponseValue):
        try:
            value = ResponseValue(value)
        except ValueError:
            raise ValidationError(f"Invalid response value: {value!r}")
    return value.encode()


def vector_length(questions: Sequence[Question]) -> int:
    return len(questions) + len(TRAIT_AXES)


def build_vector(
    questions: Sequence[Question],
    responses: Mapping[str, ValueLike],
    traits: Optional[TraitScores] = None,
    include_traits: bool = True,
) -> List[float]:
    """Build a single student's response vector.

    Args:
        questions: Ordered question list, fixed for the whole run
        responses: question_id -> answer for this student
        traits: Trait scores, None if the inventory is not done
        include_traits: False when the caller may not see trait scores

    Returns:
        List of len(questions) + 5 numbers, unscaled
    """
    vector: List[float] = [
        float(encode_response(responses.get(q.question_id))) for q in questions
    ]
    if traits is not None and include_traits:
        vector.extend(float(v) for v in traits.as_vector())
    else:
        vector.extend(float(v) for v in ZERO_TRAITS)
    return vector
