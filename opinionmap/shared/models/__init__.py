"""Shared domain models for the opinion map platform."""
from .classroom import (
    ProgressStatus,
    PROGRESS_ORDER,
    ResponseValue,
    CallerRole,
    AuthContext,
    TraitScores,
    TRAIT_AXES,
    TRAIT_MIN,
    TRAIT_MAX,
    Session,
    Student,
    Question,
    QuestionResponse,
    Reflection,
)

__all__ = [
    "ProgressStatus",
    "PROGRESS_ORDER",
    "ResponseValue",
    "CallerRole",
    "AuthContext",
    "TraitScores",
    "TRAIT_AXES",
    "TRAIT_MIN",
    "TRAIT_MAX",
    "Session",
    "Student",
    "Question",
    "QuestionResponse",
    "Reflection",
]
