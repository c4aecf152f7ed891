"""Classroom domain models.

This file defines the core enums and records shared by the progress and
analytics services. Records are immutable; stores replace them instead
of mutating in place.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


class ProgressStatus(Enum):
    """Stages of the student learning sequence, in forward order."""
    NOT_STARTED = "NOT_STARTED"
    BIG_FIVE = "BIG_FIVE"                 # Personality inventory
    THEME_SELECTION = "THEME_SELECTION"
    BRIEFING = "BRIEFING"                 # Reading + reflection
    QUESTIONS = "QUESTIONS"               # Yes/no/unknown question set
    COMPLETED = "COMPLETED"               # Opinion map unlocked

    @property
    def rank(self) -> int:
        """Position of the status in the forward order."""
        return PROGRESS_ORDER.index(self)


PROGRESS_ORDER: Tuple[ProgressStatus, ...] = (
    ProgressStatus.NOT_STARTED,
    ProgressStatus.BIG_FIVE,
    ProgressStatus.THEME_SELECTION,
    ProgressStatus.BRIEFING,
    ProgressStatus.QUESTIONS,
    ProgressStatus.COMPLETED,
)


class ResponseValue(Enum):
    """Answer to a single yes/no/unknown question."""
    YES = "YES"
    NO = "NO"
    UNKNOWN = "UNKNOWN"

    def encode(self) -> int:
        """Numeric encoding used in response vectors."""
        if self is ResponseValue.YES:
            return 1
        if self is ResponseValue.NO:
            return -1
        return 0


class CallerRole(Enum):
    """Role of the authenticated caller."""
    TEACHER = "teacher"
    STUDENT = "student"


@dataclass(frozen=True)
class AuthContext:
    """Caller identity supplied by the upstream auth layer.

    Trusted as-is; the core never re-verifies it.
    """
    role: CallerRole
    session_id: str
    student_id: Optional[str] = None

    @property
    def is_teacher(self) -> bool:
        return self.role == CallerRole.TEACHER

    @property
    def client_key(self) -> str:
        """Key identifying one requesting client for in-flight jobs."""
        if self.student_id:
            return f"{self.role.value}:{self.student_id}"
        return f"{self.role.value}:{self.session_id}"


TRAIT_AXES: Tuple[str, ...] = (
    "extraversion",
    "agreeableness",
    "conscientiousness",
    "neuroticism",
    "openness",
)

TRAIT_MIN = 0
TRAIT_MAX = 8


@dataclass(frozen=True)
class TraitScores:
    """Five bounded personality axes for one student."""
    extraversion: int
    agreeableness: int
    conscientiousness: int
    neuroticism: int
    openness: int
    completed_at: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        for axis in TRAIT_AXES:
            value = getattr(self, axis)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{axis} must be an integer, got {value!r}")
            if not TRAIT_MIN <= value <= TRAIT_MAX:
                raise ValueError(
                    f"{axis} must be {TRAIT_MIN}-{TRAIT_MAX}, got {value}"
                )

    def as_vector(self) -> List[int]:
        """Axis values in the fixed vector order."""
        return [getattr(self, axis) for axis in TRAIT_AXES]

    def to_dict(self) -> dict:
        return {axis: getattr(self, axis) for axis in TRAIT_AXES}


@dataclass(frozen=True)
class Session:
    """A classroom session and its allowed themes, in rank order."""
    session_id: str
    theme_ids: Tuple[str, ...]
    title: Optional[str] = None


@dataclass(frozen=True)
class Student:
    """A student enrolled in one session."""
    student_id: str
    session_id: str
    progress_status: ProgressStatus = ProgressStatus.NOT_STARTED
    joined_at: datetime = field(default_factory=datetime.utcnow)
    name: Optional[str] = None


@dataclass(frozen=True)
class Question:
    """A yes/no/unknown question belonging to a theme."""
    question_id: str
    theme_id: str
    order: int
    text: str = ""


@dataclass(frozen=True)
class QuestionResponse:
    """Latest answer of one student to one question."""
    student_id: str
    session_id: str
    question_id: str
    value: ResponseValue
    answered_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class Reflection:
    """Free-text reflection saved during the briefing stage."""
    student_id: str
    session_id: str
    goal_key: str
    text: str
    updated_at: datetime = field(default_factory=datetime.utcnow)
