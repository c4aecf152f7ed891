"""Progress Service: server-authoritative student progression.

The client UI is purely advisory; every student-facing mutation and the
initial session-entry check pass through the progress gate, which
refuses to move a student backwards unless a teacher resets them.

Components:
- gate.py: Transition table, next-path resolution, forward-only check
- trait_scoring.py: Personality inventory scoring
- handler.py: ProgressHandler applying gated mutations to the store
- http_handler.py: Flask HTTP endpoints

Usage:
    from opinionmap.services.progress_service import assert_forward_transition
    assert_forward_transition("QUESTIONS", "COMPLETED")
"""

from .gate import (
    TRANSITIONS,
    RESET_TARGETS,
    NEXT_PATH_TEMPLATES,
    parse_status,
    resolve_next_path,
    is_transition_allowed,
    assert_forward_transition,
)
from .trait_scoring import compute_trait_scores, parse_answers
from .handler import ProgressHandler, GOAL_KEYS

__all__ = [
    "TRANSITIONS",
    "RESET_TARGETS",
    "NEXT_PATH_TEMPLATES",
    "parse_status",
    "resolve_next_path",
    "is_transition_allowed",
    "assert_forward_transition",
    "compute_trait_scores",
    "parse_answers",
    "ProgressHandler",
    "GOAL_KEYS",
]
