"""Progress gate: server-authoritative student progression.

The legality of a status change is data, not scattered conditionals:
TRANSITIONS maps each status to the statuses a student may move to on
their own, and RESET_TARGETS lists where a privileged (teacher) reset
may send a student back to. Every check is pure and side-effect free.
"""
import logging
from typing import Dict, FrozenSet, Optional, Union

from opinionmap.shared.errors import ForbiddenError, ValidationError
from opinionmap.shared.models import PROGRESS_ORDER, ProgressStatus

logger = logging.getLogger(__name__)

StatusLike = Union[ProgressStatus, str]

# Forward-only: same stage (idempotent re-entry) or any later stage
TRANSITIONS: Dict[ProgressStatus, FrozenSet[ProgressStatus]] = {
    status: frozenset(PROGRESS_ORDER[status.rank:])
    for status in PROGRESS_ORDER
}

# Privileged regressions, e.g. teacher resetting the personality inventory
RESET_TARGETS: FrozenSet[ProgressStatus] = frozenset({ProgressStatus.BIG_FIVE})

NEXT_PATH_TEMPLATES: Dict[ProgressStatus, str] = {
    ProgressStatus.NOT_STARTED: "/student/session/{session_id}/big-five",
    ProgressStatus.BIG_FIVE: "/student/session/{session_id}/big-five",
    ProgressStatus.THEME_SELECTION: "/student/session/{session_id}/themes",
    ProgressStatus.BRIEFING: "/student/session/{session_id}/briefing",
    ProgressStatus.QUESTIONS: "/student/session/{session_id}/questions",
    ProgressStatus.COMPLETED: "/student/session/{session_id}/visualization",
}

DEFAULT_PATH_TEMPLATE = NEXT_PATH_TEMPLATES[ProgressStatus.NOT_STARTED]


def parse_status(value: StatusLike) -> ProgressStatus:
    """Coerce a persisted or submitted value into a ProgressStatus.

    Raises:
        ValidationError: If the value names no known status
    """
    if isinstance(value, ProgressStatus):
        return value
    try:
        return ProgressStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown progress status: {value!r}")


def resolve_next_path(status: Optional[StatusLike], session_id: str) -> str:
    """Path the student should be sent to for their current status.

    Total over its input: unknown or missing statuses resolve to the
    first stage.
    """
    template = DEFAULT_PATH_TEMPLATE
    if isinstance(status, ProgressStatus):
        template = NEXT_PATH_TEMPLATES[status]
    elif status is not None:
        try:
            template = NEXT_PATH_TEMPLATES[ProgressStatus(status)]
        except ValueError:
            pass
    return template.format(session_id=session_id)


def is_transition_allowed(
    current: ProgressStatus,
    requested: ProgressStatus,
    privileged: bool = False,
) -> bool:
    """True if moving from current to requested is legal."""
    if requested in TRANSITIONS[current]:
        return True
    return privileged and requested in RESET_TARGETS


def assert_forward_transition(
    current: StatusLike,
    requested: StatusLike,
    privileged: bool = False,
) -> ProgressStatus:
    """Validate a status change before it is persisted.

    Args:
        current: Status currently stored for the student
        requested: Status the mutation would write
        privileged: True only for teacher-triggered resets

    Returns:
        The requested status as a ProgressStatus

    Raises:
        ValidationError: If either status is malformed
        ForbiddenError: If the change would move the student backwards
            without privilege

    Logs:
        - PROGRESS_TRANSITION_DENIED: On a forbidden regression
    """
    current_status = parse_status(current)
    requested_status = parse_status(requested)

    if not is_transition_allowed(current_status, requested_status, privileged):
        logger.warning(
            "PROGRESS_TRANSITION_DENIED",
            extra={
                "current": current_status.value,
                "requested": requested_status.value,
                "privileged": privileged,
            }
        )
        raise ForbiddenError(
            f"Cannot move from {current_status.value} back to {requested_status.value}"
        )

    return requested_status
