"""Progress handler - student-facing mutations behind the progress gate.

Each mutation encodes an implicit target status. The order is always
the same: verify caller and session, validate input, consult the gate,
then write. Nothing is persisted when any check fails.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from opinionmap.shared.database import SessionStore
from opinionmap.shared.errors import ForbiddenError, NotFoundError, ValidationError
from opinionmap.shared.models import (
    AuthContext,
    ProgressStatus,
    QuestionResponse,
    Reflection,
    ResponseValue,
    Session,
    Student,
)
from opinionmap.shared.utils import hash_pii
from .gate import assert_forward_transition, resolve_next_path
from .trait_scoring import compute_trait_scores, parse_answers

logger = logging.getLogger(__name__)

GOAL_KEYS = frozenset({"goal1", "goal2", "goal3", "goal7"})
REFLECTION_MAX_LENGTH = 2000


class ProgressHandler:
    """Applies gated progress mutations for one store."""

    def __init__(
        self,
        store: SessionStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize handler with dependencies.

        Args:
            store: Persistence collaborator
            clock: Timestamp source (injected for testing)
        """
        self.store = store
        self._clock = clock or datetime.utcnow

        logger.info("PROGRESS_HANDLER_INITIALIZED")

    # ----- shared checks -------------------------------------------------
    def _load_session(self, auth: AuthContext, session_id: str) -> Session:
        if not session_id:
            raise ValidationError("session_id is required")
        if session_id != auth.session_id:
            raise ForbiddenError("Session does not match the authenticated session")
        return self.store.get_session(session_id)

    def _load_caller(self, auth: AuthContext, session_id: str) -> Student:
        """Resolve the calling student and pin them to the session."""
        if auth.is_teacher or not auth.student_id:
            raise ForbiddenError("Only students can perform this action")
        self._load_session(auth, session_id)
        student = self.store.get_student(auth.student_id)
        if student.session_id != session_id:
            raise ForbiddenError("Student does not belong to this session")
        return student

    def _write_status(
        self,
        student: Student,
        target: ProgressStatus,
        action: str,
    ) -> ProgressStatus:
        """Persist a gate-approved status; same-status writes are skipped."""
        if student.progress_status != target:
            self.store.set_progress_status(student.student_id, target)
            logger.info(
                "PROGRESS_STATUS_UPDATED",
                extra={
                    "student_id_hash": hash_pii(student.student_id),
                    "session_id": student.session_id,
                    "from_status": student.progress_status.value,
                    "to_status": target.value,
                    "action": action,
                }
            )
        return target

    # ----- operations ----------------------------------------------------
    def entry_check(self, auth: AuthContext, session_id: str) -> Dict[str, Any]:
        """Where a student re-entering the session should be sent."""
        student = self._load_caller(auth, session_id)
        return {
            "session_id": session_id,
            "student_id": student.student_id,
            "progress_status": student.progress_status.value,
            "next_path": resolve_next_path(student.progress_status, session_id),
        }

    def submit_trait_answers(
        self,
        auth: AuthContext,
        session_id: str,
        answers: Iterable[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        """Score the personality inventory and move on to theme selection."""
        student = self._load_caller(auth, session_id)
        scores = compute_trait_scores(parse_answers(answers))
        target = assert_forward_transition(
            student.progress_status, ProgressStatus.THEME_SELECTION
        )

        scores = self.store.save_trait_scores(student.student_id, scores)
        status = self._write_status(student, target, "submit_trait_answers")

        return {
            "scores": scores.to_dict(),
            "completed_at": scores.completed_at.isoformat() + "Z",
            "progress_status": status.value,
        }

    def save_reflection(
        self,
        auth: AuthContext,
        session_id: str,
        goal_key: str,
        text: str,
    ) -> Dict[str, Any]:
        """Save a briefing reflection and move on to the briefing stage."""
        student = self._load_caller(auth, session_id)
        if goal_key not in GOAL_KEYS:
            raise ValidationError(f"Unknown goal_key: {goal_key!r}")
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("reflection is required")
        text = text.strip()
        if len(text) > REFLECTION_MAX_LENGTH:
            raise ValidationError(
                f"reflection must be at most {REFLECTION_MAX_LENGTH} characters"
            )
        target = assert_forward_transition(student.progress_status, ProgressStatus.BRIEFING)

        reflection = self.store.save_reflection(Reflection(
            student_id=student.student_id,
            session_id=session_id,
            goal_key=goal_key,
            text=text,
            updated_at=self._clock(),
        ))
        status = self._write_status(student, target, "save_reflection")

        return {
            "goal_key": reflection.goal_key,
            "reflection": reflection.text,
            "updated_at": reflection.updated_at.isoformat() + "Z",
            "progress_status": status.value,
        }

    def submit_response(
        self,
        auth: AuthContext,
        session_id: str,
        question_id: str,
        value: str,
    ) -> Dict[str, Any]:
        """Upsert one yes/no/unknown answer and move on to the question stage."""
        student = self._load_caller(auth, session_id)
        session = self.store.get_session(session_id)
        try:
            response_value = ResponseValue(value)
        except ValueError:
            raise ValidationError(f"Invalid response value: {value!r}")
        question = self.store.get_question(question_id)
        if question.theme_id not in session.theme_ids:
            raise NotFoundError(f"Question {question_id} not found in this session")
        target = assert_forward_transition(student.progress_status, ProgressStatus.QUESTIONS)

        stored = self.store.upsert_response(QuestionResponse(
            student_id=student.student_id,
            session_id=session_id,
            question_id=question.question_id,
            value=response_value,
            answered_at=self._clock(),
        ))
        status = self._write_status(student, target, "submit_response")

        return {
            "question_id": stored.question_id,
            "response_value": stored.value.value,
            "answered_at": stored.answered_at.isoformat() + "Z",
            "progress_status": status.value,
        }

    def mark_complete(self, auth: AuthContext, session_id: str) -> Dict[str, Any]:
        """Finish the question stage. Calling it again is a no-op success."""
        student = self._load_caller(auth, session_id)
        target = assert_forward_transition(student.progress_status, ProgressStatus.COMPLETED)
        status = self._write_status(student, target, "mark_complete")
        return {"progress_status": status.value}

    def reset_traits(
        self,
        auth: AuthContext,
        session_id: str,
        student_id: str,
    ) -> Dict[str, Any]:
        """Teacher-only: drop a student's trait scores and send them back.

        This is the only privileged regression.
        """
        if not auth.is_teacher:
            raise ForbiddenError("Only teachers can reset a student")
        self._load_session(auth, session_id)
        student = self.store.get_student(student_id)
        if student.session_id != session_id:
            raise NotFoundError("Student not found in this session")
        target = assert_forward_transition(
            student.progress_status, ProgressStatus.BIG_FIVE, privileged=True
        )

        self.store.delete_trait_scores(student.student_id)
        status = self._write_status(student, target, "reset_traits")

        logger.info(
            "TRAIT_SCORES_RESET",
            extra={
                "student_id_hash": hash_pii(student.student_id),
                "session_id": session_id,
            }
        )
        return {"student_id": student.student_id, "progress_status": status.value}
