"""Persistence collaborator for classroom data.

SessionStore is the narrow interface the core depends on. Reads are
assumed strongly consistent relative to prior writes from the same
process. InMemorySessionStore backs development and tests.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from opinionmap.shared.errors import NotFoundError
from opinionmap.shared.models import (
    ProgressStatus,
    Question,
    QuestionResponse,
    Reflection,
    Session,
    Student,
    TraitScores,
)

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Abstract persistence interface used by the progress and analytics services."""

    @abstractmethod
    def get_session(self, session_id: str) -> Session:
        """Return the session or raise NotFoundError."""

    @abstractmethod
    def get_student(self, student_id: str) -> Student:
        """Return the student or raise NotFoundError."""

    @abstractmethod
    def list_students(self, session_id: str) -> List[Student]:
        """Students of a session by ascending join time (ties by id)."""

    @abstractmethod
    def list_responses(self, session_id: str) -> List[QuestionResponse]:
        """All latest responses recorded in a session."""

    @abstractmethod
    def list_ordered_questions(self, theme_ids: Sequence[str]) -> List[Question]:
        """Questions of the given themes ordered by (theme rank, question order)."""

    @abstractmethod
    def get_question(self, question_id: str) -> Question:
        """Return the question or raise NotFoundError."""

    @abstractmethod
    def get_trait_scores(self, student_id: str) -> Optional[TraitScores]:
        """Trait scores of a student, None until the inventory is done."""

    @abstractmethod
    def save_trait_scores(self, student_id: str, scores: TraitScores) -> TraitScores:
        """Insert or replace trait scores."""

    @abstractmethod
    def delete_trait_scores(self, student_id: str) -> None:
        """Drop trait scores (teacher reset)."""

    @abstractmethod
    def upsert_response(self, response: QuestionResponse) -> QuestionResponse:
        """Store a response; the latest answered_at per (student, question) wins."""

    @abstractmethod
    def save_reflection(self, reflection: Reflection) -> Reflection:
        """Insert or replace a reflection per (student, goal_key)."""

    @abstractmethod
    def list_reflections(self, student_id: str) -> List[Reflection]:
        """Reflections of a student, most recent first."""

    @abstractmethod
    def set_progress_status(self, student_id: str, status: ProgressStatus) -> Student:
        """Single-row status update."""

    def count_responses_by_student(self, session_id: str) -> Dict[str, int]:
        """Number of answered questions per student."""
        counts: Dict[str, int] = {}
        for response in self.list_responses(session_id):
            counts[response.student_id] = counts.get(response.student_id, 0) + 1
        return counts


class InMemorySessionStore(SessionStore):
    """Thread-safe in-memory store (replace with a database in production)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        self._students: Dict[str, Student] = {}
        self._questions: Dict[str, Question] = {}
        self._traits: Dict[str, TraitScores] = {}
        self._responses: Dict[Tuple[str, str], QuestionResponse] = {}
        self._reflections: Dict[Tuple[str, str], Reflection] = {}

        logger.info("SESSION_STORE_INITIALIZED", extra={"backend": "memory"})

    # ----- seeding helpers ---------------------------------------------
    def add_session(self, session: Session) -> Session:
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def add_student(self, student: Student) -> Student:
        with self._lock:
            if student.session_id not in self._sessions:
                raise NotFoundError(f"Session {student.session_id} not found")
            self._students[student.student_id] = student
        return student

    def add_questions(self, questions: Iterable[Question]) -> None:
        with self._lock:
            for question in questions:
                self._questions[question.question_id] = question

    # ----- reads ---------------------------------------------------------
    def get_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def get_student(self, student_id: str) -> Student:
        student = self._students.get(student_id)
        if student is None:
            raise NotFoundError("Student not found")
        return student

    def list_students(self, session_id: str) -> List[Student]:
        with self._lock:
            students = [s for s in self._students.values() if s.session_id == session_id]
        students.sort(key=lambda s: (s.joined_at, s.student_id))
        return students

    def list_responses(self, session_id: str) -> List[QuestionResponse]:
        with self._lock:
            return [r for r in self._responses.values() if r.session_id == session_id]

    def list_ordered_questions(self, theme_ids: Sequence[str]) -> List[Question]:
        theme_rank = {theme_id: rank for rank, theme_id in enumerate(theme_ids)}
        with self._lock:
            questions = [q for q in self._questions.values() if q.theme_id in theme_rank]
        questions.sort(key=lambda q: (theme_rank[q.theme_id], q.order, q.question_id))
        return questions

    def get_question(self, question_id: str) -> Question:
        question = self._questions.get(question_id)
        if question is None:
            raise NotFoundError(f"Question {question_id} not found")
        return question

    def get_trait_scores(self, student_id: str) -> Optional[TraitScores]:
        return self._traits.get(student_id)

    def list_reflections(self, student_id: str) -> List[Reflection]:
        with self._lock:
            reflections = [r for r in self._reflections.values() if r.student_id == student_id]
        reflections.sort(key=lambda r: r.updated_at, reverse=True)
        return reflections

    # ----- writes --------------------------------------------------------
    def save_trait_scores(self, student_id: str, scores: TraitScores) -> TraitScores:
        with self._lock:
            self._traits[student_id] = scores
        return scores

    def delete_trait_scores(self, student_id: str) -> None:
        with self._lock:
            self._traits.pop(student_id, None)

    def upsert_response(self, response: QuestionResponse) -> QuestionResponse:
        key = (response.student_id, response.question_id)
        with self._lock:
            existing = self._responses.get(key)
            if existing is not None and existing.answered_at > response.answered_at:
                logger.info(
                    "RESPONSE_UPSERT_STALE",
                    extra={
                        "question_id": response.question_id,
                        "existing_answered_at": existing.answered_at.isoformat(),
                    }
                )
                return existing
            self._responses[key] = response
        return response

    def save_reflection(self, reflection: Reflection) -> Reflection:
        with self._lock:
            self._reflections[(reflection.student_id, reflection.goal_key)] = reflection
        return reflection

    def set_progress_status(self, student_id: str, status: ProgressStatus) -> Student:
        with self._lock:
            student = self._students.get(student_id)
            if student is None:
                raise NotFoundError("Student not found")
            updated = replace(student, progress_status=status)
            self._students[student_id] = updated
        return updated


# Process-wide store shared by services mounted in one process
_default_store: Optional[SessionStore] = None
_default_store_lock = threading.Lock()


def get_default_store() -> SessionStore:
    """Get or create the process-wide session store.

    Both Flask apps fall back to this store, so a progress service and
    an analytics service running in the same process see the same
    classroom. Services in separate processes each get their own
    in-memory copy and must be given a shared SessionStore instead.

    Returns:
        SessionStore instance
    """
    global _default_store

    with _default_store_lock:
        if _default_store is None:
            _default_store = InMemorySessionStore()
            logger.info("DEFAULT_SESSION_STORE_CREATED")
    return _default_store


def set_default_store(store: Optional[SessionStore]) -> None:
    """Replace the process-wide store (for testing and wiring)."""
    global _default_store
    with _default_store_lock:
        _default_store = store
