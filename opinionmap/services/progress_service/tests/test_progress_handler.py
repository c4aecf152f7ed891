"""Tests for the gated progress handler."""
import pytest
from datetime import datetime, timedelta

from opinionmap.shared.database import InMemorySessionStore
from opinionmap.shared.errors import ForbiddenError, NotFoundError, ValidationError
from opinionmap.shared.models import (
    AuthContext,
    CallerRole,
    ProgressStatus,
    Question,
    Session,
    Student,
    TraitScores,
)
from opinionmap.shared.utils import configure_pii_salt
from opinionmap.services.progress_service import ProgressHandler

T0 = datetime(2024, 3, 1, 9, 0, 0)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def store():
    s = InMemorySessionStore()
    s.add_session(Session(session_id="sess_1", theme_ids=("theme_a",)))
    s.add_session(Session(session_id="sess_2", theme_ids=("theme_b",)))
    s.add_questions([
        Question("q1", "theme_a", 1, "Should school start later?"),
        Question("q2", "theme_a", 2),
        Question("q_other", "theme_b", 1),
    ])
    s.add_student(Student("stu_1", "sess_1", joined_at=T0))
    s.add_student(Student("stu_2", "sess_2", joined_at=T0))
    return s


@pytest.fixture
def clock():
    ticks = iter(T0 + timedelta(seconds=i) for i in range(1000))
    return lambda: next(ticks)


@pytest.fixture
def handler(store, clock):
    return ProgressHandler(store=store, clock=clock)


@pytest.fixture
def student():
    return AuthContext(role=CallerRole.STUDENT, session_id="sess_1", student_id="stu_1")


@pytest.fixture
def teacher():
    return AuthContext(role=CallerRole.TEACHER, session_id="sess_1")


def neutral_answers():
    return [{"question_number": n, "score": 2} for n in range(1, 11)]


class TestEntryCheck:
    """Tests for resume routing."""

    def test_new_student(self, handler, student):
        result = handler.entry_check(student, "sess_1")

        assert result["progress_status"] == "NOT_STARTED"
        assert result["next_path"] == "/student/session/sess_1/big-five"

    def test_completed_student(self, handler, store, student):
        store.set_progress_status("stu_1", ProgressStatus.COMPLETED)

        result = handler.entry_check(student, "sess_1")

        assert result["next_path"] == "/student/session/sess_1/visualization"

    def test_cross_session_forbidden(self, handler, student):
        with pytest.raises(ForbiddenError):
            handler.entry_check(student, "sess_2")

    def test_student_from_other_session(self, handler):
        auth = AuthContext(role=CallerRole.STUDENT, session_id="sess_1", student_id="stu_2")
        with pytest.raises(ForbiddenError):
            handler.entry_check(auth, "sess_1")

    def test_teacher_cannot_enter_as_student(self, handler, teacher):
        with pytest.raises(ForbiddenError):
            handler.entry_check(teacher, "sess_1")

    def test_missing_session_id(self, handler, student):
        with pytest.raises(ValidationError):
            handler.entry_check(student, "")


class TestTraitSubmission:
    """Tests for the personality inventory step."""

    def test_moves_to_theme_selection(self, handler, store, student):
        result = handler.submit_trait_answers(student, "sess_1", neutral_answers())

        assert result["progress_status"] == "THEME_SELECTION"
        assert result["scores"]["openness"] == 4
        assert store.get_trait_scores("stu_1") is not None

    def test_invalid_answers_write_nothing(self, handler, store, student):
        with pytest.raises(ValidationError):
            handler.submit_trait_answers(student, "sess_1", neutral_answers()[:5])

        assert store.get_trait_scores("stu_1") is None
        assert store.get_student("stu_1").progress_status == ProgressStatus.NOT_STARTED

    def test_after_questions_forbidden(self, handler, store, student):
        store.set_progress_status("stu_1", ProgressStatus.QUESTIONS)

        with pytest.raises(ForbiddenError):
            handler.submit_trait_answers(student, "sess_1", neutral_answers())

        assert store.get_trait_scores("stu_1") is None
        assert store.get_student("stu_1").progress_status == ProgressStatus.QUESTIONS


class TestReflection:
    """Tests for the briefing step."""

    def test_saves_and_moves_to_briefing(self, handler, store, student):
        store.set_progress_status("stu_1", ProgressStatus.THEME_SELECTION)

        result = handler.save_reflection(student, "sess_1", "goal2", "  I learned a lot  ")

        assert result["reflection"] == "I learned a lot"
        assert result["progress_status"] == "BRIEFING"
        assert len(store.list_reflections("stu_1")) == 1

    def test_unknown_goal(self, handler, student):
        with pytest.raises(ValidationError):
            handler.save_reflection(student, "sess_1", "goal4", "text")

    def test_empty_text(self, handler, student):
        with pytest.raises(ValidationError):
            handler.save_reflection(student, "sess_1", "goal1", "   ")

    def test_too_long(self, handler, student):
        with pytest.raises(ValidationError):
            handler.save_reflection(student, "sess_1", "goal1", "x" * 2001)

    def test_after_completion_forbidden(self, handler, store, student):
        store.set_progress_status("stu_1", ProgressStatus.COMPLETED)

        with pytest.raises(ForbiddenError):
            handler.save_reflection(student, "sess_1", "goal1", "late thought")

        assert store.list_reflections("stu_1") == []


class TestResponses:
    """Tests for question answers."""

    def test_upsert_moves_to_questions(self, handler, store, student):
        store.set_progress_status("stu_1", ProgressStatus.BRIEFING)

        result = handler.submit_response(student, "sess_1", "q1", "YES")

        assert result["response_value"] == "YES"
        assert result["progress_status"] == "QUESTIONS"

    def test_resubmit_replaces_answer(self, handler, store, student):
        handler.submit_response(student, "sess_1", "q1", "YES")
        handler.submit_response(student, "sess_1", "q1", "NO")

        responses = store.list_responses("sess_1")

        assert len(responses) == 1
        assert responses[0].value.value == "NO"

    def test_invalid_value(self, handler, student):
        with pytest.raises(ValidationError):
            handler.submit_response(student, "sess_1", "q1", "MAYBE")

    def test_question_outside_session_themes(self, handler, student):
        with pytest.raises(NotFoundError):
            handler.submit_response(student, "sess_1", "q_other", "YES")

    def test_unknown_question(self, handler, student):
        with pytest.raises(NotFoundError):
            handler.submit_response(student, "sess_1", "q_missing", "YES")

    def test_after_completion_forbidden(self, handler, store, student):
        store.set_progress_status("stu_1", ProgressStatus.COMPLETED)

        with pytest.raises(ForbiddenError):
            handler.submit_response(student, "sess_1", "q1", "YES")

        assert store.list_responses("sess_1") == []


class TestMarkComplete:
    """Tests for completion."""

    def test_completes(self, handler, store, student):
        store.set_progress_status("stu_1", ProgressStatus.QUESTIONS)

        result = handler.mark_complete(student, "sess_1")

        assert result["progress_status"] == "COMPLETED"
        assert store.get_student("stu_1").progress_status == ProgressStatus.COMPLETED

    def test_idempotent(self, handler, store, student):
        store.set_progress_status("stu_1", ProgressStatus.COMPLETED)

        result = handler.mark_complete(student, "sess_1")

        assert result["progress_status"] == "COMPLETED"


class TestResetTraits:
    """Tests for the teacher reset."""

    def test_teacher_reset(self, handler, store, teacher):
        store.save_trait_scores("stu_1", TraitScores(1, 2, 3, 4, 5))
        store.set_progress_status("stu_1", ProgressStatus.COMPLETED)

        result = handler.reset_traits(teacher, "sess_1", "stu_1")

        assert result["progress_status"] == "BIG_FIVE"
        assert store.get_trait_scores("stu_1") is None
        assert store.get_student("stu_1").progress_status == ProgressStatus.BIG_FIVE

    def test_student_cannot_reset(self, handler, store, student):
        store.set_progress_status("stu_1", ProgressStatus.COMPLETED)

        with pytest.raises(ForbiddenError):
            handler.reset_traits(student, "sess_1", "stu_1")

        assert store.get_student("stu_1").progress_status == ProgressStatus.COMPLETED

    def test_student_of_other_session(self, handler, teacher):
        with pytest.raises(NotFoundError):
            handler.reset_traits(teacher, "sess_1", "stu_2")
