"""Tests for the in-memory session store."""
import pytest
from datetime import datetime, timedelta

from opinionmap.shared.database import (
    InMemorySessionStore,
    get_default_store,
    set_default_store,
)
from opinionmap.shared.errors import NotFoundError
from opinionmap.shared.models import (
    ProgressStatus,
    Question,
    QuestionResponse,
    ResponseValue,
    Session,
    Student,
    TraitScores,
)

T0 = datetime(2024, 3, 1, 9, 0, 0)


@pytest.fixture
def store():
    s = InMemorySessionStore()
    s.add_session(Session(session_id="sess_1", theme_ids=("theme_b", "theme_a")))
    s.add_session(Session(session_id="sess_2", theme_ids=("theme_a",)))
    return s


class TestStudents:
    """Tests for roster reads."""

    def test_list_students_by_join_time(self, store):
        store.add_student(Student("stu_late", "sess_1", joined_at=T0 + timedelta(minutes=5)))
        store.add_student(Student("stu_early", "sess_1", joined_at=T0))
        store.add_student(Student("stu_other", "sess_2", joined_at=T0))

        ids = [s.student_id for s in store.list_students("sess_1")]

        assert ids == ["stu_early", "stu_late"]

    def test_join_time_ties_break_on_id(self, store):
        store.add_student(Student("stu_b", "sess_1", joined_at=T0))
        store.add_student(Student("stu_a", "sess_1", joined_at=T0))

        ids = [s.student_id for s in store.list_students("sess_1")]

        assert ids == ["stu_a", "stu_b"]

    def test_add_student_unknown_session(self, store):
        with pytest.raises(NotFoundError):
            store.add_student(Student("stu_1", "sess_missing"))

    def test_get_unknown_student(self, store):
        with pytest.raises(NotFoundError):
            store.get_student("nobody")

    def test_set_progress_status(self, store):
        store.add_student(Student("stu_1", "sess_1"))

        updated = store.set_progress_status("stu_1", ProgressStatus.BRIEFING)

        assert updated.progress_status == ProgressStatus.BRIEFING
        assert store.get_student("stu_1").progress_status == ProgressStatus.BRIEFING


class TestQuestions:
    """Tests for question ordering."""

    def test_ordered_by_theme_rank_then_order(self, store):
        store.add_questions([
            Question("qa2", "theme_a", 2),
            Question("qa1", "theme_a", 1),
            Question("qb1", "theme_b", 1),
            Question("qc1", "theme_c", 1),
        ])

        ids = [q.question_id for q in store.list_ordered_questions(("theme_b", "theme_a"))]

        assert ids == ["qb1", "qa1", "qa2"]

    def test_get_unknown_question(self, store):
        with pytest.raises(NotFoundError):
            store.get_question("q_missing")


class TestResponses:
    """Tests for response upserts."""

    def test_latest_answer_wins(self, store):
        store.upsert_response(QuestionResponse("stu_1", "sess_1", "q1", ResponseValue.YES, T0))
        store.upsert_response(
            QuestionResponse("stu_1", "sess_1", "q1", ResponseValue.NO, T0 + timedelta(seconds=1))
        )

        responses = store.list_responses("sess_1")

        assert len(responses) == 1
        assert responses[0].value == ResponseValue.NO

    def test_stale_answer_ignored(self, store):
        store.upsert_response(
            QuestionResponse("stu_1", "sess_1", "q1", ResponseValue.NO, T0 + timedelta(seconds=1))
        )

        stored = store.upsert_response(
            QuestionResponse("stu_1", "sess_1", "q1", ResponseValue.YES, T0)
        )

        assert stored.value == ResponseValue.NO
        assert store.list_responses("sess_1")[0].value == ResponseValue.NO

    def test_count_responses_by_student(self, store):
        store.upsert_response(QuestionResponse("stu_1", "sess_1", "q1", ResponseValue.YES, T0))
        store.upsert_response(QuestionResponse("stu_1", "sess_1", "q2", ResponseValue.NO, T0))
        store.upsert_response(QuestionResponse("stu_2", "sess_1", "q1", ResponseValue.UNKNOWN, T0))
        store.upsert_response(QuestionResponse("stu_3", "sess_2", "q1", ResponseValue.YES, T0))

        assert store.count_responses_by_student("sess_1") == {"stu_1": 2, "stu_2": 1}


class TestTraits:
    """Tests for trait score persistence."""

    def test_save_and_delete(self, store):
        scores = TraitScores(
            extraversion=1, agreeableness=2, conscientiousness=3,
            neuroticism=4, openness=5,
        )
        store.save_trait_scores("stu_1", scores)
        assert store.get_trait_scores("stu_1") == scores

        store.delete_trait_scores("stu_1")

        assert store.get_trait_scores("stu_1") is None

    def test_delete_missing_is_noop(self, store):
        store.delete_trait_scores("stu_missing")
        assert store.get_trait_scores("stu_missing") is None


class TestDefaultStore:
    """Tests for the process-wide store."""

    @pytest.fixture(autouse=True)
    def reset_default(self):
        set_default_store(None)
        yield
        set_default_store(None)

    def test_same_instance(self):
        assert get_default_store() is get_default_store()

    def test_writes_visible_through_every_lookup(self):
        get_default_store().add_session(Session(session_id="sess_9", theme_ids=("theme_a",)))

        assert get_default_store().get_session("sess_9").theme_ids == ("theme_a",)

    def test_replace(self):
        custom = InMemorySessionStore()

        set_default_store(custom)

        assert get_default_store() is custom
