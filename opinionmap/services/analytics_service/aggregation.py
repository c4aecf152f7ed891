"""Aggregation facade - one request/response cycle of the opinion map.

Pipeline: persisted responses and trait scores -> response vectors ->
pseudonymous relabeling (non-teachers) -> embedding -> clustering.
Per-question distributions are tallied from the relabeled response map
and never depend on the embedding, so an embedding failure only drops
the map from the payload.

The embedding always receives students in join order, whoever asks,
so UMAP row order and k-means seeding match between the teacher view
and the pseudonymous view. Non-teacher points are re-sorted by label
afterwards so their order reveals nothing about joining. The two maps
can still differ because non-teacher vectors carry zeroed trait axes.

The cheaper session_stats() path backs periodic live updates and never
touches the embedding worker.
"""
import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from opinionmap.shared.database import SessionStore
from opinionmap.shared.errors import EmbeddingCancelledError, EmbeddingError, ForbiddenError, ValidationError
from opinionmap.shared.models import (
    PROGRESS_ORDER,
    AuthContext,
    ResponseValue,
    Student,
)
from opinionmap.shared.utils import SeedFunction, hash_pii, session_seed
from .anonymizer import Anonymizer
from .clustering import DEFAULT_K, DEFAULT_MAX_ITERATIONS
from .embedding import EmbeddingConfig, EmbeddingInput
from .vectorizer import build_vector
from .worker import EmbeddingWorker, MapRequest, WorkerConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationConfig:
    """Configuration for aggregation runs."""
    default_k: int = DEFAULT_K
    max_iterations: int = DEFAULT_MAX_ITERATIONS

    @classmethod
    def from_env(cls) -> "AggregationConfig":
        """Create config from environment variables.

        Environment variables:
            OPINIONMAP_CLUSTER_K: Default cluster count (default 5)
            OPINIONMAP_CLUSTER_MAX_ITER: k-means iteration cap (default 50)
        """
        return cls(
            default_k=int(os.getenv("OPINIONMAP_CLUSTER_K", str(DEFAULT_K))),
            max_iterations=int(
                os.getenv("OPINIONMAP_CLUSTER_MAX_ITER", str(DEFAULT_MAX_ITERATIONS))
            ),
        )


class AggregationFacade:
    """Builds anonymized aggregates and opinion maps for a session."""

    def __init__(
        self,
        store: SessionStore,
        worker: Optional[EmbeddingWorker] = None,
        config: Optional[AggregationConfig] = None,
        embedding_config: Optional[EmbeddingConfig] = None,
        seed_fn: Optional[SeedFunction] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize facade with dependencies.

        Args:
            store: Persistence collaborator
            worker: Isolated embedding worker (injected for testing)
            config: Cluster settings
            embedding_config: UMAP parameters
            seed_fn: session_id -> seed, shared by the pseudonym shuffle
                and the embedding initialisation
            clock: Timestamp source for stats
        """
        self.store = store
        self.worker = worker or EmbeddingWorker(WorkerConfig.from_env())
        self.config = config or AggregationConfig()
        self.embedding_config = embedding_config or EmbeddingConfig()
        self._seed_fn = seed_fn or session_seed
        self.anonymizer = Anonymizer(seed_fn=self._seed_fn)
        self._clock = clock or datetime.utcnow

        logger.info(
            "AGGREGATION_FACADE_INITIALIZED",
            extra={
                "default_k": self.config.default_k,
                "n_neighbors": self.embedding_config.n_neighbors,
                "min_dist": self.embedding_config.min_dist,
            }
        )

    def aggregate(
        self,
        session_id: str,
        auth: AuthContext,
        k: Optional[int] = None,
        include_embedding: bool = True,
        embedding_overrides: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Full aggregate for one caller.

        Teachers see real ids, names, trait scores and the raw response
        map. Everyone else sees pseudonyms, zeroed trait axes and no
        teacher-only fields.

        Args:
            session_id: Session to aggregate
            auth: Caller identity and privilege
            k: Cluster count (default min(default_k, N))
            include_embedding: False skips the opinion map entirely
            embedding_overrides: Per-request UMAP parameters

        Returns:
            Dictionary with questions, students, vectors,
            question_distributions and, best-effort, embedding_points

        Raises:
            ForbiddenError: On cross-session access or an unknown caller
            NotFoundError: If the session does not exist
            ValidationError: On a non-positive k or bad overrides
        """
        if session_id != auth.session_id:
            raise ForbiddenError("Session does not match the authenticated session")
        if k is not None and k < 1:
            raise ValidationError(f"k must be positive, got {k}")
        try:
            embedding_config = self.embedding_config.with_overrides(embedding_overrides)
        except (TypeError, ValueError) as exc:
            raise ValidationError(str(exc)) from exc

        session = self.store.get_session(session_id)
        questions = self.store.list_ordered_questions(session.theme_ids)
        question_ids = {q.question_id for q in questions}
        students = sorted(
            self.store.list_students(session_id),
            key=lambda s: (s.joined_at, s.student_id),
        )
        roster = {s.student_id for s in students}

        response_map: Dict[str, Dict[str, str]] = {s.student_id: {} for s in students}
        for response in self.store.list_responses(session_id):
            if response.student_id in roster and response.question_id in question_ids:
                response_map[response.student_id][response.question_id] = response.value.value

        privileged = auth.is_teacher
        if privileged:
            label_of = {s.student_id: s.student_id for s in students}
            ordered = students
        else:
            if auth.student_id not in roster:
                raise ForbiddenError("Caller is not part of this session")
            label_of = self.anonymizer.pseudonymize(session_id, students).label_by_student
            ordered = sorted(students, key=lambda s: label_of[s.student_id])

        student_entries: List[Dict[str, Any]] = []
        vectors: List[Dict[str, Any]] = []
        vector_of: Dict[str, Dict[str, Any]] = {}
        relabeled: Dict[str, Dict[str, str]] = {}
        for student in ordered:
            label = label_of[student.student_id]
            traits = self.store.get_trait_scores(student.student_id) if privileged else None
            student_entries.append(self._student_entry(student, label, traits, privileged))
            entry = {
                "label": label,
                "vector": build_vector(
                    questions,
                    response_map[student.student_id],
                    traits,
                    include_traits=privileged,
                ),
            }
            vectors.append(entry)
            vector_of[student.student_id] = entry
            relabeled[label] = response_map[student.student_id]

        result: Dict[str, Any] = {
            "session_id": session_id,
            "questions": [
                {"id": q.question_id, "theme_id": q.theme_id, "order": q.order, "text": q.text}
                for q in questions
            ],
            "students": student_entries,
            "vectors": vectors,
            "question_distributions": question_distributions(
                [q.question_id for q in questions], relabeled
            ),
        }
        if privileged:
            result["response_map"] = relabeled
        else:
            result["self_label"] = label_of[auth.student_id]

        if include_embedding:
            self._attach_embedding(
                result, session_id, auth,
                [vector_of[s.student_id] for s in students],
                k, embedding_config,
            )

        logger.info(
            "AGGREGATION_COMPLETED",
            extra={
                "session_id": session_id,
                "role": auth.role.value,
                "student_count": len(students),
                "question_count": len(questions),
                "embedding": "embedding_points" in result,
            }
        )
        return result

    def _student_entry(self, student: Student, label: str, traits, privileged: bool) -> Dict[str, Any]:
        if privileged:
            return {
                "id": student.student_id,
                "label": label,
                "name": student.name,
                "progress_status": student.progress_status.value,
                "trait_scores": traits.to_dict() if traits is not None else None,
                "joined_at": student.joined_at.isoformat() + "Z",
            }
        return {
            "id": None,
            "label": label,
            "name": None,
            "progress_status": student.progress_status.value,
            "trait_scores": None,
        }

    def _attach_embedding(
        self,
        result: Dict[str, Any],
        session_id: str,
        auth: AuthContext,
        vectors: List[Dict[str, Any]],
        k: Optional[int],
        embedding_config: EmbeddingConfig,
    ) -> None:
        """Run the opinion map in the worker; failures only drop the map.

        vectors must be in join order.
        """
        n_points = len(vectors)
        if embedding_config.random_state is None:
            embedding_config = replace(embedding_config, random_state=self._seed_fn(session_id))
        request = MapRequest(
            inputs=tuple(EmbeddingInput(label=v["label"], vector=tuple(v["vector"])) for v in vectors),
            config=embedding_config,
            k=k if k is not None else max(1, min(self.config.default_k, n_points)),
            max_iterations=self.config.max_iterations,
        )
        try:
            points = self.worker.run(auth.client_key, request)
        except EmbeddingCancelledError as exc:
            logger.info(
                "AGGREGATION_EMBEDDING_SUPERSEDED",
                extra={"session_id": session_id, "client_key_hash": hash_pii(auth.client_key)}
            )
            result["embedding_error"] = exc.to_dict()
            return
        except EmbeddingError as exc:
            logger.warning(
                "AGGREGATION_EMBEDDING_FAILED",
                extra={"session_id": session_id, "reason": exc.message}
            )
            result["embedding_error"] = exc.to_dict()
            return
        if not auth.is_teacher:
            points = sorted(points, key=lambda p: p.label)
        result["embedding_points"] = [p.to_dict() for p in points]

    def cancel_map(self, auth: AuthContext) -> bool:
        """Cancel the caller's pending opinion-map computation."""
        return self.worker.cancel(auth.client_key)

    def session_stats(self, session_id: str) -> Dict[str, Any]:
        """Counts per progress status and response totals for live updates."""
        session = self.store.get_session(session_id)
        students = self.store.list_students(session_id)
        question_count = len(self.store.list_ordered_questions(session.theme_ids))
        response_counts = self.store.count_responses_by_student(session_id)

        stats: Dict[str, Any] = {"session_id": session_id, "total": len(students)}
        for status in PROGRESS_ORDER:
            stats[status.value.lower()] = sum(
                1 for s in students if s.progress_status == status
            )
        stats["question_count"] = question_count
        stats["total_responses"] = sum(
            response_counts.get(s.student_id, 0) for s in students
        )
        stats["timestamp"] = self._clock().isoformat() + "Z"
        return stats


def question_distributions(
    question_ids: List[str],
    response_map: Dict[str, Dict[str, str]],
) -> Dict[str, Dict[str, int]]:
    """Tally YES/NO/UNKNOWN per question; a missing answer counts as UNKNOWN.

    Every question's counts sum to the number of students in the map.
    """
    distributions = {
        qid: {value.value: 0 for value in ResponseValue} for qid in question_ids
    }
    for answers in response_map.values():
        for qid in question_ids:
            value = answers.get(qid, ResponseValue.UNKNOWN.value)
            distributions[qid][value] += 1
    return distributions
