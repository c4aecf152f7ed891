"""Session-scoped pseudonyms for non-teacher consumers.

Teachers see real identities. Everyone else sees labels P01..PNN drawn
from a seeded Fisher-Yates shuffle of the roster in join order. The
mapping is recomputed on every run: with an unchanged roster it is
identical run to run, but any roster change may reassign every label,
so a label is not a permanent identifier across snapshots.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from opinionmap.shared.models import Student
from opinionmap.shared.utils import SeededRandom, SeedFunction, session_seed

logger = logging.getLogger(__name__)

LABEL_PREFIX = "P"
MIN_LABEL_WIDTH = 2


@dataclass(frozen=True)
class PseudonymMap:
    """Bijection between real student ids and labels for one run."""
    session_id: str
    label_by_student: Dict[str, str]

    def label_for(self, student_id: str) -> str:
        return self.label_by_student[student_id]

    @property
    def student_by_label(self) -> Dict[str, str]:
        return {label: sid for sid, label in self.label_by_student.items()}

    def __len__(self) -> int:
        return len(self.label_by_student)


def seeded_permutation(n: int, seed: int) -> List[int]:
    """Fisher-Yates shuffle of [0..n) driven by a 32-bit LCG."""
    order = list(range(n))
    rng = SeededRandom(seed)
    for i in range(n - 1, 0, -1):
        j = rng.next_below(i + 1)
        order[i], order[j] = order[j], order[i]
    return order


def format_label(position: int, total: int) -> str:
    """1-based position -> P01, P02, ... (wider for 100+ students)."""
    width = max(MIN_LABEL_WIDTH, len(str(total)))
    return f"{LABEL_PREFIX}{position:0{width}d}"


class Anonymizer:
    """Assigns run-scoped pseudonyms to a session roster."""

    def __init__(self, seed_fn: Optional[SeedFunction] = None):
        """Initialize anonymizer.

        Args:
            seed_fn: session_id -> 32-bit seed (injected for testing)
        """
        self._seed_fn = seed_fn or session_seed

    def pseudonymize(self, session_id: str, students: Sequence[Student]) -> PseudonymMap:
        """Map each student to a label.

        Args:
            session_id: Session the roster belongs to
            students: Roster; ordered here by ascending join time

        Returns:
            PseudonymMap onto {P01..PNN}
        """
        base = sorted(students, key=lambda s: (s.joined_at, s.student_id))
        permutation = seeded_permutation(len(base), self._seed_fn(session_id))
        labels = {
            student.student_id: format_label(permutation[i] + 1, len(base))
            for i, student in enumerate(base)
        }

        logger.info(
            "PSEUDONYM_MAP_COMPUTED",
            extra={"session_id": session_id, "student_count": len(labels)}
        )
        return PseudonymMap(session_id=session_id, label_by_student=labels)
