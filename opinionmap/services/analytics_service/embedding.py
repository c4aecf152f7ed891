"""Opinion map embedding.

Projects the N x D matrix of response vectors onto 2D with UMAP:
an approximate nearest-neighbour graph, a fuzzy similarity structure
built from it, and a stochastic layout optimisation balancing
attraction between neighbours against repulsion between non-neighbours.
Output is only reproducible when random_state is fixed.

Degenerate inputs never reach the algorithm: fewer points than it can
build a neighbour graph for are placed along the x axis by index.
"""
import logging
import os
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from opinionmap.shared.errors import EmbeddingError, NotEnoughDataError

logger = logging.getLogger(__name__)

N_COMPONENTS = 2

# umap-learn rejects n_neighbors < 2, so two points cannot form a graph
MIN_NEIGHBORS = 2
MIN_MANIFOLD_POINTS = MIN_NEIGHBORS + 1

TRIVIAL_SPACING = 0.5


@dataclass(frozen=True)
class EmbeddingConfig:
    """UMAP parameters for one computation."""
    n_neighbors: int = 15
    min_dist: float = 0.2
    n_epochs: Optional[int] = None      # None = library default
    metric: str = "euclidean"
    random_state: Optional[int] = None

    def __post_init__(self):
        if self.n_neighbors < MIN_NEIGHBORS:
            raise ValueError(f"n_neighbors must be >= {MIN_NEIGHBORS}, got {self.n_neighbors}")
        if not 0.0 <= self.min_dist <= 1.0:
            raise ValueError(f"min_dist must be 0.0-1.0, got {self.min_dist}")
        if self.n_epochs is not None and self.n_epochs <= 0:
            raise ValueError(f"n_epochs must be positive, got {self.n_epochs}")

    @classmethod
    def from_env(cls) -> "EmbeddingConfig":
        """Create config from environment variables.

        Environment variables:
            OPINIONMAP_UMAP_N_NEIGHBORS: Neighbour count (default 15)
            OPINIONMAP_UMAP_MIN_DIST: Minimum point separation (default 0.2)
            OPINIONMAP_UMAP_N_EPOCHS: Optimisation epochs (default: library)
            OPINIONMAP_UMAP_METRIC: Distance metric (default euclidean)
        """
        n_epochs = os.getenv("OPINIONMAP_UMAP_N_EPOCHS")
        return cls(
            n_neighbors=int(os.getenv("OPINIONMAP_UMAP_N_NEIGHBORS", "15")),
            min_dist=float(os.getenv("OPINIONMAP_UMAP_MIN_DIST", "0.2")),
            n_epochs=int(n_epochs) if n_epochs else None,
            metric=os.getenv("OPINIONMAP_UMAP_METRIC", "euclidean"),
        )

    def with_overrides(self, overrides: Optional[Mapping[str, Any]]) -> "EmbeddingConfig":
        """Copy with per-request overrides applied (unknown keys rejected)."""
        if not overrides:
            return self
        unknown = set(overrides) - set(asdict(self))
        if unknown:
            raise ValueError(f"Unknown embedding parameters: {sorted(unknown)}")
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EmbeddingInput:
    """One labelled response vector."""
    label: str
    vector: Tuple[float, ...]


@dataclass(frozen=True)
class EmbeddingPoint:
    """One student's position on the opinion map."""
    label: str
    x: float
    y: float
    cluster: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "x": self.x, "y": self.y, "cluster": self.cluster}


ReducerFactory = Callable[[EmbeddingConfig, int], Any]


def umap_reducer(config: EmbeddingConfig, n_neighbors: int):
    """Build a UMAP reducer for one fit."""
    # numba-backed; imported only where an embedding actually runs
    from umap import UMAP

    return UMAP(
        n_components=N_COMPONENTS,
        n_neighbors=n_neighbors,
        min_dist=config.min_dist,
        n_epochs=config.n_epochs,
        metric=config.metric,
        random_state=config.random_state,
        init="random",
    )


def effective_n_neighbors(requested: int, n_points: int) -> int:
    """min(requested, N - 1): a point cannot have more neighbours than others."""
    return min(requested, n_points - 1)


def trivial_layout(n_points: int) -> np.ndarray:
    """Deterministic placement along the x axis by index."""
    coords = np.zeros((n_points, N_COMPONENTS), dtype=float)
    coords[:, 0] = np.arange(n_points, dtype=float) * TRIVIAL_SPACING
    return coords


def to_matrix(inputs: Sequence[EmbeddingInput]) -> np.ndarray:
    """Stack input vectors into a finite, rectangular float matrix.

    Raises:
        EmbeddingError: On ragged, empty, non-numeric or non-finite vectors
    """
    if not inputs:
        return np.empty((0, 0), dtype=float)

    dimension = len(inputs[0].vector)
    if dimension == 0:
        raise EmbeddingError("Response vectors are empty")
    for item in inputs:
        if len(item.vector) != dimension:
            raise EmbeddingError(
                f"Vector dimension mismatch: {item.label} has {len(item.vector)}, "
                f"expected {dimension}"
            )
    try:
        matrix = np.asarray([item.vector for item in inputs], dtype=float)
    except (TypeError, ValueError) as exc:
        raise EmbeddingError(f"Response vectors are not numeric: {exc}") from exc
    if not np.all(np.isfinite(matrix)):
        raise EmbeddingError("Response vectors contain non-finite values")
    return matrix


class EmbeddingEngine:
    """Reduces labelled response vectors to 2D points."""

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        reducer_factory: Optional[ReducerFactory] = None,
    ):
        """Initialize engine.

        Args:
            config: UMAP parameters
            reducer_factory: (config, n_neighbors) -> object with
                fit_transform (injected for testing)
        """
        self.config = config or EmbeddingConfig()
        self._reducer_factory = reducer_factory or umap_reducer

    def fit_matrix(self, matrix: np.ndarray) -> np.ndarray:
        """Run the manifold embedding on a validated matrix.

        Raises:
            NotEnoughDataError: If there are too few points for a neighbour graph
            EmbeddingError: If the library fails or returns unusable coordinates
        """
        n_points = matrix.shape[0]
        n_neighbors = effective_n_neighbors(self.config.n_neighbors, n_points)
        if n_points < MIN_MANIFOLD_POINTS or n_neighbors < MIN_NEIGHBORS:
            raise NotEnoughDataError(
                f"{n_points} points cannot form a neighbour graph"
            )

        reducer = self._reducer_factory(self.config, n_neighbors)
        try:
            coords = reducer.fit_transform(matrix)
        except Exception as exc:
            raise EmbeddingError(f"Embedding failed: {exc}") from exc

        coords = np.asarray(coords, dtype=float)
        if coords.shape != (n_points, N_COMPONENTS):
            raise EmbeddingError(
                f"Embedding returned shape {coords.shape}, expected {(n_points, N_COMPONENTS)}"
            )
        if not np.all(np.isfinite(coords)):
            raise EmbeddingError("Embedding produced non-finite coordinates")
        return coords

    def embed(self, inputs: Sequence[EmbeddingInput]) -> List[EmbeddingPoint]:
        """Embed labelled vectors; cluster fields are left at 0.

        Returns:
            One EmbeddingPoint per input, in input order

        Logs:
            - EMBEDDING_NOT_ENOUGH_DATA: When the trivial layout is used
            - EMBEDDING_COMPLETED: After a successful manifold fit
        """
        if not inputs:
            return []

        matrix = to_matrix(inputs)
        try:
            coords = self.fit_matrix(matrix)
            logger.info(
                "EMBEDDING_COMPLETED",
                extra={
                    "n_points": matrix.shape[0],
                    "dimension": matrix.shape[1],
                    "n_neighbors": effective_n_neighbors(self.config.n_neighbors, matrix.shape[0]),
                    "min_dist": self.config.min_dist,
                }
            )
        except NotEnoughDataError as exc:
            logger.info(
                "EMBEDDING_NOT_ENOUGH_DATA",
                extra={"n_points": matrix.shape[0], "reason": exc.message}
            )
            coords = trivial_layout(matrix.shape[0])

        return [
            EmbeddingPoint(label=item.label, x=float(coords[i, 0]), y=float(coords[i, 1]))
            for i, item in enumerate(inputs)
        ]
