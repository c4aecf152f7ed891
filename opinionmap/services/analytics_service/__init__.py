"""Analytics Service: class aggregates and the opinion map.

Components:
- vectorizer.py: Fixed-length response vectors per student
- anonymizer.py: Seeded pseudonyms for non-teacher consumers
- embedding.py: UMAP projection to 2D
- clustering.py: Deterministic k-means over the embedded points
- worker.py: Isolated, cancelable process running embed + cluster
- aggregation.py: AggregationFacade orchestrating one request
- handler.py: Flask HTTP endpoints
"""

from .vectorizer import build_vector, encode_response, vector_length
from .anonymizer import Anonymizer, PseudonymMap, seeded_permutation, format_label
from .embedding import EmbeddingConfig, EmbeddingEngine, EmbeddingInput, EmbeddingPoint
from .clustering import kmeans, assign_clusters
from .worker import EmbeddingWorker, MapRequest, WorkerConfig
from .aggregation import AggregationConfig, AggregationFacade, question_distributions

__all__ = [
    "build_vector",
    "encode_response",
    "vector_length",
    "Anonymizer",
    "PseudonymMap",
    "seeded_permutation",
    "format_label",
    "EmbeddingConfig",
    "EmbeddingEngine",
    "EmbeddingInput",
    "EmbeddingPoint",
    "kmeans",
    "assign_clusters",
    "EmbeddingWorker",
    "MapRequest",
    "WorkerConfig",
    "AggregationConfig",
    "AggregationFacade",
    "question_distributions",
]
