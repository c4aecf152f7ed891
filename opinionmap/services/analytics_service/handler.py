"""Analytics Service HTTP Handler - Opinion Map API.

Serves the class aggregate and the opinion map. Non-teacher callers
only ever receive pseudonymous labels.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- GET /sessions/<session_id>/aggregate - Full aggregate with opinion map
- GET /sessions/<session_id>/stats - Live progress counts
- DELETE /sessions/<session_id>/map - Cancel the caller's pending map

Without an injected facade the app reads the process-wide default store,
shared with the progress app when both run in one process, and starts
the embedding worker standby so the first map finds a warm child.
"""
import logging
import os
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from opinionmap.shared.database import get_default_store
from opinionmap.shared.errors import CoreError, ForbiddenError, ValidationError
from opinionmap.shared.utils import (
    auth_context_from_headers,
    configure_pii_salt,
    is_pii_salt_configured,
)
from .aggregation import AggregationConfig, AggregationFacade
from .embedding import EmbeddingConfig
from .worker import EmbeddingWorker, WorkerConfig

logger = logging.getLogger(__name__)

app = Flask(__name__)

pii_salt = os.getenv("PII_HASH_SALT", "default_dev_salt_change_in_production_32chars")
configure_pii_salt(pii_salt)

# Query params forwarded to the embedding as per-request overrides
EMBEDDING_PARAMS = {
    "n_neighbors": int,
    "min_dist": float,
    "n_epochs": int,
}

_facade: Optional[AggregationFacade] = None


def get_facade() -> AggregationFacade:
    """Get or create the global facade instance."""
    global _facade
    if _facade is None:
        worker = EmbeddingWorker(WorkerConfig.from_env())
        worker.start()
        _facade = AggregationFacade(
            store=get_default_store(),
            worker=worker,
            config=AggregationConfig.from_env(),
            embedding_config=EmbeddingConfig.from_env(),
        )
    return _facade


def set_facade(facade: AggregationFacade) -> None:
    """Set the global facade (for testing)."""
    global _facade
    _facade = facade


def _parse_k() -> Optional[int]:
    raw = request.args.get("k")
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"k must be an integer, got {raw!r}")


def _parse_embedding_overrides() -> Dict[str, Any]:
    overrides = {}
    for name, cast in EMBEDDING_PARAMS.items():
        raw = request.args.get(name)
        if raw is None:
            continue
        try:
            overrides[name] = cast(raw)
        except ValueError:
            raise ValidationError(f"{name} must be numeric, got {raw!r}")
    return overrides


@app.errorhandler(CoreError)
def handle_core_error(error: CoreError):
    logger.warning(
        "ANALYTICS_REQUEST_REJECTED",
        extra={"code": error.code, "path": request.path}
    )
    return jsonify({"error": error.to_dict()}), error.http_status


@app.errorhandler(Exception)
def handle_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.error(
        "ANALYTICS_REQUEST_FAILED",
        extra={"error": str(error), "path": request.path}
    )
    return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal error"}}), 500


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": "analytics-service"}), 200


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check."""
    if not is_pii_salt_configured() or get_facade() is None:
        return jsonify({"status": "not_ready"}), 503
    return jsonify({"status": "ready"}), 200


@app.route("/sessions/<session_id>/aggregate", methods=["GET"])
def get_aggregate(session_id: str):
    """Class aggregate for the calling teacher or student.

    Query params:
        k: Optional - Cluster count (default min(5, N))
        embed: Optional - "false" skips the opinion map
        n_neighbors, min_dist, n_epochs: Optional - Embedding overrides
    """
    auth = auth_context_from_headers(request.headers)
    include_embedding = request.args.get("embed", "true").lower() not in ("false", "0", "no")
    result = get_facade().aggregate(
        session_id,
        auth,
        k=_parse_k(),
        include_embedding=include_embedding,
        embedding_overrides=_parse_embedding_overrides(),
    )
    return jsonify(result), 200


@app.route("/sessions/<session_id>/stats", methods=["GET"])
def get_stats(session_id: str):
    """Progress counts and response totals, without the opinion map."""
    auth = auth_context_from_headers(request.headers)
    if auth.session_id != session_id:
        raise ForbiddenError("Session does not match the authenticated session")
    return jsonify(get_facade().session_stats(session_id)), 200


@app.route("/sessions/<session_id>/map", methods=["DELETE"])
def cancel_map(session_id: str):
    """Cancel the caller's in-flight opinion map computation."""
    auth = auth_context_from_headers(request.headers)
    if auth.session_id != session_id:
        raise ForbiddenError("Session does not match the authenticated session")
    cancelled = get_facade().cancel_map(auth)
    return jsonify({"session_id": session_id, "cancelled": cancelled}), 200


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", "8080"))
    app.run(host="0.0.0.0", port=port)
