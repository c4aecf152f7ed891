"""Progress Service HTTP handler - student progression endpoints.

Provides the HTTP interface for gated student mutations. Caller
identity arrives as forwarded headers (see shared.utils.auth).

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- GET /progress - Entry check with next path
- POST /traits - Submit personality inventory answers
- POST /reflections - Save a briefing reflection
- POST /responses - Upsert a yes/no/unknown answer
- POST /progress/complete - Mark the question stage complete
- POST /students/<student_id>/reset-traits - Teacher reset

Without an injected handler the app uses the process-wide default store,
shared with the analytics app when both run in one process.
"""
import logging
import os
from typing import Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from opinionmap.shared.database import get_default_store
from opinionmap.shared.errors import CoreError, ValidationError
from opinionmap.shared.utils import (
    auth_context_from_headers,
    configure_pii_salt,
    is_pii_salt_configured,
)
from .handler import ProgressHandler

logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)

# Configure PII salt from environment
pii_salt = os.getenv("PII_HASH_SALT", "default_dev_salt_change_in_production_32chars")
configure_pii_salt(pii_salt)

_handler: Optional[ProgressHandler] = None


def get_handler() -> ProgressHandler:
    """Get or create the global handler instance."""
    global _handler
    if _handler is None:
        _handler = ProgressHandler(store=get_default_store())
    return _handler


def set_handler(handler: ProgressHandler) -> None:
    """Set the global handler (for testing)."""
    global _handler
    _handler = handler


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body required")
    return data


@app.errorhandler(CoreError)
def handle_core_error(error: CoreError):
    logger.warning(
        "PROGRESS_REQUEST_REJECTED",
        extra={"code": error.code, "path": request.path}
    )
    return jsonify({"error": error.to_dict()}), error.http_status


@app.errorhandler(Exception)
def handle_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.error(
        "PROGRESS_REQUEST_FAILED",
        extra={"error": str(error), "path": request.path}
    )
    return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal error"}}), 500


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": "progress-service"}), 200


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check."""
    if not is_pii_salt_configured() or get_handler() is None:
        return jsonify({"status": "not_ready"}), 503
    return jsonify({"status": "ready"}), 200


@app.route("/progress", methods=["GET"])
def entry_check():
    """Current status and the path the student should resume at.

    Query params:
        session_id: Required - Session identifier
    """
    auth = auth_context_from_headers(request.headers)
    session_id = request.args.get("session_id", "")
    return jsonify(get_handler().entry_check(auth, session_id)), 200


@app.route("/traits", methods=["POST"])
def submit_traits():
    """Score the personality inventory.

    Request Body:
        {
            "session_id": "sess_123",
            "answers": [{"question_number": 1, "score": 3}, ...]
        }
    """
    auth = auth_context_from_headers(request.headers)
    data = _json_body()
    answers = data.get("answers")
    if not isinstance(answers, list):
        raise ValidationError("answers must be a list")
    result = get_handler().submit_trait_answers(auth, data.get("session_id", ""), answers)
    return jsonify(result), 201


@app.route("/reflections", methods=["POST"])
def save_reflection():
    """Save a reflection for one goal.

    Request Body:
        {"session_id": "sess_123", "goal_key": "goal1", "reflection": "..."}
    """
    auth = auth_context_from_headers(request.headers)
    data = _json_body()
    result = get_handler().save_reflection(
        auth,
        data.get("session_id", ""),
        data.get("goal_key", ""),
        data.get("reflection", ""),
    )
    return jsonify(result), 200


@app.route("/responses", methods=["POST"])
def submit_response():
    """Upsert one answer.

    Request Body:
        {"session_id": "sess_123", "question_id": "q_1", "response_value": "YES"}
    """
    auth = auth_context_from_headers(request.headers)
    data = _json_body()
    result = get_handler().submit_response(
        auth,
        data.get("session_id", ""),
        data.get("question_id", ""),
        data.get("response_value", ""),
    )
    return jsonify(result), 201


@app.route("/progress/complete", methods=["POST"])
def mark_complete():
    """Mark the question stage complete (idempotent)."""
    auth = auth_context_from_headers(request.headers)
    data = _json_body()
    return jsonify(get_handler().mark_complete(auth, data.get("session_id", ""))), 200


@app.route("/students/<student_id>/reset-traits", methods=["POST"])
def reset_traits(student_id: str):
    """Teacher reset of a student's personality inventory."""
    auth = auth_context_from_headers(request.headers)
    data = _json_body()
    result = get_handler().reset_traits(auth, data.get("session_id", ""), student_id)
    return jsonify(result), 200


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", "8010"))
    app.run(host="0.0.0.0", port=port)
