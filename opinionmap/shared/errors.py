"""Error taxonomy shared by all services.

Every error carries a stable code for API payloads and the HTTP status
the handlers answer with.
"""
from typing import Any, Dict


class CoreError(Exception):
    """Base exception for core errors."""
    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(CoreError):
    """Malformed status, payload or shape."""
    code = "VALIDATION_ERROR"
    http_status = 400


class ForbiddenError(CoreError):
    """Illegal backward transition, cross-session access or privilege mismatch."""
    code = "FORBIDDEN"
    http_status = 403


class NotFoundError(CoreError):
    """Unknown session, student or question."""
    code = "NOT_FOUND"
    http_status = 404


class NotEnoughDataError(CoreError):
    """Too few points for the requested computation."""
    code = "NOT_ENOUGH_DATA"
    http_status = 422


class EmbeddingError(CoreError):
    """Worker-level failure while computing the opinion map."""
    code = "EMBEDDING_ERROR"
    http_status = 500


class EmbeddingCancelledError(EmbeddingError):
    """The computation was superseded or abandoned before it finished."""
    pass


class UnauthorizedError(CoreError):
    """No usable caller identity was supplied."""
    code = "UNAUTHORIZED"
    http_status = 401
