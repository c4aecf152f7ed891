"""Caller identity extraction.

The upstream auth layer verifies cookies/tokens and forwards the
result as headers. Values are trusted as-is.
"""
from typing import Mapping

from opinionmap.shared.errors import UnauthorizedError
from opinionmap.shared.models import AuthContext, CallerRole

ROLE_HEADER = "X-Role"
SESSION_HEADER = "X-Session-Id"
STUDENT_HEADER = "X-Student-Id"


def auth_context_from_headers(headers: Mapping[str, str]) -> AuthContext:
    """Build an AuthContext from forwarded identity headers.

    Raises:
        UnauthorizedError: If the role or session is missing, or a
            student identity has no student id
    """
    role_value = (headers.get(ROLE_HEADER) or "").strip().lower()
    session_id = (headers.get(SESSION_HEADER) or "").strip()
    student_id = (headers.get(STUDENT_HEADER) or "").strip() or None

    try:
        role = CallerRole(role_value)
    except ValueError:
        raise UnauthorizedError("Authentication required")
    if not session_id:
        raise UnauthorizedError("Authentication required")
    if role == CallerRole.STUDENT and not student_id:
        raise UnauthorizedError("Authentication required")

    return AuthContext(role=role, session_id=session_id, student_id=student_id)
