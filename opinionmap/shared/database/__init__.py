"""Persistence collaborator for opinion map services.

Provides the SessionStore interface the core reads and writes through,
and an in-memory implementation for development and tests.
"""

from .store import (
    SessionStore,
    InMemorySessionStore,
    get_default_store,
    set_default_store,
)

__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "get_default_store",
    "set_default_store",
]
