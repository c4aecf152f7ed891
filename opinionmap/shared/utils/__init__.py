"""Shared utilities for the opinion map platform."""
from .pii import hash_pii, configure_pii_salt, is_pii_salt_configured
from .seeding import session_seed, lcg_step, SeededRandom, SeedFunction
from .auth import auth_context_from_headers

__all__ = [
    "hash_pii",
    "configure_pii_salt",
    "is_pii_salt_configured",
    "session_seed",
    "lcg_step",
    "SeededRandom",
    "SeedFunction",
    "auth_context_from_headers",
]
