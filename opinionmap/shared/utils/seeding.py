"""Deterministic seed source.

One generator drives both the pseudonym shuffle and the embedding
initialisation, so tests can assert exact outputs instead of
statistical properties.
"""
from typing import Callable

UINT32_MASK = 0xFFFFFFFF

# Numerical Recipes LCG constants
LCG_MULTIPLIER = 1664525
LCG_INCREMENT = 1013904223


def session_seed(session_id: str) -> int:
    """Fold the character codes of a session id into a 32-bit seed."""
    return sum(ord(ch) for ch in session_id) & UINT32_MASK


def lcg_step(seed: int) -> int:
    """Advance a 32-bit linear-congruential state by one step."""
    return (seed * LCG_MULTIPLIER + LCG_INCREMENT) & UINT32_MASK


class SeededRandom:
    """Minimal 32-bit LCG stream.

    Example:
        >>> rng = SeededRandom(session_seed("sess_001"))
        >>> j = rng.next_below(10)
    """

    def __init__(self, seed: int):
        self.state = seed & UINT32_MASK

    def next_uint32(self) -> int:
        self.state = lcg_step(self.state)
        return self.state

    def next_below(self, bound: int) -> int:
        """Next integer in [0, bound)."""
        if bound <= 0:
            raise ValueError(f"bound must be positive, got {bound}")
        return self.next_uint32() % bound


SeedFunction = Callable[[str], int]
