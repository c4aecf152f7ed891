"""Tests for the deterministic seed source."""
import pytest

from opinionmap.shared.utils import SeededRandom, lcg_step, session_seed


class TestSessionSeed:
    """Tests for session id folding."""

    def test_sum_of_char_codes(self):
        assert session_seed("ab") == ord("a") + ord("b")

    def test_empty(self):
        assert session_seed("") == 0

    def test_stable(self):
        assert session_seed("sess_001") == session_seed("sess_001")


class TestLcg:
    """Tests for the LCG stream."""

    def test_first_step_from_zero(self):
        assert lcg_step(0) == 1013904223

    def test_stays_in_32_bits(self):
        assert 0 <= lcg_step(0xFFFFFFFF) <= 0xFFFFFFFF

    def test_same_seed_same_stream(self):
        a = SeededRandom(42)
        b = SeededRandom(42)
        assert [a.next_uint32() for _ in range(5)] == [b.next_uint32() for _ in range(5)]

    def test_next_below_in_range(self):
        rng = SeededRandom(7)
        values = [rng.next_below(3) for _ in range(50)]
        assert all(0 <= v < 3 for v in values)

    def test_next_below_rejects_zero(self):
        with pytest.raises(ValueError):
            SeededRandom(1).next_below(0)
