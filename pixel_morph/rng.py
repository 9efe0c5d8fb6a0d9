"""Small seeded generator so solver runs replay exactly."""

from __future__ import annotations

_MASK = 0xFFFFFFFF


def _imul(a: int, b: int) -> int:
    """32-bit wrapping multiply."""
    return (a * b) & _MASK


class RNG:
    """Mulberry32 pseudo-random generator.

    Independent of :mod:`random` and numpy so identical seeds give identical
    trajectories on every platform and interpreter version.
    """

    def __init__(self, seed: int = 12345) -> None:
        self._state = seed & _MASK

    def _next(self) -> float:
        self._state = (self._state + 0x6D2B79F5) & _MASK
        t = self._state
        t = _imul(t ^ (t >> 15), t | 1)
        t = (t ^ (t + _imul(t ^ (t >> 7), t | 61))) & _MASK
        return (t ^ (t >> 14)) / 4294967296

    def float(self) -> float:
        """Uniform float in [0, 1)."""
        return self._next()

    def int(self, max_exclusive: int) -> int:
        """Uniform integer in [0, max_exclusive)."""
        return int(self._next() * max_exclusive)

    def range(self, min_inclusive: int, max_exclusive: int) -> int:
        """Uniform integer in [min_inclusive, max_exclusive); never empty."""
        return min_inclusive + self.int(max(1, max_exclusive - min_inclusive))
