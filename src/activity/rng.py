"""
Deterministic random numbers for attempt generation.

Every random choice the engine makes is drawn from a generator seeded by a
pipe-joined key such as ``"5|doc1|2|1"``. The algorithm is Johannes Baagøe's
Alea (the ``alea`` generator of the JavaScript ``seedrandom`` package), so a
given key yields the same stream of floats that previously saved activities
were generated with.

Usage:
    rng = seeded_rng(seed_key(initial_variant, activity_id, attempt, parent))
    index = int(rng() * num_options)
"""

from __future__ import annotations

from typing import Callable

_TWO_POW_32 = 4294967296.0
_TWO_POW_NEG_32 = 2.3283064365386963e-10

RandomFn = Callable[[], float]


class _Mash:
    """Alea's string hashing function; it carries state between calls."""

    def __init__(self) -> None:
        self.n = 0xEFC8249D

    def __call__(self, data: str) -> float:
        n = self.n
        for code in _utf16_code_units(data):
            n += code
            h = 0.02519603282416938 * n
            n = _to_uint32(h)
            h -= n
            h *= n
            n = _to_uint32(h)
            h -= n
            n += h * _TWO_POW_32
        self.n = n
        return _to_uint32(n) * _TWO_POW_NEG_32


class Alea:
    """
    Alea pseudo-random generator.

    Produces floats in [0, 1) from a string seed. Instances are callable.
    """

    def __init__(self, seed: str):
        mash = _Mash()
        self.c = 1
        self.s0 = mash(" ")
        self.s1 = mash(" ")
        self.s2 = mash(" ")

        self.s0 -= mash(seed)
        if self.s0 < 0:
            self.s0 += 1
        self.s1 -= mash(seed)
        if self.s1 < 0:
            self.s1 += 1
        self.s2 -= mash(seed)
        if self.s2 < 0:
            self.s2 += 1

    def __call__(self) -> float:
        t = 2091639 * self.s0 + self.c * _TWO_POW_NEG_32
        self.s0 = self.s1
        self.s1 = self.s2
        # t is non-negative and far below 2**31, so truncation matches `t | 0`
        self.c = int(t)
        self.s2 = t - self.c
        return self.s2


def seeded_rng(seed: str) -> RandomFn:
    """Return a reproducible generator of floats in [0, 1) for `seed`."""
    return Alea(seed)


def seed_key(*parts: object) -> str:
    """Join seed components with ``|``, e.g. ``seed_key(5, "doc1", 0, 1) == "5|doc1|0|1"``."""
    return "|".join(str(part) for part in parts)


def random_index(rng: RandomFn, num_options: int) -> int:
    """Draw a 0-based index uniformly from `num_options` choices."""
    return int(rng() * num_options)


def _to_uint32(value: float) -> int:
    return int(value) % 0x100000000


def _utf16_code_units(data: str) -> list[int]:
    encoded = data.encode("utf-16-le")
    return [
        int.from_bytes(encoded[i:i + 2], "little")
        for i in range(0, len(encoded), 2)
    ]
