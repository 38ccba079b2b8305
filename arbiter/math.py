"""Deterministic random sampling used to model block sizes in a simulation."""

from __future__ import annotations

import math
import struct
from collections import deque

__all__ = ["SeededPoisson"]

_MASK32 = 0xFFFFFFFF
_MASK64 = 0xFFFFFFFFFFFFFFFF

_PCG_MULTIPLIER = 6364136223846793005
_PCG_INCREMENT = 11634580027462260723

_CHACHA_CONSTANTS = (0x61707865, 0x3320646E, 0x79622D32, 0x6B206574)
_CHACHA_DOUBLE_ROUNDS = 6  # twelve rounds in total

_KNUTH_LIMIT = 30.0


def _rotl(value: int, shift: int) -> int:
    return ((value << shift) & _MASK32) | (value >> (32 - shift))


def _seed_from_u64(seed: int) -> bytes:
    """Expand a 64-bit seed into a 32-byte key with a PCG32 generator."""
    state = seed
    key = bytearray()
    for _ in range(8):
        state = (state * _PCG_MULTIPLIER + _PCG_INCREMENT) & _MASK64
        xorshifted = (((state >> 18) ^ state) >> 27) & _MASK32
        rot = state >> 59
        word = ((xorshifted >> rot) | (xorshifted << ((32 - rot) & 31))) & _MASK32
        key += word.to_bytes(4, "little")
    return bytes(key)


def _quarter_round(x: list[int], a: int, b: int, c: int, d: int) -> None:
    x[a] = (x[a] + x[b]) & _MASK32
    x[d] = _rotl(x[d] ^ x[a], 16)
    x[c] = (x[c] + x[d]) & _MASK32
    x[b] = _rotl(x[b] ^ x[c], 12)
    x[a] = (x[a] + x[b]) & _MASK32
    x[d] = _rotl(x[d] ^ x[a], 8)
    x[c] = (x[c] + x[d]) & _MASK32
    x[b] = _rotl(x[b] ^ x[c], 7)


class _ChaCha12:
    """ChaCha stream generator with twelve rounds, a 64-bit counter and zero stream id."""

    def __init__(self, key: bytes) -> None:
        self._key = struct.unpack("<8I", key)
        self._counter = 0
        self._words: deque[int] = deque()

    def _refill(self) -> None:
        initial = [
            *_CHACHA_CONSTANTS,
            *self._key,
            self._counter & _MASK32,
            (self._counter >> 32) & _MASK32,
            0,
            0,
        ]
        x = list(initial)
        for _ in range(_CHACHA_DOUBLE_ROUNDS):
            _quarter_round(x, 0, 4, 8, 12)
            _quarter_round(x, 1, 5, 9, 13)
            _quarter_round(x, 2, 6, 10, 14)
            _quarter_round(x, 3, 7, 11, 15)
            _quarter_round(x, 0, 5, 10, 15)
            _quarter_round(x, 1, 6, 11, 12)
            _quarter_round(x, 2, 7, 8, 13)
            _quarter_round(x, 3, 4, 9, 14)
        self._words.extend((a + b) & _MASK32 for a, b in zip(x, initial))
        self._counter = (self._counter + 1) & _MASK64

    def next_u32(self) -> int:
        if not self._words:
            self._refill()
        return self._words.popleft()

    def next_u64(self) -> int:
        low = self.next_u32()
        high = self.next_u32()
        return (high << 32) | low

    def next_f64(self) -> float:
        """A uniform float in [0, 1) built from the top 53 bits of a 64-bit draw."""
        return (self.next_u64() >> 11) * (1.0 / (1 << 53))


class SeededPoisson:
    """A Poisson distribution sampled with a seeded, reproducible generator.

    The same ``rate_parameter`` and ``seed`` always give the same sequence of
    samples. ``time_step`` is carried along for callers that model block times.
    """

    def __init__(self, rate_parameter: float, time_step: int, seed: int) -> None:
        if not (rate_parameter > 0.0) or math.isinf(rate_parameter):
            raise ValueError(f"rate parameter must be positive and finite, got {rate_parameter!r}")
        if not 0 <= time_step <= _MASK32:
            raise ValueError(f"time step must fit in 32 unsigned bits, got {time_step!r}")
        if not 0 <= seed <= _MASK64:
            raise ValueError(f"seed must fit in 64 unsigned bits, got {seed!r}")
        self.rate_parameter = float(rate_parameter)
        self.time_step = time_step
        self._rng = _ChaCha12(_seed_from_u64(seed))

    def __repr__(self) -> str:
        return f"SeededPoisson(rate_parameter={self.rate_parameter!r}, time_step={self.time_step!r})"

    def sample(self) -> int:
        """Draw one value from the distribution."""
        if self.rate_parameter < _KNUTH_LIMIT:
            return self._sample_knuth()
        return self._sample_ptrs()

    def _sample_knuth(self) -> int:
        limit = math.exp(-self.rate_parameter)
        count = 0
        product = self._rng.next_f64()
        while product >= limit:
            count += 1
            product *= self._rng.next_f64()
        return count

    def _sample_ptrs(self) -> int:
        lam = self.rate_parameter
        c = 0.767 - 3.36 / lam
        beta = math.pi / math.sqrt(3.0 * lam)
        alpha = beta * lam
        k = math.log(c) - lam - math.log(beta)
        log_lam = math.log(lam)
        while True:
            u = self._rng.next_f64()
            if u == 0.0:
                continue
            x = (alpha - math.log((1.0 - u) / u)) / beta
            n = math.floor(x + 0.5)
            if n < 0:
                continue
            v = self._rng.next_f64()
            y = alpha - beta * x
            temp = 1.0 + math.exp(y)
            ratio = v / (temp * temp)
            lhs = y + (math.log(ratio) if ratio > 0.0 else -math.inf)
            rhs = k + n * log_lam - math.lgamma(n + 1.0)
            if lhs <= rhs:
                return int(n)