"""Streaming diagnostics over recent decision (output) vectors.

Moments use Welford's update for mean/variance and Pébay's one-pass update
for the third and fourth central moments. Variance is the population
variance ``M2 / n``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import Enum
import math

import numpy as np
from pydantic import BaseModel, Field

__all__ = [
    "StatisticsMode",
    "StatisticsConfig",
    "RunningMoments",
    "DecisionRing",
    "DecisionStats",
    "StreamingStatistics",
    "softmax_entropy",
    "decision_stability",
]

_VARIANCE_EPS = 1e-18
RING_MIN_CAPACITY = 128
RING_MAX_CAPACITY = 8192


class StatisticsMode(str, Enum):
    FULL = "full"
    REDUCED = "reduced"  # no skew/kurtosis
    MINIMAL = "minimal"  # subsystem disabled


class StatisticsConfig(BaseModel):
    mode: StatisticsMode = StatisticsMode.FULL
    recent_window: int = Field(default=40, gt=1)
    ring_capacity: int = Field(default=512, ge=RING_MIN_CAPACITY, le=RING_MAX_CAPACITY)
    flat_std_threshold: float = Field(default=0.005, ge=0)
    entropy_collapse_threshold: float = Field(default=0.35, ge=0, le=1)
    stability_collapse_threshold: float = Field(default=0.97, ge=0, le=1)


class RunningMoments:
    """Per-dimension running moments of a stream of k-vectors."""

    def __init__(self, dims: int, higher_moments: bool = True):
        self.dims = dims
        self.higher_moments = higher_moments
        self.n = 0
        self.mean = np.zeros(dims)
        self.m2 = np.zeros(dims)
        self.m3 = np.zeros(dims)
        self.m4 = np.zeros(dims)

    def push(self, x: np.ndarray) -> None:
        n1 = self.n
        self.n += 1
        n = self.n
        delta = x - self.mean
        delta_n = delta / n
        term1 = delta * delta_n * n1
        self.mean += delta_n
        if self.higher_moments:
            delta_n2 = delta_n * delta_n
            self.m4 += (
                term1 * delta_n2 * (n * n - 3 * n + 3)
                + 6.0 * delta_n2 * self.m2
                - 4.0 * delta_n * self.m3
            )
            self.m3 += term1 * delta_n * (n - 2) - 3.0 * delta_n * self.m2
        self.m2 += term1

    @property
    def variance(self) -> np.ndarray:
        if self.n == 0:
            return np.zeros(self.dims)
        return self.m2 / self.n

    @property
    def std(self) -> np.ndarray:
        return np.sqrt(self.variance)

    @property
    def skewness(self) -> np.ndarray:
        var = self.variance
        out = np.zeros(self.dims)
        ok = var > _VARIANCE_EPS
        out[ok] = math.sqrt(self.n) * self.m3[ok] / np.power(self.m2[ok], 1.5)
        return out

    @property
    def excess_kurtosis(self) -> np.ndarray:
        var = self.variance
        out = np.zeros(self.dims)
        ok = var > _VARIANCE_EPS
        out[ok] = self.n * self.m4[ok] / (self.m2[ok] * self.m2[ok]) - 3.0
        return out


class DecisionRing:
    """Fixed-capacity ring of recent decision vectors; oldest entries drop.

    Capacity is always a power of two between ``RING_MIN_CAPACITY`` and
    ``RING_MAX_CAPACITY`` and follows window demand through
    :meth:`ensure_capacity`.
    """

    def __init__(self, capacity: int = 512):
        self.capacity = _pow2_at_least(capacity)
        self.dims = 0
        self._buf = np.zeros((self.capacity, 0))
        self._head = 0
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def push(self, vec: Sequence[float]) -> None:
        row = np.asarray(vec, dtype=float)
        if row.ndim != 1 or row.size == 0:
            return
        if row.size != self.dims:
            # Output arity changed; older rows are not comparable
            self.dims = row.size
            self._buf = np.zeros((self.capacity, self.dims))
            self._head = 0
            self._count = 0
        self._buf[self._head] = row
        self._head = (self._head + 1) & (self.capacity - 1)
        self._count = min(self._count + 1, self.capacity)

    def tail(self, window: int) -> np.ndarray:
        """Most recent ``window`` rows, oldest first."""
        m = min(window, self._count)
        if m == 0:
            return np.zeros((0, self.dims))
        start = (self._head - m) & (self.capacity - 1)
        if start + m <= self.capacity:
            return self._buf[start : start + m].copy()
        return np.concatenate((self._buf[start:], self._buf[: self._head]))

    def ensure_capacity(self, desired: int) -> None:
        """Grow or shrink by powers of two to fit a window of *desired* rows."""
        target = self.capacity
        if desired > (self.capacity * 3) // 4:
            target = min(RING_MAX_CAPACITY, _pow2_at_least(2 * desired))
        else:
            while target > RING_MIN_CAPACITY and desired * 2 <= target // 2:
                target //= 2
        if target != self.capacity:
            self._resize(target)

    def clear(self) -> None:
        self._head = 0
        self._count = 0

    def _resize(self, capacity: int) -> None:
        keep = self.tail(capacity)
        self.capacity = capacity
        self._buf = np.zeros((capacity, self.dims))
        self._count = len(keep)
        self._buf[: self._count] = keep
        self._head = self._count & (capacity - 1)


class DecisionStats(BaseModel):
    """Summary of the recent decision window."""

    steps: int
    means: list[float]
    stds: list[float]
    skewness: list[float] | None = None
    kurtosis: list[float] | None = None
    entropy_mean: float
    stability: float

    def is_flat(self, config: StatisticsConfig) -> bool:
        """Outputs barely move and are either near-uniform-argmax or frozen."""
        if self.steps < 2 or not self.stds:
            return False
        flat = max(self.stds) < config.flat_std_threshold
        return flat and (
            self.entropy_mean < config.entropy_collapse_threshold
            or self.stability > config.stability_collapse_threshold
        )


def softmax_entropy(rows: np.ndarray) -> np.ndarray:
    """Normalized softmax entropy ``H / ln(k)`` of each row, in [0, 1]."""
    if rows.ndim != 2 or rows.shape[0] == 0:
        return np.zeros(0)
    k = rows.shape[1]
    if k < 2:
        return np.zeros(rows.shape[0])
    shifted = rows - rows.max(axis=1, keepdims=True)
    exp = np.exp(shifted)
    p = exp / exp.sum(axis=1, keepdims=True)
    with np.errstate(divide="ignore", invalid="ignore"):
        plogp = np.where(p > 0, p * np.log(p), 0.0)
    return np.clip(-plogp.sum(axis=1) / math.log(k), 0.0, 1.0)


def decision_stability(rows: np.ndarray) -> float:
    """Fraction of consecutive rows whose argmax is unchanged."""
    if rows.ndim != 2 or rows.shape[0] < 2:
        return 0.0
    arg = np.argmax(rows, axis=1)
    return float(np.mean(arg[1:] == arg[:-1]))


class StreamingStatistics:
    """Bounded-history decision statistics, recomputed per generation."""

    def __init__(self, config: StatisticsConfig | None = None):
        self.config = config or StatisticsConfig()
        self.ring = DecisionRing(self.config.ring_capacity)

    @property
    def enabled(self) -> bool:
        return self.config.mode is not StatisticsMode.MINIMAL

    def record(self, vectors: Iterable[Sequence[float]]) -> int:
        """Push decision vectors; returns the number accepted."""
        if not self.enabled:
            return 0
        batch = list(vectors)
        self.ring.ensure_capacity(max(self.config.recent_window, len(batch)))
        for vec in batch:
            self.ring.push(vec)
        return len(batch)

    def summarize(self) -> DecisionStats | None:
        if not self.enabled:
            return None
        rows = self.ring.tail(self.config.recent_window)
        if rows.shape[0] == 0:
            return None

        full = self.config.mode is StatisticsMode.FULL
        moments = RunningMoments(rows.shape[1], higher_moments=full)
        for row in rows:
            moments.push(row)

        entropy = softmax_entropy(rows)
        return DecisionStats(
            steps=int(rows.shape[0]),
            means=moments.mean.tolist(),
            stds=moments.std.tolist(),
            skewness=moments.skewness.tolist() if full else None,
            kurtosis=moments.excess_kurtosis.tolist() if full else None,
            entropy_mean=float(entropy.mean()) if entropy.size else 0.0,
            stability=decision_stability(rows),
        )

    def reset(self) -> None:
        self.ring.clear()


def _pow2_at_least(n: int) -> int:
    p = RING_MIN_CAPACITY
    while p < n:
        p <<= 1
    return min(p, RING_MAX_CAPACITY)
