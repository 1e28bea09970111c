from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
import math
import random

from pydantic import BaseModel

from topoevo.genome.model import Genome

__all__ = ["RunningStats", "DiversityStats", "compute_diversity"]


class RunningStats(BaseModel):
    """Scalar Welford accumulator (population variance)."""

    n: int = 0
    mean: float = 0.0
    m2: float = 0.0

    def update(self, x: float) -> None:
        self.n += 1
        delta = x - self.mean
        self.mean = self.mean + delta * (1.0 / self.n)
        delta2 = x - self.mean
        self.m2 = self.m2 + delta * delta2

    def mean_value(self) -> float:
        return self.mean if self.n > 0 else 0.0

    def std_value(self) -> float:
        if self.n <= 1:
            return 0.0
        return math.sqrt(self.m2 / self.n)


class DiversityStats(BaseModel):
    species: int
    simpson: float
    mean_nodes: float
    mean_connections: float
    weight_std: float


def compute_diversity(
    population: Sequence[Genome],
    rng: random.Random,
    sample_size: int = 40,
) -> DiversityStats:
    if not population:
        return DiversityStats(
            species=0, simpson=0.0, mean_nodes=0.0, mean_connections=0.0, weight_std=0.0
        )

    n = len(population)
    shares = Counter(g.species for g in population)
    simpson = 1.0 - sum((c / n) ** 2 for c in shares.values())

    nodes = RunningStats()
    conns = RunningStats()
    for g in population:
        nodes.update(len(g.nodes))
        conns.update(len(g.enabled_connections()))

    weights = RunningStats()
    sampled = population if n <= sample_size else rng.sample(list(population), sample_size)
    for g in sampled:
        for c in g.connections:
            if c.enabled:
                weights.update(c.weight)

    return DiversityStats(
        species=len(shares),
        simpson=simpson,
        mean_nodes=nodes.mean_value(),
        mean_connections=conns.mean_value(),
        weight_std=weights.std_value(),
    )
