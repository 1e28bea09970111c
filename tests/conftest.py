import random

import pytest

from topoevo.evolution.protocols import EvolutionOptions, TrainingResult
from topoevo.genome.model import Genome
from topoevo.genome.mutation import resolve_mutations


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def dense_genome(rng) -> Genome:
    """10x10 fully connected genome: exactly 100 connections."""
    return Genome.create(10, 10, rng=rng)


class FakeCore:
    """Deterministic genetic core driven by a scripted fitness sequence."""

    def __init__(self, fitness=None, popsize=10, species=None, seed=7):
        self.rng = random.Random(seed)
        self.options = EvolutionOptions(
            popsize=popsize,
            elitism=2,
            mutation=resolve_mutations(["mutate_weight", "mutate_bias"]),
            mutation_rate=0.3,
            mutation_amount=0.5,
            novelty_blend=0.1,
        )
        self.population = [Genome.create(3, 2, rng=self.rng) for _ in range(popsize)]
        self._fitness = list(fitness) if fitness is not None else None
        self._species = species
        self.calls = 0

    def evolve(self) -> Genome:
        self.calls += 1
        if self._fitness is not None:
            value = self._fitness[min(self.calls - 1, len(self._fitness) - 1)]
        else:
            value = float(self.calls)
        for i, genome in enumerate(self.population):
            genome.score = value - 0.01 * i
            genome.species = 0 if self._species is None else self._species(self.calls, i)
            genome.decision_trace = [[0.1 * i, 0.5, 0.2], [0.3, 0.1 * self.calls, 0.4]]
        return self.population[0]


class FakeTrainer:
    def __init__(self, grad_norm=0.5, fail_on=None):
        self.grad_norm = grad_norm
        self.fail_on = fail_on or set()
        self.trained = []

    def train(self, genome, dataset, options):
        if genome.id in self.fail_on:
            raise RuntimeError("boom")
        self.trained.append((genome.id, options.iterations))
        for conn in genome.connections:
            conn.weight += 0.01
        return TrainingResult(error=0.1, grad_norm=self.grad_norm)


@pytest.fixture
def fake_core() -> FakeCore:
    return FakeCore()
