"""Collaborator contracts consumed by the generation controller."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from topoevo.genome.model import Genome
from topoevo.genome.mutation import MutationOperator

__all__ = [
    "Sample",
    "EvolutionOptions",
    "GeneticCore",
    "TrainOptions",
    "TrainingResult",
    "Trainer",
    "FitnessEvaluator",
    "DecisionProbe",
]

Sample = tuple[Sequence[float], Sequence[float]]
FitnessEvaluator = Callable[[Genome], float]


class EvolutionOptions(BaseModel):
    """Mutable knobs of a genetic core that the controller may adjust."""

    popsize: int = Field(default=50, gt=0)
    elitism: int = Field(default=2, ge=0)
    mutation: list[MutationOperator] = Field(default_factory=list)
    mutation_rate: float = Field(default=0.3, ge=0, le=1)
    mutation_amount: float = Field(default=0.5, ge=0)
    novelty_blend: float = Field(default=0.0, ge=0, le=1)

    model_config = ConfigDict(arbitrary_types_allowed=True)


@runtime_checkable
class GeneticCore(Protocol):
    """Selection, reproduction and speciation live behind this interface.

    ``evolve`` advances the population in place, assigns ``species`` ids and
    returns the fittest genome of the new generation.
    """

    population: list[Genome]
    options: Any

    def evolve(self) -> Genome: ...


class TrainOptions(BaseModel):
    iterations: int = Field(default=10, gt=0)
    error: float = Field(default=0.01, ge=0)
    rate: float = Field(default=0.001, gt=0)
    momentum: float = Field(default=0.2, ge=0, lt=1)
    batch_size: int = Field(default=2, gt=0)
    allow_recurrent: bool = True
    cost: str = "mse"


class TrainingResult(BaseModel):
    error: float
    grad_norm: float | None = None


@runtime_checkable
class Trainer(Protocol):
    def train(
        self, genome: Genome, dataset: Sequence[Sample], options: TrainOptions
    ) -> TrainingResult: ...


class DecisionProbe(Protocol):
    """Produces output vectors of a genome for decision statistics."""

    def __call__(self, genome: Genome) -> Sequence[Sequence[float]]: ...
