from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from topoevo.statistics.diversity import DiversityStats
from topoevo.statistics.streaming import DecisionStats

__all__ = [
    "StagnationView",
    "PlasticityView",
    "MutationView",
    "RefinementView",
    "TelemetrySnapshot",
]


class StagnationView(BaseModel):
    plateau_counter: int
    simplify_mode: bool
    simplify_remaining: int
    collapse_streak: int
    species_collapsed: bool


class PlasticityView(BaseModel):
    removed: int = 0
    regrown: int = 0
    simplify_disabled: int = 0
    compacted: int = 0
    mean_sparsity: float = 0.0


class MutationView(BaseModel):
    rate: float | None = None
    amount: float | None = None
    novelty_blend: float | None = None


class RefinementView(BaseModel):
    mean_grad_norm: float | None = None
    baldwinian_score: float | None = None


class TelemetrySnapshot(BaseModel):
    """One generation's diagnostics. Immutable once built."""

    generation: int
    timestamp: float
    fitness: float | None
    best_fitness: float | None
    population_size: int
    stagnation: StagnationView
    diversity: DiversityStats
    plasticity: PlasticityView
    decision: DecisionStats | None = None
    mutation: MutationView | None = None
    refinement: RefinementView | None = None

    model_config = ConfigDict(frozen=True)
