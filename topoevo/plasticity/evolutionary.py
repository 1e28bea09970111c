from __future__ import annotations

from collections.abc import Sequence

from loguru import logger
from pydantic import BaseModel

from topoevo.genome.model import Genome
from topoevo.plasticity.config import (
    AdaptivePruningConfig,
    EvolutionPruningConfig,
    PruneMethod,
)
from topoevo.plasticity.engine import StructuralPlasticityEngine

__all__ = ["PassSummary", "EvolutionaryPruner"]


class PassSummary(BaseModel):
    removed: int = 0
    regrown: int = 0
    errors: int = 0

    def merge(self, other: PassSummary) -> PassSummary:
        return PassSummary(
            removed=self.removed + other.removed,
            regrown=self.regrown + other.regrown,
            errors=self.errors + other.errors,
        )


class EvolutionaryPruner:
    """Population-level pruning between generations.

    Two independent controllers share the engine's sparsity-target prune:
    a linear ramp keyed on generation number, and an adaptive level that
    tracks a population-average size metric.
    """

    def __init__(
        self,
        engine: StructuralPlasticityEngine,
        evolution: EvolutionPruningConfig | None = None,
        adaptive: AdaptivePruningConfig | None = None,
    ):
        self.engine = engine
        self.evolution = evolution
        self.adaptive = adaptive
        self.adaptive_level = 0.0
        self._adaptive_baseline: float | None = None

    def ramp_target(self, generation: int) -> float | None:
        """Target sparsity for *generation*, or ``None`` when off-cadence."""
        cfg = self.evolution
        if cfg is None or generation < cfg.start_generation:
            return None
        if (generation - cfg.start_generation) % cfg.interval != 0:
            return None
        fraction = 1.0
        if cfg.ramp_generations > 0:
            fraction = min(
                1.0, max(0.0, (generation - cfg.start_generation) / cfg.ramp_generations)
            )
        return cfg.target_sparsity * fraction

    def apply_ramp(self, population: Sequence[Genome], generation: int) -> PassSummary:
        target = self.ramp_target(generation)
        if target is None or target <= 0:
            return PassSummary()
        assert self.evolution is not None
        return self._prune_all(population, target, self.evolution.method)

    def apply_adaptive(self, population: Sequence[Genome]) -> PassSummary:
        cfg = self.adaptive
        if cfg is None or not population:
            return PassSummary()

        if cfg.metric == "nodes":
            current = sum(len(g.nodes) for g in population) / len(population)
        else:
            current = sum(len(g.connections) for g in population) / len(population)
        if self._adaptive_baseline is None:
            self._adaptive_baseline = current
        baseline = self._adaptive_baseline

        remaining_target = baseline * (1.0 - cfg.target_sparsity)
        diff = (current - remaining_target) / (baseline or 1.0)
        if abs(diff) <= cfg.tolerance:
            return PassSummary()

        step = cfg.adjust_rate if diff > 0 else -cfg.adjust_rate
        self.adaptive_level = max(0.0, min(cfg.target_sparsity, self.adaptive_level + step))
        logger.debug(
            "[EvolutionaryPruner] Adaptive level | level={:.3f}, metric={}, current={:.2f}",
            self.adaptive_level,
            cfg.metric,
            current,
        )
        return self._prune_all(population, self.adaptive_level, PruneMethod.MAGNITUDE)

    def _prune_all(
        self, population: Sequence[Genome], target: float, method: PruneMethod
    ) -> PassSummary:
        summary = PassSummary()
        for genome in population:
            try:
                summary.removed += self.engine.sparsity_target_prune(genome, target, method)
            except Exception as exc:  # pylint: disable=broad-except
                summary.errors += 1
                logger.debug("[EvolutionaryPruner] Prune failed for {}: {}", genome.id, exc)
        return summary
