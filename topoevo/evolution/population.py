from __future__ import annotations

import math
import random

from loguru import logger
from pydantic import BaseModel, Field

from topoevo.evolution.protocols import GeneticCore
from topoevo.statistics.ordering import rank_by_score
from topoevo.utils.arena import ScratchArena

__all__ = ["PopulationSizerConfig", "ExpansionReport", "DynamicPopulationSizer"]


class PopulationSizerConfig(BaseModel):
    enabled: bool = True
    expand_interval: int = Field(default=25, gt=0)
    expand_factor: float = Field(default=0.15, gt=0)
    plateau_slack: float = Field(default=0.6, ge=0)
    max_size: int | None = Field(
        default=None, gt=0, description="None = max(initial popsize, 120)"
    )
    parent_fraction: float = Field(default=0.25, gt=0, le=1)
    min_parents: int = Field(default=2, gt=0)


class ExpansionReport(BaseModel):
    added: int = 0
    errors: int = 0
    size: int


class DynamicPopulationSizer:
    """Grow the population from top-ranked parents while fitness plateaus."""

    def __init__(
        self,
        config: PopulationSizerConfig,
        max_size: int,
        rng: random.Random | None = None,
        arena: ScratchArena | None = None,
    ):
        self.config = config
        self.max_size = max_size
        self.rng = rng or random.Random()
        self.arena = arena or ScratchArena()

    def should_expand(
        self, generation: int, plateau_counter: int, plateau_generations: int, size: int
    ) -> bool:
        cfg = self.config
        if not cfg.enabled or generation <= 0 or generation % cfg.expand_interval != 0:
            return False
        if size >= self.max_size:
            return False
        return plateau_counter / plateau_generations >= cfg.plateau_slack

    def expand(self, core: GeneticCore) -> ExpansionReport:
        population = core.population
        n = len(population)
        if n == 0:
            return ExpansionReport(size=0)
        target_add = min(
            max(1, math.floor(n * self.config.expand_factor)), self.max_size - n
        )
        if target_add <= 0:
            return ExpansionReport(size=n)

        ranked = rank_by_score(population, self.arena)
        pool_size = min(n, max(self.config.min_parents, math.ceil(n * self.config.parent_fraction)))
        pool = [population[i] for i in ranked[:pool_size]]
        operators = list(getattr(core.options, "mutation", None) or [])

        added = errors = 0
        for _ in range(target_add):
            parent = self.rng.choice(pool)
            try:
                child = parent.clone()
                if operators:
                    count = min(len(operators), 1 + (self.rng.random() < 0.5))
                    for op in self.rng.sample(operators, count):
                        op(child, self.rng, core.options)
                child.score = None
                child.parents = [parent.id]
                child.depth = parent.depth + 1
            except Exception as exc:  # pylint: disable=broad-except
                errors += 1
                logger.debug("[DynamicPopulationSizer] Offspring of {} failed: {}", parent.id, exc)
                continue
            population.append(child)
            added += 1

        if hasattr(core.options, "popsize"):
            core.options.popsize = len(population)
        logger.info(
            "[DynamicPopulationSizer] Expanded | added={}, size={}, max={}",
            added,
            len(population),
            self.max_size,
        )
        return ExpansionReport(added=added, errors=errors, size=len(population))
