from __future__ import annotations

from collections.abc import Sequence
import math
import random
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from topoevo.genome.model import Genome, NodeRole
from topoevo.utils.arena import ScratchArena

__all__ = ["RecoveryConfig", "RecoveryReport", "AntiCollapseRecovery"]


class RecoveryConfig(BaseModel):
    mutation_rate_multiplier: float = Field(default=1.5, ge=1)
    mutation_rate_cap: float = Field(default=0.6, gt=0)
    mutation_amount_multiplier: float = Field(default=1.3, ge=1)
    mutation_amount_cap: float = Field(default=0.8, gt=0)
    novelty_blend_multiplier: float = Field(default=1.2, ge=1)
    novelty_blend_cap: float = Field(default=0.4, ge=0)
    sample_fraction: float = Field(default=0.3, gt=0, le=1)
    sample_capacity: int = Field(default=40, gt=0)
    bias_reset_range: float = Field(default=0.1, ge=0)
    weight_reset_range: float = Field(default=0.2, ge=0)


class RecoveryReport(BaseModel):
    escalated: dict[str, float] = Field(default_factory=dict)
    reinitialized: int = 0
    errors: int = 0


class AntiCollapseRecovery:
    """Raise mutation pressure and re-randomize the output layer of a sample.

    Only non-elite genomes are touched and only their output biases and
    output-bound weights change, so hidden structure survives.
    """

    def __init__(
        self,
        config: RecoveryConfig | None = None,
        rng: random.Random | None = None,
        arena: ScratchArena | None = None,
    ):
        self.config = config or RecoveryConfig()
        self.rng = rng or random.Random()
        self.arena = arena or ScratchArena(sample_capacity=self.config.sample_capacity)

    def __call__(self, population: Sequence[Genome], options: Any) -> RecoveryReport:
        escalated = self.escalate(options)
        elitism = int(getattr(options, "elitism", 0) or 0)
        reinitialized, errors = self.reinitialize(population, elitism)
        logger.info(
            "[AntiCollapseRecovery] Applied | reinitialized={}, errors={}, escalated={}",
            reinitialized,
            errors,
            escalated,
        )
        return RecoveryReport(escalated=escalated, reinitialized=reinitialized, errors=errors)

    def escalate(self, options: Any) -> dict[str, float]:
        cfg = self.config
        knobs = (
            ("mutation_rate", cfg.mutation_rate_multiplier, cfg.mutation_rate_cap),
            ("mutation_amount", cfg.mutation_amount_multiplier, cfg.mutation_amount_cap),
            ("novelty_blend", cfg.novelty_blend_multiplier, cfg.novelty_blend_cap),
        )
        changed: dict[str, float] = {}
        for name, multiplier, cap in knobs:
            value = getattr(options, name, None)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            new_value = min(cap, value * multiplier)
            setattr(options, name, new_value)
            changed[name] = new_value
        return changed

    def reinitialize(self, population: Sequence[Genome], elitism: int) -> tuple[int, int]:
        non_elite = list(population[elitism:])
        if not non_elite:
            return 0, 0
        cfg = self.config
        k = min(
            cfg.sample_capacity,
            self.arena.sample_capacity,
            max(1, math.floor(len(non_elite) * cfg.sample_fraction)),
        )

        done = errors = 0
        with self.arena.borrow("sample"):
            sample = self.arena.sample
            sample[:] = self.rng.sample(range(len(non_elite)), k)
            for i in sample:
                genome = non_elite[i]
                try:
                    self._reset_outputs(genome)
                    done += 1
                except Exception as exc:  # pylint: disable=broad-except
                    errors += 1
                    logger.debug(
                        "[AntiCollapseRecovery] Reinit failed for {}: {}", genome.id, exc
                    )
        return done, errors

    def _reset_outputs(self, genome: Genome) -> None:
        b, w = self.config.bias_reset_range, self.config.weight_reset_range
        for node in genome.nodes:
            if node.role is NodeRole.OUTPUT:
                node.bias = self.rng.uniform(-b, b)
        for conn in genome.connections:
            if conn.to_node.role is NodeRole.OUTPUT:
                conn.weight = self.rng.uniform(-w, w)
