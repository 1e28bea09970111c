from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

__all__ = [
    "MAX_TARGET_SPARSITY",
    "PruneMethod",
    "PruneStrategy",
    "PruningSchedule",
    "EvolutionPruningConfig",
    "AdaptivePruningConfig",
    "PlasticityConfig",
]

# Keeps at least one connection alive for any positive baseline
MAX_TARGET_SPARSITY = 0.999


class PruneMethod(str, Enum):
    MAGNITUDE = "magnitude"
    SNIP = "snip"


class PruneStrategy(str, Enum):
    """Ranking used by simplify-phase pruning."""

    WEAK_WEIGHT = "weak_weight"
    WEAK_RECURRENT_PREFERRED = "weak_recurrent_preferred"


def _clamp_sparsity(value: float) -> float:
    return min(max(float(value), 0.0), MAX_TARGET_SPARSITY)


class PruningSchedule(BaseModel):
    """Linear sparsity ramp over ``[start, end]`` iterations.

    ``last_prune_iter`` is bookkeeping written only by the plasticity engine.
    Each genome gets its own copy.
    """

    start: int = Field(default=0, ge=0)
    end: int = Field(default=100, ge=0)
    frequency: int = Field(default=1, gt=0)
    target_sparsity: float = 0.5
    method: PruneMethod = PruneMethod.MAGNITUDE
    regrow_fraction: float = Field(default=0.0, ge=0, le=1)
    last_prune_iter: int | None = None

    @field_validator("target_sparsity")
    @classmethod
    def clamp_target_sparsity(cls, v: float) -> float:
        return _clamp_sparsity(v)

    @model_validator(mode="after")
    def check_window(self) -> PruningSchedule:
        if self.end < self.start:
            raise ValueError(f"end ({self.end}) must be >= start ({self.start})")
        return self


class EvolutionPruningConfig(BaseModel):
    """Population-wide sparsity ramp applied between generations."""

    start_generation: int = Field(default=0, ge=0)
    interval: int = Field(default=1, gt=0)
    ramp_generations: int = Field(default=0, ge=0, description="0 = full target immediately")
    target_sparsity: float = 0.5
    method: PruneMethod = PruneMethod.MAGNITUDE

    @field_validator("target_sparsity")
    @classmethod
    def clamp_target_sparsity(cls, v: float) -> float:
        return _clamp_sparsity(v)


class AdaptivePruningConfig(BaseModel):
    """Nudges a shared prune level until a population metric reaches target."""

    target_sparsity: float = 0.5
    metric: str = Field(default="connections", pattern="^(connections|nodes)$")
    tolerance: float = Field(default=0.05, ge=0)
    adjust_rate: float = Field(default=0.02, gt=0, le=1)

    @field_validator("target_sparsity")
    @classmethod
    def clamp_target_sparsity(cls, v: float) -> float:
        return _clamp_sparsity(v)


class PlasticityConfig(BaseModel):
    schedule: PruningSchedule | None = None
    evolution: EvolutionPruningConfig | None = None
    adaptive: AdaptivePruningConfig | None = None
    regrow_attempt_multiplier: int = Field(
        default=10, gt=0, description="Regrowth attempts per requested edge"
    )
