from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from topoevo.checkpoint import CheckpointConfig
from topoevo.evolution.population import PopulationSizerConfig
from topoevo.evolution.recovery import RecoveryConfig
from topoevo.evolution.refinement import RefinementConfig
from topoevo.evolution.stagnation import StagnationConfig
from topoevo.plasticity.config import PlasticityConfig
from topoevo.statistics.streaming import StatisticsConfig


class ControllerConfig(BaseModel):
    """Configuration options controlling GenerationController behaviour."""

    max_generations: int | None = Field(
        default=None,
        gt=0,
        description="Maximum number of generations to run (None = unlimited)",
    )
    target_fitness: float | None = Field(
        default=None, description="Stop with 'solved' once best fitness reaches this"
    )
    max_stagnant_generations: int = Field(default=500, gt=0)
    stop_only_on_solve: bool = False
    seed: int | None = None
    compaction_interval: int = Field(
        default=50, ge=0, description="Drop disabled connections every N generations (0 = never)"
    )
    diversity_sample_size: int = Field(default=40, gt=0)
    telemetry_max_entries: int = Field(default=500, gt=0)
    log_interval: int = Field(default=1, ge=0)

    statistics: StatisticsConfig = Field(default_factory=StatisticsConfig)
    stagnation: StagnationConfig = Field(default_factory=StagnationConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    population: PopulationSizerConfig = Field(default_factory=PopulationSizerConfig)
    plasticity: PlasticityConfig = Field(default_factory=PlasticityConfig)
    refinement: RefinementConfig = Field(default_factory=RefinementConfig)
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)

    model_config = ConfigDict(arbitrary_types_allowed=True)
