from topoevo.evolution.engine import (
    ControllerConfig,
    GenerationController,
    RunResult,
    StopReason,
)
from topoevo.evolution.population import DynamicPopulationSizer, PopulationSizerConfig
from topoevo.evolution.protocols import (
    EvolutionOptions,
    GeneticCore,
    Trainer,
    TrainingResult,
    TrainOptions,
)
from topoevo.evolution.recovery import AntiCollapseRecovery, RecoveryConfig
from topoevo.evolution.reference_core import SimpleGeneticCore
from topoevo.evolution.refinement import RefinementConfig, Refiner
from topoevo.evolution.stagnation import StagnationConfig, StagnationMonitor, StagnationState

__all__ = [
    "ControllerConfig",
    "GenerationController",
    "RunResult",
    "StopReason",
    "DynamicPopulationSizer",
    "PopulationSizerConfig",
    "EvolutionOptions",
    "GeneticCore",
    "Trainer",
    "TrainingResult",
    "TrainOptions",
    "AntiCollapseRecovery",
    "RecoveryConfig",
    "SimpleGeneticCore",
    "RefinementConfig",
    "Refiner",
    "StagnationConfig",
    "StagnationMonitor",
    "StagnationState",
]
