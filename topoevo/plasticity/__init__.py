from topoevo.plasticity.config import (
    AdaptivePruningConfig,
    EvolutionPruningConfig,
    PlasticityConfig,
    PruneMethod,
    PruneStrategy,
    PruningSchedule,
)
from topoevo.plasticity.engine import BaselineMode, PruneReport, StructuralPlasticityEngine
from topoevo.plasticity.evolutionary import EvolutionaryPruner, PassSummary

__all__ = [
    "AdaptivePruningConfig",
    "EvolutionPruningConfig",
    "PlasticityConfig",
    "PruneMethod",
    "PruneStrategy",
    "PruningSchedule",
    "BaselineMode",
    "PruneReport",
    "StructuralPlasticityEngine",
    "EvolutionaryPruner",
    "PassSummary",
]
