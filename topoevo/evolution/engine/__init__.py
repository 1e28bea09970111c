from topoevo.evolution.engine.config import ControllerConfig
from topoevo.evolution.engine.core import (
    GenerationController,
    GenerationReport,
    RunResult,
    StopReason,
    TelemetrySink,
)
from topoevo.evolution.engine.metrics import ControllerMetrics

__all__ = [
    "ControllerConfig",
    "ControllerMetrics",
    "GenerationController",
    "GenerationReport",
    "RunResult",
    "StopReason",
    "TelemetrySink",
]
