from topoevo.telemetry.export import TelemetryRecorder, flatten
from topoevo.telemetry.snapshot import (
    MutationView,
    PlasticityView,
    RefinementView,
    StagnationView,
    TelemetrySnapshot,
)
from topoevo.telemetry.tensorboard import TensorBoardSink

__all__ = [
    "TelemetryRecorder",
    "flatten",
    "MutationView",
    "PlasticityView",
    "RefinementView",
    "StagnationView",
    "TelemetrySnapshot",
    "TensorBoardSink",
]
