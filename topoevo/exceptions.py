class TopoEvoError(Exception):
    """Base for all TopoEvo exceptions."""

    pass


class GenomeError(TopoEvoError):
    """Genome construction or manipulation failures."""

    pass


class TopologyError(GenomeError):
    """A structural invariant of the genome graph would be violated."""

    pass


class EvolutionError(TopoEvoError):
    """Evolution process failures."""

    pass


class CheckpointError(TopoEvoError):
    """Checkpoint read failures."""

    pass


class TelemetryError(TopoEvoError):
    """Telemetry export failures."""

    pass


class MutationError(TopoEvoError):
    """Mutation operator failures."""

    pass


__all__ = [
    "TopoEvoError",
    "GenomeError",
    "TopologyError",
    "EvolutionError",
    "CheckpointError",
    "TelemetryError",
    "MutationError",
]
