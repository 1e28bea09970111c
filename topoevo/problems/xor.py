"""XOR benchmark: dataset, fitness and decision probe."""

from __future__ import annotations

from topoevo.evolution.protocols import Sample
from topoevo.genome.model import Genome

XOR_DATASET: list[Sample] = [
    ([0.0, 0.0], [0.0]),
    ([0.0, 1.0], [1.0]),
    ([1.0, 0.0], [1.0]),
    ([1.0, 1.0], [0.0]),
]


def xor_dataset() -> list[Sample]:
    return [(list(x), list(y)) for x, y in XOR_DATASET]


class XorFitness:
    """Negative mean squared error over the XOR table, minus a size penalty.

    The output vectors seen during evaluation are stored on the genome as its
    decision trace.
    """

    def __init__(self, complexity_penalty: float = 0.0):
        self.complexity_penalty = complexity_penalty
        self.dataset = xor_dataset()

    def __call__(self, genome: Genome) -> float:
        genome.reset_state()
        trace: list[list[float]] = []
        error = 0.0
        for inputs, target in self.dataset:
            output = genome.activate(inputs)
            trace.append(output)
            error += sum((o - t) ** 2 for o, t in zip(output, target)) / len(target)
        genome.decision_trace = trace
        penalty = self.complexity_penalty * len(genome.enabled_connections())
        return -error / len(self.dataset) - penalty


class ActivationProbe:
    """Decision probe replaying a fixed input set through a genome."""

    def __init__(self, inputs: list[list[float]] | None = None):
        self.inputs = inputs or [x for x, _ in XOR_DATASET]

    def __call__(self, genome: Genome) -> list[list[float]]:
        genome.reset_state()
        return [genome.activate(x) for x in self.inputs]
