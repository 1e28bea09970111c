from __future__ import annotations

from collections.abc import Sequence
import random

from loguru import logger
from pydantic import BaseModel, Field

from topoevo.evolution.protocols import (
    FitnessEvaluator,
    Sample,
    Trainer,
    TrainOptions,
)
from topoevo.genome.model import Genome, NodeRole

__all__ = ["RefinementConfig", "RefinementReport", "Refiner"]


class RefinementConfig(BaseModel):
    lamarckian: bool = False
    lamarckian_train: TrainOptions = Field(
        default_factory=lambda: TrainOptions(iterations=10, batch_size=2)
    )
    lamarckian_sample_size: int | None = Field(default=None, gt=0)
    recenter_output_bias: bool = True
    baldwinian: bool = False
    baldwinian_train: TrainOptions = Field(
        default_factory=lambda: TrainOptions(iterations=1000, batch_size=20)
    )


class RefinementReport(BaseModel):
    trained: int = 0
    errors: int = 0
    mean_grad_norm: float | None = None
    baldwinian_score: float | None = None


class Refiner:
    """Local gradient refinement through an external trainer.

    Lamarckian refinement trains population members in place, so offspring
    inherit the weights. Baldwinian refinement trains a throwaway clone of the
    fittest genome and only reports how well it scores.
    """

    def __init__(
        self,
        trainer: Trainer,
        dataset: Sequence[Sample],
        config: RefinementConfig | None = None,
        evaluator: FitnessEvaluator | None = None,
        rng: random.Random | None = None,
    ):
        self.trainer = trainer
        self.dataset = dataset
        self.config = config or RefinementConfig()
        self.evaluator = evaluator
        self.rng = rng or random.Random()

    def lamarckian(self, population: Sequence[Genome]) -> RefinementReport:
        report = RefinementReport()
        if not self.config.lamarckian or not self.dataset:
            return report

        grad_norms: list[float] = []
        for genome in population:
            try:
                result = self.trainer.train(
                    genome, self._training_sample(), self.config.lamarckian_train
                )
                if self.config.recenter_output_bias:
                    _recenter_output_bias(genome)
            except Exception as exc:  # pylint: disable=broad-except
                report.errors += 1
                logger.debug("[Refiner] Lamarckian training failed for {}: {}", genome.id, exc)
                continue
            report.trained += 1
            if result.grad_norm is not None:
                grad_norms.append(result.grad_norm)

        if grad_norms:
            report.mean_grad_norm = sum(grad_norms) / len(grad_norms)
        return report

    def baldwinian(self, fittest: Genome) -> tuple[Genome | None, RefinementReport]:
        report = RefinementReport()
        if not self.config.baldwinian or not self.dataset:
            return None, report
        refined = fittest.clone()
        try:
            result = self.trainer.train(refined, self.dataset, self.config.baldwinian_train)
            if self.evaluator is not None:
                refined.score = self.evaluator(refined)
        except Exception as exc:  # pylint: disable=broad-except
            report.errors += 1
            logger.debug("[Refiner] Baldwinian training failed: {}", exc)
            return None, report
        report.trained = 1
        report.mean_grad_norm = result.grad_norm
        report.baldwinian_score = refined.score
        return refined, report

    def _training_sample(self) -> Sequence[Sample]:
        size = self.config.lamarckian_sample_size
        if size is None or size >= len(self.dataset):
            return self.dataset
        return self.rng.sample(list(self.dataset), size)


def _recenter_output_bias(genome: Genome) -> None:
    outputs = [n for n in genome.nodes if n.role is NodeRole.OUTPUT]
    if len(outputs) < 2:
        return
    mean = sum(n.bias for n in outputs) / len(outputs)
    for node in outputs:
        node.bias -= mean
