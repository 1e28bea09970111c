from __future__ import annotations

from collections.abc import Sequence
import random

from loguru import logger

from topoevo.evolution.protocols import EvolutionOptions, FitnessEvaluator
from topoevo.genome.model import Genome
from topoevo.genome.mutation import resolve_mutations
from topoevo.statistics.ordering import rank_by_score
from topoevo.utils.arena import ScratchArena

__all__ = ["SimpleGeneticCore", "topology_signature"]


def topology_signature(genome: Genome, bucket: int = 4) -> tuple[int, int]:
    """Coarse structural class: hidden-node count and bucketed edge count."""
    return len(genome.hidden_nodes), len(genome.enabled_connections()) // bucket


class SimpleGeneticCore:
    """Mutation-only genetic core with elitism and truncation selection.

    Species ids group genomes by :func:`topology_signature`. Every genome,
    elites included, is re-scored at the start of each ``evolve`` call.
    """

    def __init__(
        self,
        evaluator: FitnessEvaluator,
        n_inputs: int,
        n_outputs: int,
        *,
        popsize: int = 50,
        elitism: int = 2,
        mutations: Sequence[str] = ("mutate_weight", "mutate_bias", "add_connection", "add_node"),
        mutation_rate: float = 0.3,
        mutation_amount: float = 0.5,
        selection_fraction: float = 0.3,
        output_activation: str = "sigmoid",
        seed: int | None = None,
    ):
        self.evaluator = evaluator
        self.rng = random.Random(seed)
        self.options = EvolutionOptions(
            popsize=popsize,
            elitism=elitism,
            mutation=resolve_mutations(mutations),
            mutation_rate=mutation_rate,
            mutation_amount=mutation_amount,
        )
        self.selection_fraction = selection_fraction
        self.arena = ScratchArena()
        self.population: list[Genome] = [
            Genome.create(n_inputs, n_outputs, rng=self.rng, output_activation=output_activation)
            for _ in range(popsize)
        ]
        self._species_ids: dict[tuple[int, int], int] = {}
        self.generation = 0

    def evolve(self) -> Genome:
        self._evaluate(self.population, force=True)
        self._speciate(self.population)

        ranked = [self.population[i] for i in rank_by_score(self.population, self.arena)]
        size = max(self.options.popsize, len(self.population))
        elites = [g.clone() for g in ranked[: self.options.elitism]]
        parents = ranked[: max(1, int(len(ranked) * self.selection_fraction))]

        offspring: list[Genome] = []
        while len(elites) + len(offspring) < size:
            parent = self.rng.choice(parents)
            child = parent.clone()
            child.score = None
            child.parents = [parent.id]
            child.depth = parent.depth + 1
            op = self.rng.choice(self.options.mutation)
            try:
                op(child, self.rng, self.options)
            except Exception as exc:  # pylint: disable=broad-except
                logger.debug("[SimpleGeneticCore] Mutation {} failed: {}", op.__name__, exc)
            offspring.append(child)

        self.population = elites + offspring
        self._evaluate(self.population)
        self._speciate(self.population)
        self.generation += 1
        return self.population[rank_by_score(self.population, self.arena)[0]]

    def _evaluate(self, population: Sequence[Genome], force: bool = False) -> None:
        for genome in population:
            if force or genome.score is None:
                genome.score = self.evaluator(genome)

    def _speciate(self, population: Sequence[Genome]) -> None:
        for genome in population:
            key = topology_signature(genome)
            genome.species = self._species_ids.setdefault(key, len(self._species_ids))
