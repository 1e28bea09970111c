import random

import pytest

from topoevo.evolution.population import DynamicPopulationSizer, PopulationSizerConfig
from topoevo.evolution.refinement import RefinementConfig, Refiner
from topoevo.evolution.protocols import TrainOptions
from topoevo.genome.model import Genome
from tests.conftest import FakeCore, FakeTrainer


def _sizer(max_size=120, **overrides) -> DynamicPopulationSizer:
    params = dict(expand_interval=5, expand_factor=0.2, plateau_slack=0.5)
    params.update(overrides)
    return DynamicPopulationSizer(PopulationSizerConfig(**params), max_size, random.Random(0))


class TestShouldExpand:
    def test_interval_and_slack(self):
        sizer = _sizer()
        assert sizer.should_expand(10, plateau_counter=5, plateau_generations=10, size=10)
        assert not sizer.should_expand(11, plateau_counter=5, plateau_generations=10, size=10)
        assert not sizer.should_expand(10, plateau_counter=4, plateau_generations=10, size=10)
        assert not sizer.should_expand(0, plateau_counter=10, plateau_generations=10, size=10)

    def test_stops_at_max(self):
        sizer = _sizer(max_size=10)
        assert not sizer.should_expand(10, plateau_counter=10, plateau_generations=10, size=10)

    def test_disabled(self):
        sizer = _sizer(enabled=False)
        assert not sizer.should_expand(10, plateau_counter=10, plateau_generations=10, size=10)


class TestExpand:
    def test_adds_clamped_count_from_top_parents(self):
        core = FakeCore(popsize=10)
        core.evolve()
        top_ids = {core.population[i].id for i in range(3)}
        report = _sizer().expand(core)

        assert report.added == 2
        assert len(core.population) == 12
        assert core.options.popsize == 12
        for child in core.population[10:]:
            assert child.score is None
            assert child.parents[0] in top_ids
            assert child.depth == 1

    def test_respects_max_size(self):
        core = FakeCore(popsize=10)
        core.evolve()
        report = _sizer(max_size=11, expand_factor=0.9).expand(core)
        assert report.added == 1
        assert len(core.population) == 11

    def test_minimum_one(self):
        core = FakeCore(popsize=3)
        core.evolve()
        assert _sizer(expand_factor=0.01).expand(core).added == 1

    def test_failing_operator_is_contained(self):
        core = FakeCore(popsize=10)
        core.evolve()

        def explode(genome, rng, options):
            raise RuntimeError("bad operator")

        core.options.mutation = [explode]
        report = _sizer().expand(core)
        assert report.added == 0
        assert report.errors == 2
        assert len(core.population) == 10


class TestRefiner:
    def test_lamarckian_trains_in_place(self, rng):
        population = [Genome.create(2, 2, rng=rng) for _ in range(3)]
        before = population[0].connections[0].weight
        trainer = FakeTrainer(grad_norm=0.4)
        refiner = Refiner(trainer, [([0.0, 1.0], [1.0, 0.0])], RefinementConfig(lamarckian=True))
        report = refiner.lamarckian(population)
        assert report.trained == 3
        assert report.mean_grad_norm == pytest.approx(0.4)
        assert population[0].connections[0].weight == pytest.approx(before + 0.01)
        assert all(it == 10 for _, it in trainer.trained)
        biases = [n.bias for n in population[0].output_nodes]
        assert sum(biases) == pytest.approx(0.0)

    def test_lamarckian_failure_per_genome(self, rng):
        population = [Genome.create(2, 1, rng=rng) for _ in range(3)]
        trainer = FakeTrainer(fail_on={population[1].id})
        refiner = Refiner(trainer, [([0.0, 1.0], [1.0])], RefinementConfig(lamarckian=True))
        report = refiner.lamarckian(population)
        assert (report.trained, report.errors) == (2, 1)

    def test_baldwinian_is_not_inherited(self, rng):
        fittest = Genome.create(2, 1, rng=rng)
        weight = fittest.connections[0].weight
        trainer = FakeTrainer()
        refiner = Refiner(
            trainer,
            [([0.0, 1.0], [1.0])],
            RefinementConfig(baldwinian=True, baldwinian_train=TrainOptions(iterations=50)),
            evaluator=lambda g: 42.0,
        )
        refined, report = refiner.baldwinian(fittest)
        assert refined is not fittest
        assert fittest.connections[0].weight == weight
        assert report.baldwinian_score == 42.0
        assert trainer.trained[0][1] == 50

    def test_disabled_modes_are_noops(self, rng):
        refiner = Refiner(FakeTrainer(), [([0.0], [0.0])])
        assert refiner.lamarckian([Genome.create(1, 1, rng=rng)]).trained == 0
        assert refiner.baldwinian(Genome.create(1, 1, rng=rng))[0] is None
