import random

import pytest
from pydantic import ValidationError

from topoevo.genome.model import Genome, Node, NodeRole
from topoevo.plasticity.config import (
    AdaptivePruningConfig,
    EvolutionPruningConfig,
    PruneMethod,
    PruneStrategy,
    PruningSchedule,
)
from topoevo.plasticity.engine import BaselineMode, StructuralPlasticityEngine
from topoevo.plasticity.evolutionary import EvolutionaryPruner


def _schedule(**overrides) -> PruningSchedule:
    params = dict(start=0, end=100, frequency=10, target_sparsity=0.5, method="magnitude")
    params.update(overrides)
    return PruningSchedule(**params)


@pytest.fixture
def engine(rng) -> StructuralPlasticityEngine:
    return StructuralPlasticityEngine(rng)


class TestPruningSchedule:
    def test_target_is_clamped(self):
        assert _schedule(target_sparsity=1.5).target_sparsity == pytest.approx(0.999)
        assert _schedule(target_sparsity=-0.2).target_sparsity == 0.0

    def test_invalid_window_rejected(self):
        with pytest.raises(ValidationError):
            _schedule(start=10, end=5)
        with pytest.raises(ValidationError):
            _schedule(frequency=0)


class TestRanking:
    def test_magnitude_ranks_weakest_first(self, engine, dense_genome):
        ranked = engine.rank(dense_genome.connections, PruneMethod.MAGNITUDE)
        weights = [abs(c.weight) for c in ranked]
        assert weights == sorted(weights)

    def test_snip_degenerates_to_magnitude_without_gradients(self, engine, dense_genome):
        snip = engine.rank(dense_genome.connections, "snip")
        magnitude = engine.rank(dense_genome.connections, "magnitude")
        assert [abs(c.weight) for c in snip] == [abs(c.weight) for c in magnitude]

    def test_snip_uses_gradient_proxy(self, engine, rng):
        genome = Genome.create(2, 1, rng=rng)
        strong, weak = genome.connections
        strong.weight, weak.weight = 1.0, 0.1
        strong.total_delta_weight = 0.001
        weak.previous_delta_weight = 5.0
        assert engine.rank(genome.connections, "snip")[0] is strong

    def test_recurrent_preferred_ranks_loops_first(self, rng):
        genome = Genome.create(2, 1, rng=rng, enforce_acyclic=False)
        out = genome.output_nodes[0]
        loop = genome.connect(out, out, 5.0)
        ranked = StructuralPlasticityEngine.rank_for_simplify(
            genome.connections, PruneStrategy.WEAK_RECURRENT_PREFERRED
        )
        assert ranked[0] is loop


class TestScheduledPrune:
    def test_ramp_example(self, engine, dense_genome):
        engine.attach_schedule(dense_genome, _schedule())
        engine.scheduled_prune(dense_genome, 50)
        assert len(dense_genome.connections) == 75
        engine.scheduled_prune(dense_genome, 100)
        assert len(dense_genome.connections) == 50

    def test_no_op_outside_window_and_off_cadence(self, engine, dense_genome):
        engine.attach_schedule(dense_genome, _schedule(start=10, end=60))
        for iteration in (0, 5, 61, 200, 15):
            assert engine.scheduled_prune(dense_genome, iteration) is None
        assert len(dense_genome.connections) == 100

    def test_idempotent_per_iteration(self, engine, dense_genome):
        engine.attach_schedule(dense_genome, _schedule())
        first = engine.scheduled_prune(dense_genome, 20)
        assert first is not None and first.removed == 10
        assert engine.scheduled_prune(dense_genome, 20) is None
        assert dense_genome.plasticity.schedule.last_prune_iter == 20

    def test_requires_baseline(self, engine, dense_genome):
        dense_genome.plasticity.schedule = _schedule()
        assert engine.scheduled_prune(dense_genome, 50) is None
        assert len(dense_genome.connections) == 100

    def test_baseline_is_frozen(self, engine, dense_genome):
        engine.attach_schedule(dense_genome, _schedule())
        engine.scheduled_prune(dense_genome, 50)
        engine.attach_schedule(dense_genome, _schedule())
        assert dense_genome.plasticity.scheduled_baseline == 100

    def test_excess_not_positive_only_stamps(self, engine, dense_genome):
        engine.attach_schedule(dense_genome, _schedule())
        report = engine.scheduled_prune(dense_genome, 0)
        assert report.removed == 0
        assert dense_genome.plasticity.schedule.last_prune_iter == 0

    def test_end_equals_start(self, engine, dense_genome):
        engine.attach_schedule(dense_genome, _schedule(start=5, end=5, frequency=1))
        engine.scheduled_prune(dense_genome, 5)
        assert len(dense_genome.connections) == 100

    def test_marks_topology_dirty(self, engine, dense_genome):
        dense_genome.activate([0.0] * 10)
        engine.attach_schedule(dense_genome, _schedule())
        engine.scheduled_prune(dense_genome, 30)
        assert dense_genome.topology_dirty


class TestRegrowth:
    def _hidden_genome(self, rng) -> Genome:
        genome = Genome.create(4, 3, rng=rng)
        for conn in list(genome.connections[:6]):
            genome.split_connection(conn)
        return genome

    def test_regrowth_respects_invariants(self, rng):
        genome = self._hidden_genome(rng)
        engine = StructuralPlasticityEngine(rng, regrow_attempt_multiplier=50)
        engine.attach_schedule(genome, _schedule(regrow_fraction=1.0, target_sparsity=0.8))
        engine.scheduled_prune(genome, 100)

        pairs = [(id(c.from_node), id(c.to_node)) for c in genome.connections]
        assert len(pairs) == len(set(pairs))
        assert not any(c.is_self_loop for c in genome.connections)
        assert all(c.from_node.index < c.to_node.index for c in genome.connections)
        assert all(c.to_node.role is not NodeRole.INPUT for c in genome.connections)

    def test_regrow_bounded_by_attempts(self, rng):
        genome = Genome()
        a = genome.add_node(Node(NodeRole.INPUT, activation="identity"))
        b = genome.add_node(Node(NodeRole.OUTPUT))
        genome.connect(a, b, 1.0)
        engine = StructuralPlasticityEngine(rng, regrow_attempt_multiplier=3)
        # The only legal edge already exists
        assert engine.regrow(genome, 5) == 0

    def test_regrow_adds_requested_edges(self, rng):
        genome = Genome()
        inputs = [genome.add_node(Node(NodeRole.INPUT, activation="identity")) for _ in range(6)]
        out = genome.add_node(Node(NodeRole.OUTPUT))
        genome.connect(inputs[0], out, 1.0)
        engine = StructuralPlasticityEngine(random.Random(3), regrow_attempt_multiplier=200)
        assert engine.regrow(genome, 3) == 3
        assert len(genome.connections) == 4


class TestSparsityTargetPrune:
    def test_non_positive_target_is_noop(self, engine, dense_genome):
        assert engine.sparsity_target_prune(dense_genome, 0.0) == 0
        assert dense_genome.plasticity.evolutionary_baseline is None

    def test_idempotent_at_fixed_target(self, engine, dense_genome):
        assert engine.sparsity_target_prune(dense_genome, 0.3) == 30
        assert engine.sparsity_target_prune(dense_genome, 0.3) == 0
        assert len(dense_genome.connections) == 70

    def test_full_target_clamps_and_keeps_one(self, engine, dense_genome):
        engine.sparsity_target_prune(dense_genome, 1.0)
        assert len(dense_genome.connections) == 1
        tiny = Genome.create(1, 1, rng=random.Random(0))
        engine.sparsity_target_prune(tiny, 5.0)
        assert len(tiny.connections) == 1

    def test_independent_of_scheduled_baseline(self, engine, dense_genome):
        engine.attach_schedule(dense_genome, _schedule())
        engine.scheduled_prune(dense_genome, 100)
        engine.sparsity_target_prune(dense_genome, 0.5)
        assert dense_genome.plasticity.evolutionary_baseline == 50
        assert dense_genome.plasticity.scheduled_baseline == 100
        assert len(dense_genome.connections) == 25


class TestCurrentSparsity:
    def test_zero_before_baseline(self, engine, dense_genome):
        assert engine.current_sparsity(dense_genome) == 0.0

    def test_fraction_removed(self, engine, dense_genome):
        engine.capture_baseline(dense_genome)
        dense_genome.remove_connections(dense_genome.connections[:7])
        assert engine.current_sparsity(dense_genome) == pytest.approx(0.07)
        assert engine.current_sparsity(dense_genome, BaselineMode.EVOLUTIONARY) == 0.0


class TestSimplifyPrune:
    def test_disables_fraction_of_enabled(self, engine, dense_genome):
        assert engine.prune_fraction(dense_genome, 0.05) == 5
        assert len(dense_genome.enabled_connections()) == 95
        assert len(dense_genome.connections) == 100

    def test_minimum_one_and_keeps_one_enabled(self, engine, rng):
        genome = Genome.create(2, 1, rng=rng)
        assert engine.prune_fraction(genome, 0.01) == 1
        assert engine.prune_fraction(genome, 0.01) == 0
        assert len(genome.enabled_connections()) == 1


class TestEvolutionaryPruner:
    def test_ramp_target(self, engine):
        pruner = EvolutionaryPruner(
            engine,
            EvolutionPruningConfig(start_generation=10, interval=5, ramp_generations=20, target_sparsity=0.4),
        )
        assert pruner.ramp_target(5) is None
        assert pruner.ramp_target(12) is None
        assert pruner.ramp_target(20) == pytest.approx(0.2)
        assert pruner.ramp_target(40) == pytest.approx(0.4)

    def test_apply_ramp_prunes_population(self, engine, rng):
        population = [Genome.create(10, 10, rng=rng) for _ in range(3)]
        pruner = EvolutionaryPruner(engine, EvolutionPruningConfig(target_sparsity=0.2))
        summary = pruner.apply_ramp(population, 0)
        assert summary.removed == 60
        assert all(len(g.connections) == 80 for g in population)

    def test_adaptive_level_moves_toward_target(self, engine, rng):
        population = [Genome.create(10, 10, rng=rng) for _ in range(2)]
        pruner = EvolutionaryPruner(
            engine, adaptive=AdaptivePruningConfig(target_sparsity=0.5, adjust_rate=0.1)
        )
        pruner.apply_adaptive(population)
        assert pruner.adaptive_level == pytest.approx(0.1)
        assert all(len(g.connections) == 90 for g in population)
        for _ in range(10):
            pruner.apply_adaptive(population)
        assert pruner.adaptive_level <= 0.5
        assert all(len(g.connections) >= 50 for g in population)

    def test_failures_are_counted_per_genome(self, engine, rng):
        good = Genome.create(10, 10, rng=rng)
        bad = Genome.create(10, 10, rng=rng)
        bad.connections.append("not a connection")
        pruner = EvolutionaryPruner(engine, EvolutionPruningConfig(target_sparsity=0.5))
        summary = pruner.apply_ramp([bad, good], 0)
        assert summary.errors == 1
        assert len(good.connections) == 50
