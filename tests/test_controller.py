import pytest

from topoevo.checkpoint import CheckpointConfig, checkpoint_filename, load_checkpoint
from topoevo.evolution.engine import ControllerConfig, GenerationController, StopReason
from topoevo.evolution.population import PopulationSizerConfig
from topoevo.evolution.reference_core import SimpleGeneticCore
from topoevo.evolution.refinement import RefinementConfig
from topoevo.evolution.stagnation import StagnationConfig
from topoevo.exceptions import EvolutionError
from topoevo.plasticity.config import EvolutionPruningConfig, PlasticityConfig, PruningSchedule
from topoevo.problems.xor import ActivationProbe, XorFitness, xor_dataset
from tests.conftest import FakeCore, FakeTrainer


class CollectingSink:
    def __init__(self):
        self.snapshots = []

    def write(self, snapshot):
        self.snapshots.append(snapshot)


class BrokenSink:
    def write(self, snapshot):
        raise OSError("disk full")


class TestStopConditions:
    async def test_max_generations(self, fake_core):
        controller = GenerationController(fake_core, ControllerConfig(max_generations=5))
        result = await controller.run()

        assert result.reason is StopReason.MAX_GENERATIONS
        assert result.generations == 5
        assert fake_core.calls == 5
        assert result.best_fitness == pytest.approx(5.0)
        assert result.best_genome is not None
        assert not controller.is_running()

    async def test_solved_takes_priority(self):
        core = FakeCore(fitness=[0.1, 0.5, 0.95, 0.99])
        config = ControllerConfig(target_fitness=0.9, max_generations=3)
        result = await GenerationController(core, config).run()

        assert result.reason is StopReason.SOLVED
        assert result.generations == 3

    async def test_stagnation(self):
        core = FakeCore(fitness=[1.0])
        config = ControllerConfig(max_stagnant_generations=3, max_generations=100)
        result = await GenerationController(core, config).run()

        assert result.reason is StopReason.STAGNATION
        assert result.generations == 4

    async def test_stop_only_on_solve_ignores_stagnation(self):
        core = FakeCore(fitness=[1.0])
        config = ControllerConfig(
            max_stagnant_generations=2, max_generations=6, stop_only_on_solve=True
        )
        result = await GenerationController(core, config).run()

        assert result.reason is StopReason.MAX_GENERATIONS

    async def test_cancel_predicate(self, fake_core):
        controller = GenerationController(
            fake_core,
            ControllerConfig(max_generations=50),
            cancel_predicate=lambda: fake_core.calls >= 2,
        )
        result = await controller.run()

        assert result.reason is StopReason.CANCELLED
        assert result.generations == 2

    async def test_stop_before_run(self, fake_core):
        controller = GenerationController(fake_core, ControllerConfig(max_generations=5))
        controller.stop()
        result = await controller.run()

        assert result.reason is StopReason.CANCELLED
        assert result.generations == 0
        assert result.best_fitness is None
        assert fake_core.calls == 0

    async def test_abort_from_yield(self, fake_core):
        holder = {}

        async def yield_fn():
            if fake_core.calls == 3:
                holder["controller"].abort()

        controller = GenerationController(
            fake_core, ControllerConfig(max_generations=50), yield_fn=yield_fn
        )
        holder["controller"] = controller
        result = await controller.run()

        assert result.reason is StopReason.ABORTED
        assert result.generations == 3

    async def test_cancel_wins_over_abort(self, fake_core):
        controller = GenerationController(fake_core, ControllerConfig(max_generations=5))
        controller.abort()
        controller.stop()
        result = await controller.run()

        assert result.reason is StopReason.CANCELLED

    async def test_yield_called_once_per_generation(self, fake_core):
        calls = []

        async def yield_fn():
            calls.append(fake_core.calls)

        config = ControllerConfig(max_generations=4)
        await GenerationController(fake_core, config, yield_fn=yield_fn).run()

        assert calls == [1, 2, 3, 4]


class TestGenerationPhases:
    def test_evolve_failure_raises(self):
        class ExplodingCore(FakeCore):
            def evolve(self):
                raise RuntimeError("core exploded")

        controller = GenerationController(ExplodingCore(), ControllerConfig())
        with pytest.raises(EvolutionError):
            controller.step()

    def test_simplify_phase(self):
        core = FakeCore(fitness=[1.0])
        config = ControllerConfig(
            stagnation=StagnationConfig(
                plateau_generations=2, simplify_duration=2, simplify_prune_fraction=0.5
            )
        )
        controller = GenerationController(core, config)

        reports = [controller.step() for _ in range(4)]

        assert reports[2].stagnation.entered_simplify
        assert reports[2].telemetry.plasticity.simplify_disabled == 30
        assert reports[3].simplify_exited
        assert controller.metrics.simplify_phases == 1
        assert controller.metrics.connections_disabled == 40
        assert not controller.monitor.state.simplify_mode
        for genome in core.population:
            assert len(genome.enabled_connections()) >= 1

    def test_recovery_on_species_collapse(self, fake_core):
        config = ControllerConfig(
            stagnation=StagnationConfig(species_window=3, collapse_trigger=2)
        )
        controller = GenerationController(fake_core, config)

        reports = [controller.step() for _ in range(5)]

        assert [r.stagnation.recovery_triggered for r in reports] == [
            False, False, False, True, False,
        ]
        assert controller.metrics.recoveries == 1
        assert controller.metrics.genomes_reinitialized == 2
        assert fake_core.options.mutation_rate == pytest.approx(0.45)
        assert reports[4].telemetry.mutation.rate == pytest.approx(0.45)

    def test_population_expansion(self, fake_core):
        config = ControllerConfig(
            population=PopulationSizerConfig(expand_interval=2, plateau_slack=0.0)
        )
        controller = GenerationController(fake_core, config)

        first, second = controller.step(), controller.step()

        assert first.expanded == 0
        assert second.expanded == 1
        assert len(fake_core.population) == 11
        assert fake_core.options.popsize == 11
        assert controller.metrics.genomes_added == 1

    def test_lamarckian_refinement(self, fake_core):
        trainer = FakeTrainer(grad_norm=0.25)
        config = ControllerConfig(refinement=RefinementConfig(lamarckian=True))
        controller = GenerationController(
            fake_core, config, trainer=trainer, dataset=xor_dataset()
        )

        report = controller.step()

        assert controller.metrics.genomes_trained == 10
        assert report.telemetry.refinement.mean_grad_norm == pytest.approx(0.25)

    def test_status(self, fake_core):
        controller = GenerationController(fake_core, ControllerConfig())
        controller.step()
        status = controller.get_status()

        assert status["running"] is False
        assert status["total_generations"] == 1
        assert status["population_size"] == 10
        assert "plateau_counter" in status
        assert "species_history" not in status


class TestPlasticityPass:
    def test_scheduled_prune_ramps_sparsity(self, fake_core):
        schedule = PruningSchedule(start=0, end=4, frequency=1, target_sparsity=0.5)
        controller = GenerationController(
            fake_core, ControllerConfig(plasticity=PlasticityConfig(schedule=schedule))
        )

        reports = [controller.step() for _ in range(4)]

        sparsity = [r.telemetry.plasticity.mean_sparsity for r in reports]
        assert sparsity == pytest.approx([1 / 6, 2 / 6, 0.5, 0.5])
        assert [r.telemetry.plasticity.removed for r in reports] == [10, 10, 10, 0]
        assert controller.metrics.connections_pruned == 30
        for genome in fake_core.population:
            assert len(genome.connections) == 3
            assert genome.plasticity.scheduled_baseline == 6
        assert schedule.last_prune_iter is None

    def test_scheduled_prune_is_idempotent_per_generation(self, fake_core):
        schedule = PruningSchedule(start=0, end=4, frequency=1, target_sparsity=0.5)
        controller = GenerationController(
            fake_core, ControllerConfig(plasticity=PlasticityConfig(schedule=schedule))
        )
        controller.step()
        counts = [len(g.connections) for g in fake_core.population]

        for genome in fake_core.population:
            assert genome.plasticity.schedule.last_prune_iter == 1
            assert controller.plasticity.scheduled_prune(genome, 1) is None
        assert [len(g.connections) for g in fake_core.population] == counts

    def test_evolutionary_ramp(self, fake_core):
        ramp = EvolutionPruningConfig(
            start_generation=2, interval=2, ramp_generations=2, target_sparsity=0.5
        )
        controller = GenerationController(
            fake_core, ControllerConfig(plasticity=PlasticityConfig(evolution=ramp))
        )

        reports = [controller.step() for _ in range(4)]

        assert [r.telemetry.plasticity.removed for r in reports] == [0, 0, 0, 30]
        assert reports[3].telemetry.plasticity.mean_sparsity == pytest.approx(0.5)
        assert reports[2].telemetry.plasticity.mean_sparsity == 0.0
        for genome in fake_core.population:
            assert genome.plasticity.evolutionary_baseline == 6

    def test_compaction_interval(self, fake_core):
        for genome in fake_core.population:
            genome.connections[0].enabled = False
        controller = GenerationController(fake_core, ControllerConfig(compaction_interval=2))

        first, second = controller.step(), controller.step()

        assert first.telemetry.plasticity.compacted == 0
        assert second.telemetry.plasticity.compacted == 10
        assert controller.metrics.connections_compacted == 10
        assert all(c.enabled for g in fake_core.population for c in g.connections)


class TestTelemetryAndCheckpoints:
    async def test_snapshots_recorded_and_emitted(self, fake_core):
        sink = CollectingSink()
        config = ControllerConfig(max_generations=3)
        controller = GenerationController(fake_core, config, sinks=[BrokenSink(), sink])

        await controller.run()

        assert len(controller.telemetry) == 3
        assert [s.generation for s in sink.snapshots] == [1, 2, 3]
        last = sink.snapshots[-1]
        assert last.population_size == 10
        assert last.diversity.species == 1
        assert last.decision is not None
        assert len(last.decision.means) == 3
        assert last.mutation.rate == pytest.approx(0.3)

    async def test_checkpoints_written_on_cadence(self, fake_core, tmp_path):
        config = ControllerConfig(
            max_generations=4,
            checkpoint=CheckpointConfig(directory=str(tmp_path), every=2, top_k=2),
        )
        await GenerationController(fake_core, config).run()

        assert sorted(p.name for p in tmp_path.iterdir()) == [
            checkpoint_filename(2),
            checkpoint_filename(4),
        ]

    def test_telemetry_tail_built_only_when_checkpoint_due(self, fake_core, tmp_path, monkeypatch):
        config = ControllerConfig(
            checkpoint=CheckpointConfig(directory=str(tmp_path), every=3, telemetry_tail=2),
        )
        controller = GenerationController(fake_core, config)
        calls = []
        original_tail = controller.telemetry.tail

        def counting_tail(n):
            calls.append(n)
            return original_tail(n)

        monkeypatch.setattr(controller.telemetry, "tail", counting_tail)
        for _ in range(4):
            controller.step()

        assert calls == [2]
        snapshot, _ = load_checkpoint(tmp_path / checkpoint_filename(3))
        assert [t["generation"] for t in snapshot.telemetry_tail] == [2, 3]


class TestReferenceCore:
    async def test_xor_run(self):
        fitness = XorFitness()
        core = SimpleGeneticCore(fitness, 2, 1, popsize=12, seed=3)
        config = ControllerConfig(max_generations=5, seed=3)
        controller = GenerationController(
            core, config, evaluator=fitness, probe=ActivationProbe()
        )

        result = await controller.run()

        assert result.reason is StopReason.MAX_GENERATIONS
        assert result.best_fitness is not None
        assert result.best_fitness <= 0.0
        assert len(core.population) == 12
        assert controller.telemetry.tail(1)[0].decision is not None

    def test_scores_follow_changes_between_generations(self):
        fitness = XorFitness()
        core = SimpleGeneticCore(fitness, 2, 1, popsize=8, elitism=2, seed=5)
        core.evolve()

        for genome in core.population:
            for conn in genome.connections:
                conn.weight = 50.0
            for node in genome.nodes:
                node.bias = 50.0
        core.evolve()

        for genome in core.population:
            assert genome.score == pytest.approx(fitness(genome))
