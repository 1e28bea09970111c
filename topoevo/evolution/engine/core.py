from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
import math
import random
import time
from typing import Any, Protocol

from loguru import logger
from pydantic import BaseModel, ConfigDict

from topoevo.checkpoint import CheckpointWriter
from topoevo.evolution.engine.config import ControllerConfig
from topoevo.evolution.engine.metrics import ControllerMetrics
from topoevo.evolution.population import DynamicPopulationSizer
from topoevo.evolution.protocols import (
    DecisionProbe,
    FitnessEvaluator,
    GeneticCore,
    Sample,
    Trainer,
)
from topoevo.evolution.recovery import AntiCollapseRecovery
from topoevo.evolution.refinement import RefinementReport, Refiner
from topoevo.evolution.stagnation import StagnationMonitor, StagnationUpdate
from topoevo.exceptions import EvolutionError
from topoevo.genome.model import Genome
from topoevo.plasticity.engine import BaselineMode, StructuralPlasticityEngine
from topoevo.plasticity.evolutionary import EvolutionaryPruner, PassSummary
from topoevo.statistics.diversity import DiversityStats, compute_diversity
from topoevo.statistics.streaming import DecisionStats, StreamingStatistics
from topoevo.telemetry.export import TelemetryRecorder
from topoevo.telemetry.snapshot import (
    MutationView,
    PlasticityView,
    RefinementView,
    StagnationView,
    TelemetrySnapshot,
)
from topoevo.utils.arena import ScratchArena

__all__ = ["StopReason", "GenerationReport", "RunResult", "TelemetrySink", "GenerationController"]

YieldFn = Callable[[], Awaitable[None]]


class StopReason(str, Enum):
    CANCELLED = "cancelled"
    ABORTED = "aborted"
    SOLVED = "solved"
    STAGNATION = "stagnation"
    MAX_GENERATIONS = "maxGenerations"


class GenerationReport(BaseModel):
    generation: int
    fitness: float | None
    best_fitness: float | None
    stagnation: StagnationUpdate
    simplify_exited: bool = False
    expanded: int = 0
    telemetry: TelemetrySnapshot


class RunResult(BaseModel):
    reason: StopReason
    generations: int
    best_fitness: float | None
    best_genome: Genome | None = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class TelemetrySink(Protocol):
    def write(self, snapshot: TelemetrySnapshot) -> None: ...


async def _cooperative_yield() -> None:
    await asyncio.sleep(0)


class GenerationController:
    """
    Generation loop around an external genetic core:
    - ``step`` runs one generation synchronously, start to finish.
    - ``run`` repeats ``step``; the injected ``yield_fn`` is the only suspension point.
    - Cancellation is polled once per generation boundary.

    All scratch buffers belong to this instance; run independent controllers
    for independent runs.
    """

    def __init__(
        self,
        core: GeneticCore,
        config: ControllerConfig | None = None,
        *,
        trainer: Trainer | None = None,
        dataset: Sequence[Sample] | None = None,
        evaluator: FitnessEvaluator | None = None,
        probe: DecisionProbe | None = None,
        yield_fn: YieldFn | None = None,
        cancel_predicate: Callable[[], bool] | None = None,
        sinks: Sequence[TelemetrySink] = (),
        rng: random.Random | None = None,
    ):
        self.core = core
        self.config = config or ControllerConfig()
        self.rng = rng or random.Random(self.config.seed)
        self.probe = probe
        self.sinks = list(sinks)
        self._yield_fn = yield_fn or _cooperative_yield
        self._cancel_predicate = cancel_predicate

        cfg = self.config
        self.arena = ScratchArena(sample_capacity=cfg.recovery.sample_capacity)
        self.plasticity = StructuralPlasticityEngine(
            self.rng, cfg.plasticity.regrow_attempt_multiplier
        )
        self.pruner = EvolutionaryPruner(
            self.plasticity, cfg.plasticity.evolution, cfg.plasticity.adaptive
        )
        self.statistics = StreamingStatistics(cfg.statistics)
        self.monitor = StagnationMonitor(cfg.stagnation)
        self.recovery = AntiCollapseRecovery(cfg.recovery, self.rng, self.arena)
        initial_size = int(getattr(core.options, "popsize", len(core.population)))
        self.sizer = DynamicPopulationSizer(
            cfg.population,
            cfg.population.max_size or max(initial_size, 120),
            self.rng,
            self.arena,
        )
        self.refiner = (
            Refiner(trainer, dataset or [], cfg.refinement, evaluator, self.rng)
            if trainer is not None
            else None
        )
        self.checkpoints = CheckpointWriter(cfg.checkpoint, self.arena)
        self.telemetry = TelemetryRecorder(cfg.telemetry_max_entries)
        self.metrics = ControllerMetrics()

        self.best_fitness: float | None = None
        self.best_genome: Genome | None = None
        self.stagnant_generations = 0

        self._running = False
        self._cancel_requested = False
        self._abort_requested = False

        logger.info(
            "[GenerationController] Init | core={}, popsize={}, max_pop={}, trainer={}",
            type(core).__name__,
            initial_size,
            self.sizer.max_size,
            type(trainer).__name__ if trainer is not None else None,
        )

    # ------------------------------------------------------------------ #
    # Run loop
    # ------------------------------------------------------------------ #

    async def run(self) -> RunResult:
        logger.info("[GenerationController] Start")
        self._running = True
        reason: StopReason | None = None
        try:
            while True:
                reason = self._poll_cancellation()
                if reason is not None:
                    break
                self.step()
                await self._yield_fn()
                reason = self._check_stop()
                if reason is not None:
                    break
        finally:
            self._running = False

        logger.info(
            "[GenerationController] Stop: {} | generations={}, best={}",
            reason.value,
            self.metrics.total_generations,
            self.best_fitness,
        )
        return RunResult(
            reason=reason,
            generations=self.metrics.total_generations,
            best_fitness=self.best_fitness,
            best_genome=self.best_genome,
        )

    def step(self) -> GenerationReport:
        """Run one generation synchronously."""
        generation = self.metrics.total_generations + 1
        try:
            fittest = self.core.evolve()
        except Exception as exc:
            raise EvolutionError(f"evolve() failed at generation {generation}: {exc}") from exc
        population = self.core.population

        lamarck, refined, baldwin = self._refine(population, fittest)
        plasticity = self._plasticity_pass(population, generation)

        fitness = _finite_or_none(fittest.score)
        observed = fittest
        if refined is not None and (self.probe is not None or refined.decision_trace):
            observed = refined
        decision = self._update_statistics(observed)
        diversity = compute_diversity(population, self.rng, self.config.diversity_sample_size)

        update = self.monitor.observe(
            fitness,
            diversity.species,
            decisions_flat=decision is not None and decision.is_flat(self.config.statistics),
        )
        if update.entered_simplify:
            self.metrics.simplify_phases += 1
        simplify_exited = False
        if self.monitor.state.simplify_mode:
            plasticity.simplify_disabled = self._simplify(population)
            simplify_exited = self.monitor.consume_simplify_generation()
        if update.recovery_triggered:
            report = self.recovery(population, self.core.options)
            self.metrics.record_recovery(report.reinitialized)
            self.metrics.record_errors("recovery", report.errors)

        expanded = self._maybe_expand(generation)
        self._track_best(fittest, fitness)

        snapshot = self._snapshot(
            generation, fitness, population, plasticity, decision, diversity, lamarck, baldwin
        )
        self.telemetry.append(snapshot)
        self._emit(snapshot)
        if self.checkpoints.due(generation):
            self.checkpoints.maybe_write(
                generation,
                population,
                best_fitness=self.best_fitness,
                simplify_mode=self.monitor.state.simplify_mode,
                plateau_counter=self.monitor.state.plateau_counter,
                telemetry_tail=[
                    s.model_dump()
                    for s in self.telemetry.tail(self.config.checkpoint.telemetry_tail)
                ],
            )

        self.metrics.total_generations = generation
        if self._every(generation, self.config.log_interval):
            logger.info(
                "[GenerationController] Gen {} | fitness={}, best={}, plateau={}, species={}, pop={}, simplify={}",
                generation,
                _fmt(fitness),
                _fmt(self.best_fitness),
                self.monitor.state.plateau_counter,
                diversity.species,
                len(population),
                self.monitor.state.simplify_mode,
            )
        return GenerationReport(
            generation=generation,
            fitness=fitness,
            best_fitness=self.best_fitness,
            stagnation=update,
            simplify_exited=simplify_exited,
            expanded=expanded,
            telemetry=snapshot,
        )

    # ------------------------------------------------------------------ #
    # Generation phases
    # ------------------------------------------------------------------ #

    def _refine(
        self, population: list[Genome], fittest: Genome
    ) -> tuple[RefinementReport | None, Genome | None, RefinementReport | None]:
        if self.refiner is None:
            return None, None, None
        lamarck = self.refiner.lamarckian(population)
        self.metrics.genomes_trained += lamarck.trained
        self.metrics.record_errors("training", lamarck.errors)
        refined, baldwin = self.refiner.baldwinian(fittest)
        self.metrics.genomes_trained += baldwin.trained
        self.metrics.record_errors("training", baldwin.errors)
        return lamarck, refined, baldwin

    def _plasticity_pass(self, population: list[Genome], generation: int) -> PlasticityView:
        summary = PassSummary()
        schedule = self.config.plasticity.schedule
        if schedule is not None:
            for genome in population:
                try:
                    self.plasticity.attach_schedule(genome, schedule)
                    report = self.plasticity.scheduled_prune(genome, generation)
                except Exception as exc:  # pylint: disable=broad-except
                    summary.errors += 1
                    logger.debug("[GenerationController] Scheduled prune failed for {}: {}", genome.id, exc)
                    continue
                if report is not None:
                    summary.removed += report.removed
                    summary.regrown += report.regrown

        summary = summary.merge(self.pruner.apply_ramp(population, generation))
        summary = summary.merge(self.pruner.apply_adaptive(population))
        self.metrics.record_pruning(summary.removed, summary.regrown)
        self.metrics.record_errors("pruning", summary.errors)

        compacted = 0
        if self._every(generation, self.config.compaction_interval):
            for genome in population:
                compacted += genome.compact()
            self.metrics.connections_compacted += compacted

        sparsities = [
            self.plasticity.current_sparsity(g, BaselineMode.SCHEDULED)
            or self.plasticity.current_sparsity(g, BaselineMode.EVOLUTIONARY)
            for g in population
        ]
        return PlasticityView(
            removed=summary.removed,
            regrown=summary.regrown,
            compacted=compacted,
            mean_sparsity=sum(sparsities) / len(sparsities) if sparsities else 0.0,
        )

    def _update_statistics(self, genome: Genome) -> DecisionStats | None:
        if not self.statistics.enabled:
            return None
        try:
            vectors = self.probe(genome) if self.probe is not None else genome.decision_trace
            self.statistics.record(vectors)
        except Exception as exc:  # pylint: disable=broad-except
            self.metrics.record_errors("statistics", 1)
            logger.debug("[GenerationController] Decision probe failed: {}", exc)
        return self.statistics.summarize()

    def _simplify(self, population: list[Genome]) -> int:
        cfg = self.config.stagnation
        disabled = errors = 0
        for genome in population:
            try:
                disabled += self.plasticity.prune_fraction(
                    genome, cfg.simplify_prune_fraction, cfg.simplify_strategy
                )
            except Exception as exc:  # pylint: disable=broad-except
                errors += 1
                logger.debug("[GenerationController] Simplify failed for {}: {}", genome.id, exc)
        self.metrics.connections_disabled += disabled
        self.metrics.record_errors("simplify", errors)
        return disabled

    def _maybe_expand(self, generation: int) -> int:
        state = self.monitor.state
        if not self.sizer.should_expand(
            generation,
            state.plateau_counter,
            self.config.stagnation.plateau_generations,
            len(self.core.population),
        ):
            return 0
        report = self.sizer.expand(self.core)
        self.metrics.genomes_added += report.added
        self.metrics.record_errors("expansion", report.errors)
        return report.added

    def _track_best(self, fittest: Genome, fitness: float | None) -> None:
        if fitness is not None and (self.best_fitness is None or fitness > self.best_fitness):
            self.best_fitness = fitness
            self.best_genome = fittest.clone()
            self.stagnant_generations = 0
        else:
            self.stagnant_generations += 1

    def _snapshot(
        self,
        generation: int,
        fitness: float | None,
        population: list[Genome],
        plasticity: PlasticityView,
        decision: DecisionStats | None,
        diversity: DiversityStats,
        lamarck: RefinementReport | None,
        baldwin: RefinementReport | None,
    ) -> TelemetrySnapshot:
        state = self.monitor.state
        options = self.core.options
        refinement = None
        if lamarck is not None or baldwin is not None:
            refinement = RefinementView(
                mean_grad_norm=lamarck.mean_grad_norm if lamarck else None,
                baldwinian_score=baldwin.baldwinian_score if baldwin else None,
            )
        return TelemetrySnapshot(
            generation=generation,
            timestamp=time.time(),
            fitness=fitness,
            best_fitness=self.best_fitness,
            population_size=len(population),
            stagnation=StagnationView(
                plateau_counter=state.plateau_counter,
                simplify_mode=state.simplify_mode,
                simplify_remaining=state.simplify_remaining,
                collapse_streak=state.collapse_streak,
                species_collapsed=self.monitor.species_collapsed,
            ),
            diversity=diversity,
            plasticity=plasticity,
            decision=decision,
            mutation=MutationView(
                rate=_number_attr(options, "mutation_rate"),
                amount=_number_attr(options, "mutation_amount"),
                novelty_blend=_number_attr(options, "novelty_blend"),
            ),
            refinement=refinement,
        )

    def _emit(self, snapshot: TelemetrySnapshot) -> None:
        for sink in self.sinks:
            try:
                sink.write(snapshot)
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("[GenerationController] Telemetry sink {} failed: {}", type(sink).__name__, exc)

    # ------------------------------------------------------------------ #
    # Stop conditions
    # ------------------------------------------------------------------ #

    def _poll_cancellation(self) -> StopReason | None:
        if self._cancel_requested:
            return StopReason.CANCELLED
        if self._cancel_predicate is not None and self._cancel_predicate():
            return StopReason.CANCELLED
        if self._abort_requested:
            return StopReason.ABORTED
        return None

    def _check_stop(self) -> StopReason | None:
        cfg = self.config
        if (
            cfg.target_fitness is not None
            and self.best_fitness is not None
            and self.best_fitness >= cfg.target_fitness
        ):
            return StopReason.SOLVED
        if (
            not cfg.stop_only_on_solve
            and self.stagnant_generations >= cfg.max_stagnant_generations
        ):
            return StopReason.STAGNATION
        if cfg.max_generations is not None and self.metrics.total_generations >= cfg.max_generations:
            return StopReason.MAX_GENERATIONS
        return None

    @staticmethod
    def _every(i: int, n: int) -> bool:
        return n > 0 and i % n == 0

    # ------------------------------------------------------------------ #
    # Control surface
    # ------------------------------------------------------------------ #

    def stop(self) -> None:
        """Request cancellation at the next generation boundary."""
        self._cancel_requested = True

    def abort(self) -> None:
        """Abort at the next generation boundary (e.g. on SIGINT)."""
        self._abort_requested = True

    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> dict[str, Any]:
        """Light, non-blocking status for UIs/health checks."""
        return {
            "running": self._running,
            "best_fitness": self.best_fitness,
            "stagnant_generations": self.stagnant_generations,
            "population_size": len(self.core.population),
            **self.monitor.state.model_dump(exclude={"species_history"}),
            **self.metrics.to_dict(),
        }


def _finite_or_none(value: Any) -> float | None:
    if value is None:
        return None
    value = float(value)
    return value if not math.isnan(value) else None


def _number_attr(obj: Any, name: str) -> float | None:
    value = getattr(obj, name, None)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _fmt(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.6g}"
