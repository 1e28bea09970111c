from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
import math
import random

from pydantic import BaseModel

from topoevo.genome.model import Connection, Genome, NodeRole
from topoevo.plasticity.config import (
    MAX_TARGET_SPARSITY,
    PruneMethod,
    PruneStrategy,
    PruningSchedule,
)

__all__ = ["BaselineMode", "PruneReport", "StructuralPlasticityEngine"]


class BaselineMode(str, Enum):
    SCHEDULED = "scheduled"
    EVOLUTIONARY = "evolutionary"


class PruneReport(BaseModel):
    iteration: int
    target_sparsity: float
    removed: int = 0
    regrown: int = 0
    remaining: int


class StructuralPlasticityEngine:
    """Connection ranking, pruning and constrained regrowth.

    The engine is stateless apart from its RNG; all per-network state
    (baselines, schedule bookkeeping) lives in ``genome.plasticity``.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        regrow_attempt_multiplier: int = 10,
    ):
        self.rng = rng or random.Random()
        self.regrow_attempt_multiplier = regrow_attempt_multiplier

    # ------------------------------------------------------------------ #
    # Ranking
    # ------------------------------------------------------------------ #

    @staticmethod
    def saliency(conn: Connection, method: PruneMethod) -> float:
        magnitude = abs(conn.weight)
        if method is PruneMethod.MAGNITUDE:
            return magnitude
        proxy = abs(conn.total_delta_weight) or abs(conn.previous_delta_weight)
        if not proxy:
            return magnitude
        return magnitude * proxy

    def rank(
        self, connections: Sequence[Connection], method: PruneMethod | str
    ) -> list[Connection]:
        """Connections ordered by removal priority, weakest first."""
        method = PruneMethod(method)
        return sorted(connections, key=lambda c: self.saliency(c, method))

    @staticmethod
    def rank_for_simplify(
        connections: Sequence[Connection], strategy: PruneStrategy | str
    ) -> list[Connection]:
        strategy = PruneStrategy(strategy)
        if strategy is PruneStrategy.WEAK_RECURRENT_PREFERRED:
            return sorted(
                connections,
                key=lambda c: (
                    0 if (c.is_self_loop or c.gater is not None) else 1,
                    abs(c.weight),
                ),
            )
        return sorted(connections, key=lambda c: abs(c.weight))

    # ------------------------------------------------------------------ #
    # Baselines
    # ------------------------------------------------------------------ #

    @staticmethod
    def attach_schedule(genome: Genome, schedule: PruningSchedule) -> None:
        """Give *genome* its own copy of *schedule* and freeze its baseline."""
        state = genome.plasticity
        if state.schedule is None:
            state.schedule = schedule.model_copy()
        if state.scheduled_baseline is None:
            state.scheduled_baseline = len(genome.connections)

    @staticmethod
    def capture_baseline(
        genome: Genome, mode: BaselineMode = BaselineMode.SCHEDULED
    ) -> int:
        """Capture the baseline once; later calls return the frozen value."""
        state = genome.plasticity
        if mode is BaselineMode.SCHEDULED:
            if state.scheduled_baseline is None:
                state.scheduled_baseline = len(genome.connections)
            return state.scheduled_baseline
        if state.evolutionary_baseline is None:
            state.evolutionary_baseline = len(genome.connections)
        return state.evolutionary_baseline

    @staticmethod
    def current_sparsity(
        genome: Genome, mode: BaselineMode = BaselineMode.SCHEDULED
    ) -> float:
        state = genome.plasticity
        baseline = (
            state.scheduled_baseline
            if mode is BaselineMode.SCHEDULED
            else state.evolutionary_baseline
        )
        if not baseline:
            return 0.0
        return max(0.0, 1.0 - len(genome.connections) / baseline)

    # ------------------------------------------------------------------ #
    # Pruning
    # ------------------------------------------------------------------ #

    def scheduled_prune(self, genome: Genome, iteration: int) -> PruneReport | None:
        """Prune toward the schedule's ramped target; ``None`` when skipped."""
        state = genome.plasticity
        schedule = state.schedule
        if schedule is None:
            return None
        if iteration < schedule.start or iteration > schedule.end:
            return None
        if schedule.last_prune_iter == iteration:
            return None
        if (iteration - schedule.start) % schedule.frequency != 0:
            return None
        baseline = state.scheduled_baseline
        if not baseline:
            return None

        progress = (iteration - schedule.start) / max(1, schedule.end - schedule.start)
        target_now = schedule.target_sparsity * min(1.0, max(0.0, progress))
        desired = max(1, math.floor(baseline * (1.0 - target_now)))
        excess = len(genome.connections) - desired

        if excess <= 0:
            schedule.last_prune_iter = iteration
            return PruneReport(
                iteration=iteration,
                target_sparsity=target_now,
                remaining=len(genome.connections),
            )

        doomed = self.rank(genome.connections, schedule.method)[:excess]
        removed = genome.remove_connections(doomed)
        regrown = 0
        if schedule.regrow_fraction > 0:
            regrown = self.regrow(genome, math.floor(removed * schedule.regrow_fraction))

        schedule.last_prune_iter = iteration
        genome.topology_dirty = True
        return PruneReport(
            iteration=iteration,
            target_sparsity=target_now,
            removed=removed,
            regrown=regrown,
            remaining=len(genome.connections),
        )

    def sparsity_target_prune(
        self,
        genome: Genome,
        target_sparsity: float,
        method: PruneMethod | str = PruneMethod.MAGNITUDE,
    ) -> int:
        """Prune to *target_sparsity* of the evolutionary baseline. No regrowth."""
        if target_sparsity <= 0:
            return 0
        target = min(target_sparsity, MAX_TARGET_SPARSITY)
        baseline = self.capture_baseline(genome, BaselineMode.EVOLUTIONARY)
        desired = max(1, math.floor(baseline * (1.0 - target)))
        excess = len(genome.connections) - desired
        if excess <= 0:
            return 0
        removed = genome.remove_connections(self.rank(genome.connections, method)[:excess])
        genome.topology_dirty = True
        return removed

    def prune_fraction(
        self,
        genome: Genome,
        fraction: float,
        strategy: PruneStrategy | str = PruneStrategy.WEAK_WEIGHT,
    ) -> int:
        """Disable ``max(1, floor(enabled * fraction))`` of the enabled connections.

        At least one enabled connection always survives.
        """
        enabled = genome.enabled_connections()
        count = min(max(1, math.floor(len(enabled) * fraction)), len(enabled) - 1)
        if count <= 0:
            return 0
        for conn in self.rank_for_simplify(enabled, strategy)[:count]:
            conn.enabled = False
        genome.topology_dirty = True
        return count

    # ------------------------------------------------------------------ #
    # Regrowth
    # ------------------------------------------------------------------ #

    def regrow(self, genome: Genome, count: int) -> int:
        """Add up to *count* random new edges; returns how many were added.

        Attempts are capped at ``count * regrow_attempt_multiplier``. Self-loops,
        existing edges, edges into input nodes and (under acyclic enforcement)
        back-edges are rejected.
        """
        nodes = genome.nodes
        if count <= 0 or len(nodes) < 2:
            return 0
        existing = {(id(c.from_node), id(c.to_node)) for c in genome.connections}
        added = 0
        for _ in range(count * self.regrow_attempt_multiplier):
            if added >= count:
                break
            src, dst = self.rng.sample(nodes, 2)
            if src is dst or dst.role is NodeRole.INPUT:
                continue
            if (id(src), id(dst)) in existing:
                continue
            if genome.enforce_acyclic and src.index > dst.index:
                continue
            genome.connect(src, dst, rng=self.rng)
            existing.add((id(src), id(dst)))
            added += 1
        if added:
            genome.topology_dirty = True
        return added
