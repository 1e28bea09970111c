from __future__ import annotations

import math

from loguru import logger
from pydantic import BaseModel, Field

from topoevo.plasticity.config import PruneStrategy

__all__ = ["StagnationConfig", "StagnationState", "StagnationUpdate", "StagnationMonitor"]


class StagnationConfig(BaseModel):
    plateau_generations: int = Field(default=40, gt=0)
    improvement_threshold: float = Field(default=1e-6, ge=0)
    simplify_enabled: bool = True
    simplify_duration: int = Field(default=30, gt=0)
    simplify_prune_fraction: float = Field(default=0.05, gt=0, le=1)
    simplify_strategy: PruneStrategy = PruneStrategy.WEAK_WEIGHT
    species_window: int = Field(default=20, gt=0)
    collapse_trigger: int = Field(default=6, gt=0)
    collapse_on_flat_decisions: bool = Field(
        default=False,
        description="Also count generations with flat decision outputs as collapsed",
    )


class StagnationState(BaseModel):
    plateau_counter: int = 0
    last_best_fitness: float = -math.inf
    simplify_mode: bool = False
    simplify_remaining: int = 0
    collapse_streak: int = 0
    species_history: list[int] = Field(default_factory=list)


class StagnationUpdate(BaseModel):
    improved: bool
    entered_simplify: bool = False
    species_collapsed: bool = False
    collapsed: bool = False
    recovery_triggered: bool = False


class StagnationMonitor:
    """Plateau / simplify phase and species-collapse state machines.

    Plateau: ``NORMAL → PLATEAU → SIMPLIFY → NORMAL``. The simplify phase lasts
    ``simplify_duration`` generations; the caller applies the pruning and
    reports each simplify generation through :meth:`consume_simplify_generation`.

    Collapse: a streak of collapsed generations fires recovery exactly when it
    reaches ``collapse_trigger``.
    """

    def __init__(self, config: StagnationConfig | None = None):
        self.config = config or StagnationConfig()
        self.state = StagnationState()

    def observe(
        self,
        fitness: float | None,
        species: int,
        decisions_flat: bool = False,
    ) -> StagnationUpdate:
        cfg, st = self.config, self.state

        value = -math.inf if fitness is None or math.isnan(fitness) else fitness
        improved = value > st.last_best_fitness + cfg.improvement_threshold
        if improved:
            st.plateau_counter = 0
            st.last_best_fitness = value
        else:
            st.plateau_counter += 1

        entered = False
        if (
            cfg.simplify_enabled
            and not st.simplify_mode
            and st.plateau_counter >= cfg.plateau_generations
        ):
            st.simplify_mode = True
            st.simplify_remaining = cfg.simplify_duration
            st.plateau_counter = 0
            entered = True
            logger.info(
                "[StagnationMonitor] Simplify start | duration={}, best={}",
                cfg.simplify_duration,
                st.last_best_fitness,
            )

        species_collapsed = self.record_species(species)
        collapsed = species_collapsed or (cfg.collapse_on_flat_decisions and decisions_flat)
        st.collapse_streak = st.collapse_streak + 1 if collapsed else 0
        triggered = st.collapse_streak == cfg.collapse_trigger
        if triggered:
            logger.info(
                "[StagnationMonitor] Collapse streak reached | streak={}", st.collapse_streak
            )

        return StagnationUpdate(
            improved=improved,
            entered_simplify=entered,
            species_collapsed=species_collapsed,
            collapsed=collapsed,
            recovery_triggered=triggered,
        )

    def record_species(self, species: int) -> bool:
        """Push a species count; returns the collapse flag."""
        history = self.state.species_history
        history.append(species)
        if len(history) > self.config.species_window:
            del history[: len(history) - self.config.species_window]
        return self.species_collapsed

    @property
    def species_collapsed(self) -> bool:
        history = self.state.species_history
        return len(history) == self.config.species_window and all(
            c == 1 for c in history
        )

    def consume_simplify_generation(self) -> bool:
        """Count one simplify generation; returns True when the phase ends."""
        st = self.state
        if not st.simplify_mode:
            return False
        st.simplify_remaining -= 1
        if st.simplify_remaining <= 0:
            st.simplify_mode = False
            st.simplify_remaining = 0
            logger.info("[StagnationMonitor] Simplify end")
            return True
        return False
