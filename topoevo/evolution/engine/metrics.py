from __future__ import annotations

from pydantic import BaseModel, Field


class ControllerMetrics(BaseModel):
    """Cumulative counters for a controller run."""

    total_generations: int = Field(default=0, description="Total number of generations run")
    connections_pruned: int = Field(default=0, description="Connections removed by pruning")
    connections_regrown: int = Field(default=0, description="Connections added by regrowth")
    connections_disabled: int = Field(
        default=0, description="Connections disabled during simplify phases"
    )
    connections_compacted: int = Field(
        default=0, description="Disabled connections dropped by compaction"
    )
    simplify_phases: int = Field(default=0, description="Simplify phases entered")
    recoveries: int = Field(default=0, description="Anti-collapse recoveries applied")
    genomes_reinitialized: int = Field(default=0, description="Genomes touched by recovery")
    genomes_added: int = Field(default=0, description="Genomes added by population expansion")
    genomes_trained: int = Field(default=0, description="Genomes refined by the trainer")
    genome_errors: dict[str, int] = Field(
        default_factory=dict, description="Per-genome failures by phase"
    )

    def record_pruning(self, removed: int, regrown: int = 0) -> None:
        self.connections_pruned += removed
        self.connections_regrown += regrown

    def record_errors(self, phase: str, count: int) -> None:
        if count:
            self.genome_errors[phase] = self.genome_errors.get(phase, 0) + count

    def record_recovery(self, reinitialized: int) -> None:
        self.recoveries += 1
        self.genomes_reinitialized += reinitialized

    def to_dict(self) -> dict[str, object]:
        return self.model_dump()
