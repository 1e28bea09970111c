from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from topoevo.exceptions import CheckpointError
from topoevo.genome.model import Genome
from topoevo.statistics.ordering import rank_by_score
from topoevo.utils.arena import ScratchArena
from topoevo.utils.json import dumps_bytes, loads

__all__ = [
    "CheckpointConfig",
    "GenomeRecord",
    "CheckpointSnapshot",
    "CheckpointWriter",
    "checkpoint_filename",
    "load_checkpoint",
]


class CheckpointConfig(BaseModel):
    directory: str | None = Field(default=None, description="None disables checkpoints")
    every: int = Field(default=25, gt=0)
    top_k: int = Field(default=3, gt=0)
    telemetry_tail: int = Field(default=5, ge=0)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenomeRecord(_CamelModel):
    idx: int
    score: float | None
    node_count: int
    connection_count: int
    serialized_genome: dict[str, Any]


class CheckpointSnapshot(_CamelModel):
    generation: int
    best_fitness: float | None
    simplify_mode: bool
    plateau_counter: int
    timestamp: str
    telemetry_tail: list[dict[str, Any]] = Field(default_factory=list)
    top: list[GenomeRecord] = Field(default_factory=list)


def checkpoint_filename(generation: int) -> str:
    return f"snapshot_gen{generation}.json"


class CheckpointWriter:
    """Periodic best-effort snapshots of the top genomes.

    Any failure while building or writing a checkpoint is logged and
    swallowed; the run never stops because of checkpoint I/O.
    """

    def __init__(self, config: CheckpointConfig, arena: ScratchArena | None = None):
        self.config = config
        self.arena = arena or ScratchArena()

    @property
    def enabled(self) -> bool:
        return self.config.directory is not None

    def due(self, generation: int) -> bool:
        return self.enabled and generation > 0 and generation % self.config.every == 0

    def build(
        self,
        generation: int,
        population: Sequence[Genome],
        *,
        best_fitness: float | None,
        simplify_mode: bool,
        plateau_counter: int,
        telemetry_tail: Sequence[dict[str, Any]] = (),
    ) -> CheckpointSnapshot:
        ranked = rank_by_score(population, self.arena)[: self.config.top_k]
        return CheckpointSnapshot(
            generation=generation,
            best_fitness=best_fitness,
            simplify_mode=simplify_mode,
            plateau_counter=plateau_counter,
            timestamp=datetime.now(timezone.utc).isoformat(),
            telemetry_tail=list(telemetry_tail),
            top=[
                GenomeRecord(
                    idx=i,
                    score=population[i].score,
                    node_count=len(population[i].nodes),
                    connection_count=len(population[i].connections),
                    serialized_genome=population[i].to_dict(),
                )
                for i in ranked
            ],
        )

    def maybe_write(self, generation: int, population: Sequence[Genome], **fields: Any) -> Path | None:
        if not self.due(generation):
            return None
        try:
            snapshot = self.build(generation, population, **fields)
            directory = Path(self.config.directory)
            directory.mkdir(parents=True, exist_ok=True)
            path = directory / checkpoint_filename(generation)
            path.write_bytes(dumps_bytes(snapshot.model_dump(by_alias=True), indent=True))
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("[CheckpointWriter] Write failed at generation {}: {}", generation, exc)
            return None
        logger.debug("[CheckpointWriter] Saved {}", path)
        return path


def load_checkpoint(path: str | Path) -> tuple[CheckpointSnapshot, list[Genome]]:
    """Read a checkpoint file and rebuild its top genomes."""
    try:
        raw = loads(Path(path).read_bytes())
        snapshot = CheckpointSnapshot.model_validate(raw)
        genomes = [Genome.from_dict(rec.serialized_genome) for rec in snapshot.top]
    except Exception as exc:
        raise CheckpointError(f"Cannot load checkpoint {path}: {exc}") from exc
    return snapshot, genomes
