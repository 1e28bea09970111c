from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Optional

from loguru import logger
from tensorboardX import SummaryWriter

from topoevo.telemetry.snapshot import TelemetrySnapshot

__all__ = ["TensorBoardSink"]


class TensorBoardSink:
    """Writes numeric telemetry fields as TensorBoard scalars.

    Nested groups become ``group/key`` tags; list fields are written per
    dimension as ``group/key/<i>``. Write errors are logged and dropped.
    """

    def __init__(self, logdir: str | Path, **summary_writer_kwargs: Any):
        self.logdir = Path(logdir)
        self.summary_writer_kwargs = summary_writer_kwargs
        self._writer: Optional[SummaryWriter] = None

    def open(self) -> None:
        logdir = self.logdir.resolve()
        logdir.mkdir(parents=True, exist_ok=True)
        self._writer = SummaryWriter(str(logdir), **self.summary_writer_kwargs)

    def close(self) -> None:
        if self._writer is None:
            return
        try:
            self._writer.flush()
        finally:
            try:
                self._writer.close()
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("[TensorBoardSink] Close failed: {}", exc)
            self._writer = None

    def write(self, snapshot: TelemetrySnapshot) -> None:
        if self._writer is None:
            self.open()
        assert self._writer is not None
        step = snapshot.generation
        try:
            for tag, value in _scalars(snapshot.model_dump(exclude={"generation", "timestamp"})):
                self._writer.add_scalar(tag, value, global_step=step, walltime=snapshot.timestamp)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("[TensorBoardSink] Write failed at generation {}: {}", step, exc)

    def flush(self) -> None:
        if self._writer is None:
            return
        try:
            self._writer.flush()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("[TensorBoardSink] Flush failed: {}", exc)


def _scalars(record: dict[str, Any], prefix: str = ""):
    for key, value in record.items():
        tag = f"{prefix}{key}"
        if isinstance(value, dict):
            yield from _scalars(value, f"{tag}/")
        elif isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                if _is_number(item):
                    yield f"{tag}/{i}", float(item)
        elif _is_number(value):
            yield tag, float(value)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return True
    return isinstance(value, (int, float)) and math.isfinite(value)
