from __future__ import annotations

from collections import deque
from collections.abc import Iterable
import io
import math
from pathlib import Path
from typing import Any

import pandas as pd

from topoevo.exceptions import TelemetryError
from topoevo.telemetry.snapshot import TelemetrySnapshot
from topoevo.utils.json import dumps

__all__ = ["flatten", "TelemetryRecorder"]

ARRAY_SEPARATOR = ";"


def flatten(record: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested groups to ``group.key`` columns.

    ``None`` values are dropped so optional columns only exist when present;
    lists become ``;``-joined strings. NaN and infinities become empty cells.
    """
    flat: dict[str, Any] = {}
    for key, value in record.items():
        name = f"{prefix}{key}"
        if value is None:
            continue
        if isinstance(value, dict):
            flat.update(flatten(value, f"{name}."))
        elif isinstance(value, (list, tuple)):
            flat[name] = ARRAY_SEPARATOR.join(_cell(v) for v in value)
        else:
            flat[name] = "" if _is_non_finite(value) else value
    return flat


def _is_non_finite(value: Any) -> bool:
    return isinstance(value, float) and not math.isfinite(value)


def _cell(value: Any) -> str:
    return "" if _is_non_finite(value) else str(value)


class TelemetryRecorder:
    """Bounded in-memory history of telemetry snapshots."""

    def __init__(self, max_entries: int = 500):
        self.max_entries = max_entries
        self._entries: deque[TelemetrySnapshot] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, snapshot: TelemetrySnapshot) -> None:
        self._entries.append(snapshot)

    def tail(self, n: int) -> list[TelemetrySnapshot]:
        if n <= 0:
            return []
        return list(self._entries)[-n:]

    def records(self) -> list[dict[str, Any]]:
        return [s.model_dump() for s in self._entries]

    def columns(self, rows: Iterable[dict[str, Any]]) -> list[str]:
        seen: dict[str, None] = {}
        for row in rows:
            for key in row:
                seen.setdefault(key, None)
        return list(seen)

    def to_jsonl(self) -> str:
        return "".join(dumps(r) + "\n" for r in self.records())

    def to_csv(self) -> str:
        rows = [flatten(r) for r in self.records()]
        if not rows:
            return ""
        frame = pd.DataFrame(rows, columns=self.columns(rows), dtype=object)
        buf = io.StringIO()
        frame.to_csv(buf, index=False, na_rep="", lineterminator="\n")
        return buf.getvalue()

    def write(self, path: str | Path) -> Path:
        """Write CSV or JSONL depending on the file suffix."""
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix == ".csv":
            payload = self.to_csv()
        elif suffix in (".jsonl", ".ndjson"):
            payload = self.to_jsonl()
        else:
            raise TelemetryError(f"Unsupported telemetry format '{suffix}'")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(payload, encoding="utf-8")
        return path
