from __future__ import annotations

from collections.abc import Iterator
import contextlib
from dataclasses import dataclass, field

from topoevo.exceptions import TopoEvoError

__all__ = ["ScratchArena", "ArenaBusyError"]


class ArenaBusyError(TopoEvoError):
    """A scratch buffer was borrowed while already in use."""


@dataclass
class ScratchArena:
    """Reusable scratch buffers owned by exactly one controller.

    The buffers are not reentrant. ``borrow`` marks a buffer group as in use
    so accidental nested or concurrent use fails loudly instead of silently
    aliasing data. Workers evaluating fitness in parallel must allocate their
    own arena.
    """

    sample_capacity: int = 40
    sort_index: list[int] = field(default_factory=list)
    sort_keys: list[float] = field(default_factory=list)
    sort_stack: list[int] = field(default_factory=list)
    sample: list[int] = field(default_factory=list)
    _busy: set[str] = field(default_factory=set, repr=False)

    def reserve_sort(self, n: int) -> None:
        if len(self.sort_index) < n:
            grow = n - len(self.sort_index)
            self.sort_index.extend([0] * grow)
            self.sort_keys.extend([0.0] * grow)

    @contextlib.contextmanager
    def borrow(self, group: str) -> Iterator[ScratchArena]:
        if group in self._busy:
            raise ArenaBusyError(f"Scratch buffer '{group}' is already in use")
        self._busy.add(group)
        try:
            yield self
        finally:
            self._busy.discard(group)
