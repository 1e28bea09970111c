"""Descending rank of scored items by index permutation.

Only indices move; payloads (genomes) are never swapped. Missing and NaN
scores sort as ``-inf``.
"""

from __future__ import annotations

from collections.abc import Sequence
import math
from typing import Any

from topoevo.utils.arena import ScratchArena

__all__ = ["INSERTION_SORT_CUTOFF", "sort_indices_desc", "rank_by_score", "top_k"]

INSERTION_SORT_CUTOFF = 24


def _key(score: Any) -> float:
    if score is None:
        return -math.inf
    value = float(score)
    return -math.inf if math.isnan(value) else value


def _insertion_sort(idx: list[int], keys: list[float], lo: int, hi: int) -> None:
    for a in range(lo + 1, hi + 1):
        item = idx[a]
        k = keys[item]
        b = a - 1
        while b >= lo and keys[idx[b]] < k:
            idx[b + 1] = idx[b]
            b -= 1
        idx[b + 1] = item


def _median_of_three(idx: list[int], keys: list[float], lo: int, hi: int) -> float:
    mid = (lo + hi) >> 1
    # Order idx[lo], idx[mid], idx[hi] descending by key
    if keys[idx[lo]] < keys[idx[mid]]:
        idx[lo], idx[mid] = idx[mid], idx[lo]
    if keys[idx[lo]] < keys[idx[hi]]:
        idx[lo], idx[hi] = idx[hi], idx[lo]
    if keys[idx[mid]] < keys[idx[hi]]:
        idx[mid], idx[hi] = idx[hi], idx[mid]
    return keys[idx[mid]]


def sort_indices_desc(
    scores: Sequence[Any], arena: ScratchArena | None = None
) -> list[int]:
    """Return indices of *scores* ordered by descending score.

    Iterative quicksort with a median-of-three pivot and insertion sort below
    ``INSERTION_SORT_CUTOFF`` elements. The larger partition is pushed first
    so the smaller one is processed next, which keeps the explicit stack at
    O(log n).
    """
    n = len(scores)
    arena = arena or ScratchArena()
    with arena.borrow("sort"):
        arena.reserve_sort(n)
        idx, keys, stack = arena.sort_index, arena.sort_keys, arena.sort_stack
        for i in range(n):
            idx[i] = i
            keys[i] = _key(scores[i])
        stack.clear()

        if n > 1:
            stack.append(0)
            stack.append(n - 1)
        while stack:
            hi = stack.pop()
            lo = stack.pop()
            if hi - lo <= INSERTION_SORT_CUTOFF:
                _insertion_sort(idx, keys, lo, hi)
                continue

            pivot = _median_of_three(idx, keys, lo, hi)
            i, j = lo, hi
            while i <= j:
                while keys[idx[i]] > pivot:
                    i += 1
                while keys[idx[j]] < pivot:
                    j -= 1
                if i <= j:
                    idx[i], idx[j] = idx[j], idx[i]
                    i += 1
                    j -= 1

            left = (lo, j) if lo < j else None
            right = (i, hi) if i < hi else None
            if left and right:
                if j - lo > hi - i:
                    first, second = left, right
                else:
                    first, second = right, left
                stack.extend(first)
                stack.extend(second)
            elif left:
                stack.extend(left)
            elif right:
                stack.extend(right)

        return idx[:n]


def rank_by_score(items: Sequence[Any], arena: ScratchArena | None = None) -> list[int]:
    """Rank objects carrying a ``score`` attribute (e.g. genomes)."""
    return sort_indices_desc([getattr(item, "score", None) for item in items], arena)


def top_k(items: Sequence[Any], k: int, arena: ScratchArena | None = None) -> list[Any]:
    if k <= 0:
        return []
    return [items[i] for i in rank_by_score(items, arena)[:k]]
