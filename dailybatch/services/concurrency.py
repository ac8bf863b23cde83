from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


def run_in_chunks(items: Sequence[T], fn: Callable[[T], R], chunk_size: int) -> list[R]:
    """Apply ``fn`` to every item, at most ``chunk_size`` calls in flight.

    Chunks run one after another; items inside a chunk run concurrently.
    Results keep the input order. An exception from ``fn`` propagates once its
    chunk has finished.
    """
    size = max(1, chunk_size)
    results: list[R] = []
    with ThreadPoolExecutor(max_workers=size) as pool:
        for start in range(0, len(items), size):
            chunk = items[start : start + size]
            results.extend(pool.map(fn, chunk))
    return results
