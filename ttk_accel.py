"""
Shared acceleration helpers for TTK calculations.
"""

from __future__ import annotations

import concurrent.futures
import os
from dataclasses import dataclass, field
from itertools import repeat
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from numba import njit

from ttk_rules import (
    CHUNK_MEMORY_ENV,
    DEFAULT_CHUNK_MEMORY_BYTES,
    DP_ARRAYS_PER_POINT,
    DP_BYTES_PER_CELL,
)


def resolve_worker_count(max_workers: Optional[int]) -> int:
    """None means one worker per CPU core."""
    if max_workers is None:
        return max(1, os.cpu_count() or 1)
    return max(1, int(max_workers))


def resolve_memory_budget(memory_budget_bytes: Optional[int] = None) -> int:
    if memory_budget_bytes is not None:
        return max(1, int(memory_budget_bytes))
    raw = os.getenv(CHUNK_MEMORY_ENV)
    if raw:
        try:
            return max(1, int(float(raw) * 1024 * 1024))
        except ValueError:
            pass
    return DEFAULT_CHUNK_MEMORY_BYTES


def chunk_points_for_budget(tmax: int, memory_budget_bytes: Optional[int] = None) -> int:
    """Largest chunk whose DP working set (points x Tmax) fits the budget."""
    budget = resolve_memory_budget(memory_budget_bytes)
    per_point = max(int(tmax), 1) * DP_BYTES_PER_CELL * DP_ARRAYS_PER_POINT
    return max(1, budget // per_point)


def build_point_chunks(total_points: int, chunk_size: int) -> List[Tuple[int, int]]:
    if total_points <= 0:
        return []
    chunk_size = max(int(chunk_size), 1)

    chunks: List[Tuple[int, int]] = []
    start_index = 0
    while start_index < total_points:
        size = min(chunk_size, total_points - start_index)
        chunks.append((start_index, size))
        start_index += size
    return chunks


@dataclass(frozen=True)
class ChunkTask:
    """One slice [start, start + size) of a flat point batch plus its kernel args."""
    start: int
    size: int
    args: Tuple[Any, ...]
    kwargs: Dict[str, Any] = field(default_factory=dict)


def _run_chunk_task(func, task: ChunkTask):
    return func(*task.args, **task.kwargs)


class ChunkPool:
    """Process pool reused across calls until closed."""

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = max_workers
        self.workers = 0
        self._executor: Optional[concurrent.futures.ProcessPoolExecutor] = None

    def start(self) -> "ChunkPool":
        if self._executor is None:
            self.workers = resolve_worker_count(self.max_workers)
            self._executor = concurrent.futures.ProcessPoolExecutor(max_workers=self.workers)
        return self

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self._executor = None
        self.workers = 0

    def map_chunks(self, func, tasks: Sequence[ChunkTask]) -> Iterator[Any]:
        """Yield results in task order; the pool is started on first use."""
        self.start()
        return self._executor.map(_run_chunk_task, repeat(func), tasks)

    def __enter__(self) -> "ChunkPool":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def print_progress(label: str, current: int, total: int):
    percent = int(current * 100 / total)
    print(f"\r{label} {percent:>3d}% ({current}/{total})", end="")
    if current >= total:
        print()


def run_chunks(
    func,
    tasks: Sequence[ChunkTask],
    pool: Optional[ChunkPool] = None,
    max_workers: Optional[int] = 1,
    progress_label: Optional[str] = None,
    show_progress: bool = False,
) -> List[Any]:
    """Apply `func` to every chunk, returning results in chunk order.

    Chunks run in-process unless a pool is passed or `max_workers` asks for
    two or more processes, in which case a temporary pool is used.
    """
    if not tasks:
        return []

    owned_pool = None
    if pool is None and resolve_worker_count(max_workers) >= 2:
        owned_pool = pool = ChunkPool(max_workers).start()

    if pool is None:
        outputs = (_run_chunk_task(func, task) for task in tasks)
    else:
        outputs = pool.map_chunks(func, tasks)

    results: List[Any] = []
    try:
        for result in outputs:
            results.append(result)
            if show_progress and progress_label is not None:
                print_progress(progress_label, len(results), len(tasks))
    finally:
        if owned_pool is not None:
            owned_pool.close()
    return results


@njit(cache=True)
def _magazine_dp_numba(
    p_miss,
    p_body,
    p_head,
    thresholds,
    magazine_size,
    body_step,
    head_step,
    tmax,
    use_head,
    store_tail,
    p_kill_out,
    eb_out,
    tail_out,
):
    dp = np.zeros(tmax, dtype=np.float64)
    new = np.zeros(tmax, dtype=np.float64)
    for i in range(p_miss.shape[0]):
        threshold = thresholds[i]
        pm = p_miss[i]
        pb = p_body[i]
        ph = p_head[i]

        for u in range(threshold):
            dp[u] = 0.0
        dp[0] = 1.0

        tail = 1.0
        eb = 1.0
        if store_tail:
            tail_out[i, 0] = 1.0

        for n in range(1, magazine_size + 1):
            alive = 0.0
            if tail > 0.0:
                for u in range(threshold):
                    value = dp[u] * pm
                    if u >= body_step:
                        value += dp[u - body_step] * pb
                    if use_head and u >= head_step:
                        value += dp[u - head_step] * ph
                    new[u] = value
                    alive += value
                for u in range(threshold):
                    dp[u] = new[u]
            # survival never grows; drop float excess from pM + pB + pH > 1
            if alive > tail:
                alive = tail
            tail = alive
            if store_tail:
                tail_out[i, n] = tail
            if n < magazine_size:
                eb += tail

        p_kill_out[i] = 1.0 - tail
        eb_out[i] = eb


def _magazine_dp_numpy(
    p_miss: np.ndarray,
    p_body: np.ndarray,
    p_head: np.ndarray,
    thresholds: np.ndarray,
    magazine_size: int,
    body_step: int,
    head_step: int,
    tmax: int,
    use_head: bool,
    store_tail: bool,
) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    count = p_miss.shape[0]
    alive_mask = np.arange(tmax)[None, :] < thresholds[:, None]

    pm = p_miss[:, None]
    pb = p_body[:, None]
    ph = p_head[:, None]

    # dp[:, u] = P(alive with exactly u units taken); thresholds >= 1 keep u=0 alive
    dp = np.zeros((count, tmax), dtype=np.float64)
    dp[:, 0] = 1.0

    tail = np.ones(count, dtype=np.float64)
    eb = np.ones(count, dtype=np.float64)
    tails = None
    if store_tail:
        tails = np.empty((count, magazine_size + 1), dtype=np.float64)
        tails[:, 0] = 1.0

    for n in range(1, magazine_size + 1):
        new = dp * pm
        if body_step < tmax:
            new[:, body_step:] += dp[:, :-body_step] * pb
        if use_head and head_step < tmax:
            new[:, head_step:] += dp[:, :-head_step] * ph
        np.multiply(new, alive_mask, out=new)

        dp = new
        tail = np.minimum(dp.sum(axis=1), tail)
        if tails is not None:
            tails[:, n] = tail
        if n < magazine_size:
            eb = eb + tail

    return 1.0 - tail, eb, tails


def magazine_dp_chunk(
    p_miss,
    p_body,
    p_head,
    thresholds,
    magazine_size: int,
    body_step: int,
    head_step: int,
    tmax: int,
    use_head: bool = True,
    store_tail: bool = False,
    use_numba: bool = True,
) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """Run one magazine of the exact hit DP for a chunk of points.

    Returns ``(p_kill, eb_mag, tails)``; ``tails`` is the ``(points, mag+1)``
    survival table when ``store_tail`` is set, otherwise None.
    """
    p_miss = np.ascontiguousarray(p_miss, dtype=np.float64)
    p_body = np.ascontiguousarray(p_body, dtype=np.float64)
    p_head = np.ascontiguousarray(p_head, dtype=np.float64)
    thresholds = np.ascontiguousarray(thresholds, dtype=np.int64)
    magazine_size = int(magazine_size)
    body_step = int(body_step)
    head_step = int(head_step)
    tmax = int(tmax)

    if not use_numba:
        return _magazine_dp_numpy(
            p_miss,
            p_body,
            p_head,
            thresholds,
            magazine_size,
            body_step,
            head_step,
            tmax,
            bool(use_head),
            bool(store_tail),
        )

    count = p_miss.shape[0]
    p_kill = np.empty(count, dtype=np.float64)
    eb = np.empty(count, dtype=np.float64)
    if store_tail:
        tails = np.empty((count, magazine_size + 1), dtype=np.float64)
    else:
        tails = np.empty((1, 1), dtype=np.float64)
    _magazine_dp_numba(
        p_miss,
        p_body,
        p_head,
        thresholds,
        magazine_size,
        body_step,
        head_step,
        tmax,
        bool(use_head),
        bool(store_tail),
        p_kill,
        eb,
        tails,
    )
    return p_kill, eb, (tails if store_tail else None)
