"""
Fork-join helper for the per-ray numeric loops.

Work is split into contiguous chunks of ray indices, each chunk produces its
own partial result (no shared buffers), and the partials are folded
sequentially in chunk order so the outcome never depends on scheduling.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from multiprocessing import cpu_count
from typing import Callable, Optional, TypeVar

import numpy as np

logger = logging.getLogger(__name__)

P = TypeVar('P')
A = TypeVar('A')


def default_workers() -> int:
    """Default pool size: cpu_count() - 1, at least 1."""
    return max(1, cpu_count() - 1)


def split_indices(n_items: int, n_chunks: int):
    """Contiguous, non-empty index chunks covering range(n_items)."""
    if n_items <= 0:
        return []
    n_chunks = max(1, min(n_chunks, n_items))
    return [c for c in np.array_split(np.arange(n_items), n_chunks) if len(c)]


def fork_join(
    work: Callable[[np.ndarray], P],
    n_items: int,
    fold: Callable[[A, P], A],
    initial: A,
    n_workers: Optional[int] = None,
) -> A:
    """
    Map ``work`` over chunks of ``range(n_items)`` and fold the partials.

    Parameters
    ----------
    work : callable
        Receives an array of item indices and returns a partial result. Must
        not mutate state shared with other chunks.
    n_items : int
        Number of independent work items (rays)
    fold : callable
        ``fold(accumulator, partial) -> accumulator``, applied in chunk order
        on the calling thread
    initial : any
        Starting accumulator
    n_workers : int, optional
        Thread pool size. Default: cpu_count() - 1. Set to 1 to run inline.

    Returns
    -------
    any
        The folded accumulator

    Notes
    -----
    Threads rather than processes: the per-chunk kernels are numpy
    operations that release the GIL, and the scan arrays are shared
    read-only without pickling.
    """
    if n_workers is None:
        n_workers = default_workers()

    chunks = split_indices(n_items, n_workers)
    if not chunks:
        return initial

    if n_workers == 1 or len(chunks) == 1:
        partials = [work(chunk) for chunk in chunks]
    else:
        with ThreadPoolExecutor(max_workers=n_workers) as pool:
            partials = list(pool.map(work, chunks))

    logger.debug(f"Folding {len(partials)} partial result(s) from {n_workers} worker(s)")
    acc = initial
    for partial in partials:
        acc = fold(acc, partial)
    return acc
