r"""
Base classes and utilities for execution backends.

This module provides:

Protocol
    :class:`TrajectoryBackend` — Interface for trajectory execution strategies

Functions
    :func:`make_blocks` — Fixed-size chunking of the trial axis
    :func:`balanced_blocks` — Exactly ``n_workers`` contiguous parts of near-equal size
    :func:`validate_blocks` — Check that blocks form a disjoint cover
    :func:`spawn_seeds` — Independent child seed sequences, one per block
    :func:`worker_run_shared` — Top-level worker for shared-memory process pools
"""

from __future__ import annotations

import traceback
from multiprocessing import shared_memory
from typing import Callable, Protocol, Sequence

import numpy as np

from ..kernel import NoiseFn, step_trials

__all__ = [
    "TrajectoryBackend",
    "make_blocks",
    "balanced_blocks",
    "validate_blocks",
    "spawn_seeds",
    "worker_run_shared",
]


def make_blocks(n: int, block_size: int = 10_000) -> list[tuple[int, int]]:
    r"""
    Partition an integer range :math:`[0, n)` into half-open blocks :math:`(i, j)`.

    Parameters
    ----------
    n : int
        Total number of items.
    block_size : int, default: 10_000
        Target block length.

    Returns
    -------
    list of tuple[int, int]
        List of ``(i, j)`` index pairs covering ``[0, n)``.

    Examples
    --------
    >>> make_blocks(5, block_size=2)
    [(0, 2), (2, 4), (4, 5)]
    """
    if block_size <= 0:
        raise ValueError("block_size must be positive")
    blocks = []
    i = 0
    while i < n:
        j = min(i + block_size, n)
        blocks.append((i, j))
        i = j
    return blocks


def balanced_blocks(n: int, n_workers: int) -> list[tuple[int, int]]:
    r"""
    Split :math:`[0, n)` into exactly ``n_workers`` contiguous parts.

    Boundaries sit at :math:`b_i = \operatorname{round}(i\,n / W)` (half up), so
    every part has :math:`\lfloor n/W \rfloor` or :math:`\lceil n/W \rceil`
    items. Part ``i`` always goes to worker ``i``; the layout depends only on
    ``n`` and ``n_workers``.

    Parameters
    ----------
    n : int
        Number of trials.
    n_workers : int
        Number of workers :math:`W`.

    Returns
    -------
    list of tuple[int, int]
        ``n_workers`` half-open ranges. Some are empty when ``n < n_workers``.

    Examples
    --------
    >>> balanced_blocks(10, 3)
    [(0, 3), (3, 7), (7, 10)]
    """
    if n < 0:
        raise ValueError("n must be non-negative")
    if n_workers <= 0:
        raise ValueError("n_workers must be positive")
    # integer form of floor(i * n / W + 1/2)
    bounds = [(2 * i * n + n_workers) // (2 * n_workers) for i in range(n_workers + 1)]
    return list(zip(bounds[:-1], bounds[1:]))


def validate_blocks(blocks: Sequence[tuple[int, int]], n: int) -> None:
    """
    Check that ``blocks`` are disjoint and cover ``[0, n)`` exactly.

    Raises
    ------
    ValueError
        On an inverted, out-of-range, overlapping or missing range.
    """
    covered = 0
    for i, j in sorted(blocks):
        if i > j or i < 0 or j > n:
            raise ValueError(f"block ({i}, {j}) is not a valid range within [0, {n})")
        if i < covered:
            raise ValueError(f"block ({i}, {j}) overlaps a previous block ending at {covered}")
        if i > covered:
            raise ValueError(f"trials [{covered}, {i}) are not assigned to any block")
        covered = j
    if covered != n:
        raise ValueError(f"trials [{covered}, {n}) are not assigned to any block")


def spawn_seeds(seed_seq: np.random.SeedSequence | None, count: int) -> list[np.random.SeedSequence]:
    """One independent child :class:`~numpy.random.SeedSequence` per block."""
    if seed_seq is not None:
        return seed_seq.spawn(count)
    return [np.random.SeedSequence() for _ in range(count)]


def worker_run_shared(
    shm_name: str,
    shape: tuple[int, int, int],
    dtype: str,
    block: tuple[int, int],
    transition: np.ndarray,
    x0: np.ndarray,
    seed_seq: np.random.SeedSequence,
    noise: NoiseFn | None = None,
) -> tuple[int, int]:
    r"""
    Fill one block of trials inside a shared-memory buffer from a **separate process**.

    Parameters
    ----------
    shm_name : str
        Name of the :class:`multiprocessing.shared_memory.SharedMemory` segment
        holding the full ``(n_states, n_steps, n_trials)`` buffer.
    shape : tuple of int
        Shape of the shared buffer.
    dtype : str
        NumPy dtype string of the shared buffer.
    block : tuple of int
        Half-open trial range ``(i, j)`` owned by this worker.
    transition, x0 : ndarray
        Closed-loop matrix and initial condition.
    seed_seq : :class:`numpy.random.SeedSequence`
        Seed for this worker's independent stream.
    noise : callable, optional
        Noise source; must be pickleable (a module-level function).

    Returns
    -------
    tuple[int, int]
        The processed block.

    Notes
    -----
    The worker only ever receives the ``[:, :, i:j]`` sub-view, so its writes
    cannot reach another worker's trials. Uses :class:`numpy.random.Philox`
    for the per-block stream, as the thread backends do.
    """
    i, j = block
    rng = np.random.Generator(np.random.Philox(seed_seq))
    shm = shared_memory.SharedMemory(name=shm_name)
    states = np.ndarray(shape, dtype=np.dtype(dtype), buffer=shm.buf)
    try:
        step_trials(states[:, :, i:j], transition, x0, range(j - i), rng=rng, noise=noise)
    except BaseException as exc:
        # kernel frames in the traceback still hold views into the segment
        traceback.clear_frames(exc.__traceback__)
        raise
    finally:
        del states
        shm.close()
    return block


class TrajectoryBackend(Protocol):
    r"""
    Protocol defining the interface for execution backends.

    Backends populate a caller-owned state buffer and decide how the trial
    axis is split across workers. They never keep state between calls.
    """

    def run(
        self,
        buffer: np.ndarray,
        transition: np.ndarray,
        x0: np.ndarray,
        seed_seq: np.random.SeedSequence | None,
        progress_callback: Callable[[int, int], None] | None,
        noise: NoiseFn | None = None,
    ) -> np.ndarray:
        r"""
        Fill every trial of ``buffer`` and return it.

        Parameters
        ----------
        buffer : ndarray
            State buffer of shape ``(n_states, n_steps, n_trials)``.
        transition : ndarray
            Closed-loop transition matrix.
        x0 : ndarray
            Initial condition.
        seed_seq : SeedSequence or None
            Seed sequence for reproducible random streams.
        progress_callback : callable or None
            Optional callback ``f(completed_trials, total_trials)``.
        noise : callable, optional
            Noise source forwarded to :func:`~mcfeedback.kernel.step_trials`.

        Returns
        -------
        np.ndarray
            The populated ``buffer``.
        """
