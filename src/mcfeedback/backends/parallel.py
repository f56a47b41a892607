r"""
Thread-parallel execution backend for trajectory simulations.

This module provides:

Classes
    :class:`ThreadBackend` — Automatic chunking of the trial axis over a ThreadPoolExecutor
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable

import numpy as np

from ..kernel import NoiseFn, step_trials, validate_operands
from .base import make_blocks, spawn_seeds, validate_blocks

logger = logging.getLogger(__name__)

__all__ = ["ThreadBackend"]

# Default configuration constants
_CHUNKS_PER_WORKER = 8  # Number of chunks per worker for load balancing


class ThreadBackend:
    r"""
    Thread-based parallel execution backend.

    Uses :class:`concurrent.futures.ThreadPoolExecutor` for parallel execution.
    The trial axis is cut into ``n_workers * chunks_per_worker`` blocks and the
    pool schedules them as workers free up. Effective because the per-step
    matrix product and normal draws run inside NumPy with the GIL released.

    Parameters
    ----------
    n_workers : int
        Number of worker threads to use.
    chunks_per_worker : int, default 8
        Number of work chunks per worker for load balancing.

    Examples
    --------
    >>> backend = ThreadBackend(n_workers=4)
    >>> states = backend.run(buffer, A_cl, x0, seed_seq=seed_seq, progress_callback=None)  # doctest: +SKIP
    """

    def __init__(self, n_workers: int, chunks_per_worker: int = _CHUNKS_PER_WORKER):
        if n_workers <= 0:
            raise ValueError("n_workers must be positive")
        if chunks_per_worker <= 0:
            raise ValueError("chunks_per_worker must be positive")
        self.n_workers = n_workers
        self.chunks_per_worker = chunks_per_worker

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
        Fill all trials in parallel using threads.

        Parameters
        ----------
        buffer : ndarray
            State buffer of shape ``(n_states, n_steps, n_trials)``, shared by
            every thread. Each block writes only its own ``[:, :, i:j]`` view.
        transition : ndarray
            Closed-loop transition matrix.
        x0 : ndarray
            Initial condition.
        seed_seq : SeedSequence or None
            Seed sequence for spawning independent RNG streams per block.
        progress_callback : callable or None
            Optional callback ``f(completed, total)`` for progress reporting.
        noise : callable, optional
            Noise source forwarded to the kernel.

        Returns
        -------
        np.ndarray
            The populated ``buffer``.

        Raises
        ------
        Exception
            Whatever a block raised; queued blocks are cancelled first.
        """
        transition = np.asarray(transition, dtype=float)
        x0 = validate_operands(buffer, transition, x0)
        n_trials = buffer.shape[2]
        blocks, child_seqs = self._prepare_blocks(n_trials, seed_seq)
        if not blocks:
            return buffer
        validate_blocks(blocks, n_trials)

        completed = 0
        max_workers = min(self.n_workers, len(blocks))
        logger.debug("Dispatching %d blocks over %d threads", len(blocks), max_workers)

        def _work(block, ss):
            i, j = block
            rng = np.random.Generator(np.random.Philox(ss))
            step_trials(buffer[:, :, i:j], transition, x0, range(j - i), rng=rng, noise=noise)
            return block

        with ThreadPoolExecutor(max_workers=max_workers) as ex:
            futs = [ex.submit(_work, blk, ss) for blk, ss in zip(blocks, child_seqs)]
            try:
                for f in as_completed(futs):
                    i, j = f.result()
                    completed += j - i
                    if progress_callback:
                        progress_callback(completed, n_trials)
            except BaseException:
                for f in futs:
                    f.cancel()
                raise

        return buffer

    def _prepare_blocks(
        self, n_trials: int, seed_seq: np.random.SeedSequence | None
    ) -> tuple[list[tuple[int, int]], list[np.random.SeedSequence]]:
        """Prepare work blocks and independent random seeds."""
        block_size = max(1, n_trials // (self.n_workers * self.chunks_per_worker))
        blocks = make_blocks(n_trials, block_size)
        return blocks, spawn_seeds(seed_seq, len(blocks))
