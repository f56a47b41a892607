r"""
Sequential execution backend for trajectory simulations.

This module provides a single-threaded execution strategy that fills every
trial on the calling thread with optional progress reporting.
"""

from __future__ import annotations

from typing import Callable

import numpy as np

from ..kernel import NoiseFn, step_trials
from .base import make_blocks

__all__ = ["SequentialBackend"]


class SequentialBackend:
    r"""
    Sequential (single-threaded) execution backend.

    Runs the stepping kernel over the whole trial range on the main thread.
    Suitable for small simulations or debugging.

    Parameters
    ----------
    rng : numpy.random.Generator, optional
        Generator to draw from. When omitted, one is built from the
        ``seed_seq`` passed to :meth:`run`.

    Examples
    --------
    >>> backend = SequentialBackend()
    >>> states = backend.run(buffer, A_cl, x0, seed_seq=None, progress_callback=None)  # doctest: +SKIP
    """

    def __init__(self, rng: np.random.Generator | None = None):
        self.rng = rng

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
        Fill all trials sequentially on a single thread.

        Parameters
        ----------
        buffer : ndarray
            State buffer of shape ``(n_states, n_steps, n_trials)``.
        transition : ndarray
            Closed-loop transition matrix.
        x0 : ndarray
            Initial condition.
        seed_seq : SeedSequence or None
            Used only when no generator was given at construction.
        progress_callback : callable or None
            Optional callback ``f(completed, total)`` for progress reporting.
        noise : callable, optional
            Noise source forwarded to the kernel.

        Returns
        -------
        np.ndarray
            The populated ``buffer``.
        """
        rng = self.rng if self.rng is not None else np.random.default_rng(seed_seq)
        n_trials = buffer.shape[2]

        if progress_callback is None:
            return step_trials(buffer, transition, x0, range(n_trials), rng=rng, noise=noise)

        # Report progress every 1% of trials
        step = max(1, n_trials // 100)
        for i, j in make_blocks(n_trials, step):
            step_trials(buffer, transition, x0, range(i, j), rng=rng, noise=noise)
            progress_callback(j, n_trials)
        return buffer
