r"""
Manually partitioned execution over shared memory.

This module provides:

Classes
    :class:`SharedMemoryBackend` — One balanced block per worker, processes or threads

Unlike :class:`~mcfeedback.backends.parallel.ThreadBackend`, the partition is
not left to the pool: :func:`~mcfeedback.backends.base.balanced_blocks` fixes
exactly one contiguous block per worker, and worker ``i`` always gets block
``i``. In process mode the buffer lives in a
:class:`multiprocessing.shared_memory.SharedMemory` segment that every worker
attaches to by name; each worker touches only its own trial range.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import traceback
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from multiprocessing import shared_memory
from typing import Callable

import numpy as np

from ..kernel import NoiseFn, step_trials, validate_operands
from .base import balanced_blocks, spawn_seeds, validate_blocks, worker_run_shared

logger = logging.getLogger(__name__)

__all__ = ["SharedMemoryBackend"]


class SharedMemoryBackend:
    r"""
    Balanced, explicitly partitioned backend over a shared state buffer.

    Parameters
    ----------
    n_workers : int
        Number of workers :math:`W`; the trial axis is split into exactly
        :math:`W` contiguous parts (empty parts are skipped when
        ``n_trials < n_workers``).
    use_processes : bool, default True
        Run blocks in a spawn-context :class:`~concurrent.futures.ProcessPoolExecutor`
        over a shared-memory segment. With ``False`` a thread pool writes
        directly into sub-views of the caller's buffer.

    Notes
    -----
    In process mode any ``noise`` callable must be pickleable (defined at module
    level). The segment is copied back into the caller's buffer after every
    worker has finished and is unlinked before :meth:`run` returns.

    Examples
    --------
    >>> backend = SharedMemoryBackend(n_workers=4)
    >>> states = backend.run(buffer, A_cl, x0, seed_seq=seed_seq, progress_callback=None)  # doctest: +SKIP
    """

    def __init__(self, n_workers: int, use_processes: bool = True):
        if n_workers <= 0:
            raise ValueError("n_workers must be positive")
        self.n_workers = n_workers
        self.use_processes = use_processes

    def partition(self, n_trials: int) -> list[tuple[int, int]]:
        """Non-empty blocks assigned to workers ``0..W-1``, in worker order."""
        blocks = [(i, j) for i, j in balanced_blocks(n_trials, self.n_workers) if j > i]
        validate_blocks(blocks, n_trials)
        return blocks

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
        Fill all trials with one task per worker and wait for every task.

        Parameters
        ----------
        buffer : ndarray
            Caller-owned state buffer of shape ``(n_states, n_steps, n_trials)``.
        transition : ndarray
            Closed-loop transition matrix.
        x0 : ndarray
            Initial condition.
        seed_seq : SeedSequence or None
            Seed sequence; child ``i`` seeds worker ``i``.
        progress_callback : callable or None
            Optional callback ``f(completed, total)`` called as blocks finish.
        noise : callable, optional
            Noise source forwarded to the kernel.

        Returns
        -------
        np.ndarray
            The populated ``buffer``.

        Raises
        ------
        Exception
            Whatever a worker raised. Remaining tasks are cancelled and the
            contents of the unfinished ranges are undefined.
        """
        transition = np.asarray(transition, dtype=float)
        x0 = validate_operands(buffer, transition, x0)
        n_trials = buffer.shape[2]
        blocks = self.partition(n_trials)
        if not blocks or buffer.shape[1] == 0:
            return buffer
        child_seqs = spawn_seeds(seed_seq, len(blocks))
        logger.debug("Partitioned %d trials into blocks %s", n_trials, blocks)

        if not self.use_processes:
            with ThreadPoolExecutor(max_workers=len(blocks)) as ex:
                futs = [
                    ex.submit(self._run_block, buffer, blk, transition, x0, ss, noise)
                    for blk, ss in zip(blocks, child_seqs)
                ]
                self._wait(futs, n_trials, progress_callback)
            return buffer

        shm = shared_memory.SharedMemory(create=True, size=buffer.nbytes)
        try:
            self._run_on_segment(shm, buffer, blocks, child_seqs, transition, x0, progress_callback, noise)
        except BaseException as exc:
            # release ndarray views on the segment so it can be closed
            traceback.clear_frames(exc.__traceback__)
            raise
        finally:
            shm.close()
            shm.unlink()
        return buffer

    def _run_on_segment(
        self,
        shm: shared_memory.SharedMemory,
        buffer: np.ndarray,
        blocks: list[tuple[int, int]],
        child_seqs: list[np.random.SeedSequence],
        transition: np.ndarray,
        x0: np.ndarray,
        progress_callback: Callable[[int, int], None] | None,
        noise: NoiseFn | None,
    ) -> None:
        """Dispatch blocks to worker processes and copy the segment back into ``buffer``."""
        shared = np.ndarray(buffer.shape, dtype=buffer.dtype, buffer=shm.buf)
        shared[...] = buffer
        with ProcessPoolExecutor(
            max_workers=len(blocks),
            mp_context=mp.get_context("spawn"),
        ) as ex:
            futs = [
                ex.submit(
                    worker_run_shared,
                    shm.name,
                    buffer.shape,
                    buffer.dtype.str,
                    blk,
                    transition,
                    x0,
                    ss,
                    noise,
                )
                for blk, ss in zip(blocks, child_seqs)
            ]
            self._wait(futs, buffer.shape[2], progress_callback)
        buffer[...] = shared
        del shared

    @staticmethod
    def _run_block(buffer, block, transition, x0, seed_seq, noise):
        i, j = block
        rng = np.random.Generator(np.random.Philox(seed_seq))
        step_trials(buffer[:, :, i:j], transition, x0, range(j - i), rng=rng, noise=noise)
        return block

    @staticmethod
    def _wait(futs, n_trials: int, progress_callback: Callable[[int, int], None] | None) -> None:
        """Single barrier: collect every future, cancelling the rest on the first failure."""
        completed = 0
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
