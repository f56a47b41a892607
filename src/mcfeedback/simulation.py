r"""
Trajectory simulation orchestration.

This module provides:

Classes
    :class:`TrajectorySimulation` — Runs a feedback system over many trials

The simulation class handles:
- Reproducible seeding via :class:`numpy.random.SeedSequence`
- Sequential, thread-parallel and shared-memory execution (delegated to backends)
- Buffer allocation or validation of a caller-supplied buffer
- Per-step statistics via :mod:`mcfeedback.stats`

Example
-------
>>> from mcfeedback import TrajectorySimulation
>>> sim = TrajectorySimulation(x0=[1.0, 0.0])
>>> sim.set_seed(42)
>>> result = sim.run(1_000, 50, backend="thread", n_workers=4)  # doctest: +SKIP

See Also
--------
mcfeedback.backends
    Execution backends for sequential and parallel execution.
mcfeedback.stats
    Per-step ensemble statistics.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import time
from typing import Callable

import numpy as np

from .backends import SequentialBackend, SharedMemoryBackend, ThreadBackend
from .backends.parallel import _CHUNKS_PER_WORKER as _THREAD_CHUNKS_PER_WORKER
from .core import TrajectoryResult
from .kernel import NoiseFn, ShapeMismatchError, allocate_buffer
from .stats import StatsContext, summarize
from .system import LinearFeedbackSystem

logger = logging.getLogger(__name__)

__all__ = ["TrajectorySimulation"]


class TrajectorySimulation:
    r"""
    Monte Carlo simulation of a linear stochastic system under state feedback.

    Parameters
    ----------
    system : LinearFeedbackSystem, optional
        Plant and gain. Defaults to :meth:`LinearFeedbackSystem.default`.
    x0 : array_like, optional
        Initial condition shared by every trial. Defaults to the zero vector.
    name : str, default ``"Feedback"``
        Label used in result metadata and by :class:`~mcfeedback.core.TrajectoryFramework`.

    Notes
    -----
    **Backends.** ``"sequential"`` fills every trial on the calling thread with
    :attr:`rng`. ``"thread"`` and ``"shared"`` spawn one independent
    :class:`~numpy.random.Philox` stream per block from :attr:`seed_seq`, so a
    run is reproducible after :meth:`set_seed` for a fixed ``n_workers``; each
    run spawns fresh children, so repeated runs without re-seeding differ.

    **Worker count.** ``n_workers`` is passed explicitly on every call; there is
    no module-level pool.
    """

    # Minimum trials to use parallel execution under "auto" (soft limit)
    _PARALLEL_THRESHOLD = 2_000
    # Number of chunks per worker for the thread backend
    _CHUNKS_PER_WORKER = _THREAD_CHUNKS_PER_WORKER
    _VALID_BACKENDS = ("auto", "sequential", "thread", "shared")

    def __init__(
        self,
        system: LinearFeedbackSystem | None = None,
        x0: np.ndarray | list[float] | None = None,
        name: str = "Feedback",
    ):
        self.system = system if system is not None else LinearFeedbackSystem.default()
        n_states = self.system.n_states
        if x0 is None:
            x0 = np.zeros(n_states)
        x0 = np.array(x0, dtype=float)
        if x0.shape != (n_states,):
            raise ShapeMismatchError(f"initial condition must have shape {(n_states,)}, got {x0.shape}")
        x0.setflags(write=False)
        self.x0 = x0
        self.name = name
        self.seed_seq: np.random.SeedSequence | None = None
        self.rng = np.random.default_rng()

    def set_seed(self, seed: int | None) -> None:
        r"""
        Set the random seed for reproducible experiments.

        Parameters
        ----------
        seed : int or None
            Seed for :class:`numpy.random.SeedSequence`. :data:`None` chooses entropy
            from the OS.
        """
        self.seed_seq = np.random.SeedSequence(seed)
        self.rng = np.random.default_rng(self.seed_seq)

    def _validate_run_params(
        self,
        n_trials: int,
        n_steps: int,
        n_workers: int | None,
        confidence: float,
        backend: str,
    ) -> None:
        """Validate parameters for run() method."""
        if n_trials <= 0:
            raise ValueError("n_trials must be positive")
        if n_steps <= 0:
            raise ValueError("n_steps must be positive")
        if n_workers is not None and n_workers <= 0:
            raise ValueError("n_workers must be positive")
        if not 0.0 < confidence < 1.0:
            raise ValueError("confidence must be in the interval (0, 1)")
        if backend not in self._VALID_BACKENDS:
            raise ValueError(f"backend must be one of {self._VALID_BACKENDS}, got '{backend}'")

    def _prepare_buffer(self, buffer: np.ndarray | None, n_trials: int, n_steps: int) -> np.ndarray:
        """Allocate a buffer or check that the caller's matches the run."""
        expected = (self.system.n_states, n_steps, n_trials)
        if buffer is None:
            return allocate_buffer(n_steps, n_trials, self.system.n_states)
        if not isinstance(buffer, np.ndarray) or buffer.shape != expected:
            got = getattr(buffer, "shape", type(buffer).__name__)
            raise ShapeMismatchError(f"buffer must have shape {expected}, got {got}")
        if not np.issubdtype(buffer.dtype, np.floating):
            raise ShapeMismatchError(f"buffer must have a floating dtype, got {buffer.dtype}")
        return buffer

    def _resolve_backend(self, backend: str, n_trials: int, n_workers: int | None) -> tuple[str, int]:
        """
        Resolve ``"auto"`` and the worker count.

        ``"auto"`` maps to ``"sequential"`` for one worker or fewer than
        ``_PARALLEL_THRESHOLD`` trials, otherwise to ``"thread"``.
        """
        if n_workers is None:
            n_workers = mp.cpu_count()  # pragma: no cover
        if backend == "auto":
            if n_workers <= 1 or n_trials < self._PARALLEL_THRESHOLD:
                backend = "sequential"
            else:
                backend = "thread"
        if backend == "sequential":
            n_workers = 1
        return backend, n_workers

    def _create_backend(self, backend: str, n_workers: int, use_processes: bool):
        r"""
        Create and instantiate the appropriate execution backend.

        Returns
        -------
        SequentialBackend, ThreadBackend, or SharedMemoryBackend
            Configured backend instance.
        """
        if backend == "sequential":
            return SequentialBackend(rng=self.rng)
        if backend == "thread":
            return ThreadBackend(n_workers=n_workers, chunks_per_worker=self._CHUNKS_PER_WORKER)
        return SharedMemoryBackend(n_workers=n_workers, use_processes=use_processes)

    def run(
        self,
        n_trials: int,
        n_steps: int,
        *,
        backend: str = "auto",
        n_workers: int | None = None,
        use_processes: bool = True,
        buffer: np.ndarray | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
        compute_stats: bool = True,
        confidence: float = 0.95,
        noise: NoiseFn | None = None,
    ) -> TrajectoryResult:
        r"""
        Simulate ``n_trials`` independent trajectories of ``n_steps`` steps.

        Parameters
        ----------
        n_trials : int
            Number of independent trials :math:`N`.
        n_steps : int
            Number of time steps :math:`T`, including the initial condition.
        backend : {"auto", "sequential", "thread", "shared"}, default ``"auto"``
            Execution backend to use:

            - ``"auto"`` — Sequential for small jobs, threads for large jobs
            - ``"sequential"`` — Single-threaded execution
            - ``"thread"`` — Thread pool over automatically sized blocks
            - ``"shared"`` — One balanced block per worker over shared memory

        n_workers : int, optional
            Worker count for parallel backends. Defaults to CPU count.
        use_processes : bool, default ``True``
            For ``"shared"``: run workers as processes over a shared-memory
            segment (``True``) or as threads over the buffer (``False``).
        buffer : ndarray, optional
            Caller-owned buffer of shape ``(n_states, n_steps, n_trials)`` to fill
            in place. Allocated when omitted.
        progress_callback : callable, optional
            A function ``f(completed: int, total: int)`` called as trials finish.
        compute_stats : bool, default ``True``
            Attach a :class:`~mcfeedback.stats.TrajectorySummary`.
        confidence : float, default ``0.95``
            Confidence level of the per-step mean band.
        noise : callable, optional
            Noise source ``noise(rng, shape)``; standard normal by default.

        Returns
        -------
        TrajectoryResult
            See :class:`~mcfeedback.core.TrajectoryResult`.

        Raises
        ------
        ValueError
            On invalid run parameters.
        ShapeMismatchError
            If ``buffer`` does not match ``(n_states, n_steps, n_trials)``.
        """
        self._validate_run_params(n_trials, n_steps, n_workers, confidence, backend)
        states = self._prepare_buffer(buffer, n_trials, n_steps)
        backend, n_workers = self._resolve_backend(backend, n_trials, n_workers)
        transition = self.system.effective_matrix()

        if backend == "sequential":
            logger.info("Simulating %d trials x %d steps sequentially...", n_trials, n_steps)
        else:
            logger.info(
                "Simulating %d trials x %d steps using %s backend with %d workers...",
                n_trials, n_steps, backend, n_workers,
            )

        t0 = time.time()
        self._create_backend(backend, n_workers, use_processes).run(
            states, transition, self.x0, self.seed_seq, progress_callback, noise=noise
        )
        exec_time = time.time() - t0

        summary = summarize(states, StatsContext(confidence=confidence)) if compute_stats else None
        meta = {
            "simulation_name": self.name,
            "timestamp": time.time(),
            "seed_entropy": self.seed_seq.entropy if self.seed_seq else None,
            "n_workers": n_workers,
            "x0": self.x0.tolist(),
            "effective_matrix": transition.tolist(),
        }
        return TrajectoryResult(
            states=states,
            n_trials=n_trials,
            n_steps=n_steps,
            execution_time=exec_time,
            backend=backend,
            summary=summary,
            metadata=meta,
        )
