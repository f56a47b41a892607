r"""

mcfeedback.core
===============

Core primitives for running and comparing trajectory simulations.

This module provides:

* :class:`~mcfeedback.core.TrajectoryResult` – container for a populated state buffer.
* :class:`~mcfeedback.core.TrajectoryFramework` – registry + convenience runner.

Backends
--------

``TrajectorySimulation.run(..., backend=...)`` accepts ``"sequential"``,
``"thread"`` (pool-chunked) or ``"shared"`` (one balanced block per worker
over shared memory). ``"auto"`` picks sequential for small jobs and threads
otherwise, since NumPy releases the Global Interpreter Lock (GIL) for the
matrix products and normal draws that dominate the kernel.

Confidence bands
----------------

Per-step means carry the band

.. math::

   \bar{x}_t \pm c\,\frac{s_t}{\sqrt{N}}

with :math:`c` a z or t critical value from :func:`~mcfeedback.stats.autocrit`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

import numpy as np

from .stats import TrajectorySummary

if TYPE_CHECKING:
    from .simulation import TrajectorySimulation

# package-level logger: backends, simulation and io loggers propagate here
logger = logging.getLogger(__name__.rpartition(".")[0])  # pragma: no cover
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


@dataclass
class TrajectoryResult:
    r"""
    Container for the outcome of a trajectory run.

    Attributes
    ----------
    states : ndarray of float
        Populated buffer of shape ``(n_states, n_steps, n_trials)``.
    n_trials : int
        Number of independent trials.
    n_steps : int
        Number of time steps per trial (including the initial condition).
    execution_time : float
        Wall-clock time in seconds.
    backend : str
        Resolved backend name (``"sequential"``, ``"thread"`` or ``"shared"``).
    summary : TrajectorySummary or None
        Per-step statistics, if computed.
    metadata : dict
        Free-form run metadata (simulation name, seed entropy, workers, ...).
    """

    states: np.ndarray
    n_trials: int
    n_steps: int
    execution_time: float
    backend: str
    summary: Optional[TrajectorySummary] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def n_states(self) -> int:
        return int(self.states.shape[0])

    def final_states(self) -> np.ndarray:
        """States at the last time step, shape ``(n_states, n_trials)``."""
        return self.states[:, -1, :]

    def trial(self, n: int) -> np.ndarray:
        """Trajectory of trial ``n`` as an ``(n_steps, n_states)`` array."""
        return self.states[:, :, n].T

    def result_to_string(self) -> str:
        """
        Pretty, human-readable summary of the result.

        Returns
        -------
        str
            Multiline textual summary.
        """
        if simulation_name := self.metadata.get("simulation_name"):
            title = f"Results for simulation '{simulation_name}':"
        else:
            title = "Results for simulation:"
        lines = [
            "=" * 20 + " SIM RESULTS " + "=" * 20,
            title,
            f"  Trials: {self.n_trials}   Steps: {self.n_steps}   States: {self.n_states}",
            f"  Backend: {self.backend}",
            f"  Execution time: {self.execution_time:.2f} seconds",
        ]
        if self.summary is not None and self.summary.n_steps:
            s = self.summary
            lines.append(f"  Final step ({int(s.confidence * 100)}% {s.method}-CI):")
            for k in range(s.n_states):
                lines.append(
                    f"    x{k + 1}: mean {s.mean[-1, k]:.5f} "
                    f"[{s.ci_low[-1, k]:.5f}, {s.ci_high[-1, k]:.5f}]   var {s.var[-1, k]:.5f}"
                )
        if self.metadata:
            lines.append("Metadata:")
        for k, v in self.metadata.items():
            lines.append(f"    {k}: {v}")
        lines.append("=" * 20 + " END " + "=" * 20)
        return "\n".join(lines)


class TrajectoryFramework:
    r"""
    Registry for named simulations that runs and compares results.

    Examples
    --------
    >>> from mcfeedback import TrajectoryFramework, TrajectorySimulation
    >>> framework = TrajectoryFramework()
    >>> framework.register_simulation(TrajectorySimulation(x0=[1.0, 0.0], name="serial"))
    >>> framework.register_simulation(TrajectorySimulation(x0=[1.0, 0.0], name="threads"))
    >>> framework.run_simulation("serial", 1000, 50, backend="sequential")  # doctest: +SKIP
    >>> framework.run_simulation("threads", 1000, 50, backend="thread", n_workers=4)  # doctest: +SKIP
    >>> framework.compare_results(["serial", "threads"], metric="final_mean")  # doctest: +SKIP
    """

    def __init__(self):
        self.simulations: dict[str, TrajectorySimulation] = {}
        self.results: dict[str, TrajectoryResult] = {}

    def register_simulation(
        self,
        simulation: "TrajectorySimulation",
        name: Optional[str] = None,
    ):
        r"""
        Register a simulation instance under a name.

        Parameters
        ----------
        simulation : TrajectorySimulation
            The simulation instance to register.
        name : str, optional
            If omitted, :attr:`TrajectorySimulation.name` is used.
        """
        sim_name = name or simulation.name
        self.simulations[sim_name] = simulation

    def run_simulation(
        self,
        name: str,
        n_trials: int,
        n_steps: int,
        **kwargs,
    ) -> TrajectoryResult:
        r"""
        Run a registered simulation by name.

        Parameters
        ----------
        name : str
            Key used in :meth:`register_simulation`.
        n_trials : int
            Number of trials.
        n_steps : int
            Number of time steps.
        **kwargs :
            Forwarded to :meth:`TrajectorySimulation.run`.

        Returns
        -------
        TrajectoryResult
        """
        if name not in self.simulations:
            raise ValueError(f"Simulation '{name}' not found")
        res = self.simulations[name].run(n_trials, n_steps, **kwargs)
        self.results[name] = res
        return res

    def compare_results(
        self,
        names: list[str],
        metric: str = "final_mean",
    ) -> dict[str, np.ndarray]:
        r"""
        Compare a per-component metric across previously run simulations.

        Parameters
        ----------
        names : list of str
            Simulation names (must exist in :attr:`results`).
        metric : {"final_mean", "final_var", "mean", "var"}, default ``"final_mean"``
            ``"final_*"`` return the last-step vector; ``"mean"``/``"var"``
            return the full ``(n_steps, n_states)`` arrays.

        Returns
        -------
        dict
            ``{name: value}`` pairs.

        Raises
        ------
        ValueError
            If a name has no results, a result has no summary, or the metric is unknown.
        """
        if metric not in ("final_mean", "final_var", "mean", "var"):
            raise ValueError(f"Unknown metric: {metric}")
        out: dict[str, np.ndarray] = {}
        for name in names:
            if name not in self.results:
                raise ValueError(f"No results found for simulation '{name}'")
            s = self.results[name].summary
            if s is None:
                raise ValueError(f"Simulation '{name}' was run without statistics")
            if metric == "final_mean":
                out[name] = s.mean[-1]
            elif metric == "final_var":
                out[name] = s.var[-1]
            elif metric == "mean":
                out[name] = s.mean
            else:
                out[name] = s.var
        return out


__all__ = [
    "TrajectoryResult",
    "TrajectoryFramework",
]
