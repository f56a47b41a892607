r"""
mcfeedback.stats
================
Per-step ensemble statistics for simulated trajectories.

This module defines:

- :class:`StatsContext`: explicit configuration shared by the summaries.
- :class:`TrajectorySummary`: per-step, per-component mean/variance and CI.
- :func:`summarize`: build a summary from a ``(n_states, n_steps, n_trials)`` buffer.
- :func:`autocrit`: z or Student-t critical value for a confidence level.
- :func:`mean_difference_z` / :func:`summaries_agree`: compare two independent runs.
- :func:`one_step_residuals`: the noise realisations implied by a trajectory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

import numpy as np
from scipy.stats import norm
from scipy.stats import t as student_t

from .kernel import ShapeMismatchError

logger = logging.getLogger(__name__)

__all__ = [
    "CIMethod",
    "StatsContext",
    "TrajectorySummary",
    "autocrit",
    "summarize",
    "mean_difference_z",
    "summaries_agree",
    "one_step_residuals",
]


class CIMethod(str, Enum):
    r"""
    Strategies for selecting confidence-interval critical values.

    Attributes
    ----------
    auto : str
        Choose Student-t when :math:`n < 30`, otherwise z.
    z : str
        Always use the normal :math:`z` critical value.
    t : str
        Always use the Student-:math:`t` critical value.
    """

    auto = "auto"
    z = "z"
    t = "t"


@dataclass(slots=True)
class StatsContext:
    r"""
    Configuration for trajectory summaries.

    Attributes
    ----------
    confidence : float, default 0.95
        Confidence level in :math:`(0, 1)` for the per-step mean CI.
    ci_method : {"auto", "z", "t"}, default "auto"
        Critical-value strategy passed to :func:`autocrit`.
    ddof : int, default 1
        Degrees of freedom for the across-trial variance (1 => Bessel correction).

    Examples
    --------
    >>> ctx = StatsContext(confidence=0.9)
    >>> round(ctx.alpha, 2)
    0.1
    """

    confidence: float = 0.95
    ci_method: CIMethod = CIMethod.auto
    ddof: int = 1

    def __post_init__(self) -> None:
        if not (0.0 < self.confidence < 1.0):
            raise ValueError("confidence must be in (0,1)")
        if self.ddof < 0:
            raise ValueError("ddof must be >= 0")
        self.ci_method = CIMethod(self.ci_method)

    def with_overrides(self, **changes) -> "StatsContext":
        """Return a copy with selected fields replaced."""
        return replace(self, **changes)

    @property
    def alpha(self) -> float:
        r"""Two-sided tail mass :math:`\alpha = 1 - \text{confidence}`."""
        return 1.0 - self.confidence


def autocrit(confidence: float, n: int, method: CIMethod | str = CIMethod.auto) -> tuple[float, str]:
    r"""
    Critical value for a two-sided interval at ``confidence``.

    Parameters
    ----------
    confidence : float
        Confidence level in :math:`(0, 1)`.
    n : int
        Sample size; Student-t uses :math:`n - 1` degrees of freedom.
    method : {"auto", "z", "t"}
        ``"auto"`` picks t for :math:`n < 30`.

    Returns
    -------
    tuple[float, str]
        ``(crit, kind)`` with ``kind`` in ``{"z", "t"}``.

    Examples
    --------
    >>> round(autocrit(0.95, 1000, "z")[0], 3)
    1.96
    """
    if not (0.0 < confidence < 1.0):
        raise ValueError("confidence must be in (0,1)")
    method = CIMethod(method)
    q = 1.0 - (1.0 - confidence) / 2.0
    if method == CIMethod.t or (method == CIMethod.auto and n < 30):
        return float(student_t.ppf(q, df=max(1, n - 1))), "t"
    return float(norm.ppf(q)), "z"


@dataclass
class TrajectorySummary:
    r"""
    Ensemble statistics of a simulated buffer, one row per time step.

    Attributes
    ----------
    mean : ndarray
        Across-trial mean, shape ``(n_steps, n_states)``.
    var : ndarray
        Across-trial variance, shape ``(n_steps, n_states)``.
    ci_low, ci_high : ndarray
        Confidence band for :attr:`mean`, same shape.
    n_trials : int
        Number of trials the statistics were computed over.
    confidence : float
        Confidence level of the band.
    method : str
        Critical-value kind used (``"z"`` or ``"t"``).
    """

    mean: np.ndarray
    var: np.ndarray
    ci_low: np.ndarray
    ci_high: np.ndarray
    n_trials: int
    confidence: float = 0.95
    method: str = "z"
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def n_steps(self) -> int:
        return int(self.mean.shape[0])

    @property
    def n_states(self) -> int:
        return int(self.mean.shape[1])

    def columns(self) -> list[str]:
        """Column names of the tabular form: ``mean_x1.., var_x1..``."""
        idx = range(1, self.n_states + 1)
        return [f"mean_x{k}" for k in idx] + [f"var_x{k}" for k in idx]

    def table(self) -> np.ndarray:
        """``(n_steps, 2 * n_states)`` array laid out as :meth:`columns`."""
        return np.hstack([self.mean, self.var])


def summarize(states: np.ndarray, ctx: StatsContext | None = None) -> TrajectorySummary:
    r"""
    Per-step mean, variance and mean CI across trials.

    Parameters
    ----------
    states : ndarray
        Buffer of shape ``(n_states, n_steps, n_trials)``.
    ctx : StatsContext, optional
        Defaults to ``StatsContext()``.

    Returns
    -------
    TrajectorySummary

    Notes
    -----
    With ``n_trials <= ddof`` the variance is reported as zero and the band
    collapses onto the mean.
    """
    ctx = ctx or StatsContext()
    states = np.asarray(states, dtype=float)
    if states.ndim != 3:
        raise ShapeMismatchError(f"expected a 3-D state buffer, got shape {states.shape}")
    n_trials = states.shape[2]
    if n_trials == 0:
        raise ValueError("cannot summarize a buffer with no trials")

    mean = states.mean(axis=2).T
    if n_trials > ctx.ddof:
        var = states.var(axis=2, ddof=ctx.ddof).T
    else:
        var = np.zeros_like(mean)

    crit, kind = autocrit(ctx.confidence, n_trials, ctx.ci_method)
    se = np.sqrt(var / n_trials)
    return TrajectorySummary(
        mean=mean,
        var=var,
        ci_low=mean - crit * se,
        ci_high=mean + crit * se,
        n_trials=n_trials,
        confidence=ctx.confidence,
        method=kind,
    )


def mean_difference_z(a: TrajectorySummary, b: TrajectorySummary) -> np.ndarray:
    r"""
    Welch z-scores of per-step mean differences between two independent runs.

    .. math::
       z_{t,k} = \frac{\bar x^{a}_{t,k} - \bar x^{b}_{t,k}}
                      {\sqrt{s^2_{a,t,k}/n_a + s^2_{b,t,k}/n_b}}

    Entries whose pooled standard error is zero (e.g. the initial step) are
    ``0`` when the means agree and ``inf`` otherwise.
    """
    if a.mean.shape != b.mean.shape:
        raise ShapeMismatchError(f"summary shapes differ: {a.mean.shape} vs {b.mean.shape}")
    diff = a.mean - b.mean
    se = np.sqrt(a.var / a.n_trials + b.var / b.n_trials)
    z = np.zeros_like(diff)
    nz = se > 0
    z[nz] = diff[nz] / se[nz]
    z[~nz & ~np.isclose(diff, 0.0)] = np.inf
    return z


def summaries_agree(a: TrajectorySummary, b: TrajectorySummary, z_max: float = 4.0) -> bool:
    """``True`` when every per-step mean difference is within ``z_max`` standard errors."""
    z = mean_difference_z(a, b)
    worst = float(np.max(np.abs(z))) if z.size else 0.0
    logger.debug("Largest mean-difference z-score: %.3f", worst)
    return worst <= z_max


def one_step_residuals(states: np.ndarray, transition: np.ndarray) -> np.ndarray:
    r"""
    Noise realisations :math:`w_t = x_t - \tilde A x_{t-1}` for ``t >= 1``.

    Returns
    -------
    ndarray
        Shape ``(n_states, n_steps - 1, n_trials)``.
    """
    states = np.asarray(states, dtype=float)
    transition = np.asarray(transition, dtype=float)
    if states.ndim != 3 or transition.shape != (states.shape[0],) * 2:
        raise ShapeMismatchError(
            f"incompatible shapes: states {states.shape}, transition {transition.shape}"
        )
    predicted = np.einsum("ij,jtn->itn", transition, states[:, :-1, :])
    return states[:, 1:, :] - predicted
