r"""
Stepping kernel for linear stochastic systems under state feedback.

This module provides:

Functions
    :func:`step_trials` — Fill the trajectories of a set of trials in place
    :func:`allocate_buffer` — Zero-filled ``(n_states, n_steps, n_trials)`` buffer
    :func:`standard_normal_noise` — Default noise source

Exceptions
    :class:`ShapeMismatchError` — Buffer, matrix and initial condition disagree
    :class:`TrialRangeError` — Trial indices outside the buffer

The recursion applied to every selected trial :math:`n` is

.. math::

   x_0^{(n)} = x_0, \qquad
   x_{t}^{(n)} = \tilde A\, x_{t-1}^{(n)} + w_t^{(n)}, \quad
   w_t^{(n)} \sim \mathcal{N}(0, I_d),

with a fresh draw for every ``(t, n)`` pair. Trials never read each other's
slices, so any disjoint split of the trial axis may be processed concurrently.
"""

from __future__ import annotations

from typing import Callable, Iterable

import numpy as np

__all__ = [
    "ShapeMismatchError",
    "TrialRangeError",
    "NoiseFn",
    "allocate_buffer",
    "validate_operands",
    "standard_normal_noise",
    "step_trials",
]

NoiseFn = Callable[[np.random.Generator, tuple[int, int]], np.ndarray]


class ShapeMismatchError(ValueError):
    """Raised when a state buffer, transition matrix or initial condition disagree in shape."""


class TrialRangeError(IndexError):
    """Raised when a trial index falls outside ``[0, n_trials)``."""


def standard_normal_noise(rng: np.random.Generator, shape: tuple[int, int]) -> np.ndarray:
    """Draw i.i.d. :math:`\\mathcal{N}(0, 1)` noise with the given ``(n_states, n_trials)`` shape."""
    return rng.standard_normal(shape)


def allocate_buffer(n_steps: int, n_trials: int, n_states: int = 2) -> np.ndarray:
    r"""
    Allocate a zero-filled state buffer.

    Parameters
    ----------
    n_steps : int
        Number of time steps :math:`T`.
    n_trials : int
        Number of independent trials :math:`N`.
    n_states : int, default 2
        State dimension :math:`d`.

    Returns
    -------
    ndarray
        ``float64`` array of shape ``(n_states, n_steps, n_trials)``.

    Examples
    --------
    >>> allocate_buffer(5, 3).shape
    (2, 5, 3)
    """
    if n_steps < 0 or n_trials < 0 or n_states <= 0:
        raise ValueError("buffer dimensions must be non-negative (n_states positive)")
    return np.zeros((n_states, n_steps, n_trials), dtype=np.float64)


def validate_operands(buffer: np.ndarray, transition: np.ndarray, x0: np.ndarray) -> np.ndarray:
    """
    Validate operand shapes and return ``x0`` as a float vector.

    Raises
    ------
    ShapeMismatchError
        If the buffer is not 3-D or the matrix/initial condition do not match
        its state dimension.
    """
    if buffer.ndim != 3:
        raise ShapeMismatchError(
            f"state buffer must be 3-D (n_states, n_steps, n_trials), got shape {buffer.shape}"
        )
    n_states = buffer.shape[0]
    if transition.shape != (n_states, n_states):
        raise ShapeMismatchError(
            f"transition matrix must have shape {(n_states, n_states)}, got {transition.shape}"
        )
    x0 = np.asarray(x0, dtype=float)
    if x0.shape != (n_states,):
        raise ShapeMismatchError(f"initial condition must have shape {(n_states,)}, got {x0.shape}")
    return x0


def _trial_selector(trials: Iterable[int] | range | slice, n_trials: int) -> tuple[slice | np.ndarray, int]:
    """
    Turn ``trials`` into an indexer for the last buffer axis.

    Contiguous ranges become basic slices so writes go straight through a view;
    anything else becomes an integer index array.
    """
    if isinstance(trials, slice):
        # explicit bounds must lie in [0, n_trials] whatever the step
        for bound in (trials.start, trials.stop):
            if bound is not None and not 0 <= bound <= n_trials:
                raise TrialRangeError(f"slice bound {bound} outside [0, {n_trials}]")
        trials = range(*trials.indices(n_trials))

    if isinstance(trials, range) and trials.step == 1:
        if len(trials) == 0:
            return slice(0, 0), 0
        if trials.start < 0 or trials.stop > n_trials:
            raise TrialRangeError(
                f"trial range [{trials.start}, {trials.stop}) outside [0, {n_trials})"
            )
        return slice(trials.start, trials.stop), len(trials)

    idx = np.fromiter((int(i) for i in trials), dtype=np.intp)
    if idx.size and (idx.min() < 0 or idx.max() >= n_trials):
        bad = idx[(idx < 0) | (idx >= n_trials)]
        raise TrialRangeError(f"trial indices {bad.tolist()} outside [0, {n_trials})")
    return idx, int(idx.size)


def step_trials(
    buffer: np.ndarray,
    transition: np.ndarray,
    x0: np.ndarray,
    trials: Iterable[int] | range | slice,
    rng: np.random.Generator | None = None,
    noise: NoiseFn | None = None,
) -> np.ndarray:
    r"""
    Populate the full trajectory of each selected trial in place.

    Parameters
    ----------
    buffer : ndarray
        State buffer of shape ``(n_states, n_steps, n_trials)``. Only the
        columns named by ``trials`` are read or written.
    transition : ndarray
        Effective (closed-loop) transition matrix :math:`\tilde A`, shape
        ``(n_states, n_states)``.
    x0 : ndarray
        Initial condition shared by every trial, shape ``(n_states,)``.
    trials : iterable of int, range or slice
        Zero-based trial indices to process. Order is irrelevant.
    rng : numpy.random.Generator, optional
        Source of randomness. A fresh default generator is used when omitted.
    noise : callable, optional
        ``noise(rng, (n_states, m)) -> ndarray`` returning one independent
        column per selected trial. Defaults to :func:`standard_normal_noise`.

    Returns
    -------
    ndarray
        The same ``buffer`` object.

    Raises
    ------
    ShapeMismatchError
        If the buffer is not 3-D, or ``transition``/``x0``/noise shapes do not
        match the state dimension.
    TrialRangeError
        If any trial index lies outside ``[0, n_trials)``.

    Notes
    -----
    A buffer with ``n_steps == 0`` is left untouched. The recursion is
    vectorised across the selected trials; each time step draws a
    ``(n_states, m)`` block so every ``(t, n)`` pair gets its own sample.
    """
    transition = np.asarray(transition, dtype=float)
    x0 = validate_operands(buffer, transition, x0)
    n_states, n_steps, n_trials = buffer.shape
    sel, count = _trial_selector(trials, n_trials)
    if n_steps == 0 or count == 0:
        return buffer

    rng = rng if rng is not None else np.random.default_rng()
    draw = noise if noise is not None else standard_normal_noise
    shape = (n_states, count)

    x = np.repeat(x0[:, None], count, axis=1)
    buffer[:, 0, sel] = x
    for t in range(1, n_steps):
        w = np.asarray(draw(rng, shape), dtype=float)
        if w.shape != shape:
            raise ShapeMismatchError(f"noise source returned shape {w.shape}, expected {shape}")
        x = transition @ x + w
        buffer[:, t, sel] = x
    return buffer
