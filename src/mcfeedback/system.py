r"""
Linear plant with static state feedback.

The open-loop plant :math:`x_{t+1} = A x_t + B u_t` is closed with
:math:`u_t = -K x_t`, so the simulator only ever sees

.. math::
   \tilde A = A - B K.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .kernel import ShapeMismatchError

__all__ = ["LinearFeedbackSystem"]


@dataclass(frozen=True, eq=False)
class LinearFeedbackSystem:
    r"""
    Constant system matrices of a discrete-time feedback loop.

    Parameters
    ----------
    A : array_like
        State transition matrix, shape ``(d, d)``.
    B : array_like
        Input matrix, shape ``(d, m)``. A 1-D input vector is read as a column.
    K : array_like
        Feedback gain, shape ``(m, d)``. A 1-D gain is read as a row.

    Examples
    --------
    >>> sys = LinearFeedbackSystem.default()
    >>> sys.effective_matrix()
    array([[ 1.  ,  0.1 ],
           [-0.1 ,  0.85]])
    """

    A: np.ndarray
    B: np.ndarray
    K: np.ndarray

    def __post_init__(self) -> None:
        A = np.atleast_2d(np.asarray(self.A, dtype=float))
        B = np.asarray(self.B, dtype=float)
        K = np.asarray(self.K, dtype=float)
        if B.ndim == 1:
            B = B[:, None]
        if K.ndim == 1:
            K = K[None, :]

        d = A.shape[0]
        if A.shape != (d, d):
            raise ShapeMismatchError(f"A must be square, got shape {A.shape}")
        if B.ndim != 2 or B.shape[0] != d:
            raise ShapeMismatchError(f"B must have {d} rows, got shape {B.shape}")
        if K.shape != (B.shape[1], d):
            raise ShapeMismatchError(f"K must have shape {(B.shape[1], d)}, got {K.shape}")

        # frozen dataclass: store normalised copies
        object.__setattr__(self, "A", A)
        object.__setattr__(self, "B", B)
        object.__setattr__(self, "K", K)

    @classmethod
    def default(cls) -> "LinearFeedbackSystem":
        """Discretised double integrator (``dt = 0.1``) with a stabilising gain."""
        return cls(
            A=[[1.0, 0.1], [0.0, 1.0]],
            B=[[0.0], [0.1]],
            K=[[1.0, 1.5]],
        )

    @property
    def n_states(self) -> int:
        return int(self.A.shape[0])

    @property
    def n_inputs(self) -> int:
        return int(self.B.shape[1])

    def effective_matrix(self) -> np.ndarray:
        r"""Closed-loop transition matrix :math:`\tilde A = A - B K`."""
        return self.A - self.B @ self.K

    def spectral_radius(self) -> float:
        """Largest eigenvalue magnitude of the closed-loop matrix."""
        return float(np.max(np.abs(np.linalg.eigvals(self.effective_matrix()))))

    def is_stable(self) -> bool:
        """``True`` when every closed-loop eigenvalue lies strictly inside the unit circle."""
        return self.spectral_radius() < 1.0
