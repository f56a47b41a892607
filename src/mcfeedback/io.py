"""
Persistence of simulated trajectories.

Two formats are supported:

* a raw binary dump of the state buffer (little-endian ``float64``, C order,
  no header); the reader is told the shape out of band, and
* a delimited text table with one row per time step holding the per-component
  means and variances across trials.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd

from .kernel import ShapeMismatchError
from .stats import TrajectorySummary

logger = logging.getLogger(__name__)

__all__ = [
    "save_binary",
    "load_binary",
    "summary_frame",
    "write_summary",
    "read_summary",
]

PathLike = Union[str, "os.PathLike[str]"]

_DTYPE = np.dtype("<f8")


def save_binary(path: PathLike, states: np.ndarray) -> Path:
    """
    Write ``states`` as raw little-endian ``float64`` values in C order.

    Parameters
    ----------
    path : str or path-like
        Destination file; overwritten if it exists.
    states : ndarray
        Buffer of any shape. Only the values are written.

    Returns
    -------
    Path
        The written path.
    """
    path = Path(path)
    arr = np.ascontiguousarray(states, dtype=_DTYPE)
    arr.tofile(path)
    logger.info("Wrote %d values with shape %s to %s", arr.size, arr.shape, path)
    return path


def load_binary(path: PathLike, shape: tuple[int, ...]) -> np.ndarray:
    """
    Read a buffer written by :func:`save_binary`.

    Parameters
    ----------
    path : str or path-like
        Source file.
    shape : tuple of int
        Shape the values were written with, e.g. ``(2, n_steps, n_trials)``.

    Returns
    -------
    ndarray
        Native ``float64`` array of ``shape``, bit-identical to what was saved.

    Raises
    ------
    ShapeMismatchError
        If the file does not hold exactly ``prod(shape)`` values.
    """
    path = Path(path)
    expected = int(np.prod(shape, dtype=np.int64))
    size = path.stat().st_size
    if size != expected * _DTYPE.itemsize:
        raise ShapeMismatchError(
            f"{path} holds {size} bytes, expected {expected * _DTYPE.itemsize} for shape {tuple(shape)}"
        )
    data = np.fromfile(path, dtype=_DTYPE)
    return data.reshape(shape).astype(np.float64, copy=False)


def summary_frame(summary: TrajectorySummary) -> pd.DataFrame:
    """Tabular form of a summary: one row per step, columns ``mean_x*`` then ``var_x*``."""
    return pd.DataFrame(summary.table(), columns=summary.columns())


def write_summary(
    path: PathLike,
    summary: TrajectorySummary,
    precision: int = 6,
    sep: str = ",",
) -> Path:
    """
    Write per-step means and variances as delimited text with a header row.

    Parameters
    ----------
    path : str or path-like
        Destination file.
    summary : TrajectorySummary
        Statistics to write.
    precision : int, default 6
        Digits after the decimal point.
    sep : str, default ``","``
        Field delimiter.

    Returns
    -------
    Path
        The written path.
    """
    if precision < 0:
        raise ValueError("precision must be non-negative")
    path = Path(path)
    summary_frame(summary).to_csv(path, sep=sep, index=False, float_format=f"%.{precision}f")
    logger.info("Wrote %d-step summary to %s", summary.n_steps, path)
    return path


def read_summary(path: PathLike, sep: str = ",") -> pd.DataFrame:
    """Read a table written by :func:`write_summary`."""
    return pd.read_csv(path, sep=sep)
