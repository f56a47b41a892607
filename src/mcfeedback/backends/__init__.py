"""
Execution backends for trajectory simulations.

This subpackage provides pluggable execution strategies:

CPU Backends
    :class:`SequentialBackend` — Single-threaded execution
    :class:`ThreadBackend` — Thread pool over automatically sized blocks
    :class:`SharedMemoryBackend` — One balanced block per worker over shared memory

Utilities
    :func:`make_blocks` — Chunking helper for parallel work distribution
    :func:`balanced_blocks` — Exactly ``W`` near-equal contiguous parts
    :func:`validate_blocks` — Disjoint-cover check for a partition
    :func:`spawn_seeds` — Independent per-block seed sequences
    :func:`worker_run_shared` — Top-level worker for process pools

Protocol
    :class:`TrajectoryBackend` — Interface for custom backends
"""

from .base import (
    TrajectoryBackend,
    balanced_blocks,
    make_blocks,
    spawn_seeds,
    validate_blocks,
    worker_run_shared,
)
from .parallel import ThreadBackend
from .sequential import SequentialBackend
from .shared import SharedMemoryBackend

__all__ = [
    # Protocol
    "TrajectoryBackend",
    # CPU Backends
    "SequentialBackend",
    "ThreadBackend",
    "SharedMemoryBackend",
    # Utility Functions
    "make_blocks",
    "balanced_blocks",
    "validate_blocks",
    "spawn_seeds",
    "worker_run_shared",
]
