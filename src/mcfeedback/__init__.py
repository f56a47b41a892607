"""mcfeedback package public API."""

from .backends import SequentialBackend, SharedMemoryBackend, ThreadBackend
from .core import TrajectoryFramework, TrajectoryResult
from .io import load_binary, read_summary, save_binary, write_summary
from .kernel import (
    ShapeMismatchError,
    TrialRangeError,
    allocate_buffer,
    standard_normal_noise,
    step_trials,
)
from .simulation import TrajectorySimulation
from .stats import StatsContext, TrajectorySummary, summarize
from .system import LinearFeedbackSystem

__all__ = [
    "TrajectoryResult",
    "TrajectorySimulation",
    "TrajectoryFramework",
    "LinearFeedbackSystem",
    "SequentialBackend",
    "ThreadBackend",
    "SharedMemoryBackend",
    "step_trials",
    "allocate_buffer",
    "standard_normal_noise",
    "ShapeMismatchError",
    "TrialRangeError",
    "StatsContext",
    "TrajectorySummary",
    "summarize",
    "save_binary",
    "load_binary",
    "write_summary",
    "read_summary",
]

__version__ = "0.1.0"
