import multiprocessing as mp

import numpy as np
import pytest

from mcfeedback import LinearFeedbackSystem, TrajectoryFramework, TrajectorySimulation


def zero_noise(rng, shape):
    """Noise source that never perturbs the state."""
    return np.zeros(shape)


def failing_noise(rng, shape):
    """Noise source that fails on its first call."""
    raise RuntimeError("noise source exploded")


@pytest.fixture(scope="session", autouse=True)
def _set_spawn_start_method():
    try:
        mp.set_start_method("spawn")
    except RuntimeError:
        pass  # already set


@pytest.fixture
def system():
    """Reference double-integrator loop."""
    return LinearFeedbackSystem.default()


@pytest.fixture
def transition(system):
    """Closed-loop matrix of the reference system."""
    return system.effective_matrix()


@pytest.fixture
def x0():
    return np.array([1.0, 0.0])


@pytest.fixture
def simulation(system, x0):
    """Seeded simulation starting from [1, 0]."""
    sim = TrajectorySimulation(system=system, x0=x0, name="TestSim")
    sim.set_seed(42)
    return sim


@pytest.fixture
def framework():
    """Provide a framework with default state."""
    return TrajectoryFramework()


@pytest.fixture
def rng_fixed():
    """Fixture providing fixed RNG for reproducibility."""
    return np.random.default_rng(42)


@pytest.fixture
def expected_zero_noise_path(transition, x0):
    """Deterministic recurrence x_{k+1} = A_cl x_k for five steps, shape (2, 5)."""
    path = [x0]
    for _ in range(4):
        path.append(transition @ path[-1])
    return np.stack(path, axis=1)
