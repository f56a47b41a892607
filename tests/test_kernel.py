import numpy as np
import pytest
from scipy import stats as sps

from conftest import zero_noise
from mcfeedback.kernel import (
    ShapeMismatchError,
    TrialRangeError,
    allocate_buffer,
    standard_normal_noise,
    step_trials,
    validate_operands,
)
from mcfeedback.stats import one_step_residuals


class TestAllocateBuffer:
    """Test buffer allocation"""

    def test_shape_and_dtype(self):
        buf = allocate_buffer(5, 3)
        assert buf.shape == (2, 5, 3)
        assert buf.dtype == np.float64
        assert not buf.any()

    def test_custom_state_dimension(self):
        assert allocate_buffer(4, 6, n_states=3).shape == (3, 4, 6)

    def test_negative_dimension_rejected(self):
        with pytest.raises(ValueError):
            allocate_buffer(-1, 3)


class TestStepTrials:
    """Test the stepping kernel"""

    def test_zero_noise_matches_recurrence(self, transition, x0, expected_zero_noise_path):
        """Shape (2, 5, 3), x0 = [1, 0], no noise: every trial is A_cl^k x0"""
        buf = allocate_buffer(5, 3)
        step_trials(buf, transition, x0, range(3), noise=zero_noise)
        for n in range(3):
            np.testing.assert_allclose(buf[:, :, n], expected_zero_noise_path)
        np.testing.assert_array_equal(buf[:, :, 0], buf[:, :, 1])
        np.testing.assert_array_equal(buf[:, :, 1], buf[:, :, 2])

    def test_initial_condition_exact(self, transition, x0, rng_fixed):
        buf = allocate_buffer(10, 50)
        step_trials(buf, transition, x0, range(50), rng=rng_fixed)
        for n in range(50):
            assert np.array_equal(buf[:, 0, n], x0)

    def test_returns_same_buffer(self, transition, x0, rng_fixed):
        buf = allocate_buffer(3, 4)
        assert step_trials(buf, transition, x0, range(4), rng=rng_fixed) is buf

    def test_only_selected_trials_touched(self, transition, x0, rng_fixed):
        buf = np.full((2, 6, 8), np.nan)
        step_trials(buf, transition, x0, [1, 4, 6], rng=rng_fixed)
        for n in (1, 4, 6):
            assert np.isfinite(buf[:, :, n]).all()
        for n in (0, 2, 3, 5, 7):
            assert np.isnan(buf[:, :, n]).all()

    def test_contiguous_range_subset(self, transition, x0, rng_fixed):
        buf = np.full((2, 4, 10), np.nan)
        step_trials(buf, transition, x0, range(3, 7), rng=rng_fixed)
        assert np.isfinite(buf[:, :, 3:7]).all()
        assert np.isnan(buf[:, :, :3]).all()
        assert np.isnan(buf[:, :, 7:]).all()

    def test_slice_selector(self, transition, x0):
        buf = np.full((2, 5, 6), np.nan)
        step_trials(buf, transition, x0, slice(2, None), noise=zero_noise)
        assert np.isnan(buf[:, :, :2]).all()
        np.testing.assert_array_equal(buf[:, 0, 2:], np.tile(x0[:, None], (1, 4)))

    def test_stepped_slice_selector(self, transition, x0):
        buf = np.full((2, 3, 6), np.nan)
        step_trials(buf, transition, x0, slice(1, 6, 2), noise=zero_noise)
        assert np.isfinite(buf[:, :, 1::2]).all()
        assert np.isnan(buf[:, :, 0::2]).all()

    @pytest.mark.parametrize(
        "trials", [slice(0, 7), slice(0, 7, 2), slice(-1, None), slice(-2, None, 2)]
    )
    def test_out_of_range_slice_bounds(self, transition, x0, trials):
        with pytest.raises(TrialRangeError, match="outside"):
            step_trials(allocate_buffer(3, 6), transition, x0, trials)

    def test_trials_are_independent(self, transition, x0, rng_fixed):
        buf = allocate_buffer(3, 200)
        step_trials(buf, transition, x0, range(200), rng=rng_fixed)
        # distinct noise per trial: no two trajectories coincide after step 0
        assert np.unique(buf[0, 1, :]).size == 200

    def test_single_step_is_noop_beyond_initial_condition(self, transition, x0, rng_fixed):
        buf = allocate_buffer(1, 4)
        step_trials(buf, transition, x0, range(4), rng=rng_fixed)
        np.testing.assert_array_equal(buf[:, 0, :], np.tile(x0[:, None], (1, 4)))

    def test_zero_steps_is_noop(self, transition, x0):
        buf = allocate_buffer(0, 4)
        out = step_trials(buf, transition, x0, range(4))
        assert out.shape == (2, 0, 4)

    def test_empty_trial_set_is_noop(self, transition, x0):
        buf = np.full((2, 3, 2), 7.0)
        step_trials(buf, transition, x0, [])
        assert (buf == 7.0).all()

    @pytest.mark.parametrize("trials", [range(0, 4), [0, 3], [-1], range(-1, 2)])
    def test_out_of_range_trials(self, transition, x0, trials):
        buf = allocate_buffer(3, 3)
        with pytest.raises(TrialRangeError, match="outside"):
            step_trials(buf, transition, x0, trials)

    def test_out_of_range_is_index_error(self, transition, x0):
        with pytest.raises(IndexError):
            step_trials(allocate_buffer(3, 3), transition, x0, [5])

    def test_initial_condition_shape_mismatch(self, transition):
        with pytest.raises(ShapeMismatchError, match="initial condition"):
            step_trials(allocate_buffer(3, 3), transition, np.zeros(3), range(3))

    def test_transition_shape_mismatch(self, x0):
        with pytest.raises(ShapeMismatchError, match="transition matrix"):
            step_trials(allocate_buffer(3, 3), np.eye(3), x0, range(3))

    def test_buffer_must_be_3d(self, transition, x0):
        with pytest.raises(ShapeMismatchError, match="3-D"):
            step_trials(np.zeros((2, 3)), transition, x0, range(3))

    def test_shape_mismatch_is_value_error(self, transition):
        with pytest.raises(ValueError):
            validate_operands(allocate_buffer(2, 2), transition, [1.0, 2.0, 3.0])

    def test_noise_shape_checked(self, transition, x0):
        def bad_noise(rng, shape):
            return np.zeros(shape[0])

        with pytest.raises(ShapeMismatchError, match="noise source"):
            step_trials(allocate_buffer(3, 4), transition, x0, range(4), noise=bad_noise)

    def test_noise_receives_selection_shape(self, transition, x0):
        shapes = []

        def recording_noise(rng, shape):
            shapes.append(shape)
            return np.zeros(shape)

        step_trials(allocate_buffer(4, 10), transition, x0, [0, 2, 5], noise=recording_noise)
        assert shapes == [(2, 3)] * 3

    def test_seeded_reproducibility(self, transition, x0):
        a = step_trials(allocate_buffer(6, 20), transition, x0, range(20), rng=np.random.default_rng(7))
        b = step_trials(allocate_buffer(6, 20), transition, x0, range(20), rng=np.random.default_rng(7))
        np.testing.assert_array_equal(a, b)

    def test_standard_normal_noise_shape(self, rng_fixed):
        assert standard_normal_noise(rng_fixed, (2, 5)).shape == (2, 5)


class TestKernelDistribution:
    """Distributional checks of x_t - A_cl x_{t-1}"""

    def test_residuals_are_standard_normal(self, transition, x0):
        buf = allocate_buffer(6, 2000)
        step_trials(buf, transition, x0, range(2000), rng=np.random.default_rng(2024))
        w = one_step_residuals(buf, transition)
        assert w.shape == (2, 5, 2000)

        flat = w.reshape(2, -1)
        np.testing.assert_allclose(flat.mean(axis=1), 0.0, atol=0.05)
        np.testing.assert_allclose(np.cov(flat), np.eye(2), atol=0.08)
        for k in range(2):
            assert sps.kstest(flat[k], "norm").pvalue > 1e-3

    def test_step_one_distribution(self, transition, x0):
        """x_1 ~ N(A_cl x0, I)"""
        buf = allocate_buffer(2, 5000)
        step_trials(buf, transition, x0, range(5000), rng=np.random.default_rng(11))
        x1 = buf[:, 1, :]
        np.testing.assert_allclose(x1.mean(axis=1), transition @ x0, atol=0.06)
        np.testing.assert_allclose(x1.var(axis=1, ddof=1), [1.0, 1.0], atol=0.08)
