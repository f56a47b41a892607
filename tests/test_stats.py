import numpy as np
import pytest

from conftest import zero_noise
from mcfeedback.kernel import ShapeMismatchError, allocate_buffer, step_trials
from mcfeedback.stats import (
    CIMethod,
    StatsContext,
    TrajectorySummary,
    autocrit,
    mean_difference_z,
    one_step_residuals,
    summaries_agree,
    summarize,
)


@pytest.fixture
def small_states():
    """Hand-built buffer: 2 states, 2 steps, 4 trials."""
    states = np.zeros((2, 2, 4))
    states[0, 1, :] = [1.0, 2.0, 3.0, 4.0]
    states[1, 1, :] = [2.0, 2.0, 2.0, 2.0]
    return states


class TestStatsContext:
    def test_defaults(self):
        ctx = StatsContext()
        assert ctx.confidence == 0.95
        assert ctx.ci_method == CIMethod.auto
        assert ctx.ddof == 1

    def test_alpha(self):
        assert round(StatsContext(confidence=0.9).alpha, 10) == 0.1

    def test_string_method_coerced(self):
        assert StatsContext(ci_method="t").ci_method is CIMethod.t

    @pytest.mark.parametrize("kwargs", [{"confidence": 0.0}, {"confidence": 1.0}, {"ddof": -1}])
    def test_validation(self, kwargs):
        with pytest.raises(ValueError):
            StatsContext(**kwargs)

    def test_invalid_method(self):
        with pytest.raises(ValueError):
            StatsContext(ci_method="bootstrap")

    def test_with_overrides(self):
        ctx = StatsContext().with_overrides(confidence=0.99)
        assert ctx.confidence == 0.99


class TestAutocrit:
    def test_z_value(self):
        crit, kind = autocrit(0.95, 1000, "z")
        assert kind == "z"
        assert crit == pytest.approx(1.959964, abs=1e-5)

    def test_auto_small_sample_uses_t(self):
        crit, kind = autocrit(0.95, 10)
        assert kind == "t"
        assert crit == pytest.approx(2.262157, abs=1e-5)

    def test_auto_large_sample_uses_z(self):
        assert autocrit(0.95, 500)[1] == "z"

    def test_forced_t(self):
        assert autocrit(0.95, 500, CIMethod.t)[1] == "t"

    def test_invalid_confidence(self):
        with pytest.raises(ValueError):
            autocrit(1.2, 10)


class TestSummarize:
    def test_values(self, small_states):
        s = summarize(small_states)
        assert isinstance(s, TrajectorySummary)
        assert s.mean.shape == (2, 2)
        np.testing.assert_allclose(s.mean[1], [2.5, 2.0])
        np.testing.assert_allclose(s.var[1], [np.var([1, 2, 3, 4], ddof=1), 0.0])
        np.testing.assert_allclose(s.mean[0], [0.0, 0.0])
        assert s.n_trials == 4
        assert s.method == "t"

    def test_band_contains_mean(self, small_states):
        s = summarize(small_states)
        assert np.all(s.ci_low <= s.mean)
        assert np.all(s.mean <= s.ci_high)
        # zero variance collapses the band
        assert s.ci_low[1, 1] == s.ci_high[1, 1] == 2.0

    def test_ddof_zero(self, small_states):
        s = summarize(small_states, StatsContext(ddof=0))
        assert s.var[1, 0] == pytest.approx(1.25)

    def test_single_trial(self):
        s = summarize(np.ones((2, 3, 1)))
        np.testing.assert_array_equal(s.var, np.zeros((3, 2)))

    def test_columns_and_table(self, small_states):
        s = summarize(small_states)
        assert s.columns() == ["mean_x1", "mean_x2", "var_x1", "var_x2"]
        assert s.table().shape == (2, 4)
        assert s.n_steps == 2
        assert s.n_states == 2

    def test_rejects_non_3d(self):
        with pytest.raises(ShapeMismatchError):
            summarize(np.zeros((2, 3)))

    def test_rejects_empty(self):
        with pytest.raises(ValueError, match="no trials"):
            summarize(np.zeros((2, 3, 0)))


class TestComparisons:
    def test_identical_summaries(self, small_states):
        s = summarize(small_states)
        np.testing.assert_array_equal(mean_difference_z(s, s), np.zeros((2, 2)))
        assert summaries_agree(s, s)

    def test_deterministic_difference_is_infinite(self):
        a = summarize(np.zeros((2, 2, 3)))
        b = summarize(np.ones((2, 2, 3)))
        assert np.isinf(mean_difference_z(a, b)).all()
        assert not summaries_agree(a, b)

    def test_known_z(self):
        a = TrajectorySummary(
            mean=np.array([[1.0]]), var=np.array([[4.0]]),
            ci_low=np.array([[0.0]]), ci_high=np.array([[0.0]]), n_trials=100,
        )
        b = TrajectorySummary(
            mean=np.array([[0.0]]), var=np.array([[4.0]]),
            ci_low=np.array([[0.0]]), ci_high=np.array([[0.0]]), n_trials=100,
        )
        assert mean_difference_z(a, b)[0, 0] == pytest.approx(1.0 / np.sqrt(0.08))

    def test_shape_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            mean_difference_z(summarize(np.zeros((2, 2, 3))), summarize(np.zeros((2, 3, 3))))


class TestResiduals:
    def test_zero_noise_residuals_vanish(self, transition, x0):
        buf = step_trials(allocate_buffer(5, 3), transition, x0, range(3), noise=zero_noise)
        np.testing.assert_allclose(one_step_residuals(buf, transition), 0.0, atol=1e-12)

    def test_shape_mismatch(self, transition):
        with pytest.raises(ShapeMismatchError):
            one_step_residuals(np.zeros((3, 4, 2)), transition)
