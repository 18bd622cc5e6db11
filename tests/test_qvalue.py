"""
Tests for q-value and pi0 estimation.
"""

import pytest
import numpy as np
from statsmodels.stats.multitest import multipletests

from dexcompare import InvalidInputError, QValueResult, qvalue, pi0_est
from dexcompare.qvalue import _smoother_df, smooth_spline


@pytest.fixture
def null_p():
    """p-values drawn under the global null."""
    return np.random.RandomState(11).uniform(size=5000)


@pytest.fixture
def mixed_p():
    """80% null p-values, 20% concentrated near zero."""
    rng = np.random.RandomState(5)
    return np.concatenate([rng.uniform(size=4000), rng.beta(0.1, 20, size=1000)])


class TestPi0:
    """Test the proportion-of-nulls estimate."""

    @pytest.mark.parametrize("method", ["smoother", "bootstrap"])
    def test_uniform_null_near_one(self, null_p, method):
        pi0, _, _ = pi0_est(null_p, pi0_method=method)
        assert pi0 == pytest.approx(1.0, abs=0.1)

    @pytest.mark.parametrize("method", ["smoother", "bootstrap"])
    def test_mixture(self, mixed_p, method):
        pi0, _, _ = pi0_est(mixed_p, pi0_method=method)
        assert pi0 == pytest.approx(0.8, abs=0.1)

    def test_single_lambda(self, mixed_p):
        """A single threshold returns the raw estimate."""
        pi0, lambdas, raw = pi0_est(mixed_p, lambdas=[0.5])
        expected = np.mean(mixed_p >= 0.5) / 0.5
        assert pi0 == pytest.approx(min(expected, 1.0))
        assert raw[0] == pytest.approx(expected)

    def test_all_small_p_floored(self):
        """An estimate below 1/m is raised to 1/m, so q-values stay positive."""
        p = np.full(100, 1e-6)
        pi0, _, _ = pi0_est(p)
        assert pi0 == pytest.approx(0.01)
        assert np.all(qvalue(p).q_values > 0)

    def test_few_p_values_keep_positive_q(self):
        """Four genes with one strong signal still give no zero q-value."""
        p = np.array([2.5e-07, 0.609, 0.0079, 0.113])
        res = qvalue(p)
        assert res.pi0 >= 0.25
        assert np.all(res.q_values > 0)
        assert res.q_values[1] > 0.05

    def test_in_unit_interval(self):
        rng = np.random.RandomState(2)
        for _ in range(5):
            p = rng.uniform(size=50) ** rng.uniform(0.2, 3)
            pi0, _, _ = pi0_est(p)
            assert 0.0 < pi0 <= 1.0

    def test_too_few_lambdas(self, null_p):
        with pytest.raises(InvalidInputError):
            pi0_est(null_p, lambdas=[0.2, 0.5])

    def test_unknown_method(self, null_p):
        with pytest.raises(InvalidInputError):
            pi0_est(null_p, pi0_method="spline")


class TestQValue:
    """Test q-values."""

    def test_returns_result(self, mixed_p):
        res = qvalue(mixed_p)
        assert isinstance(res, QValueResult)
        assert res.q_values.shape == mixed_p.shape
        assert res.lambdas.size == 19
        assert res.pi0_method == "smoother"

    def test_monotone_in_p(self, mixed_p):
        """q-values never decrease as p-values increase."""
        res = qvalue(mixed_p)
        order = np.argsort(mixed_p)
        assert np.all(np.diff(res.q_values[order]) >= 0)

    def test_bounded_by_pi0(self, mixed_p):
        res = qvalue(mixed_p)
        assert np.all(res.q_values >= 0)
        assert np.all(res.q_values <= res.pi0 + 1e-12)

    def test_pi0_one_is_bh(self, mixed_p):
        """With pi0 = 1 q-values are Benjamini-Hochberg adjusted p-values."""
        res = qvalue(mixed_p, pi0=1.0)
        _, bh, _, _ = multipletests(mixed_p, method="fdr_bh")
        np.testing.assert_allclose(res.q_values, bh)
        assert res.pi0_method == "user"

    def test_length_one(self):
        res = qvalue([0.3])
        assert res.q_values.shape == (1,)
        assert res.pi0 == 1.0
        assert res.q_values[0] == pytest.approx(0.3)

    def test_ties(self):
        res = qvalue([0.01, 0.01, 0.5, 0.5], pi0=1.0)
        assert res.q_values[0] == res.q_values[1]
        assert res.q_values[2] == res.q_values[3]

    def test_significant(self, mixed_p):
        res = qvalue(mixed_p)
        mask = res.significant(0.05)
        assert mask.dtype == bool
        assert mask.sum() > 0

    def test_deterministic(self, mixed_p):
        a = qvalue(mixed_p)
        b = qvalue(mixed_p)
        assert a.pi0 == b.pi0
        np.testing.assert_array_equal(a.q_values, b.q_values)

    @pytest.mark.parametrize("p", [[], [0.1, np.nan], [0.1, 1.5], [-0.1]])
    def test_invalid_p(self, p):
        with pytest.raises(InvalidInputError):
            qvalue(p)

    @pytest.mark.parametrize("pi0", [0.0, -0.1, 1.2])
    def test_invalid_pi0(self, pi0):
        with pytest.raises(InvalidInputError):
            qvalue([0.1, 0.2], pi0=pi0)


class TestSmoothSpline:
    """Test the cubic smoothing spline used for pi0."""

    def test_linear_data_unchanged(self):
        """Straight lines are not penalised."""
        x = np.linspace(0.05, 0.95, 19)
        y = 0.3 + 0.5 * x
        np.testing.assert_allclose(smooth_spline(x, y, df=3), y, atol=1e-6)

    def test_reduces_noise(self):
        rng = np.random.RandomState(0)
        x = np.linspace(0.05, 0.95, 19)
        truth = np.full(19, 0.8)
        y = truth + rng.normal(scale=0.05, size=19)
        fitted = smooth_spline(x, y, df=3)
        assert np.sum((fitted - truth) ** 2) < np.sum((y - truth) ** 2)

    def test_few_knots_give_line(self):
        x = np.array([0.1, 0.3, 0.5, 0.7])
        y = np.array([0.9, 0.7, 0.8, 0.6])
        coef = np.polyfit(x, y, 1)
        np.testing.assert_allclose(smooth_spline(x, y, df=3), np.polyval(coef, x))

    def test_penalty_matches_df(self):
        """The chosen penalty gives a smoother with the requested degrees of freedom."""
        x = np.linspace(0.05, 0.95, 19)
        assert _smoother_df(x, 1e-9) > 15
        assert _smoother_df(x, 1e5) == pytest.approx(2.0, abs=0.05)
