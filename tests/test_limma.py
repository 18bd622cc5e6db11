"""
Tests for the linear-model engine.

This module tests voom weights, weighted linear model fits, variance
moderation and the moderated t-test on simulated counts.
"""

import pytest
import numpy as np
import pandas as pd
from scipy import special

from dexcompare import (
    CountMatrix,
    SampleGroup,
    InvalidInputError,
    RankDeficiencyError,
    ExcludedGenesWarning,
)
from dexcompare.edger import calc_norm_factors
from dexcompare.limma import (
    voom,
    lm_fit,
    model_matrix,
    e_bayes,
    top_table,
    squeeze_var,
    shrink_toward,
    fit_f_dist,
    trigamma_inverse,
    VoomResult,
    LimmaModel,
)


@pytest.fixture
def mock_count_data():
    """Create mock count data for testing."""
    np.random.seed(42)
    n_genes = 100
    n_samples = 6

    # Simulate count data with some differential expression
    counts = np.random.negative_binomial(10, 0.3, size=(n_genes, n_samples))

    # Make some genes differentially expressed between groups
    de_genes = np.arange(0, 20)
    counts[de_genes, 3:] = counts[de_genes, 3:] * 3  # 3-fold change

    gene_names = [f"Gene_{i:03d}" for i in range(n_genes)]
    sample_names = [f"Sample_{i}" for i in range(n_samples)]

    return counts.astype(float), gene_names, sample_names


@pytest.fixture
def mock_counts(mock_count_data):
    counts, gene_names, sample_names = mock_count_data
    return CountMatrix(counts, gene_ids=gene_names, sample_ids=sample_names)


@pytest.fixture
def mock_groups(mock_count_data):
    _, _, sample_names = mock_count_data
    labels = ["Control"] * 3 + ["Treatment"] * 3
    return SampleGroup(dict(zip(sample_names, labels)), levels=["Treatment", "Control"])


@pytest.fixture
def mock_voom(mock_counts, mock_groups):
    return voom(mock_counts, mock_groups, calc_norm_factors(mock_counts))


@pytest.fixture
def mock_model(mock_voom):
    return lm_fit(mock_voom).e_bayes()


class TestModelMatrix:
    """Test the default two-group design."""

    def test_columns(self, mock_counts, mock_groups):
        design = model_matrix(mock_groups, mock_counts)
        assert list(design.columns) == ["Intercept", "Treatment"]
        np.testing.assert_array_equal(design["Treatment"].to_numpy(), [0, 0, 0, 1, 1, 1])
        assert list(design.index) == list(mock_counts.sample_ids)


class TestVoom:
    """Test the voom transformation."""

    def test_voom_returns_result(self, mock_voom, mock_counts):
        """log_expr and weights have the matrix shape."""
        assert isinstance(mock_voom, VoomResult)
        assert mock_voom.log_expr.shape == mock_counts.shape
        assert mock_voom.weights.shape == mock_counts.shape

    def test_weights_positive(self, mock_voom):
        assert np.all(np.isfinite(mock_voom.weights))
        assert np.all(mock_voom.weights > 0)

    def test_log_cpm(self, mock_voom, mock_counts):
        """log_expr is log2-CPM with the 0.5 / 1 offsets."""
        lib = mock_voom.lib_sizes
        expected = np.log2((mock_counts.values + 0.5) / (lib + 1) * 1e6)
        np.testing.assert_allclose(mock_voom.log_expr, expected)

    def test_read_only(self, mock_voom):
        with pytest.raises(ValueError):
            mock_voom.weights[0, 0] = 1.0

    def test_to_frames(self, mock_voom):
        log_expr, weights = mock_voom.to_frames()
        assert isinstance(log_expr, pd.DataFrame)
        assert weights.index[0] == "Gene_000"

    def test_singular_design(self, mock_counts, mock_groups):
        """A design with a duplicated column is rank deficient."""
        is_a = mock_groups.indicator(mock_counts).astype(float)
        design = pd.DataFrame(
            {"Intercept": 1.0, "a": is_a, "b": is_a},
            index=list(mock_counts.sample_ids),
        )
        with pytest.raises(RankDeficiencyError) as excinfo:
            voom(mock_counts, mock_groups, design=design)
        assert excinfo.value.rank == 2
        assert excinfo.value.n_coef == 3

    def test_design_row_mismatch(self, mock_counts, mock_groups):
        design = pd.DataFrame({"Intercept": [1.0] * 4})
        with pytest.raises(InvalidInputError):
            voom(mock_counts, mock_groups, design=design)

    def test_design_type_check(self, mock_counts, mock_groups):
        with pytest.raises(TypeError):
            voom(mock_counts, mock_groups, design=np.ones((6, 2)))

    def test_accessor(self, mock_counts, mock_groups, mock_voom):
        """counts.limma mirrors the functional API."""
        v = mock_counts.limma.voom(mock_groups)
        np.testing.assert_allclose(v.weights, mock_voom.weights)


class TestLmFit:
    """Test weighted least squares fits."""

    def test_lm_fit_returns_model(self, mock_voom):
        model = lm_fit(mock_voom)
        assert isinstance(model, LimmaModel)
        assert model.coefficients.shape == (100, 2)
        assert model.ebayes is None
        np.testing.assert_array_equal(model.df_residual, 4)

    def test_unweighted_matches_group_means(self, mock_voom, mock_groups, mock_counts):
        """Without weights the coefficient is the difference of group means."""
        model = lm_fit(mock_voom, use_weights=False)
        is_a = mock_groups.indicator(mock_counts)
        y = mock_voom.log_expr
        expected = y[:, is_a].mean(axis=1) - y[:, ~is_a].mean(axis=1)
        np.testing.assert_allclose(model.coefficients[:, 1], expected, atol=1e-10)

    def test_singular_design(self, mock_voom):
        design = pd.DataFrame({"Intercept": [1.0] * 6, "Twice": [2.0] * 6}, index=list(mock_voom.sample_ids))
        with pytest.raises(RankDeficiencyError):
            lm_fit(mock_voom, design=design)

    def test_type_check(self):
        with pytest.raises(TypeError):
            lm_fit(np.ones((3, 3)))


class TestShrinkToward:
    """Test the weighted-average shrinkage primitive."""

    def test_endpoints(self):
        assert shrink_toward(4.0, 1.0, 0.0) == 4.0
        assert shrink_toward(4.0, 1.0, 1.0) == 1.0
        assert shrink_toward(4.0, 1.0, 0.5) == pytest.approx(2.5)

    def test_vectorised(self):
        out = shrink_toward(np.array([1.0, 3.0]), 2.0, np.array([0.5, 0.5]))
        np.testing.assert_allclose(out, [1.5, 2.5])

    def test_invalid_weight(self):
        with pytest.raises(InvalidInputError):
            shrink_toward(1.0, 2.0, 1.5)


class TestSqueezeVar:
    """Test variance moderation."""

    def test_trigamma_inverse(self):
        x = np.array([1e-3, 0.1, 1.0, 10.0])
        np.testing.assert_allclose(special.polygamma(1, trigamma_inverse(x)), x, rtol=1e-6)

    def test_fit_f_dist_recovers_prior(self):
        """Moment estimates recover the simulated prior."""
        rng = np.random.RandomState(3)
        df, d0, s0 = 4.0, 10.0, 0.5
        sigma2 = s0 * d0 / rng.chisquare(d0, size=5000)
        s2 = sigma2 * rng.chisquare(df, size=5000) / df
        s2_prior, df_prior = fit_f_dist(s2, df)
        assert s2_prior == pytest.approx(s0, rel=0.15)
        assert df_prior == pytest.approx(d0, rel=0.5)

    def test_posterior_between(self):
        """Posterior variances lie between each gene's own and the prior."""
        rng = np.random.RandomState(7)
        s2 = rng.chisquare(4, size=200) / 4
        post, s2_prior, df_prior = squeeze_var(s2, 4)
        lo = np.minimum(s2, s2_prior)
        hi = np.maximum(s2, s2_prior)
        assert np.all(post >= lo - 1e-12)
        assert np.all(post <= hi + 1e-12)

    def test_no_extra_spread_gives_infinite_prior(self):
        """Identical variances carry no between-gene spread."""
        post, s2_prior, df_prior = squeeze_var(np.full(50, 2.0), 4)
        assert np.isinf(df_prior)
        np.testing.assert_allclose(post, s2_prior)

    def test_all_zero(self):
        with pytest.raises(InvalidInputError, match="zero"):
            squeeze_var(np.zeros(10), 4)

    def test_some_zero_warns(self):
        s2 = np.random.RandomState(1).chisquare(4, size=50) / 4
        s2[:2] = 0
        with pytest.warns(ExcludedGenesWarning):
            post, _, _ = squeeze_var(s2, 4)
        assert np.all(post[:2] >= 0)


class TestEBayes:
    """Test moderated t-statistics."""

    def test_e_bayes_sets_slot(self, mock_voom):
        model = lm_fit(mock_voom)
        moderated = e_bayes(model)
        assert moderated.ebayes is not None
        assert model.ebayes is None
        assert moderated.ebayes.t.shape == (100, 2)

    def test_df_total_capped(self, mock_model):
        df_pooled = mock_model.df_residual.sum()
        assert np.all(mock_model.ebayes.df_total <= df_pooled)
        assert np.all(mock_model.ebayes.df_total >= mock_model.df_residual)

    def test_de_genes_detected(self, mock_model):
        res = mock_model.to_result()
        assert res.engine == "moderated_t"
        assert np.all(res.log_fc[:20] > 0)
        assert np.median(res.p_value[:20]) < 0.05
        assert np.median(res.p_value[20:]) > 0.1

    def test_p_values_from_t(self, mock_model):
        from scipy import stats
        eb = mock_model.ebayes
        expected = 2 * stats.t.sf(np.abs(eb.t[:, 1]), eb.df_total)
        np.testing.assert_allclose(eb.p_value[:, 1], expected)

    def test_coef_lookup(self, mock_model):
        assert mock_model.coef_index("Treatment") == 1
        assert mock_model.coef_index() == 1
        with pytest.raises(KeyError):
            mock_model.coef_index("Batch")


class TestTopTable:
    """Test result tables."""

    def test_top_table(self, mock_model):
        table = top_table(mock_model, n=15)
        assert len(table) == 15
        assert {"gene", "log_fc", "ave_expr", "statistic", "p_value", "q_value"} <= set(table.columns)
        assert table["p_value"].is_monotonic_increasing

    def test_method_runs_e_bayes(self, mock_voom):
        table = lm_fit(mock_voom).top_table(sort_by="q_value")
        assert len(table) == 100
        assert table["q_value"].is_monotonic_increasing

    def test_moderated_test_accessor(self, mock_counts, mock_groups, mock_model):
        res = mock_counts.limma.moderated_test(mock_groups)
        np.testing.assert_allclose(res.p_value, mock_model.to_result().p_value)
