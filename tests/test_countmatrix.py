"""
Tests for the CountMatrix and SampleGroup containers.

This module covers validation, immutability, subsetting and the round trip
through BiocPy SummarizedExperiment containers.
"""

import pytest
import numpy as np
import pandas as pd

from dexcompare import CountMatrix, SampleGroup, InvalidInputError


@pytest.fixture
def mock_count_data():
    """Create mock count data for testing."""
    np.random.seed(42)
    n_genes = 20
    n_samples = 6

    counts = np.random.negative_binomial(10, 0.3, size=(n_genes, n_samples))

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


class TestCountMatrix:
    """Test CountMatrix construction and invariants."""

    def test_basic_properties(self, mock_counts):
        """Shape, ids and library sizes are exposed."""
        assert mock_counts.shape == (20, 6)
        assert mock_counts.n_genes == 20
        assert mock_counts.n_samples == 6
        assert mock_counts.gene_ids[0] == "Gene_000"
        np.testing.assert_allclose(mock_counts.lib_sizes(), mock_counts.values.sum(axis=0))

    def test_default_ids(self):
        """Identifiers are generated when omitted."""
        cm = CountMatrix([[1, 2], [3, 4]])
        assert cm.gene_ids == ("gene1", "gene2")
        assert cm.sample_ids == ("sample1", "sample2")

    def test_values_are_read_only(self, mock_counts):
        """The wrapped matrix cannot be modified in place."""
        with pytest.raises(ValueError):
            mock_counts.values[0, 0] = 1.0

    def test_source_array_is_copied(self):
        """Mutating the source array does not change the matrix."""
        src = np.ones((2, 2))
        cm = CountMatrix(src)
        src[0, 0] = 99
        assert cm.values[0, 0] == 1.0

    @pytest.mark.parametrize("values", [
        [[1.0, np.nan], [1.0, 2.0]],
        [[1.0, -1.0], [1.0, 2.0]],
        [1.0, 2.0, 3.0],
    ])
    def test_invalid_values(self, values):
        """Missing, negative and non-2D input is rejected."""
        with pytest.raises(InvalidInputError):
            CountMatrix(values)

    def test_duplicate_ids(self):
        """Gene and sample identifiers must be unique."""
        with pytest.raises(InvalidInputError, match="Duplicate"):
            CountMatrix([[1, 2], [3, 4]], gene_ids=["a", "a"])
        with pytest.raises(InvalidInputError, match="Duplicate"):
            CountMatrix([[1, 2], [3, 4]], sample_ids=["s", "s"])

    def test_id_length_mismatch(self):
        with pytest.raises(InvalidInputError):
            CountMatrix([[1, 2], [3, 4]], gene_ids=["a", "b", "c"])

    def test_subset_genes_mask(self, mock_counts):
        """Subsetting returns a new instance and leaves the source alone."""
        mask = np.zeros(20, dtype=bool)
        mask[:5] = True
        sub = mock_counts.subset_genes(mask)
        assert sub.shape == (5, 6)
        assert sub is not mock_counts
        assert mock_counts.shape == (20, 6)

    def test_subset_genes_ids(self, mock_counts):
        sub = mock_counts.subset_genes(["Gene_003", "Gene_001"])
        assert sub.gene_ids == ("Gene_003", "Gene_001")
        np.testing.assert_array_equal(sub.values[1], mock_counts.values[1])

    def test_subset_unknown_gene(self, mock_counts):
        with pytest.raises(KeyError):
            mock_counts.subset_genes(["nope"])

    def test_from_frame(self, mock_counts):
        """DataFrame round trip keeps ids and values."""
        df = mock_counts.to_frame()
        assert isinstance(df, pd.DataFrame)
        assert CountMatrix.from_frame(df) == mock_counts

    def test_from_frame_type_check(self):
        with pytest.raises(TypeError):
            CountMatrix.from_frame(np.ones((2, 2)))


class TestSampleGroup:
    """Test SampleGroup validation."""

    def test_levels_order(self, mock_groups):
        """Explicit levels set the numerator of fold changes."""
        assert mock_groups.levels == ("Treatment", "Control")
        assert mock_groups.group_a == "Treatment"
        assert mock_groups.sizes() == (3, 3)

    def test_default_levels_first_appearance(self):
        groups = SampleGroup({"a": "x", "b": "x", "c": "y", "d": "y"})
        assert groups.levels == ("x", "y")

    def test_indicator(self, mock_counts, mock_groups):
        """Indicator is True for group A columns."""
        np.testing.assert_array_equal(
            mock_groups.indicator(mock_counts), [False, False, False, True, True, True]
        )

    def test_single_sample_group(self):
        """Each level needs at least two samples."""
        with pytest.raises(InvalidInputError, match="at least 2"):
            SampleGroup({"a": "x", "b": "x", "c": "y"})

    def test_three_levels(self):
        with pytest.raises(InvalidInputError, match="two"):
            SampleGroup({"a": "x", "b": "x", "c": "y", "d": "y", "e": "z", "f": "z"})

    def test_unlabelled_sample(self, mock_counts):
        """Every matrix column needs a label."""
        groups = SampleGroup({"Sample_0": "x", "Sample_1": "x", "Sample_2": "y", "Sample_3": "y"})
        with pytest.raises(InvalidInputError, match="without a group label"):
            groups.validate_against(mock_counts)

    def test_labels_read_only(self, mock_groups):
        with pytest.raises(TypeError):
            mock_groups.labels["Sample_0"] = "Treatment"


class TestSummarizedExperiment:
    """Test conversion to and from BiocPy containers."""

    def test_round_trip(self, mock_counts, mock_groups):
        """Counts and groups survive the SummarizedExperiment round trip."""
        se = mock_counts.to_summarized_experiment(groups=mock_groups, group_column="condition")
        assert "counts" in se.assay_names

        back = CountMatrix.from_summarized_experiment(se)
        assert back == mock_counts

        groups = SampleGroup.from_column_data(se, "condition", levels=["Treatment", "Control"])
        assert groups == mock_groups

    def test_missing_assay(self, mock_counts):
        se = mock_counts.to_summarized_experiment()
        with pytest.raises(KeyError, match="not found"):
            CountMatrix.from_summarized_experiment(se, assay="tpm")

    def test_missing_column(self, mock_counts):
        se = mock_counts.to_summarized_experiment()
        with pytest.raises(KeyError):
            SampleGroup.from_column_data(se, "condition")

    def test_not_an_se(self):
        with pytest.raises(TypeError, match="SummarizedExperiment"):
            CountMatrix.from_summarized_experiment(np.ones((2, 2)))
