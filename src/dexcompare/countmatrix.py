"""
Abundance matrix and two-level sample grouping.

``CountMatrix`` is the input container of every stage. It is immutable: the
values are copied once and flagged read-only, and derived matrices (subsets,
pseudo-counts) are new instances. ``SampleGroup`` assigns every sample to one
of exactly two levels; effect sizes are always reported as ``group_a`` over
``group_b``.

Both can be built from, and converted back to, BiocPy containers:

    >>> from summarizedexperiment import SummarizedExperiment
    >>> counts = CountMatrix.from_summarized_experiment(se, assay="counts")
    >>> groups = SampleGroup.from_column_data(se, "condition", levels=["Treatment", "Control"])
"""

from __future__ import annotations

from collections import Counter
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union
import numpy as np
import pandas as pd

from .errors import InvalidInputError


def _as_ids(ids: Iterable[Any], kind: str) -> Tuple[str, ...]:
    out = tuple(str(i) for i in ids)
    if len(set(out)) != len(out):
        dups = sorted(i for i, n in Counter(out).items() if n > 1)
        raise InvalidInputError(f"Duplicate {kind} identifiers: {dups[:5]}")
    return out


class CountMatrix:
    """Genes x samples matrix of non-negative abundances.

    Attributes:
        values: Read-only float array of shape (n_genes, n_samples).
        gene_ids: Unique gene identifiers (rows).
        sample_ids: Unique sample identifiers (columns).
    """

    def __init__(
        self,
        values: Union[np.ndarray, Sequence[Sequence[float]]],
        gene_ids: Optional[Sequence[Any]] = None,
        sample_ids: Optional[Sequence[Any]] = None,
    ) -> None:
        arr = np.array(values, dtype=float, copy=True)
        if arr.ndim != 2:
            raise InvalidInputError(f"Expected a 2D matrix, got {arr.ndim} dimension(s)")
        if not np.all(np.isfinite(arr)):
            raise InvalidInputError("Count matrix contains missing or non-finite values")
        if np.any(arr < 0):
            raise InvalidInputError("Count matrix contains negative values")

        n_genes, n_samples = arr.shape
        if gene_ids is None:
            gene_ids = [f"gene{i + 1}" for i in range(n_genes)]
        if sample_ids is None:
            sample_ids = [f"sample{j + 1}" for j in range(n_samples)]
        gene_ids = _as_ids(gene_ids, "gene")
        sample_ids = _as_ids(sample_ids, "sample")
        if len(gene_ids) != n_genes:
            raise InvalidInputError(f"Got {len(gene_ids)} gene ids for {n_genes} rows")
        if len(sample_ids) != n_samples:
            raise InvalidInputError(f"Got {len(sample_ids)} sample ids for {n_samples} columns")

        arr.setflags(write=False)
        self._values = arr
        self._gene_ids = gene_ids
        self._sample_ids = sample_ids

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def gene_ids(self) -> Tuple[str, ...]:
        return self._gene_ids

    @property
    def sample_ids(self) -> Tuple[str, ...]:
        return self._sample_ids

    @property
    def shape(self) -> Tuple[int, int]:
        return self._values.shape

    @property
    def n_genes(self) -> int:
        return self._values.shape[0]

    @property
    def n_samples(self) -> int:
        return self._values.shape[1]

    def lib_sizes(self) -> np.ndarray:
        """Column totals."""
        return self._values.sum(axis=0)

    def subset_genes(self, keep: Union[np.ndarray, Sequence[bool], Sequence[str]]) -> "CountMatrix":
        """Return a new matrix restricted to the given genes.

        Args:
            keep: Boolean mask over genes, or a sequence of gene ids.
        """
        keep = np.asarray(keep)
        if keep.dtype == bool:
            if keep.shape != (self.n_genes,):
                raise InvalidInputError(
                    f"Mask has length {keep.size} but matrix has {self.n_genes} genes"
                )
            idx = np.flatnonzero(keep)
        else:
            lookup = {g: i for i, g in enumerate(self._gene_ids)}
            missing = [g for g in keep if str(g) not in lookup]
            if missing:
                raise KeyError(f"Unknown gene ids: {missing[:5]}")
            idx = np.array([lookup[str(g)] for g in keep], dtype=int)
        return CountMatrix(
            self._values[idx],
            gene_ids=[self._gene_ids[i] for i in idx],
            sample_ids=self._sample_ids,
        )

    def with_values(self, values: np.ndarray) -> "CountMatrix":
        """New matrix with the same identifiers and different values."""
        return CountMatrix(values, gene_ids=self._gene_ids, sample_ids=self._sample_ids)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            np.array(self._values), index=list(self._gene_ids), columns=list(self._sample_ids)
        )

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "CountMatrix":
        """Build from a genes x samples DataFrame."""
        if not isinstance(df, pd.DataFrame):
            raise TypeError(f"Expected a pandas DataFrame, got {type(df).__name__}")
        if df.isna().any().any():
            raise InvalidInputError("Count matrix contains missing values")
        return cls(df.to_numpy(dtype=float), gene_ids=df.index, sample_ids=df.columns)

    @classmethod
    def from_summarized_experiment(cls, se: Any, assay: str = "counts") -> "CountMatrix":
        """Build from any BiocPy SummarizedExperiment variant."""
        from .edger.checks import check_se, check_assay_exists

        check_se(se)
        check_assay_exists(se, assay)
        mat = np.asarray(se.assay(assay), dtype=float)
        row_names = list(se.row_names) if se.row_names is not None else None
        col_names = list(se.column_names) if se.column_names is not None else None
        return cls(mat, gene_ids=row_names, sample_ids=col_names)

    def to_summarized_experiment(
        self,
        assay: str = "counts",
        groups: Optional["SampleGroup"] = None,
        group_column: str = "group",
    ):
        """Convert to a BiocPy SummarizedExperiment.

        If ``groups`` is given, labels are written to ``column_data[group_column]``.
        """
        from biocframe import BiocFrame
        from summarizedexperiment import SummarizedExperiment

        coldata = None
        if groups is not None:
            coldata = BiocFrame(
                {group_column: list(groups.labels_for(self))},
                row_names=list(self._sample_ids),
            )
        return SummarizedExperiment(
            assays={assay: np.array(self._values)},
            row_names=list(self._gene_ids),
            column_names=list(self._sample_ids),
            column_data=coldata,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CountMatrix):
            return NotImplemented
        return (
            self._gene_ids == other._gene_ids
            and self._sample_ids == other._sample_ids
            and np.array_equal(self._values, other._values)
        )

    __hash__ = None

    def __repr__(self) -> str:
        return f"CountMatrix(n_genes={self.n_genes}, n_samples={self.n_samples})"


class SampleGroup:
    """Assignment of samples to exactly two group levels.

    Attributes:
        labels: Read-only mapping sample id -> level.
        levels: Ordered ``(group_a, group_b)``; fold changes are A over B.
    """

    def __init__(self, labels: Mapping[Any, Any], levels: Optional[Sequence[Any]] = None) -> None:
        clean: Dict[str, str] = {str(k): str(v) for k, v in labels.items()}
        observed = list(dict.fromkeys(clean.values()))
        if levels is None:
            levels = observed
        levels = tuple(str(lv) for lv in levels)
        if len(levels) != 2 or levels[0] == levels[1]:
            raise InvalidInputError(f"Exactly two distinct group levels are required, got {levels}")
        unknown = sorted(set(observed) - set(levels))
        if unknown:
            raise InvalidInputError(f"Labels {unknown} are not among levels {levels}")
        for lv in levels:
            n = sum(1 for v in clean.values() if v == lv)
            if n < 2:
                raise InvalidInputError(
                    f"Group {lv!r} has {n} sample(s); at least 2 are needed to estimate variance"
                )
        self._labels = MappingProxyType(clean)
        self._levels: Tuple[str, str] = (levels[0], levels[1])

    @property
    def labels(self) -> Mapping[str, str]:
        return self._labels

    @property
    def levels(self) -> Tuple[str, str]:
        return self._levels

    @property
    def group_a(self) -> str:
        return self._levels[0]

    @property
    def group_b(self) -> str:
        return self._levels[1]

    def sizes(self) -> Tuple[int, int]:
        values = list(self._labels.values())
        return values.count(self._levels[0]), values.count(self._levels[1])

    def validate_against(self, counts: CountMatrix) -> None:
        """Every column of ``counts`` must carry exactly one label."""
        missing = [s for s in counts.sample_ids if s not in self._labels]
        if missing:
            raise InvalidInputError(f"Samples without a group label: {missing[:5]}")
        for lv in self._levels:
            n = sum(1 for s in counts.sample_ids if self._labels[s] == lv)
            if n < 2:
                raise InvalidInputError(
                    f"Group {lv!r} has {n} sample(s) in the matrix; at least 2 are needed"
                )

    def labels_for(self, counts: CountMatrix) -> np.ndarray:
        """Labels in the column order of ``counts``."""
        self.validate_against(counts)
        return np.array([self._labels[s] for s in counts.sample_ids], dtype=object)

    def indicator(self, counts: CountMatrix) -> np.ndarray:
        """Boolean vector, True where the column belongs to ``group_a``."""
        return self.labels_for(counts) == self._levels[0]

    @classmethod
    def from_column_data(
        cls,
        se: Any,
        column: str,
        levels: Optional[Sequence[Any]] = None,
    ) -> "SampleGroup":
        """Read labels from ``se.column_data[column]``."""
        coldata = se.get_column_data()
        if coldata is None or column not in coldata.column_names:
            raise KeyError(f"Column '{column}' not found in column_data.")
        sample_ids = se.column_names
        if sample_ids is None:
            sample_ids = [f"sample{j + 1}" for j in range(se.shape[1])]
        return cls(dict(zip(sample_ids, list(coldata[column]))), levels=levels)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SampleGroup):
            return NotImplemented
        return dict(self._labels) == dict(other._labels) and self._levels == other._levels

    __hash__ = None

    def __repr__(self) -> str:
        n_a, n_b = self.sizes()
        return f"SampleGroup({self.group_a!r}: {n_a}, {self.group_b!r}: {n_b})"
