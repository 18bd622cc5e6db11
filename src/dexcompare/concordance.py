"""
Agreement between the significant-gene calls of two test engines.

    >>> from dexcompare.concordance import compare_significance, significant, top_n_overlap
    >>> summary = compare_significance(significant(q_exact, 0.05), significant(q_moderated, 0.05))
    >>> summary.both, summary.percent_a_in_b
    >>> top_n_overlap(q_exact, q_moderated, n=20, gene_ids=genes)
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import FrozenSet, Optional, Sequence, Union
import numpy as np
import pandas as pd

from .errors import InvalidInputError

ArrayOrSeries = Union[np.ndarray, pd.Series, Sequence]


@dataclass(frozen=True)
class ConcordanceSummary:
    """Membership counts of two significant-gene sets.

    Attributes:
        neither: Genes significant in neither engine.
        a_only: Genes significant in engine A only.
        b_only: Genes significant in engine B only.
        both: Genes significant in both engines.
        percent_a_in_b: Percentage of A's significant genes also significant
            in B; NaN when A has none.
    """
    neither: int
    a_only: int
    b_only: int
    both: int
    percent_a_in_b: float

    @property
    def n_genes(self) -> int:
        return self.neither + self.a_only + self.b_only + self.both

    @property
    def n_a(self) -> int:
        return self.a_only + self.both

    @property
    def n_b(self) -> int:
        return self.b_only + self.both

    def to_frame(self) -> pd.DataFrame:
        """2 x 2 contingency table, rows engine A, columns engine B."""
        return pd.DataFrame(
            [[self.both, self.a_only], [self.b_only, self.neither]],
            index=pd.Index(["significant", "not_significant"], name="engine_a"),
            columns=pd.Index(["significant", "not_significant"], name="engine_b"),
        )


def significant(q_values: ArrayOrSeries, threshold: float) -> ArrayOrSeries:
    """Boolean calls at ``q <= threshold``; a Series keeps its index."""
    if not 0 <= threshold <= 1:
        raise InvalidInputError(f"q-value threshold must lie in [0, 1], got {threshold}")
    if isinstance(q_values, pd.Series):
        return q_values <= threshold
    return np.asarray(q_values, dtype=float) <= threshold


def _align(sig_a: ArrayOrSeries, sig_b: ArrayOrSeries):
    if isinstance(sig_a, pd.Series) and isinstance(sig_b, pd.Series):
        if set(sig_a.index) != set(sig_b.index):
            raise InvalidInputError("Significance vectors cover different genes")
        sig_b = sig_b.reindex(sig_a.index)
    a = np.asarray(sig_a, dtype=bool)
    b = np.asarray(sig_b, dtype=bool)
    if a.ndim != 1 or a.shape != b.shape:
        raise InvalidInputError("Significance vectors must be 1D with one value per gene")
    return a, b


def compare_significance(sig_a: ArrayOrSeries, sig_b: ArrayOrSeries) -> ConcordanceSummary:
    """
    Count genes in each membership category of two boolean calls.

    Args:
        sig_a: Significance calls of engine A. Series are aligned by index.
        sig_b: Significance calls of engine B.

    Returns:
        ConcordanceSummary whose four counts sum to the number of genes.
    """
    a, b = _align(sig_a, sig_b)
    both = int(np.sum(a & b))
    n_a = int(a.sum())
    return ConcordanceSummary(
        neither=int(np.sum(~a & ~b)),
        a_only=int(np.sum(a & ~b)),
        b_only=int(np.sum(~a & b)),
        both=both,
        percent_a_in_b=100.0 * both / n_a if n_a else float("nan"),
    )


def top_n_overlap(
    q_a: ArrayOrSeries,
    q_b: ArrayOrSeries,
    n: int,
    gene_ids: Optional[Sequence[str]] = None,
) -> FrozenSet[str]:
    """
    Genes among the ``n`` smallest q-values of both engines.

    Ties are broken by gene order, so the result is deterministic.

    Args:
        q_a: q-values of engine A. Series supply their own gene ids.
        q_b: q-values of engine B.
        n: Number of top genes taken from each engine.
        gene_ids: Gene identifiers for array inputs.

    Returns:
        Frozen set of gene identifiers.
    """
    if n < 0:
        raise InvalidInputError(f"n must be non-negative, got {n}")
    if isinstance(q_a, pd.Series) and isinstance(q_b, pd.Series):
        q_b = q_b.reindex(q_a.index)
        if q_b.isna().any():
            raise InvalidInputError("q-value vectors cover different genes")
        gene_ids = [str(g) for g in q_a.index]
    a = np.asarray(q_a, dtype=float)
    b = np.asarray(q_b, dtype=float)
    if a.shape != b.shape or a.ndim != 1:
        raise InvalidInputError("q-value vectors must be 1D with one value per gene")
    if gene_ids is None:
        gene_ids = [str(i) for i in range(a.size)]
    elif len(gene_ids) != a.size:
        raise InvalidInputError("gene_ids must have one entry per q-value")

    ids = np.asarray(list(gene_ids), dtype=object)
    top_a = ids[np.argsort(a, kind="mergesort")[:n]]
    top_b = ids[np.argsort(b, kind="mergesort")[:n]]
    return frozenset(top_a) & frozenset(top_b)
