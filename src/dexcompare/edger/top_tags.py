"""
Extract top-ranked genes from an exact-test result.

This module provides a functional interface returning a pandas DataFrame
with q-values attached.
"""

from __future__ import annotations
from typing import Optional
import pandas as pd

from ..qvalue import QValueResult, qvalue
from ..results import TestResult, rank_table


def top_tags(
    result: TestResult,
    qvalues: Optional[QValueResult] = None,
    n: Optional[int] = None,
    sort_by: str = "p_value",
    **kwargs
) -> pd.DataFrame:
    """
    Extract top-ranked genes from a test result.

    Args:
        result: TestResult from exact_test().
        qvalues: Precomputed q-values for ``result``. Computed when omitted.
        n: Number of top genes to return. None = all genes.
        sort_by: "p_value", "q_value", "log_fc" or "none". Default: "p_value".
        **kwargs: Forwarded to :func:`dexcompare.qvalue.qvalue` when
            q-values are computed here.

    Returns:
        pd.DataFrame: Results table with columns:
            - gene: gene identifier
            - log_fc: log2 fold change (group A over group B)
            - ave_expr: log2 average counts per million
            - statistic: observed minus expected group-A count
            - p_value: raw p-value
            - q_value: q-value

    Example:
        >>> import dexcompare.edger as edger
        >>> res = edger.exact_test(counts, groups, disp, norm)
        >>> top_genes = edger.top_tags(res, n=100)
    """
    if qvalues is None:
        qvalues = qvalue(result.p_value, **kwargs)
    return rank_table(result, qvalues.q_values, n=n, sort_by=sort_by)
