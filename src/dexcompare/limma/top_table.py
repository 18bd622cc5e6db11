"""
Extract top-ranked genes from a moderated linear model.

This module provides a functional interface returning a pandas DataFrame
with q-values attached.
"""

from __future__ import annotations
from typing import Any, Optional, Union
import pandas as pd

from ..qvalue import QValueResult, qvalue
from ..results import rank_table
from .checks import check_limma_model
from .lm_fit import LimmaModel


def top_table(
    model: LimmaModel,
    coef: Optional[Union[int, str]] = None,
    n: Optional[int] = None,
    sort_by: str = "p_value",
    qvalues: Optional[QValueResult] = None,
    **kwargs: Any
) -> pd.DataFrame:
    """
    Extract top-ranked genes from differential expression analysis.

    Will run e_bayes() if not already done.

    Args:
        model: LimmaModel from lm_fit().
        coef: Coefficient to extract (0-based index or name). Default: last.
        n: Number of top genes (None = all).
        sort_by: "p_value", "q_value", "log_fc" or "none". Default: "p_value".
        qvalues: Precomputed q-values for this coefficient.
        **kwargs: Forwarded to :func:`dexcompare.qvalue.qvalue` when
            q-values are computed here.

    Returns:
        pd.DataFrame: Results table with columns:
            - gene: gene identifier
            - log_fc: log2 fold change (coefficient estimate)
            - ave_expr: average log2-CPM
            - statistic: moderated t-statistic
            - p_value: raw p-value
            - q_value: q-value

    Example:
        >>> import dexcompare.limma as limma
        >>> model = limma.lm_fit(v).e_bayes()
        >>> results = limma.top_table(model, n=100)
    """
    check_limma_model(model)
    result = model.to_result(coef)
    if qvalues is None:
        qvalues = qvalue(result.p_value, **kwargs)
    return rank_table(result, qvalues.q_values, n=n, sort_by=sort_by)
