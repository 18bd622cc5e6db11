"""
Compute counts per million (CPM).

This module provides a functional interface returning CPM or log2-CPM as a
genes x samples DataFrame.
"""

from __future__ import annotations
from typing import Optional
import numpy as np
import pandas as pd

from ..countmatrix import CountMatrix
from .calc_norm_factors import NormalizationFactors
from .checks import check_counts, check_norm_factors


def cpm(
    counts: CountMatrix,
    norm: Optional[NormalizationFactors] = None,
    log: bool = False,
    prior_count: float = 2.0,
) -> pd.DataFrame:
    """
    Compute counts per million.

    With ``norm`` the effective (normalized) library sizes are used. For
    ``log=True`` a prior count, scaled by each library's size relative to
    the average, is added to the counts and twice that to the library size
    before taking log2.

    Args:
        counts: Input count matrix.
        norm: Optional normalization factors.
        log: Whether to compute log2-CPM. Default: False.
        prior_count: Prior count added before the log. Default: 2.0.

    Returns:
        pd.DataFrame of CPM values (genes x samples).

    Example:
        >>> import dexcompare.edger as edger
        >>> logcpm = edger.cpm(counts, norm, log=True)
    """
    check_counts(counts)
    y = np.asarray(counts.values, dtype=float)
    if norm is not None:
        check_norm_factors(norm, counts)
        lib_size = norm.effective_lib_sizes
    else:
        lib_size = y.sum(axis=0)

    if log:
        prior = prior_count * lib_size / lib_size.mean()
        out = np.log2((y + prior) / (lib_size + 2 * prior) * 1e6)
    else:
        with np.errstate(divide="ignore", invalid="ignore"):
            out = y / lib_size * 1e6
    return pd.DataFrame(out, index=list(counts.gene_ids), columns=list(counts.sample_ids))
