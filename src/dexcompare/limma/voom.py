"""
Transform counts to log2-CPM with observation-level precision weights.

The mean-variance trend of the log-counts is estimated by a lowess fit of
the square-root residual standard deviation against average log-count. Each
observation's weight is the inverse of the trend, evaluated at its fitted
log-count, raised to the fourth power (i.e. an inverse variance).
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple
import logging
import numpy as np
import pandas as pd
from statsmodels.nonparametric.smoothers_lowess import lowess

from ..countmatrix import CountMatrix, SampleGroup
from ..edger.calc_norm_factors import NormalizationFactors, calc_norm_factors
from ..edger.checks import check_counts, check_groups, check_norm_factors
from ..errors import InvalidInputError
from .checks import check_design
from .lm_fit import _wls, check_full_rank, model_matrix

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class VoomResult:
    """log2-CPM values and precision weights.

    Attributes:
        gene_ids: Gene identifiers.
        sample_ids: Sample identifiers.
        log_expr: log2-CPM values (genes x samples).
        weights: Precision weights (genes x samples).
        lib_sizes: Effective library sizes used.
        design: Design matrix the trend was fitted with.
        comparison: Group levels, numerator first.
        trend: Sorted (average log-count, sqrt-SD) lowess curve.
    """
    gene_ids: Tuple[str, ...]
    sample_ids: Tuple[str, ...]
    log_expr: np.ndarray
    weights: np.ndarray
    lib_sizes: np.ndarray
    design: pd.DataFrame
    comparison: Tuple[str, str]
    trend: np.ndarray

    def __post_init__(self):
        for name in ("log_expr", "weights", "lib_sizes", "trend"):
            arr = np.array(getattr(self, name), dtype=float)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    def to_frames(self) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """(log_expr, weights) as genes x samples DataFrames."""
        index, columns = list(self.gene_ids), list(self.sample_ids)
        return (
            pd.DataFrame(np.array(self.log_expr), index=index, columns=columns),
            pd.DataFrame(np.array(self.weights), index=index, columns=columns),
        )


def _trend_function(sx: np.ndarray, sy: np.ndarray, span: float):
    """Lowess trend as a callable, linearly interpolated and constant outside the range."""
    # Local fits need at least three genes
    frac = min(1.0, max(span, 3.0 / sx.size))
    curve = lowess(sy, sx, frac=frac, it=3, return_sorted=True)
    if not np.all(np.isfinite(curve[:, 1])):
        # Robustness iterations degenerate on very few genes
        curve = lowess(sy, sx, frac=frac, it=0, return_sorted=True)
    ux, inverse = np.unique(curve[:, 0], return_inverse=True)
    uy = np.bincount(inverse, weights=curve[:, 1]) / np.bincount(inverse)

    def trend(x: np.ndarray) -> np.ndarray:
        return np.interp(x, ux, uy)

    return trend, np.column_stack([ux, uy])


def voom(
    counts: CountMatrix,
    groups: SampleGroup,
    norm: Optional[NormalizationFactors] = None,
    design: Optional[pd.DataFrame] = None,
    span: float = 0.5,
) -> VoomResult:
    """
    Run voom transformation on counts to compute log-CPM and weights.

    Args:
        counts: Input count matrix.
        groups: Two-level sample grouping.
        norm: Normalization factors (TMM computed when omitted).
        design: Design matrix (samples x coefficients). Default:
            intercept plus group A indicator.
        span: Lowess span of the mean-variance trend. Default: 0.5.

    Returns:
        VoomResult with log_expr and weights.

    Raises:
        InvalidInputError: Fewer than two expressed genes to fit the trend to.
        RankDeficiencyError: If the design is singular.

    Example:
        >>> import dexcompare.limma as limma
        >>> v = limma.voom(counts, groups, norm)
        >>> log_expr, weights = v.to_frames()
    """
    check_counts(counts)
    check_groups(groups, counts)
    if norm is None:
        norm = calc_norm_factors(counts)
    check_norm_factors(norm, counts)
    if design is None:
        design = model_matrix(groups, counts)
    design = check_design(design, counts.sample_ids)
    X = design.to_numpy(dtype=float)
    check_full_rank(X)

    values = np.asarray(counts.values, dtype=float)
    lib = norm.effective_lib_sizes
    y = np.log2((values + 0.5) / (lib + 1) * 1e6)

    coef, _, sigma, _ = _wls(y, X)
    sx = y.mean(axis=1) + np.mean(np.log2(lib + 1)) - np.log2(1e6)
    sy = np.sqrt(sigma)

    expressed = values.sum(axis=1) > 0
    if expressed.sum() < 2:
        raise InvalidInputError("At least two expressed genes are needed to fit the mean-variance trend")
    if not expressed.all():
        logger.info("%d all-zero gene(s) excluded from the mean-variance trend", int((~expressed).sum()))
    trend, curve = _trend_function(sx[expressed], sy[expressed], span)

    fitted_logcount = coef @ X.T + np.log2(lib + 1) - np.log2(1e6)
    f = trend(fitted_logcount)
    positive = curve[curve[:, 1] > 0, 1]
    if positive.size == 0:
        raise InvalidInputError("Mean-variance trend is zero everywhere; groups carry no variation")
    f = np.maximum(f, positive.min())
    weights = 1 / f ** 4

    logger.debug("voom weights range [%.3g, %.3g]", weights.min(), weights.max())
    return VoomResult(
        gene_ids=counts.gene_ids,
        sample_ids=counts.sample_ids,
        log_expr=y,
        weights=weights,
        lib_sizes=lib,
        design=design,
        comparison=groups.levels,
        trend=curve,
    )
