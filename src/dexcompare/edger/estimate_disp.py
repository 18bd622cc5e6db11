"""
Estimate negative-binomial dispersions.

This module provides the ``DispersionEstimate`` value object and the
functions computing it:

* :func:`estimate_common_disp` -- one dispersion shared by all genes, the
  root of the summed conditional-likelihood score.
* :func:`estimate_tagwise_disp` -- per-gene dispersions shrunk toward the
  common value by a weighted likelihood.
* :func:`estimate_disp` -- both of the above.
* :func:`compare_prior_n` / :func:`dispersion_summary` -- tagwise estimates
  over a grid of shrinkage strengths, summarised for choosing one.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple
import logging
import warnings
import numpy as np
import pandas as pd
from scipy.interpolate import CubicSpline
from scipy.optimize import brentq

from ..countmatrix import CountMatrix, SampleGroup
from ..errors import ExcludedGenesWarning, InvalidInputError, NumericalDivergenceError
from .calc_norm_factors import NormalizationFactors, calc_norm_factors
from .checks import check_counts, check_groups, check_norm_factors
from .utils import (
    DELTA_LOWER,
    DELTA_UPPER,
    cond_log_lik_der_delta,
    delta_to_phi,
    equalize_lib_sizes,
    phi_to_delta,
    split_into_groups,
    sum_cond_log_lik,
)

logger = logging.getLogger(__name__)

_INV_GOLDEN = (np.sqrt(5.0) - 1) / 2


@dataclass(frozen=True, eq=False)
class DispersionEstimate:
    """Common and per-gene dispersions.

    Attributes:
        gene_ids: Genes, in matrix row order.
        common: Common dispersion shared by all genes.
        tagwise: Per-gene dispersion shrunk toward ``common``.
        empirical: Per-gene dispersion maximising the gene's own likelihood.
        prior_n: Shrinkage strength used for ``tagwise``.
        iterations: Root-finder iterations spent on ``common``.
        n_excluded: Genes left out of the common estimate by the row-sum filter.
    """
    gene_ids: Tuple[str, ...]
    common: float
    tagwise: np.ndarray
    empirical: np.ndarray
    prior_n: float
    iterations: int = 0
    n_excluded: int = 0

    def __post_init__(self):
        for name in ("tagwise", "empirical"):
            arr = np.array(getattr(self, name), dtype=float)
            if arr.shape != (len(self.gene_ids),):
                raise InvalidInputError(f"`{name}` must have one value per gene")
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @property
    def bcv(self) -> float:
        """Biological coefficient of variation, sqrt of the common dispersion."""
        return float(np.sqrt(self.common))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {"tagwise": self.tagwise, "empirical": self.empirical},
            index=pd.Index(list(self.gene_ids), name="gene"),
        )


def _golden_section_max(
    fn: Callable[[np.ndarray], np.ndarray],
    lower: np.ndarray,
    upper: np.ndarray,
    n_iter: int,
) -> np.ndarray:
    """Vectorised golden-section search; every result stays in [lower, upper]."""
    a = np.array(lower, dtype=float)
    b = np.array(upper, dtype=float)
    c = b - _INV_GOLDEN * (b - a)
    d = a + _INV_GOLDEN * (b - a)
    fc = fn(c)
    fd = fn(d)
    for _ in range(n_iter):
        left = fc >= fd
        b = np.where(left, d, b)
        a = np.where(left, a, c)
        new = np.where(left, b - _INV_GOLDEN * (b - a), a + _INV_GOLDEN * (b - a))
        f_new = fn(new)
        c, d, fc, fd = (
            np.where(left, new, d),
            np.where(left, c, new),
            np.where(left, f_new, fd),
            np.where(left, fc, f_new),
        )
    return np.clip((a + b) / 2, lower, upper)


def _prepare(counts, groups, norm):
    check_counts(counts)
    check_groups(groups, counts)
    if norm is None:
        norm = calc_norm_factors(counts)
    check_norm_factors(norm, counts)
    return np.asarray(counts.values, dtype=float), groups.indicator(counts), norm.effective_lib_sizes


def _common_delta(
    values: np.ndarray,
    is_a: np.ndarray,
    lib_size: np.ndarray,
    phi_start: float,
    tol: float,
    max_iter: int,
) -> Tuple[float, int]:
    pseudo, _ = equalize_lib_sizes(values, is_a, lib_size, phi_start)
    y_split = split_into_groups(pseudo, is_a)

    def score(delta: float) -> float:
        return float(sum(cond_log_lik_der_delta(y, delta).sum() for y in y_split))

    f_lo = score(DELTA_LOWER)
    f_hi = score(DELTA_UPPER)
    if not (np.isfinite(f_lo) and np.isfinite(f_hi)):
        raise NumericalDivergenceError("Dispersion score is not finite at the search bounds")
    # Score decreasing across the whole interval: boundary maximum
    if f_lo <= 0:
        return DELTA_LOWER, 0
    if f_hi >= 0:
        return DELTA_UPPER, 0

    root, res = brentq(
        score, DELTA_LOWER, DELTA_UPPER,
        xtol=tol, maxiter=max_iter, full_output=True, disp=False,
    )
    if not res.converged:
        raise NumericalDivergenceError(
            f"Common dispersion did not converge in {max_iter} iterations ({res.flag})",
            iterations=res.iterations,
        )
    return float(root), int(res.iterations)


def estimate_common_disp(
    counts: CountMatrix,
    groups: SampleGroup,
    norm: Optional[NormalizationFactors] = None,
    tol: float = 1e-6,
    max_iter: int = 100,
    min_row_sum: float = 5,
) -> Tuple[float, int, int]:
    """
    Estimate a single dispersion shared by all genes.

    Maximises the conditional likelihood of group-wise pseudo-counts by a
    bracketed root-find on the score in ``delta = phi / (1 + phi)``. Two
    passes are made: pseudo-counts at ``phi = 0.01``, then at the first
    estimate. Genes with a total below ``min_row_sum`` are left out.

    Args:
        counts: Input count matrix.
        groups: Two-level sample grouping.
        norm: Normalization factors (TMM computed when omitted).
        tol: Convergence tolerance on delta.
        max_iter: Iteration cap of each root-find.
        min_row_sum: Minimum gene total to contribute.

    Returns:
        Tuple of (common dispersion, iterations, number of excluded genes).

    Raises:
        InvalidInputError: No gene passes the row-sum filter.
        NumericalDivergenceError: The root-find hit ``max_iter``.
    """
    values, is_a, lib_size = _prepare(counts, groups, norm)
    keep = values.sum(axis=1) >= min_row_sum
    n_excluded = int((~keep).sum())
    if not np.any(keep):
        raise InvalidInputError(
            f"No genes have a total count of at least {min_row_sum}; cannot estimate dispersion"
        )
    if n_excluded:
        warnings.warn(
            f"{n_excluded} gene(s) with total count below {min_row_sum} "
            "were excluded from the common dispersion",
            ExcludedGenesWarning,
            stacklevel=2,
        )
        logger.info("%d low-count gene(s) excluded from the common dispersion", n_excluded)

    y = values[keep]
    delta, it1 = _common_delta(y, is_a, lib_size, 0.01, tol, max_iter)
    delta, it2 = _common_delta(y, is_a, lib_size, delta_to_phi(delta), tol, max_iter)
    common = float(delta_to_phi(delta))
    logger.debug("Common dispersion %.6g (BCV %.4f) after %d iterations", common, np.sqrt(common), it1 + it2)
    return common, it1 + it2, n_excluded


def estimate_tagwise_disp(
    counts: CountMatrix,
    groups: SampleGroup,
    common: float,
    norm: Optional[NormalizationFactors] = None,
    prior_n: float = 10.0,
    n_iter: int = 60,
    grid_size: int = 101,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Estimate per-gene dispersions shrunk toward the common dispersion.

    Each gene's dispersion maximises ``l_g(delta) + prior_n * lbar(delta)``
    where ``l_g`` is the gene's conditional log-likelihood and ``lbar`` the
    average over genes, which peaks at the common value. ``prior_n`` is the
    number of pseudo-observations of the common dispersion added to each
    gene: 0 returns the unshrunk estimates, large values approach ``common``.
    The search is confined to the interval between the gene's own estimate
    and ``common``, so shrinkage never overshoots.

    Args:
        counts: Input count matrix.
        groups: Two-level sample grouping.
        common: Common dispersion (shrinkage target).
        norm: Normalization factors (TMM computed when omitted).
        prior_n: Shrinkage strength, >= 0.
        n_iter: Golden-section iterations per search.
        grid_size: Grid points used to interpolate ``lbar``.

    Returns:
        Tuple of (tagwise, empirical) dispersion arrays.
    """
    if not np.isfinite(prior_n) or prior_n < 0:
        raise InvalidInputError(f"prior_n must be a finite value >= 0, got {prior_n}")
    if not np.isfinite(common) or common < 0:
        raise InvalidInputError(f"common dispersion must be >= 0, got {common}")

    values, is_a, lib_size = _prepare(counts, groups, norm)
    pseudo, _ = equalize_lib_sizes(values, is_a, lib_size, common)
    y_split = split_into_groups(pseudo, is_a)
    informative = values.sum(axis=1) > 0

    log_lo = np.log(DELTA_LOWER)
    log_hi = np.log(DELTA_UPPER)
    log_common = np.clip(np.log(phi_to_delta(max(common, 1e-12))), log_lo, log_hi)
    n_genes = values.shape[0]

    def gene_ll(log_delta: np.ndarray) -> np.ndarray:
        return sum_cond_log_lik(y_split, np.exp(log_delta))

    lo = np.full(n_genes, log_lo)
    hi = np.full(n_genes, log_hi)
    log_emp = _golden_section_max(gene_ll, lo, hi, n_iter)
    log_emp = np.where(informative, log_emp, log_common)

    if prior_n == 0:
        log_tag = log_emp
    else:
        grid = np.linspace(log_lo, log_hi, grid_size)
        ll_grid = np.column_stack([
            sum_cond_log_lik([y[informative] for y in y_split], np.exp(g)) for g in grid
        ])
        lbar = CubicSpline(grid, ll_grid.mean(axis=0))

        def weighted_ll(log_delta: np.ndarray) -> np.ndarray:
            return gene_ll(log_delta) + prior_n * lbar(log_delta)

        lower = np.minimum(log_emp, log_common)
        upper = np.maximum(log_emp, log_common)
        log_tag = _golden_section_max(weighted_ll, lower, upper, n_iter)
        log_tag = np.where(informative, log_tag, log_common)

    tagwise = delta_to_phi(np.exp(log_tag))
    empirical = delta_to_phi(np.exp(log_emp))
    n_flat = int((~informative).sum())
    if n_flat:
        logger.info("%d all-zero gene(s) assigned the common dispersion", n_flat)
    return tagwise, empirical


def estimate_disp(
    counts: CountMatrix,
    groups: SampleGroup,
    norm: Optional[NormalizationFactors] = None,
    prior_n: float = 10.0,
    tol: float = 1e-6,
    max_iter: int = 100,
    min_row_sum: float = 5,
) -> DispersionEstimate:
    """
    Estimate common and tagwise dispersions.

    Args:
        counts: Input count matrix.
        groups: Two-level sample grouping.
        norm: Normalization factors (TMM computed when omitted).
        prior_n: Shrinkage strength of the tagwise estimates. Default: 10.
        tol: Convergence tolerance of the common root-find.
        max_iter: Iteration cap of the common root-find.
        min_row_sum: Minimum gene total to contribute to the common estimate.

    Returns:
        DispersionEstimate.

    Raises:
        NumericalDivergenceError: The common estimate did not converge.

    Example:
        >>> import dexcompare.edger as edger
        >>> norm = edger.calc_norm_factors(counts)
        >>> disp = edger.estimate_disp(counts, groups, norm, prior_n=10)
        >>> disp.common, disp.tagwise[:5]
    """
    if norm is None:
        norm = calc_norm_factors(counts)
    common, iterations, n_excluded = estimate_common_disp(
        counts, groups, norm, tol=tol, max_iter=max_iter, min_row_sum=min_row_sum
    )
    tagwise, empirical = estimate_tagwise_disp(counts, groups, common, norm, prior_n=prior_n)
    return DispersionEstimate(
        gene_ids=counts.gene_ids,
        common=common,
        tagwise=tagwise,
        empirical=empirical,
        prior_n=float(prior_n),
        iterations=iterations,
        n_excluded=n_excluded,
    )


def compare_prior_n(
    counts: CountMatrix,
    groups: SampleGroup,
    norm: Optional[NormalizationFactors] = None,
    prior_ns: Iterable[float] = (1, 5, 10, 20, 50),
    **kwargs,
) -> Dict[float, DispersionEstimate]:
    """Tagwise estimates for several shrinkage strengths, sharing one common estimate."""
    if norm is None:
        norm = calc_norm_factors(counts)
    common, iterations, n_excluded = estimate_common_disp(counts, groups, norm, **kwargs)
    out: Dict[float, DispersionEstimate] = {}
    for prior_n in prior_ns:
        tagwise, empirical = estimate_tagwise_disp(counts, groups, common, norm, prior_n=prior_n)
        out[float(prior_n)] = DispersionEstimate(
            gene_ids=counts.gene_ids,
            common=common,
            tagwise=tagwise,
            empirical=empirical,
            prior_n=float(prior_n),
            iterations=iterations,
            n_excluded=n_excluded,
        )
    return out


def dispersion_summary(estimates: Mapping[float, DispersionEstimate]) -> pd.DataFrame:
    """
    Summarise tagwise dispersion distributions per shrinkage strength.

    Columns are the five-number summary of the tagwise dispersions, their
    interquartile range, and the number of genes beyond 1.5 IQR of the
    quartiles (the boxplot outliers).

    Returns:
        pd.DataFrame indexed by ``prior_n``.
    """
    rows = []
    for prior_n, est in sorted(estimates.items()):
        t = est.tagwise
        q1, med, q3 = np.quantile(t, [0.25, 0.5, 0.75])
        iqr = q3 - q1
        outliers = int(((t < q1 - 1.5 * iqr) | (t > q3 + 1.5 * iqr)).sum())
        rows.append({
            "prior_n": prior_n,
            "common": est.common,
            "min": float(t.min()),
            "q1": float(q1),
            "median": float(med),
            "q3": float(q3),
            "max": float(t.max()),
            "iqr": float(iqr),
            "n_outliers": outliers,
        })
    return pd.DataFrame(rows).set_index("prior_n")
