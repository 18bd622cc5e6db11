"""
Compute library normalization factors (trimmed mean of M-values).

This module provides the ``NormalizationFactors`` value object and the
``calc_norm_factors`` function computing it from a ``CountMatrix``.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Tuple
import logging
import numpy as np
from scipy.stats import rankdata

from ..countmatrix import CountMatrix
from ..errors import InvalidInputError
from .checks import check_counts

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class NormalizationFactors:
    """One positive scale factor per sample.

    Attributes:
        sample_ids: Samples, in matrix column order.
        factors: Normalization factors, geometric mean 1.
        lib_sizes: Raw library sizes (column totals).
        method: Method used ("TMM", "upperquartile" or "none").
        ref_column: Index of the reference sample (TMM only).
        n_excluded: Per sample, genes left out of the trimmed mean because a
            log-ratio was undefined (zero count in the sample or reference).
    """
    sample_ids: Tuple[str, ...]
    factors: np.ndarray
    lib_sizes: np.ndarray
    method: str = "TMM"
    ref_column: Optional[int] = None
    n_excluded: Optional[np.ndarray] = field(default=None)

    def __post_init__(self):
        factors = np.array(self.factors, dtype=float)
        lib_sizes = np.array(self.lib_sizes, dtype=float)
        if factors.shape != (len(self.sample_ids),) or lib_sizes.shape != factors.shape:
            raise InvalidInputError("Normalization factors must have one value per sample")
        if not np.all(np.isfinite(factors)) or np.any(factors <= 0):
            raise InvalidInputError(f"Normalization factors must be positive, got {factors}")
        factors.setflags(write=False)
        lib_sizes.setflags(write=False)
        object.__setattr__(self, "factors", factors)
        object.__setattr__(self, "lib_sizes", lib_sizes)
        if self.n_excluded is not None:
            excl = np.array(self.n_excluded, dtype=int)
            excl.setflags(write=False)
            object.__setattr__(self, "n_excluded", excl)

    @property
    def effective_lib_sizes(self) -> np.ndarray:
        """Library size times normalization factor."""
        return self.lib_sizes * self.factors

    def as_dict(self):
        return dict(zip(self.sample_ids, self.factors.tolist()))


def _calc_factor_quantile(values: np.ndarray, lib_size: np.ndarray, p: float = 0.75) -> np.ndarray:
    return np.quantile(values, p, axis=0) / lib_size


def _calc_factor_tmm(
    obs: np.ndarray,
    ref: np.ndarray,
    lib_obs: float,
    lib_ref: float,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    do_weighting: bool = True,
    a_cutoff: float = -1e10,
) -> Tuple[float, int]:
    """TMM factor of one sample against the reference.

    Returns:
        Tuple of (factor, number of genes with an undefined log-ratio).
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        log_obs = np.log2(obs / lib_obs)
        log_ref = np.log2(ref / lib_ref)
        log_r = log_obs - log_ref
        abs_e = (log_obs + log_ref) / 2
        v = (lib_obs - obs) / lib_obs / obs + (lib_ref - ref) / lib_ref / ref

    fin = np.isfinite(log_r) & np.isfinite(abs_e) & (abs_e > a_cutoff)
    n_excluded = int(obs.size - fin.sum())
    log_r, abs_e, v = log_r[fin], abs_e[fin], v[fin]

    if log_r.size == 0 or np.max(np.abs(log_r)) < 1e-6:
        return 1.0, n_excluded

    n = log_r.size
    lo_l = np.floor(n * logratio_trim) + 1
    hi_l = n + 1 - lo_l
    lo_s = np.floor(n * sum_trim) + 1
    hi_s = n + 1 - lo_s

    rank_r = rankdata(log_r)
    rank_e = rankdata(abs_e)
    keep = (rank_r >= lo_l) & (rank_r <= hi_l) & (rank_e >= lo_s) & (rank_e <= hi_s)
    if not np.any(keep):
        return 1.0, n_excluded

    if do_weighting:
        f = np.sum(log_r[keep] / v[keep]) / np.sum(1 / v[keep])
    else:
        f = np.mean(log_r[keep])
    if not np.isfinite(f):
        f = 0.0
    return float(2 ** f), n_excluded


def calc_norm_factors(
    counts: CountMatrix,
    method: str = "TMM",
    ref_column: Optional[int] = None,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    do_weighting: bool = True,
    a_cutoff: float = -1e10,
    p: float = 0.75,
) -> NormalizationFactors:
    """
    Compute per-sample normalization factors correcting composition bias.

    Each sample is compared to a reference sample through per-gene
    log-ratios; the trimmed (and by default precision-weighted) mean of the
    central log-ratios gives the sample's factor. Genes with a zero count in
    either sample are left out of that sample's mean and counted in
    ``n_excluded``. Factors are finally scaled to a geometric mean of 1.

    Args:
        counts: Input count matrix with at least two samples.
        method: "TMM", "upperquartile", or "none".
        ref_column: Reference column (0-indexed, or None for auto: the
            sample whose upper-quartile factor is closest to the mean).
        logratio_trim: Fraction trimmed from each end of the log-ratios.
        sum_trim: Fraction trimmed from each end of the average intensities.
        do_weighting: Whether to use inverse-variance weights (TMM only).
        a_cutoff: Lower cutoff on average log-intensity (TMM only).
        p: Quantile for upperquartile normalization.

    Returns:
        NormalizationFactors.

    Raises:
        InvalidInputError: Fewer than two samples, a sample with zero total
            counts, or an unknown method.

    Example:
        >>> import dexcompare.edger as edger
        >>> norm = edger.calc_norm_factors(counts)
        >>> norm.effective_lib_sizes
    """
    check_counts(counts)
    if counts.n_samples < 2:
        raise InvalidInputError(
            f"Normalization needs at least 2 samples, got {counts.n_samples}"
        )
    x = np.asarray(counts.values, dtype=float)
    lib_size = x.sum(axis=0)
    empty = [s for s, ls in zip(counts.sample_ids, lib_size) if ls <= 0]
    if empty:
        raise InvalidInputError(f"Samples with zero total counts: {empty}")

    method = method.lower()
    n_excluded = np.zeros(counts.n_samples, dtype=int)

    if method == "none":
        f = np.ones(counts.n_samples)
    elif method == "upperquartile":
        f = _calc_factor_quantile(x, lib_size, p=p)
        if np.any(f <= 0):
            raise InvalidInputError(
                f"The {p} quantile is zero in some samples; upperquartile normalization is undefined"
            )
    elif method == "tmm":
        if ref_column is None:
            f75 = _calc_factor_quantile(x, lib_size, p=0.75)
            if np.median(f75) < 1e-20:
                ref_column = int(np.argmax(np.sqrt(x).sum(axis=0)))
            else:
                ref_column = int(np.argmin(np.abs(f75 - f75.mean())))
        elif not 0 <= ref_column < counts.n_samples:
            raise InvalidInputError(f"ref_column {ref_column} out of range")

        f = np.empty(counts.n_samples)
        for j in range(counts.n_samples):
            f[j], n_excluded[j] = _calc_factor_tmm(
                x[:, j], x[:, ref_column], lib_size[j], lib_size[ref_column],
                logratio_trim=logratio_trim, sum_trim=sum_trim,
                do_weighting=do_weighting, a_cutoff=a_cutoff,
            )
        logger.debug(
            "TMM reference column %d; genes excluded per sample: %s",
            ref_column, n_excluded.tolist(),
        )
    else:
        raise InvalidInputError(f"Unknown normalization method {method!r}")

    # Factors multiply to one
    f = f / np.exp(np.mean(np.log(f)))

    return NormalizationFactors(
        sample_ids=counts.sample_ids,
        factors=f,
        lib_sizes=lib_size,
        method="TMM" if method == "tmm" else method,
        ref_column=ref_column if method == "tmm" else None,
        n_excluded=n_excluded,
    )
