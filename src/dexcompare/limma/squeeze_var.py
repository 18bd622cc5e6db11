"""
Empirical Bayes moderation of residual variances.

Genewise variances are modelled as scaled chi-square draws around a prior
variance ``s2_prior`` with ``df_prior`` prior degrees of freedom. Both are
estimated by matching the first two moments of the log-variances. Posterior
variances are then a weighted average of each gene's own variance and the
prior.
"""

from __future__ import annotations
from typing import Tuple, Union
import logging
import warnings
import numpy as np
from scipy import special

from ..errors import ExcludedGenesWarning, InvalidInputError, NumericalDivergenceError

logger = logging.getLogger(__name__)

ArrayLike = Union[float, np.ndarray]


def shrink_toward(estimate: ArrayLike, pooled: ArrayLike, weight: ArrayLike) -> ArrayLike:
    """
    Weighted average of a per-gene estimate and a pooled estimate.

    Args:
        estimate: Per-gene estimate(s).
        pooled: Pooled (prior) estimate.
        weight: Weight on ``pooled``, in [0, 1]. 0 returns ``estimate``,
            1 returns ``pooled``.

    Returns:
        ``weight * pooled + (1 - weight) * estimate``.
    """
    weight = np.asarray(weight, dtype=float)
    if np.any((weight < 0) | (weight > 1)):
        raise InvalidInputError("Shrinkage weight must lie in [0, 1]")
    return weight * pooled + (1 - weight) * np.asarray(estimate, dtype=float)


def trigamma_inverse(x: ArrayLike, tol: float = 1e-8, max_iter: int = 50) -> np.ndarray:
    """Solve ``trigamma(y) = x`` for ``y`` by Newton iteration."""
    x = np.atleast_1d(np.asarray(x, dtype=float))
    if np.any(x <= 0):
        raise InvalidInputError("trigamma_inverse is defined for positive values only")
    y = np.empty_like(x)
    big = x > 1e7
    small = x < 1e-6
    y[big] = 1 / np.sqrt(x[big])
    y[small] = 1 / x[small]
    mid = ~(big | small)
    if not np.any(mid):
        return y

    xm = x[mid]
    ym = 0.5 + 1 / xm
    for _ in range(max_iter):
        tri = special.polygamma(1, ym)
        dif = tri * (1 - tri / xm) / special.polygamma(2, ym)
        ym = ym + dif
        if np.max(-dif / ym) < tol:
            break
    else:
        raise NumericalDivergenceError("trigamma_inverse did not converge", iterations=max_iter)
    y[mid] = ym
    return y


def fit_f_dist(variances: np.ndarray, df: np.ndarray) -> Tuple[float, float]:
    """
    Moment estimates of the scaled-F prior for genewise variances.

    Args:
        variances: Positive residual variances.
        df: Residual degrees of freedom, scalar or per gene.

    Returns:
        Tuple of (s2_prior, df_prior). ``df_prior`` is ``np.inf`` when the
        observed spread is no larger than sampling variation alone.
    """
    variances = np.asarray(variances, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), variances.shape)
    n = variances.size
    if n == 0:
        raise InvalidInputError("No positive variances to fit a prior to")
    if n == 1:
        logger.debug("Single variance; no prior information to borrow")
        return float(variances[0]), 0.0

    z = np.log(variances)
    e = z - special.digamma(df / 2) + np.log(df / 2)
    emean = e.mean()
    evar = np.sum((e - emean) ** 2) / (n - 1) - np.mean(special.polygamma(1, df / 2))
    if evar > 0:
        df_prior = float(2 * trigamma_inverse(evar)[0])
        s2_prior = float(np.exp(emean + special.digamma(df_prior / 2) - np.log(df_prior / 2)))
    else:
        df_prior = np.inf
        s2_prior = float(np.exp(emean))
    logger.debug("Variance prior: s2_prior=%.4g df_prior=%.4g", s2_prior, df_prior)
    return s2_prior, df_prior


def squeeze_var(variances: np.ndarray, df: ArrayLike) -> Tuple[np.ndarray, float, float]:
    """
    Shrink genewise variances toward a common prior.

    Non-positive variances do not inform the prior but are still shrunk.

    Args:
        variances: Residual variances, one per gene.
        df: Residual degrees of freedom, scalar or per gene.

    Returns:
        Tuple of (posterior variances, s2_prior, df_prior).

    Raises:
        InvalidInputError: Every variance is zero, or any is non-finite.

    Example:
        >>> s2_post, s2_prior, df_prior = squeeze_var(sigma ** 2, df_residual)
    """
    variances = np.asarray(variances, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), variances.shape)
    if not np.all(np.isfinite(variances)):
        raise InvalidInputError("Residual variances contain non-finite values")
    ok = (variances > 0) & (df > 0)
    if not np.any(ok):
        raise InvalidInputError("All residual variances are zero; groups carry no variation")
    n_excluded = int((~ok).sum())
    if n_excluded:
        warnings.warn(
            f"{n_excluded} gene(s) with zero residual variance excluded from the variance prior",
            ExcludedGenesWarning,
            stacklevel=2,
        )
        logger.info("%d gene(s) excluded from the variance prior", n_excluded)

    s2_prior, df_prior = fit_f_dist(variances[ok], df[ok])
    if np.isinf(df_prior):
        weight = np.ones_like(variances)
    else:
        weight = df_prior / (df + df_prior)
    s2_post = shrink_toward(variances, s2_prior, weight)
    return s2_post, s2_prior, df_prior
