"""
Shared numerics for the count-based engine.

Quantile-adjusted pseudo-counts and the negative-binomial conditional
log-likelihood used by both dispersion estimation and the exact test.
Dispersion enters these functions as ``delta = phi / (1 + phi)``, which maps
``phi`` in [0, inf) onto [0, 1).
"""

from __future__ import annotations
from typing import List, Tuple, Union
import numpy as np
from scipy import special, stats

ArrayLike = Union[float, np.ndarray]

# Search interval for delta, as in edgeR
DELTA_LOWER = 1e-4
DELTA_UPPER = 100 / 101


def delta_to_phi(delta: ArrayLike) -> ArrayLike:
    return delta / (1 - delta)


def phi_to_delta(phi: ArrayLike) -> ArrayLike:
    return phi / (1 + phi)


def q2qnbinom(
    x: np.ndarray,
    input_mean: np.ndarray,
    output_mean: np.ndarray,
    dispersion: ArrayLike = 0.0,
) -> np.ndarray:
    """Map counts between negative-binomial distributions with different means.

    Each value is carried to the same tail probability of the output
    distribution, averaging a normal and a gamma approximation of the
    negative binomial. All arguments broadcast against each other.
    """
    x, input_mean, output_mean, dispersion = np.broadcast_arrays(
        np.asarray(x, dtype=float),
        np.asarray(input_mean, dtype=float),
        np.asarray(output_mean, dtype=float),
        np.asarray(dispersion, dtype=float),
    )
    eps = 1e-14
    zero = (input_mean < eps) | (output_mean < eps)
    input_mean = np.where(zero, input_mean + 0.25, input_mean)
    output_mean = np.where(zero, output_mean + 0.25, output_mean)

    ri = 1 + dispersion * input_mean
    vi = input_mean * ri
    ro = 1 + dispersion * output_mean
    vo = output_mean * ro

    tiny = np.finfo(float).tiny
    upper = x >= input_mean

    # Tail probabilities on the side of the mean where x lies
    p_norm = np.where(
        upper,
        stats.norm.sf(x, loc=input_mean, scale=np.sqrt(vi)),
        stats.norm.cdf(x, loc=input_mean, scale=np.sqrt(vi)),
    )
    p_gamma = np.where(
        upper,
        stats.gamma.sf(x, a=input_mean / ri, scale=ri),
        stats.gamma.cdf(x, a=input_mean / ri, scale=ri),
    )
    p_norm = np.clip(p_norm, tiny, 1.0)
    p_gamma = np.clip(p_gamma, tiny, 1.0)

    q_norm = np.where(
        upper,
        stats.norm.isf(p_norm, loc=output_mean, scale=np.sqrt(vo)),
        stats.norm.ppf(p_norm, loc=output_mean, scale=np.sqrt(vo)),
    )
    q_gamma = np.where(
        upper,
        stats.gamma.isf(p_gamma, a=output_mean / ro, scale=ro),
        stats.gamma.ppf(p_gamma, a=output_mean / ro, scale=ro),
    )
    return np.maximum((q_norm + q_gamma) / 2, 0.0)


def equalize_lib_sizes(
    values: np.ndarray,
    is_a: np.ndarray,
    lib_size: np.ndarray,
    dispersion: ArrayLike,
) -> Tuple[np.ndarray, float]:
    """Pseudo-counts as if every library had the geometric-mean size.

    Group abundances are estimated per gene as total count over total
    effective library size within the group.

    Args:
        values: Counts, genes x samples.
        is_a: Boolean group indicator over samples.
        lib_size: Effective library sizes (size x normalization factor).
        dispersion: Scalar or per-gene dispersion (phi).

    Returns:
        Tuple of (pseudo-counts, common library size).
    """
    values = np.asarray(values, dtype=float)
    lib_size = np.asarray(lib_size, dtype=float)
    common_lib = float(np.exp(np.mean(np.log(lib_size))))
    disp = np.asarray(dispersion, dtype=float)
    if disp.ndim == 1:
        disp = disp[:, None]

    pseudo = np.empty_like(values)
    for mask in (is_a, ~is_a):
        y = values[:, mask]
        ls = lib_size[mask]
        abundance = y.sum(axis=1, keepdims=True) / ls.sum()
        input_mean = abundance * ls[None, :]
        output_mean = abundance * common_lib
        pseudo[:, mask] = q2qnbinom(y, input_mean, output_mean, disp)
    return pseudo, common_lib


def split_into_groups(values: np.ndarray, is_a: np.ndarray) -> List[np.ndarray]:
    return [values[:, is_a], values[:, ~is_a]]


def cond_log_lik(y: np.ndarray, delta: ArrayLike) -> np.ndarray:
    """Conditional log-likelihood of one group's counts given their total.

    Args:
        y: Counts of a single group, genes x samples.
        delta: Scalar or per-gene delta.

    Returns:
        Per-gene log-likelihood (terms constant in delta omitted).
    """
    delta = np.asarray(delta, dtype=float)
    r = 1.0 / delta - 1.0
    if r.ndim == 1:
        r = r[:, None]
        r_row = r[:, 0]
    else:
        r_row = r
    n = y.shape[1]
    t = y.sum(axis=1)
    return (
        special.gammaln(y + r).sum(axis=1)
        + special.gammaln(n * r_row)
        - special.gammaln(t + n * r_row)
        - n * special.gammaln(r_row)
    )


def cond_log_lik_der_delta(y: np.ndarray, delta: ArrayLike) -> np.ndarray:
    """First derivative of :func:`cond_log_lik` with respect to delta."""
    delta = np.asarray(delta, dtype=float)
    r = 1.0 / delta - 1.0
    if r.ndim == 1:
        r = r[:, None]
        r_row = r[:, 0]
    else:
        r_row = r
    n = y.shape[1]
    t = y.sum(axis=1)
    d_r = (
        special.digamma(y + r).sum(axis=1)
        + n * special.digamma(n * r_row)
        - n * special.digamma(t + n * r_row)
        - n * special.digamma(r_row)
    )
    return -d_r / delta ** 2


def sum_cond_log_lik(groups: List[np.ndarray], delta: ArrayLike) -> np.ndarray:
    """Per-gene conditional log-likelihood summed over groups."""
    return sum(cond_log_lik(y, delta) for y in groups)
