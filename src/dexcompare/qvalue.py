"""
False discovery rate estimation with q-values.

Implements Storey's estimator of the proportion of true null hypotheses
(pi0) from the upper tail of the p-value distribution, and the q-value of
each test: the smallest FDR at which that test would be called significant.

    >>> from dexcompare.qvalue import qvalue
    >>> res = qvalue(p_values)
    >>> res.pi0, res.q_values[:5]
    >>> res.significant(0.05).sum()
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union
import logging
import numpy as np
from scipy.interpolate import make_smoothing_spline
from scipy.optimize import brentq

from .errors import InvalidInputError

logger = logging.getLogger(__name__)

DEFAULT_LAMBDAS = np.round(np.arange(0.05, 0.951, 0.05), 2)


@dataclass(frozen=True, eq=False)
class QValueResult:
    """q-values of one p-value vector.

    Attributes:
        pi0: Estimated proportion of true nulls, in (0, 1].
        q_values: One q-value per input p-value, same order.
        p_values: The input p-values.
        lambdas: Thresholds at which pi0 was evaluated.
        pi0_lambda: Raw pi0 estimate at each threshold.
        pi0_method: "smoother", "bootstrap", "fixed" or "user".
    """
    pi0: float
    q_values: np.ndarray
    p_values: np.ndarray
    lambdas: np.ndarray
    pi0_lambda: np.ndarray
    pi0_method: str = "smoother"

    def __post_init__(self):
        for name in ("q_values", "p_values", "lambdas", "pi0_lambda"):
            arr = np.array(getattr(self, name), dtype=float)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    def significant(self, threshold: float) -> np.ndarray:
        """Boolean mask of tests with q-value at or below ``threshold``."""
        return self.q_values <= threshold


def _validate_p(p: Union[Sequence[float], np.ndarray]) -> np.ndarray:
    p = np.asarray(p, dtype=float).ravel()
    if p.size == 0:
        raise InvalidInputError("At least one p-value is required")
    if not np.all(np.isfinite(p)):
        raise InvalidInputError("p-values contain missing or non-finite values")
    if np.any((p < 0) | (p > 1)):
        raise InvalidInputError("p-values must lie in [0, 1]")
    return p


def _smoother_df(x: np.ndarray, lam: float) -> float:
    """Trace of the smoother matrix, i.e. the equivalent degrees of freedom."""
    eye = np.eye(x.size)
    return float(sum(make_smoothing_spline(x, eye[i], lam=lam)(x[i]) for i in range(x.size)))


def smooth_spline(x: np.ndarray, y: np.ndarray, df: float = 3.0, max_iter: int = 200) -> np.ndarray:
    """
    Fitted values of a cubic smoothing spline with ``df`` equivalent degrees of freedom.

    The penalty ``lam`` of :func:`scipy.interpolate.make_smoothing_spline` is
    solved on the log scale so that the trace of the smoother matrix equals
    ``df``. Fewer than 5 knots, or ``df <= 2``, give the least-squares line.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    n = x.size
    if n < 3 or df >= n:
        return y.copy()
    if df <= 2 or n < 5:
        coef = np.polyfit(x, y, 1)
        return np.polyval(coef, x)

    log_lam = brentq(
        lambda g: _smoother_df(x, np.exp(g)) - df, -20.0, 15.0, maxiter=max_iter
    )
    return make_smoothing_spline(x, y, lam=np.exp(log_lam))(x)


def pi0_est(
    p: Union[Sequence[float], np.ndarray],
    lambdas: Optional[Sequence[float]] = None,
    pi0_method: str = "smoother",
    smooth_df: float = 3.0,
) -> Tuple[float, np.ndarray, np.ndarray]:
    """
    Estimate the proportion of true null p-values.

    For each threshold ``lam`` the raw estimate is
    ``#{p >= lam} / (m * (1 - lam))``. With several thresholds the curve is
    smoothed by a cubic spline (``"smoother"``) and read at the largest
    threshold, or the threshold minimising Storey's mean-squared-error
    criterion is chosen (``"bootstrap"``). A single threshold returns its raw
    estimate.

    Args:
        p: p-values.
        lambdas: Thresholds in [0, 1). Default: 0.05, 0.10, ..., 0.95.
        pi0_method: "smoother" or "bootstrap".
        smooth_df: Degrees of freedom of the smoothing spline.

    Returns:
        Tuple of (pi0 in [1/m, 1], lambdas, raw pi0 per lambda).
    """
    p = _validate_p(p)
    m = p.size
    lam = np.array(DEFAULT_LAMBDAS if lambdas is None else lambdas, dtype=float).ravel()
    lam = np.unique(lam)
    if lam.size == 0 or np.any((lam < 0) | (lam >= 1)):
        raise InvalidInputError("lambdas must lie in [0, 1)")

    raw = np.array([np.mean(p >= l) / (1 - l) for l in lam])

    if lam.size == 1:
        pi0 = float(raw[0])
    elif lam.size < 4:
        raise InvalidInputError("At least 4 lambda values are required to estimate pi0")
    elif pi0_method == "smoother":
        fitted = smooth_spline(lam, raw, df=smooth_df)
        pi0 = float(fitted[-1])
    elif pi0_method == "bootstrap":
        min_pi0 = np.quantile(raw, 0.1)
        w = np.array([np.sum(p >= l) for l in lam])
        mse = (w / (m ** 2 * (1 - lam) ** 2)) * (1 - w / m) + (raw - min_pi0) ** 2
        pi0 = float(raw[mse == mse.min()].min())
    else:
        raise InvalidInputError(f"Unknown pi0_method {pi0_method!r}")

    # At least one of the m tests is taken to be null
    floor = 1.0 / m
    if pi0 < floor:
        logger.warning(
            "Estimated pi0 %.4g is below 1/m for %d p-value(s); using %.4g. "
            "Too few p-values to estimate pi0 reliably.", pi0, m, floor,
        )
    return float(min(max(pi0, floor), 1.0)), lam, raw


def qvalue(
    p: Union[Sequence[float], np.ndarray],
    lambdas: Optional[Sequence[float]] = None,
    pi0_method: str = "smoother",
    smooth_df: float = 3.0,
    pi0: Optional[float] = None,
) -> QValueResult:
    """
    Compute q-values and the proportion of true nulls.

    p-values are ranked ascending; the q-value at rank ``i`` is the
    cumulative minimum of ``pi0 * p * m / i`` taken from the largest
    p-value downward, capped at ``pi0``. q-values are therefore
    non-decreasing in p. When pi0 is 1 they reduce to Benjamini-Hochberg
    adjusted p-values.

    Args:
        p: p-values from one test engine.
        lambdas: Thresholds for :func:`pi0_est`.
        pi0_method: "smoother" or "bootstrap".
        smooth_df: Degrees of freedom of the smoothing spline.
        pi0: Use this pi0 instead of estimating it.

    Returns:
        QValueResult.

    Raises:
        InvalidInputError: Empty, missing or out-of-range p-values.
    """
    p = _validate_p(p)
    m = p.size
    if pi0 is None:
        pi0, lam, raw = pi0_est(p, lambdas=lambdas, pi0_method=pi0_method, smooth_df=smooth_df)
        method = "fixed" if lam.size == 1 else pi0_method
    else:
        if not 0 < pi0 <= 1:
            raise InvalidInputError(f"pi0 must lie in (0, 1], got {pi0}")
        lam, raw, method = np.array([]), np.array([]), "user"

    order = np.argsort(-p, kind="mergesort")
    ranks = np.arange(m, 0, -1)
    q_sorted = np.minimum(1.0, np.minimum.accumulate(p[order] * m / ranks))
    q = np.empty(m)
    q[order] = pi0 * q_sorted

    return QValueResult(
        pi0=float(pi0),
        q_values=q,
        p_values=p,
        lambdas=lam,
        pi0_lambda=raw,
        pi0_method=method,
    )
