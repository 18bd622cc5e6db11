"""
Fit genewise weighted linear models.

This module provides the LimmaModel dataclass for storing fit results,
the model_matrix helper for two-group designs, and the lm_fit function.
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Any, Optional, Tuple, TypeVar, Union
from dataclasses import dataclass
import logging
import numpy as np
import pandas as pd

from ..errors import RankDeficiencyError
from .checks import check_design, check_voom_result

if TYPE_CHECKING:
    from ..countmatrix import CountMatrix, SampleGroup
    from ..qvalue import QValueResult
    from ..results import TestResult
    from .voom import VoomResult

logger = logging.getLogger(__name__)

Model = TypeVar("Model", bound="LimmaModel")


@dataclass(frozen=True, eq=False)
class EBayesFit:
    """Moderated statistics for every coefficient.

    Attributes:
        s2_prior: Prior variance.
        df_prior: Prior degrees of freedom (may be infinite).
        s2_post: Posterior variance per gene.
        df_total: Total degrees of freedom per gene.
        t: Moderated t-statistics (genes x coefficients).
        p_value: Two-sided p-values (genes x coefficients).
    """
    s2_prior: float
    df_prior: float
    s2_post: np.ndarray
    df_total: np.ndarray
    t: np.ndarray
    p_value: np.ndarray


@dataclass(frozen=True, eq=False)
class LimmaModel:
    """Container for genewise linear model fit results.

    Use with e_bayes(), top_table() and to_result() for downstream analysis.

    Attributes:
        gene_ids: Gene identifiers (rows of the response).
        sample_ids: Sample identifiers (columns of the response).
        design: Design matrix used for fitting.
        coefficients: Estimated coefficients (genes x coefficients).
        stdev_unscaled: Unscaled standard errors (genes x coefficients).
        sigma: Residual standard deviation per gene.
        df_residual: Residual degrees of freedom per gene.
        amean: Average log-expression per gene.
        comparison: Group levels of the default coefficient, numerator first.
        ebayes: Moderated statistics, set by e_bayes().
    """
    gene_ids: Tuple[str, ...]
    sample_ids: Tuple[str, ...]
    design: pd.DataFrame
    coefficients: np.ndarray
    stdev_unscaled: np.ndarray
    sigma: np.ndarray
    df_residual: np.ndarray
    amean: np.ndarray
    comparison: Tuple[str, str] = ("A", "B")
    ebayes: Optional[EBayesFit] = None

    @property
    def coef_names(self) -> Tuple[str, ...]:
        return tuple(str(c) for c in self.design.columns)

    def coef_index(self, coef: Optional[Union[int, str]] = None) -> int:
        """Column index of ``coef`` (name or 0-based index); default is the last column."""
        if coef is None:
            return len(self.coef_names) - 1
        if isinstance(coef, str):
            if coef not in self.coef_names:
                raise KeyError(f"Coefficient '{coef}' not found. Available: {list(self.coef_names)}")
            return self.coef_names.index(coef)
        if not 0 <= coef < len(self.coef_names):
            raise IndexError(f"Coefficient index {coef} out of range")
        return int(coef)

    def e_bayes(self: Model) -> Model:
        """
        Apply empirical Bayes moderation.

        Convenience method that delegates to the e_bayes function.

        Returns:
            LimmaModel with ebayes slot set.
        """
        from .e_bayes import e_bayes as _e_bayes
        return _e_bayes(self)

    def to_result(self, coef: Optional[Union[int, str]] = None) -> "TestResult":
        """
        Per-gene moderated t results for one coefficient.

        Runs e_bayes() first if the model has not been moderated.
        """
        from ..results import TestResult

        model = self if self.ebayes is not None else self.e_bayes()
        j = model.coef_index(coef)
        return TestResult(
            engine="moderated_t",
            gene_ids=model.gene_ids,
            log_fc=model.coefficients[:, j],
            p_value=model.ebayes.p_value[:, j],
            statistic=model.ebayes.t[:, j],
            ave_expr=model.amean,
            comparison=model.comparison,
        )

    def top_table(
        self,
        coef: Optional[Union[int, str]] = None,
        n: Optional[int] = None,
        sort_by: str = "p_value",
        qvalues: Optional["QValueResult"] = None,
        **kwargs: Any
    ) -> pd.DataFrame:
        """
        Extract top-ranked genes.

        Convenience method that delegates to the top_table function.

        Returns:
            pd.DataFrame with DE results.
        """
        from .top_table import top_table as _top_table
        return _top_table(self, coef=coef, n=n, sort_by=sort_by, qvalues=qvalues, **kwargs)


def model_matrix(groups: "SampleGroup", counts: "CountMatrix") -> pd.DataFrame:
    """
    Two-group design: an intercept plus an indicator of ``groups.group_a``.

    The indicator coefficient is the group A minus group B difference.

    Example:
        >>> model_matrix(groups, counts)
                 Intercept  Treatment
        sample1        1.0        1.0
        sample2        1.0        0.0
    """
    is_a = groups.indicator(counts)
    return pd.DataFrame(
        {"Intercept": np.ones(counts.n_samples), str(groups.group_a): is_a.astype(float)},
        index=pd.Index(list(counts.sample_ids), name="sample"),
    )


def check_full_rank(design: np.ndarray) -> None:
    """Raise RankDeficiencyError unless the design has full column rank."""
    n_coef = design.shape[1]
    rank = int(np.linalg.matrix_rank(design))
    if rank < n_coef or design.shape[0] <= n_coef:
        raise RankDeficiencyError(
            f"Design matrix is singular for the declared groups "
            f"(rank {rank}, {n_coef} coefficients, {design.shape[0]} samples)",
            rank=rank,
            n_coef=n_coef,
        )


def _wls(
    y: np.ndarray,
    X: np.ndarray,
    weights: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Genewise weighted least squares for a shared design.

    Returns:
        Tuple of (coefficients, stdev_unscaled, sigma, df_residual).
    """
    n_genes, n_samples = y.shape
    n_coef = X.shape[1]
    if weights is None:
        weights = np.ones_like(y)

    xtwx = np.einsum("si,gs,sj->gij", X, weights, X)
    xtwy = np.einsum("si,gs,gs->gi", X, weights, y)
    try:
        coef = np.linalg.solve(xtwx, xtwy[..., None])[..., 0]
        cov = np.linalg.inv(xtwx)
    except np.linalg.LinAlgError as err:
        raise RankDeficiencyError("Weighted design is singular for at least one gene") from err

    fitted = coef @ X.T
    rss = np.sum(weights * (y - fitted) ** 2, axis=1)
    df_residual = np.full(n_genes, float(n_samples - n_coef))
    sigma = np.sqrt(rss / df_residual)
    stdev_unscaled = np.sqrt(np.diagonal(cov, axis1=1, axis2=2))
    return coef, stdev_unscaled, sigma, df_residual


def lm_fit(
    voom_result: "VoomResult",
    design: Optional[pd.DataFrame] = None,
    use_weights: bool = True,
) -> LimmaModel:
    """
    Fit a weighted linear model to every gene.

    Args:
        voom_result: Output of voom(): log-expression values and precision weights.
        design: Design matrix (samples x coefficients) as pandas DataFrame.
            Default: the design voom() was run with.
        use_weights: Use the voom precision weights. Default: True.

    Returns:
        LimmaModel: Container with fitted model.

    Raises:
        TypeError: If inputs are invalid.
        RankDeficiencyError: If the design is singular.

    Example:
        >>> import dexcompare.limma as limma
        >>> v = limma.voom(counts, groups, norm)
        >>> model = limma.lm_fit(v)
        >>> results = model.e_bayes().top_table()
    """
    check_voom_result(voom_result)
    if design is None:
        design = voom_result.design
    design = check_design(design, voom_result.sample_ids)
    X = design.to_numpy(dtype=float)
    check_full_rank(X)

    y = np.asarray(voom_result.log_expr, dtype=float)
    w = np.asarray(voom_result.weights, dtype=float) if use_weights else None
    coef, stdev_unscaled, sigma, df_residual = _wls(y, X, w)
    logger.debug("Fitted %d genes x %d coefficients", y.shape[0], X.shape[1])

    return LimmaModel(
        gene_ids=tuple(voom_result.gene_ids),
        sample_ids=tuple(voom_result.sample_ids),
        design=design,
        coefficients=coef,
        stdev_unscaled=stdev_unscaled,
        sigma=sigma,
        df_residual=df_residual,
        amean=y.mean(axis=1),
        comparison=voom_result.comparison,
    )
