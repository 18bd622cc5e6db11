"""
Apply empirical Bayes moderation to a fitted linear model.

This module provides a functional interface to compute moderated statistics.
"""

from __future__ import annotations
from dataclasses import replace
import logging
import numpy as np
from scipy import stats

from .checks import check_limma_model
from .lm_fit import EBayesFit, LimmaModel
from .squeeze_var import squeeze_var

logger = logging.getLogger(__name__)


def e_bayes(model: LimmaModel) -> LimmaModel:
    """
    Compute empirical Bayes moderated t-statistics.

    Residual variances are shrunk toward a common prior (see
    :func:`squeeze_var`); the moderated t uses the posterior variance and
    ``df_residual + df_prior`` degrees of freedom, capped at the pooled
    residual degrees of freedom of all genes.

    Args:
        model: LimmaModel from lm_fit().

    Returns:
        LimmaModel: With ebayes slot set.

    Raises:
        TypeError: If model is not a LimmaModel.
        InvalidInputError: If every residual variance is zero.

    Example:
        >>> import dexcompare.limma as limma
        >>> model = limma.lm_fit(v)
        >>> model_eb = limma.e_bayes(model)
        >>> results = limma.top_table(model_eb)
    """
    check_limma_model(model)

    df_residual = np.asarray(model.df_residual, dtype=float)
    s2_post, s2_prior, df_prior = squeeze_var(np.asarray(model.sigma) ** 2, df_residual)

    df_pooled = float(df_residual.sum())
    df_total = np.minimum(df_residual + df_prior, df_pooled)

    t = model.coefficients / (model.stdev_unscaled * np.sqrt(s2_post)[:, None])
    p_value = 2 * stats.t.sf(np.abs(t), df_total[:, None])

    logger.debug("Moderated t: df_prior=%.4g, s2_prior=%.4g", df_prior, s2_prior)
    return replace(
        model,
        ebayes=EBayesFit(
            s2_prior=s2_prior,
            df_prior=df_prior,
            s2_post=s2_post,
            df_total=df_total,
            t=t,
            p_value=p_value,
        ),
    )
