"""
Filter genes that are unexpressed in a group.

This module provides a functional interface computing a boolean mask; it
does not modify the CountMatrix.
"""

from __future__ import annotations
import logging
import numpy as np

from ..countmatrix import CountMatrix, SampleGroup
from .checks import check_counts, check_groups

logger = logging.getLogger(__name__)


def filter_by_expr(
    counts: CountMatrix,
    groups: SampleGroup,
    min_count: float = 0.0,
) -> np.ndarray:
    """
    Compute a mask of genes whose total exceeds ``min_count`` in every group.

    With the default ``min_count=0`` this keeps exactly the genes with a
    nonzero total abundance in each group.

    Args:
        counts: Input count matrix.
        groups: Two-level sample grouping.
        min_count: Group totals must be strictly above this. Default: 0.

    Returns:
        Boolean numpy array mask (True = keep gene).

    Example:
        >>> import dexcompare.edger as edger
        >>> mask = edger.filter_by_expr(counts, groups)
        >>> counts = counts.subset_genes(mask)
    """
    check_counts(counts)
    check_groups(groups, counts)
    is_a = groups.indicator(counts)
    y = np.asarray(counts.values, dtype=float)
    keep = (y[:, is_a].sum(axis=1) > min_count) & (y[:, ~is_a].sum(axis=1) > min_count)
    logger.debug("filter_by_expr keeps %d of %d genes", int(keep.sum()), keep.size)
    return keep
