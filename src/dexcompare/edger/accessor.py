"""
EdgeR-style accessor for CountMatrix.

Usage:
    import dexcompare.edger  # Triggers accessor registration

    norm = counts.edger.calc_norm_factors()
    disp = counts.edger.estimate_disp(groups, norm)
    res = counts.edger.exact_test(groups, disp, norm)

Every method forwards to the functional API with the accessor's matrix as
first argument; nothing is stored on the matrix itself.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional
import numpy as np
import pandas as pd

from ..extensions import register_counts_accessor
from .calc_norm_factors import NormalizationFactors, calc_norm_factors
from .cpm import cpm
from .estimate_disp import DispersionEstimate, estimate_disp
from .exact_test import exact_test
from .filter_by_expr import filter_by_expr

if TYPE_CHECKING:
    from ..countmatrix import CountMatrix, SampleGroup
    from ..results import TestResult


@register_counts_accessor("edger")
class EdgeRAccessor:
    """
    Accessor providing the count-based engine on a CountMatrix.

    Attributes:
        _counts: The parent CountMatrix.
    """

    def __init__(self, counts: CountMatrix) -> None:
        self._counts = counts

    def calc_norm_factors(self, method: str = "TMM", **kwargs) -> NormalizationFactors:
        """See :func:`dexcompare.edger.calc_norm_factors`."""
        return calc_norm_factors(self._counts, method=method, **kwargs)

    def cpm(
        self,
        norm: Optional[NormalizationFactors] = None,
        log: bool = False,
        prior_count: float = 2.0,
    ) -> pd.DataFrame:
        """See :func:`dexcompare.edger.cpm`."""
        return cpm(self._counts, norm=norm, log=log, prior_count=prior_count)

    def filter_by_expr(self, groups: SampleGroup, min_count: float = 0.0) -> np.ndarray:
        """Boolean keep-mask; subset with ``counts.subset_genes(mask)``."""
        return filter_by_expr(self._counts, groups, min_count=min_count)

    def estimate_disp(
        self,
        groups: SampleGroup,
        norm: Optional[NormalizationFactors] = None,
        prior_n: float = 10.0,
        **kwargs
    ) -> DispersionEstimate:
        """See :func:`dexcompare.edger.estimate_disp`."""
        return estimate_disp(self._counts, groups, norm=norm, prior_n=prior_n, **kwargs)

    def exact_test(
        self,
        groups: SampleGroup,
        dispersion: Optional[DispersionEstimate] = None,
        norm: Optional[NormalizationFactors] = None,
        **kwargs
    ) -> TestResult:
        """
        Run the exact test, estimating normalization and dispersion if missing.

        Example:
            >>> res = counts.edger.exact_test(groups)
        """
        if norm is None:
            norm = calc_norm_factors(self._counts)
        if dispersion is None:
            dispersion = estimate_disp(self._counts, groups, norm=norm)
        return exact_test(self._counts, groups, dispersion, norm=norm, **kwargs)


def activate():
    """
    Explicit hook called on package import.

    Registration happens via the decorator at class definition; this
    function documents that importing the subpackage is what enables it.
    """
    pass
