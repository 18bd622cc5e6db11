"""
Limma-style accessor for CountMatrix.

Usage:
    import dexcompare.limma  # Triggers accessor registration

    v = counts.limma.voom(groups)
    res = counts.limma.moderated_test(groups)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional
import pandas as pd

from ..extensions import register_counts_accessor
from .lm_fit import LimmaModel, lm_fit
from .voom import VoomResult, voom

if TYPE_CHECKING:
    from ..countmatrix import CountMatrix, SampleGroup
    from ..edger.calc_norm_factors import NormalizationFactors
    from ..results import TestResult


@register_counts_accessor("limma")
class LimmaAccessor:
    """
    Accessor providing the linear-model engine on a CountMatrix.

    Attributes:
        _counts: The parent CountMatrix.
    """

    def __init__(self, counts: CountMatrix) -> None:
        self._counts = counts

    def voom(
        self,
        groups: SampleGroup,
        norm: Optional[NormalizationFactors] = None,
        design: Optional[pd.DataFrame] = None,
        span: float = 0.5,
    ) -> VoomResult:
        """See :func:`dexcompare.limma.voom`."""
        return voom(self._counts, groups, norm=norm, design=design, span=span)

    def lm_fit(
        self,
        groups: SampleGroup,
        norm: Optional[NormalizationFactors] = None,
        design: Optional[pd.DataFrame] = None,
    ) -> LimmaModel:
        """voom followed by lm_fit."""
        return lm_fit(self.voom(groups, norm=norm, design=design))

    def moderated_test(
        self,
        groups: SampleGroup,
        norm: Optional[NormalizationFactors] = None,
    ) -> TestResult:
        """
        voom, lm_fit and e_bayes on the default two-group design.

        Example:
            >>> res = counts.limma.moderated_test(groups)
        """
        return self.lm_fit(groups, norm=norm).e_bayes().to_result()


def activate():
    """
    Explicit hook called on package import.

    Registration happens via the decorator at class definition.
    """
    pass
