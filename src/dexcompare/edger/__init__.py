"""Count-based engine: TMM normalization, NB dispersion and the exact test.

Functional API:
    >>> import dexcompare.edger as edger
    >>> norm = edger.calc_norm_factors(counts, method="TMM")
    >>> mask = edger.filter_by_expr(counts, groups)
    >>> disp = edger.estimate_disp(counts, groups, norm, prior_n=10)
    >>> res = edger.exact_test(counts, groups, disp, norm)
    >>> table = edger.top_tags(res, n=20)

Accessor API:
    >>> import dexcompare.edger
    >>> res = counts.edger.exact_test(groups)
"""

# Functional API exports
from .calc_norm_factors import calc_norm_factors, NormalizationFactors
from .cpm import cpm
from .filter_by_expr import filter_by_expr
from .estimate_disp import (
    estimate_disp,
    estimate_common_disp,
    estimate_tagwise_disp,
    compare_prior_n,
    dispersion_summary,
    DispersionEstimate,
)
from .exact_test import exact_test, exact_test_double_tail
from .top_tags import top_tags

# Register EdgeR accessor on CountMatrix
from .accessor import activate, EdgeRAccessor
activate()

__all__ = [
    # Functional API
    "calc_norm_factors",
    "cpm",
    "filter_by_expr",
    "estimate_disp",
    "estimate_common_disp",
    "estimate_tagwise_disp",
    "compare_prior_n",
    "dispersion_summary",
    "exact_test",
    "exact_test_double_tail",
    "top_tags",
    # Value classes
    "NormalizationFactors",
    "DispersionEstimate",
    # Accessor
    "EdgeRAccessor",
]
