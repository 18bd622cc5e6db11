"""
Exception and warning types raised by dexcompare.

Every statistical stage raises synchronously from the place that detects the
problem. Nothing downstream tries to recover from these: a bad dispersion or
weight estimate would corrupt every p-value computed after it.
"""

from __future__ import annotations

from typing import Optional


class DexCompareError(Exception):
    """Base class for all dexcompare errors."""


class InvalidInputError(DexCompareError, ValueError):
    """Malformed or under-determined input.

    Examples: fewer than two samples, missing values, a group with a single
    replicate, a library with zero total counts, or variances that are all
    zero.
    """


class NumericalDivergenceError(DexCompareError, ArithmeticError):
    """An iterative estimator did not converge within its iteration cap."""

    def __init__(self, message: str, iterations: Optional[int] = None) -> None:
        super().__init__(message)
        self.iterations = iterations


class RankDeficiencyError(DexCompareError, ValueError):
    """The design matrix is singular for the declared contrast."""

    def __init__(self, message: str, rank: Optional[int] = None, n_coef: Optional[int] = None) -> None:
        super().__init__(message)
        self.rank = rank
        self.n_coef = n_coef


class ExcludedGenesWarning(UserWarning):
    """Some genes were left out of a statistic (not an error)."""
