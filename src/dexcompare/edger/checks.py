"""
Input validation utilities for the count-based engine.

Provides centralized checks for SummarizedExperiment-like inputs, count
matrices, groupings and the value objects passed between stages.
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Any

from ..errors import InvalidInputError

if TYPE_CHECKING:
    from ..countmatrix import CountMatrix


def check_se(se: Any, name: str = "se") -> None:
    """Check that input is a SummarizedExperiment-like object.

    Accepts any object with assays and assay_names attributes
    (duck typing for SE, RSE, SCE).
    """
    required_attrs = ["assays", "assay_names"]
    for attr in required_attrs:
        if not hasattr(se, attr):
            raise TypeError(
                f"Expected `{name}` to be a SummarizedExperiment-like object "
                f"(SE, RSE or SCE), "
                f"got {type(se).__name__} which lacks '{attr}'"
            )


def check_assay_exists(se: Any, assay: str) -> None:
    """Check that the specified assay exists in the SummarizedExperiment."""
    if assay not in se.assay_names:
        available = list(se.assay_names)
        raise KeyError(
            f"Assay '{assay}' not found. Available assays: {available}"
        )


def check_counts(counts: Any, name: str = "counts") -> None:
    """Check that input is a CountMatrix."""
    from ..countmatrix import CountMatrix
    if not isinstance(counts, CountMatrix):
        raise TypeError(
            f"Expected `{name}` to be a CountMatrix, got {type(counts).__name__}"
        )


def check_groups(groups: Any, counts: "CountMatrix") -> None:
    """Check that groups is a SampleGroup covering every column of counts."""
    from ..countmatrix import SampleGroup
    if not isinstance(groups, SampleGroup):
        raise TypeError(
            f"Expected `groups` to be a SampleGroup, got {type(groups).__name__}"
        )
    groups.validate_against(counts)


def check_norm_factors(norm: Any, counts: "CountMatrix") -> None:
    """Check that normalization factors belong to the samples of counts."""
    from .calc_norm_factors import NormalizationFactors
    if not isinstance(norm, NormalizationFactors):
        raise TypeError(
            f"Expected NormalizationFactors, got {type(norm).__name__}"
        )
    if tuple(norm.sample_ids) != tuple(counts.sample_ids):
        raise InvalidInputError(
            "Normalization factors were computed for different samples than the count matrix"
        )


def check_dispersion(dispersion: Any, counts: "CountMatrix") -> None:
    """Check that a DispersionEstimate matches the genes of counts."""
    from .estimate_disp import DispersionEstimate
    if not isinstance(dispersion, DispersionEstimate):
        raise TypeError(
            f"Expected a DispersionEstimate, got {type(dispersion).__name__}"
        )
    if tuple(dispersion.gene_ids) != tuple(counts.gene_ids):
        raise InvalidInputError(
            "Dispersion estimate was computed for different genes than the count matrix"
        )
