"""
Input validation utilities for the linear-model engine.

Provides centralized checks for design matrices, voom output and LimmaModel
inputs.
"""

from __future__ import annotations
from typing import Any, Sequence
import pandas as pd

from ..errors import InvalidInputError


def check_design(design: Any, sample_ids: Sequence[str]) -> pd.DataFrame:
    """Check that design is a DataFrame with one row per sample.

    Returns the design with rows in ``sample_ids`` order when its index
    holds the sample identifiers.
    """
    if not isinstance(design, pd.DataFrame):
        raise TypeError(
            f"Expected `design` to be a pandas DataFrame, "
            f"got {type(design).__name__}"
        )
    if len(design) != len(sample_ids):
        raise InvalidInputError(
            f"Design matrix has {len(design)} rows but expected {len(sample_ids)} samples"
        )
    if set(map(str, design.index)) == set(sample_ids):
        design = design.copy()
        design.index = design.index.map(str)
        design = design.loc[list(sample_ids)]
    if design.isna().any().any():
        raise InvalidInputError("Design matrix contains missing values")
    return design


def check_voom_result(obj: Any) -> None:
    """Check that input is a VoomResult."""
    from .voom import VoomResult
    if not isinstance(obj, VoomResult):
        raise TypeError(
            f"Expected a VoomResult, got {type(obj).__name__}"
        )


def check_limma_model(model: Any) -> None:
    """Check that input is a valid LimmaModel."""
    from .lm_fit import LimmaModel
    if not isinstance(model, LimmaModel):
        raise TypeError(
            f"Expected a LimmaModel, got {type(model).__name__}"
        )
