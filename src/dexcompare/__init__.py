"""dexcompare: two-engine differential expression for count data.

Counts are tested with an exact negative-binomial test and with a
voom-weighted moderated t-test; q-values are computed per engine and the
two significant-gene sets are compared.

The engine subpackages are loaded lazily; importing one registers its
accessor on CountMatrix.

Usage:
    >>> from dexcompare import CountMatrix, SampleGroup, run_pipeline
    >>> counts = CountMatrix.from_frame(df)
    >>> groups = SampleGroup({"s1": "T", "s2": "T", "s3": "C", "s4": "C"})
    >>> result = run_pipeline(counts, groups)
    >>>
    >>> import dexcompare.edger  # registers counts.edger
    >>> counts.edger.exact_test(groups)
"""

from __future__ import annotations

import importlib

from .countmatrix import CountMatrix, SampleGroup
from .errors import (
    DexCompareError,
    InvalidInputError,
    NumericalDivergenceError,
    RankDeficiencyError,
    ExcludedGenesWarning,
)
from .results import TestResult
from .qvalue import qvalue, pi0_est, QValueResult
from .concordance import compare_significance, significant, top_n_overlap, ConcordanceSummary
from .pipeline import run_pipeline, PipelineConfig, PipelineResult

__all__ = [
    "CountMatrix",
    "SampleGroup",
    "DexCompareError",
    "InvalidInputError",
    "NumericalDivergenceError",
    "RankDeficiencyError",
    "ExcludedGenesWarning",
    "TestResult",
    "qvalue",
    "pi0_est",
    "QValueResult",
    "compare_significance",
    "significant",
    "top_n_overlap",
    "ConcordanceSummary",
    "run_pipeline",
    "PipelineConfig",
    "PipelineResult",
    # Lazy-loaded submodules
    "edger",
    "limma",
]

# Submodules to be lazily loaded
_LAZY_SUBMODULES = {"edger", "limma"}


def __getattr__(name: str):
    """Lazy loading of submodules per PEP 562."""
    if name in _LAZY_SUBMODULES:
        module = importlib.import_module(f".{name}", __name__)
        globals()[name] = module
        return module
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    """Include lazy submodules in dir() output."""
    return list(__all__)
