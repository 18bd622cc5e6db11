"""
End-to-end two-engine differential expression.

Stages run strictly in order: normalization, dispersion, the exact test and
the moderated linear model, q-values per engine, then concordance. Every
stage returns an immutable value object; nothing is mutated in place.

    >>> from dexcompare import CountMatrix, SampleGroup, run_pipeline
    >>> result = run_pipeline(counts, groups, prior_n=10, q_threshold=0.05)
    >>> result.table("exact").head()
    >>> result.concordance
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Optional
import logging
import pandas as pd

from .concordance import ConcordanceSummary, compare_significance, significant, top_n_overlap
from .countmatrix import CountMatrix, SampleGroup
from .edger.calc_norm_factors import NormalizationFactors, calc_norm_factors
from .edger.checks import check_counts, check_groups
from .edger.estimate_disp import DispersionEstimate, estimate_disp
from .edger.exact_test import exact_test
from .edger.filter_by_expr import filter_by_expr
from .errors import InvalidInputError
from .limma.lm_fit import LimmaModel, lm_fit
from .limma.voom import VoomResult, voom
from .qvalue import QValueResult, qvalue
from .results import TestResult, rank_table

logger = logging.getLogger(__name__)

ENGINES = ("exact", "moderated_t")


@dataclass(frozen=True)
class PipelineConfig:
    """Tunable inputs of :func:`run_pipeline`.

    Attributes:
        prior_n: Shrinkage strength of tagwise dispersions.
        q_threshold: q-value cutoff for significance calls.
        top_n: Size of the ranked top-N comparison.
        norm_method: "TMM", "upperquartile" or "none".
        pi0_method: "smoother" or "bootstrap".
        prior_count: Offset of the exact-test fold change.
        max_iter: Iteration cap of the common dispersion root-find.
        tol: Convergence tolerance of the common dispersion root-find.
        group_a: Numerator level; overrides the grouping's own order.
        group_b: Denominator level.
        filter_genes: Drop genes with a zero total in either group first.
    """
    prior_n: float = 10.0
    q_threshold: float = 0.05
    top_n: int = 20
    norm_method: str = "TMM"
    pi0_method: str = "smoother"
    prior_count: float = 0.125
    max_iter: int = 100
    tol: float = 1e-6
    group_a: Optional[str] = None
    group_b: Optional[str] = None
    filter_genes: bool = False

    def __post_init__(self):
        if not self.prior_n >= 0:
            raise InvalidInputError(f"prior_n must be non-negative, got {self.prior_n}")
        if not 0 <= self.q_threshold <= 1:
            raise InvalidInputError(f"q_threshold must lie in [0, 1], got {self.q_threshold}")
        if self.top_n < 0:
            raise InvalidInputError(f"top_n must be non-negative, got {self.top_n}")
        if self.pi0_method not in ("smoother", "bootstrap"):
            raise InvalidInputError(f"Unknown pi0_method {self.pi0_method!r}")
        if self.max_iter < 1:
            raise InvalidInputError("max_iter must be at least 1")

    def order_groups(self, groups: SampleGroup) -> SampleGroup:
        """Apply ``group_a``/``group_b`` to the level order of ``groups``."""
        if self.group_a is None and self.group_b is None:
            return groups
        levels = list(groups.levels)
        a = self.group_a if self.group_a is not None else next(l for l in levels if l != self.group_b)
        b = self.group_b if self.group_b is not None else next(l for l in levels if l != a)
        if {a, b} != set(levels):
            raise InvalidInputError(f"Group levels {levels} do not match ({a!r}, {b!r})")
        return SampleGroup(groups.labels, levels=(a, b))


@dataclass(frozen=True, eq=False)
class PipelineResult:
    """All stage outputs of one run.

    Attributes:
        config: Configuration the run used.
        counts: Matrix the engines were run on (after optional filtering).
        groups: Grouping with the level order used.
        norm: Normalization factors.
        dispersion: Common and tagwise dispersions.
        voom: log2-CPM and precision weights.
        model: Moderated linear model.
        results: TestResult per engine.
        qvalues: QValueResult per engine.
        concordance: Agreement of the significance calls.
        top_overlap: Genes in both engines' top ``config.top_n``.
    """
    config: PipelineConfig
    counts: CountMatrix
    groups: SampleGroup
    norm: NormalizationFactors
    dispersion: DispersionEstimate
    voom: VoomResult
    model: LimmaModel
    results: Dict[str, TestResult] = field(default_factory=dict)
    qvalues: Dict[str, QValueResult] = field(default_factory=dict)
    concordance: Optional[ConcordanceSummary] = None
    top_overlap: FrozenSet[str] = frozenset()

    def table(self, engine: str, n: Optional[int] = None, sort_by: str = "q_value") -> pd.DataFrame:
        """Result table of one engine: gene, log_fc, p_value, q_value and statistics."""
        if engine not in self.results:
            raise KeyError(f"Unknown engine '{engine}'. Available: {list(self.results)}")
        return rank_table(self.results[engine], self.qvalues[engine].q_values, n=n, sort_by=sort_by)

    def pi0(self, engine: str) -> float:
        return self.qvalues[engine].pi0

    def significant_genes(self, engine: str) -> FrozenSet[str]:
        """Genes with q-value at or below the configured threshold."""
        mask = self.qvalues[engine].significant(self.config.q_threshold)
        return frozenset(g for g, keep in zip(self.results[engine].gene_ids, mask) if keep)


def run_pipeline(
    counts: CountMatrix,
    groups: SampleGroup,
    config: Optional[PipelineConfig] = None,
    **overrides: Any,
) -> PipelineResult:
    """
    Run both engines and compare their significant-gene sets.

    Args:
        counts: Input count matrix.
        groups: Two-level sample grouping.
        config: Pipeline configuration. Default: ``PipelineConfig()``.
        **overrides: Field overrides applied on top of ``config``.

    Returns:
        PipelineResult.

    Raises:
        InvalidInputError: Malformed input or configuration.
        NumericalDivergenceError: The common dispersion did not converge.
        RankDeficiencyError: The design is singular for the groups.

    Example:
        >>> result = run_pipeline(counts, groups, prior_n=20)
        >>> result.pi0("exact"), result.concordance.both
    """
    config = replace(config or PipelineConfig(), **overrides)
    check_counts(counts)
    groups = config.order_groups(groups)
    check_groups(groups, counts)

    if config.filter_genes:
        keep = filter_by_expr(counts, groups)
        counts = counts.subset_genes(keep)
        logger.info("Filtering kept %d of %d genes", int(keep.sum()), keep.size)

    logger.info(
        "Running %s vs %s on %d genes x %d samples",
        groups.group_a, groups.group_b, counts.n_genes, counts.n_samples,
    )

    norm = calc_norm_factors(counts, method=config.norm_method)
    logger.info("Normalization (%s) done", config.norm_method)

    dispersion = estimate_disp(
        counts, groups, norm, prior_n=config.prior_n, tol=config.tol, max_iter=config.max_iter
    )
    logger.info(
        "Dispersion: common=%.4g (BCV %.3g), prior_n=%g",
        dispersion.common, dispersion.bcv, config.prior_n,
    )

    exact = exact_test(counts, groups, dispersion, norm, prior_count=config.prior_count)
    logger.info("Exact test done")

    v = voom(counts, groups, norm)
    model = lm_fit(v).e_bayes()
    moderated = model.to_result()
    logger.info("Moderated t-test done (df_prior=%.3g)", model.ebayes.df_prior)

    results = {"exact": exact, "moderated_t": moderated}
    qvalues = {
        name: qvalue(res.p_value, pi0_method=config.pi0_method)
        for name, res in results.items()
    }
    for name, q in qvalues.items():
        n_sig = int(q.significant(config.q_threshold).sum())
        logger.info("%s: pi0=%.3g, %d gene(s) at q <= %g", name, q.pi0, n_sig, config.q_threshold)

    concordance = compare_significance(
        significant(qvalues["exact"].q_values, config.q_threshold),
        significant(qvalues["moderated_t"].q_values, config.q_threshold),
    )
    overlap = top_n_overlap(
        qvalues["exact"].q_values, qvalues["moderated_t"].q_values, config.top_n,
        gene_ids=counts.gene_ids,
    )
    logger.info(
        "Concordance: both=%d, exact only=%d, moderated only=%d",
        concordance.both, concordance.a_only, concordance.b_only,
    )

    return PipelineResult(
        config=config,
        counts=counts,
        groups=groups,
        norm=norm,
        dispersion=dispersion,
        voom=v,
        model=model,
        results=results,
        qvalues=qvalues,
        concordance=concordance,
        top_overlap=overlap,
    )
