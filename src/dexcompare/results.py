"""
Per-engine test results.

``TestResult`` is the common output of the exact test and the moderated
linear model: one effect size, p-value and statistic per gene. Arrays are
copied and made read-only on construction.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
import numpy as np
import pandas as pd

from .errors import InvalidInputError


@dataclass(frozen=True, eq=False)
class TestResult:
    """Per-gene results of one test engine.

    Attributes:
        engine: Name of the engine that produced the result.
        gene_ids: Genes, in matrix row order.
        log_fc: log2 fold change, ``comparison[0]`` over ``comparison[1]``.
        p_value: Raw two-sided p-values.
        statistic: Test statistic (engine specific).
        ave_expr: Average log2 expression, if the engine reports one.
        comparison: The two group levels, numerator first.
    """
    __test__ = False

    engine: str
    gene_ids: Tuple[str, ...]
    log_fc: np.ndarray
    p_value: np.ndarray
    statistic: np.ndarray
    ave_expr: Optional[np.ndarray] = None
    comparison: Tuple[str, str] = ("A", "B")

    def __post_init__(self):
        n = len(self.gene_ids)
        for name in ("log_fc", "p_value", "statistic", "ave_expr"):
            value = getattr(self, name)
            if value is None:
                continue
            arr = np.array(value, dtype=float)
            if arr.shape != (n,):
                raise InvalidInputError(f"`{name}` must have one value per gene")
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)
        object.__setattr__(self, "gene_ids", tuple(self.gene_ids))

    def __len__(self) -> int:
        return len(self.gene_ids)

    def gene(self, gene_id: str) -> Dict[str, Any]:
        """Result fields of a single gene."""
        try:
            i = self.gene_ids.index(str(gene_id))
        except ValueError:
            raise KeyError(f"Gene '{gene_id}' not in result") from None
        out = {
            "gene": self.gene_ids[i],
            "log_fc": float(self.log_fc[i]),
            "p_value": float(self.p_value[i]),
            "statistic": float(self.statistic[i]),
        }
        if self.ave_expr is not None:
            out["ave_expr"] = float(self.ave_expr[i])
        return out

    def to_frame(self) -> pd.DataFrame:
        data = {"log_fc": self.log_fc}
        if self.ave_expr is not None:
            data["ave_expr"] = self.ave_expr
        data["statistic"] = self.statistic
        data["p_value"] = self.p_value
        return pd.DataFrame(data, index=pd.Index(list(self.gene_ids), name="gene"))


def rank_table(
    result: TestResult,
    q_values: Optional[np.ndarray],
    n: Optional[int] = None,
    sort_by: str = "p_value",
) -> pd.DataFrame:
    """Result table with q-values, sorted and truncated to the top ``n`` genes."""
    df = result.to_frame()
    if q_values is not None:
        df["q_value"] = np.asarray(q_values, dtype=float)

    if sort_by in ("p_value", "q_value"):
        keys = [k for k in ("q_value", "p_value") if k in df.columns] if sort_by == "q_value" else ["p_value"]
        df = df.sort_values(keys, kind="mergesort")
    elif sort_by == "log_fc":
        df = df.iloc[np.argsort(-np.abs(df["log_fc"].to_numpy()), kind="mergesort")]
    elif sort_by != "none":
        raise ValueError(f"Unknown sort_by {sort_by!r}")

    if n is not None:
        df = df.head(n)
    return df.reset_index()
