"""
Differential-expression result tables.

DEResults wraps one contrast's per-gene table (baseMean, log2FoldChange,
lfcSE, stat, pvalue, padj) together with the parameters that produced it,
and provides the views a notebook reaches for: the DESeq2 ``summary()``
block, significance filtering, ordering and gene annotation.

Missing values carry meaning here and are never filled:
    - pvalue NA with baseMean > 0: Cook's distance outlier
    - padj NA with pvalue present: removed by independent filtering
    - everything NA with baseMean 0: no reads in any sample
The ``flags`` column records which case applies (GeneFlag values).

Examples:
    >>> res = fit.results(("dex", "trt", "untrt"))
    >>> print(res.summary().format())
    >>> res.significant(alpha=0.05, lfc_min=1).head()
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional
import math

import numpy as np
import pandas as pd

from rnadiff.core.flags import GeneFlag

__all__ = ['DEResults', 'ResultsSummary', 'RESULT_COLUMNS', 'annotate_flags']

RESULT_COLUMNS = ["baseMean", "log2FoldChange", "lfcSE", "stat", "pvalue", "padj"]


def annotate_flags(table: pd.DataFrame, base_flags: Optional[pd.Series] = None) -> np.ndarray:
    """
    GeneFlag value per row of a results table.

    Args:
        table: Results with baseMean, pvalue and padj columns
        base_flags: Flags carried over from the count matrix (same index)
    """
    flags = np.zeros(len(table), dtype=int)
    if base_flags is not None:
        flags |= base_flags.reindex(table.index).fillna(0).to_numpy(dtype=int)

    base_mean = table["baseMean"].to_numpy(dtype=float)
    pvalue = table["pvalue"].to_numpy(dtype=float)
    padj = table["padj"].to_numpy(dtype=float)

    all_zero = base_mean == 0
    flags[all_zero] |= int(GeneFlag.ALL_ZERO)
    flags[~all_zero & np.isnan(pvalue)] |= int(GeneFlag.COOKS_OUTLIER)
    flags[~np.isnan(pvalue) & np.isnan(padj)] |= int(GeneFlag.LOW_COUNT)
    return flags


def _pct(count: int, total: int) -> str:
    if total == 0:
        return "0%"
    return f"{100.0 * count / total:.2g}%"


@dataclass
class ResultsSummary:
    """
    Counts reported by DESeq2's ``summary(res)``.

    Attributes:
        n_nonzero: Genes with nonzero total read count
        alpha: Adjusted p-value cutoff
        lfc_threshold: LFC threshold of the test
        up, down: Significant genes by direction
        outliers: Cook's distance outliers (pvalue NA)
        low_counts: Genes removed by independent filtering (padj NA)
        filter_threshold: Mean normalised count below which genes were
            filtered (None when nothing was filtered)
    """

    contrast: str
    n_nonzero: int
    alpha: float
    lfc_threshold: float
    up: int
    down: int
    outliers: int
    low_counts: int
    filter_threshold: Optional[float] = None

    @property
    def n_significant(self) -> int:
        return self.up + self.down

    def format(self) -> str:
        """Render the familiar text block."""
        t = self.lfc_threshold
        width = 19
        threshold = 0 if self.filter_threshold is None else math.ceil(self.filter_threshold)
        up_label = f"LFC > {t:g} (up)"
        down_label = f"LFC < {-t:g} (down)" if t else "LFC < 0 (down)"
        lines = [
            "",
            f"{self.contrast}",
            f"out of {self.n_nonzero} with nonzero total read count",
            f"adjusted p-value < {self.alpha:g}",
            f"{up_label:<{width}}: {self.up}, {_pct(self.up, self.n_nonzero)}",
            f"{down_label:<{width}}: {self.down}, {_pct(self.down, self.n_nonzero)}",
            f"{'outliers [1]':<{width}}: {self.outliers}, {_pct(self.outliers, self.n_nonzero)}",
            f"{'low counts [2]':<{width}}: {self.low_counts}, {_pct(self.low_counts, self.n_nonzero)}",
            f"(mean count < {threshold})",
            "[1] Cook's distance outliers, pvalue set to NA",
            "[2] removed by independent filtering, padj set to NA",
            "",
        ]
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.format()

    def to_dict(self) -> dict[str, Any]:
        return {
            "contrast": self.contrast,
            "n_nonzero": self.n_nonzero,
            "alpha": self.alpha,
            "lfc_threshold": self.lfc_threshold,
            "up": self.up,
            "down": self.down,
            "n_significant": self.n_significant,
            "outliers": self.outliers,
            "low_counts": self.low_counts,
            "filter_threshold": self.filter_threshold,
        }


@dataclass
class DEResults:
    """
    Per-gene results for one contrast.

    Attributes:
        table: DataFrame indexed by gene with RESULT_COLUMNS plus ``flags``
        contrast: Contrast label (e.g. ``dex_trt_vs_untrt``)
        alpha: Significance cutoff used for independent filtering
        lfc_threshold: LFC threshold of the Wald test
        shrunk: log2FoldChange column holds shrunken estimates
        design_formula: Formula of the fitted model
        filter_threshold: Independent-filtering mean-count cutoff
        description: Human-readable contrast
    """

    table: pd.DataFrame
    contrast: str
    alpha: float = 0.1
    lfc_threshold: float = 0.0
    shrunk: bool = False
    design_formula: str = ""
    filter_threshold: Optional[float] = None
    description: str = ""
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        missing = [c for c in RESULT_COLUMNS if c not in self.table.columns]
        if missing:
            raise ValueError(f"Results table is missing columns {missing}")
        if "flags" not in self.table.columns:
            self.table = self.table.copy()
            self.table["flags"] = annotate_flags(self.table)

    def __len__(self) -> int:
        return len(self.table)

    def _alpha(self, alpha: Optional[float]) -> float:
        alpha = self.alpha if alpha is None else alpha
        if not 0 < alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {alpha}")
        return alpha

    def summary(self, alpha: Optional[float] = None) -> ResultsSummary:
        """Counts of DESeq2's ``summary(res, alpha)``."""
        alpha = self._alpha(alpha)
        t = self.table
        nonzero = t["baseMean"] > 0
        sig = t["padj"] < alpha
        flags = t["flags"].to_numpy(dtype=int)
        return ResultsSummary(
            contrast=self.description or self.contrast,
            n_nonzero=int(nonzero.sum()),
            alpha=alpha,
            lfc_threshold=self.lfc_threshold,
            up=int((sig & (t["log2FoldChange"] > self.lfc_threshold)).sum()),
            down=int((sig & (t["log2FoldChange"] < -self.lfc_threshold)).sum()),
            outliers=int((nonzero & t["pvalue"].isna()).sum()),
            low_counts=int(((flags & GeneFlag.LOW_COUNT) != 0).sum()),
            filter_threshold=self.filter_threshold,
        )

    def significant(
        self,
        alpha: Optional[float] = None,
        lfc_min: float = 0.0,
        direction: Optional[str] = None,
    ) -> pd.DataFrame:
        """
        Rows with padj < alpha and |LFC| >= lfc_min, sorted by padj.

        Args:
            direction: "up", "down" or None for both

        Raises:
            ValueError: Invalid alpha or direction
        """
        alpha = self._alpha(alpha)
        t = self.table
        mask = (t["padj"] < alpha) & (t["log2FoldChange"].abs() >= lfc_min)
        if direction == "up":
            mask &= t["log2FoldChange"] > 0
        elif direction == "down":
            mask &= t["log2FoldChange"] < 0
        elif direction is not None:
            raise ValueError(f"direction must be 'up', 'down' or None, got '{direction}'")
        return t[mask].sort_values("padj", kind="mergesort")

    def ordered(self, by: str = "padj", ascending: Optional[bool] = None) -> pd.DataFrame:
        """
        Table sorted by a column (missing values last).

        ``by="abs_lfc"`` sorts by absolute log2 fold change, largest first.
        """
        t = self.table
        if by == "abs_lfc":
            order = t["log2FoldChange"].abs().sort_values(ascending=bool(ascending), na_position="last", kind="mergesort")
            return t.loc[order.index]
        if by not in t.columns:
            raise KeyError(f"Cannot order by '{by}'. Columns: {list(t.columns)}")
        if ascending is None:
            ascending = by in ("padj", "pvalue")
        return t.sort_values(by, ascending=ascending, na_position="last", kind="mergesort")

    def top(self, n: int = 10, by: str = "padj") -> pd.DataFrame:
        return self.ordered(by).head(n)

    def to_frame(self, include_flags: bool = True) -> pd.DataFrame:
        frame = self.table.copy()
        if not include_flags:
            frame = frame.drop(columns=["flags"])
        frame.index.name = frame.index.name or "gene_id"
        return frame

    def annotate(self, annotation: pd.DataFrame | pd.Series, columns: Optional[list[str]] = None) -> DEResults:
        """
        Join gene annotation (e.g. symbols) by gene id.

        Genes absent from ``annotation`` get missing values.
        """
        if isinstance(annotation, pd.Series):
            annotation = annotation.to_frame(annotation.name or "annotation")
        if columns is not None:
            annotation = annotation[columns]
        annotation = annotation[~annotation.index.duplicated(keep="first")]
        clash = [c for c in annotation.columns if c in self.table.columns]
        if clash:
            raise ValueError(f"Annotation columns clash with results columns: {clash}")
        table = self.table.join(annotation, how="left")
        return replace(self, table=table)

    def __repr__(self) -> str:
        n_sig = int((self.table["padj"] < self.alpha).sum())
        return (
            f"DEResults({self.contrast}: {len(self.table)} genes, "
            f"{n_sig} with padj < {self.alpha:g}{', shrunk' if self.shrunk else ''})"
        )
