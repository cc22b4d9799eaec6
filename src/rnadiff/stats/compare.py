"""
Comparison against a precomputed results table.

A reference table is any per-gene results file from another run or tool:
DESeq2 ``write.csv(res)``, edgeR ``topTags``, limma ``topTable``. Column
names differ by tool, so the common ones are recognised automatically:

    log2 fold change: log2FoldChange, logFC, log2FC, lfc
    adjusted p-value: padj, FDR, adj.P.Val, qvalue
    p-value:          pvalue, PValue, P.Value, pval

A reference that reports only p-values is BH-adjusted on load.

Examples:
    >>> from rnadiff.stats.compare import load_reference, compare_results
    >>> ref = load_reference("published_deseq2.csv")
    >>> cmp = compare_results(res, ref, alpha=0.05)
    >>> print(cmp.format())
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
import logging
import warnings

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

from rnadiff.io.formats import open_text, sniff_delimiter
from rnadiff.io.ids import strip_version
from rnadiff.stats.results import DEResults

__all__ = ['load_reference', 'compare_results', 'ComparisonResult', 'COLUMN_ALIASES']

logger = logging.getLogger(__name__)

COLUMN_ALIASES = {
    "log2FoldChange": ["log2FoldChange", "logFC", "log2FC", "lfc", "log2_fold_change"],
    "padj": ["padj", "FDR", "adj.P.Val", "qvalue", "q_value", "p_adj"],
    "pvalue": ["pvalue", "PValue", "P.Value", "pval", "p_value"],
}


def _find_column(columns: pd.Index, explicit: Optional[str], canonical: str) -> Optional[str]:
    if explicit is not None:
        if explicit not in columns:
            raise KeyError(f"Column '{explicit}' not in reference. Available: {list(columns)}")
        return explicit
    lowered = {c.lower(): c for c in columns}
    for alias in COLUMN_ALIASES[canonical]:
        if alias in columns:
            return alias
        if alias.lower() in lowered:
            return lowered[alias.lower()]
    return None


def load_reference(
    path: str | Path,
    id_col: Optional[str] = None,
    lfc_col: Optional[str] = None,
    padj_col: Optional[str] = None,
    pvalue_col: Optional[str] = None,
    sep: Optional[str] = None,
) -> pd.DataFrame:
    """
    Read a reference results table.

    Returns:
        DataFrame indexed by gene id with ``log2FoldChange``, ``padj`` and
        (when available) ``pvalue`` columns

    Raises:
        FileNotFoundError: If path does not exist
        KeyError: If a named column is missing
        ValueError: If no fold-change column, or neither p-values nor
            adjusted p-values, can be found
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Reference table not found: {path}")
    if sep is None:
        sep = sniff_delimiter(path)

    with open_text(path) as handle:
        table = pd.read_csv(handle, sep=sep)

    if id_col is None:
        id_col = table.columns[0]
    elif id_col not in table.columns:
        raise KeyError(f"Column '{id_col}' not in reference. Available: {list(table.columns)}")
    table = table.set_index(table[id_col].astype(str)).drop(columns=[id_col])
    table.index.name = "gene_id"

    lfc = _find_column(table.columns, lfc_col, "log2FoldChange")
    padj = _find_column(table.columns, padj_col, "padj")
    pvalue = _find_column(table.columns, pvalue_col, "pvalue")

    if lfc is None:
        raise ValueError(f"No log2 fold-change column in {path.name}. Columns: {list(table.columns)}")
    if padj is None and pvalue is None:
        raise ValueError(f"No p-value or adjusted p-value column in {path.name}")

    result = pd.DataFrame(index=table.index)
    result["log2FoldChange"] = pd.to_numeric(table[lfc], errors="coerce")
    if pvalue is not None:
        result["pvalue"] = pd.to_numeric(table[pvalue], errors="coerce")
    if padj is not None:
        result["padj"] = pd.to_numeric(table[padj], errors="coerce")
    else:
        pv = result["pvalue"].to_numpy(dtype=float)
        adjusted = np.full_like(pv, np.nan)
        valid = ~np.isnan(pv)
        if valid.any():
            _, adjusted[valid], _, _ = multipletests(pv[valid], method="fdr_bh")
        result["padj"] = adjusted
        logger.info(f"Reference {path.name} has no adjusted p-values; applied BH")

    if result.index.has_duplicates:
        n_dup = int(result.index.duplicated().sum())
        warnings.warn(f"{n_dup} duplicated gene ids in reference; keeping first", UserWarning)
        result = result[~result.index.duplicated(keep="first")]

    logger.info(f"Loaded reference: {len(result)} genes from {path.name} (lfc={lfc}, padj={padj or 'BH'})")
    return result


@dataclass
class ComparisonResult:
    """
    Agreement between our results and a reference.

    Attributes:
        joined: Common genes with ``log2FoldChange_ours``/``_ref`` and
            ``padj_ours``/``_ref`` columns plus significance calls
        pearson, spearman: LFC correlation over common genes
        sign_agreement: Fraction of common genes with the same LFC sign
        both, ours_only, reference_only: Significant-set overlap
        jaccard: |both| / |union|
    """

    joined: pd.DataFrame
    alpha: float
    n_ours: int
    n_reference: int
    pearson: float
    spearman: float
    sign_agreement: float
    sign_agreement_significant: float
    both: int
    ours_only: int
    reference_only: int
    jaccard: float
    label: str = ""

    @property
    def n_common(self) -> int:
        return len(self.joined)

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "alpha": self.alpha,
            "n_ours": self.n_ours,
            "n_reference": self.n_reference,
            "n_common": self.n_common,
            "pearson": self.pearson,
            "spearman": self.spearman,
            "sign_agreement": self.sign_agreement,
            "sign_agreement_significant": self.sign_agreement_significant,
            "both": self.both,
            "ours_only": self.ours_only,
            "reference_only": self.reference_only,
            "jaccard": self.jaccard,
        }

    def format(self) -> str:
        return "\n".join([
            f"Comparison {self.label}".rstrip(),
            f"  genes: {self.n_ours} ours, {self.n_reference} reference, {self.n_common} common",
            f"  log2FC correlation: Pearson {self.pearson:.3f}, Spearman {self.spearman:.3f}",
            f"  sign agreement: {100 * self.sign_agreement:.1f}% "
            f"({100 * self.sign_agreement_significant:.1f}% of genes significant in both)",
            f"  padj < {self.alpha:g}: {self.both} both, {self.ours_only} ours only, "
            f"{self.reference_only} reference only (Jaccard {self.jaccard:.3f})",
        ])


def _correlation(func, x: np.ndarray, y: np.ndarray) -> float:
    if len(x) < 3 or np.all(x == x[0]) or np.all(y == y[0]):
        return float("nan")
    return float(func(x, y)[0])


def compare_results(
    results: DEResults | pd.DataFrame,
    reference: pd.DataFrame,
    alpha: Optional[float] = None,
    strip_versions: bool = True,
    label: str = "",
) -> ComparisonResult:
    """
    Compare fold changes and significance calls on common genes.

    Args:
        results: Our DEResults (or a table with log2FoldChange/padj)
        reference: Output of ``load_reference``
        alpha: Significance cutoff (default: results.alpha, else 0.1)
        strip_versions: Match gene ids with version suffixes removed

    Raises:
        ValueError: If no gene ids are shared
    """
    if isinstance(results, DEResults):
        ours = results.table
        alpha = results.alpha if alpha is None else alpha
        label = label or results.contrast
    else:
        ours = results
        alpha = 0.1 if alpha is None else alpha

    ours = ours[["log2FoldChange", "padj"]].copy()
    ref = reference[["log2FoldChange", "padj"]].copy()
    if strip_versions:
        ours.index = strip_version(ours.index)
        ref.index = strip_version(ref.index)
        ours = ours[~ours.index.duplicated(keep="first")]
        ref = ref[~ref.index.duplicated(keep="first")]

    joined = ours.join(ref, how="inner", lsuffix="_ours", rsuffix="_ref")
    if joined.empty:
        raise ValueError(
            f"No common gene ids (ours e.g. {ours.index[:3].tolist()}, "
            f"reference e.g. {ref.index[:3].tolist()})"
        )

    joined["significant_ours"] = joined["padj_ours"] < alpha
    joined["significant_ref"] = joined["padj_ref"] < alpha

    finite = joined[["log2FoldChange_ours", "log2FoldChange_ref"]].dropna()
    finite = finite[np.isfinite(finite).all(axis=1)]
    x = finite["log2FoldChange_ours"].to_numpy()
    y = finite["log2FoldChange_ref"].to_numpy()

    same_sign = np.sign(x) == np.sign(y)
    sig_both = joined["significant_ours"] & joined["significant_ref"]
    sig_rows = finite.index.isin(joined.index[sig_both])

    both = int(sig_both.sum())
    ours_only = int((joined["significant_ours"] & ~joined["significant_ref"]).sum())
    ref_only = int((~joined["significant_ours"] & joined["significant_ref"]).sum())
    union = both + ours_only + ref_only

    comparison = ComparisonResult(
        joined=joined,
        alpha=alpha,
        n_ours=len(ours),
        n_reference=len(ref),
        pearson=_correlation(stats.pearsonr, x, y),
        spearman=_correlation(stats.spearmanr, x, y),
        sign_agreement=float(same_sign.mean()) if len(x) else float("nan"),
        sign_agreement_significant=float(same_sign[sig_rows].mean()) if sig_rows.any() else float("nan"),
        both=both,
        ours_only=ours_only,
        reference_only=ref_only,
        jaccard=both / union if union else float("nan"),
        label=label,
    )
    logger.info(
        f"Compared with reference: {comparison.n_common} common genes, "
        f"Pearson {comparison.pearson:.3f}, Jaccard {comparison.jaccard:.3f}"
    )
    return comparison
