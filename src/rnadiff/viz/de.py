"""
Differential expression plots.

Each method mirrors a DESeq2 notebook figure and supports one question:

    plot_dispersion_estimates  Does the dispersion trend fit? (plotDispEsts)
    plot_size_factors          Do size factors track sequencing depth?
    plot_pca                   Do samples separate by the design factors? (plotPCA)
    plot_counts                What does one gene look like per group? (plotCounts)
    plot_ma                    How do fold changes depend on expression? (plotMA)
    plot_volcano               Which genes combine effect size and evidence?
    plot_comparison            Do we agree with a published result?

All methods return ``rnadiff.viz.core.Figure``; nothing is shown or saved
implicitly.
"""

from __future__ import annotations

from typing import Literal, Optional, TYPE_CHECKING

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from adjustText import adjust_text

from rnadiff.viz.core import Figure
from rnadiff.viz.styles import Palette, PALETTES, configure_style, format_pvalue, italicize_gene

if TYPE_CHECKING:
    from rnadiff.stats.compare import ComparisonResult
    from rnadiff.stats.deseq import DESeqFit
    from rnadiff.stats.pca import PCAResult
    from rnadiff.stats.results import DEResults

__all__ = ['DEVisualizer']


class DEVisualizer:
    """
    Plots for a DESeq2-style analysis.

    Usage:
        viz = DEVisualizer()
        viz.plot_dispersion_estimates(dds).save("dispersion.png")
        viz.plot_ma(res, alpha=0.1, ylim=(-4, 4)).save("ma.png")
    """

    def __init__(
        self,
        palette: str | Palette = "default",
        style: Literal["paper", "presentation", "notebook"] = "paper",
    ):
        if isinstance(palette, str):
            self.palette = PALETTES.get(palette, PALETTES["default"])
        else:
            self.palette = palette
        self.style = style
        configure_style(style=style, palette=self.palette)

        self.font_sizes = {
            "paper": {"title": 12, "label": 10, "annotation": 8},
            "presentation": {"title": 18, "label": 14, "annotation": 10},
            "notebook": {"title": 12, "label": 10, "annotation": 7},
        }[style]

    # =========================================================================
    # Model diagnostics
    # =========================================================================

    def plot_dispersion_estimates(self, fit: DESeqFit, figsize: tuple[float, float] = (6, 5)) -> Figure:
        """
        Gene-wise, fitted and final dispersions against mean normalised count.

        Gene-wise estimates are black, the fitted trend red, final (shrunken)
        estimates blue; dispersion outliers, which keep their gene-wise
        value, are circled.
        """
        disp = fit.dispersions
        disp = disp[(disp["baseMean"] > 0) & np.isfinite(disp["genewise"])]

        fig, ax = plt.subplots(figsize=figsize)
        ax.scatter(disp["baseMean"], disp["genewise"], s=3, c="black", alpha=0.5,
                   linewidths=0, label="gene-est", rasterized=True)
        ax.scatter(disp["baseMean"], disp["final"], s=3, c=self.palette.final, alpha=0.6,
                   linewidths=0, label="final", rasterized=True)

        outliers = disp[disp["outlier"]]
        if len(outliers):
            ax.scatter(outliers["baseMean"], outliers["final"], s=30, facecolors="none",
                       edgecolors=self.palette.final, linewidths=0.8, label="outlier")

        trend = disp.sort_values("baseMean")
        ax.plot(trend["baseMean"], trend["fitted"], color=self.palette.trend, lw=1.5, label="fitted")

        ax.set_xscale("log")
        ax.set_yscale("log")
        ax.set_xlabel("mean of normalized counts", fontsize=self.font_sizes["label"])
        ax.set_ylabel("dispersion", fontsize=self.font_sizes["label"])
        ax.set_title("Dispersion estimates", fontsize=self.font_sizes["title"])
        ax.legend(loc="lower left", markerscale=3)

        return Figure(
            fig=fig,
            title="Dispersion estimates",
            description=f"{len(disp)} genes, {len(outliers)} dispersion outliers; design {fit.design.formula}",
            metadata={"n_genes": len(disp), "n_outliers": len(outliers)},
        )

    def plot_size_factors(self, fit: DESeqFit, figsize: tuple[float, float] = (6, 5)) -> Figure:
        """Size factor per sample against library size (millions of reads)."""
        library = pd.Series(fit.matrix.counts.sum(axis=0) / 1e6, index=fit.size_factors.index)

        fig, ax = plt.subplots(figsize=figsize)
        ax.scatter(library, fit.size_factors, s=30, color=self.palette.down)
        texts = [
            ax.text(library[s], fit.size_factors[s], s, fontsize=self.font_sizes["annotation"])
            for s in fit.size_factors.index
        ]
        if len(texts) <= 50:
            adjust_text(texts, ax=ax, arrowprops=dict(arrowstyle="-", color=self.palette.neutral, lw=0.5))
        else:
            for t in texts:
                t.remove()

        ax.set_xlabel("library size (millions of reads)", fontsize=self.font_sizes["label"])
        ax.set_ylabel("size factor", fontsize=self.font_sizes["label"])
        ax.set_title("Size factors", fontsize=self.font_sizes["title"])

        return Figure(
            fig=fig,
            title="Size factors",
            description="Median-of-ratios size factors against total counts per sample",
            metadata={"size_factors": fit.size_factors.round(4).to_dict()},
        )

    # =========================================================================
    # Sample-level views
    # =========================================================================

    def plot_pca(
        self,
        pca_result: PCAResult,
        color_by: str,
        shape_by: Optional[str] = None,
        label: bool = False,
        figsize: tuple[float, float] = (6, 5),
    ) -> Figure:
        """
        PC1 vs PC2 with samples colored (and optionally shaped) by metadata.

        Raises:
            KeyError: If color_by/shape_by are not metadata columns
        """
        coords = pca_result.coordinates
        for col in (color_by, shape_by):
            if col is not None and col not in coords.columns:
                raise KeyError(f"'{col}' not in PCA metadata columns {list(coords.columns)}")

        groups = coords[color_by]
        order = list(groups.cat.categories) if isinstance(groups.dtype, pd.CategoricalDtype) else sorted(groups.astype(str).unique())
        plot_data = coords.assign(**{color_by: groups.astype(str)})

        fig, ax = plt.subplots(figsize=figsize)
        sns.scatterplot(
            data=plot_data,
            x="PC1",
            y="PC2",
            hue=color_by,
            hue_order=[str(o) for o in order],
            style=shape_by,
            palette=self.palette.for_groups([str(o) for o in order]),
            s=70,
            ax=ax,
        )
        if label:
            texts = [
                ax.text(row.PC1, row.PC2, str(idx), fontsize=self.font_sizes["annotation"])
                for idx, row in coords.iterrows()
            ]
            adjust_text(texts, ax=ax)

        ax.set_xlabel(pca_result.axis_label(1), fontsize=self.font_sizes["label"])
        ax.set_ylabel(pca_result.axis_label(2), fontsize=self.font_sizes["label"])
        ax.set_title("PCA", fontsize=self.font_sizes["title"])
        ax.legend(bbox_to_anchor=(1.02, 1), loc="upper left")

        return Figure(
            fig=fig,
            title=f"PCA by {color_by}" + (f" and {shape_by}" if shape_by else ""),
            description=f"Top {len(pca_result.genes)} most variable genes",
            metadata={"explained_variance_ratio": pca_result.explained_variance_ratio.tolist()},
        )

    def plot_counts(
        self,
        fit: DESeqFit,
        gene: str,
        group_by: str,
        pseudocount: float = 0.5,
        hue: Optional[str] = None,
        figsize: tuple[float, float] = (4.5, 4.5),
    ) -> Figure:
        """
        Normalised counts (+ pseudocount) of one gene per group, log scale.

        Raises:
            KeyError: Unknown gene or metadata column
        """
        if gene not in fit.normalized_counts.index:
            raise KeyError(f"Gene '{gene}' not in fitted genes")
        metadata = fit.sample_metadata
        for col in (group_by, hue):
            if col is not None and col not in metadata.columns:
                raise KeyError(f"'{col}' not in sample metadata {list(metadata.columns)}")

        values = fit.normalized_counts.loc[gene] + pseudocount
        data = pd.DataFrame({
            "count": values.to_numpy(),
            group_by: metadata[group_by].astype(str).to_numpy(),
        })
        groups = metadata[group_by]
        order = [str(o) for o in (groups.cat.categories if isinstance(groups.dtype, pd.CategoricalDtype) else sorted(groups.astype(str).unique()))]
        if hue is not None:
            data[hue] = metadata[hue].astype(str).to_numpy()

        fig, ax = plt.subplots(figsize=figsize)
        sns.stripplot(
            data=data,
            x=group_by,
            y="count",
            order=order,
            hue=hue if hue is not None else group_by,
            palette=None if hue is not None else self.palette.for_groups(order),
            jitter=0.15,
            size=7,
            legend=hue is not None,
            ax=ax,
        )
        ax.set_yscale("log")
        ax.set_ylabel("normalized count", fontsize=self.font_sizes["label"])
        ax.set_xlabel(group_by, fontsize=self.font_sizes["label"])
        ax.set_title(italicize_gene(gene), fontsize=self.font_sizes["title"])

        return Figure(
            fig=fig,
            title=f"Counts of {gene}",
            description=f"Normalized counts + {pseudocount} by {group_by}",
            metadata={"gene": gene, "group_by": group_by, "pseudocount": pseudocount},
        )

    # =========================================================================
    # Result views
    # =========================================================================

    def plot_ma(
        self,
        results: DEResults,
        alpha: Optional[float] = None,
        ylim: Optional[tuple[float, float]] = None,
        figsize: tuple[float, float] = (6, 4.5),
    ) -> Figure:
        """
        Log2 fold change against mean of normalised counts (plotMA).

        Genes with padj < alpha are highlighted. Points beyond ``ylim`` are
        drawn at the border as triangles pointing outwards.
        """
        alpha = results.alpha if alpha is None else alpha
        t = results.table
        t = t[(t["baseMean"] > 0) & t["log2FoldChange"].notna()]
        sig = (t["padj"] < alpha).to_numpy()
        x = t["baseMean"].to_numpy()
        y = t["log2FoldChange"].to_numpy()

        if ylim is None:
            bound = max(np.nanmax(np.abs(y)) * 1.05, 1.0) if len(y) else 1.0
            ylim = (-bound, bound)
        low, high = ylim
        above = y > high
        below = y < low
        inside = ~above & ~below

        colors = np.where(sig, self.palette.ma_significant, self.palette.nonsig)

        fig, ax = plt.subplots(figsize=figsize)
        ax.scatter(x[inside], y[inside], c=colors[inside], s=4, linewidths=0, rasterized=True)
        ax.scatter(x[above], np.full(above.sum(), high), c=colors[above], marker="^", s=14, linewidths=0)
        ax.scatter(x[below], np.full(below.sum(), low), c=colors[below], marker="v", s=14, linewidths=0)
        ax.axhline(0, color=self.palette.neutral, lw=1)

        ax.set_xscale("log")
        ax.set_ylim(low * 1.02 if low < 0 else low, high * 1.02)
        ax.set_xlabel("mean of normalized counts", fontsize=self.font_sizes["label"])
        ax.set_ylabel("log2 fold change" + (" (shrunken)" if results.shrunk else ""), fontsize=self.font_sizes["label"])
        ax.set_title(results.description or results.contrast, fontsize=self.font_sizes["title"])

        return Figure(
            fig=fig,
            title=f"MA plot: {results.contrast}" + (" (shrunken)" if results.shrunk else ""),
            description=f"{int(sig.sum())} genes with padj < {alpha:g} highlighted; "
                        f"{int(above.sum() + below.sum())} beyond y-limits",
            metadata={"alpha": alpha, "ylim": list(ylim), "shrunk": results.shrunk},
        )

    def plot_volcano(
        self,
        results: DEResults,
        alpha: Optional[float] = None,
        lfc_min: float = 1.0,
        label_top: int = 10,
        label_col: Optional[str] = None,
        figsize: tuple[float, float] = (6, 5.5),
    ) -> Figure:
        """
        -log10 p-value against log2 fold change.

        Significant = padj < alpha and |LFC| >= lfc_min, colored by
        direction. The ``label_top`` genes by padj are labelled with
        ``label_col`` (e.g. a symbol column from ``annotate``) or the gene id.
        """
        alpha = results.alpha if alpha is None else alpha
        t = results.table
        t = t[t["pvalue"].notna() & t["log2FoldChange"].notna()]
        lfc = t["log2FoldChange"]
        pvals = t["pvalue"].clip(lower=np.finfo(float).tiny)
        neglog = -np.log10(pvals)
        sig = (t["padj"] < alpha) & (lfc.abs() >= lfc_min)
        up = sig & (lfc > 0)
        down = sig & (lfc < 0)

        fig, ax = plt.subplots(figsize=figsize)
        ax.scatter(lfc[~sig], neglog[~sig], c=self.palette.nonsig, s=4, linewidths=0, rasterized=True, label="n.s.")
        ax.scatter(lfc[up], neglog[up], c=self.palette.up, s=6, linewidths=0, rasterized=True, label=f"up ({int(up.sum())})")
        ax.scatter(lfc[down], neglog[down], c=self.palette.down, s=6, linewidths=0, rasterized=True, label=f"down ({int(down.sum())})")

        if lfc_min > 0:
            for v in (-lfc_min, lfc_min):
                ax.axvline(v, color=self.palette.neutral, lw=0.8, ls="--")

        texts = []
        if label_top > 0 and sig.any():
            top = t[sig].sort_values("padj").head(label_top)
            for gene, row in top.iterrows():
                name = row[label_col] if label_col and pd.notna(row.get(label_col)) else gene
                texts.append(ax.text(
                    row["log2FoldChange"], -np.log10(max(row["pvalue"], np.finfo(float).tiny)),
                    italicize_gene(str(name)), fontsize=self.font_sizes["annotation"],
                ))
        if texts:
            adjust_text(texts, ax=ax, arrowprops=dict(arrowstyle="-", color=self.palette.neutral, lw=0.5))

        ax.set_xlabel("log2 fold change", fontsize=self.font_sizes["label"])
        ax.set_ylabel(r"-log$_{10}$(p-value)", fontsize=self.font_sizes["label"])
        ax.set_title(results.description or results.contrast, fontsize=self.font_sizes["title"])
        ax.legend(loc="upper left", markerscale=3)

        return Figure(
            fig=fig,
            title=f"Volcano plot: {results.contrast}",
            description=f"padj < {alpha:g} and |log2FC| >= {lfc_min:g}: "
                        f"{int(up.sum())} up, {int(down.sum())} down",
            metadata={"alpha": alpha, "lfc_min": lfc_min, "n_up": int(up.sum()), "n_down": int(down.sum())},
        )

    def plot_comparison(self, comparison: ComparisonResult, figsize: tuple[float, float] = (5.5, 5.5)) -> Figure:
        """Our log2 fold changes against the reference, colored by agreement."""
        j = comparison.joined.dropna(subset=["log2FoldChange_ours", "log2FoldChange_ref"])
        categories = {
            "both": (j["significant_ours"] & j["significant_ref"], "#7c3aed"),
            "ours only": (j["significant_ours"] & ~j["significant_ref"], self.palette.up),
            "reference only": (~j["significant_ours"] & j["significant_ref"], self.palette.down),
            "neither": (~j["significant_ours"] & ~j["significant_ref"], self.palette.nonsig),
        }

        fig, ax = plt.subplots(figsize=figsize)
        for name in ("neither", "reference only", "ours only", "both"):
            mask, color = categories[name]
            ax.scatter(j.loc[mask, "log2FoldChange_ref"], j.loc[mask, "log2FoldChange_ours"],
                       c=color, s=5, linewidths=0, rasterized=True, label=f"{name} ({int(mask.sum())})")

        if len(j):
            lim = float(np.nanmax(np.abs(j[["log2FoldChange_ours", "log2FoldChange_ref"]].to_numpy()))) * 1.05
            ax.plot([-lim, lim], [-lim, lim], color=self.palette.neutral, lw=0.8, ls="--")
            ax.set_xlim(-lim, lim)
            ax.set_ylim(-lim, lim)

        ax.text(0.02, 0.98,
                f"Pearson r = {comparison.pearson:.3f}\nSpearman ρ = {comparison.spearman:.3f}",
                transform=ax.transAxes, va="top", fontsize=self.font_sizes["annotation"])
        ax.set_xlabel("reference log2 fold change", fontsize=self.font_sizes["label"])
        ax.set_ylabel("log2 fold change", fontsize=self.font_sizes["label"])
        ax.set_title(f"Comparison {comparison.label}".strip(), fontsize=self.font_sizes["title"])
        ax.legend(loc="lower right", markerscale=3, title=f"padj < {comparison.alpha:g}")

        return Figure(
            fig=fig,
            title=f"Comparison with reference: {comparison.label}".rstrip(": "),
            description=f"{comparison.n_common} common genes; Jaccard {comparison.jaccard:.3f}",
            metadata=comparison.to_dict(),
        )

    def plot_pvalue_histogram(self, results: DEResults, bins: int = 50, figsize: tuple[float, float] = (5, 4)) -> Figure:
        """Distribution of p-values for genes with mean count > 1."""
        t = results.table
        p = t.loc[(t["baseMean"] > 1) & t["pvalue"].notna(), "pvalue"]

        fig, ax = plt.subplots(figsize=figsize)
        ax.hist(p, bins=bins, range=(0, 1), color=self.palette.nonsig, edgecolor="white")
        ax.set_xlabel("p-value", fontsize=self.font_sizes["label"])
        ax.set_ylabel("genes", fontsize=self.font_sizes["label"])
        ax.set_title(results.description or results.contrast, fontsize=self.font_sizes["title"])

        smallest = float(p.min()) if len(p) else float("nan")
        return Figure(
            fig=fig,
            title=f"p-value histogram: {results.contrast}",
            description=f"{len(p)} genes with mean count > 1; smallest {format_pvalue(smallest)}",
            metadata={"n_genes": len(p)},
        )
