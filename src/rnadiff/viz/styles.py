"""
Consistent visual styles for differential expression plots.

Conventions
-----------
- Up-regulated = red (#dc2626), down-regulated = blue (#2563eb),
  not significant = gray; the DESeq2 plotMA blue is kept for significant
  points on MA plots
- Sample groups use a colorblind-safe categorical palette, in factor level
  order, so the reference level always gets the first color
- Gene symbols italicized (use $gene$ in matplotlib)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal
import math

import matplotlib.pyplot as plt
import seaborn as sns


@dataclass(frozen=True)
class Palette:
    """
    Color palette for differential expression plots.

    Attributes
    ----------
    up : str
        Significant, positive log2 fold change
    down : str
        Significant, negative log2 fold change
    nonsig : str
        Not significant
    ma_significant : str
        Significant points on MA plots
    trend : str
        Fitted curves (dispersion trend)
    final : str
        Final (MAP) dispersion estimates
    outlier : str
        Dispersion outliers / Cook's outliers
    neutral : str
        Axes guides and threshold lines
    groups : str
        Seaborn palette name for sample groups
    """
    up: str = "#dc2626"
    down: str = "#2563eb"
    nonsig: str = "#9ca3af"
    ma_significant: str = "#1d4ed8"
    trend: str = "#dc2626"
    final: str = "#2563eb"
    outlier: str = "#059669"
    neutral: str = "#6b7280"
    groups: str = "colorblind"

    def direction(self, lfc: float, significant: bool) -> str:
        """Color for a gene given its direction and significance."""
        if not significant:
            return self.nonsig
        return self.up if lfc > 0 else self.down

    def for_groups(self, groups: Iterable) -> dict:
        """Group -> color, in the order given."""
        groups = list(groups)
        colors = sns.color_palette(self.groups, max(len(groups), 1)).as_hex()
        return dict(zip(groups, colors))


PALETTES = {
    "default": Palette(),
    "colorblind": Palette(
        up="#cc3311",
        down="#0077bb",
        nonsig="#bbbbbb",
        ma_significant="#0077bb",
        trend="#ee7733",
        final="#0077bb",
        outlier="#009988",
        neutral="#999999",
    ),
    "print": Palette(
        up="#1a1a1a",
        down="#666666",
        nonsig="#d4d4d4",
        ma_significant="#1a1a1a",
        trend="#000000",
        final="#4d4d4d",
        outlier="#808080",
        neutral="#808080",
        groups="Greys",
    ),
}


def configure_style(
    style: Literal["paper", "presentation", "notebook"] = "paper",
    palette: str | Palette = "default",
    font_scale: float = 1.0
) -> Palette:
    """
    Configure matplotlib and seaborn for consistent visualization style.

    Parameters
    ----------
    style : {"paper", "presentation", "notebook"}
        Target medium.
    palette : str or Palette
        Color palette name or Palette instance.
    font_scale : float
        Multiplier for all font sizes.

    Returns
    -------
    Palette
        The configured color palette.
    """
    if isinstance(palette, str):
        palette = PALETTES.get(palette, PALETTES["default"])

    base_params = {
        "figure.facecolor": "white",
        "axes.facecolor": "white",
        "axes.edgecolor": "#333333",
        "axes.labelcolor": "#333333",
        "text.color": "#333333",
        "xtick.color": "#333333",
        "ytick.color": "#333333",
        "axes.spines.top": False,
        "axes.spines.right": False,
        "legend.frameon": False,
    }

    sizes = {"paper": 10, "presentation": 14, "notebook": 11}[style]
    dpi = {"paper": 300, "presentation": 150, "notebook": 100}[style]
    context = {"paper": "paper", "presentation": "talk", "notebook": "notebook"}[style]
    style_params = {
        "font.size": sizes * font_scale,
        "axes.titlesize": (sizes + 1) * font_scale,
        "axes.labelsize": sizes * font_scale,
        "xtick.labelsize": (sizes - 1) * font_scale,
        "ytick.labelsize": (sizes - 1) * font_scale,
        "legend.fontsize": (sizes - 1) * font_scale,
        "figure.dpi": dpi,
        "savefig.dpi": max(dpi, 150),
    }

    sns.set_theme(style="ticks", context=context, font_scale=font_scale)
    plt.rcParams.update({**base_params, **style_params})

    return palette


def italicize_gene(gene: str) -> str:
    """
    Format gene symbol for matplotlib (italicized per biology convention).

    >>> italicize_gene("DUSP1")
    '$\\\\mathit{DUSP1}$'
    """
    return f"$\\mathit{{{gene}}}$"


def format_pvalue(p: float) -> str:
    """
    Format a p-value for annotations ("p = 3.2e-05", "p = 0.004", "p = 0.03", "p = NA").
    """
    if p is None or (isinstance(p, float) and math.isnan(p)):
        return "p = NA"
    if p < 0.001:
        return f"p = {p:.1e}" if p > 0 else "p < 1e-300"
    elif p < 0.01:
        return f"p = {p:.3f}"
    return f"p = {p:.2f}"
