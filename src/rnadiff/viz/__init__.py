"""
Figures for differential expression analyses (matplotlib/seaborn).

Every plotting method returns a ``Figure``; a ``FigureCollection`` saves a
run's figures together and renders them into one HTML report.

Conventions:
- Up-regulated red, down-regulated blue, not significant gray
- Sample groups colored in factor level order (reference first)
- Gene symbols italicized

Examples
--------
>>> from rnadiff.viz import DEVisualizer, FigureCollection
>>> viz = DEVisualizer()
>>> collection = FigureCollection()
>>> collection.add("dispersion", viz.plot_dispersion_estimates(dds))
>>> collection.add("ma", viz.plot_ma(res, ylim=(-4, 4)))
>>> collection.save_all("figures/", format="pdf")
"""

from rnadiff.viz.core import Figure, FigureCollection
from rnadiff.viz.styles import Palette, PALETTES, configure_style, format_pvalue
from rnadiff.viz.de import DEVisualizer

__all__ = [
    "Figure",
    "FigureCollection",
    "Palette",
    "PALETTES",
    "configure_style",
    "format_pvalue",
    "DEVisualizer",
]
