"""
Differential expression for one design.

Fits the negative binomial GLM for a design formula on a matrix written by
``rnadiff import`` and tests each contrast.

Contrasts:
    dex:trt:untrt              level "trt" of factor "dex" vs level "untrt"
    "dex[T.trt]"               a single coefficient

Usage:
    rnadiff differential \\
        --matrix results/airway/gene \\
        --design "~ cell + dex" \\
        --relevel dex=untrt \\
        --contrast dex:trt:untrt \\
        --shrink dex:trt:untrt \\
        --output results/airway/cell_dex
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import pandas as pd

from rnadiff.cli._validators import (
    _key_value,
    _non_negative_float,
    _pairs_to_subset,
    _positive_int,
    _probability,
)
from rnadiff.stats.deseq import FIT_TYPES, SIZE_FACTOR_TYPES, ALT_HYPOTHESES


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the differential subcommand."""
    parser = subparsers.add_parser(
        "differential",
        help="Fit one design and test contrasts",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Input
    parser.add_argument("--matrix", "-m", type=Path, required=True,
                        help="Matrix path base written by 'rnadiff import' (without .counts.csv)")
    parser.add_argument("--design", "-d", required=True,
                        help="Design formula, e.g. '~ cell + dex'")
    parser.add_argument("--contrast", "-c", action="append", required=True,
                        help="Contrast to test (repeatable); factor:tested:reference or coefficient")
    parser.add_argument("--shrink", action="append", default=[],
                        help="Contrast to shrink (repeatable); must be a single coefficient")
    parser.add_argument("--name", default=None,
                        help="Analysis name (default: output directory name)")
    parser.add_argument("--output", "-o", type=Path, required=True,
                        help="Output directory")

    # Metadata
    parser.add_argument("--relevel", type=_key_value, action="append", default=[],
                        help="Reference level, column=level (repeatable)")
    parser.add_argument("--subset", type=_key_value, action="append", default=[],
                        help="Keep samples with column=value (repeatable; same column = any of)")

    # Pre-filter
    parser.add_argument("--min-count", type=_non_negative_float, default=10,
                        help="Pre-filter: minimum count per sample (default: 10)")
    parser.add_argument("--min-samples", type=_positive_int, default=None,
                        help="Pre-filter: samples reaching --min-count (default: smallest group)")
    parser.add_argument("--group-col", default=None,
                        help="Pre-filter: column defining groups for the default --min-samples")
    parser.add_argument("--no-prefilter", action="store_true",
                        help="Disable the low-count pre-filter")

    # Model
    parser.add_argument("--alpha", type=_probability, default=0.1,
                        help="Adjusted p-value cutoff (default: 0.1)")
    parser.add_argument("--lfc-threshold", type=_non_negative_float, default=0.0,
                        help="Test |log2FC| > threshold (default: 0)")
    parser.add_argument("--alt-hypothesis", choices=[h for h in ALT_HYPOTHESES if h], default=None,
                        help="Alternative hypothesis for --lfc-threshold")
    parser.add_argument("--lfc-min", type=_non_negative_float, default=0.0,
                        help="Minimum |log2FC| for the significant-genes table (default: 0)")
    parser.add_argument("--fit-type", choices=FIT_TYPES, default="parametric",
                        help="Dispersion trend (default: parametric)")
    parser.add_argument("--size-factors", choices=SIZE_FACTOR_TYPES, default="ratio",
                        help="Size factor estimator (default: ratio)")
    parser.add_argument("--no-cooks-refit", action="store_true",
                        help="Do not replace Cook's outliers and refit")
    parser.add_argument("--no-independent-filter", action="store_true",
                        help="Disable independent filtering")
    parser.add_argument("--no-length-correction", action="store_true",
                        help="Fit original counts even when lengths are available")
    parser.add_argument("--n-cpus", type=_positive_int, default=None,
                        help="Worker processes (default: all)")

    # Plots
    parser.add_argument("--no-plots", action="store_true", help="Skip figures")
    parser.add_argument("--plot-format", choices=["png", "pdf", "svg"], default="png",
                        help="Figure format (default: png)")
    parser.add_argument("--genes", nargs="*", default=[],
                        help="Genes to draw count plots for")
    parser.add_argument("--color-by", default=None,
                        help="PCA color / count-plot grouping column (default: first design factor)")
    parser.add_argument("--shape-by", default=None, help="PCA marker column")

    parser.set_defaults(func=run_differential)


def run_differential(args: argparse.Namespace) -> int:
    """Execute the differential command."""
    import matplotlib
    matplotlib.use("Agg")

    from rnadiff.config import AnalysisSpec, FilterConfig, PlotConfig
    from rnadiff.io.metadata import relevel
    from rnadiff.io.writers import load_count_matrix
    from rnadiff.stats.deseq import DESeqConfig
    from rnadiff.viz.core import FigureCollection
    from rnadiff.workflow import plot_analysis, prefilter, run_analysis, save_figures, write_analysis, write_prefiltered

    spec = AnalysisSpec(
        name=args.name or args.output.name,
        formula=args.design,
        contrasts=list(args.contrast),
        shrink=list(args.shrink),
        subset=_pairs_to_subset(args.subset),
        lfc_min=args.lfc_min,
    )
    deseq = DESeqConfig(
        fit_type=args.fit_type,
        size_factors_fit_type=args.size_factors,
        refit_cooks=not args.no_cooks_refit,
        independent_filter=not args.no_independent_filter,
        alpha=args.alpha,
        lfc_threshold=args.lfc_threshold,
        alt_hypothesis=args.alt_hypothesis,
        n_cpus=args.n_cpus,
        length_correction=not args.no_length_correction,
    )
    filter_cfg = FilterConfig(
        enabled=not args.no_prefilter,
        min_count=args.min_count,
        min_samples=args.min_samples,
        group_col=args.group_col,
    )

    try:
        matrix = load_count_matrix(args.matrix)
        metadata = matrix.sample_metadata
        for column, level in args.relevel:
            metadata = relevel(metadata, column, _match_level(metadata[column], level))
        matrix = matrix.with_metadata(metadata)

        filtered, filter_result = prefilter(matrix, filter_cfg)
        if filter_result is not None:
            write_prefiltered(matrix, filter_result, args.output / "prefiltered_genes.csv")

        outcome = run_analysis(filtered, spec, deseq)
        write_analysis(outcome, args.output)
    except (FileNotFoundError, KeyError, ValueError, TypeError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    for res in outcome.results.values():
        print(res.summary().format())
    for label, message in outcome.shrink_errors.items():
        print(f"WARNING: shrinkage of {label} skipped: {message}", file=sys.stderr)

    if not args.no_plots:
        figures = FigureCollection()
        plots = PlotConfig(
            format=args.plot_format,
            genes=list(args.genes),
            pca_color=args.color_by,
            pca_shape=args.shape_by,
            count_group=args.color_by,
        )
        try:
            plot_analysis(outcome, plots, figures)
            # figures land in {output}/figures
            renamed = FigureCollection()
            for key, figure in figures:
                renamed.add(key.split("/", 1)[-1], figure)
            saved = save_figures(renamed, args.output, plots.format)
        except (KeyError, ValueError) as e:
            print(f"ERROR: plotting failed: {e}", file=sys.stderr)
            return 1
        finally:
            figures.close_all()
        print(f"Saved {len(saved)} figures to {args.output / 'figures'}")

    print(f"Results written to {args.output}")
    return 0


def _match_level(values, level: str):
    """Level as given on the command line, converted to the column's value type."""
    if isinstance(values.dtype, pd.CategoricalDtype):
        observed = values.cat.categories
    else:
        observed = values.dropna().unique()
    for candidate in observed:
        if str(candidate) == level:
            return candidate
    return level
