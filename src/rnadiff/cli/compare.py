"""
Compare a results table with a precomputed reference.

The reference may be any CSV/TSV results table; fold-change and
(adjusted) p-value columns are recognised under their DESeq2, edgeR and
limma names, or named explicitly.

Usage:
    rnadiff compare \\
        --results results/airway/cell_dex/results_dex_trt_vs_untrt.csv \\
        --reference published/airway_deseq2.csv \\
        --output results/airway/comparison
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from rnadiff.cli._validators import _probability


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the compare subcommand."""
    parser = subparsers.add_parser(
        "compare",
        help="Compare a results table with a reference",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--results", "-r", type=Path, required=True,
                        help="Our results CSV (gene id first column, log2FoldChange, padj)")
    parser.add_argument("--reference", type=Path, required=True,
                        help="Reference results table (CSV/TSV)")
    parser.add_argument("--alpha", type=_probability, default=0.1,
                        help="Adjusted p-value cutoff for both tables (default: 0.1)")
    parser.add_argument("--id-col", default=None, help="Reference gene id column (default: first)")
    parser.add_argument("--lfc-col", default=None, help="Reference log2 fold-change column")
    parser.add_argument("--padj-col", default=None, help="Reference adjusted p-value column")
    parser.add_argument("--pvalue-col", default=None, help="Reference p-value column")
    parser.add_argument("--keep-versions", action="store_true",
                        help="Match gene ids including version suffixes")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Directory for comparison.json, comparison.csv and the scatter plot")

    parser.set_defaults(func=run_compare)


def run_compare(args: argparse.Namespace) -> int:
    """Execute the compare command."""
    import pandas as pd

    from rnadiff.stats.compare import compare_results, load_reference
    from rnadiff.utils.fileio import atomic_write_json

    try:
        if not args.results.exists():
            raise FileNotFoundError(f"Results file not found: {args.results}")
        ours = pd.read_csv(args.results, index_col=0)
        missing = [c for c in ("log2FoldChange", "padj") if c not in ours.columns]
        if missing:
            raise ValueError(f"{args.results} is missing columns {missing}")
        ours.index = ours.index.astype(str)

        reference = load_reference(
            args.reference,
            id_col=args.id_col,
            lfc_col=args.lfc_col,
            padj_col=args.padj_col,
            pvalue_col=args.pvalue_col,
        )
        comparison = compare_results(
            ours,
            reference,
            alpha=args.alpha,
            strip_versions=not args.keep_versions,
            label=args.results.stem,
        )
    except (FileNotFoundError, KeyError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(comparison.format())

    if args.output is not None:
        import matplotlib
        matplotlib.use("Agg")
        from rnadiff.viz.de import DEVisualizer

        args.output.mkdir(parents=True, exist_ok=True)
        atomic_write_json(args.output / "comparison.json", comparison.to_dict())
        comparison.joined.to_csv(args.output / "comparison.csv", index_label="gene_id")
        figure = DEVisualizer().plot_comparison(comparison)
        try:
            figure.save(args.output / "comparison.png", dpi=150)
        finally:
            figure.close()
        print(f"\nComparison written to {args.output}")

    return 0
