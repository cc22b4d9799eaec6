"""
Import transcript quantifications as a gene-level count matrix.

Reads the sample table, finds one salmon/kallisto/RSEM file per sample,
maps transcripts to genes and writes the counts, abundance (TPM) and
average transcript length matrices.

Usage:
    rnadiff import \\
        --metadata SraRunTable.txt --sample-col Run \\
        --quant-dir quants --pattern "{sample}/quant.sf.gz" \\
        --tx2gene tx2gene.gencode.v27.csv \\
        --output results/airway/gene
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from rnadiff.core.countmatrix import COUNT_MODES
from rnadiff.io.formats import PRESETS


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the import subcommand."""
    parser = subparsers.add_parser(
        "import",
        help="Summarise transcript quantifications to a gene-level matrix",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--metadata", "-m", type=Path, required=True,
                        help="Sample table (TSV/CSV), one row per sample")
    parser.add_argument("--sample-col", default=None,
                        help="Sample id column (default: first column)")
    parser.add_argument("--quant-dir", "-q", type=Path, required=True,
                        help="Directory holding the per-sample quantifications")
    parser.add_argument("--pattern", default=None,
                        help="File template relative to --quant-dir with a {sample} placeholder "
                             "(default: try the usual salmon/kallisto/RSEM layouts)")
    parser.add_argument("--format", "-f", choices=sorted(PRESETS) + ["auto"], default="salmon",
                        help="Quantifier output format (default: salmon)")
    parser.add_argument("--tx2gene", "-t", type=Path, default=None,
                        help="Transcript-to-gene table (required unless --tx-out)")
    parser.add_argument("--tx-col", default=None, help="Transcript column of --tx2gene (default: first)")
    parser.add_argument("--gene-col", default=None, help="Gene column of --tx2gene (default: second)")
    parser.add_argument("--counts-from-abundance", choices=COUNT_MODES, default="no",
                        help="Counts to report: original (no) or generated from abundance (default: no)")
    parser.add_argument("--ignore-tx-version", action="store_true",
                        help="Match transcript ids without version suffixes")
    parser.add_argument("--ignore-after-bar", action="store_true",
                        help="Match transcript ids on the text before the first '|'")
    parser.add_argument("--strip-gene-version", action="store_true",
                        help="Remove gene version suffixes after aggregation")
    parser.add_argument("--tx-out", action="store_true",
                        help="Keep transcript-level matrices")
    parser.add_argument("--output", "-o", type=Path, required=True,
                        help="Output base path (writes {output}.counts.csv, .abundance.csv, ...)")
    parser.add_argument("--h5ad", action="store_true",
                        help="Also write {output}.h5ad (AnnData, samples x genes)")

    parser.set_defaults(func=run_import)


def run_import(args: argparse.Namespace) -> int:
    """Execute the import command."""
    from rnadiff.io.metadata import load_sample_table
    from rnadiff.io.quant import discover_quant_files
    from rnadiff.io.tx2gene import load_tx2gene
    from rnadiff.io.tximport import tximport
    from rnadiff.io.writers import write_h5ad, write_matrix

    if args.tx2gene is None and not args.tx_out:
        print("ERROR: --tx2gene is required unless --tx-out is given", file=sys.stderr)
        return 1

    try:
        metadata = load_sample_table(args.metadata, sample_col=args.sample_col)
        files = discover_quant_files(args.quant_dir, metadata.index, pattern=args.pattern)
        print(f"Found {len(files)} quantification files under {args.quant_dir}")

        tx2gene = None
        if args.tx2gene is not None:
            tx2gene = load_tx2gene(args.tx2gene, tx_col=args.tx_col, gene_col=args.gene_col)
            print(f"tx2gene: {len(tx2gene.mapping)} transcripts -> {tx2gene.n_genes} genes")

        matrix = tximport(
            files,
            tx2gene,
            fmt=None if args.format == "auto" else args.format,
            counts_from_abundance=args.counts_from_abundance,
            ignore_tx_version=args.ignore_tx_version,
            ignore_after_bar=args.ignore_after_bar,
            tx_out=args.tx_out,
            strip_gene_version=args.strip_gene_version,
            sample_metadata=metadata,
        )
        written = write_matrix(matrix, args.output)
        if args.h5ad:
            written.append(write_h5ad(matrix, str(args.output) + ".h5ad"))
    except (FileNotFoundError, KeyError, ValueError, TypeError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    level = "transcripts" if args.tx_out else "genes"
    print(f"\nImported {matrix.n_features} {level} × {matrix.n_samples} samples "
          f"(counts_from_abundance={matrix.counts_from_abundance})")
    for path in written:
        print(f"  {path}")
    return 0
