"""
rnadiff CLI - RNA-seq differential expression from transcript quantifications.

Commands:
    rnadiff import        - Quantification files + tx2gene -> gene-level matrix
    rnadiff differential  - Matrix + design + contrasts -> results, summaries, plots
    rnadiff run           - Whole workflow from a YAML/JSON config
    rnadiff compare       - Results table vs a reference results table
    rnadiff session-info  - Interpreter, platform and package versions
"""

import argparse
import logging
import sys
from typing import Optional, List


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for rnadiff."""
    from rnadiff import __version__

    parser = argparse.ArgumentParser(
        prog="rnadiff",
        description="RNA-seq differential expression (tximport + DESeq2 workflow)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  import        Summarise transcript quantifications to a gene-level matrix
  differential  Fit one design and test contrasts
  run           Run a full analysis from a config file
  compare       Compare a results table with a reference
  session-info  Print package versions

Examples:
  rnadiff import --metadata samples.tsv --sample-col Run --quant-dir quants \\
      --tx2gene tx2gene.csv --output results/gene
  rnadiff differential --matrix results/gene --design "~ cell + dex" \\
      --contrast dex:trt:untrt --shrink dex:trt:untrt --output results/cell_dex
  rnadiff run --config analysis.yaml --n-cpus 4
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Import and register subcommands
    from rnadiff.cli import importing, differential, run, compare, session
    importing.register_parser(subparsers)
    differential.register_parser(subparsers)
    run.register_parser(subparsers)
    compare.register_parser(subparsers)
    session.register_parser(subparsers)

    parsed_args = parser.parse_args(args)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    # Dispatch to subcommand
    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
