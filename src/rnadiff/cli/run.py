"""
Run a complete analysis from a YAML/JSON config file.

Explicitly given command-line options override the config values.

Usage:
    rnadiff run --config analysis.yaml
    rnadiff run --config analysis.yaml --output results/rerun --alpha 0.05 --n-cpus 8
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from rnadiff.cli._validators import _positive_int, _probability


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the run subcommand."""
    parser = subparsers.add_parser(
        "run",
        help="Run a full analysis from a config file",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--config", "-c", type=Path, required=True,
                        help="Path to YAML/JSON analysis config")

    # Overrides: None means "use the config value"
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Output directory (overrides config 'output')")
    parser.add_argument("--alpha", type=_probability, default=None,
                        help="Adjusted p-value cutoff (overrides deseq.alpha)")
    parser.add_argument("--n-cpus", type=_positive_int, default=None,
                        help="Worker processes (overrides deseq.n_cpus)")
    parser.add_argument("--no-plots", action="store_true",
                        help="Skip figures and the HTML report")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Do not print summaries")

    parser.set_defaults(func=run_workflow_command)


def apply_overrides(config, args: argparse.Namespace):
    """Copy explicitly given CLI options onto the parsed config."""
    if args.output is not None:
        config.output = args.output
    if args.alpha is not None:
        config.deseq.alpha = args.alpha
    if args.n_cpus is not None:
        config.deseq.n_cpus = args.n_cpus
    if args.no_plots:
        config.plots.enabled = False
    return config


def run_workflow_command(args: argparse.Namespace) -> int:
    """Execute the run command."""
    import matplotlib
    matplotlib.use("Agg")

    from rnadiff.config import AnalysisConfig, load_config, validate_config
    from rnadiff.workflow import run_workflow

    print(f"Loading configuration from: {args.config}")
    try:
        raw = load_config(args.config)
        config = AnalysisConfig.from_dict(raw, base_dir=args.config.resolve().parent)
        config = apply_overrides(config, args)
        validate_config(config)
    except (FileNotFoundError, ValueError, TypeError) as e:
        print(f"ERROR: Config file error: {e}", file=sys.stderr)
        return 1

    try:
        result = run_workflow(config, echo=not args.quiet)
    except (FileNotFoundError, KeyError, ValueError, TypeError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(f"\n{len(result.analyses)} analyses written to {result.output}")
    return 0
