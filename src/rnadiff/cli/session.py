"""Print the interpreter, platform and package versions (R's sessionInfo)."""

from __future__ import annotations

import argparse
import json


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the session-info subcommand."""
    parser = subparsers.add_parser(
        "session-info",
        help="Print package versions",
        description=__doc__,
    )
    parser.add_argument("--json", action="store_true", help="Print as JSON")
    parser.add_argument("--packages", nargs="*", default=None,
                        help="Distributions to report (default: the analysis stack)")
    parser.set_defaults(func=run_session_info)


def run_session_info(args: argparse.Namespace) -> int:
    """Execute the session-info command."""
    from rnadiff.session import format_session_info, session_info

    info = session_info(args.packages)
    if args.json:
        print(json.dumps(info, indent=2))
    else:
        print(format_session_info(info))
    return 0
