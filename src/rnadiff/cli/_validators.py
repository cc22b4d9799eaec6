"""Shared argparse type validators for CLI parameter bounds checking.

These validators produce clear error messages when users pass invalid
values (e.g., ``--alpha 2.0``, ``--n-cpus 0``).  They are intended to be
used as the ``type=`` argument in ``add_argument()``.
"""

from __future__ import annotations

import argparse


def _positive_int(value: str) -> int:
    """argparse type for positive integers (> 0)."""
    ivalue = int(value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError(f"{value} is not a positive integer")
    return ivalue


def _probability(value: str) -> float:
    """argparse type for values in the open interval (0, 1)."""
    fvalue = float(value)
    if not (0 < fvalue < 1):
        raise argparse.ArgumentTypeError(
            f"{value} is not a valid probability (must be in (0, 1))"
        )
    return fvalue


def _non_negative_float(value: str) -> float:
    """argparse type for floats >= 0 (count and fold-change thresholds)."""
    fvalue = float(value)
    if fvalue < 0:
        raise argparse.ArgumentTypeError(f"{value} must be >= 0")
    return fvalue


def _key_value(value: str) -> tuple[str, str]:
    """argparse type for ``column=value`` pairs."""
    if "=" not in value:
        raise argparse.ArgumentTypeError(f"'{value}' is not of the form column=value")
    key, _, val = value.partition("=")
    key, val = key.strip(), val.strip()
    if not key:
        raise argparse.ArgumentTypeError(f"'{value}' has an empty column name")
    return key, val


def _pairs_to_subset(pairs) -> dict:
    """Group ``column=value`` pairs; repeated columns match any of their values."""
    subset: dict = {}
    for key, val in pairs or []:
        subset.setdefault(key, []).append(val)
    return {k: v[0] if len(v) == 1 else v for k, v in subset.items()}
