"""
Per-gene provenance flags for count matrices and result tables.

A gene can reach the end of an RNA-seq workflow with its statistics missing
for several distinct reasons, and the reason matters when the table is read:

    - ALL_ZERO: no reads in any sample, nothing to test
    - PREFILTERED: dropped by the low-count pre-filter before fitting
    - LOW_COUNT: tested, but independent filtering set padj to NA
    - COOKS_OUTLIER: a single sample dominates the fit, p-value set to NA
    - ID_DISAMBIGUATED: identifier was suffixed to stay unique after
      version truncation (e.g. ENSG00000182378.14 and ENSG00000182378.14_PAR_Y)

IntFlag keeps one integer per gene and lets reasons combine with ``|``.

Examples:
    >>> from rnadiff.core.flags import GeneFlag, describe_flags
    >>> flag = GeneFlag.LOW_COUNT | GeneFlag.ID_DISAMBIGUATED
    >>> bool(flag & GeneFlag.LOW_COUNT)
    True
    >>> describe_flags(int(flag))
    ['LOW_COUNT', 'ID_DISAMBIGUATED']
"""

from __future__ import annotations

from enum import IntFlag

__all__ = ['GeneFlag', 'describe_flags']


class GeneFlag(IntFlag):
    """
    Bitwise flags describing what happened to a gene.

    Attributes:
        OK: Gene tested normally (0)
        ALL_ZERO: Zero counts in every sample (1)
        PREFILTERED: Removed by the low-count pre-filter (2)
        LOW_COUNT: padj set to NA by independent filtering (4)
        COOKS_OUTLIER: pvalue set to NA because of a Cook's distance outlier (8)
        ID_DISAMBIGUATED: Identifier suffixed by make_unique (16)
    """

    OK = 0
    ALL_ZERO = 1
    PREFILTERED = 2
    LOW_COUNT = 4
    COOKS_OUTLIER = 8
    ID_DISAMBIGUATED = 16


def describe_flags(value: int) -> list[str]:
    """Names of the flags set in ``value``, in bit order (``[]`` for OK)."""
    return [flag.name for flag in GeneFlag if flag.value and value & flag.value]
