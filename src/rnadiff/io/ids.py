"""
Identifier clean-up for transcript and gene ids.

Quantifiers report ids exactly as they appear in the transcriptome FASTA, so
the same gene can arrive as ``ENSG00000141510.17`` in one table and
``ENSG00000141510`` in another, and GENCODE headers carry the whole
``ENST...|ENSG...|OTTHUMG...|`` record. These helpers normalise ids without
ever silently merging two distinct features.

Examples:
    >>> from rnadiff.io.ids import strip_version, make_unique
    >>> list(strip_version(["ENSG00000141510.17", "ENSG00000182378.14_PAR_Y"]))
    ['ENSG00000141510', 'ENSG00000182378_PAR_Y']
    >>> ids, renamed = make_unique(["A", "A", "B", "A"])
    >>> list(ids)
    ['A', 'A.1', 'B', 'A.2']
"""

from __future__ import annotations

from typing import Iterable
import numpy as np
import pandas as pd

__all__ = ['strip_version', 'strip_after_bar', 'make_unique']

# ENSG00000182378.14_PAR_Y -> ENSG00000182378_PAR_Y
_VERSION_PATTERN = r"\.\d+((?:_PAR_[XY])?)$"


def strip_version(ids: Iterable[str]) -> pd.Index:
    """Drop a trailing ``.N`` version, keeping any ``_PAR_Y`` suffix."""
    index = pd.Index(ids, dtype=object).astype(str)
    return pd.Index(index.str.replace(_VERSION_PATTERN, r"\1", regex=True), name=index.name)


def strip_after_bar(ids: Iterable[str]) -> pd.Index:
    """Keep the text before the first ``|`` (GENCODE FASTA headers)."""
    index = pd.Index(ids, dtype=object).astype(str)
    return pd.Index(index.str.split("|", n=1).str[0], name=index.name)


def make_unique(ids: Iterable[str], sep: str = ".") -> tuple[pd.Index, np.ndarray]:
    """
    Disambiguate duplicated ids by suffixing ``.1``, ``.2``, ...

    The first occurrence keeps its name; later occurrences get the next free
    suffix in order of appearance. A generated id never collides with an id
    already present in the input.

    Args:
        ids: Identifiers, possibly duplicated
        sep: Separator between id and counter

    Returns:
        (unique ids as pd.Index, boolean mask of renamed positions)
    """
    index = pd.Index(ids, dtype=object).astype(str)
    renamed = np.asarray(index.duplicated(keep="first"))
    if not renamed.any():
        return index, renamed

    values = index.to_numpy(copy=True)
    taken = set(values)
    counters: dict[str, int] = {}

    for pos in np.flatnonzero(renamed):
        base = values[pos]
        k = counters.get(base, 0) + 1
        while f"{base}{sep}{k}" in taken:
            k += 1
        candidate = f"{base}{sep}{k}"
        counters[base] = k
        taken.add(candidate)
        values[pos] = candidate

    return pd.Index(values, name=index.name), renamed
