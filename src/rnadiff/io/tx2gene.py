"""
Transcript-to-gene mapping.

A tx2gene table has one row per transcript: transcript id, gene id, and
optionally further annotation (symbol, biotype). Only the first two columns
matter for aggregation unless named explicitly.

Examples:
    >>> from rnadiff.io.tx2gene import load_tx2gene
    >>> tx2gene = load_tx2gene("tx2gene.gencode.v27.csv")
    >>> genes = tx2gene.match(tx.transcript_ids, ignore_after_bar=True)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional
import logging
import warnings
import pandas as pd

from rnadiff.io.formats import sniff_delimiter, open_text
from rnadiff.io.ids import strip_version, strip_after_bar

__all__ = ['Tx2Gene', 'load_tx2gene']

logger = logging.getLogger(__name__)


@dataclass
class Tx2Gene:
    """
    Transcript -> gene lookup.

    Attributes:
        mapping: Series indexed by transcript id, values gene ids
        source: File the mapping was read from, if any
    """

    mapping: pd.Series
    source: Optional[Path] = None

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, tx_col: Optional[str] = None, gene_col: Optional[str] = None) -> Tx2Gene:
        """
        Build from a DataFrame (first two columns unless named).

        Raises:
            KeyError: If a named column is missing
            ValueError: If the frame has fewer than two columns
        """
        if frame.shape[1] < 2:
            raise ValueError(f"tx2gene needs at least two columns, got {list(frame.columns)}")
        tx_col = tx_col or frame.columns[0]
        gene_col = gene_col or frame.columns[1]
        for col in (tx_col, gene_col):
            if col not in frame.columns:
                raise KeyError(f"Column '{col}' not in tx2gene. Available: {list(frame.columns)}")

        pairs = frame[[tx_col, gene_col]].dropna()
        tx_ids = pairs[tx_col].astype(str).str.strip()
        genes = pairs[gene_col].astype(str).str.strip()

        dup = tx_ids.duplicated(keep="first")
        if dup.any():
            warnings.warn(
                f"{int(dup.sum())} duplicated transcript rows in tx2gene; keeping first occurrence",
                UserWarning,
            )
        mapping = pd.Series(genes[~dup].to_numpy(), index=pd.Index(tx_ids[~dup].to_numpy(), name="transcript_id"), name="gene_id")
        return cls(mapping=mapping)

    def __len__(self) -> int:
        return len(self.mapping)

    @property
    def n_genes(self) -> int:
        return self.mapping.nunique()

    def match(
        self,
        tx_ids: Iterable[str],
        ignore_version: bool = False,
        ignore_after_bar: bool = False,
    ) -> pd.Series:
        """
        Look up the gene of each transcript.

        Args:
            tx_ids: Transcript ids as reported by the quantifier
            ignore_version: Compare ids with ``.N`` versions removed (both sides)
            ignore_after_bar: Compare only the text before the first ``|``

        Returns:
            Series indexed by the original transcript ids (mapped ones only,
            input order kept), values gene ids

        Raises:
            ValueError: If no transcript maps to a gene
        """
        original = pd.Index(tx_ids, dtype=object).astype(str)
        keys = original
        if ignore_after_bar:
            keys = strip_after_bar(keys)
        if ignore_version:
            keys = strip_version(keys)

        lookup = self.mapping
        if ignore_version:
            lookup = lookup.copy()
            lookup.index = strip_version(lookup.index)
            lookup = lookup[~lookup.index.duplicated(keep="first")]

        genes = pd.Series(lookup.reindex(keys).to_numpy(), index=original, name="gene_id")
        unmapped = genes.isna()

        if unmapped.all():
            example = original[:3].tolist()
            raise ValueError(
                f"None of the {len(original)} transcripts (e.g. {example}) are in tx2gene "
                f"(e.g. {self.mapping.index[:3].tolist()}). "
                "Check ignore_version / ignore_after_bar"
            )
        if unmapped.any():
            warnings.warn(
                f"{int(unmapped.sum())} of {len(original)} transcripts missing from tx2gene "
                f"and dropped (e.g. {original[unmapped.to_numpy()][:3].tolist()})",
                UserWarning,
            )
        return genes[~unmapped]


def load_tx2gene(
    path: str | Path,
    tx_col: Optional[str] = None,
    gene_col: Optional[str] = None,
    sep: Optional[str] = None,
) -> Tx2Gene:
    """
    Read a transcript-to-gene table (CSV/TSV, optionally gzipped).

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the table is empty or has fewer than two columns
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"tx2gene file not found: {path}")

    if sep is None:
        sep = sniff_delimiter(path)

    with open_text(path) as handle:
        try:
            frame = pd.read_csv(handle, sep=sep, dtype=str)
        except pd.errors.EmptyDataError as e:
            raise ValueError(f"tx2gene file is empty: {path}") from e

    tx2gene = Tx2Gene.from_frame(frame, tx_col=tx_col, gene_col=gene_col)
    tx2gene.source = path
    logger.info(f"Loaded tx2gene: {len(tx2gene)} transcripts -> {tx2gene.n_genes} genes from {path.name}")
    return tx2gene
