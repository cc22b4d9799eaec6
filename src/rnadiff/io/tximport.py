"""
Transcript-to-gene summarisation of quantification files (tximport).

Quantifiers estimate transcript abundance. Differential testing happens at
the gene level, so transcript estimates are aggregated per gene:

    counts    = sum of transcript counts
    abundance = sum of transcript TPM
    length    = TPM-weighted mean of transcript effective lengths

The length matrix matters: when isoform usage changes between samples, the
average transcript length of a gene changes too, and with it the number of
fragments sequenced at equal expression. Either the length matrix is carried
to the model as a per-gene offset (``counts_from_abundance="no"``), or counts
are regenerated from abundance so the bias is removed up front
(``"scaledTPM"``, ``"lengthScaledTPM"``, ``"dtuScaledTPM"``).

Examples:
    >>> from rnadiff.io.tximport import tximport
    >>> matrix = tximport(
    ...     files,
    ...     "tx2gene.gencode.v27.csv",
    ...     fmt="salmon",
    ...     ignore_after_bar=True,
    ...     sample_metadata=meta,
    ... )
    >>> matrix.counts_from_abundance
    'no'
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional, Sequence
import logging
import warnings
import numpy as np
import pandas as pd

from rnadiff.core.countmatrix import CountMatrix, COUNT_MODES
from rnadiff.core.flags import GeneFlag
from rnadiff.io.formats import QuantFormat
from rnadiff.io.ids import make_unique, strip_after_bar, strip_version
from rnadiff.io.quant import TranscriptQuant, read_quant_files
from rnadiff.io.tx2gene import Tx2Gene, load_tx2gene

__all__ = ['tximport', 'summarize_to_gene', 'length_scaled_counts', 'scale_to_library']

logger = logging.getLogger(__name__)


def scale_to_library(new_counts: np.ndarray, counts: np.ndarray) -> np.ndarray:
    """Rescale each column of ``new_counts`` to the column sum of ``counts``."""
    target = counts.sum(axis=0)
    current = new_counts.sum(axis=0)
    if np.any(current <= 0):
        empty = np.flatnonzero(current <= 0).tolist()
        raise ValueError(f"Samples at positions {empty} have zero total abundance")
    return new_counts * (target / current)


def _resolve_tx2gene(tx2gene) -> Optional[Tx2Gene]:
    if tx2gene is None or isinstance(tx2gene, Tx2Gene):
        return tx2gene
    if isinstance(tx2gene, pd.DataFrame):
        return Tx2Gene.from_frame(tx2gene)
    return load_tx2gene(tx2gene)


def _fill_missing_lengths(weighted: pd.DataFrame, fallback: pd.Series) -> pd.DataFrame:
    """
    Replace undefined gene lengths (zero abundance in a sample).

    Partially defined rows take the geometric mean of their defined samples;
    rows undefined everywhere take ``fallback`` (mean transcript length).
    """
    values = weighted.to_numpy(dtype=float)
    missing = ~np.isfinite(values)
    if not missing.any():
        return weighted

    with np.errstate(divide="ignore", invalid="ignore"), warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        logs = np.where(missing, np.nan, np.log(values))
        geo = np.exp(np.nanmean(logs, axis=1))

    geo = np.where(np.isfinite(geo), geo, fallback.reindex(weighted.index).to_numpy())
    filled = np.where(missing, geo[:, None], values)
    logger.debug(
        f"Filled {int(missing.sum())} undefined gene lengths "
        f"({int(missing.all(axis=1).sum())} genes undefined in every sample)"
    )
    return pd.DataFrame(filled, index=weighted.index, columns=weighted.columns)


def summarize_to_gene(
    tx: TranscriptQuant,
    gene_of: pd.Series,
) -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """
    Aggregate transcript matrices to genes.

    Args:
        tx: Transcript-level matrices
        gene_of: Gene id per transcript (from ``Tx2Gene.match``)

    Returns:
        (counts, abundance, length) gene x sample DataFrames, genes sorted
    """
    mask = tx.counts.index.isin(gene_of.index)
    labels = gene_of.reindex(tx.counts.index[mask]).to_numpy()

    counts_tx = tx.counts[mask]
    abundance_tx = tx.abundance[mask]
    length_tx = tx.length[mask]

    counts = counts_tx.groupby(labels, sort=True).sum()
    abundance = abundance_tx.groupby(labels, sort=True).sum()

    weighted_sum = (abundance_tx * length_tx).groupby(labels, sort=True).sum()
    with np.errstate(divide="ignore", invalid="ignore"):
        weighted = weighted_sum / abundance.replace(0.0, np.nan)

    mean_tx_length = length_tx.mean(axis=1).groupby(labels, sort=True).mean()
    length = _fill_missing_lengths(weighted, mean_tx_length)

    for frame in (counts, abundance, length):
        frame.index.name = "gene_id"
    return counts, abundance, length


def _counts_from_abundance(
    counts: np.ndarray,
    abundance: np.ndarray,
    length: np.ndarray,
    mode: str,
    dtu_length: Optional[np.ndarray] = None,
) -> np.ndarray:
    if mode == "scaledTPM":
        new_counts = abundance
    elif mode == "lengthScaledTPM":
        new_counts = abundance * length.mean(axis=1, keepdims=True)
    elif mode == "dtuScaledTPM":
        new_counts = abundance * dtu_length[:, None]
    else:
        return counts
    return scale_to_library(new_counts, counts)


def tximport(
    files: Mapping[str, str | Path] | Sequence[str | Path] | TranscriptQuant,
    tx2gene: Tx2Gene | pd.DataFrame | str | Path | None,
    fmt: str | QuantFormat | None = "salmon",
    counts_from_abundance: str = "no",
    ignore_tx_version: bool = False,
    ignore_after_bar: bool = False,
    tx_out: bool = False,
    strip_gene_version: bool = False,
    sample_metadata: Optional[pd.DataFrame] = None,
) -> CountMatrix:
    """
    Import transcript quantifications as a gene- (or transcript-) level matrix.

    Args:
        files: Mapping sample -> quantification file, a sequence of files, or
            already-read TranscriptQuant matrices
        tx2gene: Mapping (object, DataFrame or path); optional with tx_out
            unless counts_from_abundance="dtuScaledTPM"
        fmt: Quantifier preset, custom QuantFormat, or None to detect
        counts_from_abundance: "no", "scaledTPM", "lengthScaledTPM" or
            "dtuScaledTPM" (transcript level only)
        ignore_tx_version: Match transcripts with versions removed
        ignore_after_bar: Match transcripts on the text before the first "|"
        tx_out: Return transcript-level matrices instead of genes
        strip_gene_version: Remove gene versions after aggregation; ids that
            then collide are suffixed and flagged ID_DISAMBIGUATED
        sample_metadata: Sample table, aligned to the matrix columns

    Returns:
        CountMatrix with counts, abundance and length assays

    Raises:
        ValueError: Invalid mode combination, unmatched transcripts, or
            metadata missing for a sample
    """
    if counts_from_abundance not in COUNT_MODES:
        raise ValueError(
            f"counts_from_abundance must be one of {COUNT_MODES}, got '{counts_from_abundance}'"
        )
    if counts_from_abundance == "dtuScaledTPM" and not tx_out:
        raise ValueError("dtuScaledTPM is only meaningful at transcript level (tx_out=True)")

    mapping = _resolve_tx2gene(tx2gene)
    if mapping is None and (not tx_out or counts_from_abundance == "dtuScaledTPM"):
        raise ValueError("tx2gene is required unless tx_out=True (and not dtuScaledTPM)")

    tx = files if isinstance(files, TranscriptQuant) else read_quant_files(files, fmt)
    logger.info(
        f"Importing {tx.counts.shape[0]} transcripts × {tx.counts.shape[1]} samples "
        f"(counts_from_abundance={counts_from_abundance}, tx_out={tx_out})"
    )

    if tx_out:
        counts_df, abundance_df, length_df = tx.counts, tx.abundance, tx.length
        dtu_length = None
        if counts_from_abundance == "dtuScaledTPM":
            gene_of = mapping.match(tx.counts.index, ignore_tx_version, ignore_after_bar)
            mask = tx.counts.index.isin(gene_of.index)
            counts_df, abundance_df, length_df = counts_df[mask], abundance_df[mask], length_df[mask]
            labels = gene_of.reindex(counts_df.index).to_numpy()
            dtu_length = (
                length_df.mean(axis=1).groupby(labels).transform("median").to_numpy()
            )
        feature_ids = counts_df.index
        if ignore_after_bar:
            feature_ids = strip_after_bar(feature_ids)
        feature_ids = pd.Index(feature_ids, name="transcript_id")
    else:
        gene_of = mapping.match(tx.counts.index, ignore_tx_version, ignore_after_bar)
        counts_df, abundance_df, length_df = summarize_to_gene(tx, gene_of)
        dtu_length = None
        feature_ids = counts_df.index

    counts = counts_df.to_numpy(dtype=float)
    abundance = abundance_df.to_numpy(dtype=float)
    length = length_df.to_numpy(dtype=float)
    counts = _counts_from_abundance(counts, abundance, length, counts_from_abundance, dtu_length)

    flags = np.full(len(feature_ids), int(GeneFlag.OK), dtype=int)
    if strip_gene_version and not tx_out:
        feature_ids, renamed = make_unique(strip_version(feature_ids))
        feature_ids = pd.Index(feature_ids, name="gene_id")
        if renamed.any():
            warnings.warn(
                f"{int(renamed.sum())} gene ids collided after version removal and were "
                f"suffixed (e.g. {feature_ids[renamed][:3].tolist()})",
                UserWarning,
            )
        flags[renamed] |= int(GeneFlag.ID_DISAMBIGUATED)

    flags[counts.sum(axis=1) == 0] |= int(GeneFlag.ALL_ZERO)

    sample_ids = pd.Index(tx.counts.columns.astype(str), name="sample")
    matrix = CountMatrix(
        counts=counts,
        feature_ids=feature_ids,
        sample_ids=sample_ids,
        abundance=abundance,
        length=length,
        counts_from_abundance=counts_from_abundance,
        gene_flags=flags,
    )
    if sample_metadata is not None:
        matrix = matrix.with_metadata(sample_metadata)

    logger.info(
        f"Imported {matrix.n_features} {'transcripts' if tx_out else 'genes'} × "
        f"{matrix.n_samples} samples; {int((flags & GeneFlag.ALL_ZERO).astype(bool).sum())} all-zero"
    )
    return matrix


def length_scaled_counts(matrix: CountMatrix) -> CountMatrix:
    """
    Derive lengthScaledTPM counts from an original-counts matrix.

    For engines that take per-sample size factors only: the average
    transcript length bias is moved into the counts instead of an offset.

    Raises:
        ValueError: If the matrix has no abundance/length assays or its
            counts are already derived from abundance
    """
    if matrix.counts_from_abundance != "no":
        raise ValueError(
            f"Counts already derived from abundance ({matrix.counts_from_abundance})"
        )
    if matrix.abundance is None or matrix.length is None:
        raise ValueError("Length-scaled counts need both abundance and length assays")

    new_counts = _counts_from_abundance(
        matrix.counts, matrix.abundance, matrix.length, "lengthScaledTPM"
    )
    return matrix.with_counts(new_counts, counts_from_abundance="lengthScaledTPM")
