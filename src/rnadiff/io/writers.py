"""
CSV writers and readers for count matrices and result tables.

A CountMatrix is written as a family of files sharing a base path:

    {base}.counts.csv     estimated (or abundance-derived) counts
    {base}.abundance.csv  TPM
    {base}.length.csv     effective length
    {base}.metadata.csv   sample table
    {base}.flags.csv      per-gene GeneFlag values
    {base}.info.json      count mode and factor level order

Plain CSV keeps every file readable from R, Excel or a shell; the info file
carries what CSV cannot (Categorical level order, counts provenance), so
``load_count_matrix`` restores an equivalent matrix.

For scanpy/pydeseq2 users the same matrix converts to an AnnData object
(samples x genes, counts in X, abundance and length as layers).

Examples:
    >>> from rnadiff.io.writers import write_matrix, load_count_matrix
    >>> write_matrix(matrix, "results/airway")
    >>> restored = load_count_matrix("results/airway")
    >>> write_h5ad(matrix, "results/airway.h5ad")
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable
import anndata as ad
import numpy as np
import pandas as pd

from rnadiff.core.countmatrix import CountMatrix
from rnadiff.core.flags import describe_flags
from rnadiff.utils.fileio import atomic_write_json

__all__ = ['write_matrix', 'load_count_matrix', 'write_results', 'write_sample_metadata', 'to_anndata', 'write_h5ad']

logger = logging.getLogger(__name__)


def _with_suffix(base: Path, suffix: str) -> Path:
    return Path(str(base) + suffix)


def _read_indexed(path: Path) -> pd.DataFrame:
    """CSV with its first column as a string index (ids like "001" stay intact)."""
    first = pd.read_csv(path, nrows=0).columns[0]
    return pd.read_csv(path, index_col=0, dtype={first: str})


def write_sample_metadata(metadata: pd.DataFrame, path: str | Path) -> Path:
    """Write a sample table with the sample id as first column."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame = metadata.copy()
    frame.index.name = frame.index.name or "sample"
    frame.reset_index().to_csv(path, index=False)
    return path


def write_matrix(
    matrix: CountMatrix,
    path_base: str | Path,
    assays: Iterable[str] = ("counts", "abundance", "length"),
) -> list[Path]:
    """
    Write a CountMatrix as CSV files sharing ``path_base``.

    Assays not present on the matrix are skipped.

    Returns:
        Paths written

    Raises:
        TypeError: If matrix is not a CountMatrix
        ValueError: If matrix is empty
    """
    if not isinstance(matrix, CountMatrix):
        raise TypeError(f"matrix must be CountMatrix, got {type(matrix)}")
    if matrix.counts.size == 0:
        raise ValueError("Cannot write empty matrix")

    base = Path(path_base)
    base.parent.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []

    for assay in assays:
        values = getattr(matrix, assay, None)
        if values is None:
            continue
        out = _with_suffix(base, f".{assay}.csv")
        frame = matrix.to_frame(assay)
        frame.index.name = matrix.feature_ids.name or "feature_id"
        frame.to_csv(out)
        written.append(out)

    written.append(write_sample_metadata(matrix.sample_metadata, _with_suffix(base, ".metadata.csv")))

    flags = pd.DataFrame(
        {
            "flags": matrix.gene_flags,
            "flag_names": [";".join(describe_flags(int(v))) for v in matrix.gene_flags],
        },
        index=pd.Index(matrix.feature_ids, name=matrix.feature_ids.name or "feature_id"),
    )
    flags_path = _with_suffix(base, ".flags.csv")
    flags.to_csv(flags_path)
    written.append(flags_path)

    levels = {
        col: [str(lvl) for lvl in matrix.sample_metadata[col].cat.categories]
        for col in matrix.sample_metadata.columns
        if isinstance(matrix.sample_metadata[col].dtype, pd.CategoricalDtype)
    }
    info_path = _with_suffix(base, ".info.json")
    atomic_write_json(info_path, {
        "counts_from_abundance": matrix.counts_from_abundance,
        "n_features": matrix.n_features,
        "n_samples": matrix.n_samples,
        "factor_levels": levels,
    })
    written.append(info_path)

    logger.info(f"Wrote {matrix.n_features} × {matrix.n_samples} matrix to {base}.*")
    return written


def load_count_matrix(path_base: str | Path) -> CountMatrix:
    """
    Read a matrix written by ``write_matrix``.

    Only ``{base}.counts.csv`` is required; the other files are used when
    present.

    Raises:
        FileNotFoundError: If the counts file is missing
        ValueError: If the files disagree on features or samples
    """
    base = Path(path_base)
    counts_path = _with_suffix(base, ".counts.csv")
    if not counts_path.exists():
        raise FileNotFoundError(f"Counts file not found: {counts_path}")

    counts = _read_indexed(counts_path)
    counts.index = counts.index.astype(str)
    counts.columns = counts.columns.astype(str)
    if counts.isna().any().any():
        raise ValueError(f"Counts file contains missing values: {counts_path}")

    assays: dict[str, np.ndarray] = {}
    for assay in ("abundance", "length"):
        assay_path = _with_suffix(base, f".{assay}.csv")
        if not assay_path.exists():
            continue
        frame = _read_indexed(assay_path)
        frame.index = frame.index.astype(str)
        frame.columns = frame.columns.astype(str)
        if not frame.index.equals(counts.index) or not frame.columns.equals(counts.columns):
            raise ValueError(f"{assay_path.name} does not match the features/samples of {counts_path.name}")
        assays[assay] = frame.to_numpy(dtype=float)

    info: dict = {}
    info_path = _with_suffix(base, ".info.json")
    if info_path.exists():
        info = json.loads(info_path.read_text())

    metadata = None
    metadata_path = _with_suffix(base, ".metadata.csv")
    if metadata_path.exists():
        metadata = _read_indexed(metadata_path)
        metadata.index = metadata.index.astype(str)
        for col, levels in info.get("factor_levels", {}).items():
            if col in metadata.columns:
                metadata[col] = pd.Categorical(metadata[col].astype(str), categories=levels)

    gene_flags = None
    flags_path = _with_suffix(base, ".flags.csv")
    if flags_path.exists():
        flags = _read_indexed(flags_path)
        flags.index = flags.index.astype(str)
        gene_flags = flags["flags"].reindex(counts.index).fillna(0).to_numpy(dtype=int)

    sample_ids = pd.Index(counts.columns, name="sample")
    matrix = CountMatrix(
        counts=counts.to_numpy(dtype=float),
        feature_ids=pd.Index(counts.index, name=counts.index.name),
        sample_ids=sample_ids,
        abundance=assays.get("abundance"),
        length=assays.get("length"),
        counts_from_abundance=info.get("counts_from_abundance", "no"),
        gene_flags=gene_flags,
    )
    if metadata is not None:
        matrix = matrix.with_metadata(metadata)

    logger.info(f"Loaded {matrix.n_features} × {matrix.n_samples} matrix from {base}.*")
    return matrix


def write_results(results, path: str | Path, include_flags: bool = True) -> Path:
    """
    Write a results table to CSV (gene id as first column).

    Args:
        results: DEResults (anything with ``to_frame``) or a DataFrame
        path: Output CSV path
        include_flags: Keep the flags column when ``results`` is a DEResults
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame = results if isinstance(results, pd.DataFrame) else results.to_frame(include_flags=include_flags)
    frame.to_csv(path, index=True, index_label=frame.index.name or "gene_id")
    logger.debug(f"Wrote {len(frame)} result rows to {path}")
    return path


def to_anndata(matrix: CountMatrix) -> ad.AnnData:
    """
    Samples x genes AnnData with counts in X.

    Abundance and length become layers; gene flags go to ``var``; the count
    mode is kept in ``uns``.
    """
    samples = pd.Index(matrix.sample_ids.astype(str), name=matrix.sample_ids.name)
    genes = pd.Index(matrix.feature_ids.astype(str), name=matrix.feature_ids.name)

    obs = matrix.sample_metadata.copy()
    obs.index = samples
    var = pd.DataFrame({"flags": matrix.gene_flags.astype(int)}, index=genes)

    layers = {}
    if matrix.abundance is not None:
        layers["abundance"] = matrix.abundance.T.copy()
    if matrix.length is not None:
        layers["length"] = matrix.length.T.copy()

    adata = ad.AnnData(X=matrix.counts.T.copy(), obs=obs, var=var, layers=layers)
    adata.uns["counts_from_abundance"] = matrix.counts_from_abundance
    return adata


def write_h5ad(matrix: CountMatrix, path: str | Path) -> Path:
    """Write ``to_anndata(matrix)`` as .h5ad."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    to_anndata(matrix).write_h5ad(path)
    logger.info(f"Wrote {matrix.n_features} × {matrix.n_samples} AnnData to {path}")
    return path
