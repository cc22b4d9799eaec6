"""
Per-sample transcript-quantification readers.

One table per sequencing run (salmon ``quant.sf``, kallisto
``abundance.tsv``, RSEM ``isoforms.results``), plain or gzip-compressed.
``read_quant_files`` stacks them into transcript x sample matrices for
``rnadiff.io.tximport``.

Examples:
    >>> from rnadiff.io.quant import discover_quant_files, read_quant_files
    >>> files = discover_quant_files("quants/", ["SRR1039508", "SRR1039509"])
    >>> tx = read_quant_files(files, fmt="salmon")
    >>> tx.counts.shape
    (227818, 2)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence
import logging
import pandas as pd

from rnadiff.io.formats import QuantFormat, PRESETS, detect_format, get_format, open_text

__all__ = [
    'QuantFormat',
    'PRESETS',
    'TranscriptQuant',
    'read_quant_file',
    'detect_format',
    'discover_quant_files',
    'read_quant_files',
    'DEFAULT_PATTERNS',
]

logger = logging.getLogger(__name__)

# Tried in order when no pattern is given
DEFAULT_PATTERNS = (
    "{sample}/quant.sf.gz",
    "{sample}/quant.sf",
    "{sample}.sf.gz",
    "{sample}.sf",
    "{sample}_quant.sf.gz",
    "{sample}_quant.sf",
    "{sample}/abundance.tsv.gz",
    "{sample}/abundance.tsv",
    "{sample}.tsv.gz",
    "{sample}.tsv",
    "{sample}.isoforms.results.gz",
    "{sample}.isoforms.results",
)


@dataclass
class TranscriptQuant:
    """
    Transcript x sample matrices read from quantification files.

    Attributes:
        counts: Estimated counts
        abundance: TPM
        length: Effective length
        files: Source file per sample
    """

    counts: pd.DataFrame
    abundance: pd.DataFrame
    length: pd.DataFrame
    files: dict[str, Path]

    @property
    def transcript_ids(self) -> pd.Index:
        return self.counts.index

    @property
    def sample_ids(self) -> pd.Index:
        return self.counts.columns


def read_quant_file(path: str | Path, fmt: str | QuantFormat | None = "salmon") -> pd.DataFrame:
    """
    Read one quantification table.

    Args:
        path: File path, plain or gzip-compressed
        fmt: Preset name, QuantFormat, or None to detect from the header

    Returns:
        DataFrame indexed by transcript id with columns
        ``length`` (effective length), ``abundance`` (TPM) and ``counts``

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If required columns are missing or values are not numeric
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Quantification file not found: {path}")

    fmt = detect_format(path) if fmt is None else get_format(fmt)

    with open_text(path) as handle:
        try:
            table = pd.read_csv(
                handle,
                sep=fmt.delimiter,
                engine="c" if fmt.delimiter else "python",
                dtype={fmt.id_col: str},
            )
        except pd.errors.EmptyDataError as e:
            raise ValueError(f"Quantification file is empty: {path}") from e

    missing = [col for col in fmt.required_columns if col not in table.columns]
    if missing:
        raise ValueError(
            f"{path}: missing {fmt.name} columns {missing}. Found: {list(table.columns)}"
        )

    result = pd.DataFrame(
        {
            "length": pd.to_numeric(table[fmt.effective_length_col], errors="coerce").to_numpy(),
            "abundance": pd.to_numeric(table[fmt.abundance_col], errors="coerce").to_numpy(),
            "counts": pd.to_numeric(table[fmt.counts_col], errors="coerce").to_numpy(),
        },
        index=pd.Index(table[fmt.id_col].astype(str), name="transcript_id"),
    )

    if result.index.has_duplicates:
        dupes = result.index[result.index.duplicated()].unique().tolist()
        raise ValueError(f"{path}: duplicated transcript ids {dupes[:5]}")

    if result.isna().any().any():
        bad = result.columns[result.isna().any()].tolist()
        raise ValueError(f"{path}: non-numeric or missing values in {bad}")

    logger.debug(f"Read {len(result)} transcripts from {path.name} ({fmt.name})")
    return result


def discover_quant_files(
    directory: str | Path,
    sample_ids: Iterable[str],
    pattern: Optional[str] = None,
) -> dict[str, Path]:
    """
    Resolve one quantification file per sample.

    Args:
        directory: Root directory of the quantifications
        sample_ids: Samples, in the order the matrix columns should take
        pattern: Template relative to ``directory`` with a ``{sample}``
            placeholder (e.g. ``"{sample}/quant.sf.gz"``). When None the
            common salmon/kallisto/RSEM layouts are tried in turn.

    Returns:
        Ordered mapping sample id -> file path

    Raises:
        FileNotFoundError: If the directory or any sample's file is missing
        ValueError: If pattern has no ``{sample}`` placeholder
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Quantification directory not found: {directory}")
    if pattern is not None and "{sample}" not in pattern:
        raise ValueError(f"pattern must contain '{{sample}}', got '{pattern}'")

    candidates = (pattern,) if pattern is not None else DEFAULT_PATTERNS
    files: dict[str, Path] = {}
    missing: list[str] = []

    for sample in sample_ids:
        for template in candidates:
            path = directory / template.format(sample=sample)
            if path.is_file():
                files[sample] = path
                break
        else:
            missing.append(sample)

    if missing:
        tried = ", ".join(candidates)
        raise FileNotFoundError(
            f"No quantification file for {len(missing)} samples {missing[:5]} "
            f"under {directory} (tried: {tried})"
        )

    return files


def read_quant_files(
    files: Mapping[str, str | Path] | Sequence[str | Path],
    fmt: str | QuantFormat | None = "salmon",
) -> TranscriptQuant:
    """
    Read every sample's table and stack into transcript x sample matrices.

    Args:
        files: Mapping sample id -> path, or a sequence of paths (sample ids
            are then the file stems)
        fmt: Preset name, QuantFormat, or None to detect from the first file

    Raises:
        ValueError: If no files are given or files disagree on the transcript
            list or its order
    """
    if not isinstance(files, Mapping):
        paths = [Path(p) for p in files]
        files = {p.name.split(".")[0]: p for p in paths}
        if len(files) != len(paths):
            raise ValueError("Sample ids derived from file names are not unique; pass a mapping")
    files = {str(sample): Path(path) for sample, path in files.items()}

    if not files:
        raise ValueError("No quantification files given")

    if fmt is None:
        fmt = detect_format(next(iter(files.values())))
    fmt = get_format(fmt)
    logger.info(f"Reading {len(files)} {fmt.name} quantification files")

    reference_ids: Optional[pd.Index] = None
    reference_sample = None
    counts, abundance, length = {}, {}, {}

    for sample, path in files.items():
        table = read_quant_file(path, fmt)
        if reference_ids is None:
            reference_ids = table.index
            reference_sample = sample
        elif not table.index.equals(reference_ids):
            if len(table.index) == len(reference_ids) and set(table.index) == set(reference_ids):
                detail = "same transcripts in a different order"
            else:
                detail = (
                    f"{len(table.index)} vs {len(reference_ids)} transcripts, "
                    f"{len(table.index.symmetric_difference(reference_ids))} differ"
                )
            raise ValueError(
                f"Transcripts in {path.name} (sample {sample}) do not match "
                f"sample {reference_sample}: {detail}. "
                "All samples must be quantified against the same index"
            )
        counts[sample] = table["counts"].to_numpy()
        abundance[sample] = table["abundance"].to_numpy()
        length[sample] = table["length"].to_numpy()

    def stack(values: dict) -> pd.DataFrame:
        frame = pd.DataFrame(values, index=reference_ids)
        frame.columns.name = "sample"
        return frame

    return TranscriptQuant(
        counts=stack(counts),
        abundance=stack(abundance),
        length=stack(length),
        files=files,
    )
