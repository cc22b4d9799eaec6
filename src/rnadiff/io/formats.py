"""
Format configuration for transcript-quantification files.

Each quantifier writes one table per sample with the same four quantities
under different column names. A QuantFormat names those columns; presets
cover salmon, kallisto and RSEM, and anything else is a one-line custom
format.

Design Principles:
    1. Auto-detect what is unambiguous (gzip compression, delimiter, preset
       from the header line)
    2. Require explicit configuration for everything else
    3. Fail fast with the file name in the message

Examples:
    >>> from rnadiff.io.formats import QuantFormat, PRESETS
    >>> fmt = PRESETS['salmon']
    >>> fmt.counts_col
    'NumReads'
    >>> custom = QuantFormat(
    ...     name="stringtie",
    ...     id_col="t_name",
    ...     length_col="length",
    ...     effective_length_col="length",
    ...     abundance_col="TPM",
    ...     counts_col="cov",
    ... )
"""

from __future__ import annotations

import csv
import gzip
import io
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Optional

__all__ = [
    'QuantFormat',
    'PRESETS',
    'get_format',
    'is_gzipped',
    'open_text',
    'sniff_delimiter',
    'detect_format',
]

_GZIP_MAGIC = b"\x1f\x8b"


@dataclass(frozen=True)
class QuantFormat:
    """
    Column layout of a per-sample quantification table.

    Attributes:
        name: Preset or tool name
        id_col: Transcript identifier column
        length_col: Transcript length
        effective_length_col: Effective length (fragment-length corrected)
        abundance_col: Abundance in TPM
        counts_col: Estimated read counts
        delimiter: Column delimiter (None = sniff)
    """

    name: str
    id_col: str
    length_col: str
    effective_length_col: str
    abundance_col: str
    counts_col: str
    delimiter: Optional[str] = "\t"

    @property
    def required_columns(self) -> tuple[str, ...]:
        return (self.id_col, self.effective_length_col, self.abundance_col, self.counts_col)


PRESETS: dict[str, QuantFormat] = {
    # quant.sf / quant.sf.gz
    'salmon': QuantFormat(
        name="salmon",
        id_col="Name",
        length_col="Length",
        effective_length_col="EffectiveLength",
        abundance_col="TPM",
        counts_col="NumReads",
    ),
    # abundance.tsv (abundance.h5 is not read)
    'kallisto': QuantFormat(
        name="kallisto",
        id_col="target_id",
        length_col="length",
        effective_length_col="eff_length",
        abundance_col="tpm",
        counts_col="est_counts",
    ),
    # *.isoforms.results
    'rsem': QuantFormat(
        name="rsem",
        id_col="transcript_id",
        length_col="length",
        effective_length_col="effective_length",
        abundance_col="TPM",
        counts_col="expected_count",
    ),
}


def get_format(fmt: str | QuantFormat) -> QuantFormat:
    """
    Resolve a preset name or pass a QuantFormat through.

    Raises:
        KeyError: Unknown preset name
    """
    if isinstance(fmt, QuantFormat):
        return fmt
    try:
        return PRESETS[fmt.lower()]
    except KeyError:
        raise KeyError(
            f"Unknown quantification format '{fmt}'. Available: {sorted(PRESETS)}"
        ) from None


def is_gzipped(path: Path) -> bool:
    """True if the file starts with the gzip magic bytes."""
    with open(path, "rb") as f:
        return f.read(2) == _GZIP_MAGIC


def open_text(path: Path) -> IO[str]:
    """
    Open a plain or gzip-compressed text file.

    Compression is taken from the magic bytes, so a ``.gz`` suffix on an
    uncompressed file (or a compressed file without one) still reads.
    """
    path = Path(path)
    if is_gzipped(path):
        return io.TextIOWrapper(gzip.open(path, "rb"), encoding="utf-8")
    return open(path, "r", encoding="utf-8")


def sniff_delimiter(path: Path, sample_size: int = 8192) -> str:
    """
    Auto-detect delimiter from file content.

    Uses Python's csv.Sniffer with a count-based fallback on the header line.

    Raises:
        ValueError: If delimiter cannot be determined
    """
    with open_text(path) as f:
        sample = f.read(sample_size)

    try:
        dialect = csv.Sniffer().sniff(sample, delimiters='\t,;')
        return dialect.delimiter
    except csv.Error:
        pass

    first_line = sample.split('\n')[0]
    counts = {
        '\t': first_line.count('\t'),
        ',': first_line.count(','),
        ';': first_line.count(';'),
    }

    if max(counts.values()) == 0:
        raise ValueError(
            f"Could not detect delimiter in {path}. Please specify it explicitly"
        )

    return max(counts, key=counts.get)


def detect_format(path: str | Path) -> QuantFormat:
    """
    Pick the preset whose required columns all appear in the header line.

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If no preset matches
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Quantification file not found: {path}")

    with open_text(path) as f:
        header = f.readline().rstrip("\r\n")

    columns = {c.strip() for c in header.replace(",", "\t").split("\t")}
    for fmt in PRESETS.values():
        if set(fmt.required_columns) <= columns:
            return fmt

    raise ValueError(
        f"Could not detect quantification format of {path.name}; header columns: "
        f"{sorted(columns)}. Known formats: {sorted(PRESETS)}"
    )
