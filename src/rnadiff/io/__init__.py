"""
I/O for transcript quantifications, sample tables and count matrices.

Key Functions:
    - load_sample_table: Read the sample-metadata table
    - read_quant_files: Read per-sample salmon/kallisto/RSEM tables
    - load_tx2gene: Read the transcript-to-gene mapping
    - tximport: Summarise transcripts to a gene-level CountMatrix
    - write_matrix / load_count_matrix: CSV round trip of a CountMatrix
    - write_results: Export a results table

Examples:
    >>> from rnadiff.io import load_sample_table, discover_quant_files, tximport
    >>> meta = load_sample_table("SraRunTable.txt", sample_col="Run")
    >>> files = discover_quant_files("quants", meta.index)
    >>> matrix = tximport(files, "tx2gene.csv", sample_metadata=meta)
"""

from rnadiff.io.formats import QuantFormat, PRESETS, detect_format, sniff_delimiter
from rnadiff.io.ids import strip_version, strip_after_bar, make_unique
from rnadiff.io.metadata import (
    load_sample_table,
    relevel,
    set_levels,
    drop_unused_levels,
    combine_factors,
    nest_within,
    rename_columns,
    map_values,
    align_to,
    subset_samples,
)
from rnadiff.io.quant import TranscriptQuant, read_quant_file, read_quant_files, discover_quant_files
from rnadiff.io.tx2gene import Tx2Gene, load_tx2gene
from rnadiff.io.tximport import tximport, length_scaled_counts
from rnadiff.io.writers import write_matrix, load_count_matrix, write_results, write_sample_metadata, to_anndata, write_h5ad

__all__ = [
    'QuantFormat',
    'PRESETS',
    'detect_format',
    'sniff_delimiter',
    'strip_version',
    'strip_after_bar',
    'make_unique',
    'load_sample_table',
    'relevel',
    'set_levels',
    'drop_unused_levels',
    'combine_factors',
    'nest_within',
    'rename_columns',
    'map_values',
    'align_to',
    'subset_samples',
    'TranscriptQuant',
    'read_quant_file',
    'read_quant_files',
    'discover_quant_files',
    'Tx2Gene',
    'load_tx2gene',
    'tximport',
    'length_scaled_counts',
    'write_matrix',
    'load_count_matrix',
    'write_results',
    'write_sample_metadata',
    'to_anndata',
    'write_h5ad',
]
