"""
Statistical analysis: design, fitting, results, QC projections, comparison.

Modules:
    - design: patsy model matrices, validation, contrast vectors
    - filtering: low-count gene pre-filter
    - deseq: negative binomial GLM fitting via pydeseq2
    - results: result tables and DESeq2-style summaries
    - pca: sample PCA on transformed counts
    - compare: agreement with a precomputed results table
"""

from rnadiff.stats.design import Design, ContrastSpec, DesignError, build_design
from rnadiff.stats.filtering import LowCountFilter, FilterResult, drop_all_zero
from rnadiff.stats.results import DEResults, ResultsSummary
from rnadiff.stats.deseq import DESeqConfig, DESeqFit, ShrinkageError, fit
from rnadiff.stats.pca import PCAResult, pca
from rnadiff.stats.compare import ComparisonResult, load_reference, compare_results

__all__ = [
    'Design',
    'ContrastSpec',
    'DesignError',
    'build_design',
    'LowCountFilter',
    'FilterResult',
    'drop_all_zero',
    'DEResults',
    'ResultsSummary',
    'DESeqConfig',
    'DESeqFit',
    'ShrinkageError',
    'fit',
    'PCAResult',
    'pca',
    'ComparisonResult',
    'load_reference',
    'compare_results',
]
