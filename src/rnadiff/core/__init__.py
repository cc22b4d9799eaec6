"""
Core data structures for the RNA-seq differential expression workflow.

1. CountMatrix: counts + abundance + length + sample metadata, kept aligned
2. GeneFlag: per-gene provenance (all-zero, pre-filtered, outlier, ...)
3. Transform: base class for immutable matrix transformations
"""

from rnadiff.core.countmatrix import CountMatrix
from rnadiff.core.flags import GeneFlag, describe_flags
from rnadiff.core.transform import Transform

__all__ = [
    'CountMatrix',
    'GeneFlag',
    'describe_flags',
    'Transform',
]
