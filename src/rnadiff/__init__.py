"""
rnadiff - RNA-seq differential expression workflow

Imports salmon/kallisto/RSEM transcript quantifications, summarises them to
gene level (tximport semantics), fits negative binomial GLMs with pydeseq2
over explicit patsy designs, and reports, plots and compares the results.
"""

__version__ = "0.1.0"

from rnadiff.core.countmatrix import CountMatrix
from rnadiff.core.transform import Transform
from rnadiff.core.flags import GeneFlag

__all__ = [
    "CountMatrix",
    "Transform",
    "GeneFlag",
]
