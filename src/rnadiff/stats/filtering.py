"""
Low-count gene pre-filtering.

Pre-filtering removes genes with too few reads to ever reach significance
before the model is fitted. It shrinks the matrix (faster fits, smaller
plots); it does not change which genes are significant, since independent
filtering after testing handles power. The DESeq2 vignette rule keeps genes
with a count of at least 10 in at least as many samples as the smallest
group.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
import logging

import numpy as np
import pandas as pd

from rnadiff.core.countmatrix import CountMatrix
from rnadiff.core.transform import Transform

__all__ = ['LowCountFilter', 'FilterResult', 'drop_all_zero']

logger = logging.getLogger(__name__)


@dataclass
class FilterResult:
    """Outcome of one filtering pass."""

    kept: pd.Index
    removed: pd.Index
    n_all_zero: int
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def n_kept(self) -> int:
        return len(self.kept)

    @property
    def n_removed(self) -> int:
        return len(self.removed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "n_kept": self.n_kept,
            "n_removed": self.n_removed,
            "n_all_zero": self.n_all_zero,
            **self.params,
        }


class LowCountFilter(Transform):
    """
    Keep genes with ``count >= min_count`` in at least ``min_samples`` samples.

    Args:
        min_count: Minimum count per sample
        min_samples: Samples that must reach min_count. None = size of the
            smallest ``group_col`` group, or 1 without a group column
        group_col: Sample-metadata column defining groups

    Examples:
        >>> filt = LowCountFilter(min_count=10, group_col="dex")
        >>> filtered = filt(matrix)
        >>> filt.last_result.n_removed
        41083
    """

    def __init__(
        self,
        min_count: float = 10,
        min_samples: Optional[int] = None,
        group_col: Optional[str] = None,
    ):
        super().__init__(
            name="LowCountFilter",
            params={"min_count": min_count, "min_samples": min_samples, "group_col": group_col},
        )
        if min_count < 0:
            raise ValueError(f"min_count must be >= 0, got {min_count}")
        if min_samples is not None and min_samples < 1:
            raise ValueError(f"min_samples must be >= 1, got {min_samples}")
        self.min_count = min_count
        self.min_samples = min_samples
        self.group_col = group_col
        self.last_result: Optional[FilterResult] = None

    def validate(self, matrix: CountMatrix) -> list[str]:
        errors = super().validate(matrix)
        if self.group_col is not None and self.group_col not in matrix.sample_metadata.columns:
            errors.append(
                f"group column '{self.group_col}' not in sample metadata "
                f"(available: {list(matrix.sample_metadata.columns)})"
            )
        if self.min_samples is not None and self.min_samples > matrix.n_samples:
            errors.append(f"min_samples={self.min_samples} exceeds {matrix.n_samples} samples")
        return errors

    def resolve_min_samples(self, matrix: CountMatrix) -> int:
        """Effective min_samples for ``matrix``."""
        if self.min_samples is not None:
            return self.min_samples
        if self.group_col is None:
            return 1
        sizes = matrix.sample_metadata[self.group_col].value_counts()
        sizes = sizes[sizes > 0]
        return int(sizes.min())

    def apply(self, matrix: CountMatrix) -> CountMatrix:
        min_samples = self.resolve_min_samples(matrix)
        keep = (matrix.counts >= self.min_count).sum(axis=1) >= min_samples
        all_zero = matrix.counts.sum(axis=1) == 0

        self.last_result = FilterResult(
            kept=matrix.feature_ids[keep],
            removed=matrix.feature_ids[~keep],
            n_all_zero=int(all_zero.sum()),
            params={"min_count": self.min_count, "min_samples": min_samples, "group_col": self.group_col},
        )
        logger.info(
            f"Pre-filter (count >= {self.min_count} in >= {min_samples} samples): "
            f"kept {int(keep.sum())} of {matrix.n_features} genes "
            f"({int(all_zero.sum())} all-zero)"
        )
        return matrix.select_features(keep)


def drop_all_zero(matrix: CountMatrix) -> CountMatrix:
    """Remove genes with zero counts in every sample."""
    keep = matrix.counts.sum(axis=1) > 0
    logger.info(f"Dropped {int((~keep).sum())} all-zero genes of {matrix.n_features}")
    return matrix.select_features(np.asarray(keep))
