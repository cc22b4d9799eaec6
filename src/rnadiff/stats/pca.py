"""
Sample PCA on transformed counts (DESeq2 ``plotPCA``).

The most variable genes of a variance-stabilised matrix are centred (not
scaled) and decomposed; sample coordinates on the leading components show
whether samples cluster by the factors of interest or by something else
(batch, cell line, library size).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import logging

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

__all__ = ['PCAResult', 'pca']

logger = logging.getLogger(__name__)


@dataclass
class PCAResult:
    """
    Attributes:
        coordinates: Samples x (PC1..PCk + metadata columns)
        explained_variance_ratio: Fraction of variance per component
        genes: Genes used (top ntop by variance)
    """

    coordinates: pd.DataFrame
    explained_variance_ratio: np.ndarray
    genes: pd.Index

    @property
    def n_components(self) -> int:
        return len(self.explained_variance_ratio)

    def axis_label(self, component: int) -> str:
        """``"PC1: 38% variance"`` for component 1."""
        return f"PC{component}: {100 * self.explained_variance_ratio[component - 1]:.0f}% variance"


def pca(
    transformed: pd.DataFrame,
    metadata: Optional[pd.DataFrame] = None,
    ntop: int = 500,
    n_components: int = 2,
) -> PCAResult:
    """
    PCA of samples on the ``ntop`` most variable genes.

    Args:
        transformed: Genes x samples (VST or log-normalised counts)
        metadata: Sample table joined onto the coordinates
        ntop: Number of genes by row variance
        n_components: Components to report

    Raises:
        ValueError: Fewer than two samples, or n_components too large
    """
    n_genes, n_samples = transformed.shape
    if n_samples < 2:
        raise ValueError(f"PCA needs at least 2 samples, got {n_samples}")
    max_components = min(n_samples, min(ntop, n_genes))
    if n_components > max_components:
        raise ValueError(f"n_components={n_components} exceeds {max_components} available")

    variances = transformed.var(axis=1, ddof=1).to_numpy()
    order = np.argsort(-variances, kind="mergesort")[: min(ntop, n_genes)]
    selected = transformed.iloc[order]

    model = PCA(n_components=max_components, svd_solver="full")
    scores = model.fit_transform(selected.to_numpy(dtype=float).T)

    columns = [f"PC{i + 1}" for i in range(n_components)]
    coordinates = pd.DataFrame(scores[:, :n_components], index=transformed.columns, columns=columns)
    if metadata is not None:
        coordinates = coordinates.join(metadata.reindex(coordinates.index))

    ratio = model.explained_variance_ratio_[:n_components]
    logger.info(
        f"PCA on top {len(order)} genes: "
        + ", ".join(f"PC{i + 1} {100 * r:.0f}%" for i, r in enumerate(ratio))
    )
    return PCAResult(coordinates=coordinates, explained_variance_ratio=ratio, genes=selected.index)
