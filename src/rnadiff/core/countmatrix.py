"""
Gene-by-sample count matrix with its paired assays and sample annotations.

CountMatrix couples the three matrices a transcript-quantification import
produces (estimated counts, abundance in TPM, abundance-weighted effective
length) with the sample-metadata table describing each sequencing run.

Biological Context:
    - Rows = genes (or transcripts when imported with tx_out)
    - Columns = sequencing runs (one per library)
    - counts drive the negative binomial model
    - length carries the per-gene, per-sample length bias that tximport
      corrects for
    - sample metadata (disease state, treatment, subject) feeds the design

Engineering Design:
    - Immutable by convention: every operation returns a new instance
    - Alignment is checked in the constructor, so a CountMatrix can never hold
      a metadata table whose rows are out of order with the count columns
    - Assays are optional: a matrix loaded from a plain count table has
      counts only

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from rnadiff.core.countmatrix import CountMatrix
    >>>
    >>> counts = np.array([[10, 20], [0, 3]], dtype=float)
    >>> samples = pd.Index(["SRR1039508", "SRR1039509"])
    >>> matrix = CountMatrix(
    ...     counts=counts,
    ...     feature_ids=pd.Index(["ENSG00000000003", "ENSG00000000005"]),
    ...     sample_ids=samples,
    ...     sample_metadata=pd.DataFrame({"dex": ["untrt", "trt"]}, index=samples),
    ... )
    >>> treated = matrix.select_samples(matrix.sample_metadata["dex"] == "trt")
"""

from __future__ import annotations

from typing import Optional
import numpy as np
import pandas as pd

from rnadiff.core.flags import GeneFlag

__all__ = ['CountMatrix', 'ASSAYS', 'COUNT_MODES']

ASSAYS = ("counts", "abundance", "length")
COUNT_MODES = ("no", "scaledTPM", "lengthScaledTPM", "dtuScaledTPM")


class CountMatrix:
    """
    Immutable container for counts + abundance + length + sample metadata.

    Attributes:
        counts: Estimated counts (features x samples)
        feature_ids: Gene (or transcript) identifiers, unique
        sample_ids: Sample identifiers
        sample_metadata: Sample annotations, index equal to sample_ids
        abundance: Optional TPM matrix, same shape as counts
        length: Optional effective-length matrix, same shape as counts
        counts_from_abundance: How counts were derived ("no" = original)
        gene_flags: Per-feature GeneFlag values

    Shape Invariants:
        - counts.shape == (len(feature_ids), len(sample_ids))
        - abundance/length, when present, have the same shape
        - sample_metadata.index equals sample_ids
        - feature_ids has no duplicates
    """

    def __init__(
        self,
        counts: np.ndarray,
        feature_ids: pd.Index,
        sample_ids: pd.Index,
        sample_metadata: Optional[pd.DataFrame] = None,
        abundance: Optional[np.ndarray] = None,
        length: Optional[np.ndarray] = None,
        counts_from_abundance: str = "no",
        gene_flags: Optional[np.ndarray] = None,
    ):
        """
        Initialize CountMatrix with validation.

        Raises:
            TypeError: If an argument has the wrong type
            ValueError: If shapes are inconsistent, ids are duplicated or the
                metadata index does not match sample_ids
        """
        if not isinstance(counts, np.ndarray):
            raise TypeError(f"counts must be np.ndarray, got {type(counts)}")
        if not isinstance(feature_ids, pd.Index):
            raise TypeError(f"feature_ids must be pd.Index, got {type(feature_ids)}")
        if not isinstance(sample_ids, pd.Index):
            raise TypeError(f"sample_ids must be pd.Index, got {type(sample_ids)}")
        if sample_metadata is None:
            sample_metadata = pd.DataFrame(index=sample_ids)
        if not isinstance(sample_metadata, pd.DataFrame):
            raise TypeError(f"sample_metadata must be pd.DataFrame, got {type(sample_metadata)}")

        if counts.ndim != 2:
            raise ValueError(f"counts must be 2D, got shape {counts.shape}")

        n_features, n_samples = counts.shape
        if len(feature_ids) != n_features:
            raise ValueError(
                f"feature_ids length ({len(feature_ids)}) must match counts rows ({n_features})"
            )
        if len(sample_ids) != n_samples:
            raise ValueError(
                f"sample_ids length ({len(sample_ids)}) must match counts columns ({n_samples})"
            )
        if feature_ids.has_duplicates:
            dupes = feature_ids[feature_ids.duplicated()].unique().tolist()
            raise ValueError(f"feature_ids must be unique, duplicated: {dupes[:5]}")
        if sample_ids.has_duplicates:
            dupes = sample_ids[sample_ids.duplicated()].unique().tolist()
            raise ValueError(f"sample_ids must be unique, duplicated: {dupes[:5]}")

        for name, assay in (("abundance", abundance), ("length", length)):
            if assay is None:
                continue
            if not isinstance(assay, np.ndarray):
                raise TypeError(f"{name} must be np.ndarray, got {type(assay)}")
            if assay.shape != counts.shape:
                raise ValueError(
                    f"{name} shape {assay.shape} must match counts shape {counts.shape}"
                )

        if not sample_metadata.index.equals(sample_ids):
            raise ValueError(
                "sample_metadata.index must match sample_ids exactly. "
                f"Got {len(sample_metadata.index)} metadata rows for {len(sample_ids)} samples."
            )

        if counts_from_abundance not in COUNT_MODES:
            raise ValueError(
                f"counts_from_abundance must be one of {COUNT_MODES}, got '{counts_from_abundance}'"
            )

        if gene_flags is None:
            gene_flags = np.full(n_features, GeneFlag.OK, dtype=int)
        elif gene_flags.shape != (n_features,):
            raise ValueError(
                f"gene_flags shape {gene_flags.shape} must be ({n_features},)"
            )

        self._counts = counts
        self._feature_ids = feature_ids
        self._sample_ids = sample_ids
        self._sample_metadata = sample_metadata
        self._abundance = abundance
        self._length = length
        self._counts_from_abundance = counts_from_abundance
        self._gene_flags = gene_flags

    @property
    def counts(self) -> np.ndarray:
        """Estimated counts (features x samples)."""
        return self._counts

    @property
    def abundance(self) -> Optional[np.ndarray]:
        """Abundance in TPM, or None."""
        return self._abundance

    @property
    def length(self) -> Optional[np.ndarray]:
        """Abundance-weighted effective length, or None."""
        return self._length

    @property
    def feature_ids(self) -> pd.Index:
        return self._feature_ids

    @property
    def sample_ids(self) -> pd.Index:
        return self._sample_ids

    @property
    def sample_metadata(self) -> pd.DataFrame:
        return self._sample_metadata

    @property
    def counts_from_abundance(self) -> str:
        return self._counts_from_abundance

    @property
    def gene_flags(self) -> np.ndarray:
        return self._gene_flags

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_features, n_samples)."""
        return self._counts.shape

    @property
    def n_features(self) -> int:
        return self._counts.shape[0]

    @property
    def n_samples(self) -> int:
        return self._counts.shape[1]

    @property
    def library_sizes(self) -> pd.Series:
        """Total counts per sample."""
        return pd.Series(self._counts.sum(axis=0), index=self._sample_ids, name="library_size")

    @property
    def has_length(self) -> bool:
        return self._length is not None

    def assay(self, name: str) -> np.ndarray:
        """
        Return one of the stored assays by name.

        Raises:
            KeyError: Unknown assay name, or assay not stored on this matrix
        """
        if name not in ASSAYS:
            raise KeyError(f"Unknown assay '{name}'. Available: {list(ASSAYS)}")
        values = getattr(self, f"_{name}")
        if values is None:
            raise KeyError(f"Assay '{name}' is not present on this matrix")
        return values

    def to_frame(self, assay: str = "counts") -> pd.DataFrame:
        """Assay as a DataFrame (genes x samples)."""
        return pd.DataFrame(
            self.assay(assay), index=self._feature_ids, columns=self._sample_ids
        )

    def _replace(self, **changes) -> CountMatrix:
        state = {
            "counts": self._counts,
            "feature_ids": self._feature_ids,
            "sample_ids": self._sample_ids,
            "sample_metadata": self._sample_metadata,
            "abundance": self._abundance,
            "length": self._length,
            "counts_from_abundance": self._counts_from_abundance,
            "gene_flags": self._gene_flags,
        }
        state.update(changes)
        return CountMatrix(**state)

    def select_samples(self, mask: np.ndarray | pd.Series) -> CountMatrix:
        """
        Subset by samples (columns), keeping every assay aligned.

        Args:
            mask: Boolean array/Series, one value per sample. A Series is
                used by position, its index is ignored.

        Raises:
            ValueError: If mask length doesn't match n_samples
        """
        if isinstance(mask, pd.Series):
            mask = mask.values
        mask = np.asarray(mask, dtype=bool)

        if len(mask) != self.n_samples:
            raise ValueError(
                f"mask length ({len(mask)}) must match n_samples ({self.n_samples})"
            )

        kept = self._sample_ids[mask]
        return self._replace(
            counts=self._counts[:, mask],
            sample_ids=kept,
            sample_metadata=self._sample_metadata.loc[kept],
            abundance=None if self._abundance is None else self._abundance[:, mask],
            length=None if self._length is None else self._length[:, mask],
        )

    def select_features(self, mask: np.ndarray | pd.Series) -> CountMatrix:
        """
        Subset by features (rows), keeping every assay aligned.

        Raises:
            ValueError: If mask length doesn't match n_features
        """
        if isinstance(mask, pd.Series):
            mask = mask.values
        mask = np.asarray(mask, dtype=bool)

        if len(mask) != self.n_features:
            raise ValueError(
                f"mask length ({len(mask)}) must match n_features ({self.n_features})"
            )

        return self._replace(
            counts=self._counts[mask, :],
            feature_ids=self._feature_ids[mask],
            abundance=None if self._abundance is None else self._abundance[mask, :],
            length=None if self._length is None else self._length[mask, :],
            gene_flags=self._gene_flags[mask],
        )

    def reorder_samples(self, order) -> CountMatrix:
        """
        Permute samples into ``order`` (a sequence of sample ids).

        Raises:
            ValueError: If ``order`` is not a permutation of sample_ids
        """
        order = pd.Index(order)
        if len(order) != self.n_samples or not order.isin(self._sample_ids).all():
            missing = order.difference(self._sample_ids).tolist()
            raise ValueError(
                f"order must be a permutation of sample_ids; unknown ids: {missing[:5]}"
            )
        positions = self._sample_ids.get_indexer(order)
        return self._replace(
            counts=self._counts[:, positions],
            sample_ids=order,
            sample_metadata=self._sample_metadata.loc[order],
            abundance=None if self._abundance is None else self._abundance[:, positions],
            length=None if self._length is None else self._length[:, positions],
        )

    def with_metadata(self, metadata: pd.DataFrame) -> CountMatrix:
        """
        Attach a sample table, reordered to match sample_ids.

        Extra rows in ``metadata`` (runs not in the matrix) are ignored.

        Raises:
            ValueError: If any sample has no metadata row
        """
        missing = self._sample_ids.difference(metadata.index)
        if len(missing) > 0:
            raise ValueError(
                f"{len(missing)} samples have no metadata row: {missing.tolist()[:5]}"
            )
        aligned = metadata.loc[self._sample_ids].copy()
        aligned.index = self._sample_ids
        return self._replace(sample_metadata=aligned)

    def with_counts(self, counts: np.ndarray, counts_from_abundance: Optional[str] = None) -> CountMatrix:
        """Replace the counts assay (e.g., with length-scaled counts)."""
        return self._replace(
            counts=counts,
            counts_from_abundance=counts_from_abundance or self._counts_from_abundance,
        )

    def with_flags(self, gene_flags: np.ndarray) -> CountMatrix:
        return self._replace(gene_flags=gene_flags)

    def copy(self, deep: bool = True) -> CountMatrix:
        """
        Create a copy of this matrix.

        Args:
            deep: If True, copy all arrays. If False, share them.
        """
        if not deep:
            return self._replace()
        return CountMatrix(
            counts=self._counts.copy(),
            feature_ids=self._feature_ids.copy(),
            sample_ids=self._sample_ids.copy(),
            sample_metadata=self._sample_metadata.copy(),
            abundance=None if self._abundance is None else self._abundance.copy(),
            length=None if self._length is None else self._length.copy(),
            counts_from_abundance=self._counts_from_abundance,
            gene_flags=self._gene_flags.copy(),
        )

    def __repr__(self) -> str:
        assays = [name for name in ASSAYS if getattr(self, f"_{name}") is not None]
        if self.n_features == 0 or self.n_samples == 0:
            return f"CountMatrix({self.n_features} features × {self.n_samples} samples)"
        return (
            f"CountMatrix({self.n_features} features × {self.n_samples} samples)\n"
            f"  Features: {self.feature_ids[0]}...{self.feature_ids[-1]}\n"
            f"  Samples: {self.sample_ids[0]}...{self.sample_ids[-1]}\n"
            f"  Assays: {assays} (counts_from_abundance={self._counts_from_abundance})\n"
            f"  Metadata columns: {list(self.sample_metadata.columns)}"
        )

    def __str__(self) -> str:
        return self.__repr__()
