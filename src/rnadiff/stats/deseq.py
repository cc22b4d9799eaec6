"""
Negative binomial GLM fitting with pydeseq2.

This module is a thin, explicit layer over pydeseq2's DeseqDataSet and
DeseqStats. It does not re-implement any of the statistics (size factors,
dispersion estimation and shrinkage, Wald tests, Cook's distances,
independent filtering, BH adjustment, apeGLM-style LFC shrinkage); it
decides what goes in and how the results come out:

    - counts are rounded to integers and passed samples x genes
    - the validated patsy design matrix is passed as-is, so coefficient names
      and the reference levels are exactly those of ``rnadiff.stats.design``
    - contrasts are always numeric vectors over those coefficients
    - fitted quantities are returned as labelled pandas objects

Length offsets:
    pydeseq2 normalises with one size factor per sample and cannot take the
    per-gene, per-sample length offsets DESeq2 derives from tximport's length
    matrix. With ``length_correction`` enabled, a matrix imported with
    original counts is converted to lengthScaledTPM counts before fitting,
    which removes the same bias from the counts themselves.

Examples:
    >>> from rnadiff.stats.design import build_design
    >>> from rnadiff.stats.deseq import DESeqConfig, fit
    >>> design = build_design(matrix.sample_metadata, "~ cell + dex")
    >>> dds = fit(matrix, design, DESeqConfig(n_cpus=4))
    >>> res = dds.results(("dex", "trt", "untrt"))
    >>> shrunk = dds.shrink(("dex", "trt", "untrt"))
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Optional
import logging
import math

import numpy as np
import pandas as pd
from pydeseq2.dds import DeseqDataSet
from pydeseq2.default_inference import DefaultInference
from pydeseq2.ds import DeseqStats

from rnadiff.core.countmatrix import CountMatrix
from rnadiff.io.tximport import length_scaled_counts
from rnadiff.stats.design import ContrastSpec, Design, DesignError
from rnadiff.stats.results import DEResults, RESULT_COLUMNS, annotate_flags

__all__ = ['DESeqConfig', 'DESeqFit', 'ShrinkageError', 'fit', 'FIT_TYPES', 'SIZE_FACTOR_TYPES', 'ALT_HYPOTHESES']

logger = logging.getLogger(__name__)

FIT_TYPES = ("parametric", "mean")
SIZE_FACTOR_TYPES = ("ratio", "poscounts", "iterative")
ALT_HYPOTHESES = (None, "greaterAbs", "lessAbs", "greater", "less")


class ShrinkageError(RuntimeError):
    """Effect-size shrinkage cannot be applied to the requested comparison."""


@dataclass
class DESeqConfig:
    """
    Parameters for fitting and testing.

    Attributes:
        fit_type: Dispersion trend ("parametric" or "mean")
        size_factors_fit_type: "ratio" (median of ratios), "poscounts" or
            "iterative"
        refit_cooks: Replace Cook's outliers and refit (>= min_replicates)
        min_replicates: Replicates needed to replace outliers
        cooks_filter: Set p-values of Cook's outliers to NA
        independent_filter: Filter low-mean genes before BH adjustment
        alpha: Significance level for independent filtering and summaries
        lfc_threshold: Wald test null |LFC| (log2 scale)
        alt_hypothesis: None, "greaterAbs", "lessAbs", "greater", "less"
        n_cpus: Worker processes (None = all available)
        quiet: Silence pydeseq2 progress output
        length_correction: Use lengthScaledTPM counts for matrices imported
            with original counts and a length assay
    """

    fit_type: str = "parametric"
    size_factors_fit_type: str = "ratio"
    refit_cooks: bool = True
    min_replicates: int = 7
    cooks_filter: bool = True
    independent_filter: bool = True
    alpha: float = 0.1
    lfc_threshold: float = 0.0
    alt_hypothesis: Optional[str] = None
    n_cpus: Optional[int] = None
    quiet: bool = True
    length_correction: bool = True

    def validate(self) -> list[str]:
        """Return error messages (empty list = valid)."""
        errors = []
        if self.fit_type not in FIT_TYPES:
            errors.append(f"fit_type must be one of {FIT_TYPES}, got '{self.fit_type}'")
        if self.size_factors_fit_type not in SIZE_FACTOR_TYPES:
            errors.append(
                f"size_factors_fit_type must be one of {SIZE_FACTOR_TYPES}, got '{self.size_factors_fit_type}'"
            )
        if not 0 < self.alpha < 1:
            errors.append(f"alpha must be in (0, 1), got {self.alpha}")
        if self.lfc_threshold < 0:
            errors.append(f"lfc_threshold must be >= 0, got {self.lfc_threshold}")
        if self.alt_hypothesis not in ALT_HYPOTHESES:
            errors.append(f"alt_hypothesis must be one of {ALT_HYPOTHESES}, got '{self.alt_hypothesis}'")
        if self.min_replicates < 1:
            errors.append(f"min_replicates must be >= 1, got {self.min_replicates}")
        if self.n_cpus is not None and self.n_cpus < 1:
            errors.append(f"n_cpus must be >= 1, got {self.n_cpus}")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _prepare_counts(matrix: CountMatrix, config: DESeqConfig) -> CountMatrix:
    if (
        config.length_correction
        and matrix.counts_from_abundance == "no"
        and matrix.length is not None
        and matrix.abundance is not None
    ):
        logger.info("Using lengthScaledTPM counts to correct for average transcript length")
        return length_scaled_counts(matrix)
    return matrix


def _counts_frame(matrix: CountMatrix) -> pd.DataFrame:
    counts = np.rint(matrix.counts)
    if np.any(counts < 0):
        raise ValueError("Counts must be non-negative")
    return pd.DataFrame(
        counts.T.astype(np.int64),
        index=pd.Index(matrix.sample_ids.astype(str)),
        columns=pd.Index(matrix.feature_ids.astype(str)),
    )


class DESeqFit:
    """
    A fitted negative binomial model over one design.

    Built by ``fit``. Holds the pydeseq2 dataset and exposes its fitted
    quantities with gene and sample labels.

    Attributes:
        dds: The pydeseq2 DeseqDataSet after ``deseq2()``
        design: Design the model was fitted with
        matrix: CountMatrix the counts came from (after length correction)
        config: Fitting parameters
    """

    def __init__(self, dds: DeseqDataSet, design: Design, matrix: CountMatrix, config: DESeqConfig):
        self.dds = dds
        self.design = design
        self.matrix = matrix
        self.config = config
        self._inference = DefaultInference(n_cpus=config.n_cpus)

        genes = pd.Index(matrix.feature_ids.astype(str), name="gene_id")
        samples = pd.Index(matrix.sample_ids.astype(str), name="sample")
        self._genes = genes
        self._samples = samples

        self.size_factors = pd.Series(
            np.asarray(dds.obsm["size_factors"], dtype=float), index=samples, name="size_factor"
        )
        self.normalized_counts = pd.DataFrame(
            np.asarray(dds.layers["normed_counts"], dtype=float).T, index=genes, columns=samples
        )

        base_mean = self.normalized_counts.mean(axis=1)
        outlier = (
            np.asarray(dds.varm["_outlier_genes"], dtype=bool)
            if "_outlier_genes" in dds.varm
            else np.zeros(len(genes), dtype=bool)
        )
        self.dispersions = pd.DataFrame(
            {
                "baseMean": base_mean.to_numpy(),
                "genewise": np.asarray(dds.varm["genewise_dispersions"], dtype=float),
                "fitted": np.asarray(dds.varm["fitted_dispersions"], dtype=float),
                "MAP": np.asarray(dds.varm["MAP_dispersions"], dtype=float),
                "final": np.asarray(dds.varm["dispersions"], dtype=float),
                "outlier": outlier,
            },
            index=genes,
        )

        lfc = dds.varm["LFC"]
        natural = lfc.to_numpy(dtype=float) if isinstance(lfc, pd.DataFrame) else np.asarray(lfc, dtype=float)
        self.coefficients = pd.DataFrame(
            natural / math.log(2), index=genes, columns=list(design.coefficient_names)
        )

    @property
    def results_names(self) -> list[str]:
        """Coefficient names (DESeq2 ``resultsNames``)."""
        return list(self.design.coefficient_names)

    @property
    def sample_metadata(self) -> pd.DataFrame:
        return self.matrix.sample_metadata

    def vst(self, blind: bool = True) -> pd.DataFrame:
        """
        Variance stabilising transformation (genes x samples).

        ``blind=True`` estimates dispersions with an intercept-only design,
        as for QC plots. Fitted on a separate dataset so the model's
        dispersions are untouched.
        """
        design = self.design.matrix
        if blind:
            design = pd.DataFrame({"Intercept": 1.0}, index=design.index)
        vst_dds = DeseqDataSet(
            counts=_counts_frame(self.matrix),
            metadata=_model_metadata(self.matrix),
            design=_pydeseq2_design(design),
            fit_type=self.config.fit_type,
            size_factors_fit_type=self.config.size_factors_fit_type,
            inference=self._inference,
            quiet=True,
        )
        vst_dds.vst(use_design=not blind)
        return pd.DataFrame(
            np.asarray(vst_dds.layers["vst_counts"], dtype=float).T,
            index=self._genes,
            columns=self._samples,
        )

    def norm_transform(self, pseudocount: float = 1.0) -> pd.DataFrame:
        """log2(normalised counts + pseudocount), DESeq2 ``normTransform``."""
        return np.log2(self.normalized_counts + pseudocount)

    def _stats(self, vector: np.ndarray, alpha: float, lfc_threshold: float, cooks_filter=None, independent_filter=None) -> DeseqStats:
        stats = DeseqStats(
            self.dds,
            contrast=vector,
            alpha=alpha,
            cooks_filter=self.config.cooks_filter if cooks_filter is None else cooks_filter,
            independent_filter=self.config.independent_filter if independent_filter is None else independent_filter,
            lfc_null=lfc_threshold,
            alt_hypothesis=self.config.alt_hypothesis,
            inference=self._inference,
            quiet=self.config.quiet,
        )
        stats.summary()
        return stats

    def _to_results(
        self,
        stats: DeseqStats,
        spec: ContrastSpec,
        alpha: float,
        lfc_threshold: float,
        shrunk: bool,
    ) -> DEResults:
        table = stats.results_df[RESULT_COLUMNS].copy()
        table.index = self._genes
        flags = pd.Series(self.matrix.gene_flags, index=self._genes)
        table["flags"] = annotate_flags(table, flags)

        low = table["pvalue"].notna() & table["padj"].isna()
        threshold = float(table.loc[low, "baseMean"].max()) if low.any() else None

        return DEResults(
            table=table,
            contrast=spec.label,
            alpha=alpha,
            lfc_threshold=lfc_threshold,
            shrunk=shrunk,
            design_formula=self.design.formula,
            filter_threshold=threshold,
            description=str(spec),
        )

    def results(
        self,
        contrast: Any,
        alpha: Optional[float] = None,
        lfc_threshold: Optional[float] = None,
        cooks_filter: Optional[bool] = None,
        independent_filter: Optional[bool] = None,
    ) -> DEResults:
        """
        Wald test results for one contrast (DESeq2 ``results``).

        Args:
            contrast: Level triple, coefficient name, coefficient lists or
                ContrastSpec (see ``ContrastSpec.parse``)
            alpha: Overrides config.alpha
            lfc_threshold: Overrides config.lfc_threshold

        Raises:
            DesignError: Contrast does not resolve against the design
        """
        spec = ContrastSpec.parse(contrast)
        alpha = self.config.alpha if alpha is None else alpha
        lfc_threshold = self.config.lfc_threshold if lfc_threshold is None else lfc_threshold
        vector = self.design.contrast_vector(spec)

        logger.info(f"Testing {spec} (alpha={alpha:g}, lfc_threshold={lfc_threshold:g})")
        stats = self._stats(vector, alpha, lfc_threshold, cooks_filter, independent_filter)
        res = self._to_results(stats, spec, alpha, lfc_threshold, shrunk=False)
        logger.info(
            f"{spec.label}: {int((res.table['padj'] < alpha).sum())} genes with padj < {alpha:g}"
        )
        return res

    def shrink(self, contrast: Any, alpha: Optional[float] = None) -> DEResults:
        """
        Results with shrunken log2 fold changes (apeGLM-style Cauchy prior).

        Shrinkage works on a single coefficient, so the contrast must be
        one coefficient or a level against the factor's reference level.

        Raises:
            ShrinkageError: If the contrast is not a single coefficient or
                pydeseq2 fails to shrink it
        """
        spec = ContrastSpec.parse(contrast)
        alpha = self.config.alpha if alpha is None else alpha
        try:
            coefficient = self.design.shrinkage_coefficient(spec)
        except DesignError as e:
            raise ShrinkageError(str(e)) from e

        vector = self.design.contrast_vector(ContrastSpec.coef(coefficient))
        logger.info(f"Shrinking {coefficient} ({spec})")
        stats = self._stats(vector, alpha, 0.0)
        try:
            stats.lfc_shrink(coeff=coefficient)
        except (KeyError, ValueError) as e:
            raise ShrinkageError(f"Shrinkage of {coefficient} failed: {e}") from e
        return self._to_results(stats, spec, alpha, 0.0, shrunk=True)

    def __repr__(self) -> str:
        return (
            f"DESeqFit({len(self._genes)} genes × {len(self._samples)} samples, "
            f"design {self.design.formula})"
        )


def _model_metadata(matrix: CountMatrix) -> pd.DataFrame:
    metadata = matrix.sample_metadata.copy()
    metadata.index = pd.Index(matrix.sample_ids.astype(str))
    return metadata


def _pydeseq2_design(design_matrix: pd.DataFrame) -> pd.DataFrame:
    frame = design_matrix.copy()
    frame.index = pd.Index(frame.index.astype(str))
    return frame


def fit(matrix: CountMatrix, design: Design, config: Optional[DESeqConfig] = None) -> DESeqFit:
    """
    Fit the negative binomial GLM for ``design``.

    Args:
        matrix: Gene-level counts with sample metadata
        design: Validated design over the same samples
        config: Fitting parameters (defaults if None)

    Raises:
        ValueError: Invalid config, design/matrix sample mismatch, or
            negative counts
    """
    config = config or DESeqConfig()
    errors = config.validate()
    if errors:
        raise ValueError("Invalid DESeq configuration: " + "; ".join(errors))

    if not design.matrix.index.astype(str).equals(matrix.sample_ids.astype(str)):
        raise ValueError(
            "Design rows do not match matrix samples; build the design from matrix.sample_metadata"
        )

    matrix = _prepare_counts(matrix, config)
    counts = _counts_frame(matrix)
    logger.info(
        f"Fitting {design.formula} on {counts.shape[1]} genes × {counts.shape[0]} samples "
        f"(fit_type={config.fit_type}, size factors={config.size_factors_fit_type})"
    )

    dds = DeseqDataSet(
        counts=counts,
        metadata=_model_metadata(matrix),
        design=_pydeseq2_design(design.matrix),
        fit_type=config.fit_type,
        size_factors_fit_type=config.size_factors_fit_type,
        refit_cooks=config.refit_cooks,
        min_replicates=config.min_replicates,
        inference=DefaultInference(n_cpus=config.n_cpus),
        quiet=config.quiet,
    )
    dds.deseq2()

    result = DESeqFit(dds, design, matrix, config)
    logger.info(
        f"Fitted: size factors {result.size_factors.min():.3g}-{result.size_factors.max():.3g}, "
        f"{int(result.dispersions['outlier'].sum())} dispersion outliers"
    )
    return result
