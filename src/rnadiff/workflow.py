"""
End-to-end differential expression run.

Executes the notebook narrative as a linear pipeline driven by an
``AnalysisConfig``:

    sample table -> quantifications -> gene-level matrix -> pre-filter
      -> for each design: fit -> results per contrast -> shrinkage -> plots
      -> comparison with a reference dataset -> session info -> report

Output layout (``config.output``):

    config.json                      resolved configuration
    matrix/gene.*.csv                imported matrix (see io.writers)
    prefiltered_genes.csv            genes removed by the pre-filter
    {analysis}/results_{contrast}.csv
    {analysis}/significant_{contrast}.csv
    {analysis}/shrunk_{contrast}.csv
    {analysis}/summary.json
    {analysis}/figures/*.{png,pdf,svg}
    comparison.json, comparison.csv  when a reference is configured
    session_info.json
    report.html
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import pandas as pd

from rnadiff.config import (
    AnalysisConfig,
    AnalysisSpec,
    FilterConfig,
    MetadataConfig,
    PlotConfig,
    QuantConfig,
    load_analysis_config,
    validate_config,
)
from rnadiff.core.countmatrix import CountMatrix
from rnadiff.core.flags import GeneFlag, describe_flags
from rnadiff.io.metadata import (
    combine_factors,
    drop_unused_levels,
    load_sample_table,
    map_values,
    nest_within,
    relevel,
    rename_columns,
    set_levels,
    subset_samples,
)
from rnadiff.io.quant import discover_quant_files
from rnadiff.io.tx2gene import load_tx2gene
from rnadiff.io.tximport import tximport
from rnadiff.io.writers import load_count_matrix, write_matrix, write_results
from rnadiff.session import format_session_info, session_info
from rnadiff.stats.compare import ComparisonResult, compare_results, load_reference
from rnadiff.stats.deseq import DESeqConfig, DESeqFit, ShrinkageError, fit
from rnadiff.stats.design import ContrastSpec, build_design
from rnadiff.stats.filtering import FilterResult, LowCountFilter
from rnadiff.stats.pca import pca
from rnadiff.stats.results import DEResults
from rnadiff.utils.fileio import atomic_write_json
from rnadiff.viz.core import FigureCollection

__all__ = [
    'AnalysisOutcome',
    'WorkflowResult',
    'prepare_metadata',
    'import_counts',
    'prefilter',
    'write_prefiltered',
    'run_analysis',
    'write_analysis',
    'plot_analysis',
    'save_figures',
    'run_workflow',
]

logger = logging.getLogger(__name__)


@dataclass
class AnalysisOutcome:
    """Everything one design produced."""
    spec: AnalysisSpec
    fit: DESeqFit
    results: Dict[str, DEResults] = field(default_factory=dict)
    shrunk: Dict[str, DEResults] = field(default_factory=dict)
    shrink_errors: Dict[str, str] = field(default_factory=dict)

    def summaries(self) -> Dict[str, Any]:
        return {label: res.summary().to_dict() for label, res in self.results.items()}


@dataclass
class WorkflowResult:
    """
    Outcome of ``run_workflow``.

    Attributes:
        config: Configuration that was run
        matrix: Imported matrix with processed sample metadata
        filtered: Matrix after the pre-filter
        filter_result: What the pre-filter removed (None when disabled)
        analyses: Per-design fits and results, by analysis name
        comparison: Agreement with the reference dataset, if configured
        figures: Every figure drawn, keyed ``{analysis}/{figure}``
        session: ``session_info()`` of the run
    """
    config: AnalysisConfig
    matrix: CountMatrix
    filtered: CountMatrix
    filter_result: Optional[FilterResult]
    analyses: Dict[str, AnalysisOutcome] = field(default_factory=dict)
    comparison: Optional[ComparisonResult] = None
    figures: FigureCollection = field(default_factory=FigureCollection)
    session: Dict[str, Any] = field(default_factory=dict)

    @property
    def output(self) -> Path:
        return Path(self.config.output)

    def results(self, analysis: str, contrast: str, shrunk: bool = False) -> DEResults:
        outcome = self.analyses[analysis]
        return (outcome.shrunk if shrunk else outcome.results)[contrast]


# =============================================================================
# Pipeline steps
# =============================================================================

def prepare_metadata(cfg: MetadataConfig) -> pd.DataFrame:
    """
    Load the sample table and apply the configured factor manipulations.

    Order: rename, map_values, subset, levels, relevel, combine, nest.
    """
    metadata = load_sample_table(cfg.path, sample_col=cfg.sample_col)

    if cfg.rename:
        metadata = rename_columns(metadata, cfg.rename)
    for column, mapping in cfg.map_values.items():
        metadata = map_values(metadata, column, mapping)
    if cfg.subset:
        mask = subset_samples(metadata, **cfg.subset)
        if not mask.any():
            raise ValueError(f"Sample subset {cfg.subset} matches no samples")
        logger.info(f"Keeping {int(mask.sum())} of {len(metadata)} samples matching {cfg.subset}")
        metadata = metadata[mask]
    for column, levels in cfg.levels.items():
        metadata = set_levels(metadata, column, levels)
    for column, reference in cfg.relevel.items():
        metadata = relevel(metadata, column, reference)
    for entry in cfg.combine:
        metadata = combine_factors(
            metadata, list(entry["columns"]), entry["name"], sep=entry.get("sep", "_")
        )
    for entry in cfg.nest:
        metadata = nest_within(
            metadata, entry["subject"], entry["group"], new_column=entry.get("name", "ind_n")
        )
    return drop_unused_levels(metadata)


def import_counts(cfg: QuantConfig, metadata: pd.DataFrame) -> CountMatrix:
    """Gene-level matrix for the samples in ``metadata``, in its row order."""
    if cfg.matrix is not None:
        matrix = load_count_matrix(cfg.matrix)
        missing = metadata.index.difference(matrix.sample_ids)
        if len(missing) > 0:
            raise ValueError(f"{len(missing)} samples are not in {cfg.matrix}: {missing.tolist()[:5]}")
        matrix = matrix.select_samples(matrix.sample_ids.isin(metadata.index))
        return matrix.reorder_samples(metadata.index).with_metadata(metadata)

    files = discover_quant_files(cfg.directory, metadata.index, pattern=cfg.pattern)
    tx2gene = load_tx2gene(cfg.tx2gene, tx_col=cfg.tx_col, gene_col=cfg.gene_col)
    return tximport(
        files,
        tx2gene,
        fmt=cfg.format,
        counts_from_abundance=cfg.counts_from_abundance,
        ignore_tx_version=cfg.ignore_tx_version,
        ignore_after_bar=cfg.ignore_after_bar,
        strip_gene_version=cfg.strip_gene_version,
        sample_metadata=metadata,
    )


def prefilter(matrix: CountMatrix, cfg: FilterConfig) -> tuple[CountMatrix, Optional[FilterResult]]:
    """Apply the low-count pre-filter, or pass through when disabled."""
    if not cfg.enabled:
        return matrix, None
    filt = LowCountFilter(min_count=cfg.min_count, min_samples=cfg.min_samples, group_col=cfg.group_col)
    filtered = filt(matrix)
    return filtered, filt.last_result


def run_analysis(matrix: CountMatrix, spec: AnalysisSpec, deseq: DESeqConfig) -> AnalysisOutcome:
    """
    Fit one design and extract its contrasts and shrunken estimates.

    Shrinkage requests that do not name a single coefficient are recorded
    in ``shrink_errors`` and skipped.
    """
    if spec.subset:
        mask = subset_samples(matrix.sample_metadata, **spec.subset)
        if not mask.any():
            raise ValueError(f"Analysis '{spec.name}': subset {spec.subset} matches no samples")
        matrix = matrix.select_samples(mask)
        matrix = matrix.with_metadata(drop_unused_levels(matrix.sample_metadata))
        logger.info(f"Analysis '{spec.name}' uses {matrix.n_samples} samples matching {spec.subset}")

    design = build_design(matrix.sample_metadata, spec.formula)
    logger.info(f"Analysis '{spec.name}': {design.formula}, coefficients {list(design.coefficient_names)}")
    outcome = AnalysisOutcome(spec=spec, fit=fit(matrix, design, deseq))

    for contrast in spec.contrasts:
        res = outcome.fit.results(contrast)
        if res.contrast in outcome.results:
            raise ValueError(f"Analysis '{spec.name}': contrast label '{res.contrast}' requested twice")
        outcome.results[res.contrast] = res

    for contrast in spec.shrink:
        label = ContrastSpec.parse(contrast).label
        try:
            outcome.shrunk[label] = outcome.fit.shrink(contrast)
        except ShrinkageError as e:
            logger.warning(f"Analysis '{spec.name}': cannot shrink {label}: {e}")
            outcome.shrink_errors[label] = str(e)

    return outcome


# =============================================================================
# Outputs
# =============================================================================

def write_prefiltered(matrix: CountMatrix, result: FilterResult, path: Path) -> Path:
    """Table of pre-filtered genes with their totals and PREFILTERED flags."""
    removed = matrix.feature_ids.isin(result.removed)
    flags = matrix.gene_flags[removed] | int(GeneFlag.PREFILTERED)
    counts = matrix.counts[removed]
    frame = pd.DataFrame(
        {
            "total_count": counts.sum(axis=1),
            "max_count": counts.max(axis=1),
            "flags": flags,
            "flag_names": [";".join(describe_flags(int(v))) for v in flags],
        },
        index=pd.Index(matrix.feature_ids[removed], name="gene_id"),
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path)
    return path


def write_analysis(outcome: AnalysisOutcome, directory: Path) -> None:
    """Write result tables and summary.json of one analysis to ``directory``."""
    spec = outcome.spec
    directory.mkdir(parents=True, exist_ok=True)
    for label, res in outcome.results.items():
        write_results(res, directory / f"results_{label}.csv")
        write_results(res.significant(lfc_min=spec.lfc_min), directory / f"significant_{label}.csv")
    for label, res in outcome.shrunk.items():
        write_results(res, directory / f"shrunk_{label}.csv")

    fitted = outcome.fit
    atomic_write_json(directory / "summary.json", {
        "name": spec.name,
        "formula": fitted.design.formula,
        "coefficients": fitted.results_names,
        "n_samples": fitted.design.n_samples,
        "n_genes": len(fitted.normalized_counts),
        "df_residual": fitted.design.df_residual,
        "dropped_columns": list(fitted.design.dropped_columns),
        "size_factors": fitted.size_factors.to_dict(),
        "dispersion_outliers": int(fitted.dispersions["outlier"].sum()),
        "lfc_min": spec.lfc_min,
        "deseq": fitted.config.to_dict(),
        "contrasts": outcome.summaries(),
        "shrunk": sorted(outcome.shrunk),
        "shrink_errors": outcome.shrink_errors,
    })


def plot_analysis(outcome: AnalysisOutcome, plots: PlotConfig, figures: FigureCollection) -> None:
    """Draw the diagnostic and result figures of one analysis into ``figures``."""
    from rnadiff.viz.de import DEVisualizer

    name = outcome.spec.name
    fitted = outcome.fit
    viz = DEVisualizer(palette=plots.palette, style=plots.style)
    metadata = fitted.sample_metadata

    figures.add(f"{name}/dispersion", viz.plot_dispersion_estimates(fitted))
    figures.add(f"{name}/size_factors", viz.plot_size_factors(fitted))

    color_by = plots.pca_color or next(iter(fitted.design.factors), None)
    if color_by is not None and color_by in metadata.columns and fitted.matrix.n_samples > 2:
        transformed = fitted.vst(blind=plots.blind)
        shape_by = plots.pca_shape if plots.pca_shape in metadata.columns else None
        result = pca(transformed, metadata, ntop=min(plots.ntop, len(transformed)))
        figures.add(f"{name}/pca", viz.plot_pca(result, color_by=color_by, shape_by=shape_by))

    ylim = tuple(plots.ma_ylim) if plots.ma_ylim else None
    for label, res in outcome.results.items():
        figures.add(f"{name}/ma_{label}", viz.plot_ma(res, ylim=ylim))
        figures.add(f"{name}/volcano_{label}", viz.plot_volcano(
            res, lfc_min=plots.volcano_lfc_min, label_top=plots.label_top
        ))
        figures.add(f"{name}/pvalues_{label}", viz.plot_pvalue_histogram(res))
    for label, res in outcome.shrunk.items():
        figures.add(f"{name}/ma_{label}_shrunk", viz.plot_ma(res, ylim=ylim))

    group_by = plots.count_group or color_by
    if group_by is not None and group_by in metadata.columns:
        for gene in plots.genes:
            if gene not in fitted.normalized_counts.index:
                logger.warning(f"Gene {gene} not among fitted genes of '{name}'; skipping count plot")
                continue
            figures.add(f"{name}/counts_{gene}", viz.plot_counts(fitted, gene, group_by=group_by))


def _compare(result: WorkflowResult) -> Optional[ComparisonResult]:
    ref = result.config.reference
    if ref is None:
        return None

    analysis = ref.analysis or next(iter(result.analyses))
    outcome = result.analyses[analysis]
    contrast = ref.contrast or next(iter(outcome.results))
    if contrast not in outcome.results:
        raise KeyError(f"Contrast '{contrast}' not in analysis '{analysis}': {list(outcome.results)}")

    reference = load_reference(
        ref.path, id_col=ref.id_col, lfc_col=ref.lfc_col, padj_col=ref.padj_col, pvalue_col=ref.pvalue_col
    )
    comparison = compare_results(
        outcome.results[contrast],
        reference,
        strip_versions=ref.strip_versions,
        label=f"{analysis}/{contrast}",
    )
    logger.info(
        f"Reference comparison {comparison.label}: {comparison.n_common} common genes, "
        f"Pearson {comparison.pearson:.3f}, Jaccard {comparison.jaccard:.3f}"
    )
    return comparison


def run_workflow(config: AnalysisConfig | str | Path, echo: bool = True) -> WorkflowResult:
    """
    Run the whole pipeline and write every output under ``config.output``.

    Args:
        config: Parsed configuration or a path to a YAML/JSON config file
        echo: Print the DESeq2-style summaries and session info

    Returns:
        WorkflowResult with the fits, results and figures (figures are
        closed after saving)

    Raises:
        FileNotFoundError, KeyError, ValueError: Invalid inputs
        DesignError: A design cannot be built
    """
    if not isinstance(config, AnalysisConfig):
        config = load_analysis_config(config)
    else:
        validate_config(config)

    output = Path(config.output)
    output.mkdir(parents=True, exist_ok=True)
    atomic_write_json(output / "config.json", config.to_dict())
    logger.info(f"Writing results to {output}")

    metadata = prepare_metadata(config.metadata)
    matrix = import_counts(config.quant, metadata)
    write_matrix(matrix, output / "matrix" / "gene")

    filtered, filter_result = prefilter(matrix, config.filter)
    if filter_result is not None:
        write_prefiltered(matrix, filter_result, output / "prefiltered_genes.csv")
    if filtered.n_features == 0:
        raise ValueError("No genes left after pre-filtering; lower filter.min_count")

    result = WorkflowResult(config=config, matrix=matrix, filtered=filtered, filter_result=filter_result)

    for spec in config.analyses:
        outcome = run_analysis(filtered, spec, config.deseq)
        result.analyses[spec.name] = outcome
        write_analysis(outcome, output / spec.name)
        if echo:
            for res in outcome.results.values():
                print(f"\n[{spec.name}] {res.design_formula}")
                print(res.summary().format())

    result.comparison = _compare(result)
    if result.comparison is not None:
        atomic_write_json(output / "comparison.json", result.comparison.to_dict())
        result.comparison.joined.to_csv(output / "comparison.csv", index_label="gene_id")
        if echo:
            print(result.comparison.format())

    try:
        if config.plots.enabled:
            for outcome in result.analyses.values():
                plot_analysis(outcome, config.plots, result.figures)
            if result.comparison is not None:
                from rnadiff.viz.de import DEVisualizer
                viz = DEVisualizer(palette=config.plots.palette, style=config.plots.style)
                result.figures.add("comparison", viz.plot_comparison(result.comparison))
            save_figures(result.figures, output, config.plots.format)

        result.session = session_info()
        atomic_write_json(output / "session_info.json", result.session)

        if config.plots.enabled and config.plots.report:
            sections = {}
            if filter_result is not None:
                sections["Pre-filter"] = (
                    f"kept {filter_result.n_kept} of {matrix.n_features} genes "
                    f"(count >= {filter_result.params['min_count']} in >= {filter_result.params['min_samples']} samples)"
                )
            for name, outcome in result.analyses.items():
                blocks = [res.summary().format() for res in outcome.results.values()]
                sections[f"{name}: {outcome.fit.design.formula}"] = "\n".join(blocks)
            if result.comparison is not None:
                sections["Reference comparison"] = result.comparison.format()
            sections["Session info"] = format_session_info(result.session)
            result.figures.to_html_report(
                output / "report.html",
                title=config.title,
                description=f"{matrix.n_samples} samples, {filtered.n_features} genes after pre-filtering",
                sections=sections,
            )
    finally:
        for _, figure in result.figures:
            figure.close()

    if echo:
        print(format_session_info(result.session))
    logger.info(f"Done: {len(result.analyses)} analyses written to {output}")
    return result


def save_figures(figures: FigureCollection, output: Path, fmt: str = "png") -> list[Path]:
    """Save ``{analysis}/{name}`` figures under ``{output}/{analysis}/figures/``."""
    saved = []
    for key, figure in figures:
        if "/" in key:
            analysis, name = key.split("/", 1)
            path = Path(output) / analysis / "figures" / f"{name}.{fmt}"
        else:
            path = Path(output) / "figures" / f"{key}.{fmt}"
        saved.append(figure.save(path, format=fmt, dpi=150))
    return saved
