"""
Analysis configuration.

A whole analysis (sample table, quantifications, pre-filter, fitting
parameters, one or more designs with their contrasts, reference dataset,
plots) is described in one YAML or JSON file and parsed into dataclasses
with defaults.

Example (YAML):

    output: results/airway
    metadata:
      path: samples.tsv
      sample_col: Run
      relevel: {dex: untrt}
    quant:
      directory: quants
      pattern: "{sample}/quant.sf.gz"
      format: salmon
      tx2gene: tx2gene.csv
    filter:
      min_count: 10
      group_col: dex
    deseq:
      alpha: 0.1
      n_cpus: 4
    analyses:
      - name: cell_dex
        formula: "~ cell + dex"
        contrasts: [[dex, trt, untrt]]
        shrink: [[dex, trt, untrt]]
    plots:
      genes: [ENSG00000120129]
      pca_color: dex
      pca_shape: cell
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional
import json

import yaml

from rnadiff.core.countmatrix import COUNT_MODES
from rnadiff.io.formats import PRESETS
from rnadiff.stats.deseq import DESeqConfig
from rnadiff.stats.design import ContrastSpec

__all__ = [
    'MetadataConfig',
    'QuantConfig',
    'FilterConfig',
    'AnalysisSpec',
    'ReferenceConfig',
    'PlotConfig',
    'AnalysisConfig',
    'load_config',
    'load_analysis_config',
    'validate_config',
]


@dataclass
class MetadataConfig:
    """Sample table and the factor manipulations applied to it."""
    path: Optional[Path] = None
    sample_col: Optional[str] = None
    rename: Dict[str, str] = field(default_factory=dict)
    map_values: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    subset: Dict[str, Any] = field(default_factory=dict)
    levels: Dict[str, List[Any]] = field(default_factory=dict)
    relevel: Dict[str, Any] = field(default_factory=dict)
    combine: List[Dict[str, Any]] = field(default_factory=list)
    nest: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class QuantConfig:
    """
    Where the counts come from.

    Either per-sample quantification files (``directory`` + ``tx2gene``) or
    a matrix previously written by ``rnadiff import`` (``matrix``, the path
    base without ``.counts.csv``).
    """
    directory: Optional[Path] = None
    pattern: Optional[str] = None
    format: Optional[str] = "salmon"
    tx2gene: Optional[Path] = None
    tx_col: Optional[str] = None
    gene_col: Optional[str] = None
    counts_from_abundance: str = "no"
    ignore_tx_version: bool = False
    ignore_after_bar: bool = False
    strip_gene_version: bool = False
    matrix: Optional[Path] = None


@dataclass
class FilterConfig:
    """Low-count pre-filter (disabled with ``enabled: false``)."""
    enabled: bool = True
    min_count: float = 10
    min_samples: Optional[int] = None
    group_col: Optional[str] = None


@dataclass
class AnalysisSpec:
    """
    One design and the comparisons drawn from it.

    ``contrasts`` and ``shrink`` entries take every form
    ``ContrastSpec.parse`` accepts; ``subset`` restricts the samples.
    """
    name: str
    formula: str
    contrasts: List[Any] = field(default_factory=list)
    shrink: List[Any] = field(default_factory=list)
    subset: Dict[str, Any] = field(default_factory=dict)
    lfc_min: float = 0.0


@dataclass
class ReferenceConfig:
    """Precomputed results to compare one of our contrasts against."""
    path: Path
    analysis: Optional[str] = None
    contrast: Optional[str] = None
    id_col: Optional[str] = None
    lfc_col: Optional[str] = None
    padj_col: Optional[str] = None
    pvalue_col: Optional[str] = None
    strip_versions: bool = True


@dataclass
class PlotConfig:
    """Which figures to draw and how."""
    enabled: bool = True
    format: str = "png"
    style: str = "paper"
    palette: str = "default"
    genes: List[str] = field(default_factory=list)
    count_group: Optional[str] = None
    pca_color: Optional[str] = None
    pca_shape: Optional[str] = None
    ntop: int = 500
    blind: bool = True
    ma_ylim: Optional[List[float]] = None
    volcano_lfc_min: float = 1.0
    label_top: int = 10
    report: bool = True


@dataclass
class AnalysisConfig:
    """Complete description of a run (see module docstring)."""
    output: Path = Path("rnadiff_results")
    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    quant: QuantConfig = field(default_factory=QuantConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    deseq: DESeqConfig = field(default_factory=DESeqConfig)
    analyses: List[AnalysisSpec] = field(default_factory=list)
    reference: Optional[ReferenceConfig] = None
    plots: PlotConfig = field(default_factory=PlotConfig)
    title: str = "Differential expression"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> AnalysisConfig:
        """
        Build from a parsed config mapping.

        Relative paths are resolved against ``base_dir`` (the config file's
        directory) when given.

        Raises:
            ValueError: Unknown keys or malformed sections
        """
        data = dict(data or {})
        _check_keys("top level", data, cls)

        def path(value):
            if value is None:
                return None
            p = Path(value).expanduser()
            if base_dir is not None and not p.is_absolute():
                p = base_dir / p
            return p

        metadata = _section(MetadataConfig, data.get("metadata"), "metadata")
        metadata.path = path(metadata.path)

        quant = _section(QuantConfig, data.get("quant"), "quant")
        quant.directory = path(quant.directory)
        quant.tx2gene = path(quant.tx2gene)
        quant.matrix = path(quant.matrix)
        # YAML 1.1 reads a bare `no` as False
        if quant.counts_from_abundance is False:
            quant.counts_from_abundance = "no"

        analyses = []
        for i, entry in enumerate(data.get("analyses") or []):
            if not isinstance(entry, dict):
                raise ValueError(f"analyses[{i}] must be a mapping, got {type(entry).__name__}")
            for key in ("name", "formula"):
                if key not in entry:
                    raise ValueError(f"analyses[{i}] is missing '{key}'")
            analyses.append(_section(AnalysisSpec, entry, f"analyses[{i}]"))

        reference = None
        if data.get("reference") is not None:
            ref = data["reference"]
            if isinstance(ref, (str, Path)):
                ref = {"path": ref}
            if "path" not in ref:
                raise ValueError("reference is missing 'path'")
            reference = _section(ReferenceConfig, ref, "reference")
            reference.path = path(reference.path)

        config = cls(
            output=path(data.get("output", "rnadiff_results")),
            metadata=metadata,
            quant=quant,
            filter=_section(FilterConfig, data.get("filter"), "filter"),
            deseq=_section(DESeqConfig, data.get("deseq"), "deseq"),
            analyses=analyses,
            reference=reference,
            plots=_section(PlotConfig, data.get("plots"), "plots"),
            title=data.get("title", "Differential expression"),
        )
        return config

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (paths as strings)."""
        def convert(value):
            if isinstance(value, Path):
                return str(value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            if isinstance(value, (list, tuple)):
                return [convert(v) for v in value]
            return value
        return convert(asdict(self))


def _check_keys(where: str, data: Dict[str, Any], schema) -> None:
    known = {f.name for f in fields(schema)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in {where}: {unknown}. Allowed: {sorted(known)}")


def _section(schema, data: Optional[Dict[str, Any]], where: str):
    if data is None:
        return schema()
    if not isinstance(data, dict):
        raise ValueError(f"'{where}' must be a mapping, got {type(data).__name__}")
    _check_keys(where, data, schema)
    return schema(**data)


def load_config(config_path: Path | str) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    try:
        with open(config_path, 'r') as f:
            if suffix in ('.yaml', '.yml'):
                config = yaml.safe_load(f)
            elif suffix == '.json':
                config = json.load(f)
            else:
                raise ValueError(
                    f"Unsupported config format: {suffix}. "
                    f"Use .yaml, .yml, or .json"
                )
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}") from e

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")

    return config


def load_analysis_config(config_path: Path | str) -> AnalysisConfig:
    """Load, parse and validate an analysis config file."""
    config_path = Path(config_path)
    config = AnalysisConfig.from_dict(load_config(config_path), base_dir=config_path.resolve().parent)
    validate_config(config)
    return config


def validate_config(config: AnalysisConfig) -> None:
    """
    Validate configuration values.

    Raises:
        ValueError: Listing every problem found
    """
    errors = list(config.deseq.validate())

    if config.metadata.path is None:
        errors.append("metadata.path is required")

    quant = config.quant
    if quant.matrix is None:
        if quant.directory is None:
            errors.append("quant.directory (or quant.matrix) is required")
        if quant.tx2gene is None:
            errors.append("quant.tx2gene is required when importing quantification files")
    if quant.format is not None and quant.format not in PRESETS:
        errors.append(f"quant.format must be one of {sorted(PRESETS)} or null, got '{quant.format}'")
    if quant.counts_from_abundance not in COUNT_MODES or quant.counts_from_abundance == "dtuScaledTPM":
        errors.append(
            f"quant.counts_from_abundance must be one of {COUNT_MODES[:3]}, got '{quant.counts_from_abundance}'"
        )

    if config.filter.min_count < 0:
        errors.append(f"filter.min_count must be >= 0, got {config.filter.min_count}")
    if config.filter.min_samples is not None and config.filter.min_samples < 1:
        errors.append(f"filter.min_samples must be >= 1, got {config.filter.min_samples}")

    if not config.analyses:
        errors.append("at least one entry in 'analyses' is required")
    names = [a.name for a in config.analyses]
    duplicated = sorted({n for n in names if names.count(n) > 1})
    if duplicated:
        errors.append(f"analysis names must be unique, duplicated: {duplicated}")
    for a in config.analyses:
        if not str(a.formula).strip():
            errors.append(f"analysis '{a.name}' has an empty formula")
        if not a.contrasts:
            errors.append(f"analysis '{a.name}' has no contrasts")
        if a.lfc_min < 0:
            errors.append(f"analysis '{a.name}': lfc_min must be >= 0, got {a.lfc_min}")
        for key in ("contrasts", "shrink"):
            labels = []
            for value in getattr(a, key):
                try:
                    labels.append(ContrastSpec.parse(value).label)
                except (TypeError, ValueError) as e:
                    errors.append(f"analysis '{a.name}': {e}")
            repeated = sorted({label for label in labels if labels.count(label) > 1})
            if repeated:
                errors.append(f"analysis '{a.name}' has duplicate {key} labels: {repeated}")

    ref = config.reference
    if ref is not None and ref.analysis is not None and ref.analysis not in names:
        errors.append(f"reference.analysis '{ref.analysis}' is not one of {names}")

    plots = config.plots
    if plots.format not in ("png", "pdf", "svg"):
        errors.append(f"plots.format must be png, pdf or svg, got '{plots.format}'")
    if plots.style not in ("paper", "presentation", "notebook"):
        errors.append(f"plots.style must be paper, presentation or notebook, got '{plots.style}'")
    if plots.ntop < 2:
        errors.append(f"plots.ntop must be >= 2, got {plots.ntop}")
    if plots.ma_ylim is not None and (len(plots.ma_ylim) != 2 or plots.ma_ylim[0] >= plots.ma_ylim[1]):
        errors.append(f"plots.ma_ylim must be [low, high] with low < high, got {plots.ma_ylim}")

    if errors:
        raise ValueError("Invalid configuration:\n  - " + "\n  - ".join(errors))
