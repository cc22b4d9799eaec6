"""Tests for the YAML/JSON analysis configuration."""

import json
from pathlib import Path

import pytest

from rnadiff.config import (
    AnalysisConfig,
    load_analysis_config,
    load_config,
    validate_config,
)


def minimal(**overrides):
    data = {
        "output": "out",
        "metadata": {"path": "samples.tsv", "sample_col": "run"},
        "quant": {"directory": "quants", "tx2gene": "tx2gene.csv"},
        "analyses": [{"name": "dex", "formula": "~ dex", "contrasts": [["dex", "trt", "untrt"]]}],
    }
    data.update(overrides)
    return data


class TestFromDict:

    def test_defaults(self):
        config = AnalysisConfig.from_dict(minimal())
        assert config.filter.enabled
        assert config.filter.min_count == 10
        assert config.deseq.alpha == 0.1
        assert config.deseq.fit_type == "parametric"
        assert config.plots.format == "png"
        assert config.reference is None
        assert config.quant.counts_from_abundance == "no"
        assert config.analyses[0].shrink == []

    def test_paths_resolved_against_base_dir(self, tmp_path):
        config = AnalysisConfig.from_dict(minimal(), base_dir=tmp_path)
        assert config.output == tmp_path / "out"
        assert config.metadata.path == tmp_path / "samples.tsv"
        assert config.quant.directory == tmp_path / "quants"
        assert config.quant.tx2gene == tmp_path / "tx2gene.csv"
        assert config.quant.matrix is None

    def test_absolute_paths_kept(self, tmp_path):
        absolute = tmp_path / "elsewhere" / "samples.tsv"
        config = AnalysisConfig.from_dict(
            minimal(metadata={"path": str(absolute)}), base_dir=Path("/not/used")
        )
        assert config.metadata.path == absolute

    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="Unknown keys in top level"):
            AnalysisConfig.from_dict(minimal(design="~ dex"))

    def test_unknown_section_key(self):
        with pytest.raises(ValueError, match="Unknown keys in deseq"):
            AnalysisConfig.from_dict(minimal(deseq={"alpah": 0.05}))

    def test_section_must_be_mapping(self):
        with pytest.raises(ValueError, match="'filter' must be a mapping"):
            AnalysisConfig.from_dict(minimal(filter=[1, 2]))

    def test_analysis_requires_formula(self):
        with pytest.raises(ValueError, match=r"analyses\[0\] is missing 'formula'"):
            AnalysisConfig.from_dict(minimal(analyses=[{"name": "x"}]))

    def test_analysis_must_be_mapping(self):
        with pytest.raises(ValueError, match="must be a mapping"):
            AnalysisConfig.from_dict(minimal(analyses=["~ dex"]))

    def test_reference_as_string(self, tmp_path):
        config = AnalysisConfig.from_dict(minimal(reference="published.csv"), base_dir=tmp_path)
        assert config.reference.path == tmp_path / "published.csv"
        assert config.reference.strip_versions

    def test_reference_requires_path(self):
        with pytest.raises(ValueError, match="reference is missing 'path'"):
            AnalysisConfig.from_dict(minimal(reference={"analysis": "dex"}))

    def test_to_dict_is_json_serialisable(self, tmp_path):
        config = AnalysisConfig.from_dict(minimal(), base_dir=tmp_path)
        data = config.to_dict()
        assert data["output"] == str(tmp_path / "out")
        assert data["analyses"][0]["contrasts"] == [["dex", "trt", "untrt"]]
        json.dumps(data)


class TestLoadConfig:

    def test_yaml_bare_no(self, tmp_path):
        path = tmp_path / "analysis.yaml"
        path.write_text(
            "output: out\n"
            "metadata: {path: samples.tsv}\n"
            "quant:\n"
            "  directory: quants\n"
            "  tx2gene: tx2gene.csv\n"
            "  counts_from_abundance: no\n"
            "analyses:\n"
            "  - name: dex\n"
            "    formula: ~ dex\n"
            "    contrasts: [[dex, trt, untrt]]\n"
        )
        config = load_analysis_config(path)
        assert config.quant.counts_from_abundance == "no"
        assert config.output == tmp_path.resolve() / "out"

    def test_json(self, tmp_path):
        path = tmp_path / "analysis.json"
        path.write_text(json.dumps(minimal()))
        assert load_config(path)["analyses"][0]["name"] == "dex"

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_config(path) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "analysis.toml"
        path.write_text("output = 'x'\n")
        with pytest.raises(ValueError, match="Unsupported config format"):
            load_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("analyses: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config(path)

    def test_top_level_not_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="dictionary/mapping"):
            load_config(path)


class TestValidateConfig:

    def test_valid(self):
        validate_config(AnalysisConfig.from_dict(minimal()))

    def test_matrix_replaces_quant_files(self):
        config = AnalysisConfig.from_dict(minimal(quant={"matrix": "results/gene"}))
        validate_config(config)

    def test_collects_every_problem(self):
        config = AnalysisConfig.from_dict({
            "deseq": {"alpha": 1.5},
            "quant": {"format": "htseq", "counts_from_abundance": "dtuScaledTPM"},
            "filter": {"min_count": -1},
            "plots": {"format": "gif", "ma_ylim": [2, -2]},
        })
        with pytest.raises(ValueError) as excinfo:
            validate_config(config)
        message = str(excinfo.value)
        for fragment in (
            "alpha must be in (0, 1)",
            "metadata.path is required",
            "quant.directory (or quant.matrix) is required",
            "quant.tx2gene is required",
            "quant.format must be one of",
            "quant.counts_from_abundance must be one of",
            "filter.min_count must be >= 0",
            "at least one entry in 'analyses'",
            "plots.format must be png, pdf or svg",
            "plots.ma_ylim must be [low, high]",
        ):
            assert fragment in message

    def test_duplicate_analysis_names(self):
        entry = {"name": "dex", "formula": "~ dex", "contrasts": ["dex:trt:untrt"]}
        config = AnalysisConfig.from_dict(minimal(analyses=[entry, dict(entry)]))
        with pytest.raises(ValueError, match="duplicated"):
            validate_config(config)

    def test_analysis_without_contrasts(self):
        config = AnalysisConfig.from_dict(minimal(analyses=[{"name": "dex", "formula": "~ dex"}]))
        with pytest.raises(ValueError, match="has no contrasts"):
            validate_config(config)

    def test_reference_analysis_must_exist(self):
        config = AnalysisConfig.from_dict(minimal(reference={"path": "ref.csv", "analysis": "other"}))
        with pytest.raises(ValueError, match="reference.analysis 'other'"):
            validate_config(config)

    def test_duplicate_contrast_labels(self):
        analyses = [{
            "name": "dex",
            "formula": "~ dex",
            "contrasts": [["dex", "trt", "untrt"], "dex:trt:untrt"],
            "shrink": ["dex[T.trt]", "dex[T.trt]"],
        }]
        config = AnalysisConfig.from_dict(minimal(analyses=analyses))
        with pytest.raises(ValueError) as excinfo:
            validate_config(config)
        message = str(excinfo.value)
        assert "duplicate contrasts labels: ['dex_trt_vs_untrt']" in message
        assert "duplicate shrink labels: ['dex_trt']" in message

    def test_unparseable_contrast(self):
        analyses = [{"name": "dex", "formula": "~ dex", "contrasts": [["dex", "trt"]]}]
        config = AnalysisConfig.from_dict(minimal(analyses=analyses))
        with pytest.raises(ValueError, match="needs \\[factor, tested, reference\\]"):
            validate_config(config)
