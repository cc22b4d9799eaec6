"""Tests for matrix/result writers and the AnnData export."""

import json

import numpy as np
import pandas as pd
import pytest

from rnadiff.core.countmatrix import CountMatrix
from rnadiff.core.flags import GeneFlag
from rnadiff.io.metadata import relevel
from rnadiff.io.writers import load_count_matrix, to_anndata, write_h5ad, write_matrix, write_results
from rnadiff.utils.fileio import atomic_write_json, to_jsonable


class TestMatrixFiles:
    """Tests for write_matrix / load_count_matrix."""

    def test_files_written(self, small_matrix, tmp_path):
        written = write_matrix(small_matrix, tmp_path / "out" / "gene")
        names = sorted(p.name for p in written)
        assert names == [
            "gene.abundance.csv",
            "gene.counts.csv",
            "gene.flags.csv",
            "gene.info.json",
            "gene.length.csv",
            "gene.metadata.csv",
        ]

    def test_reload_restores_matrix(self, small_matrix, tmp_path):
        meta = relevel(small_matrix.sample_metadata, "dex", "untrt")
        matrix = small_matrix.with_metadata(meta).with_flags(np.array([0, int(GeneFlag.ALL_ZERO), 0]))
        write_matrix(matrix, tmp_path / "gene")

        restored = load_count_matrix(tmp_path / "gene")
        np.testing.assert_allclose(restored.counts, matrix.counts)
        np.testing.assert_allclose(restored.length, matrix.length)
        assert list(restored.feature_ids) == ["G1", "G2", "G3"]
        assert list(restored.sample_ids) == ["S1", "S2", "S3", "S4"]
        assert list(restored.gene_flags) == [0, 1, 0]
        assert list(restored.sample_metadata["dex"].cat.categories) == ["untrt", "trt"]

    def test_reload_keeps_numeric_looking_ids(self, tmp_path):
        samples = pd.Index(["001", "002", "010"], name="sample")
        matrix = CountMatrix(
            counts=np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]]),
            feature_ids=pd.Index(["0007", "0100"], name="gene_id"),
            sample_ids=samples,
            sample_metadata=pd.DataFrame({"dex": ["untrt", "trt", "trt"]}, index=samples),
        )
        write_matrix(matrix, tmp_path / "gene")

        restored = load_count_matrix(tmp_path / "gene")
        assert list(restored.feature_ids) == ["0007", "0100"]
        assert list(restored.sample_ids) == ["001", "002", "010"]
        assert list(restored.sample_metadata.index) == ["001", "002", "010"]
        assert list(restored.sample_metadata["dex"]) == ["untrt", "trt", "trt"]

    def test_flag_names_column(self, small_matrix, tmp_path):
        matrix = small_matrix.with_flags(np.array([0, int(GeneFlag.ALL_ZERO | GeneFlag.PREFILTERED), 0]))
        write_matrix(matrix, tmp_path / "gene")
        flags = pd.read_csv(tmp_path / "gene.flags.csv", index_col=0, keep_default_na=False)
        assert flags.loc["G2", "flag_names"] == "ALL_ZERO;PREFILTERED"

    def test_counts_only_reload(self, small_matrix, tmp_path):
        small_matrix.to_frame("counts").to_csv(tmp_path / "plain.counts.csv")
        restored = load_count_matrix(tmp_path / "plain")
        assert restored.abundance is None
        assert restored.counts_from_abundance == "no"

    def test_missing_counts_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_count_matrix(tmp_path / "nothing")

    def test_mismatched_assay(self, small_matrix, tmp_path):
        write_matrix(small_matrix, tmp_path / "gene")
        small_matrix.to_frame("length").iloc[:2].to_csv(tmp_path / "gene.length.csv")
        with pytest.raises(ValueError, match="does not match"):
            load_count_matrix(tmp_path / "gene")

    def test_info_records_count_mode(self, small_matrix, tmp_path):
        write_matrix(small_matrix.with_counts(small_matrix.counts, "scaledTPM"), tmp_path / "gene")
        info = json.loads((tmp_path / "gene.info.json").read_text())
        assert info["counts_from_abundance"] == "scaledTPM"
        assert info["n_features"] == 3


class TestResultsFile:
    def test_dataframe_written_with_index(self, tmp_path):
        frame = pd.DataFrame({"log2FoldChange": [1.0]}, index=pd.Index(["G1"], name="gene_id"))
        path = write_results(frame, tmp_path / "res" / "results.csv")
        assert path.read_text().splitlines()[0] == "gene_id,log2FoldChange"


class TestAnnData:
    """Tests for the AnnData export."""

    def test_orientation_and_layers(self, small_matrix):
        adata = to_anndata(small_matrix)
        assert adata.shape == (4, 3)
        assert list(adata.obs_names) == ["S1", "S2", "S3", "S4"]
        assert list(adata.var_names) == ["G1", "G2", "G3"]
        np.testing.assert_allclose(adata.X[:, 0], [10.0, 0.0, 5.0, 3.0])
        np.testing.assert_allclose(adata.layers["length"], small_matrix.length.T)
        assert adata.uns["counts_from_abundance"] == "no"
        assert list(adata.obs["dex"]) == ["untrt", "trt", "untrt", "trt"]

    def test_write_h5ad(self, small_matrix, tmp_path):
        path = write_h5ad(small_matrix, tmp_path / "gene.h5ad")
        assert path.exists()


class TestJson:
    def test_nan_becomes_null(self, tmp_path):
        path = tmp_path / "x.json"
        atomic_write_json(path, {"a": np.float64("nan"), "b": np.int64(3), "c": np.array([1.5])})
        assert json.loads(path.read_text()) == {"a": None, "b": 3, "c": [1.5]}

    def test_to_jsonable_paths(self, tmp_path):
        assert to_jsonable({"p": tmp_path}) == {"p": str(tmp_path)}
        assert not list(tmp_path.glob("*.tmp"))
