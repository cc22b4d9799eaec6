"""Tests for CountMatrix, GeneFlag and the Transform base class."""

import numpy as np
import pandas as pd
import pytest

from rnadiff.core.countmatrix import CountMatrix
from rnadiff.core.flags import GeneFlag, describe_flags
from rnadiff.core.transform import Transform


class TestConstruction:
    """Validation in the constructor."""

    def test_defaults(self):
        matrix = CountMatrix(
            counts=np.ones((2, 3)),
            feature_ids=pd.Index(["a", "b"]),
            sample_ids=pd.Index(["x", "y", "z"]),
        )
        assert matrix.shape == (2, 3)
        assert matrix.abundance is None
        assert not matrix.has_length
        assert list(matrix.gene_flags) == [0, 0]
        assert matrix.sample_metadata.empty

    def test_rejects_list_counts(self):
        with pytest.raises(TypeError, match="np.ndarray"):
            CountMatrix(counts=[[1]], feature_ids=pd.Index(["a"]), sample_ids=pd.Index(["x"]))

    def test_rejects_duplicate_features(self):
        with pytest.raises(ValueError, match="unique"):
            CountMatrix(counts=np.ones((2, 1)), feature_ids=pd.Index(["a", "a"]), sample_ids=pd.Index(["x"]))

    def test_rejects_misaligned_metadata(self):
        meta = pd.DataFrame({"g": [1, 2]}, index=["y", "x"])
        with pytest.raises(ValueError, match="sample_metadata.index"):
            CountMatrix(
                counts=np.ones((1, 2)),
                feature_ids=pd.Index(["a"]),
                sample_ids=pd.Index(["x", "y"]),
                sample_metadata=meta,
            )

    def test_rejects_assay_shape(self):
        with pytest.raises(ValueError, match="length shape"):
            CountMatrix(
                counts=np.ones((2, 2)),
                feature_ids=pd.Index(["a", "b"]),
                sample_ids=pd.Index(["x", "y"]),
                length=np.ones((2, 3)),
            )

    def test_rejects_unknown_count_mode(self):
        with pytest.raises(ValueError, match="counts_from_abundance"):
            CountMatrix(
                counts=np.ones((1, 1)),
                feature_ids=pd.Index(["a"]),
                sample_ids=pd.Index(["x"]),
                counts_from_abundance="TPM",
            )


class TestSubsetting:
    """Every assay and the metadata stay aligned through subsetting."""

    def test_select_samples(self, small_matrix):
        treated = small_matrix.select_samples(small_matrix.sample_metadata["dex"] == "trt")
        assert list(treated.sample_ids) == ["S2", "S4"]
        np.testing.assert_array_equal(treated.counts[0], [0.0, 3.0])
        np.testing.assert_array_equal(treated.length[2], [2000.0, 1900.0])
        assert list(treated.sample_metadata.index) == ["S2", "S4"]

    def test_select_features_keeps_flags(self, small_matrix):
        flagged = small_matrix.with_flags(np.array([0, int(GeneFlag.ALL_ZERO), 0]))
        kept = flagged.select_features(flagged.counts.sum(axis=1) > 0)
        assert list(kept.feature_ids) == ["G1", "G3"]
        assert list(kept.gene_flags) == [0, 0]
        assert kept.abundance.shape == (2, 4)

    def test_mask_length_checked(self, small_matrix):
        with pytest.raises(ValueError, match="n_samples"):
            small_matrix.select_samples([True, False])

    def test_reorder_samples(self, small_matrix):
        reordered = small_matrix.reorder_samples(["S4", "S3", "S2", "S1"])
        np.testing.assert_array_equal(reordered.counts[0], [3.0, 5.0, 0.0, 10.0])
        assert list(reordered.sample_metadata["dex"]) == ["trt", "untrt", "trt", "untrt"]

    def test_reorder_rejects_unknown(self, small_matrix):
        with pytest.raises(ValueError, match="permutation"):
            small_matrix.reorder_samples(["S1", "S2", "S3", "S9"])

    def test_original_unchanged(self, small_matrix):
        small_matrix.select_samples([True, False, True, False])
        assert small_matrix.n_samples == 4


class TestMetadataAndAssays:
    """Tests for with_metadata, with_counts, assay access."""

    def test_with_metadata_reorders_and_drops_extra(self, small_matrix):
        meta = pd.DataFrame(
            {"batch": ["b4", "b3", "b2", "b1", "b9"]},
            index=["S4", "S3", "S2", "S1", "S9"],
        )
        matrix = small_matrix.with_metadata(meta)
        assert list(matrix.sample_metadata["batch"]) == ["b1", "b2", "b3", "b4"]

    def test_with_metadata_missing_sample(self, small_matrix):
        meta = pd.DataFrame({"batch": ["b1"]}, index=["S1"])
        with pytest.raises(ValueError, match="no metadata row"):
            small_matrix.with_metadata(meta)

    def test_with_counts_sets_mode(self, small_matrix):
        matrix = small_matrix.with_counts(small_matrix.counts * 2, counts_from_abundance="scaledTPM")
        assert matrix.counts_from_abundance == "scaledTPM"
        assert small_matrix.counts_from_abundance == "no"

    def test_assay_lookup(self, small_matrix):
        assert small_matrix.assay("length") is small_matrix.length
        with pytest.raises(KeyError, match="Unknown assay"):
            small_matrix.assay("fpkm")

    def test_missing_assay(self):
        matrix = CountMatrix(counts=np.ones((1, 1)), feature_ids=pd.Index(["a"]), sample_ids=pd.Index(["x"]))
        with pytest.raises(KeyError, match="not present"):
            matrix.assay("abundance")

    def test_library_sizes_and_frame(self, small_matrix):
        assert small_matrix.library_sizes["S2"] == pytest.approx(200.0)
        frame = small_matrix.to_frame("abundance")
        assert frame.loc["G3", "S3"] == pytest.approx(15.0)

    def test_deep_copy_is_independent(self, small_matrix):
        clone = small_matrix.copy()
        clone.counts[0, 0] = -1
        assert small_matrix.counts[0, 0] == 10.0


class TestGeneFlag:
    """Tests for flag combination and naming."""

    def test_describe_in_bit_order(self):
        value = int(GeneFlag.ID_DISAMBIGUATED | GeneFlag.LOW_COUNT)
        assert describe_flags(value) == ["LOW_COUNT", "ID_DISAMBIGUATED"]

    def test_ok_has_no_names(self):
        assert describe_flags(0) == []


class DropSamples(Transform):
    def __init__(self, samples):
        super().__init__(name="DropSamples", params={"samples": samples})
        self.samples = samples

    def apply(self, matrix):
        return matrix.select_samples(~matrix.sample_ids.isin(self.samples))


class TestTransform:
    """Tests for the Transform contract."""

    def test_call_applies(self, small_matrix):
        result = DropSamples(["S1"])(small_matrix)
        assert list(result.sample_ids) == ["S2", "S3", "S4"]

    def test_params_logged(self):
        params = DropSamples(["S1"]).get_params()
        assert params["name"] == "DropSamples"
        assert params["samples"] == ["S1"]
        assert "timestamp" in params

    def test_empty_matrix_rejected(self):
        empty = CountMatrix(counts=np.zeros((0, 2)), feature_ids=pd.Index([]), sample_ids=pd.Index(["x", "y"]))
        with pytest.raises(ValueError, match="empty matrix"):
            DropSamples([])(empty)
