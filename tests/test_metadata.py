"""Tests for sample-table loading and factor manipulation."""

import numpy as np
import pandas as pd
import pytest

from rnadiff.io.metadata import (
    align_to,
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


@pytest.fixture
def meta():
    return pd.DataFrame(
        {
            "dex": ["untrt", "trt", "untrt", "trt"],
            "cell": ["N1", "N1", "N2", "N2"],
        },
        index=pd.Index(["S1", "S2", "S3", "S4"], name="run"),
    )


class TestLoadSampleTable:
    """Tests for load_sample_table."""

    def test_tsv_indexed_by_sample_column(self, sample_table):
        meta = load_sample_table(sample_table, sample_col="run")
        assert list(meta.index) == ["S1", "S2", "S3", "S4"]
        assert list(meta.columns) == ["dex", "cell"]

    def test_first_column_is_default_and_strings_stripped(self, tmp_path):
        path = tmp_path / "meta.csv"
        path.write_text("Run,dex\nS1, untrt \nS2,trt\n")
        meta = load_sample_table(path)
        assert meta.index.name == "Run"
        assert meta.loc["S1", "dex"] == "untrt"

    def test_numeric_looking_sample_ids_kept_as_text(self, tmp_path):
        path = tmp_path / "meta.csv"
        path.write_text("sample,batch\n001,1\n002,1\n010,2\n")
        meta = load_sample_table(path)
        assert list(meta.index) == ["001", "002", "010"]
        assert list(load_sample_table(path, sample_col="sample").index) == ["001", "002", "010"]

    def test_duplicate_samples_rejected(self, tmp_path):
        path = tmp_path / "meta.tsv"
        path.write_text("run\tdex\nS1\ta\nS1\tb\n")
        with pytest.raises(ValueError, match="Duplicate sample ids"):
            load_sample_table(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_sample_table(tmp_path / "nope.tsv")

    def test_unknown_sample_column(self, sample_table):
        with pytest.raises(KeyError, match="Sample column"):
            load_sample_table(sample_table, sample_col="Run")


class TestLevels:
    """Tests for relevel, set_levels and drop_unused_levels."""

    def test_relevel_puts_reference_first(self, meta):
        result = relevel(meta, "dex", "untrt")
        assert list(result["dex"].cat.categories) == ["untrt", "trt"]

    def test_relevel_keeps_other_levels_sorted(self):
        meta = pd.DataFrame({"g": ["c", "a", "b", "c"]})
        result = relevel(meta, "g", "c")
        assert list(result["g"].cat.categories) == ["c", "a", "b"]

    def test_relevel_unknown_level(self, meta):
        with pytest.raises(ValueError, match="not a level"):
            relevel(meta, "dex", "placebo")

    def test_relevel_unknown_column(self, meta):
        with pytest.raises(KeyError):
            relevel(meta, "treatment", "untrt")

    def test_set_levels_requires_all_values(self, meta):
        with pytest.raises(ValueError, match="missing from levels"):
            set_levels(meta, "cell", ["N1"])

    def test_set_levels_explicit_order(self, meta):
        result = set_levels(meta, "cell", ["N2", "N1", "N3"])
        assert list(result["cell"].cat.categories) == ["N2", "N1", "N3"]
        assert list(drop_unused_levels(result)["cell"].cat.categories) == ["N2", "N1"]

    def test_input_not_modified(self, meta):
        relevel(meta, "dex", "untrt")
        assert not isinstance(meta["dex"].dtype, pd.CategoricalDtype)


class TestDerivedFactors:
    """Tests for combine_factors and nest_within."""

    def test_combine_factors_level_order(self, meta):
        meta = relevel(relevel(meta, "dex", "untrt"), "cell", "N1")
        result = combine_factors(meta, ["cell", "dex"], "group")
        assert list(result["group"]) == ["N1_untrt", "N1_trt", "N2_untrt", "N2_trt"]
        assert list(result["group"].cat.categories) == ["N1_untrt", "N1_trt", "N2_untrt", "N2_trt"]

    def test_nest_within_codes_subjects_per_group(self):
        meta = pd.DataFrame({
            "patient": ["p1", "p1", "p2", "p2", "p7", "p7", "p9", "p9"],
            "disease": ["ALS", "ALS", "ALS", "ALS", "ctrl", "ctrl", "ctrl", "ctrl"],
        })
        result = nest_within(meta, "patient", "disease")
        assert list(result["ind_n"]) == ["1", "1", "2", "2", "1", "1", "2", "2"]
        assert list(result["ind_n"].cat.categories) == ["1", "2"]

    def test_nest_within_rejects_crossed_subjects(self):
        meta = pd.DataFrame({"patient": ["p1", "p1"], "disease": ["ALS", "ctrl"]})
        with pytest.raises(ValueError, match="more than one"):
            nest_within(meta, "patient", "disease")

    def test_nest_within_warns_when_unbalanced(self):
        meta = pd.DataFrame({
            "patient": ["p1", "p2", "p3", "p4", "p5"],
            "disease": ["ALS", "ALS", "ALS", "ctrl", "ctrl"],
        })
        with pytest.warns(UserWarning, match="Unbalanced"):
            nest_within(meta, "patient", "disease")


class TestTableEdits:
    """Tests for renaming, value mapping, alignment and subsetting."""

    def test_rename_and_map(self, meta):
        result = rename_columns(meta, {"dex": "treatment"})
        result = map_values(result, "treatment", {"trt": "dexamethasone"})
        assert list(result["treatment"]) == ["untrt", "dexamethasone", "untrt", "dexamethasone"]

    def test_align_to_reorders(self, meta):
        aligned = align_to(meta, ["S3", "S1"])
        assert list(aligned.index) == ["S3", "S1"]

    def test_align_to_missing_sample(self, meta):
        with pytest.raises(ValueError, match="no metadata row"):
            align_to(meta, ["S1", "S9"])

    def test_subset_scalar_and_list(self, meta):
        mask = subset_samples(meta, dex="trt", cell=["N1", "N2"])
        np.testing.assert_array_equal(mask, [False, True, False, True])

    def test_subset_matches_numbers_by_text(self):
        meta = pd.DataFrame({"batch": [1, 1, 2, 2]}, index=["S1", "S2", "S3", "S4"])
        np.testing.assert_array_equal(subset_samples(meta, batch="1"), [True, True, False, False])
        np.testing.assert_array_equal(subset_samples(meta, batch=["1", "2"]), [True] * 4)
        np.testing.assert_array_equal(subset_samples(meta, batch=2), [False, False, True, True])
