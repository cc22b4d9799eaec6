"""Tests for the pydeseq2-backed model fit.

Uses the module-scoped ``fitted`` fixture: 200 negative binomial genes,
4 + 4 samples, the first 20 genes up four-fold in condition B.
"""

import numpy as np
import pandas as pd
import pytest

from rnadiff.stats.deseq import DESeqConfig, ShrinkageError, fit
from rnadiff.stats.design import DesignError, build_design

from conftest import make_nb_matrix

DE_GENES = [f"gene{i:04d}" for i in range(20)]


class TestFittedQuantities:
    def test_results_names(self, fitted):
        assert fitted.results_names == ["Intercept", "condition[T.B]"]

    def test_size_factors(self, fitted):
        assert list(fitted.size_factors.index) == [f"s{i}" for i in range(1, 9)]
        assert (fitted.size_factors > 0).all()

    def test_normalized_counts(self, fitted):
        assert fitted.normalized_counts.shape == (200, 8)
        raw = fitted.matrix.counts[:, 0]
        np.testing.assert_allclose(
            fitted.normalized_counts.iloc[:, 0], raw / fitted.size_factors.iloc[0], rtol=1e-6
        )

    def test_dispersions(self, fitted):
        disp = fitted.dispersions
        assert list(disp.columns) == ["baseMean", "genewise", "fitted", "MAP", "final", "outlier"]
        assert (disp["final"].dropna() > 0).all()
        assert disp["outlier"].dtype == bool

    def test_vst(self, fitted):
        vst = fitted.vst(blind=True)
        assert vst.shape == (200, 8)
        assert np.isfinite(vst.to_numpy()).all()

    def test_norm_transform(self, fitted):
        log = fitted.norm_transform()
        np.testing.assert_allclose(log.to_numpy(), np.log2(fitted.normalized_counts.to_numpy() + 1))


class TestResults:
    """Wald tests on the condition contrast."""

    @pytest.fixture(scope="class")
    def res(self, fitted):
        return fitted.results(("condition", "B", "A"))

    def test_table_layout(self, res):
        assert list(res.table.columns) == ["baseMean", "log2FoldChange", "lfcSE", "stat", "pvalue", "padj", "flags"]
        assert res.contrast == "condition_B_vs_A"
        assert res.design_formula == "~ condition"
        assert not res.shrunk

    def test_recovers_up_regulated_genes(self, res):
        de = res.table.loc[DE_GENES]
        assert de["log2FoldChange"].median() > 1.0
        assert (de["padj"] < 0.1).sum() >= 10

    def test_few_null_genes_called(self, res):
        null = res.table.drop(index=DE_GENES)
        assert (null["padj"] < 0.1).sum() < 15

    def test_log2_scale_matches_coefficients(self, res, fitted):
        ok = res.table["log2FoldChange"].notna()
        np.testing.assert_allclose(
            res.table.loc[ok, "log2FoldChange"],
            fitted.coefficients.loc[ok, "condition[T.B]"],
            rtol=1e-5,
            atol=1e-8,
        )

    def test_reversed_contrast_flips_sign(self, res, fitted):
        reverse = fitted.results(("condition", "A", "B"))
        np.testing.assert_allclose(
            reverse.table["log2FoldChange"].dropna(),
            -res.table["log2FoldChange"].dropna(),
            rtol=1e-6,
        )
        assert reverse.contrast == "condition_A_vs_B"

    def test_unknown_level(self, fitted):
        with pytest.raises(DesignError):
            fitted.results(("condition", "C", "A"))


class TestShrinkage:
    def test_shrunk_toward_zero(self, fitted):
        raw = fitted.results(("condition", "B", "A")).table["log2FoldChange"]
        shrunk = fitted.shrink(("condition", "B", "A"))
        assert shrunk.shrunk
        both = raw.notna() & shrunk.table["log2FoldChange"].notna()
        smaller = shrunk.table.loc[both, "log2FoldChange"].abs() <= raw[both].abs() + 1e-6
        assert smaller.mean() > 0.9

    def test_non_reference_contrast_rejected(self, fitted):
        with pytest.raises(ShrinkageError, match="single coefficient"):
            fitted.shrink(("condition", "A", "B"))


class TestFitInputs:
    def test_invalid_config(self, nb_matrix):
        design = build_design(nb_matrix.sample_metadata, "~ condition")
        with pytest.raises(ValueError, match="fit_type"):
            fit(nb_matrix, design, DESeqConfig(fit_type="local"))

    def test_config_validate(self):
        errors = DESeqConfig(alpha=0, n_cpus=0, alt_hypothesis="both").validate()
        assert len(errors) == 3

    def test_design_from_other_samples(self, nb_matrix):
        design = build_design(nb_matrix.sample_metadata.iloc[::-1], "~ condition")
        with pytest.raises(ValueError, match="Design rows"):
            fit(nb_matrix, design, DESeqConfig(n_cpus=1))

    def test_length_correction(self):
        matrix = make_nb_matrix(n_genes=60, n_de=5, seed=1)
        matrix = matrix.__class__(
            counts=matrix.counts,
            feature_ids=matrix.feature_ids,
            sample_ids=matrix.sample_ids,
            sample_metadata=matrix.sample_metadata,
            abundance=matrix.counts + 1.0,
            length=np.full(matrix.counts.shape, 1500.0),
        )
        design = build_design(matrix.sample_metadata, "~ condition")
        result = fit(matrix, design, DESeqConfig(n_cpus=1))
        assert result.matrix.counts_from_abundance == "lengthScaledTPM"

        plain = fit(matrix, design, DESeqConfig(n_cpus=1, length_correction=False))
        assert plain.matrix.counts_from_abundance == "no"
        assert isinstance(plain.size_factors, pd.Series)
