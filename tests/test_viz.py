"""Tests for the differential-expression plots and figure collection."""

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from rnadiff.stats.compare import compare_results
from rnadiff.stats.pca import pca
from rnadiff.stats.results import DEResults
from rnadiff.viz import DEVisualizer, Figure, FigureCollection, PALETTES, format_pvalue


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


@pytest.fixture
def viz():
    return DEVisualizer()


@pytest.fixture
def results():
    rng = np.random.default_rng(7)
    n = 300
    lfc = rng.normal(0, 1.2, n)
    pvalue = rng.uniform(0, 1, n)
    pvalue[:25] = rng.uniform(1e-12, 1e-4, 25)
    padj = np.minimum(pvalue * 20, 1.0)
    table = pd.DataFrame(
        {
            "baseMean": rng.lognormal(4, 1.5, n),
            "log2FoldChange": lfc,
            "lfcSE": np.full(n, 0.3),
            "stat": lfc / 0.3,
            "pvalue": pvalue,
            "padj": padj,
        },
        index=pd.Index([f"gene{i:04d}" for i in range(n)], name="gene_id"),
    )
    table.loc["gene0000", "log2FoldChange"] = 9.0
    table.loc["gene0001", "log2FoldChange"] = -9.0
    return DEResults(table=table, contrast="condition_B_vs_A", description="condition: B vs A")


class TestModelPlots:
    def test_dispersion(self, viz, fitted):
        figure = viz.plot_dispersion_estimates(fitted)
        assert isinstance(figure, Figure)
        assert figure.title == "Dispersion estimates"
        assert figure.fig.axes[0].get_xscale() == "log"

    def test_size_factors(self, viz, fitted):
        figure = viz.plot_size_factors(fitted)
        assert set(figure.metadata["size_factors"]) == set(fitted.size_factors.index)

    def test_counts(self, viz, fitted):
        figure = viz.plot_counts(fitted, "gene0000", group_by="condition", hue="batch")
        assert figure.metadata["gene"] == "gene0000"
        assert figure.fig.axes[0].get_yscale() == "log"

    def test_counts_unknown_gene(self, viz, fitted):
        with pytest.raises(KeyError, match="not in fitted genes"):
            viz.plot_counts(fitted, "ENSG0", group_by="condition")

    def test_counts_unknown_column(self, viz, fitted):
        with pytest.raises(KeyError, match="dex"):
            viz.plot_counts(fitted, "gene0000", group_by="dex")


class TestSamplePlots:
    @pytest.fixture
    def pca_result(self, nb_matrix):
        logged = pd.DataFrame(
            np.log2(nb_matrix.counts + 1),
            index=nb_matrix.feature_ids,
            columns=nb_matrix.sample_ids,
        )
        return pca(logged, nb_matrix.sample_metadata, ntop=100)

    def test_pca(self, viz, pca_result):
        figure = viz.plot_pca(pca_result, color_by="condition", shape_by="batch", label=True)
        assert figure.title == "PCA by condition and batch"
        assert figure.fig.axes[0].get_xlabel().startswith("PC1: ")

    def test_pca_unknown_column(self, viz, pca_result):
        with pytest.raises(KeyError, match="dex"):
            viz.plot_pca(pca_result, color_by="dex")


class TestResultPlots:
    def test_ma_limits_marked(self, viz, results):
        figure = viz.plot_ma(results, ylim=(-4, 4))
        assert figure.metadata["ylim"] == [-4, 4]
        assert "beyond y-limits" in figure.description
        low, high = figure.fig.axes[0].get_ylim()
        assert low < -4 and high > 4

    def test_ma_shrunk_title(self, viz, results):
        results.shrunk = True
        assert viz.plot_ma(results).title.endswith("(shrunken)")

    def test_volcano_counts(self, viz, results):
        figure = viz.plot_volcano(results, alpha=0.1, lfc_min=1.0, label_top=5)
        t = results.table
        sig = (t["padj"] < 0.1) & (t["log2FoldChange"].abs() >= 1.0)
        assert figure.metadata["n_up"] == int((sig & (t["log2FoldChange"] > 0)).sum())
        assert figure.metadata["n_down"] == int((sig & (t["log2FoldChange"] < 0)).sum())

    def test_volcano_label_column(self, viz, results):
        symbols = pd.Series({g: f"SYM{i}" for i, g in enumerate(results.table.index)}, name="symbol")
        figure = viz.plot_volcano(results.annotate(symbols), label_top=3, label_col="symbol")
        texts = [t.get_text() for t in figure.fig.axes[0].texts]
        assert any("SYM" in text for text in texts)

    def test_pvalue_histogram(self, viz, results):
        figure = viz.plot_pvalue_histogram(results)
        assert figure.metadata["n_genes"] == int((results.table["baseMean"] > 1).sum())

    def test_comparison(self, viz, results):
        reference = results.table[["log2FoldChange", "padj"]] * [0.9, 1.0]
        comparison = compare_results(results, reference)
        figure = viz.plot_comparison(comparison)
        assert figure.metadata["n_common"] == len(results)
        assert figure.metadata["pearson"] == pytest.approx(1.0)


class TestCollection:
    def test_save_all_and_report(self, viz, results, tmp_path):
        collection = FigureCollection()
        collection.add("ma", viz.plot_ma(results)).add("volcano", viz.plot_volcano(results))
        assert len(collection) == 2
        assert [key for key, _ in collection] == ["ma", "volcano"]

        saved = collection.save_all(tmp_path / "figures", format="svg")
        assert [p.name for p in saved] == ["ma.svg", "volcano.svg"]
        assert all(p.exists() for p in saved)

        report = collection.to_html_report(
            tmp_path / "report.html",
            title="airway <test>",
            sections={"Summary": results.summary().format()},
        )
        page = report.read_text()
        assert "airway &lt;test&gt;" in page
        assert "out of 300 with nonzero total read count" in page
        assert page.count("data:image/png;base64,") == 2

    def test_close_all_empties(self, viz, results):
        collection = FigureCollection().add("ma", viz.plot_ma(results))
        collection.close_all()
        assert len(collection) == 0


class TestStyles:
    def test_palettes(self):
        assert PALETTES["default"].direction(2.0, True) == PALETTES["default"].up
        assert PALETTES["default"].direction(-2.0, False) == PALETTES["default"].nonsig
        colors = PALETTES["default"].for_groups(["untrt", "trt"])
        assert list(colors) == ["untrt", "trt"]

    @pytest.mark.parametrize("p,expected", [
        (3.2e-5, "p = 3.2e-05"),
        (0.0042, "p = 0.004"),
        (0.034, "p = 0.03"),
        (float("nan"), "p = NA"),
        (None, "p = NA"),
    ])
    def test_format_pvalue(self, p, expected):
        assert format_pvalue(p) == expected
