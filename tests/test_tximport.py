"""Tests for transcript-to-gene summarisation."""

import numpy as np
import pandas as pd
import pytest

from rnadiff.core.flags import GeneFlag
from rnadiff.io.quant import read_quant_files
from rnadiff.io.tx2gene import Tx2Gene, load_tx2gene
from rnadiff.io.tximport import length_scaled_counts, scale_to_library, tximport

from conftest import SAMPLES, TX_COUNTS


class TestTx2Gene:
    """Tests for the transcript -> gene lookup."""

    def test_load(self, tx2gene_path):
        tx2gene = load_tx2gene(tx2gene_path)
        assert len(tx2gene) == 4
        assert tx2gene.n_genes == 3
        assert tx2gene.source == tx2gene_path

    def test_named_columns(self):
        frame = pd.DataFrame({"symbol": ["A", "B"], "gene": ["G1", "G2"], "tx": ["T1", "T2"]})
        tx2gene = Tx2Gene.from_frame(frame, tx_col="tx", gene_col="gene")
        assert tx2gene.mapping["T2"] == "G2"

    def test_duplicates_warn_and_keep_first(self):
        frame = pd.DataFrame({"tx": ["T1", "T1"], "gene": ["G1", "G2"]})
        with pytest.warns(UserWarning, match="duplicated transcript rows"):
            tx2gene = Tx2Gene.from_frame(frame)
        assert tx2gene.mapping["T1"] == "G1"

    def test_match_ignoring_versions(self):
        tx2gene = Tx2Gene.from_frame(pd.DataFrame({"tx": ["T1.4", "T2.2"], "gene": ["G1", "G2"]}))
        genes = tx2gene.match(["T1.1", "T2.1"], ignore_version=True)
        assert list(genes.index) == ["T1.1", "T2.1"]
        assert list(genes) == ["G1", "G2"]

    def test_match_ignoring_after_bar(self):
        tx2gene = Tx2Gene.from_frame(pd.DataFrame({"tx": ["ENST1.1"], "gene": ["ENSG1.1"]}))
        genes = tx2gene.match(["ENST1.1|ENSG1.1|-|-|A-201|A|900|"], ignore_after_bar=True)
        assert list(genes) == ["ENSG1.1"]

    def test_partial_match_warns(self, tx2gene_frame):
        tx2gene = Tx2Gene.from_frame(tx2gene_frame)
        with pytest.warns(UserWarning, match="missing from tx2gene"):
            genes = tx2gene.match(["T1.1", "T9.1"])
        assert list(genes.index) == ["T1.1"]

    def test_no_match_raises(self, tx2gene_frame):
        tx2gene = Tx2Gene.from_frame(tx2gene_frame)
        with pytest.raises(ValueError, match="ignore_version"):
            tx2gene.match(["T1", "T2"])


class TestGeneSummaries:
    """Gene-level counts, abundance and length from the fixture transcripts."""

    @pytest.fixture
    def matrix(self, quant_files, tx2gene_path):
        return tximport(quant_files, tx2gene_path, fmt="salmon")

    def test_genes_sorted(self, matrix):
        assert list(matrix.feature_ids) == ["G1.3", "G2.1", "G3.7"]
        assert matrix.feature_ids.name == "gene_id"
        assert list(matrix.sample_ids) == SAMPLES
        assert matrix.sample_ids.name == "sample"

    def test_counts_and_abundance_are_sums(self, matrix):
        np.testing.assert_allclose(matrix.counts[0], [15, 25, 35, 45])
        np.testing.assert_allclose(matrix.counts[1], [100, 0, 50, 25])
        np.testing.assert_allclose(matrix.abundance[0], [4, 5, 6, 7])

    def test_length_is_abundance_weighted(self, matrix):
        np.testing.assert_allclose(matrix.length[0], [250, 220, 200, 1300 / 7])

    def test_undefined_length_uses_geometric_mean(self, matrix):
        """G2 has zero abundance in S2; its length there is the geometric mean of the rest."""
        expected = (500 * 400 * 400) ** (1 / 3)
        np.testing.assert_allclose(matrix.length[1], [500, expected, 400, 400])

    def test_all_zero_gene_flagged_with_mean_length(self, matrix):
        np.testing.assert_allclose(matrix.length[2], [200, 200, 200, 200])
        assert matrix.gene_flags[2] & GeneFlag.ALL_ZERO
        assert matrix.gene_flags[0] == GeneFlag.OK
        assert matrix.counts_from_abundance == "no"

    def test_metadata_attached(self, quant_files, tx2gene_path):
        meta = pd.DataFrame({"dex": ["trt", "untrt", "trt", "untrt"]}, index=SAMPLES[::-1])
        matrix = tximport(quant_files, tx2gene_path, sample_metadata=meta)
        assert list(matrix.sample_metadata.index) == SAMPLES
        assert list(matrix.sample_metadata["dex"]) == ["untrt", "trt", "untrt", "trt"]


class TestCountsFromAbundance:
    """Tests for the scaledTPM / lengthScaledTPM modes."""

    def test_scaled_tpm_proportional_to_abundance(self, quant_files, tx2gene_frame):
        matrix = tximport(quant_files, tx2gene_frame, counts_from_abundance="scaledTPM")
        library = TX_COUNTS.sum(axis=0)
        np.testing.assert_allclose(matrix.counts.sum(axis=0), library)
        np.testing.assert_allclose(matrix.counts[:, 0], library[0] * np.array([4, 10, 0]) / 14)
        assert matrix.counts_from_abundance == "scaledTPM"

    def test_length_scaled_keeps_library_sizes(self, quant_files, tx2gene_frame):
        matrix = tximport(quant_files, tx2gene_frame, counts_from_abundance="lengthScaledTPM")
        np.testing.assert_allclose(matrix.counts.sum(axis=0), TX_COUNTS.sum(axis=0))

    def test_length_scaled_counts_matches_import_mode(self, quant_files, tx2gene_frame):
        direct = tximport(quant_files, tx2gene_frame, counts_from_abundance="lengthScaledTPM")
        derived = length_scaled_counts(tximport(quant_files, tx2gene_frame))
        np.testing.assert_allclose(derived.counts, direct.counts)
        assert derived.counts_from_abundance == "lengthScaledTPM"

    def test_length_scaled_counts_needs_original_counts(self, quant_files, tx2gene_frame):
        scaled = tximport(quant_files, tx2gene_frame, counts_from_abundance="scaledTPM")
        with pytest.raises(ValueError, match="already derived"):
            length_scaled_counts(scaled)

    def test_scale_to_library_rejects_empty_sample(self):
        with pytest.raises(ValueError, match="zero total abundance"):
            scale_to_library(np.zeros((2, 1)), np.ones((2, 1)))

    def test_unknown_mode(self, quant_files, tx2gene_frame):
        with pytest.raises(ValueError, match="counts_from_abundance"):
            tximport(quant_files, tx2gene_frame, counts_from_abundance="TPM")

    def test_dtu_requires_transcript_level(self, quant_files, tx2gene_frame):
        with pytest.raises(ValueError, match="tx_out"):
            tximport(quant_files, tx2gene_frame, counts_from_abundance="dtuScaledTPM")


class TestImportOptions:
    """Tests for transcript output and identifier options."""

    def test_tx_out_without_mapping(self, quant_files):
        matrix = tximport(quant_files, None, tx_out=True)
        assert list(matrix.feature_ids) == ["T1.1", "T2.1", "T3.1", "T4.1"]
        assert matrix.feature_ids.name == "transcript_id"
        np.testing.assert_allclose(matrix.counts, TX_COUNTS)

    def test_gene_level_requires_mapping(self, quant_files):
        with pytest.raises(ValueError, match="tx2gene is required"):
            tximport(quant_files, None)

    def test_dtu_scaled_transcripts(self, quant_files, tx2gene_frame):
        matrix = tximport(quant_files, tx2gene_frame, tx_out=True, counts_from_abundance="dtuScaledTPM")
        np.testing.assert_allclose(matrix.counts.sum(axis=0), TX_COUNTS.sum(axis=0))

    def test_strip_gene_version(self, quant_files, tx2gene_frame):
        matrix = tximport(quant_files, tx2gene_frame, strip_gene_version=True)
        assert list(matrix.feature_ids) == ["G1", "G2", "G3"]

    def test_colliding_gene_ids_flagged(self, quant_files):
        tx2gene = pd.DataFrame({
            "tx": ["T1.1", "T2.1", "T3.1", "T4.1"],
            "gene": ["G1.1", "G1.2", "G2.1", "G3.1"],
        })
        with pytest.warns(UserWarning, match="collided"):
            matrix = tximport(quant_files, tx2gene, strip_gene_version=True)
        assert list(matrix.feature_ids) == ["G1", "G1.1", "G2", "G3"]
        assert matrix.gene_flags[1] & GeneFlag.ID_DISAMBIGUATED
        assert not matrix.gene_flags[0] & GeneFlag.ID_DISAMBIGUATED

    def test_accepts_preread_transcripts(self, quant_files, tx2gene_frame):
        tx = read_quant_files(quant_files)
        matrix = tximport(tx, tx2gene_frame)
        np.testing.assert_allclose(matrix.counts[0], [15, 25, 35, 45])
