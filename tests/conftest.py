"""
Pytest configuration and shared fixtures.

Provides small synthetic inputs with hand-checkable values:
transcript quantification files (salmon, gzip; kallisto, plain), a
tx2gene table, a sample table, and negative binomial count matrices for
the pydeseq2-backed tests.
"""

import gzip

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from rnadiff.core.countmatrix import CountMatrix


SAMPLES = ["S1", "S2", "S3", "S4"]

# Transcript-level values, one column per sample.
# T1 + T2 -> G1, T3 -> G2, T4 -> G3 (no reads anywhere)
TX_IDS = ["T1.1", "T2.1", "T3.1", "T4.1"]
TX_LENGTH = [150, 350, 550, 250]
TX_COUNTS = np.array([
    [10, 20, 30, 40],
    [5, 5, 5, 5],
    [100, 0, 50, 25],
    [0, 0, 0, 0],
], dtype=float)
TX_TPM = np.array([
    [1, 2, 3, 4],
    [3, 3, 3, 3],
    [10, 0, 5, 5],
    [0, 0, 0, 0],
], dtype=float)
TX_EFFLEN = np.array([
    [100, 100, 100, 100],
    [300, 300, 300, 300],
    [500, 500, 400, 400],
    [200, 200, 200, 200],
], dtype=float)


def write_salmon(path, names, lengths, efflen, tpm, reads, compress=True):
    """Write a salmon quant.sf table (gzip-compressed by default)."""
    lines = ["Name\tLength\tEffectiveLength\tTPM\tNumReads"]
    for row in zip(names, lengths, efflen, tpm, reads):
        lines.append("\t".join(str(v) for v in row))
    text = "\n".join(lines) + "\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    if compress:
        with gzip.open(path, "wt") as f:
            f.write(text)
    else:
        path.write_text(text)
    return path


def write_kallisto(path, names, lengths, efflen, tpm, reads):
    """Write a kallisto abundance.tsv table."""
    lines = ["target_id\tlength\teff_length\test_counts\ttpm"]
    for name, length, eff, est, t in zip(names, lengths, efflen, reads, tpm):
        lines.append(f"{name}\t{length}\t{eff}\t{est}\t{t}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def quant_dir(tmp_path):
    """Salmon layout: {dir}/{sample}/quant.sf.gz for S1..S4."""
    root = tmp_path / "quants"
    for j, sample in enumerate(SAMPLES):
        write_salmon(
            root / sample / "quant.sf.gz",
            TX_IDS,
            TX_LENGTH,
            TX_EFFLEN[:, j],
            TX_TPM[:, j],
            TX_COUNTS[:, j],
        )
    return root


@pytest.fixture
def quant_files(quant_dir):
    """Ordered sample -> file mapping."""
    return {s: quant_dir / s / "quant.sf.gz" for s in SAMPLES}


@pytest.fixture
def tx2gene_frame():
    return pd.DataFrame({
        "TXNAME": ["T1.1", "T2.1", "T3.1", "T4.1"],
        "GENEID": ["G1.3", "G1.3", "G2.1", "G3.7"],
    })


@pytest.fixture
def tx2gene_path(tmp_path, tx2gene_frame):
    path = tmp_path / "tx2gene.csv"
    tx2gene_frame.to_csv(path, index=False)
    return path


@pytest.fixture
def sample_table(tmp_path):
    """TSV sample table indexed by 'run' with dex and cell factors."""
    path = tmp_path / "samples.tsv"
    pd.DataFrame({
        "run": SAMPLES,
        "dex": ["untrt", "trt", "untrt", "trt"],
        "cell": ["N1", "N1", "N2", "N2"],
    }).to_csv(path, sep="\t", index=False)
    return path


def make_nb_matrix(
    n_genes: int = 200,
    n_per_group: int = 4,
    n_de: int = 20,
    fold_change: float = 4.0,
    dispersion: float = 0.1,
    seed: int = 0,
) -> CountMatrix:
    """
    Negative binomial counts for two conditions (A reference, B treated).

    The first ``n_de`` genes are up-regulated in B by ``fold_change``; the
    rest are null. A second factor ``batch`` is balanced across conditions.
    """
    rng = np.random.default_rng(seed)
    n_samples = 2 * n_per_group
    base = rng.lognormal(mean=5.0, sigma=1.0, size=n_genes)
    condition = np.array(["A"] * n_per_group + ["B"] * n_per_group)
    size_factors = rng.uniform(0.7, 1.4, size=n_samples)

    mu = np.outer(base, size_factors)
    mu[:n_de, condition == "B"] *= fold_change

    r = 1.0 / dispersion
    counts = rng.negative_binomial(r, r / (r + mu)).astype(float)

    sample_ids = pd.Index([f"s{i + 1}" for i in range(n_samples)], name="sample")
    metadata = pd.DataFrame(
        {
            "condition": condition,
            "batch": (["b1", "b2"] * n_samples)[:n_samples],
        },
        index=sample_ids,
    )
    feature_ids = pd.Index([f"gene{i:04d}" for i in range(n_genes)], name="gene_id")
    return CountMatrix(
        counts=counts,
        feature_ids=feature_ids,
        sample_ids=sample_ids,
        sample_metadata=metadata,
    )


@pytest.fixture
def nb_matrix():
    return make_nb_matrix()


@pytest.fixture(scope="module")
def fitted():
    """One pydeseq2 fit of ~ condition, shared by a test module."""
    from rnadiff.stats.deseq import DESeqConfig, fit
    from rnadiff.stats.design import build_design

    matrix = make_nb_matrix()
    design = build_design(matrix.sample_metadata, "~ condition")
    return fit(matrix, design, DESeqConfig(n_cpus=1))


@pytest.fixture
def small_matrix():
    """3 genes x 4 samples with abundance and length assays."""
    counts = np.array([
        [10.0, 0.0, 5.0, 3.0],
        [0.0, 0.0, 0.0, 0.0],
        [100.0, 200.0, 150.0, 50.0],
    ])
    abundance = np.array([
        [1.0, 0.0, 0.5, 0.3],
        [0.0, 0.0, 0.0, 0.0],
        [10.0, 20.0, 15.0, 5.0],
    ])
    length = np.array([
        [1000.0, 1200.0, 1100.0, 900.0],
        [500.0, 500.0, 500.0, 500.0],
        [2000.0, 2000.0, 2100.0, 1900.0],
    ])
    sample_ids = pd.Index(SAMPLES, name="sample")
    metadata = pd.DataFrame(
        {"dex": ["untrt", "trt", "untrt", "trt"], "cell": ["N1", "N1", "N2", "N2"]},
        index=sample_ids,
    )
    return CountMatrix(
        counts=counts,
        feature_ids=pd.Index(["G1", "G2", "G3"], name="gene_id"),
        sample_ids=sample_ids,
        sample_metadata=metadata,
        abundance=abundance,
        length=length,
    )
