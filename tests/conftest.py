from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from celltraj.core.dataset import Dataset, new_dataset


def make_counts(n_cells: int, n_genes: int, seed: int = 0, lam: float = 2.0):
    rng = np.random.default_rng(seed)
    values = rng.poisson(lam, size=(n_genes, n_cells)).astype(float)
    cell_ids = [f"cell_{i}" for i in range(n_cells)]
    gene_ids = [f"gene_{i}" for i in range(n_genes)]
    counts = pd.DataFrame(values, index=gene_ids, columns=cell_ids)
    cells = pd.DataFrame({"batch": ["a" if i % 2 else "b" for i in range(n_cells)]}, index=cell_ids)
    genes = pd.DataFrame({"gene_short_name": [f"G{i}" for i in range(n_genes)]}, index=gene_ids)
    return counts, cells, genes


def blob_coords(sizes: list[int], seed: int = 0, spread: float = 0.5, gap: float = 50.0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    blocks = []
    for i, n in enumerate(sizes):
        center = np.array([gap * i, 0.0])
        blocks.append(center + rng.normal(scale=spread, size=(n, 2)))
    return np.vstack(blocks)


def annotate_groups(ds: Dataset, clusters, partitions, method: str = "umap") -> Dataset:
    """Write cluster and partition columns the way cluster_cells stores them."""
    for kind, labels in (("cluster", clusters), ("partition", partitions)):
        lab = np.asarray(labels).astype(str)
        cats = sorted(pd.unique(lab), key=int)
        ds.adata.obs[f"{kind}_{method}"] = pd.Categorical(lab, categories=cats)
    return ds


@pytest.fixture
def small_inputs():
    return make_counts(n_cells=30, n_genes=40)


@pytest.fixture
def small_dataset(small_inputs) -> Dataset:
    counts, cells, genes = small_inputs
    return new_dataset(counts, cells, genes)


@pytest.fixture
def split_dataset() -> Dataset:
    """80 + 20 cells in two far-apart blobs, each its own cluster and partition."""
    counts, cells, genes = make_counts(n_cells=100, n_genes=30, seed=3)
    ds = new_dataset(counts, cells, genes)
    ds.adata.layers["normalized"] = np.log1p(ds.adata.X.toarray())
    ds.set_reduced_dims("UMAP", blob_coords([80, 20], seed=3))
    labels = np.array(["1"] * 80 + ["2"] * 20)
    return annotate_groups(ds, labels, labels)
