from __future__ import annotations

import numpy as np
import pytest

from celltraj.core.dataset import new_dataset
from celltraj.errors import ParameterError, PrecursorMissingError
from celltraj.tools import aggregate_gene_expression, find_gene_modules
from celltraj.tools.modules import modularity

from conftest import annotate_groups, make_counts

GENES_A = [f"gene_{i}" for i in range(5)]
GENES_B = [f"gene_{i}" for i in range(5, 10)]


@pytest.fixture
def module_dataset():
    """Genes 0-4 follow one cell-wise program, genes 5-9 an independent one."""
    n_cells = 100
    counts, cells, genes = make_counts(n_cells=n_cells, n_genes=12, seed=21)
    ds = new_dataset(counts, cells, genes)
    rng = np.random.default_rng(21)
    prog_a = rng.normal(size=n_cells)
    prog_b = rng.normal(size=n_cells)
    norm = rng.normal(scale=0.1, size=(n_cells, 12))
    norm[:, :5] += prog_a[:, None] + 3.0
    norm[:, 5:10] += prog_b[:, None] + 3.0
    ds.adata.layers["normalized"] = norm
    labels = np.repeat(["1", "2", "3", "4"], 25)
    return annotate_groups(ds, labels, np.repeat("1", n_cells))


def test_co_varying_genes_share_a_module(module_dataset):
    modules = find_gene_modules(module_dataset, GENES_A + GENES_B, resolution=[0.01, 0.1, 1.0], k=3)
    assert list(modules.columns) == ["gene_id", "gene_short_name", "module", "supermodule", "resolution"]
    assert list(modules["gene_id"]) == GENES_A + GENES_B
    by_gene = modules.set_index("gene_id")["module"]
    assert by_gene[GENES_A].nunique() == 1
    assert by_gene[GENES_B].nunique() == 1
    assert by_gene[GENES_A].iloc[0] != by_gene[GENES_B].iloc[0]
    assert set(modules["module"]) == {1, 2}


def test_module_detection_needs_three_genes(module_dataset):
    with pytest.raises(ParameterError, match="genes"):
        find_gene_modules(module_dataset, ["gene_0", "gene_1"])
    with pytest.raises(KeyError):
        find_gene_modules(module_dataset, ["gene_0", "gene_1", "nope"])
    with pytest.raises(ParameterError, match="resolution"):
        find_gene_modules(module_dataset, GENES_A, resolution=[0.0])


def test_aggregate_shape_and_clipping(module_dataset):
    modules = find_gene_modules(module_dataset, GENES_A + GENES_B, resolution=0.01, k=3)
    agg = aggregate_gene_expression(module_dataset, modules, "cluster")
    assert agg.shape == (2, 4)
    assert list(agg.columns) == ["1", "2", "3", "4"]
    assert (agg.to_numpy() <= 3.0).all() and (agg.to_numpy() >= -3.0).all()


def test_unscaled_aggregate_is_group_mean(module_dataset):
    modules = find_gene_modules(module_dataset, GENES_A + GENES_B, resolution=0.01, k=3)
    agg = aggregate_gene_expression(module_dataset, modules, None, scale_agg_values=False)
    assert list(agg.columns) == ["all"]
    norm = module_dataset.normalized()
    module_of_a = int(modules.loc[modules["gene_id"] == "gene_0", "module"].iloc[0])
    expected = float(norm[:, :5].mean(axis=1).mean())
    assert agg.loc[module_of_a, "all"] == pytest.approx(expected)


def test_aggregate_accepts_explicit_grouping(module_dataset):
    modules = find_gene_modules(module_dataset, GENES_A + GENES_B, resolution=0.01, k=3)
    groups = module_dataset.cell_metadata["batch"]
    agg = aggregate_gene_expression(module_dataset, modules, groups)
    assert list(agg.columns) == ["a", "b"]


def test_modules_need_normalized_expression(small_dataset):
    with pytest.raises(PrecursorMissingError):
        find_gene_modules(small_dataset, ["gene_0", "gene_1", "gene_2"])


def test_modularity_of_two_cliques():
    adj = np.zeros((6, 6))
    adj[:3, :3] = 1.0
    adj[3:, 3:] = 1.0
    np.fill_diagonal(adj, 0.0)
    assert modularity(adj, np.array([0, 0, 0, 1, 1, 1])) == pytest.approx(0.5)
    assert modularity(adj, np.zeros(6)) == pytest.approx(0.0)
