from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp
from sklearn.neighbors import NearestNeighbors

import celltraj.tools.moran_test as moran_test_module
from celltraj.core.dataset import new_dataset
from celltraj.errors import ParameterError, WorkerFailure
from celltraj.stats.moran import row_standardize
from celltraj.tools import cell_weights, graph_test, learn_graph

from conftest import annotate_groups, make_counts


@pytest.fixture
def line_dataset():
    """200 cells along a line; gene_0 follows position, gene_1 is noise, gene_2 is silent."""
    n_cells = 200
    counts, cells, genes = make_counts(n_cells=n_cells, n_genes=6, seed=8)
    ds = new_dataset(counts, cells, genes)
    rng = np.random.default_rng(8)
    x = np.linspace(0.0, 10.0, n_cells)
    coords = np.column_stack([x, rng.normal(scale=0.05, size=n_cells)])
    ds.set_reduced_dims("UMAP", coords)
    norm = rng.normal(size=(n_cells, 6))
    norm[:, 0] = x + rng.normal(scale=0.1, size=n_cells)
    norm[:, 2] = 0.0
    ds.adata.layers["normalized"] = norm
    annotate_groups(ds, np.repeat("1", n_cells), np.repeat("1", n_cells))
    return learn_graph(ds)


def test_trajectory_gene_scores_above_noise(line_dataset):
    result = graph_test(line_dataset, neighbor_graph="knn", k=10)
    assert list(result["gene_id"]) == list(line_dataset.gene_ids)
    assert list(result.index) == list(line_dataset.gene_ids)
    assert result.loc["gene_0", "morans_I"] > 0.8
    assert result.loc["gene_0", "morans_I"] > result.loc["gene_1", "morans_I"]
    assert result.loc["gene_0", "p_value"] < 1e-6
    assert result.loc["gene_0", "q_value"] < 0.05
    assert result.loc["gene_0", "status"] == "OK"


def test_silent_gene_reported_without_variance(line_dataset):
    result = graph_test(line_dataset, neighbor_graph="principal_graph")
    row = result.loc["gene_2"]
    assert row["status"] == "NO_VARIANCE"
    assert np.isnan(row["p_value"])
    assert row["q_value"] == 1.0
    assert result["q_value"].between(0.0, 1.0).all()


def test_gene_subset_and_blocks(line_dataset):
    full = graph_test(line_dataset, k=10, block_size=2)
    subset = graph_test(line_dataset, k=10, genes=["gene_3", "gene_0"])
    assert list(subset["gene_id"]) == ["gene_3", "gene_0"]
    np.testing.assert_allclose(
        subset["morans_I"].to_numpy(), full.loc[["gene_3", "gene_0"], "morans_I"].to_numpy()
    )
    with pytest.raises(KeyError):
        graph_test(line_dataset, genes=["nope"])


def test_parallel_graph_test_matches_serial(line_dataset):
    serial = graph_test(line_dataset, k=10, block_size=2, n_jobs=1)
    parallel = graph_test(line_dataset, k=10, block_size=2, n_jobs=2)
    pd.testing.assert_frame_equal(serial, parallel)


def test_worker_failure_aborts_graph_test(line_dataset, monkeypatch):
    def _boom(*_args, **_kwargs):
        raise RuntimeError("block exploded")

    monkeypatch.setattr(moran_test_module, "morans_i_block", _boom)
    with pytest.raises(WorkerFailure, match="block exploded"):
        graph_test(line_dataset, k=10, n_jobs=1)


def test_invalid_graph_test_params_rejected(line_dataset):
    with pytest.raises(ParameterError):
        graph_test(line_dataset, neighbor_graph="radius")
    with pytest.raises(ParameterError):
        graph_test(line_dataset, alternative="sideways")


def test_cell_weights_are_row_standardized(line_dataset):
    graph = line_dataset.principal_graph("UMAP")
    coords = line_dataset.reduced_dims("UMAP")
    w = cell_weights(coords, graph, neighbor_graph="knn", k=10)
    rows = np.asarray(w.sum(axis=1)).ravel()
    nonempty = rows > 0
    np.testing.assert_allclose(rows[nonempty], 1.0)
    assert w.diagonal().sum() == 0.0
    # every kept pair sits on the same or adjacent principal nodes
    reach = graph.adjacency(weighted=False).toarray() + np.eye(graph.n_nodes)
    r, c = w.nonzero()
    cv = graph.closest_vertex
    assert np.all(reach[cv[r], cv[c]] > 0)


def test_knn_weights_match_full_pair_masking(line_dataset):
    graph = line_dataset.principal_graph("UMAP")
    coords = line_dataset.reduced_dims("UMAP")
    k = 10
    w = cell_weights(coords, graph, neighbor_graph="knn", k=k)

    n_cells = coords.shape[0]
    cv = graph.closest_vertex
    assign = sp.csr_matrix(
        (np.ones(n_cells), (np.arange(n_cells), cv)), shape=(n_cells, graph.n_nodes)
    )
    reach = graph.adjacency(weighted=False) + sp.identity(graph.n_nodes, format="csr")
    linked = sp.csr_matrix(assign @ reach @ assign.T)
    knn = NearestNeighbors(n_neighbors=k + 1).fit(coords).kneighbors_graph(coords)
    expected = sp.csr_matrix(sp.csr_matrix(knn).multiply(linked > 0), dtype=float)
    expected.setdiag(0.0)
    expected.eliminate_zeros()
    expected.data = np.ones_like(expected.data)
    expected = row_standardize(expected)

    np.testing.assert_allclose(w.toarray(), expected.toarray())
    assert w.nnz <= n_cells * k
