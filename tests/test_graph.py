from __future__ import annotations

import numpy as np
import pytest

from celltraj.core.graph import PrincipalGraph
from celltraj.errors import PrecursorMissingError
from celltraj.tools import PrincipalTreeLearner, learn_graph
from celltraj.tools.graph import mst_edges


def test_graph_edges_stay_within_partitions(split_dataset):
    ds = learn_graph(split_dataset, reduction_method="UMAP", use_partition=True)
    graph = ds.principal_graph("UMAP")
    parts = graph.node_partition
    assert all(parts[a] == parts[b] for a, b in graph.edges)
    assert set(parts) == {"1", "2"}
    assert graph.n_components() == 2
    assert graph.closest_vertex.shape == (ds.n_cells,)
    cell_parts = ds.partitions("UMAP").astype(str).to_numpy()
    np.testing.assert_array_equal(parts[graph.closest_vertex], cell_parts)


def test_single_tree_without_partitions(split_dataset):
    ds = learn_graph(split_dataset, use_partition=False)
    graph = ds.principal_graph("UMAP")
    assert graph.n_components() == 1
    assert graph.edges.shape[0] == graph.n_nodes - 1


def test_learn_graph_is_reproducible(split_dataset):
    first = learn_graph(split_dataset, seed=2).principal_graph("UMAP").node_positions.copy()
    second = learn_graph(split_dataset, seed=2).principal_graph("UMAP").node_positions
    np.testing.assert_allclose(first, second)


def test_learn_graph_needs_clusters(small_dataset):
    small_dataset.set_reduced_dims("UMAP", np.random.default_rng(0).normal(size=(30, 2)))
    with pytest.raises(PrecursorMissingError, match="learn_graph"):
        learn_graph(small_dataset)


def test_tree_learner_node_count_scales_with_cells():
    learner = PrincipalTreeLearner(max_nodes=20)
    assert learner.n_nodes_for(1) == 1
    assert learner.n_nodes_for(3) == 3
    assert learner.n_nodes_for(100) == 20
    assert PrincipalTreeLearner().n_nodes_for(100) == 30


def test_mst_edges_link_collinear_points_in_order():
    pos = np.array([[0.0, 0.0], [2.0, 0.0], [1.0, 0.0], [3.0, 0.0]])
    edges = mst_edges(pos)
    assert sorted(map(tuple, edges.tolist())) == [(0, 2), (1, 2), (1, 3)]


def test_principal_graph_helpers():
    graph = PrincipalGraph(
        node_positions=np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [1.0, 1.0], [5.0, 5.0]]),
        edges=np.array([[0, 1], [1, 2], [1, 3]]),
        node_partition=np.array(["1", "1", "1", "1", "2"]),
        closest_vertex=np.array([0, 1, 4]),
        reduction_method="UMAP",
    )
    assert graph.node_names[:2] == ["Y_1", "Y_2"]
    assert graph.node_index("Y_3") == 2
    with pytest.raises(KeyError):
        graph.node_index("Y_9")
    assert list(graph.leaf_nodes()) == [0, 2, 3]
    assert list(graph.branch_nodes()) == [1]
    assert graph.n_components() == 2
    np.testing.assert_allclose(graph.edge_lengths(), [1.0, 1.0, 1.0])
    restored = PrincipalGraph.from_uns(graph.to_uns())
    np.testing.assert_array_equal(restored.edges, graph.edges)
    np.testing.assert_array_equal(restored.node_partition, graph.node_partition)


def test_principal_graph_rejects_bad_edges():
    with pytest.raises(ValueError, match="edges"):
        PrincipalGraph(
            node_positions=np.zeros((2, 2)),
            edges=np.array([[0, 5]]),
            node_partition=np.array(["1", "1"]),
            closest_vertex=np.array([0]),
            reduction_method="UMAP",
        )
