"""Principal graph learning over a cell embedding."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import laplacian, minimum_spanning_tree
from scipy.spatial.distance import cdist
from scipy.special import logsumexp
from sklearn.cluster import KMeans

from celltraj.core.dataset import Dataset, nonlinear_method, obs_key
from celltraj.core.graph import PrincipalGraph
from celltraj.errors import ParameterError
from celltraj.seeding import stable_seed

EPS = 1e-12


def _logger() -> logging.Logger:
    return logging.getLogger("celltraj.graph")


@runtime_checkable
class GraphLearner(Protocol):
    """Fits a tree skeleton to one set of cell coordinates."""

    def fit(self, coords: np.ndarray, *, seed: int) -> tuple[np.ndarray, np.ndarray]:
        ...


def mst_edges(positions: np.ndarray) -> np.ndarray:
    """Minimum spanning tree over node positions as sorted (a, b) pairs, a < b."""
    pos = np.asarray(positions, dtype=float)
    m = pos.shape[0]
    if m <= 1:
        return np.zeros((0, 2), dtype=np.int64)
    dist = cdist(pos, pos)
    # coincident nodes must still be linked; zeros mean "no edge" to csgraph
    dist = np.where(dist > 0.0, dist, EPS)
    np.fill_diagonal(dist, 0.0)
    tree = minimum_spanning_tree(dist).tocoo()
    edges = np.sort(np.column_stack([tree.row, tree.col]).astype(np.int64), axis=1)
    order = np.lexsort((edges[:, 1], edges[:, 0]))
    return edges[order]


@dataclass(frozen=True)
class PrincipalTreeLearner:
    """SimplePPT-style principal tree.

    Nodes are seeded by K-means, then refined by alternating soft cell-to-node
    assignment with a tree-Laplacian-regularised node update; the tree is the
    MST of the current node positions. `sigma` scales the soft-assignment
    bandwidth and `gamma` the smoothness penalty, both relative to the data.
    """

    nodes_per_log10_cells: float = 15.0
    max_nodes: int | None = None
    max_iter: int = 10
    sigma: float = 0.1
    gamma: float = 0.5
    tol: float = 1e-3

    def n_nodes_for(self, n_cells: int) -> int:
        if n_cells <= 1:
            return 1
        target = int(round(self.nodes_per_log10_cells * np.log10(n_cells)))
        if self.max_nodes is not None:
            target = min(target, int(self.max_nodes))
        return int(np.clip(target, 2, n_cells))

    def fit(self, coords: np.ndarray, *, seed: int) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(coords, dtype=float)
        n = x.shape[0]
        n_nodes = self.n_nodes_for(n)
        if n_nodes == 1:
            return x.mean(axis=0, keepdims=True), np.zeros((0, 2), dtype=np.int64)

        km = KMeans(n_clusters=n_nodes, n_init=10, random_state=int(seed))
        nodes = np.asarray(km.fit(x).cluster_centers_, dtype=float)

        sq = cdist(x, nodes, "sqeuclidean")
        bandwidth = float(self.sigma) * max(float(np.mean(sq.min(axis=1))), EPS)
        smooth = float(self.gamma) * n / float(n_nodes)
        for _ in range(int(self.max_iter)):
            edges = mst_edges(nodes)
            adj = sp.coo_matrix(
                (np.ones(edges.shape[0]), (edges[:, 0], edges[:, 1])),
                shape=(n_nodes, n_nodes),
            )
            lap = laplacian((adj + adj.T).toarray())
            logits = -cdist(x, nodes, "sqeuclidean") / bandwidth
            resp = np.exp(logits - logsumexp(logits, axis=1, keepdims=True))
            system = np.diag(resp.sum(axis=0)) + smooth * lap + EPS * np.eye(n_nodes)
            updated = np.linalg.solve(system, resp.T @ x)
            shift = np.linalg.norm(updated - nodes) / (np.linalg.norm(nodes) + EPS)
            nodes = updated
            if shift < float(self.tol):
                break
        return nodes, mst_edges(nodes)


def _partition_order(labels: np.ndarray) -> list[str]:
    uniq = [str(x) for x in np.unique(labels)]
    return sorted(uniq, key=lambda s: (0, int(s), s) if s.isdigit() else (1, 0, s))


def learn_graph(
    ds: Dataset,
    *,
    reduction_method: str = "UMAP",
    use_partition: bool = True,
    learner: GraphLearner | None = None,
    seed: int = 0,
) -> Dataset:
    """Fit a principal graph over the embedding and assign each cell a node.

    With `use_partition`, one tree is fitted per partition and no edge joins
    nodes of different partitions.
    """
    name = nonlinear_method(reduction_method)
    coords = ds.reduced_dims(name, stage="learn_graph")
    ds.clusters(name, stage="learn_graph")
    parts = ds.partitions(name, stage="learn_graph").astype(str).to_numpy()
    labels = parts if use_partition else np.full(ds.n_cells, "1", dtype=object)
    learner = PrincipalTreeLearner() if learner is None else learner
    if not isinstance(learner, GraphLearner):
        raise ParameterError("learner", learner, "must provide fit(coords, *, seed).")

    positions: list[np.ndarray] = []
    edge_blocks: list[np.ndarray] = []
    node_part: list[np.ndarray] = []
    closest = np.zeros(ds.n_cells, dtype=np.int64)
    offset = 0
    for part in _partition_order(labels):
        idx = np.flatnonzero(labels == part)
        pos, edges = learner.fit(coords[idx], seed=stable_seed(int(seed), "learn_graph", part))
        pos = np.asarray(pos, dtype=float)
        edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
        closest[idx] = offset + np.argmin(cdist(coords[idx], pos), axis=1)
        positions.append(pos)
        edge_blocks.append(edges + offset)
        node_part.append(np.full(pos.shape[0], part, dtype=object))
        offset += pos.shape[0]

    graph = PrincipalGraph(
        node_positions=np.vstack(positions),
        edges=np.vstack(edge_blocks),
        node_partition=np.concatenate(node_part),
        closest_vertex=closest,
        reduction_method=name,
    )
    ds.graphs[name] = graph
    ds.adata.obs[obs_key("closest_vertex", name)] = closest
    ds.check_shape()
    _logger().info(
        "%s principal graph: %d nodes, %d edges, %d components (use_partition=%s)",
        name,
        graph.n_nodes,
        int(graph.edges.shape[0]),
        graph.n_components(),
        bool(use_partition),
    )
    return ds
