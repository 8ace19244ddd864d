"""Principal graph container shared by the trajectory stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import connected_components

EPS = 1e-12


@dataclass(frozen=True)
class PrincipalGraph:
    """Tree-like skeleton fitted to one embedding.

    - `node_positions`: (n_nodes, n_dims) coordinates in the embedding space.
    - `edges`: (n_edges, 2) node index pairs, undirected.
    - `node_partition`: partition label of every node.
    - `closest_vertex`: node index nearest to every cell, in cell order.
    """

    node_positions: np.ndarray
    edges: np.ndarray
    node_partition: np.ndarray
    closest_vertex: np.ndarray
    reduction_method: str

    def __post_init__(self) -> None:
        pos = np.asarray(self.node_positions, dtype=float)
        if pos.ndim != 2 or pos.shape[0] == 0:
            raise ValueError(f"node_positions must be a non-empty 2D array, got {pos.shape}.")
        edges = np.asarray(self.edges, dtype=np.int64).reshape(-1, 2)
        if edges.size and (edges.min() < 0 or edges.max() >= pos.shape[0]):
            raise ValueError("edges reference nodes outside node_positions.")
        node_partition = np.asarray(self.node_partition).astype(str)
        if node_partition.size != pos.shape[0]:
            raise ValueError("node_partition length must equal the number of nodes.")
        closest = np.asarray(self.closest_vertex, dtype=np.int64).ravel()
        if closest.size and (closest.min() < 0 or closest.max() >= pos.shape[0]):
            raise ValueError("closest_vertex references nodes outside node_positions.")
        object.__setattr__(self, "node_positions", pos)
        object.__setattr__(self, "edges", edges)
        object.__setattr__(self, "node_partition", node_partition)
        object.__setattr__(self, "closest_vertex", closest)

    @property
    def n_nodes(self) -> int:
        return int(self.node_positions.shape[0])

    @property
    def node_names(self) -> list[str]:
        return [f"Y_{i + 1}" for i in range(self.n_nodes)]

    def node_index(self, name: str) -> int:
        key = str(name).strip()
        if key.startswith("Y_") and key[2:].isdigit():
            idx = int(key[2:]) - 1
            if 0 <= idx < self.n_nodes:
                return idx
        raise KeyError(f"Principal graph node '{name}' not found.")

    def edge_lengths(self) -> np.ndarray:
        if self.edges.size == 0:
            return np.zeros(0, dtype=float)
        diff = self.node_positions[self.edges[:, 0]] - self.node_positions[self.edges[:, 1]]
        return np.sqrt(np.sum(diff**2, axis=1))

    def adjacency(self, weighted: bool = True) -> sp.csr_matrix:
        """Symmetric node adjacency; weights are Euclidean edge lengths."""
        n = self.n_nodes
        if self.edges.size == 0:
            return sp.csr_matrix((n, n), dtype=float)
        if weighted:
            w = np.maximum(self.edge_lengths(), EPS)
        else:
            w = np.ones(self.edges.shape[0], dtype=float)
        rows = np.concatenate([self.edges[:, 0], self.edges[:, 1]])
        cols = np.concatenate([self.edges[:, 1], self.edges[:, 0]])
        data = np.concatenate([w, w])
        return sp.csr_matrix((data, (rows, cols)), shape=(n, n))

    def degree(self) -> np.ndarray:
        deg = np.zeros(self.n_nodes, dtype=np.int64)
        if self.edges.size:
            np.add.at(deg, self.edges[:, 0], 1)
            np.add.at(deg, self.edges[:, 1], 1)
        return deg

    def leaf_nodes(self) -> np.ndarray:
        return np.flatnonzero(self.degree() == 1)

    def branch_nodes(self) -> np.ndarray:
        return np.flatnonzero(self.degree() >= 3)

    def component_labels(self) -> np.ndarray:
        _, labels = connected_components(self.adjacency(weighted=False), directed=False)
        return labels.astype(np.int64)

    def n_components(self) -> int:
        return int(np.unique(self.component_labels()).size)

    def to_uns(self) -> dict[str, Any]:
        return {
            "node_positions": self.node_positions,
            "edges": self.edges,
            "node_partition": self.node_partition.astype(object),
            "closest_vertex": self.closest_vertex,
            "reduction_method": str(self.reduction_method),
        }

    @classmethod
    def from_uns(cls, payload: dict[str, Any]) -> "PrincipalGraph":
        return cls(
            node_positions=np.asarray(payload["node_positions"], dtype=float),
            edges=np.asarray(payload["edges"], dtype=np.int64),
            node_partition=np.asarray(payload["node_partition"]).astype(str),
            closest_vertex=np.asarray(payload["closest_vertex"], dtype=np.int64),
            reduction_method=str(payload["reduction_method"]),
        )
