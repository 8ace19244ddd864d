"""Pseudotime along the principal graph from user-chosen roots."""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np
import pandas as pd
from scipy.sparse.csgraph import dijkstra

from celltraj.core.dataset import Dataset, canonical_method, obs_key
from celltraj.errors import ParameterError


def _logger() -> logging.Logger:
    return logging.getLogger("celltraj.pseudotime")


def _resolve_root_nodes(
    ds: Dataset,
    name: str,
    root_cells: Iterable[str] | None,
    root_nodes: Iterable[str] | None,
) -> np.ndarray:
    graph = ds.principal_graph(name, stage="order_cells")
    if (root_cells is None) == (root_nodes is None):
        raise ParameterError(
            "root_cells/root_nodes",
            (root_cells, root_nodes),
            "provide exactly one of root_cells or root_nodes.",
        )
    if root_cells is not None:
        cells = [str(c) for c in ([root_cells] if isinstance(root_cells, str) else root_cells)]
        if not cells:
            raise ParameterError("root_cells", cells, "must name at least one cell.")
        missing = [c for c in cells if c not in ds.cell_ids]
        if missing:
            raise KeyError(f"Root cells not found in dataset: {', '.join(missing[:5])}")
        pos = ds.cell_ids.get_indexer(cells)
        return np.unique(graph.closest_vertex[pos])
    nodes = [str(n) for n in ([root_nodes] if isinstance(root_nodes, str) else root_nodes)]
    if not nodes:
        raise ParameterError("root_nodes", nodes, "must name at least one node.")
    return np.unique([graph.node_index(n) for n in nodes])


def order_cells(
    ds: Dataset,
    *,
    reduction_method: str = "UMAP",
    root_cells: Iterable[str] | None = None,
    root_nodes: Iterable[str] | None = None,
) -> Dataset:
    """Assign pseudotime as graph-geodesic distance from the nearest root node.

    Cells whose closest vertex cannot be reached from any root get `inf`;
    that marks a separate trajectory, not a failure.
    """
    name = canonical_method(reduction_method)
    graph = ds.principal_graph(name, stage="order_cells")
    roots = _resolve_root_nodes(ds, name, root_cells, root_nodes)

    comps = graph.component_labels()
    root_comps = np.unique(comps[roots])
    if root_comps.size > 1:
        _logger().warning(
            "Root nodes span %d disconnected graph components; each is ordered from its own root.",
            int(root_comps.size),
        )

    node_dist = dijkstra(graph.adjacency(), directed=False, indices=roots, min_only=True)
    node_dist = np.asarray(node_dist, dtype=float)
    node_dist[roots] = 0.0
    pt = node_dist[graph.closest_vertex]

    ds.adata.obs[obs_key("pseudotime", name)] = pt
    ds.adata.uns[f"pseudotime_{name.lower()}_roots"] = np.array(
        [graph.node_names[i] for i in roots], dtype=object
    )
    ds.check_shape()
    n_unreachable = int(np.sum(~np.isfinite(pt)))
    _logger().info(
        "Pseudotime ordered from %d root node(s); %d of %d cells unreachable",
        int(roots.size),
        n_unreachable,
        ds.n_cells,
    )
    return ds


def root_node_for_group(
    ds: Dataset,
    obs_key_name: str,
    value: str,
    *,
    reduction_method: str = "UMAP",
) -> str:
    """Principal node most often closest to cells with `obs[obs_key_name] == value`."""
    name = canonical_method(reduction_method)
    graph = ds.principal_graph(name, stage="root_node_for_group")
    if obs_key_name not in ds.adata.obs.columns:
        raise KeyError(f"adata.obs['{obs_key_name}'] not found.")
    mask = (ds.adata.obs[obs_key_name].astype(str) == str(value)).to_numpy()
    if not mask.any():
        raise ParameterError("value", value, f"no cells have {obs_key_name} == {value!r}.")
    counts = pd.Series(graph.closest_vertex[mask]).value_counts()
    best = sorted(counts.index, key=lambda i: (-int(counts[i]), int(i)))[0]
    return graph.node_names[int(best)]
