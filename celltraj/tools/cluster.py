"""Leiden clustering and partitioning of cells on an embedding."""

from __future__ import annotations

import logging

import anndata as ad
import numpy as np
import pandas as pd
import scanpy as sc
import scipy.sparse as sp
from scipy.sparse.csgraph import connected_components

from celltraj.core.dataset import Dataset, nonlinear_method, obs_key
from celltraj.errors import ParameterError
from celltraj.stats.scoring import bh_fdr, binomial_edge_pvalues

DEFAULT_RESOLUTION = 1.0


def _logger() -> logging.Logger:
    return logging.getLogger("celltraj.cluster")


def relabel_by_size(labels: np.ndarray) -> np.ndarray:
    """Rename labels to "1".."n" by decreasing group size (ties by old label)."""
    lab = np.asarray(labels).astype(str)
    counts = pd.Series(lab).value_counts()
    ordered = sorted(counts.index, key=lambda x: (-int(counts[x]), x))
    mapping = {old: str(i + 1) for i, old in enumerate(ordered)}
    return np.array([mapping[x] for x in lab], dtype=object)


def _categorical(labels: np.ndarray) -> pd.Categorical:
    cats = sorted(pd.unique(labels), key=int)
    return pd.Categorical(labels, categories=cats)


def cluster_adjacency_pvalues(conn: sp.spmatrix, labels: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Cluster x cluster kNN edge counts and enrichment p-values.

    Each pair's edge share is tested against the share expected from the two
    clusters' total degrees (one-sided binomial, upper tail).
    """
    codes, uniq = pd.factorize(np.asarray(labels).astype(str), sort=False)
    n_cells = codes.size
    n_groups = int(uniq.size)
    member = sp.csr_matrix(
        (np.ones(n_cells, dtype=float), (np.arange(n_cells), codes)),
        shape=(n_cells, n_groups),
    )
    adj = sp.csr_matrix(conn, dtype=float)
    adj.data = np.ones_like(adj.data)
    adj = adj.maximum(adj.T)
    links = np.asarray((member.T @ adj @ member).todense(), dtype=float)
    total = float(links.sum())
    if total <= 0.0:
        return links, np.ones_like(links)
    share = links.sum(axis=1) / total
    theta = np.outer(share, share)
    pvals = binomial_edge_pvalues(links, total, theta)
    return links, pvals


def compute_partitions(conn: sp.spmatrix, clusters: np.ndarray, qval: float) -> np.ndarray:
    """Group clusters into partitions joined by significantly enriched kNN links."""
    lab = np.asarray(clusters).astype(str)
    uniq = pd.unique(lab)
    if uniq.size <= 1:
        return np.full(lab.size, "1", dtype=object)
    _, pvals = cluster_adjacency_pvalues(conn, lab)
    iu = np.triu_indices(uniq.size, k=1)
    q = bh_fdr(pvals[iu])
    keep = q < float(qval)
    sig = sp.coo_matrix(
        (np.ones(int(keep.sum())), (iu[0][keep], iu[1][keep])),
        shape=(uniq.size, uniq.size),
    )
    _, comp = connected_components(sig, directed=False)
    cluster_to_part = {str(c): str(p) for c, p in zip(uniq, comp)}
    parts = np.array([cluster_to_part[x] for x in lab], dtype=object)
    return relabel_by_size(parts)


def cluster_cells(
    ds: Dataset,
    reduction_method: str = "UMAP",
    *,
    resolution: float | None = None,
    k: int = 20,
    partition_qval: float = 0.05,
    seed: int = 0,
) -> Dataset:
    """Assign Leiden clusters and coarser partitions to every cell.

    A kNN graph is built on the chosen embedding; smaller `resolution`
    yields fewer, larger clusters. Results are reproducible for a fixed
    `seed`.

    The default `resolution=1.0` splits each UMAP island into many small
    clusters; a few well-separated populations of a few hundred cells each
    need a fine value such as `1e-3` to come out one cluster per population.
    """
    name = nonlinear_method(reduction_method)
    coords = ds.reduced_dims(name, stage="cluster_cells")
    res = DEFAULT_RESOLUTION if resolution is None else resolution
    if isinstance(res, bool) or not np.isfinite(float(res)) or float(res) <= 0.0:
        raise ParameterError("resolution", resolution, "must be a positive number.")
    if isinstance(k, bool) or int(k) < 1:
        raise ParameterError("k", k, "must be a positive integer.")
    if not 0.0 < float(partition_qval) <= 1.0:
        raise ParameterError("partition_qval", partition_qval, "must be in (0, 1].")
    if ds.n_cells < 3:
        raise ParameterError("n_cells", ds.n_cells, "clustering needs at least three cells.")

    work = ad.AnnData(X=np.zeros((ds.n_cells, 1), dtype=float))
    work.obsm["X_rep"] = coords
    n_neighbors = max(2, min(int(k) + 1, ds.n_cells - 1))
    sc.pp.neighbors(work, n_neighbors=n_neighbors, use_rep="X_rep", random_state=int(seed))
    sc.tl.leiden(
        work,
        resolution=float(res),
        random_state=int(seed),
        key_added="leiden",
        flavor="igraph",
        n_iterations=2,
        directed=False,
    )
    clusters = relabel_by_size(work.obs["leiden"].to_numpy())
    partitions = compute_partitions(work.obsp["connectivities"], clusters, float(partition_qval))

    ds.adata.obs[obs_key("cluster", name)] = _categorical(clusters)
    ds.adata.obs[obs_key("partition", name)] = _categorical(partitions)
    ds.adata.obsp[f"{name.lower()}_connectivities"] = work.obsp["connectivities"]
    ds.adata.uns[f"cluster_{name.lower()}_params"] = {
        "resolution": float(res),
        "k": int(k),
        "partition_qval": float(partition_qval),
        "seed": int(seed),
    }
    ds.check_shape()
    _logger().info(
        "%s clustering: %d clusters in %d partitions (resolution=%g)",
        name,
        int(pd.unique(clusters).size),
        int(pd.unique(partitions).size),
        float(res),
    )
    return ds
