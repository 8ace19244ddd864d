"""Gene modules: community detection over genes, and per-group module expression."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

import anndata as ad
import numpy as np
import pandas as pd
import scanpy as sc
import scipy.sparse as sp
from scipy.sparse.csgraph import connected_components

from celltraj.core.dataset import GENE_SHORT_NAME, Dataset, canonical_method
from celltraj.errors import ParameterError
from celltraj.tools.cluster import relabel_by_size

DEFAULT_MODULE_RESOLUTIONS = (1e-2,)


def _logger() -> logging.Logger:
    return logging.getLogger("celltraj.modules")


def modularity(adjacency: sp.spmatrix, labels: np.ndarray) -> float:
    """Newman modularity of a labelling on a weighted undirected graph."""
    adj = sp.csr_matrix(adjacency, dtype=float)
    adj = (adj + adj.T) * 0.5
    two_m = float(adj.sum())
    if two_m <= 0.0:
        return 0.0
    codes, uniq = pd.factorize(np.asarray(labels).astype(str))
    member = sp.csr_matrix(
        (np.ones(codes.size), (np.arange(codes.size), codes)),
        shape=(codes.size, uniq.size),
    )
    within = np.asarray((member.T @ adj @ member).diagonal()).ravel()
    degree = np.asarray(member.T @ np.asarray(adj.sum(axis=1)).ravel()).ravel()
    return float(np.sum(within / two_m - (degree / two_m) ** 2))


def _as_resolutions(resolution: float | Sequence[float]) -> list[float]:
    values = [resolution] if np.isscalar(resolution) else list(resolution)
    if not values:
        raise ParameterError("resolution", resolution, "provide at least one value.")
    out = []
    for v in values:
        if isinstance(v, bool) or not np.isfinite(float(v)) or float(v) <= 0.0:
            raise ParameterError("resolution", v, "must be a positive number.")
        out.append(float(v))
    return out


def _gene_profiles(ds: Dataset, gene_idx: np.ndarray) -> np.ndarray:
    expr = ds.normalized(stage="find_gene_modules")[:, gene_idx]
    dense = expr.toarray() if sp.issparse(expr) else np.asarray(expr)
    prof = np.asarray(dense, dtype=float).T
    center = prof - prof.mean(axis=1, keepdims=True)
    sd = prof.std(axis=1, ddof=1, keepdims=True) if prof.shape[1] > 1 else np.ones((prof.shape[0], 1))
    sd = np.where(sd > 0.0, sd, 1.0)
    return center / sd


def find_gene_modules(
    ds: Dataset,
    genes: Iterable[str],
    *,
    resolution: float | Sequence[float] = DEFAULT_MODULE_RESOLUTIONS,
    k: int = 20,
    num_dim: int = 10,
    seed: int = 0,
) -> pd.DataFrame:
    """Group genes with co-varying expression into modules.

    Gene profiles across cells are z-scored, reduced with PCA and linked in a
    kNN graph; Leiden runs at every candidate resolution and the labelling
    with the highest modularity is kept.
    """
    wanted = list(dict.fromkeys(str(g) for g in genes))
    missing = [g for g in wanted if g not in ds.gene_ids]
    if missing:
        raise KeyError(f"Genes not found in dataset: {', '.join(missing[:5])}")
    if len(wanted) < 3:
        raise ParameterError("genes", len(wanted), "module detection needs at least three genes.")
    resolutions = _as_resolutions(resolution)
    if isinstance(k, bool) or int(k) < 1:
        raise ParameterError("k", k, "must be a positive integer.")
    if isinstance(num_dim, bool) or int(num_dim) < 1:
        raise ParameterError("num_dim", num_dim, "must be a positive integer.")

    gene_idx = ds.gene_ids.get_indexer(wanted)
    profiles = _gene_profiles(ds, gene_idx)
    work = ad.AnnData(X=profiles, obs=pd.DataFrame(index=pd.Index(wanted)))
    n_comps = max(1, min(int(num_dim), work.n_obs - 1, work.n_vars - 1))
    sc.pp.pca(work, n_comps=n_comps, svd_solver="arpack", random_state=int(seed))
    n_neighbors = max(2, min(int(k) + 1, work.n_obs - 1))
    sc.pp.neighbors(work, n_neighbors=n_neighbors, use_rep="X_pca", random_state=int(seed))
    conn = work.obsp["connectivities"]

    best_labels = None
    best_res = resolutions[0]
    best_q = -np.inf
    for i, res in enumerate(resolutions):
        key = f"leiden_{i}"
        sc.tl.leiden(
            work,
            resolution=res,
            random_state=int(seed),
            key_added=key,
            flavor="igraph",
            n_iterations=2,
            directed=False,
        )
        labels = work.obs[key].astype(str).to_numpy()
        q = modularity(conn, labels)
        _logger().debug("Module resolution %g: modularity %.4f", res, q)
        if q > best_q:
            best_q, best_res, best_labels = q, res, labels

    _, comp = connected_components(conn, directed=False)
    out = pd.DataFrame(
        {
            "gene_id": wanted,
            "gene_short_name": ds.adata.var[GENE_SHORT_NAME].astype(str).to_numpy()[gene_idx],
            "module": relabel_by_size(best_labels).astype(int),
            "supermodule": relabel_by_size(comp.astype(str)).astype(int),
            "resolution": best_res,
        }
    )
    _logger().info(
        "Gene modules: %d genes in %d modules (resolution=%g, modularity=%.3f)",
        len(out),
        int(out["module"].nunique()),
        best_res,
        best_q,
    )
    return out


def aggregate_gene_expression(
    ds: Dataset,
    gene_modules: pd.DataFrame,
    cell_group: str | pd.Series | None = None,
    *,
    reduction_method: str = "UMAP",
    scale_agg_values: bool = True,
    max_agg_value: float = 3.0,
    min_agg_value: float = -3.0,
) -> pd.DataFrame:
    """Mean module expression per cell group (modules x groups).

    Each cell's module score is the mean normalized expression of the
    module's genes; group values are the mean over the group's cells. With
    `scale_agg_values`, each module row is z-scored and clipped.
    """
    for col in ("gene_id", "module"):
        if col not in gene_modules.columns:
            raise KeyError(f"gene_modules is missing column '{col}'.")
    if float(min_agg_value) > float(max_agg_value):
        raise ParameterError("min_agg_value", min_agg_value, "must not exceed max_agg_value.")

    if cell_group is None:
        groups = pd.Series("all", index=ds.cell_ids)
    elif isinstance(cell_group, str):
        groups = ds.cell_groups(cell_group, method=canonical_method(reduction_method), stage="aggregate_gene_expression")
    else:
        groups = pd.Series(cell_group).astype(str).reindex(ds.cell_ids)
        if groups.isna().any():
            raise KeyError("cell_group does not cover every cell in the dataset.")

    norm = sp.csc_matrix(ds.normalized(stage="aggregate_gene_expression"), dtype=float)
    modules = sorted(pd.unique(gene_modules["module"]))
    scores = np.zeros((ds.n_cells, len(modules)), dtype=float)
    for j, module in enumerate(modules):
        module_genes = gene_modules.loc[gene_modules["module"] == module, "gene_id"].astype(str)
        idx = ds.gene_ids.get_indexer(module_genes)
        if np.any(idx < 0):
            raise KeyError(f"Module {module} lists genes not in the dataset.")
        scores[:, j] = np.asarray(norm[:, idx].mean(axis=1)).ravel()

    per_cell = pd.DataFrame(scores, index=ds.cell_ids, columns=modules)
    agg = per_cell.groupby(groups.to_numpy(), sort=True).mean().T
    agg.index.name = "module"
    agg.columns.name = "cell_group"
    if scale_agg_values:
        vals = agg.to_numpy(dtype=float)
        mu = vals.mean(axis=1, keepdims=True)
        sd = vals.std(axis=1, ddof=1, keepdims=True) if vals.shape[1] > 1 else np.zeros_like(mu)
        scaled = np.where(sd > 0.0, (vals - mu) / np.where(sd > 0.0, sd, 1.0), 0.0)
        agg = pd.DataFrame(
            np.clip(scaled, float(min_agg_value), float(max_agg_value)),
            index=agg.index,
            columns=agg.columns,
        )
    return agg
