"""Normalization and PCA."""

from __future__ import annotations

import logging

import anndata as ad
import numpy as np
import pandas as pd
import scanpy as sc

from celltraj.core.dataset import NORMALIZED_LAYER, Dataset
from celltraj.errors import ParameterError

NORM_METHODS = ("log", "size_only")


def _logger() -> logging.Logger:
    return logging.getLogger("celltraj.preprocess")


def _working_copy(ds: Dataset) -> ad.AnnData:
    return ad.AnnData(
        X=ds.adata.X.copy(),
        obs=pd.DataFrame(index=ds.cell_ids.copy()),
        var=pd.DataFrame(index=ds.gene_ids.copy()),
    )


def preprocess(
    ds: Dataset,
    num_dim: int = 50,
    *,
    norm_method: str = "log",
    target_sum: float | None = None,
    scale: bool = True,
    seed: int = 0,
) -> Dataset:
    """Normalize counts and compute `num_dim` principal components.

    Library-size scaling is followed by `log1p` unless `norm_method` is
    `"size_only"`. The normalized matrix is kept in a layer; the raw counts in
    `adata.X` are left untouched. Components are stored in canonical rank
    order, so `variance_explained()` is non-increasing.
    """
    if isinstance(num_dim, bool) or not isinstance(num_dim, (int, np.integer)) or int(num_dim) <= 0:
        raise ParameterError("num_dim", num_dim, "must be a positive integer.")
    max_dim = min(ds.n_cells, ds.n_genes) - 1
    if int(num_dim) > max_dim:
        raise ParameterError(
            "num_dim", num_dim, f"must be below min(n_cells, n_genes) = {max_dim + 1}."
        )
    if norm_method not in NORM_METHODS:
        raise ParameterError("norm_method", norm_method, f"expected one of {list(NORM_METHODS)}.")
    if target_sum is not None and float(target_sum) <= 0:
        raise ParameterError("target_sum", target_sum, "must be positive.")

    work = _working_copy(ds)
    sc.pp.normalize_total(work, target_sum=target_sum)
    if norm_method == "log":
        sc.pp.log1p(work)
    ds.adata.layers[NORMALIZED_LAYER] = work.X.copy()
    ds.adata.uns["normalization"] = {
        "norm_method": norm_method,
        "target_sum": float("nan") if target_sum is None else float(target_sum),
    }

    if scale:
        sc.pp.scale(work, zero_center=True, max_value=10.0)
    sc.pp.pca(work, n_comps=int(num_dim), svd_solver="arpack", random_state=int(seed))

    ratio = np.asarray(work.uns["pca"]["variance_ratio"], dtype=float)
    variance = np.asarray(work.uns["pca"]["variance"], dtype=float)
    order = np.argsort(-ratio, kind="mergesort")
    ds.adata.obsm["X_pca"] = np.asarray(work.obsm["X_pca"], dtype=float)[:, order]
    ds.adata.varm["PCs"] = np.asarray(work.varm["PCs"], dtype=float)[:, order]
    ds.adata.uns["pca"] = {
        "variance_ratio": np.clip(ratio[order], 0.0, None),
        "variance": variance[order],
        "params": {"num_dim": int(num_dim), "scale": bool(scale), "seed": int(seed)},
    }
    ds.check_shape()
    _logger().info(
        "PCA: %d components, %.1f%% variance explained",
        int(num_dim),
        100.0 * float(np.sum(ratio)),
    )
    return ds
