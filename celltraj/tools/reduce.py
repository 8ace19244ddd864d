"""Non-linear embeddings computed from the PCA space."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import anndata as ad
import numpy as np
import scanpy as sc

from celltraj.core.dataset import Dataset, canonical_method, obsm_key
from celltraj.errors import ParameterError


def _logger() -> logging.Logger:
    return logging.getLogger("celltraj.reduce")


@runtime_checkable
class Embedder(Protocol):
    """Maps a cells x PCs matrix to a low-dimensional embedding."""

    name: str

    def embed(self, pca: np.ndarray, *, n_components: int, seed: int) -> np.ndarray:
        ...


def _pca_adata(pca: np.ndarray) -> ad.AnnData:
    work = ad.AnnData(X=np.zeros((pca.shape[0], 1), dtype=float))
    work.obsm["X_pca"] = np.asarray(pca, dtype=float)
    return work


@dataclass(frozen=True)
class UMAPEmbedder:
    n_neighbors: int = 15
    min_dist: float = 0.1
    metric: str = "cosine"
    name: str = "UMAP"

    def embed(self, pca: np.ndarray, *, n_components: int, seed: int) -> np.ndarray:
        work = _pca_adata(pca)
        k = max(2, min(int(self.n_neighbors), work.n_obs - 1))
        sc.pp.neighbors(
            work,
            n_neighbors=k,
            use_rep="X_pca",
            metric=self.metric,
            random_state=int(seed),
        )
        sc.tl.umap(
            work,
            n_components=int(n_components),
            min_dist=float(self.min_dist),
            random_state=int(seed),
        )
        return np.asarray(work.obsm["X_umap"], dtype=float)


@dataclass(frozen=True)
class TSNEEmbedder:
    perplexity: float = 30.0
    name: str = "tSNE"

    def embed(self, pca: np.ndarray, *, n_components: int, seed: int) -> np.ndarray:
        if int(n_components) != 2:
            raise ParameterError("n_components", n_components, "t-SNE embeddings are 2D.")
        work = _pca_adata(pca)
        perplexity = min(float(self.perplexity), max(1.0, (work.n_obs - 1) / 3.0))
        sc.tl.tsne(
            work,
            use_rep="X_pca",
            perplexity=perplexity,
            random_state=int(seed),
        )
        return np.asarray(work.obsm["X_tsne"], dtype=float)


DEFAULT_EMBEDDERS = {"UMAP": UMAPEmbedder, "tSNE": TSNEEmbedder}


def reduce_dimension(
    ds: Dataset,
    method: str = "UMAP",
    *,
    n_components: int = 2,
    seed: int = 0,
    embedder: Embedder | None = None,
    **params,
) -> Dataset:
    """Embed cells non-linearly from their principal components.

    The result is stored under the method's own key, so UMAP and t-SNE
    embeddings coexist. `params` are forwarded to the built-in embedder
    (e.g. `n_neighbors`, `min_dist`, `perplexity`); pass `embedder` to
    substitute another implementation for the same method name.
    """
    name = canonical_method(method)
    if name not in DEFAULT_EMBEDDERS:
        raise ParameterError("method", method, f"expected one of {sorted(DEFAULT_EMBEDDERS)}.")
    if isinstance(n_components, bool) or int(n_components) < 1:
        raise ParameterError("n_components", n_components, "must be a positive integer.")
    pca = ds.pca(stage="reduce_dimension")

    if embedder is None:
        try:
            embedder = DEFAULT_EMBEDDERS[name](**params)
        except TypeError as exc:
            raise ParameterError("params", sorted(params), str(exc)) from exc
    elif params:
        raise ParameterError("params", sorted(params), "cannot be combined with a custom embedder.")

    coords = np.asarray(embedder.embed(pca, n_components=int(n_components), seed=int(seed)), dtype=float)
    if coords.shape != (ds.n_cells, int(n_components)):
        raise ValueError(
            f"{name} embedder returned shape {coords.shape}, expected ({ds.n_cells}, {int(n_components)})."
        )
    ds.adata.obsm[obsm_key(name)] = coords
    ds.adata.uns[f"{name.lower()}_params"] = {"n_components": int(n_components), "seed": int(seed)}
    ds.check_shape()
    _logger().info("%s embedding computed: %d cells x %d dims", name, ds.n_cells, int(n_components))
    return ds
