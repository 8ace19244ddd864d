from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pytest

from celltraj.errors import ParameterError, PrecursorMissingError
from celltraj.tools import Embedder, preprocess, reduce_dimension


@dataclass(frozen=True)
class _FirstPCs:
    name: str = "UMAP"

    def embed(self, pca: np.ndarray, *, n_components: int, seed: int) -> np.ndarray:
        return pca[:, :n_components]


def test_reduce_before_preprocess_raises(small_dataset):
    with pytest.raises(PrecursorMissingError, match="reduce_dimension"):
        reduce_dimension(small_dataset, "UMAP")


def test_custom_embedder_result_is_stored(small_dataset):
    ds = preprocess(small_dataset, 5)
    embedder = _FirstPCs()
    assert isinstance(embedder, Embedder)
    ds = reduce_dimension(ds, "umap", embedder=embedder)
    np.testing.assert_allclose(ds.reduced_dims("UMAP"), ds.pca()[:, :2])


def test_umap_and_tsne_coexist(small_dataset):
    ds = preprocess(small_dataset, 5)
    ds = reduce_dimension(ds, "UMAP", seed=1, n_neighbors=10)
    ds = reduce_dimension(ds, "tSNE", seed=1)
    umap = ds.reduced_dims("UMAP")
    tsne = ds.reduced_dims("tSNE")
    assert umap.shape == (30, 2)
    assert tsne.shape == (30, 2)
    assert np.isfinite(umap).all()
    assert np.isfinite(tsne).all()
    assert ds.n_cells == 30


def test_unknown_embedder_params_rejected(small_dataset):
    ds = preprocess(small_dataset, 5)
    with pytest.raises(ParameterError, match="params"):
        reduce_dimension(ds, "UMAP", not_a_umap_param=3)


def test_pca_is_not_a_reduce_method(small_dataset):
    ds = preprocess(small_dataset, 5)
    with pytest.raises(ParameterError, match="method"):
        reduce_dimension(ds, "PCA")


def test_tsne_is_two_dimensional(small_dataset):
    ds = preprocess(small_dataset, 5)
    with pytest.raises(ParameterError, match="n_components"):
        reduce_dimension(ds, "tSNE", n_components=3)
