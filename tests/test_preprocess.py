from __future__ import annotations

import numpy as np
import pytest

from celltraj.errors import ParameterError
from celltraj.tools import preprocess


def test_variance_ratio_is_ranked_and_bounded(small_dataset):
    ds = preprocess(small_dataset, 8)
    ratio = ds.variance_explained()
    assert ratio.shape == (8,)
    assert np.all(ratio >= 0.0)
    assert np.all(np.diff(ratio) <= 1e-12)
    assert float(np.sum(ratio)) <= 1.0 + 1e-9
    assert ds.pca().shape == (30, 8)


def test_preprocess_keeps_counts_and_adds_normalized_layer(small_inputs, small_dataset):
    counts, _, _ = small_inputs
    ds = preprocess(small_dataset, 5)
    np.testing.assert_allclose(ds.expression.toarray(), counts.to_numpy())
    assert ds.has_normalized()
    assert ds.normalized().shape == (30, 40)
    assert ds.adata.uns["normalization"]["norm_method"] == "log"


def test_size_only_normalization_skips_log(small_dataset):
    ds = preprocess(small_dataset, 5, norm_method="size_only", target_sum=100.0)
    norm = ds.normalized()
    dense = norm.toarray() if hasattr(norm, "toarray") else np.asarray(norm)
    np.testing.assert_allclose(dense.sum(axis=1), 100.0, rtol=1e-5)


def test_preprocess_is_reproducible(small_inputs):
    from celltraj.core.dataset import new_dataset

    counts, cells, genes = small_inputs
    a = preprocess(new_dataset(counts, cells, genes), 5, seed=4).pca()
    b = preprocess(new_dataset(counts, cells, genes), 5, seed=4).pca()
    np.testing.assert_allclose(a, b)


@pytest.mark.parametrize("num_dim", [0, -3, 2.5, True, 30])
def test_invalid_num_dim_rejected(small_dataset, num_dim):
    with pytest.raises(ParameterError, match="num_dim"):
        preprocess(small_dataset, num_dim)


def test_unknown_norm_method_rejected(small_dataset):
    with pytest.raises(ParameterError, match="norm_method"):
        preprocess(small_dataset, 5, norm_method="quantile")
