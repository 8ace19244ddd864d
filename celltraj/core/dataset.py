"""Dataset container: expression matrix plus aligned cell and gene metadata."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import anndata as ad
import numpy as np
import pandas as pd
import scipy.sparse as sp

from celltraj.core.graph import PrincipalGraph
from celltraj.errors import AlignmentError, ParameterError, PrecursorMissingError

GENE_SHORT_NAME = "gene_short_name"
NORMALIZED_LAYER = "normalized"

_METHOD_ALIASES = {
    "umap": "UMAP",
    "tsne": "tSNE",
    "t-sne": "tSNE",
    "pca": "PCA",
}


def _logger() -> logging.Logger:
    return logging.getLogger("celltraj.dataset")


def canonical_method(method: str) -> str:
    """Map a reduction-method name onto its canonical spelling."""
    key = str(method).strip().lower()
    if key not in _METHOD_ALIASES:
        raise ParameterError(
            "reduction_method", method, f"expected one of {sorted(set(_METHOD_ALIASES.values()))}."
        )
    return _METHOD_ALIASES[key]


def nonlinear_method(method: str) -> str:
    """Canonical name of a non-linear embedding; PCA is rejected."""
    name = canonical_method(method)
    if name == "PCA":
        raise ParameterError("reduction_method", method, "expected a non-linear embedding (UMAP or tSNE).")
    return name


def obsm_key(method: str) -> str:
    return f"X_{canonical_method(method).lower()}"


def obs_key(kind: str, method: str) -> str:
    return f"{kind}_{canonical_method(method).lower()}"


def _as_index(values: Sequence[Any], axis: str) -> pd.Index:
    idx = pd.Index([str(v) for v in values])
    if idx.has_duplicates:
        dup = idx[idx.duplicated()].unique()[:5]
        raise AlignmentError(f"Duplicate {axis} identifiers: {', '.join(dup)}.")
    return idx


def _check_axis(axis: str, expected: pd.Index, metadata_index: pd.Index) -> None:
    meta = pd.Index([str(v) for v in metadata_index])
    if len(meta) != len(expected):
        raise AlignmentError(
            f"{axis} metadata has {len(meta)} rows but the expression matrix has "
            f"{len(expected)} {axis} identifiers."
        )
    mismatch = np.flatnonzero(meta.to_numpy() != expected.to_numpy())
    if mismatch.size:
        pos = int(mismatch[0])
        raise AlignmentError(
            f"{axis} metadata identifiers do not match the expression matrix "
            f"({mismatch.size} positions differ; first at position {pos}: "
            f"metadata '{meta[pos]}' vs matrix '{expected[pos]}')."
        )


def _to_csr(values: Any) -> sp.csr_matrix:
    if sp.issparse(values):
        mat = sp.csr_matrix(values, dtype=float)
    else:
        arr = np.asarray(values, dtype=float)
        if arr.ndim != 2:
            raise AlignmentError(f"Expression matrix must be 2D, got shape {arr.shape}.")
        mat = sp.csr_matrix(arr)
    if not np.isfinite(mat.data).all():
        raise ParameterError("expression", "non-finite values", "expression values must be finite.")
    return mat


@dataclass
class Dataset:
    """Mutable analysis state threaded through every pipeline stage.

    Stages only ever add derived fields; the stored counts and the metadata
    rows supplied at construction are never rewritten.
    """

    adata: ad.AnnData
    graphs: dict[str, PrincipalGraph] = field(default_factory=dict)

    @property
    def n_cells(self) -> int:
        return int(self.adata.n_obs)

    @property
    def n_genes(self) -> int:
        return int(self.adata.n_vars)

    @property
    def cell_ids(self) -> pd.Index:
        return self.adata.obs_names

    @property
    def gene_ids(self) -> pd.Index:
        return self.adata.var_names

    @property
    def expression(self) -> sp.csr_matrix:
        """Raw counts, genes x cells."""
        return sp.csr_matrix(self.adata.X.T)

    @property
    def cell_metadata(self) -> pd.DataFrame:
        return self.adata.obs

    @property
    def gene_metadata(self) -> pd.DataFrame:
        return self.adata.var

    @property
    def gene_short_names(self) -> pd.Series:
        return self.adata.var[GENE_SHORT_NAME].astype(str)

    def check_shape(self) -> None:
        n_genes, n_cells = self.adata.X.shape[1], self.adata.X.shape[0]
        if len(self.adata.obs) != n_cells or len(self.adata.var) != n_genes:
            raise AlignmentError(
                f"Metadata no longer matches the expression matrix: {len(self.adata.obs)} cell "
                f"rows vs {n_cells} columns, {len(self.adata.var)} gene rows vs {n_genes} rows."
            )

    def has_normalized(self) -> bool:
        return NORMALIZED_LAYER in self.adata.layers

    def normalized(self, stage: str = "this stage"):
        """Normalized expression (log1p unless `norm_method="size_only"`), cells x genes."""
        if not self.has_normalized():
            raise PrecursorMissingError(stage, "normalized expression", "Run preprocess() first.")
        return self.adata.layers[NORMALIZED_LAYER]

    def has_pca(self) -> bool:
        return "X_pca" in self.adata.obsm

    def pca(self, stage: str = "this stage") -> np.ndarray:
        if not self.has_pca():
            raise PrecursorMissingError(stage, "the PCA embedding", "Run preprocess() first.")
        return np.asarray(self.adata.obsm["X_pca"], dtype=float)

    def variance_explained(self) -> np.ndarray:
        if not self.has_pca():
            raise PrecursorMissingError("variance_explained", "the PCA embedding", "Run preprocess() first.")
        return np.asarray(self.adata.uns["pca"]["variance_ratio"], dtype=float)

    def has_reduced_dims(self, method: str) -> bool:
        return obsm_key(method) in self.adata.obsm

    def reduced_dims(self, method: str, stage: str = "this stage") -> np.ndarray:
        key = obsm_key(method)
        if key not in self.adata.obsm:
            raise PrecursorMissingError(
                stage,
                f"the {canonical_method(method)} embedding",
                "Run reduce_dimension() first.",
            )
        return np.asarray(self.adata.obsm[key], dtype=float)

    def set_reduced_dims(self, method: str, coords: Any) -> None:
        """Store an externally computed embedding for `method`."""
        arr = np.asarray(coords, dtype=float)
        if arr.ndim != 2 or arr.shape[0] != self.n_cells or arr.shape[1] < 1:
            raise ParameterError(
                "coords", arr.shape, f"expected shape ({self.n_cells}, n_components)."
            )
        if not np.isfinite(arr).all():
            raise ParameterError("coords", "non-finite values", "embedding must be finite.")
        self.adata.obsm[obsm_key(method)] = arr

    def has_clusters(self, method: str) -> bool:
        return obs_key("cluster", method) in self.adata.obs.columns

    def clusters(self, method: str, stage: str = "this stage") -> pd.Series:
        key = obs_key("cluster", method)
        if key not in self.adata.obs.columns:
            raise PrecursorMissingError(stage, f"{canonical_method(method)} clusters", "Run cluster_cells() first.")
        return self.adata.obs[key]

    def partitions(self, method: str, stage: str = "this stage") -> pd.Series:
        key = obs_key("partition", method)
        if key not in self.adata.obs.columns:
            raise PrecursorMissingError(stage, f"{canonical_method(method)} partitions", "Run cluster_cells() first.")
        return self.adata.obs[key]

    def has_principal_graph(self, method: str) -> bool:
        return canonical_method(method) in self.graphs

    def principal_graph(self, method: str, stage: str = "this stage") -> PrincipalGraph:
        name = canonical_method(method)
        if name not in self.graphs:
            raise PrecursorMissingError(stage, f"a {name} principal graph", "Run learn_graph() first.")
        return self.graphs[name]

    def has_pseudotime(self, method: str) -> bool:
        return obs_key("pseudotime", method) in self.adata.obs.columns

    def pseudotime(self, method: str = "UMAP", stage: str = "this stage") -> pd.Series:
        key = obs_key("pseudotime", method)
        if key not in self.adata.obs.columns:
            raise PrecursorMissingError(stage, f"{canonical_method(method)} pseudotime", "Run order_cells() first.")
        return self.adata.obs[key]

    def cell_groups(self, group_by: str, method: str = "UMAP", stage: str = "this stage") -> pd.Series:
        """Resolve a cell metadata column, `cluster` or `partition` to labels.

        A metadata column named `cluster` or `partition` takes precedence over
        the computed labels, which live under `cluster_<method>` and
        `partition_<method>`.
        """
        key = str(group_by)
        if key in self.adata.obs.columns:
            return self.adata.obs[key].astype(str)
        if key == "cluster":
            return self.clusters(method, stage).astype(str)
        if key == "partition":
            return self.partitions(method, stage).astype(str)
        raise KeyError(f"adata.obs['{key}'] not found.")


def new_dataset(
    expression: Any,
    cell_metadata: pd.DataFrame,
    gene_metadata: pd.DataFrame,
    *,
    gene_ids: Sequence[Any] | None = None,
    cell_ids: Sequence[Any] | None = None,
) -> Dataset:
    """Validate and assemble a genes x cells matrix with its metadata.

    When `expression` is a DataFrame its index and columns are the gene and
    cell identifiers. Arrays and sparse matrices take identifiers from
    `gene_ids`/`cell_ids`, falling back to the metadata indices. Any
    mismatch in content or order raises `AlignmentError`.
    """
    if not isinstance(cell_metadata, pd.DataFrame) or not isinstance(gene_metadata, pd.DataFrame):
        raise TypeError("cell_metadata and gene_metadata must be pandas DataFrames.")

    if isinstance(expression, pd.DataFrame):
        matrix_genes = _as_index(expression.index, "gene")
        matrix_cells = _as_index(expression.columns, "cell")
        for given, found, axis in ((gene_ids, matrix_genes, "gene"), (cell_ids, matrix_cells, "cell")):
            if given is not None:
                _check_axis(axis, found, pd.Index(given))
        values = expression.to_numpy(dtype=float)
    else:
        matrix_genes = _as_index(gene_metadata.index if gene_ids is None else gene_ids, "gene")
        matrix_cells = _as_index(cell_metadata.index if cell_ids is None else cell_ids, "cell")
        values = expression

    counts = _to_csr(values)
    if counts.shape != (len(matrix_genes), len(matrix_cells)):
        raise AlignmentError(
            f"Expression matrix shape {counts.shape} does not match "
            f"{len(matrix_genes)} gene and {len(matrix_cells)} cell identifiers."
        )

    _check_axis("cell", matrix_cells, cell_metadata.index)
    _check_axis("gene", matrix_genes, gene_metadata.index)

    obs = cell_metadata.copy()
    obs.index = matrix_cells
    var = gene_metadata.copy()
    var.index = matrix_genes
    if GENE_SHORT_NAME not in var.columns:
        _logger().warning(
            "gene_metadata has no '%s' column; using gene identifiers instead.",
            GENE_SHORT_NAME,
        )
        var[GENE_SHORT_NAME] = matrix_genes.to_numpy()

    adata = ad.AnnData(X=counts.T.tocsr(), obs=obs, var=var)
    ds = Dataset(adata=adata)
    ds.check_shape()
    _logger().info("Dataset created: %d cells x %d genes", ds.n_cells, ds.n_genes)
    return ds
