"""Core containers subpackage."""

from celltraj.core.dataset import (
    GENE_SHORT_NAME,
    NORMALIZED_LAYER,
    Dataset,
    canonical_method,
    new_dataset,
    obs_key,
    obsm_key,
)
from celltraj.core.graph import PrincipalGraph

__all__ = [
    "Dataset",
    "PrincipalGraph",
    "new_dataset",
    "canonical_method",
    "obs_key",
    "obsm_key",
    "GENE_SHORT_NAME",
    "NORMALIZED_LAYER",
]
