"""Statistical utilities for celltraj."""

from celltraj.stats.moran import (
    MoranMoments,
    moran_moments,
    moran_pvalues,
    morans_i_block,
    row_standardize,
)
from celltraj.stats.scoring import (
    bh_fdr,
    binomial_edge_pvalues,
    rank_sum_test,
    specificity,
)

__all__ = [
    "MoranMoments",
    "moran_moments",
    "moran_pvalues",
    "morans_i_block",
    "row_standardize",
    "bh_fdr",
    "binomial_edge_pvalues",
    "rank_sum_test",
    "specificity",
]
