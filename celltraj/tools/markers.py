"""Marker genes per cell group, plus the reporting helpers used on their output."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
import scipy.sparse as sp

from celltraj.core.dataset import GENE_SHORT_NAME, Dataset, canonical_method
from celltraj.errors import ParameterError
from celltraj.parallel import parallel_map
from celltraj.seeding import rng_from_seed, stable_seed
from celltraj.stats.scoring import bh_fdr, rank_sum_test, specificity

MARKER_COLUMNS = [
    "gene_id",
    "gene_short_name",
    "cell_group",
    "marker_score",
    "mean_expression",
    "fraction_expressing",
    "specificity",
]
TEST_COLUMNS = ["auroc", "marker_test_p_value", "marker_test_q_value"]


def _logger() -> logging.Logger:
    return logging.getLogger("celltraj.markers")


@dataclass(frozen=True)
class _GroupTask:
    group: str
    gene_idx: np.ndarray
    in_cells: np.ndarray
    out_cells: np.ndarray
    seed: int


def _group_stats(
    values: sp.csr_matrix,
    detected: sp.csr_matrix,
    codes: np.ndarray,
    n_groups: int,
) -> tuple[np.ndarray, np.ndarray]:
    n_cells = codes.size
    member = sp.csr_matrix(
        (np.ones(n_cells, dtype=float), (codes, np.arange(n_cells))),
        shape=(n_groups, n_cells),
    )
    sizes = np.asarray(member.sum(axis=1)).ravel()
    sums = np.asarray((member @ values).todense(), dtype=float)
    hits = np.asarray((member @ detected).todense(), dtype=float)
    means = sums / sizes[:, None]
    frac = hits / sizes[:, None]
    return means.T, frac.T


def _test_group(task: _GroupTask, log_expr: sp.csc_matrix, reference_cells: int) -> list[tuple[float, float]]:
    rng = rng_from_seed(task.seed)
    in_cells = task.in_cells
    if in_cells.size > reference_cells:
        in_cells = np.sort(rng.choice(in_cells, size=reference_cells, replace=False))
    out_cells = task.out_cells
    if out_cells.size > reference_cells:
        out_cells = np.sort(rng.choice(out_cells, size=reference_cells, replace=False))
    rows = []
    for g in task.gene_idx:
        col = log_expr[:, int(g)]
        x = np.asarray(col.todense()).ravel()
        rows.append(rank_sum_test(x[in_cells], x[out_cells]))
    return rows


def top_markers(
    ds: Dataset,
    group_cells_by: str = "cluster",
    *,
    reduction_method: str = "UMAP",
    genes_to_test_per_group: int = 25,
    marker_sig_test: bool = True,
    reference_cells: int = 1000,
    expression_threshold: float = 0.0,
    n_jobs: int = 1,
    seed: int = 0,
) -> pd.DataFrame:
    """Rank genes by how specifically they mark each cell group.

    Returns one row per reported (gene, group) pair. A gene may appear for
    several groups; see `flag_nonexclusive_markers`. With `marker_sig_test`,
    each reported pair also gets a Mann-Whitney U test of in-group cells
    against a random reference draw of out-of-group cells, and BH q-values
    over the whole table.
    """
    name = canonical_method(reduction_method)
    if isinstance(genes_to_test_per_group, bool) or int(genes_to_test_per_group) < 1:
        raise ParameterError("genes_to_test_per_group", genes_to_test_per_group, "must be a positive integer.")
    if isinstance(reference_cells, bool) or int(reference_cells) < 1:
        raise ParameterError("reference_cells", reference_cells, "must be a positive integer.")
    if float(expression_threshold) < 0.0:
        raise ParameterError("expression_threshold", expression_threshold, "must be non-negative.")

    norm = sp.csr_matrix(ds.normalized(stage="top_markers"), dtype=float)
    groups = ds.cell_groups(group_cells_by, method=name, stage="top_markers").to_numpy()
    codes, uniq = pd.factorize(groups, sort=True)
    n_groups = int(uniq.size)

    if ds.adata.uns.get("normalization", {}).get("norm_method", "log") == "log":
        linear = norm.copy()
        linear.data = np.expm1(linear.data)
    else:
        linear = norm
    counts = sp.csr_matrix(ds.adata.X, dtype=float)
    detected = (counts > float(expression_threshold)).astype(float)
    means, frac = _group_stats(linear, sp.csr_matrix(detected), codes, n_groups)

    gene_ids = ds.gene_ids.to_numpy()
    spec = specificity(pd.DataFrame(means, index=gene_ids, columns=uniq)).to_numpy()
    score = spec * frac

    k = min(int(genes_to_test_per_group), ds.n_genes)
    frames = []
    tasks = []
    for j, group in enumerate(uniq):
        # stable sort keeps gene order among ties
        top = np.argsort(-score[:, j], kind="mergesort")[:k]
        frames.append(
            pd.DataFrame(
                {
                    "gene_id": gene_ids[top],
                    "gene_short_name": ds.adata.var[GENE_SHORT_NAME].astype(str).to_numpy()[top],
                    "cell_group": str(group),
                    "marker_score": score[top, j],
                    "mean_expression": means[top, j],
                    "fraction_expressing": frac[top, j],
                    "specificity": spec[top, j],
                }
            )
        )
        tasks.append(
            _GroupTask(
                group=str(group),
                gene_idx=top,
                in_cells=np.flatnonzero(codes == j),
                out_cells=np.flatnonzero(codes != j),
                seed=stable_seed(int(seed), "top_markers", str(group)),
            )
        )
    out = pd.concat(frames, ignore_index=True)

    if marker_sig_test:
        log_expr = sp.csc_matrix(norm)
        ref = int(reference_cells)
        results = parallel_map(
            lambda task: _test_group(task, log_expr, ref),
            tasks,
            n_jobs=n_jobs,
            unit_label=lambda task: f"group {task.group}",
        )
        flat = [row for rows in results for row in rows]
        out["marker_test_p_value"] = np.array([p for p, _ in flat], dtype=float)
        out["auroc"] = np.array([a for _, a in flat], dtype=float)
        out["marker_test_q_value"] = bh_fdr(out["marker_test_p_value"].to_numpy())
        out = out[MARKER_COLUMNS + TEST_COLUMNS]

    out = out.sort_values(
        ["cell_group", "marker_score", "gene_id"],
        ascending=[True, False, True],
        kind="mergesort",
    ).reset_index(drop=True)
    _logger().info(
        "Markers: %d rows for %d groups (grouped by %s, sig_test=%s)",
        len(out),
        n_groups,
        group_cells_by,
        bool(marker_sig_test),
    )
    return out


def flag_nonexclusive_markers(markers: pd.DataFrame) -> pd.DataFrame:
    """Count how many groups list each gene; `exclusive` marks genes listed once."""
    out = markers.copy()
    out["n_groups"] = out.groupby("gene_id")["gene_id"].transform("size").astype(int)
    out["exclusive"] = out["n_groups"] == 1
    return out


def filter_top_markers(
    markers: pd.DataFrame,
    *,
    min_fraction: float = 0.10,
    top_k: int = 3,
    exclusive_only: bool = False,
) -> pd.DataFrame:
    """Keep expressed markers and the `top_k` best-scoring genes per group."""
    if isinstance(top_k, bool) or int(top_k) < 1:
        raise ParameterError("top_k", top_k, "must be a positive integer.")
    if not 0.0 <= float(min_fraction) <= 1.0:
        raise ParameterError("min_fraction", min_fraction, "must be in [0, 1].")
    table = markers
    if exclusive_only:
        # exclusivity is judged on the full table, before any filtering
        table = flag_nonexclusive_markers(table)
        table = table[table["exclusive"]]
    table = table[table["fraction_expressing"] >= float(min_fraction)]
    table = table.sort_values(
        ["cell_group", "marker_score", "gene_id"],
        ascending=[True, False, True],
        kind="mergesort",
    )
    return table.groupby("cell_group", sort=True).head(int(top_k)).reset_index(drop=True)
