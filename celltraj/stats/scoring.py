"""Multiple-testing correction and marker specificity scores."""

from __future__ import annotations

import numpy as np
import pandas as pd
from scipy.stats import binom, mannwhitneyu

EPS = 1e-12


def bh_fdr(pvals: np.ndarray) -> np.ndarray:
    arr = np.asarray(pvals, dtype=float)
    flat = arr.ravel()
    q = np.ones_like(flat)
    finite = np.isfinite(flat)
    if np.any((flat[finite] < 0.0) | (flat[finite] > 1.0)):
        raise ValueError("p-values must be in [0,1] or NaN.")
    if np.any(finite):
        p = flat[finite]
        m = int(p.size)
        order = np.argsort(p, kind="mergesort")
        ranked = p[order]
        ranks = np.arange(1, m + 1, dtype=float)
        adj = ranked * (float(m) / ranks)
        adj = np.minimum.accumulate(adj[::-1])[::-1]
        adj = np.clip(adj, 0.0, 1.0)
        q_valid = np.empty_like(adj)
        q_valid[order] = adj
        q[finite] = q_valid
    return q.reshape(arr.shape)


def _entropy(p: np.ndarray) -> np.ndarray:
    safe = np.where(p > 0.0, p, 1.0)
    return -np.sum(np.where(p > 0.0, p * np.log2(safe), 0.0), axis=-1)


def specificity(group_means: pd.DataFrame) -> pd.DataFrame:
    """Jensen-Shannon specificity of every gene for every group.

    `group_means` is genes x groups (non-negative). For each gene the group
    means are normalised into a distribution and compared with the one-hot
    distribution of each group: `1 - sqrt(JSD)`. Genes never expressed score 0.
    """
    vals = np.clip(group_means.to_numpy(dtype=float), 0.0, None)
    totals = vals.sum(axis=1, keepdims=True)
    expressed = totals.ravel() > EPS
    p = np.divide(vals, np.where(totals > EPS, totals, 1.0))
    n_groups = vals.shape[1]
    h_p = _entropy(p)
    out = np.zeros_like(vals)
    for j in range(n_groups):
        q = np.zeros(n_groups, dtype=float)
        q[j] = 1.0
        m = 0.5 * (p + q[None, :])
        jsd = _entropy(m) - 0.5 * h_p
        jsd = np.clip(jsd, 0.0, 1.0)
        out[:, j] = 1.0 - np.sqrt(jsd)
    out[~expressed, :] = 0.0
    return pd.DataFrame(out, index=group_means.index, columns=group_means.columns)


def rank_sum_test(x_in: np.ndarray, x_out: np.ndarray) -> tuple[float, float]:
    """Two-sided Mann-Whitney U; returns (p-value, AUROC of in vs out)."""
    a = np.asarray(x_in, dtype=float).ravel()
    b = np.asarray(x_out, dtype=float).ravel()
    if a.size == 0 or b.size == 0:
        return float("nan"), float("nan")
    if np.ptp(np.concatenate([a, b])) == 0.0:
        return 1.0, 0.5
    res = mannwhitneyu(a, b, alternative="two-sided")
    auroc = float(res.statistic) / float(a.size * b.size)
    return float(res.pvalue), auroc


def binomial_edge_pvalues(observed: np.ndarray, trials: float, expected_frac: np.ndarray) -> np.ndarray:
    """One-sided binomial tail P(X >= observed) for inter-group edge counts."""
    obs = np.asarray(observed, dtype=float)
    frac = np.clip(np.asarray(expected_frac, dtype=float), 0.0, 1.0)
    n = max(int(round(float(trials))), 0)
    return np.clip(binom.sf(obs - 1.0, n, frac), 0.0, 1.0)
