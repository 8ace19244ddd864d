"""Moran's I spatial autocorrelation statistics over cell graphs."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp
from scipy.stats import norm


def row_standardize(w: sp.spmatrix) -> sp.csr_matrix:
    w_csr = sp.csr_matrix(w, dtype=float, copy=True)
    row_sum = np.asarray(w_csr.sum(axis=1)).ravel()
    scale = np.zeros_like(row_sum, dtype=float)
    nz = row_sum > 0
    scale[nz] = 1.0 / row_sum[nz]
    if np.any(nz):
        w_csr = sp.csr_matrix(sp.diags(scale).dot(w_csr))
    return w_csr


@dataclass(frozen=True)
class MoranMoments:
    """Expectation and variance of Moran's I under the normality assumption."""

    n: int
    s0: float
    expected: float
    variance: float


def moran_moments(w: sp.spmatrix) -> MoranMoments:
    """Null moments of Moran's I for weights `w` (Cliff & Ord, normality)."""
    if not sp.issparse(w):
        raise TypeError("w must be sparse.")
    w_csr = sp.csr_matrix(w, dtype=float)
    n = int(w_csr.shape[0])
    if w_csr.shape != (n, n) or n < 3:
        raise ValueError("w must be square with at least three cells.")
    s0 = float(w_csr.sum())
    if s0 <= 0.0:
        raise ValueError("Sum of weights is zero; Moran's I undefined.")
    sym = w_csr + w_csr.T
    s1 = 0.5 * float(sym.multiply(sym).sum())
    row = np.asarray(w_csr.sum(axis=1)).ravel()
    col = np.asarray(w_csr.sum(axis=0)).ravel()
    s2 = float(np.sum((row + col) ** 2))
    expected = -1.0 / (n - 1)
    n2 = float(n) * float(n)
    second = (n2 * s1 - n * s2 + 3.0 * s0 * s0) / ((n2 - 1.0) * s0 * s0)
    variance = max(second - expected * expected, 0.0)
    return MoranMoments(n=n, s0=s0, expected=expected, variance=variance)


def morans_i_block(x: np.ndarray, w: sp.csr_matrix, s0: float) -> np.ndarray:
    """Moran's I for every column of `x` (cells x genes); NaN where variance is zero."""
    arr = x.toarray() if sp.issparse(x) else np.asarray(x, dtype=float)
    arr = np.asarray(arr, dtype=float)
    if arr.ndim != 2 or arr.shape[0] != w.shape[0]:
        raise ValueError("x must be cells x genes with one row per graph vertex.")
    n = arr.shape[0]
    z = arr - arr.mean(axis=0, keepdims=True)
    den = np.sum(z**2, axis=0)
    num = np.sum(z * np.asarray(w.dot(z)), axis=0)
    out = np.full(arr.shape[1], np.nan, dtype=float)
    ok = den > 0.0
    out[ok] = (n / float(s0)) * (num[ok] / den[ok])
    return out


def moran_pvalues(
    stat: np.ndarray, moments: MoranMoments, alternative: str = "greater"
) -> tuple[np.ndarray, np.ndarray]:
    """Return (z-scores, p-values) for Moran's I values; NaN propagates."""
    i_vals = np.asarray(stat, dtype=float)
    sd = float(np.sqrt(moments.variance))
    if sd <= 0.0:
        z = np.full_like(i_vals, np.nan)
    else:
        z = (i_vals - moments.expected) / sd
    if alternative == "greater":
        p = norm.sf(z)
    elif alternative == "less":
        p = norm.cdf(z)
    elif alternative == "two-sided":
        p = 2.0 * norm.sf(np.abs(z))
    else:
        raise ValueError("alternative must be 'greater', 'less' or 'two-sided'.")
    p = np.where(np.isfinite(z), np.clip(p, 0.0, 1.0), np.nan)
    return z, p
