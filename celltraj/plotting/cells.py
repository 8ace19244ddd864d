"""Embedding, variance and module figure factories."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import matplotlib.axes
import matplotlib.patheffects as pe
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from celltraj.core.dataset import Dataset, canonical_method
from celltraj.core.graph import PrincipalGraph
from celltraj.errors import ParameterError
from celltraj.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from celltraj.plotting.utils import numeric_sort, save_figure


@dataclass(frozen=True)
class PlotConfig:
    """What `plot_cells` draws.

    `color_cells_by` is "cluster", "partition", "pseudotime" or any column of
    the cell metadata.
    """

    reduction_method: str = "UMAP"
    color_cells_by: str = "cluster"
    show_trajectory_graph: bool = True
    label_groups_by_cluster: bool = True
    label_leaves: bool = True
    label_branch_points: bool = True
    label_roots: bool = True


def _text(ax: matplotlib.axes.Axes, x: float, y: float, label: str, *, color: str, style: PlotStyle) -> None:
    txt = ax.text(
        x, y, label, fontsize=style.node_label_fontsize, color=color, ha="center", va="center"
    )
    txt.set_path_effects([pe.withStroke(linewidth=2.0, foreground="white")])


def _palette(categories: list[str]) -> dict[str, Any]:
    cmap = plt.get_cmap("tab20")
    return {cat: cmap(i % 20) for i, cat in enumerate(categories)}


def _draw_categorical(
    ax: matplotlib.axes.Axes,
    xy: np.ndarray,
    labels: pd.Series,
    *,
    annotate: bool,
    style: PlotStyle,
) -> None:
    labels_str = labels.astype(str).to_numpy()
    categories = numeric_sort(sorted(set(labels_str.tolist())))
    colors = _palette(categories)
    for cat in categories:
        mask = labels_str == cat
        ax.scatter(
            xy[mask, 0],
            xy[mask, 1],
            color=colors[cat],
            s=style.s_cells,
            alpha=style.alpha_cells,
            linewidths=0,
            rasterized=True,
            label=cat,
        )
        if annotate:
            _text(
                ax,
                float(np.median(xy[mask, 0])),
                float(np.median(xy[mask, 1])),
                cat,
                color="black",
                style=style,
            )
    ax.legend(
        loc="upper left",
        bbox_to_anchor=(1.02, 1.0),
        borderaxespad=0.0,
        fontsize=style.legend_fontsize,
        frameon=True,
        markerscale=2.0,
    )


def _draw_numeric(
    fig: plt.Figure,
    ax: matplotlib.axes.Axes,
    xy: np.ndarray,
    values: np.ndarray,
    *,
    label: str,
    style: PlotStyle,
) -> None:
    finite = np.isfinite(values)
    if np.any(~finite):
        ax.scatter(
            xy[~finite, 0],
            xy[~finite, 1],
            color=style.unreachable_color,
            s=style.s_cells,
            alpha=style.alpha_cells,
            linewidths=0,
            rasterized=True,
            label="unreachable",
        )
    if not np.any(finite):
        return
    order = np.argsort(values[finite], kind="mergesort")
    pts = ax.scatter(
        xy[finite][order, 0],
        xy[finite][order, 1],
        c=values[finite][order],
        cmap="viridis",
        s=style.s_cells,
        alpha=style.alpha_cells,
        linewidths=0,
        rasterized=True,
    )
    cbar = fig.colorbar(pts, ax=ax, shrink=style.colorbar_shrink, pad=style.colorbar_pad)
    cbar.set_label(label, fontsize=style.axis_label_fontsize)


def _draw_graph(
    ax: matplotlib.axes.Axes,
    ds: Dataset,
    graph: PrincipalGraph,
    config: PlotConfig,
    method: str,
    style: PlotStyle,
) -> None:
    pos = graph.node_positions[:, :2]
    for a, b in graph.edges:
        ax.plot(
            [pos[a, 0], pos[b, 0]],
            [pos[a, 1], pos[b, 1]],
            color=style.graph_color,
            linewidth=style.graph_linewidth,
            zorder=3,
        )
    if config.label_leaves:
        for i, node in enumerate(graph.leaf_nodes(), start=1):
            _text(ax, pos[node, 0], pos[node, 1], str(i), color="dimgray", style=style)
    if config.label_branch_points:
        for i, node in enumerate(graph.branch_nodes(), start=1):
            _text(ax, pos[node, 0], pos[node, 1], str(i), color="black", style=style)
    roots_key = f"pseudotime_{method.lower()}_roots"
    if config.label_roots and roots_key in ds.adata.uns:
        for i, name in enumerate(ds.adata.uns[roots_key], start=1):
            node = graph.node_index(str(name))
            _text(ax, pos[node, 0], pos[node, 1], f"R{i}", color="firebrick", style=style)


def plot_cells(
    ds: Dataset,
    config: PlotConfig,
    out_path: Path,
    *,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Draw the 2-D embedding coloured by one annotation, optionally with the graph.

    Cells with infinite pseudotime are drawn in `style.unreachable_color`.
    The dataset is not modified.
    """
    method = canonical_method(config.reduction_method)
    coords = ds.reduced_dims(method, stage="plot_cells")
    if coords.shape[1] < 2:
        raise ParameterError("reduction_method", method, "needs at least two dimensions to plot")
    xy = coords[:, :2]

    fig, ax = plt.subplots(figsize=style.figsize_cells)
    if config.color_cells_by == "pseudotime":
        values = ds.pseudotime(method, stage="plot_cells").to_numpy(dtype=float)
        _draw_numeric(fig, ax, xy, values, label="pseudotime", style=style)
    else:
        labels = ds.cell_groups(config.color_cells_by, method, stage="plot_cells")
        if pd.api.types.is_numeric_dtype(labels) and labels.nunique() > 20:
            _draw_numeric(
                fig, ax, xy, labels.to_numpy(dtype=float), label=config.color_cells_by, style=style
            )
        else:
            annotate = config.label_groups_by_cluster and config.color_cells_by == "cluster"
            _draw_categorical(ax, xy, labels, annotate=annotate, style=style)

    if config.show_trajectory_graph and ds.has_principal_graph(method):
        _draw_graph(ax, ds, ds.principal_graph(method), config, method, style)

    ax.set_title(f"{method} by {config.color_cells_by}", fontsize=style.title_fontsize)
    ax.set_xlabel(f"{method}1", fontsize=style.axis_label_fontsize)
    ax.set_ylabel(f"{method}2", fontsize=style.axis_label_fontsize)
    ax.set_xticks([])
    ax.set_yticks([])
    fig.tight_layout()
    save_figure(fig, out_path, style=style, bbox_tight=True)
    return out_path


def plot_pc_variance_explained(
    ds: Dataset,
    out_path: Path,
    *,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Elbow plot of the stored PCA variance ratio."""
    ratio = ds.variance_explained()
    fig, ax = plt.subplots(figsize=style.figsize_elbow)
    ax.plot(np.arange(1, ratio.size + 1), ratio, marker="o", markersize=3, color="black")
    ax.set_xlabel("PC", fontsize=style.axis_label_fontsize)
    ax.set_ylabel("Variance explained", fontsize=style.axis_label_fontsize)
    ax.set_title("PCA variance explained", fontsize=style.title_fontsize)
    fig.tight_layout()
    save_figure(fig, out_path, style=style)
    return out_path


def plot_module_heatmap(
    module_expression: pd.DataFrame,
    out_path: Path,
    *,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Heatmap of a modules x groups aggregate table."""
    fig, ax = plt.subplots(figsize=style.figsize_heatmap)
    mat = module_expression.to_numpy(dtype=float)
    img = ax.imshow(mat, aspect="auto", cmap="RdBu_r", interpolation="nearest")
    ax.set_xticks(np.arange(mat.shape[1]))
    ax.set_xticklabels([str(c) for c in module_expression.columns], rotation=90)
    ax.set_yticks(np.arange(mat.shape[0]))
    ax.set_yticklabels([f"Module {m}" for m in module_expression.index])
    cbar = fig.colorbar(img, ax=ax, shrink=style.colorbar_shrink, pad=style.colorbar_pad)
    cbar.set_label("aggregate expression", fontsize=style.axis_label_fontsize)
    fig.tight_layout()
    save_figure(fig, out_path, style=style, bbox_tight=True)
    return out_path
