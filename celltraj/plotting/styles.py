"""Shared plotting style settings for deterministic figure outputs."""

from __future__ import annotations

from dataclasses import dataclass

import matplotlib.pyplot as plt


@dataclass(frozen=True)
class PlotStyle:
    """Centralized plotting defaults used across pipeline figures."""

    dpi: int = 200
    figsize_cells: tuple[float, float] = (6.0, 5.0)
    figsize_elbow: tuple[float, float] = (5.0, 4.0)
    figsize_heatmap: tuple[float, float] = (7.0, 5.0)
    s_cells: float = 6.0
    alpha_cells: float = 0.85
    unreachable_color: str = "lightgray"
    graph_color: str = "black"
    graph_linewidth: float = 1.0
    node_label_fontsize: int = 7
    legend_fontsize: int = 8
    axis_label_fontsize: int = 10
    title_fontsize: int = 11
    colorbar_shrink: float = 0.8
    colorbar_pad: float = 0.02


DEFAULT_PLOT_STYLE = PlotStyle()


def apply_plot_style(style: PlotStyle = DEFAULT_PLOT_STYLE) -> None:
    """Apply deterministic matplotlib rcParams for pipeline plots."""
    plt.rcParams.update(
        {
            "figure.dpi": style.dpi,
            "savefig.dpi": style.dpi,
            "savefig.facecolor": "white",
            "font.family": "DejaVu Sans",
            "axes.titlesize": style.title_fontsize,
            "axes.labelsize": style.axis_label_fontsize,
            "legend.fontsize": style.legend_fontsize,
            "axes.grid": False,
        }
    )
