"""Plotting helpers for pipeline outputs."""

import matplotlib

matplotlib.use("Agg")

from celltraj.plotting.cells import (  # noqa: E402
    PlotConfig,
    plot_cells,
    plot_module_heatmap,
    plot_pc_variance_explained,
)
from celltraj.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle, apply_plot_style  # noqa: E402

__all__ = [
    "DEFAULT_PLOT_STYLE",
    "PlotConfig",
    "PlotStyle",
    "apply_plot_style",
    "plot_cells",
    "plot_module_heatmap",
    "plot_pc_variance_explained",
]
