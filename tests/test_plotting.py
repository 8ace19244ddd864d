from __future__ import annotations

from pathlib import Path

import matplotlib

matplotlib.use("Agg", force=True)

import pandas as pd
import pytest

from celltraj.plotting import PlotConfig, plot_cells, plot_module_heatmap, plot_pc_variance_explained
from celltraj.tools import learn_graph, order_cells, preprocess


@pytest.fixture
def ordered_dataset(split_dataset):
    return order_cells(learn_graph(split_dataset), root_cells=["cell_0"])


def test_plot_cells_pseudotime_with_unreachable_cells(ordered_dataset, tmp_path: Path):
    before = list(ordered_dataset.cell_metadata.columns)
    out = plot_cells(ordered_dataset, PlotConfig(color_cells_by="pseudotime"), tmp_path / "pt.png")
    assert out.exists() and out.stat().st_size > 0
    assert list(ordered_dataset.cell_metadata.columns) == before


@pytest.mark.parametrize("color_by", ["cluster", "partition", "batch"])
def test_plot_cells_categorical(ordered_dataset, tmp_path: Path, color_by):
    out = plot_cells(ordered_dataset, PlotConfig(color_cells_by=color_by), tmp_path / f"{color_by}.png")
    assert out.exists()


def test_plot_cells_unknown_column(ordered_dataset, tmp_path: Path):
    with pytest.raises(KeyError):
        plot_cells(ordered_dataset, PlotConfig(color_cells_by="missing"), tmp_path / "x.png")


def test_variance_and_module_plots(small_dataset, tmp_path: Path):
    ds = preprocess(small_dataset, 5)
    assert plot_pc_variance_explained(ds, tmp_path / "elbow.png").exists()
    table = pd.DataFrame([[1.0, -1.0], [0.5, 0.0]], index=pd.Index([1, 2], name="module"), columns=["1", "2"])
    assert plot_module_heatmap(table, tmp_path / "heat.png").exists()
