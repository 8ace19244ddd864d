"""Shared plotting utilities used by figure factories."""

from __future__ import annotations

from pathlib import Path

import matplotlib.figure
import matplotlib.pyplot as plt

from celltraj.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle


def save_figure(
    fig: matplotlib.figure.Figure,
    out_path: Path,
    *,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
    bbox_tight: bool = False,
    close: bool = True,
) -> None:
    """Save figure deterministically and optionally close it."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    save_kwargs: dict[str, object] = {
        "dpi": style.dpi,
        "facecolor": "white",
        "pad_inches": 0.02,
    }
    if bbox_tight:
        save_kwargs["bbox_inches"] = "tight"
    fig.savefig(out_path, **save_kwargs)
    if close:
        plt.close(fig)


def numeric_sort(categories: list[str]) -> list[str]:
    parsed: list[tuple[float, str] | None] = []
    for cat in categories:
        try:
            parsed.append((float(cat), cat))
        except ValueError:
            parsed.append(None)
    if any(item is None for item in parsed):
        return sorted(categories)
    pairs = [item for item in parsed if item is not None]
    pairs.sort(key=lambda x: (x[0], x[1]))
    return [cat for _, cat in pairs]
