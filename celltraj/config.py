"""Configuration loading for celltraj pipeline runs."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from celltraj.core.dataset import nonlinear_method
from celltraj.errors import ParameterError


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Load and validate a pipeline config from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


@dataclass(frozen=True)
class PipelineConfig:
    outdir: str
    h5ad_path: str | None
    expression_path: str | None
    cells_path: str | None
    genes_path: str | None
    num_dim: int
    norm_method: str
    reduction_method: str
    resolution: float | None
    k: int
    partition_qval: float
    use_partition: bool
    root_cells: tuple[str, ...]
    root_group_key: str | None
    root_group_value: str | None
    marker_group_by: str
    markers_per_group: int
    marker_sig_test: bool
    reference_cells: int
    report_min_fraction: float
    report_top_k: int
    graph_test_neighbor_graph: str
    graph_test_k: int
    q_threshold: float
    module_resolutions: tuple[float, ...]
    module_group_by: str
    n_jobs: int
    seed: int
    checkpoint: bool
    make_plots: bool


def _positive_int(cfg: dict[str, Any], key: str, default: int) -> int:
    value = cfg.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ParameterError(key, value, "must be a positive integer.")
    return int(value)


def _unit_float(cfg: dict[str, Any], key: str, default: float) -> float:
    value = float(cfg.get(key, default))
    if not 0.0 < value <= 1.0:
        raise ParameterError(key, value, "must be in (0, 1].")
    return value


def build_pipeline_config(cfg: dict[str, Any]) -> PipelineConfig:
    h5ad_path = cfg.get("h5ad_path")
    mtx_keys = ("expression_path", "cells_path", "genes_path")
    has_mtx = all(cfg.get(k) for k in mtx_keys)
    if h5ad_path is None and not has_mtx:
        raise ParameterError(
            "inputs", None, "set h5ad_path, or all of expression_path, cells_path and genes_path."
        )

    root_cells = cfg.get("root_cells", [])
    if isinstance(root_cells, str):
        root_cells = [root_cells]
    root_group = cfg.get("root_group") or {}
    if not isinstance(root_group, dict) or (root_group and not {"key", "value"} <= set(root_group)):
        raise ParameterError("root_group", root_group, "expected an object with 'key' and 'value'.")
    if root_cells and root_group:
        raise ParameterError("root_cells", root_cells, "use either root_cells or root_group, not both.")

    resolution = cfg.get("resolution")
    if resolution is not None and float(resolution) <= 0.0:
        raise ParameterError("resolution", resolution, "must be a positive number.")

    module_res = cfg.get("module_resolutions", [1e-2])
    if not isinstance(module_res, list) or not module_res:
        raise ParameterError("module_resolutions", module_res, "expected a non-empty list.")

    n_jobs = int(cfg.get("n_jobs", 1))
    if n_jobs == 0 or n_jobs < -1:
        raise ParameterError("n_jobs", n_jobs, "use a positive worker count or -1 for all cores.")

    neighbor_graph = str(cfg.get("graph_test_neighbor_graph", "knn"))
    if neighbor_graph not in {"knn", "principal_graph"}:
        raise ParameterError("graph_test_neighbor_graph", neighbor_graph, "expected 'knn' or 'principal_graph'.")

    return PipelineConfig(
        outdir=str(cfg.get("outdir", ".")),
        h5ad_path=None if h5ad_path is None else str(h5ad_path),
        expression_path=cfg.get("expression_path"),
        cells_path=cfg.get("cells_path"),
        genes_path=cfg.get("genes_path"),
        num_dim=_positive_int(cfg, "num_dim", 50),
        norm_method=str(cfg.get("norm_method", "log")),
        reduction_method=nonlinear_method(cfg.get("reduction_method", "UMAP")),
        resolution=None if resolution is None else float(resolution),
        k=_positive_int(cfg, "k", 20),
        partition_qval=_unit_float(cfg, "partition_qval", 0.05),
        use_partition=bool(cfg.get("use_partition", True)),
        root_cells=tuple(str(c) for c in root_cells),
        root_group_key=None if not root_group else str(root_group["key"]),
        root_group_value=None if not root_group else str(root_group["value"]),
        marker_group_by=str(cfg.get("marker_group_by", "cluster")),
        markers_per_group=_positive_int(cfg, "markers_per_group", 25),
        marker_sig_test=bool(cfg.get("marker_sig_test", True)),
        reference_cells=_positive_int(cfg, "reference_cells", 1000),
        report_min_fraction=float(cfg.get("report_min_fraction", 0.10)),
        report_top_k=_positive_int(cfg, "report_top_k", 3),
        graph_test_neighbor_graph=neighbor_graph,
        graph_test_k=_positive_int(cfg, "graph_test_k", 25),
        q_threshold=_unit_float(cfg, "q_threshold", 0.05),
        module_resolutions=tuple(float(r) for r in module_res),
        module_group_by=str(cfg.get("module_group_by", "cluster")),
        n_jobs=n_jobs,
        seed=int(cfg.get("seed", 0)),
        checkpoint=bool(cfg.get("checkpoint", False)),
        make_plots=bool(cfg.get("make_plots", True)),
    )
