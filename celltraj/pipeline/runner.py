"""Config-driven driver running every stage in order."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np

from celltraj.config import PipelineConfig, build_pipeline_config, load_json_config
from celltraj.core.dataset import Dataset
from celltraj.pipeline.io import (
    ensure_dir,
    load_inputs,
    read_dataset,
    setup_logger,
    write_dataset,
    write_json,
    write_table,
)
from celltraj.tools import (
    aggregate_gene_expression,
    cluster_cells,
    filter_top_markers,
    find_gene_modules,
    flag_nonexclusive_markers,
    graph_test,
    learn_graph,
    order_cells,
    preprocess,
    reduce_dimension,
    root_node_for_group,
    top_markers,
)


def _load(cfg: PipelineConfig) -> Dataset:
    if cfg.h5ad_path is not None:
        return read_dataset(cfg.h5ad_path)
    return load_inputs(cfg.expression_path, cfg.cells_path, cfg.genes_path)


def _checkpoint(ds: Dataset, cfg: PipelineConfig, stage: str, logger: logging.Logger) -> None:
    if not cfg.checkpoint:
        return
    path = write_dataset(ds, Path(cfg.outdir) / "checkpoints" / f"{stage}.h5ad")
    logger.info("Checkpoint written: %s", path.as_posix())


def run_stages(ds: Dataset, cfg: PipelineConfig, logger: logging.Logger) -> dict[str, Any]:
    """Run the stage chain on an existing Dataset and return the result tables."""
    method = cfg.reduction_method

    logger.info("Preprocess: num_dim=%d norm_method=%s", cfg.num_dim, cfg.norm_method)
    ds = preprocess(ds, cfg.num_dim, norm_method=cfg.norm_method, seed=cfg.seed)
    _checkpoint(ds, cfg, "preprocess", logger)

    logger.info("Reduce dimension: %s", method)
    ds = reduce_dimension(ds, method, seed=cfg.seed)
    _checkpoint(ds, cfg, "reduce_dimension", logger)

    ds = cluster_cells(
        ds,
        method,
        resolution=cfg.resolution,
        k=cfg.k,
        partition_qval=cfg.partition_qval,
        seed=cfg.seed,
    )
    _checkpoint(ds, cfg, "cluster_cells", logger)

    markers = top_markers(
        ds,
        cfg.marker_group_by,
        reduction_method=method,
        genes_to_test_per_group=cfg.markers_per_group,
        marker_sig_test=cfg.marker_sig_test,
        reference_cells=cfg.reference_cells,
        n_jobs=cfg.n_jobs,
        seed=cfg.seed,
    )
    markers = flag_nonexclusive_markers(markers)
    n_shared = int(markers.loc[~markers["exclusive"], "gene_id"].nunique())
    if n_shared:
        logger.info("Markers: %d genes are top markers for more than one group", n_shared)
    report = filter_top_markers(
        markers, min_fraction=cfg.report_min_fraction, top_k=cfg.report_top_k
    )

    ds = learn_graph(ds, reduction_method=method, use_partition=cfg.use_partition, seed=cfg.seed)
    _checkpoint(ds, cfg, "learn_graph", logger)

    if cfg.root_cells:
        ds = order_cells(ds, reduction_method=method, root_cells=list(cfg.root_cells))
    elif cfg.root_group_key is not None:
        root = root_node_for_group(
            ds, cfg.root_group_key, cfg.root_group_value, reduction_method=method
        )
        logger.info("Root node for %s=%s: %s", cfg.root_group_key, cfg.root_group_value, root)
        ds = order_cells(ds, reduction_method=method, root_nodes=[root])
    else:
        logger.warning("No roots configured; pseudotime not computed.")
    _checkpoint(ds, cfg, "order_cells", logger)

    tested = graph_test(
        ds,
        neighbor_graph=cfg.graph_test_neighbor_graph,
        reduction_method=method,
        k=cfg.graph_test_k,
        n_jobs=cfg.n_jobs,
    )
    significant = tested.loc[tested["q_value"] < cfg.q_threshold, "gene_id"].tolist()
    logger.info("Graph test: %d genes with q < %g", len(significant), cfg.q_threshold)

    modules = None
    module_expr = None
    if len(significant) >= 3:
        modules = find_gene_modules(
            ds, significant, resolution=list(cfg.module_resolutions), seed=cfg.seed
        )
        module_expr = aggregate_gene_expression(
            ds, modules, cfg.module_group_by, reduction_method=method
        )
    else:
        logger.warning("Fewer than three trajectory genes; module detection skipped.")

    return {
        "dataset": ds,
        "markers": markers,
        "marker_report": report,
        "graph_test": tested,
        "gene_modules": modules,
        "module_expression": module_expr,
    }


def _write_figures(results: dict[str, Any], cfg: PipelineConfig, fig_dir: Path) -> None:
    from celltraj.plotting import (
        PlotConfig,
        apply_plot_style,
        plot_cells,
        plot_module_heatmap,
        plot_pc_variance_explained,
    )

    apply_plot_style()
    ds = results["dataset"]
    method = cfg.reduction_method
    plot_pc_variance_explained(ds, fig_dir / "pc_variance_explained.png")
    color_by = ["cluster", "partition"]
    if ds.has_pseudotime(method):
        color_by.append("pseudotime")
    for key in color_by:
        plot_cells(
            ds,
            PlotConfig(reduction_method=method, color_cells_by=key),
            fig_dir / f"cells_{key}.png",
        )
    if results["module_expression"] is not None:
        plot_module_heatmap(results["module_expression"], fig_dir / "module_heatmap.png")


def run_pipeline(config_path: str) -> dict[str, Any]:
    cfg = build_pipeline_config(load_json_config(config_path))
    outdir = Path(cfg.outdir)
    tables_dir = outdir / "tables"
    ensure_dir(tables_dir)
    logger = setup_logger(outdir / "logs" / "celltraj.log", "celltraj")

    ds = _load(cfg)
    logger.info("Loaded dataset: %d cells x %d genes", ds.n_cells, ds.n_genes)
    results = run_stages(ds, cfg, logger)
    ds = results["dataset"]

    write_table(tables_dir / "markers.csv", results["markers"])
    write_table(tables_dir / "marker_report.csv", results["marker_report"])
    write_table(tables_dir / "graph_test.csv", results["graph_test"])
    if results["gene_modules"] is not None:
        write_table(tables_dir / "gene_modules.csv", results["gene_modules"])
        write_table(tables_dir / "module_expression.csv", results["module_expression"], index=True)

    method = cfg.reduction_method
    cell_cols = [c for c in ds.adata.obs.columns if c.endswith(f"_{method.lower()}")]
    write_table(tables_dir / "cells.csv", ds.adata.obs[cell_cols], index=True)

    summary = {
        "n_cells": ds.n_cells,
        "n_genes": ds.n_genes,
        "reduction_method": method,
        "n_clusters": int(ds.clusters(method).nunique()),
        "n_partitions": int(ds.partitions(method).nunique()),
        "n_graph_nodes": int(ds.principal_graph(method).n_nodes),
        "n_unreachable_cells": (
            int(np.sum(~np.isfinite(ds.pseudotime(method).to_numpy(dtype=float))))
            if ds.has_pseudotime(method)
            else None
        ),
        "n_trajectory_genes": int(np.sum(results["graph_test"]["q_value"] < cfg.q_threshold)),
        "seed": cfg.seed,
    }
    write_json(outdir / "summary.json", summary)
    if cfg.make_plots:
        _write_figures(results, cfg, outdir / "figures")
        logger.info("Figures written to %s", (outdir / "figures").as_posix())
    write_dataset(ds, outdir / "dataset.h5ad")
    logger.info("Pipeline complete. Results in %s", outdir.as_posix())
    return results
