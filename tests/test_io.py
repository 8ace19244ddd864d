from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import scipy.io
import scipy.sparse as sp

from celltraj.errors import AlignmentError
from celltraj.pipeline.io import load_inputs, read_dataset, setup_logger, write_dataset
from celltraj.tools import learn_graph, order_cells


def test_checkpoint_round_trip_keeps_graph_and_pseudotime(split_dataset, tmp_path: Path):
    ds = order_cells(learn_graph(split_dataset), root_cells=["cell_0"])
    path = write_dataset(ds, tmp_path / "ckpt" / "order_cells.h5ad")
    assert path.exists()

    restored = read_dataset(path)
    graph = ds.principal_graph("UMAP")
    back = restored.principal_graph("UMAP")
    np.testing.assert_allclose(back.node_positions, graph.node_positions)
    np.testing.assert_array_equal(back.edges, graph.edges)
    np.testing.assert_array_equal(back.node_partition, graph.node_partition)
    np.testing.assert_array_equal(back.closest_vertex, graph.closest_vertex)
    np.testing.assert_allclose(
        restored.pseudotime("UMAP").to_numpy(dtype=float),
        ds.pseudotime("UMAP").to_numpy(dtype=float),
    )
    np.testing.assert_allclose(restored.expression.toarray(), ds.expression.toarray())
    assert list(restored.clusters("UMAP").astype(str)) == list(ds.clusters("UMAP").astype(str))
    assert "principal_graphs" not in restored.adata.uns


def test_read_dataset_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        read_dataset(tmp_path / "absent.h5ad")


def _write_inputs(tmp_path: Path, small_inputs, *, drop_gene: bool = False):
    counts, cells, genes = small_inputs
    mtx = tmp_path / "counts.mtx"
    scipy.io.mmwrite(str(mtx), sp.coo_matrix(counts.to_numpy()))
    cells.to_csv(tmp_path / "cells.csv")
    table = genes.iloc[:-1] if drop_gene else genes
    table.to_csv(tmp_path / "genes.tsv", sep="\t")
    return mtx, tmp_path / "cells.csv", tmp_path / "genes.tsv"


def test_load_inputs_from_matrix_market(tmp_path: Path, small_inputs):
    counts, cells, _ = small_inputs
    ds = load_inputs(*_write_inputs(tmp_path, small_inputs))
    assert ds.n_cells == 30
    assert ds.n_genes == 40
    np.testing.assert_allclose(ds.expression.toarray(), counts.to_numpy())
    assert list(ds.cell_metadata["batch"]) == list(cells["batch"])


def test_load_inputs_rejects_short_gene_table(tmp_path: Path, small_inputs):
    with pytest.raises(AlignmentError):
        load_inputs(*_write_inputs(tmp_path, small_inputs, drop_gene=True))


def test_setup_logger_writes_file(tmp_path: Path):
    log_path = tmp_path / "logs" / "run.log"
    logger = setup_logger(log_path, "celltraj.test_io")
    logger.info("hello %s", "world")
    for handler in logger.handlers:
        handler.flush()
    text = log_path.read_text(encoding="utf-8")
    assert "| INFO | hello world" in text
