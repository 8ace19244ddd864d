"""Pipeline I/O, logging, and checkpoint helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import anndata as ad
import pandas as pd
import scanpy as sc

from celltraj.core.dataset import Dataset, new_dataset
from celltraj.core.graph import PrincipalGraph

GRAPHS_UNS_KEY = "principal_graphs"


def ensure_dir(path: str | Path) -> None:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)


def write_json(path: str | Path, payload: dict[str, Any]) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=str)


def write_table(path: str | Path, table: pd.DataFrame, index: bool = False) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(out, index=index)
    return out


def setup_logger(log_path: Path, logger_name: str = "celltraj") -> logging.Logger:
    ensure_dir(log_path.parent)
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    fh = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    fh.setFormatter(formatter)
    logger.addHandler(fh)
    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger


def _read_table(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Input file '{path}' not found.")
    sep = "\t" if path.suffix.lower() in {".tsv", ".txt"} else ","
    return pd.read_csv(path, sep=sep, index_col=0)


def load_inputs(
    expression_path: str | Path,
    cells_path: str | Path,
    genes_path: str | Path,
) -> Dataset:
    """Build a Dataset from a genes x cells Matrix Market file and two metadata tables.

    The first column of each table holds the identifiers; the matrix rows and
    columns follow the table order, so misaligned tables surface as an
    `AlignmentError` only if their lengths differ.
    """
    mtx = Path(expression_path)
    if not mtx.exists():
        raise FileNotFoundError(f"Input file '{mtx}' not found.")
    cells = _read_table(Path(cells_path))
    genes = _read_table(Path(genes_path))
    counts = sc.read_mtx(mtx).X
    return new_dataset(counts, cells, genes)


def write_dataset(ds: Dataset, path: str | Path) -> Path:
    """Checkpoint a Dataset, principal graphs included, to h5ad."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    adata = ds.adata.copy()
    adata.uns[GRAPHS_UNS_KEY] = {name: graph.to_uns() for name, graph in ds.graphs.items()}
    adata.write_h5ad(out)
    return out


def read_dataset(path: str | Path) -> Dataset:
    src = Path(path)
    if not src.exists():
        raise FileNotFoundError(f"Input file '{src}' not found.")
    adata = ad.read_h5ad(src)
    payload = adata.uns.pop(GRAPHS_UNS_KEY, {})
    graphs = {str(name): PrincipalGraph.from_uns(dict(g)) for name, g in payload.items()}
    ds = Dataset(adata=adata, graphs=graphs)
    ds.check_shape()
    return ds
