"""celltraj public API."""

from celltraj._version import __version__
from celltraj.core.dataset import Dataset, new_dataset
from celltraj.errors import (
    AlignmentError,
    CellTrajError,
    ParameterError,
    PrecursorMissingError,
    WorkerFailure,
)
from celltraj.tools import (
    aggregate_gene_expression,
    cluster_cells,
    find_gene_modules,
    graph_test,
    learn_graph,
    order_cells,
    preprocess,
    reduce_dimension,
    top_markers,
)


def run_pipeline(*args, **kwargs):
    """Lazy wrapper so importing the package does not pull in the driver."""
    from celltraj.pipeline.runner import run_pipeline as _run_pipeline

    return _run_pipeline(*args, **kwargs)


__all__ = [
    "__version__",
    "AlignmentError",
    "CellTrajError",
    "Dataset",
    "ParameterError",
    "PrecursorMissingError",
    "WorkerFailure",
    "aggregate_gene_expression",
    "cluster_cells",
    "find_gene_modules",
    "graph_test",
    "learn_graph",
    "new_dataset",
    "order_cells",
    "preprocess",
    "reduce_dimension",
    "run_pipeline",
    "top_markers",
]
