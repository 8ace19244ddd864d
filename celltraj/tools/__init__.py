"""Pipeline stages, in the order they are normally run."""

from celltraj.tools.cluster import cluster_cells, compute_partitions
from celltraj.tools.graph import GraphLearner, PrincipalTreeLearner, learn_graph
from celltraj.tools.moran_test import cell_weights, graph_test
from celltraj.tools.markers import filter_top_markers, flag_nonexclusive_markers, top_markers
from celltraj.tools.modules import aggregate_gene_expression, find_gene_modules
from celltraj.tools.preprocess import preprocess
from celltraj.tools.pseudotime import order_cells, root_node_for_group
from celltraj.tools.reduce import Embedder, TSNEEmbedder, UMAPEmbedder, reduce_dimension

__all__ = [
    "preprocess",
    "reduce_dimension",
    "Embedder",
    "UMAPEmbedder",
    "TSNEEmbedder",
    "cluster_cells",
    "compute_partitions",
    "top_markers",
    "flag_nonexclusive_markers",
    "filter_top_markers",
    "learn_graph",
    "GraphLearner",
    "PrincipalTreeLearner",
    "order_cells",
    "root_node_for_group",
    "graph_test",
    "cell_weights",
    "find_gene_modules",
    "aggregate_gene_expression",
]
