"""Graph artifact export helpers."""

from dbgraph_core.exports.graph_files import (
    build_manifest,
    export_bodies_jsonl,
    export_edges_csv,
    export_nodes_csv,
    write_graph_artifacts,
)

__all__ = [
    "build_manifest",
    "export_bodies_jsonl",
    "export_edges_csv",
    "export_nodes_csv",
    "write_graph_artifacts",
]
