"""Database dependency graph module.

Main components:
- DbGraph: In-memory graph with case-insensitive identity resolution
- Node / Edge: Graph elements; edges carry the set of extractors that confirmed them
- NodeKind / Relation / FactSource: Closed vocabularies

The merge step (``dbgraph_core.graph.merger``) and the build pipeline
(``dbgraph_core.graph.builder``) depend on the extractors, which themselves
build on the store, so they are imported from their modules directly.
"""

from dbgraph_core.graph.store import (
    DEFAULT_SCHEMA,
    DbGraph,
    Edge,
    FactSource,
    Node,
    NodeKind,
    Relation,
    make_code_key,
    make_db_key,
    split_object_name,
)

__all__ = [
    "DEFAULT_SCHEMA",
    "DbGraph",
    "Edge",
    "FactSource",
    "Node",
    "NodeKind",
    "Relation",
    "make_code_key",
    "make_db_key",
    "split_object_name",
]
