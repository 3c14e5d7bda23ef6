"""Single-writer merge of extractor facts into a DbGraph.

Facts are applied in three passes over the sorted per-file lists:

1. definition node facts (schema objects, methods, entities, migrations)
2. stub node facts and edge facts, resolving flexible target kinds against
   the definitions from pass 1
3. name-equality table matches, which only consider defined TABLE nodes

Because every lookup made in passes 2 and 3 only depends on the definitions
of pass 1, the merged graph does not depend on file or extractor order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from dbgraph_core.analyzer.facts import EdgeFact, FileFacts, NodeFact, TableMatchFact
from dbgraph_core.graph.store import DEFAULT_SCHEMA, DbGraph, Node, NodeKind, Relation

logger = logging.getLogger(__name__)

# Kinds a reference hint may resolve to, in preference order
_FLEXIBLE_KINDS: dict[NodeKind, tuple[NodeKind, ...]] = {
    NodeKind.TABLE: (NodeKind.TABLE, NodeKind.VIEW, NodeKind.SYNONYM, NodeKind.FUNC),
    NodeKind.PROC: (NodeKind.PROC, NodeKind.FUNC, NodeKind.SYNONYM),
    NodeKind.FUNC: (NodeKind.FUNC, NodeKind.PROC),
}


class GraphMerger:
    """Applies fact lists to a graph."""

    def __init__(self, graph: DbGraph | None = None) -> None:
        self.graph = graph if graph is not None else DbGraph()

    def merge(self, file_facts: Iterable[FileFacts]) -> DbGraph:
        """Merge per-file fact lists into the graph.

        Args:
            file_facts: Extraction results, in any order

        Returns:
            The graph the facts were merged into
        """
        ordered = sorted(file_facts, key=lambda f: (f.file_path, f.source.value))

        for file_result in ordered:
            for fact in file_result.facts:
                if isinstance(fact, NodeFact) and not fact.stub:
                    self.apply_node(fact)

        matches: list[TableMatchFact] = []
        for file_result in ordered:
            for fact in file_result.facts:
                if isinstance(fact, NodeFact):
                    if fact.stub:
                        self.apply_node(fact)
                elif isinstance(fact, EdgeFact):
                    self.apply_edge(fact)
                else:
                    matches.append(fact)

        for match in matches:
            self.apply_table_match(match)

        logger.debug(
            "Merged %d files into %d nodes and %d edges",
            len(ordered),
            self.graph.node_count(),
            self.graph.edge_count(),
        )
        return self.graph

    def apply_node(self, fact: NodeFact) -> Node:
        return self.graph.get_or_create_node(
            fact.key,
            fact.kind,
            fact.name,
            schema=fact.schema,
            source_file=fact.source_file,
            domain=fact.domain,
            stub=fact.stub,
            batch=fact.batch,
        )

    def apply_edge(self, fact: EdgeFact) -> None:
        from_node = self.apply_node(fact.from_node.as_stub())
        target = self.resolve_target(fact.to_node) if fact.flexible_kind else None
        if target is None:
            target = self.apply_node(fact.to_node.as_stub())
        self.graph.add_edge(
            from_node.key,
            target.key,
            fact.relation,
            target.kind,
            source_file=fact.source_file,
            source=fact.source,
        )

    def resolve_target(self, ref: NodeFact) -> Node | None:
        """Find an existing object of a compatible kind for a reference.

        Args:
            ref: The referenced object as seen by the extractor

        Returns:
            The existing node, or None when no compatible object is known
        """
        candidates = self.graph.find_objects(ref.schema or DEFAULT_SCHEMA, ref.name)
        if not candidates:
            return None
        for kind in _FLEXIBLE_KINDS.get(ref.kind, (ref.kind,)):
            for node in candidates:
                if node.kind == kind and not node.is_stub:
                    return node
        for node in candidates:
            if node.kind == ref.kind:
                return node
        return None

    def apply_table_match(self, fact: TableMatchFact) -> None:
        table = self.match_table(fact.names)
        if table is None:
            logger.debug("No table matches %s by name", fact.from_node.key)
            return
        from_node = self.apply_node(fact.from_node.as_stub())
        self.graph.add_edge(
            from_node.key,
            table.key,
            Relation.MAPS_TO,
            NodeKind.TABLE,
            source_file=fact.source_file,
            source=fact.source,
        )

    def match_table(self, names: tuple[str, ...]) -> Node | None:
        """Pick the defined TABLE whose name equals one of ``names``.

        Earlier names win; among tables with the same name the default
        schema wins, then the lowest key.
        """
        tables = [t for t in self.graph.get_nodes_by_kind(NodeKind.TABLE) if not t.is_stub]
        for name in names:
            folded = name.casefold()
            hits = [t for t in tables if t.name.casefold() == folded]
            if hits:
                hits.sort(key=lambda t: (t.schema.casefold() != DEFAULT_SCHEMA, t.key.casefold()))
                return hits[0]
        return None


def merge_facts(file_facts: Iterable[FileFacts], graph: DbGraph | None = None) -> DbGraph:
    """Merge fact lists into ``graph`` (or a new graph) and return it."""
    return GraphMerger(graph).merge(file_facts)
