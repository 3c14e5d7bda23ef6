"""Graph store for database objects and the code that touches them.

This module provides the core data structures of the unified dependency graph:
- Node: a database object (table, view, ...) or a code construct (method, entity, ...)
- Edge: a directed, typed relationship between two nodes
- NodeKind / Relation: the closed vocabularies for nodes and edges
- DbGraph: the container, acting as identity resolver with case-insensitive indices

Keys are canonical strings. Database objects use ``schema.name|KIND`` and code
constructs use ``csharp:Full.Name|KIND``; the prefix keeps a table and a class
with the same short name apart.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DEFAULT_SCHEMA = "dbo"
CODE_KEY_PREFIX = "csharp:"
STUB_DOMAIN = "(external)"

_IDENTIFIER_QUOTES_RE = re.compile(r'[\[\]"`]')


class NodeKind(Enum):
    """Kinds of nodes in the graph."""

    TABLE = "TABLE"
    VIEW = "VIEW"
    PROC = "PROC"
    FUNC = "FUNC"
    TRIGGER = "TRIGGER"
    TYPE = "TYPE"
    SEQUENCE = "SEQUENCE"
    SYNONYM = "SYNONYM"
    DBSET = "DBSET"
    METHOD = "METHOD"
    ENTITY = "ENTITY"
    MIGRATION = "MIGRATION"

    @property
    def is_code(self) -> bool:
        return self in _CODE_KINDS


_CODE_KINDS = frozenset({NodeKind.DBSET, NodeKind.METHOD, NodeKind.ENTITY, NodeKind.MIGRATION})


class Relation(Enum):
    """Types of edges in the graph."""

    READS_FROM = "ReadsFrom"
    WRITES_TO = "WritesTo"
    EXECUTES = "Executes"
    SYNONYM_FOR = "SynonymFor"
    ON = "On"  # trigger -> table
    MAPS_TO = "MapsTo"  # entity/set -> table
    FOREIGN_KEY = "ForeignKey"  # child -> parent
    SCHEMA_CHANGE = "SchemaChange"
    DATA_CHANGE = "DataChange"


class FactSource(Enum):
    """Extractor that produced a fact; accumulated on edges as provenance."""

    SCHEMA = "schema"
    INLINE = "inline"
    ORM = "orm"
    MIGRATION = "migration"


@dataclass
class Node:
    """A node representing a database object or a code construct."""

    key: str
    """Canonical key in its first-seen spelling."""

    kind: NodeKind

    name: str
    """Unqualified name (table name, method name, ...)."""

    schema: str = ""
    """Schema for database objects; empty for code constructs."""

    source_file: str = ""
    domain: str = ""

    is_stub: bool = False
    """True while the node is known only from references."""

    batch: int | None = None
    """Batch index within the defining schema script, if any."""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "key": self.key,
            "kind": self.kind.value,
            "name": self.name,
            "schema": self.schema,
            "file": self.source_file,
            "domain": self.domain,
            "batch": self.batch,
            "stub": self.is_stub,
        }


@dataclass
class Edge:
    """A directed edge between two nodes."""

    from_key: str
    to_key: str
    relation: Relation
    to_kind: NodeKind

    source_file: str = ""
    """File of the first fact that produced this edge."""

    sources: set[FactSource] = field(default_factory=set)
    """Extractors that confirmed this edge."""

    files: list[str] = field(default_factory=list)
    """Every distinct file that confirmed this edge, in merge order."""

    @property
    def identity(self) -> tuple[str, str, Relation]:
        return (canonical_key(self.from_key), canonical_key(self.to_key), self.relation)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "from": self.from_key,
            "to": self.to_key,
            "relation": self.relation.value,
            "to_kind": self.to_kind.value,
            "file": self.source_file,
            "sources": sorted(s.value for s in self.sources),
        }


class DbGraph:
    """In-memory graph of database objects and code constructs.

    Provides idempotent node creation and deduplicated edge insertion, plus
    case-insensitive lookup by:
    - canonical key
    - schema-qualified object name (any kind)
    - node kind

    Nodes and edges keep the spelling of the first fact that created them.
    """

    def __init__(self) -> None:
        """Initialize an empty graph."""
        self._nodes: dict[str, Node] = {}
        self._edges: dict[tuple[str, str, Relation], Edge] = {}

        # Indices for efficient lookup
        self._outgoing: dict[str, list[Edge]] = {}  # canonical from -> edges
        self._incoming: dict[str, list[Edge]] = {}  # canonical to -> edges
        self._by_kind: dict[NodeKind, list[str]] = {}  # kind -> canonical keys
        self._by_name: dict[str, list[str]] = {}  # "schema.name" -> canonical keys

    def get_or_create_node(
        self,
        key: str,
        kind: NodeKind,
        name: str,
        schema: str = "",
        source_file: str = "",
        domain: str = "",
        *,
        stub: bool = False,
        batch: int | None = None,
    ) -> Node:
        """Return the node for ``key``, creating it on first sight.

        A stub is upgraded in place when a definition for the same key
        arrives; blank fields are filled while non-empty fields keep their
        first value.

        Args:
            key: Canonical node key (any casing)
            kind: Node kind
            name: Unqualified display name
            schema: Schema of a database object
            source_file: File the fact came from
            domain: Domain tag
            stub: Whether the caller only knows the node from a reference
            batch: Batch index inside a schema script

        Returns:
            The existing or newly created node
        """
        canonical = canonical_key(key)
        node = self._nodes.get(canonical)
        if node is None:
            node = Node(
                key=key,
                kind=kind,
                name=name,
                schema=schema,
                source_file=source_file,
                domain=domain or (STUB_DOMAIN if stub else ""),
                is_stub=stub,
                batch=batch,
            )
            self._nodes[canonical] = node
            self._by_kind.setdefault(kind, []).append(canonical)
            if not kind.is_code:
                self._by_name.setdefault(_name_index_key(schema, name), []).append(canonical)
            return node

        if stub:
            return node

        if node.is_stub:
            node.is_stub = False
            if node.domain == STUB_DOMAIN:
                node.domain = ""
        node.schema = node.schema or schema
        node.source_file = node.source_file or source_file
        node.domain = node.domain or domain
        if node.batch is None:
            node.batch = batch
        return node

    def add_edge(
        self,
        from_key: str,
        to_key: str,
        relation: Relation,
        to_kind: NodeKind | None = None,
        source_file: str = "",
        source: FactSource | None = None,
    ) -> Edge:
        """Add an edge, merging it with an existing edge of the same identity.

        Args:
            from_key: Key of the source node
            to_key: Key of the target node
            relation: Relationship type
            to_kind: Kind of the target (derived from the target node or key if omitted)
            source_file: File the fact came from
            source: Extractor that produced the fact

        Returns:
            The new or merged edge
        """
        from_node = self._nodes.get(canonical_key(from_key))
        to_node = self._nodes.get(canonical_key(to_key))
        if from_node is not None:
            from_key = from_node.key
        if to_node is not None:
            to_key = to_node.key
        if to_kind is None:
            to_kind = to_node.kind if to_node is not None else kind_from_key(to_key)
        if to_kind is None:
            raise ValueError(f"Cannot determine target kind for edge to {to_key!r}")

        identity = (canonical_key(from_key), canonical_key(to_key), relation)
        edge = self._edges.get(identity)
        if edge is None:
            edge = Edge(
                from_key=from_key,
                to_key=to_key,
                relation=relation,
                to_kind=to_kind,
                source_file=source_file,
            )
            self._edges[identity] = edge
            self._outgoing.setdefault(identity[0], []).append(edge)
            self._incoming.setdefault(identity[1], []).append(edge)

        if source is not None:
            edge.sources.add(source)
        if source_file and source_file not in edge.files:
            edge.files.append(source_file)
        if not edge.source_file:
            edge.source_file = source_file
        return edge

    def get_node(self, key: str) -> Node | None:
        """Get a node by key (case-insensitive)."""
        return self._nodes.get(canonical_key(key))

    def has_node(self, key: str) -> bool:
        return canonical_key(key) in self._nodes

    def get_edge(self, from_key: str, to_key: str, relation: Relation) -> Edge | None:
        return self._edges.get((canonical_key(from_key), canonical_key(to_key), relation))

    def find_objects(self, schema: str, name: str) -> list[Node]:
        """Get database objects of any kind with the given schema-qualified name."""
        keys = self._by_name.get(_name_index_key(schema, name), [])
        return [self._nodes[k] for k in keys]

    def get_nodes_by_kind(self, kind: NodeKind) -> list[Node]:
        return [self._nodes[k] for k in self._by_kind.get(kind, [])]

    def get_neighbors(
        self,
        key: str,
        relations: list[Relation] | None = None,
        direction: str = "both",
    ) -> list[tuple[Node, Edge]]:
        """Get neighboring nodes.

        Args:
            key: The node key
            relations: Filter by relation (None for all)
            direction: "outgoing", "incoming", or "both"

        Returns:
            List of (neighbor_node, edge) tuples
        """
        canonical = canonical_key(key)
        results: list[tuple[Node, Edge]] = []

        if direction in ("outgoing", "both"):
            for edge in self._outgoing.get(canonical, []):
                if relations is None or edge.relation in relations:
                    neighbor = self._nodes.get(canonical_key(edge.to_key))
                    if neighbor:
                        results.append((neighbor, edge))

        if direction in ("incoming", "both"):
            for edge in self._incoming.get(canonical, []):
                if relations is None or edge.relation in relations:
                    neighbor = self._nodes.get(canonical_key(edge.from_key))
                    if neighbor:
                        results.append((neighbor, edge))

        return results

    def get_all_nodes(self) -> list[Node]:
        return list(self._nodes.values())

    def get_all_edges(self) -> list[Edge]:
        return list(self._edges.values())

    def node_count(self) -> int:
        """Get the number of nodes."""
        return len(self._nodes)

    def edge_count(self) -> int:
        """Get the number of edges."""
        return len(self._edges)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the graph to a dictionary with nodes and edges sorted by key."""
        nodes = sorted(self._nodes.values(), key=lambda n: canonical_key(n.key))
        edges = sorted(self._edges.values(), key=_edge_sort_key)
        return {
            "nodes": [node.to_dict() for node in nodes],
            "edges": [edge.to_dict() for edge in edges],
        }


def canonical_key(key: str) -> str:
    """Case-insensitive identity of a key."""
    return key.casefold()


def strip_identifier(part: str) -> str:
    """Remove bracket/quote delimiters and surrounding whitespace from a name part."""
    return _IDENTIFIER_QUOTES_RE.sub("", part).strip()


def split_object_name(raw: str, default_schema: str = DEFAULT_SCHEMA) -> tuple[str, str]:
    """Split a possibly qualified SQL object name into (schema, name).

    ``[srv].[db].[sales].[Order]`` becomes ``("sales", "Order")``; an
    unqualified name gets ``default_schema``.
    """
    parts = [strip_identifier(p) for p in raw.strip().split(".")]
    parts = [p for p in parts if p]
    if not parts:
        return default_schema, ""
    if len(parts) == 1:
        return default_schema, parts[0]
    return parts[-2], parts[-1]


def make_db_key(schema: str | None, name: str, kind: NodeKind) -> str:
    """Create the key of a database object: ``schema.name|KIND``."""
    return f"{schema or DEFAULT_SCHEMA}.{name}|{kind.value}"


def make_code_key(full_name: str, kind: NodeKind) -> str:
    """Create the key of a code construct: ``csharp:Full.Name|KIND``."""
    return f"{CODE_KEY_PREFIX}{full_name}|{kind.value}"


def kind_from_key(key: str) -> NodeKind | None:
    """Read the kind suffix of a key, if it names a known kind."""
    _, sep, suffix = key.rpartition("|")
    if not sep:
        return None
    try:
        return NodeKind(suffix.upper())
    except ValueError:
        return None


def _name_index_key(schema: str, name: str) -> str:
    return f"{schema or DEFAULT_SCHEMA}.{name}".casefold()


def _edge_sort_key(edge: Edge) -> tuple[str, str, str]:
    return (canonical_key(edge.from_key), canonical_key(edge.to_key), edge.relation.value)
