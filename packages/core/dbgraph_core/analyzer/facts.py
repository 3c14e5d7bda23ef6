"""Immutable facts produced by the extractors.

Extractors never touch the graph. Each one turns a single input unit into an
ordered list of facts, and the merger applies those lists afterwards. This
keeps extraction side-effect free and safe to run in parallel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from dbgraph_core.graph.store import (
    DEFAULT_SCHEMA,
    FactSource,
    NodeKind,
    Relation,
    make_code_key,
    make_db_key,
)


@dataclass(frozen=True)
class NodeFact:
    """A node candidate. ``stub`` facts only claim the node exists."""

    key: str
    kind: NodeKind
    name: str
    source: FactSource
    schema: str = ""
    source_file: str = ""
    domain: str = ""
    line: int = 0
    batch: int | None = None
    stub: bool = False

    def as_stub(self) -> NodeFact:
        return NodeFact(
            key=self.key,
            kind=self.kind,
            name=self.name,
            source=self.source,
            schema=self.schema,
            source_file=self.source_file,
            line=self.line,
            stub=True,
        )


@dataclass(frozen=True)
class EdgeFact:
    """An edge candidate between two nodes.

    When ``flexible_kind`` is set, the target kind is only a hint: a TABLE
    reference is redirected to an existing VIEW or SYNONYM of the same name.
    """

    from_node: NodeFact
    to_node: NodeFact
    relation: Relation
    source: FactSource
    source_file: str = ""
    line: int = 0
    flexible_kind: bool = False


@dataclass(frozen=True)
class TableMatchFact:
    """A MapsTo candidate resolved by name against TABLE nodes at merge time."""

    from_node: NodeFact
    names: tuple[str, ...]
    source: FactSource
    source_file: str = ""
    line: int = 0


Fact = NodeFact | EdgeFact | TableMatchFact


@dataclass(frozen=True)
class BodyFact:
    """Text stored for downstream retrieval, keyed like the node it belongs to."""

    key: str
    kind: NodeKind | None
    name: str
    source_file: str
    text: str
    line: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "key": self.key,
            "kind": self.kind.value if self.kind is not None else None,
            "name": self.name,
            "file": self.source_file,
            "line": self.line,
            "text": self.text,
            **self.metadata,
        }


@dataclass
class FileFacts:
    """Ordered extraction output for one input file."""

    file_path: str
    source: FactSource
    facts: list[Fact] = field(default_factory=list)
    bodies: list[BodyFact] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def db_object_fact(
    schema: str,
    name: str,
    kind: NodeKind,
    source: FactSource,
    *,
    source_file: str = "",
    domain: str = "",
    line: int = 0,
    batch: int | None = None,
    stub: bool = False,
) -> NodeFact:
    """Create a node fact for a database object, keyed ``schema.name|KIND``."""
    schema = schema or DEFAULT_SCHEMA
    return NodeFact(
        key=make_db_key(schema, name, kind),
        kind=kind,
        name=name,
        source=source,
        schema=schema,
        source_file=source_file,
        domain=domain,
        line=line,
        batch=batch,
        stub=stub,
    )


def code_fact(
    full_name: str,
    name: str,
    kind: NodeKind,
    source: FactSource,
    *,
    source_file: str = "",
    domain: str = "code",
    line: int = 0,
) -> NodeFact:
    """Create a node fact for a code construct, keyed ``csharp:Full.Name|KIND``."""
    return NodeFact(
        key=make_code_key(full_name, kind),
        kind=kind,
        name=name,
        source=source,
        source_file=source_file,
        domain=domain,
        line=line,
    )
