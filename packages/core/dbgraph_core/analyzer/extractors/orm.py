"""ORM mapping extraction.

Works in two stages:

1. ``scan_orm_file`` reads one C# file and records what it declares: classes
   with their base types, ``[Table]`` attributes and properties, ``DbSet<T>``
   properties, fluent ``ToTable`` bindings and fluent relationship chains.
2. ``OrmModel`` consolidates the per-file results and resolves them into
   facts: entity detection through transitive base types, table mapping
   (attribute, then fluent, then name match) and ForeignKey roles.

Only the second stage sees more than one file, and it is a pure function of
the collected declarations.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from dbgraph_core.analyzer.extractors.ast_utils import find_ancestor, node_text
from dbgraph_core.analyzer.extractors.csharp_syntax import (
    CSharpInvocation,
    CSharpSyntaxTree,
    CSharpType,
    lambda_member,
    nameof_target,
    receiver_invocations,
)
from dbgraph_core.analyzer.facts import (
    BodyFact,
    EdgeFact,
    FileFacts,
    NodeFact,
    TableMatchFact,
    code_fact,
    db_object_fact,
)
from dbgraph_core.config import DbGraphConfig
from dbgraph_core.graph.store import (
    DEFAULT_SCHEMA,
    FactSource,
    NodeKind,
    Relation,
    split_object_name,
)
from dbgraph_core.pathing import canonicalize_repo_relative_path

logger = logging.getLogger(__name__)

CODE_DOMAIN = "code"

_DBSET_RE = re.compile(r"^(?:[\w.]+\.)?I?DbSet\s*<\s*([\w.]+)\s*>\??$")
_CONFIGURATION_RE = re.compile(r"^(?:[\w.]+\.)?IEntityTypeConfiguration\s*<\s*([\w.]+)\s*>$")
_ENTITY_BUILDER_RE = re.compile(r"\bEntityTypeBuilder\s*<\s*([\w.]+)\s*>")
_COLLECTION_RE = re.compile(
    r"^(?:[\w.]+\.)?(?:I?Collection|I?List|IEnumerable|I?ReadOnlyCollection|IReadOnlyList"
    r"|HashSet|I?Set|ISet)\s*<\s*(.+)\s*>$"
)
_RELATIONSHIP_METHODS = ("HasOne", "HasMany")


@dataclass
class OrmClass:
    """A class declaration as seen by the mapping extractor."""

    name: str
    full_name: str
    namespace: str
    file_path: str
    line: int
    text: str
    base_types: list[str] = field(default_factory=list)
    table: tuple[str, str] | None = None
    """(schema, table) from a ``[Table]`` attribute."""

    properties: dict[str, str] = field(default_factory=dict)
    """Property name -> declared type text."""

    is_interface: bool = False


@dataclass
class OrmDbSet:
    """A ``DbSet<T>`` property on a context class."""

    owner_full_name: str
    property_name: str
    entity_type: str
    file_path: str
    line: int


@dataclass
class OrmTableBinding:
    """A fluent ``ToTable`` call."""

    entity_type: str
    table: str
    schema: str | None
    file_path: str
    line: int


@dataclass
class OrmRelationship:
    """A fluent relationship chain ending in ``HasForeignKey``."""

    entity_type: str
    method: str
    """``HasOne`` or ``HasMany``."""

    related_type: str | None
    navigation: str | None
    dependent_type: str | None
    file_path: str
    line: int


@dataclass
class OrmFileExtraction:
    """Everything the mapping extractor found in one file."""

    file_path: str
    classes: list[OrmClass] = field(default_factory=list)
    db_sets: list[OrmDbSet] = field(default_factory=list)
    table_bindings: list[OrmTableBinding] = field(default_factory=list)
    relationships: list[OrmRelationship] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.classes or self.db_sets or self.table_bindings or self.relationships)


def scan_orm_file(
    file_path: str,
    content: str,
    *,
    tree: CSharpSyntaxTree | None = None,
) -> OrmFileExtraction:
    """Collect mapping declarations from one C# file.

    Args:
        file_path: Path relative to the model root
        content: File content
        tree: Already parsed syntax tree for ``content``

    Returns:
        Declarations in source order
    """
    relative_path = canonicalize_repo_relative_path(file_path)
    extraction = OrmFileExtraction(file_path=relative_path)
    tree = tree or CSharpSyntaxTree.parse(content, file_path)
    if tree is None:
        logger.debug("No syntax tree for %s, skipping ORM scan", relative_path)
        return extraction

    for type_decl in tree.types():
        orm_class = _orm_class(tree, type_decl, relative_path)
        extraction.classes.append(orm_class)
        for prop in tree.properties_of(type_decl):
            match = _DBSET_RE.match(prop.type_text.strip())
            if match:
                extraction.db_sets.append(
                    OrmDbSet(
                        owner_full_name=type_decl.full_name,
                        property_name=prop.name,
                        entity_type=match.group(1),
                        file_path=relative_path,
                        line=prop.line,
                    )
                )

    for invocation in tree.invocations():
        if invocation.method_name == "ToTable":
            binding = _table_binding(tree, invocation, relative_path)
            if binding is not None:
                extraction.table_bindings.append(binding)
        elif invocation.method_name == "HasForeignKey":
            relationship = _relationship(tree, invocation, relative_path)
            if relationship is not None:
                extraction.relationships.append(relationship)

    return extraction


class OrmModel:
    """Consolidates per-file declarations and resolves them into facts.

    Usage:
        model = OrmModel(config)
        for extraction in extractions:
            model.add_extraction(extraction)
        file_facts = model.to_file_facts()
    """

    def __init__(self, config: DbGraphConfig | None = None) -> None:
        self._config = config or DbGraphConfig.empty()
        self._extractions: list[OrmFileExtraction] = []
        self._classes_by_name: dict[str, list[OrmClass]] = {}
        self._bindings: dict[str, OrmTableBinding] = {}

    def add_extraction(self, extraction: OrmFileExtraction) -> None:
        """Add one file's declarations."""
        self._extractions.append(extraction)

    def to_file_facts(self) -> list[FileFacts]:
        """Resolve all collected declarations.

        Returns:
            One FileFacts per file that contributed a fact, ordered by path
        """
        self._index()
        results: dict[str, FileFacts] = {}

        def facts_for(path: str) -> FileFacts:
            if path not in results:
                results[path] = FileFacts(file_path=path, source=FactSource.ORM)
            return results[path]

        seen_entities: set[str] = set()
        for extraction in self._sorted_extractions():
            for orm_class in extraction.classes:
                if orm_class.full_name.casefold() in seen_entities:
                    continue
                if not self.is_entity(orm_class):
                    continue
                seen_entities.add(orm_class.full_name.casefold())
                self._entity_facts(orm_class, facts_for(orm_class.file_path))

            for db_set in extraction.db_sets:
                self._db_set_facts(db_set, facts_for(db_set.file_path))

            for relationship in extraction.relationships:
                edge = self._relationship_edge(relationship)
                if edge is not None:
                    facts_for(relationship.file_path).facts.append(edge)

        return [results[path] for path in sorted(results)]

    # Entities

    def is_entity(self, orm_class: OrmClass) -> bool:
        """Whether a class derives, directly or transitively, from a configured entity base."""
        if orm_class.is_interface or not self._config.entity_base_types:
            return False
        return self._derives_from_entity_base(orm_class, set())

    def _derives_from_entity_base(self, orm_class: OrmClass, visited: set[str]) -> bool:
        visited.add(orm_class.full_name.casefold())
        for base in orm_class.base_types:
            if any(base_type_matches(base, c) for c in self._config.entity_base_types):
                return True
            parent = self.find_class(base, near=orm_class.namespace)
            if parent is not None and parent.full_name.casefold() not in visited:
                if self._derives_from_entity_base(parent, visited):
                    return True
        return False

    def find_class(self, type_name: str, near: str = "") -> OrmClass | None:
        """Look a class up by (possibly qualified, possibly generic) name.

        A class in namespace ``near`` wins over equally named classes elsewhere.
        """
        clean = strip_generic(type_name)
        candidates = self._classes_by_name.get(clean.rsplit(".", 1)[-1], [])
        if not candidates:
            return None
        if "." in clean:
            for candidate in candidates:
                if candidate.full_name == clean or candidate.full_name.endswith(f".{clean}"):
                    return candidate
        for candidate in candidates:
            if candidate.namespace == near:
                return candidate
        return candidates[0]

    def _entity_facts(self, orm_class: OrmClass, out: FileFacts) -> None:
        entity = code_fact(
            orm_class.full_name,
            orm_class.name,
            NodeKind.ENTITY,
            FactSource.ORM,
            source_file=orm_class.file_path,
            domain=CODE_DOMAIN,
            line=orm_class.line,
        )
        out.facts.append(entity)
        self._mapping_facts(entity, orm_class.name, (orm_class.name, f"{orm_class.name}s"), out)
        out.bodies.append(
            BodyFact(
                key=entity.key,
                kind=NodeKind.ENTITY,
                name=orm_class.name,
                source_file=orm_class.file_path,
                text=orm_class.text,
                line=orm_class.line,
                metadata={"namespace": orm_class.namespace, "bases": orm_class.base_types},
            )
        )

    def _db_set_facts(self, db_set: OrmDbSet, out: FileFacts) -> None:
        db_set_node = code_fact(
            f"{db_set.owner_full_name}.{db_set.property_name}",
            db_set.property_name,
            NodeKind.DBSET,
            FactSource.ORM,
            source_file=db_set.file_path,
            domain=CODE_DOMAIN,
            line=db_set.line,
        )
        out.facts.append(db_set_node)
        entity_name = strip_generic(db_set.entity_type).rsplit(".", 1)[-1]
        names = (entity_name, f"{entity_name}s", db_set.property_name)
        self._mapping_facts(db_set_node, db_set.entity_type, names, out)

    def _mapping_facts(
        self, from_node: NodeFact, type_name: str, names: tuple[str, ...], out: FileFacts
    ) -> None:
        table = self.table_for(type_name)
        if table is None:
            out.facts.append(
                TableMatchFact(
                    from_node=from_node,
                    names=tuple(dict.fromkeys(names)),
                    source=FactSource.ORM,
                    source_file=from_node.source_file,
                    line=from_node.line,
                )
            )
            return
        out.facts.append(
            EdgeFact(
                from_node=from_node,
                to_node=self._table_stub(table, from_node.source_file, from_node.line),
                relation=Relation.MAPS_TO,
                source=FactSource.ORM,
                source_file=from_node.source_file,
                line=from_node.line,
                flexible_kind=True,
            )
        )

    def table_for(self, type_name: str) -> tuple[str, str] | None:
        """Explicitly mapped (schema, table) of an entity type.

        A ``[Table]`` attribute takes precedence over a fluent ``ToTable`` call.
        """
        orm_class = self.find_class(type_name)
        if orm_class is not None and orm_class.table is not None:
            return orm_class.table
        binding = self._bindings.get(_simple(type_name).casefold())
        if binding is not None:
            return split_object_name(binding.table, binding.schema or DEFAULT_SCHEMA)
        return None

    # Relationships

    def _relationship_edge(self, relationship: OrmRelationship) -> EdgeFact | None:
        related = relationship.related_type or self._navigation_type(relationship)
        if related is None:
            logger.debug(
                "Unresolved relationship target for %s in %s",
                relationship.entity_type,
                relationship.file_path,
            )
            return None

        entity = relationship.entity_type
        if relationship.dependent_type is not None:
            child = relationship.dependent_type
            parent = related if _simple(child) == _simple(entity) else entity
        elif relationship.method == "HasOne":
            child, parent = entity, related
        else:
            child, parent = related, entity

        path, line = relationship.file_path, relationship.line
        return EdgeFact(
            from_node=self._table_stub(self._table_or_convention(child), path, line),
            to_node=self._table_stub(self._table_or_convention(parent), path, line),
            relation=Relation.FOREIGN_KEY,
            source=FactSource.ORM,
            source_file=relationship.file_path,
            line=relationship.line,
        )

    def _navigation_type(self, relationship: OrmRelationship) -> str | None:
        if relationship.navigation is None:
            return None
        orm_class = self.find_class(relationship.entity_type)
        if orm_class is not None:
            type_text = orm_class.properties.get(relationship.navigation)
            if type_text is not None:
                return unwrap_collection(type_text)
        return relationship.navigation

    def _table_or_convention(self, type_name: str) -> tuple[str, str]:
        return self.table_for(type_name) or (DEFAULT_SCHEMA, _simple(type_name))

    # Helpers

    def _index(self) -> None:
        self._classes_by_name = {}
        self._bindings = {}
        for extraction in self._sorted_extractions():
            for orm_class in extraction.classes:
                self._classes_by_name.setdefault(orm_class.name, []).append(orm_class)
            for binding in extraction.table_bindings:
                self._bindings.setdefault(_simple(binding.entity_type).casefold(), binding)

    def _sorted_extractions(self) -> list[OrmFileExtraction]:
        return sorted(self._extractions, key=lambda e: e.file_path)

    @staticmethod
    def _table_stub(table: tuple[str, str], source_file: str, line: int) -> NodeFact:
        return db_object_fact(
            table[0],
            table[1],
            NodeKind.TABLE,
            FactSource.ORM,
            source_file=source_file,
            line=line,
            stub=True,
        )


def resolve_orm_facts(
    extractions: Iterable[OrmFileExtraction],
    config: DbGraphConfig | None = None,
) -> list[FileFacts]:
    """Resolve per-file ORM declarations into facts."""
    model = OrmModel(config)
    for extraction in extractions:
        model.add_extraction(extraction)
    return model.to_file_facts()


def strip_generic(type_name: str) -> str:
    """``global::A.B<int>?`` becomes ``A.B``."""
    name = type_name.strip()
    if name.startswith("global::"):
        name = name[len("global::") :]
    return name.split("<", 1)[0].rstrip("?").strip()


def base_type_matches(base: str, configured: str) -> bool:
    """Compare a written base type with a configured entity base type.

    Matches on the full name, on the simple name, or on the last dotted
    segment of either side. Generic arguments are ignored.
    """
    written = strip_generic(base)
    wanted = strip_generic(configured)
    if not written or not wanted:
        return False
    return written == wanted or _simple(written) == _simple(wanted)


def unwrap_collection(type_text: str) -> str:
    """Element type of a collection navigation (``ICollection<Order>`` gives ``Order``)."""
    text = type_text.strip().rstrip("?").strip()
    if text.endswith("[]"):
        return text[:-2].strip()
    match = _COLLECTION_RE.match(text)
    if match:
        return match.group(1).strip().rstrip("?")
    return text


def _simple(type_name: str) -> str:
    return strip_generic(type_name).rsplit(".", 1)[-1]


def _orm_class(tree: CSharpSyntaxTree, type_decl: CSharpType, relative_path: str) -> OrmClass:
    orm_class = OrmClass(
        name=type_decl.name,
        full_name=type_decl.full_name,
        namespace=type_decl.namespace,
        file_path=relative_path,
        line=type_decl.start_line,
        text=node_text(type_decl.node),
        base_types=list(type_decl.base_types),
        is_interface=type_decl.node.type == "interface_declaration",
    )
    for attribute in type_decl.attributes:
        if attribute.simple_name != "Table":
            continue
        name_argument = next((a for a in attribute.arguments if a.name is None), None)
        table = _name_value(tree, name_argument.value) if name_argument else None
        if not table:
            continue
        schema_argument = next(
            (a for a in attribute.arguments if a.name and a.name.casefold() == "schema"), None
        )
        schema = _name_value(tree, schema_argument.value) if schema_argument else None
        orm_class.table = split_object_name(table, schema or DEFAULT_SCHEMA)
        break
    for prop in tree.properties_of(type_decl):
        orm_class.properties.setdefault(prop.name, prop.type_text)
    return orm_class


def _table_binding(
    tree: CSharpSyntaxTree, invocation: CSharpInvocation, relative_path: str
) -> OrmTableBinding | None:
    entity_type = _configured_entity(tree, invocation)
    if entity_type is None:
        return None
    positional = [a for a in invocation.arguments if a.name is None]
    table = _name_value(tree, positional[0].value) if positional else None
    if not table:
        return None
    schema_argument = invocation.argument("schema")
    schema = None
    if schema_argument is not None:
        schema = _name_value(tree, schema_argument.value)
    elif len(positional) > 1:
        schema = _name_value(tree, positional[1].value)
    return OrmTableBinding(
        entity_type=entity_type,
        table=table,
        schema=schema,
        file_path=relative_path,
        line=invocation.line,
    )


def _relationship(
    tree: CSharpSyntaxTree, invocation: CSharpInvocation, relative_path: str
) -> OrmRelationship | None:
    entity_type = _configured_entity(tree, invocation)
    if entity_type is None:
        return None
    has_call = None
    for receiver in receiver_invocations(invocation.node):
        call = tree.invocation(receiver)
        if call.method_name in _RELATIONSHIP_METHODS:
            has_call = call
            break
    if has_call is None:
        return None

    related_type = has_call.type_arguments[0] if has_call.type_arguments else None
    navigation = None
    argument = has_call.first_positional
    if related_type is None and argument is not None:
        navigation = lambda_member(argument.value)
        if navigation is None:
            navigation = _name_value(tree, argument.value)
    if related_type is None and navigation is None:
        return None

    return OrmRelationship(
        entity_type=entity_type,
        method=has_call.method_name,
        related_type=related_type,
        navigation=navigation,
        dependent_type=invocation.type_arguments[0] if invocation.type_arguments else None,
        file_path=relative_path,
        line=invocation.line,
    )


def _configured_entity(tree: CSharpSyntaxTree, invocation: CSharpInvocation) -> str | None:
    """Entity type a fluent configuration call applies to.

    Tried in order: an ``Entity<T>()`` earlier in the same chain, an enclosing
    ``Entity<T>(b => ...)`` lambda, an ``EntityTypeBuilder<T>`` parameter of
    the enclosing method, and an ``IEntityTypeConfiguration<T>`` base.
    """
    for receiver in receiver_invocations(invocation.node):
        call = tree.invocation(receiver)
        if call.method_name == "Entity" and call.type_arguments:
            return call.type_arguments[0]

    current = find_ancestor(invocation.node, "invocation_expression")
    while current is not None:
        call = tree.invocation(current)
        if call.method_name == "Entity" and call.type_arguments:
            return call.type_arguments[0]
        current = find_ancestor(current, "invocation_expression")

    method = tree.enclosing_method(invocation.line)
    if method is not None:
        parameters = method.node.child_by_field_name("parameters")
        match = _ENTITY_BUILDER_RE.search(node_text(parameters))
        if match:
            return match.group(1)

    type_decl = tree.enclosing_type(invocation.node)
    if type_decl is not None:
        for base in type_decl.base_types:
            match = _CONFIGURATION_RE.match(base.strip())
            if match:
                return match.group(1)
    return None


def _name_value(tree: CSharpSyntaxTree, node: Any | None) -> str | None:
    """String constant or ``nameof`` target of an expression."""
    if node is None:
        return None
    value, _ = tree.constant_string(node)
    if value is not None:
        return value
    return nameof_target(node)
