"""Code-first migration extraction.

Detects migration classes (FluentMigrator style ``Create.Table(...)`` as well
as EF Core ``migrationBuilder.CreateTable(...)``) and turns the invocations
of their forward method into typed operations. Each invocation's member-access
chain is flattened into tokens (``Create.Table`` becomes ``["Create",
"Table"]``) and matched against the known shapes; anything else is skipped.

Schema operations map to SchemaChange edges, data seeding to DataChange
edges. Raw SQL is kept on the migration body only. Operations of the reverse
method are recorded but never produce edges.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from dbgraph_core.analyzer.extractors.ast_utils import (
    find_ancestor,
    first_child,
    node_text,
    walk,
)
from dbgraph_core.analyzer.extractors.csharp_syntax import (
    CSharpInvocation,
    CSharpMethod,
    CSharpSyntaxTree,
    CSharpType,
    declarator_name,
    declarator_value,
    following_invocations,
    nameof_target,
    receiver_invocations,
)
from dbgraph_core.analyzer.facts import (
    BodyFact,
    EdgeFact,
    FileFacts,
    NodeFact,
    code_fact,
    db_object_fact,
)
from dbgraph_core.config import DbGraphConfig
from dbgraph_core.exceptions import check_cancelled
from dbgraph_core.graph.store import DEFAULT_SCHEMA, FactSource, NodeKind, Relation
from dbgraph_core.pathing import canonicalize_repo_relative_path

logger = logging.getLogger(__name__)

CODE_DOMAIN = "code"
DOWN_METHOD = "Down"

_DATA_METHODS = frozenset(
    {
        "InsertEntity",
        "InsertEntities",
        "UpdateEntity",
        "UpdateEntities",
        "DeleteEntity",
        "DeleteEntities",
    }
)
_SEED_DATA_METHODS = ("InsertData", "UpdateData", "DeleteData")
_COLUMN_OPERATIONS = ("AddColumn", "DropColumn", "RenameColumn")
_FOREIGN_KEY_OPERATIONS = ("AddForeignKey", "DropForeignKey")


class MigrationOperationKind(Enum):
    """Coarse kinds of migration operations."""

    TOUCH_TABLE = "TouchTable"
    CREATE_TABLE = "CreateTable"
    DROP_TABLE = "DropTable"
    CREATE_INDEX = "CreateIndex"
    DROP_INDEX = "DropIndex"
    RAW_SQL = "RawSql"
    DATA_CHANGE = "DataChange"

    @property
    def relation(self) -> Relation | None:
        """Edge relation produced by this kind, if any."""
        if self == MigrationOperationKind.DATA_CHANGE:
            return Relation.DATA_CHANGE
        if self == MigrationOperationKind.RAW_SQL:
            return None
        return Relation.SCHEMA_CHANGE


@dataclass
class MigrationOperation:
    """One recognized operation of a migration method."""

    kind: MigrationOperationKind
    operation: str
    """Canonical operation name, e.g. ``CreateTable`` or ``AddColumn``."""

    table: str | None = None
    schema: str | None = None
    index: str | None = None
    column: str | None = None
    new_column: str | None = None
    foreign_key: str | None = None
    principal_table: str | None = None
    principal_schema: str | None = None
    raw: str = ""
    line: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, leaving out empty fields."""
        data: dict[str, Any] = {"kind": self.kind.value, "operation": self.operation}
        for name in (
            "table",
            "schema",
            "index",
            "column",
            "new_column",
            "foreign_key",
            "principal_table",
            "principal_schema",
        ):
            value = getattr(self, name)
            if value:
                data[name] = value
        data["line"] = self.line
        return data


@dataclass
class MigrationAttribute:
    """A migration marker attribute with its argument values."""

    name: str
    values: list[str] = field(default_factory=list)


@dataclass
class MigrationInfo:
    """A migration class and the operations found in it."""

    class_name: str
    namespace: str
    type_full_name: str
    file_path: str
    line: int
    attributes: list[MigrationAttribute] = field(default_factory=list)
    up_operations: list[MigrationOperation] = field(default_factory=list)
    down_operations: list[MigrationOperation] = field(default_factory=list)
    up_body: str = ""

    @property
    def raw_sql(self) -> list[str]:
        return [
            op.raw for op in self.up_operations if op.kind == MigrationOperationKind.RAW_SQL
        ]

    def summary(self) -> dict[str, list[str]]:
        """What the forward method does, grouped by effect."""
        result: dict[str, list[str]] = {
            "createsTables": [],
            "dropsTables": [],
            "addsColumns": [],
            "dropsColumns": [],
            "renamesColumns": [],
            "addsForeignKeys": [],
            "dropsForeignKeys": [],
        }
        for op in self.up_operations:
            table = op.table or "?"
            if op.kind == MigrationOperationKind.CREATE_TABLE and op.table:
                result["createsTables"].append(op.table)
            elif op.kind == MigrationOperationKind.DROP_TABLE and op.table:
                result["dropsTables"].append(op.table)
            elif op.operation == "AddColumn":
                result["addsColumns"].append(f"{table}.{op.column or '?'}")
            elif op.operation == "DropColumn":
                result["dropsColumns"].append(f"{table}.{op.column or '?'}")
            elif op.operation == "RenameColumn":
                result["renamesColumns"].append(
                    f"{table}.{op.column or '?'}->{op.new_column or '?'}"
                )
            elif op.operation in ("AddForeignKey", "CreateForeignKey"):
                result["addsForeignKeys"].append(
                    op.foreign_key or f"{table}->{op.principal_table or '?'}"
                )
            elif op.operation == "DropForeignKey":
                result["dropsForeignKeys"].append(op.foreign_key or table)
        return {name: list(dict.fromkeys(values)) for name, values in result.items()}


def is_migration_class(type_decl: CSharpType, config: DbGraphConfig | None = None) -> bool:
    """Whether a type is a migration: by base-type suffix or by marker attribute."""
    config = config or DbGraphConfig.empty()
    if type_decl.node.type != "class_declaration":
        return False
    for base in type_decl.base_types:
        name = base.split("<", 1)[0].strip()
        if any(name.endswith(suffix) for suffix in config.migration_base_suffixes if suffix):
            return True
    return any(
        _is_marker(attribute.name, config) for attribute in type_decl.attributes
    )


def analyze_migrations(
    file_path: str,
    content: str,
    config: DbGraphConfig | None = None,
    *,
    tree: CSharpSyntaxTree | None = None,
    cancel_event: threading.Event | None = None,
) -> list[MigrationInfo]:
    """Find migration classes in one C# file and extract their operations.

    Args:
        file_path: Path relative to the migrations root
        content: File content
        config: Detection configuration (base suffixes, markers, forward methods)
        tree: Already parsed syntax tree for ``content``
        cancel_event: Checked before each class

    Returns:
        Migrations in source order

    Raises:
        BuildCancelledError: If ``cancel_event`` is set
    """
    config = config or DbGraphConfig.empty()
    relative_path = canonicalize_repo_relative_path(file_path)
    tree = tree or CSharpSyntaxTree.parse(content, file_path)
    if tree is None:
        logger.debug("No syntax tree for %s, skipping migration scan", relative_path)
        return []

    migrations: list[MigrationInfo] = []
    for type_decl in tree.types():
        check_cancelled(cancel_event, "migration extraction")
        if not is_migration_class(type_decl, config):
            continue
        migrations.append(_analyze_class(tree, type_decl, relative_path, config))
    return migrations


def extract_migration_facts(
    file_path: str,
    content: str,
    config: DbGraphConfig | None = None,
    *,
    tree: CSharpSyntaxTree | None = None,
    cancel_event: threading.Event | None = None,
) -> FileFacts:
    """Extract MIGRATION nodes and their SchemaChange/DataChange/ForeignKey edges."""
    relative_path = canonicalize_repo_relative_path(file_path)
    result = FileFacts(file_path=relative_path, source=FactSource.MIGRATION)

    for migration in analyze_migrations(
        relative_path, content, config, tree=tree, cancel_event=cancel_event
    ):
        node = code_fact(
            migration.type_full_name,
            migration.class_name,
            NodeKind.MIGRATION,
            FactSource.MIGRATION,
            source_file=relative_path,
            domain=CODE_DOMAIN,
            line=migration.line,
        )
        result.facts.append(node)

        for op in migration.up_operations:
            relation = op.kind.relation
            if relation is None or not op.table:
                continue
            table = _table_fact(op.schema, op.table, relative_path, op.line)
            result.facts.append(
                EdgeFact(
                    from_node=node,
                    to_node=table,
                    relation=relation,
                    source=FactSource.MIGRATION,
                    source_file=relative_path,
                    line=op.line,
                )
            )
            if op.principal_table and op.operation in ("AddForeignKey", "CreateForeignKey"):
                result.facts.append(
                    EdgeFact(
                        from_node=table,
                        to_node=_table_fact(
                            op.principal_schema, op.principal_table, relative_path, op.line
                        ),
                        relation=Relation.FOREIGN_KEY,
                        source=FactSource.MIGRATION,
                        source_file=relative_path,
                        line=op.line,
                    )
                )

        result.bodies.append(
            BodyFact(
                key=node.key,
                kind=NodeKind.MIGRATION,
                name=migration.class_name,
                source_file=relative_path,
                text=migration.up_body,
                line=migration.line,
                metadata={
                    "namespace": migration.namespace,
                    "attributes": [
                        {"name": a.name, "values": a.values} for a in migration.attributes
                    ],
                    "operations": [op.to_dict() for op in migration.up_operations],
                    "down_operations": [op.to_dict() for op in migration.down_operations],
                    "raw_sql": migration.raw_sql,
                    "summary": migration.summary(),
                },
            )
        )

    return result


def _table_fact(schema: str | None, table: str, relative_path: str, line: int) -> NodeFact:
    return db_object_fact(
        schema or DEFAULT_SCHEMA,
        table,
        NodeKind.TABLE,
        FactSource.MIGRATION,
        source_file=relative_path,
        line=line,
        stub=True,
    )


def _is_marker(attribute_name: str, config: DbGraphConfig) -> bool:
    lowered = attribute_name.casefold()
    return any(m.casefold() in lowered for m in config.migration_attribute_markers if m)


def _analyze_class(
    tree: CSharpSyntaxTree,
    type_decl: CSharpType,
    relative_path: str,
    config: DbGraphConfig,
) -> MigrationInfo:
    migration = MigrationInfo(
        class_name=type_decl.name,
        namespace=type_decl.namespace,
        type_full_name=type_decl.full_name,
        file_path=relative_path,
        line=type_decl.start_line,
    )
    for attribute in type_decl.attributes:
        if not _is_marker(attribute.name, config):
            continue
        values = []
        for argument in attribute.arguments:
            value, _ = tree.constant_string(argument.value)
            values.append(value if value is not None else argument.text)
        migration.attributes.append(MigrationAttribute(name=attribute.name, values=values))

    up_methods = set(config.migration_up_methods)
    for method in tree.methods_of(type_decl):
        if method.name in up_methods:
            migration.up_operations.extend(_method_operations(tree, method))
            if not migration.up_body:
                migration.up_body = node_text(method.node)
        elif method.name == DOWN_METHOD:
            migration.down_operations.extend(_method_operations(tree, method))
    return migration


def _method_operations(tree: CSharpSyntaxTree, method: CSharpMethod) -> list[MigrationOperation]:
    if method.body is None:
        return []
    symbols = _symbol_table(tree, method.body)
    operations: list[MigrationOperation] = []
    for invocation in tree.invocations(method.body):
        op = _parse_operation(tree, invocation, symbols)
        if op is not None:
            operations.append(op)
    return operations


def _symbol_table(tree: CSharpSyntaxTree, scope: Any) -> dict[str, str]:
    """Local names bound to a resolvable table name, in declaration order."""
    symbols: dict[str, str] = {}
    for node in walk(scope):
        if node.type != "variable_declarator":
            continue
        value = _name_value(tree, declarator_value(node), symbols)
        if value is not None:
            symbols[declarator_name(node)] = value
    return symbols


def _name_value(tree: CSharpSyntaxTree, node: Any | None, symbols: dict[str, str]) -> str | None:
    """Resolve a literal, a ``nameof`` expression or a local alias of either."""
    if node is None:
        return None
    if node.type == "identifier" and node_text(node) in symbols:
        return symbols[node_text(node)]
    value, _ = tree.constant_string(node)
    if value is not None:
        return value
    return nameof_target(node)


def _parse_operation(
    tree: CSharpSyntaxTree, invocation: CSharpInvocation, symbols: dict[str, str]
) -> MigrationOperation | None:
    chain = invocation.chain
    if not chain:
        return None
    head = chain[0]
    last = chain[-1]
    second = chain[1] if len(chain) > 1 else ""

    def named(*names: str) -> str | None:
        argument = invocation.argument(*names)
        return _name_value(tree, argument.value, symbols) if argument is not None else None

    def first() -> str | None:
        argument = invocation.first_positional
        return _name_value(tree, argument.value, symbols) if argument is not None else None

    def op(kind: MigrationOperationKind, operation: str, **values: Any) -> MigrationOperation:
        return MigrationOperation(
            kind=kind,
            operation=operation,
            raw=node_text(invocation.node),
            line=invocation.line,
            **values,
        )

    # FluentMigrator: Create.* / Delete.* / Schema.Table / Alter.Table
    if head in ("Create", "Delete") and len(chain) == 2:
        creating = head == "Create"
        table_kind = (
            MigrationOperationKind.CREATE_TABLE if creating else MigrationOperationKind.DROP_TABLE
        )
        if second == "Table":
            return op(
                table_kind,
                table_kind.value,
                table=first(),
                schema=_chained_argument(tree, invocation, "InSchema", symbols),
            )
        if second == "TableFor" and invocation.type_arguments:
            table = _short_type_name(invocation.type_arguments[0])
            return op(table_kind, table_kind.value, table=table)
        if second == "Index":
            kind = MigrationOperationKind.DROP_INDEX
            if creating:
                kind = MigrationOperationKind.CREATE_INDEX
            return op(
                kind,
                kind.value,
                index=first(),
                table=_chained_argument(tree, invocation, "OnTable", symbols),
            )
        if second == "ForeignKey":
            from_table = _chained_argument(tree, invocation, "FromTable", symbols)
            if creating:
                return op(
                    MigrationOperationKind.TOUCH_TABLE,
                    "CreateForeignKey",
                    foreign_key=first(),
                    table=from_table,
                    principal_table=_chained_argument(tree, invocation, "ToTable", symbols),
                )
            return op(
                MigrationOperationKind.TOUCH_TABLE,
                "DropForeignKey",
                foreign_key=first(),
                table=from_table or _chained_argument(tree, invocation, "OnTable", symbols),
            )
    if head in ("Schema", "Alter") and second == "Table" and len(chain) == 2:
        return op(MigrationOperationKind.TOUCH_TABLE, "TouchTable", table=first())
    if second == "Column" and len(chain) == 2 and head in ("Create", "Delete", "Rename"):
        operation = {"Create": "AddColumn", "Delete": "DropColumn", "Rename": "RenameColumn"}[head]
        table_call = "FromTable" if head == "Delete" else "OnTable"
        return op(
            MigrationOperationKind.TOUCH_TABLE,
            operation,
            table=_chained_argument(tree, invocation, table_call, symbols),
            column=first(),
            new_column=(
                _chained_argument(tree, invocation, "To", symbols) if head == "Rename" else None
            ),
        )

    # EF Core MigrationBuilder
    if last == "CreateTable":
        return op(
            MigrationOperationKind.CREATE_TABLE,
            "CreateTable",
            table=named("name") or first(),
            schema=named("schema"),
        )
    if last == "DropTable":
        return op(
            MigrationOperationKind.DROP_TABLE,
            "DropTable",
            table=named("name") or first(),
            schema=named("schema"),
        )
    if last in _COLUMN_OPERATIONS:
        # Alter.Table("T").AddColumn("C") names the table on the receiver
        return op(
            MigrationOperationKind.TOUCH_TABLE,
            last,
            table=named("table") or _receiver_table(tree, invocation, symbols),
            schema=named("schema"),
            column=named("name") or first(),
            new_column=named("newName", "newColumnName") if last == "RenameColumn" else None,
        )
    if last in _FOREIGN_KEY_OPERATIONS:
        return op(
            MigrationOperationKind.TOUCH_TABLE,
            last,
            table=named("table"),
            schema=named("schema"),
            foreign_key=named("name"),
            principal_table=named("principalTable"),
            principal_schema=named("principalSchema"),
        )
    if last == "ForeignKey" and invocation.argument("principalTable") is not None:
        # table.ForeignKey(...) inside a CreateTable constraints lambda
        owner = _enclosing_create_table(tree, invocation, symbols)
        if owner is None:
            return None
        return op(
            MigrationOperationKind.TOUCH_TABLE,
            "AddForeignKey",
            table=owner[0],
            schema=owner[1],
            foreign_key=named("name"),
            principal_table=named("principalTable"),
            principal_schema=named("principalSchema"),
        )

    # Data seeding
    if last in _SEED_DATA_METHODS:
        return op(
            MigrationOperationKind.DATA_CHANGE,
            last,
            table=named("table") or first(),
            schema=named("schema"),
        )
    if last in _DATA_METHODS:
        argument = invocation.first_positional
        entity = _constructed_type(argument.value) if argument is not None else None
        if entity:
            return op(MigrationOperationKind.DATA_CHANGE, last, table=entity)
        return None

    if last == "Sql":
        argument = invocation.first_positional
        if argument is None:
            return op(MigrationOperationKind.RAW_SQL, "RawSql")
        value, _ = tree.constant_string(argument.value)
        migration_op = op(MigrationOperationKind.RAW_SQL, "RawSql")
        migration_op.raw = value if value is not None else argument.text
        return migration_op

    return None


def _chained_argument(
    tree: CSharpSyntaxTree, invocation: CSharpInvocation, method_name: str, symbols: dict[str, str]
) -> str | None:
    """First argument of a later call named ``method_name`` in the same fluent chain."""
    for node in following_invocations(invocation.node):
        call = tree.invocation(node)
        if call.method_name != method_name:
            continue
        argument = call.first_positional
        if argument is not None:
            return _name_value(tree, argument.value, symbols)
    return None


def _receiver_table(
    tree: CSharpSyntaxTree, invocation: CSharpInvocation, symbols: dict[str, str]
) -> str | None:
    for node in receiver_invocations(invocation.node):
        call = tree.invocation(node)
        if call.chain[-2:] == ["Alter", "Table"] or call.chain[-2:] == ["Schema", "Table"]:
            argument = call.first_positional
            return _name_value(tree, argument.value, symbols) if argument is not None else None
    return None


def _enclosing_create_table(
    tree: CSharpSyntaxTree, invocation: CSharpInvocation, symbols: dict[str, str]
) -> tuple[str | None, str | None] | None:
    current = find_ancestor(invocation.node, "invocation_expression")
    while current is not None:
        call = tree.invocation(current)
        if call.method_name == "CreateTable":
            table = call.argument("name") or call.first_positional
            schema = call.argument("schema")
            table_name = _name_value(tree, table.value, symbols) if table is not None else None
            schema_name = _name_value(tree, schema.value, symbols) if schema is not None else None
            return table_name, schema_name
        current = find_ancestor(current, "invocation_expression")
    return None


def _constructed_type(node: Any | None) -> str | None:
    """Short type name of ``new T {..}``, ``new T[] {..}`` or ``new[] { new T {..} }``."""
    if node is None:
        return None
    if node.type == "object_creation_expression":
        type_node = node.child_by_field_name("type")
        return _short_type_name(node_text(type_node)) if type_node is not None else None
    if node.type in ("array_creation_expression", "implicit_array_creation_expression"):
        initializer = first_child(node, "initializer_expression")
        if initializer is not None and initializer.named_children:
            return _constructed_type(initializer.named_children[0])
        return None
    if node.type == "identifier":
        return node_text(node)
    return None


def _short_type_name(type_name: str) -> str:
    return type_name.split("<", 1)[0].strip().rsplit(".", 1)[-1]
