"""Relational statement parser built on sqlglot (T-SQL dialect).

Given SQL-like text, reports:
- object definitions (CREATE / ALTER / CREATE OR ALTER headers)
- schema-qualified object references with read/write/execute intent
- foreign keys, table-level and column-level, as child -> parent pairs

Malformed input never raises. A piece sqlglot cannot parse (or only
understands as an opaque command) is scanned with regular expressions instead,
and the parse error is reported in ``StatementParse.errors``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from dbgraph_core.graph.store import DEFAULT_SCHEMA, NodeKind, Relation, split_object_name

logger = logging.getLogger(__name__)

DIALECT = "tsql"

_NAME = r"(?:\[[^\]]+\]|\"[^\"]+\"|[\w#@$]+)"
_QUALIFIED_NAME = rf"{_NAME}(?:\s*\.\s*{_NAME}){{0,3}}"
_NAME_END = r"(?![\w$#@\]]|\s*\.)"

SQLCMD_LINE_RE = re.compile(
    r"^[ \t]*:(?:r|setvar|connect|on\s+error\s+exit)\b.*$", re.IGNORECASE | re.MULTILINE
)
SQLCMD_VARIABLE_RE = re.compile(r"\$\([^)]*\)")
GO_LINE_RE = re.compile(
    r"^[ \t]*GO(?:[ \t]+\d+)?[ \t]*(?:--[^\r\n]*)?\r?$", re.IGNORECASE | re.MULTILINE
)

DEFINITION_RE = re.compile(
    r"\b(?:CREATE(?:\s+OR\s+ALTER)?|ALTER)\s+"
    r"(TABLE|VIEW|PROC(?:EDURE)?|FUNCTION|TRIGGER|TYPE|SEQUENCE|SYNONYM)\s+"
    rf"({_QUALIFIED_NAME}){_NAME_END}",
    re.IGNORECASE,
)
TRIGGER_TARGET_RE = re.compile(rf"\s+ON\s+({_QUALIFIED_NAME})", re.IGNORECASE)
SYNONYM_TARGET_RE = re.compile(rf"\s+FOR\s+({_QUALIFIED_NAME})", re.IGNORECASE)
ROUTINE_HEADER_RE = re.compile(
    r"^\s*(?:CREATE(?:\s+OR\s+ALTER)?|ALTER)\s+(?:VIEW|PROC(?:EDURE)?|FUNCTION|TRIGGER)\b",
    re.IGNORECASE,
)

REFERENCE_RE = re.compile(
    r"\b(DELETE(?:\s+FROM)?|FROM|JOIN|INTO|UPDATE|USING|MERGE(?:\s+INTO)?)\s+"
    rf"({_QUALIFIED_NAME}){_NAME_END}",
    re.IGNORECASE,
)
EXEC_RE = re.compile(
    r"\bEXEC(?:UTE)?\s+(?:@\w+\s*=\s*)?"
    rf"((?:\[[^\]]+\]|[\w$]+)(?:\s*\.\s*{_NAME}){{0,3}}){_NAME_END}",
    re.IGNORECASE,
)
FOREIGN_KEY_RE = re.compile(
    r"(?:\bFOREIGN\s+KEY\s*\(([^)]*)\)\s*)?\bREFERENCES\s+"
    rf"({_QUALIFIED_NAME})\s*(?:\(([^)]*)\))?",
    re.IGNORECASE,
)
TABLE_ALIAS_RE = re.compile(
    rf"\b(?:FROM|JOIN)\s+{_QUALIFIED_NAME}\s+(?:AS\s+)?([A-Za-z_]\w*)", re.IGNORECASE
)

_KIND_BY_KEYWORD = {
    "TABLE": NodeKind.TABLE,
    "VIEW": NodeKind.VIEW,
    "PROC": NodeKind.PROC,
    "PROCEDURE": NodeKind.PROC,
    "FUNCTION": NodeKind.FUNC,
    "TRIGGER": NodeKind.TRIGGER,
    "TYPE": NodeKind.TYPE,
    "SEQUENCE": NodeKind.SEQUENCE,
    "SYNONYM": NodeKind.SYNONYM,
}
_WRITE_KEYWORDS = frozenset({"INTO", "UPDATE", "MERGE", "MERGE INTO", "DELETE", "DELETE FROM"})

# Words the regex scan can capture after FROM/INTO/UPDATE that never name an object
_NOT_OBJECT_NAMES = frozenset(
    {
        "select",
        "where",
        "set",
        "values",
        "statistics",
        "output",
        "openjson",
        "openquery",
        "inserted",
        "deleted",
        "from",
        "into",
        "as",
    }
)
_SKIPPED_EXEC_TARGETS = frozenset({"sp_executesql", "as"})


@dataclass(frozen=True)
class SqlDefinition:
    """An object created or altered by a statement."""

    kind: NodeKind
    schema: str
    name: str
    position: int = 0
    target: tuple[str, str] | None = None
    """(schema, name) of the table a trigger is ON or the object a synonym stands FOR."""


@dataclass(frozen=True)
class SqlReference:
    """A schema-qualified object referenced by a statement."""

    schema: str
    name: str
    relation: Relation
    kind: NodeKind = NodeKind.TABLE
    position: int = 0


@dataclass(frozen=True)
class SqlForeignKey:
    """A foreign key directed child (referencing) -> parent (referenced)."""

    child: tuple[str, str]
    parent: tuple[str, str]
    columns: tuple[str, ...] = ()
    parent_columns: tuple[str, ...] = ()


@dataclass
class ParsedStatement:
    """Parse result for one statement piece."""

    text: str
    definitions: list[SqlDefinition] = field(default_factory=list)
    references: list[SqlReference] = field(default_factory=list)
    foreign_keys: list[SqlForeignKey] = field(default_factory=list)
    structured: bool = False
    """True when sqlglot produced the references, False for the regex scan."""


@dataclass
class StatementParse:
    """Parse result for a piece of SQL text (a batch or an inline snippet)."""

    statements: list[ParsedStatement] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def definitions(self) -> list[SqlDefinition]:
        return [d for s in self.statements for d in s.definitions]

    @property
    def references(self) -> list[SqlReference]:
        """References of all statements, first occurrence per (schema, name, relation)."""
        seen: dict[tuple[str, str, Relation], SqlReference] = {}
        for statement in self.statements:
            for ref in statement.references:
                seen.setdefault((ref.schema.casefold(), ref.name.casefold(), ref.relation), ref)
        return list(seen.values())

    @property
    def foreign_keys(self) -> list[SqlForeignKey]:
        return [fk for s in self.statements for fk in s.foreign_keys]


@dataclass(frozen=True)
class SqlBatch:
    """One GO-delimited batch of a script."""

    index: int
    text: str
    start_line: int


def preprocess_script(text: str) -> str:
    """Blank sqlcmd directives and replace ``$(Var)`` placeholders with ``0``."""
    text = SQLCMD_LINE_RE.sub("", text)
    return SQLCMD_VARIABLE_RE.sub("0", text)


def split_batches(text: str) -> list[SqlBatch]:
    """Split a script into batches on lines consisting of ``GO``.

    Empty batches are dropped; indices count the kept batches.
    """
    batches: list[SqlBatch] = []
    start = 0
    line = 1
    for match in GO_LINE_RE.finditer(text):
        chunk = text[start : match.start()]
        if chunk.strip():
            batches.append(SqlBatch(index=len(batches), text=chunk, start_line=line))
        end = match.end()
        if text.startswith("\n", end):
            end += 1
        line += text.count("\n", start, end)
        start = end
    tail = text[start:]
    if tail.strip():
        batches.append(SqlBatch(index=len(batches), text=tail, start_line=line))
    return batches


def parse_sql(text: str) -> StatementParse:
    """Parse SQL text into definitions, references and foreign keys.

    Routine bodies (views, procedures, functions, triggers) stay in one
    piece; other text is split into statements on top-level semicolons.

    Args:
        text: SQL text without GO separators

    Returns:
        StatementParse; never raises for malformed input
    """
    result = StatementParse()
    masked = mask_comments_and_strings(text)
    if ROUTINE_HEADER_RE.match(masked):
        spans = [(0, len(text))]
    else:
        spans = _statement_spans(masked)

    for start, end in spans:
        piece = text[start:end]
        piece_masked = masked[start:end]
        if not piece_masked.strip():
            continue
        result.statements.append(_parse_piece(piece, piece_masked, result.errors))
    return result


def _parse_piece(piece: str, masked: str, errors: list[str]) -> ParsedStatement:
    statement = ParsedStatement(text=piece.strip())
    statement.definitions = _scan_definitions(masked)
    exec_refs = _scan_exec(masked)

    structured: tuple[list[SqlReference], list[SqlForeignKey]] | None = None
    try:
        expressions = sqlglot.parse(piece, read=DIALECT)
        if not any(isinstance(e, exp.Command) for e in expressions):
            exec_names = {(r.schema.casefold(), r.name.casefold()) for r in exec_refs}
            structured = _references_from_ast(expressions, exec_names)
    except SqlglotError as e:
        errors.append(str(e).splitlines()[0] if str(e) else type(e).__name__)
        logger.debug("sqlglot could not parse statement: %s", e)
    except RecursionError:
        errors.append("statement nesting too deep for the structured parser")
        logger.warning("Statement nesting too deep, falling back to the text scanner")

    if structured is not None:
        references, foreign_keys = structured
        statement.structured = True
    else:
        references = _scan_references(masked)
        foreign_keys = _scan_foreign_keys(masked, statement.definitions)

    statement.references = _dedupe_references([*references, *exec_refs], statement.definitions)
    statement.foreign_keys = foreign_keys
    return statement


def mask_comments_and_strings(text: str) -> str:
    """Blank out comments and string literal contents, keeping offsets and newlines."""
    out = list(text)
    i = 0
    length = len(text)
    while i < length:
        char = text[i]
        nxt = text[i + 1] if i + 1 < length else ""
        if char == "-" and nxt == "-":
            end = text.find("\n", i)
            end = length if end == -1 else end
            _blank(out, i, end)
            i = end
        elif char == "/" and nxt == "*":
            end = text.find("*/", i + 2)
            end = length if end == -1 else end + 2
            _blank(out, i, end)
            i = end
        elif char == "'":
            j = i + 1
            while j < length:
                if text[j] == "'":
                    if j + 1 < length and text[j + 1] == "'":
                        j += 2
                        continue
                    break
                j += 1
            _blank(out, i + 1, j)
            i = j + 1
        else:
            i += 1
    return "".join(out)


def _blank(out: list[str], start: int, end: int) -> None:
    for k in range(start, min(end, len(out))):
        if out[k] != "\n":
            out[k] = " "


def _statement_spans(masked: str) -> list[tuple[int, int]]:
    """Split on semicolons outside parentheses and brackets."""
    spans: list[tuple[int, int]] = []
    depth = 0
    in_bracket = False
    start = 0
    for i, char in enumerate(masked):
        if in_bracket:
            if char == "]":
                in_bracket = False
        elif char == "[":
            in_bracket = True
        elif char == "(":
            depth += 1
        elif char == ")" and depth > 0:
            depth -= 1
        elif char == ";" and depth == 0:
            spans.append((start, i))
            start = i + 1
    spans.append((start, len(masked)))
    return spans


def _object_name(raw: str) -> tuple[str, str] | None:
    schema, name = split_object_name(raw)
    if not name or name[0] in "#@":
        return None
    return schema, name


def _scan_definitions(masked: str) -> list[SqlDefinition]:
    definitions: list[SqlDefinition] = []
    for match in DEFINITION_RE.finditer(masked):
        resolved = _object_name(match.group(2))
        if resolved is None:
            continue
        kind = _KIND_BY_KEYWORD[match.group(1).upper()]
        target = None
        target_re = {NodeKind.TRIGGER: TRIGGER_TARGET_RE, NodeKind.SYNONYM: SYNONYM_TARGET_RE}
        if kind in target_re:
            target_match = target_re[kind].match(masked, match.end())
            if target_match:
                target = _object_name(target_match.group(1))
        definitions.append(
            SqlDefinition(
                kind=kind,
                schema=resolved[0],
                name=resolved[1],
                position=match.start(),
                target=target,
            )
        )
    return definitions


def _scan_exec(masked: str) -> list[SqlReference]:
    references: list[SqlReference] = []
    for match in EXEC_RE.finditer(masked):
        resolved = _object_name(match.group(1))
        if resolved is None or resolved[1].casefold() in _SKIPPED_EXEC_TARGETS:
            continue
        references.append(
            SqlReference(
                schema=resolved[0],
                name=resolved[1],
                relation=Relation.EXECUTES,
                kind=NodeKind.PROC,
                position=match.start(),
            )
        )
    return references


def _scan_references(masked: str) -> list[SqlReference]:
    aliases = {m.group(1).casefold() for m in TABLE_ALIAS_RE.finditer(masked)}
    references: list[SqlReference] = []
    for match in REFERENCE_RE.finditer(masked):
        raw = match.group(2)
        resolved = _object_name(raw)
        if resolved is None or resolved[1].casefold() in _NOT_OBJECT_NAMES:
            continue
        if "." not in raw and resolved[1].casefold() in aliases:
            continue
        keyword = " ".join(match.group(1).upper().split())
        relation = Relation.WRITES_TO if keyword in _WRITE_KEYWORDS else Relation.READS_FROM
        references.append(
            SqlReference(
                schema=resolved[0],
                name=resolved[1],
                relation=relation,
                position=match.start(),
            )
        )
    return references


def _scan_foreign_keys(masked: str, definitions: list[SqlDefinition]) -> list[SqlForeignKey]:
    tables = [d for d in definitions if d.kind == NodeKind.TABLE]
    foreign_keys: list[SqlForeignKey] = []
    for match in FOREIGN_KEY_RE.finditer(masked):
        owner = None
        for table in tables:
            if table.position < match.start():
                owner = table
        parent = _object_name(match.group(2))
        if owner is None or parent is None:
            continue
        foreign_keys.append(
            SqlForeignKey(
                child=(owner.schema, owner.name),
                parent=parent,
                columns=_split_columns(match.group(1)),
                parent_columns=_split_columns(match.group(3)),
            )
        )
    return foreign_keys


def _split_columns(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    parts = (split_object_name(col)[1] for col in raw.split(","))
    return tuple(p for p in parts if p)


def _dedupe_references(
    references: list[SqlReference], definitions: list[SqlDefinition]
) -> list[SqlReference]:
    defined = {(d.schema.casefold(), d.name.casefold()) for d in definitions}
    seen: set[tuple[str, str, Relation]] = set()
    result: list[SqlReference] = []
    for ref in sorted(references, key=lambda r: r.position):
        identity = (ref.schema.casefold(), ref.name.casefold(), ref.relation)
        if identity in seen:
            continue
        # A table read by its own DDL (ALTER TABLE t ... FROM) is not a dependency
        if (identity[0], identity[1]) in defined and ref.relation == Relation.READS_FROM:
            continue
        seen.add(identity)
        result.append(ref)
    return result


def _table_parts(table: exp.Table) -> tuple[str, str] | None:
    name = table.name
    if not name or name[0] in "#@":
        return None
    return (table.db or DEFAULT_SCHEMA), name


def _statement_target(node: exp.Expression | None) -> exp.Table | None:
    """The table a CREATE/ALTER/INSERT/UPDATE/DELETE/MERGE statement acts on."""
    if node is None:
        return None
    target = node.this
    if isinstance(target, exp.Schema):
        target = target.this
    return target if isinstance(target, exp.Table) else None


def _references_from_ast(
    expressions: list[exp.Expression | None], exec_names: set[tuple[str, str]]
) -> tuple[list[SqlReference], list[SqlForeignKey]]:
    references: list[SqlReference] = []
    foreign_keys: list[SqlForeignKey] = []
    position = 0

    for expression in expressions:
        if expression is None:
            continue
        cte_names = {cte.alias_or_name.casefold() for cte in expression.find_all(exp.CTE)}
        aliases = {
            t.alias.casefold() for t in expression.find_all(exp.Table) if t.alias
        }
        excluded: set[int] = set()
        write_targets: set[int] = set()

        for statement in expression.find_all(exp.Create, exp.Alter):
            target = _statement_target(statement)
            if target is not None:
                excluded.add(id(target))
        for statement in expression.find_all(exp.Insert, exp.Update, exp.Delete, exp.Merge):
            target = _statement_target(statement)
            if target is not None:
                write_targets.add(id(target))

        for reference in expression.find_all(exp.Reference):
            parent_table = reference.find(exp.Table)
            if parent_table is None:
                continue
            excluded.add(id(parent_table))
            owner = _statement_target(reference.find_ancestor(exp.Create, exp.Alter))
            child = _table_parts(owner) if owner is not None else None
            parent = _table_parts(parent_table)
            if child is None or parent is None:
                continue
            foreign_key = reference.find_ancestor(exp.ForeignKey)
            if foreign_key is not None:
                columns = tuple(e.name for e in foreign_key.expressions if e.name)
            else:
                column_def = reference.find_ancestor(exp.ColumnDef)
                columns = (column_def.name,) if column_def is not None else ()
            parent_columns: tuple[str, ...] = ()
            if isinstance(reference.this, exp.Schema):
                parent_columns = tuple(e.name for e in reference.this.expressions if e.name)
            foreign_keys.append(
                SqlForeignKey(
                    child=child,
                    parent=parent,
                    columns=columns,
                    parent_columns=parent_columns,
                )
            )

        for table in expression.find_all(exp.Table):
            if id(table) in excluded:
                continue
            parts = _table_parts(table)
            if parts is None:
                continue
            folded = (parts[0].casefold(), parts[1].casefold())
            if not table.db and (folded[1] in cte_names or folded[1] in aliases):
                continue
            if folded in exec_names or folded[1] in _SKIPPED_EXEC_TARGETS:
                continue
            relation = Relation.WRITES_TO if id(table) in write_targets else Relation.READS_FROM
            references.append(
                SqlReference(schema=parts[0], name=parts[1], relation=relation, position=position)
            )
            position += 1

    return references, foreign_keys
