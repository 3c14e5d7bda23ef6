"""Inline SQL extraction from C# source files.

Detection runs in priority order:

1. Hot call sites. Every invocation whose method name contains a hot token
   (``SqlQuery``, ``ExecuteSql``, ``FromSql`` plus configured extras) has its
   first argument reduced to a constant string. A resolved value is always
   treated as SQL, whatever it looks like.
2. Remaining string literals pass through ``looks_like_sql``.
3. Accepted text goes through the statement parser (regex scan on failure).
4. Each occurrence is attributed to the method whose line span contains it.

Every accepted occurrence is kept, including those without any reference,
under the statement id ``inline:{path}:L{line}``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from dbgraph_core.analyzer.extractors.ast_utils import (
    line_number,
    node_text,
    unquote_csharp_string,
)
from dbgraph_core.analyzer.extractors.csharp_syntax import CSharpInvocation, CSharpSyntaxTree
from dbgraph_core.analyzer.facts import (
    BodyFact,
    EdgeFact,
    FileFacts,
    NodeFact,
    code_fact,
    db_object_fact,
)
from dbgraph_core.config import DbGraphConfig
from dbgraph_core.graph.store import FactSource, NodeKind, Relation
from dbgraph_core.pathing import canonicalize_repo_relative_path
from dbgraph_core.sql.parser import SqlForeignKey, SqlReference, parse_sql

logger = logging.getLogger(__name__)

INLINE_SQL_DOMAIN = "code-inline-sql"
MIN_SQL_LENGTH = 12
SQL_VERBS = (
    "SELECT",
    "INSERT",
    "UPDATE",
    "DELETE",
    "MERGE",
    "EXEC",
    "EXECUTE",
    "CREATE",
    "ALTER",
    "DROP",
)
SQL_STRUCTURE_TOKENS = ("FROM", "WHERE", "JOIN", "INTO", "TABLE")

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_sql_text(text: str) -> str:
    """Collapse whitespace runs to single spaces and uppercase."""
    return _WHITESPACE_RE.sub(" ", text).strip().upper()


def looks_like_sql(text: str) -> bool:
    """Heuristic gate for string literals that are not passed to a hot method.

    Requires at least 12 normalized characters, one SQL verb and one
    structural keyword, each as a whole space-delimited word.
    """
    if not text:
        return False
    normalized = normalize_sql_text(text)
    if len(normalized) < MIN_SQL_LENGTH:
        return False
    padded = f" {normalized} "
    has_verb = any(f" {verb} " in padded for verb in SQL_VERBS)
    has_structure = any(f" {token} " in padded for token in SQL_STRUCTURE_TOKENS)
    return has_verb and has_structure


@dataclass
class InlineSqlOccurrence:
    """One accepted piece of embedded SQL."""

    statement_id: str
    file_path: str
    line: int
    text: str
    via_hot_method: bool
    callee: str = ""
    namespace: str = ""
    type_full_name: str = ""
    method_name: str = ""
    method_full_name: str = ""
    references: list[SqlReference] = field(default_factory=list)
    foreign_keys: list[SqlForeignKey] = field(default_factory=list)
    parse_errors: list[str] = field(default_factory=list)


def scan_inline_sql(
    file_path: str,
    content: str,
    config: DbGraphConfig | None = None,
    *,
    tree: CSharpSyntaxTree | None = None,
) -> list[InlineSqlOccurrence]:
    """Find embedded SQL in one C# file.

    Args:
        file_path: Path relative to the code root
        content: File content
        config: Extraction configuration (extra hot methods)
        tree: Already parsed syntax tree for ``content``

    Returns:
        Occurrences in source order
    """
    config = config or DbGraphConfig.empty()
    relative_path = canonicalize_repo_relative_path(file_path)
    tree = tree or CSharpSyntaxTree.parse(content, file_path)
    if tree is None:
        logger.debug("No syntax tree for %s, skipping inline SQL scan", relative_path)
        return []

    hot_tokens = config.effective_hot_methods
    claimed: set[tuple[int, int]] = set()
    found: list[tuple[int, int, InlineSqlOccurrence]] = []

    for invocation in tree.invocations():
        if not _is_hot(invocation, hot_tokens):
            continue
        argument = invocation.arguments[0] if invocation.arguments else None
        if argument is None or argument.value is None:
            continue
        value, literals = tree.constant_string(argument.value)
        if value is None:
            continue
        claimed.update((n.start_byte, n.end_byte) for n in literals)
        line = line_number(argument.value)
        occurrence = _occurrence(tree, relative_path, line, value, True, invocation.callee_text)
        found.append((line, argument.value.start_byte, occurrence))

    for literal in tree.string_literals():
        if (literal.start_byte, literal.end_byte) in claimed:
            continue
        value = unquote_csharp_string(node_text(literal))
        if value is None or not looks_like_sql(value):
            continue
        line = line_number(literal)
        occurrence = _occurrence(tree, relative_path, line, value, False, "")
        found.append((line, literal.start_byte, occurrence))

    found.sort(key=lambda item: (item[0], item[1]))
    return [occurrence for _, _, occurrence in found]


def extract_inline_sql_facts(
    file_path: str,
    content: str,
    config: DbGraphConfig | None = None,
    *,
    tree: CSharpSyntaxTree | None = None,
) -> FileFacts:
    """Extract METHOD nodes and their database edges from embedded SQL.

    Args:
        file_path: Path relative to the code root
        content: File content
        config: Extraction configuration
        tree: Already parsed syntax tree for ``content``

    Returns:
        FileFacts in source order
    """
    relative_path = canonicalize_repo_relative_path(file_path)
    result = FileFacts(file_path=relative_path, source=FactSource.INLINE)
    emitted_methods: set[str] = set()

    for occurrence in scan_inline_sql(relative_path, content, config, tree=tree):
        result.errors.extend(occurrence.parse_errors)
        method = None
        if occurrence.method_full_name:
            method = code_fact(
                occurrence.method_full_name,
                occurrence.method_name,
                NodeKind.METHOD,
                FactSource.INLINE,
                source_file=relative_path,
                domain=INLINE_SQL_DOMAIN,
                line=occurrence.line,
            )
            if method.key not in emitted_methods:
                emitted_methods.add(method.key)
                result.facts.append(method)

            for reference in occurrence.references:
                target = db_object_fact(
                    reference.schema,
                    reference.name,
                    reference.kind,
                    FactSource.INLINE,
                    source_file=relative_path,
                    line=occurrence.line,
                    stub=True,
                )
                result.facts.append(
                    EdgeFact(
                        from_node=method,
                        to_node=target,
                        relation=reference.relation,
                        source=FactSource.INLINE,
                        source_file=relative_path,
                        line=occurrence.line,
                        flexible_kind=True,
                    )
                )

        for foreign_key in occurrence.foreign_keys:
            result.facts.append(
                EdgeFact(
                    from_node=_table_stub(foreign_key.child, relative_path, occurrence.line),
                    to_node=_table_stub(foreign_key.parent, relative_path, occurrence.line),
                    relation=Relation.FOREIGN_KEY,
                    source=FactSource.INLINE,
                    source_file=relative_path,
                    line=occurrence.line,
                )
            )

        result.bodies.append(
            BodyFact(
                key=method.key if method is not None else occurrence.statement_id,
                kind=NodeKind.METHOD if method is not None else None,
                name=occurrence.method_name or occurrence.statement_id,
                source_file=relative_path,
                text=occurrence.text,
                line=occurrence.line,
                metadata=_body_metadata(occurrence),
            )
        )

    return result


def _table_stub(table: tuple[str, str], relative_path: str, line: int) -> NodeFact:
    return db_object_fact(
        table[0],
        table[1],
        NodeKind.TABLE,
        FactSource.INLINE,
        source_file=relative_path,
        line=line,
        stub=True,
    )


def _is_hot(invocation: CSharpInvocation, hot_tokens: tuple[str, ...]) -> bool:
    # The invoked name, not the whole callee, so receivers like
    # ``FromSqlRaw(...).Include("x")`` do not make ``Include`` hot.
    name = invocation.method_name or invocation.callee_text
    return any(token in name for token in hot_tokens)


def _occurrence(
    tree: CSharpSyntaxTree,
    relative_path: str,
    line: int,
    text: str,
    via_hot_method: bool,
    callee: str,
) -> InlineSqlOccurrence:
    parsed = parse_sql(text)
    occurrence = InlineSqlOccurrence(
        statement_id=f"inline:{relative_path}:L{line}",
        file_path=relative_path,
        line=line,
        text=text,
        via_hot_method=via_hot_method,
        callee=callee,
        references=parsed.references,
        foreign_keys=parsed.foreign_keys,
        parse_errors=parsed.errors,
    )
    method = tree.enclosing_method(line)
    if method is not None:
        occurrence.namespace = method.namespace
        occurrence.type_full_name = method.type_full_name
        occurrence.method_name = method.name
        occurrence.method_full_name = method.full_name
    return occurrence


def _body_metadata(occurrence: InlineSqlOccurrence) -> dict[str, Any]:
    return {
        "statement_id": occurrence.statement_id,
        "via_hot_method": occurrence.via_hot_method,
        "callee": occurrence.callee,
        "namespace": occurrence.namespace,
        "type": occurrence.type_full_name,
        "method": occurrence.method_full_name,
        "references": [
            f"{r.schema}.{r.name}|{r.kind.value}:{r.relation.value}" for r in occurrence.references
        ],
    }
