"""Schema script extraction.

Turns one relational schema script into ordered facts:
- a node fact per CREATE/ALTER of a table, view, procedure, function,
  trigger, type, sequence or synonym
- ForeignKey edge facts, always child (referencing) -> parent (referenced)
- ReadsFrom/WritesTo/Executes edge facts from the bodies of views,
  procedures, functions and triggers
- On (trigger -> table) and SynonymFor (synonym -> target) edge facts

Scripts are pre-processed for sqlcmd syntax and split into GO batches.
Parse failures only reduce what a batch contributes; they never raise.
"""

from __future__ import annotations

import logging

from dbgraph_core.analyzer.facts import BodyFact, EdgeFact, FileFacts, NodeFact, db_object_fact
from dbgraph_core.graph.store import FactSource, NodeKind, Relation
from dbgraph_core.pathing import canonicalize_repo_relative_path
from dbgraph_core.sql.parser import (
    SqlBatch,
    SqlDefinition,
    parse_sql,
    preprocess_script,
    split_batches,
)

logger = logging.getLogger(__name__)

ROOT_DOMAIN = "(root)"
ROUTINE_KINDS = frozenset({NodeKind.VIEW, NodeKind.PROC, NodeKind.FUNC, NodeKind.TRIGGER})


def derive_domain(relative_path: str) -> str:
    """Domain tag of a script: its first directory below the SQL root."""
    parts = canonicalize_repo_relative_path(relative_path).split("/")
    return parts[0] if len(parts) > 1 and parts[0] else ROOT_DOMAIN


def extract_schema_facts(
    file_path: str,
    content: str,
    *,
    domain: str | None = None,
) -> FileFacts:
    """Extract node and edge facts from a schema script.

    Args:
        file_path: Script path relative to the SQL root
        content: Script text
        domain: Domain tag; derived from ``file_path`` when omitted

    Returns:
        FileFacts in batch order
    """
    relative_path = canonicalize_repo_relative_path(file_path)
    domain = domain or derive_domain(relative_path)
    result = FileFacts(file_path=relative_path, source=FactSource.SCHEMA)

    for batch in split_batches(preprocess_script(content)):
        parsed = parse_sql(batch.text)
        result.errors.extend(parsed.errors)

        defined: dict[str, NodeFact] = {}
        for definition in parsed.definitions:
            node = _definition_fact(definition, relative_path, domain, batch)
            if node.key.casefold() in defined:
                continue
            defined[node.key.casefold()] = node
            result.facts.append(node)
            result.bodies.append(
                BodyFact(
                    key=node.key,
                    kind=node.kind,
                    name=node.name,
                    source_file=relative_path,
                    text=batch.text.strip(),
                    line=batch.start_line,
                    metadata={"batch": batch.index, "domain": domain},
                )
            )
            if definition.target is not None:
                relation = (
                    Relation.ON if definition.kind == NodeKind.TRIGGER else Relation.SYNONYM_FOR
                )
                result.facts.append(
                    _edge(node, definition.target, NodeKind.TABLE, relation, batch.start_line, True)
                )

        for foreign_key in parsed.foreign_keys:
            child = db_object_fact(
                *foreign_key.child,
                NodeKind.TABLE,
                FactSource.SCHEMA,
                source_file=relative_path,
                line=batch.start_line,
                stub=True,
            )
            result.facts.append(
                _edge(
                    child,
                    foreign_key.parent,
                    NodeKind.TABLE,
                    Relation.FOREIGN_KEY,
                    batch.start_line,
                    False,
                )
            )

        batch_routines = [d for d in parsed.definitions if d.kind in ROUTINE_KINDS]
        for statement in parsed.statements:
            routines = [d for d in statement.definitions if d.kind in ROUTINE_KINDS]
            owner = routines[0] if routines else None
            if owner is None and len(batch_routines) == 1:
                owner = batch_routines[0]
            if owner is None:
                if statement.references:
                    logger.debug(
                        "Skipping %d references outside any routine in %s batch %d",
                        len(statement.references),
                        relative_path,
                        batch.index,
                    )
                continue
            owner_node = _definition_fact(owner, relative_path, domain, batch)
            for reference in statement.references:
                result.facts.append(
                    _edge(
                        owner_node,
                        (reference.schema, reference.name),
                        reference.kind,
                        reference.relation,
                        batch.start_line,
                        True,
                    )
                )

    if result.errors:
        if result.facts:
            logger.debug("Partially parsed %s: %s", relative_path, result.errors[0])
        else:
            logger.warning("Failed to parse %s: %s", relative_path, result.errors[0])
    return result


def _definition_fact(
    definition: SqlDefinition, relative_path: str, domain: str, batch: SqlBatch
) -> NodeFact:
    return db_object_fact(
        definition.schema,
        definition.name,
        definition.kind,
        FactSource.SCHEMA,
        source_file=relative_path,
        domain=domain,
        line=batch.start_line,
        batch=batch.index,
    )


def _edge(
    from_node: NodeFact,
    target: tuple[str, str],
    kind: NodeKind,
    relation: Relation,
    line: int,
    flexible: bool,
) -> EdgeFact:
    to_node = db_object_fact(
        target[0],
        target[1],
        kind,
        FactSource.SCHEMA,
        source_file=from_node.source_file,
        line=line,
        stub=True,
    )
    return EdgeFact(
        from_node=from_node,
        to_node=to_node,
        relation=relation,
        source=FactSource.SCHEMA,
        source_file=from_node.source_file,
        line=line,
        flexible_kind=flexible,
    )
