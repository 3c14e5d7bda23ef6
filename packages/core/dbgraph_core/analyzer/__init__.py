"""Analyzer module for extracting database dependency facts from source files.

This module provides extractors for:
- Relational schema scripts (tables, routines, foreign keys)
- SQL text embedded in C# code
- ORM entity and table mappings
- Code-first migration operations
"""

from dbgraph_core.analyzer.extractors import (
    OrmModel,
    extract_inline_sql_facts,
    extract_migration_facts,
    extract_schema_facts,
    resolve_orm_facts,
    scan_orm_file,
)
from dbgraph_core.analyzer.facts import (
    BodyFact,
    EdgeFact,
    Fact,
    FileFacts,
    NodeFact,
    TableMatchFact,
)

__all__ = [
    "extract_schema_facts",
    "extract_inline_sql_facts",
    "scan_orm_file",
    "resolve_orm_facts",
    "OrmModel",
    "extract_migration_facts",
    "NodeFact",
    "EdgeFact",
    "TableMatchFact",
    "Fact",
    "BodyFact",
    "FileFacts",
]
