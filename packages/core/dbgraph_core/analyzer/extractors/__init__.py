"""Fact extractors.

Each extractor takes one file's content and returns ordered facts; none of
them touches the graph.

- schema: relational schema scripts (*.sql)
- inline_sql: SQL text embedded in C# code
- orm: ORM entities, DbSet properties and table mappings (per file, then resolved project-wide)
- migrations: FluentMigrator / EF Core migration classes
"""

from dbgraph_core.analyzer.extractors.inline_sql import (
    InlineSqlOccurrence,
    extract_inline_sql_facts,
    looks_like_sql,
    scan_inline_sql,
)
from dbgraph_core.analyzer.extractors.migrations import (
    MigrationInfo,
    MigrationOperation,
    MigrationOperationKind,
    analyze_migrations,
    extract_migration_facts,
    is_migration_class,
)
from dbgraph_core.analyzer.extractors.orm import (
    OrmFileExtraction,
    OrmModel,
    resolve_orm_facts,
    scan_orm_file,
)
from dbgraph_core.analyzer.extractors.schema import derive_domain, extract_schema_facts

__all__ = [
    # Schema scripts
    "extract_schema_facts",
    "derive_domain",
    # Inline SQL
    "InlineSqlOccurrence",
    "extract_inline_sql_facts",
    "looks_like_sql",
    "scan_inline_sql",
    # ORM
    "OrmFileExtraction",
    "OrmModel",
    "resolve_orm_facts",
    "scan_orm_file",
    # Migrations
    "MigrationInfo",
    "MigrationOperation",
    "MigrationOperationKind",
    "analyze_migrations",
    "extract_migration_facts",
    "is_migration_class",
]
