"""T-SQL script handling: sqlcmd preprocessing, GO batches and statement parsing."""

from dbgraph_core.sql.parser import (
    ParsedStatement,
    SqlBatch,
    SqlDefinition,
    SqlForeignKey,
    SqlReference,
    StatementParse,
    parse_sql,
    preprocess_script,
    split_batches,
)

__all__ = [
    "ParsedStatement",
    "SqlBatch",
    "SqlDefinition",
    "SqlForeignKey",
    "SqlReference",
    "StatementParse",
    "parse_sql",
    "preprocess_script",
    "split_batches",
]
