"""Tests for the relational statement parser."""

from dbgraph_core.graph.store import NodeKind, Relation
from dbgraph_core.sql.parser import (
    mask_comments_and_strings,
    parse_sql,
    preprocess_script,
    split_batches,
)


def _refs(text: str) -> set[tuple[str, str, Relation]]:
    return {(r.schema, r.name, r.relation) for r in parse_sql(text).references}


class TestScriptPreprocessing:
    """Tests for sqlcmd handling and batch splitting."""

    def test_sqlcmd_directives_are_blanked(self) -> None:
        """:setvar / :r lines disappear and $(Var) becomes 0."""
        text = ":setvar Env dev\n:r .\\other.sql\nSELECT * FROM dbo.T WHERE x = $(Env)\n"
        result = preprocess_script(text)
        assert ":setvar" not in result
        assert ":r" not in result
        assert "$(" not in result
        assert "WHERE x = 0" in result

    def test_split_on_go_lines(self) -> None:
        """GO lines separate batches; empty batches are dropped."""
        text = "CREATE TABLE a(x int)\nGO\nCREATE TABLE b(y int)\ngo 2\n\nGO\n"
        batches = split_batches(text)
        assert [b.index for b in batches] == [0, 1]
        assert [b.start_line for b in batches] == [1, 3]
        assert "CREATE TABLE b" in batches[1].text

    def test_go_with_comment_and_crlf(self) -> None:
        """A trailing comment and CRLF line endings still separate batches."""
        text = "SELECT 1\r\nGO -- first\r\nSELECT 2\r\n"
        batches = split_batches(text)
        assert len(batches) == 2
        assert batches[1].text.strip() == "SELECT 2"

    def test_go_inside_words_does_not_split(self) -> None:
        """GOTO and GO in the middle of a line are not separators."""
        text = "GOTO done\nSELECT 1 GO\n"
        assert len(split_batches(text)) == 1

    def test_masking_keeps_offsets(self) -> None:
        """Comments and string contents are blanked with the same length."""
        text = "SELECT 'it''s' -- note\nFROM /* x */ dbo.T"
        masked = mask_comments_and_strings(text)
        assert len(masked) == len(text)
        assert "note" not in masked
        assert "it" not in masked
        assert "dbo.T" in masked
        assert masked.count("\n") == 1


class TestDefinitions:
    """Tests for CREATE / ALTER detection."""

    def test_create_table(self) -> None:
        """A CREATE TABLE yields one TABLE definition."""
        parsed = parse_sql("CREATE TABLE dbo.Customer(Id INT PRIMARY KEY)")
        assert [(d.kind, d.schema, d.name) for d in parsed.definitions] == [
            (NodeKind.TABLE, "dbo", "Customer")
        ]

    def test_bracketed_and_default_schema(self) -> None:
        """Brackets are stripped and an unqualified name gets dbo."""
        parsed = parse_sql("CREATE TABLE [sales].[Order] (Id INT); CREATE TABLE Invoice (Id INT)")
        names = {(d.schema, d.name) for d in parsed.definitions}
        assert names == {("sales", "Order"), ("dbo", "Invoice")}

    def test_trigger_target(self) -> None:
        """A trigger definition records the table it is ON."""
        parsed = parse_sql(
            "CREATE TRIGGER dbo.trg_Audit ON dbo.Customer AFTER INSERT AS "
            "INSERT INTO dbo.AuditLog (Msg) SELECT Name FROM inserted"
        )
        trigger = parsed.definitions[0]
        assert trigger.kind == NodeKind.TRIGGER
        assert trigger.target == ("dbo", "Customer")

    def test_synonym_target(self) -> None:
        """A synonym definition records the object it stands for."""
        parsed = parse_sql("CREATE SYNONYM dbo.Cust FOR crm.dbo.Customer")
        synonym = parsed.definitions[0]
        assert synonym.kind == NodeKind.SYNONYM
        assert synonym.target == ("dbo", "Customer")

    def test_routine_stays_in_one_piece(self) -> None:
        """Semicolons inside a procedure body do not split it."""
        parsed = parse_sql(
            "CREATE PROCEDURE dbo.Touch AS BEGIN "
            "SELECT Id FROM dbo.A; UPDATE dbo.B SET X = 1; END"
        )
        assert len(parsed.statements) == 1
        refs = _refs(
            "CREATE PROCEDURE dbo.Touch AS BEGIN "
            "SELECT Id FROM dbo.A; UPDATE dbo.B SET X = 1; END"
        )
        assert ("dbo", "A", Relation.READS_FROM) in refs
        assert ("dbo", "B", Relation.WRITES_TO) in refs


class TestReferences:
    """Tests for object references and their intent."""

    def test_select_reads(self) -> None:
        """Tables in FROM and JOIN are read."""
        refs = _refs(
            "SELECT o.Id FROM dbo.Orders o JOIN sales.Customer AS c ON c.Id = o.CustomerId"
        )
        assert refs == {
            ("dbo", "Orders", Relation.READS_FROM),
            ("sales", "Customer", Relation.READS_FROM),
        }

    def test_insert_writes(self) -> None:
        """The INSERT target is written, the SELECT source is read."""
        refs = _refs("INSERT INTO dbo.AuditLog (Msg) SELECT Name FROM dbo.Customer")
        assert ("dbo", "AuditLog", Relation.WRITES_TO) in refs
        assert ("dbo", "Customer", Relation.READS_FROM) in refs
        assert ("dbo", "AuditLog", Relation.READS_FROM) not in refs

    def test_update_and_delete_write(self) -> None:
        """UPDATE and DELETE targets are written."""
        assert _refs("UPDATE dbo.Customer SET Name = 'x' WHERE Id = 1") == {
            ("dbo", "Customer", Relation.WRITES_TO)
        }
        assert _refs("DELETE FROM dbo.Customer WHERE Id = 1") == {
            ("dbo", "Customer", Relation.WRITES_TO)
        }

    def test_exec_is_execute(self) -> None:
        """EXEC names a procedure."""
        refs = parse_sql("EXEC dbo.RecalculateTotals @OrderId = 1").references
        assert [(r.name, r.kind, r.relation) for r in refs] == [
            ("RecalculateTotals", NodeKind.PROC, Relation.EXECUTES)
        ]

    def test_dynamic_sql_is_skipped(self) -> None:
        """sp_executesql is not a dependency."""
        assert parse_sql("EXEC sp_executesql @sql").references == []

    def test_temp_tables_are_skipped(self) -> None:
        """Temporary tables never become references."""
        refs = _refs("SELECT Id INTO #recent FROM dbo.Orders")
        assert all(not name.startswith("#") for _, name, _ in refs)
        assert ("dbo", "Orders", Relation.READS_FROM) in refs

    def test_cte_names_are_skipped(self) -> None:
        """A CTE is not a table."""
        refs = _refs("WITH recent AS (SELECT Id FROM dbo.Orders) SELECT Id FROM recent")
        assert refs == {("dbo", "Orders", Relation.READS_FROM)}

    def test_comments_and_strings_are_ignored(self) -> None:
        """Names inside literals and comments are not references."""
        refs = _refs("SELECT 'FROM dbo.Fake' AS x FROM dbo.Real -- JOIN dbo.Comment")
        assert refs == {("dbo", "Real", Relation.READS_FROM)}

    def test_statements_split_on_semicolons(self) -> None:
        """Top-level semicolons separate statements."""
        parsed = parse_sql("SELECT Id FROM dbo.A; SELECT Id FROM dbo.B;")
        assert len(parsed.statements) == 2
        assert {r.name for r in parsed.references} == {"A", "B"}


class TestForeignKeys:
    """Tests for foreign key extraction."""

    def test_table_level_foreign_key(self) -> None:
        """FOREIGN KEY ... REFERENCES gives child -> parent."""
        parsed = parse_sql(
            "CREATE TABLE dbo.Order(Id INT, CustomerId INT, "
            "FOREIGN KEY(CustomerId) REFERENCES dbo.Customer(Id))"
        )
        assert [(fk.child, fk.parent) for fk in parsed.foreign_keys] == [
            (("dbo", "Order"), ("dbo", "Customer"))
        ]

    def test_column_level_foreign_key(self) -> None:
        """An inline REFERENCES constraint belongs to the table being created."""
        parsed = parse_sql(
            "CREATE TABLE dbo.OrderLine (Id INT, OrderId INT REFERENCES dbo.[Order](Id))"
        )
        assert [(fk.child, fk.parent) for fk in parsed.foreign_keys] == [
            (("dbo", "OrderLine"), ("dbo", "Order"))
        ]

    def test_alter_table_add_constraint(self) -> None:
        """ALTER TABLE ... ADD CONSTRAINT ... FOREIGN KEY is found."""
        parsed = parse_sql(
            "ALTER TABLE dbo.OrderLine ADD CONSTRAINT FK_Line_Product "
            "FOREIGN KEY (ProductId) REFERENCES dbo.Product (Id)"
        )
        assert (("dbo", "OrderLine"), ("dbo", "Product")) in {
            (fk.child, fk.parent) for fk in parsed.foreign_keys
        }


class TestMalformedInput:
    """Parse failures never raise."""

    def test_garbage(self) -> None:
        """Text that is not SQL gives an empty result."""
        parsed = parse_sql("this is (((( not sql at all")
        assert parsed.definitions == []
        assert parsed.foreign_keys == []

    def test_broken_create_table_keeps_definition(self) -> None:
        """A broken body still reports the object being defined."""
        parsed = parse_sql("CREATE TABLE dbo.Broken (Id INT,, FROM WHERE")
        assert [(d.schema, d.name) for d in parsed.definitions] == [("dbo", "Broken")]

    def test_merge_without_target(self) -> None:
        """A truncated MERGE INTO does not report INTO as an object."""
        assert _refs("MERGE INTO") == set()

    def test_deep_nesting_falls_back_to_scanner(self) -> None:
        """Nesting too deep for the structured parser still yields the references."""
        text = "SELECT * FROM " + "(SELECT * FROM " * 200 + "dbo.Orders" + ") AS t" * 200
        assert ("dbo", "Orders", Relation.READS_FROM) in _refs(text)

    def test_empty_text(self) -> None:
        """Empty and whitespace-only text give no statements."""
        assert parse_sql("").statements == []
        assert parse_sql("  \n -- only a comment\n").statements == []
