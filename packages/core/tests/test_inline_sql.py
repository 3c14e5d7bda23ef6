"""Tests for inline SQL extraction from C# sources."""

import pytest
from dbgraph_core.analyzer.extractors.inline_sql import (
    INLINE_SQL_DOMAIN,
    extract_inline_sql_facts,
    looks_like_sql,
    normalize_sql_text,
    scan_inline_sql,
)
from dbgraph_core.analyzer.facts import EdgeFact, NodeFact
from dbgraph_core.config import DbGraphConfig
from dbgraph_core.graph.merger import merge_facts
from dbgraph_core.graph.store import NodeKind, Relation
from dbgraph_core.treesitter.manager import TreeSitterManager

REPOSITORY_SOURCE = """
using System;

namespace Shop.Data
{
    public class CustomerRepository
    {
        private const string ByName = "SELECT Id FROM dbo.Customer WHERE Name = @name";

        public void Load()
        {
            const string sql = "SELECT Id FROM dbo.Customer WHERE Id > 0;";
            Log(sql);
        }

        public void Archive(ShopContext db)
        {
            db.Database.ExecuteSqlRaw("INSERT INTO dbo.CustomerArchive (Id) SELECT Id FROM dbo.Customer");
        }

        public void Recalculate(ShopContext db)
        {
            db.Database.ExecuteSqlRaw("usp_recalculate");
        }

        public void Dynamic(ShopContext db)
        {
            db.Database.ExecuteSqlRaw(BuildQuery());
        }

        private void Log(string text) { Console.WriteLine(text); }
    }
}
"""


class TestLooksLikeSql:
    """Tests for the heuristic classifier."""

    @pytest.mark.parametrize(
        "text",
        [
            "SELECT * FROM Orders",
            "select\n\tid\nfrom   users",
            "DELETE FROM dbo.Customer WHERE Id = 1",
            "INSERT INTO Log (Msg) VALUES (@m)",
            "CREATE TABLE Foo (Id INT)",
        ],
    )
    def test_accepts_statements(self, text: str) -> None:
        """Text with a verb and a structural keyword is accepted."""
        assert looks_like_sql(text)

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "hello world",
            "SELECT FROM",
            "UPDATE available for your account",
            "Selection from the menu",
            "SELECTED FROMAGE WHEREVER",
        ],
    )
    def test_rejects_other_text(self, text: str) -> None:
        """Prose, short strings and partial words are rejected."""
        assert not looks_like_sql(text)

    def test_short_strings_are_rejected(self) -> None:
        """Fewer than 12 normalized characters are rejected whatever they contain."""
        assert not looks_like_sql("SELECT\n\n  FROM    ")
        assert len(normalize_sql_text("SELECT\n\n  FROM    ")) < 12

    def test_normalize(self) -> None:
        """Whitespace runs collapse and text is uppercased."""
        assert normalize_sql_text("  select\n\t*  from x ") == "SELECT * FROM X"


class TestInlineSqlExtraction:
    """Tests for extract_inline_sql_facts."""

    def test_method_reads_table(self, csharp_manager: TreeSitterManager) -> None:
        """A SQL literal in a method gives a METHOD node reading the table."""
        result = extract_inline_sql_facts("Data/CustomerRepository.cs", REPOSITORY_SOURCE)
        graph = merge_facts([result])

        method = graph.get_node("csharp:Shop.Data.CustomerRepository.Load|METHOD")
        assert method is not None
        assert method.domain == INLINE_SQL_DOMAIN
        assert graph.get_edge(
            "csharp:Shop.Data.CustomerRepository.Load|METHOD",
            "dbo.Customer|TABLE",
            Relation.READS_FROM,
        )

    def test_hot_method_write_intent(self, csharp_manager: TreeSitterManager) -> None:
        """The statement verb decides between WritesTo and ReadsFrom."""
        result = extract_inline_sql_facts("Data/CustomerRepository.cs", REPOSITORY_SOURCE)
        edges = {
            (f.from_node.name, f.to_node.name, f.relation)
            for f in result.facts
            if isinstance(f, EdgeFact)
        }
        assert ("Archive", "CustomerArchive", Relation.WRITES_TO) in edges
        assert ("Archive", "Customer", Relation.READS_FROM) in edges

    def test_hot_method_accepts_non_sql_text(self, csharp_manager: TreeSitterManager) -> None:
        """A hot call site is kept even when its text has no SQL tokens."""
        occurrences = scan_inline_sql("Repo.cs", REPOSITORY_SOURCE)
        recalculate = [o for o in occurrences if o.method_name == "Recalculate"]
        assert len(recalculate) == 1
        assert recalculate[0].via_hot_method
        assert recalculate[0].text == "usp_recalculate"
        assert recalculate[0].references == []

        result = extract_inline_sql_facts("Repo.cs", REPOSITORY_SOURCE)
        methods = {f.name for f in result.facts if isinstance(f, NodeFact)}
        assert "Recalculate" in methods

    def test_untraceable_argument_is_skipped(self, csharp_manager: TreeSitterManager) -> None:
        """A hot call whose argument is not a constant emits nothing."""
        occurrences = scan_inline_sql("Repo.cs", REPOSITORY_SOURCE)
        assert all(o.method_name != "Dynamic" for o in occurrences)

    def test_literal_outside_method_is_body_only(self, csharp_manager: TreeSitterManager) -> None:
        """A field initializer gives a body under a statement id and no node."""
        result = extract_inline_sql_facts("Repo.cs", REPOSITORY_SOURCE)
        field_bodies = [b for b in result.bodies if b.kind is None]
        assert len(field_bodies) == 1
        body = field_bodies[0]
        assert body.key == f"inline:Repo.cs:L{body.line}"
        assert body.text.startswith("SELECT Id FROM dbo.Customer WHERE Name")

    def test_extra_hot_method_from_config(self, csharp_manager: TreeSitterManager) -> None:
        """Configured tokens extend the hot method list."""
        source = """
namespace Shop
{
    class Jobs
    {
        void Run(Connection conn)
        {
            conn.QueryRaw("nightly_cleanup");
        }
    }
}
"""
        assert scan_inline_sql("Jobs.cs", source) == []
        config = DbGraphConfig.from_section({"hotMethods": ["QueryRaw"]})
        occurrences = scan_inline_sql("Jobs.cs", source, config)
        assert [o.text for o in occurrences] == ["nightly_cleanup"]
        assert occurrences[0].method_full_name == "Shop.Jobs.Run"

    def test_concatenated_constant(self, csharp_manager: TreeSitterManager) -> None:
        """Concatenated literals passed to a hot method are joined."""
        source = """
class Reports
{
    void Top(Ctx db)
    {
        var rows = db.Orders.FromSqlRaw("SELECT * FROM dbo.Orders " + "WHERE Total > 100");
    }
}
"""
        occurrences = scan_inline_sql("Reports.cs", source)
        assert len(occurrences) == 1
        assert occurrences[0].text == "SELECT * FROM dbo.Orders WHERE Total > 100"
        assert {(r.name, r.relation) for r in occurrences[0].references} == {
            ("Orders", Relation.READS_FROM)
        }

    def test_long_concatenation_is_folded(self, csharp_manager: TreeSitterManager) -> None:
        """Any number of concatenated literals folds into one statement."""
        pieces = ["SELECT ", *[f"c{i}, " for i in range(10)], "x FROM dbo.Orders"]
        argument = " + ".join(f'"{piece}"' for piece in pieces)
        source = (
            "class Reports { void Wide(Ctx db) { "
            f"db.Database.ExecuteSqlRaw({argument}); }} }}"
        )

        occurrences = scan_inline_sql("Reports.cs", source)
        assert len(occurrences) == 1
        assert occurrences[0].text == "".join(pieces)
        assert {(r.name, r.relation) for r in occurrences[0].references} == {
            ("Orders", Relation.READS_FROM)
        }

    def test_very_deep_concatenation(self, csharp_manager: TreeSitterManager) -> None:
        """Thousands of concatenated pieces neither fail nor lose the statement."""
        pieces = [
            "SELECT Id FROM dbo.Orders WHERE Id IN (0",
            *[f", {i}" for i in range(1, 1500)],
            ")",
        ]
        argument = " + ".join(f'"{piece}"' for piece in pieces)
        source = (
            "namespace Shop.Data { class Reports { void Many(Ctx db) { "
            f"db.Database.ExecuteSqlRaw({argument}); }} }} }}"
        )

        result = extract_inline_sql_facts("Reports.cs", source)
        graph = merge_facts([result])
        assert graph.get_edge(
            "csharp:Shop.Data.Reports.Many|METHOD", "dbo.Orders|TABLE", Relation.READS_FROM
        )
        assert result.bodies[0].text == "".join(pieces)

    def test_occurrences_in_source_order(self, csharp_manager: TreeSitterManager) -> None:
        """Occurrences are reported by line."""
        occurrences = scan_inline_sql("Repo.cs", REPOSITORY_SOURCE)
        lines = [o.line for o in occurrences]
        assert lines == sorted(lines)
        assert all(o.statement_id == f"inline:Repo.cs:L{o.line}" for o in occurrences)

    def test_method_kind(self, csharp_manager: TreeSitterManager) -> None:
        """Method nodes are emitted once per method."""
        result = extract_inline_sql_facts("Repo.cs", REPOSITORY_SOURCE)
        keys = [f.key for f in result.facts if isinstance(f, NodeFact) and not f.stub]
        assert len(keys) == len(set(keys))
        definitions = [f for f in result.facts if isinstance(f, NodeFact) and not f.stub]
        assert all(f.kind == NodeKind.METHOD for f in definitions)
