"""Tests for ORM mapping extraction."""

from dbgraph_core.analyzer.extractors.orm import (
    OrmModel,
    base_type_matches,
    resolve_orm_facts,
    scan_orm_file,
    strip_generic,
    unwrap_collection,
)
from dbgraph_core.config import DbGraphConfig
from dbgraph_core.graph.merger import merge_facts
from dbgraph_core.graph.store import FactSource, NodeKind, Relation
from dbgraph_core.treesitter.manager import TreeSitterManager

MODELS_SOURCE = """
using System.Collections.Generic;
using System.ComponentModel.DataAnnotations.Schema;

namespace Shop.Models
{
    public abstract class BaseEntity
    {
        public int Id { get; set; }
    }

    public abstract class AuditedEntity : BaseEntity
    {
        public string CreatedBy { get; set; }
    }

    [Table("Product", Schema = "dbo")]
    public class Product : BaseEntity
    {
        public string Name { get; set; }
    }

    public class Customer : AuditedEntity
    {
        public ICollection<Order> Orders { get; set; }
    }

    public class Order : AuditedEntity
    {
        public int CustomerId { get; set; }
        public Customer Customer { get; set; }
    }

    public class ProductDto
    {
        public string Name { get; set; }
    }
}
"""

CONTEXT_SOURCE = """
using Microsoft.EntityFrameworkCore;
using Shop.Models;

namespace Shop.Data
{
    public class ShopContext : DbContext
    {
        public DbSet<Product> Products { get; set; }
        public DbSet<Customer> Customers { get; set; }
        public DbSet<Order> Orders { get; set; }

        protected override void OnModelCreating(ModelBuilder modelBuilder)
        {
            modelBuilder.Entity<Customer>().ToTable("Clients", "crm");
            modelBuilder.Entity<Order>()
                .HasOne(o => o.Customer)
                .WithMany(c => c.Orders)
                .HasForeignKey(o => o.CustomerId);
        }
    }
}
"""


def _graph(config: DbGraphConfig, *sources: tuple[str, str]):
    extractions = [scan_orm_file(path, content) for path, content in sources]
    return merge_facts(resolve_orm_facts(extractions, config))


class TestTypeNames:
    """Tests for type name helpers."""

    def test_strip_generic(self) -> None:
        """Generic arguments, nullability and global:: are removed."""
        assert strip_generic("global::Shop.Models.Entity<int>?") == "Shop.Models.Entity"
        assert strip_generic("BaseEntity") == "BaseEntity"

    def test_base_type_matches(self) -> None:
        """Full and simple names match; different names do not."""
        assert base_type_matches("BaseEntity", "BaseEntity")
        assert base_type_matches("Shop.Core.BaseEntity", "BaseEntity")
        assert base_type_matches("BaseEntity<Guid>", "Shop.Core.BaseEntity")
        assert not base_type_matches("BaseEntityDto", "BaseEntity")
        assert not base_type_matches("", "BaseEntity")

    def test_unwrap_collection(self) -> None:
        """Collection navigations unwrap to their element type."""
        assert unwrap_collection("ICollection<Order>") == "Order"
        assert unwrap_collection("List<Shop.Models.Order>?") == "Shop.Models.Order"
        assert unwrap_collection("Order[]") == "Order"
        assert unwrap_collection("Customer") == "Customer"


class TestOrmScan:
    """Tests for per-file declaration scanning."""

    def test_scan_models(self, csharp_manager: TreeSitterManager) -> None:
        """Classes, bases and [Table] attributes are recorded."""
        extraction = scan_orm_file("Models/Shop.cs", MODELS_SOURCE)
        classes = {c.name: c for c in extraction.classes}
        assert set(classes) == {
            "BaseEntity",
            "AuditedEntity",
            "Product",
            "Customer",
            "Order",
            "ProductDto",
        }
        assert classes["Product"].table == ("dbo", "Product")
        assert classes["Product"].full_name == "Shop.Models.Product"
        assert classes["Order"].base_types == ["AuditedEntity"]
        assert classes["Customer"].properties["Orders"] == "ICollection<Order>"

    def test_scan_context(self, csharp_manager: TreeSitterManager) -> None:
        """DbSet properties, ToTable bindings and relationships are recorded."""
        extraction = scan_orm_file("Data/ShopContext.cs", CONTEXT_SOURCE)
        assert [(s.property_name, s.entity_type) for s in extraction.db_sets] == [
            ("Products", "Product"),
            ("Customers", "Customer"),
            ("Orders", "Order"),
        ]
        assert [(b.entity_type, b.table, b.schema) for b in extraction.table_bindings] == [
            ("Customer", "Clients", "crm")
        ]
        assert len(extraction.relationships) == 1
        relationship = extraction.relationships[0]
        assert relationship.entity_type == "Order"
        assert relationship.method == "HasOne"
        assert relationship.navigation == "Customer"


class TestOrmResolution:
    """Tests for entity detection and mapping resolution."""

    def test_table_attribute_maps_entity(
        self, csharp_manager: TreeSitterManager, entity_config: DbGraphConfig
    ) -> None:
        """A [Table] entity gets an ENTITY node and a MapsTo edge to its table."""
        graph = _graph(entity_config, ("Models/Shop.cs", MODELS_SOURCE))
        entity = graph.get_node("csharp:Shop.Models.Product|ENTITY")
        assert entity is not None
        assert entity.kind == NodeKind.ENTITY
        edge = graph.get_edge(
            "csharp:Shop.Models.Product|ENTITY", "dbo.Product|TABLE", Relation.MAPS_TO
        )
        assert edge is not None
        assert edge.sources == {FactSource.ORM}

    def test_transitive_base_types(
        self, csharp_manager: TreeSitterManager, entity_config: DbGraphConfig
    ) -> None:
        """Classes deriving from an entity base through another class are entities."""
        graph = _graph(entity_config, ("Models/Shop.cs", MODELS_SOURCE))
        entities = {n.name for n in graph.get_nodes_by_kind(NodeKind.ENTITY)}
        assert entities == {"AuditedEntity", "Product", "Customer", "Order"}

    def test_no_entity_without_configured_base(self, csharp_manager: TreeSitterManager) -> None:
        """Without configured entity bases no ENTITY node is created."""
        graph = _graph(DbGraphConfig.empty(), ("Models/Shop.cs", MODELS_SOURCE))
        assert graph.get_nodes_by_kind(NodeKind.ENTITY) == []

    def test_unrelated_base_is_not_entity(self, csharp_manager: TreeSitterManager) -> None:
        """A base type chain without a configured type yields no entity."""
        config = DbGraphConfig.from_section({"entityBaseTypes": ["AggregateRoot"]})
        graph = _graph(config, ("Models/Shop.cs", MODELS_SOURCE))
        assert graph.get_nodes_by_kind(NodeKind.ENTITY) == []

    def test_db_sets_map_to_tables(
        self, csharp_manager: TreeSitterManager, entity_config: DbGraphConfig
    ) -> None:
        """DbSet properties map through [Table] and fluent ToTable."""
        graph = _graph(
            entity_config,
            ("Models/Shop.cs", MODELS_SOURCE),
            ("Data/ShopContext.cs", CONTEXT_SOURCE),
        )
        assert graph.get_edge(
            "csharp:Shop.Data.ShopContext.Products|DBSET", "dbo.Product|TABLE", Relation.MAPS_TO
        )
        assert graph.get_edge(
            "csharp:Shop.Data.ShopContext.Customers|DBSET", "crm.Clients|TABLE", Relation.MAPS_TO
        )
        assert graph.get_edge(
            "csharp:Shop.Models.Customer|ENTITY", "crm.Clients|TABLE", Relation.MAPS_TO
        )

    def test_relationship_foreign_key(
        self, csharp_manager: TreeSitterManager, entity_config: DbGraphConfig
    ) -> None:
        """HasOne(...).HasForeignKey(...) makes the configured entity the child."""
        graph = _graph(
            entity_config,
            ("Models/Shop.cs", MODELS_SOURCE),
            ("Data/ShopContext.cs", CONTEXT_SOURCE),
        )
        edge = graph.get_edge("dbo.Order|TABLE", "crm.Clients|TABLE", Relation.FOREIGN_KEY)
        assert edge is not None
        assert edge.sources == {FactSource.ORM}

    def test_name_match_against_schema_table(
        self, csharp_manager: TreeSitterManager, entity_config: DbGraphConfig
    ) -> None:
        """Unmapped entities match a defined table by name."""
        from dbgraph_core.analyzer.extractors.schema import extract_schema_facts

        extractions = [scan_orm_file("Models/Shop.cs", MODELS_SOURCE)]
        schema = extract_schema_facts("Orders.sql", "CREATE TABLE dbo.Orders (Id INT)")
        graph = merge_facts([schema, *resolve_orm_facts(extractions, entity_config)])
        assert graph.get_edge(
            "csharp:Shop.Models.Order|ENTITY", "dbo.Orders|TABLE", Relation.MAPS_TO
        )

    def test_resolution_is_order_independent(
        self, csharp_manager: TreeSitterManager, entity_config: DbGraphConfig
    ) -> None:
        """Adding files in a different order gives the same facts."""
        models = scan_orm_file("Models/Shop.cs", MODELS_SOURCE)
        context = scan_orm_file("Data/ShopContext.cs", CONTEXT_SOURCE)

        forward = OrmModel(entity_config)
        forward.add_extraction(models)
        forward.add_extraction(context)
        backward = OrmModel(entity_config)
        backward.add_extraction(context)
        backward.add_extraction(models)

        assert [f.facts for f in forward.to_file_facts()] == [
            f.facts for f in backward.to_file_facts()
        ]


BILLING_SOURCE = """
using Microsoft.EntityFrameworkCore;
using Microsoft.EntityFrameworkCore.Metadata.Builders;

namespace Shop.Data
{
    public class BillingContext : DbContext
    {
        protected override void OnModelCreating(ModelBuilder modelBuilder)
        {
            modelBuilder.Entity<Invoice>()
                .HasMany<InvoiceLine>()
                .WithOne()
                .HasForeignKey(l => l.InvoiceId);
            modelBuilder.Entity<Payment>()
                .HasOne<Invoice>()
                .WithMany()
                .HasForeignKey(p => p.InvoiceId);
            modelBuilder.Entity<Invoice>()
                .HasOne(i => i.Address)
                .WithOne()
                .HasForeignKey<Address>(a => a.InvoiceId);
            modelBuilder.Entity<Product>().ToTable("Products", "catalog");
        }
    }

    public class Shipment : BaseEntity
    {
        public string Carrier { get; set; }
    }

    public class Parcel : BaseEntity
    {
        public int Weight { get; set; }
    }

    public class ShipmentConfiguration : IEntityTypeConfiguration<Shipment>
    {
        public void Configure(EntityTypeBuilder<Shipment> builder)
        {
            builder.ToTable("Shipments", "logistics");
        }
    }

    public class ParcelConfiguration : IEntityTypeConfiguration<Parcel>
    {
        public void Configure(ParcelBuilder builder)
        {
            builder.ToTable("Parcels");
        }
    }
}
"""


class TestFluentConfiguration:
    """Tests for generic relationship calls and configuration classes."""

    def test_scan_generic_relationships(self, csharp_manager: TreeSitterManager) -> None:
        """Type arguments of HasOne/HasMany and HasForeignKey are recorded."""
        extraction = scan_orm_file("Data/BillingContext.cs", BILLING_SOURCE)
        assert [
            (r.entity_type, r.method, r.related_type, r.navigation, r.dependent_type)
            for r in extraction.relationships
        ] == [
            ("Invoice", "HasMany", "InvoiceLine", None, None),
            ("Payment", "HasOne", "Invoice", None, None),
            ("Invoice", "HasOne", None, "Address", "Address"),
        ]

    def test_has_many_points_related_at_entity(
        self, csharp_manager: TreeSitterManager, entity_config: DbGraphConfig
    ) -> None:
        """HasMany<T> makes T the child of the configured entity."""
        graph = _graph(entity_config, ("Data/BillingContext.cs", BILLING_SOURCE))
        assert graph.get_edge("dbo.InvoiceLine|TABLE", "dbo.Invoice|TABLE", Relation.FOREIGN_KEY)
        assert graph.get_edge(
            "dbo.Invoice|TABLE", "dbo.InvoiceLine|TABLE", Relation.FOREIGN_KEY
        ) is None

    def test_has_one_points_entity_at_related(
        self, csharp_manager: TreeSitterManager, entity_config: DbGraphConfig
    ) -> None:
        """HasOne<T> makes the configured entity the child of T."""
        graph = _graph(entity_config, ("Data/BillingContext.cs", BILLING_SOURCE))
        edge = graph.get_edge("dbo.Payment|TABLE", "dbo.Invoice|TABLE", Relation.FOREIGN_KEY)
        assert edge is not None
        assert edge.sources == {FactSource.ORM}

    def test_has_foreign_key_type_names_dependent(
        self, csharp_manager: TreeSitterManager, entity_config: DbGraphConfig
    ) -> None:
        """HasForeignKey<T> makes T the child whichever side is configured."""
        graph = _graph(entity_config, ("Data/BillingContext.cs", BILLING_SOURCE))
        assert graph.get_edge("dbo.Address|TABLE", "dbo.Invoice|TABLE", Relation.FOREIGN_KEY)
        assert graph.get_edge(
            "dbo.Invoice|TABLE", "dbo.Address|TABLE", Relation.FOREIGN_KEY
        ) is None

    def test_table_attribute_wins_over_to_table(
        self, csharp_manager: TreeSitterManager, entity_config: DbGraphConfig
    ) -> None:
        """A [Table] attribute decides the table even when ToTable names another."""
        graph = _graph(
            entity_config,
            ("Models/Shop.cs", MODELS_SOURCE),
            ("Data/BillingContext.cs", BILLING_SOURCE),
        )
        assert graph.get_edge(
            "csharp:Shop.Models.Product|ENTITY", "dbo.Product|TABLE", Relation.MAPS_TO
        )
        assert not graph.has_node("catalog.Products|TABLE")

    def test_configuration_class_to_table(
        self, csharp_manager: TreeSitterManager, entity_config: DbGraphConfig
    ) -> None:
        """ToTable inside IEntityTypeConfiguration<T> binds T."""
        extraction = scan_orm_file("Data/BillingContext.cs", BILLING_SOURCE)
        bindings = {(b.entity_type, b.table, b.schema) for b in extraction.table_bindings}
        assert ("Shipment", "Shipments", "logistics") in bindings
        assert ("Parcel", "Parcels", None) in bindings

        graph = _graph(entity_config, ("Data/BillingContext.cs", BILLING_SOURCE))
        assert graph.get_edge(
            "csharp:Shop.Data.Shipment|ENTITY", "logistics.Shipments|TABLE", Relation.MAPS_TO
        )
        assert graph.get_edge(
            "csharp:Shop.Data.Parcel|ENTITY", "dbo.Parcels|TABLE", Relation.MAPS_TO
        )
