"""C# syntax-tree provider on top of tree-sitter.

Wraps a parsed compilation unit and exposes what the extractors need:
namespace/type nesting, base-type lists, attributes with arguments, methods
with their line spans and bodies, invocations with flattened member-access
chains, string literal values and local declarator lookup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dbgraph_core.analyzer.extractors.ast_utils import (
    STRING_LITERAL_TYPES,
    children_of,
    end_line_number,
    field_or_child,
    find_ancestor,
    first_child,
    line_number,
    node_text,
    unquote_csharp_string,
    walk,
)
from dbgraph_core.treesitter.manager import TreeSitterManager, get_treesitter_manager

logger = logging.getLogger(__name__)

TYPE_DECLARATION_TYPES = frozenset(
    {
        "class_declaration",
        "record_declaration",
        "record_struct_declaration",
        "struct_declaration",
        "interface_declaration",
    }
)
METHOD_DECLARATION_TYPES = frozenset({"method_declaration", "constructor_declaration"})
NAMESPACE_TYPES = frozenset({"namespace_declaration", "file_scoped_namespace_declaration"})
TYPE_NAME_TYPES = frozenset(
    {"identifier", "qualified_name", "generic_name", "alias_qualified_name", "predefined_type"}
)
_SIMPLE_NAME_TYPES = ("identifier", "generic_name")
_MAX_TRACE_HOPS = 8
"""Identifier-to-initializer hops followed when folding a constant string."""


@dataclass
class CSharpArgument:
    """An invocation or attribute argument."""

    name: str | None
    """Name of a named argument (``name: x`` or ``Name = x``)."""

    value: Any | None
    """Expression node of the argument value."""

    @property
    def text(self) -> str:
        return node_text(self.value)


@dataclass
class CSharpAttribute:
    """An attribute applied to a declaration."""

    name: str
    arguments: list[CSharpArgument] = field(default_factory=list)

    @property
    def simple_name(self) -> str:
        """Name without namespace and without the ``Attribute`` suffix."""
        simple = self.name.rsplit(".", 1)[-1]
        if simple.endswith("Attribute") and simple != "Attribute":
            simple = simple[: -len("Attribute")]
        return simple


@dataclass
class CSharpType:
    """A class, record, struct or interface declaration."""

    name: str
    full_name: str
    namespace: str
    node: Any
    base_types: list[str] = field(default_factory=list)
    attributes: list[CSharpAttribute] = field(default_factory=list)
    start_line: int = 0
    end_line: int = 0


@dataclass
class CSharpMethod:
    """A method (or constructor) declaration with its line span."""

    name: str
    namespace: str
    type_full_name: str
    node: Any
    body: Any | None
    start_line: int
    end_line: int

    @property
    def full_name(self) -> str:
        return f"{self.type_full_name}.{self.name}" if self.type_full_name else self.name

    def contains_line(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line


@dataclass
class CSharpProperty:
    """A property declaration."""

    name: str
    type_text: str
    node: Any
    line: int


@dataclass
class CSharpInvocation:
    """An invocation expression with its member-access chain flattened."""

    node: Any
    callee: Any
    chain: list[str]
    """Identifiers of the member-access chain, e.g. ``["Create", "Table"]``."""

    arguments: list[CSharpArgument]
    type_arguments: list[str]
    """Type arguments of the invoked generic name, e.g. ``["Product"]``."""

    @property
    def callee_text(self) -> str:
        return node_text(self.callee)

    @property
    def method_name(self) -> str:
        return self.chain[-1] if self.chain else ""

    @property
    def line(self) -> int:
        return line_number(self.node)

    def argument(self, *names: str) -> CSharpArgument | None:
        """Return the first argument named like one of ``names`` (case-insensitive)."""
        wanted = {n.casefold() for n in names}
        for argument in self.arguments:
            if argument.name is not None and argument.name.casefold() in wanted:
                return argument
        return None

    @property
    def first_positional(self) -> CSharpArgument | None:
        for argument in self.arguments:
            if argument.name is None:
                return argument
        return None


class CSharpSyntaxTree:
    """Read-only view over one parsed C# file."""

    def __init__(self, root: Any, file_path: str = "") -> None:
        self.root = root
        self.file_path = file_path
        self._types: list[CSharpType] | None = None
        self._methods: list[CSharpMethod] | None = None

    @classmethod
    def parse(
        cls,
        content: str,
        file_path: str | Path = "Source.cs",
        manager: TreeSitterManager | None = None,
    ) -> CSharpSyntaxTree | None:
        """Parse C# source text.

        Returns:
            The syntax tree, or None when tree-sitter is unavailable or the
            parser fails
        """
        manager = manager or get_treesitter_manager()
        if not manager.is_available():
            return None
        try:
            tree = manager.parse(file_path, content)
        except (ImportError, ValueError) as e:
            logger.debug("Tree-sitter parse failed for %s: %s", file_path, e)
            return None
        return cls(tree.root_node, str(file_path))

    # Declarations

    def types(self) -> list[CSharpType]:
        """All type declarations, outer types before nested ones."""
        if self._types is None:
            self._types = [
                self._make_type(node)
                for node in walk(self.root)
                if node.type in TYPE_DECLARATION_TYPES
            ]
        return self._types

    def methods(self) -> list[CSharpMethod]:
        """All method and constructor declarations in document order."""
        if self._methods is None:
            self._methods = [
                self._make_method(node)
                for node in walk(self.root)
                if node.type in METHOD_DECLARATION_TYPES
            ]
        return self._methods

    def methods_of(self, type_decl: CSharpType) -> list[CSharpMethod]:
        """Methods declared directly in ``type_decl``."""
        return [
            m
            for m in self.methods()
            if find_ancestor(m.node, *TYPE_DECLARATION_TYPES) == type_decl.node
        ]

    def properties_of(self, type_decl: CSharpType) -> list[CSharpProperty]:
        """Properties declared directly in ``type_decl``."""
        result: list[CSharpProperty] = []
        for node in walk(type_decl.node):
            if node.type != "property_declaration":
                continue
            if find_ancestor(node, *TYPE_DECLARATION_TYPES) != type_decl.node:
                continue
            name = field_or_child(node, "name", "identifier")
            type_node = node.child_by_field_name("type")
            if name is None or type_node is None:
                continue
            result.append(
                CSharpProperty(
                    name=node_text(name),
                    type_text=node_text(type_node),
                    node=node,
                    line=line_number(node),
                )
            )
        return result

    def enclosing_method(self, line: int) -> CSharpMethod | None:
        """Innermost method whose line span contains ``line``."""
        best: CSharpMethod | None = None
        for method in self.methods():
            if method.contains_line(line):
                span = method.end_line - method.start_line
                if best is None or span <= best.end_line - best.start_line:
                    best = method
        return best

    def enclosing_type(self, node: Any) -> CSharpType | None:
        type_node = find_ancestor(node, *TYPE_DECLARATION_TYPES)
        if type_node is None:
            return None
        for type_decl in self.types():
            if type_decl.node == type_node:
                return type_decl
        return None

    def namespace_of(self, node: Any) -> str:
        """Dotted namespace enclosing ``node`` (block-scoped or file-scoped)."""
        parts: list[str] = []
        current = node.parent
        while current is not None:
            if current.type in NAMESPACE_TYPES:
                name = field_or_child(current, "name", "identifier", "qualified_name")
                if name is not None:
                    parts.append(node_text(name))
            current = current.parent
        if not parts:
            file_scoped = first_child(self.root, "file_scoped_namespace_declaration")
            if file_scoped is not None:
                name = field_or_child(file_scoped, "name", "identifier", "qualified_name")
                if name is not None:
                    parts.append(node_text(name))
        return ".".join(reversed(parts))

    def attributes_of(self, node: Any) -> list[CSharpAttribute]:
        """Attributes applied to a declaration node."""
        attributes: list[CSharpAttribute] = []
        for attribute_list in children_of(node, "attribute_list"):
            for attribute in children_of(attribute_list, "attribute"):
                name = field_or_child(
                    attribute, "name", "identifier", "qualified_name", "generic_name"
                )
                arguments: list[CSharpArgument] = []
                argument_list = first_child(attribute, "attribute_argument_list")
                if argument_list is not None:
                    arguments = [
                        _argument_parts(arg)
                        for arg in children_of(argument_list, "attribute_argument")
                    ]
                attributes.append(CSharpAttribute(name=node_text(name), arguments=arguments))
        return attributes

    # Expressions

    def invocations(self, scope: Any | None = None) -> list[CSharpInvocation]:
        """All invocation expressions under ``scope`` (default: the file), in document order."""
        return [
            self.invocation(node)
            for node in walk(scope if scope is not None else self.root)
            if node.type == "invocation_expression"
        ]

    def invocation(self, node: Any) -> CSharpInvocation:
        callee = field_or_child(node, "function", "member_access_expression", "identifier")
        argument_list = field_or_child(node, "arguments", "argument_list")
        arguments = (
            [_argument_parts(arg) for arg in children_of(argument_list, "argument")]
            if argument_list is not None
            else []
        )
        chain, last_name = member_chain(callee)
        return CSharpInvocation(
            node=node,
            callee=callee,
            chain=chain,
            arguments=arguments,
            type_arguments=type_arguments(last_name),
        )

    def string_literals(self, scope: Any | None = None) -> list[Any]:
        """All constant string literal nodes under ``scope``, in document order."""
        return [
            node
            for node in walk(scope if scope is not None else self.root)
            if node.type in STRING_LITERAL_TYPES
        ]

    def constant_string(self, node: Any | None) -> tuple[str | None, list[Any]]:
        """Reduce an expression to a constant string.

        Supports literals, parenthesized expressions, ``+`` concatenation and
        identifiers initialized with such expressions, traced through the
        enclosing method first and then the fields of the enclosing type.

        Returns:
            (value or None, literal nodes the value was built from)
        """
        return self._constant_string(node, 0)

    def _constant_string(self, node: Any | None, hops: int) -> tuple[str | None, list[Any]]:
        if node is None:
            return None, []
        pieces: list[str] = []
        literals: list[Any] = []
        # Right operands are pushed first so pieces come out left to right
        pending = [node]
        while pending:
            current = pending.pop()
            if current.type in STRING_LITERAL_TYPES:
                value = unquote_csharp_string(node_text(current))
                if value is None:
                    return None, []
                pieces.append(value)
                literals.append(current)
            elif current.type == "parenthesized_expression" and current.named_children:
                pending.append(current.named_children[0])
            elif current.type == "binary_expression":
                left = current.child_by_field_name("left")
                right = current.child_by_field_name("right")
                operator = current.child_by_field_name("operator")
                op_text = (
                    node_text(operator) if operator is not None else _anonymous_operator(current)
                )
                if op_text != "+" or left is None or right is None:
                    return None, []
                pending.append(right)
                pending.append(left)
            elif current.type == "identifier":
                if hops >= _MAX_TRACE_HOPS:
                    return None, []
                value, nodes = self._constant_string(self.find_initializer(current), hops + 1)
                if value is None:
                    return None, []
                pieces.append(value)
                literals.extend(nodes)
            else:
                return None, []
        return "".join(pieces), literals

    def find_initializer(self, identifier: Any) -> Any | None:
        """Initializer expression of the declarator an identifier refers to.

        Searches the enclosing method body, then the field declarations of the
        enclosing type. Within a scope the last declarator before the use wins.
        """
        name = node_text(identifier)
        method_node = find_ancestor(identifier, *METHOD_DECLARATION_TYPES)
        scopes: list[tuple[Any, bool]] = []
        if method_node is not None:
            scopes.append((method_node, False))
        type_node = find_ancestor(identifier, *TYPE_DECLARATION_TYPES)
        if type_node is not None:
            scopes.append((type_node, True))

        for scope, fields_only in scopes:
            found = None
            for declarator in walk(scope):
                if declarator.type != "variable_declarator":
                    continue
                if fields_only and find_ancestor(declarator, "field_declaration") is None:
                    continue
                if declarator_name(declarator) != name:
                    continue
                value = declarator_value(declarator)
                if value is None:
                    continue
                if found is None or (
                    not fields_only and declarator.start_byte < identifier.start_byte
                ):
                    found = value
            if found is not None:
                return found
        return None

    # Helpers

    def _make_type(self, node: Any) -> CSharpType:
        name = node_text(field_or_child(node, "name", "identifier"))
        containers: list[str] = [name]
        current = find_ancestor(node, *TYPE_DECLARATION_TYPES)
        while current is not None:
            containers.append(node_text(field_or_child(current, "name", "identifier")))
            current = find_ancestor(current, *TYPE_DECLARATION_TYPES)
        namespace = self.namespace_of(node)
        qualified = ".".join(reversed(containers))
        return CSharpType(
            name=name,
            full_name=f"{namespace}.{qualified}" if namespace else qualified,
            namespace=namespace,
            node=node,
            base_types=base_types_of(node),
            attributes=self.attributes_of(node),
            start_line=line_number(node),
            end_line=end_line_number(node),
        )

    def _make_method(self, node: Any) -> CSharpMethod:
        name = node_text(field_or_child(node, "name", "identifier"))
        body = field_or_child(node, "body", "block", "arrow_expression_clause")
        type_decl = self.enclosing_type(node)
        return CSharpMethod(
            name=name,
            namespace=self.namespace_of(node),
            type_full_name=type_decl.full_name if type_decl is not None else "",
            node=node,
            body=body,
            start_line=line_number(node),
            end_line=end_line_number(node),
        )


def base_types_of(node: Any) -> list[str]:
    """Base-type list entries of a type declaration, as written."""
    base_list = first_child(node, "base_list")
    if base_list is None:
        base_list = node.child_by_field_name("bases")
    if base_list is None:
        return []
    result: list[str] = []
    for child in base_list.named_children:
        if child.type in TYPE_NAME_TYPES:
            result.append(node_text(child))
        elif child.type == "primary_constructor_base_type":
            inner = next((c for c in child.named_children if c.type in TYPE_NAME_TYPES), None)
            if inner is not None:
                result.append(node_text(inner))
    return result


def member_chain(expression: Any | None) -> tuple[list[str], Any | None]:
    """Flatten a member-access chain into identifiers.

    ``Create.Table`` becomes ``["Create", "Table"]``. The walk stops at any
    receiver that is not a member access or a simple name, so for
    ``Create.Table("X").WithColumn`` only ``["WithColumn"]`` is returned.

    Returns:
        (identifiers, node of the last name)
    """
    parts: list[str] = []
    last_name: Any | None = None
    current = expression
    while current is not None and current.type == "member_access_expression":
        name = current.child_by_field_name("name")
        if name is None and current.named_children:
            name = current.named_children[-1]
        if last_name is None:
            last_name = name
        parts.append(simple_name(name))
        current = current.child_by_field_name("expression")
    if current is not None and current.type in _SIMPLE_NAME_TYPES:
        if last_name is None:
            last_name = current
        parts.append(simple_name(current))
    parts.reverse()
    return parts, last_name


def simple_name(node: Any | None) -> str:
    """Identifier of a simple or generic name (``Entity<T>`` gives ``Entity``)."""
    if node is None:
        return ""
    if node.type == "generic_name":
        identifier = first_child(node, "identifier")
        if identifier is not None:
            return node_text(identifier)
        return node_text(node).split("<", 1)[0].strip()
    return node_text(node)


def type_arguments(node: Any | None) -> list[str]:
    """Type arguments of a generic name, as written."""
    if node is None or node.type != "generic_name":
        return []
    argument_list = first_child(node, "type_argument_list")
    if argument_list is None:
        return []
    return [node_text(arg) for arg in argument_list.named_children]


def declarator_name(declarator: Any) -> str:
    name = field_or_child(declarator, "name", "identifier")
    return node_text(name)


def declarator_value(declarator: Any) -> Any | None:
    """Initializer expression of a variable declarator."""
    seen_equals = False
    for child in declarator.children:
        if child.type == "equals_value_clause":
            return child.named_children[-1] if child.named_children else None
        if not child.is_named and child.type == "=":
            seen_equals = True
            continue
        if seen_equals and child.is_named:
            return child
    return None


def _argument_parts(node: Any) -> CSharpArgument:
    named = list(node.named_children)
    name: str | None = None
    name_node: Any | None = None
    for child in named:
        if child.type in ("name_colon", "name_equals"):
            name_node = child
            inner = first_child(child, "identifier")
            name = node_text(inner) if inner is not None else node_text(child).rstrip(":= ")
            break
    if name_node is None:
        field_name = node.child_by_field_name("name")
        if field_name is not None:
            name_node = field_name
            name = node_text(field_name)
    if name_node is None and named and any(
        not child.is_named and child.type in (":", "=") for child in node.children
    ):
        name_node = named[0]
        name = node_text(named[0])
    values = [child for child in named if child != name_node]
    value = values[-1] if values else None
    # Some grammar releases parse ``Schema = "dbo"`` in attributes as an assignment
    if name is None and value is not None and node.type == "attribute_argument":
        if value.type == "assignment_expression":
            left = value.child_by_field_name("left")
            right = value.child_by_field_name("right")
            if left is not None and right is not None:
                return CSharpArgument(name=node_text(left), value=right)
    return CSharpArgument(name=name, value=value)


def _anonymous_operator(node: Any) -> str:
    for child in node.children:
        if not child.is_named:
            return child.type
    return ""


def nameof_target(node: Any | None) -> str | None:
    """Rightmost identifier of a ``nameof(...)`` expression, else None.

    ``nameof(Catalog.Product)`` gives ``Product``.
    """
    if node is None or node.type != "invocation_expression":
        return None
    callee = field_or_child(node, "function", "identifier")
    if callee is None or node_text(callee) != "nameof":
        return None
    argument_list = field_or_child(node, "arguments", "argument_list")
    arguments = children_of(argument_list, "argument") if argument_list is not None else []
    if not arguments:
        return None
    target = _argument_parts(arguments[0]).value
    if target is None:
        return None
    return rightmost_identifier(target)


def rightmost_identifier(node: Any) -> str:
    """Last identifier of a (member-access or qualified) name."""
    if node.type in ("member_access_expression", "qualified_name"):
        name = node.child_by_field_name("name")
        if name is None and node.named_children:
            name = node.named_children[-1]
        return simple_name(name)
    return simple_name(node)


def lambda_member(node: Any | None) -> str | None:
    """Member accessed by a lambda of the form ``x => x.Member``."""
    if node is None or node.type != "lambda_expression":
        return None
    body = node.child_by_field_name("body")
    if body is None and node.named_children:
        body = node.named_children[-1]
    if body is None or body.type != "member_access_expression":
        return None
    return rightmost_identifier(body)


def receiver_invocations(node: Any) -> list[Any]:
    """Invocations earlier in the same fluent chain, nearest first.

    For ``a.Entity<T>().HasOne(x).HasForeignKey(y)`` called on the
    ``HasForeignKey`` invocation this returns the ``HasOne`` and ``Entity``
    invocations.
    """
    result: list[Any] = []
    current = node
    while current is not None and current.type == "invocation_expression":
        callee = field_or_child(current, "function", "member_access_expression")
        if callee is None or callee.type != "member_access_expression":
            break
        receiver = callee.child_by_field_name("expression")
        if receiver is None or receiver.type != "invocation_expression":
            break
        result.append(receiver)
        current = receiver
    return result


def chain_root_identifier(node: Any) -> str:
    """Identifier at the root of a fluent chain (``builder`` in ``builder.ToTable(..)``)."""
    current = node
    while current is not None:
        if current.type == "invocation_expression":
            current = field_or_child(current, "function", "member_access_expression")
        elif current.type == "member_access_expression":
            current = current.child_by_field_name("expression")
        else:
            break
    return node_text(current) if current is not None and current.type == "identifier" else ""


def following_invocations(node: Any) -> list[Any]:
    """Invocations chained after ``node``, nearest first.

    For ``Create.Index("IX").OnTable("T").OnColumn("C")`` called on the
    ``Create.Index`` invocation this returns the ``OnTable`` and ``OnColumn``
    invocations.
    """
    result: list[Any] = []
    current = node
    while True:
        access = current.parent
        if access is None or access.type != "member_access_expression":
            break
        if access.child_by_field_name("expression") != current:
            break
        call = access.parent
        if call is None or call.type != "invocation_expression":
            break
        result.append(call)
        current = call
    return result
