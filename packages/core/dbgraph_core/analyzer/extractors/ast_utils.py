"""Shared tree-sitter AST helpers for the C# extractors."""

from __future__ import annotations

import re
from typing import Any

STRING_LITERAL_TYPES = frozenset(
    {"string_literal", "verbatim_string_literal", "raw_string_literal"}
)

_ESCAPE_RE = re.compile(r"\\(u[0-9a-fA-F]{4}|U[0-9a-fA-F]{8}|x[0-9a-fA-F]{1,4}|.)", re.DOTALL)
_SIMPLE_ESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "0": "\0",
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "e": "\x1b",
}


def walk(node: Any) -> Any:
    """Yield node and all descendants in preorder.

    Iterative: long concatenation chains nest thousands of levels deep.
    """
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def node_text(node: Any | None) -> str:
    """Return the source text covered by a node."""
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def line_number(node: Any | None) -> int:
    """Return 1-based node start line."""
    if node is None:
        return 1
    return int(node.start_point[0]) + 1


def end_line_number(node: Any | None) -> int:
    """Return 1-based node end line."""
    if node is None:
        return 1
    return int(node.end_point[0]) + 1


def first_child(node: Any, node_type: str) -> Any | None:
    """Return first direct child with the given type."""
    for child in node.children:
        if child.type == node_type:
            return child
    return None


def children_of(node: Any, node_type: str) -> list[Any]:
    """Return all direct children with the given type."""
    return [child for child in node.children if child.type == node_type]


def field_or_child(node: Any, field: str, *node_types: str) -> Any | None:
    """Return a named field, falling back to the first child of the given types.

    Grammar releases disagree on which children carry field names, so callers
    name both.
    """
    found = node.child_by_field_name(field)
    if found is not None:
        return found
    for child in node.named_children:
        if child.type in node_types:
            return child
    return None


def find_ancestor(node: Any, *node_types: str) -> Any | None:
    """Return the closest ancestor of one of the given types."""
    current = node.parent
    while current is not None:
        if current.type in node_types:
            return current
        current = current.parent
    return None


def unquote_csharp_string(raw: str) -> str | None:
    """Return the value of a C# string literal, or None for anything else.

    Handles regular (with escapes and the ``u8`` suffix), verbatim and raw
    literals. Interpolated strings are not constant and yield None.
    """
    text = raw.strip()
    if text.endswith("u8"):
        text = text[:-2]
    if text.startswith('@"') and text.endswith('"') and len(text) >= 3:
        return text[2:-1].replace('""', '"')
    if text.startswith('"""'):
        return _unquote_raw_string(text)
    if text.startswith('"') and text.endswith('"') and len(text) >= 2:
        return _ESCAPE_RE.sub(_replace_escape, text[1:-1])
    return None


def _replace_escape(match: re.Match[str]) -> str:
    code = match.group(1)
    if code[0] in "uUx" and len(code) > 1:
        return chr(int(code[1:], 16))
    return _SIMPLE_ESCAPES.get(code, code)


def _unquote_raw_string(text: str) -> str | None:
    quotes = len(text) - len(text.lstrip('"'))
    if len(text) < 2 * quotes or not text.endswith('"' * quotes):
        return None
    inner = text[quotes:-quotes]
    if "\n" not in inner:
        return inner
    lines = inner.split("\n")
    indent = lines[-1] if not lines[-1].strip() else ""
    body = lines[1:-1] if not lines[-1].strip() else lines[1:]
    return "\n".join(line[len(indent) :] if line.startswith(indent) else line for line in body)
