"""Tree-sitter language detection and grammar naming.

Only C# is parsed with tree-sitter; schema scripts go through the SQL
statement parser instead.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path


class TreeSitterLanguage(Enum):
    """Languages parsed with Tree-sitter in this package."""

    CSHARP = "c_sharp"


# Grammar names to try with tree-sitter-language-pack, in order. Releases of the
# pack have published the C# grammar under both names.
GRAMMAR_NAMES: dict[TreeSitterLanguage, tuple[str, ...]] = {
    TreeSitterLanguage.CSHARP: ("csharp", "c_sharp"),
}

# Map file extensions to tree-sitter language names
EXTENSION_TO_LANGUAGE: dict[str, TreeSitterLanguage] = {
    ".cs": TreeSitterLanguage.CSHARP,
}


def detect_language(file_path: str | Path) -> TreeSitterLanguage | None:
    """Detect the programming language from a file path.

    Args:
        file_path: Path to a source file

    Returns:
        TreeSitterLanguage if recognized, None otherwise
    """
    suffix = Path(str(file_path)).suffix.lower()
    return EXTENSION_TO_LANGUAGE.get(suffix)
