"""Tree-sitter integration for C# parsing.

This module provides:
- Language detection from file extensions
- A thread-aware parser manager with a content-hash keyed tree cache
"""

from dbgraph_core.treesitter.languages import (
    EXTENSION_TO_LANGUAGE,
    GRAMMAR_NAMES,
    TreeSitterLanguage,
    detect_language,
)
from dbgraph_core.treesitter.manager import (
    TreeSitterManager,
    get_treesitter_manager,
)

__all__ = [
    # Languages
    "TreeSitterLanguage",
    "EXTENSION_TO_LANGUAGE",
    "GRAMMAR_NAMES",
    "detect_language",
    # Manager
    "TreeSitterManager",
    "get_treesitter_manager",
]
