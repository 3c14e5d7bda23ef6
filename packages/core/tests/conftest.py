"""Pytest configuration and fixtures."""

import pytest
from dbgraph_core.config import DbGraphConfig
from dbgraph_core.treesitter.languages import TreeSitterLanguage
from dbgraph_core.treesitter.manager import TreeSitterManager, get_treesitter_manager


@pytest.fixture
def csharp_manager() -> TreeSitterManager:
    """Tree-sitter manager with a working C# grammar, or skip."""
    manager = get_treesitter_manager()
    if not manager.is_available():
        pytest.skip("tree-sitter-language-pack not installed")
    try:
        manager.get_parser(TreeSitterLanguage.CSHARP)
    except (ImportError, ValueError):
        pytest.skip("tree-sitter c_sharp language not installed")
    return manager


@pytest.fixture
def entity_config() -> DbGraphConfig:
    """Configuration naming BaseEntity as the entity base type."""
    return DbGraphConfig.from_section(
        {
            "entityBaseTypes": ["BaseEntity"],
            "hotMethods": ["QueryRaw"],
        }
    )
