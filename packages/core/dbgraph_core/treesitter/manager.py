"""Shared C# parser manager.

Tree-sitter parsers are not thread-safe, so each worker thread gets its own
parser. Parsed trees are shared through a bounded LRU cache keyed by source
path and guarded by a content digest, so a rebuild over unchanged files reuses
the previous trees.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dbgraph_core.treesitter.languages import GRAMMAR_NAMES, TreeSitterLanguage, detect_language

logger = logging.getLogger(__name__)


def content_digest(content: str) -> str:
    return hashlib.blake2b(content.encode("utf-8"), digest_size=12).hexdigest()


@dataclass
class ParsedSource:
    """A syntax tree together with the digest of the text it was parsed from."""

    source_path: str
    digest: str
    tree: Any  # tree_sitter.Tree


class TreeSitterManager:
    """Process-wide owner of C# parsers and parsed trees."""

    _instance: TreeSitterManager | None = None
    _instance_lock = threading.Lock()

    def __init__(self, cache_size: int = 100):
        self._cache_size = cache_size
        self._thread_state = threading.local()
        self._sources: OrderedDict[str, ParsedSource] = OrderedDict()
        self._sources_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._available: bool | None = None

    @classmethod
    def get_instance(cls, cache_size: int = 100) -> TreeSitterManager:
        """Shared manager; ``cache_size`` only applies on first creation."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls(cache_size=cache_size)
            return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the shared manager (tests)."""
        with cls._instance_lock:
            cls._instance = None

    def is_available(self) -> bool:
        """Whether the grammar package can be imported."""
        if self._available is None:
            try:
                import tree_sitter_language_pack  # noqa: F401
            except ImportError:
                logger.warning(
                    "tree-sitter-language-pack is not installed; C# sources will be skipped"
                )
                self._available = False
            else:
                self._available = True
        return self._available

    def get_parser(self, language: TreeSitterLanguage) -> Any:
        """Parser for ``language`` owned by the calling thread.

        Raises:
            ImportError: If tree-sitter-language-pack is not installed
            ValueError: If the pack knows none of the grammar names
        """
        if not self.is_available():
            raise ImportError("tree-sitter-language-pack is required to parse C# sources")

        parsers: dict[TreeSitterLanguage, Any] = self._thread_state.__dict__.setdefault(
            "parsers", {}
        )
        parser = parsers.get(language)
        if parser is None:
            parser = parsers[language] = self._load_parser(language)
        return parser

    @staticmethod
    def _load_parser(language: TreeSitterLanguage) -> Any:
        from tree_sitter_language_pack import get_parser

        errors: list[str] = []
        for grammar in GRAMMAR_NAMES.get(language, (language.value,)):
            try:
                return get_parser(grammar)
            except (LookupError, ValueError) as e:
                errors.append(f"{grammar}: {e}")
        raise ValueError(f"No tree-sitter grammar for {language.value} ({'; '.join(errors)})")

    def parse(self, file_path: str | Path, content: str) -> Any:
        """Syntax tree for ``content``, read from ``file_path``.

        Raises:
            ImportError: If tree-sitter is not available
            ValueError: If the path is not a C# source
        """
        language = detect_language(file_path)
        if language is None:
            raise ValueError(f"Unsupported file type: {Path(file_path).suffix}")

        source_path = str(Path(file_path).resolve())
        digest = content_digest(content)
        with self._sources_lock:
            cached = self._sources.get(source_path)
            if cached is not None and cached.digest == digest:
                self._sources.move_to_end(source_path)
                self._hits += 1
                return cached.tree
            self._misses += 1

        tree = self.get_parser(language).parse(content.encode("utf-8"))

        with self._sources_lock:
            self._sources[source_path] = ParsedSource(source_path, digest, tree)
            self._sources.move_to_end(source_path)
            while len(self._sources) > self._cache_size:
                evicted, _ = self._sources.popitem(last=False)
                logger.debug("Evicted parsed tree for %s", evicted)
        return tree

    def clear_cache(self) -> None:
        with self._sources_lock:
            self._sources.clear()
            self._hits = 0
            self._misses = 0

    def get_cache_stats(self) -> dict[str, int]:
        with self._sources_lock:
            return {
                "cached_trees": len(self._sources),
                "max_size": self._cache_size,
                "hits": self._hits,
                "misses": self._misses,
            }


def get_treesitter_manager(cache_size: int = 100) -> TreeSitterManager:
    """Shared TreeSitterManager."""
    return TreeSitterManager.get_instance(cache_size=cache_size)
