"""Graph build pipeline.

Discovers input files, runs the four extractors per file, resolves the
project-level ORM mappings and merges everything into one DbGraph.

Extraction is side-effect free and may run on a thread pool; merging always
happens on the calling thread, over fact lists sorted by file path, so the
result does not depend on scheduling.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dbgraph_core.analyzer.extractors.csharp_syntax import CSharpSyntaxTree
from dbgraph_core.analyzer.extractors.inline_sql import extract_inline_sql_facts
from dbgraph_core.analyzer.extractors.migrations import extract_migration_facts
from dbgraph_core.analyzer.extractors.orm import (
    OrmFileExtraction,
    resolve_orm_facts,
    scan_orm_file,
)
from dbgraph_core.analyzer.extractors.schema import extract_schema_facts
from dbgraph_core.analyzer.facts import BodyFact, FileFacts
from dbgraph_core.config import DbGraphConfig
from dbgraph_core.exceptions import (
    BuildCancelledError,
    SourceRootNotFoundError,
    check_cancelled,
)
from dbgraph_core.graph.merger import GraphMerger
from dbgraph_core.graph.store import DbGraph
from dbgraph_core.pathing import relative_to_root
from dbgraph_core.settings import Settings
from dbgraph_core.treesitter.manager import TreeSitterManager, get_treesitter_manager

logger = logging.getLogger(__name__)

EXCLUDED_DIRS = frozenset({"bin", "obj", ".git", "node_modules"})
SQL_SUFFIX = ".sql"
CSHARP_SUFFIX = ".cs"


@dataclass
class SourceSet:
    """Input roots of one build."""

    sql_root: Path | None = None
    code_roots: list[Path] = field(default_factory=list)
    model_root: Path | None = None
    """Narrower root for ORM scanning; the code roots when unset."""

    migration_root: Path | None = None
    """Narrower root for migration scanning; the code roots when unset."""

    @classmethod
    def from_settings(cls, settings: Settings) -> SourceSet:
        return cls(
            sql_root=Path(settings.sql_root) if settings.sql_root else None,
            code_roots=[Path(p) for p in settings.code_roots],
            model_root=Path(settings.model_root) if settings.model_root else None,
            migration_root=Path(settings.migration_root) if settings.migration_root else None,
        )

    def validate(self) -> None:
        """Raise SourceRootNotFoundError for a configured root that is missing."""
        named: list[tuple[str, Path | None]] = [
            ("SQL", self.sql_root),
            ("Model", self.model_root),
            ("Migration", self.migration_root),
        ]
        named.extend(("Code", root) for root in self.code_roots)
        for role, root in named:
            if root is not None and not root.is_dir():
                raise SourceRootNotFoundError(role, str(root))

    def to_dict(self) -> dict[str, Any]:
        return {
            "sql_root": str(self.sql_root) if self.sql_root else None,
            "code_roots": [str(p) for p in self.code_roots],
            "model_root": str(self.model_root) if self.model_root else None,
            "migration_root": str(self.migration_root) if self.migration_root else None,
        }


@dataclass(frozen=True)
class SourceFile:
    """A discovered input file and the extractors that apply to it."""

    path: Path
    relative_path: str
    inline_sql: bool = False
    orm: bool = False
    migrations: bool = False

    @property
    def is_sql(self) -> bool:
        return self.path.suffix.lower() == SQL_SUFFIX


@dataclass
class BuildStats:
    """Counters of one build."""

    sql_files: int = 0
    code_files: int = 0
    skipped_files: int = 0
    files_with_errors: int = 0
    nodes: int = 0
    edges: int = 0
    stubs: int = 0
    bodies: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "sql_files": self.sql_files,
            "code_files": self.code_files,
            "skipped_files": self.skipped_files,
            "files_with_errors": self.files_with_errors,
            "nodes": self.nodes,
            "edges": self.edges,
            "stubs": self.stubs,
            "bodies": self.bodies,
        }


@dataclass
class BuildResult:
    """The merged graph with its body store and counters."""

    graph: DbGraph
    bodies: list[BodyFact]
    stats: BuildStats
    sources: SourceSet = field(default_factory=SourceSet)


@dataclass
class FileOutcome:
    file_facts: list[FileFacts] = field(default_factory=list)
    orm: OrmFileExtraction | None = None
    skipped: bool = False


def iter_source_files(root: Path, suffix: str) -> Iterator[Path]:
    """Yield files under ``root`` with ``suffix``, sorted, skipping build output dirs."""
    for current_root, dirs, files in os.walk(root, topdown=True):
        dirs[:] = sorted(d for d in dirs if d not in EXCLUDED_DIRS)
        for name in sorted(files):
            if name.lower().endswith(suffix):
                yield Path(current_root) / name


class DbGraphBuilder:
    """Builds the unified dependency graph from a SourceSet."""

    def __init__(
        self,
        config: DbGraphConfig | None = None,
        max_workers: int = 1,
        manager: TreeSitterManager | None = None,
    ) -> None:
        self.config = config or DbGraphConfig.empty()
        self.max_workers = max(1, max_workers)
        self._manager = manager or get_treesitter_manager()

    def discover(self, sources: SourceSet) -> list[SourceFile]:
        """List input files in path order, each with the extractors that apply."""
        files: list[SourceFile] = []
        if sources.sql_root is not None:
            files.extend(
                SourceFile(path=p, relative_path=relative_to_root(p, sources.sql_root))
                for p in iter_source_files(sources.sql_root, SQL_SUFFIX)
            )

        csharp: dict[Path, dict[str, Any]] = {}

        def mark(root: Path, **flags: bool) -> None:
            for path in iter_source_files(root, CSHARP_SUFFIX):
                entry = csharp.setdefault(
                    path.resolve(),
                    {"path": path, "relative_path": relative_to_root(path, root)},
                )
                for flag, enabled in flags.items():
                    if enabled:
                        entry[flag] = True

        for root in sources.code_roots:
            mark(
                root,
                inline_sql=True,
                orm=sources.model_root is None,
                migrations=sources.migration_root is None,
            )
        if sources.model_root is not None:
            mark(sources.model_root, orm=True)
        if sources.migration_root is not None:
            mark(sources.migration_root, migrations=True)

        files.extend(SourceFile(**entry) for _, entry in sorted(csharp.items()))
        return files

    def build(
        self,
        sources: SourceSet,
        cancel_event: threading.Event | None = None,
    ) -> BuildResult:
        """Run a full build.

        Args:
            sources: Input roots
            cancel_event: Checked before each file and each class batch

        Returns:
            BuildResult with the merged graph

        Raises:
            SourceRootNotFoundError: If a configured root does not exist
            BuildCancelledError: If ``cancel_event`` is set during the build
        """
        sources.validate()
        files = self.discover(sources)
        stats = BuildStats(
            sql_files=sum(1 for f in files if f.is_sql),
            code_files=sum(1 for f in files if not f.is_sql),
        )
        logger.info(
            "Building graph from %d SQL and %d C# files", stats.sql_files, stats.code_files
        )

        outcomes = self._extract_all(files, cancel_event)

        file_facts: list[FileFacts] = []
        orm_extractions: list[OrmFileExtraction] = []
        for outcome in outcomes:
            if outcome.skipped:
                stats.skipped_files += 1
            file_facts.extend(outcome.file_facts)
            if outcome.orm is not None and not outcome.orm.is_empty():
                orm_extractions.append(outcome.orm)

        check_cancelled(cancel_event, "ORM resolution")
        file_facts.extend(resolve_orm_facts(orm_extractions, self.config))

        check_cancelled(cancel_event, "merge")
        graph = GraphMerger().merge(file_facts)
        bodies = sorted(
            (body for facts in file_facts for body in facts.bodies),
            key=lambda b: (b.key.casefold(), b.source_file, b.line),
        )

        stats.files_with_errors = len({f.file_path for f in file_facts if f.errors})
        stats.nodes = graph.node_count()
        stats.edges = graph.edge_count()
        stats.stubs = sum(1 for node in graph.get_all_nodes() if node.is_stub)
        stats.bodies = len(bodies)
        logger.info(
            "Graph built: %d nodes (%d stubs), %d edges, %d bodies",
            stats.nodes,
            stats.stubs,
            stats.edges,
            stats.bodies,
        )
        return BuildResult(graph=graph, bodies=bodies, stats=stats, sources=sources)

    def _extract_all(
        self, files: list[SourceFile], cancel_event: threading.Event | None
    ) -> list[FileOutcome]:
        if self.max_workers == 1 or len(files) < 2:
            return [self.extract_file(f, cancel_event) for f in files]

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(self.extract_file, f, cancel_event) for f in files]
            try:
                return [future.result() for future in futures]
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

    def extract_file(
        self, source_file: SourceFile, cancel_event: threading.Event | None = None
    ) -> FileOutcome:
        """Run every applicable extractor on one file.

        A file whose extraction fails is logged and skipped; only cancellation
        stops the build.
        """
        check_cancelled(cancel_event, source_file.relative_path)
        try:
            content = source_file.path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Skipping unreadable file %s: %s", source_file.path, e)
            return FileOutcome(skipped=True)

        try:
            return self._run_extractors(source_file, content, cancel_event)
        except BuildCancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Skipping %s, extraction failed: %s: %s",
                source_file.relative_path,
                type(e).__name__,
                e,
            )
            return FileOutcome(skipped=True)

    def _run_extractors(
        self,
        source_file: SourceFile,
        content: str,
        cancel_event: threading.Event | None,
    ) -> FileOutcome:
        outcome = FileOutcome()
        if source_file.is_sql:
            outcome.file_facts.append(extract_schema_facts(source_file.relative_path, content))
            return outcome

        tree = CSharpSyntaxTree.parse(content, source_file.path, self._manager)
        if tree is None:
            logger.warning("Could not parse C# file %s", source_file.relative_path)
            return FileOutcome(skipped=True)

        if source_file.inline_sql:
            outcome.file_facts.append(
                extract_inline_sql_facts(
                    source_file.relative_path, content, self.config, tree=tree
                )
            )
        if source_file.migrations:
            outcome.file_facts.append(
                extract_migration_facts(
                    source_file.relative_path,
                    content,
                    self.config,
                    tree=tree,
                    cancel_event=cancel_event,
                )
            )
        if source_file.orm:
            outcome.orm = scan_orm_file(source_file.relative_path, content, tree=tree)
        return outcome
