"""Command line entry point for building the database dependency graph.

Usage:
    dbgraph --sql-root db/ --code-root src/ --output-dir out/

Every option falls back to the matching ``DBGRAPH_*`` environment variable
(or ``.env`` entry) when omitted.
"""

from __future__ import annotations

import argparse
import logging
import threading
from typing import Any

from dbgraph_core.config import load_db_graph_config
from dbgraph_core.exceptions import BuildCancelledError, SourceRootNotFoundError
from dbgraph_core.exports.graph_files import write_graph_artifacts
from dbgraph_core.graph.builder import BuildResult, DbGraphBuilder, SourceSet
from dbgraph_core.settings import Settings, get_settings
from dbgraph_core.treesitter.manager import get_treesitter_manager

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dbgraph",
        description="Build a dependency graph linking C# code to relational database objects",
    )
    parser.add_argument("--sql-root", dest="sql_root", help="Root of the *.sql schema scripts")
    parser.add_argument(
        "--code-root",
        dest="code_roots",
        action="append",
        help="C# source root (repeatable)",
    )
    parser.add_argument("--model-root", dest="model_root", help="Narrower root for ORM scanning")
    parser.add_argument(
        "--migration-root", dest="migration_root", help="Narrower root for migration scanning"
    )
    parser.add_argument("--output-dir", dest="output_dir", help="Artifact output directory")
    parser.add_argument(
        "--config", dest="config_path", help="JSON file holding a 'dbGraph' section"
    )
    parser.add_argument(
        "--max-workers", dest="max_workers", type=int, help="Extraction threads"
    )
    parser.add_argument("--log-level", dest="log_level", help="Logging level (default INFO)")
    return parser


def settings_from_args(argv: list[str] | None = None) -> Settings:
    """Settings from the environment with the given command line options applied."""
    args = build_parser().parse_args(argv)
    overrides: dict[str, Any] = {k: v for k, v in vars(args).items() if v is not None}
    return get_settings().model_copy(update=overrides)


def run(settings: Settings, cancel_event: threading.Event | None = None) -> BuildResult:
    """Build the graph described by ``settings`` and write its artifacts."""
    config = load_db_graph_config(settings.config_path)
    builder = DbGraphBuilder(
        config=config,
        max_workers=settings.max_workers,
        manager=get_treesitter_manager(cache_size=settings.treesitter_cache_size),
    )
    result = builder.build(SourceSet.from_settings(settings), cancel_event)
    write_graph_artifacts(result, settings.output_dir)
    return result


def main(argv: list[str] | None = None) -> int:
    settings = settings_from_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    cancel_event = threading.Event()
    try:
        result = run(settings, cancel_event)
    except KeyboardInterrupt:
        cancel_event.set()
        logger.warning("Interrupted, graph build cancelled")
        return 1
    except BuildCancelledError as e:
        logger.warning("%s", e)
        return 1
    except SourceRootNotFoundError as e:
        logger.error("%s", e)
        return 1

    stats = result.stats
    logger.info(
        "Done: %d nodes, %d edges, %d bodies from %d SQL and %d C# files (%d skipped)",
        stats.nodes,
        stats.edges,
        stats.bodies,
        stats.sql_files,
        stats.code_files,
        stats.skipped_files,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
