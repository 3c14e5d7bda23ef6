"""Graph artifact export.

Writes a build result to an output directory:

    graph/nodes.csv     key,kind,name,schema,file,domain
    graph/edges.csv     from,to,relation,to_kind,file,sources
    graph/graph.json    nodes and edges
    docs/bodies.jsonl   one body per line
    manifest.json       format version, timestamp, roots and counts

Rows are sorted by key so repeated builds over the same input produce
identical files (apart from the manifest timestamp).
"""

from __future__ import annotations

import csv
import json
import logging
from collections import Counter
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dbgraph_core.graph.builder import BuildResult
from dbgraph_core.graph.store import DbGraph

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"
NODE_COLUMNS = ("key", "kind", "name", "schema", "file", "domain")
EDGE_COLUMNS = ("from", "to", "relation", "to_kind", "file", "sources")


def export_nodes_csv(graph: DbGraph, path: Path) -> int:
    """Write the node table. Returns the number of rows."""
    nodes = graph.to_dict()["nodes"]
    _write_csv(path, NODE_COLUMNS, nodes)
    return len(nodes)


def export_edges_csv(graph: DbGraph, path: Path) -> int:
    """Write the edge table; ``sources`` is a ``;``-joined provenance list."""
    edges = [
        {**edge, "sources": ";".join(edge["sources"])} for edge in graph.to_dict()["edges"]
    ]
    _write_csv(path, EDGE_COLUMNS, edges)
    return len(edges)


def export_bodies_jsonl(result: BuildResult, path: Path) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="\n") as handle:
        for body in result.bodies:
            handle.write(json.dumps(body.to_dict(), ensure_ascii=False, sort_keys=True))
            handle.write("\n")
    return len(result.bodies)


def build_manifest(result: BuildResult) -> dict[str, Any]:
    """Summary of a build: roots, counts and counts per kind and relation."""
    kinds = Counter(node.kind.value for node in result.graph.get_all_nodes())
    relations = Counter(edge.relation.value for edge in result.graph.get_all_edges())
    return {
        "format_version": FORMAT_VERSION,
        "generated_at": datetime.now(UTC).isoformat(),
        "roots": result.sources.to_dict(),
        "counts": {
            "nodes": result.graph.node_count(),
            "edges": result.graph.edge_count(),
            "bodies": len(result.bodies),
        },
        "nodes_by_kind": dict(sorted(kinds.items())),
        "edges_by_relation": dict(sorted(relations.items())),
        "stats": result.stats.to_dict(),
    }


def write_graph_artifacts(result: BuildResult, output_dir: str | Path) -> dict[str, Path]:
    """Write every artifact of ``result`` under ``output_dir``.

    Returns:
        Artifact name -> written path
    """
    root = Path(output_dir)
    paths = {
        "nodes": root / "graph" / "nodes.csv",
        "edges": root / "graph" / "edges.csv",
        "graph": root / "graph" / "graph.json",
        "bodies": root / "docs" / "bodies.jsonl",
        "manifest": root / "manifest.json",
    }

    export_nodes_csv(result.graph, paths["nodes"])
    export_edges_csv(result.graph, paths["edges"])
    _write_json(paths["graph"], result.graph.to_dict())
    export_bodies_jsonl(result, paths["bodies"])
    _write_json(paths["manifest"], build_manifest(result))

    logger.info("Wrote graph artifacts to %s", root)
    return paths


def _write_csv(path: Path, columns: tuple[str, ...], rows: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(rows)


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
