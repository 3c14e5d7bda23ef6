"""Shared path normalization helpers for root-relative file paths."""

from __future__ import annotations

from pathlib import Path, PurePosixPath


def canonicalize_repo_relative_path(path: str) -> str:
    """Canonicalize a root-relative path.

    Rules:
    - normalize path separators to "/"
    - strip leading "./" segments
    - strip leading "/" so paths remain root-relative
    - collapse redundant separators/segments via PurePosixPath
    """
    normalized = path.strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    normalized = str(PurePosixPath(normalized))
    if normalized == ".":
        return ""
    return normalized.lstrip("/")


def relative_to_root(path: str | Path, root: str | Path) -> str:
    """Path of ``path`` relative to ``root`` in canonical form.

    Paths outside ``root`` keep their full (canonicalized) form.
    """
    try:
        relative = Path(path).resolve().relative_to(Path(root).resolve())
    except ValueError:
        return canonicalize_repo_relative_path(str(path))
    return canonicalize_repo_relative_path(relative.as_posix())
