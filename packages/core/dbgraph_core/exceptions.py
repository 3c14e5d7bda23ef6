"""Graph build exceptions."""

from __future__ import annotations

import threading


class DbGraphError(Exception):
    """Base class for graph build errors."""

    pass


class BuildCancelledError(DbGraphError, RuntimeError):
    """Raised when a build is cancelled between two files or classes."""

    def __init__(self, stage: str = "") -> None:
        self.stage = stage
        super().__init__(f"Graph build cancelled{f' during {stage}' if stage else ''}")


class SourceRootNotFoundError(DbGraphError):
    """Raised when a configured input root does not exist."""

    def __init__(self, role: str, path: str) -> None:
        self.role = role
        self.path = path
        super().__init__(f"{role} root not found: {path}")


def check_cancelled(cancel_event: threading.Event | None, stage: str = "") -> None:
    """Raise BuildCancelledError if ``cancel_event`` is set."""
    if cancel_event is not None and cancel_event.is_set():
        raise BuildCancelledError(stage)
