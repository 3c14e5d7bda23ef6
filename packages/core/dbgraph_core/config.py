"""Per-run extraction configuration (the ``dbGraph`` section).

The configuration is an explicit, immutable value handed to every extractor
entry point. A missing or malformed section never raises: it degrades to the
empty configuration, which simply matches nothing.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

SECTION_NAME = "dbGraph"

DEFAULT_HOT_METHODS: tuple[str, ...] = ("SqlQuery", "ExecuteSql", "FromSql")


class DbGraphConfig(BaseModel):
    """Configuration consumed by the extractors."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    entity_base_types: tuple[str, ...] = Field(default=(), alias="entityBaseTypes")
    hot_methods: tuple[str, ...] = Field(default=(), alias="hotMethods")
    migration_base_suffixes: tuple[str, ...] = Field(
        default=("Migration",), alias="migrationBaseSuffixes"
    )
    migration_attribute_markers: tuple[str, ...] = Field(
        default=("Migration",), alias="migrationAttributeMarkers"
    )
    migration_up_methods: tuple[str, ...] = Field(default=("Up",), alias="migrationUpMethods")

    @property
    def effective_hot_methods(self) -> tuple[str, ...]:
        """Default hot tokens followed by the configured extras, deduplicated."""
        tokens = [t.strip() for t in (*DEFAULT_HOT_METHODS, *self.hot_methods)]
        return tuple(dict.fromkeys(t for t in tokens if t))

    @classmethod
    def empty(cls) -> DbGraphConfig:
        return cls()

    @classmethod
    def from_section(cls, section: Any) -> DbGraphConfig:
        """Build a config from an already-decoded ``dbGraph`` object."""
        if not isinstance(section, dict):
            return cls.empty()
        try:
            return cls.model_validate(section)
        except ValidationError as e:
            logger.warning("Invalid %s configuration, using empty config: %s", SECTION_NAME, e)
            return cls.empty()

    @classmethod
    def from_json_text(cls, text: str) -> DbGraphConfig:
        """Parse a JSON document and read its ``dbGraph`` section."""
        try:
            root = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("Configuration is not valid JSON, using empty config: %s", e)
            return cls.empty()
        if not isinstance(root, dict):
            return cls.empty()
        return cls.from_section(root.get(SECTION_NAME))


def load_db_graph_config(path: str | Path | None) -> DbGraphConfig:
    """Load the ``dbGraph`` section from a JSON file.

    Args:
        path: Path to the JSON file, or None

    Returns:
        The parsed configuration, or the empty configuration when the file is
        missing, unreadable or invalid
    """
    if path is None:
        return DbGraphConfig.empty()
    config_file = Path(path)
    if not config_file.is_file():
        logger.info("No configuration file at %s, using empty config", config_file)
        return DbGraphConfig.empty()
    try:
        text = config_file.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read %s: %s", config_file, e)
        return DbGraphConfig.empty()
    return DbGraphConfig.from_json_text(text)
