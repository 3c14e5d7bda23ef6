"""Application settings using pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Indexer settings loaded from environment variables (``DBGRAPH_*``)."""

    model_config = SettingsConfigDict(
        env_prefix="DBGRAPH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Input roots
    sql_root: str | None = Field(
        default=None,
        description="Root directory of the relational schema scripts (*.sql)",
    )
    code_roots: list[str] = Field(
        default_factory=list,
        description="C# source roots scanned for inline SQL, ORM mappings and migrations",
    )
    model_root: str | None = Field(
        default=None,
        description="Optional narrower root for ORM entity/mapping scanning",
    )
    migration_root: str | None = Field(
        default=None,
        description="Optional narrower root for migration class scanning",
    )

    # Output
    output_dir: str = Field(
        default="dbgraph-out",
        description="Directory receiving graph/, docs/ and manifest.json",
    )

    # dbGraph configuration section (entity base types, hot methods, ...)
    config_path: str | None = Field(
        default=None,
        description="JSON file holding a 'dbGraph' configuration section",
    )

    # Execution
    max_workers: int = Field(
        default=1,
        description="Number of threads used for per-file extraction",
    )
    treesitter_cache_size: int = Field(
        default=100,
        description="Maximum number of parsed C# trees kept in memory",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level for the CLI",
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
