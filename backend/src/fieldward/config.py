"""Process settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from fieldward.errors import ConfigurationError
from fieldward.persistence.config import DatabaseConfig


def resolve_base_path(cwd: Path | None = None) -> Path:
    """Project root: the parent of ``backend/`` when run from there, else cwd."""
    cwd = cwd or Path.cwd()
    return cwd.parent if cwd.name == "backend" else cwd


@dataclass
class Settings:
    base_path: Path
    metadata_path: Path
    database: DatabaseConfig
    log_level: str = "INFO"
    identifier_retries: int = 5

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> Settings:
        """Build settings from environment variables.

        - FIELDWARD_METADATA_PATH: metadata directory (default {base}/metadata)
        - DATABASE_URL / FIELDWARD_DB_PATH: see DatabaseConfig.from_env
        - FIELDWARD_LOG_LEVEL: logging level name (default INFO)
        - FIELDWARD_IDENTIFIER_RETRIES: identifier conflict retries (default 5)
        """
        base_path = base_path or resolve_base_path()

        metadata_path = os.environ.get("FIELDWARD_METADATA_PATH")
        retries = os.environ.get("FIELDWARD_IDENTIFIER_RETRIES", "5")
        try:
            identifier_retries = int(retries)
        except ValueError:
            raise ConfigurationError(
                f"FIELDWARD_IDENTIFIER_RETRIES must be an integer, got {retries!r}"
            ) from None
        if identifier_retries < 0:
            raise ConfigurationError("FIELDWARD_IDENTIFIER_RETRIES must not be negative")

        return cls(
            base_path=base_path,
            metadata_path=Path(metadata_path) if metadata_path else base_path / "metadata",
            database=DatabaseConfig.from_env(base_path),
            log_level=os.environ.get("FIELDWARD_LOG_LEVEL", "INFO").upper(),
            identifier_retries=identifier_retries,
        )
