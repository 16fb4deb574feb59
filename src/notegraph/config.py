"""Configuration module for notegraph."""

import logging
import os
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config
_USER_ENV = Path.home() / ".notegraph" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in _TRUE_VALUES


def _env_tag_keys() -> Tuple[str, ...]:
    raw = os.getenv("NOTEGRAPH_TAG_KEYS", "tags,tag")
    return tuple(k.strip() for k in raw.split(",") if k.strip())


class NotegraphConfig(BaseModel):
    """Configuration for the note store."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEGRAPH_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEGRAPH_DATABASE_PATH", "data/db/notegraph.db")
        )
    )
    # When True, uses a private in-memory SQLite database (tests, scratch use)
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("NOTEGRAPH_IN_MEMORY_DB", "false")
    )
    # Collection used when a caller does not name one. Seeded by init_db.
    default_collection_id: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_DEFAULT_COLLECTION_ID", "1"))
    )
    # Front-matter keys whose values are merged into the note's tag set
    # instead of being stored as metadata.
    tag_keys: Tuple[str, ...] = Field(default_factory=_env_tag_keys)
    # Prefix for generated titles ("Untitled 1", "Untitled 2", ...)
    untitled_prefix: str = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_UNTITLED_PREFIX", "Untitled")
    )
    # Resolve pending links pointing at a note's title right after the
    # note is created or renamed.
    auto_resolve_backlinks: bool = Field(
        default_factory=lambda: _env_flag("NOTEGRAPH_AUTO_RESOLVE_BACKLINKS", "false")
    )
    # Upper bound on links examined by a single pending-link sweep
    pending_sweep_limit: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_PENDING_SWEEP_LIMIT", "500"))
    )
    # Logging configuration
    log_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEGRAPH_LOG_DIR", str(Path.home() / ".notegraph" / "logs"))
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_LOG_LEVEL", "INFO").upper()
    )
    metrics_file: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTEGRAPH_METRICS_FILE"))
            if os.getenv("NOTEGRAPH_METRICS_FILE")
            else None
        )
    )

    @model_validator(mode="after")
    def _validate_settings(self) -> "NotegraphConfig":
        """Reject settings the store cannot work with."""
        if self.pending_sweep_limit < 1:
            raise ValueError("pending_sweep_limit must be >= 1")
        if self.default_collection_id < 1:
            raise ValueError("default_collection_id must be >= 1")
        if not self.tag_keys:
            raise ValueError("tag_keys must name at least one front-matter key")
        if not self.untitled_prefix.strip():
            raise ValueError("untitled_prefix cannot be empty")
        if self.log_level not in logging.getLevelNamesMapping():
            logger.warning(
                f"Unknown log level '{self.log_level}', falling back to INFO"
            )
            self.log_level = "INFO"
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite://"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_log_level(self) -> int:
        """Get the configured log level as a logging constant."""
        return logging.getLevelNamesMapping().get(self.log_level, logging.INFO)


# Create a global config instance
config = NotegraphConfig()
