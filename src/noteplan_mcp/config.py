"""Configuration module for the NotePlan MCP server."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from noteplan_mcp import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config, survives reinstalls
_USER_ENV = Path.home() / ".noteplan-mcp" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

_TRUTHY = ("true", "1", "yes")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in _TRUTHY


class NotePlanConfig(BaseModel):
    """Configuration for the NotePlan server."""

    # Base directory used to anchor relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEPLAN_BASE_DIR", "."))
    )
    # Root of the local NotePlan tree (contains Notes/ and Calendar/)
    storage_path: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEPLAN_STORAGE_PATH", "data/noteplan"))
    )
    # Spaces database (structured store)
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEPLAN_DATABASE_PATH", "data/db/spaces.db")
        )
    )
    # File extension for newly created local notes
    file_extension: str = Field(
        default_factory=lambda: os.getenv("NOTEPLAN_FILE_EXTENSION", ".md")
    )
    # Listing cache TTLs in seconds. Folder structure churns less than notes.
    notes_cache_ttl: float = Field(
        default_factory=lambda: float(os.getenv("NOTEPLAN_NOTES_CACHE_TTL", "5"))
    )
    folders_cache_ttl: float = Field(
        default_factory=lambda: float(os.getenv("NOTEPLAN_FOLDERS_CACHE_TTL", "15"))
    )
    # Lifetime of a dry-run confirmation token in seconds
    confirmation_ttl: float = Field(
        default_factory=lambda: float(os.getenv("NOTEPLAN_CONFIRMATION_TTL", "600"))
    )
    # External full-text search process
    ripgrep_path: str = Field(
        default_factory=lambda: os.getenv("NOTEPLAN_RIPGREP_PATH", "rg")
    )
    ripgrep_timeout: float = Field(
        default_factory=lambda: float(os.getenv("NOTEPLAN_RIPGREP_TIMEOUT", "5"))
    )
    ripgrep_enabled: bool = Field(
        default_factory=lambda: _env_bool("NOTEPLAN_RIPGREP_ENABLED", "true")
    )
    # Search and resolution tuning
    default_search_limit: int = Field(
        default_factory=lambda: int(os.getenv("NOTEPLAN_SEARCH_LIMIT", "20"))
    )
    resolve_min_score: float = Field(
        default_factory=lambda: float(os.getenv("NOTEPLAN_RESOLVE_MIN_SCORE", "0.88"))
    )
    resolve_ambiguity_delta: float = Field(
        default_factory=lambda: float(
            os.getenv("NOTEPLAN_RESOLVE_AMBIGUITY_DELTA", "0.06")
        )
    )
    fuzzy_threshold: float = Field(
        default_factory=lambda: float(os.getenv("NOTEPLAN_FUZZY_THRESHOLD", "60"))
    )
    # NotePlan editor preferences. Week days use NotePlan numbering (0 = Sunday).
    first_day_of_week: int = Field(
        default_factory=lambda: int(os.getenv("NOTEPLAN_FIRST_DAY_OF_WEEK", "1"))
    )
    dash_is_todo: bool = Field(
        default_factory=lambda: _env_bool("NOTEPLAN_DASH_IS_TODO", "false")
    )
    asterisk_is_todo: bool = Field(
        default_factory=lambda: _env_bool("NOTEPLAN_ASTERISK_IS_TODO", "true")
    )
    # Default space for new space notes, if any
    default_space_id: Optional[str] = Field(
        default_factory=lambda: os.getenv("NOTEPLAN_DEFAULT_SPACE_ID") or None
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("NOTEPLAN_SERVER_NAME", "noteplan-mcp"))
    server_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_limits(self) -> "NotePlanConfig":
        """Reject settings that would break caching, tokens, or resolution."""
        if self.notes_cache_ttl <= 0 or self.folders_cache_ttl <= 0:
            raise ValueError("cache TTLs must be > 0")
        if self.confirmation_ttl <= 0:
            raise ValueError("confirmation_ttl must be > 0")
        if not 0.0 <= self.resolve_min_score <= 1.0:
            raise ValueError("resolve_min_score must be within [0, 1]")
        if self.resolve_ambiguity_delta < 0:
            raise ValueError("resolve_ambiguity_delta must be >= 0")
        if not 0 <= self.first_day_of_week <= 6:
            raise ValueError("first_day_of_week must be within 0..6")
        if self.ripgrep_timeout <= 0:
            raise ValueError("ripgrep_timeout must be > 0")
        if self.default_search_limit > 200:
            logger.warning(
                "default_search_limit=%d exceeds the per-call maximum of 200; "
                "results will be capped",
                self.default_search_limit,
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_storage_root(self) -> Path:
        """Get the absolute path of the local NotePlan tree."""
        return self.get_absolute_path(self.storage_path)

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = NotePlanConfig()
