"""Configuration management using Pydantic Settings.

This module provides centralized, type-safe configuration for the Codebase
Indexer. Process-level settings are loaded from environment variables with
sensible defaults; the per-project match configuration is read from JSON
documents in the storage directory and merged over the global defaults.
"""

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from codebase_indexer.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from codebase_indexer.indexing.matcher import MatchPatternSet

# circular import: utils.logging imports config
logger = structlog.get_logger(__name__)

CONFIG_VERSION = "1.0.0"

DEFAULT_INCLUDE: list[str] = [
    "**/*.js", "**/*.jsx", "**/*.ts", "**/*.tsx",
    "**/*.java", "**/*.cs", "**/*.py", "**/*.rb",
    "**/*.php", "**/*.go", "**/*.rs", "**/*.cpp", "**/*.c", "**/*.h",
    "**/*.html", "**/*.htm", "**/*.css", "**/*.scss", "**/*.sass",
    "**/*.json", "**/*.xml", "**/*.yaml", "**/*.yml",
    "**/*.jsp", "**/*.sql", "**/*.md", "**/*.txt",
]

DEFAULT_EXCLUDE: list[str] = [
    "**/node_modules/**",
    "**/target/**",
    "**/bin/**",
    "**/obj/**",
    "**/.git/**",
    "**/.svn/**",
    "**/.hg/**",
    "**/dist/**",
    "**/build/**",
    "**/*.class",
    "**/*.jar",
    "**/*.dll",
    "**/*.exe",
    "**/*.so",
    "**/*.o",
    "**/*.a",
    "**/logs/**",
    "**/log/**",
    "**/temp/**",
    "**/tmp/**",
    "**/.codebase-index/**",
]

DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024


class AppSettings(BaseSettings):
    """Application-level settings."""

    model_config = SettingsConfigDict(env_prefix="APP_")

    name: str = "codebase-indexer"
    env: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.env == "production"


class APISettings(BaseSettings):
    """API server settings."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "127.0.0.1"
    port: int = 8765
    workers: int = 1
    reload: bool = False


class StorageSettings(BaseSettings):
    """Location of indexes, registry and configuration documents."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    root: Path = Path.home() / ".codebase-indexer"

    @property
    def indexes_dir(self) -> Path:
        """Directory holding one index document per project."""
        return self.root / "indexes"

    @property
    def projects_dir(self) -> Path:
        """Directory holding per-project configuration overrides."""
        return self.root / "projects"

    @property
    def registry_path(self) -> Path:
        """Path of the project registry document."""
        return self.root / "registry.json"

    @property
    def global_config_path(self) -> Path:
        """Path of the global configuration document."""
        return self.root / "global-config.json"

    def ensure_dirs(self) -> None:
        """Create the storage directories if missing."""
        self.indexes_dir.mkdir(parents=True, exist_ok=True)
        self.projects_dir.mkdir(parents=True, exist_ok=True)


class IndexingSettings(BaseSettings):
    """Bulk indexing and file watching settings."""

    model_config = SettingsConfigDict(env_prefix="INDEXING_")

    batch_size: int = Field(default=50, ge=1, le=10000)
    max_concurrent: int = Field(default=4, ge=1, le=256)
    debounce_ms: int = Field(default=500, ge=0, le=60000)
    hash_algorithm: Literal["md5", "sha1", "sha256"] = "md5"


class SearchSettings(BaseSettings):
    """Query defaults."""

    model_config = SettingsConfigDict(env_prefix="SEARCH_")

    max_results: int = Field(default=10, ge=1, le=1000)
    min_score: float = Field(default=0.3, ge=0.0, le=1.0)
    context_lines: int = Field(default=2, ge=0, le=50)


class Settings(BaseSettings):
    """Main settings container aggregating all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=AppSettings)
    api: APISettings = Field(default_factory=APISettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    indexing: IndexingSettings = Field(default_factory=IndexingSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: The application settings instance.
    """
    return Settings()


class ProjectConfig(BaseModel):
    """Merged (global defaults + project overrides) match configuration.

    One snapshot is taken per indexing or watch session and handed to the
    pipeline and watcher; it is never re-read mid-session.
    """

    model_config = {"frozen": True, "extra": "ignore"}

    include: list[str] = Field(default_factory=lambda: list(DEFAULT_INCLUDE))
    exclude: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE))
    max_file_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, ge=0)
    debounce_ms: int = Field(default=500, ge=0)

    @field_validator("include", "exclude")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        """Reject empty patterns."""
        for pattern in v:
            if not pattern.strip():
                raise ValueError("glob patterns must be non-empty")
        return v

    def pattern_set(self) -> "MatchPatternSet":
        """Compile the include/exclude lists into a pattern set.

        Raises:
            InvalidPatternError: If a pattern cannot be compiled.
        """
        from codebase_indexer.indexing.matcher import MatchPatternSet

        return MatchPatternSet.from_lists(self.include, self.exclude)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectConfig":
        """Validate a raw configuration mapping.

        Raises:
            ConfigurationError: If the mapping is malformed.
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                "Malformed project configuration",
                details={"errors": e.errors(include_url=False, include_context=False)},
                cause=e,
            ) from e


def default_global_config() -> dict[str, Any]:
    """Build the global configuration document written on first use."""
    search = SearchSettings()
    defaults = ProjectConfig(debounce_ms=IndexingSettings().debounce_ms)
    return {
        "version": CONFIG_VERSION,
        "defaults": defaults.model_dump(),
        "search": {
            "max_results": search.max_results,
            "min_score": search.min_score,
            "context_lines": search.context_lines,
        },
    }


def merge_configs(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge two configuration mappings.

    Nested mappings are merged recursively; lists and scalars in ``override``
    replace the value in ``base``.
    """
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict):
            base_value = base.get(key)
            result[key] = merge_configs(base_value if isinstance(base_value, dict) else {}, value)
        else:
            result[key] = value
    return result


_PROJECT_ID_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


class ConfigManager:
    """Reads and writes the global and per-project configuration documents."""

    def __init__(self, storage: StorageSettings | None = None) -> None:
        self.storage = storage or get_settings().storage
        self.global_config_path = self.storage.global_config_path
        self._ensure_global_config()

    def _ensure_global_config(self) -> None:
        if not self.global_config_path.exists():
            self.save_global_config(default_global_config())

    def _read_json(self, path: Path) -> dict[str, Any] | None:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to read config, using defaults", path=str(path), error=str(e))
            return None
        if not isinstance(data, dict):
            logger.warning("Config document is not an object, using defaults", path=str(path))
            return None
        return data

    def _write_json(self, path: Path, data: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def get_global_config(self) -> dict[str, Any]:
        """Global configuration merged over the built-in defaults."""
        data = self._read_json(self.global_config_path)
        defaults = default_global_config()
        if data is None:
            return defaults
        return merge_configs(defaults, data)

    def save_global_config(self, config: dict[str, Any]) -> None:
        """Write the global configuration document."""
        self._write_json(self.global_config_path, config)

    def update_global_config(self, updates: dict[str, Any]) -> None:
        """Merge ``updates`` into the global configuration and save it."""
        self.save_global_config(merge_configs(self.get_global_config(), updates))

    def reset_to_defaults(self) -> None:
        """Overwrite the global configuration with the built-in defaults."""
        self.save_global_config(default_global_config())
        logger.info("Global configuration reset to defaults")

    def project_config_path(self, project_id: str) -> Path:
        """Path of the override document for a project."""
        return self.storage.projects_dir / f"{_PROJECT_ID_UNSAFE.sub('_', project_id)}.json"

    def get_project_config(self, project_id: str) -> ProjectConfig:
        """Global defaults merged with the project's overrides.

        Raises:
            ConfigurationError: If the merged configuration is malformed.
        """
        defaults = self.get_global_config().get("defaults", {})
        overrides = self._read_json(self.project_config_path(project_id)) or {}
        return ProjectConfig.from_dict(merge_configs(defaults, overrides))

    def save_project_config(self, project_id: str, overrides: dict[str, Any]) -> None:
        """Replace the override document for a project."""
        ProjectConfig.from_dict(merge_configs(self.get_global_config().get("defaults", {}), overrides))
        self._write_json(self.project_config_path(project_id), overrides)

    def update_project_config(self, project_id: str, updates: dict[str, Any]) -> None:
        """Merge ``updates`` into the project's override document."""
        current = self._read_json(self.project_config_path(project_id)) or {}
        self.save_project_config(project_id, merge_configs(current, updates))

    def delete_project_config(self, project_id: str) -> bool:
        """Delete the override document for a project.

        Returns:
            True if a document was deleted.
        """
        path = self.project_config_path(project_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def get_search_config(self) -> SearchSettings:
        """Search defaults from the global configuration document."""
        data = self.get_global_config().get("search", {})
        try:
            return SearchSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError("Malformed search configuration", cause=e) from e
