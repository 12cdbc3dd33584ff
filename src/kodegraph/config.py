"""
Configuration for KodeGraph.

Settings are pydantic models grouped by section and loaded with
pydantic-settings. Precedence (highest to lowest):

1. Direct kwargs to load_config()
2. Environment variables (KODEGRAPH__SECTION__KEY)
3. YAML file (~/.kodegraph/config.yaml, or KODEGRAPH_CONFIG)
4. Built-in defaults (this file)

Examples:
    KODEGRAPH__LOGGING__LEVEL=DEBUG
    KODEGRAPH__INDEXING__RUN_TIMEOUT_SECONDS=600
    KODEGRAPH__SEARCH__SIMILARITY_FLOOR=0.7
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_HOME = Path.home() / ".kodegraph"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.yaml"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""

    pass


class StorageConfig(BaseModel):
    """Where the graph database and indexing workspaces live.

    Env vars:
        KODEGRAPH__STORAGE__HOME: Base directory (default: ~/.kodegraph)
        KODEGRAPH__STORAGE__DB_PATH: SQLite database file
        KODEGRAPH__STORAGE__WORKSPACE_DIR: Scratch directory for clones
    """

    home: Path = Field(default=DEFAULT_HOME)
    db_path: Path | None = Field(
        default=None, description="Defaults to <home>/graph.sqlite"
    )
    workspace_dir: Path | None = Field(
        default=None, description="Defaults to <home>/workspaces"
    )

    @property
    def resolved_db_path(self) -> Path:
        return Path(self.db_path or self.home / "graph.sqlite").expanduser()

    @property
    def resolved_workspace_dir(self) -> Path:
        return Path(self.workspace_dir or self.home / "workspaces").expanduser()


class IndexingConfig(BaseModel):
    """Indexing run behaviour.

    Env vars:
        KODEGRAPH__INDEXING__DEFAULT_BRANCH
        KODEGRAPH__INDEXING__MAX_WORKERS
        KODEGRAPH__INDEXING__RUN_TIMEOUT_SECONDS
    """

    default_branch: str = "main"
    language: str = "Java"
    max_workers: int = Field(default=4, ge=1)
    run_timeout_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Deadline for one indexing run; expiry marks the run FAILED.",
    )
    excluded_dirs: list[str] = Field(
        default_factory=lambda: ["test", "tests", ".git", "target", "build", "node_modules"]
    )
    strict_parse: bool = Field(
        default=True,
        description="Treat files with syntax errors as parse failures.",
    )


class EmbeddingConfig(BaseModel):
    """Embedding model and vector index settings."""

    model_name: str = "BAAI/bge-small-en-v1.5"
    batch_size: int = Field(default=64, ge=1)
    vector_index_enabled: bool = True


class SearchConfig(BaseModel):
    """Search ranking policy and per-mode result ceilings."""

    similarity_floor: float = Field(default=0.65, ge=-1.0, le=1.0)
    structural_limit: int = Field(default=20, ge=1)
    semantic_limit: int = Field(default=20, ge=1)
    hybrid_limit: int = Field(default=20, ge=1)
    exact_type_limit: int = Field(default=10, ge=1)
    exact_method_limit: int = Field(default=5, ge=1)
    type_boost: float = Field(default=1.5, gt=0)
    field_weight: float = Field(default=0.5, gt=0)
    default_max_results: int = Field(default=20, ge=1)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        KODEGRAPH__LOGGING__LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL
        KODEGRAPH__LOGGING__FORMAT: console or json
    """

    level: LogLevel = "WARNING"
    format: Literal["console", "json"] = "console"
    destination: str = "stderr"

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class _YamlSource(PydanticBaseSettingsSource):
    """Settings source that reads from a pre-loaded YAML mapping."""

    def __init__(self, settings_cls: type[BaseSettings], yaml_config: dict[str, Any]) -> None:
        super().__init__(settings_cls)
        self._yaml_config = yaml_config

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:  # noqa: ARG002
        val = self._yaml_config.get(field_name)
        return val, field_name, val is not None

    def __call__(self) -> dict[str, Any]:
        return self._yaml_config


class KodeGraphConfig(BaseSettings):
    """Root config. Env vars: KODEGRAPH__STORAGE__HOME, KODEGRAPH__SEARCH__..., etc."""

    model_config = SettingsConfigDict(
        env_prefix="KODEGRAPH__",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    storage: StorageConfig = StorageConfig()
    indexing: IndexingConfig = IndexingConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    search: SearchConfig = SearchConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        yaml_config = _load_yaml(_config_file_path())
        return (init_settings, env_settings, _YamlSource(settings_cls, yaml_config))


def _config_file_path() -> Path:
    override = os.environ.get("KODEGRAPH_CONFIG")
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def load_config(**kwargs: Any) -> KodeGraphConfig:
    """Load config: defaults < YAML file < env vars < kwargs.

    Raises:
        ConfigError: On invalid YAML syntax or validation errors.
    """
    try:
        return KodeGraphConfig(**kwargs)
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(loc) for loc in err["loc"])
        raise ConfigError(f"Invalid value for {field}: {err['msg']}") from e
