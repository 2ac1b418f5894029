"""Settings for the migration tool.

Values come from, in increasing priority: a ``.env`` file, environment
variables (``STORAGE__LIVE_CONNECTION_STRING``, ``MIGRATION__PAGE_SIZE``, ...)
and a YAML or JSON file. The JSON file may be the service's own
``appsettings.json``; its ``Storage`` section and PascalCase option names are
understood.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SECRET_FIELDS = (
    "uat_connection_string",
    "live_connection_string",
    "uat_file_storage_db_connection_string",
)

REDACTED = "***REDACTED***"


class LogLevel(str, Enum):
    """Level names accepted by the stdlib logging module."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


def _alias(name: str, option: str) -> AliasChoices:
    return AliasChoices(name, option)


class StorageConfig(BaseModel):
    """Where content is read from and written to."""

    uat_connection_string: SecretStr = Field(
        validation_alias=_alias("uat_connection_string", "UatConnectionString"),
        description="Connection string of the destination (UAT) storage account",
    )
    live_connection_string: SecretStr = Field(
        validation_alias=_alias("live_connection_string", "LiveConnectionString"),
        description="Connection string of the source (live) storage account",
    )
    uat_file_storage_db_connection_string: SecretStr = Field(
        validation_alias=_alias(
            "uat_file_storage_db_connection_string", "UatFileStorageDbConnectionString"
        ),
        description="sqlite:///path or SQL Server connection string of the UAT file storage database",
    )
    content_folder_path: Path = Field(
        validation_alias=_alias("content_folder_path", "ContentFolderPath"),
        description="Root folder holding one sub-folder per customer",
    )
    alternative_content_folder_path: Optional[Path] = Field(
        default=None,
        validation_alias=_alias("alternative_content_folder_path", "AlternativeContentFolderPath"),
        description="Second content root, migrated after the first",
    )

    @field_validator("content_folder_path", mode="before")
    @classmethod
    def require_folder(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            raise ValueError("content folder path must not be empty")
        return v

    @field_validator("alternative_content_folder_path", mode="before")
    @classmethod
    def blank_folder_is_unset(cls, v: Any) -> Any:
        """Treat an empty alternative folder as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("content_folder_path", "alternative_content_folder_path")
    @classmethod
    def resolve_folder(cls, v: Optional[Path]) -> Optional[Path]:
        """Anchor relative folders at the working directory."""
        if v is None or v.is_absolute():
            return v
        return Path.cwd() / v

    @property
    def content_roots(self) -> List[Path]:
        """Content roots in migration order."""
        if self.alternative_content_folder_path is None:
            return [self.content_folder_path]
        return [self.content_folder_path, self.alternative_content_folder_path]


class MigrationConfig(BaseModel):
    """How the migration runs."""

    perform_reset: bool = Field(
        default=True,
        description="Delete non-platform UAT containers and ContainerInfo rows first",
    )
    page_size: int = Field(
        default=5000,
        ge=1,
        le=5000,
        description="Results per container or blob listing page",
    )
    max_concurrency: int = Field(
        default=2,
        ge=1,
        le=32,
        description="Transfer units running at once for one customer",
    )
    parallel_phases: bool = Field(
        default=False,
        description="Run the content roots and the cloud phase at the same time",
    )
    object_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Deadline for copying one object, unlimited when unset",
    )
    retry_max_attempts: int = Field(default=3, ge=1, description="Attempts per transient storage failure")
    retry_backoff_factor: float = Field(default=2.0, ge=0.0, description="Multiplier of the retry backoff")


class LoggingConfig(BaseModel):
    """Where structured log records go."""

    level: LogLevel = LogLevel.INFO
    console: bool = Field(default=True, description="Write records to stderr")
    file: Optional[Path] = Field(default=None, description="Also write records to this file")
    format: Literal["text", "json"] = "text"
    max_bytes: int = Field(
        default=5 * 1024 * 1024,
        ge=64 * 1024,
        description="Size at which the log file is rotated",
    )
    backup_count: int = Field(default=5, ge=0, description="Rotated log files kept")


class Config(BaseSettings):
    """Complete migration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    storage: StorageConfig
    migration: MigrationConfig = Field(default_factory=MigrationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Read settings from a ``.yaml``/``.yml`` or ``.json`` file.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the suffix is not a supported format
        """
        data = _read_document(path)
        # appsettings.json names the section "Storage"
        if "storage" not in data and "Storage" in data:
            data["storage"] = data.pop("Storage")
        # Redacted placeholders must not shadow the environment
        storage = data.get("storage") or {}
        for name in [key for key, value in storage.items() if value == REDACTED]:
            del storage[name]
        return cls(**data)

    def to_file(self, path: Path) -> None:
        """Write settings to ``path`` without the connection strings.

        They are read back from ``STORAGE__*`` environment variables or ``.env``.
        """
        _write_document(path, self.summary())

    def validate_paths(self) -> List[str]:
        """List the content roots that are not existing folders."""
        return [
            f"Content folder not found: {root}"
            for root in self.storage.content_roots
            if not root.is_dir()
        ]

    def summary(self) -> Dict[str, Any]:
        """Settings without connection strings, for logging."""
        return self.model_dump(mode="json", exclude={"storage": set(SECRET_FIELDS)})


def _read_document(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    text = path.read_text(encoding="utf-8-sig")
    if path.suffix in (".yaml", ".yml"):
        return yaml.safe_load(text) or {}
    if path.suffix == ".json":
        return json.loads(text)
    raise ValueError(f"Unsupported configuration file format: {path.suffix}")


def _write_document(path: Path, data: Dict[str, Any]) -> None:
    if path.suffix in (".yaml", ".yml"):
        text = yaml.safe_dump(data, sort_keys=False)
    elif path.suffix == ".json":
        text = json.dumps(data, indent=2)
    else:
        raise ValueError(f"Unsupported configuration file format: {path.suffix}")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def load_config(
    config_file: Optional[Path] = None,
    env_file: Optional[Path] = None,
) -> Config:
    """Assemble settings and check that the content roots exist.

    Args:
        config_file: YAML/JSON settings file; environment only when omitted
        env_file: Extra ``.env`` file loaded into the environment first

    Returns:
        Validated settings

    Raises:
        ValueError: If a content root is missing
    """
    if env_file is not None and env_file.exists():
        load_dotenv(env_file)

    config = Config.from_file(config_file) if config_file is not None else Config()

    missing = config.validate_paths()
    if missing:
        raise ValueError("Configuration validation failed:\n" + "\n".join(missing))
    return config
