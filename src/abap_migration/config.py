"""Configuration management for ABAP Bridge using Pydantic.

This module provides type-safe configuration models for the remote systems,
the text-generation services, state persistence, logging, discovery and the
per-unit migration worker.
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SystemConfig(BaseModel):
    """Configuration for a remote ABAP system reached through its tool gateway."""

    url: str = Field(..., description="Tool gateway URL for this system")
    token: str | None = Field(default=None, description="Gateway authentication token")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    timeout: int = Field(default=120, ge=1, le=1200, description="Request timeout in seconds")
    rate_limit: int = Field(default=10, ge=1, le=50, description="Requests per second limit")
    retry_attempts: int = Field(default=3, ge=1, le=10, description="Attempts per tool call")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate and normalize URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")


class ServiceConfig(BaseModel):
    """Configuration for a text-generation service endpoint."""

    url: str = Field(..., description="Service URL")
    token: str | None = Field(default=None, description="API token")
    model: str | None = Field(default=None, description="Model identifier passed to the service")
    timeout: int = Field(default=300, ge=1, le=3600, description="Request timeout in seconds")
    max_output_tokens: int = Field(default=4000, ge=100, le=64000)
    retry_attempts: int = Field(default=3, ge=1, le=10)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate and normalize URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")


class StateConfig(BaseModel):
    """State management configuration."""

    db_path: str = Field(
        default="./migration_state.db", description="Path to state database file or database URL"
    )
    db_pool_size: int = Field(default=5, ge=1, le=50)
    db_max_overflow: int = Field(default=10, ge=1, le=100)
    db_pool_timeout: int = Field(default=30, ge=1, le=300)
    db_pool_recycle: int = Field(default=3600, ge=60, le=28800)

    @property
    def database_url(self) -> str:
        """Database URL, treating bare paths as SQLite files."""
        if self.db_path.startswith(("postgresql://", "sqlite://", "mysql://")):
            return self.db_path
        return f"sqlite:///{self.db_path}"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="WARNING", description="Console log level")
    file_level: str = Field(default="DEBUG", description="File log level")
    format: str = Field(default="json", description="Log file format (json or console)")
    file: str | None = Field(default="logs/migration.log", description="Log file path")
    log_payloads: bool = Field(
        default=False, description="Log request/response payloads at DEBUG level"
    )
    max_payload_size: int = Field(default=10000, ge=100, le=1000000)

    @field_validator("level", "file_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "console"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Log format must be one of: {', '.join(valid_formats)}")
        return v_lower


class DiscoveryConfig(BaseModel):
    """Discovery crawler configuration."""

    customer_prefixes: list[str] = Field(
        default_factory=lambda: ["Z", "Y"],
        description="Name prefixes that mark customer-owned objects worth crawling into",
    )
    search_max_results: int = Field(default=10, ge=1, le=200)
    type_guess_max_results: int = Field(default=5, ge=1, le=200)
    source_preview_chars: int = Field(default=500, ge=50, le=20000)
    max_type_hints: int = Field(default=20, ge=0, le=200)

    @field_validator("customer_prefixes")
    @classmethod
    def validate_prefixes(cls, v: list[str]) -> list[str]:
        """Normalize prefixes to upper case and reject empty ones."""
        prefixes = [p.strip().upper() for p in v if p and p.strip()]
        if not prefixes:
            raise ValueError("At least one customer namespace prefix is required")
        return prefixes

    def is_customer_object(self, name: str) -> bool:
        """Return True if ``name`` belongs to the customer namespace."""
        return name.upper().startswith(tuple(self.customer_prefixes))


class WorkerConfig(BaseModel):
    """Per-unit migration worker configuration."""

    max_tool_rounds: int = Field(default=10, ge=1, le=50, description="Agent tool-call rounds")
    result_preview_chars: int = Field(default=300, ge=20, le=10000)
    global_migration_rules: str = Field(
        default="", description="Rules applied to every project in addition to its own"
    )


class EventConfig(BaseModel):
    """Event broker configuration."""

    subscriber_queue_size: int = Field(default=100, ge=1, le=10000)


class MigrationConfig(BaseSettings):
    """Main migration configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ABAP_BRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    systems: dict[str, SystemConfig] = Field(
        default_factory=dict, description="Remote systems keyed by reference name"
    )
    agent: ServiceConfig | None = Field(default=None, description="Migration agent service")
    advisor: ServiceConfig | None = Field(default=None, description="Ordering advisor service")

    state: StateConfig = Field(default_factory=StateConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    events: EventConfig = Field(default_factory=EventConfig)

    @field_validator("systems")
    @classmethod
    def normalize_system_names(cls, v: dict[str, SystemConfig]) -> dict[str, SystemConfig]:
        """System references are matched case-insensitively."""
        return {name.upper(): system for name, system in v.items()}


def load_config_from_yaml(config_path: str | Path) -> MigrationConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        MigrationConfig: Loaded configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ValueError(f"Empty configuration file: {config_path}")

    config_data = _expand_env_vars(config_data)

    return MigrationConfig(**config_data)


def _expand_env_vars(data):
    """Recursively expand environment variables in config data.

    Supports ``${VAR_NAME}`` syntax for whole-value substitution.

    Args:
        data: Configuration value (dict, list, or scalar)

    Returns:
        Data with expanded environment variables

    Raises:
        ValueError: If a referenced variable is not set
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        if data.startswith("${") and data.endswith("}"):
            var_name = data[2:-1]
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ValueError(
                    f"Environment variable '{var_name}' not found. "
                    f"Please set it in your environment or .env file."
                )
            return env_value
        return data
    else:
        return data

