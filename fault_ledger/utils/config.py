"""Configuration loader and settings helpers for fault_ledger."""

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic import (
    ValidationError as PydanticValidationError,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError


logger = logging.getLogger(__name__)

ENV_PREFIX = "FAULT_LEDGER_"


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary

    Raises:
        ConfigurationError: If file not found or invalid YAML
    """
    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
            return config if config else {}
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")


def apply_env_overrides(config: dict[str, Any], prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """
    Override configuration values with environment variables.

    Environment variables should be prefixed (default: FAULT_LEDGER_) and use __ for nesting.
    Example: FAULT_LEDGER_STORE__TYPE overrides config['store']['type']

    Args:
        config: Base configuration dictionary
        prefix: Environment variable prefix

    Returns:
        Configuration with environment overrides applied
    """
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        keys = config_key.split("__")

        current = config
        for k in keys[:-1]:
            if not isinstance(current.get(k), dict):
                current[k] = {}
            current = current[k]

        current[keys[-1]] = value

    return config


def validate_config(config: dict[str, Any], model: type[BaseModel]) -> BaseModel:
    """
    Validate configuration against Pydantic model.

    Args:
        config: Configuration dictionary
        model: Pydantic model class for validation

    Returns:
        Validated configuration model instance

    Raises:
        ConfigurationError: If validation fails
    """
    try:
        return model(**config)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}")


def _split_csv(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",")]
        return [item for item in items if item]
    if isinstance(value, list | tuple | set):
        return [str(item) for item in value if str(item).strip()]
    raise ValueError(f"{field_name} must be a comma-separated string or iterable of strings")


class DatabasePoolSettings(BaseModel):
    """Connection pooling configuration for the SQLAlchemy engine."""

    model_config = ConfigDict(extra="forbid")

    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    timeout: float = Field(default=30.0, gt=0)
    recycle_seconds: int = Field(default=1800, ge=0)
    pre_ping: bool = True


class IgnoreSettings(BaseModel):
    """Exception types and message patterns that are never logged."""

    model_config = ConfigDict(extra="forbid")

    types: list[str] = Field(default_factory=list)
    regexes: list[str] = Field(default_factory=list)

    @field_validator("types", mode="before")
    @classmethod
    def _parse_types(cls, value: Any) -> list[str]:
        return _split_csv(value, "ignore.types")

    @field_validator("regexes", mode="before")
    @classmethod
    def _parse_regexes(cls, value: Any) -> list[str]:
        # Commas are legal inside patterns, so only lists are split.
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        return [str(item) for item in value if str(item).strip()]

    @field_validator("regexes")
    @classmethod
    def _check_regexes(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid ignore pattern '{pattern}': {exc}") from exc
        return value


class StoreSettings(BaseModel):
    """Error store selection and behaviour."""

    model_config = ConfigDict(extra="forbid")

    type: str = Field(default="memory", min_length=1)
    application_name: str | None = None
    path: Path | None = None
    create_path_if_missing: bool = True
    database_url: str | None = None
    rollup_period_seconds: int = Field(default=600, ge=0)
    retention_days: int | None = Field(default=None, ge=1)
    max_records: int | None = Field(default=None, ge=1)
    lock_timeout_seconds: float = Field(default=5.0, gt=0)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("path", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Any:
        """Allow string paths and expand user markers."""

        if isinstance(value, str):
            return Path(value).expanduser()
        return value


class GlobalSettings(BaseSettings):
    """Global application settings sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    application_name: str | None = None
    append_full_stack_traces: bool = False
    rollup_per_server: bool = False
    data_include_pattern: str | None = None
    ignore: IgnoreSettings = IgnoreSettings()
    store: StoreSettings = StoreSettings()
    database: DatabasePoolSettings = DatabasePoolSettings()

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        """Ensure log level values are uppercase for logging config."""

        return value.upper()

    @field_validator("data_include_pattern")
    @classmethod
    def _check_data_include_pattern(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"Invalid data_include_pattern '{value}': {exc}") from exc
        return value


def load_configuration(config_path: str | Path) -> GlobalSettings:
    """Load settings from a YAML file, letting environment variables take precedence."""

    config = apply_env_overrides(load_yaml_config(config_path))
    settings = validate_config(config, GlobalSettings)
    logger.debug("Loaded fault_ledger configuration from %s", config_path)
    return settings  # type: ignore[return-value]


@lru_cache(maxsize=1)
def _get_settings_cached() -> GlobalSettings:
    try:
        return GlobalSettings()
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Configuration validation failed: {exc}") from exc


def get_settings(*, reload: bool = False) -> GlobalSettings:
    """Return cached settings, optionally forcing a reload."""

    if reload:
        _get_settings_cached.cache_clear()
    return _get_settings_cached()
