"""Utilities package initialization."""
from .config import (
    GlobalSettings,
    IgnoreSettings,
    StoreSettings,
    apply_env_overrides,
    get_settings,
    load_configuration,
    load_yaml_config,
    validate_config,
)
from .logging import log_capture_outcome, setup_logger

__all__ = [
    "GlobalSettings",
    "IgnoreSettings",
    "StoreSettings",
    "apply_env_overrides",
    "get_settings",
    "load_configuration",
    "load_yaml_config",
    "validate_config",
    "log_capture_outcome",
    "setup_logger",
]
