"""Logging configuration for fault_ledger."""

from __future__ import annotations

import logging
import sys
from threading import Lock
from typing import Any, Final

from .config import get_settings

# Define log format with structured context placeholders.
LOG_FORMAT: Final[str] = (
    "%(asctime)s | %(levelname)s | %(name)s | "
    "application=%(application)s | store=%(store)s | "
    "error_guid=%(error_guid)s | outcome=%(outcome)s | %(message)s"
)

DEFAULT_CONTEXT: Final[dict[str, str]] = {
    "application": "-",
    "store": "-",
    "error_guid": "-",
    "outcome": "-",
}

_LOG_CONFIGURED = False
_CONFIG_LOCK: Final = Lock()


class ContextualFormatter(logging.Formatter):
    """Formatter that injects default structured context fields when absent."""

    def __init__(self, fmt: str, defaults: dict[str, str] | None = None) -> None:
        super().__init__(fmt)
        self._defaults = defaults or {}

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        for key, value in self._defaults.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return super().format(record)


def _configure_root_logger() -> None:
    """Configure the root logger exactly once based on global settings."""

    global _LOG_CONFIGURED
    with _CONFIG_LOCK:
        if _LOG_CONFIGURED:
            return

        settings = get_settings()
        resolved_level = getattr(logging, settings.log_level.upper(), logging.INFO)

        root_logger = logging.getLogger()
        root_logger.setLevel(resolved_level)

        formatter = ContextualFormatter(LOG_FORMAT, DEFAULT_CONTEXT)

        if not root_logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setLevel(resolved_level)
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)
        else:
            for handler in root_logger.handlers:
                handler.setFormatter(formatter)

        _LOG_CONFIGURED = True


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that lets per-call extras override defaults."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:  # type: ignore[override]
        base_extra = self.extra or {}
        extra = dict(base_extra)
        provided_extra = kwargs.get("extra") or {}
        extra.update(provided_extra)
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logger(
    name: str,
    *,
    level: str | None = None,
    context: dict[str, Any] | None = None,
) -> logging.LoggerAdapter:
    """Return a logger configured with the global logging defaults.

    Args:
        name: Logger name to retrieve.
        level: Optional log level override (primarily for tests).
        context: Optional default structured context to include with every entry.

    Returns:
        LoggerAdapter injecting structured defaults for consistent formatting.
    """

    _configure_root_logger()
    logger = logging.getLogger(name)

    if level is not None:
        resolved_value = getattr(logging, level.upper(), logging.INFO)
        logger.setLevel(resolved_value)
    else:
        logger.setLevel(logging.NOTSET)

    adapter_context: dict[str, Any] = dict(DEFAULT_CONTEXT)
    if context:
        adapter_context.update(context)

    return StructuredLoggerAdapter(logger, adapter_context)


def log_capture_outcome(
    logger: logging.Logger | logging.LoggerAdapter,
    *,
    application: str | None,
    store: str,
    error_guid: str,
    outcome: str,
    **extra_context: Any,
) -> None:
    """
    Log the outcome of a single error logging attempt with structured context.

    Args:
        logger: Logger instance
        application: Application the error belongs to
        store: Name of the error store involved
        error_guid: Client-generated identifier of the error record
        outcome: Outcome label (logged, duplicate, failed, ...)
        **extra_context: Additional context to log
    """
    structured_context: dict[str, Any] = {
        "application": application or "-",
        "store": store,
        "error_guid": error_guid,
        "outcome": outcome,
    }
    additional_context = {
        key: value for key, value in extra_context.items() if key not in structured_context
    }
    structured_context.update(additional_context)
    message_suffix = f" | context={additional_context}" if additional_context else ""

    log_method = logger.error if outcome == "failed" else logger.info
    log_method(f"Error {outcome}{message_suffix}", extra=structured_context)
