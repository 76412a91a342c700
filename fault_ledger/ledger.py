"""Error logging entry point.

``ErrorLedger`` ties capture, the before/after hooks and rollup resolution
together. Logging an error must never take the application down: store
failures are reported through the returned :class:`LogResult` and the log,
and hook failures are logged and skipped.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .capture import capture_exception, should_be_ignored
from .exceptions import ConfigurationError, StorageError
from .monitoring.metrics import record_duplicate, record_handler_failure, record_log_outcome
from .rollup import RollupResult, resolve, resolve_async
from .schemas.error_record import ErrorRecord
from .settings import LedgerSettings
from .stores.base import ErrorStore
from .utils.config import GlobalSettings
from .utils.logging import log_capture_outcome, setup_logger

logger = setup_logger(__name__)


class LogOutcome(str, Enum):
    """What happened to a single logging attempt."""

    LOGGED = "logged"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass(slots=True)
class LogResult:
    """Result of :meth:`ErrorLedger.log`."""

    outcome: LogOutcome
    record: ErrorRecord | None = None
    record_id: Any = None
    error: StorageError | None = None

    @property
    def stored(self) -> bool:
        """True when the occurrence is reflected in the store."""

        return self.outcome in (LogOutcome.LOGGED, LogOutcome.DUPLICATE)


class ErrorLedger:
    """Capture exceptions and persist them with duplicate rollup."""

    def __init__(self, settings: LedgerSettings):
        self.settings = settings

    @classmethod
    def from_config(
        cls,
        config: GlobalSettings | None = None,
        *,
        store: ErrorStore | None = None,
        **callbacks: Any,
    ) -> ErrorLedger:
        """Build a ledger from validated configuration; see :meth:`LedgerSettings.from_config`."""

        return cls(LedgerSettings.from_config(config, store=store, **callbacks))

    @property
    def store(self) -> ErrorStore | None:
        return self.settings.store

    def should_be_ignored(self, exc: BaseException) -> bool:
        return should_be_ignored(exc, self.settings)

    def capture(
        self,
        exc: BaseException | None,
        *,
        category: str | None = None,
        application_name: str | None = None,
        rollup_per_server: bool | None = None,
        initial_custom_data: Mapping[str, str] | None = None,
    ) -> ErrorRecord:
        """Build an unsaved record from ``exc``; ignore rules are not applied."""

        return capture_exception(
            exc,
            self.settings,
            category=category,
            application_name=application_name,
            rollup_per_server=rollup_per_server,
            initial_custom_data=initial_custom_data,
        )

    def log(
        self,
        exc: BaseException | None,
        *,
        category: str | None = None,
        application_name: str | None = None,
        rollup_per_server: bool | None = None,
        initial_custom_data: Mapping[str, str] | None = None,
        store: ErrorStore | None = None,
    ) -> LogResult:
        """
        Capture an exception and store it, folding recent duplicates.

        Args:
            exc: The exception to log
            category: Optional tag stored with the record
            application_name: Overrides the configured application name
            rollup_per_server: Only roll up duplicates from the same machine
            initial_custom_data: Custom data to start from
            store: Destination store; defaults to ``settings.store``

        Returns:
            LogResult; storage failures are reported as ``FAILED`` rather than raised

        Raises:
            InvalidCaptureError: If no exception is given
            ConfigurationError: If no store is given or configured
        """
        target = self._target_store(store)
        if exc is not None and self.should_be_ignored(exc):
            return self._ignored(application_name)

        record = self.capture(
            exc,
            category=category,
            application_name=application_name,
            rollup_per_server=rollup_per_server,
            initial_custom_data=initial_custom_data,
        )
        try:
            return self.log_record(record, target)
        except StorageError as failure:
            return self._failed(record, target, failure)

    async def log_async(
        self,
        exc: BaseException | None,
        *,
        category: str | None = None,
        application_name: str | None = None,
        rollup_per_server: bool | None = None,
        initial_custom_data: Mapping[str, str] | None = None,
        store: ErrorStore | None = None,
    ) -> LogResult:
        """Non-blocking variant of :meth:`log`; suspends only on store I/O."""

        target = self._target_store(store)
        if exc is not None and self.should_be_ignored(exc):
            return self._ignored(application_name)

        record = self.capture(
            exc,
            category=category,
            application_name=application_name,
            rollup_per_server=rollup_per_server,
            initial_custom_data=initial_custom_data,
        )
        try:
            return await self.log_record_async(record, target)
        except StorageError as failure:
            return self._failed(record, target, failure)

    def log_record(self, record: ErrorRecord, store: ErrorStore | None = None) -> LogResult:
        """
        Store an already captured record, running the lifecycle hooks.

        Raises:
            StorageError: If the store cannot complete the operation
        """
        target = self._target_store(store)
        if self._run_before_log(record, target):
            return self._aborted(record, target)
        result = resolve(record, target)
        return self._completed(record, target, result)

    async def log_record_async(
        self,
        record: ErrorRecord,
        store: ErrorStore | None = None,
    ) -> LogResult:
        """Non-blocking variant of :meth:`log_record`."""

        target = self._target_store(store)
        if self._run_before_log(record, target):
            return self._aborted(record, target)
        result = await resolve_async(record, target)
        return self._completed(record, target, result)

    def apply_retention(
        self,
        store: ErrorStore | None = None,
        *,
        now: datetime | None = None,
    ) -> int:
        """
        Purge records older than ``settings.retention``.

        Returns:
            Number of records removed; zero when no retention is configured
        """
        if self.settings.retention is None:
            return 0
        target = self._target_store(store)
        cutoff = (now or datetime.now(timezone.utc)) - self.settings.retention
        removed = target.purge_expired(cutoff)
        logger.info(
            "Purged %s expired error records",
            removed,
            extra={"store": target.name, "application": target.application_name or "-"},
        )
        return removed

    def _target_store(self, store: ErrorStore | None) -> ErrorStore:
        target = store or self.settings.store
        if target is None:
            raise ConfigurationError("No error store given and none configured")
        return target

    def _run_before_log(self, record: ErrorRecord, store: ErrorStore) -> bool:
        """Run before-log hooks; True when one of them asks to abort."""

        for hook in self.settings.before_log:
            try:
                if hook(record, store):
                    return True
            except Exception:
                record_handler_failure("before_log")
                logger.warning(
                    "before_log hook %r failed",
                    hook,
                    exc_info=True,
                    extra={"error_guid": str(record.guid), "store": store.name},
                )
        return False

    def _run_after_log(self, record: ErrorRecord, store: ErrorStore) -> None:
        for hook in self.settings.after_log:
            try:
                hook(record, store)
            except Exception:
                record_handler_failure("after_log")
                logger.warning(
                    "after_log hook %r failed",
                    hook,
                    exc_info=True,
                    extra={"error_guid": str(record.guid), "store": store.name},
                )

    def _completed(self, record: ErrorRecord, store: ErrorStore, result: RollupResult) -> LogResult:
        outcome = LogOutcome.LOGGED if result.inserted else LogOutcome.DUPLICATE
        if not result.inserted:
            record_duplicate(record.application_name)
        self._report(record.application_name, store, outcome, guid=str(record.guid))
        self._run_after_log(record, store)
        return LogResult(outcome=outcome, record=record, record_id=result.record_id)

    def _ignored(self, application_name: str | None) -> LogResult:
        application = application_name or self.settings.resolved_application_name
        record_log_outcome(application, LogOutcome.IGNORED.value)
        logger.debug("Ignored exception", extra={"application": application or "-"})
        return LogResult(outcome=LogOutcome.IGNORED)

    def _aborted(self, record: ErrorRecord, store: ErrorStore) -> LogResult:
        self._report(record.application_name, store, LogOutcome.ABORTED, guid=str(record.guid))
        return LogResult(outcome=LogOutcome.ABORTED, record=record)

    def _failed(self, record: ErrorRecord, store: ErrorStore, failure: StorageError) -> LogResult:
        self._report(
            record.application_name,
            store,
            LogOutcome.FAILED,
            guid=str(record.guid),
            error_type=type(failure).__name__,
            operation=failure.operation,
            reason=str(failure),
        )
        return LogResult(outcome=LogOutcome.FAILED, record=record, error=failure)

    def _report(
        self,
        application: str | None,
        store: ErrorStore,
        outcome: LogOutcome,
        *,
        guid: str,
        **extra: Any,
    ) -> None:
        record_log_outcome(application, outcome.value)
        log_capture_outcome(
            logger,
            application=application,
            store=store.name,
            error_guid=guid,
            outcome=outcome.value,
            **extra,
        )
