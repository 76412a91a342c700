"""Base error store abstract class for all storage backends."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, ClassVar, Final, TypeVar
from uuid import UUID

from ..exceptions import StorageError, StorageWriteError
from ..monitoring.metrics import record_store_failure
from ..schemas.error_record import ErrorRecord
from ..utils.config import StoreSettings

DEFAULT_ROLLUP_PERIOD: Final[timedelta] = timedelta(minutes=10)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RollupMatch:
    """Criteria identifying the record a new occurrence should be folded into."""

    error_hash: int
    application_name: str | None
    since: datetime
    increment: int = 1

    def matches(self, record: ErrorRecord) -> bool:
        """Return True when ``record`` is a live, recent record with the same fingerprint."""

        return (
            record.error_hash == self.error_hash
            and record.application_name == self.application_name
            and record.deletion_date is None
            and last_seen(record) >= self.since
        )


@dataclass(slots=True, frozen=True)
class FoldedRecord:
    """The stored record an occurrence was folded into."""

    key: Any
    guid: UUID


def last_seen(record: ErrorRecord) -> datetime:
    """Return the most recent occurrence time of a record."""

    return record.last_log_date or record.creation_date


def newest_first(records: Iterable[ErrorRecord]) -> list[ErrorRecord]:
    """Order records by most recent occurrence, newest first."""

    return sorted(records, key=last_seen, reverse=True)


def rollup_period_from_settings(settings: StoreSettings) -> timedelta | None:
    """Translate ``rollup_period_seconds`` into a period; zero disables rollups."""

    if settings.rollup_period_seconds <= 0:
        return None
    return timedelta(seconds=settings.rollup_period_seconds)


class ErrorStore(ABC):
    """
    Abstract base class for all error stores.

    Every backend implements the same contract so rollup handling never needs
    to know which storage it is talking to. ``increment_duplicate`` must be a
    single atomic operation against the backing storage: concurrent callers
    reporting the same fingerprint rely on it to fold into one record.
    """

    name: ClassVar[str] = "base"
    supports_soft_delete: ClassVar[bool] = False
    supports_duplicate_matching: ClassVar[bool] = True

    def __init__(
        self,
        *,
        application_name: str | None = None,
        rollup_period: timedelta | None = DEFAULT_ROLLUP_PERIOD,
    ):
        """
        Initialize the store.

        Args:
            application_name: Application whose errors this store logs and lists by default
            rollup_period: Window for folding duplicates; ``None`` disables rollups
        """
        self.application_name = application_name
        self.rollup_period = rollup_period

    @classmethod
    def from_settings(
        cls,
        settings: StoreSettings,
        *,
        application_name: str | None = None,
    ) -> ErrorStore:
        """Build a store instance from validated store settings."""

        return cls(
            application_name=settings.application_name or application_name,
            rollup_period=rollup_period_from_settings(settings),
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} application={self.application_name!r}>"

    async def _run_in_thread(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute a blocking store call in a thread to avoid blocking the event loop."""

        return await asyncio.to_thread(func, *args, **kwargs)

    def _resolve_application(self, application_name: str | None) -> str | None:
        return application_name if application_name is not None else self.application_name

    def _storage_failure(
        self,
        operation: str,
        exc: BaseException,
        error_cls: type[StorageError] = StorageWriteError,
    ) -> StorageError:
        """Record a failed operation and build the error surfaced to callers."""

        record_store_failure(self.name, operation)
        return error_cls(
            f"{self.name} store failed to {operation}: {exc}",
            store=self.name,
            operation=operation,
        )

    @abstractmethod
    def insert(self, record: ErrorRecord) -> Any:
        """
        Persist a new record.

        Args:
            record: Captured error; its ``application_name`` defaults to the store's

        Returns:
            Backend key assigned to the record

        Raises:
            StorageUnavailableError: If the storage cannot be reached
            StorageWriteError: If the write fails
        """

    @abstractmethod
    def increment_duplicate(self, match: RollupMatch, now: datetime) -> FoldedRecord | None:
        """
        Atomically fold one occurrence into an existing record.

        Finds a record matching ``match`` (same fingerprint and application, not
        deleted, last seen at or after ``match.since``), adds ``match.increment``
        to its duplicate count and sets its last occurrence to ``now``.

        Returns:
            Key and GUID of the updated record, or None when nothing matched
        """

    @abstractmethod
    def get(self, key: Any) -> ErrorRecord | None:
        """Return the record stored under ``key``, if any."""

    @abstractmethod
    def list_records(
        self,
        application_name: str | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[ErrorRecord]:
        """Return a snapshot of records, most recently seen first."""

    @abstractmethod
    def protect(self, key: Any) -> bool:
        """Exempt a record from soft and retention deletion; False if unknown."""

    @abstractmethod
    def unprotect(self, key: Any) -> bool:
        """Remove deletion protection from a record; False if unknown."""

    @abstractmethod
    def soft_delete(self, key: Any, *, force: bool = False) -> bool:
        """
        Delete a record, keeping it recoverable where the backend supports it.

        Protected records are left untouched unless ``force`` is set. Backends
        without soft deletion remove the record immediately.

        Returns:
            True if the record is deleted after the call
        """

    @abstractmethod
    def hard_delete(self, key: Any) -> bool:
        """Permanently remove a record, protected or not."""

    @abstractmethod
    def delete_all(self, application_name: str | None = None) -> int:
        """Delete every non-protected record of an application; returns the number deleted."""

    @abstractmethod
    def purge_expired(self, older_than: datetime) -> int:
        """Permanently remove non-protected records created before ``older_than``."""

    def restore(self, key: Any) -> bool:
        """Undo a soft delete. Stores without soft deletion have nothing to restore."""

        return False

    def get_by_guid(self, guid: UUID | str) -> ErrorRecord | None:
        """Return the record with the given client-generated identifier."""

        wanted = str(guid)
        for record in self.list_records(include_deleted=True):
            if str(record.guid) == wanted:
                return record
        return None

    def count(self, application_name: str | None = None, *, since: datetime | None = None) -> int:
        """Count live records, optionally only those seen at or after ``since``."""

        records = self.list_records(application_name)
        if since is None:
            return len(records)
        return sum(1 for record in records if last_seen(record) >= since)

    async def insert_async(self, record: ErrorRecord) -> Any:
        """Non-blocking variant of :meth:`insert`."""

        return await self._run_in_thread(self.insert, record)

    async def increment_duplicate_async(
        self, match: RollupMatch, now: datetime
    ) -> FoldedRecord | None:
        """Non-blocking variant of :meth:`increment_duplicate`."""

        return await self._run_in_thread(self.increment_duplicate, match, now)

    async def get_async(self, key: Any) -> ErrorRecord | None:
        """Non-blocking variant of :meth:`get`."""

        return await self._run_in_thread(self.get, key)

    async def list_records_async(
        self,
        application_name: str | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[ErrorRecord]:
        """Non-blocking variant of :meth:`list_records`."""

        return await self._run_in_thread(
            self.list_records, application_name, include_deleted=include_deleted
        )
