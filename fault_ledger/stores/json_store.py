"""Flat-file error store writing one JSON document per record."""

from __future__ import annotations

import os
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Final
from uuid import UUID, uuid4

from ..exceptions import ConfigurationError, StorageUnavailableError
from ..schemas.error_record import ErrorRecord
from ..utils.config import StoreSettings
from ..utils.logging import setup_logger
from .base import (
    DEFAULT_ROLLUP_PERIOD,
    ErrorStore,
    FoldedRecord,
    RollupMatch,
    newest_first,
    rollup_period_from_settings,
)

LOCK_FILE_NAME: Final[str] = ".fault_ledger.lock"
LOCK_POLL_INTERVAL: Final[float] = 0.01
LOCK_STALE_SECONDS: Final[float] = 60.0

logger = setup_logger(__name__, context={"store": "json"})


class JSONErrorStore(ErrorStore):
    """
    Store each error as ``<guid>.json`` inside a directory.

    Every mutation runs under an exclusive lock file created with
    ``O_CREAT | O_EXCL``, so several processes may share one directory.
    Locks older than ``LOCK_STALE_SECONDS`` are treated as abandoned.
    Keys are GUID strings. Deletes are immediate.
    """

    name = "json"

    def __init__(
        self,
        path: str | Path,
        *,
        application_name: str | None = None,
        rollup_period: timedelta | None = DEFAULT_ROLLUP_PERIOD,
        create_path_if_missing: bool = True,
        max_records: int | None = None,
        lock_timeout: float = 5.0,
    ):
        super().__init__(application_name=application_name, rollup_period=rollup_period)
        self.path = Path(path).expanduser()
        self.max_records = max_records
        self._lock_timeout = lock_timeout

        if not self.path.exists():
            if not create_path_if_missing:
                raise StorageUnavailableError(
                    f"Error store directory '{self.path}' does not exist",
                    store=self.name,
                    operation="open",
                )
            try:
                self.path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise self._storage_failure("open", exc, StorageUnavailableError) from exc
            logger.info("Created error store directory %s", self.path)

    @classmethod
    def from_settings(
        cls,
        settings: StoreSettings,
        *,
        application_name: str | None = None,
    ) -> JSONErrorStore:
        if settings.path is None:
            raise ConfigurationError("The json error store requires store.path to be configured")
        return cls(
            settings.path,
            application_name=settings.application_name or application_name,
            rollup_period=rollup_period_from_settings(settings),
            create_path_if_missing=settings.create_path_if_missing,
            max_records=settings.max_records,
            lock_timeout=settings.lock_timeout_seconds,
        )

    def insert(self, record: ErrorRecord) -> str:
        if record.application_name is None:
            record.application_name = self.application_name
        stored = record.clone()
        stored.id = str(stored.guid)
        with self._exclusive_lock("insert"):
            self._write(stored, "insert")
            self._trim()
        return stored.id

    def increment_duplicate(self, match: RollupMatch, now: datetime) -> FoldedRecord | None:
        with self._exclusive_lock("increment_duplicate"):
            candidates = [record for record in self._read_all() if match.matches(record)]
            if not candidates:
                return None
            target = newest_first(candidates)[0]
            target.duplicate_count += match.increment
            target.last_log_date = now
            self._write(target, "increment_duplicate")
            return FoldedRecord(key=target.id, guid=target.guid)

    def get(self, key: Any) -> ErrorRecord | None:
        path = self._record_path(key)
        return self._read(path) if path is not None else None

    def get_by_guid(self, guid: UUID | str) -> ErrorRecord | None:
        return self.get(guid)

    def list_records(
        self,
        application_name: str | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[ErrorRecord]:
        application = self._resolve_application(application_name)
        return newest_first(
            record
            for record in self._read_all()
            if application is None or record.application_name == application
        )

    def protect(self, key: Any) -> bool:
        return self._set_protected(key, True)

    def unprotect(self, key: Any) -> bool:
        return self._set_protected(key, False)

    def soft_delete(self, key: Any, *, force: bool = False) -> bool:
        path = self._record_path(key)
        if path is None:
            return False
        with self._exclusive_lock("soft_delete"):
            record = self._read(path)
            if record is None or (record.is_protected and not force):
                return False
            return self._unlink(path, "soft_delete")

    def hard_delete(self, key: Any) -> bool:
        path = self._record_path(key)
        if path is None:
            return False
        with self._exclusive_lock("hard_delete"):
            return self._unlink(path, "hard_delete")

    def delete_all(self, application_name: str | None = None) -> int:
        application = self._resolve_application(application_name)
        return self._remove_where(
            lambda record: not record.is_protected
            and (application is None or record.application_name == application),
            "delete_all",
        )

    def purge_expired(self, older_than: datetime) -> int:
        return self._remove_where(
            lambda record: not record.is_protected and record.creation_date < older_than,
            "purge_expired",
        )

    def _remove_where(self, predicate: Callable[[ErrorRecord], bool], operation: str) -> int:
        removed = 0
        with self._exclusive_lock(operation):
            for record in self._read_all():
                if predicate(record) and self._unlink(self._path_for(record.guid), operation):
                    removed += 1
        return removed

    def _set_protected(self, key: Any, value: bool) -> bool:
        path = self._record_path(key)
        if path is None:
            return False
        with self._exclusive_lock("protect"):
            record = self._read(path)
            if record is None:
                return False
            if record.is_protected != value:
                record.is_protected = value
                self._write(record, "protect")
            return True

    def _trim(self) -> None:
        if self.max_records is None:
            return
        records = self._read_all()
        excess = len(records) - self.max_records
        if excess <= 0:
            return
        evictable = sorted(
            (record for record in records if not record.is_protected),
            key=lambda record: record.creation_date,
        )
        for record in evictable[:excess]:
            self._unlink(self._path_for(record.guid), "trim")

    def _path_for(self, guid: UUID | str) -> Path:
        return self.path / f"{guid}.json"

    def _record_path(self, key: Any) -> Path | None:
        try:
            guid = key if isinstance(key, UUID) else UUID(str(key))
        except ValueError:
            return None
        return self._path_for(guid)

    def _read(self, path: Path) -> ErrorRecord | None:
        try:
            record = ErrorRecord.from_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except ValueError as exc:
            logger.warning("Skipping unreadable error file %s: %s", path.name, exc)
            return None
        except OSError as exc:
            raise self._storage_failure("read", exc, StorageUnavailableError) from exc
        record.id = str(record.guid)
        return record

    def _read_all(self) -> list[ErrorRecord]:
        try:
            paths = sorted(self.path.glob("*.json"))
        except OSError as exc:
            raise self._storage_failure("read", exc, StorageUnavailableError) from exc
        return [record for path in paths if (record := self._read(path)) is not None]

    def _write(self, record: ErrorRecord, operation: str) -> None:
        target = self._path_for(record.guid)
        temp_path = self.path / f".{record.guid}.{uuid4().hex}.tmp"
        try:
            temp_path.write_text(record.to_json(), encoding="utf-8")
            os.replace(temp_path, target)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise self._storage_failure(operation, exc) from exc

    def _unlink(self, path: Path, operation: str) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise self._storage_failure(operation, exc) from exc
        return True

    @contextmanager
    def _exclusive_lock(self, operation: str) -> Iterator[None]:
        """Hold the directory lock file for the duration of the block."""

        lock_path = self.path / LOCK_FILE_NAME
        deadline = time.monotonic() + self._lock_timeout
        while True:
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                break
            except FileExistsError:
                self._break_stale_lock(lock_path, operation)
                if time.monotonic() >= deadline:
                    raise self._storage_failure(
                        operation,
                        TimeoutError(f"lock {lock_path} held for over {self._lock_timeout}s"),
                        StorageUnavailableError,
                    ) from None
                time.sleep(LOCK_POLL_INTERVAL)
            except OSError as exc:
                raise self._storage_failure(operation, exc, StorageUnavailableError) from exc

        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
            yield
        finally:
            os.close(fd)
            lock_path.unlink(missing_ok=True)

    def _break_stale_lock(self, lock_path: Path, operation: str) -> None:
        """
        Remove a lock file left behind by a crashed holder.

        The lock is first renamed to a unique name, which only one waiter can
        win, and is deleted only if it is still the file judged stale. When
        another waiter already replaced it with a live lock, that lock is
        linked back into place. A holder that keeps the lock for longer than
        ``LOCK_STALE_SECONDS`` is indistinguishable from a crashed one and
        loses it.
        """
        try:
            observed = lock_path.stat()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise self._storage_failure(operation, exc, StorageUnavailableError) from exc
        age = time.time() - observed.st_mtime
        if age <= LOCK_STALE_SECONDS:
            return

        claimed = lock_path.with_name(f"{lock_path.name}.{uuid4().hex}.stale")
        try:
            os.rename(lock_path, claimed)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise self._storage_failure(operation, exc, StorageUnavailableError) from exc

        try:
            taken = claimed.stat()
            if (taken.st_ino, taken.st_mtime_ns) != (observed.st_ino, observed.st_mtime_ns):
                self._return_live_lock(claimed, lock_path)
                return
            logger.warning("Removing stale lock file %s (age %.0fs)", lock_path, age)
        except OSError as exc:
            raise self._storage_failure(operation, exc, StorageUnavailableError) from exc
        finally:
            claimed.unlink(missing_ok=True)

    @staticmethod
    def _return_live_lock(claimed: Path, lock_path: Path) -> None:
        try:
            os.link(claimed, lock_path)
        except FileExistsError:
            # A third waiter already holds a fresh lock; the displaced holder has lost its own.
            logger.warning("Lock file %s was replaced while it was still held", lock_path)
