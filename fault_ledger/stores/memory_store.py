"""In-process error store, useful for tests and single-process services."""

from __future__ import annotations

from datetime import datetime, timedelta
from threading import RLock
from typing import Any

from ..schemas.error_record import ErrorRecord
from ..utils.config import StoreSettings
from .base import (
    DEFAULT_ROLLUP_PERIOD,
    ErrorStore,
    FoldedRecord,
    RollupMatch,
    newest_first,
    rollup_period_from_settings,
)


class MemoryErrorStore(ErrorStore):
    """
    Keep error records in a dictionary guarded by a lock.

    Deletes are immediate: there is no soft-delete grace period. When
    ``max_records`` is set, the oldest non-protected records are evicted once
    the cap is exceeded.
    """

    name = "memory"

    def __init__(
        self,
        *,
        application_name: str | None = None,
        rollup_period: timedelta | None = DEFAULT_ROLLUP_PERIOD,
        max_records: int | None = None,
    ):
        super().__init__(application_name=application_name, rollup_period=rollup_period)
        self.max_records = max_records
        self._records: dict[int, ErrorRecord] = {}
        self._next_id = 0
        self._lock = RLock()

    @classmethod
    def from_settings(
        cls,
        settings: StoreSettings,
        *,
        application_name: str | None = None,
    ) -> MemoryErrorStore:
        return cls(
            application_name=settings.application_name or application_name,
            rollup_period=rollup_period_from_settings(settings),
            max_records=settings.max_records,
        )

    def insert(self, record: ErrorRecord) -> int:
        if record.application_name is None:
            record.application_name = self.application_name
        stored = record.clone()
        stored.exception = None
        with self._lock:
            self._next_id += 1
            stored.id = self._next_id
            self._records[stored.id] = stored
            self._trim()
            return stored.id

    def increment_duplicate(self, match: RollupMatch, now: datetime) -> FoldedRecord | None:
        with self._lock:
            candidates = [record for record in self._records.values() if match.matches(record)]
            if not candidates:
                return None
            target = newest_first(candidates)[0]
            target.duplicate_count += match.increment
            target.last_log_date = now
            return FoldedRecord(key=target.id, guid=target.guid)

    def get(self, key: Any) -> ErrorRecord | None:
        with self._lock:
            record = self._records.get(self._normalize_key(key))
            return record.clone() if record is not None else None

    def list_records(
        self,
        application_name: str | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[ErrorRecord]:
        application = self._resolve_application(application_name)
        with self._lock:
            snapshot = [
                record.clone()
                for record in self._records.values()
                if application is None or record.application_name == application
            ]
        return newest_first(snapshot)

    def protect(self, key: Any) -> bool:
        return self._set_protected(key, True)

    def unprotect(self, key: Any) -> bool:
        return self._set_protected(key, False)

    def soft_delete(self, key: Any, *, force: bool = False) -> bool:
        with self._lock:
            normalized = self._normalize_key(key)
            record = self._records.get(normalized)
            if record is None or (record.is_protected and not force):
                return False
            del self._records[normalized]
            return True

    def hard_delete(self, key: Any) -> bool:
        with self._lock:
            return self._records.pop(self._normalize_key(key), None) is not None

    def delete_all(self, application_name: str | None = None) -> int:
        application = self._resolve_application(application_name)
        return self._remove_where(
            lambda record: not record.is_protected
            and (application is None or record.application_name == application)
        )

    def purge_expired(self, older_than: datetime) -> int:
        return self._remove_where(
            lambda record: not record.is_protected and record.creation_date < older_than
        )

    def _remove_where(self, predicate) -> int:
        with self._lock:
            doomed = [key for key, record in self._records.items() if predicate(record)]
            for key in doomed:
                del self._records[key]
            return len(doomed)

    def _set_protected(self, key: Any, value: bool) -> bool:
        with self._lock:
            record = self._records.get(self._normalize_key(key))
            if record is None:
                return False
            record.is_protected = value
            return True

    def _trim(self) -> None:
        if self.max_records is None or len(self._records) <= self.max_records:
            return
        evictable = sorted(
            (record for record in self._records.values() if not record.is_protected),
            key=lambda record: record.creation_date,
        )
        for record in evictable[: len(self._records) - self.max_records]:
            del self._records[record.id]

    @staticmethod
    def _normalize_key(key: Any) -> Any:
        try:
            return int(key)
        except (TypeError, ValueError):
            return key
