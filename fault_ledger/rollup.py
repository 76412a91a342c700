"""Fold repeated errors into a single stored record.

The coordinator only talks to the :class:`ErrorStore` contract. Matching and
incrementing happen in one atomic store call, so concurrent captures of the
same fingerprint from several processes fold into one record without any
client-side locking.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from .schemas.error_record import ErrorRecord
from .stores.base import ErrorStore, FoldedRecord, RollupMatch


@dataclass(slots=True, frozen=True)
class RollupResult:
    """Outcome of resolving a captured record against a store."""

    inserted: bool
    record_id: Any

    @property
    def matched_id(self) -> Any | None:
        """Key of the existing record the occurrence was folded into."""

        return None if self.inserted else self.record_id


def build_match(
    record: ErrorRecord,
    store: ErrorStore,
    now: datetime,
    rollup_period: timedelta | None = None,
) -> RollupMatch | None:
    """Return the duplicate criteria for ``record``, or None when it cannot roll up."""

    period = rollup_period if rollup_period is not None else store.rollup_period
    if (
        record.error_hash is None
        or not period
        or not store.supports_duplicate_matching
    ):
        return None
    return RollupMatch(
        error_hash=record.error_hash,
        application_name=record.application_name,
        since=now - period,
        increment=1,
    )


def _prepare(record: ErrorRecord, store: ErrorStore, now: datetime | None) -> datetime:
    if record.application_name is None:
        record.application_name = store.application_name
    if record.last_log_date is None:
        record.last_log_date = record.creation_date
    return now or datetime.now(timezone.utc)


def _folded(record: ErrorRecord, folded: FoldedRecord) -> RollupResult:
    # The occurrence now stands for the stored record.
    record.id = folded.key
    record.guid = folded.guid
    record.is_duplicate = True
    return RollupResult(inserted=False, record_id=folded.key)


def resolve(
    record: ErrorRecord,
    store: ErrorStore,
    *,
    now: datetime | None = None,
    rollup_period: timedelta | None = None,
) -> RollupResult:
    """
    Store ``record`` or fold it into a recent record with the same fingerprint.

    Args:
        record: Freshly captured, non-ignored record
        store: Destination store
        now: Occurrence time; defaults to the current UTC time
        rollup_period: Overrides the store's rollup window

    Returns:
        RollupResult describing whether a new record was inserted

    Raises:
        StorageError: If the store cannot complete the operation
    """
    now = _prepare(record, store, now)
    match = build_match(record, store, now, rollup_period)
    if match is not None:
        folded = store.increment_duplicate(match, now)
        if folded is not None:
            return _folded(record, folded)

    record.id = store.insert(record)
    return RollupResult(inserted=True, record_id=record.id)


async def resolve_async(
    record: ErrorRecord,
    store: ErrorStore,
    *,
    now: datetime | None = None,
    rollup_period: timedelta | None = None,
) -> RollupResult:
    """Non-blocking variant of :func:`resolve`; suspends only on store I/O."""

    now = _prepare(record, store, now)
    match = build_match(record, store, now, rollup_period)
    if match is not None:
        folded = await store.increment_duplicate_async(match, now)
        if folded is not None:
            return _folded(record, folded)

    record.id = await store.insert_async(record)
    return RollupResult(inserted=True, record_id=record.id)
