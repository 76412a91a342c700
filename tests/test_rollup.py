"""Tests for folding duplicate errors into one record."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from fault_ledger.rollup import build_match, resolve, resolve_async
from fault_ledger.schemas.error_record import ErrorRecord
from fault_ledger.stores import MemoryErrorStore

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(error_hash: int | None = 1234, *, at: datetime = T0, **fields) -> ErrorRecord:
    return ErrorRecord(
        application_name=fields.pop("application_name", "TestApp"),
        message=fields.pop("message", "boom"),
        detail="Traceback ...",
        error_hash=error_hash,
        creation_date=at,
        **fields,
    )


def test_first_occurrence_is_inserted(memory_store: MemoryErrorStore) -> None:
    record = _record()

    result = resolve(record, memory_store, now=T0)

    assert result.inserted is True
    assert result.matched_id is None
    assert record.id == result.record_id
    assert record.last_log_date == T0
    assert memory_store.get(result.record_id).duplicate_count == 1


def test_recent_duplicate_is_folded(memory_store: MemoryErrorStore) -> None:
    first = resolve(_record(), memory_store, now=T0)
    later = T0 + timedelta(minutes=5)
    second_record = _record(at=later)

    second = resolve(second_record, memory_store, now=later)

    assert second.inserted is False
    assert second.matched_id == first.record_id
    assert second_record.is_duplicate is True
    assert second_record.id == first.record_id
    stored = memory_store.get(first.record_id)
    assert stored.duplicate_count == 2
    assert stored.last_log_date == later
    assert memory_store.count() == 1


def test_duplicate_outside_window_is_inserted(memory_store: MemoryErrorStore) -> None:
    resolve(_record(), memory_store, now=T0)
    later = T0 + timedelta(minutes=11)

    result = resolve(_record(at=later), memory_store, now=later)

    assert result.inserted is True
    assert memory_store.count() == 2


def test_window_is_measured_from_last_occurrence(memory_store: MemoryErrorStore) -> None:
    first = resolve(_record(), memory_store, now=T0)
    for minutes in (8, 16, 24):
        at = T0 + timedelta(minutes=minutes)
        assert resolve(_record(at=at), memory_store, now=at).matched_id == first.record_id

    assert memory_store.get(first.record_id).duplicate_count == 4


def test_other_application_is_not_folded(memory_store: MemoryErrorStore) -> None:
    resolve(_record(), memory_store, now=T0)

    result = resolve(_record(application_name="Other"), memory_store, now=T0)

    assert result.inserted is True


def test_record_without_fingerprint_is_always_inserted(memory_store: MemoryErrorStore) -> None:
    resolve(_record(None), memory_store, now=T0)

    assert resolve(_record(None), memory_store, now=T0).inserted is True
    assert memory_store.count() == 2


def test_disabled_rollup_period_always_inserts() -> None:
    store = MemoryErrorStore(application_name="TestApp", rollup_period=None)
    resolve(_record(), store, now=T0)

    assert resolve(_record(), store, now=T0).inserted is True
    assert build_match(_record(), store, T0) is None


def test_rollup_period_override(memory_store: MemoryErrorStore) -> None:
    resolve(_record(), memory_store, now=T0)
    later = T0 + timedelta(minutes=5)

    result = resolve(
        _record(at=later), memory_store, now=later, rollup_period=timedelta(minutes=1)
    )

    assert result.inserted is True


def test_missing_application_defaults_to_store(memory_store: MemoryErrorStore) -> None:
    record = _record(application_name=None)

    resolve(record, memory_store, now=T0)

    assert record.application_name == "TestApp"


def test_build_match_uses_store_window(memory_store: MemoryErrorStore) -> None:
    match = build_match(_record(), memory_store, T0)

    assert match is not None
    assert match.error_hash == 1234
    assert match.application_name == "TestApp"
    assert match.since == T0 - timedelta(minutes=10)
    assert match.increment == 1


@pytest.mark.asyncio
async def test_resolve_async_folds_duplicates(memory_store: MemoryErrorStore) -> None:
    first = await resolve_async(_record(), memory_store, now=T0)
    second = await resolve_async(_record(), memory_store, now=T0 + timedelta(seconds=1))

    assert first.inserted is True
    assert second.matched_id == first.record_id
    assert memory_store.get(first.record_id).duplicate_count == 2
