"""Tests specific to the in-process memory store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fault_ledger.schemas.error_record import ErrorRecord
from fault_ledger.stores import MemoryErrorStore


def test_returned_records_are_copies(memory_store: MemoryErrorStore) -> None:
    key = memory_store.insert(ErrorRecord(message="boom", custom_data={"a": "1"}))

    fetched = memory_store.get(key)
    fetched.custom_data["a"] = "changed"
    fetched.duplicate_count = 50

    stored = memory_store.get(key)
    assert stored.custom_data == {"a": "1"}
    assert stored.duplicate_count == 1


def test_stored_copy_drops_exception_instance(memory_store: MemoryErrorStore) -> None:
    record = ErrorRecord(message="boom", exception=ValueError("boom"))

    key = memory_store.insert(record)

    assert record.exception is not None
    assert memory_store.get(key).exception is None


def test_max_records_evicts_oldest_unprotected() -> None:
    store = MemoryErrorStore(application_name="TestApp", max_records=2)
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    oldest = store.insert(ErrorRecord(message="oldest", creation_date=base))
    store.protect(oldest)
    store.insert(ErrorRecord(message="middle", creation_date=base + timedelta(minutes=1)))
    store.insert(ErrorRecord(message="newest", creation_date=base + timedelta(minutes=2)))

    assert sorted(record.message for record in store.list_records()) == ["newest", "oldest"]


def test_list_all_applications_when_store_has_none() -> None:
    store = MemoryErrorStore(application_name=None)
    store.insert(ErrorRecord(application_name="A", message="a"))
    store.insert(ErrorRecord(application_name="B", message="b"))

    assert store.count() == 2
    assert store.count("A") == 1
